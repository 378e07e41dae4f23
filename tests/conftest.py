# conftest.py - Shared pytest fixtures for all tests
"""Shared pytest fixtures for the Ralph test suite.

This module provides foundational fixtures used across all test modules:
- Temporary project directories with specs and prompt files
- Scripted fake agent backends and git sync doubles
- Real git repositories (with a bare remote) for push tests

Usage:
    Import fixtures implicitly via pytest's fixture discovery.
    All fixtures in this file are automatically available in test modules.
"""

from __future__ import annotations

import subprocess
from io import StringIO
from pathlib import Path
from typing import Iterable

import pytest
from rich.console import Console

from ralph.agents.backends import AgentBackend, ExecutionResult
from ralph.core.config import LoopConfig
from ralph.core.git import PushResult
from ralph.core.logs import LogDirectory
from ralph.core.prompts import PromptSource


# =============================================================================
# Project Fixtures
# =============================================================================


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """Create a project directory with specs and prompt files.

    Creates:
        - specs/001-setup/spec.md and specs/002-auth/spec.md
        - PROMPT_build.md and PROMPT_plan.md
        - AGENTS.md
    """
    for name in ("001-setup", "002-auth"):
        spec_dir = tmp_path / "specs" / name
        spec_dir.mkdir(parents=True)
        (spec_dir / "spec.md").write_text(f"# {name}\n\nAcceptance criteria...\n")

    (tmp_path / "PROMPT_build.md").write_text("Build the next task.\n")
    (tmp_path / "PROMPT_plan.md").write_text("Plan the work.\n")
    (tmp_path / "AGENTS.md").write_text("# Agents\n")
    return tmp_path


@pytest.fixture
def repo_with_remote(tmp_path: Path) -> Path:
    """Create a git repository with a bare ``origin`` remote.

    WARNING: Runs actual git commands. Only use when you need real pushes.

    Returns:
        Path to the working repository (the remote is a sibling directory).
    """
    work = tmp_path / "work"
    remote = tmp_path / "remote.git"
    work.mkdir()

    def git(*args: str, cwd: Path = work) -> None:
        subprocess.run(["git", *args], cwd=cwd, check=True, capture_output=True)

    try:
        git("init", "--bare", str(remote), cwd=tmp_path)
        git("init", "-b", "main")
        git("config", "user.email", "test@example.com")
        git("config", "user.name", "Test User")
        git("remote", "add", "origin", str(remote))
        (work / "README.md").write_text("# Test Project\n")
        git("add", ".")
        git("commit", "-m", "Initial commit")
    except (subprocess.CalledProcessError, FileNotFoundError):
        pytest.skip("Git not available")
    return work


# =============================================================================
# Loop Doubles
# =============================================================================


class FakeBackend(AgentBackend):
    """Backend that replays scripted results instead of spawning a process.

    Each script entry is ``(returncode, output)`` or an exception instance to
    raise from ``run``. The last entry repeats once the script is exhausted.
    """

    name = "fake"
    label = "Fake Agent"
    default_command = "fake-agent"

    def __init__(self, script: Iterable[tuple[int, str] | BaseException], **kwargs):
        super().__init__(**kwargs)
        self.script = list(script)
        self.calls: list[tuple[str, Path]] = []

    def build_command(self, prompt: str) -> tuple[list[str], str | None]:
        return [self.command], prompt

    def run(self, prompt, log_path, on_output=None) -> ExecutionResult:
        self.calls.append((prompt, log_path))
        index = min(len(self.calls) - 1, len(self.script) - 1)
        entry = self.script[index]
        if isinstance(entry, BaseException):
            raise entry
        returncode, output = entry
        with open(log_path, "a") as f:
            f.write(output)
        if on_output is not None:
            for line in output.splitlines(keepends=True):
                on_output(line)
        return ExecutionResult(returncode=returncode, output=output)


class FakeGit:
    """GitSync double that records pushes."""

    remote = "origin"

    def __init__(self, ok: bool = True, message: str = ""):
        self.ok = ok
        self.message = message
        self.pushes = 0

    def current_branch(self) -> str:
        return "main"

    def push(self, branch: str | None = None) -> PushResult:
        self.pushes += 1
        return PushResult(ok=self.ok, branch=branch or "main", message=self.message)


@pytest.fixture
def fake_backend_factory():
    """Build a FakeBackend from a script."""

    def factory(*script: tuple[int, str] | BaseException) -> FakeBackend:
        return FakeBackend(script)

    return factory


@pytest.fixture
def record_console() -> Console:
    """Non-terminal console writing to a buffer (no live display)."""
    return Console(file=StringIO(), force_terminal=False, width=120)


@pytest.fixture
def loop_config():
    """Build a LoopConfig with test-friendly defaults (no delay, no watch)."""

    def factory(**overrides) -> LoopConfig:
        values = {"delay_seconds": 0, "watch": False}
        values.update(overrides)
        return LoopConfig(**values)

    return factory


@pytest.fixture
def log_dir(tmp_path: Path) -> LogDirectory:
    return LogDirectory(tmp_path / "logs")


@pytest.fixture
def prompt_source() -> PromptSource:
    return PromptSource(text="Do the next task.\n", origin="PROMPT_build.md")


@pytest.fixture
def fake_git():
    """Build a FakeGit push recorder."""

    def factory(ok: bool = True, message: str = "") -> FakeGit:
        return FakeGit(ok=ok, message=message)

    return factory
