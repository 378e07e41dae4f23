"""Tests for agent CLI backends.

Tests cover:
- Command-line construction per backend (model, YOLO flags, prompt passing)
- Environment overrides
- Binary availability checks
- run_command streaming, logging and interrupt handling
"""

from __future__ import annotations

import subprocess
import sys

import pytest

from ralph.agents.backends import (
    ARG_MAX_SAFE,
    BACKENDS,
    EXIT_NOT_FOUND,
    AgentError,
    AgentNotFoundError,
    ClaudeBackend,
    CodexBackend,
    CopilotBackend,
    GeminiBackend,
    get_backend,
    run_command,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Backends read GEMINI_* from the environment; keep tests hermetic."""
    monkeypatch.delenv("GEMINI_CMD", raising=False)
    monkeypatch.delenv("GEMINI_MODEL", raising=False)


# =============================================================================
# Command Construction
# =============================================================================


class TestClaudeBackend:
    def test_prompt_via_stdin_with_yolo(self):
        argv, stdin = ClaudeBackend().build_command("do it")
        assert argv == ["claude", "-p", "--dangerously-skip-permissions"]
        assert stdin == "do it"

    def test_model_and_no_yolo(self):
        argv, _ = ClaudeBackend(model="opus", yolo=False).build_command("x")
        assert argv == ["claude", "-p", "--model", "opus"]

    def test_command_override(self):
        argv, _ = ClaudeBackend(command="/opt/bin/claude").build_command("x")
        assert argv[0] == "/opt/bin/claude"


class TestCodexBackend:
    def test_prompt_as_last_argument(self):
        argv, stdin = CodexBackend().build_command("do it")
        assert argv == ["codex", "exec", "--dangerously-bypass-approvals-and-sandbox", "do it"]
        assert stdin is None

    def test_model_flag_after_exec(self):
        argv, _ = CodexBackend(model="o3", yolo=False).build_command("x")
        assert argv == ["codex", "exec", "--model", "o3", "x"]

    def test_oversized_prompt_rejected(self):
        with pytest.raises(AgentError, match="ARG_MAX"):
            CodexBackend().build_command("x" * (ARG_MAX_SAFE + 1))


class TestGeminiBackend:
    def test_default_model_and_yolo(self):
        argv, stdin = GeminiBackend().build_command("do it")
        assert argv == ["gemini", "-p", "", "-m", "gemini-3.1-pro-preview", "--yolo"]
        assert stdin == "do it"

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("GEMINI_CMD", "gemini-nightly")
        monkeypatch.setenv("GEMINI_MODEL", "gemini-2.5-pro")
        backend = GeminiBackend()
        assert backend.command == "gemini-nightly"
        assert backend.model == "gemini-2.5-pro"

    def test_explicit_arguments_beat_env(self, monkeypatch):
        monkeypatch.setenv("GEMINI_MODEL", "gemini-2.5-pro")
        assert GeminiBackend(model="gemini-2.5-flash").model == "gemini-2.5-flash"


class TestCopilotBackend:
    def test_prompt_adjacent_to_p(self):
        argv, stdin = CopilotBackend().build_command("do it")
        assert argv[:3] == ["copilot", "-p", "do it"]
        assert argv[3:] == ["--model", "claude-sonnet-4.5", "--allow-all-tools"]
        assert stdin is None

    def test_yolo_disabled(self):
        argv, _ = CopilotBackend(yolo=False).build_command("x")
        assert "--allow-all-tools" not in argv

    def test_oversized_prompt_rejected(self):
        with pytest.raises(AgentError):
            CopilotBackend().build_command("x" * (ARG_MAX_SAFE + 1))


# =============================================================================
# Registry and Availability
# =============================================================================


class TestRegistry:
    def test_all_backends_registered(self):
        assert set(BACKENDS) == {"claude", "codex", "gemini", "copilot"}

    def test_get_backend_passes_options(self):
        backend = get_backend("claude", model="sonnet", yolo=False)
        assert isinstance(backend, ClaudeBackend)
        assert backend.model == "sonnet"
        assert backend.yolo is False

    def test_unknown_backend(self):
        with pytest.raises(AgentError, match="Unknown agent 'cursor'"):
            get_backend("cursor")


class TestRequireBinary:
    def test_missing_binary_raises(self, mocker):
        mocker.patch("shutil.which", return_value=None)
        with pytest.raises(AgentNotFoundError) as exc_info:
            CodexBackend().require_binary()
        assert "npm install -g @openai/codex" in str(exc_info.value)

    def test_present_binary_returns_path(self, mocker):
        mocker.patch("shutil.which", return_value="/usr/local/bin/claude")
        assert ClaudeBackend().require_binary() == "/usr/local/bin/claude"

    def test_is_available(self, mocker):
        mocker.patch("shutil.which", return_value=None)
        assert ClaudeBackend().is_available() is False


# =============================================================================
# run_command
# =============================================================================


class TestRunCommand:
    """run_command with real (tiny) Python subprocesses."""

    def test_captures_and_logs_output(self, tmp_path):
        log_path = tmp_path / "iter.log"
        result = run_command(
            [sys.executable, "-c", "print('hello'); print('<promise>DONE</promise>')"],
            None,
            log_path,
        )
        assert result.returncode == 0
        assert result.output == "hello\n<promise>DONE</promise>\n"
        assert log_path.read_text() == result.output

    def test_merges_stderr(self, tmp_path):
        result = run_command(
            [sys.executable, "-c", "import sys; sys.stderr.write('oops\\n'); sys.exit(3)"],
            None,
            tmp_path / "iter.log",
        )
        assert result.returncode == 3
        assert "oops" in result.output

    def test_feeds_stdin(self, tmp_path):
        result = run_command(
            [sys.executable, "-c", "import sys; print(sys.stdin.read().upper())"],
            "build the thing",
            tmp_path / "iter.log",
        )
        assert "BUILD THE THING" in result.output

    def test_carriage_returns_preserved(self, tmp_path):
        """Progress output using \\r reaches the log and the result unchanged."""
        log_path = tmp_path / "iter.log"
        result = run_command(
            [sys.executable, "-c", "import sys; sys.stdout.buffer.write(b'50%\\r100%\\n')"],
            None,
            log_path,
        )
        assert log_path.read_bytes() == b"50%\r100%\n"
        assert result.output == "50%\r100%\n"

    def test_non_ascii_prompt_and_output(self, tmp_path):
        result = run_command(
            [sys.executable, "-c", "import sys; sys.stdout.buffer.write(sys.stdin.buffer.read())"],
            "café ✓\n",
            tmp_path / "iter.log",
        )
        assert result.output == "café ✓\n"

    def test_on_output_receives_lines(self, tmp_path):
        lines = []
        run_command(
            [sys.executable, "-c", "print('a'); print('b')"],
            None,
            tmp_path / "iter.log",
            on_output=lines.append,
        )
        assert lines == ["a\n", "b\n"]

    def test_appends_to_existing_log(self, tmp_path):
        log_path = tmp_path / "iter.log"
        log_path.write_text("header\n")
        run_command([sys.executable, "-c", "print('body')"], None, log_path)
        assert log_path.read_text() == "header\nbody\n"

    def test_missing_binary_is_exit_127(self, tmp_path):
        log_path = tmp_path / "iter.log"
        result = run_command(["definitely-not-a-real-agent-cli"], None, log_path)
        assert result.returncode == EXIT_NOT_FOUND
        assert "command not found" in log_path.read_text()

    def test_interrupt_terminates_child(self, tmp_path, mocker):
        def interrupting_callback(line):
            raise KeyboardInterrupt

        terminate = mocker.spy(subprocess.Popen, "terminate")
        with pytest.raises(KeyboardInterrupt):
            run_command(
                [sys.executable, "-c", "import time; print('go', flush=True); time.sleep(30)"],
                None,
                tmp_path / "iter.log",
                on_output=interrupting_callback,
            )
        assert terminate.call_count == 1


def test_backend_run_uses_build_command(tmp_path, mocker):
    """AgentBackend.run passes argv/stdin from build_command to run_command."""
    run = mocker.patch("ralph.agents.backends.run_command")
    backend = ClaudeBackend(model="opus", cwd=tmp_path)
    backend.run("prompt text", tmp_path / "iter.log")

    args, kwargs = run.call_args
    assert args[0] == ["claude", "-p", "--model", "opus", "--dangerously-skip-permissions"]
    assert args[1] == "prompt text"
    assert kwargs["cwd"] == tmp_path
