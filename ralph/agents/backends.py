"""Agent CLI backends.

Each backend knows how to turn a prompt into a command line for one agent
CLI. Running the command is shared: output (stdout and stderr merged) is
streamed line by line into the iteration's log file, so the log is complete
even if the loop is interrupted.

NOTE: CLI prompt handling varies:
- claude: reads the prompt from stdin in print mode (-p)
- codex: takes the prompt as the final argument of ``codex exec``
- gemini: reads from stdin; ``-p ""`` switches it to non-interactive mode
- copilot: takes the prompt as the value of -p
"""

import io
import logging
import os
import shutil
import subprocess
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import IO, Callable

from pydantic import BaseModel

logger = logging.getLogger(__name__)

# POSIX only guarantees 128KB for argv. Backends that take the prompt as an
# argument refuse anything larger.
ARG_MAX_SAFE = 131_072

# Seconds to wait after SIGTERM before killing an interrupted agent
TERMINATE_GRACE = 5.0

# Exit code reported when the agent binary disappears mid-run (shell convention)
EXIT_NOT_FOUND = 127


class AgentError(Exception):
    """Error configuring or launching an agent CLI."""

    pass


class AgentNotFoundError(AgentError):
    """Agent CLI binary is not on PATH."""

    pass


class ExecutionResult(BaseModel):
    """Captured result of one agent invocation."""

    returncode: int
    output: str


OutputCallback = Callable[[str], None]


def _feed_stdin(pipe: IO[bytes], payload: bytes) -> None:
    try:
        pipe.write(payload)
    except BrokenPipeError:
        logger.debug("Agent closed stdin before the prompt was fully written")
    finally:
        try:
            pipe.close()
        except BrokenPipeError:
            pass


def _terminate(proc: subprocess.Popen) -> None:
    """Stop an agent process, escalating to SIGKILL after the grace period."""
    if proc.poll() is not None:
        return
    proc.terminate()
    try:
        proc.wait(timeout=TERMINATE_GRACE)
    except subprocess.TimeoutExpired:
        logger.warning(f"Agent (pid {proc.pid}) ignored SIGTERM, killing")
        proc.kill()
        proc.wait()


def run_command(
    argv: list[str],
    stdin: str | None,
    log_path: Path,
    on_output: OutputCallback | None = None,
    cwd: Path | None = None,
) -> ExecutionResult:
    """Run ``argv`` to completion, teeing merged output into ``log_path``.

    Blocks until the process exits. On KeyboardInterrupt the process is
    terminated and the interrupt propagates to the caller.
    """
    chunks: list[str] = []

    # Binary pipes with newline="" keep carriage returns exactly as the agent
    # printed them, in both the log and the captured output
    with open(log_path, "a", encoding="utf-8", newline="") as log:
        try:
            proc = subprocess.Popen(
                argv,
                stdin=subprocess.PIPE if stdin is not None else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                cwd=cwd,
            )
        except FileNotFoundError:
            message = f"{argv[0]}: command not found\n"
            log.write(message)
            return ExecutionResult(returncode=EXIT_NOT_FOUND, output=message)

        writer = None
        if stdin is not None:
            writer = threading.Thread(
                target=_feed_stdin, args=(proc.stdin, stdin.encode("utf-8")), daemon=True
            )
            writer.start()

        try:
            reader = io.TextIOWrapper(
                proc.stdout, encoding="utf-8", errors="replace", newline=""
            )
            for line in reader:
                chunks.append(line)
                log.write(line)
                log.flush()
                if on_output is not None:
                    on_output(line)
            returncode = proc.wait()
        except KeyboardInterrupt:
            _terminate(proc)
            raise
        finally:
            if writer is not None:
                writer.join(timeout=1.0)

    return ExecutionResult(returncode=returncode, output="".join(chunks))


class AgentBackend(ABC):
    """One agent CLI. The supervisor only ever calls ``run``."""

    name: str = ""
    label: str = ""
    default_command: str = ""
    default_model: str | None = None
    yolo_flag: str = ""
    install_hint: str = ""
    # Backend-specific environment overrides, checked after explicit arguments
    env_command: str | None = None
    env_model: str | None = None

    def __init__(
        self,
        command: str | None = None,
        model: str | None = None,
        yolo: bool = True,
        cwd: Path | None = None,
    ):
        self.command = (
            command
            or (os.environ.get(self.env_command) if self.env_command else None)
            or self.default_command
        )
        self.model = (
            model
            or (os.environ.get(self.env_model) if self.env_model else None)
            or self.default_model
        )
        self.yolo = yolo
        self.cwd = cwd

    def __repr__(self) -> str:
        return f"{type(self).__name__}(command={self.command!r}, model={self.model!r}, yolo={self.yolo})"

    @abstractmethod
    def build_command(self, prompt: str) -> tuple[list[str], str | None]:
        """Return (argv, stdin payload). stdin is None when the prompt is an argument."""

    def _model_flag(self, flag: str = "--model") -> list[str]:
        return [flag, self.model] if self.model else []

    def _check_arg_size(self, prompt: str) -> None:
        if len(prompt.encode("utf-8")) > ARG_MAX_SAFE:
            raise AgentError(
                f"Prompt size ({len(prompt)} chars) exceeds ARG_MAX limit ({ARG_MAX_SAFE} bytes) "
                f"for '{self.name}', which takes the prompt as an argument. "
                "Use a stdin-capable agent (claude, gemini) or shorten the prompt."
            )

    def is_available(self) -> bool:
        return shutil.which(self.command) is not None

    def require_binary(self) -> str:
        """Return the resolved binary path. Raises AgentNotFoundError if missing."""
        path = shutil.which(self.command)
        if not path:
            hint = f"\n{self.install_hint}" if self.install_hint else ""
            raise AgentNotFoundError(f"{self.label} not found: '{self.command}' is not on PATH{hint}")
        return path

    def run(
        self,
        prompt: str,
        log_path: Path,
        on_output: OutputCallback | None = None,
    ) -> ExecutionResult:
        argv, stdin = self.build_command(prompt)
        logger.debug(
            f"Running {self.name} ({self.command}), prompt via {'stdin' if stdin is not None else 'argv'}"
        )
        return run_command(argv, stdin, log_path, on_output=on_output, cwd=self.cwd)


class ClaudeBackend(AgentBackend):
    name = "claude"
    label = "Claude Code CLI"
    default_command = "claude"
    yolo_flag = "--dangerously-skip-permissions"
    install_hint = "Install Claude Code and authenticate first: https://claude.ai/code"

    def build_command(self, prompt: str) -> tuple[list[str], str | None]:
        cmd = [self.command, "-p", *self._model_flag()]
        if self.yolo:
            cmd.append(self.yolo_flag)
        return cmd, prompt


class CodexBackend(AgentBackend):
    name = "codex"
    label = "OpenAI Codex CLI"
    default_command = "codex"
    yolo_flag = "--dangerously-bypass-approvals-and-sandbox"
    install_hint = "Install: npm install -g @openai/codex\nThen authenticate: codex --login"

    def build_command(self, prompt: str) -> tuple[list[str], str | None]:
        self._check_arg_size(prompt)
        cmd = [self.command, "exec", *self._model_flag()]
        if self.yolo:
            cmd.append(self.yolo_flag)
        cmd.append(prompt)
        return cmd, None


class GeminiBackend(AgentBackend):
    name = "gemini"
    label = "Google Gemini CLI"
    default_command = "gemini"
    default_model = "gemini-3.1-pro-preview"
    yolo_flag = "--yolo"
    install_hint = (
        "Install: npm install -g @google/gemini-cli\n"
        "Then authenticate by running once interactively: gemini"
    )
    env_command = "GEMINI_CMD"
    env_model = "GEMINI_MODEL"

    def build_command(self, prompt: str) -> tuple[list[str], str | None]:
        # stdin is prepended to the -p value, so an empty -p runs the piped prompt
        cmd = [self.command, "-p", "", *self._model_flag("-m")]
        if self.yolo:
            cmd.append(self.yolo_flag)
        return cmd, prompt


class CopilotBackend(AgentBackend):
    name = "copilot"
    label = "GitHub Copilot CLI"
    default_command = "copilot"
    default_model = "claude-sonnet-4.5"
    yolo_flag = "--allow-all-tools"
    install_hint = (
        "Install: npm install -g @github/copilot\n"
        "Then authenticate: copilot (and use the /login command)"
    )

    def build_command(self, prompt: str) -> tuple[list[str], str | None]:
        self._check_arg_size(prompt)
        # -p and its prompt must stay adjacent; other flags follow
        cmd = [self.command, "-p", prompt, *self._model_flag()]
        if self.yolo:
            cmd.append(self.yolo_flag)
        return cmd, None


BACKENDS: dict[str, type[AgentBackend]] = {
    cls.name: cls for cls in (ClaudeBackend, CodexBackend, GeminiBackend, CopilotBackend)
}


def get_backend(name: str, **kwargs) -> AgentBackend:
    """Instantiate the backend registered under ``name``."""
    try:
        backend_cls = BACKENDS[name]
    except KeyError:
        raise AgentError(
            f"Unknown agent '{name}'. Available: {', '.join(sorted(BACKENDS))}"
        ) from None
    return backend_cls(**kwargs)
