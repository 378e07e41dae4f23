"""Flat-file logs for loop runs.

Layout under the log directory:
- ralph_<agent>_<mode>_iter_<n>_<timestamp>.log: one per iteration, the
  agent's raw output (append-only)
- ralph_<agent>_<mode>_session_<timestamp>.log: the whole run, supervisor
  log records plus every iteration's output
"""

import logging
from collections import deque
from datetime import datetime
from pathlib import Path
from types import TracebackType

from ralph.core.models import InvocationRecord

SESSION_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"
SESSION_DATEFMT = "%Y-%m-%d %H:%M:%S"


def _stamp() -> str:
    return datetime.now().strftime("%Y%m%d_%H%M%S")


def tail(path: Path, lines: int) -> list[str]:
    """Return the last ``lines`` lines of a log file without trailing newlines."""
    if lines <= 0 or not path.exists():
        return []
    with open(path, encoding="utf-8", errors="replace") as f:
        return [line.rstrip("\n") for line in deque(f, maxlen=lines)]


class LogDirectory:
    """Names and creates log files for a project."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def ensure(self) -> Path:
        self.root.mkdir(parents=True, exist_ok=True)
        return self.root

    def iteration_log(self, agent: str, mode: str, iteration: int) -> Path:
        """Create an empty log file for one iteration and return its path."""
        self.ensure()
        path = self.root / f"ralph_{agent}_{mode}_iter_{iteration}_{_stamp()}.log"
        path.touch()
        return path

    def session_log(self, agent: str, mode: str) -> Path:
        self.ensure()
        return self.root / f"ralph_{agent}_{mode}_session_{_stamp()}.log"


class SessionLog:
    """Consolidated log for one run of the loop.

    While open, records from the ``ralph`` logger are mirrored into the file,
    and each iteration's captured output is appended after it finishes.
    """

    LOGGER_NAME = "ralph"

    def __init__(self, path: Path, level: int = logging.INFO):
        self.path = Path(path)
        self.level = level
        self._handler: logging.FileHandler | None = None
        self._previous_level: int | None = None

    def __enter__(self) -> "SessionLog":
        self.open()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> bool:
        self.close()
        return False

    def open(self) -> None:
        if self._handler is not None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(self.path, encoding="utf-8")
        handler.setLevel(self.level)
        handler.setFormatter(logging.Formatter(SESSION_FORMAT, SESSION_DATEFMT))
        root = logging.getLogger(self.LOGGER_NAME)
        # The package logger must pass INFO through for the file to see it
        self._previous_level = root.level
        if root.level == logging.NOTSET or root.level > self.level:
            root.setLevel(self.level)
        root.addHandler(handler)
        self._handler = handler

    def close(self) -> None:
        if self._handler is None:
            return
        root = logging.getLogger(self.LOGGER_NAME)
        root.removeHandler(self._handler)
        self._handler.close()
        self._handler = None
        if self._previous_level is not None:
            root.setLevel(self._previous_level)

    def append_iteration(self, record: InvocationRecord, output: str) -> None:
        """Append one iteration's output, framed with a header and footer."""
        if self._handler is not None:
            self._handler.flush()
        started = record.started_at.strftime(SESSION_DATEFMT)
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(f"\n===== iteration {record.sequence} ({started}) =====\n")
            f.write(output)
            if output and not output.endswith("\n"):
                f.write("\n")
            f.write(
                f"===== iteration {record.sequence}: exit {record.exit_code}, "
                f"{record.outcome.value}, signal {record.signal.value} =====\n"
            )
