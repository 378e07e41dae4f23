"""Rolling display of an iteration's latest agent output.

The agent's output goes to the iteration log, not the terminal. While the
agent runs, OutputTail re-renders the last few lines of that log every
``interval`` seconds so the operator can see progress.

Design Notes:
- Runs in a daemon thread; cancellation is a threading.Event, never a
  shared flag, so the supervisor can stop it from the main thread
- Reads the log file only, never writes to it or to supervisor state
- Uses a transient rich Live region, which is erased when the tail stops
"""

import logging
import threading
from datetime import datetime
from pathlib import Path

from rich.console import Console, Group
from rich.live import Live
from rich.markup import escape
from rich.panel import Panel
from rich.text import Text

from ralph.core.logs import tail

logger = logging.getLogger(__name__)


def render_tail(log_path: Path, lines: int, label: str, timestamp: bool = False) -> Panel:
    """Panel with the last ``lines`` lines of ``log_path``."""
    recent = tail(log_path, lines)
    body = Text("\n".join(recent)) if recent else Text("(no output yet)", style="dim")
    title = f"Latest {escape(label)} output (last {lines} lines)"
    if timestamp:
        title = f"[{datetime.now().strftime('%Y-%m-%d %H:%M:%S')}] {title}"
    return Panel(Group(body), title=title, title_align="left", border_style="cyan")


class OutputTail:
    """Background re-render of a log tail, bounded to one iteration."""

    JOIN_TIMEOUT = 2.0

    def __init__(
        self,
        log_path: Path,
        console: Console,
        lines: int = 5,
        interval: float = 10.0,
        label: str = "agent",
    ):
        self.log_path = Path(log_path)
        self.console = console
        self.lines = lines
        self.interval = interval
        self.label = label
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def __enter__(self) -> "OutputTail":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.stop()
        return False

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(
            target=self._run, name=f"ralph-tail-{self.log_path.name}", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        """Signal the render loop to exit and wait briefly for it."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=self.JOIN_TIMEOUT)
            if self._thread.is_alive():
                logger.debug("Output tail did not stop within %.1fs", self.JOIN_TIMEOUT)

    def _render(self) -> Panel:
        return render_tail(self.log_path, self.lines, self.label, timestamp=True)

    def _run(self) -> None:
        try:
            with Live(
                self._render(),
                console=self.console,
                auto_refresh=False,
                transient=True,
            ) as live:
                while not self._stop.wait(self.interval):
                    live.update(self._render(), refresh=True)
        except Exception as e:
            # Display only; the iteration carries on without it
            logger.debug(f"Output tail stopped: {e}")
