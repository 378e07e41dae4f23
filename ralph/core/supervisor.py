"""Iteration supervisor: the Ralph loop.

Each iteration:
1. Create the iteration log
2. Run the agent with the fixed prompt (blocking), teeing output to the log
3. Classify the result by exit code and completion marker
4. Update the consecutive-failure counter, warn at the threshold
5. Push the current branch
6. Stop, or pause and go again

Iterations are stateless from the supervisor's point of view. Nothing from
one invocation is fed into the next; the agent keeps its progress in the
repository.
"""

import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Callable

from rich.console import Console
from rich.markup import escape

from ralph.agents.backends import AgentBackend
from ralph.cli_ui.live_tail import OutputTail, render_tail
from ralph.core.config import LoopConfig
from ralph.core.git import GitSync
from ralph.core.logs import LogDirectory, SessionLog
from ralph.core.models import (
    InvocationRecord,
    LoopSummary,
    Outcome,
    Signal,
    StopReason,
    SupervisorState,
)
from ralph.core.prompts import PromptSource
from ralph.core.signals import classify_output

logger = logging.getLogger(__name__)

WatcherFactory = Callable[[Path], OutputTail]


class IterationSupervisor:
    """Drive the agent loop for one configured run."""

    def __init__(
        self,
        config: LoopConfig,
        backend: AgentBackend,
        prompt: PromptSource,
        logs: LogDirectory,
        git: GitSync | None = None,
        console: Console | None = None,
        session: SessionLog | None = None,
        sleep: Callable[[float], None] = time.sleep,
        watcher_factory: WatcherFactory | None = None,
    ):
        self.config = config
        self.backend = backend
        self.prompt = prompt
        self.logs = logs
        self.git = git
        self.console = console or Console()
        self.session = session
        self._sleep = sleep
        self.state = SupervisorState(
            max_iterations=config.max_iterations,
            failure_threshold=config.failure_threshold,
        )
        self.records: list[InvocationRecord] = []

        if watcher_factory is None and self._watch_enabled():
            watcher_factory = self._default_watcher
        self._watcher_factory = watcher_factory

    # --- display helpers ---

    def _watch_enabled(self) -> bool:
        return (
            self.config.watch
            and self.config.tail_lines > 0
            and self.console.is_terminal
        )

    def _default_watcher(self, log_path: Path) -> OutputTail:
        return OutputTail(
            log_path,
            self.console,
            lines=self.config.tail_lines,
            interval=self.config.watch_interval,
            label=self.backend.label,
        )

    def _echo(self, line: str) -> None:
        self.console.out(line, end="", highlight=False)

    # --- loop ---

    def run(self) -> LoopSummary:
        """Run iterations until a stop condition. Returns the run summary.

        An operator interrupt ends the loop (not just the iteration); the
        summary still covers every completed iteration.
        """
        stop_reason = StopReason.MAX_ITERATIONS
        logger.info(
            f"Loop starting: mode={self.config.mode.value} agent={self.backend.name} "
            f"max={self.config.max_iterations or 'unbounded'} prompt={self.prompt.origin}"
        )

        try:
            while not self.state.limit_reached():
                record = self.run_iteration()

                if record.outcome == Outcome.SUCCESS_DONE and self.config.stops_on_done:
                    stop_reason = StopReason.PLAN_COMPLETE
                    self.console.print(f"\n[green]{self.config.mode.value.title()} complete![/green]")
                    break

                if self.state.limit_reached():
                    break

                self._pause()

            if stop_reason == StopReason.MAX_ITERATIONS:
                self.console.print(
                    f"[green]Reached max iterations: {self.config.max_iterations}[/green]"
                )
        except KeyboardInterrupt:
            stop_reason = StopReason.INTERRUPTED
            self.console.print("\n[yellow]Interrupted - stopping loop[/yellow]")
            logger.warning(f"Loop interrupted during iteration {self.state.iteration}")

        logger.info(
            f"Loop finished: {stop_reason.value} after {len(self.records)} iteration(s)"
        )
        return LoopSummary(
            mode=self.config.mode,
            agent=self.backend.name,
            stop_reason=stop_reason,
            records=list(self.records),
            warnings_emitted=self.state.warnings_emitted,
        )

    def run_iteration(self) -> InvocationRecord:
        """Invoke the agent once, classify, account, push."""
        n = self.state.advance()
        started = datetime.now()

        self.console.print()
        self.console.rule(f"[magenta]LOOP {n}[/magenta]", style="magenta")
        self.console.print(
            f"[blue]\\[{started.strftime('%Y-%m-%d %H:%M:%S')}][/blue] Starting iteration {n}\n"
        )

        log_path = self.logs.iteration_log(self.backend.name, self.config.mode.value, n)
        logger.info(f"Iteration {n} started, log: {log_path}")

        watcher = self._watcher_factory(log_path) if self._watcher_factory else None
        if watcher is not None:
            watcher.start()
        try:
            result = self.backend.run(
                self.prompt.text,
                log_path,
                on_output=None if watcher is not None else self._echo,
            )
        finally:
            if watcher is not None:
                watcher.stop()

        signal, outcome = classify_output(result.returncode, result.output)
        record = InvocationRecord(
            sequence=n,
            started_at=started,
            finished_at=datetime.now(),
            log_path=log_path,
            exit_code=result.returncode,
            signal=signal,
            outcome=outcome,
        )
        self.records.append(record)

        warn = self.state.record(outcome)
        self._report(record, show_tail=watcher is not None)
        if warn:
            self._warn_stuck()

        if self.session is not None:
            self.session.append_iteration(record, result.output)

        if self.config.push and self.git is not None:
            self._push(self.git)

        return record

    # --- per-iteration side effects ---

    def _report(self, record: InvocationRecord, show_tail: bool) -> None:
        label = escape(self.backend.label)
        logger.info(
            f"Iteration {record.sequence} finished: exit={record.exit_code} "
            f"outcome={record.outcome.value} signal={record.signal.value} "
            f"({record.duration:.1f}s)"
        )

        if record.outcome == Outcome.SUCCESS_DONE:
            self.console.print(f"\n[green]✓ {label} execution completed[/green]")
            marker = f"<promise>{record.signal.value}</promise>"
            self.console.print(f"[green]✓ Completion signal detected: {escape(marker)}[/green]")
            return

        if record.outcome == Outcome.SUCCESS_NO_SIGNAL:
            self.console.print(f"\n[green]✓ {label} execution completed[/green]")
            self.console.print("[yellow]⚠ No completion signal found[/yellow]")
            self.console.print(
                "[yellow]  The agent did not output <promise>DONE</promise> or "
                "<promise>ALL_DONE</promise>; retrying in next iteration...[/yellow]"
            )
        else:
            self.console.print(
                f"\n[red]✗ {label} execution failed (exit {record.exit_code})[/red]"
            )
            self.console.print(f"[yellow]Check log: {escape(str(record.log_path))}[/yellow]")
            if record.signal != Signal.NONE:
                logger.info(
                    f"Iteration {record.sequence} printed {record.signal.value} but exited "
                    f"{record.exit_code}; counted as failure"
                )

        if show_tail and self.config.tail_lines > 0:
            self.console.print(
                render_tail(record.log_path, self.config.tail_lines, self.backend.label)
            )

    def _warn_stuck(self) -> None:
        threshold = self.config.failure_threshold
        logger.warning(f"{threshold} consecutive iterations without completion")
        self.console.print()
        self.console.print(
            f"[red]⚠ {threshold} consecutive iterations without completion.[/red]\n"
            "[red]  The agent may be stuck. Consider:[/red]\n"
            f"[red]  - Checking the logs in {escape(str(self.logs.root))}[/red]\n"
            "[red]  - Simplifying the current spec[/red]\n"
            "[red]  - Manually fixing blocking issues[/red]"
        )
        self.console.print()

    def _push(self, git: GitSync) -> None:
        result = git.push()
        if result.ok:
            if result.created_upstream:
                self.console.print(
                    f"[blue]Created remote branch {escape(git.remote)}/{escape(result.branch)}[/blue]"
                )
            return
        self.console.print(
            f"[yellow]Push of '{escape(result.branch)}' failed, continuing: "
            f"{escape(result.message)}[/yellow]"
        )

    def _pause(self) -> None:
        delay = self.config.delay_seconds
        if delay <= 0:
            return
        self.console.print(f"\n[blue]Waiting {delay:g}s before next iteration...[/blue]")
        self._sleep(delay)
