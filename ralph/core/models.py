"""Data models for the iteration supervisor.

Uses Pydantic for records that end up in summaries and logs, and a plain
dataclass for the loop's own mutable state.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


class Mode(str, Enum):
    """Loop mode. Selects the default prompt file and stop behaviour."""

    BUILD = "build"
    PLAN = "plan"


class Signal(str, Enum):
    """Completion marker found in an agent's output."""

    NONE = "NONE"
    DONE = "DONE"
    ALL_DONE = "ALL_DONE"


class Outcome(str, Enum):
    """Classification of a single agent invocation."""

    SUCCESS_DONE = "SUCCESS_DONE"
    SUCCESS_NO_SIGNAL = "SUCCESS_NO_SIGNAL"
    FAILURE = "FAILURE"


class StopReason(str, Enum):
    """Why the loop ended."""

    MAX_ITERATIONS = "max_iterations"
    PLAN_COMPLETE = "plan_complete"
    INTERRUPTED = "interrupted"


class InvocationRecord(BaseModel):
    """One iteration's invocation. Immutable once the subprocess exits."""

    model_config = ConfigDict(frozen=True)

    sequence: int
    started_at: datetime
    finished_at: datetime
    log_path: Path
    exit_code: int
    signal: Signal = Signal.NONE
    outcome: Outcome

    @property
    def duration(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()


@dataclass
class SupervisorState:
    """Loop counters. Owned by the supervisor, mutated once per iteration."""

    max_iterations: int = 0  # 0 = unbounded
    failure_threshold: int = 3
    iteration: int = 0
    consecutive_failures: int = 0
    warnings_emitted: int = 0

    def limit_reached(self) -> bool:
        return self.max_iterations > 0 and self.iteration >= self.max_iterations

    def advance(self) -> int:
        self.iteration += 1
        return self.iteration

    def record(self, outcome: Outcome) -> bool:
        """Update the consecutive-failure counter for an outcome.

        Returns True when the failure threshold was reached on this call. The
        counter is reset in that case, so a warning fires once per run of
        ``failure_threshold`` misses.
        """
        if outcome == Outcome.SUCCESS_DONE:
            self.consecutive_failures = 0
            return False

        self.consecutive_failures += 1
        if self.consecutive_failures >= self.failure_threshold:
            self.consecutive_failures = 0
            self.warnings_emitted += 1
            return True
        return False


class LoopSummary(BaseModel):
    """Result of a complete supervisor run."""

    mode: Mode
    agent: str
    stop_reason: StopReason
    records: list[InvocationRecord] = Field(default_factory=list)
    warnings_emitted: int = 0

    @property
    def iterations(self) -> int:
        return len(self.records)

    @property
    def completed(self) -> int:
        return sum(1 for r in self.records if r.outcome == Outcome.SUCCESS_DONE)
