"""Core modules for the Ralph loop."""

from ralph.core.config import LoopConfig, load_config
from ralph.core.models import (
    InvocationRecord,
    LoopSummary,
    Mode,
    Outcome,
    Signal,
    StopReason,
    SupervisorState,
)
from ralph.core.signals import classify, detect_signal

__all__ = [
    "InvocationRecord",
    "LoopConfig",
    "LoopSummary",
    "Mode",
    "Outcome",
    "Signal",
    "StopReason",
    "SupervisorState",
    "classify",
    "detect_signal",
    "load_config",
]
