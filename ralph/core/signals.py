"""Completion-marker detection for agent output.

Agents finish an iteration by printing ``<promise>DONE</promise>`` (or
``<promise>ALL_DONE</promise>`` when a multi-spec prompt is exhausted). The
marker may appear anywhere in the captured text. When it appears more than
once the last occurrence is the one that counts.
"""

import re

from ralph.core.models import Outcome, Signal

PROMISE_PATTERN = re.compile(r"<promise>((?:ALL_)?DONE)</promise>")


def detect_signal(output: str) -> Signal:
    """Return the last completion marker in ``output``, or ``Signal.NONE``."""
    matches = PROMISE_PATTERN.findall(output)
    if not matches:
        return Signal.NONE
    return Signal(matches[-1])


def classify(exit_code: int, signal: Signal) -> Outcome:
    """Map an exit code and detected signal to an outcome.

    A nonzero exit is a failure even if the agent printed a marker before
    dying.
    """
    if exit_code != 0:
        return Outcome.FAILURE
    if signal == Signal.NONE:
        return Outcome.SUCCESS_NO_SIGNAL
    return Outcome.SUCCESS_DONE


def classify_output(exit_code: int, output: str) -> tuple[Signal, Outcome]:
    signal = detect_signal(output)
    return signal, classify(exit_code, signal)
