"""Agent CLI backends invoked once per loop iteration."""

from ralph.agents.backends import (
    BACKENDS,
    AgentBackend,
    AgentError,
    AgentNotFoundError,
    ExecutionResult,
    get_backend,
)

__all__ = [
    "BACKENDS",
    "AgentBackend",
    "AgentError",
    "AgentNotFoundError",
    "ExecutionResult",
    "get_backend",
]
