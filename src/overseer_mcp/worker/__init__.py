"""Worker invocation boundary."""

from .messages import WorkerMessage, tool_result_text
from .runner import (
    WorkerCapabilities,
    WorkerExecutionResult,
    WorkerNotFoundError,
    WorkerProcessError,
    WorkerRunner,
    WorkerRunnerError,
)

__all__ = [
    "WorkerCapabilities",
    "WorkerExecutionResult",
    "WorkerMessage",
    "WorkerNotFoundError",
    "WorkerProcessError",
    "WorkerRunner",
    "WorkerRunnerError",
    "tool_result_text",
]
