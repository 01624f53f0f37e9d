"""Agent invocation orchestration."""

from .artifacts import ArtifactCheck, ArtifactLocator
from .orchestrator import (
    AgentNotFoundError,
    InvocationOrchestrator,
    InvocationResult,
    InvocationState,
)

__all__ = [
    "AgentNotFoundError",
    "ArtifactCheck",
    "ArtifactLocator",
    "InvocationOrchestrator",
    "InvocationResult",
    "InvocationState",
]
