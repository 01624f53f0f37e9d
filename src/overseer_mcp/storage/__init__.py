"""Storage abstractions for Overseer MCP."""

from .chroma import ExecutionLedger, LedgerEvent, LedgerUnavailableError
from .models import AgentStats, ExecutionRecord

__all__ = [
    "AgentStats",
    "ExecutionLedger",
    "ExecutionRecord",
    "LedgerEvent",
    "LedgerUnavailableError",
]
