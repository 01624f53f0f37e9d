"""Data models for the execution ledger."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(slots=True)
class ExecutionRecord:
    session_id: str
    agent_name: str
    finished_at: datetime
    success: bool
    artifact_found: bool | None
    corrective_attempted: bool
    message_count: int
    duration_seconds: float
    run_id: str | None = None
    task_id: str | None = None
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class AgentStats:
    agent_name: str
    executions: int
    successes: int
    failures: int
    artifact_misses: int
    corrective_attempts: int
    average_duration_seconds: float

    @property
    def success_rate(self) -> float:
        return round(self.successes / self.executions * 100, 2) if self.executions else 0.0


__all__ = ["AgentStats", "ExecutionRecord"]
