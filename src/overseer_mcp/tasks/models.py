"""Plan and progress documents for orchestration runs."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator

TaskState = Literal["pending", "in_progress", "completed"]


class TaskSpec(BaseModel):
    """Task as declared by the planner."""

    id: str
    designated_agent: str
    description: str = ""
    dependencies: list[str] = Field(default_factory=list)
    files_to_modify: list[str] = Field(default_factory=list)

    @field_validator("id", "designated_agent")
    @classmethod
    def _require_text(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("must not be empty")
        return normalized

    @field_validator("dependencies", mode="before")
    @classmethod
    def _coerce_dependencies(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value


class Task(TaskSpec):
    """Task plus live state, as tracked in the progress document."""

    state: TaskState = "pending"
    started_at: datetime | None = None
    completed_at: datetime | None = None
    agent_session_id: str | None = None
    files_modified: list[str] | None = None
    summary: str | None = None


class PlanDocument(BaseModel):
    run_id: str
    task_description: str
    synopsis: str = ""
    created_at: datetime
    tasks: list[TaskSpec]


class ProgressDocument(BaseModel):
    run_id: str
    plan_file: str
    created_at: datetime
    last_updated: datetime
    revision: int = 0
    tasks: list[Task]

    def task(self, task_id: str) -> Task | None:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def counts(self) -> dict[str, int]:
        counts = {"pending": 0, "in_progress": 0, "completed": 0}
        for task in self.tasks:
            counts[task.state] += 1
        counts["total"] = len(self.tasks)
        return counts


__all__ = ["PlanDocument", "ProgressDocument", "Task", "TaskSpec", "TaskState"]
