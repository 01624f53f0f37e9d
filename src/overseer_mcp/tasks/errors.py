"""Task tracker exceptions."""

from __future__ import annotations


class TaskTrackerError(RuntimeError):
    """Base class for task tracker errors."""

    def __init__(self, message: str, *, run_id: str | None = None, task_id: str | None = None) -> None:
        super().__init__(message)
        self.run_id = run_id
        self.task_id = task_id


class PlanValidationError(TaskTrackerError):
    """Raised when a plan is rejected at creation time."""


class DependencyCycleError(PlanValidationError):
    """Raised when task dependencies form a cycle."""

    def __init__(self, cycle: list[str], *, run_id: str | None = None) -> None:
        super().__init__(f"Dependency cycle detected: {' -> '.join(cycle)}", run_id=run_id)
        self.cycle = cycle


class PlanExistsError(TaskTrackerError):
    """Raised when a run already has a plan."""


class PlanNotFoundError(TaskTrackerError):
    """Raised when a run has no plan or progress document."""


__all__ = [
    "DependencyCycleError",
    "PlanExistsError",
    "PlanNotFoundError",
    "PlanValidationError",
    "TaskTrackerError",
]
