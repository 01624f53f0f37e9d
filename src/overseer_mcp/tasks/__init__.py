"""Task plans, progress and dependency tracking."""

from .errors import (
    DependencyCycleError,
    PlanExistsError,
    PlanNotFoundError,
    PlanValidationError,
    TaskTrackerError,
)
from .graph import find_cycle, ready_tasks, validate_plan_tasks
from .models import PlanDocument, ProgressDocument, Task, TaskSpec, TaskState
from .runs import resolve_run_id, validate_run_id
from .tracker import PLAN_FILE, PROGRESS_FILE, TaskTracker

__all__ = [
    "DependencyCycleError",
    "PLAN_FILE",
    "PROGRESS_FILE",
    "PlanDocument",
    "PlanExistsError",
    "PlanNotFoundError",
    "PlanValidationError",
    "ProgressDocument",
    "Task",
    "TaskSpec",
    "TaskState",
    "TaskTracker",
    "TaskTrackerError",
    "find_cycle",
    "ready_tasks",
    "resolve_run_id",
    "validate_plan_tasks",
    "validate_run_id",
]
