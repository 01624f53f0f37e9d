"""Dependency graph checks for plans."""

from __future__ import annotations

from collections import Counter
from typing import Iterable, Mapping, Sequence

from .errors import DependencyCycleError, PlanValidationError
from .models import Task, TaskSpec


def find_cycle(graph: Mapping[str, Sequence[str]]) -> list[str] | None:
    """Return one dependency cycle as ``[a, b, ..., a]``, or ``None``."""

    visiting: list[str] = []
    on_path: set[str] = set()
    done: set[str] = set()

    def visit(node: str) -> list[str] | None:
        visiting.append(node)
        on_path.add(node)
        for dependency in graph.get(node, ()):
            if dependency in on_path:
                start = visiting.index(dependency)
                return visiting[start:] + [dependency]
            if dependency not in done:
                cycle = visit(dependency)
                if cycle:
                    return cycle
        on_path.discard(node)
        visiting.pop()
        done.add(node)
        return None

    for node in graph:
        if node not in done:
            cycle = visit(node)
            if cycle:
                return cycle
    return None


def validate_plan_tasks(tasks: Sequence[TaskSpec], *, run_id: str | None = None) -> None:
    if not tasks:
        raise PlanValidationError("Plan must contain at least one task", run_id=run_id)

    duplicates = sorted(task_id for task_id, count in Counter(task.id for task in tasks).items() if count > 1)
    if duplicates:
        raise PlanValidationError(f"Duplicate task ids: {', '.join(duplicates)}", run_id=run_id)

    known = {task.id for task in tasks}
    for task in tasks:
        missing = [dependency for dependency in task.dependencies if dependency not in known]
        if missing:
            raise PlanValidationError(
                f"Task {task.id} depends on unknown task(s): {', '.join(missing)}",
                run_id=run_id,
                task_id=task.id,
            )

    cycle = find_cycle({task.id: task.dependencies for task in tasks})
    if cycle:
        raise DependencyCycleError(cycle, run_id=run_id)


def ready_tasks(tasks: Iterable[Task]) -> list[Task]:
    """Pending tasks whose dependencies are all completed, in plan order."""

    task_list = list(tasks)
    completed = {task.id for task in task_list if task.state == "completed"}
    return [
        task
        for task in task_list
        if task.state == "pending" and all(dependency in completed for dependency in task.dependencies)
    ]


__all__ = ["find_cycle", "ready_tasks", "validate_plan_tasks"]
