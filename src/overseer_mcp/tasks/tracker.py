"""Crash-safe plan and progress tracking for orchestration runs."""

from __future__ import annotations

import logging
import os
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping

from pydantic import BaseModel, ValidationError

from . import graph
from .errors import (
    PlanExistsError,
    PlanNotFoundError,
    PlanValidationError,
    TaskTrackerError,
)
from .models import PlanDocument, ProgressDocument, Task, TaskSpec
from .runs import validate_run_id

logger = logging.getLogger(__name__)

PLAN_FILE = "plan.json"
PROGRESS_FILE = "progress.json"
REVISIONS_DIR = "revisions"

Mutation = Callable[[Task], bool]


def _write_file(path: Path, payload: str) -> None:
    with path.open("w", encoding="utf-8") as handle:
        handle.write(payload)
        handle.flush()
        os.fsync(handle.fileno())


class TaskTracker:
    """Persist plans and progress under ``plan_and_progress/<run_id>/``.

    Every transition is committed as a new revision file created with
    ``os.link``, which fails if another writer committed that revision first.
    ``progress.json`` is a projection of the newest revision and is rolled
    forward on read.
    """

    def __init__(
        self,
        base_dir: Path,
        *,
        clock: Callable[[], datetime] | None = None,
        max_attempts: int = 64,
    ) -> None:
        self._base_dir = Path(base_dir)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._max_attempts = max_attempts

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def run_directory(self, run_id: str) -> Path:
        return self._base_dir / validate_run_id(run_id)

    def plan_path(self, run_id: str) -> Path:
        return self.run_directory(run_id) / PLAN_FILE

    def progress_path(self, run_id: str) -> Path:
        return self.run_directory(run_id) / PROGRESS_FILE

    def create_plan(
        self,
        run_id: str,
        task_description: str,
        tasks: Iterable[TaskSpec | Mapping[str, Any]],
        *,
        synopsis: str = "",
    ) -> PlanDocument:
        validate_run_id(run_id)
        try:
            specs = [task if isinstance(task, TaskSpec) else TaskSpec.model_validate(task) for task in tasks]
        except ValidationError as exc:
            raise PlanValidationError(f"Invalid task definition: {exc}", run_id=run_id) from exc
        graph.validate_plan_tasks(specs, run_id=run_id)

        now = self._clock()
        plan = PlanDocument(
            run_id=run_id,
            task_description=task_description,
            synopsis=synopsis,
            created_at=now,
            tasks=specs,
        )
        run_dir = self.run_directory(run_id)
        (run_dir / REVISIONS_DIR).mkdir(parents=True, exist_ok=True)
        if not self._create_exclusive(run_dir / PLAN_FILE, plan):
            raise PlanExistsError(f"Run {run_id} already has a plan", run_id=run_id)

        progress = ProgressDocument(
            run_id=run_id,
            plan_file=str(run_dir / PLAN_FILE),
            created_at=now,
            last_updated=now,
            revision=0,
            tasks=[Task(**spec.model_dump()) for spec in specs],
        )
        self._create_exclusive(self._revision_path(run_id, 0), progress)
        self._project(run_id, progress)
        logger.info("Created plan", extra={"run_id": run_id, "task_count": len(specs)})
        return plan

    def load_plan(self, run_id: str) -> PlanDocument:
        path = self.plan_path(run_id)
        if not path.exists():
            raise PlanNotFoundError(f"No plan for run {run_id}", run_id=run_id)
        return self._read_model(path, PlanDocument, run_id)

    def load_progress(self, run_id: str) -> ProgressDocument:
        revision = self._latest_revision(run_id)
        if revision is None:
            path = self.progress_path(run_id)
            if not path.exists():
                raise PlanNotFoundError(f"No progress document for run {run_id}", run_id=run_id)
            return self._read_model(path, ProgressDocument, run_id)

        document = self._read_model(self._revision_path(run_id, revision), ProgressDocument, run_id)
        projected = self._projected_revision(run_id)
        if projected is None or projected < revision:
            logger.info(
                "Rolling progress forward",
                extra={"run_id": run_id, "from_revision": projected, "to_revision": revision},
            )
            self._project(run_id, document)
        return document

    def list_runs(self) -> list[str]:
        if not self._base_dir.exists():
            return []
        runs = [
            entry.name
            for entry in self._base_dir.iterdir()
            if entry.is_dir() and (entry / PLAN_FILE).exists()
        ]
        return sorted(runs, key=lambda name: (self._base_dir / name / PLAN_FILE).stat().st_mtime, reverse=True)

    def get_task(self, task_id: str, run_id: str) -> Task | None:
        return self.load_progress(run_id).task(task_id)

    def find_in_progress(self, run_id: str) -> Task | None:
        try:
            progress = self.load_progress(run_id)
        except PlanNotFoundError:
            return None
        for task in progress.tasks:
            if task.state == "in_progress":
                return task
        return None

    def in_progress_tasks(self) -> list[tuple[str, Task]]:
        """Return in-progress tasks across all runs, for crash recovery reports."""

        found: list[tuple[str, Task]] = []
        for run_id in self.list_runs():
            task = self.find_in_progress(run_id)
            if task is not None:
                found.append((run_id, task))
        return found

    def ready_tasks(self, run_id: str) -> list[Task]:
        return graph.ready_tasks(self.load_progress(run_id).tasks)

    def mark_in_progress(self, task_id: str, run_id: str) -> bool:
        def start(task: Task) -> bool:
            if task.state != "pending":
                logger.warning(
                    "Task is not pending",
                    extra={"run_id": run_id, "task_id": task_id, "state": task.state},
                )
                return False
            task.state = "in_progress"
            task.started_at = self._clock()
            return True

        return self._transition(run_id, task_id, start)

    def mark_completed(
        self,
        task_id: str,
        run_id: str,
        *,
        agent_session_id: str | None = None,
        files_modified: Iterable[str] | None = None,
        summary: str | None = None,
    ) -> bool:
        modified = list(files_modified or [])

        def complete(task: Task) -> bool:
            if task.state != "in_progress":
                logger.warning(
                    "Task is not in progress",
                    extra={"run_id": run_id, "task_id": task_id, "state": task.state},
                )
                return False
            task.state = "completed"
            task.completed_at = self._clock()
            task.agent_session_id = agent_session_id
            task.files_modified = modified
            task.summary = summary
            return True

        return self._transition(run_id, task_id, complete)

    def _transition(self, run_id: str, task_id: str, mutate: Mutation) -> bool:
        try:
            validate_run_id(run_id)
        except TaskTrackerError:
            logger.warning("Invalid run id", extra={"run_id": run_id, "task_id": task_id})
            return False
        for attempt in range(1, self._max_attempts + 1):
            try:
                progress = self.load_progress(run_id)
            except PlanNotFoundError:
                logger.warning("Run not found", extra={"run_id": run_id, "task_id": task_id})
                return False
            task = progress.task(task_id)
            if task is None:
                logger.warning("Task not found", extra={"run_id": run_id, "task_id": task_id})
                return False
            expected = progress.revision
            if not mutate(task):
                return False
            progress.revision = expected + 1
            progress.last_updated = self._clock()
            if self._create_exclusive(self._revision_path(run_id, progress.revision), progress):
                self._project(run_id, progress)
                logger.info(
                    "Task transitioned",
                    extra={"run_id": run_id, "task_id": task_id, "state": task.state, "revision": progress.revision},
                )
                return True
            logger.debug(
                "Revision conflict, retrying",
                extra={"run_id": run_id, "task_id": task_id, "attempt": attempt},
            )
        logger.warning(
            "Task transition lost every revision race",
            extra={"run_id": run_id, "task_id": task_id, "attempts": self._max_attempts},
        )
        return False

    def _revision_path(self, run_id: str, revision: int) -> Path:
        return self.run_directory(run_id) / REVISIONS_DIR / f"{revision:08d}.json"

    def _latest_revision(self, run_id: str) -> int | None:
        directory = self.run_directory(run_id) / REVISIONS_DIR
        if not directory.exists():
            return None
        revisions = [int(path.stem) for path in directory.glob("*.json") if path.stem.isdigit()]
        return max(revisions) if revisions else None

    def _projected_revision(self, run_id: str) -> int | None:
        path = self.progress_path(run_id)
        if not path.exists():
            return None
        try:
            return self._read_model(path, ProgressDocument, run_id).revision
        except TaskTrackerError:
            return None

    def _create_exclusive(self, path: Path, document: BaseModel) -> bool:
        """Publish ``document`` at ``path`` only if nothing is there yet."""

        tmp_path = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
        _write_file(tmp_path, document.model_dump_json(indent=2))
        try:
            os.link(tmp_path, path)
        except FileExistsError:
            return False
        finally:
            tmp_path.unlink(missing_ok=True)
        return True

    def _project(self, run_id: str, progress: ProgressDocument) -> None:
        path = self.progress_path(run_id)
        tmp_path = path.with_name(f".{PROGRESS_FILE}.{uuid.uuid4().hex}.tmp")
        _write_file(tmp_path, progress.model_dump_json(indent=2))
        os.replace(tmp_path, path)

    @staticmethod
    def _read_model(path: Path, model: type[BaseModel], run_id: str):
        try:
            return model.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as exc:
            raise TaskTrackerError(f"Unreadable document {path}: {exc}", run_id=run_id) from exc


__all__ = ["PLAN_FILE", "PROGRESS_FILE", "REVISIONS_DIR", "TaskTracker"]
