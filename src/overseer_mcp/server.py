"""FastMCP server bootstrap for Overseer."""

import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional

from fastmcp import Context, FastMCP

from . import __version__
from .capabilities import CapabilityRegistry, PermissionCache, PermissionEngine
from .config import OverseerSettings, get_settings
from .invocation import ArtifactLocator, InvocationOrchestrator
from .profiles import ProfileLoadError, ProfileLoader
from .sessions import SessionError, SessionStore
from .storage import ExecutionLedger, LedgerUnavailableError
from .storage.chroma import ClientProtocol
from .tasks import TaskTracker, TaskTrackerError
from .tools import register_tools
from .worker import WorkerNotFoundError, WorkerRunner

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    """Configure root logging for the Overseer server."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def _run_sync(coro):
    """Execute an async coroutine on a dedicated event loop."""

    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def detect_interrupted_tasks(tracker: TaskTracker, ledger: ExecutionLedger | None) -> list[dict[str, Any]]:
    """Report tasks left in progress by a previous process."""

    interrupted: list[dict[str, Any]] = []
    for run_id, task in tracker.in_progress_tasks():
        entry = {
            "run_id": run_id,
            "task_id": task.id,
            "designated_agent": task.designated_agent,
            "started_at": task.started_at.isoformat() if task.started_at else None,
        }
        interrupted.append(entry)
        logger.warning("Task was left in progress", extra=entry)
        if ledger is not None:
            ledger.record_event(
                session_id=f"run::{run_id}",
                event_type="task_interrupted",
                body=entry,
                metadata={"run_id": run_id, "task_id": task.id},
            )
    return interrupted


def build_status_payload(
    *,
    settings: OverseerSettings,
    profile_loader: ProfileLoader,
    worker_metadata: dict[str, Any],
    ledger_metadata: dict[str, Any],
    tracker: TaskTracker,
    sessions: SessionStore,
    permission_cache: PermissionCache,
    interrupted: list[dict[str, Any]],
    request_id: str | None = None,
) -> dict[str, Any]:
    """Summarize runtime state for the status resource."""

    try:
        profile_ids = sorted(profile_loader.load_all().keys())
        profile_error: str | None = None
    except ProfileLoadError as exc:
        profile_ids = []
        profile_error = str(exc)

    runs: list[dict[str, Any]] = []
    tasks_error: str | None = None
    try:
        for run_id in tracker.list_runs()[:5]:
            progress = tracker.load_progress(run_id)
            runs.append({"run_id": run_id, "revision": progress.revision, "counts": progress.counts()})
    except TaskTrackerError as exc:
        tasks_error = str(exc)

    try:
        session_summaries = sessions.list_sessions()
        sessions_error: str | None = None
    except SessionError as exc:
        session_summaries = []
        sessions_error = str(exc)

    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "server_version": __version__,
        "log_level": settings.log_level,
        "profiles": {
            "count": len(profile_ids),
            "ids": profile_ids,
            "error": profile_error,
        },
        "worker": {
            "path": settings.worker_path,
            "default_model": settings.worker_default_model,
            "timeouts": {
                "validation": settings.validation_timeout,
                "development": settings.development_timeout,
            },
            **worker_metadata,
        },
        "storage": {
            "ledger": ledger_metadata,
            "output_streams": str(settings.output_streams_path),
            "reports": str(settings.reports_path),
            "plan_and_progress": str(settings.plan_progress_path),
        },
        "sessions": {
            "count": len(session_summaries),
            "recent": [
                {"session_id": item.session_id, "agent_name": item.agent_name, "message_count": item.message_count}
                for item in session_summaries[:5]
            ],
            "error": sessions_error,
        },
        "tasks": {
            "recent_runs": runs,
            "interrupted": interrupted,
            "error": tasks_error,
        },
        "permissions": {
            "cache_entries": len(permission_cache),
            "cache_ttl": permission_cache.ttl,
        },
        "request_id": request_id,
    }


def create_server(
    settings: Optional[OverseerSettings] = None,
    worker_runner: WorkerRunner | None = None,
    ledger_client_factory: Callable[[], ClientProtocol] | None = None,
) -> FastMCP:
    """Instantiate the FastMCP server with tools and the status resource."""

    settings = settings or get_settings()

    profile_loader = ProfileLoader(settings.profile_paths)

    worker_metadata: dict[str, Any] = {
        "available": False,
        "version": None,
        "error": None,
    }
    if worker_runner is None:
        try:
            worker_runner = WorkerRunner(Path(settings.worker_path) if settings.worker_path else None)
        except WorkerNotFoundError as exc:
            worker_metadata["error"] = str(exc)
            logger.warning("Worker CLI unavailable", extra={"error": str(exc)})
    if worker_runner is not None:
        worker_metadata["available"] = True
        try:
            version_result = _run_sync(worker_runner.version())
        except OSError as exc:
            worker_metadata["error"] = str(exc)
        else:
            if version_result.ok:
                worker_metadata["version"] = version_result.stdout.strip()
            else:
                worker_metadata["error"] = (
                    version_result.stderr.strip()
                    or f"Worker version command failed with exit code {version_result.returncode}"
                )

    ledger: ExecutionLedger | None = ExecutionLedger(
        settings.chroma_persist_path, client_factory=ledger_client_factory
    )
    ledger_metadata: dict[str, Any] = {
        "available": False,
        "path": str(settings.chroma_persist_path),
        "collection": ledger.collection_name,
        "error": None,
    }
    try:
        ledger.ping()
        ledger_metadata["available"] = True
    except LedgerUnavailableError as exc:
        ledger_metadata["error"] = str(exc)
        ledger = None

    registry = CapabilityRegistry()
    permission_cache = PermissionCache(settings.permission_cache_ttl)
    permissions = PermissionEngine(registry, permission_cache, server_name=settings.mcp_server_name)
    sessions = SessionStore(settings.output_streams_path)
    tracker = TaskTracker(settings.plan_progress_path)
    artifacts = ArtifactLocator(settings.reports_path, settings.plan_progress_path)

    orchestrator: InvocationOrchestrator | None = None
    if worker_runner is not None:
        orchestrator = InvocationOrchestrator(
            profiles=profile_loader,
            permissions=permissions,
            sessions=sessions,
            worker=worker_runner,
            artifacts=artifacts,
            timeout_for=settings.timeout_for,
            default_model=settings.worker_default_model,
            ledger=ledger,
        )

    server = FastMCP(
        name="Overseer MCP",
        version=__version__,
        instructions=(
            "Overseer invokes specialised agents through the worker CLI with per-role tool "
            "permissions, persists their sessions, enforces their output artifacts and tracks "
            "plan tasks. Use create_plan, ready_tasks and mark_task_* to sequence invoke_agent calls."
        ),
    )

    handles = register_tools(
        server,
        profiles=profile_loader,
        settings=settings,
        orchestrator=orchestrator,
        tracker=tracker,
        sessions=sessions,
        permissions=permissions,
        registry=registry,
        artifacts=artifacts,
        ledger=ledger,
    )

    interrupted = detect_interrupted_tasks(tracker, ledger)

    @server.resource(
        "resource://overseer/status",
        name="overseer_status",
        description="Provides the current runtime status for the Overseer MCP server.",
        mime_type="application/json",
        tags={"status", "health"},
    )
    def status_resource(context: Context) -> str:
        """Return a JSON string summarizing basic runtime state."""

        payload = build_status_payload(
            settings=settings,
            profile_loader=profile_loader,
            worker_metadata=worker_metadata,
            ledger_metadata=ledger_metadata,
            tracker=tracker,
            sessions=sessions,
            permission_cache=permission_cache,
            interrupted=interrupted,
            request_id=getattr(context, "request_id", None),
        )
        return json.dumps(payload)

    setattr(server, "profile_loader", profile_loader)
    setattr(server, "worker_runner", worker_runner)
    setattr(server, "worker_metadata", worker_metadata)
    setattr(server, "ledger", ledger)
    setattr(server, "ledger_metadata", ledger_metadata)
    setattr(server, "orchestrator", orchestrator)
    setattr(server, "task_tracker", tracker)
    setattr(server, "session_store", sessions)
    setattr(server, "interrupted_tasks", interrupted)
    setattr(server, "tool_handles", handles)
    return server


def main() -> None:
    """Entry point for running the Overseer MCP server via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level)

    server = create_server(settings)
    logger.info(
        "Launching Overseer MCP server",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "worker_available": getattr(server, "worker_metadata", {}).get("available"),
            "ledger_available": getattr(server, "ledger_metadata", {}).get("available"),
        },
    )
    server.run()


if __name__ == "__main__":
    main()
