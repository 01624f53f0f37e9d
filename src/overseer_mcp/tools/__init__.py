"""Tool registration for Overseer MCP."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from typing import Any

from fastmcp import Context, FastMCP

from ..capabilities import CapabilityRegistry, PermissionEngine
from ..config import OverseerSettings
from ..invocation import AgentNotFoundError, ArtifactLocator, InvocationOrchestrator
from ..profiles import ProfileLoader
from ..sessions import SessionError, SessionStore, validate_session_id
from ..storage import ExecutionLedger
from ..tasks import PlanExistsError, Task, TaskTracker, TaskTrackerError, resolve_run_id

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolHandles:
    invoke_agent: Any
    list_agents: Any
    create_plan: Any
    mark_task_in_progress: Any
    mark_task_completed: Any
    find_in_progress_task: Any
    task_progress: Any
    ready_tasks: Any
    list_sessions: Any
    validate_agent_tools: Any
    query_executions: Any
    put_summary: Any
    get_summary: Any


def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Log through the MCP context logger when available, else the module logger."""

    payload = dict(extra or {})

    if context is not None:
        ctx_logger = getattr(context, "logger", None)
        if ctx_logger is not None:
            log_method = getattr(ctx_logger, level, None)
            if callable(log_method):
                log_method(message, extra=payload)
                return

    fallback = getattr(logger, level, logger.info)
    fallback(message, extra=payload)


def _task_payload(task: Task | None) -> dict[str, Any] | None:
    if task is None:
        return None
    return task.model_dump(mode="json")


def register_tools(
    server: FastMCP,
    *,
    profiles: ProfileLoader,
    settings: OverseerSettings,
    orchestrator: InvocationOrchestrator | None,
    tracker: TaskTracker,
    sessions: SessionStore,
    permissions: PermissionEngine,
    registry: CapabilityRegistry,
    artifacts: ArtifactLocator,
    ledger: ExecutionLedger | None,
) -> ToolHandles:
    """Register Overseer's MCP tools on the server."""

    def _record_transition(run_id: str, task: Task) -> None:
        if ledger is None:
            return
        ledger.record_task_transition(
            run_id=run_id,
            task_id=task.id,
            state=task.state,
            agent_session_id=task.agent_session_id,
            summary=task.summary,
        )

    async def _invoke_agent(
        agent_name: str,
        prompt: str,
        continue_session_id: str | None = None,
        run_id: str | None = None,
        task_id: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Invoke an agent through the worker and return its finalized result."""

        if orchestrator is None:
            raise RuntimeError("Worker CLI is unavailable; cannot invoke agents")
        if not prompt or not prompt.strip():
            raise ValueError("prompt must not be empty")

        try:
            result = await orchestrator.invoke(
                agent_name,
                prompt,
                continue_session_id,
                run_id=run_id,
                task_id=task_id,
            )
        except AgentNotFoundError as exc:
            raise ValueError(str(exc)) from exc
        except SessionError as exc:
            _emit_log(
                context,
                "error",
                "Session error",
                extra={"agent": agent_name, "session_id": exc.session_id, "error": str(exc)},
            )
            raise ValueError(str(exc)) from exc

        _emit_log(
            context,
            "info" if result.success else "warning",
            "Agent invocation finished",
            extra={
                "agent": agent_name,
                "session_id": result.session_id,
                "success": result.success,
                "artifact_found": result.artifact_found,
                "corrective_attempted": result.corrective_attempted,
            },
        )
        return result.to_payload()

    def _list_agents(context: Context | None = None) -> list[dict[str, Any]]:
        """List available agent profiles."""

        catalog = [
            {
                "id": profile.id,
                "title": profile.display_title,
                "description": profile.description,
                "role": profile.role,
                "role_class": profile.role_class,
                "artifact": profile.artifact,
                "allowed_tools": profile.allowed_tools,
                "model": profile.model or settings.worker_default_model,
                "tags": profile.metadata.get("tags", []),
            }
            for profile in sorted(profiles.load_all().values(), key=lambda item: item.id)
        ]

        _emit_log(context, "debug", "Listing agent profiles", extra={"count": len(catalog)})

        return catalog

    tool_invoke = server.tool(
        name="invoke_agent",
        description=(
            "Invoke a configured agent with a prompt. Pass continue_session_id to resume a "
            "previous session. Returns the session id, output, artifact status and transcript path."
        ),
        annotations={
            "safety": {
                "level": "caution",
                "notes": "Agents run with the tool permissions of their security role",
            }
        },
    )(_invoke_agent)

    tool_list = server.tool(
        name="list_agents",
        description="List agent profiles with their role, timeout class and required artifact.",
    )(_list_agents)

    def _create_plan(
        task_description: str,
        tasks: list[dict[str, Any]],
        synopsis: str = "",
        run_id: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Create the write-once plan and initial progress document for a run."""

        effective_run_id = run_id or resolve_run_id()
        try:
            plan = tracker.create_plan(effective_run_id, task_description, tasks, synopsis=synopsis)
        except PlanExistsError as exc:
            raise ValueError(str(exc)) from exc
        except TaskTrackerError as exc:
            _emit_log(context, "warning", "Plan rejected", extra={"run_id": effective_run_id, "error": str(exc)})
            raise ValueError(str(exc)) from exc

        _emit_log(
            context,
            "info",
            "Created plan",
            extra={"run_id": effective_run_id, "task_count": len(plan.tasks)},
        )
        return {
            "run_id": effective_run_id,
            "plan_file": str(tracker.plan_path(effective_run_id)),
            "progress_file": str(tracker.progress_path(effective_run_id)),
            "task_ids": [task.id for task in plan.tasks],
        }

    def _mark_task_in_progress(
        task_id: str,
        run_id: str,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Claim a pending task; returns success=false if it is no longer pending."""

        try:
            success = tracker.mark_in_progress(task_id, run_id)
        except TaskTrackerError as exc:
            raise ValueError(str(exc)) from exc
        task = tracker.get_task(task_id, run_id) if success else None
        if task is not None:
            _record_transition(run_id, task)
        _emit_log(
            context,
            "info" if success else "warning",
            "Mark task in progress",
            extra={"run_id": run_id, "task_id": task_id, "success": success},
        )
        return {"success": success, "run_id": run_id, "task_id": task_id, "task": _task_payload(task)}

    def _mark_task_completed(
        task_id: str,
        run_id: str,
        agent_session_id: str | None = None,
        files_modified: list[str] | None = None,
        summary: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Complete an in-progress task and record its outcome."""

        try:
            success = tracker.mark_completed(
                task_id,
                run_id,
                agent_session_id=agent_session_id,
                files_modified=files_modified,
                summary=summary,
            )
        except TaskTrackerError as exc:
            raise ValueError(str(exc)) from exc
        task = tracker.get_task(task_id, run_id) if success else None
        if task is not None:
            _record_transition(run_id, task)
        _emit_log(
            context,
            "info" if success else "warning",
            "Mark task completed",
            extra={"run_id": run_id, "task_id": task_id, "success": success},
        )
        return {"success": success, "run_id": run_id, "task_id": task_id, "task": _task_payload(task)}

    def _find_in_progress_task(run_id: str, context: Context | None = None) -> dict[str, Any]:
        """Return the task currently in progress for a run, if any."""

        try:
            task = tracker.find_in_progress(run_id)
        except TaskTrackerError as exc:
            raise ValueError(str(exc)) from exc
        _emit_log(
            context,
            "debug",
            "Find in-progress task",
            extra={"run_id": run_id, "task_id": task.id if task else None},
        )
        return {"run_id": run_id, "task": _task_payload(task)}

    def _task_progress(run_id: str, context: Context | None = None) -> dict[str, Any]:
        """Return the progress document and state counts for a run."""

        try:
            progress = tracker.load_progress(run_id)
        except TaskTrackerError as exc:
            raise ValueError(str(exc)) from exc
        _emit_log(context, "debug", "Task progress", extra={"run_id": run_id, "revision": progress.revision})
        return {
            "run_id": run_id,
            "revision": progress.revision,
            "last_updated": progress.last_updated.isoformat(),
            "counts": progress.counts(),
            "tasks": [_task_payload(task) for task in progress.tasks],
        }

    def _ready_tasks(run_id: str, context: Context | None = None) -> dict[str, Any]:
        """List pending tasks whose dependencies are completed, in plan order."""

        try:
            ready = tracker.ready_tasks(run_id)
        except TaskTrackerError as exc:
            raise ValueError(str(exc)) from exc
        _emit_log(context, "debug", "Ready tasks", extra={"run_id": run_id, "count": len(ready)})
        return {"run_id": run_id, "tasks": [_task_payload(task) for task in ready]}

    tool_create_plan = server.tool(
        name="create_plan",
        description=(
            "Create the plan for an orchestration run. Each task needs id, designated_agent, "
            "description, dependencies and files_to_modify. Cycles and unknown dependencies are rejected."
        ),
    )(_create_plan)

    tool_mark_in_progress = server.tool(
        name="mark_task_in_progress",
        description="Move a pending task to in_progress. Exactly one concurrent caller succeeds.",
    )(_mark_task_in_progress)

    tool_mark_completed = server.tool(
        name="mark_task_completed",
        description="Move an in_progress task to completed with session id, modified files and summary.",
    )(_mark_task_completed)

    tool_find_in_progress = server.tool(
        name="find_in_progress_task",
        description="Find the in-progress task of a run, for example after a crash.",
    )(_find_in_progress_task)

    tool_task_progress = server.tool(
        name="task_progress",
        description="Show the progress document of a run with per-state counts.",
    )(_task_progress)

    tool_ready_tasks = server.tool(
        name="ready_tasks",
        description="List tasks of a run that are ready to start.",
    )(_ready_tasks)

    def _list_sessions(limit: int = 20, context: Context | None = None) -> dict[str, Any]:
        """List stored sessions, most recently updated first."""

        summaries = sessions.list_sessions()
        payload = [
            {
                "session_id": summary.session_id,
                "agent_name": summary.agent_name,
                "created_at": summary.created_at.isoformat(),
                "last_updated": summary.last_updated.isoformat(),
                "message_count": summary.message_count,
            }
            for summary in summaries[: max(limit, 0)]
        ]
        _emit_log(context, "debug", "Listed sessions", extra={"count": len(payload)})
        return {"total": len(summaries), "sessions": payload}

    def _validate_agent_tools(
        agent_name: str | None = None,
        allowed_tools: list[str] | None = None,
        denied_tools: list[str] | None = None,
        role: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Validate an agent's tool configuration against the capability registry."""

        artifact: str | None = None
        if agent_name:
            profile_map = profiles.load_all()
            if agent_name not in profile_map:
                raise ValueError(f"Unknown agent '{agent_name}'")
            profile = profile_map[agent_name]
            allowed_tools = profile.allowed_tools if allowed_tools is None else allowed_tools
            denied_tools = profile.denied_tools if denied_tools is None else denied_tools
            role = role or profile.role
            artifact = profile.artifact

        report = permissions.validate_tool_configuration(allowed_tools or [], denied_tools or [], role)
        statistics = permissions.tool_statistics(allowed_tools or [], role, artifact=artifact)
        _emit_log(
            context,
            "debug",
            "Validated tool configuration",
            extra={"agent": agent_name, "valid": report.valid},
        )
        return {
            "agent_name": agent_name,
            "role": role,
            "report": asdict(report),
            "statistics": asdict(statistics),
            "registry": registry.statistics(),
        }

    def _require_ledger() -> ExecutionLedger:
        if ledger is None:
            raise RuntimeError("Execution ledger is unavailable; install chromadb to enable it")
        return ledger

    def _query_executions(
        agent_name: str | None = None,
        session_id: str | None = None,
        query: str | None = None,
        limit: int = 20,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Query the execution ledger by agent, session or keyword."""

        store = _require_ledger()
        if session_id or query:
            events = store.search_events(query, filters={"session_id": session_id}, limit=limit)
            payload: dict[str, Any] = {
                "events": [
                    {
                        "event_id": event.id,
                        "session_id": event.session_id,
                        "event_type": event.event_type,
                        "timestamp": event.timestamp.isoformat(),
                        "metadata": event.metadata,
                        "excerpt": event.document[:200],
                    }
                    for event in events
                ]
            }
        else:
            records = store.list_executions(agent_name, limit=limit)
            payload = {
                "executions": [
                    {**asdict(record), "finished_at": record.finished_at.isoformat()} for record in records
                ]
            }
            if agent_name:
                stats = store.agent_stats(agent_name)
                payload["stats"] = {**asdict(stats), "success_rate": stats.success_rate}
        _emit_log(
            context,
            "debug",
            "Queried executions",
            extra={"agent": agent_name, "session_id": session_id, "query": query},
        )
        return payload

    tool_list_sessions = server.tool(
        name="list_sessions",
        description="List stored agent sessions with message counts.",
    )(_list_sessions)

    tool_validate = server.tool(
        name="validate_agent_tools",
        description=(
            "Validate an agent's allowed/denied tools: unknown tool names, security "
            "recommendations and permission coverage statistics."
        ),
    )(_validate_agent_tools)

    tool_query_executions = server.tool(
        name="query_executions",
        description="Query recorded agent executions and task transitions from the Chroma ledger.",
    )(_query_executions)

    def _put_summary(
        session_id: str,
        agent_name: str,
        summary: dict[str, Any] | str,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Write an agent's summary report for a session."""

        try:
            validate_session_id(session_id)
        except SessionError as exc:
            raise ValueError(str(exc)) from exc
        if isinstance(summary, str):
            try:
                summary = json.loads(summary)
            except json.JSONDecodeError:
                summary = {"summary": summary}
        if not isinstance(summary, dict):
            summary = {"summary": summary}

        if agent_name not in profiles.load_all():
            raise ValueError(f"Unknown agent '{agent_name}' for a summary report")
        path = artifacts.summary_path(session_id, agent_name)
        path.parent.mkdir(parents=True, exist_ok=True)
        document = {"sessionId": session_id, "agentName": agent_name, **summary}
        path.write_text(json.dumps(document, indent=2, default=str), encoding="utf-8")
        _emit_log(context, "info", "Stored summary report", extra={"session_id": session_id, "agent": agent_name})
        return {"session_id": session_id, "path": str(path)}

    def _get_summary(
        session_id: str,
        agent_name: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Read the summary report an agent produced for a session."""

        try:
            path, content = artifacts.read_summary(validate_session_id(session_id), agent_name)
        except (FileNotFoundError, SessionError) as exc:
            raise ValueError(str(exc)) from exc
        _emit_log(context, "debug", "Read summary report", extra={"session_id": session_id, "path": str(path)})
        return {"session_id": session_id, "path": str(path), "summary": content}

    tool_put_summary = server.tool(
        name="put_summary",
        description="Store the structured summary report an agent must produce at the end of its task.",
    )(_put_summary)

    tool_get_summary = server.tool(
        name="get_summary",
        description="Retrieve the summary report of a session, agent-specific reports first.",
    )(_get_summary)

    return ToolHandles(
        invoke_agent=tool_invoke,
        list_agents=tool_list,
        create_plan=tool_create_plan,
        mark_task_in_progress=tool_mark_in_progress,
        mark_task_completed=tool_mark_completed,
        find_in_progress_task=tool_find_in_progress,
        task_progress=tool_task_progress,
        ready_tasks=tool_ready_tasks,
        list_sessions=tool_list_sessions,
        validate_agent_tools=tool_validate,
        query_executions=tool_query_executions,
        put_summary=tool_put_summary,
        get_summary=tool_get_summary,
    )


__all__ = ["register_tools", "ToolHandles"]
