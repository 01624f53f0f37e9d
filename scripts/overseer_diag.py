"""Overseer MCP diagnostics CLI."""

from __future__ import annotations

import argparse
import json
from dataclasses import asdict

from overseer_mcp.config import OverseerSettings
from overseer_mcp.sessions import SessionStore
from overseer_mcp.storage import ExecutionLedger, LedgerUnavailableError
from overseer_mcp.tasks import PlanNotFoundError, TaskTracker


def load_ledger(settings: OverseerSettings) -> ExecutionLedger:
    ledger = ExecutionLedger(settings.chroma_persist_path)
    try:
        ledger.ping()
    except LedgerUnavailableError as exc:
        print(f"Chroma unavailable: {exc}")
        raise SystemExit(1)
    return ledger


def load_tracker(settings: OverseerSettings) -> TaskTracker:
    return TaskTracker(settings.plan_progress_path)


def load_sessions(settings: OverseerSettings) -> SessionStore:
    return SessionStore(settings.output_streams_path)


def cmd_sessions(args: argparse.Namespace) -> None:
    store = load_sessions(OverseerSettings())
    summaries = store.list_sessions()
    if args.agent:
        summaries = [summary for summary in summaries if summary.agent_name == args.agent]
    if args.json:
        print(json.dumps([asdict(summary) for summary in summaries], indent=2, default=str))
        return
    for summary in summaries:
        print(
            f"{summary.session_id} [{summary.agent_name}] "
            f"{summary.message_count} messages, updated {summary.last_updated.isoformat()}"
        )


def cmd_runs(args: argparse.Namespace) -> None:
    tracker = load_tracker(OverseerSettings())
    for run_id in tracker.list_runs():
        counts = tracker.load_progress(run_id).counts()
        print(f"{run_id} {counts['completed']}/{counts['total']} completed, {counts['in_progress']} in progress")


def cmd_tasks(args: argparse.Namespace) -> None:
    tracker = load_tracker(OverseerSettings())
    try:
        progress = tracker.load_progress(args.run_id)
    except PlanNotFoundError as exc:
        print(str(exc))
        raise SystemExit(1)
    if args.json:
        print(progress.model_dump_json(indent=2))
        return
    ready = {task.id for task in tracker.ready_tasks(args.run_id)}
    for task in progress.tasks:
        marker = " (ready)" if task.id in ready else ""
        deps = ", ".join(task.dependencies) or "-"
        print(f"{task.id} [{task.state}] {task.designated_agent} deps: {deps}{marker}")


def cmd_executions(args: argparse.Namespace) -> None:
    ledger = load_ledger(OverseerSettings())
    records = ledger.list_executions(args.agent, limit=args.limit)
    print(json.dumps([asdict(record) for record in records], indent=2, default=str))


def cmd_metrics(args: argparse.Namespace) -> None:
    settings = OverseerSettings()
    ledger = load_ledger(settings)
    tracker = load_tracker(settings)

    records = ledger.list_executions()
    agents = sorted({record.agent_name for record in records})
    per_agent = {}
    for agent in agents:
        stats = ledger.agent_stats(agent)
        per_agent[agent] = {**asdict(stats), "success_rate": stats.success_rate}

    transitions = ledger.search_events(filters={"event_type": "task_transition"})
    interrupted = ledger.search_events(filters={"event_type": "task_interrupted"})

    metrics = {
        "executions_total": len(records),
        "failures_total": sum(1 for record in records if not record.success),
        "artifact_misses": sum(1 for record in records if record.artifact_found is False),
        "corrective_attempts": sum(1 for record in records if record.corrective_attempted),
        "agents": per_agent,
        "task_transitions": len(transitions),
        "interrupted_tasks": len(interrupted),
        "runs": len(tracker.list_runs()),
    }

    print(json.dumps(metrics, indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Overseer MCP diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_sessions = sub.add_parser("sessions", help="List stored agent sessions")
    p_sessions.add_argument("--agent")
    p_sessions.add_argument("--json", action="store_true", help="Output JSON")
    p_sessions.set_defaults(func=cmd_sessions)

    p_runs = sub.add_parser("runs", help="List orchestration runs with progress counts")
    p_runs.set_defaults(func=cmd_runs)

    p_tasks = sub.add_parser("tasks", help="Show the tasks of a run")
    p_tasks.add_argument("run_id")
    p_tasks.add_argument("--json", action="store_true", help="Output JSON")
    p_tasks.set_defaults(func=cmd_tasks)

    p_executions = sub.add_parser("executions", help="List recorded agent executions")
    p_executions.add_argument("--agent")
    p_executions.add_argument(
        "--limit",
        type=int,
        default=None,
        help="If provided, show only the latest N executions",
    )
    p_executions.set_defaults(func=cmd_executions)

    p_metrics = sub.add_parser("metrics", help="Show execution and task metrics")
    p_metrics.set_defaults(func=cmd_metrics)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
