from __future__ import annotations

import json
from pathlib import Path

import pytest

from overseer_mcp import __version__
from overseer_mcp.capabilities import PermissionCache
from overseer_mcp.config import OverseerSettings
from overseer_mcp.profiles import ProfileLoader
from overseer_mcp.server import build_status_payload, create_server, detect_interrupted_tasks
from overseer_mcp.sessions import SessionStore
from overseer_mcp.storage import ExecutionLedger
from overseer_mcp.tasks import TaskTracker
from worker_fakes import FakeWorkerRunner


def make_settings(tmp_path: Path) -> OverseerSettings:
    profiles_dir = tmp_path / "profiles"
    profiles_dir.mkdir()
    (profiles_dir / "linter.yml").write_text(
        "id: linter\nrole: read-only\nartifact: none\nallowed_tools: [Read]\n", encoding="utf-8"
    )
    return OverseerSettings(
        OVERSEER_OUTPUT_STREAMS_PATH=str(tmp_path / "output_streams"),
        OVERSEER_REPORTS_PATH=str(tmp_path / "reports"),
        OVERSEER_PLAN_PROGRESS_PATH=str(tmp_path / "plan_and_progress"),
        CHROMA_PERSIST_PATH=str(tmp_path / "chroma"),
        OVERSEER_PROFILE_PATHS=[str(profiles_dir)],
    )


def interrupted_tracker(base: Path) -> TaskTracker:
    tracker = TaskTracker(base)
    tracker.create_plan("run-1", "Ship", [{"id": "T1", "designated_agent": "backend-agent"}])
    tracker.mark_in_progress("T1", "run-1")
    return tracker


def test_detect_interrupted_tasks_records_ledger_event(tmp_path: Path, chroma_client, caplog) -> None:
    tracker = interrupted_tracker(tmp_path)
    ledger = ExecutionLedger(tmp_path / "chroma", client_factory=lambda: chroma_client)

    with caplog.at_level("WARNING", logger="overseer_mcp.server"):
        interrupted = detect_interrupted_tasks(tracker, ledger)

    assert [(entry["run_id"], entry["task_id"]) for entry in interrupted] == [("run-1", "T1")]
    assert interrupted[0]["started_at"] is not None
    assert any("left in progress" in record.getMessage() for record in caplog.records)
    events = ledger.search_events(filters={"event_type": "task_interrupted"})
    assert events[0].metadata["task_id"] == "T1"


def test_detect_interrupted_tasks_without_ledger(tmp_path: Path) -> None:
    assert detect_interrupted_tasks(TaskTracker(tmp_path), None) == []


def test_build_status_payload(tmp_path: Path) -> None:
    settings = make_settings(tmp_path)
    tracker = interrupted_tracker(settings.plan_progress_path)
    cache = PermissionCache(120)

    payload = build_status_payload(
        settings=settings,
        profile_loader=ProfileLoader(settings.profile_paths),
        worker_metadata={"available": True, "version": "worker 1.0", "error": None},
        ledger_metadata={"available": False, "error": "offline"},
        tracker=tracker,
        sessions=SessionStore(settings.output_streams_path),
        permission_cache=cache,
        interrupted=[{"run_id": "run-1", "task_id": "T1"}],
        request_id="req-1",
    )

    assert payload["server_version"] == __version__
    assert payload["profiles"] == {"count": 1, "ids": ["linter"], "error": None}
    assert payload["worker"]["version"] == "worker 1.0"
    assert payload["worker"]["timeouts"] == {"validation": 900.0, "development": 3600.0}
    assert payload["storage"]["ledger"]["error"] == "offline"
    assert payload["sessions"]["count"] == 0
    assert payload["tasks"]["recent_runs"][0]["counts"]["in_progress"] == 1
    assert payload["tasks"]["interrupted"][0]["task_id"] == "T1"
    assert payload["permissions"] == {"cache_entries": 0, "cache_ttl": 120}
    assert payload["request_id"] == "req-1"
    json.dumps(payload)


def test_build_status_payload_reports_profile_errors(tmp_path: Path) -> None:
    settings = make_settings(tmp_path)
    (settings.profile_paths[0] / "broken.yml").write_text("id: broken\nartifact: novel\n", encoding="utf-8")

    payload = build_status_payload(
        settings=settings,
        profile_loader=ProfileLoader(settings.profile_paths),
        worker_metadata={},
        ledger_metadata={},
        tracker=TaskTracker(settings.plan_progress_path),
        sessions=SessionStore(settings.output_streams_path),
        permission_cache=PermissionCache(1),
        interrupted=[],
    )

    assert payload["profiles"]["count"] == 0
    assert "broken.yml" in payload["profiles"]["error"]


def test_create_server_wires_components(tmp_path: Path, chroma_client) -> None:
    settings = make_settings(tmp_path)
    interrupted_tracker(settings.plan_progress_path)

    server = create_server(
        settings,
        worker_runner=FakeWorkerRunner(),
        ledger_client_factory=lambda: chroma_client,
    )

    assert server.worker_metadata["available"] is True
    assert server.worker_metadata["version"] == "fake-worker 1.0"
    assert server.ledger_metadata["available"] is True
    assert server.orchestrator is not None
    assert [entry["task_id"] for entry in server.interrupted_tasks] == ["T1"]
    assert server.ledger.search_events(filters={"event_type": "task_interrupted"})
    agents = server.tool_handles.list_agents.fn()
    assert [agent["id"] for agent in agents] == ["linter"]


def test_create_server_without_ledger(tmp_path: Path) -> None:
    from overseer_mcp.storage import LedgerUnavailableError

    settings = make_settings(tmp_path)

    def unavailable():
        raise LedgerUnavailableError("chromadb package is not installed")

    server = create_server(settings, worker_runner=FakeWorkerRunner(), ledger_client_factory=unavailable)

    assert server.ledger is None
    assert server.ledger_metadata["error"] == "chromadb package is not installed"
    with pytest.raises(RuntimeError):
        server.tool_handles.query_executions.fn()
