from __future__ import annotations

import asyncio
import json
from itertools import count
from pathlib import Path
from types import SimpleNamespace

import pytest

from overseer_mcp.capabilities import CapabilityRegistry, PermissionCache, PermissionEngine
from overseer_mcp.config import OverseerSettings
from overseer_mcp.invocation import ArtifactLocator, InvocationOrchestrator
from overseer_mcp.profiles import AgentProfile
from overseer_mcp.sessions import SessionStore
from overseer_mcp.storage import ExecutionLedger
from overseer_mcp.tasks import TaskTracker
from overseer_mcp.tools import register_tools
from worker_fakes import FakeWorkerRunner


class StubTool:
    def __init__(self, fn, name):
        self.fn = fn
        self.name = name


class StubServer:
    def __init__(self) -> None:
        self._tools: dict[str, StubTool] = {}

    def tool(self, *args, **kwargs):
        provided_name = None
        if args and isinstance(args[0], str):
            provided_name = args[0]
        provided_name = kwargs.get("name", provided_name)

        def decorator(fn):
            tool_name = provided_name or fn.__name__
            tool = StubTool(fn, tool_name)
            self._tools[tool_name] = tool
            return tool

        return decorator


class StubProfileLoader:
    def __init__(self, *profiles: AgentProfile) -> None:
        self._profiles = {profile.id: profile for profile in profiles}

    def load_all(self) -> dict[str, AgentProfile]:
        return dict(self._profiles)


PROFILES = (
    AgentProfile(
        id="backend-agent",
        title="Backend Agent",
        description="Builds APIs",
        role="write-restricted",
        allowed_tools=["Read", "Grep"],
        metadata={"tags": ["backend"]},
    ),
    AgentProfile(
        id="testing-agent",
        role="full-access",
        role_class="validation",
        allowed_tools=["Read", "Bash", "Mystery"],
        artifact="none",
        model="opus",
    ),
)


def build(tmp_path: Path, *, scripts=None, ledger: ExecutionLedger | None = None, with_worker: bool = True):
    ids = count(1)
    settings = OverseerSettings(OVERSEER_DEFAULT_MODEL="sonnet")
    loader = StubProfileLoader(*PROFILES)
    registry = CapabilityRegistry()
    permissions = PermissionEngine(registry, PermissionCache(300))
    sessions = SessionStore(tmp_path / "output_streams", id_factory=lambda: f"prov{next(ids)}")
    artifacts = ArtifactLocator(tmp_path / "reports", tmp_path / "plan_and_progress")
    tracker = TaskTracker(tmp_path / "plan_and_progress")
    worker = FakeWorkerRunner(scripts or [])
    orchestrator = None
    if with_worker:
        orchestrator = InvocationOrchestrator(
            profiles=loader,
            permissions=permissions,
            sessions=sessions,
            worker=worker,
            artifacts=artifacts,
            timeout_for=settings.timeout_for,
            default_model=settings.worker_default_model,
            ledger=ledger,
            run_id_resolver=lambda: "run-1",
        )
    server = StubServer()
    handles = register_tools(
        server,
        profiles=loader,
        settings=settings,
        orchestrator=orchestrator,
        tracker=tracker,
        sessions=sessions,
        permissions=permissions,
        registry=registry,
        artifacts=artifacts,
        ledger=ledger,
    )
    return SimpleNamespace(server=server, handles=handles, worker=worker, tracker=tracker, sessions=sessions)


PLAN_TASKS = [
    {"id": "T1", "designated_agent": "backend-agent", "description": "API"},
    {"id": "T2", "designated_agent": "testing-agent", "dependencies": ["T1"]},
]


def test_all_tools_are_registered(tmp_path: Path) -> None:
    env = build(tmp_path)

    assert set(env.server._tools) == {
        "invoke_agent",
        "list_agents",
        "create_plan",
        "mark_task_in_progress",
        "mark_task_completed",
        "find_in_progress_task",
        "task_progress",
        "ready_tasks",
        "list_sessions",
        "validate_agent_tools",
        "query_executions",
        "put_summary",
        "get_summary",
    }


def test_invoke_agent_round_trip_with_summary_tool(tmp_path: Path) -> None:
    holder: dict[str, SimpleNamespace] = {}

    def agent_writes_summary() -> None:
        holder["env"].handles.put_summary.fn("w1", "backend-agent", {"status": "done", "files": ["api.py"]})

    env = build(
        tmp_path,
        scripts=[
            [
                {"type": "system", "subtype": "init", "session_id": "w1"},
                {"type": "assistant", "message": {"content": [{"type": "text", "text": "Endpoint ready"}]}},
                agent_writes_summary,
                {"type": "result", "subtype": "success", "result": "ok"},
            ]
        ],
    )
    holder["env"] = env

    payload = asyncio.run(env.handles.invoke_agent.fn(agent_name="backend-agent", prompt="Add endpoint"))

    assert payload["success"] is True
    assert payload["session_id"] == "w1"
    assert payload["output"] == "Endpoint ready"
    assert payload["artifact_found"] is True
    assert payload["states"][-1] == "finalized"
    assert env.worker.invocations[0]["capabilities"].model == "sonnet"

    summary = env.handles.get_summary.fn(session_id="w1", agent_name="backend-agent")
    assert summary["summary"]["status"] == "done"
    assert summary["summary"]["sessionId"] == "w1"

    listed = env.handles.list_sessions.fn()
    assert listed["total"] == 1
    assert listed["sessions"][0]["session_id"] == "w1"


def test_invoke_agent_rejects_bad_input(tmp_path: Path) -> None:
    env = build(tmp_path)

    with pytest.raises(ValueError):
        asyncio.run(env.handles.invoke_agent.fn(agent_name="backend-agent", prompt="   "))
    with pytest.raises(ValueError, match="Available agents"):
        asyncio.run(env.handles.invoke_agent.fn(agent_name="ghost", prompt="boo"))
    with pytest.raises(ValueError, match="not found"):
        asyncio.run(
            env.handles.invoke_agent.fn(agent_name="backend-agent", prompt="resume", continue_session_id="nope")
        )


def test_invoke_agent_without_worker(tmp_path: Path) -> None:
    env = build(tmp_path, with_worker=False)

    with pytest.raises(RuntimeError):
        asyncio.run(env.handles.invoke_agent.fn(agent_name="backend-agent", prompt="hi"))


def test_list_agents_reports_profiles(tmp_path: Path) -> None:
    env = build(tmp_path)

    agents = env.handles.list_agents.fn()

    assert [agent["id"] for agent in agents] == ["backend-agent", "testing-agent"]
    backend, testing = agents
    assert backend["title"] == "Backend Agent"
    assert backend["model"] == "sonnet"
    assert backend["tags"] == ["backend"]
    assert testing["model"] == "opus"
    assert testing["role_class"] == "validation"


def test_plan_lifecycle_through_tools(tmp_path: Path, chroma_client) -> None:
    ledger = ExecutionLedger(tmp_path / "chroma", client_factory=lambda: chroma_client)
    env = build(tmp_path, ledger=ledger)

    created = env.handles.create_plan.fn(task_description="Ship", tasks=PLAN_TASKS, run_id="run-7")
    assert created["task_ids"] == ["T1", "T2"]
    assert Path(created["plan_file"]).exists()

    assert [task["id"] for task in env.handles.ready_tasks.fn(run_id="run-7")["tasks"]] == ["T1"]

    claimed = env.handles.mark_task_in_progress.fn(task_id="T1", run_id="run-7")
    again = env.handles.mark_task_in_progress.fn(task_id="T1", run_id="run-7")
    assert claimed["success"] is True
    assert claimed["task"]["state"] == "in_progress"
    assert again == {"success": False, "run_id": "run-7", "task_id": "T1", "task": None}
    assert env.handles.find_in_progress_task.fn(run_id="run-7")["task"]["id"] == "T1"

    completed = env.handles.mark_task_completed.fn(
        task_id="T1",
        run_id="run-7",
        agent_session_id="w1",
        files_modified=["api.py"],
        summary="done",
    )
    assert completed["success"] is True
    assert completed["task"]["files_modified"] == ["api.py"]

    progress = env.handles.task_progress.fn(run_id="run-7")
    assert progress["revision"] == 2
    assert progress["counts"]["completed"] == 1
    assert env.handles.find_in_progress_task.fn(run_id="run-7")["task"] is None

    transitions = ledger.fetch_session_events("run::run-7")
    assert [event.metadata["state"] for event in transitions] == ["in_progress", "completed"]


def test_create_plan_rejections(tmp_path: Path) -> None:
    env = build(tmp_path)
    env.handles.create_plan.fn(task_description="Ship", tasks=PLAN_TASKS, run_id="run-1")

    with pytest.raises(ValueError, match="already has a plan"):
        env.handles.create_plan.fn(task_description="Ship", tasks=PLAN_TASKS, run_id="run-1")
    with pytest.raises(ValueError, match="Dependency cycle"):
        env.handles.create_plan.fn(
            task_description="Loop",
            tasks=[
                {"id": "A", "designated_agent": "x", "dependencies": ["B"]},
                {"id": "B", "designated_agent": "x", "dependencies": ["A"]},
            ],
            run_id="run-2",
        )
    with pytest.raises(ValueError):
        env.handles.task_progress.fn(run_id="run-404")


def test_validate_agent_tools_for_profile(tmp_path: Path) -> None:
    env = build(tmp_path)

    report = env.handles.validate_agent_tools.fn(agent_name="testing-agent")

    assert report["role"] == "full-access"
    assert report["report"]["valid"] is False
    assert report["report"]["unknown_allowed"] == ["Mystery"]
    assert "Bash tool requires the full-access role" not in report["report"]["recommendations"]
    assert report["statistics"]["allowed_count"] >= 6
    assert report["registry"]["categories"] == 13

    with pytest.raises(ValueError):
        env.handles.validate_agent_tools.fn(agent_name="ghost")


def test_validate_ad_hoc_tool_list(tmp_path: Path) -> None:
    env = build(tmp_path)

    report = env.handles.validate_agent_tools.fn(allowed_tools=["Read", "Bash"], role="read-only")

    assert report["report"]["valid"] is True
    assert "Bash tool requires the full-access role" in report["report"]["recommendations"]


def test_query_executions(tmp_path: Path, chroma_client) -> None:
    ledger = ExecutionLedger(tmp_path / "chroma", client_factory=lambda: chroma_client)
    env = build(
        tmp_path,
        ledger=ledger,
        scripts=[
            [
                {"type": "system", "subtype": "init", "session_id": "t1"},
                {"type": "result", "subtype": "success", "result": "tests pass"},
            ]
        ],
    )
    asyncio.run(env.handles.invoke_agent.fn(agent_name="testing-agent", prompt="Run tests"))

    by_agent = env.handles.query_executions.fn(agent_name="testing-agent")
    by_session = env.handles.query_executions.fn(session_id="t1")

    assert by_agent["executions"][0]["session_id"] == "t1"
    assert by_agent["stats"]["executions"] == 1
    assert by_agent["stats"]["success_rate"] == 100.0
    assert [event["event_type"] for event in by_session["events"]] == ["execution_started", "execution_finished"]


def test_query_executions_without_ledger(tmp_path: Path) -> None:
    env = build(tmp_path)

    with pytest.raises(RuntimeError):
        env.handles.query_executions.fn()


def test_put_summary_accepts_plain_text(tmp_path: Path) -> None:
    env = build(tmp_path)

    stored = env.handles.put_summary.fn(session_id="s-1", agent_name="backend-agent", summary="All done")

    document = json.loads(Path(stored["path"]).read_text(encoding="utf-8"))
    assert document == {"sessionId": "s-1", "agentName": "backend-agent", "summary": "All done"}
    with pytest.raises(ValueError):
        env.handles.put_summary.fn(session_id="../x", agent_name="backend-agent", summary={})
    with pytest.raises(ValueError):
        env.handles.get_summary.fn(session_id="missing")


@pytest.mark.parametrize("agent_name", ["../../escaped", "..", "nested/agent", "ghost-agent"])
def test_put_summary_stays_inside_reports_tree(tmp_path: Path, agent_name: str) -> None:
    env = build(tmp_path)

    with pytest.raises(ValueError):
        env.handles.put_summary.fn(session_id="s1", agent_name=agent_name, summary={"a": 1})

    written = [path for path in tmp_path.rglob("*-summary.json")]
    assert written == []
    with pytest.raises(ValueError):
        env.handles.get_summary.fn(session_id="s1", agent_name="../../escaped")
