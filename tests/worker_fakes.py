from __future__ import annotations

import inspect
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Iterable, Sequence, Union

from overseer_mcp.worker import WorkerCapabilities, WorkerExecutionResult, WorkerMessage, WorkerRunner

ScriptItem = Union[WorkerMessage, dict, BaseException, Callable[[], Any]]


class FakeWorkerRunner(WorkerRunner):
    """Replays scripted message streams, one script per call.

    Script items are yielded when they are messages, raised when they are
    exceptions and called (and awaited, if needed) when they are callables.
    """

    def __init__(self, scripts: Iterable[Sequence[ScriptItem]] | None = None) -> None:  # type: ignore[override]
        self._scripts = [list(script) for script in (scripts or [])]
        self._invocations: list[dict[str, Any]] = []
        self._executable_path = Path("/tmp/fake-worker")

    async def version(self) -> WorkerExecutionResult:  # type: ignore[override]
        return WorkerExecutionResult(args=("fake-worker", "--version"), returncode=0, stdout="fake-worker 1.0", stderr="")

    def invoke(  # type: ignore[override]
        self,
        prompt: str,
        capabilities: WorkerCapabilities,
        resume_id: str | None = None,
    ) -> AsyncIterator[WorkerMessage]:
        self._invocations.append({"prompt": prompt, "capabilities": capabilities, "resume_id": resume_id})
        script = self._scripts.pop(0) if self._scripts else []
        return self._replay(script)

    async def _replay(self, script: list[ScriptItem]) -> AsyncIterator[WorkerMessage]:
        for item in script:
            if isinstance(item, BaseException):
                raise item
            if isinstance(item, WorkerMessage):
                yield item
            elif isinstance(item, dict):
                yield WorkerMessage.model_validate(item)
            elif callable(item):
                outcome = item()
                if inspect.isawaitable(outcome):
                    await outcome

    @property
    def invocations(self) -> list[dict[str, Any]]:
        return self._invocations
