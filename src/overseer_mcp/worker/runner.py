"""Async runner for the external agent worker CLI."""

from __future__ import annotations

import asyncio
import json
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator

from .messages import WorkerMessage
from .utils import build_invoke_args, sanitize_environment

logger = logging.getLogger(__name__)

# Tool results can carry whole files on a single JSON line.
_STREAM_LIMIT = 16 * 1024 * 1024


class WorkerRunnerError(RuntimeError):
    """Base class for worker runner errors."""


class WorkerNotFoundError(WorkerRunnerError):
    """Raised when the worker CLI executable cannot be located."""


class WorkerProcessError(WorkerRunnerError):
    """Raised when the worker process exits unsuccessfully."""

    def __init__(self, returncode: int, stderr: str) -> None:
        detail = stderr.strip().splitlines()[-1] if stderr.strip() else "no stderr output"
        super().__init__(f"Worker exited with code {returncode}: {detail}")
        self.returncode = returncode
        self.stderr = stderr


@dataclass(slots=True)
class WorkerExecutionResult:
    """Holds the outcome of a one-shot worker CLI command."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


@dataclass(frozen=True, slots=True)
class WorkerCapabilities:
    """Capability sets and model handed to the worker for one call."""

    allowed_tools: tuple[str, ...]
    disallowed_tools: tuple[str, ...]
    model: str | None = None


class WorkerRunner:
    """Execute the worker CLI asynchronously and stream its JSON messages."""

    executable_name = "claude"

    def __init__(self, executable: Path | None = None) -> None:
        self._executable_path = self._resolve_executable(executable)

    @classmethod
    def _resolve_executable(cls, explicit: Path | None) -> Path:
        if explicit is not None:
            candidate = Path(explicit)
            if candidate.exists() and candidate.is_file():
                return candidate
            raise WorkerNotFoundError(f"Worker executable not found at {candidate}")

        binary = shutil.which(cls.executable_name)
        if binary is None:
            raise WorkerNotFoundError(f"Worker CLI '{cls.executable_name}' not found on PATH")
        return Path(binary)

    @property
    def executable(self) -> Path:
        return self._executable_path

    async def version(self) -> WorkerExecutionResult:
        cmd = [str(self._executable_path), "--version"]
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=sanitize_environment(),
        )
        stdout_bytes, stderr_bytes = await process.communicate()
        return WorkerExecutionResult(
            args=tuple(cmd),
            returncode=process.returncode,
            stdout=stdout_bytes.decode("utf-8", errors="replace"),
            stderr=stderr_bytes.decode("utf-8", errors="replace"),
        )

    def invoke(
        self,
        prompt: str,
        capabilities: WorkerCapabilities,
        resume_id: str | None = None,
    ) -> AsyncIterator[WorkerMessage]:
        args = build_invoke_args(
            prompt,
            allowed_tools=capabilities.allowed_tools,
            disallowed_tools=capabilities.disallowed_tools,
            model=capabilities.model,
            resume_id=resume_id,
        )
        return self._stream(*args)

    async def _stream(self, *args: str) -> AsyncIterator[WorkerMessage]:
        cmd = [str(self._executable_path), *args]
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=sanitize_environment(),
            limit=_STREAM_LIMIT,
        )
        assert process.stdout is not None and process.stderr is not None
        stderr_task = asyncio.ensure_future(process.stderr.read())
        try:
            async for raw in process.stdout:
                line = raw.decode("utf-8", errors="replace").strip()
                if not line:
                    continue
                try:
                    payload = json.loads(line)
                except json.JSONDecodeError:
                    logger.debug("Skipping non-JSON worker output", extra={"line": line[:200]})
                    continue
                if not isinstance(payload, dict) or "type" not in payload:
                    continue
                yield WorkerMessage.model_validate(payload)

            returncode = await process.wait()
            stderr = (await stderr_task).decode("utf-8", errors="replace")
            if returncode != 0:
                raise WorkerProcessError(returncode, stderr)
        finally:
            if process.returncode is None:
                process.kill()
                await process.wait()
            if not stderr_task.done():
                stderr_task.cancel()


__all__ = [
    "WorkerCapabilities",
    "WorkerExecutionResult",
    "WorkerNotFoundError",
    "WorkerProcessError",
    "WorkerRunner",
    "WorkerRunnerError",
]
