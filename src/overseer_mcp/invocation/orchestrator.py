"""Drive one worker invocation from permissions to a finalized result."""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import aclosing
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Protocol

from ..capabilities import PermissionEngine, PermissionResult
from ..profiles import AgentProfile
from ..sessions import SessionInit, SessionStore, Transcript
from ..storage import ExecutionLedger, ExecutionRecord
from ..tasks.runs import resolve_run_id
from ..worker import WorkerCapabilities, WorkerMessage, WorkerRunner
from .artifacts import ArtifactCheck, ArtifactLocator

logger = logging.getLogger(__name__)


class ProfileSource(Protocol):
    def load_all(self) -> dict[str, AgentProfile]:
        ...


class AgentNotFoundError(LookupError):
    """Raised when an invocation names an agent with no profile."""

    def __init__(self, agent_name: str, available: list[str]) -> None:
        listing = ", ".join(available) or "none"
        super().__init__(f"Agent '{agent_name}' not found. Available agents: {listing}")
        self.agent_name = agent_name


class InvocationState(str, Enum):
    INIT = "init"
    PERMISSIONS_COMPUTED = "permissions_computed"
    STREAMING = "streaming"
    ARTIFACT_CHECK = "artifact_check"
    CORRECTIVE_RETRY = "corrective_retry"
    FINALIZED = "finalized"


@dataclass(slots=True)
class InvocationResult:
    success: bool
    agent_name: str
    session_id: str
    output: str
    artifact_found: bool | None
    artifact_path: Path | None
    corrective_attempted: bool
    message_count: int
    error: str | None = None
    log_path: Path | None = None
    run_id: str | None = None
    warnings: list[str] = field(default_factory=list)
    states: list[InvocationState] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "agent_name": self.agent_name,
            "session_id": self.session_id,
            "output": self.output,
            "artifact_found": self.artifact_found,
            "artifact_path": str(self.artifact_path) if self.artifact_path else None,
            "corrective_attempted": self.corrective_attempted,
            "message_count": self.message_count,
            "error": self.error,
            "log_path": str(self.log_path) if self.log_path else None,
            "run_id": self.run_id,
            "warnings": list(self.warnings),
            "states": [state.value for state in self.states],
        }


@dataclass(slots=True)
class _StreamState:
    session_id: str
    texts: list[str] = field(default_factory=list)
    message_count: int = 0
    final_result: str | None = None
    error: str | None = None
    pending_start: dict[str, Any] | None = None

    @property
    def output(self) -> str:
        if self.texts:
            return "\n".join(self.texts)
        return self.final_result or ""


class InvocationOrchestrator:
    """Run an agent through the worker and enforce its output artifact.

    Exactly one corrective continuation is attempted when the artifact is
    missing after the primary stream. ``success`` always reflects the primary
    stream; a missing artifact is reported as a warning.
    """

    def __init__(
        self,
        *,
        profiles: ProfileSource,
        permissions: PermissionEngine,
        sessions: SessionStore,
        worker: WorkerRunner,
        artifacts: ArtifactLocator,
        timeout_for: Callable[[str], float],
        default_model: str | None = None,
        ledger: ExecutionLedger | None = None,
        run_id_resolver: Callable[[], str] | None = None,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._profiles = profiles
        self._permissions = permissions
        self._sessions = sessions
        self._worker = worker
        self._artifacts = artifacts
        self._timeout_for = timeout_for
        self._default_model = default_model
        self._ledger = ledger
        self._run_id_resolver = run_id_resolver or resolve_run_id
        self._monotonic = monotonic

    def profile(self, agent_name: str) -> AgentProfile:
        profiles = self._profiles.load_all()
        try:
            return profiles[agent_name]
        except KeyError as exc:
            raise AgentNotFoundError(agent_name, sorted(profiles)) from exc

    def build_prompt(
        self,
        profile: AgentProfile,
        prompt: str,
        *,
        session_id: str | None,
        run_id: str | None,
        permissions: PermissionResult,
    ) -> str:
        sections: list[str] = []
        if profile.system_prompt.strip():
            sections.append(profile.system_prompt.strip())
        sections.append(f"task: {prompt.strip()}")

        session_label = session_id or "pending (assigned by the worker at startup)"
        directory_key = session_id or "<SESSION_ID>"
        info = [
            "IMPORTANT: When you complete your task, create the required output artifact.",
            f"SESSION_ID: {session_label}",
            f"OUTPUT_DIR: {self._sessions.base_dir / directory_key}/",
            f"REPORTS_DIR: {self._artifacts.reports_directory(directory_key)}/",
        ]
        if run_id:
            info.append(f"RUN_ID: {run_id}")
        if profile.artifact == "summary":
            info.append(
                f"REQUIRED ARTIFACT: {profile.id}-summary.json in REPORTS_DIR "
                f"(use the {self._permissions.tool_name('put_summary')} tool)"
            )
        elif profile.artifact == "plan":
            plan_path = self._artifacts.expected_path("plan", session_id="", agent_name=profile.id, run_id=run_id)
            info.append(
                f"REQUIRED ARTIFACT: {plan_path} (use the {self._permissions.tool_name('create_plan')} tool)"
            )
        sections.append("\n".join(info))
        return "\n\n".join(sections) + permissions.restriction_prompt

    def corrective_prompt(self, profile: AgentProfile, check: ArtifactCheck, session_id: str, run_id: str | None) -> str:
        if check.kind == "plan":
            instruction = (
                f"Create the plan for run {run_id} now with the "
                f"{self._permissions.tool_name('create_plan')} tool. It must exist at {check.expected_path}."
            )
        else:
            instruction = (
                f"Write your summary report now with the "
                f"{self._permissions.tool_name('put_summary')} tool. It must exist at {check.expected_path}."
            )
        return (
            "Your previous turn finished without producing the required output artifact.\n"
            f"SESSION_ID: {session_id}\n"
            f"{instruction}\n"
            "Do not redo the task; only produce the missing artifact."
        )

    async def invoke(
        self,
        agent_name: str,
        prompt: str,
        resume_id: str | None = None,
        *,
        run_id: str | None = None,
        task_id: str | None = None,
    ) -> InvocationResult:
        states = [InvocationState.INIT]
        started = self._monotonic()
        profile = self.profile(agent_name)
        if profile.artifact == "plan" and not run_id:
            run_id = self._run_id_resolver()

        permissions = self._permissions.compute_permissions(
            profile.allowed_tools, profile.role, artifact=profile.artifact
        )
        states.append(InvocationState.PERMISSIONS_COMPUTED)

        init = self._sessions.initialize_session(resume_id, profile.id)
        state = _StreamState(session_id=init.session_id)
        transcript = self._sessions.transcript(init.session_id)
        try:
            return await self._drive(
                profile, prompt, init, state, transcript, permissions, states, started, run_id, task_id
            )
        except BaseException as exc:
            self._abandon(profile, state, transcript, exc)
            raise

    async def _drive(
        self,
        profile: AgentProfile,
        prompt: str,
        init: SessionInit,
        state: _StreamState,
        transcript: Transcript,
        permissions: PermissionResult,
        states: list[InvocationState],
        started: float,
        run_id: str | None,
        task_id: str | None,
    ) -> InvocationResult:
        transcript.start(init.session_id, profile.id, resumed=init.is_continuation)

        worker_prompt = self.build_prompt(
            profile,
            prompt,
            session_id=init.session_id if init.is_continuation else None,
            run_id=run_id,
            permissions=permissions,
        )
        transcript.log_prompt(prompt, worker_prompt)
        transcript.log_restrictions(permissions.allowed_tools, permissions.disallowed_tools)
        # new sessions are recorded once the worker has named them
        state.pending_start = {
            "agent_name": profile.id,
            "prompt": prompt,
            "resumed": init.is_continuation,
            "run_id": run_id,
            "task_id": task_id,
        }
        if init.is_continuation:
            self._flush_started(state)

        capabilities = WorkerCapabilities(
            allowed_tools=tuple(permissions.allowed_list()),
            disallowed_tools=tuple(permissions.disallowed_list()),
            model=profile.model or self._default_model,
        )
        timeout = self._timeout_for(profile.role_class)
        resume_token = self._sessions.resume_token(init.session_id) if init.is_continuation else None

        states.append(InvocationState.STREAMING)
        error = await self._run_stream(worker_prompt, capabilities, resume_token, state, transcript, timeout)
        if error is None:
            error = state.error
        if not self._sessions.handle(state.session_id).resolved:
            promoted = self._sessions.promote(state.session_id)
            state.session_id = promoted.session_id
        self._flush_started(state)

        if error is not None:
            return self._finalize_failure(profile, state, transcript, states, error, started, run_id, task_id)

        states.append(InvocationState.ARTIFACT_CHECK)
        check = self._check_artifact(profile, state.session_id, run_id)
        corrective_attempted = False
        warnings: list[str] = []
        if check.required and not check.found:
            corrective_attempted = True
            states.append(InvocationState.CORRECTIVE_RETRY)
            instruction = self.corrective_prompt(profile, check, state.session_id, run_id)
            transcript.log_note("corrective continuation", instruction)
            logger.info(
                "Required artifact missing, sending corrective continuation",
                extra={"session_id": state.session_id, "agent": profile.id, "expected": str(check.expected_path)},
            )
            corrective_error = await self._run_stream(
                instruction,
                capabilities,
                self._sessions.resume_token(state.session_id),
                state,
                transcript,
                timeout,
            )
            if corrective_error or state.error:
                warnings.append(f"Corrective continuation failed: {corrective_error or state.error}")
            states.append(InvocationState.ARTIFACT_CHECK)
            check = self._check_artifact(profile, state.session_id, run_id)

        if check.required and not check.found:
            warnings.append(f"Required {check.kind} artifact missing at {check.expected_path}")
            logger.warning(
                "Required artifact still missing",
                extra={"session_id": state.session_id, "agent": profile.id, "expected": str(check.expected_path)},
            )

        history = self._sessions.history(state.session_id)
        transcript.log_completion(
            status="success",
            total_messages=len(history.messages),
            artifact_found=check.found if check.required else None,
            artifact_path=check.found_path or check.expected_path,
        )
        self._sessions.close(state.session_id)
        states.append(InvocationState.FINALIZED)
        result = InvocationResult(
            success=True,
            agent_name=profile.id,
            session_id=state.session_id,
            output=state.output,
            artifact_found=check.found if check.required else None,
            artifact_path=check.found_path or check.expected_path,
            corrective_attempted=corrective_attempted,
            message_count=state.message_count,
            log_path=transcript.path,
            run_id=run_id,
            warnings=warnings,
            states=states,
        )
        self._record_finished(result, started, task_id)
        return result

    def _check_artifact(self, profile: AgentProfile, session_id: str, run_id: str | None) -> ArtifactCheck:
        return self._artifacts.check(profile.artifact, session_id=session_id, agent_name=profile.id, run_id=run_id)

    async def _run_stream(
        self,
        prompt: str,
        capabilities: WorkerCapabilities,
        resume_token: str | None,
        state: _StreamState,
        transcript: Transcript,
        timeout: float,
    ) -> str | None:
        """Consume one worker stream; return an error description on failure."""

        state.error = None
        try:
            await asyncio.wait_for(self._consume(prompt, capabilities, resume_token, state, transcript), timeout)
        except asyncio.TimeoutError:
            logger.warning("Worker timed out", extra={"session_id": state.session_id, "timeout": timeout})
            return f"Worker timed out after {timeout:g} seconds"
        except Exception as exc:  # worker failures become failure results
            logger.exception("Worker stream failed", extra={"session_id": state.session_id})
            return f"{type(exc).__name__}: {exc}"
        return None

    async def _consume(
        self,
        prompt: str,
        capabilities: WorkerCapabilities,
        resume_token: str | None,
        state: _StreamState,
        transcript: Transcript,
    ) -> None:
        stream = self._worker.invoke(prompt, capabilities, resume_id=resume_token)
        async with aclosing(stream) as messages:
            async for message in messages:
                self._handle_message(message, state, transcript)
                if message.is_terminal_error:
                    state.error = message.error_text()
                    break

    def _handle_message(self, message: WorkerMessage, state: _StreamState, transcript: Transcript) -> None:
        reported = message.reported_session_id
        if reported:
            handle = self._sessions.handle(state.session_id)
            if not handle.resolved:
                provisional_id = state.session_id
                resolved = self._sessions.reconcile_true_id(provisional_id, reported)
                state.session_id = resolved.session_id
                transcript.log_identity(provisional_id, resolved.session_id)
                self._flush_started(state)
            elif reported != self._sessions.resume_token(state.session_id):
                self._sessions.note_resume_token(state.session_id, reported)

        self._sessions.append_message(state.session_id, message)
        transcript.log_message(message)
        state.message_count += 1
        state.texts.extend(text for text in message.text_blocks() if text)
        if message.is_result and not message.is_error and message.result:
            state.final_result = message.result

    def _finalize_failure(
        self,
        profile: AgentProfile,
        state: _StreamState,
        transcript: Transcript,
        states: list[InvocationState],
        error: str,
        started: float,
        run_id: str | None,
        task_id: str | None,
    ) -> InvocationResult:
        history = self._sessions.history(state.session_id)
        transcript.log_error(error, total_messages=len(history.messages))
        self._sessions.close(state.session_id)
        states.append(InvocationState.FINALIZED)
        result = InvocationResult(
            success=False,
            agent_name=profile.id,
            session_id=state.session_id,
            output=state.output,
            artifact_found=None,
            artifact_path=None,
            corrective_attempted=False,
            message_count=state.message_count,
            error=error,
            log_path=transcript.path,
            run_id=run_id,
            states=states,
        )
        logger.warning(
            "Invocation failed",
            extra={"session_id": state.session_id, "agent": profile.id, "task_id": task_id, "error": error},
        )
        self._record_finished(result, started, task_id)
        return result

    def _abandon(
        self,
        profile: AgentProfile,
        state: _StreamState,
        transcript: Transcript,
        exc: BaseException,
    ) -> None:
        """Close a session whose invocation was interrupted before finalization."""

        if not self._sessions.is_open(state.session_id):
            return
        if not self._sessions.handle(state.session_id).resolved:
            state.session_id = self._sessions.promote(state.session_id).session_id
        self._flush_started(state)
        if isinstance(exc, asyncio.CancelledError):
            reason = "Invocation cancelled"
        else:
            reason = f"{type(exc).__name__}: {exc}"
        history = self._sessions.history(state.session_id)
        transcript.log_error(reason, total_messages=len(history.messages))
        self._sessions.close(state.session_id)
        logger.warning(
            "Invocation aborted",
            extra={"session_id": state.session_id, "agent": profile.id, "error": reason},
        )

    def _flush_started(self, state: _StreamState) -> None:
        pending, state.pending_start = state.pending_start, None
        if pending is not None:
            self._record_started(state.session_id, **pending)

    def _record_started(
        self,
        session_id: str,
        agent_name: str,
        prompt: str,
        resumed: bool,
        run_id: str | None,
        task_id: str | None,
    ) -> None:
        if self._ledger is None:
            return
        try:
            self._ledger.record_execution_started(
                session_id=session_id,
                agent_name=agent_name,
                prompt=prompt[:2000],
                resumed=resumed,
                run_id=run_id,
                task_id=task_id,
            )
        except Exception as exc:  # ledger is optional
            logger.warning("Failed to record execution start", extra={"session_id": session_id, "error": str(exc)})

    def _record_finished(self, result: InvocationResult, started: float, task_id: str | None) -> None:
        if self._ledger is None:
            return
        record = ExecutionRecord(
            session_id=result.session_id,
            agent_name=result.agent_name,
            finished_at=datetime.now(timezone.utc),
            success=result.success,
            artifact_found=result.artifact_found,
            corrective_attempted=result.corrective_attempted,
            message_count=result.message_count,
            duration_seconds=round(self._monotonic() - started, 3),
            run_id=result.run_id,
            task_id=task_id,
            error=result.error,
            metadata={"warnings": result.warnings},
        )
        try:
            self._ledger.record_execution_finished(record)
        except Exception as exc:  # ledger is optional
            logger.warning(
                "Failed to record execution result", extra={"session_id": result.session_id, "error": str(exc)}
            )


__all__ = [
    "AgentNotFoundError",
    "InvocationOrchestrator",
    "InvocationResult",
    "InvocationState",
]
