"""Filesystem-backed session store for worker conversations."""

from __future__ import annotations

import json
import logging
import os
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from pydantic import ValidationError

from ..worker.messages import WorkerMessage
from .models import (
    ConversationHistory,
    ProvisionalHandle,
    ResolvedHandle,
    SessionHandle,
    SessionInit,
    SessionSummary,
)
from .transcript import Transcript

logger = logging.getLogger(__name__)

CONVERSATION_FILE = "conversation.json"
TRANSCRIPT_FILE = "session.log"
PROVISIONAL_PREFIX = ".provisional-"

_SESSION_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,127}$")


class SessionError(RuntimeError):
    """Base class for session store errors."""

    def __init__(self, message: str, *, session_id: str | None = None) -> None:
        super().__init__(message)
        self.session_id = session_id


class InvalidSessionIdError(SessionError):
    """Raised when a session identifier is malformed."""


class SessionNotFoundError(SessionError):
    """Raised when a session snapshot does not exist."""


class SessionAgentMismatchError(SessionError):
    """Raised when a session is resumed by a different agent."""


class SessionConflictError(SessionError):
    """Raised when a reconciled identifier already has a session directory."""


class SessionStateError(SessionError):
    """Raised for operations on sessions that are not open in this store."""


@dataclass(slots=True)
class _OpenSession:
    handle: SessionHandle
    history: ConversationHistory


def validate_session_id(session_id: str) -> str:
    if not isinstance(session_id, str) or not _SESSION_ID_PATTERN.match(session_id):
        raise InvalidSessionIdError(f"Invalid session id: {session_id!r}", session_id=str(session_id))
    return session_id


class SessionStore:
    """Persist conversation snapshots and transcripts under ``output_streams``.

    New sessions start under a provisional directory and are renamed exactly
    once, when the worker reports its own identifier. Resumed sessions keep
    their identifier for life.
    """

    def __init__(
        self,
        base_dir: Path,
        *,
        clock: Callable[[], datetime] | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self._base_dir = Path(base_dir)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._id_factory = id_factory or (lambda: uuid.uuid4().hex)
        self._open: dict[str, _OpenSession] = {}

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def session_directory(self, session_id: str) -> Path:
        return self._base_dir / validate_session_id(session_id)

    def initialize_session(self, continue_id: str | None, agent_name: str) -> SessionInit:
        if continue_id:
            validate_session_id(continue_id)
            history = self.load_history(continue_id)
            if history is None:
                raise SessionNotFoundError(f"Session {continue_id} not found", session_id=continue_id)
            if history.agent_name != agent_name:
                raise SessionAgentMismatchError(
                    f"Session {continue_id} belongs to agent '{history.agent_name}', not '{agent_name}'",
                    session_id=continue_id,
                )
            handle = ResolvedHandle(session_id=continue_id, directory=self._base_dir / continue_id)
            existing = history.model_copy(deep=True)
            self._open[continue_id] = _OpenSession(handle=handle, history=history)
            logger.info("Resuming session", extra={"session_id": continue_id, "agent": agent_name})
            return SessionInit(
                session_id=continue_id,
                handle=handle,
                existing_history=existing,
                is_continuation=True,
            )

        provisional_id = self._id_factory()
        directory = self._base_dir / f"{PROVISIONAL_PREFIX}{provisional_id}"
        try:
            directory.mkdir(parents=True, exist_ok=False)
        except OSError as exc:
            raise SessionError(
                f"Cannot create session directory {directory}: {exc}", session_id=provisional_id
            ) from exc
        now = self._clock()
        history = ConversationHistory(
            session_id=provisional_id,
            agent_name=agent_name,
            created_at=now,
            last_updated=now,
        )
        handle = ProvisionalHandle(provisional_id=provisional_id, directory=directory)
        session = _OpenSession(handle=handle, history=history)
        self._open[provisional_id] = session
        self._persist(session)
        logger.info("Started provisional session", extra={"session_id": provisional_id, "agent": agent_name})
        return SessionInit(
            session_id=provisional_id,
            handle=handle,
            existing_history=None,
            is_continuation=False,
        )

    def _require(self, session_id: str) -> _OpenSession:
        session = self._open.get(session_id)
        if session is None:
            raise SessionStateError(f"Session {session_id} is not open", session_id=session_id)
        return session

    def is_open(self, session_id: str) -> bool:
        return session_id in self._open

    def handle(self, session_id: str) -> SessionHandle:
        return self._require(session_id).handle

    def history(self, session_id: str) -> ConversationHistory:
        return self._require(session_id).history

    def transcript(self, session_id: str) -> Transcript:
        session = self._require(session_id)
        return Transcript(lambda: session.handle.directory / TRANSCRIPT_FILE, clock=self._clock)

    def append_message(self, session_id: str, message: WorkerMessage | dict[str, Any]) -> int:
        session = self._require(session_id)
        record = message.to_record() if isinstance(message, WorkerMessage) else dict(message)
        session.history.messages.append(record)
        session.history.last_updated = self._clock()
        self._persist(session)
        return len(session.history.messages)

    def reconcile_true_id(self, provisional_id: str, true_id: str) -> ResolvedHandle:
        session = self._require(provisional_id)
        if isinstance(session.handle, ResolvedHandle):
            if session.handle.session_id == true_id:
                return session.handle
            raise SessionStateError(
                f"Session {provisional_id} is already resolved as {session.handle.session_id}",
                session_id=provisional_id,
            )

        validate_session_id(true_id)
        target = self._base_dir / true_id
        if target.exists():
            raise SessionConflictError(
                f"Cannot reconcile {provisional_id}: session {true_id} already exists",
                session_id=true_id,
            )
        try:
            os.rename(session.handle.directory, target)
        except FileExistsError as exc:
            raise SessionConflictError(
                f"Cannot reconcile {provisional_id}: session {true_id} already exists",
                session_id=true_id,
            ) from exc
        except OSError as exc:
            raise SessionError(f"Failed to rename session directory: {exc}", session_id=true_id) from exc

        handle = ResolvedHandle(session_id=true_id, directory=target)
        session.handle = handle
        session.history.session_id = true_id
        session.history.resume_token = true_id
        del self._open[provisional_id]
        self._open[true_id] = session
        self._persist(session)
        logger.info(
            "Reconciled session identifier",
            extra={"session_id": true_id, "provisional_id": provisional_id},
        )
        return handle

    def promote(self, provisional_id: str) -> ResolvedHandle:
        """Adopt the placeholder as the true id when the worker never reported one."""

        return self.reconcile_true_id(provisional_id, provisional_id)

    def note_resume_token(self, session_id: str, token: str) -> None:
        session = self._require(session_id)
        if session.history.resume_token == token:
            return
        session.history.resume_token = token
        self._persist(session)

    def resume_token(self, session_id: str) -> str:
        session = self._open.get(session_id)
        history = session.history if session else self.load_history(session_id)
        if history is None:
            raise SessionNotFoundError(f"Session {session_id} not found", session_id=session_id)
        return history.resume_token or history.session_id

    def save(self, session_id: str) -> None:
        self._persist(self._require(session_id))

    def close(self, session_id: str) -> ConversationHistory:
        session = self._require(session_id)
        self._persist(session)
        del self._open[session_id]
        return session.history

    def load_history(self, session_id: str) -> ConversationHistory | None:
        path = self.session_directory(session_id) / CONVERSATION_FILE
        if not path.exists():
            return None
        try:
            return ConversationHistory.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as exc:
            raise SessionError(f"Corrupt session snapshot at {path}: {exc}", session_id=session_id) from exc

    def list_sessions(self) -> list[SessionSummary]:
        if not self._base_dir.exists():
            return []
        summaries: list[SessionSummary] = []
        for entry in self._base_dir.iterdir():
            if not entry.is_dir() or entry.name.startswith(PROVISIONAL_PREFIX):
                continue
            path = entry / CONVERSATION_FILE
            if not path.exists():
                continue
            try:
                history = ConversationHistory.model_validate_json(path.read_text(encoding="utf-8"))
            except (OSError, ValidationError, json.JSONDecodeError) as exc:
                logger.warning("Skipping unreadable session snapshot", extra={"path": str(path), "error": str(exc)})
                continue
            summaries.append(
                SessionSummary(
                    session_id=history.session_id,
                    agent_name=history.agent_name,
                    created_at=history.created_at,
                    last_updated=history.last_updated,
                    message_count=len(history.messages),
                )
            )
        summaries.sort(key=lambda item: item.last_updated, reverse=True)
        return summaries

    def _persist(self, session: _OpenSession) -> None:
        path = session.handle.directory / CONVERSATION_FILE
        tmp_path = path.with_name(f"{CONVERSATION_FILE}.{os.getpid()}.tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(session.history.to_json(), encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError as exc:
            raise SessionError(
                f"Failed to persist session snapshot {path}: {exc}",
                session_id=session.history.session_id,
            ) from exc


__all__ = [
    "CONVERSATION_FILE",
    "InvalidSessionIdError",
    "PROVISIONAL_PREFIX",
    "SessionAgentMismatchError",
    "SessionConflictError",
    "SessionError",
    "SessionNotFoundError",
    "SessionStateError",
    "SessionStore",
    "TRANSCRIPT_FILE",
    "validate_session_id",
]
