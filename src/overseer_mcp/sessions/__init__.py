"""Worker session persistence."""

from .models import (
    ConversationHistory,
    ProvisionalHandle,
    ResolvedHandle,
    SessionHandle,
    SessionInit,
    SessionSummary,
)
from .store import (
    CONVERSATION_FILE,
    TRANSCRIPT_FILE,
    InvalidSessionIdError,
    SessionAgentMismatchError,
    SessionConflictError,
    SessionError,
    SessionNotFoundError,
    SessionStateError,
    SessionStore,
    validate_session_id,
)
from .transcript import Transcript

__all__ = [
    "CONVERSATION_FILE",
    "ConversationHistory",
    "InvalidSessionIdError",
    "ProvisionalHandle",
    "ResolvedHandle",
    "SessionAgentMismatchError",
    "SessionConflictError",
    "SessionError",
    "SessionHandle",
    "SessionInit",
    "SessionNotFoundError",
    "SessionStateError",
    "SessionStore",
    "SessionSummary",
    "TRANSCRIPT_FILE",
    "Transcript",
    "validate_session_id",
]
