"""Session records and handles."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ConversationHistory(BaseModel):
    """Full conversation snapshot persisted as ``conversation.json``."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    session_id: str
    agent_name: str
    messages: list[dict[str, Any]] = Field(default_factory=list)
    created_at: datetime
    last_updated: datetime
    resume_token: str | None = None

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, indent=2)


@dataclass(frozen=True, slots=True)
class ProvisionalHandle:
    """Session whose worker identifier has not been observed yet."""

    provisional_id: str
    directory: Path

    @property
    def session_id(self) -> str:
        return self.provisional_id

    @property
    def resolved(self) -> bool:
        return False


@dataclass(frozen=True, slots=True)
class ResolvedHandle:
    """Session addressed by the worker's true identifier."""

    session_id: str
    directory: Path

    @property
    def resolved(self) -> bool:
        return True


SessionHandle = Union[ProvisionalHandle, ResolvedHandle]


@dataclass(slots=True)
class SessionInit:
    session_id: str
    handle: SessionHandle
    existing_history: ConversationHistory | None
    is_continuation: bool


@dataclass(slots=True)
class SessionSummary:
    session_id: str
    agent_name: str
    created_at: datetime
    last_updated: datetime
    message_count: int


__all__ = [
    "ConversationHistory",
    "ProvisionalHandle",
    "ResolvedHandle",
    "SessionHandle",
    "SessionInit",
    "SessionSummary",
]
