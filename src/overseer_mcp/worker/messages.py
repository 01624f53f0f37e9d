"""Message records streamed back by the worker."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict


class WorkerMessage(BaseModel):
    """One streamed worker message.

    Only the discriminant fields are modelled; everything else the worker
    sends is kept verbatim so session snapshots stay faithful.
    """

    model_config = ConfigDict(extra="allow")

    type: str
    subtype: str | None = None
    session_id: str | None = None
    uuid: str | None = None
    message: dict[str, Any] | None = None
    is_error: bool = False
    result: str | None = None

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)

    @property
    def is_init(self) -> bool:
        return self.type == "system" and self.subtype == "init"

    @property
    def is_result(self) -> bool:
        return self.type == "result"

    @property
    def is_terminal_error(self) -> bool:
        return self.is_result and self.is_error

    @property
    def reported_session_id(self) -> str | None:
        """Return the worker's own session identifier, if this message carries it."""

        if self.session_id:
            return self.session_id
        if self.is_init and self.uuid:
            return self.uuid
        return None

    def _content(self) -> list[dict[str, Any]]:
        if not self.message:
            return []
        content = self.message.get("content")
        if isinstance(content, str):
            return [{"type": "text", "text": content}]
        if isinstance(content, list):
            return [item for item in content if isinstance(item, dict)]
        return []

    def text_blocks(self) -> list[str]:
        if self.type != "assistant":
            return []
        return [str(item.get("text", "")) for item in self._content() if item.get("type") == "text"]

    def tool_uses(self) -> list[dict[str, Any]]:
        if self.type != "assistant":
            return []
        return [item for item in self._content() if item.get("type") == "tool_use"]

    def tool_results(self) -> list[dict[str, Any]]:
        if self.type != "user":
            return []
        return [item for item in self._content() if item.get("type") == "tool_result"]

    def error_text(self) -> str:
        if self.result:
            return self.result
        extra = self.model_extra or {}
        return str(extra.get("error_message") or extra.get("error") or "Unknown error")


def tool_result_text(tool_result: dict[str, Any]) -> str:
    content = tool_result.get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = [str(item.get("text", "")) for item in content if isinstance(item, dict)]
        return "\n".join(part for part in parts if part)
    return ""


__all__ = ["WorkerMessage", "tool_result_text"]
