"""Append-only per-session transcript (``session.log``)."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable

from ..worker.messages import WorkerMessage, tool_result_text


class Transcript:
    """Human-readable log of one session.

    The file is only ever appended to. The path is resolved on every write so
    entries follow the session directory when a provisional id is reconciled.
    """

    def __init__(
        self,
        path_provider: Callable[[], Path],
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._path_provider = path_provider
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def path(self) -> Path:
        return self._path_provider()

    def _stamp(self) -> str:
        return self._clock().isoformat()

    def _append(self, text: str) -> None:
        path = self.path
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as handle:
            handle.write(text)

    def start(self, session_id: str, agent_name: str, *, resumed: bool) -> None:
        stamp = self._stamp()
        if resumed and self.path.exists():
            self._append(
                "\n=== Session Resumed ===\n"
                f"Session ID: {session_id}\n"
                f"Agent: {agent_name}\n"
                f"Resumed at: {stamp}\n\n"
            )
            return
        self._append(
            "=== Agent Session Started ===\n"
            f"Session ID: {session_id}\n"
            f"Agent: {agent_name}\n"
            f"Started: {stamp}\n"
            "=== Real-time Conversation ===\n\n"
        )

    def log_prompt(self, user_prompt: str, worker_prompt: str) -> None:
        stamp = self._stamp()
        self._append(
            f"[{stamp}] USER PROMPT:\n{user_prompt}\n\n"
            f"[{stamp}] WORKER PROMPT:\n{worker_prompt}\n\n"
        )

    def log_restrictions(self, allowed: Iterable[str], disallowed: Iterable[str]) -> None:
        allowed_list = sorted(allowed)
        disallowed_list = sorted(disallowed)
        self._append(
            f"[{self._stamp()}] TOOL RESTRICTIONS:\n"
            f"Allowed ({len(allowed_list)}): {', '.join(allowed_list) or 'none'}\n"
            f"Disallowed ({len(disallowed_list)}): {', '.join(disallowed_list) or 'none'}\n\n"
        )

    def log_identity(self, provisional_id: str, true_id: str) -> None:
        self._append(f"[{self._stamp()}] SESSION ID RESOLVED: {provisional_id} -> {true_id}\n\n")

    def log_note(self, title: str, text: str) -> None:
        self._append(f"[{self._stamp()}] {title.upper()}:\n{text}\n\n")

    def log_message(self, message: WorkerMessage) -> None:
        stamp = self._stamp()
        entries: list[str] = []
        if message.is_init:
            entries.append(f"[{stamp}] WORKER INIT: session {message.reported_session_id or 'unknown'}\n\n")
        elif message.type == "assistant":
            for text in message.text_blocks():
                entries.append(f"[{stamp}] ASSISTANT:\n{text}\n\n")
            for tool_use in message.tool_uses():
                payload = json.dumps(tool_use.get("input", {}), indent=2, default=str)
                entries.append(f"[{stamp}] TOOL_USE: {tool_use.get('name', 'unknown')}\n{payload}\n\n")
        elif message.type == "user":
            for tool_result in message.tool_results():
                status = "(ERROR)" if tool_result.get("is_error") else "(SUCCESS)"
                name = tool_result.get("name") or tool_result.get("tool_use_id", "unknown")
                entries.append(f"[{stamp}] TOOL_RESULT: {name} {status}\n{tool_result_text(tool_result)}\n\n")
        elif message.is_result:
            outcome = f"ERROR: {message.error_text()}" if message.is_error else "success"
            entries.append(f"[{stamp}] RESULT: {outcome}\n\n")
        if entries:
            self._append("".join(entries))

    def log_completion(
        self,
        *,
        status: str,
        total_messages: int,
        artifact_found: bool | None,
        artifact_path: Path | None,
    ) -> None:
        if artifact_found is None:
            artifact_line = "Artifact: not required"
        elif artifact_found:
            artifact_line = f"Artifact: found ({artifact_path})"
        else:
            artifact_line = f"Artifact: WARNING missing ({artifact_path})"
        self._append(
            f"[{self._stamp()}] SESSION COMPLETED:\n"
            f"Status: {status}\n"
            f"Total Messages: {total_messages}\n"
            f"{artifact_line}\n\n"
            "=== End of Session ===\n"
        )

    def log_error(self, error: str, *, total_messages: int) -> None:
        self._append(
            f"[{self._stamp()}] EXECUTION ERROR:\n{error}\n"
            f"Total Messages: {total_messages}\n\n"
            "=== Session Ended with Error ===\n"
        )


__all__ = ["Transcript"]
