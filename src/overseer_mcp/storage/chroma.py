"""Chroma-backed execution ledger."""

from __future__ import annotations

import json
import uuid
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Protocol

from .models import AgentStats, ExecutionRecord

_SCALARS = (str, int, float, bool)


class LedgerUnavailableError(RuntimeError):
    """Raised when the Chroma client cannot be constructed."""


class CollectionProtocol(Protocol):
    """Protocol for the minimal Chroma collection API used by Overseer."""

    def add(
        self,
        *,
        documents: Iterable[str],
        metadatas: Iterable[dict[str, Any]],
        ids: Iterable[str],
    ) -> None:
        ...

    def get(
        self,
        *,
        ids: Iterable[str] | None = None,
        where: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> dict[str, list[Any]]:
        ...


class ClientProtocol(Protocol):
    """Protocol for the minimal Chroma client API used by Overseer."""

    def get_or_create_collection(self, name: str) -> CollectionProtocol:
        ...


@dataclass(slots=True)
class LedgerEvent:
    """Represents a stored event in Chroma."""

    id: str
    session_id: str
    event_type: str
    document: str
    metadata: dict[str, Any]
    timestamp: datetime


def _sanitize_metadata(metadata: dict[str, Any]) -> dict[str, Any]:
    """Chroma accepts only non-null scalar metadata values."""

    cleaned: dict[str, Any] = {}
    for key, value in metadata.items():
        if value is None:
            continue
        if isinstance(value, _SCALARS):
            cleaned[key] = value
        else:
            cleaned[key] = json.dumps(value, default=str)
    return cleaned


def _where(filters: dict[str, Any] | None) -> dict[str, Any] | None:
    if not filters:
        return None
    clauses = [{key: value} for key, value in filters.items() if value is not None]
    if not clauses:
        return None
    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


class ExecutionLedger:
    """Record invocation and task events in a ChromaDB collection."""

    def __init__(
        self,
        path: Path,
        *,
        collection_name: str = "overseer_executions",
        client_factory: Callable[[], ClientProtocol] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._path = Path(path)
        self._collection_name = collection_name
        self._client_factory = client_factory or self._default_client_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._client: ClientProtocol | None = None
        self._collection: CollectionProtocol | None = None
        self._counters: dict[str, int] = defaultdict(int)

    @property
    def collection_name(self) -> str:
        return self._collection_name

    def _default_client_factory(self) -> ClientProtocol:
        try:
            import chromadb
        except ImportError as exc:  # pragma: no cover - depends on environment
            raise LedgerUnavailableError("chromadb package is not installed") from exc

        try:
            return chromadb.PersistentClient(path=str(self._path))
        except Exception as exc:  # pragma: no cover - backend specific failures
            raise LedgerUnavailableError(f"Cannot open Chroma store at {self._path}: {exc}") from exc

    def _ensure_collection(self) -> CollectionProtocol:
        if self._collection is None:
            client = self._client or self._client_factory()
            self._client = client
            self._collection = client.get_or_create_collection(self._collection_name)
        return self._collection

    def _convert_result(self, result: dict[str, list[Any]]) -> list[LedgerEvent]:
        events: list[LedgerEvent] = []
        ids = result.get("ids") or []
        documents = result.get("documents") or []
        metadatas = result.get("metadatas") or []
        for event_id, document, metadata in zip(ids, documents, metadatas):
            metadata = metadata or {}
            timestamp_raw = metadata.get("timestamp")
            timestamp = (
                datetime.fromisoformat(timestamp_raw)
                if isinstance(timestamp_raw, str)
                else self._clock()
            )
            events.append(
                LedgerEvent(
                    id=event_id,
                    session_id=metadata.get("session_id", ""),
                    event_type=metadata.get("event_type", ""),
                    document=document,
                    metadata=metadata,
                    timestamp=timestamp,
                )
            )
        events.sort(key=lambda event: (event.timestamp, event.metadata.get("sequence", 0)))
        return events

    def ping(self) -> bool:
        """Verify that the underlying collection can be obtained."""

        self._ensure_collection()
        return True

    def record_event(
        self,
        *,
        session_id: str,
        event_type: str,
        body: Any,
        metadata: dict[str, Any] | None = None,
    ) -> LedgerEvent:
        collection = self._ensure_collection()
        counter = self._counters[session_id] = self._counters[session_id] + 1
        event_id = f"{session_id}:{uuid.uuid4().hex}"
        timestamp = self._clock()

        document = body if isinstance(body, str) else json.dumps(body, default=str)
        record_metadata: dict[str, Any] = {}
        if metadata:
            record_metadata.update(metadata)
        record_metadata.update(
            {
                "session_id": session_id,
                "event_type": event_type,
                "timestamp": timestamp.isoformat(),
                "sequence": counter,
            }
        )
        record_metadata = _sanitize_metadata(record_metadata)

        collection.add(
            documents=[document],
            metadatas=[record_metadata],
            ids=[event_id],
        )

        return LedgerEvent(
            id=event_id,
            session_id=session_id,
            event_type=event_type,
            document=document,
            metadata=record_metadata,
            timestamp=timestamp,
        )

    def record_execution_started(
        self,
        *,
        session_id: str,
        agent_name: str,
        prompt: str,
        resumed: bool,
        run_id: str | None = None,
        task_id: str | None = None,
    ) -> LedgerEvent:
        return self.record_event(
            session_id=session_id,
            event_type="execution_started",
            body={"agent_name": agent_name, "prompt": prompt, "resumed": resumed},
            metadata={
                "agent_name": agent_name,
                "resumed": resumed,
                "run_id": run_id,
                "task_id": task_id,
            },
        )

    def record_execution_finished(self, record: ExecutionRecord) -> LedgerEvent:
        body = {
            "agent_name": record.agent_name,
            "success": record.success,
            "artifact_found": record.artifact_found,
            "corrective_attempted": record.corrective_attempted,
            "message_count": record.message_count,
            "duration_seconds": record.duration_seconds,
            "error": record.error,
            **record.metadata,
        }
        return self.record_event(
            session_id=record.session_id,
            event_type="execution_finished",
            body=body,
            metadata={
                "agent_name": record.agent_name,
                "success": record.success,
                "artifact_found": record.artifact_found,
                "corrective_attempted": record.corrective_attempted,
                "message_count": record.message_count,
                "duration_seconds": record.duration_seconds,
                "run_id": record.run_id,
                "task_id": record.task_id,
                "error": record.error[:500] if record.error else None,
            },
        )

    def record_task_transition(
        self,
        *,
        run_id: str,
        task_id: str,
        state: str,
        agent_session_id: str | None = None,
        summary: str | None = None,
    ) -> LedgerEvent:
        return self.record_event(
            session_id=f"run::{run_id}",
            event_type="task_transition",
            body={"task_id": task_id, "state": state, "agent_session_id": agent_session_id, "summary": summary},
            metadata={
                "run_id": run_id,
                "task_id": task_id,
                "state": state,
                "agent_session_id": agent_session_id,
            },
        )

    def fetch_session_events(self, session_id: str, *, limit: int | None = None) -> list[LedgerEvent]:
        collection = self._ensure_collection()
        result = collection.get(where={"session_id": session_id}, limit=limit)
        return self._convert_result(result)

    def search_events(
        self,
        query: str | None = None,
        *,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[LedgerEvent]:
        collection = self._ensure_collection()
        result = collection.get(where=_where(filters))
        events = self._convert_result(result)
        if query:
            needle = query.lower()
            events = [
                event
                for event in events
                if needle in event.document.lower()
                or any(needle in str(value).lower() for value in event.metadata.values())
            ]
        return events[:limit] if limit else events

    def list_executions(
        self,
        agent_name: str | None = None,
        *,
        run_id: str | None = None,
        limit: int | None = None,
    ) -> list[ExecutionRecord]:
        events = self.search_events(
            filters={"event_type": "execution_finished", "agent_name": agent_name, "run_id": run_id}
        )
        records: list[ExecutionRecord] = []
        for event in events:
            doc = json.loads(event.document)
            records.append(
                ExecutionRecord(
                    session_id=event.session_id,
                    agent_name=doc.get("agent_name", event.metadata.get("agent_name", "")),
                    finished_at=event.timestamp,
                    success=bool(doc.get("success")),
                    artifact_found=doc.get("artifact_found"),
                    corrective_attempted=bool(doc.get("corrective_attempted")),
                    message_count=int(doc.get("message_count", 0)),
                    duration_seconds=float(doc.get("duration_seconds", 0.0)),
                    run_id=event.metadata.get("run_id"),
                    task_id=event.metadata.get("task_id"),
                    error=doc.get("error"),
                )
            )
        records.reverse()
        return records[:limit] if limit else records

    def agent_stats(self, agent_name: str) -> AgentStats:
        records = self.list_executions(agent_name)
        successes = sum(1 for record in records if record.success)
        durations = [record.duration_seconds for record in records]
        return AgentStats(
            agent_name=agent_name,
            executions=len(records),
            successes=successes,
            failures=len(records) - successes,
            artifact_misses=sum(1 for record in records if record.artifact_found is False),
            corrective_attempts=sum(1 for record in records if record.corrective_attempted),
            average_duration_seconds=round(sum(durations) / len(durations), 3) if durations else 0.0,
        )


__all__ = ["ExecutionLedger", "LedgerEvent", "LedgerUnavailableError"]
