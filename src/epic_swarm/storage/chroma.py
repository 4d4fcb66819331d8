"""Chroma-based run event store."""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Protocol

from .models import RunMetrics

logger = logging.getLogger(__name__)

SWARM_STREAM_PREFIX = "swarm::"


class ChromaUnavailableError(RuntimeError):
    """Raised when the Chroma client cannot be constructed."""


class CollectionProtocol(Protocol):
    """Protocol for the minimal Chroma collection API used by the event store."""

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
    """Protocol for the minimal Chroma client API used by the event store."""

    def get_or_create_collection(self, name: str) -> CollectionProtocol:
        ...


@dataclass(slots=True)
class ChromaEvent:
    """Represents a stored event in Chroma."""

    id: str
    stream: str
    event_type: str
    document: str
    metadata: dict[str, Any]
    timestamp: datetime

    def payload(self) -> dict[str, Any]:
        try:
            decoded = json.loads(self.document)
        except json.JSONDecodeError:
            return {"text": self.document}
        return decoded if isinstance(decoded, dict) else {"value": decoded}


def swarm_stream(parent_id: str) -> str:
    return f"{SWARM_STREAM_PREFIX}{parent_id}"


class ChromaStore:
    """Persist swarm run events via ChromaDB.

    Events are grouped into streams (one per parent task) and numbered with a
    per-stream sequence so that replays come back in emission order.
    """

    def __init__(
        self,
        path: Path,
        *,
        collection_name: str = "swarm_runs",
        client_factory: Callable[[], ClientProtocol] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._path = Path(path)
        self._collection_name = collection_name
        self._client_factory = client_factory or self._default_client_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._client: ClientProtocol | None = None
        self._collection: CollectionProtocol | None = None
        self._counters: dict[str, int] = {}

    def _default_client_factory(self) -> ClientProtocol:
        try:
            import chromadb
        except ImportError as exc:  # pragma: no cover - depends on environment
            raise ChromaUnavailableError(
                "chromadb package is not installed; install epic-swarm with the persistence extra"
            ) from exc

        return chromadb.PersistentClient(path=str(self._path))

    def _ensure_collection(self) -> CollectionProtocol:
        if self._collection is None:
            client = self._client or self._client_factory()
            self._client = client
            self._collection = client.get_or_create_collection(self._collection_name)
        return self._collection

    def _next_sequence(self, stream: str) -> int:
        # Continue numbering across processes; a resumed run appends to its stream.
        if stream not in self._counters:
            existing = self._ensure_collection().get(where={"stream": stream})
            self._counters[stream] = len(existing.get("ids", []))
        self._counters[stream] += 1
        return self._counters[stream]

    def _convert_result(self, result: dict[str, list[Any]]) -> list[ChromaEvent]:
        events: list[ChromaEvent] = []
        ids = result.get("ids", [])
        documents = result.get("documents", [])
        metadatas = result.get("metadatas", [])
        for event_id, document, metadata in zip(ids, documents, metadatas):
            timestamp_raw = metadata.get("timestamp")
            timestamp = (
                datetime.fromisoformat(timestamp_raw)
                if isinstance(timestamp_raw, str)
                else self._clock()
            )
            events.append(
                ChromaEvent(
                    id=event_id,
                    stream=metadata.get("stream", ""),
                    event_type=metadata.get("event_type", ""),
                    document=document,
                    metadata=metadata,
                    timestamp=timestamp,
                )
            )
        events.sort(key=lambda event: (event.stream, event.metadata.get("sequence", 0)))
        return events

    def ping(self) -> bool:
        """Verify that the underlying collection can be obtained."""

        self._ensure_collection()
        return True

    def record_event(
        self,
        *,
        stream: str,
        event_type: str,
        body: Any,
        metadata: dict[str, Any] | None = None,
    ) -> ChromaEvent:
        collection = self._ensure_collection()
        sequence = self._next_sequence(stream)
        event_id = f"{stream}:{uuid.uuid4().hex}"
        timestamp = self._clock()

        document = body if isinstance(body, str) else json.dumps(body)
        record_metadata: dict[str, Any] = {
            "stream": stream,
            "event_type": event_type,
            "timestamp": timestamp.isoformat(),
            "sequence": sequence,
        }
        if metadata:
            # Chroma only stores scalar metadata values.
            record_metadata.update(
                {key: value for key, value in metadata.items() if isinstance(value, (str, int, float, bool))}
            )

        collection.add(
            documents=[document],
            metadatas=[record_metadata],
            ids=[event_id],
        )
        logger.debug("Recorded run event", extra={"stream": stream, "event_type": event_type, "sequence": sequence})

        return ChromaEvent(
            id=event_id,
            stream=stream,
            event_type=event_type,
            document=document,
            metadata=record_metadata,
            timestamp=timestamp,
        )

    def fetch_stream_events(self, stream: str, *, limit: int | None = None) -> list[ChromaEvent]:
        collection = self._ensure_collection()
        result = collection.get(where={"stream": stream}, limit=limit)
        return self._convert_result(result)

    def list_run_events(self, parent_id: str, *, limit: int | None = None) -> list[ChromaEvent]:
        return self.fetch_stream_events(swarm_stream(parent_id), limit=limit)

    def run_metrics(self, parent_id: str | None = None) -> RunMetrics:
        """Aggregate ``swarm.completed`` events into run-level counters."""

        filters: dict[str, Any] = {"event_type": "swarm.completed"}
        if parent_id:
            filters = {"$and": [filters, {"stream": swarm_stream(parent_id)}]}
        metrics = RunMetrics()
        for event in self.search_events(filters=filters):
            payload = event.payload()
            metrics.runs += 1
            metrics.children_total += int(payload.get("total_children", 0))
            metrics.children_succeeded += int(payload.get("succeeded", 0))
            metrics.children_failed += int(payload.get("failed", 0))
            metrics.total_duration_minutes += int(payload.get("duration_minutes", 0))
        return metrics

    def search_events(
        self,
        query: str | None = None,
        *,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[ChromaEvent]:
        collection = self._ensure_collection()
        result = collection.get(where=filters, limit=limit)
        events = self._convert_result(result)
        if query:
            needle = query.lower()
            filtered: list[ChromaEvent] = []
            for event in events:
                haystacks = [event.document.lower()]
                haystacks.extend(str(value).lower() for value in event.metadata.values())
                if any(needle in hay for hay in haystacks):
                    filtered.append(event)
            events = filtered
        return events[:limit] if limit else events


__all__ = ["ChromaEvent", "ChromaStore", "ChromaUnavailableError", "swarm_stream"]
