"""Telemetry collectors for swarm run events."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Protocol

from ..config import SwarmSettings
from ..storage import ChromaStore, ChromaUnavailableError, swarm_stream

logger = logging.getLogger(__name__)

SWARM_STARTED = "swarm.started"
SWARM_CHILD_COMPLETED = "swarm.child_completed"
SWARM_CHILD_FAILED = "swarm.child_failed"
SWARM_COMPLETED = "swarm.completed"


class TelemetryCollector(Protocol):
    """Sink for run events. Implementations may raise; callers guard every call."""

    def track(self, event: str, properties: Mapping[str, Any], *, parent_id: str) -> None:
        ...


class NullCollector:
    """Discards every event."""

    def track(self, event: str, properties: Mapping[str, Any], *, parent_id: str) -> None:
        return None


class LoggingCollector:
    """Writes events to the module logger."""

    def __init__(self, level: int = logging.INFO) -> None:
        self._level = level

    def track(self, event: str, properties: Mapping[str, Any], *, parent_id: str) -> None:
        logger.log(self._level, "Telemetry event %s", event, extra={"parent_id": parent_id, "event": event, **properties})


class EventStoreCollector:
    """Persists events to the Chroma run event store, one stream per parent task."""

    def __init__(self, store: ChromaStore) -> None:
        self._store = store

    @property
    def store(self) -> ChromaStore:
        return self._store

    def track(self, event: str, properties: Mapping[str, Any], *, parent_id: str) -> None:
        self._store.record_event(
            stream=swarm_stream(parent_id),
            event_type=event,
            body=dict(properties),
            metadata={"parent_id": parent_id, **properties},
        )


def create_collector(settings: SwarmSettings) -> TelemetryCollector:
    """Pick a collector for the current settings. Never raises."""

    if not settings.telemetry_enabled:
        return NullCollector()
    try:
        store = ChromaStore(settings.events_path)
        store.ping()
    except ChromaUnavailableError as exc:
        logger.info("Run event store unavailable; logging events instead", extra={"error": str(exc)})
        return LoggingCollector()
    except Exception as exc:  # pragma: no cover - depends on chromadb runtime
        logger.warning(
            "Run event store failed to open; logging events instead",
            extra={"path": str(settings.events_path), "error": str(exc)},
        )
        return LoggingCollector()
    return EventStoreCollector(store)


__all__ = [
    "EventStoreCollector",
    "LoggingCollector",
    "NullCollector",
    "SWARM_CHILD_COMPLETED",
    "SWARM_CHILD_FAILED",
    "SWARM_COMPLETED",
    "SWARM_STARTED",
    "TelemetryCollector",
    "create_collector",
]
