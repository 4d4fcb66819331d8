"""Run event storage."""

from .chroma import ChromaEvent, ChromaStore, ChromaUnavailableError, swarm_stream
from .models import RunMetrics

__all__ = [
    "ChromaEvent",
    "ChromaStore",
    "ChromaUnavailableError",
    "RunMetrics",
    "swarm_stream",
]
