"""Worker process orchestration utilities."""

from .runner import (
    FakeWorkerRunner,
    WorkerExecutionResult,
    WorkerNotFoundError,
    WorkerRunner,
    WorkerRunnerError,
)
from .utils import sanitize_environment, worker_environment

__all__ = [
    "FakeWorkerRunner",
    "WorkerExecutionResult",
    "WorkerNotFoundError",
    "WorkerRunner",
    "WorkerRunnerError",
    "sanitize_environment",
    "worker_environment",
]
