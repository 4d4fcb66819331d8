"""Durable workspace metadata."""

from .models import LifecycleState, ParentLink, SCHEMA_VERSION, Task, WorkspaceRecord, normalize_task_id
from .store import MetadataStore, MetadataStoreError

__all__ = [
    "LifecycleState",
    "MetadataStore",
    "MetadataStoreError",
    "ParentLink",
    "SCHEMA_VERSION",
    "Task",
    "WorkspaceRecord",
    "normalize_task_id",
]
