"""Classify child tasks from the metadata store."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Sequence

from ..metadata import LifecycleState, MetadataStore, Task, WorkspaceRecord

logger = logging.getLogger(__name__)


class TaskState(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    FAILED = "failed"


_STATE_MAP = {
    LifecycleState.NONE: TaskState.PENDING,
    LifecycleState.PENDING: TaskState.PENDING,
    LifecycleState.IN_PROGRESS: TaskState.IN_PROGRESS,
    LifecycleState.CODE_REVIEW: TaskState.IN_PROGRESS,
    LifecycleState.DONE: TaskState.DONE,
    LifecycleState.FAILED: TaskState.FAILED,
}


def state_of(record: WorkspaceRecord | None) -> TaskState:
    if record is None:
        return TaskState.PENDING
    return _STATE_MAP[record.state]


class TaskStateResolver:
    """Derive each child's state from active records first, then archived ones.

    Only ``done`` children are skipped. A ``failed`` child is retried on the
    next invocation, and a child with no record at all is pending.
    """

    def __init__(self, store: MetadataStore) -> None:
        self._store = store

    def record_for(self, identity: str) -> WorkspaceRecord | None:
        record = self._store.find_active(identity)
        if record is None:
            record = self._store.find_finished(identity)
        return record

    def resolve(self, identity: str) -> TaskState:
        return state_of(self.record_for(identity))

    def classify(self, children: Sequence[Task]) -> dict[str, TaskState]:
        states = {child.identity: self.resolve(child.identity) for child in children}
        logger.debug("Classified children", extra={"states": {key: value.value for key, value in states.items()}})
        return states

    def outstanding(self, children: Sequence[Task]) -> list[Task]:
        states = self.classify(children)
        return [child for child in children if states[child.identity] is not TaskState.DONE]

    def snapshot(self, parent: WorkspaceRecord) -> list[dict[str, Any]]:
        """Describe every child of ``parent`` for status displays."""

        rows: list[dict[str, Any]] = []
        for child in parent.child_tasks:
            record = self.record_for(child.identity)
            rows.append(
                {
                    "task_id": child.identity,
                    "title": child.title,
                    "state": state_of(record).value,
                    "recorded_state": record.state.value if record is not None else None,
                    "archived": bool(record is not None and record.is_finished),
                    "branch": record.branch_name if record is not None else None,
                    "path": record.path if record is not None else None,
                    "depends_on": list(parent.dependency_map.get(child.identity, [])),
                }
            )
        return rows


__all__ = ["TaskState", "TaskStateResolver", "state_of"]
