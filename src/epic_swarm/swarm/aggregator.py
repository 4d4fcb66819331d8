"""Summaries of a swarm run and their emission as telemetry."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Sequence

from ..metadata import Task, WorkspaceRecord
from .resolver import TaskState
from .telemetry import SWARM_CHILD_COMPLETED, SWARM_COMPLETED, TelemetryCollector

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ChildSummary:
    identity: str
    state: TaskState
    duration_minutes: int
    detail: str = ""

    @property
    def success(self) -> bool:
        return self.state is TaskState.DONE


@dataclass(slots=True)
class RunSummary:
    """Counts over every child of the parent, including ones done in earlier runs."""

    total_children: int
    succeeded: int
    failed: int
    duration_minutes: int
    per_child: list[ChildSummary] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["per_child"] = [
            {**asdict(child), "state": child.state.value, "success": child.success} for child in self.per_child
        ]
        return data


def _minutes_between(start: datetime | None, end: datetime) -> int:
    if start is None:
        return 0
    if start.tzinfo is None:
        start = start.replace(tzinfo=timezone.utc)
    return max(0, round((end - start).total_seconds() / 60))


def aggregate_results(
    parent_record: WorkspaceRecord,
    children: Sequence[Task],
    states: Mapping[str, TaskState],
    *,
    child_records: Mapping[str, WorkspaceRecord | None] | None = None,
    details: Mapping[str, str] | None = None,
    now: datetime | None = None,
) -> RunSummary:
    """Fold final child states into a :class:`RunSummary`.

    Anything that is not ``done`` when the run ends counts as failed.
    """

    now = now or datetime.now(timezone.utc)
    child_records = child_records or {}
    details = details or {}
    per_child: list[ChildSummary] = []
    for child in children:
        record = child_records.get(child.identity)
        started = record.created_at if record is not None and record.created_at else parent_record.created_at
        per_child.append(
            ChildSummary(
                identity=child.identity,
                state=states.get(child.identity, TaskState.PENDING),
                duration_minutes=_minutes_between(started, now),
                detail=details.get(child.identity, ""),
            )
        )
    succeeded = sum(1 for child in per_child if child.success)
    return RunSummary(
        total_children=len(per_child),
        succeeded=succeeded,
        failed=len(per_child) - succeeded,
        duration_minutes=_minutes_between(parent_record.created_at, now),
        per_child=per_child,
    )


def report_results(summary: RunSummary, collector: TelemetryCollector, *, parent_id: str) -> None:
    """Emit one event per child, then the run completion event."""

    try:
        for child in summary.per_child:
            collector.track(
                SWARM_CHILD_COMPLETED,
                {"task_id": child.identity, "success": child.success, "duration_minutes": child.duration_minutes},
                parent_id=parent_id,
            )
        collector.track(
            SWARM_COMPLETED,
            {
                "total_children": summary.total_children,
                "succeeded": summary.succeeded,
                "failed": summary.failed,
                "duration_minutes": summary.duration_minutes,
            },
            parent_id=parent_id,
        )
    except Exception as exc:
        logger.debug("Telemetry swarm completion tracking failed", extra={"parent_id": parent_id, "error": str(exc)})


__all__ = ["ChildSummary", "RunSummary", "aggregate_results", "report_results"]
