"""Aggregates derived from stored run events."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any


@dataclass(slots=True)
class RunMetrics:
    runs: int = 0
    children_total: int = 0
    children_succeeded: int = 0
    children_failed: int = 0
    total_duration_minutes: int = 0

    @property
    def success_rate(self) -> float:
        if not self.children_total:
            return 0.0
        return self.children_succeeded / self.children_total

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["success_rate"] = round(self.success_rate, 3)
        return data


__all__ = ["RunMetrics"]
