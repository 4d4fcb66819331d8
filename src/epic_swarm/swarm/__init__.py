"""Swarm orchestration: dependency graph, state resolution, coordination and reporting."""

from .aggregator import ChildSummary, RunSummary, aggregate_results, report_results
from .coordinator import (
    ChildOutcome,
    ParentWorkspaceError,
    RunOptions,
    SwarmCoordinator,
    SwarmPhase,
    SwarmResult,
    SwarmRun,
)
from .graph import DependencyMap, build_dependency_map, detect_references, launch_order
from .resolver import TaskState, TaskStateResolver
from .telemetry import (
    EventStoreCollector,
    LoggingCollector,
    NullCollector,
    TelemetryCollector,
    create_collector,
)

__all__ = [
    "ChildOutcome",
    "ChildSummary",
    "DependencyMap",
    "EventStoreCollector",
    "LoggingCollector",
    "NullCollector",
    "ParentWorkspaceError",
    "RunOptions",
    "RunSummary",
    "SwarmCoordinator",
    "SwarmPhase",
    "SwarmResult",
    "SwarmRun",
    "TaskState",
    "TaskStateResolver",
    "TelemetryCollector",
    "aggregate_results",
    "build_dependency_map",
    "create_collector",
    "detect_references",
    "launch_order",
    "report_results",
]
