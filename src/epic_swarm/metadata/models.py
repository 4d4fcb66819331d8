"""Persisted workspace record schema."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

SCHEMA_VERSION = 2


class LifecycleState(str, Enum):
    """Lifecycle of a workspace as written by the orchestrator and its workers."""

    NONE = "none"
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    CODE_REVIEW = "code_review"
    DONE = "done"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (LifecycleState.DONE, LifecycleState.FAILED)


def normalize_task_id(value: Any) -> str:
    return str(value).strip().removeprefix("#")


class Task(BaseModel):
    """A child unit of work as fetched from the issue tracker."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    identity: str = Field(..., alias="number", description="Stable tracker identity, without '#'.")
    title: str = Field(default="", description="Short human-readable title.")
    body: str = Field(default="", description="Free-text description; may reference siblings.")
    url: str = Field(default="", description="Link back to the tracker.")

    @field_validator("identity", mode="before")
    @classmethod
    def _normalize_identity(cls, value: Any) -> str:
        normalized = normalize_task_id(value) if value is not None else ""
        if not normalized:
            raise ValueError("Task identity must not be empty")
        return normalized

    @field_validator("title", "body", "url", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> str:
        return "" if value is None else str(value)


class ParentLink(BaseModel):
    """Pointer from a child workspace back to the workspace that owns it."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    type: str = "epic"
    identifier: str
    branch_name: str | None = Field(default=None, alias="branchName")
    path: str | None = Field(default=None, alias="worktreePath")

    @field_validator("identifier", mode="before")
    @classmethod
    def _coerce_identifier(cls, value: Any) -> str:
        return normalize_task_id(value)


class WorkspaceRecord(BaseModel):
    """Durable metadata for one workspace (parent or child).

    Older files lack most optional keys; every field therefore carries a default
    and unknown keys are kept so a rewrite never loses data written by a newer
    worker.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    version: int = SCHEMA_VERSION
    description: str = ""
    branch_name: str | None = Field(default=None, alias="branchName")
    path: str | None = Field(default=None, alias="worktreePath")
    task_ids: list[str] = Field(default_factory=list, alias="issue_numbers")
    tracker: str | None = Field(default=None, alias="issueTracker")
    parent_link: ParentLink | None = Field(default=None, alias="parentLoom")
    state: LifecycleState = LifecycleState.NONE
    created_at: datetime | None = None
    finished_at: datetime | None = Field(default=None, alias="finishedAt")
    status: str = "active"
    session_id: str = Field(default="", alias="sessionId")
    worker_pid: int | None = Field(default=None, alias="workerPid")
    worker_command: str | None = Field(default=None, alias="workerCommand")
    child_tasks: list[Task] = Field(default_factory=list, alias="childIssues")
    dependency_map: dict[str, list[str]] = Field(default_factory=dict, alias="dependencyMap")
    complexity: str | None = None
    skip_cleanup: bool | None = Field(default=None, alias="skipCleanup")

    @field_validator("state", mode="before")
    @classmethod
    def _default_state(cls, value: Any) -> Any:
        if value is None or value == "":
            return LifecycleState.NONE
        return value

    @field_validator("task_ids", mode="before")
    @classmethod
    def _normalize_task_ids(cls, value: Any) -> list[str]:
        if value is None:
            return []
        return [normalize_task_id(item) for item in value if normalize_task_id(item)]

    @field_validator("session_id", mode="before")
    @classmethod
    def _none_session(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @field_validator("dependency_map", mode="before")
    @classmethod
    def _normalize_dependency_map(cls, value: Any) -> dict[str, list[str]]:
        if not value:
            return {}
        normalized: dict[str, list[str]] = {}
        for key, deps in dict(value).items():
            items: list[str] = []
            for dep in deps or []:
                dep_id = normalize_task_id(dep)
                if dep_id and dep_id not in items:
                    items.append(dep_id)
            normalized[normalize_task_id(key)] = items
        return normalized

    @property
    def is_parent(self) -> bool:
        return bool(self.child_tasks)

    @property
    def is_finished(self) -> bool:
        return self.status == "finished"

    def represents(self, task_id: str) -> bool:
        return normalize_task_id(task_id) in self.task_ids

    def to_document(self) -> dict[str, Any]:
        """Serialize to the on-disk JSON shape."""

        document = self.model_dump(mode="json", by_alias=True, exclude_none=True)
        for key in ("childIssues", "dependencyMap"):
            if not document.get(key):
                document.pop(key, None)
        return document


__all__ = [
    "LifecycleState",
    "ParentLink",
    "SCHEMA_VERSION",
    "Task",
    "WorkspaceRecord",
    "normalize_task_id",
]
