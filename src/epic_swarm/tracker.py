"""Issue tracker contract and the file-backed tracker used by the CLI."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterable, Protocol, runtime_checkable

import yaml
from pydantic import ValidationError

from .metadata.models import Task, normalize_task_id

logger = logging.getLogger(__name__)


class TrackerError(RuntimeError):
    """Raised when a tracker cannot answer a query."""


@runtime_checkable
class IssueTracker(Protocol):
    """What the orchestrator needs from an issue tracker.

    Trackers may additionally implement ``fetch_blockers(identity) -> list[str]``
    to contribute explicit blocking relations to the dependency map.
    """

    name: str

    def fetch_children(self, parent_id: str) -> list[Task]:
        ...

    def fetch_task_details(self, identities: Iterable[str]) -> list[Task]:
        ...


def fetch_children_safe(tracker: IssueTracker | None, parent_id: str) -> list[Task]:
    """Fetch child tasks, treating any tracker failure as "no children"."""

    if tracker is None:
        return []
    try:
        return list(tracker.fetch_children(parent_id))
    except Exception as exc:
        logger.warning(
            "Failed to fetch child tasks; continuing without children",
            extra={"parent_id": parent_id, "tracker": getattr(tracker, "name", type(tracker).__name__), "error": str(exc)},
        )
        return []


def fetch_task_details_safe(tracker: IssueTracker | None, identities: Iterable[str]) -> list[Task]:
    if tracker is None:
        return []
    identities = [normalize_task_id(identity) for identity in identities]
    try:
        return list(tracker.fetch_task_details(identities))
    except Exception as exc:
        logger.warning(
            "Failed to fetch task details",
            extra={"identities": identities, "error": str(exc)},
        )
        return []


class YamlIssueTracker:
    """Tracker backed by a YAML manifest.

    The manifest maps task identities to their fields::

        tasks:
          "100":
            title: Rework billing
            children: [101, 102]
          "101":
            title: Extract invoice model
            body: "Depends on #102"
            depends_on: [102]

    Quote values that contain ``#``; YAML reads an unquoted `` #`` as a comment.
    """

    name = "yaml"

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> dict[str, dict[str, Any]]:
        try:
            document = yaml.safe_load(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise TrackerError(f"Task manifest {self._path} does not exist; pass --tasks-file or set SWARM_TASKS_FILE") from exc
        except (OSError, yaml.YAMLError) as exc:
            raise TrackerError(f"Cannot read task manifest {self._path}: {exc}") from exc

        tasks = (document or {}).get("tasks") if isinstance(document, dict) else None
        if not isinstance(tasks, dict):
            raise TrackerError(f"Task manifest {self._path} must contain a 'tasks' mapping")
        entries: dict[str, dict[str, Any]] = {}
        for key, entry in tasks.items():
            entries[normalize_task_id(key)] = entry if isinstance(entry, dict) else {}
        return entries

    def _task(self, identity: str, entry: dict[str, Any]) -> Task:
        try:
            return Task(
                number=identity,
                title=entry.get("title"),
                body=entry.get("body"),
                url=entry.get("url"),
            )
        except ValidationError as exc:
            raise TrackerError(f"Task '{identity}' in {self._path} is invalid: {exc}") from exc

    def fetch_children(self, parent_id: str) -> list[Task]:
        entries = self._load()
        parent = entries.get(normalize_task_id(parent_id))
        if parent is None:
            raise TrackerError(f"Task '{parent_id}' is not defined in {self._path}")
        children: list[Task] = []
        for child in parent.get("children") or []:
            identity = normalize_task_id(child)
            entry = entries.get(identity)
            if entry is None:
                logger.warning("Child task missing from manifest", extra={"parent_id": parent_id, "task_id": identity})
                entry = {}
            children.append(self._task(identity, entry))
        return children

    def fetch_task_details(self, identities: Iterable[str]) -> list[Task]:
        entries = self._load()
        found: list[Task] = []
        for identity in identities:
            key = normalize_task_id(identity)
            if key in entries:
                found.append(self._task(key, entries[key]))
        return found

    def fetch_blockers(self, identity: str) -> list[str]:
        entry = self._load().get(normalize_task_id(identity)) or {}
        return [normalize_task_id(dep) for dep in entry.get("depends_on") or []]


__all__ = [
    "IssueTracker",
    "Task",
    "TrackerError",
    "YamlIssueTracker",
    "fetch_children_safe",
    "fetch_task_details_safe",
]
