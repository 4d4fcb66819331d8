"""JSON file store for workspace records.

Each workspace gets one file in the store root, named by slugifying the
workspace's absolute path. Archived records move to ``finished/`` so that state
queries keep working after a workspace has been torn down.
"""

from __future__ import annotations

import fcntl
import json
import logging
import os
import re
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterator

from pydantic import ValidationError

from .models import LifecycleState, WorkspaceRecord, normalize_task_id

logger = logging.getLogger(__name__)

_SEPARATORS = re.compile(r"[/\\]")
_TRAILING_SEPARATORS = re.compile(r"[/\\]+$")
_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9_-]")


class MetadataStoreError(RuntimeError):
    """Raised when the store cannot be read or written coherently."""


class MetadataStore:
    """Read, write, archive and query workspace records."""

    def __init__(
        self,
        root: Path,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._root = Path(root)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def root(self) -> Path:
        return self._root

    @property
    def finished_dir(self) -> Path:
        return self._root / "finished"

    @property
    def locks_dir(self) -> Path:
        return self._root / ".locks"

    @staticmethod
    def slugify_path(worktree_path: str | Path) -> str:
        """Convert a workspace path into a record filename.

        ``/Users/jane/dev/repo`` becomes ``___Users___jane___dev___repo.json``.
        """

        slug = _TRAILING_SEPARATORS.sub("", str(worktree_path))
        slug = _SEPARATORS.sub("___", slug)
        slug = _UNSAFE_CHARS.sub("-", slug)
        return f"{slug}.json"

    def record_path(self, worktree_path: str | Path) -> Path:
        return self._root / self.slugify_path(worktree_path)

    def finished_record_path(self, worktree_path: str | Path) -> Path:
        return self.finished_dir / self.slugify_path(worktree_path)

    def _write_document(self, target: Path, document: dict[str, Any]) -> None:
        tmp_path = target.with_name(f".{target.name}.{os.getpid()}.tmp")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as handle:
                handle.write(json.dumps(document, indent=2))
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, target)
        except OSError as exc:
            tmp_path.unlink(missing_ok=True)
            raise MetadataStoreError(
                f"Cannot write workspace record {target}: {exc}. "
                f"Check permissions on {self._root} or set SWARM_METADATA_DIR."
            ) from exc

    def _load(self, source: Path) -> WorkspaceRecord:
        try:
            document = json.loads(source.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise MetadataStoreError(f"Cannot read workspace record {source}: {exc}") from exc
        if not isinstance(document, dict):
            raise MetadataStoreError(f"Workspace record {source} is not a JSON object")
        try:
            return WorkspaceRecord.model_validate(document)
        except ValidationError as exc:
            raise MetadataStoreError(f"Workspace record {source} failed validation: {exc}") from exc

    def _scan(self, directory: Path) -> list[WorkspaceRecord]:
        if not directory.is_dir():
            return []
        records: list[WorkspaceRecord] = []
        for source in sorted(directory.glob("*.json")):
            try:
                records.append(self._load(source))
            except MetadataStoreError as exc:
                logger.warning("Skipping unreadable workspace record", extra={"path": str(source), "error": str(exc)})
        return records

    def write(self, record: WorkspaceRecord) -> WorkspaceRecord:
        """Persist a record; the workspace counts as active once this returns."""

        if not record.path:
            raise MetadataStoreError("Workspace record has no worktreePath; cannot determine its file name")
        if record.created_at is None:
            record = record.model_copy(update={"created_at": self._clock()})
        self._write_document(self.record_path(record.path), record.to_document())
        logger.debug("Workspace record written", extra={"path": record.path, "state": record.state.value})
        return record

    def read(self, worktree_path: str | Path) -> WorkspaceRecord | None:
        """Return the active record for a workspace, or ``None`` when there is none."""

        source = self.record_path(worktree_path)
        if not source.exists():
            return None
        return self._load(source)

    def read_finished(self, worktree_path: str | Path) -> WorkspaceRecord | None:
        source = self.finished_record_path(worktree_path)
        if not source.exists():
            return None
        return self._load(source)

    def update(self, worktree_path: str | Path, **changes: Any) -> WorkspaceRecord:
        record = self.read(worktree_path)
        if record is None:
            raise MetadataStoreError(
                f"No workspace record for {worktree_path}; it may have been archived or never provisioned"
            )
        updated = record.model_copy(update=changes)
        self._write_document(self.record_path(worktree_path), updated.to_document())
        return updated

    def set_state(self, worktree_path: str | Path, state: LifecycleState | str) -> WorkspaceRecord:
        return self.update(worktree_path, state=LifecycleState(state))

    def delete(self, worktree_path: str | Path) -> bool:
        """Remove an active record. Missing records are not an error."""

        target = self.record_path(worktree_path)
        try:
            target.unlink()
        except FileNotFoundError:
            logger.debug("No workspace record to delete", extra={"path": str(worktree_path)})
            return False
        except OSError as exc:
            raise MetadataStoreError(f"Cannot delete workspace record {target}: {exc}") from exc
        return True

    def archive(self, worktree_path: str | Path) -> WorkspaceRecord | None:
        """Move an active record to ``finished/``, stamping ``finishedAt``."""

        record = self.read(worktree_path)
        if record is None:
            return None
        archived = record.model_copy(
            update={"status": "finished", "finished_at": self._clock(), "worker_pid": None, "worker_command": None}
        )
        self._write_document(self.finished_record_path(worktree_path), archived.to_document())
        self.delete(worktree_path)
        logger.info("Workspace record archived", extra={"path": str(worktree_path), "state": archived.state.value})
        return archived

    def list_active(self) -> list[WorkspaceRecord]:
        return self._scan(self._root)

    def list_finished(self) -> list[WorkspaceRecord]:
        """Return archived records, most recently finished first."""

        records = self._scan(self.finished_dir)
        records.sort(
            key=lambda record: record.finished_at or datetime.min.replace(tzinfo=timezone.utc),
            reverse=True,
        )
        return records

    def find_active(self, task_id: str) -> WorkspaceRecord | None:
        matches = [record for record in self.list_active() if record.represents(task_id)]
        if not matches:
            return None
        if len(matches) > 1:
            logger.warning(
                "Multiple active workspace records for one task; using the newest",
                extra={"task_id": normalize_task_id(task_id), "paths": [record.path for record in matches]},
            )
            matches.sort(key=lambda record: record.created_at or datetime.min.replace(tzinfo=timezone.utc))
        return matches[-1]

    def find_finished(self, task_id: str) -> WorkspaceRecord | None:
        for record in self.list_finished():
            if record.represents(task_id):
                return record
        return None

    def find_children(self, parent_branch: str) -> list[WorkspaceRecord]:
        return [
            record
            for record in self.list_active()
            if record.parent_link is not None and record.parent_link.branch_name == parent_branch
        ]

    @contextmanager
    def task_lock(self, task_id: str) -> Iterator[None]:
        """Hold an exclusive, cross-process lock for provisioning one task."""

        lock_path = self.locks_dir / f"{self.slugify_path(normalize_task_id(task_id))[:-5]}.lock"
        try:
            lock_path.parent.mkdir(parents=True, exist_ok=True)
            handle = open(lock_path, "a+", encoding="utf-8")
        except OSError as exc:
            raise MetadataStoreError(f"Cannot create provisioning lock {lock_path}: {exc}") from exc
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
            yield
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
            handle.close()


__all__ = ["MetadataStore", "MetadataStoreError"]
