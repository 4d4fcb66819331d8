from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from epic_swarm.metadata import (
    LifecycleState,
    MetadataStore,
    MetadataStoreError,
    ParentLink,
    WorkspaceRecord,
)


class SteppingClock:
    def __init__(self) -> None:
        self.current = datetime(2025, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.current += timedelta(minutes=1)
        return self.current


def make_record(path: str, task_id: str, **fields) -> WorkspaceRecord:
    return WorkspaceRecord(path=path, branch_name=f"issue/{task_id}", task_ids=[task_id], **fields)


def test_slugify_path() -> None:
    assert MetadataStore.slugify_path("/Users/jane/dev/repo") == "___Users___jane___dev___repo.json"
    assert MetadataStore.slugify_path("/tmp/work tree/x.y/") == "___tmp___work-tree___x-y.json"


def test_write_then_read(tmp_path: Path) -> None:
    store = MetadataStore(tmp_path, clock=SteppingClock())

    written = store.write(make_record("/w/1", "1", state=LifecycleState.PENDING))
    loaded = store.read("/w/1")

    assert loaded is not None
    assert loaded.state is LifecycleState.PENDING
    assert loaded.created_at == written.created_at
    assert (tmp_path / "___w___1.json").exists()
    assert not list(tmp_path.glob(".*.tmp"))


def test_read_missing_returns_none(tmp_path: Path) -> None:
    assert MetadataStore(tmp_path).read("/nowhere") is None


def test_corrupt_record_raises_on_read_and_is_skipped_in_listings(tmp_path: Path) -> None:
    store = MetadataStore(tmp_path)
    store.write(make_record("/w/good", "1"))
    (tmp_path / "___w___bad.json").write_text("{not json", encoding="utf-8")

    with pytest.raises(MetadataStoreError):
        store.read("/w/bad")

    assert [record.path for record in store.list_active()] == ["/w/good"]


def test_update_and_set_state(tmp_path: Path) -> None:
    store = MetadataStore(tmp_path)
    store.write(make_record("/w/2", "2"))

    store.update("/w/2", session_id="sess-9")
    record = store.set_state("/w/2", "code_review")

    assert record.session_id == "sess-9"
    assert store.read("/w/2").state is LifecycleState.CODE_REVIEW


def test_update_missing_record_raises(tmp_path: Path) -> None:
    with pytest.raises(MetadataStoreError):
        MetadataStore(tmp_path).update("/w/none", state=LifecycleState.DONE)


def test_delete_is_idempotent(tmp_path: Path) -> None:
    store = MetadataStore(tmp_path)
    store.write(make_record("/w/3", "3"))

    assert store.delete("/w/3") is True
    assert store.delete("/w/3") is False


def test_archive_moves_record_and_stamps_finish(tmp_path: Path) -> None:
    store = MetadataStore(tmp_path, clock=SteppingClock())
    store.write(make_record("/w/4", "4", state=LifecycleState.DONE, worker_pid=99))

    archived = store.archive("/w/4")

    assert archived is not None
    assert store.read("/w/4") is None
    finished = store.read_finished("/w/4")
    assert finished.status == "finished"
    assert finished.finished_at is not None
    assert finished.worker_pid is None
    document = json.loads((tmp_path / "finished" / "___w___4.json").read_text(encoding="utf-8"))
    assert document["status"] == "finished"
    assert "finishedAt" in document


def test_list_finished_newest_first(tmp_path: Path) -> None:
    store = MetadataStore(tmp_path, clock=SteppingClock())
    for index in range(3):
        store.write(make_record(f"/w/{index}", str(index)))
        store.archive(f"/w/{index}")

    assert [record.task_ids[0] for record in store.list_finished()] == ["2", "1", "0"]
    assert store.find_finished("1").path == "/w/1"


def test_find_active_prefers_newest_duplicate(tmp_path: Path) -> None:
    store = MetadataStore(tmp_path, clock=SteppingClock())
    store.write(make_record("/w/a", "5"))
    store.write(make_record("/w/b", "5"))

    assert store.find_active("#5").path == "/w/b"
    assert store.find_active("6") is None


def test_find_children_by_parent_branch(tmp_path: Path) -> None:
    store = MetadataStore(tmp_path)
    link = ParentLink(identifier="100", branch_name="issue/100", path="/w/100")
    store.write(make_record("/w/101", "101", parent_link=link))
    store.write(make_record("/w/102", "102", parent_link=link))
    store.write(make_record("/w/200", "200"))

    children = store.find_children("issue/100")

    assert sorted(record.task_ids[0] for record in children) == ["101", "102"]


def test_task_lock_creates_lock_file(tmp_path: Path) -> None:
    store = MetadataStore(tmp_path)

    with store.task_lock("#7"):
        assert (tmp_path / ".locks" / "7.lock").exists()

    with store.task_lock("7"):
        pass


def test_write_without_path_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(MetadataStoreError):
        MetadataStore(tmp_path).write(WorkspaceRecord(task_ids=["1"]))
