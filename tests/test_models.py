from __future__ import annotations

import pytest
from pydantic import ValidationError

from epic_swarm.metadata import LifecycleState, SCHEMA_VERSION, Task, WorkspaceRecord


def test_legacy_record_gets_defaults() -> None:
    record = WorkspaceRecord.model_validate(
        {
            "version": 1,
            "description": "Old loom",
            "branchName": "issue/7",
            "worktreePath": "/work/issue-7",
            "issue_numbers": ["#7"],
        }
    )

    assert record.version == 1
    assert record.state is LifecycleState.NONE
    assert record.task_ids == ["7"]
    assert record.child_tasks == []
    assert record.dependency_map == {}
    assert record.session_id == ""
    assert record.status == "active"
    assert not record.is_parent


def test_task_identity_strips_hash() -> None:
    assert Task(number="#101").identity == "101"
    assert Task(number=102, title=None).title == ""
    with pytest.raises(ValidationError):
        Task(number="  ")


def test_document_uses_wire_keys_and_omits_empty_collections() -> None:
    record = WorkspaceRecord(
        branch_name="issue/1",
        path="/w/1",
        task_ids=["1"],
        state=LifecycleState.PENDING,
        session_id="",
    )

    document = record.to_document()

    assert document["branchName"] == "issue/1"
    assert document["worktreePath"] == "/w/1"
    assert document["issue_numbers"] == ["1"]
    assert document["state"] == "pending"
    assert document["version"] == SCHEMA_VERSION
    assert "childIssues" not in document
    assert "dependencyMap" not in document
    assert "workerPid" not in document


def test_parent_record_serializes_children_and_map() -> None:
    record = WorkspaceRecord(
        path="/w/100",
        task_ids=["100"],
        child_tasks=[Task(number="101", title="First"), Task(number="102")],
        dependency_map={"#102": ["101", "#101"], "101": []},
    )

    document = record.to_document()

    assert document["childIssues"][0] == {"number": "101", "title": "First", "body": "", "url": ""}
    assert document["dependencyMap"] == {"102": ["101"], "101": []}
    assert record.is_parent


def test_unknown_keys_survive_round_trip() -> None:
    record = WorkspaceRecord.model_validate(
        {"worktreePath": "/w/3", "issue_numbers": ["3"], "colorHex": "#ff0000"}
    )

    assert record.to_document()["colorHex"] == "#ff0000"


def test_terminal_states() -> None:
    assert LifecycleState.DONE.terminal
    assert LifecycleState.FAILED.terminal
    assert not LifecycleState.CODE_REVIEW.terminal
