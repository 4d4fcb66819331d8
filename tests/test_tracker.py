from __future__ import annotations

from pathlib import Path

import pytest

from epic_swarm.tracker import (
    IssueTracker,
    TrackerError,
    YamlIssueTracker,
    fetch_children_safe,
    fetch_task_details_safe,
)

MANIFEST = """
tasks:
  "100":
    title: Rework billing
    children: [101, "#102", 103]
  "101":
    title: Extract invoice model
    body: "Depends on #102"
    depends_on: [102]
  "102":
    title: Add currency column
    url: https://tracker.example.com/102
"""


@pytest.fixture
def tracker(tmp_path: Path) -> YamlIssueTracker:
    path = tmp_path / "tasks.yaml"
    path.write_text(MANIFEST, encoding="utf-8")
    return YamlIssueTracker(path)


def test_yaml_tracker_satisfies_protocol(tracker: YamlIssueTracker) -> None:
    assert isinstance(tracker, IssueTracker)


def test_fetch_children_in_manifest_order(tracker: YamlIssueTracker) -> None:
    children = tracker.fetch_children("#100")

    assert [child.identity for child in children] == ["101", "102", "103"]
    assert children[0].body == "Depends on #102"
    assert children[1].url == "https://tracker.example.com/102"
    assert children[2].title == ""


def test_fetch_children_of_leaf_is_empty(tracker: YamlIssueTracker) -> None:
    assert tracker.fetch_children("102") == []


def test_fetch_children_unknown_parent_raises(tracker: YamlIssueTracker) -> None:
    with pytest.raises(TrackerError):
        tracker.fetch_children("999")


def test_fetch_task_details_skips_unknown(tracker: YamlIssueTracker) -> None:
    details = tracker.fetch_task_details(["100", "555"])

    assert [task.title for task in details] == ["Rework billing"]


def test_fetch_blockers(tracker: YamlIssueTracker) -> None:
    assert tracker.fetch_blockers("101") == ["102"]
    assert tracker.fetch_blockers("102") == []


def test_missing_manifest_raises(tmp_path: Path) -> None:
    with pytest.raises(TrackerError, match="SWARM_TASKS_FILE"):
        YamlIssueTracker(tmp_path / "absent.yaml").fetch_children("1")


def test_manifest_without_tasks_mapping_raises(tmp_path: Path) -> None:
    path = tmp_path / "tasks.yaml"
    path.write_text("- just\n- a list\n", encoding="utf-8")

    with pytest.raises(TrackerError, match="'tasks' mapping"):
        YamlIssueTracker(path).fetch_task_details(["1"])


def test_safe_wrappers_swallow_tracker_failures(tmp_path: Path) -> None:
    broken = YamlIssueTracker(tmp_path / "absent.yaml")

    assert fetch_children_safe(broken, "1") == []
    assert fetch_task_details_safe(broken, ["1"]) == []
    assert fetch_children_safe(None, "1") == []
