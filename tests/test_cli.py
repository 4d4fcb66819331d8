from __future__ import annotations

import argparse
import importlib.util
import json
from pathlib import Path

import pytest

from epic_swarm import cli
from epic_swarm.metadata import LifecycleState, MetadataStore, ParentLink, Task, WorkspaceRecord
from epic_swarm.storage import ChromaStore, ChromaUnavailableError, swarm_stream
from epic_swarm.workspace import WorkspaceError


def _args(**overrides) -> argparse.Namespace:
    values = {"parent": "100", "force_swarm": False, "force_single": False}
    values.update(overrides)
    return argparse.Namespace(**values)


@pytest.fixture
def swarm_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.chdir(tmp_path)
    metadata_dir = tmp_path / "metadata"
    monkeypatch.setenv("SWARM_METADATA_DIR", str(metadata_dir))
    monkeypatch.setenv("SWARM_EVENTS_PATH", str(tmp_path / "events"))
    monkeypatch.setenv("SWARM_TELEMETRY_ENABLED", "false")
    monkeypatch.setenv("SWARM_PROFILE_PATHS", str(tmp_path / "profiles"))
    monkeypatch.setenv("SWARM_LOG_LEVEL", "WARNING")
    return metadata_dir


def test_decide_mode_flags_win() -> None:
    assert cli.decide_mode(_args(force_single=True), child_count=3, resumable=True, interactive=True) == "single"
    assert cli.decide_mode(_args(force_swarm=True), child_count=0, resumable=False, interactive=True) == "swarm"


def test_decide_mode_resumes_persisted_swarm() -> None:
    assert cli.decide_mode(_args(), child_count=2, resumable=True, interactive=True, confirm=lambda q: False) == "swarm"


def test_decide_mode_without_children_runs_single() -> None:
    assert cli.decide_mode(_args(), child_count=0, resumable=False, interactive=False) == "single"


def test_decide_mode_asks_when_interactive() -> None:
    questions: list[str] = []

    def decline(question: str) -> bool:
        questions.append(question)
        return False

    mode = cli.decide_mode(_args(), child_count=2, resumable=False, interactive=True, confirm=decline)

    assert mode == "single"
    assert questions == ["Task #100 has 2 child tasks. Run them as a swarm?"]
    assert cli.decide_mode(_args(), child_count=2, resumable=False, interactive=False) == "swarm"


@pytest.mark.parametrize(
    "argv",
    [
        ["run", "100", "--force-swarm", "--force-single"],
        ["run", "#"],
        ["run", "100", "--complexity", "huge"],
        ["run", "100", "--max-parallel", "0"],
        ["run", "100", "--timeout", "-5"],
    ],
)
def test_invalid_input_exits_2(swarm_env, capsys, argv) -> None:
    assert cli.main(argv) == cli.EXIT_INVALID_INPUT
    assert capsys.readouterr().err.startswith("error:")


def test_invalid_configuration_exits_2(swarm_env, monkeypatch, capsys) -> None:
    monkeypatch.setenv("SWARM_MAX_PARALLEL", "0")

    assert cli.main(["status", "100"]) == cli.EXIT_INVALID_INPUT
    assert "invalid configuration" in capsys.readouterr().err


def test_status_reports_children(swarm_env, capsys) -> None:
    store = MetadataStore(swarm_env)
    store.write(
        WorkspaceRecord(
            branch_name="issue/100",
            path="/w/100",
            task_ids=["100"],
            state=LifecycleState.IN_PROGRESS,
            child_tasks=[Task(number="101"), Task(number="102")],
            complexity="simple",
        )
    )
    store.write(WorkspaceRecord(path="/w/101", branch_name="issue/101", task_ids=["101"], state=LifecycleState.FAILED))

    assert cli.main(["status", "#100"]) == cli.EXIT_OK

    payload = json.loads(capsys.readouterr().out)
    assert payload["state"] == "in_progress"
    assert [row["state"] for row in payload["children"]] == ["failed", "pending"]


def test_status_unknown_task(swarm_env, capsys) -> None:
    assert cli.main(["status", "404"]) == cli.EXIT_FAILURE
    assert "no workspace recorded" in capsys.readouterr().err


def test_missing_worker_exits_1(swarm_env, git_repo, monkeypatch, capsys) -> None:
    monkeypatch.setenv("WORKER_PATH", str(git_repo / "no-such-worker"))

    code = cli.main(["run", "100", "--force-single", "--repo", str(git_repo)])

    assert code == cli.EXIT_FAILURE
    assert "WORKER_PATH" in capsys.readouterr().err


WORKER_SCRIPT = """#!/bin/sh
echo "$SWARM_TASK_ID" > "task-$SWARM_TASK_ID.txt"
git add "task-$SWARM_TASK_ID.txt"
git commit -q -m "task $SWARM_TASK_ID"
"""

MANIFEST = """
tasks:
  "100":
    title: Parent
    children: [101, 102]
  "101":
    title: First
  "102":
    title: Second
    body: "Depends on #101"
"""


def test_run_swarm_end_to_end(swarm_env, git_repo, git, tmp_path, monkeypatch, capsys) -> None:
    worker = tmp_path / "worker.sh"
    worker.write_text(WORKER_SCRIPT, encoding="utf-8")
    worker.chmod(0o755)
    manifest = tmp_path / "tasks.yaml"
    manifest.write_text(MANIFEST, encoding="utf-8")
    monkeypatch.setenv("WORKER_PATH", str(worker))

    code = cli.main(
        [
            "run",
            "100",
            "--force-swarm",
            "--max-parallel",
            "1",
            "--repo",
            str(git_repo),
            "--tasks-file",
            str(manifest),
            "--json",
        ]
    )

    output = json.loads(capsys.readouterr().out)
    parent_path = tmp_path.resolve() / "worktree-issue-100"
    assert code == cli.EXIT_OK
    assert output["parent_state"] == "done"
    assert output["summary"]["succeeded"] == 2
    assert (parent_path / "task-101.txt").exists()
    assert (parent_path / "task-102.txt").exists()
    assert not (tmp_path / "worktree-issue-101").exists()
    assert "issue/101" not in git(git_repo, "worktree", "list")

    store = MetadataStore(swarm_env)
    assert store.find_finished("101").state is LifecycleState.DONE
    parent = store.find_active("100")
    assert parent.state is LifecycleState.DONE
    assert parent.dependency_map == {"101": [], "102": ["101"]}


def test_run_with_missing_parent_workspace_exits_1(swarm_env, git_repo, tmp_path, monkeypatch, capsys) -> None:
    worker = tmp_path / "worker.sh"
    worker.write_text(WORKER_SCRIPT, encoding="utf-8")
    worker.chmod(0o755)
    monkeypatch.setenv("WORKER_PATH", str(worker))
    MetadataStore(swarm_env).write(
        WorkspaceRecord(
            branch_name="issue/100",
            path=str(tmp_path / "worktree-issue-100"),
            task_ids=["100"],
            state=LifecycleState.IN_PROGRESS,
            child_tasks=[Task(number="101")],
        )
    )

    code = cli.main(["run", "100", "--force-swarm", "--repo", str(git_repo)])

    assert code == cli.EXIT_FAILURE
    assert "is missing; recreate it or pass --workspace" in capsys.readouterr().err


def test_run_reports_git_failures_without_traceback(swarm_env, monkeypatch, capsys) -> None:
    class FailingCoordinator:
        async def run(self, parent_id, options):
            raise WorkspaceError("Cannot run git: not a repository")

    monkeypatch.setattr(cli, "build_coordinator", lambda *args, **kwargs: FailingCoordinator())

    code = cli.main(["run", "100", "--force-swarm"])

    assert code == cli.EXIT_FAILURE
    assert "Cannot run git" in capsys.readouterr().err


def _load_diag():
    script = Path(__file__).resolve().parents[1] / "scripts" / "swarm_diag.py"
    spec = importlib.util.spec_from_file_location("swarm_diag", script)
    module = importlib.util.module_from_spec(spec)
    assert spec.loader is not None
    spec.loader.exec_module(module)
    return module


def test_diag_workspaces_and_children(swarm_env, capsys) -> None:
    store = MetadataStore(swarm_env)
    store.write(
        WorkspaceRecord(
            branch_name="issue/100", path="/w/100", task_ids=["100"], child_tasks=[Task(number="101")]
        )
    )
    store.write(
        WorkspaceRecord(
            branch_name="issue/101",
            path="/w/101",
            task_ids=["101"],
            state=LifecycleState.IN_PROGRESS,
            parent_link=ParentLink(identifier="100", branch_name="issue/100", path="/w/100"),
        )
    )
    diag = _load_diag()

    diag.main(["workspaces", "--json"])
    rows = json.loads(capsys.readouterr().out)
    assert {row["path"] for row in rows} == {"/w/100", "/w/101"}

    diag.main(["children", "100"])
    children = json.loads(capsys.readouterr().out)
    assert [row["task_ids"] for row in children] == [["101"]]
    assert children[0]["parent"] == "100"


def test_diag_handles_missing_chroma(swarm_env, monkeypatch, capsys) -> None:
    def unavailable(self):
        raise ChromaUnavailableError("chromadb package is not installed")

    monkeypatch.setattr(ChromaStore, "_default_client_factory", unavailable)
    diag = _load_diag()

    with pytest.raises(SystemExit) as excinfo:
        diag.main(["events", "--parent", "100"])

    assert excinfo.value.code == 1
    assert "Chroma unavailable" in capsys.readouterr().out


def test_diag_metrics(swarm_env, monkeypatch, capsys, event_store) -> None:
    event_store.record_event(
        stream=swarm_stream("100"),
        event_type="swarm.completed",
        body={"total_children": 3, "succeeded": 2, "failed": 1, "duration_minutes": 12},
    )
    event_store.record_event(
        stream=swarm_stream("100"),
        event_type="swarm.child_failed",
        body={"task_id": "C"},
        metadata={"stage": "worker"},
    )
    diag = _load_diag()
    monkeypatch.setattr(diag, "load_store", lambda settings: event_store)

    diag.main(["metrics", "--parent", "100"])

    payload = json.loads(capsys.readouterr().out)
    assert payload["runs"] == 1
    assert payload["children_failed"] == 1
    assert payload["child_failures_by_stage"] == {"worker": 1}
