from pathlib import Path
import textwrap

import pytest

from epic_swarm.metadata import Task
from epic_swarm.profiles import (
    DEFAULT_PROFILE,
    ChecklistItem,
    ProfileLoadError,
    ProfileLoader,
    WorkerProfile,
    build_worker_prompt,
)


def write_profile(path: Path, *, title: str) -> None:
    path.write_text(
        textwrap.dedent(
            """
            id: sample
            title: {title}
            system_prompt: Prompt
            goalset:
              - goal
            constraints:
              - constraint
            checklist:
              - id: step
                description: do something
            flags:
              - --full-auto
            """
        ).strip().format(title=title),
        encoding="utf-8",
    )


def test_loader_merges_paths(tmp_path: Path) -> None:
    base = tmp_path / "base"
    base.mkdir()
    override = tmp_path / "override"
    override.mkdir()

    write_profile(base / "sample.yaml", title="Base Title")
    write_profile(override / "sample.yaml", title="Override Title")

    loader = ProfileLoader([base, override])
    profiles = loader.load_all()

    assert profiles["sample"].title == "Override Title"
    assert profiles["sample"].flags == ["--full-auto"]


def test_loader_handles_missing_profiles(tmp_path: Path) -> None:
    loader = ProfileLoader([tmp_path, tmp_path / "absent"])
    assert loader.load_all() == {}
    assert loader.search_paths == [tmp_path]


def test_loader_reports_validation_error(tmp_path: Path) -> None:
    invalid = tmp_path / "invalid"
    invalid.mkdir()
    (invalid / "broken.yaml").write_text("id: \ntitle: test", encoding="utf-8")

    loader = ProfileLoader([invalid])

    with pytest.raises(ProfileLoadError):
        loader.load_all()


def test_resolve_falls_back_to_builtin_profile(tmp_path: Path) -> None:
    loader = ProfileLoader([tmp_path])

    assert loader.resolve("swarm-worker") is DEFAULT_PROFILE
    with pytest.raises(ProfileLoadError, match="SWARM_WORKER_PROFILE"):
        loader.resolve("reviewer")


def test_shipped_profile_is_valid() -> None:
    shipped = Path(__file__).resolve().parents[1] / "profiles"

    profile = ProfileLoader([shipped]).get("swarm-worker")

    assert profile.checklist[0].required is False


def test_command_flags_adds_model() -> None:
    profile = WorkerProfile(id="p", title="P", system_prompt="x", flags=["--full-auto"])

    assert profile.command_flags("gpt-5") == ["--model", "gpt-5", "--full-auto"]
    assert profile.command_flags() == ["--full-auto"]
    pinned = profile.model_copy(update={"model": "o3"})
    assert pinned.command_flags("gpt-5") == ["--model", "o3", "--full-auto"]


def test_worker_prompt_contents() -> None:
    profile = DEFAULT_PROFILE.model_copy(
        update={"checklist": [*DEFAULT_PROFILE.checklist, ChecklistItem(id="lint", description="Run lint", required=False)]}
    )
    task = Task(number="101", title="Extract invoice model", body="Depends on #102", url="https://t/101")

    prompt = build_worker_prompt(
        profile,
        task,
        parent_id="100",
        dependencies=["102"],
        complexity="trivial",
        skip_cleanup=True,
    )

    assert prompt.startswith("You are a worker in a swarm.")
    assert "Task #101: Extract invoice model" in prompt
    assert "Part of parent task #100." in prompt
    assert "Builds on: #102" in prompt
    assert "This task is trivial." in prompt
    assert "3. Run lint (optional)" in prompt
    assert "Leave the worktree in place" in prompt
    assert prompt.endswith("\n")
