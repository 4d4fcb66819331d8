from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from epic_swarm.config import SwarmSettings, get_settings
from epic_swarm.validation import (
    InvalidInputError,
    validate_branch_name,
    validate_complexity,
    validate_max_parallel,
    validate_mode_flags,
    validate_task_id,
    validate_timeout,
)


def test_settings_from_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("SWARM_METADATA_DIR", str(tmp_path / "meta"))
    monkeypatch.setenv("SWARM_MAX_PARALLEL", "3")
    monkeypatch.setenv("SWARM_PROFILE_PATHS", f"{tmp_path / 'a'}:{tmp_path / 'b'}")
    monkeypatch.setenv("SWARM_LOG_LEVEL", "debug")
    monkeypatch.setenv("SWARM_DEFAULT_COMPLEXITY", "Complex")

    settings = get_settings()

    assert settings.metadata_dir == (tmp_path / "meta").resolve()
    assert settings.max_parallel == 3
    assert settings.profile_paths == ((tmp_path / "a").resolve(), (tmp_path / "b").resolve())
    assert settings.log_level == "DEBUG"
    assert settings.default_complexity == "complex"
    assert get_settings() is settings


def test_settings_defaults(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)
    for key in ("SWARM_MAX_PARALLEL", "SWARM_CHILD_TIMEOUT", "SWARM_BRANCH_PREFIX"):
        monkeypatch.delenv(key, raising=False)

    settings = SwarmSettings()

    assert settings.max_parallel == 4
    assert settings.child_timeout is None
    assert settings.branch_prefix == "issue/"
    assert settings.profile_paths == (Path("profiles"),)


@pytest.mark.parametrize(
    ("key", "value"),
    [
        ("SWARM_MAX_PARALLEL", "0"),
        ("SWARM_CHILD_TIMEOUT", "-1"),
        ("SWARM_POLL_INTERVAL", "0"),
        ("SWARM_LOG_LEVEL", "chatty"),
        ("SWARM_DEFAULT_COMPLEXITY", "epic"),
    ],
)
def test_invalid_settings_rejected(monkeypatch: pytest.MonkeyPatch, tmp_path: Path, key: str, value: str) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv(key, value)

    with pytest.raises(ValidationError):
        SwarmSettings()


@pytest.mark.parametrize("name", ["issue/101", "feature/ENG-4_fix", "epic-7"])
def test_valid_branch_names(name: str) -> None:
    assert validate_branch_name(f" {name} ") == name


@pytest.mark.parametrize(
    "name",
    ["", "-oops", "issue//1", "issue/1/", "a..b", "issue/1.lock", "issue/.hidden", "has space", "what?", "x@{1}"],
)
def test_invalid_branch_names(name: str) -> None:
    with pytest.raises(InvalidInputError):
        validate_branch_name(name)


def test_scalar_validators() -> None:
    assert validate_task_id(" #12 ") == "12"
    assert validate_complexity(" Trivial ") == "trivial"
    assert validate_complexity(None) is None
    assert validate_max_parallel(None) is None
    assert validate_timeout(1.5) == 1.5

    with pytest.raises(InvalidInputError):
        validate_task_id("#")
    with pytest.raises(InvalidInputError):
        validate_complexity("huge")
    with pytest.raises(InvalidInputError):
        validate_max_parallel(0)
    with pytest.raises(InvalidInputError):
        validate_timeout(0)


def test_mode_flags_are_exclusive() -> None:
    validate_mode_flags(force_swarm=True, force_single=False)
    with pytest.raises(InvalidInputError, match="cannot be combined"):
        validate_mode_flags(force_swarm=True, force_single=True)
