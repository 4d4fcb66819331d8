from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
import shutil
import subprocess
from typing import Any

import pytest

from epic_swarm.config import SwarmSettings, get_settings
from epic_swarm.storage import ChromaStore


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings(tmp_path: Path) -> SwarmSettings:
    return SwarmSettings(
        SWARM_METADATA_DIR=str(tmp_path / "metadata"),
        SWARM_EVENTS_PATH=str(tmp_path / "events"),
        SWARM_TELEMETRY_ENABLED=False,
        SWARM_POLL_INTERVAL=0.01,
        SWARM_MAX_PARALLEL=2,
    )


def _git(cwd: Path, *args: str) -> str:
    return subprocess.run(["git", *args], cwd=cwd, check=True, capture_output=True, text=True).stdout


@pytest.fixture
def git_repo(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    if shutil.which("git") is None:
        pytest.skip("git is not installed")
    for key, value in {
        "GIT_AUTHOR_NAME": "Swarm Test",
        "GIT_AUTHOR_EMAIL": "swarm@example.com",
        "GIT_COMMITTER_NAME": "Swarm Test",
        "GIT_COMMITTER_EMAIL": "swarm@example.com",
        "GIT_CONFIG_GLOBAL": str(tmp_path / "gitconfig"),
        "GIT_CONFIG_NOSYSTEM": "1",
    }.items():
        monkeypatch.setenv(key, value)

    repo = tmp_path / "repo"
    repo.mkdir()
    _git(repo, "init", "-q")
    _git(repo, "checkout", "-q", "-b", "main")
    (repo / "README.md").write_text("base\n", encoding="utf-8")
    _git(repo, "add", "README.md")
    _git(repo, "commit", "-q", "-m", "initial")
    return repo


@pytest.fixture
def git():
    return _git


@dataclass
class _Record:
    document: str
    metadata: dict[str, Any]
    id: str


def _matches(metadata: dict[str, Any], where: dict[str, Any]) -> bool:
    for key, value in where.items():
        if key == "$and":
            if not all(_matches(metadata, clause) for clause in value):
                return False
        elif metadata.get(key) != value:
            return False
    return True


class StubCollection:
    def __init__(self) -> None:
        self.records: list[_Record] = []

    def add(self, *, documents, metadatas, ids) -> None:  # type: ignore[override]
        for document, metadata, record_id in zip(documents, metadatas, ids):
            self.records.append(_Record(document=document, metadata=dict(metadata), id=record_id))

    def get(self, *, ids=None, where=None, limit=None):  # type: ignore[override]
        filtered = self.records
        if ids is not None:
            filtered = [record for record in filtered if record.id in set(ids)]
        if where:
            filtered = [record for record in filtered if _matches(record.metadata, where)]
        if limit is not None:
            filtered = filtered[:limit]
        return {
            "ids": [record.id for record in filtered],
            "documents": [record.document for record in filtered],
            "metadatas": [record.metadata for record in filtered],
        }


class StubClient:
    def __init__(self) -> None:
        self.collections = defaultdict(StubCollection)

    def get_or_create_collection(self, name: str) -> StubCollection:
        return self.collections[name]


@pytest.fixture
def chroma_client() -> StubClient:
    return StubClient()


@pytest.fixture
def event_store(tmp_path: Path, chroma_client: StubClient) -> ChromaStore:
    return ChromaStore(
        tmp_path / "events",
        client_factory=lambda: chroma_client,
        clock=lambda: datetime.fromisoformat("2025-01-01T00:00:00+00:00"),
    )
