"""Environment helpers for worker processes."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping

_SANITIZED_VARS = {
    "PYTHONHOME",
    "PYTHONPATH",
    "VIRTUAL_ENV",
    "PIP_RESPECT_VIRTUALENV",
}


def sanitize_environment(additional: Mapping[str, str] | None = None) -> dict[str, str]:
    """Return a sanitized environment suitable for subprocess execution."""

    env = dict(os.environ)
    for key in _SANITIZED_VARS:
        env.pop(key, None)
    if additional:
        env.update(additional)
    return env


def worker_environment(
    *,
    task_id: str,
    workspace_path: Path,
    metadata_dir: Path,
    session_id: str = "",
    parent_id: str | None = None,
    skip_cleanup: bool = False,
) -> dict[str, str]:
    """Variables a worker reads to find its workspace and report state back."""

    env = {
        "SWARM_TASK_ID": task_id,
        "SWARM_WORKSPACE_PATH": str(workspace_path),
        "SWARM_METADATA_DIR": str(metadata_dir),
        "SWARM_SESSION_ID": session_id,
        "SWARM_SKIP_CLEANUP": "1" if skip_cleanup else "0",
    }
    if parent_id:
        env["SWARM_PARENT_ID"] = parent_id
    return env


__all__ = ["sanitize_environment", "worker_environment"]
