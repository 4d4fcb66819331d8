"""Input validation performed before any workspace is touched."""

from __future__ import annotations

import re

from .config import COMPLEXITY_LEVELS

_INVALID_REF_CHARS = re.compile(r"[\x00-\x20\x7f~^:?*\[\\]")


class InvalidInputError(ValueError):
    """Raised when operator input is rejected before any side effects happen."""


def validate_branch_name(branch: str) -> str:
    """Reject names `git check-ref-format --branch` would refuse."""

    name = branch.strip()
    problems: list[str] = []
    if not name:
        problems.append("must not be empty")
    if name.startswith("-"):
        problems.append("must not start with '-'")
    if name.startswith("/") or name.endswith("/") or "//" in name:
        problems.append("must not contain empty path components")
    if ".." in name or "@{" in name or name == "@":
        problems.append("must not contain '..' or '@{'")
    if name.endswith(".") or name.endswith(".lock"):
        problems.append("must not end with '.' or '.lock'")
    if any(part.startswith(".") for part in name.split("/")):
        problems.append("path components must not start with '.'")
    if _INVALID_REF_CHARS.search(name):
        problems.append("must not contain spaces, control characters or any of ~^:?*[\\")
    if problems:
        raise InvalidInputError(f"Invalid branch name '{branch}': " + "; ".join(problems))
    return name


def validate_task_id(task_id: str) -> str:
    normalized = str(task_id).strip().removeprefix("#")
    if not normalized:
        raise InvalidInputError("Task identity must not be empty")
    return normalized


def validate_complexity(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip().lower()
    if normalized not in COMPLEXITY_LEVELS:
        raise InvalidInputError(
            f"Invalid complexity '{value}'. Use one of: {', '.join(COMPLEXITY_LEVELS)}"
        )
    return normalized


def validate_mode_flags(*, force_swarm: bool, force_single: bool) -> None:
    if force_swarm and force_single:
        raise InvalidInputError("--force-swarm and --force-single cannot be combined; pick one")


def validate_max_parallel(value: int | None) -> int | None:
    if value is not None and value < 1:
        raise InvalidInputError(f"--max-parallel must be >= 1 (got {value})")
    return value


def validate_timeout(value: float | None) -> float | None:
    if value is not None and value <= 0:
        raise InvalidInputError(f"--timeout must be a positive number of seconds (got {value})")
    return value


__all__ = [
    "InvalidInputError",
    "validate_branch_name",
    "validate_complexity",
    "validate_max_parallel",
    "validate_mode_flags",
    "validate_task_id",
    "validate_timeout",
]
