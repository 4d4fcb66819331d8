"""Async wrapper over `git worktree` used to provision isolated workspaces."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Sequence

logger = logging.getLogger(__name__)

_UNSAFE_PATH_CHARS = re.compile(r"[^a-z0-9._-]+")


class WorkspaceError(RuntimeError):
    """Raised when a git workspace operation fails."""


class MergeConflictError(WorkspaceError):
    """Raised when merging a child branch into its parent does not apply cleanly."""


@dataclass(slots=True, frozen=True)
class GitWorktree:
    """One entry of `git worktree list --porcelain`."""

    path: Path
    head: str = ""
    branch: str | None = None
    bare: bool = False
    detached: bool = False


@dataclass(slots=True)
class GitResult:
    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def generate_worktree_path(repo_root: Path, branch: str) -> Path:
    """Return the sibling directory a worktree for ``branch`` lives in.

    ``issue/Fix Login`` under ``/src/app`` becomes ``/src/worktree-issue-fix-login``.
    """

    sanitized = _UNSAFE_PATH_CHARS.sub("-", branch.lower()).strip("-.")
    if not sanitized:
        raise WorkspaceError(f"Cannot derive a workspace directory from branch '{branch}'")
    return repo_root.resolve().parent / f"worktree-{sanitized}"


def parse_worktree_list(output: str) -> list[GitWorktree]:
    entries: list[GitWorktree] = []
    fields: dict[str, str] = {}

    def flush() -> None:
        if "worktree" in fields:
            branch = fields.get("branch")
            entries.append(
                GitWorktree(
                    path=Path(fields["worktree"]),
                    head=fields.get("HEAD", ""),
                    branch=branch.removeprefix("refs/heads/") if branch else None,
                    bare="bare" in fields,
                    detached="detached" in fields,
                )
            )
        fields.clear()

    for line in output.splitlines():
        if not line.strip():
            flush()
            continue
        key, _, value = line.partition(" ")
        if key == "worktree":
            flush()
        fields[key] = value.strip()
    flush()
    return entries


class WorkspaceManager:
    """Create, find, merge and remove git worktrees for one repository."""

    def __init__(self, repo_root: Path, *, git: str = "git") -> None:
        self._repo_root = Path(repo_root).resolve()
        self._git_binary = git

    @property
    def repo_root(self) -> Path:
        return self._repo_root

    async def list(self) -> list[GitWorktree]:
        result = await self._git("worktree", "list", "--porcelain")
        return parse_worktree_list(result.stdout)

    async def find(self, predicate: Callable[[GitWorktree], bool]) -> GitWorktree | None:
        for worktree in await self.list():
            if predicate(worktree):
                return worktree
        return None

    async def find_by_branch(self, branch: str) -> GitWorktree | None:
        return await self.find(lambda worktree: worktree.branch == branch)

    async def find_by_path(self, path: Path) -> GitWorktree | None:
        target = Path(path).resolve()
        return await self.find(lambda worktree: worktree.path.resolve() == target)

    async def create(self, branch: str, base: str) -> Path:
        """Ensure a worktree for ``branch`` exists and return its path.

        An existing worktree for the branch is reused. A new branch is cut from
        ``base`` when it does not exist yet.
        """

        existing = await self.find_by_branch(branch)
        if existing is not None:
            logger.info("Reusing existing worktree", extra={"branch": branch, "path": str(existing.path)})
            return existing.path

        path = generate_worktree_path(self._repo_root, branch)
        if path.exists():
            raise WorkspaceError(
                f"Cannot create worktree for '{branch}': {path} already exists and is not a registered "
                "worktree. Remove the directory or run `git worktree prune`."
            )
        if await self.branch_exists(branch):
            await self._git("worktree", "add", str(path), branch)
        else:
            await self._git("worktree", "add", "-b", branch, str(path), base)
        logger.info("Created worktree", extra={"branch": branch, "base": base, "path": str(path)})
        return path.resolve()

    async def remove(self, path: Path) -> bool:
        """Remove a worktree. Returns False when it was not registered."""

        if await self.find_by_path(path) is None:
            logger.debug("Worktree already gone", extra={"path": str(path)})
            return False
        if await self.is_main_workspace(path):
            raise WorkspaceError(f"Refusing to remove the main workspace at {path}")
        await self._git("worktree", "remove", "--force", str(path))
        logger.info("Removed worktree", extra={"path": str(path)})
        return True

    async def main_workspace_path(self) -> Path:
        worktrees = await self.list()
        if not worktrees:
            raise WorkspaceError(f"No worktrees reported for {self._repo_root}")
        return worktrees[0].path

    async def is_main_workspace(self, path: Path) -> bool:
        return (await self.main_workspace_path()).resolve() == Path(path).resolve()

    async def current_branch(self, cwd: Path | None = None) -> str:
        result = await self._git("rev-parse", "--abbrev-ref", "HEAD", cwd=cwd)
        branch = result.stdout.strip()
        if branch == "HEAD":
            raise WorkspaceError(f"Detached HEAD in {cwd or self._repo_root}; check out a named branch first")
        return branch

    async def branch_exists(self, branch: str) -> bool:
        result = await self._git("show-ref", "--verify", "--quiet", f"refs/heads/{branch}", check=False)
        return result.ok

    async def is_merged(self, branch: str, into: str) -> bool:
        """True when every commit on ``branch`` is reachable from ``into``."""

        result = await self._git("merge-base", "--is-ancestor", branch, into, check=False)
        return result.ok

    async def merge_into(self, source_branch: str, *, cwd: Path) -> None:
        """Merge ``source_branch`` into the branch checked out at ``cwd``."""

        result = await self._git("merge", "--no-ff", "--no-edit", source_branch, cwd=cwd, check=False)
        if not result.ok:
            raise MergeConflictError(
                f"Merging '{source_branch}' into {cwd} failed: {(result.stderr or result.stdout).strip()}"
            )

    async def abort_merge(self, *, cwd: Path) -> None:
        result = await self._git("merge", "--abort", cwd=cwd, check=False)
        if not result.ok:
            logger.warning("git merge --abort failed", extra={"cwd": str(cwd), "stderr": result.stderr.strip()})

    async def _git(self, *args: str, cwd: Path | None = None, check: bool = True) -> GitResult:
        cmd: Sequence[str] = [self._git_binary, *args]
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=str(cwd or self._repo_root),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise WorkspaceError(f"Cannot run {self._git_binary}: {exc}") from exc
        stdout_bytes, stderr_bytes = await process.communicate()
        result = GitResult(
            args=tuple(cmd),
            returncode=process.returncode if process.returncode is not None else -1,
            stdout=stdout_bytes.decode("utf-8", errors="replace"),
            stderr=stderr_bytes.decode("utf-8", errors="replace"),
        )
        if check and not result.ok:
            raise WorkspaceError(f"`{' '.join(cmd)}` failed ({result.returncode}): {result.stderr.strip()}")
        return result


__all__ = [
    "GitResult",
    "GitWorktree",
    "MergeConflictError",
    "WorkspaceError",
    "WorkspaceManager",
    "generate_worktree_path",
    "parse_worktree_list",
]
