"""Git worktree lifecycle."""

from .manager import (
    GitResult,
    GitWorktree,
    MergeConflictError,
    WorkspaceError,
    WorkspaceManager,
    generate_worktree_path,
    parse_worktree_list,
)

__all__ = [
    "GitResult",
    "GitWorktree",
    "MergeConflictError",
    "WorkspaceError",
    "WorkspaceManager",
    "generate_worktree_path",
    "parse_worktree_list",
]
