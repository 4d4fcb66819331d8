"""Render the brief handed to a worker for one task."""

from __future__ import annotations

from typing import Sequence

from ..metadata.models import Task
from .models import ChecklistItem, WorkerProfile

COMPLEXITY_HINTS = {
    "trivial": "This task is trivial. Make the smallest change that works and skip exploratory analysis.",
    "simple": "This task is simple. Plan briefly, implement, and verify with the existing tests.",
    "complex": "This task is complex. Plan before editing, work in small commits, and add tests for new behavior.",
}

DEFAULT_PROFILE = WorkerProfile(
    id="swarm-worker",
    title="Swarm Worker",
    system_prompt=(
        "You are a worker in a swarm. You own exactly one child task and one git worktree. "
        "Stay inside your worktree and commit all work to its branch."
    ),
    goalset=[
        "Implement the task described below.",
        "Leave the branch in a state that merges cleanly into the parent branch.",
    ],
    constraints=[
        "Do not modify other worktrees or the parent branch.",
        "Do not push to any remote.",
    ],
    checklist=[
        ChecklistItem(id="commit", description="Commit every change to the task branch."),
        ChecklistItem(
            id="report",
            description="Call set_workspace_state with 'done' on success or 'failed' if you cannot finish.",
        ),
    ],
)


def build_worker_prompt(
    profile: WorkerProfile,
    task: Task,
    *,
    parent_id: str | None = None,
    dependencies: Sequence[str] = (),
    complexity: str | None = None,
    skip_cleanup: bool = False,
) -> str:
    lines: list[str] = [profile.system_prompt.strip(), ""]

    heading = f"Task #{task.identity}"
    if task.title:
        heading += f": {task.title}"
    lines.append(heading)
    if parent_id:
        lines.append(f"Part of parent task #{parent_id}.")
    if task.url:
        lines.append(f"Source: {task.url}")
    if dependencies:
        lines.append("Builds on: " + ", ".join(f"#{dep}" for dep in dependencies))
    if task.body.strip():
        lines.extend(["", task.body.strip()])

    if complexity and complexity in COMPLEXITY_HINTS:
        lines.extend(["", COMPLEXITY_HINTS[complexity]])

    if profile.goalset:
        lines.extend(["", "Goals:"])
        lines.extend(f"- {goal}" for goal in profile.goalset)
    if profile.constraints:
        lines.extend(["", "Constraints:"])
        lines.extend(f"- {constraint}" for constraint in profile.constraints)

    steps = [item for item in profile.checklist]
    if steps or skip_cleanup:
        lines.extend(["", "Before you finish:"])
        for index, item in enumerate(steps, start=1):
            suffix = "" if item.required else " (optional)"
            lines.append(f"{index}. {item.description}{suffix}")
        if skip_cleanup:
            lines.append("Leave the worktree in place after finishing; it will be kept for inspection.")

    return "\n".join(lines).strip() + "\n"


__all__ = ["COMPLEXITY_HINTS", "DEFAULT_PROFILE", "build_worker_prompt"]
