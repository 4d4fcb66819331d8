"""Dependency map construction and launch ordering for sibling tasks.

The map is advisory. Detection is heuristic and may miss relations or find
spurious ones; nothing here ever prevents a child from running. A failure while
building the map yields the all-empty map instead of an error.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable, Mapping, Sequence

from ..metadata.models import Task, normalize_task_id

logger = logging.getLogger(__name__)

DependencyMap = dict[str, list[str]]

_REF = r"#?(?:[A-Za-z][A-Za-z0-9]*-\d+|\d+)"
_REFERENCE_PATTERN = re.compile(
    rf"\b(?:depends\s+on|blocked\s+by|requires|after)\s*:?\s+"
    rf"(?P<refs>{_REF}(?:\s*(?:,|&|\band\b)\s*{_REF})*)",
    re.IGNORECASE,
)
_SINGLE_REF = re.compile(_REF)


def detect_references(text: str) -> list[str]:
    """Return task references found after dependency phrases, in order of appearance.

    >>> detect_references("Depends on #12, #13 and ENG-4")
    ['12', '13', 'ENG-4']
    """

    found: list[str] = []
    for match in _REFERENCE_PATTERN.finditer(text or ""):
        for ref in _SINGLE_REF.findall(match.group("refs")):
            identity = normalize_task_id(ref)
            if identity not in found:
                found.append(identity)
    return found


def unique_tasks(tasks: Iterable[Task]) -> list[Task]:
    """Drop repeated identities, keeping the first occurrence.

    ``#101`` and ``101`` name the same task, so a tracker that lists both must
    still yield one child.
    """

    seen: set[str] = set()
    unique: list[Task] = []
    for task in tasks:
        if task.identity in seen:
            continue
        seen.add(task.identity)
        unique.append(task)
    return unique


def empty_dependency_map(children: Iterable[Task]) -> DependencyMap:
    return {child.identity: [] for child in children}


def build_dependency_map(parent_id: str, children: Sequence[Task], *, tracker: object | None = None) -> DependencyMap:
    """Map each child to the siblings it depends on.

    Explicit blockers from ``tracker.fetch_blockers`` come first, followed by
    references detected in the child's body. References to anything that is not
    a sibling, including the child itself and the parent, are dropped.
    """

    try:
        siblings = {child.identity.upper(): child.identity for child in children}
        fetch_blockers = getattr(tracker, "fetch_blockers", None)
        dependency_map: DependencyMap = {}
        for child in children:
            candidates: list[str] = []
            if callable(fetch_blockers):
                candidates.extend(normalize_task_id(ref) for ref in fetch_blockers(child.identity))
            candidates.extend(detect_references(child.body))

            deps: list[str] = []
            for ref in candidates:
                sibling = siblings.get(ref.upper())
                if sibling is None or sibling == child.identity or sibling in deps:
                    continue
                deps.append(sibling)
            dependency_map[child.identity] = deps
    except Exception as exc:
        logger.warning(
            "Dependency detection failed; treating children as independent",
            extra={"parent_id": parent_id, "error": str(exc)},
        )
        return empty_dependency_map(children)

    logger.debug(
        "Built dependency map",
        extra={"parent_id": parent_id, "edges": sum(len(deps) for deps in dependency_map.values())},
    )
    return dependency_map


def launch_order(
    tasks: Sequence[Task],
    dependency_map: Mapping[str, Sequence[str]] | None,
    satisfied: Iterable[str] = (),
) -> list[Task]:
    """Order tasks so that prerequisites tend to launch before their dependents.

    Works in frontier passes: each pass takes every remaining task whose
    prerequisites are satisfied, already placed, or not among ``tasks`` at all.
    Cycles never block; whatever is left when no pass makes progress is appended
    in input order.
    """

    dependency_map = dependency_map or {}
    tasks = unique_tasks(tasks)
    placed: set[str] = set(normalize_task_id(item) for item in satisfied)
    pending = [task.identity for task in tasks]
    by_id = {task.identity: task for task in tasks}
    ordered: list[Task] = []

    while pending:
        pending_set = set(pending)
        ready = [
            identity
            for identity in pending
            if all(dep in placed or dep not in pending_set for dep in dependency_map.get(identity, []))
        ]
        if not ready:
            logger.info("Dependency cycle among outstanding children; launching in input order", extra={"tasks": pending})
            ready = list(pending)
        for identity in ready:
            ordered.append(by_id[identity])
            placed.add(identity)
        pending = [identity for identity in pending if identity not in placed]

    return ordered


__all__ = [
    "DependencyMap",
    "build_dependency_map",
    "detect_references",
    "empty_dependency_map",
    "launch_order",
    "unique_tasks",
]
