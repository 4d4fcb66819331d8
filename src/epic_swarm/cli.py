"""epic-swarm command line interface."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Callable

from .config import COMPLEXITY_LEVELS, SwarmSettings, get_settings
from .metadata import MetadataStore, MetadataStoreError
from .profiles import ProfileLoadError, ProfileLoader
from .server import configure_logging
from .server import main as serve
from .swarm import ParentWorkspaceError, RunOptions, SwarmCoordinator, SwarmResult, TaskStateResolver, create_collector
from .tracker import IssueTracker, YamlIssueTracker, fetch_children_safe
from .validation import (
    InvalidInputError,
    validate_complexity,
    validate_max_parallel,
    validate_mode_flags,
    validate_task_id,
    validate_timeout,
)
from .worker import WorkerNotFoundError, WorkerRunner
from .workspace import WorkspaceError, WorkspaceManager

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INVALID_INPUT = 2


def load_settings() -> SwarmSettings:
    return get_settings()


def build_coordinator(
    settings: SwarmSettings,
    *,
    repo: Path,
    tracker: IssueTracker,
    store: MetadataStore,
) -> SwarmCoordinator:
    runner = WorkerRunner(Path(settings.worker_path) if settings.worker_path else None)
    profile = ProfileLoader(settings.profile_paths).resolve(settings.worker_profile)
    return SwarmCoordinator(
        store=store,
        workspaces=WorkspaceManager(repo),
        runner=runner,
        settings=settings,
        tracker=tracker,
        profile=profile,
        collector=create_collector(settings),
    )


def _confirm(question: str) -> bool:
    answer = input(f"{question} [Y/n] ").strip().lower()
    return answer in ("", "y", "yes")


def decide_mode(
    args: argparse.Namespace,
    *,
    child_count: int,
    resumable: bool,
    interactive: bool,
    confirm: Callable[[str], bool] = _confirm,
) -> str:
    """Return ``swarm`` or ``single``.

    Explicit flags win. A parent with a persisted swarm resumes as a swarm.
    Otherwise children imply a swarm, confirmed interactively when a terminal
    is attached.
    """

    if args.force_single:
        return "single"
    if args.force_swarm or resumable:
        return "swarm"
    if child_count == 0:
        return "single"
    if interactive:
        question = f"Task #{args.parent} has {child_count} child tasks. Run them as a swarm?"
        return "swarm" if confirm(question) else "single"
    return "swarm"


def _print_result(result: SwarmResult, *, as_json: bool) -> None:
    if as_json:
        print(json.dumps(result.to_dict(), indent=2))
        return
    summary = result.summary
    print(f"Parent #{result.parent_id}: {result.parent_state.value}")
    for child in summary.per_child:
        outcome = result.outcomes.get(child.identity)
        merged = " merged" if outcome is not None and outcome.merged else ""
        detail = f" ({child.detail})" if child.detail else ""
        print(f"  #{child.identity:<10} {child.state.value:<12}{merged}{detail}")
    print(
        f"{summary.succeeded}/{summary.total_children} succeeded, {summary.failed} failed, "
        f"{summary.duration_minutes} min"
    )
    if result.merge_failures:
        print("Merge conflicts: " + ", ".join(f"#{identity}" for identity in result.merge_failures))


def cmd_run(args: argparse.Namespace) -> int:
    try:
        validate_mode_flags(force_swarm=args.force_swarm, force_single=args.force_single)
        parent_id = validate_task_id(args.parent)
        complexity = validate_complexity(args.complexity)
        max_parallel = validate_max_parallel(args.max_parallel)
        timeout = validate_timeout(args.timeout)
    except InvalidInputError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_INVALID_INPUT

    settings = load_settings()
    store = MetadataStore(settings.metadata_dir)
    tracker = YamlIssueTracker(Path(args.tasks_file) if args.tasks_file else settings.tasks_file)
    options = RunOptions(
        max_parallel=max_parallel,
        child_timeout=timeout,
        skip_cleanup=True if args.skip_cleanup else None,
        complexity=complexity,
        parent_workspace=Path(args.workspace) if args.workspace else None,
    )

    try:
        existing = store.find_active(parent_id)
        resumable = existing is not None and existing.is_parent
        child_count = len(existing.child_tasks) if resumable else len(fetch_children_safe(tracker, parent_id))
        mode = decide_mode(
            args,
            child_count=child_count,
            resumable=resumable,
            interactive=sys.stdin.isatty() and sys.stdout.isatty(),
        )
        logger.info("Starting run", extra={"parent_id": parent_id, "mode": mode, "children": child_count})
        coordinator = build_coordinator(settings, repo=Path(args.repo), tracker=tracker, store=store)
        if mode == "swarm":
            result = asyncio.run(coordinator.run(parent_id, options))
        else:
            result = asyncio.run(coordinator.run_single(parent_id, options))
    except InvalidInputError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_INVALID_INPUT
    except (MetadataStoreError, ParentWorkspaceError, WorkspaceError, WorkerNotFoundError, ProfileLoadError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_FAILURE

    _print_result(result, as_json=args.json)
    return EXIT_OK if result.ok else EXIT_FAILURE


def cmd_status(args: argparse.Namespace) -> int:
    try:
        parent_id = validate_task_id(args.parent)
    except InvalidInputError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_INVALID_INPUT

    settings = load_settings()
    store = MetadataStore(settings.metadata_dir)
    try:
        record = store.find_active(parent_id) or store.find_finished(parent_id)
        if record is None:
            print(f"error: no workspace recorded for task #{parent_id}", file=sys.stderr)
            return EXIT_FAILURE
        payload = {
            "task_id": parent_id,
            "state": record.state.value,
            "status": record.status,
            "branch": record.branch_name,
            "path": record.path,
            "complexity": record.complexity,
            "skip_cleanup": record.skip_cleanup,
            "children": TaskStateResolver(store).snapshot(record),
        }
    except MetadataStoreError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_FAILURE
    print(json.dumps(payload, indent=2))
    return EXIT_OK


def cmd_serve(args: argparse.Namespace) -> int:
    serve()
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="epic-swarm", description="Run a parent task's children as a swarm")
    sub = parser.add_subparsers(dest="cmd")

    p_run = sub.add_parser("run", help="Provision, run and merge the children of a parent task")
    p_run.add_argument("parent", help="Parent task identity, e.g. 100 or #100")
    mode = p_run.add_argument_group("mode")
    mode.add_argument("--force-swarm", action="store_true", help="Run as a swarm without asking")
    mode.add_argument("--force-single", action="store_true", help="Run one worker for the parent task")
    p_run.add_argument("--skip-cleanup", action="store_true", help="Keep child worktrees and records after merge")
    p_run.add_argument("--complexity", help=f"One of: {', '.join(COMPLEXITY_LEVELS)}")
    p_run.add_argument("--max-parallel", type=int, default=None, help="Concurrent worker limit")
    p_run.add_argument("--timeout", type=float, default=None, help="Per-child timeout in seconds")
    p_run.add_argument("--tasks-file", default=None, help="Task manifest (defaults to SWARM_TASKS_FILE)")
    p_run.add_argument("--workspace", default=None, help="Existing parent workspace directory")
    p_run.add_argument("--repo", default=".", help="Repository to create worktrees in")
    p_run.add_argument("--json", action="store_true", help="Output JSON")
    p_run.set_defaults(func=cmd_run)

    p_status = sub.add_parser("status", help="Show the recorded state of a parent task and its children")
    p_status.add_argument("parent")
    p_status.set_defaults(func=cmd_status)

    p_serve = sub.add_parser("serve", help="Run the worker state MCP server")
    p_serve.set_defaults(func=cmd_serve)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return EXIT_OK
    if args.cmd != "serve":
        try:
            configure_logging(load_settings().log_level)
        except ValueError as exc:
            print(f"error: invalid configuration: {exc}", file=sys.stderr)
            return EXIT_INVALID_INPUT
    return args.func(args)


if __name__ == "__main__":
    raise SystemExit(main())
