"""Drive a parent task's children from provisioning through merge.

Every phase reads what it needs from the metadata store. Nothing carried in
memory from an earlier invocation decides what happens next, which is what makes
``run`` safe to call again after a crash or after some children failed.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Mapping, Sequence

from ..config import SwarmSettings
from ..metadata import LifecycleState, MetadataStore, MetadataStoreError, ParentLink, Task, WorkspaceRecord
from ..profiles import DEFAULT_PROFILE, WorkerProfile, build_worker_prompt
from ..tracker import IssueTracker, fetch_children_safe, fetch_task_details_safe
from ..validation import InvalidInputError, validate_branch_name, validate_task_id
from ..worker import WorkerExecutionResult, WorkerRunner, WorkerRunnerError, worker_environment
from ..workspace import MergeConflictError, WorkspaceError, WorkspaceManager
from .aggregator import RunSummary, aggregate_results, report_results
from .graph import DependencyMap, build_dependency_map, empty_dependency_map, launch_order, unique_tasks
from .resolver import TaskState, TaskStateResolver, state_of
from .telemetry import SWARM_CHILD_FAILED, SWARM_STARTED, NullCollector, TelemetryCollector

logger = logging.getLogger(__name__)


class SwarmPhase(str, Enum):
    INITIALIZING = "initializing"
    FILTERING = "filtering"
    PROVISIONING = "provisioning"
    AWAITING = "awaiting"
    FINALIZING = "finalizing"
    COMPLETED = "completed"


class ParentWorkspaceError(RuntimeError):
    """Raised when the parent workspace cannot be found or created."""


@dataclass(slots=True)
class RunOptions:
    """Per-invocation overrides. ``None`` means "use the persisted or configured value"."""

    max_parallel: int | None = None
    child_timeout: float | None = None
    skip_cleanup: bool | None = None
    complexity: str | None = None
    parent_workspace: Path | None = None


@dataclass(slots=True)
class SwarmRun:
    parent_id: str
    parent_record: WorkspaceRecord
    children: list[Task]
    dependency_map: DependencyMap
    max_parallel: int
    child_timeout: float | None
    skip_cleanup: bool
    complexity: str
    outstanding: list[Task] = field(default_factory=list)
    states: dict[str, TaskState] = field(default_factory=dict)

    @property
    def parent_path(self) -> Path:
        return Path(self.parent_record.path or "")

    @property
    def parent_branch(self) -> str:
        return self.parent_record.branch_name or ""


@dataclass(slots=True)
class ChildOutcome:
    identity: str
    state: TaskState
    path: str | None = None
    branch: str | None = None
    merged: bool = False
    returncode: int | None = None
    timed_out: bool = False
    detail: str = ""


@dataclass(slots=True)
class SwarmResult:
    parent_id: str
    parent_state: LifecycleState
    summary: RunSummary
    outcomes: dict[str, ChildOutcome] = field(default_factory=dict)
    merge_failures: list[str] = field(default_factory=list)
    phases: list[SwarmPhase] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.parent_state is LifecycleState.DONE

    def to_dict(self) -> dict[str, Any]:
        return {
            "parent_id": self.parent_id,
            "parent_state": self.parent_state.value,
            "summary": self.summary.to_dict(),
            "merge_failures": list(self.merge_failures),
            "outcomes": {
                identity: {
                    "state": outcome.state.value,
                    "path": outcome.path,
                    "branch": outcome.branch,
                    "merged": outcome.merged,
                    "returncode": outcome.returncode,
                    "timed_out": outcome.timed_out,
                    "detail": outcome.detail,
                }
                for identity, outcome in self.outcomes.items()
            },
        }


_PROC = Path("/proc")


def process_alive(pid: int, command: str | None = None) -> bool:
    """Whether ``pid`` is still the worker that was recorded for it.

    Pids are recycled after a crash or reboot. Where ``/proc`` is available the
    process command line must mention ``command``; a record without a command
    cannot be matched and counts as dead.
    """

    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        pass
    if not _PROC.is_dir():
        return True
    if not command:
        return False
    try:
        raw = (_PROC / str(pid) / "cmdline").read_bytes()
    except OSError:
        return False
    name = Path(command).name
    # Interpreted workers show up as "sh /path/worker", so look past argv[0].
    return any(Path(arg).name == name for arg in raw.decode(errors="replace").split("\0")[:3] if arg)


class SwarmCoordinator:
    """Run the swarm lifecycle for one parent task."""

    def __init__(
        self,
        *,
        store: MetadataStore,
        workspaces: WorkspaceManager,
        runner: WorkerRunner,
        settings: SwarmSettings,
        tracker: IssueTracker | None = None,
        profile: WorkerProfile | None = None,
        collector: TelemetryCollector | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        pid_alive: Callable[[int, str | None], bool] = process_alive,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._workspaces = workspaces
        self._runner = runner
        self._settings = settings
        self._tracker = tracker
        self._profile = profile or DEFAULT_PROFILE
        self._collector = collector or NullCollector()
        self._sleep = sleep
        self._pid_alive = pid_alive
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._resolver = TaskStateResolver(store)
        self._phases: list[SwarmPhase] = []

    @property
    def phase(self) -> SwarmPhase | None:
        return self._phases[-1] if self._phases else None

    @property
    def resolver(self) -> TaskStateResolver:
        return self._resolver

    def _enter(self, phase: SwarmPhase, parent_id: str) -> None:
        self._phases.append(phase)
        logger.info("Swarm phase %s", phase.value, extra={"parent_id": parent_id, "phase": phase.value})

    def _track(self, event: str, properties: Mapping[str, Any], parent_id: str) -> None:
        try:
            self._collector.track(event, properties, parent_id=parent_id)
        except Exception as exc:
            logger.debug("Telemetry %s tracking failed", event, extra={"parent_id": parent_id, "error": str(exc)})

    @property
    def _tracker_name(self) -> str | None:
        return getattr(self._tracker, "name", None) if self._tracker is not None else None

    async def run(self, parent_id: str, options: RunOptions | None = None) -> SwarmResult:
        """Provision, supervise and merge every outstanding child of ``parent_id``."""

        options = options or RunOptions()
        parent_id = validate_task_id(parent_id)
        self._phases = []

        self._enter(SwarmPhase.INITIALIZING, parent_id)
        swarm = await self.initialize(parent_id, options)

        self._enter(SwarmPhase.FILTERING, parent_id)
        self.filter(swarm)

        self._enter(SwarmPhase.PROVISIONING, parent_id)
        outcomes: dict[str, ChildOutcome] = {}
        provisioned = await self.provision(swarm, outcomes)

        if provisioned:
            self._track(SWARM_STARTED, {"child_count": len(provisioned), "tracker": self._tracker_name or ""}, parent_id)
        self._enter(SwarmPhase.AWAITING, parent_id)
        await self.await_children(swarm, provisioned, outcomes)

        self._enter(SwarmPhase.FINALIZING, parent_id)
        result = await self.finalize(swarm, outcomes)

        self._enter(SwarmPhase.COMPLETED, parent_id)
        result.phases = list(self._phases)
        return result

    async def run_single(self, parent_id: str, options: RunOptions | None = None) -> SwarmResult:
        """Run one worker for the parent task itself, in the parent workspace."""

        options = options or RunOptions()
        parent_id = validate_task_id(parent_id)
        self._phases = []
        self._enter(SwarmPhase.INITIALIZING, parent_id)
        parent = await self._acquire_parent(parent_id, options, children=None)
        await self._ensure_parent_worktree(parent)
        complexity = options.complexity or parent.complexity or self._settings.default_complexity
        skip_cleanup = options.skip_cleanup if options.skip_cleanup is not None else bool(parent.skip_cleanup)
        details = fetch_task_details_safe(self._tracker, [parent_id])
        task = details[0] if details else Task(number=parent_id, title=parent.description)

        self._enter(SwarmPhase.AWAITING, parent_id)
        outcome = await self._supervise(
            task,
            parent,
            parent_id=None,
            dependencies=(),
            complexity=complexity,
            skip_cleanup=skip_cleanup,
            timeout=options.child_timeout or self._settings.child_timeout,
        )

        self._enter(SwarmPhase.COMPLETED, parent_id)
        final = self._store.read(parent.path or "") or parent
        summary = aggregate_results(final, [task], {parent_id: outcome.state}, now=self._clock())
        return SwarmResult(
            parent_id=parent_id,
            parent_state=final.state,
            summary=summary,
            outcomes={parent_id: outcome},
            phases=list(self._phases),
        )

    async def initialize(self, parent_id: str, options: RunOptions) -> SwarmRun:
        existing = self._find_parent(parent_id, options)
        if existing is not None and existing.child_tasks:
            parent = existing
            logger.info(
                "Resuming swarm from persisted parent record",
                extra={"parent_id": parent_id, "path": parent.path, "children": len(parent.child_tasks)},
            )
        else:
            children = unique_tasks(fetch_children_safe(self._tracker, parent_id))
            dependency_map = build_dependency_map(parent_id, children, tracker=self._tracker)
            if existing is not None:
                parent = self._store.update(
                    existing.path or "", child_tasks=children, dependency_map=dependency_map
                )
            else:
                parent = await self._acquire_parent(
                    parent_id, options, children=children, dependency_map=dependency_map
                )

        await self._ensure_parent_worktree(parent)
        children = unique_tasks(parent.child_tasks)
        dependency_map = {**empty_dependency_map(children), **parent.dependency_map}

        skip_cleanup = options.skip_cleanup if options.skip_cleanup is not None else bool(parent.skip_cleanup)
        complexity = options.complexity or parent.complexity or self._settings.default_complexity
        if parent.skip_cleanup != skip_cleanup or parent.complexity != complexity:
            parent = self._store.update(parent.path or "", skip_cleanup=skip_cleanup, complexity=complexity)
        if parent.state in (LifecycleState.NONE, LifecycleState.PENDING, LifecycleState.FAILED):
            parent = self._store.set_state(parent.path or "", LifecycleState.IN_PROGRESS)

        return SwarmRun(
            parent_id=parent_id,
            parent_record=parent,
            children=children,
            dependency_map=dependency_map,
            max_parallel=options.max_parallel or self._settings.max_parallel,
            child_timeout=options.child_timeout or self._settings.child_timeout,
            skip_cleanup=skip_cleanup,
            complexity=complexity,
        )

    async def _ensure_parent_worktree(self, parent: WorkspaceRecord) -> None:
        path = Path(parent.path or "")
        try:
            registered = await self._workspaces.find_by_path(path) if parent.path else None
        except WorkspaceError as exc:
            raise ParentWorkspaceError(f"Cannot inspect parent workspace {path}: {exc}") from exc
        if registered is None or not path.is_dir():
            raise ParentWorkspaceError(
                f"parent workspace {path} is missing; recreate it or pass --workspace"
            )

    def _find_parent(self, parent_id: str, options: RunOptions) -> WorkspaceRecord | None:
        if options.parent_workspace is not None:
            return self._store.read(Path(options.parent_workspace).resolve())
        return self._store.find_active(parent_id)

    async def _acquire_parent(
        self,
        parent_id: str,
        options: RunOptions,
        *,
        children: Sequence[Task] | None,
        dependency_map: DependencyMap | None = None,
    ) -> WorkspaceRecord:
        existing = self._find_parent(parent_id, options)
        if existing is not None:
            return existing

        created = False
        try:
            if options.parent_workspace is not None:
                path = Path(options.parent_workspace).resolve()
                if await self._workspaces.find_by_path(path) is None:
                    raise ParentWorkspaceError(
                        f"{path} is not a worktree of {self._workspaces.repo_root}; "
                        "pass the parent's workspace directory or omit --workspace"
                    )
                branch = await self._workspaces.current_branch(cwd=path)
            else:
                branch = validate_branch_name(f"{self._settings.branch_prefix}{parent_id}")
                base = await self._workspaces.current_branch()
                existing_worktree = await self._workspaces.find_by_branch(branch)
                path = await self._workspaces.create(branch, base)
                created = existing_worktree is None
        except InvalidInputError as exc:
            raise ParentWorkspaceError(f"Cannot derive a parent branch for task '{parent_id}': {exc}") from exc
        except WorkspaceError as exc:
            raise ParentWorkspaceError(f"Cannot acquire the workspace for parent task '{parent_id}': {exc}") from exc

        details = fetch_task_details_safe(self._tracker, [parent_id])
        record = WorkspaceRecord(
            description=details[0].title if details else "",
            branch_name=branch,
            path=str(path),
            task_ids=[parent_id],
            tracker=self._tracker_name,
            state=LifecycleState.IN_PROGRESS,
            child_tasks=list(children or []),
            dependency_map=dict(dependency_map or {}),
            complexity=options.complexity,
            skip_cleanup=options.skip_cleanup,
        )
        try:
            return self._store.write(record)
        except MetadataStoreError:
            if created:
                await self._remove_quietly(path)
            raise

    def filter(self, swarm: SwarmRun) -> list[Task]:
        swarm.states = self._resolver.classify(swarm.children)
        done = [identity for identity, state in swarm.states.items() if state is TaskState.DONE]
        remaining = [child for child in swarm.children if swarm.states[child.identity] is not TaskState.DONE]
        swarm.outstanding = launch_order(remaining, swarm.dependency_map, satisfied=done)
        logger.info(
            "Filtered children",
            extra={
                "parent_id": swarm.parent_id,
                "total": len(swarm.children),
                "skipped": len(done),
                "outstanding": [child.identity for child in swarm.outstanding],
            },
        )
        return swarm.outstanding

    async def provision(
        self, swarm: SwarmRun, outcomes: dict[str, ChildOutcome]
    ) -> list[tuple[Task, WorkspaceRecord]]:
        provisioned: list[tuple[Task, WorkspaceRecord]] = []
        for child in swarm.outstanding:
            try:
                record = await self._provision_child(swarm, child)
            except (WorkspaceError, MetadataStoreError, InvalidInputError) as exc:
                logger.error(
                    "Failed to provision child workspace",
                    extra={"parent_id": swarm.parent_id, "task_id": child.identity, "error": str(exc)},
                )
                outcomes[child.identity] = ChildOutcome(
                    identity=child.identity, state=TaskState.FAILED, detail=f"provisioning failed: {exc}"
                )
                self._track(
                    SWARM_CHILD_FAILED,
                    {"task_id": child.identity, "stage": "provisioning", "error": str(exc)},
                    swarm.parent_id,
                )
                continue
            provisioned.append((child, record))
        return provisioned

    async def _provision_child(self, swarm: SwarmRun, child: Task) -> WorkspaceRecord:
        with self._store.task_lock(child.identity):
            record = self._store.find_active(child.identity)
            if record is not None and record.path and Path(record.path).is_dir():
                logger.info(
                    "Reusing child workspace",
                    extra={"task_id": child.identity, "path": record.path, "state": record.state.value},
                )
                return record
            if record is not None:
                logger.warning(
                    "Active record points at a missing workspace; recreating it",
                    extra={"task_id": child.identity, "path": record.path},
                )
                self._store.delete(record.path or "")

            branch = validate_branch_name(f"{self._settings.branch_prefix}{child.identity}")
            existing_worktree = await self._workspaces.find_by_branch(branch)
            path = await self._workspaces.create(branch, swarm.parent_branch)
            record = WorkspaceRecord(
                description=child.title,
                branch_name=branch,
                path=str(path),
                task_ids=[child.identity],
                tracker=self._tracker_name,
                parent_link=ParentLink(
                    identifier=swarm.parent_id,
                    branch_name=swarm.parent_branch,
                    path=str(swarm.parent_path),
                ),
                state=LifecycleState.PENDING,
                complexity=swarm.complexity,
                skip_cleanup=swarm.skip_cleanup,
            )
            try:
                return self._store.write(record)
            except MetadataStoreError:
                if existing_worktree is None:
                    await self._remove_quietly(path)
                raise

    async def await_children(
        self,
        swarm: SwarmRun,
        provisioned: Sequence[tuple[Task, WorkspaceRecord]],
        outcomes: dict[str, ChildOutcome],
    ) -> None:
        semaphore = asyncio.Semaphore(swarm.max_parallel)

        async def supervise(child: Task, record: WorkspaceRecord) -> None:
            async with semaphore:
                outcomes[child.identity] = await self._supervise(
                    child,
                    record,
                    parent_id=swarm.parent_id,
                    dependencies=swarm.dependency_map.get(child.identity, []),
                    complexity=swarm.complexity,
                    skip_cleanup=swarm.skip_cleanup,
                    timeout=swarm.child_timeout,
                )

        await asyncio.gather(*(supervise(child, record) for child, record in provisioned))

    async def _supervise(
        self,
        task: Task,
        record: WorkspaceRecord,
        *,
        parent_id: str | None,
        dependencies: Sequence[str],
        complexity: str,
        skip_cleanup: bool,
        timeout: float | None,
    ) -> ChildOutcome:
        path = record.path or ""
        outcome = ChildOutcome(identity=task.identity, state=TaskState.PENDING, path=path, branch=record.branch_name)
        try:
            current = self._store.read(path) or record
            if current.worker_pid and self._pid_alive(current.worker_pid, current.worker_command):
                timed_out = await self._reattach(current, timeout)
                result = None
            else:
                if current.worker_pid:
                    logger.warning(
                        "Recorded worker is gone or no longer ours; launching a new one",
                        extra={"path": path, "pid": current.worker_pid, "command": current.worker_command},
                    )
                result = await self._launch(
                    task,
                    current,
                    parent_id=parent_id,
                    dependencies=dependencies,
                    complexity=complexity,
                    skip_cleanup=skip_cleanup,
                    timeout=timeout,
                )
                timed_out = result.timed_out
            outcome.timed_out = timed_out
            outcome.returncode = result.returncode if result is not None else None
            final = self._settle(path, result, timed_out)
            outcome.state = state_of(final)
            if timed_out:
                outcome.detail = f"timed out after {timeout}s"
            elif result is not None and not result.ok:
                outcome.detail = (result.stderr or result.stdout).strip()[-500:]
        except (WorkerRunnerError, MetadataStoreError) as exc:
            logger.error("Worker failed", extra={"task_id": task.identity, "path": path, "error": str(exc)})
            outcome.state = TaskState.FAILED
            outcome.detail = str(exc)
            self._mark_failed(path)

        if outcome.state is not TaskState.DONE and parent_id is not None:
            self._track(
                SWARM_CHILD_FAILED,
                {"task_id": task.identity, "stage": "worker", "timed_out": outcome.timed_out},
                parent_id,
            )
        logger.info(
            "Worker finished",
            extra={"task_id": task.identity, "state": outcome.state.value, "returncode": outcome.returncode},
        )
        return outcome

    async def _launch(
        self,
        task: Task,
        record: WorkspaceRecord,
        *,
        parent_id: str | None,
        dependencies: Sequence[str],
        complexity: str,
        skip_cleanup: bool,
        timeout: float | None,
    ) -> WorkerExecutionResult:
        path = record.path or ""
        env = worker_environment(
            task_id=task.identity,
            workspace_path=Path(path),
            metadata_dir=self._store.root,
            session_id=record.session_id,
            parent_id=parent_id,
            skip_cleanup=skip_cleanup,
        )
        flags = self._profile.command_flags(self._settings.worker_default_model)

        def on_start(pid: int) -> None:
            try:
                self._store.update(
                    path,
                    worker_pid=pid,
                    worker_command=str(self._runner.executable),
                    state=LifecycleState.IN_PROGRESS,
                )
            except MetadataStoreError as exc:
                logger.warning("Could not record worker pid", extra={"path": path, "pid": pid, "error": str(exc)})

        resumable = record.state in (LifecycleState.IN_PROGRESS, LifecycleState.CODE_REVIEW)
        if resumable and record.session_id:
            logger.info("Resuming worker session", extra={"task_id": task.identity, "session_id": record.session_id})
            return await self._runner.resume(
                record.session_id, cwd=Path(path), flags=flags, env=env, timeout=timeout, on_start=on_start
            )

        prompt = build_worker_prompt(
            self._profile,
            task,
            parent_id=parent_id,
            dependencies=dependencies,
            complexity=complexity,
            skip_cleanup=skip_cleanup,
        )
        logger.info("Spawning worker", extra={"task_id": task.identity, "path": path})
        return await self._runner.spawn(prompt, cwd=Path(path), flags=flags, env=env, timeout=timeout, on_start=on_start)

    async def _reattach(self, record: WorkspaceRecord, timeout: float | None) -> bool:
        """Poll a worker started by an earlier invocation. Returns True on timeout."""

        path = record.path or ""
        pid = record.worker_pid or 0
        command = record.worker_command
        logger.info("Re-attaching to running worker", extra={"path": path, "pid": pid})
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout if timeout else None
        while True:
            current = self._store.read(path)
            if current is None or current.state.terminal or not self._pid_alive(pid, command):
                return False
            if deadline is not None and loop.time() >= deadline:
                return True
            await self._sleep(self._settings.poll_interval)

    def _settle(self, path: str, result: WorkerExecutionResult | None, timed_out: bool) -> WorkspaceRecord | None:
        current = self._store.read(path)
        if current is None:
            return self._store.read_finished(path)
        if timed_out:
            state = LifecycleState.FAILED
        elif current.state.terminal:
            state = current.state
        elif result is not None and result.ok:
            state = LifecycleState.DONE
        else:
            state = LifecycleState.FAILED
        return self._store.update(path, state=state, worker_pid=None, worker_command=None)

    def _mark_failed(self, path: str) -> None:
        try:
            if self._store.read(path) is not None:
                self._store.update(path, state=LifecycleState.FAILED, worker_pid=None, worker_command=None)
        except MetadataStoreError as exc:
            logger.warning("Could not mark workspace failed", extra={"path": path, "error": str(exc)})

    async def finalize(self, swarm: SwarmRun, outcomes: dict[str, ChildOutcome]) -> SwarmResult:
        """Merge done children into the parent branch and settle the parent state."""

        merge_failures: list[str] = []
        merged: set[str] = set()
        child_records: dict[str, WorkspaceRecord | None] = {}

        for child in launch_order(swarm.children, swarm.dependency_map):
            record = self._store.find_active(child.identity)
            if record is None:
                archived = self._store.find_finished(child.identity)
                child_records[child.identity] = archived
                if state_of(archived) is TaskState.DONE:
                    merged.add(child.identity)
                continue
            child_records[child.identity] = record
            if state_of(record) is not TaskState.DONE:
                continue

            outcome = outcomes.setdefault(
                child.identity,
                ChildOutcome(identity=child.identity, state=TaskState.DONE, path=record.path, branch=record.branch_name),
            )
            status = await self._merge_child(swarm, record, outcome)
            if status == "merged":
                merged.add(child.identity)
                outcome.merged = True
                if not swarm.skip_cleanup:
                    await self._cleanup_child(record)
            elif status == "conflict":
                merge_failures.append(child.identity)

        states = self._resolver.classify(swarm.children)
        for identity, outcome in outcomes.items():
            # Provisioning failures leave no record behind.
            if outcome.state is TaskState.FAILED and states.get(identity) is TaskState.PENDING:
                states[identity] = TaskState.FAILED

        all_done = bool(swarm.children) and all(child.identity in merged for child in swarm.children)
        if merge_failures:
            parent_state = LifecycleState.FAILED
        elif all_done:
            parent_state = LifecycleState.DONE
        else:
            parent_state = LifecycleState.IN_PROGRESS
        parent = self._store.set_state(swarm.parent_record.path or "", parent_state)

        summary = aggregate_results(
            parent,
            swarm.children,
            states,
            child_records=child_records,
            details={identity: outcome.detail for identity, outcome in outcomes.items()},
            now=self._clock(),
        )
        report_results(summary, self._collector, parent_id=swarm.parent_id)
        logger.info(
            "Swarm finalized",
            extra={
                "parent_id": swarm.parent_id,
                "parent_state": parent_state.value,
                "succeeded": summary.succeeded,
                "failed": summary.failed,
                "merge_failures": merge_failures,
            },
        )
        return SwarmResult(
            parent_id=swarm.parent_id,
            parent_state=parent_state,
            summary=summary,
            outcomes=outcomes,
            merge_failures=merge_failures,
        )

    async def _merge_child(self, swarm: SwarmRun, record: WorkspaceRecord, outcome: ChildOutcome) -> str:
        """Merge one done child. Returns ``merged``, ``missing`` or ``conflict``."""

        branch = record.branch_name
        if not branch or not await self._workspaces.branch_exists(branch):
            logger.warning("Done child has no branch to merge", extra={"path": record.path, "branch": branch})
            outcome.detail = f"branch {branch!r} not found"
            return "missing"
        if await self._workspaces.is_merged(branch, swarm.parent_branch):
            return "merged"
        try:
            await self._workspaces.merge_into(branch, cwd=swarm.parent_path)
        except MergeConflictError as exc:
            logger.error("Merge conflict", extra={"branch": branch, "parent_branch": swarm.parent_branch, "error": str(exc)})
            await self._workspaces.abort_merge(cwd=swarm.parent_path)
            outcome.detail = f"merge conflict: {exc}"
            return "conflict"
        logger.info("Merged child branch", extra={"branch": branch, "parent_branch": swarm.parent_branch})
        return "merged"

    async def _cleanup_child(self, record: WorkspaceRecord) -> None:
        path = record.path or ""
        self._store.archive(path)
        await self._remove_quietly(Path(path))

    async def _remove_quietly(self, path: Path) -> None:
        try:
            await self._workspaces.remove(path)
        except WorkspaceError as exc:
            logger.warning("Could not remove worktree", extra={"path": str(path), "error": str(exc)})


__all__ = [
    "ChildOutcome",
    "ParentWorkspaceError",
    "RunOptions",
    "SwarmCoordinator",
    "SwarmPhase",
    "SwarmResult",
    "SwarmRun",
    "process_alive",
]
