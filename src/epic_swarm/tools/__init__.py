"""Tool registration for the worker state MCP server."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from fastmcp import Context, FastMCP

from ..config import SwarmSettings
from ..metadata import LifecycleState, MetadataStore, MetadataStoreError, WorkspaceRecord
from ..storage import ChromaStore, swarm_stream
from ..swarm.resolver import TaskStateResolver

logger = logging.getLogger(__name__)

WORKER_SETTABLE_STATES = {
    LifecycleState.IN_PROGRESS,
    LifecycleState.CODE_REVIEW,
    LifecycleState.DONE,
    LifecycleState.FAILED,
}


@dataclass(slots=True)
class ToolHandles:
    get_workspace_state: Any
    set_workspace_state: Any
    record_session: Any
    list_child_states: Any
    run_events: Any


def _describe(record: WorkspaceRecord) -> dict[str, Any]:
    return {
        "path": record.path,
        "branch": record.branch_name,
        "task_ids": list(record.task_ids),
        "state": record.state.value,
        "status": record.status,
        "session_id": record.session_id,
        "parent": record.parent_link.identifier if record.parent_link is not None else None,
        "children": len(record.child_tasks),
    }


def register_tools(
    server: FastMCP,
    *,
    store: MetadataStore,
    settings: SwarmSettings,
    event_store: ChromaStore | None = None,
    environ: Mapping[str, str] | None = None,
) -> ToolHandles:
    """Register the tools workers call to read and report their own state."""

    env = environ if environ is not None else os.environ
    resolver = TaskStateResolver(store)

    def _workspace(workspace_path: str | None) -> str:
        path = workspace_path or env.get("SWARM_WORKSPACE_PATH")
        if not path:
            raise ValueError("workspace_path is required when SWARM_WORKSPACE_PATH is not set")
        return str(Path(path).expanduser().resolve())

    def _record_event(record: WorkspaceRecord, event_type: str, payload: dict[str, Any]) -> None:
        if event_store is None:
            return
        parent_id = record.parent_link.identifier if record.parent_link is not None else (record.task_ids or [""])[0]
        try:
            event_store.record_event(
                stream=swarm_stream(parent_id),
                event_type=event_type,
                body=payload,
                metadata={"parent_id": parent_id, "path": record.path or ""},
            )
        except Exception as exc:  # pragma: no cover - best effort
            logger.debug("Failed to record workspace event", extra={"event_type": event_type, "error": str(exc)})

    def _get_workspace_state(
        workspace_path: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Return the recorded state of a workspace, including archived ones."""

        path = _workspace(workspace_path)
        record = store.read(path)
        if record is None:
            record = store.read_finished(path)
        if record is None:
            _emit_log(context, "debug", "No workspace record", extra={"path": path})
            return {"path": path, "state": None, "found": False}
        return {**_describe(record), "found": True}

    def _set_workspace_state(
        state: str,
        workspace_path: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Record the worker's progress: in_progress, code_review, done or failed."""

        try:
            new_state = LifecycleState(state.strip().lower())
        except ValueError as exc:
            raise ValueError(
                f"Unknown state '{state}'. Use one of: {', '.join(sorted(s.value for s in WORKER_SETTABLE_STATES))}"
            ) from exc
        if new_state not in WORKER_SETTABLE_STATES:
            raise ValueError(f"Workers cannot set state '{new_state.value}'")

        path = _workspace(workspace_path)
        try:
            previous = store.read(path)
            if previous is None:
                raise ValueError(f"No active workspace record for {path}")
            record = store.set_state(path, new_state)
        except MetadataStoreError as exc:
            raise RuntimeError(str(exc)) from exc

        _record_event(
            record,
            "workspace.state_changed",
            {"path": path, "from": previous.state.value, "to": new_state.value},
        )
        _emit_log(
            context,
            "info",
            "Workspace state updated",
            extra={"path": path, "from": previous.state.value, "to": new_state.value},
        )
        return _describe(record)

    def _record_session(
        session_id: str,
        workspace_path: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Store the worker's session id so an interrupted run can be resumed."""

        if not session_id.strip():
            raise ValueError("session_id must not be empty")
        path = _workspace(workspace_path)
        try:
            if store.read(path) is None:
                raise ValueError(f"No active workspace record for {path}")
            record = store.update(path, session_id=session_id.strip())
        except MetadataStoreError as exc:
            raise RuntimeError(str(exc)) from exc
        _emit_log(context, "debug", "Recorded worker session", extra={"path": path, "session_id": record.session_id})
        return _describe(record)

    def _list_child_states(
        parent_id: str | None = None,
        workspace_path: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """List every child of a parent workspace with its resolved state."""

        if parent_id:
            parent = store.find_active(parent_id)
        else:
            parent = store.read(_workspace(workspace_path))
            if parent is not None and parent.parent_link is not None:
                parent = store.find_active(parent.parent_link.identifier)
        if parent is None or not parent.is_parent:
            return {"parent": parent_id, "children": []}

        rows = resolver.snapshot(parent)
        _emit_log(context, "debug", "Listed child states", extra={"parent": parent.task_ids, "count": len(rows)})
        return {"parent": (parent.task_ids or [None])[0], "state": parent.state.value, "children": rows}

    def _run_events(
        parent_id: str,
        limit: int = 50,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Return recent swarm events recorded for a parent task."""

        if event_store is None:
            raise RuntimeError("Run event store is unavailable; install the persistence extra")
        events = event_store.list_run_events(parent_id)
        timeline = [
            {
                "sequence": event.metadata.get("sequence"),
                "event_type": event.event_type,
                "timestamp": event.metadata.get("timestamp"),
                "payload": event.payload(),
            }
            for event in events[-limit:]
        ]
        _emit_log(context, "debug", "Listed run events", extra={"parent_id": parent_id, "count": len(timeline)})
        return {"parent_id": parent_id, "event_count": len(events), "events": timeline}

    tool_get = server.tool(
        name="get_workspace_state",
        description="Read the lifecycle state recorded for a workspace (defaults to SWARM_WORKSPACE_PATH).",
    )(_get_workspace_state)

    tool_set = server.tool(
        name="set_workspace_state",
        description=(
            "Report workspace progress. Call with 'in_progress' when starting, 'code_review' when "
            "ready for review, 'done' when finished, or 'failed' when the task cannot be completed."
        ),
    )(_set_workspace_state)

    tool_session = server.tool(
        name="record_session",
        description="Store the worker session id so the orchestrator can resume this session later.",
    )(_record_session)

    tool_children = server.tool(
        name="list_child_states",
        description="List the children of a parent task with their resolved states and dependencies.",
    )(_list_child_states)

    tool_events = server.tool(
        name="run_events",
        description="Show the most recent swarm events recorded for a parent task.",
    )(_run_events)

    return ToolHandles(
        get_workspace_state=tool_get,
        set_workspace_state=tool_set,
        record_session=tool_session,
        list_child_states=tool_children,
        run_events=tool_events,
    )


def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Best-effort logging that prefers the MCP context logger when available."""

    payload = extra or {}

    if context is not None:
        ctx_logger = getattr(context, "logger", None)
        if ctx_logger is not None:
            log_method = getattr(ctx_logger, level, None)
            if callable(log_method):
                log_method(message, extra=payload)
                return

    fallback = getattr(logger, level, logger.info)
    fallback(message, extra=payload)


__all__ = ["ToolHandles", "register_tools"]
