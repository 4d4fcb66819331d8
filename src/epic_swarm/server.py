"""FastMCP server workers use to report state back to the orchestrator."""

import json
import logging
import os
from datetime import datetime, timezone
from typing import Optional

from fastmcp import Context, FastMCP

from . import __version__
from .config import SwarmSettings, get_settings
from .metadata import MetadataStore, MetadataStoreError
from .storage import ChromaStore, ChromaUnavailableError
from .tools import register_tools


def configure_logging(level: str) -> None:
    """Configure root logging for epic-swarm processes."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def create_server(
    settings: Optional[SwarmSettings] = None,
    store: MetadataStore | None = None,
    event_store: ChromaStore | None = None,
) -> FastMCP:
    """Instantiate the FastMCP server with the workspace state tools."""

    settings = settings or get_settings()
    store = store or MetadataStore(settings.metadata_dir)

    events_metadata = {
        "available": event_store is not None,
        "path": str(settings.events_path),
        "error": None,
    }
    if event_store is None and settings.telemetry_enabled:
        try:
            event_store = ChromaStore(settings.events_path)
            event_store.ping()
            events_metadata["available"] = True
        except ChromaUnavailableError as exc:
            events_metadata["error"] = str(exc)
            event_store = None

    server = FastMCP(
        name="epic-swarm",
        version=__version__,
        instructions=(
            "Tracks the lifecycle of swarm workspaces. Workers report progress with "
            "set_workspace_state and record_session; use get_workspace_state and "
            "list_child_states to inspect the swarm."
        ),
    )

    handles = register_tools(server, store=store, settings=settings, event_store=event_store)

    @server.resource(
        "resource://swarm/status",
        name="swarm_status",
        title="Swarm Status",
        description="Active and archived workspace counts plus the calling worker's workspace.",
        mime_type="application/json",
        tags={"status", "health"},
    )
    def status_resource(context: Context) -> str:
        """Return a JSON string summarizing the metadata store."""

        store_error: str | None = None
        state_counts: dict[str, int] = {}
        active_count = finished_count = 0
        try:
            active = store.list_active()
            active_count = len(active)
            finished_count = len(store.list_finished())
            for record in active:
                state_counts[record.state.value] = state_counts.get(record.state.value, 0) + 1
        except MetadataStoreError as exc:
            store_error = str(exc)

        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "server_version": __version__,
            "log_level": settings.log_level,
            "metadata": {
                "path": str(store.root),
                "active": active_count,
                "finished": finished_count,
                "state_counts": state_counts,
                "error": store_error,
            },
            "events": events_metadata,
            "workspace": os.environ.get("SWARM_WORKSPACE_PATH"),
            "request_id": getattr(context, "request_id", None),
        }
        return json.dumps(payload)

    setattr(server, "metadata_store", store)
    setattr(server, "event_store", event_store)
    setattr(server, "events_metadata", events_metadata)
    setattr(server, "tool_handles", handles)
    return server


def main() -> None:
    """Entry point for running the worker state MCP server."""

    settings = get_settings()
    configure_logging(settings.log_level)

    server = create_server(settings)
    logging.getLogger(__name__).info(
        "Launching epic-swarm MCP server",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "metadata_dir": str(settings.metadata_dir),
            "events_available": getattr(server, "events_metadata", {}).get("available"),
        },
    )
    server.run()


if __name__ == "__main__":
    main()
