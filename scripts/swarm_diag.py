"""epic-swarm diagnostics CLI."""

from __future__ import annotations

import argparse
import json

from epic_swarm.config import SwarmSettings
from epic_swarm.metadata import MetadataStore, WorkspaceRecord
from epic_swarm.storage import ChromaStore, ChromaUnavailableError


def load_store(settings: SwarmSettings) -> ChromaStore:
    try:
        store = ChromaStore(settings.events_path)
        store.ping()
        return store
    except ChromaUnavailableError as exc:
        print(f"Chroma unavailable: {exc}")
        raise SystemExit(1)


def load_metadata(settings: SwarmSettings) -> MetadataStore:
    return MetadataStore(settings.metadata_dir.expanduser())


def _row(record: WorkspaceRecord) -> dict:
    return {
        "task_ids": record.task_ids,
        "state": record.state.value,
        "branch": record.branch_name,
        "path": record.path,
        "parent": record.parent_link.identifier if record.parent_link is not None else None,
        "children": len(record.child_tasks),
        "created_at": record.created_at.isoformat() if record.created_at else None,
        "finished_at": record.finished_at.isoformat() if record.finished_at else None,
    }


def cmd_workspaces(args: argparse.Namespace) -> None:
    store = load_metadata(SwarmSettings())
    records = store.list_active()
    if args.json:
        print(json.dumps([_row(record) for record in records], indent=2))
    else:
        for record in records:
            ids = ",".join(record.task_ids) or "-"
            print(f"{ids} [{record.state.value}] {record.branch_name} -> {record.path}")


def cmd_finished(args: argparse.Namespace) -> None:
    store = load_metadata(SwarmSettings())
    records = store.list_finished()
    if args.limit is not None and args.limit > 0:
        records = records[: args.limit]
    print(json.dumps([_row(record) for record in records], indent=2))


def cmd_children(args: argparse.Namespace) -> None:
    store = load_metadata(SwarmSettings())
    parent = store.find_active(args.parent)
    if parent is None or parent.branch_name is None:
        print(f"No active parent workspace for task #{args.parent}")
        raise SystemExit(1)
    print(json.dumps([_row(record) for record in store.find_children(parent.branch_name)], indent=2))


def cmd_events(args: argparse.Namespace) -> None:
    settings = SwarmSettings()
    store = load_store(settings)
    try:
        if args.parent:
            events = store.list_run_events(args.parent)
        else:
            events = store.search_events(query=args.query)
    except ChromaUnavailableError as exc:
        print(f"Chroma unavailable: {exc}")
        raise SystemExit(1)

    if args.limit is not None and args.limit > 0:
        events = events[-args.limit :]
    payload = [
        {
            "event_id": getattr(event, "id", None),
            "stream": event.metadata.get("stream"),
            "event_type": event.event_type,
            "sequence": event.metadata.get("sequence"),
            "timestamp": event.timestamp.isoformat(),
            "payload": event.payload(),
        }
        for event in events
    ]
    print(json.dumps(payload, indent=2))


def cmd_metrics(args: argparse.Namespace) -> None:
    settings = SwarmSettings()
    store = load_store(settings)
    try:
        metrics = store.run_metrics(args.parent)
        failures = store.search_events(filters={"event_type": "swarm.child_failed"})
    except ChromaUnavailableError as exc:
        print(f"Chroma unavailable: {exc}")
        raise SystemExit(1)

    failure_stages: dict[str, int] = {}
    for event in failures:
        stage = event.metadata.get("stage") or "unknown"
        failure_stages[stage] = failure_stages.get(stage, 0) + 1

    payload = {
        **metrics.to_dict(),
        "child_failures": len(failures),
        "child_failures_by_stage": failure_stages,
    }
    print(json.dumps(payload, indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="epic-swarm diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_workspaces = sub.add_parser("workspaces", help="List active workspace records")
    p_workspaces.add_argument("--json", action="store_true", help="Output JSON")
    p_workspaces.set_defaults(func=cmd_workspaces)

    p_finished = sub.add_parser("finished", help="List archived workspace records, newest first")
    p_finished.add_argument("--limit", type=int, default=None)
    p_finished.set_defaults(func=cmd_finished)

    p_children = sub.add_parser("children", help="List child workspaces of a parent task")
    p_children.add_argument("parent")
    p_children.set_defaults(func=cmd_children)

    p_events = sub.add_parser("events", help="List recorded swarm events")
    p_events.add_argument("--parent", help="Only events for this parent task")
    p_events.add_argument("--query", help="Substring filter over event documents and metadata")
    p_events.add_argument(
        "--limit",
        type=int,
        default=None,
        help="If provided, show only the latest N events",
    )
    p_events.set_defaults(func=cmd_events)

    p_metrics = sub.add_parser("metrics", help="Aggregate run outcomes from swarm.completed events")
    p_metrics.add_argument("--parent", default=None)
    p_metrics.set_defaults(func=cmd_metrics)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
