import argparse
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Dict, List

from federation_core import (
    DeleteNeedsConfirmation,
    FederationError,
    NetworkConfig,
    Panel,
    PanelFilter,
    QueryFederation,
    Saved,
    WorkflowContext,
)
from federation_core import wire


def load_definition_file(path: str) -> Dict:
    with Path(path).open("r", encoding="utf-8") as stream:
        payload = json.load(stream)
    if not isinstance(payload, dict):
        raise ValueError(f"{path} must contain a JSON object.")
    return payload


def parse_cohorts(values: List[str]) -> Dict[str, str]:
    cohorts = {}
    for value in values or []:
        node_id, _, query_id = value.partition("=")
        if not node_id or not query_id:
            raise ValueError(f"Expected NODE=QUERY_ID, got '{value}'.")
        cohorts[node_id] = query_id
    return cohorts


def print_propagation(result) -> None:
    for outcome in result.propagation:
        status = "ok" if outcome.succeeded else f"FAILED ({outcome.error})"
        print(f"  {outcome.node_id:<12} {outcome.operation.value:<6} {outcome.universal_id} {status}")


def confirm(prompt: str) -> bool:
    try:
        return input(f"{prompt} [y/N]: ").strip().lower() in ("y", "yes")
    except (EOFError, KeyboardInterrupt):
        print()
        return False


def cmd_list(federation: QueryFederation, context: WorkflowContext, args) -> int:
    for query in sorted(context.saved.values(), key=lambda q: (q.category.lower(), q.name.lower())):
        print(f"{query.universal_id}  [{query.category or '-'}] {query.name} (ver {query.ver}, {query.owner})")
    return 0


def cmd_show(federation: QueryFederation, context: WorkflowContext, args) -> int:
    context = federation.open_query(context, args.universal_id)
    print(json.dumps(wire.definition_to_wire(context.current), indent=2))
    return 0


def cmd_save(federation: QueryFederation, context: WorkflowContext, args) -> int:
    payload = load_definition_file(args.definition)
    universal_id = payload.get("universal_id")
    if universal_id:
        context = federation.open_query(context, universal_id)

    current = replace(
        context.current,
        name=payload.get("name", context.current.name),
        category=payload.get("category", context.current.category),
    )
    context = context.with_current(current).with_panels(
        [Panel.from_dict(p) for p in payload.get("panels", [])],
        [PanelFilter.from_dict(f) for f in payload.get("panel_filters", [])],
    )

    result = federation.save(context)
    if isinstance(result.outcome, Saved):
        print(f"Saved {result.outcome.universal_id} (ver {result.outcome.query.ver})")
        print_propagation(result)
        return 0
    print(f"{result.outcome.header}: {result.outcome.detail}")
    return 1


def cmd_delete(federation: QueryFederation, context: WorkflowContext, args) -> int:
    result = federation.delete(context, args.universal_id, force=args.force)
    if isinstance(result.outcome, DeleteNeedsConfirmation):
        pending = result.outcome
        print(f"{pending.header}: {pending.detail}")
        if not (args.yes or confirm(pending.yes_text)):
            federation.decline_delete(context, pending)
            print("Nothing deleted.")
            return 1
        result = federation.confirm_delete(context, pending)

    if result.succeeded:
        print(f"Deleted {', '.join(result.outcome.universal_ids)}")
        print_propagation(result)
        return 0
    print(f"{result.outcome.header}: {result.outcome.detail}")
    return 1


def cmd_metrics(federation: QueryFederation, context: WorkflowContext, args) -> int:
    # Only remote clients expose node metrics.
    pool = federation.pool
    for node in federation.registry.all_nodes():
        try:
            metrics = pool.for_node(node).get_metrics()
        except Exception as exc:
            print(f"{node.id:<12} offline ({exc})")
            continue
        print(
            f"{node.id:<12} {'home' if metrics.get('is_home') else 'network':<8} "
            f"queries={metrics.get('saved_queries')} uptime={metrics.get('uptime', 0.0):.0f}s"
        )
    return 0


COMMANDS = {
    "list": cmd_list,
    "show": cmd_show,
    "save": cmd_save,
    "delete": cmd_delete,
    "metrics": cmd_metrics,
}


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Manage saved queries across a home node and network nodes.")
    parser.add_argument("config", help="Path to JSON network configuration.")
    parser.add_argument("--user", required=True, help="Name of the user performing the operation.")
    parser.add_argument(
        "--cohort",
        action="append",
        default=[],
        metavar="NODE=QUERY_ID",
        help="Per-node query id of the cohort being saved (repeatable).",
    )
    parser.add_argument("--log-level", default="WARNING", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("list", help="List the user's saved queries on the home node.")
    show = sub.add_parser("show", help="Print a saved query definition.")
    show.add_argument("universal_id")
    save = sub.add_parser("save", help="Save a query definition from a JSON file.")
    save.add_argument("definition", help="JSON file with name, category, panels, panel_filters.")
    delete = sub.add_parser("delete", help="Delete a saved query.")
    delete.add_argument("universal_id")
    delete.add_argument("--force", action="store_true", help="Delete dependent queries too.")
    delete.add_argument("--yes", action="store_true", help="Accept a cascading delete without asking.")
    sub.add_parser("metrics", help="Show per-node metrics.")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=args.log_level, format="%(levelname)s %(name)s %(message)s")

    federation = QueryFederation.from_config(NetworkConfig(args.config))
    try:
        context = federation.new_context(args.user, parse_cohorts(args.cohort))
        if args.command != "metrics":
            context = federation.refresh_saved(context)
        return COMMANDS[args.command](federation, context, args)
    except (FederationError, ValueError, OSError) as exc:
        print(f"Error: {exc}")
        return 1
    finally:
        federation.shutdown()


if __name__ == "__main__":
    sys.exit(main())
