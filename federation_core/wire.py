"""JSON wire format shared by node clients and the node service."""

import json
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .models import Panel, PanelFilter, QueryDefinition

SERVICE_NAME = "federation.QueryNode"

SAVE_QUERY = "SaveQuery"
LOAD_QUERY = "LoadQuery"
DELETE_QUERY = "DeleteQuery"
LIST_QUERIES = "ListQueries"
GET_METRICS = "GetMetrics"

METHODS = (SAVE_QUERY, LOAD_QUERY, DELETE_QUERY, LIST_QUERIES, GET_METRICS)

STATUS_SAVED = "saved"
STATUS_DELETED = "deleted"
STATUS_CONFLICT = "conflict"


def method_path(method: str) -> str:
    return f"/{SERVICE_NAME}/{method}"


def encode(message: Dict[str, Any]) -> bytes:
    return json.dumps(message, separators=(",", ":")).encode("utf-8")


def decode(payload: bytes) -> Dict[str, Any]:
    if not payload:
        return {}
    message = json.loads(payload.decode("utf-8"))
    if not isinstance(message, dict):
        raise ValueError("Wire payload must decode into a JSON object.")
    return message


def definition_to_wire(definition: QueryDefinition) -> Dict[str, Any]:
    # The node-local id is deliberately absent.
    return {
        "universal_id": definition.universal_id,
        "name": definition.name,
        "category": definition.category,
        "owner": definition.owner,
        "ver": definition.ver,
        "panels": [panel.to_dict() for panel in definition.panels],
        "panel_filters": [f.to_dict() for f in definition.active_filters()],
        "created": definition.created,
        "updated": definition.updated,
    }


def definition_from_wire(data: Dict[str, Any]) -> QueryDefinition:
    ver = data.get("ver")
    return QueryDefinition(
        name=str(data.get("name") or ""),
        category=str(data.get("category") or ""),
        universal_id=data.get("universal_id") or None,
        owner=str(data.get("owner") or ""),
        ver=int(ver) if ver is not None else None,
        panels=tuple(Panel.from_dict(p) for p in data.get("panels", [])),
        panel_filters=tuple(PanelFilter.from_dict(f) for f in data.get("panel_filters", [])),
        created=data.get("created"),
        updated=data.get("updated"),
    )


RECURSION_METADATA_KEY = "federation-recursion-bin"


def recursion_metadata(offender: str, offender_name: str, cycle: List[str]) -> Tuple[Tuple[str, bytes], ...]:
    """Trailing metadata describing a refused recursive save."""
    payload = encode({"offender": offender, "offender_name": offender_name, "cycle": list(cycle)})
    return ((RECURSION_METADATA_KEY, payload),)


def recursion_from_metadata(metadata: Optional[Iterable[Tuple[str, Any]]]) -> Dict[str, Any]:
    for key, value in metadata or ():
        if key == RECURSION_METADATA_KEY:
            return decode(value if isinstance(value, bytes) else value.encode("utf-8"))
    return {}
