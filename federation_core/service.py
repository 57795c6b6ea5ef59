"""gRPC service exposing one node's saved-query store."""

import logging
import time
from typing import Callable, Dict

import grpc

from . import wire
from .config import NodeSpec
from .errors import QueryNotFoundError, RecursiveDependencyError
from .outcomes import DeleteConflict
from .query_store import QueryStore

logger = logging.getLogger(__name__)


class QueryNodeService:
    """Thin service that delegates every call to a ``QueryStore``."""

    def __init__(self, spec: NodeSpec, store: QueryStore):
        self._spec = spec
        self._store = store
        self._start = time.time()

    def SaveQuery(self, request: Dict, context) -> Dict:  # pylint: disable=invalid-name
        definition = wire.definition_from_wire(request["query"])
        receipt = self._store.save(
            definition,
            request.get("user") or "",
            universal_id=request.get("universal_id") or None,
            correlation_id=request.get("correlation_id") or None,
        )
        return {"status": wire.STATUS_SAVED, "universal_id": receipt.universal_id, "ver": receipt.ver}

    def LoadQuery(self, request: Dict, context) -> Dict:  # pylint: disable=invalid-name
        query = self._store.load(request["universal_id"])
        return {"query": wire.definition_to_wire(query)}

    def DeleteQuery(self, request: Dict, context) -> Dict:  # pylint: disable=invalid-name
        response = self._store.delete(request["universal_id"], force=bool(request.get("force", False)))
        if isinstance(response, DeleteConflict):
            return {
                "status": wire.STATUS_CONFLICT,
                "dependents": [d.to_dict() for d in response.dependents],
            }
        return {"status": wire.STATUS_DELETED, "universal_ids": list(response.universal_ids)}

    def ListQueries(self, request: Dict, context) -> Dict:  # pylint: disable=invalid-name
        queries = self._store.list(owner=request.get("owner") or None)
        return {"queries": [wire.definition_to_wire(q) for q in queries]}

    def GetMetrics(self, request: Dict, context) -> Dict:  # pylint: disable=invalid-name
        return {
            "node_id": self._spec.id,
            "name": self._spec.name,
            "is_home": self._spec.is_home,
            "saved_queries": len(self._store),
            "uptime": time.time() - self._start,
        }

    def handle(self, method: str) -> Callable[[Dict, grpc.ServicerContext], Dict]:
        """Wrap ``method`` so store errors become gRPC status codes."""
        target = getattr(self, method)

        def handler(request: Dict, context: grpc.ServicerContext) -> Dict:
            try:
                return target(request, context)
            except QueryNotFoundError as exc:
                context.abort(grpc.StatusCode.NOT_FOUND, str(exc))
            except RecursiveDependencyError as exc:
                context.set_trailing_metadata(wire.recursion_metadata(exc.offender, exc.offender_name, exc.cycle))
                context.abort(grpc.StatusCode.FAILED_PRECONDITION, str(exc))
            except (KeyError, ValueError, TypeError) as exc:
                logger.warning("[QueryNodeService] %s rejected %s: %s", self._spec.id, method, exc)
                context.abort(grpc.StatusCode.INVALID_ARGUMENT, f"Malformed {method} request: {exc}")

        return handler


def add_query_node_to_server(service: QueryNodeService, server: grpc.Server) -> None:
    handlers = {
        method: grpc.unary_unary_rpc_method_handler(
            service.handle(method),
            request_deserializer=wire.decode,
            response_serializer=wire.encode,
        )
        for method in wire.METHODS
    }
    server.add_generic_rpc_handlers((grpc.method_handlers_generic_handler(wire.SERVICE_NAME, handlers),))
