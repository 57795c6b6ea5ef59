import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional

import grpc

from . import wire
from .config import FederationSettings, NodeSpec
from .errors import QueryNotFoundError, RecursiveDependencyError
from .models import QueryDefinition, QueryDependent
from .outcomes import DeleteAck, DeleteConflict, DeleteResponse, SaveReceipt
from .query_store import QueryStore
from .resilience import CircuitBreaker, retry

logger = logging.getLogger(__name__)

TRANSIENT_CODES = frozenset({
    grpc.StatusCode.UNAVAILABLE,
    grpc.StatusCode.DEADLINE_EXCEEDED,
    grpc.StatusCode.RESOURCE_EXHAUSTED,
})

KEEPALIVE_OPTIONS = [
    # Send a ping every 10 seconds to keep the connection alive
    ("grpc.keepalive_time_ms", 10000),
    # Wait 5 seconds for a ping response before considering the connection down
    ("grpc.keepalive_timeout_ms", 5000),
    ("grpc.keepalive_permit_without_calls", True),
    ("grpc.http2.min_time_between_pings_ms", 10000),
    ("grpc.http2.max_pings_without_data", 0),
]


def is_transient(exc: BaseException) -> bool:
    code = getattr(exc, "code", None)
    if not callable(code):
        return False
    try:
        return code() in TRANSIENT_CODES
    except Exception:
        return False


class NodeClient(ABC):
    """Operations a respondent node offers for saved queries."""

    spec: NodeSpec

    @property
    def node_id(self) -> str:
        return self.spec.id

    @abstractmethod
    def save_query(
        self,
        definition: QueryDefinition,
        user: str,
        correlation_id: Optional[str] = None,
        universal_id: Optional[str] = None,
    ) -> SaveReceipt:
        pass

    @abstractmethod
    def load_query(self, universal_id: str) -> QueryDefinition:
        pass

    @abstractmethod
    def delete_query(self, universal_id: str, force: bool = False) -> DeleteResponse:
        pass

    @abstractmethod
    def list_queries(self, owner: Optional[str] = None) -> List[QueryDefinition]:
        pass


def _delete_response(message: Dict) -> DeleteResponse:
    if message.get("status") == wire.STATUS_CONFLICT:
        return DeleteConflict(
            dependents=tuple(QueryDependent.from_dict(d) for d in message.get("dependents", []))
        )
    return DeleteAck(universal_ids=tuple(message.get("universal_ids", [])))


class RemoteNodeClient(NodeClient):
    """Client for a respondent node reached over gRPC."""

    def __init__(self, spec: NodeSpec, channel: grpc.Channel, settings: Optional[FederationSettings] = None):
        self.spec = spec
        self._channel = channel
        self._settings = settings or FederationSettings()
        self._circuit_breaker = CircuitBreaker(
            name=spec.id,
            failure_threshold=self._settings.circuit_failure_threshold,
            recovery_timeout=self._settings.circuit_recovery_seconds,
            exceptions=(grpc.RpcError,),
            failure_if=is_transient,
        )
        self._stubs: Dict[str, Callable] = {
            method: channel.unary_unary(
                wire.method_path(method),
                request_serializer=wire.encode,
                response_deserializer=wire.decode,
            )
            for method in wire.METHODS
        }
        # Retries and the breaker are per client, sized from settings.
        self._invoke = retry(
            max_retries=self._settings.max_retries,
            initial_delay=0.2,
            exceptions=(grpc.RpcError,),
            retry_if=is_transient,
        )(self._circuit_breaker(self._call))

    @property
    def address(self) -> str:
        return self.spec.address

    def _call(self, method: str, request: Dict) -> Dict:
        return self._stubs[method](request, timeout=self._settings.rpc_timeout_seconds)

    def _request(self, method: str, request: Dict, universal_id: Optional[str] = None) -> Dict:
        try:
            return self._invoke(method, request)
        except grpc.RpcError as exc:
            if universal_id and is_not_found(exc):
                raise QueryNotFoundError(universal_id) from exc
            if is_failed_precondition(exc):
                raise recursion_error(exc, universal_id) from exc
            raise

    def save_query(self, definition, user, correlation_id=None, universal_id=None) -> SaveReceipt:
        response = self._request(
            wire.SAVE_QUERY,
            {
                "query": wire.definition_to_wire(definition),
                "user": user,
                "correlation_id": correlation_id,
                "universal_id": universal_id,
            },
            universal_id=universal_id or definition.universal_id,
        )
        return SaveReceipt(universal_id=response["universal_id"], ver=response.get("ver"))

    def load_query(self, universal_id: str) -> QueryDefinition:
        response = self._request(wire.LOAD_QUERY, {"universal_id": universal_id}, universal_id=universal_id)
        return wire.definition_from_wire(response["query"])

    def delete_query(self, universal_id: str, force: bool = False) -> DeleteResponse:
        response = self._request(
            wire.DELETE_QUERY, {"universal_id": universal_id, "force": force}, universal_id=universal_id
        )
        return _delete_response(response)

    def list_queries(self, owner: Optional[str] = None) -> List[QueryDefinition]:
        response = self._request(wire.LIST_QUERIES, {"owner": owner})
        return [wire.definition_from_wire(q) for q in response.get("queries", [])]

    def get_metrics(self) -> Dict:
        return self._request(wire.GET_METRICS, {})


def is_not_found(exc: BaseException) -> bool:
    code = getattr(exc, "code", None)
    return callable(code) and code() == grpc.StatusCode.NOT_FOUND


def is_failed_precondition(exc: BaseException) -> bool:
    code = getattr(exc, "code", None)
    return callable(code) and code() == grpc.StatusCode.FAILED_PRECONDITION


def recursion_error(exc: BaseException, universal_id: Optional[str] = None) -> RecursiveDependencyError:
    """Rebuild the node's cycle error from the trailing metadata of ``exc``."""
    trailing = getattr(exc, "trailing_metadata", None)
    details = wire.recursion_from_metadata(trailing() if callable(trailing) else None)
    offender = details.get("offender") or universal_id or ""
    return RecursiveDependencyError(
        offender=offender,
        offender_name=details.get("offender_name") or offender,
        cycle=details.get("cycle") or [],
    )


class LocalNodeClient(NodeClient):
    """
    In-process client over a ``QueryStore``. Payloads still go through the
    wire format so that node-local ids never leak between stores.
    """

    def __init__(self, spec: NodeSpec, store: Optional[QueryStore] = None):
        self.spec = spec
        self.store = store or QueryStore(spec.id)

    def save_query(self, definition, user, correlation_id=None, universal_id=None) -> SaveReceipt:
        sent = wire.definition_from_wire(wire.definition_to_wire(definition))
        return self.store.save(sent, user, universal_id=universal_id, correlation_id=correlation_id)

    def load_query(self, universal_id: str) -> QueryDefinition:
        return wire.definition_from_wire(wire.definition_to_wire(self.store.load(universal_id)))

    def delete_query(self, universal_id: str, force: bool = False) -> DeleteResponse:
        return self.store.delete(universal_id, force=force)

    def list_queries(self, owner: Optional[str] = None) -> List[QueryDefinition]:
        return [wire.definition_from_wire(wire.definition_to_wire(q)) for q in self.store.list(owner)]


class NodeClientPool:
    """Caches one client (and one gRPC channel) per respondent node."""

    def __init__(self, settings: Optional[FederationSettings] = None):
        self._settings = settings or FederationSettings()
        self._clients: Dict[str, NodeClient] = {}
        self._channels: Dict[str, grpc.Channel] = {}
        self._lock = threading.Lock()

    def register(self, client: NodeClient) -> None:
        """Use an already built client, e.g. an in-process one, for its node."""
        with self._lock:
            self._clients[client.node_id] = client

    def for_node(self, spec: NodeSpec) -> NodeClient:
        client = self._clients.get(spec.id)
        if client is not None:
            return client

        # Double-check under the lock so only one channel is opened per node.
        with self._lock:
            client = self._clients.get(spec.id)
            if client is not None:
                return client

            channel = grpc.insecure_channel(spec.address, options=KEEPALIVE_OPTIONS)
            self._channels[spec.id] = channel
            client = RemoteNodeClient(spec, channel, self._settings)
            self._clients[spec.id] = client
            logger.debug("[NodeClientPool] opened channel to %s at %s", spec.id, spec.address)
            return client

    def close_all(self):
        """Closes all open gRPC channels."""
        with self._lock:
            for channel in self._channels.values():
                channel.close()
            self._channels.clear()
            self._clients.clear()
