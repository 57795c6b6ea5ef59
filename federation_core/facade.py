import logging
import threading
from collections import defaultdict, deque
from contextlib import contextmanager
from typing import Dict, Iterable, List, Optional

from .concepts import ConceptIndex, SavedQueryConceptIndex
from .config import FederationSettings, NetworkConfig
from .delete import DeleteOrchestrator
from .errors import HomeOperationError
from .hooks import HookEvents, HookManager
from .models import QueryDependent, UserContext
from .outcomes import DeleteNeedsConfirmation, DeleteResult, Deleted, SaveResult
from .propagation import Propagator
from .proxies import NodeClientPool
from .registry import NodeRegistry
from .save import SaveOrchestrator
from .session import WorkflowContext

logger = logging.getLogger(__name__)


class QueryFederation:
    """
    Entry point for saving, opening and deleting queries across a home node
    and its network nodes. Wires the registry, node clients, fan-out, hooks
    and the two orchestrators together.
    """

    def __init__(
        self,
        registry: NodeRegistry,
        settings: Optional[FederationSettings] = None,
        pool: Optional[NodeClientPool] = None,
        concept_index: Optional[ConceptIndex] = None,
    ):
        self._registry = registry
        self._settings = settings or FederationSettings()
        self._pool = pool or NodeClientPool(self._settings)
        self._concept_index = concept_index or SavedQueryConceptIndex()
        self._hooks = HookManager(max_workers=4, name="FederationHooks")
        self._propagator = Propagator(self._pool, max_workers=self._settings.fanout_workers, hooks=self._hooks)
        self._saver = SaveOrchestrator(registry, self._pool, self._propagator, self._concept_index, self._hooks)
        self._deleter = DeleteOrchestrator(registry, self._pool, self._propagator, self._concept_index, self._hooks)

        self._log_buffer = deque(maxlen=50)  # Store last 50 log lines
        self._log_lock = threading.Lock()
        self._id_locks: Dict[str, threading.Lock] = defaultdict(threading.Lock)
        self._id_locks_guard = threading.Lock()

        self._hooks.register_hook(HookEvents.NODE_PROPAGATION_FAILED, self._on_propagation_failed, priority=10)

        home = registry.home_node()
        logger.info(
            "[Federation] initialized: home=%s (%s), network nodes=%s",
            home.id, home.address, [n.id for n in registry.network_nodes()],
        )

    @classmethod
    def from_config(cls, config: NetworkConfig, **kwargs) -> "QueryFederation":
        return cls(NodeRegistry(config.all_nodes()), settings=config.get_settings(), **kwargs)

    @property
    def registry(self) -> NodeRegistry:
        return self._registry

    @property
    def pool(self) -> NodeClientPool:
        return self._pool

    @property
    def hooks(self) -> HookManager:
        return self._hooks

    def new_context(self, user: str, network_cohorts: Optional[Dict[str, str]] = None) -> WorkflowContext:
        return WorkflowContext(user=UserContext(user), network_cohorts=dict(network_cohorts or {}))

    def refresh_saved(self, context: WorkflowContext) -> WorkflowContext:
        """Replace the saved-query collection with the user's queries on the home node."""
        home = self._registry.home_node()
        try:
            queries = self._pool.for_node(home).list_queries(owner=context.user.name)
        except Exception as exc:
            raise HomeOperationError("list", home.id, exc) from exc
        updated = context.without_saved(list(context.saved))
        for query in queries:
            updated = updated.with_saved(query)
        self._add_log(f"[Federation] loaded {len(queries)} saved queries for {context.user.name}")
        return updated.with_concepts(self._concept_index.rebuild(updated.saved.values()))

    def open_query(self, context: WorkflowContext, universal_id: str) -> WorkflowContext:
        """Load a saved query from the home node and make it the current one."""
        if context.is_current(universal_id):
            return context
        home = self._registry.home_node()
        try:
            query = self._pool.for_node(home).load_query(universal_id)
        except Exception as exc:
            raise HomeOperationError("load", home.id, exc) from exc
        self._add_log(f"[Federation] opened {universal_id} '{query.name}'")
        opened = context.with_current(query, load_content=True).with_saved(query)
        return opened.with_concepts(self._concept_index.rebuild(opened.saved.values()))

    def save(self, context: WorkflowContext, run_continuation: bool = True) -> SaveResult:
        with self._serialized(context.current.universal_id):
            result = self._saver.save(context)
        self._add_log(f"[Federation] save {type(result.outcome).__name__}: {self._describe(result.outcome)}")
        if run_continuation:
            result.run_continuation()
        return result

    def delete(
        self,
        context: WorkflowContext,
        universal_id: str,
        force: bool = False,
        dependents: Iterable[QueryDependent] = (),
    ) -> DeleteResult:
        with self._serialized(universal_id):
            result = self._deleter.delete(context, universal_id, force=force, dependents=dependents)
        self._forget_locks(result)
        self._add_log(f"[Federation] delete {type(result.outcome).__name__}: {self._describe(result.outcome)}")
        return result

    def confirm_delete(self, context: WorkflowContext, pending: DeleteNeedsConfirmation) -> DeleteResult:
        with self._serialized(pending.universal_id):
            result = self._deleter.confirm(context, pending)
        self._forget_locks(result)
        self._add_log(f"[Federation] cascade {type(result.outcome).__name__}: {self._describe(result.outcome)}")
        return result

    def decline_delete(self, context: WorkflowContext, pending: DeleteNeedsConfirmation) -> DeleteResult:
        return self._deleter.decline(context, pending)

    def snapshot(self) -> Dict:
        return {
            "home": self._registry.home_node().id,
            "network_nodes": [n.id for n in self._registry.network_nodes()],
            "propagation": self._propagator.metrics.snapshot(),
            "hooks": self._hooks.snapshot(),
            "recent_logs": self._get_recent_logs(),
        }

    def shutdown(self):
        """Shutdown fan-out and hook executors and close node channels."""
        self._propagator.shutdown(wait=True)
        self._hooks.shutdown(wait=True)
        self._pool.close_all()

    @contextmanager
    def _serialized(self, universal_id: Optional[str]):
        if not universal_id:
            yield
            return
        with self._id_locks_guard:
            lock = self._id_locks[universal_id]
        with lock:
            yield

    def _forget_locks(self, result: DeleteResult) -> None:
        if isinstance(result.outcome, Deleted):
            with self._id_locks_guard:
                for universal_id in result.outcome.universal_ids:
                    self._id_locks.pop(universal_id, None)

    @staticmethod
    def _describe(outcome) -> str:
        for attr in ("universal_id", "universal_ids", "detail"):
            value = getattr(outcome, attr, None)
            if value:
                return ", ".join(value) if isinstance(value, tuple) else str(value)
        return ""

    def _add_log(self, message: str) -> None:
        logger.info(message)
        with self._log_lock:
            self._log_buffer.append(message)

    def _get_recent_logs(self, max_lines: int = 10) -> List[str]:
        with self._log_lock:
            return list(self._log_buffer)[-max_lines:]

    def _on_propagation_failed(self, outcome):
        self._add_log(
            f"[Federation] {outcome.node_id} is stale for {outcome.universal_id} "
            f"({outcome.operation.value} failed: {outcome.error})"
        )
