"""Best-effort parallel fan-out of a finalized change to the network nodes."""

import logging
import time
from concurrent import futures
from typing import Callable, List, Optional, Sequence

from .config import NodeSpec
from .errors import NetworkPropagationError
from .hooks import HookEvents, HookManager
from .metrics import PropagationMetrics
from .outcomes import NodeOperation, NodeOutcome
from .proxies import NodeClient, NodeClientPool

logger = logging.getLogger(__name__)

NodeAction = Callable[[NodeClient, str], object]


class Propagator:
    """
    Runs one task per network node concurrently and waits for all of them to
    settle. A failing node never cancels or fails the others; its failure is
    logged, counted and returned as a ``NodeOutcome``.
    """

    def __init__(
        self,
        pool: NodeClientPool,
        max_workers: int = 8,
        metrics: Optional[PropagationMetrics] = None,
        hooks: Optional[HookManager] = None,
    ):
        self._pool = pool
        self._executor = futures.ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="Propagator")
        self._metrics = metrics or PropagationMetrics()
        self._hooks = hooks

    @property
    def metrics(self) -> PropagationMetrics:
        return self._metrics

    def fan_out(
        self,
        operation: NodeOperation,
        nodes: Sequence[NodeSpec],
        universal_ids: Sequence[str],
        action: NodeAction,
    ) -> List[NodeOutcome]:
        """
        Apply ``action`` to every universal id on every node. Ids are applied
        in order within a node; nodes run in parallel.
        """
        if not nodes or not universal_ids:
            return []

        pending = [
            self._executor.submit(self._run_node, operation, node, list(universal_ids), action)
            for node in nodes
        ]
        futures.wait(pending)

        outcomes: List[NodeOutcome] = []
        for future in pending:
            outcomes.extend(future.result())

        failed = [o for o in outcomes if not o.succeeded]
        logger.info(
            "[Propagator] %s of %s settled on %d nodes: %d ok, %d failed",
            operation.value, ", ".join(universal_ids), len(nodes), len(outcomes) - len(failed), len(failed),
        )
        return outcomes

    def _run_node(
        self,
        operation: NodeOperation,
        node: NodeSpec,
        universal_ids: List[str],
        action: NodeAction,
    ) -> List[NodeOutcome]:
        outcomes = []
        for uid in universal_ids:
            start = time.time()
            try:
                client = self._pool.for_node(node)
                action(client, uid)
            except Exception as exc:
                failure = NetworkPropagationError(operation.value, node.id, uid, exc)
                logger.warning("[Propagator] %s", failure)
                outcome = NodeOutcome(
                    node_id=node.id,
                    operation=operation,
                    universal_id=uid,
                    succeeded=False,
                    duration_ms=(time.time() - start) * 1000,
                    error=str(exc),
                )
            else:
                outcome = NodeOutcome(
                    node_id=node.id,
                    operation=operation,
                    universal_id=uid,
                    succeeded=True,
                    duration_ms=(time.time() - start) * 1000,
                )
            self._report(outcome)
            outcomes.append(outcome)
        return outcomes

    def _report(self, outcome: NodeOutcome) -> None:
        self._metrics.record(outcome)
        if self._hooks is None:
            return
        event = HookEvents.NODE_PROPAGATED if outcome.succeeded else HookEvents.NODE_PROPAGATION_FAILED
        self._hooks.trigger_hook(event, outcome=outcome)

    def shutdown(self, wait: bool = True):
        self._executor.shutdown(wait=wait)
