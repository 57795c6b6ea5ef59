"""Hook system for reporting save/delete telemetry off the caller's thread."""

import logging
import threading
from collections import defaultdict
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Dict, List, Tuple

logger = logging.getLogger(__name__)


class HookManager:
    """
    Manages hooks for temporal decoupling.
    Callbacks run on a small executor so telemetry never delays an operation.
    """

    def __init__(self, max_workers: int = 4, name: str = "HookManager"):
        self._name = name
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=name)
        self._hooks: Dict[str, List[Tuple[int, Callable]]] = defaultdict(list)
        self._lock = threading.Lock()
        self._hook_stats: Dict[str, Dict[str, int]] = defaultdict(lambda: {"triggered": 0, "errors": 0})

    def register_hook(self, event: str, callback: Callable, priority: int = 0):
        """
        Register a callback for an event.

        Args:
            event: Event name, one of ``HookEvents``
            callback: Called with the event's keyword arguments
            priority: Higher priority callbacks are submitted first (0 = default)
        """
        with self._lock:
            self._hooks[event].append((priority, callback))
            self._hooks[event].sort(key=lambda x: x[0], reverse=True)

    def trigger_hook(self, event: str, **kwargs) -> List[Future]:
        """Submit every callback for ``event``; returns their futures."""
        with self._lock:
            callbacks = [cb for _, cb in self._hooks.get(event, [])]
            self._hook_stats[event]["triggered"] += len(callbacks)

        futures = []
        for callback in callbacks:
            try:
                futures.append(self._executor.submit(self._safe_call, callback, event, **kwargs))
            except RuntimeError as exc:
                # Executor already shut down.
                logger.warning("[%s] Error submitting hook '%s': %s", self._name, event, exc)
                with self._lock:
                    self._hook_stats[event]["errors"] += 1
        return futures

    def _safe_call(self, callback: Callable, event: str, **kwargs):
        try:
            return callback(**kwargs)
        except Exception as exc:
            logger.warning("[%s] Hook '%s' callback error: %s", self._name, event, exc)
            with self._lock:
                self._hook_stats[event]["errors"] += 1
            raise

    def snapshot(self) -> Dict:
        with self._lock:
            return {
                "registered_events": list(self._hooks.keys()),
                "stats": {event: dict(stats) for event, stats in self._hook_stats.items()},
            }

    def shutdown(self, wait: bool = True):
        self._executor.shutdown(wait=wait)


class HookEvents:
    """Standard hook event names."""
    QUERY_SAVED = "query_saved"
    QUERY_SAVE_REJECTED = "query_save_rejected"
    QUERY_DELETED = "query_deleted"
    QUERY_DELETE_REJECTED = "query_delete_rejected"
    DELETE_CONFIRMATION_REQUESTED = "delete_confirmation_requested"
    NODE_PROPAGATED = "node_propagated"
    NODE_PROPAGATION_FAILED = "node_propagation_failed"
