import statistics
import threading
from collections import defaultdict, deque
from typing import Dict

from .outcomes import NodeOutcome


class PropagationMetrics:
    """Rolling per-node statistics for mirror writes and deletes."""

    def __init__(self, window: int = 200):
        self._lock = threading.Lock()
        self._window = window
        self._durations: Dict[str, deque] = defaultdict(lambda: deque(maxlen=self._window))
        self._succeeded: Dict[str, int] = defaultdict(int)
        self._failed: Dict[str, int] = defaultdict(int)
        self._last_error: Dict[str, str] = {}

    def record(self, outcome: NodeOutcome) -> None:
        with self._lock:
            self._durations[outcome.node_id].append(outcome.duration_ms)
            if outcome.succeeded:
                self._succeeded[outcome.node_id] += 1
            else:
                self._failed[outcome.node_id] += 1
                self._last_error[outcome.node_id] = outcome.error or ""

    def failures(self, node_id: str) -> int:
        with self._lock:
            return self._failed.get(node_id, 0)

    def snapshot(self) -> Dict[str, Dict[str, object]]:
        with self._lock:
            nodes = set(self._succeeded) | set(self._failed)
            return {
                node_id: {
                    "succeeded": self._succeeded.get(node_id, 0),
                    "failed": self._failed.get(node_id, 0),
                    "avg_ms": statistics.fmean(self._durations[node_id]) if self._durations[node_id] else 0.0,
                    "last_error": self._last_error.get(node_id),
                }
                for node_id in sorted(nodes)
            }
