import threading
import time
import unittest
from unittest.mock import MagicMock

from federation_core.config import NodeSpec
from federation_core.hooks import HookEvents, HookManager
from federation_core.metrics import PropagationMetrics
from federation_core.outcomes import NodeOperation, NodeOutcome
from federation_core.propagation import Propagator
from federation_core.proxies import NodeClient, NodeClientPool

NODES = [NodeSpec(id=f"node{i}", name=f"Node {i}", host="localhost", port=60060 + i) for i in range(4)]


def fake_client(node_id):
    client = MagicMock(spec=NodeClient)
    client.node_id = node_id
    return client


class TestPropagator(unittest.TestCase):
    def setUp(self):
        self.pool = NodeClientPool()
        self.clients = {node.id: fake_client(node.id) for node in NODES}
        for client in self.clients.values():
            self.pool.register(client)
        self.propagator = Propagator(self.pool, max_workers=4)

    def tearDown(self):
        self.propagator.shutdown()

    def test_nothing_to_do(self):
        action = MagicMock()
        self.assertEqual(self.propagator.fan_out(NodeOperation.SAVE, [], ["urn:leaf:query:1"], action), [])
        self.assertEqual(self.propagator.fan_out(NodeOperation.SAVE, NODES, [], action), [])
        action.assert_not_called()

    def test_nodes_run_concurrently(self):
        print("\nTesting Propagator: nodes run in parallel")
        barrier = threading.Barrier(len(NODES), timeout=2.0)

        def action(client, uid):
            # Only passes when every node task is in flight at once
            barrier.wait()

        outcomes = self.propagator.fan_out(NodeOperation.SAVE, NODES, ["urn:leaf:query:1"], action)
        self.assertEqual(len(outcomes), len(NODES))
        self.assertTrue(all(o.succeeded for o in outcomes))

    def test_failure_does_not_cancel_siblings(self):
        print("\nTesting Propagator: one node raises, others settle")
        finished = []

        def action(client, uid):
            if client.node_id == "node0":
                raise ConnectionError("node0 refused")
            time.sleep(0.05)
            finished.append(client.node_id)

        outcomes = self.propagator.fan_out(NodeOperation.DELETE, NODES, ["urn:leaf:query:1"], action)

        self.assertEqual(sorted(finished), ["node1", "node2", "node3"])
        failed = [o for o in outcomes if not o.succeeded]
        self.assertEqual(len(failed), 1)
        self.assertEqual(failed[0].node_id, "node0")
        self.assertEqual(failed[0].error, "node0 refused")
        self.assertEqual(self.propagator.metrics.failures("node0"), 1)
        self.assertEqual(self.propagator.metrics.snapshot()["node1"]["succeeded"], 1)

    def test_ids_applied_in_order_within_a_node(self):
        seen = []
        lock = threading.Lock()

        def action(client, uid):
            with lock:
                seen.append((client.node_id, uid))

        outcomes = self.propagator.fan_out(NodeOperation.DELETE, NODES[:2], ["c", "b", "a"], action)

        self.assertEqual(len(outcomes), 6)
        for node in NODES[:2]:
            self.assertEqual([uid for node_id, uid in seen if node_id == node.id], ["c", "b", "a"])

    def test_failed_id_does_not_stop_later_ids(self):
        def action(client, uid):
            if uid == "b":
                raise RuntimeError("missing dependee")

        outcomes = self.propagator.fan_out(NodeOperation.SAVE, NODES[:1], ["a", "b", "c"], action)
        self.assertEqual([o.succeeded for o in outcomes], [True, False, True])

    def test_reports_to_hooks(self):
        hooks = HookManager(max_workers=1)
        self.addCleanup(hooks.shutdown)
        propagator = Propagator(self.pool, max_workers=2, hooks=hooks)
        self.addCleanup(propagator.shutdown)

        received = []
        hooks.register_hook(HookEvents.NODE_PROPAGATED, lambda outcome: received.append(outcome))

        propagator.fan_out(NodeOperation.SAVE, NODES[:2], ["urn:leaf:query:1"], lambda client, uid: None)
        hooks.shutdown(wait=True)

        self.assertEqual(sorted(o.node_id for o in received), ["node0", "node1"])


class TestPropagationMetrics(unittest.TestCase):
    def test_snapshot(self):
        metrics = PropagationMetrics()
        metrics.record(NodeOutcome("east", NodeOperation.SAVE, "u1", True, duration_ms=10.0))
        metrics.record(NodeOutcome("east", NodeOperation.SAVE, "u2", False, duration_ms=30.0, error="down"))

        snapshot = metrics.snapshot()["east"]
        self.assertEqual(snapshot["succeeded"], 1)
        self.assertEqual(snapshot["failed"], 1)
        self.assertAlmostEqual(snapshot["avg_ms"], 20.0)
        self.assertEqual(snapshot["last_error"], "down")
        self.assertEqual(metrics.failures("west"), 0)


if __name__ == "__main__":
    unittest.main()
