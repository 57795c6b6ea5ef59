import unittest
from dataclasses import replace
from unittest.mock import MagicMock, call

from federation_core.concepts import SavedQueryConceptIndex
from federation_core.config import NodeSpec
from federation_core.delete import (
    CONFIRM_HEADER,
    DELETE_ERROR_BODY,
    DELETE_ERROR_HEADER,
    DeleteOrchestrator,
    DeleteState,
    cascade_message,
    foreign_dependents_message,
)
from federation_core.errors import QueryNotFoundError
from federation_core.models import Panel, PanelItem, QueryDefinition, QueryDependent, SubPanel, UserContext
from federation_core.outcomes import (
    DeleteConflict,
    DeleteNeedsConfirmation,
    DeleteRejected,
    Deleted,
    NodeOperation,
    RejectionKind,
)
from federation_core.propagation import Propagator
from federation_core.proxies import LocalNodeClient, NodeClient, NodeClientPool
from federation_core.registry import NodeRegistry
from federation_core.session import Routes, WorkflowContext

HOME = NodeSpec(id="home", name="Home", host="localhost", port=60051, is_home=True)
EAST = NodeSpec(id="east", name="East", host="localhost", port=60052)
WEST = NodeSpec(id="west", name="West", host="localhost", port=60053)


def embedding(*universal_ids):
    items = tuple(PanelItem(index=i, query_universal_id=uid) for i, uid in enumerate(universal_ids))
    return (Panel(index=0, sub_panels=(SubPanel(panel_items=items),)),)


class DeleteOrchestratorTestCase(unittest.TestCase):
    def setUp(self):
        self.registry = NodeRegistry([HOME, EAST, WEST])
        self.pool = NodeClientPool()
        self.home = LocalNodeClient(HOME)
        self.east = LocalNodeClient(EAST)
        self.west = LocalNodeClient(WEST)
        for client in (self.home, self.east, self.west):
            self.pool.register(client)

        self.propagator = Propagator(self.pool, max_workers=4)
        self.orchestrator = DeleteOrchestrator(self.registry, self.pool, self.propagator, SavedQueryConceptIndex())
        self.context = WorkflowContext(user=UserContext("alice@leaf"))

    def tearDown(self):
        self.propagator.shutdown()

    def seed(self, name, owner="alice@leaf", embeds=(), network=True):
        """Save on home and mirror onto the network stores, bypassing the orchestrators."""
        panels = embedding(*embeds) if embeds else ()
        uid = self.home.store.save(QueryDefinition(name=name, panels=panels), owner).universal_id
        stored = self.home.load_query(uid)
        if network:
            for client in (self.east, self.west):
                client.store.save(stored, owner, universal_id=uid)
        if owner.startswith(self.context.user.name):
            self.context = self.context.with_saved(stored)
        return uid

    def assert_gone_everywhere(self, *universal_ids):
        for client in (self.home, self.east, self.west):
            for uid in universal_ids:
                with self.assertRaises(QueryNotFoundError):
                    client.store.load(uid)


class TestDeleteWithoutDependents(DeleteOrchestratorTestCase):
    def test_deleted_on_home_and_network(self):
        print("\nTesting Delete: query without dependents")
        a = self.seed("Diabetics")
        keep = self.seed("Hypertension")

        result = self.orchestrator.delete(self.context, a)

        self.assertIsInstance(result.outcome, Deleted)
        self.assertEqual(result.outcome.universal_ids, (a,))
        self.assertNotIn(a, result.context.saved)
        self.assertIn(keep, result.context.saved)
        self.assertNotIn(a, result.context.concepts.query_ids())
        self.assert_gone_everywhere(a)
        self.assertEqual({o.node_id for o in result.propagation}, {"east", "west"})
        self.assertTrue(all(o.succeeded and o.operation is NodeOperation.DELETE for o in result.propagation))
        print("  -> removed from home, east and west")

    def test_deleting_current_query_resets_workspace(self):
        a = self.seed("Diabetics")
        context = (
            self.context.with_current(self.context.saved[a], load_content=True)
            .with_panels(embedding("urn:leaf:query:other"))
        )
        context = replace(context, route=Routes.MY_LEAF)

        result = self.orchestrator.delete(context, a)

        self.assertIsNone(result.context.current.universal_id)
        self.assertEqual(result.context.panels, ())
        self.assertEqual(result.context.route, Routes.FIND_PATIENTS)

    def test_deleting_other_query_keeps_workspace(self):
        a = self.seed("Diabetics")
        b = self.seed("Hypertension")
        context = self.context.with_current(self.context.saved[b], load_content=True)

        result = self.orchestrator.delete(context, a)

        self.assertEqual(result.context.current.universal_id, b)

    def test_network_node_without_mirror_counts_as_deleted(self):
        a = self.seed("Diabetics", network=False)
        result = self.orchestrator.delete(self.context, a)
        self.assertTrue(result.succeeded)
        self.assertTrue(all(o.succeeded for o in result.propagation))

    def test_network_failure_does_not_fail_delete(self):
        a = self.seed("Diabetics")
        failing = MagicMock(spec=NodeClient)
        failing.node_id = "west"
        failing.delete_query.side_effect = RuntimeError("west is down")
        self.pool.register(failing)

        result = self.orchestrator.delete(self.context, a)

        self.assertTrue(result.succeeded)
        by_node = {o.node_id: o for o in result.propagation}
        self.assertTrue(by_node["east"].succeeded)
        self.assertFalse(by_node["west"].succeeded)
        self.assertEqual(by_node["west"].error, "west is down")


class TestDeleteWithDependents(DeleteOrchestratorTestCase):
    def test_own_dependents_ask_for_confirmation(self):
        print("\nTesting Delete: own dependents require confirmation")
        a = self.seed("Query A")
        b = self.seed("Query B", embeds=[a])

        result = self.orchestrator.delete(self.context, a)

        self.assertTrue(result.needs_confirmation)
        pending = result.outcome
        self.assertIsInstance(pending, DeleteNeedsConfirmation)
        self.assertEqual(pending.header, CONFIRM_HEADER)
        self.assertEqual(pending.universal_id, a)
        self.assertEqual([d.universal_id for d in pending.dependents], [b])
        self.assertEqual(
            pending.detail,
            'Another saved query, "Query B" depends on this query. Do you want to proceed? '
            'This will delete both "Query A" and "Query B".',
        )
        self.assertEqual(pending.yes_text, "Yes, delete all queries")
        self.assertIs(result.context, self.context)
        self.assertEqual(len(self.home.store), 2)
        self.assertEqual(result.propagation, [])
        print("  -> nothing deleted until the user answers")

    def test_confirm_cascades_everywhere_farthest_first(self):
        print("\nTesting Delete: confirmed cascade")
        a = self.seed("Query A")
        b = self.seed("Query B", embeds=[a])
        c = self.seed("Query C", embeds=[b])
        self.east.delete_query = MagicMock(wraps=self.east.delete_query)

        pending = self.orchestrator.delete(self.context, a).outcome
        self.assertIn("There are 2 other saved queries", pending.detail)
        result = self.orchestrator.confirm(self.context, pending)

        self.assertIsInstance(result.outcome, Deleted)
        self.assertEqual(set(result.outcome.universal_ids), {a, b, c})
        self.assertEqual(result.context.saved, {})
        self.assert_gone_everywhere(a, b, c)
        self.assertEqual(
            self.east.delete_query.call_args_list,
            [call(c, force=True), call(b, force=True), call(a, force=True)],
        )
        print("  -> A, B and C removed from every node")

    def test_decline_changes_nothing(self):
        a = self.seed("Query A")
        self.seed("Query B", embeds=[a])

        pending = self.orchestrator.delete(self.context, a).outcome
        result = self.orchestrator.decline(self.context, pending)

        self.assertIs(result.context, self.context)
        self.assertFalse(result.succeeded)
        self.assertEqual(len(self.home.store), 2)
        self.assertEqual(len(self.east.store), 2)

    def test_foreign_dependent_rejects_delete(self):
        print("\nTesting Delete: dependent owned by another user")
        a = self.seed("Query A")
        self.seed("Bob's Cohort", owner="bob@leaf", embeds=[a])

        result = self.orchestrator.delete(self.context, a)

        self.assertIsInstance(result.outcome, DeleteRejected)
        self.assertEqual(result.outcome.kind, RejectionKind.FOREIGN_DEPENDENTS)
        self.assertEqual(result.outcome.header, DELETE_ERROR_HEADER)
        self.assertEqual(
            result.outcome.detail,
            'Another query, "Bob\'s Cohort", owned by bob@leaf, '
            "depends on this query and therefore this cannot be deleted.",
        )
        self.assertIs(result.context, self.context)
        self.assertEqual(len(self.home.store), 2)
        self.assertEqual(len(self.west.store), 2)
        print("  -> rejected; nothing deleted anywhere")

    def test_mixed_ownership_is_rejected(self):
        a = self.seed("Query A")
        self.seed("Query B", embeds=[a])
        self.seed("Bob's Cohort", owner="bob@leaf", embeds=[a])

        result = self.orchestrator.delete(self.context, a)
        self.assertEqual(result.outcome.kind, RejectionKind.FOREIGN_DEPENDENTS)
        self.assertEqual([d.owner for d in result.outcome.dependents], ["bob@leaf"])


class TestDeleteHomeFailures(DeleteOrchestratorTestCase):
    def setUp(self):
        super().setUp()
        self.failing_home = MagicMock(spec=NodeClient)
        self.failing_home.node_id = "home"
        self.pool.register(self.failing_home)
        self.east.delete_query = MagicMock(wraps=self.east.delete_query)

    def test_home_error_rejects_without_propagating(self):
        self.failing_home.delete_query.side_effect = RuntimeError("home unreachable")

        result = self.orchestrator.delete(self.context, "urn:leaf:query:1")

        self.assertEqual(result.outcome.kind, RejectionKind.HOME_DELETE)
        self.assertEqual(result.outcome.detail, DELETE_ERROR_BODY)
        self.east.delete_query.assert_not_called()

    def test_conflict_on_forced_delete_is_fatal(self):
        dependents = (QueryDependent("urn:leaf:query:2", "B", "alice@leaf"),)
        self.failing_home.delete_query.return_value = DeleteConflict(dependents=dependents)

        result = self.orchestrator.delete(self.context, "urn:leaf:query:1", force=True, dependents=dependents)

        self.assertEqual(result.outcome.kind, RejectionKind.HOME_DELETE)
        self.failing_home.delete_query.assert_called_once_with("urn:leaf:query:1", force=True)
        self.east.delete_query.assert_not_called()

    def test_conflict_without_dependents_is_fatal(self):
        self.failing_home.delete_query.return_value = DeleteConflict(dependents=())
        result = self.orchestrator.delete(self.context, "urn:leaf:query:1")
        self.assertEqual(result.outcome.kind, RejectionKind.HOME_DELETE)


class TestDeleteStates(DeleteOrchestratorTestCase):
    def transitions(self, logs):
        states = {state.value for state in DeleteState}
        tails = [line.rsplit("-> ", 1)[-1] for line in logs.output]
        return [tail for tail in tails if tail in states]

    def test_successful_delete_walks_every_state(self):
        a = self.seed("Diabetics")
        with self.assertLogs("federation_core.delete", level="DEBUG") as logs:
            self.orchestrator.delete(self.context, a)
        self.assertEqual(self.transitions(logs), ["requesting_home", "propagating", "done"])

    def test_foreign_dependents_end_rejected(self):
        a = self.seed("Query A")
        self.seed("Bob's Cohort", owner="bob@leaf", embeds=[a])
        with self.assertLogs("federation_core.delete", level="DEBUG") as logs:
            self.orchestrator.delete(self.context, a)
        self.assertEqual(
            self.transitions(logs), ["requesting_home", "conflict_detected", "rejected"]
        )
        self.assertNotIn("IDLE", DeleteState.__members__)


class TestDeleteMessages(unittest.TestCase):
    def test_foreign_plural(self):
        foreign = [
            QueryDependent("urn:leaf:query:2", "B", "bob@leaf"),
            QueryDependent("urn:leaf:query:3", "C", "carol@leaf"),
        ]
        self.assertEqual(
            foreign_dependents_message(foreign),
            'There are 2 other queries, including "B", owned by bob@leaf, '
            "that depend on this query and therefore this cannot be deleted.",
        )

    def test_cascade_plural(self):
        dependents = [
            QueryDependent("urn:leaf:query:2", "B", "alice@leaf"),
            QueryDependent("urn:leaf:query:3", "C", "alice@leaf"),
        ]
        self.assertEqual(
            cascade_message("A", dependents),
            'There are 2 other saved queries that depend on this query, including "B". '
            'Do you want to proceed? This will delete "A" and the 2 other dependent queries.',
        )


if __name__ == "__main__":
    unittest.main()
