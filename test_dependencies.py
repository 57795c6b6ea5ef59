import unittest

from federation_core.dependencies import DependencyGraph, DependencyValidator
from federation_core.errors import RecursiveDependencyError
from federation_core.models import (
    DependencyEdge,
    Panel,
    PanelFilter,
    PanelItem,
    QueryDefinition,
    SubPanel,
)


def embedding(*universal_ids):
    items = tuple(PanelItem(index=i, query_universal_id=uid) for i, uid in enumerate(universal_ids))
    return (Panel(index=0, sub_panels=(SubPanel(index=0, panel_items=items),)),)


def query(uid, name=None, embeds=()):
    return QueryDefinition(name=name or uid, universal_id=uid, panels=embedding(*embeds) if embeds else ())


class TestQueryDefinition(unittest.TestCase):
    def test_embedded_queries_in_panel_order_without_repeats(self):
        panels = (
            Panel(index=0, sub_panels=(SubPanel(panel_items=(
                PanelItem(index=0, concept_id="urn:leaf:concept:diag:E11"),
                PanelItem(index=1, query_universal_id="B"),
            )),)),
            Panel(index=1, sub_panels=(SubPanel(panel_items=(
                PanelItem(index=0, query_universal_id="C"),
                PanelItem(index=1, query_universal_id="B"),
            )),)),
        )
        definition = QueryDefinition(name="A", universal_id="A", panels=panels)
        self.assertEqual(definition.embedded_queries(), ["B", "C"])
        self.assertEqual(
            definition.dependency_edges(),
            [DependencyEdge("A", "B"), DependencyEdge("A", "C")],
        )

    def test_with_content_keeps_only_active_filters(self):
        filters = (
            PanelFilter(id=1, concept_id="x", is_active=True),
            PanelFilter(id=2, concept_id="y", is_active=False),
        )
        updated = QueryDefinition(name="A").with_content(embedding("B"), filters)
        self.assertEqual([f.id for f in updated.panel_filters], [1])
        self.assertEqual(updated.embedded_queries(), ["B"])

    def test_unsaved_definition_has_no_edges(self):
        self.assertEqual(QueryDefinition(name="new", panels=embedding("B")).dependency_edges(), [])


class TestDependencyGraph(unittest.TestCase):
    def setUp(self):
        # C embeds B, B embeds A
        self.graph = DependencyGraph.from_definitions([
            query("A"),
            query("B", embeds=["A"]),
            query("C", embeds=["B"]),
        ])

    def test_dependents_are_transitive_and_nearest_first(self):
        self.assertEqual(self.graph.dependents_of("A"), ["B", "C"])
        self.assertEqual(self.graph.dependents_of("C"), [])
        self.assertEqual(self.graph.dependents_of("unknown"), [])

    def test_depends_on(self):
        self.assertTrue(self.graph.depends_on("C", "A"))
        self.assertFalse(self.graph.depends_on("A", "C"))

    def test_set_dependencies_replaces_edges(self):
        self.graph.set_dependencies(query("C"))
        self.assertEqual(self.graph.dependents_of("A"), ["B"])
        self.assertTrue(self.graph.is_acyclic())

    def test_remove_drops_node_and_edges(self):
        self.graph.remove("B")
        self.assertNotIn("B", self.graph)
        self.assertEqual(self.graph.dependents_of("A"), [])


class TestDependencyValidator(unittest.TestCase):
    def setUp(self):
        self.saved = [query("A", "Alpha"), query("B", "Bravo", embeds=["A"])]
        self.graph = DependencyGraph.from_definitions(self.saved)
        self.validator = DependencyValidator({q.universal_id: q.name for q in self.saved})

    def test_definition_without_sub_queries_always_validates(self):
        for candidate in (query("A"), query("Z"), QueryDefinition(name="new")):
            self.assertTrue(self.validator.validate(candidate, self.graph).ok)

    def test_empty_graph_validates(self):
        self.assertTrue(self.validator.validate(query("A", embeds=["B"]), DependencyGraph()).ok)

    def test_new_query_cannot_form_a_cycle(self):
        candidate = QueryDefinition(name="new", panels=embedding("A", "B"))
        self.assertTrue(self.validator.validate(candidate, self.graph).ok)

    def test_self_embedding_is_a_cycle_of_length_one(self):
        result = self.validator.validate(query("A", embeds=["A"]), self.graph)
        self.assertFalse(result.ok)
        self.assertEqual(result.cycle, ["A", "A"])
        self.assertEqual(result.offender, "A")

    def test_editing_dependee_to_embed_its_dependent_is_rejected(self):
        result = self.validator.validate(query("A", "Alpha", embeds=["B"]), self.graph)
        self.assertFalse(result.ok)
        self.assertEqual(result.cycle, ["A", "B", "A"])
        self.assertEqual(self.validator.display_name(result.offender), "Bravo")

    def test_transitive_cycle_names_a_query_on_the_path(self):
        saved = self.saved + [query("C", "Charlie", embeds=["B"])]
        graph = DependencyGraph.from_definitions(saved)
        result = self.validator.validate(query("A", embeds=["C"]), graph)
        self.assertFalse(result.ok)
        self.assertEqual(result.cycle, ["A", "C", "B", "A"])
        self.assertIn(result.offender, result.cycle)

    def test_previous_edges_of_candidate_are_replaced(self):
        # B currently embeds A; editing B to embed nothing but C is fine.
        graph = DependencyGraph.from_definitions(self.saved + [query("C")])
        self.assertTrue(self.validator.validate(query("B", embeds=["C"]), graph).ok)

    def test_validate_does_not_mutate_graph(self):
        before = sorted((e.dependent, e.dependee) for e in self.graph.edges())
        self.validator.validate(query("A", embeds=["B"]), self.graph)
        self.validator.validate(query("B", embeds=["Z"]), self.graph)
        after = sorted((e.dependent, e.dependee) for e in self.graph.edges())
        self.assertEqual(before, after)

    def test_check_raises_with_offender_name(self):
        with self.assertRaises(RecursiveDependencyError) as cm:
            self.validator.check(query("A", "Alpha", embeds=["B"]), self.graph)
        self.assertEqual(cm.exception.offender_name, "Bravo")
        self.assertEqual(cm.exception.cycle, ["A", "B", "A"])


if __name__ == "__main__":
    unittest.main()
