"""Dependency graph over saved queries and the cycle check run before saving."""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

import networkx as nx

from .errors import RecursiveDependencyError
from .models import DependencyEdge, QueryDefinition


class DependencyGraph:
    """
    Directed graph of saved queries. An edge ``A -> B`` means A embeds B as a
    sub-query, so the dependents of B are its ancestors.
    """

    def __init__(self, edges: Optional[Iterable[DependencyEdge]] = None):
        self._graph = nx.DiGraph()
        for edge in edges or ():
            self.add_edge(edge)

    @classmethod
    def from_definitions(cls, definitions: Iterable[QueryDefinition]) -> "DependencyGraph":
        graph = cls()
        for definition in definitions:
            graph.set_dependencies(definition)
        return graph

    def add_edge(self, edge: DependencyEdge) -> None:
        self._graph.add_edge(edge.dependent, edge.dependee)

    def set_dependencies(self, definition: QueryDefinition) -> None:
        """Replace the outgoing edges of ``definition`` with its current panels."""
        uid = definition.universal_id
        if not uid:
            return
        self.remove_dependencies(uid)
        self._graph.add_node(uid)
        for edge in definition.dependency_edges():
            self.add_edge(edge)

    def remove_dependencies(self, universal_id: str) -> None:
        if universal_id in self._graph:
            self._graph.remove_edges_from(list(self._graph.out_edges(universal_id)))

    def remove(self, universal_id: str) -> None:
        if universal_id in self._graph:
            self._graph.remove_node(universal_id)

    def copy(self) -> "DependencyGraph":
        clone = DependencyGraph()
        clone._graph = self._graph.copy()
        return clone

    def edges(self) -> List[DependencyEdge]:
        return [DependencyEdge(a, b) for a, b in self._graph.edges()]

    def depends_on(self, dependent: str, dependee: str) -> bool:
        """True when ``dependent`` embeds ``dependee`` directly or transitively."""
        if dependent not in self._graph or dependee not in self._graph:
            return False
        return nx.has_path(self._graph, dependent, dependee)

    def path(self, source: str, target: str) -> List[str]:
        return nx.shortest_path(self._graph, source, target)

    def dependents_of(self, universal_id: str) -> List[str]:
        """All queries that embed ``universal_id``, nearest first."""
        if universal_id not in self._graph:
            return []
        distances = nx.single_source_shortest_path_length(self._graph.reverse(copy=False), universal_id)
        distances.pop(universal_id, None)
        return sorted(distances, key=lambda uid: (distances[uid], uid))

    def is_acyclic(self) -> bool:
        return nx.is_directed_acyclic_graph(self._graph)

    def __contains__(self, universal_id: str) -> bool:
        return universal_id in self._graph

    def __len__(self) -> int:
        return self._graph.number_of_nodes()


@dataclass(frozen=True)
class ValidationResult:
    cycle: Optional[List[str]] = None
    offender: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.cycle is None


class DependencyValidator:
    """Decides whether saving a candidate definition would create a cycle."""

    def __init__(self, names: Optional[Dict[str, str]] = None):
        self._names = dict(names or {})

    def validate(self, candidate: QueryDefinition, graph: DependencyGraph) -> ValidationResult:
        uid = candidate.universal_id
        dependees = candidate.embedded_queries()
        if not dependees or not uid:
            # A query that has never been saved cannot be embedded anywhere yet.
            return ValidationResult()

        # The candidate's previous edges are replaced by the proposed ones.
        proposed = graph.copy()
        proposed.remove_dependencies(uid)

        for dependee in dependees:
            if dependee == uid:
                return ValidationResult(cycle=[uid, uid], offender=uid)
            if proposed.depends_on(dependee, uid):
                return ValidationResult(cycle=[uid] + proposed.path(dependee, uid), offender=dependee)
        return ValidationResult()

    def display_name(self, universal_id: str) -> str:
        return self._names.get(universal_id) or universal_id

    def check(self, candidate: QueryDefinition, graph: DependencyGraph) -> None:
        """Like ``validate`` but raises ``RecursiveDependencyError`` on a cycle."""
        result = self.validate(candidate, graph)
        if not result.ok:
            raise RecursiveDependencyError(
                offender=result.offender,
                offender_name=self.display_name(result.offender),
                cycle=result.cycle,
            )
