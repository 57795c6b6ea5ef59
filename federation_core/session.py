"""Explicit per-user workflow state passed into and returned from each operation."""

from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

from .dependencies import DependencyGraph
from .models import EMPTY_QUERY, Panel, PanelFilter, QueryDefinition, UserContext


class Routes:
    FIND_PATIENTS = "find_patients"
    MY_LEAF = "my_leaf"

    DEFAULT = FIND_PATIENTS


@dataclass(frozen=True)
class WorkflowContext:
    """
    Snapshot of what the user is working on. Operations never mutate a
    context; they return a new one.
    """

    user: UserContext
    saved: Dict[str, QueryDefinition] = field(default_factory=dict)
    current: QueryDefinition = EMPTY_QUERY
    panels: Tuple[Panel, ...] = ()
    panel_filters: Tuple[PanelFilter, ...] = ()
    network_cohorts: Dict[str, str] = field(default_factory=dict)
    route: str = Routes.DEFAULT
    concepts: Optional[Any] = None
    run_after_save: Optional[Callable[[], None]] = None

    def candidate(self) -> QueryDefinition:
        """The current definition carrying the working panels and active filters."""
        return self.current.with_content(self.panels, self.panel_filters)

    def dependency_graph(self) -> DependencyGraph:
        return DependencyGraph.from_definitions(self.saved.values())

    def names(self) -> Dict[str, str]:
        return {uid: q.name for uid, q in self.saved.items()}

    def is_current(self, universal_id: str) -> bool:
        return bool(self.current.universal_id) and self.current.universal_id == universal_id

    def with_saved(self, query: QueryDefinition) -> "WorkflowContext":
        saved = dict(self.saved)
        saved[query.universal_id] = query
        return replace(self, saved=saved)

    def without_saved(self, universal_ids: Iterable[str]) -> "WorkflowContext":
        removed = set(universal_ids)
        saved = {uid: q for uid, q in self.saved.items() if uid not in removed}
        return replace(self, saved=saved)

    def with_current(self, query: QueryDefinition, load_content: bool = False) -> "WorkflowContext":
        if load_content:
            return replace(self, current=query, panels=tuple(query.panels), panel_filters=tuple(query.panel_filters))
        return replace(self, current=query)

    def reset_current(self) -> "WorkflowContext":
        return replace(
            self,
            current=EMPTY_QUERY,
            panels=(),
            panel_filters=(),
            route=Routes.DEFAULT,
        )

    def with_panels(self, panels: Iterable[Panel], panel_filters: Iterable[PanelFilter] = ()) -> "WorkflowContext":
        return replace(self, panels=tuple(panels), panel_filters=tuple(panel_filters))

    def with_concepts(self, concepts: Any) -> "WorkflowContext":
        return replace(self, concepts=concepts)

    def with_run_after_save(self, action: Optional[Callable[[], None]]) -> "WorkflowContext":
        return replace(self, run_after_save=action)
