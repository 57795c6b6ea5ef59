"""Saved queries presented as concepts so they can be embedded in other queries."""

from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from .models import QueryDefinition

ROOT_CONCEPT_ID = "urn:leaf:concept:savedqueries"
CATEGORY_PREFIX = "urn:leaf:concept:savedqueries:category:"
UNCATEGORIZED = "Uncategorized"


@dataclass(frozen=True)
class QueryConcept:
    id: str
    parent_id: Optional[str]
    text: str
    universal_id: Optional[str] = None
    is_parent: bool = False


@dataclass(frozen=True)
class ConceptIndexDelta:
    concepts: Tuple[QueryConcept, ...] = ()

    def by_id(self) -> Dict[str, QueryConcept]:
        return {c.id: c for c in self.concepts}

    def query_ids(self) -> List[str]:
        return [c.universal_id for c in self.concepts if c.universal_id]


class ConceptIndex(ABC):
    """Regenerates the tree of saved-query concepts after every save or delete."""

    @abstractmethod
    def rebuild(self, saved_queries: Iterable[QueryDefinition]) -> ConceptIndexDelta:
        pass


class SavedQueryConceptIndex(ConceptIndex):
    """Groups saved queries under one root and one folder per category."""

    def __init__(self, root_text: str = "Saved Queries"):
        self._root_text = root_text

    def rebuild(self, saved_queries: Iterable[QueryDefinition]) -> ConceptIndexDelta:
        by_category: Dict[str, List[QueryDefinition]] = defaultdict(list)
        for query in saved_queries:
            if not query.universal_id:
                continue
            by_category[query.category.strip() or UNCATEGORIZED].append(query)

        concepts: List[QueryConcept] = [
            QueryConcept(id=ROOT_CONCEPT_ID, parent_id=None, text=self._root_text, is_parent=bool(by_category))
        ]
        for category in sorted(by_category, key=str.lower):
            category_id = CATEGORY_PREFIX + category.lower()
            concepts.append(QueryConcept(id=category_id, parent_id=ROOT_CONCEPT_ID, text=category, is_parent=True))
            for query in sorted(by_category[category], key=lambda q: (q.name.lower(), q.universal_id)):
                concepts.append(
                    QueryConcept(
                        id=query.universal_id,
                        parent_id=category_id,
                        text=query.name,
                        universal_id=query.universal_id,
                    )
                )
        return ConceptIndexDelta(concepts=tuple(concepts))
