"""Saved query definitions and the projections exchanged between nodes."""

from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Tuple

QUERY_URN_PREFIX = "urn:leaf:query:"


@dataclass(frozen=True)
class PanelItem:
    """A single criterion: either a concept or an embedded saved query."""

    index: int = 0
    concept_id: Optional[str] = None
    query_universal_id: Optional[str] = None

    @property
    def is_embedded_query(self) -> bool:
        return bool(self.query_universal_id)

    def to_dict(self) -> Dict:
        return {
            "index": self.index,
            "concept_id": self.concept_id,
            "query_universal_id": self.query_universal_id,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "PanelItem":
        return cls(
            index=int(data.get("index", 0)),
            concept_id=data.get("concept_id"),
            query_universal_id=data.get("query_universal_id"),
        )


@dataclass(frozen=True)
class SubPanel:
    index: int = 0
    include: bool = True
    panel_items: Tuple[PanelItem, ...] = ()

    def to_dict(self) -> Dict:
        return {
            "index": self.index,
            "include": self.include,
            "panel_items": [item.to_dict() for item in self.panel_items],
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "SubPanel":
        return cls(
            index=int(data.get("index", 0)),
            include=bool(data.get("include", True)),
            panel_items=tuple(PanelItem.from_dict(i) for i in data.get("panel_items", [])),
        )


@dataclass(frozen=True)
class Panel:
    """A unit of filter logic. Embedded saved queries create dependency edges."""

    index: int = 0
    include: bool = True
    sub_panels: Tuple[SubPanel, ...] = ()

    def embedded_queries(self) -> List[str]:
        return [
            item.query_universal_id
            for sub in self.sub_panels
            for item in sub.panel_items
            if item.is_embedded_query
        ]

    def to_dict(self) -> Dict:
        return {
            "index": self.index,
            "include": self.include,
            "sub_panels": [sub.to_dict() for sub in self.sub_panels],
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "Panel":
        return cls(
            index=int(data.get("index", 0)),
            include=bool(data.get("include", True)),
            sub_panels=tuple(SubPanel.from_dict(s) for s in data.get("sub_panels", [])),
        )


@dataclass(frozen=True)
class PanelFilter:
    id: int
    concept_id: str
    is_inclusion: bool = True
    is_active: bool = False

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "concept_id": self.concept_id,
            "is_inclusion": self.is_inclusion,
            "is_active": self.is_active,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "PanelFilter":
        return cls(
            id=int(data["id"]),
            concept_id=str(data["concept_id"]),
            is_inclusion=bool(data.get("is_inclusion", True)),
            is_active=bool(data.get("is_active", False)),
        )


@dataclass(frozen=True)
class DependencyEdge:
    dependent: str
    dependee: str


@dataclass(frozen=True)
class QueryDependent:
    """Reporting-only projection of a query that blocks a delete."""

    universal_id: str
    name: str
    owner: str

    def to_dict(self) -> Dict:
        return {"universal_id": self.universal_id, "name": self.name, "owner": self.owner}

    @classmethod
    def from_dict(cls, data: Dict) -> "QueryDependent":
        return cls(
            universal_id=str(data["universal_id"]),
            name=str(data.get("name", "")),
            owner=str(data.get("owner", "")),
        )


@dataclass(frozen=True)
class UserContext:
    """Identity of the caller. Ownership is compared by name prefix."""

    name: str

    def owns(self, dependent: QueryDependent) -> bool:
        return dependent.owner.startswith(self.name)


@dataclass(frozen=True)
class QueryDefinition:
    """
    A saved query. ``id`` is local to the node that stored it and is never
    sent to another node; ``universal_id`` is the only cross-node identity.
    """

    name: str = ""
    category: str = ""
    id: Optional[int] = None
    universal_id: Optional[str] = None
    owner: str = ""
    ver: Optional[int] = None
    panels: Tuple[Panel, ...] = ()
    panel_filters: Tuple[PanelFilter, ...] = ()
    created: Optional[str] = None
    updated: Optional[str] = None

    @property
    def is_saved(self) -> bool:
        return bool(self.universal_id)

    def active_filters(self) -> Tuple[PanelFilter, ...]:
        return tuple(f for f in self.panel_filters if f.is_active)

    def embedded_queries(self) -> List[str]:
        """Universal ids of embedded sub-queries, in panel order, without repeats."""
        seen: List[str] = []
        for panel in self.panels:
            for uid in panel.embedded_queries():
                if uid not in seen:
                    seen.append(uid)
        return seen

    def dependency_edges(self) -> List[DependencyEdge]:
        if not self.universal_id:
            return []
        return [DependencyEdge(self.universal_id, dependee) for dependee in self.embedded_queries()]

    def with_content(self, panels, panel_filters) -> "QueryDefinition":
        """Copy carrying new panels and only the active filters."""
        active = tuple(f for f in panel_filters if f.is_active)
        return replace(self, panels=tuple(panels), panel_filters=active)


EMPTY_QUERY = QueryDefinition()
