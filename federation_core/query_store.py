import itertools
import logging
import threading
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, List, Optional

from .dependencies import DependencyGraph, DependencyValidator
from .errors import QueryNotFoundError
from .models import QUERY_URN_PREFIX, QueryDefinition, QueryDependent
from .outcomes import DeleteAck, DeleteConflict, DeleteResponse, SaveReceipt

logger = logging.getLogger(__name__)


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def mint_universal_id() -> str:
    return f"{QUERY_URN_PREFIX}{uuid.uuid4()}"


class QueryStore:
    """
    Saved queries held by one node. The home node mints universal ids; a
    network node stores mirrors under the universal id it is given.
    """

    def __init__(self, node_id: str):
        self.node_id = node_id
        self._lock = threading.Lock()
        self._queries: Dict[str, QueryDefinition] = {}
        self._graph = DependencyGraph()
        self._local_ids = itertools.count(1)
        self._correlations: Dict[str, str] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._queries)

    def save(
        self,
        definition: QueryDefinition,
        user: str,
        universal_id: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> SaveReceipt:
        """
        Store ``definition``. With ``universal_id`` the write is a mirror of a
        query already finalized by the home node; otherwise the definition's
        own universal id selects an update, and its absence creates a new one.
        """
        with self._lock:
            now = _utc_now()
            mirror = universal_id is not None
            uid = universal_id or definition.universal_id
            existing = self._queries.get(uid) if uid else None

            if uid and existing is None and not mirror:
                raise QueryNotFoundError(uid)
            if not uid:
                uid = mint_universal_id()

            if existing is not None:
                stored = replace(
                    definition,
                    id=existing.id,
                    universal_id=uid,
                    owner=existing.owner,
                    ver=definition.ver if mirror and definition.ver else (existing.ver or 0) + 1,
                    created=existing.created,
                    updated=now,
                )
            else:
                stored = replace(
                    definition,
                    id=next(self._local_ids),
                    universal_id=uid,
                    owner=definition.owner or user,
                    ver=definition.ver if mirror and definition.ver else 1,
                    created=definition.created if mirror and definition.created else now,
                    updated=now,
                )
            stored = stored.with_content(stored.panels, stored.panel_filters)

            names = {k: q.name for k, q in self._queries.items()}
            names[uid] = stored.name
            DependencyValidator(names).check(stored, self._graph)

            self._queries[uid] = stored
            self._graph.set_dependencies(stored)
            if correlation_id:
                self._correlations[uid] = correlation_id

        logger.info(
            "[QueryStore] %s %s %s '%s' ver=%s",
            self.node_id, "mirrored" if mirror else "saved", uid, stored.name, stored.ver,
        )
        return SaveReceipt(universal_id=uid, ver=stored.ver)

    def load(self, universal_id: str) -> QueryDefinition:
        with self._lock:
            query = self._queries.get(universal_id)
        if query is None:
            raise QueryNotFoundError(universal_id)
        return query

    def list(self, owner: Optional[str] = None) -> List[QueryDefinition]:
        with self._lock:
            queries = list(self._queries.values())
        if owner:
            queries = [q for q in queries if q.owner.startswith(owner)]
        return sorted(queries, key=lambda q: (q.category.lower(), q.name.lower()))

    def dependents(self, universal_id: str) -> List[QueryDependent]:
        with self._lock:
            return self._dependents_locked(universal_id)

    def delete(self, universal_id: str, force: bool = False) -> DeleteResponse:
        with self._lock:
            if universal_id not in self._queries:
                raise QueryNotFoundError(universal_id)

            dependents = self._dependents_locked(universal_id)
            if dependents and not force:
                logger.info(
                    "[QueryStore] %s refused delete of %s: %d dependents",
                    self.node_id, universal_id, len(dependents),
                )
                return DeleteConflict(dependents=tuple(dependents))

            deleted = [universal_id] + [d.universal_id for d in dependents]
            for uid in deleted:
                self._queries.pop(uid, None)
                self._correlations.pop(uid, None)
                self._graph.remove(uid)

        logger.info("[QueryStore] %s deleted %s", self.node_id, ", ".join(deleted))
        return DeleteAck(universal_ids=tuple(deleted))

    def correlation_id(self, universal_id: str) -> Optional[str]:
        with self._lock:
            return self._correlations.get(universal_id)

    def _dependents_locked(self, universal_id: str) -> List[QueryDependent]:
        dependents = []
        for uid in self._graph.dependents_of(universal_id):
            query = self._queries.get(uid)
            if query is not None:
                dependents.append(QueryDependent(universal_id=uid, name=query.name, owner=query.owner))
        return dependents
