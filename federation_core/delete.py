"""
Delete a saved query on the home node, resolving dependency conflicts, then
mirror the deletion to every enabled network node.

    REQUESTING_HOME -> PROPAGATING -> DONE
         |
         v
    CONFLICT_DETECTED -> REJECTED                (foreign dependents)
         |
         +--------> AWAITING_CONFIRMATION      (caller re-enters with force)
"""

import logging
from enum import Enum
from typing import Iterable, Optional, Sequence, Tuple

from .concepts import ConceptIndex
from .errors import FederationError, QueryNotFoundError
from .hooks import HookEvents, HookManager
from .models import QueryDependent
from .outcomes import (
    DeleteAck,
    DeleteConflict,
    DeleteNeedsConfirmation,
    DeleteRejected,
    DeleteResult,
    Deleted,
    NodeOperation,
    RejectionKind,
)
from .propagation import Propagator
from .proxies import NodeClient, NodeClientPool
from .registry import NodeRegistry
from .session import WorkflowContext

logger = logging.getLogger(__name__)

DELETE_ERROR_HEADER = "Error Deleting Query"
DELETE_ERROR_BODY = (
    "Uh oh, something went wrong when attempting to delete your query. "
    "Please contact your administrator."
)
CONFIRM_HEADER = "Delete Dependent Queries"


class DeleteState(Enum):
    REQUESTING_HOME = "requesting_home"
    CONFLICT_DETECTED = "conflict_detected"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    PROPAGATING = "propagating"
    DONE = "done"
    REJECTED = "rejected"


def foreign_dependents_message(foreign: Sequence[QueryDependent]) -> str:
    first = foreign[0]
    if len(foreign) > 1:
        return (
            f'There are {len(foreign)} other queries, including "{first.name}", owned by {first.owner}, '
            f"that depend on this query and therefore this cannot be deleted."
        )
    return (
        f'Another query, "{first.name}", owned by {first.owner}, '
        f"depends on this query and therefore this cannot be deleted."
    )


def cascade_message(query_name: str, dependents: Sequence[QueryDependent]) -> str:
    first = dependents[0]
    count = len(dependents)
    if count > 1:
        return (
            f'There are {count} other saved queries that depend on this query, including "{first.name}". '
            f'Do you want to proceed? This will delete "{query_name}" and the {count} other dependent queries.'
        )
    return (
        f'Another saved query, "{first.name}" depends on this query. Do you want to proceed? '
        f'This will delete both "{query_name}" and "{first.name}".'
    )


def delete_on_network_node(client: NodeClient, universal_id: str, force: bool) -> None:
    """Mirror a delete. A query the node never had, or already dropped, counts as deleted."""
    try:
        response = client.delete_query(universal_id, force=force)
    except QueryNotFoundError:
        return
    if isinstance(response, DeleteConflict):
        names = ", ".join(d.name for d in response.dependents)
        raise FederationError(f"{client.node_id} still has dependents of {universal_id}: {names}")


class DeleteOrchestrator:
    def __init__(
        self,
        registry: NodeRegistry,
        pool: NodeClientPool,
        propagator: Propagator,
        concept_index: ConceptIndex,
        hooks: Optional[HookManager] = None,
    ):
        self._registry = registry
        self._pool = pool
        self._propagator = propagator
        self._concept_index = concept_index
        self._hooks = hooks

    def delete(
        self,
        context: WorkflowContext,
        universal_id: str,
        force: bool = False,
        dependents: Iterable[QueryDependent] = (),
        query_name: Optional[str] = None,
    ) -> DeleteResult:
        dependents = tuple(dependents)
        name = query_name or self._name_of(context, universal_id)
        home = self._registry.home_node()

        self._transition(DeleteState.REQUESTING_HOME, universal_id, force)
        try:
            response = self._pool.for_node(home).delete_query(universal_id, force=force)
        except Exception as exc:
            logger.error("[DeleteOrchestrator] delete of %s failed on home %s: %s", universal_id, home.id, exc)
            return self._home_error(context, universal_id, force)

        if isinstance(response, DeleteConflict):
            return self._resolve_conflict(context, universal_id, name, force, response.dependents)
        if not isinstance(response, DeleteAck):
            logger.error("[DeleteOrchestrator] unexpected home response %r", response)
            return self._home_error(context, universal_id, force)
        return self._apply_delete(context, universal_id, force, dependents, response.universal_ids)

    def confirm(self, context: WorkflowContext, pending: DeleteNeedsConfirmation) -> DeleteResult:
        """The caller accepted the cascade: retry once with ``force``."""
        return self.delete(
            context,
            pending.universal_id,
            force=True,
            dependents=pending.dependents,
            query_name=pending.query_name,
        )

    def decline(self, context: WorkflowContext, pending: DeleteNeedsConfirmation) -> DeleteResult:
        logger.info("[DeleteOrchestrator] cascade of %s declined", pending.universal_id)
        return DeleteResult(outcome=pending, context=context)

    def _resolve_conflict(
        self,
        context: WorkflowContext,
        universal_id: str,
        name: str,
        force: bool,
        dependents: Tuple[QueryDependent, ...],
    ) -> DeleteResult:
        self._transition(DeleteState.CONFLICT_DETECTED, universal_id, force)
        if force or not dependents:
            # A forced delete is not expected to conflict again; do not loop.
            logger.error(
                "[DeleteOrchestrator] home reported a conflict for %s (force=%s, %d dependents)",
                universal_id, force, len(dependents),
            )
            return self._home_error(context, universal_id, force)

        foreign = [d for d in dependents if not context.user.owns(d)]
        if foreign:
            return self._reject(
                context,
                universal_id,
                force,
                DeleteRejected(
                    RejectionKind.FOREIGN_DEPENDENTS,
                    DELETE_ERROR_HEADER,
                    foreign_dependents_message(foreign),
                    dependents=tuple(foreign),
                ),
            )

        self._transition(DeleteState.AWAITING_CONFIRMATION, universal_id, force)
        pending = DeleteNeedsConfirmation(
            universal_id=universal_id,
            query_name=name,
            dependents=dependents,
            header=CONFIRM_HEADER,
            detail=cascade_message(name, dependents),
        )
        self._trigger(HookEvents.DELETE_CONFIRMATION_REQUESTED, universal_id=universal_id, dependents=dependents)
        return DeleteResult(outcome=pending, context=context)

    def _apply_delete(
        self,
        context: WorkflowContext,
        universal_id: str,
        force: bool,
        dependents: Tuple[QueryDependent, ...],
        acknowledged: Sequence[str] = (),
    ) -> DeleteResult:
        deleted = [universal_id]
        for uid in [d.universal_id for d in dependents] + list(acknowledged):
            if uid not in deleted:
                deleted.append(uid)

        updated = context.without_saved(deleted)
        if any(context.is_current(uid) for uid in deleted):
            updated = updated.reset_current()
        updated = updated.with_concepts(self._concept_index.rebuild(updated.saved.values()))

        self._transition(DeleteState.PROPAGATING, universal_id, force)
        # Farthest dependents go first so every node can honour each delete in turn.
        ordered = list(reversed(deleted[1:])) + [universal_id]
        propagation = self._propagator.fan_out(
            NodeOperation.DELETE,
            self._registry.network_nodes(),
            ordered,
            lambda client, uid: delete_on_network_node(client, uid, force),
        )

        self._transition(DeleteState.DONE, universal_id, force)
        self._trigger(HookEvents.QUERY_DELETED, universal_ids=tuple(deleted), propagation=propagation)
        return DeleteResult(outcome=Deleted(universal_ids=tuple(deleted)), context=updated, propagation=propagation)

    def _home_error(self, context: WorkflowContext, universal_id: str, force: bool) -> DeleteResult:
        return self._reject(
            context,
            universal_id,
            force,
            DeleteRejected(RejectionKind.HOME_DELETE, DELETE_ERROR_HEADER, DELETE_ERROR_BODY),
        )

    def _reject(
        self, context: WorkflowContext, universal_id: str, force: bool, rejected: DeleteRejected
    ) -> DeleteResult:
        self._transition(DeleteState.REJECTED, universal_id, force)
        logger.info("[DeleteOrchestrator] rejected (%s): %s", rejected.kind.value, rejected.detail)
        self._trigger(HookEvents.QUERY_DELETE_REJECTED, kind=rejected.kind, detail=rejected.detail)
        return DeleteResult(outcome=rejected, context=context)

    @staticmethod
    def _name_of(context: WorkflowContext, universal_id: str) -> str:
        query = context.saved.get(universal_id)
        if query is not None:
            return query.name
        if context.is_current(universal_id):
            return context.current.name
        return universal_id

    def _transition(self, state: DeleteState, universal_id: str, force: bool) -> None:
        logger.debug("[DeleteOrchestrator] %s (force=%s) -> %s", universal_id, force, state.value)

    def _trigger(self, event: str, **kwargs) -> None:
        if self._hooks is not None:
            self._hooks.trigger_hook(event, **kwargs)
