"""
Save a query on the home node, then mirror the finalized definition to every
enabled network node.

    VALIDATING -> SAVING_HOME -> PROPAGATING -> DONE
    |              |
    v              v
 REJECTED       REJECTED
"""

import logging
from enum import Enum
from typing import Optional

from .concepts import ConceptIndex
from .dependencies import DependencyValidator
from .errors import HomeOperationError, RecursiveDependencyError
from .hooks import HookEvents, HookManager
from .models import QueryDefinition
from .outcomes import (
    Continuation,
    NodeOperation,
    RejectionKind,
    SaveRejected,
    SaveResult,
    Saved,
)
from .propagation import Propagator
from .proxies import NodeClientPool
from .registry import NodeRegistry
from .session import WorkflowContext

logger = logging.getLogger(__name__)

SAVE_ERROR_HEADER = "Error Saving Query"
SAVE_ERROR_BODY = (
    "Uh oh, something went wrong when attempting to save your query. "
    "Please contact your administrator."
)
RECURSION_HEADER = "Recursive query error"


class SaveState(Enum):
    VALIDATING = "validating"
    SAVING_HOME = "saving_home"
    PROPAGATING = "propagating"
    DONE = "done"
    REJECTED = "rejected"


def recursion_message(offender_name: str, current_name: str) -> str:
    return (
        f'It looks like you\'ve added "{offender_name}", which is itself a saved query that depends on '
        f'the current query, "{current_name}". Please remove "{offender_name}" and try again.'
    )


class SaveOrchestrator:
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

    def save(self, context: WorkflowContext) -> SaveResult:
        candidate = context.candidate()
        label = candidate.universal_id or f"new query '{candidate.name}'"

        self._transition(SaveState.VALIDATING, label)
        if candidate.universal_id:
            rejected = self._validate(context, candidate)
            if rejected is not None:
                return self._reject(context, rejected, label)

        self._transition(SaveState.SAVING_HOME, label)
        home = self._registry.home_node()
        try:
            canonical = self._save_on_home(context, candidate)
        except RecursiveDependencyError as exc:
            # The home node sees queries of other users that the caller has not loaded.
            logger.info("[SaveOrchestrator] home refused %s: %s", label, exc)
            return self._reject(
                context,
                SaveRejected(
                    RejectionKind.VALIDATION,
                    RECURSION_HEADER,
                    recursion_message(exc.offender_name, candidate.name),
                ),
                label,
            )
        except HomeOperationError as exc:
            logger.error("[SaveOrchestrator] %s", exc)
            return self._reject(
                context, SaveRejected(RejectionKind.HOME_SAVE, SAVE_ERROR_HEADER, SAVE_ERROR_BODY), label
            )

        uid = canonical.universal_id
        updated = context.with_saved(canonical).with_current(canonical)
        updated = updated.with_concepts(self._concept_index.rebuild(updated.saved.values()))

        self._transition(SaveState.PROPAGATING, uid)
        nodes = self._registry.network_nodes()
        cohorts = dict(context.network_cohorts)
        user = context.user.name
        propagation = self._propagator.fan_out(
            NodeOperation.SAVE,
            nodes,
            [uid],
            lambda client, universal_id: client.save_query(
                canonical,
                user,
                correlation_id=cohorts.get(client.node_id),
                universal_id=universal_id,
            ),
        )

        continuation = None
        if context.run_after_save is not None:
            continuation = Continuation(context.run_after_save)
            updated = updated.with_run_after_save(None)

        self._transition(SaveState.DONE, uid)
        logger.info("[SaveOrchestrator] saved %s on home %s and %d network nodes", uid, home.id, len(nodes))
        self._trigger(HookEvents.QUERY_SAVED, universal_id=uid, propagation=propagation)
        return SaveResult(
            outcome=Saved(universal_id=uid, query=canonical),
            context=updated,
            propagation=propagation,
            continuation=continuation,
        )

    def _validate(self, context: WorkflowContext, candidate: QueryDefinition) -> Optional[SaveRejected]:
        validator = DependencyValidator(context.names())
        result = validator.validate(candidate, context.dependency_graph())
        if result.ok:
            return None
        offender_name = validator.display_name(result.offender)
        logger.info(
            "[SaveOrchestrator] recursive dependency on %s: %s",
            candidate.universal_id, " -> ".join(result.cycle),
        )
        return SaveRejected(
            RejectionKind.VALIDATION,
            RECURSION_HEADER,
            recursion_message(offender_name, candidate.name),
        )

    def _save_on_home(self, context: WorkflowContext, candidate: QueryDefinition) -> QueryDefinition:
        """Persist on the home node and re-read what it actually stored."""
        home = self._registry.home_node()
        client = self._pool.for_node(home)
        try:
            receipt = client.save_query(
                candidate,
                context.user.name,
                correlation_id=context.network_cohorts.get(home.id),
            )
        except RecursiveDependencyError:
            raise
        except Exception as exc:
            raise HomeOperationError("save", home.id, exc) from exc
        try:
            return client.load_query(receipt.universal_id)
        except Exception as exc:
            raise HomeOperationError("load", home.id, exc) from exc

    def _reject(self, context: WorkflowContext, rejected: SaveRejected, label: str) -> SaveResult:
        self._transition(SaveState.REJECTED, label)
        self._trigger(HookEvents.QUERY_SAVE_REJECTED, kind=rejected.kind, detail=rejected.detail)
        return SaveResult(outcome=rejected, context=context)

    def _transition(self, state: SaveState, label: str) -> None:
        logger.debug("[SaveOrchestrator] %s -> %s", label, state.value)

    def _trigger(self, event: str, **kwargs) -> None:
        if self._hooks is not None:
            self._hooks.trigger_hook(event, **kwargs)
