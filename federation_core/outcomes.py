"""Typed results returned by node collaborators and by the orchestrators."""

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Callable, List, Optional, Tuple, Union

from .models import QueryDefinition, QueryDependent

if TYPE_CHECKING:
    from .session import WorkflowContext


# Node collaborator results

@dataclass(frozen=True)
class SaveReceipt:
    universal_id: str
    ver: Optional[int] = None


@dataclass(frozen=True)
class DeleteAck:
    universal_ids: Tuple[str, ...] = ()


@dataclass(frozen=True)
class DeleteConflict:
    """The node refused the delete because other saved queries embed it."""

    dependents: Tuple[QueryDependent, ...] = ()


DeleteResponse = Union[DeleteAck, DeleteConflict]


# Per-node propagation telemetry

class NodeOperation(Enum):
    SAVE = "save"
    DELETE = "delete"


@dataclass(frozen=True)
class NodeOutcome:
    node_id: str
    operation: NodeOperation
    universal_id: str
    succeeded: bool
    duration_ms: float = 0.0
    error: Optional[str] = None


# Caller-facing outcomes

class RejectionKind(Enum):
    VALIDATION = "validation_error"
    HOME_SAVE = "home_save_error"
    HOME_DELETE = "home_delete_error"
    FOREIGN_DEPENDENTS = "foreign_dependents"


@dataclass(frozen=True)
class Saved:
    universal_id: str
    query: QueryDefinition


@dataclass(frozen=True)
class SaveRejected:
    kind: RejectionKind
    header: str
    detail: str


@dataclass(frozen=True)
class Deleted:
    universal_ids: Tuple[str, ...]


@dataclass(frozen=True)
class DeleteRejected:
    kind: RejectionKind
    header: str
    detail: str
    dependents: Tuple[QueryDependent, ...] = ()


@dataclass(frozen=True)
class DeleteNeedsConfirmation:
    """A cascading delete the caller may accept or decline."""

    universal_id: str
    query_name: str
    dependents: Tuple[QueryDependent, ...]
    header: str
    detail: str
    yes_text: str = "Yes, delete all queries"
    no_text: str = "No"


SaveOutcome = Union[Saved, SaveRejected]
DeleteOutcome = Union[Deleted, DeleteRejected, DeleteNeedsConfirmation]


class Continuation:
    """A callable that runs at most once."""

    def __init__(self, action: Callable[[], None]):
        self._action: Optional[Callable[[], None]] = action
        self._lock = threading.Lock()

    @property
    def pending(self) -> bool:
        return self._action is not None

    def __call__(self) -> bool:
        with self._lock:
            action, self._action = self._action, None
        if action is None:
            return False
        action()
        return True


@dataclass
class SaveResult:
    outcome: SaveOutcome
    context: "WorkflowContext"
    propagation: List[NodeOutcome] = field(default_factory=list)
    continuation: Optional[Continuation] = None

    @property
    def succeeded(self) -> bool:
        return isinstance(self.outcome, Saved)

    def run_continuation(self) -> bool:
        """Invoke the post-save action once. Only meaningful after a successful save."""
        if not self.succeeded or self.continuation is None:
            return False
        return self.continuation()


@dataclass
class DeleteResult:
    outcome: DeleteOutcome
    context: "WorkflowContext"
    propagation: List[NodeOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return isinstance(self.outcome, Deleted)

    @property
    def needs_confirmation(self) -> bool:
        return isinstance(self.outcome, DeleteNeedsConfirmation)
