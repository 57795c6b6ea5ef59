"""Saved-query federation: save and delete on a home node, mirror to network nodes."""

from .config import NodeSpec, NetworkConfig, FederationSettings
from .models import (
    QueryDefinition,
    Panel,
    SubPanel,
    PanelItem,
    PanelFilter,
    DependencyEdge,
    QueryDependent,
    UserContext,
)
from .dependencies import DependencyGraph, DependencyValidator, ValidationResult
from .registry import NodeRegistry
from .errors import (
    FederationError,
    QueryValidationError,
    RecursiveDependencyError,
    HomeOperationError,
    NetworkPropagationError,
    QueryNotFoundError,
    RegistryConfigurationError,
    CircuitOpenError,
)
from .outcomes import (
    Saved,
    SaveRejected,
    Deleted,
    DeleteRejected,
    DeleteNeedsConfirmation,
    RejectionKind,
    NodeOutcome,
    SaveResult,
    DeleteResult,
)
from .session import WorkflowContext, Routes
from .concepts import ConceptIndex, SavedQueryConceptIndex, ConceptIndexDelta
from .query_store import QueryStore
from .proxies import NodeClient, RemoteNodeClient, LocalNodeClient, NodeClientPool
from .propagation import Propagator
from .hooks import HookManager, HookEvents
from .metrics import PropagationMetrics
from .save import SaveOrchestrator
from .delete import DeleteOrchestrator
from .facade import QueryFederation

__all__ = [
    "NodeSpec",
    "NetworkConfig",
    "FederationSettings",
    "QueryDefinition",
    "Panel",
    "SubPanel",
    "PanelItem",
    "PanelFilter",
    "DependencyEdge",
    "QueryDependent",
    "UserContext",
    "DependencyGraph",
    "DependencyValidator",
    "ValidationResult",
    "NodeRegistry",
    "FederationError",
    "QueryValidationError",
    "RecursiveDependencyError",
    "HomeOperationError",
    "NetworkPropagationError",
    "QueryNotFoundError",
    "RegistryConfigurationError",
    "CircuitOpenError",
    "Saved",
    "SaveRejected",
    "Deleted",
    "DeleteRejected",
    "DeleteNeedsConfirmation",
    "RejectionKind",
    "NodeOutcome",
    "SaveResult",
    "DeleteResult",
    "WorkflowContext",
    "Routes",
    "ConceptIndex",
    "SavedQueryConceptIndex",
    "ConceptIndexDelta",
    "QueryStore",
    "NodeClient",
    "RemoteNodeClient",
    "LocalNodeClient",
    "NodeClientPool",
    "Propagator",
    "HookManager",
    "HookEvents",
    "PropagationMetrics",
    "SaveOrchestrator",
    "DeleteOrchestrator",
    "QueryFederation",
]
