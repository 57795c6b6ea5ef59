"""Error taxonomy for saving and deleting federated queries."""

from typing import List, Optional


class FederationError(Exception):
    """Base class for all errors raised by federation_core."""


class QueryValidationError(FederationError):
    """A definition was rejected locally before any node was contacted."""


class RecursiveDependencyError(QueryValidationError):
    def __init__(self, offender: str, offender_name: str, cycle: List[str]):
        self.offender = offender
        self.offender_name = offender_name
        self.cycle = list(cycle)
        super().__init__(
            f"Saved query '{offender_name}' ({offender}) depends on the query being saved: "
            f"{' -> '.join(self.cycle)}"
        )


class HomeOperationError(FederationError):
    """The home node was unreachable or refused the operation."""

    def __init__(self, operation: str, node_id: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.node_id = node_id
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"{operation} failed on home node {node_id}{detail}")


class NetworkPropagationError(FederationError):
    """A single network node failed to mirror a change. Never surfaced to callers."""

    def __init__(self, operation: str, node_id: str, universal_id: str, cause: BaseException):
        self.operation = operation
        self.node_id = node_id
        self.universal_id = universal_id
        self.cause = cause
        super().__init__(f"{operation} of {universal_id} on {node_id} failed: {cause}")


class QueryNotFoundError(FederationError, KeyError):
    def __init__(self, universal_id: str):
        self.universal_id = universal_id
        super().__init__(f"Saved query '{universal_id}' not found.")

    def __str__(self) -> str:
        return self.args[0]


class RegistryConfigurationError(FederationError, ValueError):
    """The node registry was configured with zero or several home nodes."""


class CircuitOpenError(FederationError, RuntimeError):
    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"CircuitBreaker is OPEN for node {node_id}")
