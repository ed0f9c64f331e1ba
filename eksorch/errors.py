"""Error taxonomy for eksorch.

EksOrchError
├── ValidationError        -- bad input, raised before any external call
├── AuthenticationError    -- no resolvable identity
├── AllocationConflict     -- requested address block overlaps an existing one
├── CapacityExhausted      -- a zone or block lacks address space
├── DependencyNotReady     -- orchestrator defect: node submitted too early
├── ConflictOnUpdate       -- resource exists with divergent config, policy aborts
├── ExternalServiceError   -- transient, retryable provisioning failure
├── ResourceNotFound       -- update against a resource the API does not know
└── FatalProvisioningError -- control-plane failure, halts the whole graph
"""

from __future__ import annotations


class EksOrchError(Exception):
    """Base class for all eksorch errors."""

    retryable = False


class ValidationError(EksOrchError):
    """Invalid input detected before any external call was made."""

    def __init__(self, message: str, node_id: str = "", field: str = "") -> None:
        super().__init__(message)
        self.node_id = node_id
        self.field = field


class AuthenticationError(EksOrchError):
    """No valid session, or the caller identity could not be resolved."""


class AllocationConflict(EksOrchError):
    """The requested CIDR block overlaps an existing allocation."""


class CapacityExhausted(EksOrchError):
    """Not enough address space to carve the requested subnetworks."""


class DependencyNotReady(EksOrchError):
    """A node was traversed before its dependency produced the data it needs.

    Never a user error: observing this means the graph walk is wrong.
    """

    def __init__(self, node_id: str, dependency_id: str, missing: list[str] | None = None) -> None:
        detail = f" (missing: {', '.join(missing)})" if missing else ""
        super().__init__(f"Node '{node_id}' traversed before '{dependency_id}' was ready{detail}")
        self.node_id = node_id
        self.dependency_id = dependency_id
        self.missing = missing or []


class ConflictOnUpdate(EksOrchError):
    """Resource already exists with a divergent configuration."""

    def __init__(self, resource_id: str, existing_version: str = "", requested_version: str = "") -> None:
        super().__init__(
            f"Resource '{resource_id}' exists with divergent config "
            f"(installed={existing_version or '?'}, requested={requested_version or '?'})"
        )
        self.resource_id = resource_id
        self.existing_version = existing_version
        self.requested_version = requested_version


class ExternalServiceError(EksOrchError):
    """Transient failure reported by the provisioning API."""

    retryable = True


class FatalProvisioningError(EksOrchError):
    """Unrecoverable failure that halts every remaining node in the graph."""

    def __init__(self, node_id: str, cause: BaseException) -> None:
        super().__init__(f"Fatal failure provisioning '{node_id}': {cause}")
        self.node_id = node_id
        self.cause = cause


class ResourceNotFound(EksOrchError):
    """The provisioning API has no record of the resource."""
