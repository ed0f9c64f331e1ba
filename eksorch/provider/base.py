"""Abstract provisioning API.

The cloud-side provisioners (network creation, control-plane bring-up,
node bootstrap, IAM evaluation) live behind this interface. Every call is
idempotent under unchanged input and long-running operations are observed
by polling until the record reaches a terminal state.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any

from eksorch.models.resources import ResourceKind, ResourceRecord


class ProvisioningAPI(ABC):
    """Create/read/update/delete per resource kind, plus polling."""

    @abstractmethod
    async def read(self, kind: ResourceKind, resource_id: str) -> ResourceRecord | None:
        """Return the current record, or None when the resource does not exist."""

    @abstractmethod
    async def create(self, kind: ResourceKind, resource_id: str, config: Mapping[str, Any]) -> ResourceRecord:
        """Start creating a resource. The returned record is usually pending."""

    @abstractmethod
    async def update(self, kind: ResourceKind, resource_id: str, config: Mapping[str, Any]) -> ResourceRecord:
        """Start converging an existing resource to *config*."""

    @abstractmethod
    async def delete(self, kind: ResourceKind, resource_id: str) -> ResourceRecord | None:
        """Start deleting a resource. Returns None when it is already gone."""

    @abstractmethod
    async def poll(self, kind: ResourceKind, resource_id: str) -> ResourceRecord | None:
        """Observe a long-running operation. None means the resource is gone."""

    async def close(self) -> None:  # noqa: B027
        """Release any client resources. Default: nothing to release."""
