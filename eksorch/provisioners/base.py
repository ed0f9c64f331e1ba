"""Descriptor contract shared by every resource kind.

A descriptor turns a ResourceNode's declared inputs, plus the outputs its
DATA edges deliver, into the configuration sent to the provisioning API.
Local descriptors (label, identity) are evaluated in-process instead.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, ClassVar

from eksorch.errors import DependencyNotReady

if TYPE_CHECKING:
    from eksorch.identity import IdentityResolver
    from eksorch.models.resources import ResourceKind, ResourceNode, ResourceRecord

Upstream = Mapping[str, Mapping[str, Any]]


@dataclass
class EvaluationContext:
    """Collaborators available to local descriptors."""

    identity_resolver: IdentityResolver | None = None


def upstream_value(node: ResourceNode, upstream: Upstream, dependency: str, key: str) -> Any:
    """Fetch a carried value; a missing one means the walk is broken."""
    try:
        return upstream[dependency][key]
    except KeyError:
        raise DependencyNotReady(node.node_id, dependency, [key]) from None


class Descriptor(ABC):
    """Per-kind rendering and failure policy."""

    kind: ClassVar[ResourceKind]
    local: ClassVar[bool] = False
    retry_create: ClassVar[bool] = True
    retry_update: ClassVar[bool] = True
    fatal: ClassVar[bool] = False

    @abstractmethod
    def validate(self, node: ResourceNode) -> None:
        """Check declared inputs. Pure; never calls out."""

    def resource_id(self, node: ResourceNode, upstream: Upstream) -> str:
        """Identifier the provisioning API knows this node by."""
        return node.node_id

    def render(self, node: ResourceNode, upstream: Upstream) -> dict[str, Any]:
        """Resolved desired configuration for create/update."""
        raise NotImplementedError(f"{type(self).__name__} is local")

    def in_sync(self, node: ResourceNode, current: Mapping[str, Any], desired: Mapping[str, Any]) -> bool:
        """Whether the live configuration already matches the rendered one."""
        return current == desired

    def outputs(self, node: ResourceNode, record: ResourceRecord) -> dict[str, Any]:
        return dict(record.outputs)

    async def evaluate(self, node: ResourceNode, upstream: Upstream, context: EvaluationContext) -> dict[str, Any]:
        """Produce outputs in-process (local descriptors only)."""
        raise NotImplementedError(f"{type(self).__name__} is not local")

    def halts_sequence(self, node: ResourceNode, error: BaseException) -> bool:
        """Whether this node's failure must stop the SEQUENCE steps after it."""
        return False
