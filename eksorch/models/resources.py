"""Resource node and lifecycle data structures."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType
from typing import Any

from eksorch.graph.models import DependencyRef


class ResourceKind(StrEnum):
    """Every kind of node the cluster composition is made of."""

    LABEL = "label"
    IDENTITY = "identity"
    NETWORK = "network"
    SUBNETS = "subnets"
    NODE_POOL = "node_pool"
    CLUSTER = "cluster"
    ACCESS_ENTRY = "access_entry"
    ADDON = "addon"


class ResourceState(StrEnum):
    """Observed lifecycle state of a node."""

    ABSENT = "absent"
    CREATING = "creating"
    READY = "ready"
    UPDATING = "updating"
    DELETING = "deleting"
    ERROR = "error"


class RemoteState(StrEnum):
    """State reported by the provisioning API for a long-running operation."""

    PENDING = "pending"
    READY = "ready"
    ERROR = "error"


def freeze(value: Any) -> Any:
    """Return a read-only view of nested mappings and sequences."""
    if isinstance(value, Mapping):
        return MappingProxyType({k: freeze(v) for k, v in value.items()})
    if isinstance(value, list | tuple):
        return tuple(freeze(v) for v in value)
    return value


def thaw(value: Any) -> Any:
    """Inverse of freeze(): plain dicts and lists, suitable for JSON."""
    if isinstance(value, Mapping):
        return {k: thaw(v) for k, v in value.items()}
    if isinstance(value, list | tuple):
        return [thaw(v) for v in value]
    return value


@dataclass
class ResourceNode:
    """A named unit of infrastructure in the composition.

    ``inputs`` is frozen on construction; only ``state`` and ``outputs``
    change while the executor walks the graph.
    """

    node_id: str
    kind: ResourceKind
    inputs: Mapping[str, Any] = field(default_factory=dict)
    depends_on: tuple[DependencyRef, ...] = ()
    state: ResourceState = ResourceState.ABSENT
    outputs: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.inputs = freeze(dict(self.inputs))
        self.depends_on = tuple(self.depends_on)


@dataclass(frozen=True)
class ResourceRecord:
    """What the provisioning API knows about one resource."""

    kind: ResourceKind
    resource_id: str
    state: RemoteState
    config: Mapping[str, Any] = field(default_factory=dict)
    outputs: Mapping[str, Any] = field(default_factory=dict)
    message: str = ""
