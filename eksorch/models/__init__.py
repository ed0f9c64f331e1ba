"""Core data structures for eksorch."""

from eksorch.models.cluster import (
    AccessEntry,
    AccessPolicyAssociation,
    AccessScopeType,
    AddonDescriptor,
    ConflictPolicy,
    NodePoolSize,
    PrincipalRef,
)
from eksorch.models.config import EksOrchConfig
from eksorch.models.identity import CallerIdentity
from eksorch.models.naming import Label
from eksorch.models.report import Action, NodeReport, Operation, Outcome, RunReport
from eksorch.models.resources import (
    RemoteState,
    ResourceKind,
    ResourceNode,
    ResourceRecord,
    ResourceState,
)

__all__ = [
    "AccessEntry",
    "AccessPolicyAssociation",
    "AccessScopeType",
    "Action",
    "AddonDescriptor",
    "CallerIdentity",
    "ConflictPolicy",
    "EksOrchConfig",
    "Label",
    "NodePoolSize",
    "NodeReport",
    "Operation",
    "Outcome",
    "PrincipalRef",
    "RemoteState",
    "ResourceKind",
    "ResourceNode",
    "ResourceRecord",
    "ResourceState",
    "RunReport",
]
