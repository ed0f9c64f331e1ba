"""Per-resource declarative descriptors.

Each descriptor validates a node's declared inputs, renders the resolved
configuration for the provisioning API and states its failure policy.
"""

from __future__ import annotations

from eksorch.models.resources import ResourceKind
from eksorch.provisioners.base import Descriptor, EvaluationContext, Upstream, upstream_value
from eksorch.provisioners.cluster import AccessEntryProvisioner, AddonProvisioner, ClusterProvisioner
from eksorch.provisioners.local import IdentityProvisioner, LabelProvisioner
from eksorch.provisioners.network import NetworkProvisioner, SubnetsProvisioner, partition_cidr
from eksorch.provisioners.node_pool import NodePoolProvisioner

DESCRIPTORS: dict[ResourceKind, Descriptor] = {
    ResourceKind.LABEL: LabelProvisioner(),
    ResourceKind.IDENTITY: IdentityProvisioner(),
    ResourceKind.NETWORK: NetworkProvisioner(),
    ResourceKind.SUBNETS: SubnetsProvisioner(),
    ResourceKind.NODE_POOL: NodePoolProvisioner(),
    ResourceKind.CLUSTER: ClusterProvisioner(),
    ResourceKind.ACCESS_ENTRY: AccessEntryProvisioner(),
    ResourceKind.ADDON: AddonProvisioner(),
}


def descriptor_for(kind: ResourceKind) -> Descriptor:
    return DESCRIPTORS[kind]


__all__ = [
    "DESCRIPTORS",
    "AccessEntryProvisioner",
    "AddonProvisioner",
    "ClusterProvisioner",
    "Descriptor",
    "EvaluationContext",
    "IdentityProvisioner",
    "LabelProvisioner",
    "NetworkProvisioner",
    "NodePoolProvisioner",
    "SubnetsProvisioner",
    "Upstream",
    "descriptor_for",
    "partition_cidr",
    "upstream_value",
]
