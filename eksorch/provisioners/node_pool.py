"""Managed node pool provisioner."""

from __future__ import annotations

from typing import Any

from eksorch.errors import ValidationError
from eksorch.models.cluster import NodePoolSize
from eksorch.models.resources import ResourceKind, ResourceNode
from eksorch.naming import AUTOSCALER_ENABLED_TAG, autoscaler_owner_tag, require_tags
from eksorch.provisioners.base import Descriptor, Upstream, upstream_value

_CAPACITY_TYPES = ("ON_DEMAND", "SPOT")


def size_from_inputs(inputs: Any) -> NodePoolSize:
    return NodePoolSize(
        min_size=int(inputs.get("min_size", 1)),
        desired_size=int(inputs.get("desired_size", 1)),
        max_size=int(inputs.get("max_size", 1)),
    )


class NodePoolProvisioner(Descriptor):
    """Auto-scaled worker pool in the private subnetworks.

    Creation is retried on failure; size changes to an existing pool are
    updates and surface their failure immediately.
    """

    kind = ResourceKind.NODE_POOL
    retry_update = False

    def validate(self, node: ResourceNode) -> None:
        size_from_inputs(node.inputs).validate(node.node_id)
        if not node.inputs.get("instance_types"):
            raise ValidationError("at least one instance type is required", node.node_id, "instance_types")
        capacity = node.inputs.get("capacity_type", "ON_DEMAND")
        if capacity not in _CAPACITY_TYPES:
            raise ValidationError(
                f"capacity_type must be one of {_CAPACITY_TYPES}, got {capacity!r}",
                node.node_id,
                "capacity_type",
            )

    def resource_id(self, node: ResourceNode, upstream: Upstream) -> str:
        cluster_name = upstream_value(node, upstream, "label", "id")
        delimiter = upstream_value(node, upstream, "label", "delimiter")
        return delimiter.join([cluster_name, node.inputs.get("name_suffix", "workers")])

    def render(self, node: ResourceNode, upstream: Upstream) -> dict[str, Any]:
        cluster_name = upstream_value(node, upstream, "label", "id")
        size = size_from_inputs(node.inputs)
        tags = dict(upstream_value(node, upstream, "label", "tags"))
        if node.inputs.get("autoscaler_discovery", False):
            # Capability flag only: the external autoscaler finds the pool by these tags.
            discovery = {AUTOSCALER_ENABLED_TAG: "true", autoscaler_owner_tag(cluster_name): "owned"}
            tags.update(discovery)
            require_tags(node.node_id, tags, discovery)

        return {
            "cluster_name": cluster_name,
            "node_group_name": self.resource_id(node, upstream),
            "subnet_ids": list(upstream_value(node, upstream, "subnets", "private_subnet_ids")),
            "instance_types": list(node.inputs["instance_types"]),
            "capacity_type": node.inputs.get("capacity_type", "ON_DEMAND"),
            "scaling": {
                "min_size": size.min_size,
                "desired_size": size.desired_size,
                "max_size": size.max_size,
            },
            "kubernetes_labels": dict(node.inputs.get("kubernetes_labels", {})),
            "tags": tags,
        }
