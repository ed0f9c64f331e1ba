"""Output surface: what downstream consumers need after a converge.

Identifiers for the network, the ordered public and private subnetworks
(zone order preserved), the control plane, the node pool, plus the
consolidated tag map. Values are read from the per-node outputs recorded
in a RunReport, so both ``apply`` and ``plan`` reports can be rendered.
"""

from __future__ import annotations

from typing import Any

from eksorch.blueprint import CLUSTER, LABEL, NETWORK, NODE_POOL, SUBNETS
from eksorch.models.report import RunReport
from eksorch.models.resources import ResourceKind, thaw


def collect_outputs(report: RunReport) -> dict[str, Any]:
    """Flatten node outputs into the published output map.

    Keys whose node has no outputs (not yet created, failed, skipped) are
    present with a ``None`` value.
    """

    def out(node_id: str) -> dict[str, Any]:
        node = report.nodes.get(node_id)
        return thaw(node.outputs) if node is not None and node.outputs else {}

    label, network, subnets = out(LABEL), out(NETWORK), out(SUBNETS)
    cluster, node_pool = out(CLUSTER), out(NODE_POOL)

    access_entries = {
        r.node_id.split("/", 1)[1]: r.outputs.get("access_entry_arn")
        for r in report.nodes.values()
        if r.kind is ResourceKind.ACCESS_ENTRY and r.outputs
    }
    addons = {
        r.node_id.split("/", 1)[1]: r.outputs.get("addon_version")
        for r in report.nodes.values()
        if r.kind is ResourceKind.ADDON and r.outputs
    }

    return {
        "name": label.get("id"),
        "tags": label.get("tags", {}),
        "network_id": network.get("vpc_id"),
        "network_cidr_block": network.get("cidr_block"),
        "availability_zones": subnets.get("availability_zones", []),
        "public_subnet_ids": subnets.get("public_subnet_ids", []),
        "private_subnet_ids": subnets.get("private_subnet_ids", []),
        "nat_gateway_ids": subnets.get("nat_gateway_ids", []),
        "cluster_name": cluster.get("cluster_name"),
        "cluster_arn": cluster.get("cluster_arn"),
        "cluster_endpoint": cluster.get("endpoint"),
        "cluster_version": cluster.get("version"),
        "oidc_issuer_url": cluster.get("oidc_issuer_url") or None,
        "node_pool_name": node_pool.get("node_group_name"),
        "node_pool_arn": node_pool.get("node_group_arn"),
        "node_pool_scaling": node_pool.get("scaling"),
        "access_entries": access_entries,
        "addons": addons,
    }
