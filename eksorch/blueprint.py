"""The fixed cluster composition, built as a DependencyGraph.

    label ─► network ─► subnets ─┬─► node_pool ─────(order)────┐
                                 └─► cluster ──(data)──────────┴─► addon/<1> ─(seq)─► addon/<2>
                                            └─(data)─► access_entry/<key> ◄─(data)─ identity

Every external node also carries a DATA edge from ``label`` for the
canonical name and tag set. The node pool does not wait for the control
plane, so it is submitted independently of control-plane success. A
TEARDOWN edge still deletes the node pool before the control plane.
"""

from __future__ import annotations

from eksorch.document import AccessEntrySpec, AddonSpec, StackDocument
from eksorch.graph import DependencyGraph, DependencyRef, data, order, sequence, teardown
from eksorch.models.cluster import PrincipalRef
from eksorch.models.resources import ResourceKind, ResourceNode
from eksorch.observability.logging import get_logger

_log = get_logger("blueprint")

LABEL = "label"
IDENTITY = "identity"
NETWORK = "network"
SUBNETS = "subnets"
NODE_POOL = "node_pool"
CLUSTER = "cluster"


def access_entry_id(key: str) -> str:
    return f"access_entry/{key}"


def addon_id(name: str) -> str:
    return f"addon/{name}"


def _needs_identity(entry: AccessEntrySpec) -> bool:
    return entry.principal in {ref.value for ref in PrincipalRef}


def build_graph(document: StackDocument) -> DependencyGraph:
    """Build the resource graph for *document*.

    The identity node is only added when an access entry refers to the
    caller symbolically, so offline plans need no credentials otherwise.
    """
    graph = DependencyGraph()
    cluster = document.cluster

    graph.add_node(ResourceNode(LABEL, ResourceKind.LABEL, document.label.model_dump()))
    if any(_needs_identity(e) for e in cluster.access_entries.values()):
        graph.add_node(ResourceNode(IDENTITY, ResourceKind.IDENTITY))

    graph.add_node(
        ResourceNode(
            NETWORK,
            ResourceKind.NETWORK,
            document.network.model_dump(),
            depends_on=(data(LABEL, "id", "tags"),),
        )
    )
    graph.add_node(
        ResourceNode(
            SUBNETS,
            ResourceKind.SUBNETS,
            {**document.subnets.model_dump(), "network_cidr_block": document.network.cidr_block},
            depends_on=(
                data(LABEL, "id", "tags"),
                data(NETWORK, "vpc_id", "igw_id", "cidr_block"),
            ),
        )
    )
    graph.add_node(
        ResourceNode(
            NODE_POOL,
            ResourceKind.NODE_POOL,
            document.node_pool.model_dump(),
            depends_on=(
                data(LABEL, "id", "tags", "delimiter"),
                data(SUBNETS, "private_subnet_ids"),
            ),
        )
    )
    graph.add_node(
        ResourceNode(
            CLUSTER,
            ResourceKind.CLUSTER,
            cluster.model_dump(exclude={"access_entries", "addons"}),
            depends_on=(
                data(LABEL, "id", "tags"),
                data(SUBNETS, "public_subnet_ids", "private_subnet_ids"),
            ),
        )
    )
    graph.add_edge(CLUSTER, NODE_POOL, teardown(CLUSTER))

    for key, entry in cluster.access_entries.items():
        _add_access_entry(graph, key, entry)

    previous = ""
    for addon in cluster.addons:
        _add_addon(graph, addon, previous, oidc=cluster.oidc_provider_enabled)
        previous = addon_id(addon.name)

    _log.debug("graph_built", nodes=graph.node_count, edges=graph.edge_count)
    return graph


def _add_access_entry(graph: DependencyGraph, key: str, entry: AccessEntrySpec) -> None:
    deps: list[DependencyRef] = [data(LABEL, "tags"), data(CLUSTER, "cluster_name")]
    if _needs_identity(entry):
        deps.append(data(IDENTITY, "arn", "issuer_arn"))
    graph.add_node(
        ResourceNode(
            access_entry_id(key),
            ResourceKind.ACCESS_ENTRY,
            {"key": key, **entry.model_dump(mode="json")},
            depends_on=tuple(deps),
        )
    )


def _add_addon(graph: DependencyGraph, addon: AddonSpec, previous: str, *, oidc: bool) -> None:
    deps: list[DependencyRef] = [
        data(LABEL, "tags"),
        data(CLUSTER, "cluster_name"),
        order(NODE_POOL),
    ]
    if previous:
        deps.append(sequence(previous))
    graph.add_node(
        ResourceNode(
            addon_id(addon.name),
            ResourceKind.ADDON,
            {**addon.model_dump(mode="json"), "oidc_provider_enabled": oidc},
            depends_on=tuple(deps),
        )
    )
