"""Network (VPC) and subnetwork provisioners."""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from typing import Any

from eksorch.errors import CapacityExhausted, ValidationError
from eksorch.models.resources import ResourceKind, ResourceNode, ResourceRecord
from eksorch.naming import (
    ELB_ROLE_TAG,
    INTERNAL_ELB_ROLE_TAG,
    cluster_ownership_tag,
    require_tags,
)
from eksorch.provisioners.base import Descriptor, Upstream, upstream_value

# AWS accepts VPC and subnet blocks between /16 and /28.
_MIN_PREFIX = 16
_MAX_PREFIX = 28


@dataclass(frozen=True)
class ZoneSubnets:
    zone: str
    public_cidr: str
    private_cidr: str


def partition_cidr(cidr: str, zones: list[str] | tuple[str, ...]) -> list[ZoneSubnets]:
    """Carve one public and one private block per zone, in zone order.

    The network is halved: private blocks come from the lower half, public
    from the upper. Each half is split into the next power of two that
    fits every zone, so adding a zone later does not move existing blocks
    unless it crosses a power of two.
    """
    if not zones:
        raise ValidationError("at least one availability zone is required", "subnets", "availability_zones")
    network = ipaddress.ip_network(cidr, strict=False)
    bits = (len(zones) - 1).bit_length()
    new_prefix = network.prefixlen + 1 + bits
    if new_prefix > _MAX_PREFIX:
        raise CapacityExhausted(
            f"{cidr} cannot hold {len(zones)} public and private subnetworks (would need /{new_prefix})"
        )
    private_half, public_half = network.subnets(prefixlen_diff=1)
    private = list(private_half.subnets(new_prefix=new_prefix))
    public = list(public_half.subnets(new_prefix=new_prefix))
    return [
        ZoneSubnets(zone=zone, public_cidr=str(public[i]), private_cidr=str(private[i]))
        for i, zone in enumerate(zones)
    ]


def _validate_cidr(node: ResourceNode, cidr: str) -> ipaddress.IPv4Network:
    try:
        network = ipaddress.ip_network(cidr, strict=True)
    except ValueError as exc:
        raise ValidationError(f"invalid CIDR block {cidr!r}: {exc}", node.node_id, "cidr_block") from exc
    if not isinstance(network, ipaddress.IPv4Network):
        raise ValidationError(f"network block must be IPv4, got {cidr}", node.node_id, "cidr_block")
    if not _MIN_PREFIX <= network.prefixlen <= _MAX_PREFIX:
        raise ValidationError(
            f"network prefix must be between /{_MIN_PREFIX} and /{_MAX_PREFIX}, got /{network.prefixlen}",
            node.node_id,
            "cidr_block",
        )
    return network


class NetworkProvisioner(Descriptor):
    """Virtual network with DNS support and an internet gateway."""

    kind = ResourceKind.NETWORK

    def validate(self, node: ResourceNode) -> None:
        _validate_cidr(node, node.inputs.get("cidr_block", ""))

    def resource_id(self, node: ResourceNode, upstream: Upstream) -> str:
        return f"{upstream_value(node, upstream, 'label', 'id')}-vpc"

    def render(self, node: ResourceNode, upstream: Upstream) -> dict[str, Any]:
        cluster_name = upstream_value(node, upstream, "label", "id")
        tags = {
            **upstream_value(node, upstream, "label", "tags"),
            "Name": f"{cluster_name}-vpc",
            cluster_ownership_tag(cluster_name): "shared",
        }
        require_tags(node.node_id, tags, {cluster_ownership_tag(cluster_name): "shared"})
        return {
            "name": f"{cluster_name}-vpc",
            "cidr_block": node.inputs["cidr_block"],
            "enable_dns_hostnames": node.inputs.get("enable_dns_hostnames", True),
            "enable_dns_support": node.inputs.get("enable_dns_support", True),
            "tags": tags,
        }


class SubnetsProvisioner(Descriptor):
    """Public and private subnetwork per zone, with optional NAT egress."""

    kind = ResourceKind.SUBNETS

    def validate(self, node: ResourceNode) -> None:
        zones = list(node.inputs.get("availability_zones", ()))
        if not zones:
            raise ValidationError("at least one availability zone is required", node.node_id, "availability_zones")
        if len(set(zones)) != len(zones):
            raise ValidationError(f"duplicate availability zones in {zones}", node.node_id, "availability_zones")
        network_cidr = node.inputs.get("network_cidr_block")
        if network_cidr:
            try:
                partition_cidr(network_cidr, zones)
            except CapacityExhausted as exc:
                raise ValidationError(str(exc), node.node_id, "availability_zones") from exc

    def resource_id(self, node: ResourceNode, upstream: Upstream) -> str:
        return f"{upstream_value(node, upstream, 'label', 'id')}-subnets"

    def render(self, node: ResourceNode, upstream: Upstream) -> dict[str, Any]:
        cluster_name = upstream_value(node, upstream, "label", "id")
        base_tags = dict(upstream_value(node, upstream, "label", "tags"))
        ownership = {cluster_ownership_tag(cluster_name): "shared"}
        vpc_cidr = upstream_value(node, upstream, "network", "cidr_block")

        zones = []
        for block in partition_cidr(vpc_cidr, list(node.inputs["availability_zones"])):
            public_tags = {
                **base_tags,
                **ownership,
                "Name": f"{cluster_name}-public-{block.zone}",
                "Type": "public",
                ELB_ROLE_TAG: "1",
            }
            private_tags = {
                **base_tags,
                **ownership,
                "Name": f"{cluster_name}-private-{block.zone}",
                "Type": "private",
                INTERNAL_ELB_ROLE_TAG: "1",
            }
            require_tags(node.node_id, public_tags, {**ownership, ELB_ROLE_TAG: "1"})
            require_tags(node.node_id, private_tags, {**ownership, INTERNAL_ELB_ROLE_TAG: "1"})
            zones.append(
                {
                    "zone": block.zone,
                    "public_cidr": block.public_cidr,
                    "private_cidr": block.private_cidr,
                    "public_tags": public_tags,
                    "private_tags": private_tags,
                }
            )

        return {
            "vpc_id": upstream_value(node, upstream, "network", "vpc_id"),
            "igw_id": upstream_value(node, upstream, "network", "igw_id"),
            "vpc_cidr": vpc_cidr,
            "nat_gateway_enabled": bool(node.inputs.get("nat_gateway_enabled", True)),
            "zones": zones,
            "tags": base_tags,
        }

    def outputs(self, node: ResourceNode, record: ResourceRecord) -> dict[str, Any]:
        outputs = dict(record.outputs)
        zones = record.config.get("zones", ())
        outputs["public_subnet_tags"] = [dict(z["public_tags"]) for z in zones]
        outputs["private_subnet_tags"] = [dict(z["private_tags"]) for z in zones]
        return outputs
