"""Control plane, access entry and add-on provisioners.

The control plane spans public and private subnetworks. Access entries
and add-ons are cluster-scoped children: both carry a DATA edge from the
cluster, add-ons additionally wait on the node pool and on the add-on
declared before them.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from eksorch.errors import ConflictOnUpdate, ValidationError
from eksorch.models.cluster import (
    AccessEntry,
    AccessPolicyAssociation,
    AccessScopeType,
    AddonDescriptor,
    ConflictPolicy,
    PrincipalRef,
)
from eksorch.models.resources import ResourceKind, ResourceNode, ResourceRecord
from eksorch.provisioners.base import Descriptor, Upstream, upstream_value

_VERSION = re.compile(r"^\d+\.\d+$")


def access_entry_from_inputs(inputs: Mapping[str, Any]) -> AccessEntry:
    return AccessEntry(
        key=inputs["key"],
        principal=inputs["principal"],
        policies=tuple(
            AccessPolicyAssociation(
                policy_arn=p["policy_arn"],
                scope_type=AccessScopeType(p.get("scope_type", AccessScopeType.CLUSTER)),
                namespaces=tuple(p.get("namespaces", ())),
            )
            for p in inputs.get("policies", ())
        ),
        kubernetes_groups=tuple(inputs.get("kubernetes_groups", ())),
        entry_type=inputs.get("type", "STANDARD"),
    )


def addon_from_inputs(inputs: Mapping[str, Any]) -> AddonDescriptor:
    return AddonDescriptor(
        name=inputs["name"],
        version=inputs.get("version", ""),
        resolve_conflicts_on_create=ConflictPolicy(inputs.get("resolve_conflicts_on_create", "OVERWRITE")),
        resolve_conflicts_on_update=ConflictPolicy(inputs.get("resolve_conflicts_on_update", "OVERWRITE")),
        service_account_role_arn=inputs.get("service_account_role_arn"),
        configuration_values=inputs.get("configuration_values"),
        oidc_provider_enabled=bool(inputs.get("oidc_provider_enabled", True)),
    )


class ClusterProvisioner(Descriptor):
    """Managed control plane. Any failure is fatal to the whole graph."""

    kind = ResourceKind.CLUSTER
    retry_create = False
    fatal = True

    def validate(self, node: ResourceNode) -> None:
        version = str(node.inputs.get("kubernetes_version", ""))
        if not _VERSION.match(version):
            raise ValidationError(
                f"kubernetes_version must look like '1.29', got {version!r}",
                node.node_id,
                "kubernetes_version",
            )
        if not (node.inputs.get("endpoint_public_access", True) or node.inputs.get("endpoint_private_access", True)):
            raise ValidationError(
                "at least one of endpoint_public_access / endpoint_private_access must be enabled",
                node.node_id,
                "endpoint_public_access",
            )

    def resource_id(self, node: ResourceNode, upstream: Upstream) -> str:
        return str(upstream_value(node, upstream, "label", "id"))

    def render(self, node: ResourceNode, upstream: Upstream) -> dict[str, Any]:
        subnet_ids = [
            *upstream_value(node, upstream, "subnets", "public_subnet_ids"),
            *upstream_value(node, upstream, "subnets", "private_subnet_ids"),
        ]
        return {
            "name": self.resource_id(node, upstream),
            "version": str(node.inputs["kubernetes_version"]),
            "subnet_ids": subnet_ids,
            "oidc_provider_enabled": bool(node.inputs.get("oidc_provider_enabled", True)),
            "endpoint_public_access": bool(node.inputs.get("endpoint_public_access", True)),
            "endpoint_private_access": bool(node.inputs.get("endpoint_private_access", True)),
            "authentication_mode": "API",
            "tags": dict(upstream_value(node, upstream, "label", "tags")),
        }


class AccessEntryProvisioner(Descriptor):
    """Grants a principal named access policies on the cluster."""

    kind = ResourceKind.ACCESS_ENTRY

    def validate(self, node: ResourceNode) -> None:
        access_entry_from_inputs(node.inputs).validate(node.node_id)

    def resource_id(self, node: ResourceNode, upstream: Upstream) -> str:
        return f"{upstream_value(node, upstream, 'cluster', 'cluster_name')}/{node.inputs['key']}"

    def render(self, node: ResourceNode, upstream: Upstream) -> dict[str, Any]:
        entry = access_entry_from_inputs(node.inputs)
        return {
            "cluster_name": upstream_value(node, upstream, "cluster", "cluster_name"),
            "principal_arn": self._principal_arn(node, upstream, entry),
            "type": entry.entry_type,
            "kubernetes_groups": list(entry.kubernetes_groups),
            "policies": [
                {
                    "policy_arn": p.policy_arn,
                    "scope_type": p.scope_type.value,
                    "namespaces": list(p.namespaces),
                }
                for p in entry.policies
            ],
            "tags": dict(upstream_value(node, upstream, "label", "tags")),
        }

    @staticmethod
    def _principal_arn(node: ResourceNode, upstream: Upstream, entry: AccessEntry) -> str:
        ref = entry.principal_ref
        if ref is PrincipalRef.CALLER:
            return str(upstream_value(node, upstream, "identity", "arn"))
        if ref is PrincipalRef.CALLER_ROLE:
            return str(upstream_value(node, upstream, "identity", "issuer_arn"))
        return entry.principal


class AddonProvisioner(Descriptor):
    """Installs one platform add-on on a ready control plane."""

    kind = ResourceKind.ADDON

    def validate(self, node: ResourceNode) -> None:
        addon_from_inputs(node.inputs).validate(node.node_id)

    def resource_id(self, node: ResourceNode, upstream: Upstream) -> str:
        return f"{upstream_value(node, upstream, 'cluster', 'cluster_name')}/{node.inputs['name']}"

    def render(self, node: ResourceNode, upstream: Upstream) -> dict[str, Any]:
        addon = addon_from_inputs(node.inputs)
        return {
            "cluster_name": upstream_value(node, upstream, "cluster", "cluster_name"),
            "addon_name": addon.name,
            "addon_version": addon.version,
            "resolve_conflicts_on_create": addon.resolve_conflicts_on_create.value,
            "resolve_conflicts_on_update": addon.resolve_conflicts_on_update.value,
            "service_account_role_arn": addon.service_account_role_arn,
            "configuration_values": addon.configuration_values,
            "tags": dict(upstream_value(node, upstream, "label", "tags")),
        }

    def in_sync(self, node: ResourceNode, current: Mapping[str, Any], desired: Mapping[str, Any]) -> bool:
        # PRESERVE leaves configuration values to the live add-on.
        if addon_from_inputs(node.inputs).resolve_conflicts_on_update is ConflictPolicy.PRESERVE:
            current = {k: v for k, v in current.items() if k != "configuration_values"}
            desired = {k: v for k, v in desired.items() if k != "configuration_values"}
        return current == desired

    def outputs(self, node: ResourceNode, record: ResourceRecord) -> dict[str, Any]:
        return {**record.outputs, "addon_name": node.inputs["name"]}

    def halts_sequence(self, node: ResourceNode, error: BaseException) -> bool:
        return isinstance(error, ConflictOnUpdate) and addon_from_inputs(node.inputs).aborts_on_conflict
