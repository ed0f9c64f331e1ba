"""Declarative stack document: the input surface of eksorch.

A YAML document describes one cluster composition. Shapes and types are
checked here with pydantic; semantic rules that belong to a resource (node
pool bounds, CIDR prefix limits, conflict policies) stay with that
resource's descriptor so they run during graph validation as well.
"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from eksorch.errors import ValidationError
from eksorch.models.cluster import AccessScopeType, ConflictPolicy


class _Strict(BaseModel):
    model_config = ConfigDict(extra="forbid")


class LabelSpec(_Strict):
    """Inputs to the naming/tagging authority."""

    namespace: str = Field(default="", description="Organization or team prefix")
    name: str = Field(..., description="Base name of the stack")
    stage: str = Field(default="", description="Environment, e.g. prod")
    delimiter: str = Field(default="-", max_length=1)
    attributes: list[str] = Field(default_factory=list)
    tags: dict[str, str] = Field(default_factory=dict, description="Extra tags applied everywhere")


class NetworkSpec(_Strict):
    cidr_block: str = Field(..., description="IPv4 block for the virtual network")
    enable_dns_hostnames: bool = True
    enable_dns_support: bool = True


class SubnetsSpec(_Strict):
    availability_zones: list[str] = Field(..., min_length=1)
    nat_gateway_enabled: bool = True


class NodePoolSpec(_Strict):
    name_suffix: str = "workers"
    instance_types: list[str] = Field(default_factory=lambda: ["t3.medium"])
    capacity_type: str = "ON_DEMAND"
    min_size: int = 1
    desired_size: int = 1
    max_size: int = 1
    kubernetes_labels: dict[str, str] = Field(default_factory=dict)
    autoscaler_discovery: bool = Field(
        default=False,
        description="Tag the pool for cluster-autoscaler auto-discovery",
    )


class AccessPolicySpec(_Strict):
    policy_arn: str
    scope_type: AccessScopeType = AccessScopeType.CLUSTER
    namespaces: list[str] = Field(default_factory=list)


class AccessEntrySpec(_Strict):
    principal: str = Field(..., description="Principal ARN, or 'caller' / 'caller_role'")
    kubernetes_groups: list[str] = Field(default_factory=list)
    type: str = "STANDARD"
    policies: list[AccessPolicySpec] = Field(default_factory=list)


class AddonSpec(_Strict):
    name: str
    version: str = ""
    resolve_conflicts_on_create: ConflictPolicy = ConflictPolicy.OVERWRITE
    resolve_conflicts_on_update: ConflictPolicy = ConflictPolicy.OVERWRITE
    service_account_role_arn: str | None = None
    configuration_values: str | None = Field(default=None, description="JSON configuration passed to the add-on")


class ClusterSpec(_Strict):
    kubernetes_version: str
    oidc_provider_enabled: bool = True
    endpoint_public_access: bool = True
    endpoint_private_access: bool = True
    access_entries: dict[str, AccessEntrySpec] = Field(default_factory=dict)
    addons: list[AddonSpec] = Field(default_factory=list, description="Installed in list order")

    @field_validator("kubernetes_version", mode="before")
    @classmethod
    def version_as_string(cls, v: Any) -> Any:
        # YAML reads an unquoted 1.30 as the float 1.3.
        if isinstance(v, float):
            raise ValueError(f"quote the version, e.g. \"{v}\"; YAML reads it as a number")
        return v

    @model_validator(mode="after")
    def addons_are_consistent(self) -> ClusterSpec:
        names = [a.name for a in self.addons]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"duplicate add-ons: {', '.join(duplicates)}")
        if not self.oidc_provider_enabled:
            bound = [a.name for a in self.addons if a.service_account_role_arn]
            if bound:
                raise ValueError(
                    f"add-ons {', '.join(bound)} bind a service account role but "
                    "oidc_provider_enabled is false"
                )
        return self


class StackDocument(_Strict):
    """One cluster composition."""

    label: LabelSpec
    network: NetworkSpec
    subnets: SubnetsSpec
    node_pool: NodePoolSpec = Field(default_factory=NodePoolSpec)
    cluster: ClusterSpec


def parse_document(data: Mapping[str, Any]) -> StackDocument:
    """Validate an already-parsed mapping."""
    try:
        return StackDocument.model_validate(data)
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first["loc"])
        raise ValidationError(
            f"invalid stack document: {field}: {first['msg']} ({exc.error_count()} error(s))",
            field=field,
        ) from exc


def load_document(path: str | Path) -> StackDocument:
    """Read and validate a YAML stack document."""
    try:
        raw = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ValidationError(f"{path}: not valid YAML: {exc}") from exc
    if not isinstance(raw, Mapping):
        raise ValidationError(f"{path}: expected a mapping at the top level")
    return parse_document(raw)
