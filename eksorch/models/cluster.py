"""Node pool, add-on and access-entry value types."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum

from eksorch.errors import ValidationError


class ConflictPolicy(StrEnum):
    """How an add-on install resolves a pre-existing, divergent installation."""

    OVERWRITE = "OVERWRITE"
    PRESERVE = "PRESERVE"  # updates only: keep the installed config
    NONE = "NONE"  # abort with ConflictOnUpdate


class AccessScopeType(StrEnum):
    CLUSTER = "cluster"
    NAMESPACE = "namespace"


class PrincipalRef(StrEnum):
    """Symbolic principals resolved by the identity resolver at apply time."""

    CALLER = "caller"
    CALLER_ROLE = "caller_role"


@dataclass(frozen=True)
class NodePoolSize:
    """Scaling bounds for a node pool. Must satisfy min <= desired <= max."""

    min_size: int
    desired_size: int
    max_size: int

    def validate(self, node_id: str = "") -> None:
        if self.min_size < 0:
            raise ValidationError(f"min_size must be >= 0, got {self.min_size}", node_id, "min_size")
        if self.max_size < 1:
            raise ValidationError(f"max_size must be >= 1, got {self.max_size}", node_id, "max_size")
        if not self.min_size <= self.desired_size <= self.max_size:
            raise ValidationError(
                "size bounds must satisfy min <= desired <= max "
                f"(min={self.min_size}, desired={self.desired_size}, max={self.max_size})",
                node_id,
                "desired_size",
            )


@dataclass(frozen=True)
class AddonDescriptor:
    """A platform add-on installed into the cluster after it is ready."""

    name: str
    version: str = ""  # empty means the platform default for the cluster version
    resolve_conflicts_on_create: ConflictPolicy = ConflictPolicy.OVERWRITE
    resolve_conflicts_on_update: ConflictPolicy = ConflictPolicy.OVERWRITE
    service_account_role_arn: str | None = None
    configuration_values: str | None = None
    oidc_provider_enabled: bool = True  # of the owning cluster

    @property
    def aborts_on_conflict(self) -> bool:
        return (
            self.resolve_conflicts_on_create is ConflictPolicy.NONE
            or self.resolve_conflicts_on_update is ConflictPolicy.NONE
        )

    def validate(self, node_id: str = "") -> None:
        if not self.name:
            raise ValidationError("add-on name must not be empty", node_id, "name")
        if self.resolve_conflicts_on_create is ConflictPolicy.PRESERVE:
            raise ValidationError(
                f"add-on '{self.name}': PRESERVE is only valid for resolve_conflicts_on_update",
                node_id,
                "resolve_conflicts_on_create",
            )
        if self.service_account_role_arn and not self.oidc_provider_enabled:
            raise ValidationError(
                f"add-on '{self.name}': service_account_role_arn needs the cluster OIDC provider",
                node_id,
                "service_account_role_arn",
            )


@dataclass(frozen=True)
class AccessPolicyAssociation:
    """A named access policy granted at cluster or namespace scope."""

    policy_arn: str
    scope_type: AccessScopeType = AccessScopeType.CLUSTER
    namespaces: tuple[str, ...] = ()


@dataclass(frozen=True)
class AccessEntry:
    """Binds a principal to a set of access policies on one cluster."""

    key: str
    principal: str  # IAM ARN, or a PrincipalRef value
    policies: tuple[AccessPolicyAssociation, ...] = field(default_factory=tuple)
    kubernetes_groups: tuple[str, ...] = ()
    entry_type: str = "STANDARD"

    @property
    def principal_ref(self) -> PrincipalRef | None:
        try:
            return PrincipalRef(self.principal)
        except ValueError:
            return None

    def validate(self, node_id: str = "") -> None:
        if self.principal_ref is None and not self.principal.startswith("arn:"):
            raise ValidationError(
                f"access entry '{self.key}': principal must be an ARN or one of "
                f"{[p.value for p in PrincipalRef]}, got {self.principal!r}",
                node_id,
                "principal",
            )
        for policy in self.policies:
            if policy.scope_type is AccessScopeType.NAMESPACE and not policy.namespaces:
                raise ValidationError(
                    f"access entry '{self.key}': namespace-scoped policy needs namespaces",
                    node_id,
                    "policies",
                )
