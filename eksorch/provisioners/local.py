"""Local nodes: the naming/tagging authority and the identity resolver."""

from __future__ import annotations

from typing import Any

from eksorch.errors import AuthenticationError
from eksorch.models.naming import Label
from eksorch.models.resources import ResourceKind, ResourceNode
from eksorch.naming import build_label
from eksorch.provisioners.base import Descriptor, EvaluationContext, Upstream


class LabelProvisioner(Descriptor):
    """Finalizes the canonical name and tag set once per run."""

    kind = ResourceKind.LABEL
    local = True

    def validate(self, node: ResourceNode) -> None:
        self._build(node)

    async def evaluate(self, node: ResourceNode, upstream: Upstream, context: EvaluationContext) -> dict[str, Any]:
        label = self._build(node)
        return {
            "id": label.id,
            "namespace": label.namespace,
            "name": label.name,
            "stage": label.stage,
            "delimiter": label.delimiter,
            "tags": label.tags,
        }

    @staticmethod
    def _build(node: ResourceNode) -> Label:
        inputs = node.inputs
        return build_label(
            namespace=inputs.get("namespace", ""),
            name=inputs.get("name", ""),
            stage=inputs.get("stage", ""),
            delimiter=inputs.get("delimiter", "-"),
            tags=inputs.get("tags"),
            attributes=tuple(inputs.get("attributes", ())),
        )


class IdentityProvisioner(Descriptor):
    """Resolves the caller and, for assumed-role sessions, the role behind it."""

    kind = ResourceKind.IDENTITY
    local = True
    retry_create = False

    def validate(self, node: ResourceNode) -> None:
        return None

    async def evaluate(self, node: ResourceNode, upstream: Upstream, context: EvaluationContext) -> dict[str, Any]:
        if context.identity_resolver is None:
            raise AuthenticationError("no identity resolver configured")
        identity = await context.identity_resolver.resolve()
        return {
            "account_id": identity.account_id,
            "arn": identity.arn,
            "user_id": identity.user_id,
            "issuer_arn": identity.issuer_arn,
        }
