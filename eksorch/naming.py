"""Naming and tagging authority.

Builds the canonical compound identifier (``namespace-name-stage``) and the
merged tag map shared by every resource. The result is a pure function of
its inputs so repeated runs address the same resources.

Also defines the reserved tag keys external controllers key off (load
balancer subnet discovery, cluster autoscaler node-group discovery).
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from types import MappingProxyType

from eksorch.errors import ValidationError
from eksorch.models.naming import Label

_DISALLOWED = re.compile(r"[^a-zA-Z0-9-]")

ELB_ROLE_TAG = "kubernetes.io/role/elb"
INTERNAL_ELB_ROLE_TAG = "kubernetes.io/role/internal-elb"
AUTOSCALER_ENABLED_TAG = "k8s.io/cluster-autoscaler/enabled"


def cluster_ownership_tag(cluster_name: str) -> str:
    return f"kubernetes.io/cluster/{cluster_name}"


def autoscaler_owner_tag(cluster_name: str) -> str:
    return f"k8s.io/cluster-autoscaler/{cluster_name}"


def _normalize(value: str) -> str:
    return _DISALLOWED.sub("", value).lower()


def build_label(
    namespace: str = "",
    name: str = "",
    stage: str = "",
    delimiter: str = "-",
    tags: Mapping[str, str] | None = None,
    attributes: tuple[str, ...] | list[str] = (),
) -> Label:
    """Produce the canonical Label.

    Empty components are dropped from the identifier. Generated tags
    (``Name``, ``Namespace``, ``Stage``) win over caller-supplied tags with
    the same key. Tag keys are sorted so the mapping compares and
    serialises identically across runs.
    """
    parts = [_normalize(p) for p in (namespace, name, stage, *attributes)]
    label_id = delimiter.join(p for p in parts if p)
    if not label_id:
        raise ValidationError("label needs at least one of namespace, name, stage", "label", "name")

    generated = {"Name": label_id}
    if namespace:
        generated["Namespace"] = _normalize(namespace)
    if stage:
        generated["Stage"] = _normalize(stage)

    merged = {str(k): str(v) for k, v in (tags or {}).items()}
    merged.update(generated)

    return Label(
        id=label_id,
        namespace=_normalize(namespace),
        name=_normalize(name),
        stage=_normalize(stage),
        delimiter=delimiter,
        tags=MappingProxyType(dict(sorted(merged.items()))),
    )


def require_tags(node_id: str, tags: Mapping[str, str], required: Mapping[str, str]) -> None:
    """Raise ValidationError unless every reserved key carries the expected value."""
    missing = [f"{k}={v}" for k, v in required.items() if tags.get(k) != v]
    if missing:
        raise ValidationError(
            f"missing reserved tags: {', '.join(missing)}",
            node_id,
            "tags",
        )
