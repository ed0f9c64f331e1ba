"""Tests for the naming and tagging authority."""

from __future__ import annotations

import re

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from eksorch.errors import ValidationError
from eksorch.naming import (
    autoscaler_owner_tag,
    build_label,
    cluster_ownership_tag,
    require_tags,
)

_component = st.from_regex(r"[A-Za-z0-9 _.!-]{0,12}", fullmatch=True)
_name = st.from_regex(r"[A-Za-z0-9]{1,12}", fullmatch=True)
_tags = st.dictionaries(
    st.from_regex(r"[A-Za-z][A-Za-z0-9:/._-]{0,15}", fullmatch=True),
    st.text(max_size=20),
    max_size=5,
)


class TestBuildLabel:
    def test_compound_identifier(self) -> None:
        label = build_label(namespace="acme", name="platform", stage="prod")
        assert label.id == "acme-platform-prod"
        assert label.namespace == "acme"
        assert label.stage == "prod"

    def test_empty_components_are_dropped(self) -> None:
        assert build_label(name="platform").id == "platform"
        assert build_label(namespace="acme", name="platform").id == "acme-platform"

    def test_attributes_are_appended(self) -> None:
        label = build_label(namespace="acme", name="platform", stage="prod", attributes=["blue"])
        assert label.id == "acme-platform-prod-blue"

    def test_components_are_normalized(self) -> None:
        label = build_label(namespace="Acme Corp!", name="Platform_1", stage="PROD")
        assert label.id == "acmecorp-platform1-prod"

    def test_custom_delimiter(self) -> None:
        label = build_label(namespace="acme", name="platform", stage="prod", delimiter=".")
        assert label.id == "acme.platform.prod"

    def test_all_empty_is_rejected(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            build_label(namespace="", name="!!", stage="")
        assert exc_info.value.node_id == "label"

    def test_generated_tags_merge_with_caller_tags(self) -> None:
        label = build_label(namespace="acme", name="platform", stage="prod", tags={"Team": "infra"})
        assert dict(label.tags) == {
            "Name": "acme-platform-prod",
            "Namespace": "acme",
            "Stage": "prod",
            "Team": "infra",
        }

    def test_generated_tags_win_over_caller_tags(self) -> None:
        label = build_label(name="platform", tags={"Name": "something-else"})
        assert label.tags["Name"] == "platform"

    def test_tags_are_sorted(self) -> None:
        label = build_label(name="platform", tags={"zeta": "1", "alpha": "2"})
        assert list(label.tags) == sorted(label.tags)

    def test_tags_are_read_only(self) -> None:
        label = build_label(name="platform")
        with pytest.raises(TypeError):
            label.tags["Owner"] = "me"  # type: ignore[index]


class TestLabelProperties:
    @given(namespace=_component, name=_name, stage=_component, tags=_tags)
    @settings(max_examples=100)
    def test_label_is_deterministic(self, namespace: str, name: str, stage: str, tags: dict[str, str]) -> None:
        first = build_label(namespace=namespace, name=name, stage=stage, tags=tags)
        second = build_label(namespace=namespace, name=name, stage=stage, tags=dict(reversed(list(tags.items()))))
        assert first == second

    @given(namespace=_component, name=_name, stage=_component)
    @settings(max_examples=100)
    def test_identifier_is_dns_friendly(self, namespace: str, name: str, stage: str) -> None:
        label = build_label(namespace=namespace, name=name, stage=stage)
        assert re.fullmatch(r"[a-z0-9-]+", label.id)
        assert label.tags["Name"] == label.id


class TestReservedTags:
    def test_reserved_tag_keys(self) -> None:
        assert cluster_ownership_tag("acme-platform-prod") == "kubernetes.io/cluster/acme-platform-prod"
        assert autoscaler_owner_tag("acme-platform-prod") == "k8s.io/cluster-autoscaler/acme-platform-prod"

    def test_require_tags_accepts_present_tags(self) -> None:
        require_tags("subnets", {"kubernetes.io/role/elb": "1", "Name": "x"}, {"kubernetes.io/role/elb": "1"})

    def test_require_tags_reports_missing_or_wrong_values(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            require_tags(
                "subnets",
                {"kubernetes.io/role/elb": "0"},
                {"kubernetes.io/role/elb": "1", "kubernetes.io/cluster/x": "shared"},
            )
        assert "kubernetes.io/role/elb=1" in str(exc_info.value)
        assert "kubernetes.io/cluster/x=shared" in str(exc_info.value)
        assert exc_info.value.field == "tags"
