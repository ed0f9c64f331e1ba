"""Tests for stack document loading and shape validation."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from eksorch.document import StackDocument, load_document, parse_document
from eksorch.errors import ValidationError
from eksorch.models.cluster import ConflictPolicy


def _write(tmp_path: Path, data) -> Path:
    path = tmp_path / "stack.yaml"
    path.write_text(yaml.safe_dump(data) if not isinstance(data, str) else data)
    return path


class TestLoad:
    def test_yaml_round_trip(self, tmp_path: Path, document) -> None:
        doc = load_document(_write(tmp_path, document))
        assert isinstance(doc, StackDocument)
        assert doc.label.namespace == "acme"
        assert doc.subnets.availability_zones == ["us-east-1a", "us-east-1b", "us-east-1c"]
        assert [a.name for a in doc.cluster.addons] == ["vpc-cni", "coredns", "kube-proxy"]

    def test_defaults_are_filled(self, document) -> None:
        del document["node_pool"]
        doc = parse_document(document)
        assert doc.node_pool.name_suffix == "workers"
        assert doc.node_pool.instance_types == ["t3.medium"]
        assert doc.cluster.addons[0].resolve_conflicts_on_create is ConflictPolicy.OVERWRITE
        assert doc.label.delimiter == "-"

    def test_broken_yaml(self, tmp_path: Path) -> None:
        with pytest.raises(ValidationError, match="not valid YAML"):
            load_document(_write(tmp_path, "label: [unterminated\n"))

    def test_top_level_must_be_a_mapping(self, tmp_path: Path) -> None:
        with pytest.raises(ValidationError, match="mapping"):
            load_document(_write(tmp_path, "- just\n- a list\n"))


class TestShape:
    def test_unknown_key_is_rejected(self, document_factory) -> None:
        with pytest.raises(ValidationError) as exc_info:
            parse_document(document_factory(network={"cidr_block": "10.0.0.0/16", "ipv6": True}))
        assert exc_info.value.field == "network.ipv6"

    def test_unquoted_version_is_rejected(self, document_factory) -> None:
        with pytest.raises(ValidationError, match="quote the version") as exc_info:
            parse_document(document_factory(cluster={"kubernetes_version": 1.3}))
        assert exc_info.value.field == "cluster.kubernetes_version"

    def test_missing_section(self, document) -> None:
        del document["network"]
        with pytest.raises(ValidationError) as exc_info:
            parse_document(document)
        assert exc_info.value.field == "network"

    def test_empty_zone_list(self, document_factory) -> None:
        with pytest.raises(ValidationError):
            parse_document(document_factory(subnets={"availability_zones": []}))

    def test_duplicate_addons(self, document_factory) -> None:
        cluster = {"kubernetes_version": "1.29", "addons": [{"name": "coredns"}, {"name": "coredns"}]}
        with pytest.raises(ValidationError, match="duplicate add-ons: coredns"):
            parse_document(document_factory(cluster=cluster))

    def test_service_account_role_needs_oidc(self, document_factory) -> None:
        cluster = {
            "kubernetes_version": "1.29",
            "oidc_provider_enabled": False,
            "addons": [
                {
                    "name": "aws-ebs-csi-driver",
                    "service_account_role_arn": "arn:aws:iam::123456789012:role/ebs-csi",
                }
            ],
        }
        with pytest.raises(ValidationError, match="oidc_provider_enabled"):
            parse_document(document_factory(cluster=cluster))

    def test_unknown_conflict_policy(self, document_factory) -> None:
        cluster = {"kubernetes_version": "1.29", "addons": [{"name": "coredns", "resolve_conflicts_on_update": "MERGE"}]}
        with pytest.raises(ValidationError):
            parse_document(document_factory(cluster=cluster))
