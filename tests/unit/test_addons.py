"""Tests for add-on installation: list order and conflict resolution."""

from __future__ import annotations

import pytest

from eksorch.engine import Executor
from eksorch.errors import ValidationError
from eksorch.models.report import Action, Outcome
from eksorch.models.resources import ResourceKind, ResourceNode
from eksorch.provider import InMemoryProvisioningAPI
from eksorch.provisioners.cluster import AddonProvisioner

CLUSTER = "acme-platform-prod"


def _addons(*specs: dict) -> dict:
    return {"kubernetes_version": "1.29", "addons": list(specs)}


def _created_addons(provider: InMemoryProvisioningAPI) -> list[str]:
    return [c.resource_id.split("/", 1)[1] for c in provider.operations("create") if c.kind is ResourceKind.ADDON]


class TestOrdering:
    async def test_installed_in_declared_order(self, executor, provider: InMemoryProvisioningAPI) -> None:
        await executor.apply()
        assert _created_addons(provider) == ["vpc-cni", "coredns", "kube-proxy"]

    async def test_reordering_changes_order_not_final_state(self, graph_factory, config, resolver) -> None:
        specs = [
            {"name": "vpc-cni", "version": "v1.18.0-eksbuild.1"},
            {"name": "coredns", "version": "v1.11.1-eksbuild.4"},
            {"name": "kube-proxy", "version": "v1.29.0-eksbuild.1"},
        ]
        forward = InMemoryProvisioningAPI()
        backward = InMemoryProvisioningAPI()

        await Executor(graph_factory(cluster=_addons(*specs)), forward, config, resolver).apply()
        await Executor(graph_factory(cluster=_addons(*reversed(specs))), backward, config, resolver).apply()

        assert _created_addons(forward) == ["vpc-cni", "coredns", "kube-proxy"]
        assert _created_addons(backward) == ["kube-proxy", "coredns", "vpc-cni"]
        for spec in specs:
            assert forward.installed_addon_version(CLUSTER, spec["name"]) == spec["version"]
            assert backward.installed_addon_version(CLUSTER, spec["name"]) == spec["version"]

    async def test_empty_version_installs_platform_default(self, executor_factory, graph_factory) -> None:
        report = await executor_factory(graph_factory(cluster=_addons({"name": "coredns"}))).apply()
        assert report["addon/coredns"].outputs["addon_version"] == "default"


class TestConflictOnCreate:
    async def test_overwrite_adopts_preinstalled_addon(
        self, executor_factory, graph_factory, provider: InMemoryProvisioningAPI
    ) -> None:
        provider.preinstall_addon(CLUSTER, "coredns", "v1.10.1-eksbuild.1")
        graph = graph_factory(
            cluster=_addons({"name": "coredns", "version": "v1.11.1-eksbuild.4", "resolve_conflicts_on_create": "OVERWRITE"})
        )
        report = await executor_factory(graph).apply()

        assert report["addon/coredns"].outcome is Outcome.READY
        assert provider.installed_addon_version(CLUSTER, "coredns") == "v1.11.1-eksbuild.4"

    async def test_none_aborts_and_skips_the_rest_of_the_list(
        self, executor_factory, graph_factory, provider: InMemoryProvisioningAPI
    ) -> None:
        provider.preinstall_addon(CLUSTER, "coredns", "v1.10.1-eksbuild.1")
        graph = graph_factory(
            cluster=_addons(
                {"name": "vpc-cni"},
                {"name": "coredns", "version": "v1.11.1-eksbuild.4", "resolve_conflicts_on_create": "NONE"},
                {"name": "kube-proxy"},
            )
        )
        report = await executor_factory(graph).apply()

        coredns = report["addon/coredns"]
        assert coredns.outcome is Outcome.FAILED
        assert coredns.error_type == "ConflictOnUpdate"
        assert coredns.attempts == 1
        assert report["addon/vpc-cni"].outcome is Outcome.READY
        assert report["addon/kube-proxy"].outcome is Outcome.SKIPPED
        assert report["addon/kube-proxy"].blocked_by == "addon/coredns"
        assert report["cluster"].outcome is Outcome.READY
        assert provider.installed_addon_version(CLUSTER, "coredns") == "v1.10.1-eksbuild.1"

    def test_preserve_is_rejected_on_create(self, executor_factory, graph_factory) -> None:
        graph = graph_factory(cluster=_addons({"name": "coredns", "resolve_conflicts_on_create": "PRESERVE"}))
        with pytest.raises(ValidationError, match="PRESERVE"):
            executor_factory(graph).validate()


class TestConflictOnUpdate:
    async def test_overwrite_converges_after_drift(
        self, executor_factory, graph_factory, provider: InMemoryProvisioningAPI
    ) -> None:
        graph_spec = _addons({"name": "coredns", "version": "v1.11.1-eksbuild.4"})
        await executor_factory(graph_factory(cluster=graph_spec)).apply()
        provider.drift(ResourceKind.ADDON, f"{CLUSTER}/coredns", addon_version="v1.10.1-eksbuild.1")

        report = await executor_factory(graph_factory(cluster=graph_spec)).apply()

        assert report["addon/coredns"].action is Action.UPDATE
        assert report["addon/coredns"].outcome is Outcome.READY
        assert provider.installed_addon_version(CLUSTER, "coredns") == "v1.11.1-eksbuild.4"

    async def test_none_keeps_prior_version_and_reports_conflict(
        self, executor_factory, graph_factory, provider: InMemoryProvisioningAPI
    ) -> None:
        graph_spec = _addons(
            {"name": "coredns", "version": "v1.11.1-eksbuild.4", "resolve_conflicts_on_update": "NONE"},
            {"name": "kube-proxy"},
        )
        await executor_factory(graph_factory(cluster=graph_spec)).apply()
        provider.drift(ResourceKind.ADDON, f"{CLUSTER}/coredns", addon_version="v1.10.1-eksbuild.1")

        report = await executor_factory(graph_factory(cluster=graph_spec)).apply()

        assert report["addon/coredns"].outcome is Outcome.FAILED
        assert report["addon/coredns"].error_type == "ConflictOnUpdate"
        assert provider.installed_addon_version(CLUSTER, "coredns") == "v1.10.1-eksbuild.1"
        assert report["addon/kube-proxy"].outcome is Outcome.SKIPPED
        assert report["cluster"].outcome is Outcome.UNCHANGED

    async def test_preserve_keeps_existing_configuration(
        self, executor_factory, graph_factory, provider: InMemoryProvisioningAPI
    ) -> None:
        graph_spec = _addons(
            {"name": "coredns", "version": "v1.11.1-eksbuild.4", "resolve_conflicts_on_update": "PRESERVE"}
        )
        await executor_factory(graph_factory(cluster=graph_spec)).apply()
        provider.drift(
            ResourceKind.ADDON,
            f"{CLUSTER}/coredns",
            addon_version="v1.10.1-eksbuild.1",
            configuration_values='{"replicaCount": 3}',
        )

        report = await executor_factory(graph_factory(cluster=graph_spec)).apply()

        assert report["addon/coredns"].outcome is Outcome.READY
        record = await provider.read(ResourceKind.ADDON, f"{CLUSTER}/coredns")
        assert record is not None
        assert record.config["configuration_values"] == '{"replicaCount": 3}'
        assert record.config["addon_version"] == "v1.11.1-eksbuild.4"

    async def test_preserve_settles_after_one_update(
        self, executor_factory, graph_factory, provider: InMemoryProvisioningAPI
    ) -> None:
        graph_spec = _addons(
            {"name": "coredns", "version": "v1.11.1-eksbuild.4", "resolve_conflicts_on_update": "PRESERVE"}
        )
        await executor_factory(graph_factory(cluster=graph_spec)).apply()
        provider.drift(ResourceKind.ADDON, f"{CLUSTER}/coredns", configuration_values='{"replicaCount": 3}')

        assert (await executor_factory(graph_factory(cluster=graph_spec)).plan())["addon/coredns"].action is Action.NOOP
        for _ in range(2):
            report = await executor_factory(graph_factory(cluster=graph_spec)).apply()
            assert report["addon/coredns"].outcome is Outcome.UNCHANGED

        assert provider.operations("update") == []
        record = await provider.read(ResourceKind.ADDON, f"{CLUSTER}/coredns")
        assert record.config["configuration_values"] == '{"replicaCount": 3}'

    async def test_preserve_keeps_values_across_version_bumps(
        self, executor_factory, graph_factory, provider: InMemoryProvisioningAPI
    ) -> None:
        def spec(version: str) -> dict:
            return _addons({"name": "coredns", "version": version, "resolve_conflicts_on_update": "PRESERVE"})

        await executor_factory(graph_factory(cluster=spec("v1.11.1-eksbuild.4"))).apply()
        provider.drift(
            ResourceKind.ADDON,
            f"{CLUSTER}/coredns",
            addon_version="v1.10.1-eksbuild.1",
            configuration_values='{"replicaCount": 3}',
        )
        await executor_factory(graph_factory(cluster=spec("v1.11.1-eksbuild.4"))).apply()
        again = await executor_factory(graph_factory(cluster=spec("v1.11.1-eksbuild.4"))).apply()
        bumped = await executor_factory(graph_factory(cluster=spec("v1.11.3-eksbuild.1"))).apply()

        assert again["addon/coredns"].outcome is Outcome.UNCHANGED
        assert bumped["addon/coredns"].action is Action.UPDATE
        assert len(provider.operations("update")) == 2
        record = await provider.read(ResourceKind.ADDON, f"{CLUSTER}/coredns")
        assert record.config["configuration_values"] == '{"replicaCount": 3}'
        assert provider.installed_addon_version(CLUSTER, "coredns") == "v1.11.3-eksbuild.1"


class TestServiceAccountRoles:
    _ROLE = "arn:aws:iam::123456789012:role/ebs-csi"

    def test_role_without_oidc_fails_descriptor_validation(self) -> None:
        node = ResourceNode(
            "addon/aws-ebs-csi-driver",
            ResourceKind.ADDON,
            {"name": "aws-ebs-csi-driver", "service_account_role_arn": self._ROLE, "oidc_provider_enabled": False},
        )
        with pytest.raises(ValidationError, match="OIDC") as exc_info:
            AddonProvisioner().validate(node)
        assert exc_info.value.node_id == "addon/aws-ebs-csi-driver"

    def test_blueprint_hands_the_cluster_oidc_flag_to_addons(self, graph_factory) -> None:
        graph = graph_factory(
            cluster=_addons({"name": "aws-ebs-csi-driver", "service_account_role_arn": self._ROLE})
        )
        node = graph.node("addon/aws-ebs-csi-driver")
        assert node.inputs["oidc_provider_enabled"] is True
        AddonProvisioner().validate(node)


class TestIsolatedFailure:
    async def test_failed_addon_does_not_stop_siblings(self, executor, provider: InMemoryProvisioningAPI) -> None:
        provider.fail_terminal(f"{CLUSTER}/coredns", "create", message="addon degraded")
        report = await executor.apply()

        assert report["addon/coredns"].outcome is Outcome.FAILED
        assert report["addon/coredns"].attempts == 3
        assert report["addon/vpc-cni"].outcome is Outcome.READY
        assert report["addon/kube-proxy"].outcome is Outcome.READY
        assert report["cluster"].outcome is Outcome.READY
        assert report.fatal_node == ""
        assert report.partial
