"""End-to-end convergence: apply, re-apply, destroy against the simulator.

Runs full graph walks with pending operations (several polls per call),
per-call latency so independent nodes genuinely overlap, and, for the
persistence tests, the JSON state-file provider shared across runs.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from eksorch.blueprint import build_graph
from eksorch.document import parse_document
from eksorch.engine import Executor
from eksorch.models.report import Action, Operation, Outcome, RunReport
from eksorch.models.resources import ResourceKind
from eksorch.outputs import collect_outputs
from eksorch.provider import InMemoryProvisioningAPI, LocalStateProvisioningAPI

pytestmark = pytest.mark.integration

_EXTERNAL = [
    "network",
    "subnets",
    "node_pool",
    "cluster",
    "access_entry/admin",
    "addon/vpc-cni",
    "addon/coredns",
    "addon/kube-proxy",
]


@pytest.fixture
def slow_provider() -> InMemoryProvisioningAPI:
    return InMemoryProvisioningAPI(poll_delay=3, latency=0.001)


def _position(provider: InMemoryProvisioningAPI, operation: str) -> dict[str, int]:
    return {c.resource_id: i for i, c in enumerate(provider.operations(operation))}


class TestFullLifecycle:
    async def test_apply_then_reapply_then_destroy(self, graph, slow_provider, config, resolver) -> None:
        first = await Executor(graph, slow_provider, config, resolver).apply()
        assert first.succeeded, first.to_dict()
        assert all(first[n].action is Action.CREATE for n in _EXTERNAL)

        second = await Executor(graph, slow_provider, config, resolver).apply()
        assert second.succeeded
        assert all(second[n].outcome is Outcome.UNCHANGED for n in _EXTERNAL)
        assert len(slow_provider.operations("create")) == len(_EXTERNAL)
        assert slow_provider.operations("update") == []

        teardown = await Executor(graph, slow_provider, config, resolver).destroy()
        assert teardown.succeeded, teardown.to_dict()
        assert all(teardown[n].outcome is Outcome.DESTROYED for n in _EXTERNAL)
        for kind in ResourceKind:
            assert slow_provider.resource_ids(kind) == []

    async def test_destroy_deletes_dependents_first(self, graph, slow_provider, config, resolver) -> None:
        await Executor(graph, slow_provider, config, resolver).apply()
        await Executor(graph, slow_provider, config, resolver).destroy()

        deleted = _position(slow_provider, "delete")
        cluster = "acme-platform-prod"
        for addon in ("vpc-cni", "coredns", "kube-proxy"):
            assert deleted[f"{cluster}/{addon}"] < deleted[cluster]
            assert deleted[f"{cluster}/{addon}"] < deleted[f"{cluster}-workers"]
        assert deleted[f"{cluster}/admin"] < deleted[cluster]
        assert deleted[f"{cluster}-workers"] < deleted[cluster]
        assert deleted[cluster] < deleted[f"{cluster}-subnets"]
        assert deleted[f"{cluster}-workers"] < deleted[f"{cluster}-subnets"]
        assert deleted[f"{cluster}-subnets"] < deleted[f"{cluster}-vpc"]

    async def test_destroy_twice_is_a_noop(self, graph, slow_provider, config, resolver) -> None:
        await Executor(graph, slow_provider, config, resolver).apply()
        await Executor(graph, slow_provider, config, resolver).destroy()
        deletes = len(slow_provider.operations("delete"))

        again = await Executor(graph, slow_provider, config, resolver).destroy()
        assert again.succeeded
        assert all(again[n].action is Action.NOOP for n in _EXTERNAL)
        assert len(slow_provider.operations("delete")) == deletes

    async def test_node_pool_overlaps_control_plane(self, graph, slow_provider, config, resolver) -> None:
        await Executor(graph, slow_provider, config, resolver).apply()
        created = _position(slow_provider, "create")
        polls = [c.resource_id for c in slow_provider.operations("poll")]

        cluster_done = max(i for i, rid in enumerate(polls) if rid == "acme-platform-prod")
        pool_started = min(i for i, rid in enumerate(polls) if rid == "acme-platform-prod-workers")
        assert pool_started < cluster_done
        assert created["acme-platform-prod-workers"] < created["acme-platform-prod/vpc-cni"]


class TestPartialFailure:
    async def test_failed_subnets_skip_their_subtree(self, graph, slow_provider, config, resolver) -> None:
        slow_provider.exhaust_zone("us-east-1c")
        report = await Executor(graph, slow_provider, config, resolver).apply()

        assert report["network"].outcome is Outcome.READY
        assert report["subnets"].outcome is Outcome.FAILED
        assert report["subnets"].error_type == "CapacityExhausted"
        assert report["subnets"].attempts == 1
        for node_id in ("node_pool", "cluster", "access_entry/admin", "addon/vpc-cni"):
            assert report[node_id].outcome is Outcome.SKIPPED
            assert report[node_id].blocked_by == "subnets"
        assert report["identity"].outcome is Outcome.READY
        assert report.partial

    async def test_fixing_the_cause_converges_the_rest(self, graph, slow_provider, config, resolver) -> None:
        slow_provider.fail_terminal("acme-platform-prod-subnets", "create", times=3)
        first = await Executor(graph, slow_provider, config, resolver).apply()
        assert first["subnets"].outcome is Outcome.FAILED

        second = await Executor(graph, slow_provider, config, resolver).apply()
        assert second.succeeded, second.to_dict()
        assert second["network"].outcome is Outcome.UNCHANGED
        assert second["subnets"].action is Action.CREATE


class TestPersistence:
    async def test_state_survives_a_new_provider(self, tmp_path: Path, graph, config, resolver) -> None:
        state = tmp_path / "state" / "eksorch.json"

        first = await Executor(graph, LocalStateProvisioningAPI(state), config, resolver).apply()
        assert first.succeeded
        assert state.exists()

        reopened = LocalStateProvisioningAPI(state)
        second = await Executor(graph, reopened, config, resolver).apply()
        assert all(second[n].outcome is Outcome.UNCHANGED for n in _EXTERNAL)
        assert reopened.operations("create") == []

        assert collect_outputs(second) == collect_outputs(first)

    async def test_changed_document_updates_in_place(self, tmp_path: Path, document_factory, config, resolver) -> None:
        state = tmp_path / "state.json"
        before = build_graph(parse_document(document_factory()))
        await Executor(before, LocalStateProvisioningAPI(state), config, resolver).apply()

        scaled = build_graph(parse_document(document_factory(node_pool={"desired_size": 5, "max_size": 6})))
        provider = LocalStateProvisioningAPI(state)
        report = await Executor(scaled, provider, config, resolver).apply()

        assert report["node_pool"].action is Action.UPDATE
        assert report["cluster"].outcome is Outcome.UNCHANGED
        assert [c.resource_id for c in provider.operations("update")] == ["acme-platform-prod-workers"]
        assert collect_outputs(report)["node_pool_scaling"]["desired_size"] == 5


class TestOutputs:
    async def test_published_identifiers(self, executor) -> None:
        outputs = collect_outputs(await executor.apply())

        assert outputs["name"] == "acme-platform-prod"
        assert outputs["tags"]["Team"] == "infra"
        assert outputs["network_cidr_block"] == "172.16.0.0/16"
        assert outputs["availability_zones"] == ["us-east-1a", "us-east-1b", "us-east-1c"]
        assert len(outputs["public_subnet_ids"]) == len(outputs["private_subnet_ids"]) == 3
        assert outputs["cluster_arn"].endswith(":cluster/acme-platform-prod")
        assert outputs["cluster_endpoint"].startswith("https://")
        assert outputs["oidc_issuer_url"].startswith("https://oidc.eks.")
        assert outputs["node_pool_name"] == "acme-platform-prod-workers"
        assert set(outputs["access_entries"]) == {"admin"}

    def test_unapplied_nodes_publish_none(self) -> None:
        outputs = collect_outputs(RunReport(operation=Operation.APPLY))
        assert outputs["network_id"] is None
        assert outputs["private_subnet_ids"] == []
        assert outputs["addons"] == {}
