"""Shared fixtures for eksorch tests.

Provides a representative stack document, a fast executor config (no
backoff, no poll sleeps), the in-memory provisioning API and a static
identity resolver, so tests exercise full graph walks without touching AWS.
"""

from __future__ import annotations

import copy
import logging
from typing import Any

import pytest
import structlog

from eksorch.blueprint import build_graph
from eksorch.document import parse_document
from eksorch.engine import Executor
from eksorch.graph import DependencyGraph
from eksorch.identity import StaticIdentityResolver
from eksorch.models.config import EksOrchConfig, ExecutionConfig, RetryConfig
from eksorch.provider import InMemoryProvisioningAPI

CALLER_ARN = "arn:aws:sts::123456789012:assumed-role/platform-admin/alice"

_DOCUMENT: dict[str, Any] = {
    "label": {
        "namespace": "acme",
        "name": "platform",
        "stage": "prod",
        "tags": {"Team": "infra"},
    },
    "network": {"cidr_block": "172.16.0.0/16"},
    "subnets": {
        "availability_zones": ["us-east-1a", "us-east-1b", "us-east-1c"],
        "nat_gateway_enabled": True,
    },
    "node_pool": {
        "instance_types": ["t3.large"],
        "min_size": 1,
        "desired_size": 3,
        "max_size": 3,
        "autoscaler_discovery": True,
    },
    "cluster": {
        "kubernetes_version": "1.29",
        "access_entries": {
            "admin": {
                "principal": "caller_role",
                "policies": [
                    {"policy_arn": "arn:aws:eks::aws:cluster-access-policy/AmazonEKSClusterAdminPolicy"},
                ],
            },
        },
        "addons": [
            {"name": "vpc-cni", "version": "v1.18.0-eksbuild.1"},
            {"name": "coredns", "version": "v1.11.1-eksbuild.4"},
            {"name": "kube-proxy", "version": "v1.29.0-eksbuild.1"},
        ],
    },
}


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


def make_document(**sections: Any) -> dict[str, Any]:
    """A deep copy of the sample document; each kwarg replaces or merges one section."""
    doc = copy.deepcopy(_DOCUMENT)
    for name, value in sections.items():
        if isinstance(value, dict) and isinstance(doc.get(name), dict):
            doc[name] = {**doc[name], **value}
        else:
            doc[name] = value
    return doc


def make_graph(**sections: Any) -> DependencyGraph:
    return build_graph(parse_document(make_document(**sections)))


def fast_config(**retry: Any) -> EksOrchConfig:
    return EksOrchConfig(
        retry=RetryConfig(**{"max_attempts": 3, "base_delay": 0.0, "max_delay": 0.0, **retry}),
        execution=ExecutionConfig(max_concurrency=8, poll_interval=0.0, operation_timeout=5.0),
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True, scope="session")
def _quiet_logging() -> None:
    """Route structlog through the processor chain but drop the rendered output."""
    structlog.configure(
        processors=[structlog.processors.add_log_level, structlog.processors.JSONRenderer()],
        wrapper_class=structlog.make_filtering_bound_logger(logging.DEBUG),
        logger_factory=structlog.ReturnLoggerFactory(),
        cache_logger_on_first_use=False,
    )


@pytest.fixture
def document() -> dict[str, Any]:
    return make_document()


@pytest.fixture
def graph() -> DependencyGraph:
    return make_graph()


@pytest.fixture
def provider() -> InMemoryProvisioningAPI:
    return InMemoryProvisioningAPI(poll_delay=1)


@pytest.fixture
def resolver() -> StaticIdentityResolver:
    return StaticIdentityResolver(CALLER_ARN)


@pytest.fixture
def document_factory():
    return make_document


@pytest.fixture
def graph_factory():
    return make_graph


@pytest.fixture
def config() -> EksOrchConfig:
    return fast_config()


@pytest.fixture
def config_factory():
    return fast_config


@pytest.fixture
def executor(
    graph: DependencyGraph,
    provider: InMemoryProvisioningAPI,
    resolver: StaticIdentityResolver,
) -> Executor:
    return Executor(graph, provider, config=fast_config(), identity_resolver=resolver)


@pytest.fixture
def executor_factory(provider: InMemoryProvisioningAPI, resolver: StaticIdentityResolver):
    """Build an Executor sharing the test's provider; override graph or config per call."""

    def factory(graph: DependencyGraph | None = None, config: EksOrchConfig | None = None) -> Executor:
        return Executor(
            graph if graph is not None else make_graph(),
            provider,
            config=config or fast_config(),
            identity_resolver=resolver,
        )

    return factory
