"""Application bootstrap for eksorch.

Wires the collaborators one run needs, in order:
config → metrics → provisioning API → document → graph → identity → executor

SIGINT / SIGTERM request cancellation: no new node is submitted, nodes
already in flight run to a stable state, and the run still returns a
complete report.
"""

from __future__ import annotations

import asyncio
import signal
from collections.abc import Callable
from pathlib import Path

from eksorch.blueprint import IDENTITY, build_graph
from eksorch.config import load_config
from eksorch.document import load_document
from eksorch.engine import Executor
from eksorch.graph import DependencyGraph
from eksorch.identity import IdentityResolver, StaticIdentityResolver, StsIdentityResolver
from eksorch.models.config import EksOrchConfig
from eksorch.models.report import Operation, RunReport
from eksorch.observability.logging import get_logger
from eksorch.observability.metrics import serve_metrics
from eksorch.provider import LocalStateProvisioningAPI, ProvisioningAPI

_log = get_logger("app")


class EksOrchApp:
    """Owns the provisioning API and identity resolver for one CLI invocation.

    Collaborators may be injected; anything left out is built from config.
    """

    def __init__(
        self,
        config: EksOrchConfig | None = None,
        provider: ProvisioningAPI | None = None,
        identity_resolver: IdentityResolver | None = None,
    ) -> None:
        self.config = config or load_config()
        self._provider = provider
        self._identity_resolver = identity_resolver
        self._metrics_started = False

    @property
    def provider(self) -> ProvisioningAPI:
        if self._provider is None:
            self._provider = LocalStateProvisioningAPI(
                self.config.state.path,
                region=self.config.identity.region or "us-east-1",
            )
            _log.debug("local_state_provider", path=self.config.state.path)
        return self._provider

    def identity_resolver(self) -> IdentityResolver:
        if self._identity_resolver is None:
            ident = self.config.identity
            if ident.mode == "static":
                self._identity_resolver = StaticIdentityResolver(ident.static_caller_arn)
            else:
                self._identity_resolver = StsIdentityResolver(region=ident.region, profile=ident.profile)
        return self._identity_resolver

    def load(self, document_path: str | Path) -> DependencyGraph:
        graph = build_graph(load_document(document_path))
        _log.info("document_loaded", path=str(document_path), nodes=graph.node_count)
        return graph

    def executor(self, graph: DependencyGraph) -> Executor:
        resolver = self.identity_resolver() if IDENTITY in graph else None
        return Executor(graph, self.provider, config=self.config, identity_resolver=resolver)

    def start_metrics(self) -> None:
        if self.config.metrics.enabled and not self._metrics_started:
            serve_metrics(self.config.metrics.port)
            self._metrics_started = True
            _log.info("metrics_server_started", port=self.config.metrics.port)

    async def run(self, operation: Operation, document_path: str | Path) -> RunReport:
        """Load the document and run *operation* with signal-driven cancellation."""
        self.start_metrics()
        executor = self.executor(self.load(document_path))
        loop = asyncio.get_running_loop()
        installed = _install_signal_handlers(loop, executor.cancel)
        try:
            if operation is Operation.APPLY:
                return await executor.apply()
            if operation is Operation.DESTROY:
                return await executor.destroy()
            return await executor.plan()
        finally:
            for sig in installed:
                loop.remove_signal_handler(sig)
            await self.provider.close()


def _install_signal_handlers(loop: asyncio.AbstractEventLoop, cancel: Callable[[], None]) -> list[signal.Signals]:
    installed: list[signal.Signals] = []
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, cancel)
        except (NotImplementedError, RuntimeError, ValueError) as exc:
            # Not the main thread, or a platform without loop signal support.
            _log.debug("signal_handler_unavailable", signal=sig.name, error=str(exc))
            continue
        installed.append(sig)
    return installed
