"""Apply/destroy executor: a DAG walk over the resource graph.

Nodes whose prerequisites are satisfied run concurrently (bounded by a
semaphore); a node is submitted only once every incoming edge is
satisfied. Failures halt the failing node's subtree; a fatal failure (the
control plane) or an operator cancel stops all further submission while
operations already in flight are awaited to a stable state.

Every run returns a RunReport with one NodeReport per node rather than a
single pass/fail signal.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Mapping
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from eksorch.engine.retry import NO_RETRY, RetryPolicy, call_with_retry
from eksorch.errors import (
    DependencyNotReady,
    EksOrchError,
    ExternalServiceError,
    FatalProvisioningError,
    ValidationError,
)
from eksorch.graph.models import EdgeType
from eksorch.models.config import EksOrchConfig
from eksorch.models.report import Action, NodeReport, Operation, Outcome, RunReport
from eksorch.models.resources import RemoteState, ResourceKind, ResourceRecord, ResourceState, thaw
from eksorch.observability.logging import get_logger
from eksorch.observability.metrics import (
    node_operations_total,
    node_retries_total,
    operation_duration_seconds,
)
from eksorch.provisioners import DESCRIPTORS, Descriptor, EvaluationContext

if TYPE_CHECKING:
    from eksorch.graph import DependencyGraph
    from eksorch.identity import IdentityResolver
    from eksorch.models.resources import ResourceNode
    from eksorch.provider import ProvisioningAPI

_log = get_logger("engine.executor")

_BLOCKING = frozenset({Outcome.FAILED, Outcome.SKIPPED, Outcome.CANCELLED})

Prerequisites = Callable[[str], list[tuple[str, EdgeType]]]


class Executor:
    """Converges (or tears down) one DependencyGraph against a ProvisioningAPI.

    An Executor instance runs one operation at a time; ``cancel()`` may be
    called from a signal handler while a run is in progress.
    """

    def __init__(
        self,
        graph: DependencyGraph,
        provider: ProvisioningAPI,
        config: EksOrchConfig | None = None,
        identity_resolver: IdentityResolver | None = None,
        descriptors: Mapping[ResourceKind, Descriptor] | None = None,
    ) -> None:
        self._graph = graph
        self._provider = provider
        self._config = config or EksOrchConfig()
        self._descriptors = dict(descriptors or DESCRIPTORS)
        self._context = EvaluationContext(identity_resolver=identity_resolver)
        self._retry = RetryPolicy.from_config(self._config.retry)
        self._semaphore = asyncio.Semaphore(self._config.execution.max_concurrency)
        self._cancelled = False
        self._fatal_node = ""
        self._halted_sequence: set[str] = set()
        self._outputs: dict[str, Mapping[str, Any]] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def cancel(self) -> None:
        """Stop submitting new nodes. In-flight operations run to a stable state."""
        if not self._cancelled:
            _log.warning("cancellation_requested")
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def validate(self) -> None:
        """Validate every node. Raises the first ValidationError found."""
        for node_id in self._graph.topological_order():
            node = self._graph.node(node_id)
            self._descriptor(node).validate(node)

    async def apply(self) -> RunReport:
        """Create or update every node so the graph converges."""
        self.validate()
        report = self._new_report(Operation.APPLY, self._graph.topological_order())
        _log.info("apply_started", nodes=len(report.order))

        def prerequisites(node_id: str) -> list[tuple[str, EdgeType]]:
            return [(e.source, e.edge_type) for e in self._graph.incoming(node_id) if e.applies]

        await self._walk(report, prerequisites, self._apply_node)
        return self._finish(report)

    async def destroy(self) -> RunReport:
        """Delete every node, dependents before their dependencies."""
        self.validate()
        report = self._new_report(Operation.DESTROY, self._graph.teardown_order())
        _log.info("destroy_started", nodes=len(report.order))
        resource_ids = await self._refresh()

        def prerequisites(node_id: str) -> list[tuple[str, EdgeType]]:
            return [(e.target, EdgeType.ORDER) for e in self._graph.outgoing(node_id)]

        async def run(node_id: str) -> NodeReport:
            return await self._destroy_node(node_id, resource_ids.get(node_id))

        await self._walk(report, prerequisites, run)
        return self._finish(report)

    async def plan(self) -> RunReport:
        """Report what apply would do without changing anything."""
        self.validate()
        report = self._new_report(Operation.PLAN, self._graph.topological_order())
        for node_id in report.order:
            report.add(await self._plan_node(node_id))
        report.finished_at = datetime.now(tz=UTC)
        return report

    # ------------------------------------------------------------------
    # Graph walk
    # ------------------------------------------------------------------

    async def _walk(
        self,
        report: RunReport,
        prerequisites: Prerequisites,
        run: Callable[[str], Awaitable[NodeReport]],
    ) -> None:
        pending = list(report.order)
        running: dict[asyncio.Task[NodeReport], str] = {}

        while pending or running:
            progressed = True
            while progressed and pending and not self._halted():
                progressed = False
                for node_id in list(pending):
                    prereqs = prerequisites(node_id)
                    blocker = next((d for d, t in prereqs if self._blocks(report, d, t)), None)
                    if blocker is not None:
                        pending.remove(node_id)
                        report.add(self._skipped(node_id, report, blocker))
                        progressed = True
                    elif all(self._satisfied(report, d, t) for d, t in prereqs):
                        pending.remove(node_id)
                        task = asyncio.create_task(run(node_id), name=f"{report.operation}:{node_id}")
                        running[task] = node_id
                        progressed = True

            if pending and self._halted():
                for node_id in pending:
                    report.add(self._halted_report(node_id))
                pending.clear()

            if not running:
                if pending:
                    # Only reachable if the walk itself is broken.
                    raise DependencyNotReady(pending[0], ",".join(d for d, _ in prerequisites(pending[0])))
                break

            done, _ = await asyncio.wait(running, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                running.pop(task)
                node_report = task.result()
                report.add(node_report)

    def _halted(self) -> bool:
        return self._cancelled or bool(self._fatal_node)

    def _satisfied(self, report: RunReport, dep: str, edge_type: EdgeType) -> bool:
        dep_report = report.nodes[dep]
        if dep_report.ok:
            return True
        return (
            edge_type is EdgeType.SEQUENCE
            and dep_report.outcome is Outcome.FAILED
            and dep not in self._halted_sequence
        )

    def _blocks(self, report: RunReport, dep: str, edge_type: EdgeType) -> bool:
        return report.nodes[dep].outcome in _BLOCKING and not self._satisfied(report, dep, edge_type)

    def _skipped(self, node_id: str, report: RunReport, blocker: str) -> NodeReport:
        blocker_report = report.nodes[blocker]
        root = blocker_report.blocked_by or blocker
        node = self._graph.node(node_id)
        _log.info("node_skipped", node=node_id, blocked_by=root)
        return NodeReport(
            node_id=node_id,
            kind=node.kind,
            outcome=Outcome.SKIPPED,
            reason=f"prerequisite '{root}' did not converge",
            blocked_by=root,
        )

    def _halted_report(self, node_id: str) -> NodeReport:
        node = self._graph.node(node_id)
        if self._fatal_node:
            return NodeReport(
                node_id=node_id,
                kind=node.kind,
                outcome=Outcome.SKIPPED,
                reason=f"halted after fatal failure of '{self._fatal_node}'",
                blocked_by=self._fatal_node,
            )
        return NodeReport(node_id=node_id, kind=node.kind, outcome=Outcome.CANCELLED, reason="run cancelled")

    # ------------------------------------------------------------------
    # Apply
    # ------------------------------------------------------------------

    async def _apply_node(self, node_id: str) -> NodeReport:
        node = self._graph.node(node_id)
        descriptor = self._descriptor(node)
        report = NodeReport(node_id=node_id, kind=node.kind)
        started = time.monotonic()

        async with self._semaphore:
            if self._halted():
                return self._halted_report(node_id)
            try:
                upstream = self._upstream(node)
                if descriptor.local:
                    report.action = Action.EVALUATE
                    report.attempts = 1
                    outputs = await descriptor.evaluate(node, upstream, self._context)
                else:
                    outputs = await self._converge(node, descriptor, upstream, report)
            except Exception as exc:  # noqa: BLE001
                self._record_failure(node, descriptor, report, exc)
            else:
                node.state = ResourceState.READY
                node.outputs = outputs
                self._outputs[node_id] = outputs
                report.outputs = thaw(outputs)
                report.outcome = Outcome.UNCHANGED if report.action is Action.NOOP else Outcome.READY
                _log.info(
                    "node_ready",
                    node=node_id,
                    kind=node.kind.value,
                    action=report.action.value,
                    attempts=report.attempts,
                )

        report.duration_s = time.monotonic() - started
        node_operations_total.labels(
            kind=node.kind.value, operation=report.action.value, outcome=report.outcome.value
        ).inc()
        operation_duration_seconds.labels(kind=node.kind.value, operation=report.action.value).observe(
            report.duration_s
        )
        return report

    async def _converge(
        self,
        node: ResourceNode,
        descriptor: Descriptor,
        upstream: Mapping[str, Mapping[str, Any]],
        report: NodeReport,
    ) -> dict[str, Any]:
        resource_id = descriptor.resource_id(node, upstream)
        desired = thaw(descriptor.render(node, upstream))
        record = await self._read(node.kind, resource_id)

        if record is not None and record.state is RemoteState.PENDING:
            # Left in flight by an earlier run: let it settle before deciding.
            record = await self._wait(node.kind, resource_id)

        if (
            record is not None
            and record.state is RemoteState.READY
            and descriptor.in_sync(node, thaw(record.config), desired)
        ):
            report.action = Action.NOOP
            report.attempts = 0
            return descriptor.outputs(node, record)

        if record is None or record.state is RemoteState.ERROR:
            report.action = Action.CREATE
            node.state = ResourceState.CREATING
            submit = self._provider.create
            policy = self._retry if descriptor.retry_create else NO_RETRY
        else:
            report.action = Action.UPDATE
            node.state = ResourceState.UPDATING
            submit = self._provider.update
            policy = self._retry if descriptor.retry_update else NO_RETRY

        async def attempt() -> ResourceRecord:
            report.attempts += 1
            await submit(node.kind, resource_id, desired)
            settled = await self._wait(node.kind, resource_id)
            if settled is None:
                raise ExternalServiceError(f"{node.kind.value} '{resource_id}' vanished while provisioning")
            if settled.state is RemoteState.ERROR:
                node.state = ResourceState.ERROR
                raise ExternalServiceError(settled.message or f"{node.kind.value} '{resource_id}' failed")
            return settled

        def on_retry(_attempt: int, _exc: BaseException) -> None:
            node_retries_total.labels(kind=node.kind.value).inc()

        _log.debug("node_submitted", node=node.node_id, action=report.action.value, resource_id=resource_id)
        settled, _ = await call_with_retry(attempt, policy, label=node.node_id, on_retry=on_retry)
        return descriptor.outputs(node, settled)

    def _upstream(self, node: ResourceNode) -> dict[str, Mapping[str, Any]]:
        """Outputs delivered by DATA edges; every prerequisite must be ready."""
        upstream: dict[str, Mapping[str, Any]] = {}
        for edge in self._graph.incoming(node.node_id):
            if edge.edge_type is EdgeType.SEQUENCE or not edge.applies:
                continue
            if edge.source not in self._outputs:
                raise DependencyNotReady(node.node_id, edge.source)
            if edge.edge_type is not EdgeType.DATA:
                continue
            outputs = self._outputs[edge.source]
            missing = [key for key in edge.carries if key not in outputs]
            if missing:
                raise DependencyNotReady(node.node_id, edge.source, missing)
            upstream[edge.source] = (
                {key: outputs[key] for key in edge.carries} if edge.carries else outputs
            )
        return upstream

    def _record_failure(self, node: ResourceNode, descriptor: Descriptor, report: NodeReport, exc: Exception) -> None:
        node.state = ResourceState.ERROR
        report.outcome = Outcome.FAILED
        report.reason = str(exc)
        report.error_type = type(exc).__name__
        if report.attempts == 0:
            report.attempts = 1
        if descriptor.halts_sequence(node, exc):
            self._halted_sequence.add(node.node_id)
        if descriptor.fatal:
            fatal = FatalProvisioningError(node.node_id, exc)
            self._fatal_node = node.node_id
            report.reason = str(fatal)
            _log.error("fatal_node_failure", node=node.node_id, kind=node.kind.value, error=str(exc))
        elif isinstance(exc, DependencyNotReady):
            _log.error("orchestrator_defect", node=node.node_id, error=str(exc))
        elif isinstance(exc, EksOrchError):
            _log.warning(
                "node_failed",
                node=node.node_id,
                kind=node.kind.value,
                error_type=report.error_type,
                error=str(exc),
            )
        else:
            _log.error("node_failed_unexpectedly", node=node.node_id, error=str(exc), exc_info=True)

    # ------------------------------------------------------------------
    # Destroy
    # ------------------------------------------------------------------

    async def _refresh(self) -> dict[str, str | None]:
        """Resolve each external node's resource id from current state.

        A node whose id cannot be derived (its parent is already gone) is
        treated as absent: cluster-scoped children do not outlive the cluster.
        """
        resource_ids: dict[str, str | None] = {}
        for node_id in self._graph.topological_order():
            node = self._graph.node(node_id)
            descriptor = self._descriptor(node)
            if descriptor.local:
                if node.kind is ResourceKind.LABEL:
                    self._outputs[node_id] = await descriptor.evaluate(node, {}, self._context)
                continue
            upstream = {
                edge.source: self._outputs[edge.source]
                for edge in self._graph.incoming(node_id)
                if edge.edge_type is EdgeType.DATA and edge.source in self._outputs
            }
            try:
                resource_id = descriptor.resource_id(node, upstream)
            except DependencyNotReady:
                resource_ids[node_id] = None
                continue
            record = await self._read(node.kind, resource_id)
            resource_ids[node_id] = resource_id if record is not None else None
            if record is not None:
                self._outputs[node_id] = descriptor.outputs(node, record)
        return resource_ids

    async def _destroy_node(self, node_id: str, resource_id: str | None) -> NodeReport:
        node = self._graph.node(node_id)
        descriptor = self._descriptor(node)
        report = NodeReport(node_id=node_id, kind=node.kind)
        started = time.monotonic()

        async with self._semaphore:
            if self._halted():
                return self._halted_report(node_id)
            if descriptor.local:
                report.outcome = Outcome.UNCHANGED
            elif resource_id is None:
                report.action = Action.NOOP
                report.outcome = Outcome.DESTROYED
                node.state = ResourceState.ABSENT
            else:
                report.action = Action.DELETE
                node.state = ResourceState.DELETING
                policy = self._retry if self._config.retry.retry_destroy else NO_RETRY
                try:
                    _, report.attempts = await call_with_retry(
                        lambda: self._delete(node.kind, resource_id), policy, label=node_id
                    )
                except Exception as exc:  # noqa: BLE001
                    node.state = ResourceState.ERROR
                    report.outcome = Outcome.FAILED
                    report.reason = str(exc)
                    report.error_type = type(exc).__name__
                    report.attempts = max(report.attempts, 1)
                    _log.warning("node_destroy_failed", node=node_id, error=str(exc))
                else:
                    node.state = ResourceState.ABSENT
                    node.outputs = {}
                    report.outcome = Outcome.DESTROYED
                    _log.info("node_destroyed", node=node_id, kind=node.kind.value, resource_id=resource_id)

        report.duration_s = time.monotonic() - started
        node_operations_total.labels(
            kind=node.kind.value, operation=report.action.value, outcome=report.outcome.value
        ).inc()
        return report

    async def _delete(self, kind: ResourceKind, resource_id: str) -> None:
        record = await self._provider.delete(kind, resource_id)
        if record is None:
            return
        settled = await self._wait(kind, resource_id)
        if settled is not None and settled.state is RemoteState.ERROR:
            raise ExternalServiceError(settled.message or f"delete of {kind.value} '{resource_id}' failed")

    # ------------------------------------------------------------------
    # Plan
    # ------------------------------------------------------------------

    async def _plan_node(self, node_id: str) -> NodeReport:
        node = self._graph.node(node_id)
        descriptor = self._descriptor(node)
        report = NodeReport(node_id=node_id, kind=node.kind)
        if descriptor.local:
            report.action = Action.EVALUATE
            try:
                self._outputs[node_id] = await descriptor.evaluate(node, {}, self._context)
            except EksOrchError as exc:
                report.outcome = Outcome.FAILED
                report.reason = str(exc)
                report.error_type = type(exc).__name__
            else:
                report.outputs = thaw(self._outputs[node_id])
            return report

        try:
            upstream = self._upstream(node)
        except DependencyNotReady as exc:
            report.action = Action.CREATE
            report.reason = f"inputs known after apply ({exc.dependency_id})"
            return report

        resource_id = descriptor.resource_id(node, upstream)
        record = await self._read(node.kind, resource_id)
        if record is None or record.state is RemoteState.ERROR:
            report.action = Action.CREATE
            return report
        self._outputs[node_id] = descriptor.outputs(node, record)
        desired = thaw(descriptor.render(node, upstream))
        report.action = Action.NOOP if descriptor.in_sync(node, thaw(record.config), desired) else Action.UPDATE
        report.outputs = thaw(self._outputs[node_id])
        return report

    # ------------------------------------------------------------------
    # Provider helpers
    # ------------------------------------------------------------------

    async def _read(self, kind: ResourceKind, resource_id: str) -> ResourceRecord | None:
        record, _ = await call_with_retry(
            lambda: self._provider.read(kind, resource_id), self._retry, label=resource_id
        )
        return record

    async def _wait(self, kind: ResourceKind, resource_id: str) -> ResourceRecord | None:
        """Poll until the record is terminal or gone."""
        timeout = self._config.execution.operation_timeout
        interval = self._config.execution.poll_interval
        deadline = time.monotonic() + timeout
        while True:
            record = await self._provider.poll(kind, resource_id)
            if record is None or record.state is not RemoteState.PENDING:
                return record
            if time.monotonic() >= deadline:
                raise ExternalServiceError(f"{kind.value} '{resource_id}' still pending after {timeout:.0f}s")
            await asyncio.sleep(interval)

    # ------------------------------------------------------------------
    # Misc
    # ------------------------------------------------------------------

    def _descriptor(self, node: ResourceNode) -> Descriptor:
        try:
            return self._descriptors[node.kind]
        except KeyError:
            raise ValidationError(f"no descriptor for kind '{node.kind}'", node.node_id) from None

    def _new_report(self, operation: Operation, order: list[str]) -> RunReport:
        self._cancelled = False
        self._fatal_node = ""
        self._halted_sequence.clear()
        self._outputs.clear()
        report = RunReport(operation=operation, order=order)
        for node_id in order:
            node = self._graph.node(node_id)
            report.add(NodeReport(node_id=node_id, kind=node.kind))
        return report

    def _finish(self, report: RunReport) -> RunReport:
        report.finished_at = datetime.now(tz=UTC)
        report.fatal_node = self._fatal_node
        report.cancelled = self._cancelled
        _log.info(
            f"{report.operation.value}_finished",
            succeeded=report.succeeded,
            partial=report.partial,
            failed=report.with_outcome(Outcome.FAILED),
            skipped=report.with_outcome(Outcome.SKIPPED),
            cancelled=report.cancelled,
        )
        return report
