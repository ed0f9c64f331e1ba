"""Per-node status report returned by apply and destroy runs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from eksorch.models.resources import ResourceKind, thaw


class Operation(StrEnum):
    APPLY = "apply"
    DESTROY = "destroy"
    PLAN = "plan"


class Action(StrEnum):
    """What the executor did (or would do) to a node."""

    EVALUATE = "evaluate"  # local node, no external call
    CREATE = "create"
    UPDATE = "update"
    NOOP = "noop"
    DELETE = "delete"
    NONE = "none"  # never started


class Outcome(StrEnum):
    """Terminal status of a node after a run."""

    READY = "ready"
    UNCHANGED = "unchanged"
    DESTROYED = "destroyed"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"
    PENDING = "pending"  # planned only


_SUCCESS = frozenset({Outcome.READY, Outcome.UNCHANGED, Outcome.DESTROYED})


@dataclass
class NodeReport:
    """Status of one node: ready/failed plus the reason."""

    node_id: str
    kind: ResourceKind
    outcome: Outcome = Outcome.PENDING
    action: Action = Action.NONE
    attempts: int = 0
    reason: str = ""
    error_type: str = ""
    blocked_by: str = ""
    outputs: dict[str, Any] = field(default_factory=dict)
    duration_s: float = 0.0

    @property
    def ok(self) -> bool:
        return self.outcome in _SUCCESS

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "node": self.node_id,
            "kind": self.kind.value,
            "outcome": self.outcome.value,
            "action": self.action.value,
            "attempts": self.attempts,
            "duration_s": round(self.duration_s, 3),
        }
        if self.reason:
            data["reason"] = self.reason
        if self.error_type:
            data["error_type"] = self.error_type
        if self.blocked_by:
            data["blocked_by"] = self.blocked_by
        if self.outputs:
            data["outputs"] = thaw(self.outputs)
        return data


@dataclass
class RunReport:
    """Aggregate of every NodeReport in a run.

    A partially-successful convergence (some nodes ready, others failed or
    skipped) is distinguishable from total failure via ``partial``.
    """

    operation: Operation
    nodes: dict[str, NodeReport] = field(default_factory=dict)
    order: list[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    finished_at: datetime | None = None
    fatal_node: str = ""
    cancelled: bool = False

    def add(self, report: NodeReport) -> None:
        self.nodes[report.node_id] = report

    def __getitem__(self, node_id: str) -> NodeReport:
        return self.nodes[node_id]

    @property
    def succeeded(self) -> bool:
        return bool(self.nodes) and all(r.ok for r in self.nodes.values())

    @property
    def partial(self) -> bool:
        oks = [r.ok for r in self.nodes.values()]
        return any(oks) and not all(oks)

    def with_outcome(self, outcome: Outcome) -> list[str]:
        return [node_id for node_id, r in self.nodes.items() if r.outcome is outcome]

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation.value,
            "succeeded": self.succeeded,
            "partial": self.partial,
            "cancelled": self.cancelled,
            "fatal_node": self.fatal_node or None,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "order": list(self.order),
            "nodes": [self.nodes[n].to_dict() for n in self._ordered_ids()],
        }

    def _ordered_ids(self) -> list[str]:
        seen = [n for n in self.order if n in self.nodes]
        return seen + [n for n in self.nodes if n not in seen]
