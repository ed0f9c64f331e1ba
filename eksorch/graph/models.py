"""Data structures for the resource dependency graph."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum


class EdgeType(StrEnum):
    """Kinds of dependency between resource nodes."""

    DATA = "data"  # dependent consumes outputs; dependency must be ready
    ORDER = "order"  # pure sequencing; dependency must be ready
    SEQUENCE = "sequence"  # declared list order; dependency must be settled
    TEARDOWN = "teardown"  # destroy only; the dependent is deleted first


@dataclass(frozen=True)
class DependencyRef:
    """A reference from a node to one of its prerequisites.

    ``carries`` names the output keys a DATA edge delivers to the dependent.
    """

    node_id: str
    edge_type: EdgeType = EdgeType.DATA
    carries: tuple[str, ...] = ()


def data(node_id: str, *carries: str) -> DependencyRef:
    return DependencyRef(node_id, EdgeType.DATA, tuple(carries))


def order(node_id: str) -> DependencyRef:
    return DependencyRef(node_id, EdgeType.ORDER)


def sequence(node_id: str) -> DependencyRef:
    return DependencyRef(node_id, EdgeType.SEQUENCE)


def teardown(node_id: str) -> DependencyRef:
    return DependencyRef(node_id, EdgeType.TEARDOWN)


@dataclass(frozen=True)
class GraphEdge:
    """A typed edge from a prerequisite (source) to its dependent (target)."""

    source: str
    target: str
    edge_type: EdgeType
    carries: tuple[str, ...] = field(default=())

    @property
    def applies(self) -> bool:
        """Whether apply honours this edge. Destroy honours every edge."""
        return self.edge_type is not EdgeType.TEARDOWN
