"""Resource dependency graph for apply/destroy ordering.

Edges are first-class and typed: DATA edges carry outputs from a
prerequisite, ORDER edges only sequence, SEQUENCE edges preserve declared
list order between sibling steps such as add-ons, TEARDOWN edges only
constrain destroy.
"""

from eksorch.graph.dependency_graph import DependencyGraph
from eksorch.graph.models import DependencyRef, EdgeType, GraphEdge, data, order, sequence, teardown

__all__ = [
    "DependencyGraph",
    "DependencyRef",
    "EdgeType",
    "GraphEdge",
    "data",
    "order",
    "sequence",
    "teardown",
]
