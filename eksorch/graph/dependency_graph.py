"""In-memory DAG of ResourceNodes with typed edges.

Edges point from a prerequisite to its dependent. The graph refuses any
edge that would introduce a cycle, so a topological order always exists.
Ordering helpers are deterministic: ties are broken by insertion order.

TEARDOWN edges only constrain destroy: they are left out of the apply
queries (dependencies, ancestors, topological order, levels) and folded
into ``teardown_order`` and cycle detection.
"""

from __future__ import annotations

from collections import deque
from typing import TYPE_CHECKING

from eksorch.errors import ValidationError
from eksorch.graph.models import DependencyRef, GraphEdge

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    from eksorch.models.resources import ResourceNode


class DependencyGraph:
    """Fixed, acyclic resource graph."""

    def __init__(self) -> None:
        self._nodes: dict[str, ResourceNode] = {}
        # target -> ordered incoming edges
        self._incoming: dict[str, list[GraphEdge]] = {}
        # source -> ordered outgoing edges
        self._outgoing: dict[str, list[GraphEdge]] = {}

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    def add_node(self, node: ResourceNode) -> None:
        """Add *node* and every edge declared in ``node.depends_on``.

        Dependencies must already be present in the graph.
        """
        if node.node_id in self._nodes:
            raise ValidationError(f"duplicate node id '{node.node_id}'", node.node_id)
        declared: dict[str, DependencyRef] = {}
        for ref in node.depends_on:
            if ref.node_id not in self._nodes:
                raise ValidationError(
                    f"node '{node.node_id}' depends on unknown node '{ref.node_id}'",
                    node.node_id,
                    "depends_on",
                )
            if declared.setdefault(ref.node_id, ref) != ref:
                raise ValidationError(
                    f"node '{node.node_id}' declares conflicting edges from '{ref.node_id}'",
                    node.node_id,
                    "depends_on",
                )
        self._nodes[node.node_id] = node
        self._incoming[node.node_id] = []
        self._outgoing[node.node_id] = []
        for ref in node.depends_on:
            self.add_edge(ref.node_id, node.node_id, ref)

    def add_edge(self, source: str, target: str, ref: DependencyRef) -> None:
        """Add a typed edge ``source -> target``; rejects cycles and self loops.

        Repeating an identical edge is a no-op. A second edge between the
        same pair with a different type or payload is rejected.
        """
        for node_id in (source, target):
            if node_id not in self._nodes:
                raise ValidationError(f"unknown node '{node_id}'", node_id)
        existing = next((e for e in self._incoming[target] if e.source == source), None)
        if existing is not None:
            if existing.edge_type is ref.edge_type and existing.carries == ref.carries:
                return
            raise ValidationError(
                f"conflicting edges {source} -> {target}: "
                f"{existing.edge_type.value}{list(existing.carries)} vs {ref.edge_type.value}{list(ref.carries)}",
                target,
                "depends_on",
            )
        if source == target or self._reachable(target, source):
            raise ValidationError(f"edge {source} -> {target} would create a cycle", target, "depends_on")
        edge = GraphEdge(source=source, target=target, edge_type=ref.edge_type, carries=ref.carries)
        self._incoming[target].append(edge)
        self._outgoing[source].append(edge)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __iter__(self) -> Iterator[ResourceNode]:
        return iter(self._nodes.values())

    def __len__(self) -> int:
        return len(self._nodes)

    def node(self, node_id: str) -> ResourceNode:
        return self._nodes[node_id]

    @property
    def node_count(self) -> int:
        return len(self._nodes)

    @property
    def edge_count(self) -> int:
        return sum(len(edges) for edges in self._incoming.values())

    def incoming(self, node_id: str) -> list[GraphEdge]:
        return list(self._incoming[node_id])

    def outgoing(self, node_id: str) -> list[GraphEdge]:
        return list(self._outgoing[node_id])

    def dependencies(self, node_id: str) -> list[str]:
        return [e.source for e in self._incoming[node_id] if e.applies]

    def dependents(self, node_id: str) -> list[str]:
        return [e.target for e in self._outgoing[node_id] if e.applies]

    def descendants(self, node_id: str) -> list[str]:
        """Every node transitively depending on *node_id*, in BFS order."""
        return self._walk(node_id, self.dependents)

    def ancestors(self, node_id: str) -> list[str]:
        """Every node *node_id* transitively depends on, in BFS order."""
        return self._walk(node_id, self.dependencies)

    def roots(self) -> list[str]:
        return [n for n in self._nodes if not self.dependencies(n)]

    def topological_order(self) -> list[str]:
        """Kahn's algorithm over apply edges; ties broken by insertion order."""
        return self._kahn(self.dependencies, self.dependents)

    def teardown_order(self) -> list[str]:
        """Dependents before their dependencies, TEARDOWN edges included."""
        return list(reversed(self._kahn(self._sources, self._targets)))

    def levels(self) -> list[list[str]]:
        """Group nodes into waves that may run in parallel."""
        depth: dict[str, int] = {}
        for node_id in self.topological_order():
            deps = self.dependencies(node_id)
            depth[node_id] = 1 + max((depth[d] for d in deps), default=-1)
        waves: list[list[str]] = [[] for _ in range(max(depth.values(), default=-1) + 1)]
        for node_id, level in depth.items():
            waves[level].append(node_id)
        return waves

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _sources(self, node_id: str) -> list[str]:
        return [e.source for e in self._incoming[node_id]]

    def _targets(self, node_id: str) -> list[str]:
        return [e.target for e in self._outgoing[node_id]]

    def _kahn(self, before: Callable[[str], list[str]], after: Callable[[str], list[str]]) -> list[str]:
        remaining = {n: len(before(n)) for n in self._nodes}
        ready = deque(n for n in self._nodes if remaining[n] == 0)
        order: list[str] = []
        while ready:
            current = ready.popleft()
            order.append(current)
            for dependent in after(current):
                remaining[dependent] -= 1
                if remaining[dependent] == 0:
                    ready.append(dependent)
        if len(order) != len(self._nodes):
            # Unreachable while add_edge rejects cycles.
            raise ValidationError("dependency graph contains a cycle")
        return order

    def _reachable(self, start: str, goal: str) -> bool:
        return goal in self._walk(start, self._targets)

    @staticmethod
    def _walk(start: str, step: Callable[[str], list[str]]) -> list[str]:
        seen: dict[str, None] = {}
        queue = deque(step(start))
        while queue:
            current = queue.popleft()
            if current in seen:
                continue
            seen[current] = None
            queue.extend(step(current))
        return list(seen)
