"""
Commit order calculation over entity types.

Nodes are entity type names; an edge ``a -> b`` means rows of ``a`` should be
written before rows of ``b``. Required edges weigh 1 and optional edges 0.
The sort is a depth-first topological sort that tolerates cycles: when a
back edge is met, the lighter side of the cycle is emitted first, otherwise
the back edge is simply violated. Cyclic references that still point at
unwritten rows are fixed up later by extra updates.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List


class VisitState(Enum):
    NOT_VISITED = 0
    IN_PROGRESS = 1
    VISITED = 2


@dataclass
class Edge:
    source: str
    target: str
    weight: int


@dataclass
class Node:
    name: str
    state: VisitState = VisitState.NOT_VISITED
    dependencies: Dict[str, Edge] = field(default_factory=dict)


class CommitOrderCalculator:
    def __init__(self) -> None:
        self._nodes: Dict[str, Node] = {}
        self._sorted: List[str] = []

    def has_node(self, name: str) -> bool:
        return name in self._nodes

    def add_node(self, name: str) -> None:
        self._nodes.setdefault(name, Node(name))

    def add_dependency(self, source: str, target: str, weight: int = 1) -> None:
        """
        Record that ``source`` must be written before ``target``.

        A repeated edge keeps the heavier weight.
        """
        node = self._nodes[source]
        existing = node.dependencies.get(target)
        if existing is not None and existing.weight >= weight:
            return
        node.dependencies[target] = Edge(source, target, weight)

    def sort(self) -> List[str]:
        """
        Return the node names in commit order. Nodes without ordering
        constraints keep their insertion order.
        """
        self._sorted = []
        for node in self._nodes.values():
            node.state = VisitState.NOT_VISITED

        for node in list(self._nodes.values())[::-1]:
            if node.state is VisitState.NOT_VISITED:
                self._visit(node)

        result = self._sorted[::-1]
        self._sorted = []
        return result

    def _visit(self, node: Node) -> None:
        node.state = VisitState.IN_PROGRESS

        for edge in node.dependencies.values():
            target = self._nodes[edge.target]
            if target.state is VisitState.VISITED:
                continue
            if target.state is VisitState.IN_PROGRESS:
                self._visit_open_node(node, target, edge)
            else:
                self._visit(target)

        if node.state is not VisitState.VISITED:
            node.state = VisitState.VISITED
            self._sorted.append(node.name)

    def _visit_open_node(self, node: Node, target: Node, edge: Edge) -> None:
        back_edge = target.dependencies.get(node.name)
        if back_edge is None or back_edge.weight >= edge.weight:
            return

        for dependency in target.dependencies.values():
            dependency_node = self._nodes[dependency.target]
            if dependency_node.state is VisitState.NOT_VISITED:
                self._visit(dependency_node)

        target.state = VisitState.VISITED
        self._sorted.append(target.name)
