from __future__ import annotations

from collections import deque
from dataclasses import dataclass

from diforge._internal.definitions import ServiceId
from diforge._internal.registry import DefinitionRegistry
from diforge.exceptions import CyclicServiceGraphError


@dataclass(frozen=True, slots=True)
class Edge:
    """A dependency edge ``source -> target``."""

    source: ServiceId
    target: ServiceId
    lazy: bool


def build_edges(graph: DefinitionRegistry) -> dict[ServiceId, list[Edge]]:
    """Collect service-reference edges for every definition in ``graph``.

    Optional references to missing services are not edges. An edge is lazy
    when the reference is lazy or when its target definition is lazy.
    """
    edges: dict[ServiceId, list[Edge]] = {}
    for definition in graph.definitions():
        outgoing = edges.setdefault(definition.id, [])
        for reference in definition.references():
            target_id = graph.resolve_alias(reference.id)
            target = graph.find(target_id)
            if target is None:
                continue
            outgoing.append(Edge(definition.id, target_id, reference.lazy or target.lazy))
    return edges


def strongly_connected_components(
    edges: dict[ServiceId, list[Edge]],
) -> dict[ServiceId, int]:
    """Number the strongly connected components of ``edges``, iteratively (Tarjan)."""
    index_of: dict[ServiceId, int] = {}
    low_link: dict[ServiceId, int] = {}
    on_stack: set[ServiceId] = set()
    stack: list[ServiceId] = []
    component_of: dict[ServiceId, int] = {}
    counter = 0
    component_count = 0

    for root in sorted(edges):
        if root in index_of:
            continue
        work: list[tuple[ServiceId, int]] = [(root, 0)]
        while work:
            node, next_edge = work.pop()
            if next_edge == 0:
                index_of[node] = low_link[node] = counter
                counter += 1
                stack.append(node)
                on_stack.add(node)

            outgoing = edges.get(node, [])
            descended = False
            while next_edge < len(outgoing):
                target = outgoing[next_edge].target
                next_edge += 1
                if target not in index_of:
                    work.append((node, next_edge))
                    work.append((target, 0))
                    descended = True
                    break
                if target in on_stack:
                    low_link[node] = min(low_link[node], index_of[target])
            if descended:
                continue

            if low_link[node] == index_of[node]:
                while True:
                    member = stack.pop()
                    on_stack.discard(member)
                    component_of[member] = component_count
                    if member == node:
                        break
                component_count += 1
            if work:
                parent = work[-1][0]
                low_link[parent] = min(low_link[parent], low_link[node])

    return component_of


class GraphValidator:
    """Detect dependency cycles that cannot be constructed.

    A cycle is tolerated only when every edge on it is lazy: such a cycle is
    broken at run time by deferred handles. Strongly connected components are
    found with an iterative depth-first search; any eager edge inside a
    component closes a fatal cycle, reported as the shortest cycle through that
    edge.
    """

    def validate(self, graph: DefinitionRegistry) -> None:
        """Raise ``CyclicServiceGraphError`` for the first fatal cycle found."""
        edges = build_edges(graph)
        component_of = strongly_connected_components(edges)
        for source in sorted(edges):
            for edge in edges[source]:
                if edge.lazy:
                    continue
                if component_of[edge.source] != component_of[edge.target]:
                    continue
                raise CyclicServiceGraphError(self._shortest_cycle(edges, edge, component_of))

    def _shortest_cycle(
        self,
        edges: dict[ServiceId, list[Edge]],
        edge: Edge,
        component_of: dict[ServiceId, int],
    ) -> list[ServiceId]:
        if edge.source == edge.target:
            return [edge.source, edge.source]

        component = component_of[edge.source]
        previous: dict[ServiceId, ServiceId] = {}
        queue = deque([edge.target])
        seen = {edge.target}
        while queue:
            node = queue.popleft()
            if node == edge.source:
                break
            for outgoing in edges.get(node, []):
                target = outgoing.target
                if target in seen or component_of.get(target) != component:
                    continue
                seen.add(target)
                previous[target] = node
                queue.append(target)

        path = [edge.source]
        while path[-1] != edge.target:
            path.append(previous[path[-1]])
        path.reverse()
        return [edge.source, *path]


__all__ = ["Edge", "GraphValidator", "build_edges", "strongly_connected_components"]
