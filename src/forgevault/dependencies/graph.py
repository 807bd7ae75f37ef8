"""Component dependency graph using networkx."""

from __future__ import annotations

from collections.abc import Iterable

import networkx as nx


class DependencyCycleError(ValueError):
    def __init__(self, cycles: list[list[str]]) -> None:
        super().__init__(
            "Dependency cycles: " + "; ".join(" -> ".join(cycle) for cycle in cycles)
        )
        self.cycles = cycles


def _rotate(cycle: list[str]) -> list[str]:
    start = cycle.index(min(cycle))
    return cycle[start:] + cycle[:start]


class DependencyGraph:
    """Directed graph of ``component -> depends_on`` edges."""

    def __init__(self) -> None:
        self._graph = nx.DiGraph()

    @classmethod
    def from_edges(cls, edges: Iterable[tuple[str, str]]) -> DependencyGraph:
        graph = cls()
        for component_id, depends_on in edges:
            graph.add_edge(component_id, depends_on)
        return graph

    def add_edge(self, component_id: str, depends_on: str) -> None:
        self._graph.add_edge(component_id, depends_on)

    @property
    def nodes(self) -> list[str]:
        return sorted(self._graph.nodes)

    @property
    def edges(self) -> list[tuple[str, str]]:
        return sorted(self._graph.edges)

    def dependencies_of(self, component_id: str, *, transitive: bool = False) -> list[str]:
        if component_id not in self._graph:
            return []
        if transitive:
            return sorted(nx.descendants(self._graph, component_id) - {component_id})
        return sorted(self._graph.successors(component_id))

    def dependents_of(self, component_id: str, *, transitive: bool = False) -> list[str]:
        if component_id not in self._graph:
            return []
        if transitive:
            return sorted(nx.ancestors(self._graph, component_id) - {component_id})
        return sorted(self._graph.predecessors(component_id))

    def find_cycles(self) -> list[list[str]]:
        """Every elementary cycle, each rotated to start at its smallest id."""
        return sorted(_rotate(list(cycle)) for cycle in nx.simple_cycles(self._graph))

    def has_cycles(self) -> bool:
        return not nx.is_directed_acyclic_graph(self._graph)

    def topological_order(self) -> list[str]:
        """Dependencies before their dependents. Raises on a cycle."""
        if self.has_cycles():
            raise DependencyCycleError(self.find_cycles())
        return list(reversed(list(nx.lexicographical_topological_sort(self._graph))))
