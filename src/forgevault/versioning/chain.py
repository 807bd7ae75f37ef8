"""Version-chain reconstruction from parent pointers.

Versions sharing a canonical name form a forest: each version points at
the version it was published from. The chain is the depth-first,
chronological walk of that forest. Dangling parent pointers turn a node
into an extra root, and parent-pointer cycles are broken rather than
followed, so every version appears exactly once.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime

import networkx as nx

from forgevault.models.component import Version


@dataclass
class ChainNode:
    id: str
    component_id: str
    version: int
    semver: str
    parent_id: str | None
    created_at: datetime
    depth: int = 0
    children: list[str] = field(default_factory=list)
    refs: list[str] = field(default_factory=list)
    is_orphan: bool = False

    @property
    def is_head(self) -> bool:
        return not self.children

    @property
    def is_branch_point(self) -> bool:
        return len(self.children) > 1


@dataclass
class VersionChain:
    canonical_name: str
    nodes: list[ChainNode] = field(default_factory=list)
    roots: list[str] = field(default_factory=list)
    orphans: list[str] = field(default_factory=list)
    cycles: list[list[str]] = field(default_factory=list)
    problems: list[str] = field(default_factory=list)

    @property
    def ids(self) -> list[str]:
        return [node.id for node in self.nodes]

    @property
    def heads(self) -> list[str]:
        return [node.id for node in self.nodes if node.is_head]

    @property
    def branch_points(self) -> list[str]:
        return [node.id for node in self.nodes if node.is_branch_point]

    def get(self, version_id: str) -> ChainNode | None:
        for node in self.nodes:
            if node.id == version_id:
                return node
        return None


def _chronological(version: Version) -> tuple[datetime, int, str]:
    return version.created_at, version.version, version.id


def _graph(by_id: Mapping[str, Version]) -> nx.DiGraph:
    graph = nx.DiGraph()
    graph.add_nodes_from(by_id)
    for version in by_id.values():
        if version.parent_version_id and version.parent_version_id in by_id:
            graph.add_edge(version.parent_version_id, version.id)
    return graph


def build_version_chain(
    canonical_name: str,
    versions: Sequence[Version],
    refs: Mapping[str, str] | None = None,
) -> VersionChain:
    """Build the chronological chain for all versions of one canonical name.

    ``refs`` maps ref names to version ids; each node lists the refs that
    point at it.
    """
    by_id = {v.id: v for v in versions}
    graph = _graph(by_id)
    chain = VersionChain(canonical_name=canonical_name)

    pointers: dict[str, list[str]] = {}
    for ref_name, target in sorted((refs or {}).items()):
        pointers.setdefault(target, []).append(ref_name)

    nodes: dict[str, ChainNode] = {}
    for version in by_id.values():
        children = sorted(
            (by_id[c] for c in graph.successors(version.id) if c != version.id),
            key=_chronological,
        )
        orphan = bool(version.parent_version_id) and version.parent_version_id not in by_id
        nodes[version.id] = ChainNode(
            id=version.id,
            component_id=version.component_id,
            version=version.version,
            semver=version.semver,
            parent_id=version.parent_version_id,
            created_at=version.created_at,
            children=[c.id for c in children],
            refs=pointers.get(version.id, []),
            is_orphan=orphan,
        )
        if orphan:
            chain.orphans.append(version.id)

    ordered = sorted(by_id.values(), key=_chronological)
    roots = [
        v.id for v in ordered if not v.parent_version_id or v.parent_version_id not in by_id
    ]
    visited: set[str] = set()

    def walk(root: str) -> None:
        stack = [(root, 0)]
        while stack:
            node_id, depth = stack.pop()
            if node_id in visited:
                continue
            visited.add(node_id)
            node = nodes[node_id]
            node.depth = depth
            chain.nodes.append(node)
            for child in reversed(node.children):
                if child not in visited:
                    stack.append((child, depth + 1))

    for root in roots:
        chain.roots.append(root)
        walk(root)

    # Whatever is left hangs off a parent cycle; enter it at its oldest member
    for version in ordered:
        if version.id not in visited:
            chain.roots.append(version.id)
            walk(version.id)

    chain.cycles = [sorted(cycle) for cycle in nx.simple_cycles(graph)]
    chain.problems = validate_chain(versions)
    return chain


def validate_chain(versions: Sequence[Version]) -> list[str]:
    """Describe structural problems: dangling parents, cycles, duplicate numbers."""
    problems: list[str] = []
    by_id = {v.id: v for v in versions}
    for version in sorted(by_id.values(), key=_chronological):
        parent = version.parent_version_id
        if parent and parent not in by_id:
            problems.append(f"{version.id}: parent {parent} is missing")
    for cycle in nx.simple_cycles(_graph(by_id)):
        problems.append("cycle: " + " -> ".join(sorted(cycle)))
    seen: dict[tuple[str, int], str] = {}
    for version in versions:
        key = (version.component_id, version.version)
        if key in seen and seen[key] != version.id:
            problems.append(f"{version.id}: duplicates version {version.version} of {key[0]}")
        seen[key] = version.id
    return problems
