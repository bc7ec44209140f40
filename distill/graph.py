"""Code dependency graph and blast-radius queries over changed files."""

from __future__ import annotations

import os
from collections import defaultdict, deque
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path, PurePosixPath


class NodeType(str, Enum):
    """Kind of graph node."""

    FILE = "file"
    PACKAGE = "package"
    MODULE = "module"


@dataclass
class Node:
    """A file or package in the graph."""

    id: str
    type: NodeType = NodeType.FILE
    package: str = ""
    language: str = ""
    tags: list[str] = field(default_factory=list)


@dataclass
class Edge:
    """A directed dependency: ``source`` depends on ``target``."""

    source: str
    target: str
    weight: float = 1.0


@dataclass
class AffectedNode:
    """A node reached by a blast-radius query."""

    node: Node
    impact_score: float
    depth: int
    path: list[str]


@dataclass
class BlastRadiusResult:
    """Outcome of :meth:`Graph.blast_radius`."""

    changed: list[str]
    affected: list[AffectedNode] = field(default_factory=list)
    total_affected: int = 0
    max_depth: int = 0

    def summary(self) -> str:
        """Return a human-readable summary."""
        lines = [
            f"Changed: {len(self.changed)} file(s), Affected: {self.total_affected} file(s), "
            f"Max depth: {self.max_depth}\n"
        ]
        lines.extend(
            f"  [depth={a.depth} score={a.impact_score:.2f}] {a.node.id}\n" for a in self.affected
        )
        return "".join(lines)


@dataclass
class HubNode:
    """A node ID with its in-degree."""

    id: str
    in_degree: int


@dataclass
class GraphStats:
    """Aggregate statistics of a graph."""

    node_count: int = 0
    edge_count: int = 0
    max_in_degree: int = 0
    max_out_degree: int = 0
    top_hubs: list[HubNode] = field(default_factory=list)


class Graph:
    """An in-memory directed dependency graph."""

    def __init__(self) -> None:
        self._nodes: dict[str, Node] = {}
        self._out_edges: defaultdict[str, list[Edge]] = defaultdict(list)
        self._in_edges: defaultdict[str, list[Edge]] = defaultdict(list)

    def add_node(self, node: Node) -> None:
        """Add or replace a node."""
        self._nodes[node.id] = node

    def add_edge(self, edge: Edge) -> None:
        """Add a directed edge."""
        self._out_edges[edge.source].append(edge)
        self._in_edges[edge.target].append(edge)

    def node(self, node_id: str) -> Node | None:
        """Return the node with ``node_id``, or None."""
        return self._nodes.get(node_id)

    def node_count(self) -> int:
        return len(self._nodes)

    def edge_count(self) -> int:
        return sum(len(edges) for edges in self._out_edges.values())

    def dependents(self, node_id: str) -> list[Node]:
        """Return known nodes that directly depend on ``node_id``."""
        return [
            self._nodes[e.source] for e in self._in_edges.get(node_id, []) if e.source in self._nodes
        ]

    def dependencies(self, node_id: str) -> list[Node]:
        """Return known nodes that ``node_id`` directly depends on."""
        return [
            self._nodes[e.target] for e in self._out_edges.get(node_id, []) if e.target in self._nodes
        ]

    def blast_radius(self, changed_ids: list[str], max_depth: int = 0) -> BlastRadiusResult:
        """Return the nodes transitively affected by changes to ``changed_ids``.

        Walks reverse edges breadth-first; ``max_depth`` of 0 means unlimited.
        Results are ranked by impact score (halving per level), then by ID.
        """
        changed = list(changed_ids)
        result = BlastRadiusResult(changed=changed)
        visited = set(changed)
        queue = deque((node_id, 0, [node_id]) for node_id in changed)
        best: dict[str, tuple[int, list[str]]] = {}

        while queue:
            current, depth, path = queue.popleft()
            for edge in self._in_edges.get(current, []):
                dependent = edge.source
                if dependent in visited:
                    continue
                new_depth = depth + 1
                if max_depth > 0 and new_depth > max_depth:
                    continue
                visited.add(dependent)
                new_path = [*path, dependent]
                best[dependent] = (new_depth, new_path)
                result.max_depth = max(result.max_depth, new_depth)
                queue.append((dependent, new_depth, new_path))

        for node_id, (depth, path) in best.items():
            node = self._nodes.get(node_id) or Node(id=node_id, type=NodeType.FILE)
            result.affected.append(
                AffectedNode(node=node, impact_score=0.5 ** (depth - 1), depth=depth, path=path)
            )

        result.affected.sort(key=lambda a: (-a.impact_score, a.node.id))
        result.total_affected = len(result.affected)
        return result

    def stats(self) -> GraphStats:
        """Compute node/edge counts, maximum degrees and the top five hubs."""
        stats = GraphStats(node_count=self.node_count(), edge_count=self.edge_count())
        degrees = []
        for node_id in self._nodes:
            in_degree = len(self._in_edges.get(node_id, []))
            out_degree = len(self._out_edges.get(node_id, []))
            degrees.append((node_id, in_degree))
            stats.max_in_degree = max(stats.max_in_degree, in_degree)
            stats.max_out_degree = max(stats.max_out_degree, out_degree)
        degrees.sort(key=lambda d: d[1], reverse=True)
        stats.top_hubs = [HubNode(node_id, in_degree) for node_id, in_degree in degrees[:5]]
        return stats


def _skipped_dir(name: str) -> bool:
    return name.startswith(".") or name in ("vendor", "testdata")


def build_from_go_files(root: str | os.PathLike[str]) -> Graph:
    """Walk ``root`` and build a graph from Go import statements.

    Hidden, ``vendor`` and ``testdata`` directories are skipped; unreadable
    entries are ignored. Each import path becomes the target of an edge.
    """
    graph = Graph()
    root_path = Path(root)

    for dirpath, dirnames, filenames in os.walk(root_path):
        dirnames[:] = sorted(d for d in dirnames if not _skipped_dir(d))
        for filename in sorted(filenames):
            if not filename.endswith(".go"):
                continue
            path = Path(dirpath) / filename
            rel = PurePosixPath(path.relative_to(root_path).as_posix())
            package = str(rel.parent)
            graph.add_node(
                Node(
                    id=str(rel),
                    type=NodeType.FILE,
                    package="" if package == "." else package,
                    language="go",
                    tags=["test"] if filename.endswith("_test.go") else [],
                )
            )
            try:
                imports = parse_go_imports(path)
            except OSError:
                continue
            for imported in imports:
                graph.add_edge(Edge(source=str(rel), target=imported, weight=1.0))
    return graph


def parse_go_imports(path: str | os.PathLike[str]) -> list[str]:
    """Return the import paths declared in a Go source file."""
    imports: list[str] = []
    in_import = False
    with open(path, encoding="utf-8", errors="replace") as handle:
        for raw in handle:
            line = raw.strip()
            if line == "import (":
                in_import = True
                continue
            if in_import and line == ")":
                in_import = False
                continue
            if line.startswith("import ") and not in_import:
                imported = extract_import_path(line)
                if imported:
                    imports.append(imported)
                continue
            if in_import and line and not line.startswith("//"):
                imported = extract_import_path(line)
                if imported:
                    imports.append(imported)
    return imports


def extract_import_path(line: str) -> str:
    """Return the quoted import path in ``line``, or an empty string."""
    start = line.find('"')
    end = line.rfind('"')
    if start < 0 or end <= start:
        return ""
    return line[start + 1 : end]