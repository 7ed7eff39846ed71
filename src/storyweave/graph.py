"""Build a positioned tree from a flat collection of story nodes.

The builder is a pure function of the node snapshot it receives. Collaborative
data is eventually consistent, so dangling parent references and even parent
cycles are expected transiently; both are absorbed here instead of raised:

* a node whose parent is absent from the snapshot is laid out as a root;
* an ancestry walk that revisits a node places the walk's starting node at
  level 0 and stops.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Sequence, Tuple

from .models import StoryNode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GraphLayout:
    """Spacing used when assigning coordinates to graph nodes.

    ``sort_by_order`` orders nodes within a level by their insertion sequence
    so that snapshots delivered in a different order do not shuffle the
    rendered tree. When disabled, nodes keep their relative input order.
    """

    horizontal_spacing: float = 250.0
    vertical_spacing: float = 150.0
    sort_by_order: bool = True

    def __post_init__(self) -> None:
        for name in ("horizontal_spacing", "vertical_spacing"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise TypeError(f"{name} must be a number, got {type(value)!r}")
            if value <= 0:
                raise ValueError(f"{name} must be greater than zero")
            object.__setattr__(self, name, float(value))


@dataclass(frozen=True)
class PositionedNode:
    """A story node with its computed coordinates and depth."""

    id: str
    x: float
    y: float
    level: int
    source_node: StoryNode

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "x": self.x,
            "y": self.y,
            "level": self.level,
            "node": self.source_node.to_payload(),
        }


@dataclass(frozen=True)
class GraphEdge:
    """Directed link from a parent node to one of its children."""

    source_id: str
    target_id: str
    is_canon_path: bool = False

    def to_payload(self) -> Dict[str, Any]:
        return {
            "source": self.source_id,
            "target": self.target_id,
            "isCanonPath": self.is_canon_path,
        }


@dataclass(frozen=True)
class StoryGraph:
    """Positioned nodes and edges ready to be rendered."""

    positioned_nodes: Tuple[PositionedNode, ...] = field(default_factory=tuple)
    edges: Tuple[GraphEdge, ...] = field(default_factory=tuple)

    @property
    def is_empty(self) -> bool:
        return not self.positioned_nodes

    @property
    def roots(self) -> Tuple[PositionedNode, ...]:
        """Return the nodes laid out on the top level."""

        return tuple(node for node in self.positioned_nodes if node.level == 0)

    @property
    def max_level(self) -> int:
        """Return the deepest level in the graph, or ``-1`` when empty."""

        return max((node.level for node in self.positioned_nodes), default=-1)

    def node(self, node_id: str) -> PositionedNode | None:
        for positioned in self.positioned_nodes:
            if positioned.id == node_id:
                return positioned
        return None

    def levels(self) -> Dict[int, Tuple[PositionedNode, ...]]:
        """Group positioned nodes by level, left to right."""

        grouped: Dict[int, List[PositionedNode]] = defaultdict(list)
        for positioned in self.positioned_nodes:
            grouped[positioned.level].append(positioned)
        return {
            level: tuple(sorted(group, key=lambda item: item.x))
            for level, group in sorted(grouped.items())
        }

    def to_payload(self) -> Dict[str, Any]:
        return {
            "nodes": [node.to_payload() for node in self.positioned_nodes],
            "edges": [edge.to_payload() for edge in self.edges],
        }


def index_nodes(nodes: Iterable[StoryNode]) -> Dict[str, StoryNode]:
    """Return ``nodes`` keyed by id; later duplicates replace earlier ones."""

    return {node.id: node for node in nodes}


def compute_node_levels(nodes: Sequence[StoryNode]) -> Dict[str, int]:
    """Return the distance from every node to its nearest root.

    The walk is iterative. Each walk collects the chain of ancestors it visits
    until it reaches a root, an already resolved node or a node it has seen
    before during the same walk. In the last case the chain is a cycle: the
    node the walk started from is placed at level 0 and the remaining members
    are resolved by their own walks relative to it.
    """

    by_id = index_nodes(nodes)
    levels: Dict[str, int] = {}

    for node in nodes:
        if node.id in levels:
            continue

        chain: List[str] = []
        seen: set[str] = set()
        current: str | None = node.id
        base_level = -1
        cycle = False

        while current is not None:
            if current in levels:
                base_level = levels[current]
                break
            if current in seen:
                cycle = True
                break

            seen.add(current)
            chain.append(current)

            parent_id = by_id[current].parent_id
            if parent_id is None:
                break
            if parent_id not in by_id:
                logger.debug(
                    "Node %s references missing parent %s; treating as root",
                    current,
                    parent_id,
                )
                break
            current = parent_id

        if cycle:
            logger.debug("Parent cycle detected while walking from node %s", node.id)
            levels[node.id] = 0
            continue

        # ``chain`` runs from the starting node up to the topmost ancestor.
        for offset, member in enumerate(reversed(chain)):
            levels[member] = base_level + 1 + offset

    return levels


def build_graph(
    nodes: Sequence[StoryNode], layout: GraphLayout | None = None
) -> StoryGraph:
    """Lay out ``nodes`` as a top-down tree and collect parent/child edges.

    Every level is centred on ``x == 0``. The function never raises for
    dangling parents or cycles and returns an empty graph for an empty input.
    """

    resolved_layout = layout or GraphLayout()
    snapshot = list(nodes)
    if not snapshot:
        return StoryGraph()

    levels = compute_node_levels(snapshot)
    by_id = index_nodes(snapshot)

    grouped: Dict[int, List[Tuple[int, StoryNode]]] = defaultdict(list)
    placed: set[str] = set()
    for position, node in enumerate(snapshot):
        if node.id in placed:
            continue
        placed.add(node.id)
        grouped[levels[node.id]].append((position, by_id[node.id]))

    positioned: List[PositionedNode] = []
    for level in sorted(grouped):
        group = grouped[level]
        if resolved_layout.sort_by_order:
            group = sorted(group, key=lambda entry: (entry[1].order, entry[0]))
        centre = (len(group) - 1) / 2
        for index, (_, node) in enumerate(group):
            positioned.append(
                PositionedNode(
                    id=node.id,
                    x=(index - centre) * resolved_layout.horizontal_spacing,
                    y=level * resolved_layout.vertical_spacing,
                    level=level,
                    source_node=node,
                )
            )

    edges = tuple(
        GraphEdge(
            source_id=node.parent_id,
            target_id=node.id,
            is_canon_path=node.is_canon,
        )
        for node in (by_id[node_id] for node_id in _unique_ids(snapshot))
        if node.parent_id is not None and node.parent_id in by_id
    )

    return StoryGraph(positioned_nodes=tuple(positioned), edges=edges)


def _unique_ids(nodes: Sequence[StoryNode]) -> List[str]:
    seen: set[str] = set()
    ordered: List[str] = []
    for node in nodes:
        if node.id not in seen:
            seen.add(node.id)
            ordered.append(node.id)
    return ordered


def children_by_parent(nodes: Iterable[StoryNode]) -> Mapping[str, Tuple[StoryNode, ...]]:
    """Return child nodes grouped by parent id, preserving input order."""

    grouped: Dict[str, List[StoryNode]] = defaultdict(list)
    for node in nodes:
        if node.parent_id is not None:
            grouped[node.parent_id].append(node)
    return {parent: tuple(children) for parent, children in grouped.items()}


__all__ = [
    "GraphEdge",
    "GraphLayout",
    "PositionedNode",
    "StoryGraph",
    "build_graph",
    "children_by_parent",
    "compute_node_levels",
    "index_nodes",
]
