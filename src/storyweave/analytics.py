"""Utilities for summarising the shape of a story's branch tree."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Sequence

from .graph import children_by_parent, compute_node_levels, index_nodes
from .models import StoryNode
from .reader import canonical_path


@dataclass(frozen=True)
class StoryGraphMetrics:
    """Summary statistics describing the breadth and health of a story tree."""

    node_count: int
    root_count: int
    orphan_count: int
    cycle_node_count: int
    max_level: int
    leaf_count: int
    branch_point_count: int
    canon_node_count: int
    total_votes: int
    contributor_count: int
    canonical_path_length: int

    @property
    def average_branching(self) -> float:
        """Return the mean number of children per non-leaf node."""

        parents = self.node_count - self.leaf_count
        if parents <= 0:
            return 0.0
        # Every node except the roots hangs off exactly one parent.
        return (self.node_count - self.root_count - self.orphan_count) / parents

    @property
    def is_well_formed(self) -> bool:
        """Return ``True`` for a single root with no dangling links or cycles."""

        return (
            self.root_count == 1
            and self.orphan_count == 0
            and self.cycle_node_count == 0
        )

    def to_payload(self) -> Dict[str, Any]:
        return {
            "node_count": self.node_count,
            "root_count": self.root_count,
            "orphan_count": self.orphan_count,
            "cycle_node_count": self.cycle_node_count,
            "max_level": self.max_level,
            "leaf_count": self.leaf_count,
            "branch_point_count": self.branch_point_count,
            "canon_node_count": self.canon_node_count,
            "total_votes": self.total_votes,
            "contributor_count": self.contributor_count,
            "canonical_path_length": self.canonical_path_length,
            "average_branching": self.average_branching,
            "is_well_formed": self.is_well_formed,
        }


@dataclass(frozen=True)
class StoryReachabilityReport:
    """Summary of which nodes can be read starting from a given node."""

    start_node: str
    reachable_nodes: tuple[str, ...]
    unreachable_nodes: tuple[str, ...]

    @property
    def reachable_count(self) -> int:
        return len(self.reachable_nodes)

    @property
    def unreachable_count(self) -> int:
        return len(self.unreachable_nodes)

    @property
    def fully_reachable(self) -> bool:
        """Return ``True`` if every node can be visited."""

        return self.unreachable_count == 0


def find_cycle_members(nodes: Sequence[StoryNode]) -> tuple[str, ...]:
    """Return the ids of nodes whose parent chain loops back on itself."""

    by_id = index_nodes(nodes)
    members: set[str] = set()
    cleared: set[str] = set()

    for node in by_id.values():
        walk: list[str] = []
        position: dict[str, int] = {}
        current: str | None = node.id
        while current is not None and current in by_id:
            if current in cleared or current in members:
                break
            if current in position:
                members.update(walk[position[current]:])
                break
            position[current] = len(walk)
            walk.append(current)
            current = by_id[current].parent_id
        cleared.update(item for item in walk if item not in members)

    return tuple(sorted(members))


def compute_story_metrics(nodes: Sequence[StoryNode]) -> StoryGraphMetrics:
    """Return structural metrics for ``nodes``."""

    by_id = index_nodes(nodes)
    unique_nodes = list(by_id.values())
    levels = compute_node_levels(unique_nodes)
    children = children_by_parent(unique_nodes)

    roots = [node for node in unique_nodes if node.parent_id is None]
    orphans = [
        node
        for node in unique_nodes
        if node.parent_id is not None and node.parent_id not in by_id
    ]
    leaves = [node for node in unique_nodes if node.id not in children]
    branch_points = [
        parent for parent, kids in children.items() if parent in by_id and len(kids) > 1
    ]
    contributors = {node.author_id for node in unique_nodes}

    return StoryGraphMetrics(
        node_count=len(unique_nodes),
        root_count=len(roots),
        orphan_count=len(orphans),
        cycle_node_count=len(find_cycle_members(unique_nodes)),
        max_level=max(levels.values(), default=-1),
        leaf_count=len(leaves),
        branch_point_count=len(branch_points),
        canon_node_count=sum(1 for node in unique_nodes if node.is_canon),
        total_votes=sum(node.votes for node in unique_nodes),
        contributor_count=len(contributors),
        canonical_path_length=len(canonical_path(unique_nodes)),
    )


def compute_reachability(
    nodes: Sequence[StoryNode], start_node: str
) -> StoryReachabilityReport:
    """Determine which nodes can be reached by following child links.

    Unlike reader navigation this ignores the canon preference: every child is
    considered reachable.
    """

    by_id = index_nodes(nodes)
    if start_node not in by_id:
        raise ValueError(f"Start node '{start_node}' is not defined.")

    children = children_by_parent(by_id.values())
    visited: set[str] = set()
    frontier = [start_node]

    while frontier:
        current = frontier.pop()
        if current in visited:
            continue

        visited.add(current)
        for child in children.get(current, ()):
            if child.id not in visited:
                frontier.append(child.id)

    reachable = tuple(sorted(visited))
    unreachable = tuple(sorted(node_id for node_id in by_id if node_id not in visited))

    return StoryReachabilityReport(
        start_node=start_node,
        reachable_nodes=reachable,
        unreachable_nodes=unreachable,
    )


__all__ = [
    "StoryGraphMetrics",
    "StoryReachabilityReport",
    "compute_reachability",
    "compute_story_metrics",
    "find_cycle_members",
]
