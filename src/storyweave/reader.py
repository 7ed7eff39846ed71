"""Reader-mode traversal along a story's branches.

A reader follows a *cursor*: the ids of the nodes visited from a root to the
current node. Branch enumeration prefers canon children and falls back to
every child ranked by votes, so a story without canon decisions can still be
explored. Lookups against a stale snapshot return ``None`` or empty results;
only caller mistakes (choosing a node that is not a branch of the current
node, backing out of the root) raise :class:`InvalidTransitionError`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Sequence, Tuple

from .graph import index_nodes
from .models import StoryNode

logger = logging.getLogger(__name__)

Cursor = Tuple[str, ...]


class InvalidTransitionError(ValueError):
    """Raised when a navigation request does not follow the current path."""

    def __init__(self, message: str, *, cursor: Sequence[str], node_id: str | None = None) -> None:
        super().__init__(message)
        self.cursor: Cursor = tuple(cursor)
        self.node_id = node_id


def _branch_sort_key(node: StoryNode) -> tuple[int, int]:
    return (-node.votes, node.order)


def find_node(node_id: str | None, nodes: Iterable[StoryNode]) -> StoryNode | None:
    """Return the node with ``node_id`` or ``None`` when it is not present."""

    if node_id is None:
        return None
    for node in nodes:
        if node.id == node_id:
            return node
    return None


def get_children(node_id: str, nodes: Iterable[StoryNode]) -> Tuple[StoryNode, ...]:
    """Return the branches a reader may take from ``node_id``.

    Canon children are returned exclusively when at least one exists;
    otherwise every child is a candidate. Either way the result is ordered by
    votes (highest first) and then by insertion order.
    """

    children = [node for node in nodes if node.parent_id == node_id]
    canon = [node for node in children if node.is_canon]
    candidates = canon or children
    return tuple(sorted(candidates, key=_branch_sort_key))


def _has_resolvable_parent(node: StoryNode, by_id: Mapping[str, StoryNode]) -> bool:
    return node.parent_id is not None and node.parent_id in by_id


def select_root(nodes: Iterable[StoryNode]) -> StoryNode | None:
    """Pick the node a reader starts from.

    A parentless canon node wins; otherwise the parentless node created first.
    Nodes whose parent is missing from ``nodes`` count as parentless but rank
    after genuine roots.
    """

    candidates = list(nodes)
    by_id = index_nodes(candidates)
    roots = sorted(
        (node for node in candidates if not _has_resolvable_parent(node, by_id)),
        key=lambda node: (node.parent_id is not None, node.order),
    )
    if not roots:
        return None
    for root in roots:
        if root.is_canon:
            return root
    return roots[0]


@dataclass(frozen=True)
class ReaderState:
    """What a reader sees: the path so far, the current node and its branches."""

    cursor: Cursor = field(default_factory=tuple)
    current_node: StoryNode | None = None
    branches: Tuple[StoryNode, ...] = field(default_factory=tuple)

    @property
    def is_empty(self) -> bool:
        """Return ``True`` when the story has nothing to read yet."""

        return not self.cursor

    @property
    def is_end_of_path(self) -> bool:
        """Return ``True`` when the current node offers no further branches."""

        return bool(self.cursor) and not self.branches

    @property
    def depth(self) -> int:
        return len(self.cursor)


EMPTY_STATE = ReaderState()


def resolve_state(cursor: Sequence[str], nodes: Sequence[StoryNode]) -> ReaderState:
    """Describe the reader state for ``cursor`` without validating its links."""

    path: Cursor = tuple(cursor)
    if not path:
        return EMPTY_STATE
    current = find_node(path[-1], nodes)
    branches = get_children(path[-1], nodes) if current is not None else ()
    return ReaderState(cursor=path, current_node=current, branches=branches)


def start(nodes: Sequence[StoryNode]) -> ReaderState:
    """Return the initial state: the selected root, or the empty state."""

    root = select_root(nodes)
    if root is None:
        return EMPTY_STATE
    return resolve_state((root.id,), nodes)


def choose_branch(
    cursor: Sequence[str], child_id: str, nodes: Sequence[StoryNode]
) -> ReaderState:
    """Extend ``cursor`` with ``child_id``.

    Raises:
        InvalidTransitionError: If the cursor is empty or ``child_id`` is not a
            child of the cursor's last node.
    """

    path: Cursor = tuple(cursor)
    if not path:
        raise InvalidTransitionError(
            "Cannot choose a branch before the story has started.",
            cursor=path,
            node_id=child_id,
        )

    child = find_node(child_id, nodes)
    if child is None or child.parent_id != path[-1]:
        raise InvalidTransitionError(
            f"Node '{child_id}' is not a branch of '{path[-1]}'.",
            cursor=path,
            node_id=child_id,
        )
    return resolve_state(path + (child.id,), nodes)


def go_back(cursor: Sequence[str], nodes: Sequence[StoryNode]) -> ReaderState:
    """Drop the last node from ``cursor``; the root cannot be backed out of."""

    path: Cursor = tuple(cursor)
    if len(path) <= 1:
        raise InvalidTransitionError(
            "Cannot go back from the start of the story.", cursor=path
        )
    return resolve_state(path[:-1], nodes)


def jump_to(cursor: Sequence[str], index: int, nodes: Sequence[StoryNode]) -> ReaderState:
    """Truncate ``cursor`` so that ``cursor[index]`` becomes the current node."""

    path: Cursor = tuple(cursor)
    if isinstance(index, bool) or not isinstance(index, int):
        raise TypeError(f"index must be an int, got {type(index)!r}")
    if not 0 <= index < len(path):
        raise InvalidTransitionError(
            f"Cannot jump to position {index} of a path with {len(path)} nodes.",
            cursor=path,
        )
    return resolve_state(path[: index + 1], nodes)


def validate_cursor(cursor: Sequence[str], nodes: Sequence[StoryNode]) -> Cursor:
    """Return ``cursor`` if every id exists and follows a parent link.

    Raises:
        InvalidTransitionError: If the cursor starts at a node with a parent or
            any step does not lead to a child of the previous node.
    """

    path: Cursor = tuple(cursor)
    if not path:
        return path

    by_id = index_nodes(nodes)
    head = by_id.get(path[0])
    if head is None or _has_resolvable_parent(head, by_id):
        raise InvalidTransitionError(
            f"Path must start at a root node, not '{path[0]}'.",
            cursor=path,
            node_id=path[0],
        )
    for previous, current in zip(path, path[1:]):
        node = by_id.get(current)
        if node is None or node.parent_id != previous:
            raise InvalidTransitionError(
                f"Node '{current}' is not a branch of '{previous}'.",
                cursor=path,
                node_id=current,
            )
    return path


def longest_valid_prefix(cursor: Sequence[str], nodes: Sequence[StoryNode]) -> Cursor:
    """Return the longest prefix of ``cursor`` still present in ``nodes``."""

    by_id = index_nodes(nodes)
    kept: list[str] = []
    for node_id in cursor:
        node = by_id.get(node_id)
        if node is None:
            break
        if kept and node.parent_id != kept[-1]:
            break
        if not kept and _has_resolvable_parent(node, by_id):
            break
        kept.append(node_id)
    return tuple(kept)


def canonical_path(nodes: Sequence[StoryNode]) -> Tuple[StoryNode, ...]:
    """Follow the first offered branch from the root until a leaf.

    The walk stops if it would revisit a node, which only happens with corrupt
    parent links.
    """

    root = select_root(nodes)
    if root is None:
        return ()

    path = [root]
    visited = {root.id}
    while True:
        branches = get_children(path[-1].id, nodes)
        if not branches or branches[0].id in visited:
            return tuple(path)
        path.append(branches[0])
        visited.add(branches[0].id)


class StoryReader:
    """Stateful wrapper around the traversal functions for one node snapshot.

    The reader keeps its own cursor. Transitions return the new
    :class:`ReaderState`; a rejected transition leaves the cursor untouched.
    """

    def __init__(self, nodes: Iterable[StoryNode], *, cursor: Sequence[str] = ()) -> None:
        self._nodes: Tuple[StoryNode, ...] = tuple(nodes)
        self._cursor: Cursor = validate_cursor(cursor, self._nodes)

    @property
    def nodes(self) -> Tuple[StoryNode, ...]:
        return self._nodes

    @property
    def cursor(self) -> Cursor:
        return self._cursor

    @property
    def state(self) -> ReaderState:
        return resolve_state(self._cursor, self._nodes)

    def start(self) -> ReaderState:
        return self._apply(start(self._nodes))

    def reset_to_start(self) -> ReaderState:
        return self.start()

    def choose_branch(self, child_id: str) -> ReaderState:
        return self._apply(choose_branch(self._cursor, child_id, self._nodes))

    def go_back(self) -> ReaderState:
        return self._apply(go_back(self._cursor, self._nodes))

    def jump_to(self, index: int) -> ReaderState:
        return self._apply(jump_to(self._cursor, index, self._nodes))

    def with_nodes(self, nodes: Iterable[StoryNode]) -> "StoryReader":
        """Return a reader over a new snapshot that keeps as much of the path as possible."""

        snapshot = tuple(nodes)
        kept = longest_valid_prefix(self._cursor, snapshot)
        if len(kept) != len(self._cursor):
            logger.debug(
                "Reader path truncated from %d to %d nodes after update",
                len(self._cursor),
                len(kept),
            )
        return StoryReader(snapshot, cursor=kept)

    def _apply(self, state: ReaderState) -> ReaderState:
        self._cursor = state.cursor
        return state


__all__ = [
    "Cursor",
    "EMPTY_STATE",
    "InvalidTransitionError",
    "ReaderState",
    "StoryReader",
    "canonical_path",
    "choose_branch",
    "find_node",
    "get_children",
    "go_back",
    "jump_to",
    "longest_valid_prefix",
    "resolve_state",
    "select_root",
    "start",
    "validate_cursor",
]
