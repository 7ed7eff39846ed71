"""Core package for collaborative branching stories."""

from .models import NodeComment, Story, StoryNode, Visibility, load_nodes_from_payload
from .graph import (
    GraphEdge,
    GraphLayout,
    PositionedNode,
    StoryGraph,
    build_graph,
    compute_node_levels,
)
from .reader import (
    InvalidTransitionError,
    ReaderState,
    StoryReader,
    canonical_path,
    choose_branch,
    get_children,
    go_back,
    jump_to,
    select_root,
    start,
)
from .store import CommentPermissionError, FileNodeStore, InMemoryNodeStore, NodeStore
from .room import StoryRoom
from .analytics import (
    StoryGraphMetrics,
    StoryReachabilityReport,
    compute_reachability,
    compute_story_metrics,
)

__all__ = [
    "NodeComment",
    "Story",
    "StoryNode",
    "Visibility",
    "load_nodes_from_payload",
    "GraphEdge",
    "GraphLayout",
    "PositionedNode",
    "StoryGraph",
    "build_graph",
    "compute_node_levels",
    "InvalidTransitionError",
    "ReaderState",
    "StoryReader",
    "canonical_path",
    "choose_branch",
    "get_children",
    "go_back",
    "jump_to",
    "select_root",
    "start",
    "CommentPermissionError",
    "NodeStore",
    "InMemoryNodeStore",
    "FileNodeStore",
    "StoryRoom",
    "StoryGraphMetrics",
    "StoryReachabilityReport",
    "compute_reachability",
    "compute_story_metrics",
]
