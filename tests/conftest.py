"""Test configuration for the collaborative story project."""

from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from collections.abc import Callable, Sequence
from typing import Any

import pytest

from storyweave import StoryNode


def _make_node(
    node_id: str,
    parent_id: str | None = None,
    *,
    votes: int = 0,
    is_canon: bool = False,
    order: int = 0,
    story_id: str = "story-1",
    content: str | None = None,
    author_id: str = "author",
    voters: Sequence[str] | None = None,
) -> StoryNode:
    """Build a node with ``votes`` synthetic voters unless ``voters`` is given."""

    resolved_voters = tuple(voters) if voters is not None else tuple(
        f"voter-{index}" for index in range(votes)
    )
    return StoryNode(
        id=node_id,
        story_id=story_id,
        parent_id=parent_id,
        content=content or f"Content of {node_id}",
        author_id=author_id,
        author_name=author_id.title(),
        voters=resolved_voters,
        is_canon=is_canon,
        order=order,
    )


class StepClock:
    """Deterministic clock advancing one second per call."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        value = self.current
        self.current = self.current + timedelta(seconds=1)
        return value


@pytest.fixture()
def make_node() -> Callable[..., StoryNode]:
    """Return a factory for nodes with synthetic voters."""

    return _make_node


@pytest.fixture()
def clock() -> StepClock:
    return StepClock()


@pytest.fixture()
def binary_tree() -> list[StoryNode]:
    """Seven nodes forming a balanced binary tree of depth two."""

    return [
        _make_node("root", order=0, is_canon=True),
        _make_node("a", "root", order=1),
        _make_node("b", "root", order=2),
        _make_node("a1", "a", order=3),
        _make_node("a2", "a", order=4),
        _make_node("b1", "b", order=5),
        _make_node("b2", "b", order=6),
    ]


@pytest.fixture()
def scenario_nodes() -> Callable[..., list[StoryNode]]:
    """Factory for the canon-versus-votes scenario."""

    def _factory(*, c1_canon: bool = True) -> list[StoryNode]:
        return [
            _make_node("r", is_canon=True, votes=0, order=0),
            _make_node("c1", "r", is_canon=c1_canon, votes=5, order=1),
            _make_node("c2", "r", is_canon=False, votes=9, order=2),
        ]

    return _factory


__all__: list[Any] = ["StepClock", "binary_tree", "clock", "make_node", "scenario_nodes"]
