"""Tests for reader-mode traversal."""

from __future__ import annotations

import pytest

from storyweave import (
    InvalidTransitionError,
    StoryReader,
    canonical_path,
    choose_branch,
    get_children,
    go_back,
    jump_to,
    select_root,
    start,
)
from storyweave.reader import find_node, longest_valid_prefix, resolve_state, validate_cursor


def test_canon_child_hides_more_popular_alternatives(scenario_nodes) -> None:
    nodes = scenario_nodes()

    assert start(nodes).cursor == ("r",)
    assert [node.id for node in get_children("r", nodes)] == ["c1"]


def test_children_ranked_by_votes_without_canon(scenario_nodes) -> None:
    nodes = scenario_nodes(c1_canon=False)

    assert [node.id for node in get_children("r", nodes)] == ["c2", "c1"]


def test_canon_preference_over_votes(make_node) -> None:
    nodes = [
        make_node("p"),
        make_node("canon", "p", is_canon=True, votes=1, order=1),
        make_node("popular", "p", votes=10, order=2),
    ]

    assert [node.id for node in get_children("p", nodes)] == ["canon"]


def test_vote_fallback_ordering(make_node) -> None:
    nodes = [
        make_node("p"),
        make_node("three", "p", votes=3, order=1),
        make_node("one", "p", votes=1, order=2),
        make_node("two", "p", votes=2, order=3),
    ]

    assert [node.votes for node in get_children("p", nodes)] == [3, 2, 1]


def test_vote_ties_break_by_order(make_node) -> None:
    nodes = [
        make_node("p"),
        make_node("late", "p", votes=2, order=5),
        make_node("early", "p", votes=2, order=1),
    ]

    assert [node.id for node in get_children("p", nodes)] == ["early", "late"]


def test_unknown_node_has_no_children(scenario_nodes) -> None:
    assert get_children("missing", scenario_nodes()) == ()
    assert find_node("missing", scenario_nodes()) is None
    assert find_node(None, scenario_nodes()) is None


def test_start_on_empty_story_is_empty_state() -> None:
    state = start([])

    assert state.is_empty
    assert state.cursor == ()
    assert state.current_node is None
    assert state.branches == ()
    assert not state.is_end_of_path


def test_root_selection_prefers_canon(make_node) -> None:
    nodes = [
        make_node("first", order=0),
        make_node("canon", order=3, is_canon=True),
        make_node("child", "first", order=1),
    ]

    root = select_root(nodes)
    assert root is not None and root.id == "canon"


def test_root_selection_falls_back_to_lowest_order(make_node) -> None:
    nodes = [make_node("later", order=4), make_node("earlier", order=2)]

    root = select_root(nodes)
    assert root is not None and root.id == "earlier"


def test_root_selection_without_parentless_nodes(make_node) -> None:
    nodes = [make_node("A", "B"), make_node("B", "A")]

    assert select_root(nodes) is None
    assert start(nodes).is_empty


def test_orphaned_nodes_can_start_a_reading(make_node) -> None:
    nodes = [make_node("orphan", "deleted", order=1), make_node("leaf", "orphan", order=2)]

    state = start(nodes)

    assert state.cursor == ("orphan",)
    assert [branch.id for branch in state.branches] == ["leaf"]


def test_genuine_root_outranks_orphan(make_node) -> None:
    nodes = [make_node("orphan", "deleted", order=0), make_node("root", order=5)]

    root = select_root(nodes)
    assert root is not None and root.id == "root"


def test_choose_branch_extends_cursor(scenario_nodes) -> None:
    nodes = scenario_nodes(c1_canon=False)

    state = choose_branch(("r",), "c2", nodes)

    assert state.cursor == ("r", "c2")
    assert state.current_node is not None and state.current_node.id == "c2"
    assert state.is_end_of_path


def test_choose_branch_rejects_non_child(binary_tree) -> None:
    cursor = ("root", "a")

    with pytest.raises(InvalidTransitionError) as excinfo:
        choose_branch(cursor, "b1", binary_tree)

    assert excinfo.value.cursor == cursor
    assert excinfo.value.node_id == "b1"


def test_choose_branch_on_empty_cursor_is_rejected(binary_tree) -> None:
    with pytest.raises(InvalidTransitionError):
        choose_branch((), "root", binary_tree)


def test_go_back_requires_more_than_root(binary_tree) -> None:
    assert go_back(("root", "a"), binary_tree).cursor == ("root",)

    with pytest.raises(InvalidTransitionError):
        go_back(("root",), binary_tree)


def test_jump_to_truncates_path(binary_tree) -> None:
    cursor = ("root", "a", "a2")

    assert jump_to(cursor, 0, binary_tree).cursor == ("root",)
    assert jump_to(cursor, 2, binary_tree).cursor == cursor

    with pytest.raises(InvalidTransitionError):
        jump_to(cursor, 3, binary_tree)
    with pytest.raises(InvalidTransitionError):
        jump_to(cursor, -1, binary_tree)


def test_resolve_state_tolerates_stale_cursor(binary_tree) -> None:
    state = resolve_state(("root", "gone"), binary_tree)

    assert state.current_node is None
    assert state.branches == ()


def test_validate_cursor(binary_tree) -> None:
    assert validate_cursor(("root", "b", "b1"), binary_tree) == ("root", "b", "b1")

    with pytest.raises(InvalidTransitionError):
        validate_cursor(("a", "a1"), binary_tree)
    with pytest.raises(InvalidTransitionError):
        validate_cursor(("root", "a", "b1"), binary_tree)


def test_longest_valid_prefix(binary_tree) -> None:
    remaining = [node for node in binary_tree if node.id != "a"]

    assert longest_valid_prefix(("root", "a", "a1"), remaining) == ("root",)
    assert longest_valid_prefix(("root", "b", "b2"), remaining) == ("root", "b", "b2")


def test_canonical_path_follows_top_branch(make_node) -> None:
    nodes = [
        make_node("r", is_canon=True),
        make_node("x", "r", votes=1, order=1),
        make_node("y", "r", votes=4, order=2),
        make_node("y1", "y", is_canon=True, order=3),
        make_node("y2", "y", votes=7, order=4),
    ]

    assert [node.id for node in canonical_path(nodes)] == ["r", "y", "y1"]
    assert canonical_path([]) == ()


class TestStoryReader:
    def test_full_navigation(self, binary_tree) -> None:
        reader = StoryReader(binary_tree)

        assert reader.state.is_empty
        state = reader.start()
        assert state.cursor == ("root",)
        assert [branch.id for branch in state.branches] == ["a", "b"]

        reader.choose_branch("b")
        state = reader.choose_branch("b2")
        assert state.cursor == ("root", "b", "b2")
        assert state.is_end_of_path
        assert state.depth == 3

        assert reader.go_back().cursor == ("root", "b")
        assert reader.jump_to(0).cursor == ("root",)
        reader.choose_branch("a")
        assert reader.reset_to_start().cursor == ("root",)

    def test_rejected_transition_keeps_cursor(self, binary_tree) -> None:
        reader = StoryReader(binary_tree)
        reader.start()
        reader.choose_branch("a")

        with pytest.raises(InvalidTransitionError):
            reader.choose_branch("b1")

        assert reader.cursor == ("root", "a")

    def test_go_back_at_root_is_rejected(self, binary_tree) -> None:
        reader = StoryReader(binary_tree)
        reader.start()

        with pytest.raises(InvalidTransitionError):
            reader.go_back()
        assert reader.cursor == ("root",)

    def test_initial_cursor_is_validated(self, binary_tree) -> None:
        reader = StoryReader(binary_tree, cursor=("root", "a"))
        assert reader.state.current_node is not None

        with pytest.raises(InvalidTransitionError):
            StoryReader(binary_tree, cursor=("root", "b1"))

    def test_with_nodes_keeps_surviving_prefix(self, binary_tree) -> None:
        reader = StoryReader(binary_tree, cursor=("root", "a", "a1"))

        updated = reader.with_nodes(node for node in binary_tree if node.id != "a1")

        assert updated.cursor == ("root", "a")
        assert reader.cursor == ("root", "a", "a1")
