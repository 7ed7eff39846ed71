"""Tests for the live story room."""

from __future__ import annotations

import pytest

from storyweave import GraphLayout, InMemoryNodeStore, StoryRoom


@pytest.fixture()
def populated_store(clock):
    store = InMemoryNodeStore(clock=clock)
    story = store.create_story(
        title="Night Train",
        genre="thriller",
        visibility="public",
        owner_id="owner",
        owner_name="Owner",
        starter_prompt="The train left at midnight.",
    )
    return store, story


def test_room_builds_graph_and_starts_reader(populated_store) -> None:
    store, story = populated_store

    with StoryRoom(store, story.id) as room:
        assert len(room.graph.positioned_nodes) == 1
        assert room.reader.cursor == (room.nodes[0].id,)

    assert room.closed


def test_room_rebuilds_on_every_snapshot(populated_store) -> None:
    store, story = populated_store
    room = StoryRoom(store, story.id, layout=GraphLayout(horizontal_spacing=10))
    rebuilds: list[int] = []
    room.add_listener(lambda current: rebuilds.append(len(current.graph.edges)))
    root = room.nodes[0]

    store.create_node(
        story.id, parent_id=root.id, content="A stranger boards.", author_id="a", author_name="A"
    )
    store.create_node(
        story.id, parent_id=root.id, content="The lights fail.", author_id="b", author_name="B"
    )

    assert rebuilds == [1, 2]
    assert [node.x for node in room.graph.levels()[1]] == [-5.0, 5.0]
    room.close()


def test_room_reader_survives_deletions(populated_store) -> None:
    store, story = populated_store
    room = StoryRoom(store, story.id)
    root = room.nodes[0]
    child = store.create_node(
        story.id, parent_id=root.id, content="Next stop.", author_id="a", author_name="A"
    )
    room.reader.choose_branch(child.id)
    assert room.reader.cursor == (root.id, child.id)

    store.delete_node(child.id)

    assert room.reader.cursor == (root.id,)
    room.close()


def test_closed_room_ignores_updates(populated_store) -> None:
    store, story = populated_store
    room = StoryRoom(store, story.id)
    room.close()
    room.close()

    store.create_node(story.id, content="Unseen", author_id="a", author_name="A")

    assert len(room.nodes) == 1


def test_removed_listener_is_not_called(populated_store) -> None:
    store, story = populated_store
    room = StoryRoom(store, story.id)
    calls: list[str] = []
    remove = room.add_listener(lambda current: calls.append("called"))
    remove()

    store.create_node(story.id, content="Quiet", author_id="a", author_name="A")

    assert calls == []
    room.close()


def test_room_for_unknown_story_raises(clock) -> None:
    with pytest.raises(KeyError):
        StoryRoom(InMemoryNodeStore(clock=clock), "missing")


def test_room_is_open_while_subscribing(populated_store, monkeypatch) -> None:
    store, story = populated_store
    states: list[bool] = []
    subscribe = store.subscribe_story_nodes

    def recording_subscribe(story_id, on_change):
        states.append(on_change.__self__.closed)
        return subscribe(story_id, on_change)

    monkeypatch.setattr(store, "subscribe_story_nodes", recording_subscribe)
    room = StoryRoom(store, story.id)

    assert states == [False]
    assert not room.closed
    room.close()
    assert room.closed
