"""Tests for the story and node records."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from storyweave import NodeComment, Story, StoryNode, Visibility, load_nodes_from_payload


def _story(**overrides: object) -> Story:
    values: dict[str, object] = {
        "id": "story-1",
        "title": "  The Lighthouse  ",
        "genre": "mystery",
        "visibility": "public",
        "owner_id": "owner",
        "owner_name": "Owner",
        "created_at": datetime(2024, 1, 1, tzinfo=timezone.utc),
        "updated_at": datetime(2024, 1, 2, tzinfo=timezone.utc),
    }
    values.update(overrides)
    return Story(**values)  # type: ignore[arg-type]


def test_story_normalises_fields() -> None:
    story = _story(contributors=("owner", "guest", "owner"))

    assert story.title == "The Lighthouse"
    assert story.visibility is Visibility.PUBLIC
    assert story.contributors == ("owner", "guest")
    assert story.is_public


def test_story_rejects_negative_node_count() -> None:
    with pytest.raises(ValueError):
        _story(node_count=-1)


def test_story_with_contributor_has_set_semantics() -> None:
    story = _story(contributors=("owner",))

    assert story.with_contributor("owner") is story
    assert story.with_contributor(" guest ").contributors == ("owner", "guest")


def test_story_payload_round_trip_uses_document_shape() -> None:
    story = _story(contributors=("owner",), node_count=3, description="Fog")

    payload = story.to_payload()
    assert payload["ownerId"] == "owner"
    assert payload["nodeCount"] == 3
    assert payload["visibility"] == "public"
    assert Story.from_payload(payload) == story


def test_story_from_payload_requires_core_fields() -> None:
    with pytest.raises(ValueError):
        Story.from_payload({"id": "x", "title": "T"})

    with pytest.raises(ValueError):
        Story.from_payload(
            {
                "id": "x",
                "title": "T",
                "genre": "g",
                "visibility": "secret",
                "ownerId": "o",
                "ownerName": "O",
                "createdAt": "2024-01-01T00:00:00+00:00",
            }
        )


def test_node_votes_derive_from_voters() -> None:
    node = StoryNode(
        id="n",
        story_id="s",
        content="Once upon a time",
        author_id="a",
        author_name="A",
        voters=("u1", "u2", "u1"),
    )

    assert node.voters == ("u1", "u2")
    assert node.votes == 2
    assert node.to_payload()["votes"] == 2


def test_node_vote_toggle_is_idempotent_per_user() -> None:
    node = StoryNode(id="n", story_id="s", content="x", author_id="a", author_name="A")

    voted = node.with_vote_toggled("u1")
    assert voted.votes == 1
    assert voted.has_voted("u1")

    withdrawn = voted.with_vote_toggled("u1")
    assert withdrawn.votes == 0
    assert not withdrawn.has_voted("u1")


def test_node_blank_parent_becomes_root() -> None:
    node = StoryNode(
        id="n", story_id="s", content="x", author_id="a", author_name="A", parent_id="  "
    )

    assert node.parent_id is None
    assert node.is_root


def test_node_from_payload_ignores_stale_vote_counter() -> None:
    node = StoryNode.from_payload(
        {
            "id": "n",
            "storyId": "s",
            "parentId": None,
            "content": "Hello",
            "authorId": "a",
            "authorName": "A",
            "votes": 7,
            "voters": ["u1"],
            "isCanon": True,
            "order": 2,
            "createdAt": "2024-03-01T10:00:00",
        }
    )

    assert node.votes == 1
    assert node.is_canon
    assert node.order == 2
    assert node.created_at == datetime(2024, 3, 1, 10, tzinfo=timezone.utc)


def test_node_from_payload_defaults_missing_votes_to_zero() -> None:
    node = StoryNode.from_payload(
        {
            "id": "n",
            "storyId": "s",
            "content": "Hello",
            "authorId": "a",
            "authorName": "A",
        }
    )

    assert node.votes == 0
    assert node.voters == ()
    assert node.parent_id is None


def test_node_validation_errors() -> None:
    with pytest.raises(ValueError):
        StoryNode(id="n", story_id="s", content="   ", author_id="a", author_name="A")
    with pytest.raises(TypeError):
        StoryNode(id="n", story_id="s", content=5, author_id="a", author_name="A")  # type: ignore[arg-type]
    with pytest.raises(ValueError):
        StoryNode(
            id="n", story_id="s", content="x", author_id="a", author_name="A", order=-1
        )


def test_load_nodes_from_payload_rejects_mapping() -> None:
    with pytest.raises(ValueError):
        load_nodes_from_payload({"id": "n"})  # type: ignore[arg-type]

    nodes = load_nodes_from_payload(
        [
            {"id": "a", "storyId": "s", "content": "A", "authorId": "x", "authorName": "X"},
            {
                "id": "b",
                "storyId": "s",
                "parentId": "a",
                "content": "B",
                "authorId": "x",
                "authorName": "X",
            },
        ]
    )
    assert [node.id for node in nodes] == ["a", "b"]
    assert nodes[1].parent_id == "a"


def test_node_reactions_toggle_and_drop_empty_emojis() -> None:
    node = StoryNode(id="n1", story_id="s1", content="Text", author_id="a", author_name="A")

    reacted = node.with_reaction_toggled("🔥", "u1").with_reaction_toggled("🔥", "u2")
    assert dict(reacted.reactions) == {"🔥": ("u1", "u2")}
    assert dict(reacted.with_reaction_toggled("🔥", "u1").reactions) == {"🔥": ("u2",)}
    assert reacted.with_reaction_toggled("🔥", "u1").with_reaction_toggled(
        "🔥", "u2"
    ).reactions == {}
    assert reacted.to_payload()["reactions"] == {"🔥": ["u1", "u2"]}


def test_node_from_payload_reads_reactions() -> None:
    node = StoryNode.from_payload(
        {
            "id": "n1",
            "storyId": "s1",
            "content": "Text",
            "authorId": "a",
            "authorName": "A",
            "reactions": {"😂": ["u1", "u1"], "👀": []},
        }
    )

    assert dict(node.reactions) == {"😂": ("u1",)}


def test_comment_payload_uses_document_shape() -> None:
    created = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    comment = NodeComment(
        id="c1",
        node_id="n1",
        story_id="s1",
        user_id="u1",
        user_name=" Una ",
        content=" Great twist. ",
        created_at=created,
    )

    payload = comment.to_payload()

    assert comment.updated_at == created
    assert payload["nodeId"] == "n1"
    assert payload["userName"] == "Una"
    assert payload["content"] == "Great twist."
    assert NodeComment.from_payload(payload) == comment


def test_comment_requires_created_at() -> None:
    with pytest.raises(ValueError):
        NodeComment.from_payload(
            {"id": "c1", "nodeId": "n1", "storyId": "s1", "userId": "u", "userName": "U", "content": "x"}
        )
    with pytest.raises(ValueError):
        NodeComment(
            id="c1",
            node_id="n1",
            story_id="s1",
            user_id="u",
            user_name="U",
            content="   ",
            created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        )
