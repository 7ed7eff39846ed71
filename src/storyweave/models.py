"""Records describing collaborative stories and their branching nodes."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Mapping, Sequence, Tuple


def _validate_text(value: str, *, field_name: str) -> str:
    """Validate and normalise free-form text fields used by story records."""

    if not isinstance(value, str):
        raise TypeError(f"{field_name} must be a string, got {type(value)!r}")

    stripped = value.strip()
    if not stripped:
        raise ValueError(f"{field_name} must be a non-empty string")

    return stripped


def _normalise_optional_text(value: str | None, *, field_name: str) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise TypeError(f"{field_name} must be a string, got {type(value)!r}")
    return value.strip()


def _unique_identities(values: Iterable[str], *, field_name: str) -> Tuple[str, ...]:
    """Return identities with duplicates removed, keeping first occurrences."""

    if isinstance(values, (str, bytes)):
        raise ValueError(f"{field_name} must be a sequence of identities")

    unique: list[str] = []
    for value in values:
        validated = _validate_text(value, field_name=field_name)
        if validated not in unique:
            unique.append(validated)
    return tuple(unique)


def _parse_timestamp(value: Any, *, field_name: str) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError as exc:
            raise ValueError(f"{field_name} must be an ISO-8601 timestamp") from exc
    else:
        raise ValueError(f"{field_name} must be an ISO-8601 timestamp")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _format_timestamp(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _normalise_reactions(value: Any, *, field_name: str) -> dict[str, Tuple[str, ...]]:
    """Return emoji reactions keyed by emoji, dropping emojis nobody used."""

    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValueError(f"{field_name} must map emojis to lists of identities")

    reactions: dict[str, Tuple[str, ...]] = {}
    for emoji, users in value.items():
        key = _validate_text(emoji, field_name="emoji")
        identities = _unique_identities(users, field_name=field_name)
        if identities:
            reactions[key] = identities
    return reactions


def _toggle_reaction(
    reactions: Mapping[str, Tuple[str, ...]], emoji: str, user_id: str
) -> dict[str, Tuple[str, ...]]:
    key = _validate_text(emoji, field_name="emoji")
    identity = _validate_text(user_id, field_name="user id")
    updated = dict(reactions)
    users = updated.get(key, ())
    if identity in users:
        remaining = tuple(user for user in users if user != identity)
        if remaining:
            updated[key] = remaining
        else:
            del updated[key]
    else:
        updated[key] = users + (identity,)
    return updated


def _reactions_payload(reactions: Mapping[str, Tuple[str, ...]]) -> dict[str, list[str]]:
    return {emoji: list(users) for emoji, users in reactions.items()}


def _require(payload: Mapping[str, Any], key: str, *, kind: str) -> Any:
    if key not in payload or payload[key] is None:
        raise ValueError(f"Invalid {kind} payload: missing '{key}'")
    return payload[key]


class Visibility(str, Enum):
    """Who may discover a story."""

    PUBLIC = "public"
    PRIVATE = "private"


@dataclass(frozen=True)
class Story:
    """A collaborative narrative owned by one author and extended by many.

    ``node_count`` is a denormalised counter kept in step with the node
    collection by the store; it may briefly lag behind concurrent writes.
    """

    id: str
    title: str
    genre: str
    visibility: Visibility
    owner_id: str
    owner_name: str
    created_at: datetime
    updated_at: datetime
    description: str = ""
    starter_prompt: str = ""
    contributors: Tuple[str, ...] = field(default_factory=tuple)
    node_count: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "id", _validate_text(self.id, field_name="story id"))
        object.__setattr__(self, "title", _validate_text(self.title, field_name="title"))
        object.__setattr__(self, "genre", _validate_text(self.genre, field_name="genre"))
        object.__setattr__(self, "visibility", Visibility(self.visibility))
        object.__setattr__(
            self, "owner_id", _validate_text(self.owner_id, field_name="owner id")
        )
        object.__setattr__(
            self, "owner_name", _validate_text(self.owner_name, field_name="owner name")
        )
        object.__setattr__(
            self,
            "description",
            _normalise_optional_text(self.description, field_name="description"),
        )
        object.__setattr__(
            self,
            "starter_prompt",
            _normalise_optional_text(self.starter_prompt, field_name="starter prompt"),
        )
        object.__setattr__(
            self,
            "contributors",
            _unique_identities(self.contributors, field_name="contributor"),
        )
        if not isinstance(self.node_count, int) or self.node_count < 0:
            raise ValueError("node_count must be a non-negative integer")

    @property
    def is_public(self) -> bool:
        return self.visibility is Visibility.PUBLIC

    def with_contributor(self, user_id: str) -> "Story":
        """Return a copy listing ``user_id`` among the contributors."""

        validated = _validate_text(user_id, field_name="contributor")
        if validated in self.contributors:
            return self
        return replace(self, contributors=self.contributors + (validated,))

    def to_payload(self) -> dict[str, Any]:
        """Return the document stored in the ``stories`` collection."""

        return {
            "id": self.id,
            "title": self.title,
            "genre": self.genre,
            "visibility": self.visibility.value,
            "ownerId": self.owner_id,
            "ownerName": self.owner_name,
            "description": self.description,
            "starterPrompt": self.starter_prompt,
            "contributors": list(self.contributors),
            "nodeCount": self.node_count,
            "createdAt": _format_timestamp(self.created_at),
            "updatedAt": _format_timestamp(self.updated_at),
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Story":
        """Build a story from a stored document."""

        if not isinstance(payload, Mapping):
            raise ValueError("Invalid story payload: expected an object")

        created_at = _parse_timestamp(
            _require(payload, "createdAt", kind="story"), field_name="createdAt"
        )
        if created_at is None:
            raise ValueError("Invalid story payload: missing 'createdAt'")
        updated_at = _parse_timestamp(payload.get("updatedAt"), field_name="updatedAt")

        contributors = payload.get("contributors") or []
        node_count = payload.get("nodeCount", 0)
        try:
            visibility = Visibility(payload.get("visibility", Visibility.PUBLIC.value))
        except ValueError as exc:
            raise ValueError("Invalid story payload: unknown visibility") from exc

        return cls(
            id=str(_require(payload, "id", kind="story")),
            title=str(_require(payload, "title", kind="story")),
            genre=str(_require(payload, "genre", kind="story")),
            visibility=visibility,
            owner_id=str(_require(payload, "ownerId", kind="story")),
            owner_name=str(_require(payload, "ownerName", kind="story")),
            description=str(payload.get("description") or ""),
            starter_prompt=str(payload.get("starterPrompt") or ""),
            contributors=tuple(str(item) for item in contributors),
            node_count=int(node_count),
            created_at=created_at,
            updated_at=updated_at or created_at,
        )


@dataclass(frozen=True)
class StoryNode:
    """A single narrative fragment in a story's branching tree.

    ``voters`` is authoritative for vote totals; the stored ``votes`` counter
    is always rewritten from it.
    """

    id: str
    story_id: str
    content: str
    author_id: str
    author_name: str
    parent_id: str | None = None
    voters: Tuple[str, ...] = field(default_factory=tuple)
    is_canon: bool = False
    order: int = 0
    created_at: datetime | None = None
    reactions: Mapping[str, Tuple[str, ...]] = field(default_factory=dict, hash=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "id", _validate_text(self.id, field_name="node id"))
        object.__setattr__(
            self, "story_id", _validate_text(self.story_id, field_name="story id")
        )
        object.__setattr__(
            self, "content", _validate_text(self.content, field_name="content")
        )
        object.__setattr__(
            self, "author_id", _validate_text(self.author_id, field_name="author id")
        )
        object.__setattr__(
            self,
            "author_name",
            _validate_text(self.author_name, field_name="author name"),
        )
        if self.parent_id is not None:
            parent = self.parent_id.strip() if isinstance(self.parent_id, str) else None
            if parent is None:
                raise TypeError("parent id must be a string or None")
            object.__setattr__(self, "parent_id", parent or None)
        object.__setattr__(
            self, "voters", _unique_identities(self.voters, field_name="voter")
        )
        object.__setattr__(self, "is_canon", bool(self.is_canon))
        if not isinstance(self.order, int) or self.order < 0:
            raise ValueError("order must be a non-negative integer")
        object.__setattr__(
            self, "reactions", _normalise_reactions(self.reactions, field_name="reaction")
        )

    @property
    def votes(self) -> int:
        """Return the number of votes cast for this node."""

        return len(self.voters)

    @property
    def is_root(self) -> bool:
        return self.parent_id is None

    def has_voted(self, user_id: str) -> bool:
        return user_id in self.voters

    def with_vote_toggled(self, user_id: str) -> "StoryNode":
        """Return a copy with ``user_id``'s vote added or withdrawn."""

        validated = _validate_text(user_id, field_name="voter")
        if validated in self.voters:
            voters = tuple(voter for voter in self.voters if voter != validated)
        else:
            voters = self.voters + (validated,)
        return replace(self, voters=voters)

    def with_canon(self, flag: bool = True) -> "StoryNode":
        return replace(self, is_canon=flag)

    def with_content(self, content: str) -> "StoryNode":
        return replace(self, content=content)

    def with_reaction_toggled(self, emoji: str, user_id: str) -> "StoryNode":
        """Return a copy with ``user_id``'s ``emoji`` reaction added or withdrawn."""

        return replace(self, reactions=_toggle_reaction(self.reactions, emoji, user_id))

    def to_payload(self) -> dict[str, Any]:
        """Return the document stored in the ``nodes`` collection."""

        return {
            "id": self.id,
            "storyId": self.story_id,
            "parentId": self.parent_id,
            "content": self.content,
            "authorId": self.author_id,
            "authorName": self.author_name,
            "votes": self.votes,
            "voters": list(self.voters),
            "isCanon": self.is_canon,
            "order": self.order,
            "createdAt": _format_timestamp(self.created_at),
            "reactions": _reactions_payload(self.reactions),
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "StoryNode":
        """Build a node from a stored document.

        The ``votes`` counter in the document is ignored; the total is derived
        from ``voters`` so the two can never disagree.
        """

        if not isinstance(payload, Mapping):
            raise ValueError("Invalid node payload: expected an object")

        voters_value = payload.get("voters")
        voters: Sequence[str] = ()
        if voters_value is not None:
            if isinstance(voters_value, (str, bytes)) or not isinstance(
                voters_value, Iterable
            ):
                raise ValueError("Invalid node payload: voters must be a list")
            voters = tuple(str(voter) for voter in voters_value)

        parent_id = payload.get("parentId")
        order = payload.get("order", 0)
        try:
            order_value = int(order)
        except (TypeError, ValueError) as exc:
            raise ValueError("Invalid node payload: order must be an integer") from exc

        return cls(
            id=str(_require(payload, "id", kind="node")),
            story_id=str(_require(payload, "storyId", kind="node")),
            parent_id=str(parent_id) if parent_id else None,
            content=str(_require(payload, "content", kind="node")),
            author_id=str(_require(payload, "authorId", kind="node")),
            author_name=str(_require(payload, "authorName", kind="node")),
            voters=tuple(voters),
            is_canon=bool(payload.get("isCanon", False)),
            order=order_value,
            created_at=_parse_timestamp(payload.get("createdAt"), field_name="createdAt"),
            reactions=_normalise_reactions(payload.get("reactions"), field_name="reaction"),
        )


@dataclass(frozen=True)
class NodeComment:
    """A reader's remark attached to one node, with its emoji reactions."""

    id: str
    node_id: str
    story_id: str
    user_id: str
    user_name: str
    content: str
    created_at: datetime
    updated_at: datetime | None = None
    reactions: Mapping[str, Tuple[str, ...]] = field(default_factory=dict, hash=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "id", _validate_text(self.id, field_name="comment id"))
        object.__setattr__(self, "node_id", _validate_text(self.node_id, field_name="node id"))
        object.__setattr__(
            self, "story_id", _validate_text(self.story_id, field_name="story id")
        )
        object.__setattr__(self, "user_id", _validate_text(self.user_id, field_name="user id"))
        object.__setattr__(
            self, "user_name", _validate_text(self.user_name, field_name="user name")
        )
        object.__setattr__(self, "content", _validate_text(self.content, field_name="comment"))
        if self.updated_at is None:
            object.__setattr__(self, "updated_at", self.created_at)
        object.__setattr__(
            self, "reactions", _normalise_reactions(self.reactions, field_name="reaction")
        )

    def with_reaction_toggled(
        self, emoji: str, user_id: str, *, updated_at: datetime | None = None
    ) -> "NodeComment":
        return replace(
            self,
            reactions=_toggle_reaction(self.reactions, emoji, user_id),
            updated_at=updated_at or self.updated_at,
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "nodeId": self.node_id,
            "storyId": self.story_id,
            "userId": self.user_id,
            "userName": self.user_name,
            "content": self.content,
            "reactions": _reactions_payload(self.reactions),
            "createdAt": _format_timestamp(self.created_at),
            "updatedAt": _format_timestamp(self.updated_at),
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "NodeComment":
        if not isinstance(payload, Mapping):
            raise ValueError("Invalid comment payload: expected an object")

        created_at = _parse_timestamp(
            _require(payload, "createdAt", kind="comment"), field_name="createdAt"
        )
        if created_at is None:
            raise ValueError("Invalid comment payload: missing 'createdAt'")

        return cls(
            id=str(_require(payload, "id", kind="comment")),
            node_id=str(_require(payload, "nodeId", kind="comment")),
            story_id=str(_require(payload, "storyId", kind="comment")),
            user_id=str(_require(payload, "userId", kind="comment")),
            user_name=str(_require(payload, "userName", kind="comment")),
            content=str(_require(payload, "content", kind="comment")),
            reactions=_normalise_reactions(payload.get("reactions"), field_name="reaction"),
            created_at=created_at,
            updated_at=_parse_timestamp(payload.get("updatedAt"), field_name="updatedAt"),
        )


def load_nodes_from_payload(payload: Iterable[Mapping[str, Any]]) -> list[StoryNode]:
    """Parse a list of node documents, preserving their order."""

    if isinstance(payload, (str, bytes, Mapping)):
        raise ValueError("Node payload must be a list of objects")
    return [StoryNode.from_payload(entry) for entry in payload]


__all__ = [
    "NodeComment",
    "Story",
    "StoryNode",
    "Visibility",
    "load_nodes_from_payload",
]
