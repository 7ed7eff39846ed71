"""Persistence ports for stories and their nodes.

:class:`NodeStore` is the boundary the rest of the package talks to. Every
mutation goes through it, so it is also where the denormalised story fields
(``node_count``, ``contributors``) and the vote/voter pair are kept in step.
Subscribers always receive the full current snapshot, never a diff.

Listeners are called while the store lock is held, so the snapshots of one
story reach every subscriber in the order the mutations happened. The lock is
re-entrant: a listener may read from the store, but should not block on
another thread that writes to it.
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping

from .models import NodeComment, Story, StoryNode, Visibility, _validate_text

logger = logging.getLogger(__name__)

NodesListener = Callable[[List[StoryNode]], None]
StoryListener = Callable[[Story | None], None]
CommentsListener = Callable[[List[NodeComment]], None]
Unsubscribe = Callable[[], None]
Clock = Callable[[], datetime]


class CommentPermissionError(RuntimeError):
    """Raised when someone other than its author tries to delete a comment."""

    def __init__(self, comment_id: str, message: str) -> None:
        super().__init__(message)
        self.comment_id = comment_id


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _generate_id() -> str:
    return uuid.uuid4().hex


class _ListenerRegistry:
    """Per-key callbacks with idempotent unsubscribe handles."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._listeners: Dict[str, Dict[int, Callable[[Any], None]]] = {}
        self._next_token = 0

    def add(self, key: str, callback: Callable[[Any], None]) -> Unsubscribe:
        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._listeners.setdefault(key, {})[token] = callback

        def unsubscribe() -> None:
            with self._lock:
                listeners = self._listeners.get(key)
                if listeners is None:
                    return
                listeners.pop(token, None)
                if not listeners:
                    del self._listeners[key]

        return unsubscribe

    def callbacks(self, key: str) -> List[Callable[[Any], None]]:
        with self._lock:
            return list(self._listeners.get(key, {}).values())

    def has_listeners(self, key: str) -> bool:
        with self._lock:
            return bool(self._listeners.get(key))


class NodeStore(ABC):
    """Interface describing how stories and nodes are stored and observed.

    Implementations provide the raw record access (``_load_*``/``_save_*``);
    the mutation semantics shared by every backend live here.
    """

    def __init__(self, *, clock: Clock | None = None) -> None:
        self._clock: Clock = clock or _utcnow
        self._lock = threading.RLock()
        self._node_listeners = _ListenerRegistry()
        self._story_listeners = _ListenerRegistry()
        self._comment_listeners = _ListenerRegistry()

    # ------------------------------------------------------------ backend api
    @abstractmethod
    def _load_story(self, story_id: str) -> Story | None:
        """Return the stored story or ``None``."""

    @abstractmethod
    def _save_story(self, story: Story) -> None:
        """Persist ``story``, replacing any previous version."""

    @abstractmethod
    def _all_stories(self) -> List[Story]:
        """Return every stored story."""

    @abstractmethod
    def _load_node(self, node_id: str) -> StoryNode | None:
        """Return the stored node or ``None``."""

    @abstractmethod
    def _save_node(self, node: StoryNode) -> None:
        """Persist ``node``, replacing any previous version."""

    @abstractmethod
    def _remove_node(self, node_id: str) -> None:
        """Delete the stored node if present."""

    @abstractmethod
    def _story_nodes(self, story_id: str) -> List[StoryNode]:
        """Return every node belonging to ``story_id`` in any order."""

    @abstractmethod
    def _load_comment(self, comment_id: str) -> NodeComment | None:
        """Return the stored comment or ``None``."""

    @abstractmethod
    def _save_comment(self, comment: NodeComment) -> None:
        """Persist ``comment``, replacing any previous version."""

    @abstractmethod
    def _remove_comment(self, comment_id: str) -> None:
        """Delete the stored comment if present."""

    @abstractmethod
    def _node_comments(self, node_id: str) -> List[NodeComment]:
        """Return every comment attached to ``node_id`` in any order."""

    # -------------------------------------------------------------- stories
    def create_story(
        self,
        *,
        title: str,
        genre: str,
        visibility: Visibility | str,
        owner_id: str,
        owner_name: str,
        description: str = "",
        starter_prompt: str = "",
    ) -> Story:
        """Create a story; a non-blank ``starter_prompt`` becomes its canon root."""

        now = self._clock()
        story = Story(
            id=_generate_id(),
            title=title,
            genre=genre,
            visibility=Visibility(visibility),
            owner_id=owner_id,
            owner_name=owner_name,
            description=description,
            starter_prompt=starter_prompt,
            contributors=(owner_id,),
            node_count=0,
            created_at=now,
            updated_at=now,
        )

        root: StoryNode | None = None
        if story.starter_prompt:
            root = StoryNode(
                id=_generate_id(),
                story_id=story.id,
                parent_id=None,
                content=story.starter_prompt,
                author_id=story.owner_id,
                author_name=story.owner_name,
                is_canon=True,
                order=0,
                created_at=now,
            )
            story = replace(story, node_count=1)

        with self._lock:
            self._save_story(story)
            if root is not None:
                self._save_node(root)
            self._notify_story(story.id)
            if root is not None:
                self._notify_nodes(story.id)

        logger.info("Created story %s (%s)", story.id, story.title)
        return story

    def get_story(self, story_id: str) -> Story:
        """Return the story identified by ``story_id``.

        Raises:
            KeyError: If the story does not exist.
        """

        story = self._load_story(_validate_text(story_id, field_name="story id"))
        if story is None:
            raise KeyError(f"Story '{story_id}' does not exist")
        return story

    def list_stories(self, *, owner_id: str | None = None) -> List[Story]:
        """Return an owner's stories, or every public story, newest first."""

        stories = self._all_stories()
        if owner_id is not None:
            selected = [story for story in stories if story.owner_id == owner_id]
        else:
            selected = [story for story in stories if story.is_public]
        return sorted(selected, key=lambda story: (story.updated_at, story.id), reverse=True)

    def subscribe_story(self, story_id: str, on_change: StoryListener) -> Unsubscribe:
        """Call ``on_change`` with the story now and after every change."""

        with self._lock:
            unsubscribe = self._story_listeners.add(story_id, on_change)
            on_change(self._load_story(story_id))
        return unsubscribe

    # ---------------------------------------------------------------- nodes
    def fetch_story_nodes(self, story_id: str) -> List[StoryNode]:
        """Return the current nodes of ``story_id`` ordered by insertion."""

        return sorted(self._story_nodes(story_id), key=lambda node: (node.order, node.id))

    def subscribe_story_nodes(self, story_id: str, on_change: NodesListener) -> Unsubscribe:
        """Call ``on_change`` with the full node snapshot now and after every change."""

        with self._lock:
            unsubscribe = self._node_listeners.add(story_id, on_change)
            on_change(self.fetch_story_nodes(story_id))
        return unsubscribe

    def get_node(self, node_id: str) -> StoryNode:
        node = self._load_node(_validate_text(node_id, field_name="node id"))
        if node is None:
            raise KeyError(f"Node '{node_id}' does not exist")
        return node

    def create_node(
        self,
        story_id: str,
        *,
        content: str,
        author_id: str,
        author_name: str,
        parent_id: str | None = None,
    ) -> StoryNode:
        """Append a node to ``story_id``.

        The node's ``order`` is the number of nodes already in the story. The
        author joins the story's contributors and ``node_count`` is bumped.

        Raises:
            KeyError: If the story does not exist.
            ValueError: If ``parent_id`` does not name a node of the same story.
        """

        with self._lock:
            story = self.get_story(story_id)
            if parent_id is not None:
                parent = self._load_node(parent_id)
                if parent is None or parent.story_id != story.id:
                    raise ValueError(
                        f"Parent node '{parent_id}' does not belong to story '{story.id}'"
                    )

            now = self._clock()
            node = StoryNode(
                id=_generate_id(),
                story_id=story.id,
                parent_id=parent_id,
                content=content,
                author_id=author_id,
                author_name=author_name,
                order=len(self._story_nodes(story.id)),
                created_at=now,
            )
            self._save_node(node)
            updated_story = replace(
                story.with_contributor(node.author_id),
                node_count=story.node_count + 1,
                updated_at=now,
            )
            self._save_story(updated_story)
            self._notify_nodes(story.id)
            self._notify_story(story.id)

        logger.info("Created node %s in story %s", node.id, story.id)
        return node

    def vote_node(self, node_id: str, user_id: str) -> StoryNode:
        """Toggle ``user_id``'s vote; voting twice withdraws the vote."""

        with self._lock:
            node = self.get_node(node_id).with_vote_toggled(user_id)
            self._save_node(node)
            self._notify_nodes(node.story_id)

        logger.info("Vote toggled on node %s by %s (now %d)", node.id, user_id, node.votes)
        return node

    def react_to_node(self, node_id: str, user_id: str, emoji: str) -> StoryNode:
        """Toggle ``user_id``'s ``emoji`` reaction on ``node_id``."""

        with self._lock:
            node = self.get_node(node_id).with_reaction_toggled(emoji, user_id)
            self._save_node(node)
            self._notify_nodes(node.story_id)

        return node

    def mark_node_canon(self, node_id: str) -> StoryNode:
        """Flag ``node_id`` as part of the official storyline."""

        with self._lock:
            node = self.get_node(node_id).with_canon(True)
            self._save_node(node)
            self._touch_story(node.story_id)
            self._notify_nodes(node.story_id)
            self._notify_story(node.story_id)

        logger.info("Node %s marked canon", node.id)
        return node

    def update_node(self, node_id: str, content: str) -> StoryNode:
        """Replace the text of ``node_id``."""

        with self._lock:
            node = self.get_node(node_id).with_content(content)
            self._save_node(node)
            self._notify_nodes(node.story_id)

        return node

    def delete_node(self, node_id: str) -> None:
        """Remove ``node_id`` and its comments; its children stay behind as orphans."""

        with self._lock:
            node = self.get_node(node_id)
            self._remove_node(node.id)
            for comment in self._node_comments(node.id):
                self._remove_comment(comment.id)
            story = self._load_story(node.story_id)
            if story is not None:
                self._save_story(
                    replace(
                        story,
                        node_count=len(self._story_nodes(story.id)),
                        updated_at=self._clock(),
                    )
                )
            self._notify_nodes(node.story_id)
            self._notify_story(node.story_id)
            self._notify_comments(node.id)

        logger.info("Deleted node %s from story %s", node.id, node.story_id)

    # ------------------------------------------------------------- comments
    def fetch_node_comments(self, node_id: str) -> List[NodeComment]:
        """Return the comments on ``node_id``, oldest first."""

        return sorted(
            self._node_comments(node_id),
            key=lambda comment: (comment.created_at, comment.id),
        )

    def subscribe_node_comments(
        self, node_id: str, on_change: CommentsListener
    ) -> Unsubscribe:
        """Call ``on_change`` with the node's comments now and after every change."""

        with self._lock:
            unsubscribe = self._comment_listeners.add(node_id, on_change)
            on_change(self.fetch_node_comments(node_id))
        return unsubscribe

    def get_comment(self, comment_id: str) -> NodeComment:
        comment = self._load_comment(_validate_text(comment_id, field_name="comment id"))
        if comment is None:
            raise KeyError(f"Comment '{comment_id}' does not exist")
        return comment

    def add_comment(
        self, node_id: str, *, user_id: str, user_name: str, content: str
    ) -> NodeComment:
        """Attach a comment by ``user_id`` to ``node_id``.

        Raises:
            KeyError: If the node does not exist.
        """

        with self._lock:
            node = self.get_node(node_id)
            comment = NodeComment(
                id=_generate_id(),
                node_id=node.id,
                story_id=node.story_id,
                user_id=user_id,
                user_name=user_name,
                content=content,
                created_at=self._clock(),
            )
            self._save_comment(comment)
            self._notify_comments(node.id)

        logger.info("Comment %s added to node %s by %s", comment.id, node.id, comment.user_id)
        return comment

    def react_to_comment(self, comment_id: str, user_id: str, emoji: str) -> NodeComment:
        """Toggle ``user_id``'s ``emoji`` reaction on ``comment_id``."""

        with self._lock:
            comment = self.get_comment(comment_id).with_reaction_toggled(
                emoji, user_id, updated_at=self._clock()
            )
            self._save_comment(comment)
            self._notify_comments(comment.node_id)

        return comment

    def delete_comment(self, comment_id: str, user_id: str) -> None:
        """Remove ``comment_id``; only its author may do so.

        Raises:
            KeyError: If the comment does not exist.
            CommentPermissionError: If ``user_id`` did not write the comment.
        """

        with self._lock:
            comment = self.get_comment(comment_id)
            if comment.user_id != user_id:
                raise CommentPermissionError(
                    comment.id, f"Only the author may delete comment '{comment.id}'"
                )
            self._remove_comment(comment.id)
            self._notify_comments(comment.node_id)

        logger.info("Deleted comment %s from node %s", comment.id, comment.node_id)

    # -------------------------------------------------------------- helpers
    def _touch_story(self, story_id: str) -> None:
        story = self._load_story(story_id)
        if story is not None:
            self._save_story(replace(story, updated_at=self._clock()))

    def _notify_nodes(self, story_id: str) -> None:
        if not self._node_listeners.has_listeners(story_id):
            return
        snapshot = self.fetch_story_nodes(story_id)
        for callback in self._node_listeners.callbacks(story_id):
            callback(list(snapshot))

    def _notify_story(self, story_id: str) -> None:
        if not self._story_listeners.has_listeners(story_id):
            return
        story = self._load_story(story_id)
        for callback in self._story_listeners.callbacks(story_id):
            callback(story)

    def _notify_comments(self, node_id: str) -> None:
        if not self._comment_listeners.has_listeners(node_id):
            return
        snapshot = self.fetch_node_comments(node_id)
        for callback in self._comment_listeners.callbacks(node_id):
            callback(list(snapshot))


class InMemoryNodeStore(NodeStore):
    """Keep stories, nodes and comments in local process memory."""

    def __init__(self, *, clock: Clock | None = None) -> None:
        super().__init__(clock=clock)
        self._stories: Dict[str, Story] = {}
        self._nodes: Dict[str, StoryNode] = {}
        self._comments: Dict[str, NodeComment] = {}

    def _load_story(self, story_id: str) -> Story | None:
        return self._stories.get(story_id)

    def _save_story(self, story: Story) -> None:
        self._stories[story.id] = story

    def _all_stories(self) -> List[Story]:
        return list(self._stories.values())

    def _load_node(self, node_id: str) -> StoryNode | None:
        return self._nodes.get(node_id)

    def _save_node(self, node: StoryNode) -> None:
        self._nodes[node.id] = node

    def _remove_node(self, node_id: str) -> None:
        self._nodes.pop(node_id, None)

    def _story_nodes(self, story_id: str) -> List[StoryNode]:
        return [node for node in self._nodes.values() if node.story_id == story_id]

    def _load_comment(self, comment_id: str) -> NodeComment | None:
        return self._comments.get(comment_id)

    def _save_comment(self, comment: NodeComment) -> None:
        self._comments[comment.id] = comment

    def _remove_comment(self, comment_id: str) -> None:
        self._comments.pop(comment_id, None)

    def _node_comments(self, node_id: str) -> List[NodeComment]:
        return [comment for comment in self._comments.values() if comment.node_id == node_id]


class FileNodeStore(NodeStore):
    """Persist stories, nodes and comments as JSON documents on disk.

    Stories live in ``<root>/stories/<id>.json``, nodes in
    ``<root>/nodes/<id>.json`` and comments in ``<root>/comments/<id>.json``,
    using the same document shape as the hosted collections. Subscribers are
    only notified of changes made through this instance.
    """

    def __init__(self, root: Path, *, clock: Clock | None = None) -> None:
        super().__init__(clock=clock)
        self.root = Path(root)
        self._stories_dir = self.root / "stories"
        self._nodes_dir = self.root / "nodes"
        self._comments_dir = self.root / "comments"
        try:
            for directory in (self._stories_dir, self._nodes_dir, self._comments_dir):
                directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise RuntimeError(f"Failed to prepare story storage at '{self.root}'.") from exc

    def _load_story(self, story_id: str) -> Story | None:
        payload = self._read(self._stories_dir, story_id)
        return Story.from_payload(payload) if payload is not None else None

    def _save_story(self, story: Story) -> None:
        self._write(self._stories_dir, story.id, story.to_payload())

    def _all_stories(self) -> List[Story]:
        return [Story.from_payload(payload) for payload in self._read_all(self._stories_dir)]

    def _load_node(self, node_id: str) -> StoryNode | None:
        payload = self._read(self._nodes_dir, node_id)
        return StoryNode.from_payload(payload) if payload is not None else None

    def _save_node(self, node: StoryNode) -> None:
        self._write(self._nodes_dir, node.id, node.to_payload())

    def _remove_node(self, node_id: str) -> None:
        self._delete(self._nodes_dir, node_id)

    def _story_nodes(self, story_id: str) -> List[StoryNode]:
        nodes = (StoryNode.from_payload(payload) for payload in self._read_all(self._nodes_dir))
        return [node for node in nodes if node.story_id == story_id]

    def _load_comment(self, comment_id: str) -> NodeComment | None:
        payload = self._read(self._comments_dir, comment_id)
        return NodeComment.from_payload(payload) if payload is not None else None

    def _save_comment(self, comment: NodeComment) -> None:
        self._write(self._comments_dir, comment.id, comment.to_payload())

    def _remove_comment(self, comment_id: str) -> None:
        self._delete(self._comments_dir, comment_id)

    def _node_comments(self, node_id: str) -> List[NodeComment]:
        comments = (
            NodeComment.from_payload(payload) for payload in self._read_all(self._comments_dir)
        )
        return [comment for comment in comments if comment.node_id == node_id]

    @staticmethod
    def _path(directory: Path, identifier: str) -> Path:
        validated = _validate_text(identifier, field_name="identifier")
        if "/" in validated or "\\" in validated or validated.startswith("."):
            raise ValueError(f"Invalid identifier '{identifier}'")
        return directory / f"{validated}.json"

    def _read(self, directory: Path, identifier: str) -> Mapping[str, Any] | None:
        # Identifiers that cannot name a document are reported as missing.
        try:
            path = self._path(directory, identifier)
        except ValueError:
            return None
        if not path.exists():
            return None
        return self._read_file(path)

    def _read_all(self, directory: Path) -> List[Mapping[str, Any]]:
        return [
            self._read_file(path)
            for path in sorted(directory.glob("*.json"))
            if path.is_file()
        ]

    @staticmethod
    def _read_file(path: Path) -> Mapping[str, Any]:
        try:
            with path.open("r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except OSError as exc:
            raise RuntimeError(f"Failed to read '{path.name}'.") from exc
        except json.JSONDecodeError as exc:
            raise ValueError(f"Stored document '{path.name}' is not valid JSON.") from exc
        if not isinstance(payload, dict):
            raise ValueError(f"Stored document '{path.name}' must be a JSON object.")
        return payload

    def _write(self, directory: Path, identifier: str, payload: Mapping[str, Any]) -> None:
        path = self._path(directory, identifier)
        try:
            with path.open("w", encoding="utf-8") as handle:
                json.dump(dict(payload), handle, ensure_ascii=False, indent=2)
        except OSError as exc:
            raise RuntimeError(f"Failed to write '{path.name}'.") from exc

    def _delete(self, directory: Path, identifier: str) -> None:
        path = self._path(directory, identifier)
        if path.exists():
            try:
                path.unlink()
            except OSError as exc:
                raise RuntimeError(f"Failed to delete '{path.name}'.") from exc


__all__ = [
    "CommentPermissionError",
    "CommentsListener",
    "FileNodeStore",
    "InMemoryNodeStore",
    "NodeStore",
    "NodesListener",
    "StoryListener",
    "Unsubscribe",
]
