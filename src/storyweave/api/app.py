"""FastAPI application exposing story, node, graph and reader endpoints."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Literal, Protocol, Sequence

from fastapi import FastAPI, HTTPException, Query, Response
from pydantic import BaseModel, Field, field_serializer, field_validator

from ..analytics import compute_story_metrics
from ..graph import GraphLayout, StoryGraph, build_graph
from ..models import NodeComment, Story, StoryNode, Visibility
from ..reader import (
    InvalidTransitionError,
    ReaderState,
    choose_branch,
    resolve_state,
    start,
    validate_cursor,
)
from ..store import CommentPermissionError, FileNodeStore, InMemoryNodeStore, NodeStore
from .settings import StoryApiSettings

logger = logging.getLogger(__name__)


class ContributionRewarder(Protocol):
    """Hook for the gamification service that credits contributions.

    Point and XP arithmetic lives outside this application; the service only
    reports what happened after a mutation succeeded.
    """

    def node_created(self, story: Story, node: StoryNode) -> None:
        """Called after ``node`` was added to ``story``."""

    def vote_cast(self, node: StoryNode, user_id: str, added: bool) -> None:
        """Called after ``user_id`` added (or withdrew) a vote on ``node``."""


def _strip_required(value: str, *, label: str) -> str:
    trimmed = value.strip()
    if not trimmed:
        raise ValueError(f"{label} must be a non-empty string.")
    return trimmed


class StoryResource(BaseModel):
    """Representation of a story exposed through the API."""

    id: str = Field(..., description="Stable identifier for the story.")
    title: str = Field(..., description="Human readable story title.")
    genre: str = Field(..., description="Free-text category for the story.")
    visibility: Visibility = Field(..., description="Whether the story is listed publicly.")
    owner_id: str = Field(..., description="Identity of the story owner.")
    owner_name: str = Field(..., description="Display name of the story owner.")
    description: str = Field("", description="Optional synopsis shown in listings.")
    contributors: list[str] = Field(
        default_factory=list, description="Identities that have written nodes."
    )
    node_count: int = Field(..., description="Number of nodes in the story.")
    created_at: datetime = Field(..., description="Timestamp of story creation.")
    updated_at: datetime = Field(..., description="Timestamp of the latest change.")

    @field_serializer("created_at")
    def _serialise_created_at(self, value: datetime) -> str:
        return value.isoformat()

    @field_serializer("updated_at")
    def _serialise_updated_at(self, value: datetime) -> str:
        return value.isoformat()


class StoryListResponse(BaseModel):
    """Response envelope listing stories, most recently updated first."""

    data: list[StoryResource] = Field(default_factory=list)


class StoryCreateRequest(BaseModel):
    """Request payload for starting a new story."""

    title: str = Field(..., description="Title of the new story.")
    genre: str = Field(..., description="Free-text category for the story.")
    visibility: Visibility = Field(Visibility.PUBLIC, description="Listing visibility.")
    owner_id: str = Field(..., description="Identity of the creating user.")
    owner_name: str = Field(..., description="Display name of the creating user.")
    description: str = Field("", description="Optional synopsis.")
    starter_prompt: str = Field(
        "", description="Opening text; when present it becomes the canon root node."
    )

    @field_validator("title", "genre", "owner_id", "owner_name")
    @classmethod
    def _normalise_required(cls, value: str) -> str:
        return _strip_required(value, label="Field")


class NodeResource(BaseModel):
    """Representation of a single story node."""

    id: str
    story_id: str
    parent_id: str | None = None
    content: str
    author_id: str
    author_name: str
    votes: int = Field(..., description="Number of voters; always equals len(voters).")
    voters: list[str] = Field(default_factory=list)
    is_canon: bool = False
    order: int = 0
    created_at: datetime | None = None
    reactions: dict[str, list[str]] = Field(
        default_factory=dict, description="User ids keyed by the emoji they reacted with."
    )

    @field_serializer("created_at")
    def _serialise_created_at(self, value: datetime | None) -> str | None:
        return value.isoformat() if value is not None else None


class NodeListResponse(BaseModel):
    """Response envelope listing the nodes of a story in insertion order."""

    data: list[NodeResource] = Field(default_factory=list)


class NodeCreateRequest(BaseModel):
    """Request payload for contributing a node to a story."""

    parent_id: str | None = Field(
        None, description="Node to branch from; omit to add a new root."
    )
    content: str = Field(..., description="Narrative text of the node.")
    author_id: str = Field(..., description="Identity of the author.")
    author_name: str = Field(..., description="Display name of the author.")

    @field_validator("content", "author_id", "author_name")
    @classmethod
    def _normalise_required(cls, value: str) -> str:
        return _strip_required(value, label="Field")


class NodeUpdateRequest(BaseModel):
    """Request payload for editing a node's text."""

    content: str = Field(..., description="Replacement narrative text.")

    @field_validator("content")
    @classmethod
    def _normalise_content(cls, value: str) -> str:
        return _strip_required(value, label="Content")


class VoteRequest(BaseModel):
    """Request payload for toggling a vote."""

    user_id: str = Field(..., description="Identity casting or withdrawing the vote.")

    @field_validator("user_id")
    @classmethod
    def _normalise_user(cls, value: str) -> str:
        return _strip_required(value, label="User id")


class VoteResponse(BaseModel):
    """Result of a vote toggle."""

    node: NodeResource
    action: Literal["added", "removed"]


class ReactionRequest(BaseModel):
    """Request payload for toggling an emoji reaction."""

    user_id: str = Field(..., description="Identity adding or withdrawing the reaction.")
    emoji: str = Field(..., description="Emoji to toggle.")

    @field_validator("user_id", "emoji")
    @classmethod
    def _normalise_required(cls, value: str) -> str:
        return _strip_required(value, label="Field")


class CommentResource(BaseModel):
    """Representation of a comment left on a node."""

    id: str
    node_id: str
    story_id: str
    user_id: str
    user_name: str
    content: str
    reactions: dict[str, list[str]] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime

    @field_serializer("created_at", "updated_at")
    def _serialise_timestamps(self, value: datetime) -> str:
        return value.isoformat()


class CommentListResponse(BaseModel):
    """Response envelope listing a node's comments, oldest first."""

    data: list[CommentResource] = Field(default_factory=list)


class CommentCreateRequest(BaseModel):
    """Request payload for commenting on a node."""

    user_id: str = Field(..., description="Identity of the commenter.")
    user_name: str = Field(..., description="Display name of the commenter.")
    content: str = Field(..., description="Text of the comment.")

    @field_validator("user_id", "user_name", "content")
    @classmethod
    def _normalise_required(cls, value: str) -> str:
        return _strip_required(value, label="Field")


class GraphNodeResource(BaseModel):
    """A node positioned for rendering."""

    id: str
    x: float
    y: float
    level: int
    node: NodeResource


class GraphEdgeResource(BaseModel):
    """A parent to child link."""

    source_id: str
    target_id: str
    is_canon_path: bool


class StoryGraphResponse(BaseModel):
    """Positioned nodes and edges for a story."""

    nodes: list[GraphNodeResource] = Field(default_factory=list)
    edges: list[GraphEdgeResource] = Field(default_factory=list)


class StoryMetricsResource(BaseModel):
    """Structural metrics for a story tree."""

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
    average_branching: float
    is_well_formed: bool


class ReaderStateResponse(BaseModel):
    """Reader view of a story: the path, the current node and its branches."""

    cursor: list[str] = Field(default_factory=list)
    current_node: NodeResource | None = None
    branches: list[NodeResource] = Field(default_factory=list)
    is_empty: bool
    is_end_of_path: bool


class BranchRequest(BaseModel):
    """Request payload for stepping from the end of ``cursor`` into ``node_id``."""

    cursor: list[str] = Field(..., description="Current path from the root.")
    node_id: str = Field(..., description="Child of the last cursor node to enter.")


def _build_story_resource(story: Story) -> StoryResource:
    return StoryResource(
        id=story.id,
        title=story.title,
        genre=story.genre,
        visibility=story.visibility,
        owner_id=story.owner_id,
        owner_name=story.owner_name,
        description=story.description,
        contributors=list(story.contributors),
        node_count=story.node_count,
        created_at=story.created_at,
        updated_at=story.updated_at,
    )


def _build_node_resource(node: StoryNode) -> NodeResource:
    return NodeResource(
        id=node.id,
        story_id=node.story_id,
        parent_id=node.parent_id,
        content=node.content,
        author_id=node.author_id,
        author_name=node.author_name,
        votes=node.votes,
        voters=list(node.voters),
        is_canon=node.is_canon,
        order=node.order,
        created_at=node.created_at,
        reactions={emoji: list(users) for emoji, users in node.reactions.items()},
    )


def _build_comment_resource(comment: NodeComment) -> CommentResource:
    return CommentResource(
        id=comment.id,
        node_id=comment.node_id,
        story_id=comment.story_id,
        user_id=comment.user_id,
        user_name=comment.user_name,
        content=comment.content,
        reactions={emoji: list(users) for emoji, users in comment.reactions.items()},
        created_at=comment.created_at,
        updated_at=comment.updated_at or comment.created_at,
    )


def _build_graph_response(graph: StoryGraph) -> StoryGraphResponse:
    return StoryGraphResponse(
        nodes=[
            GraphNodeResource(
                id=positioned.id,
                x=positioned.x,
                y=positioned.y,
                level=positioned.level,
                node=_build_node_resource(positioned.source_node),
            )
            for positioned in graph.positioned_nodes
        ],
        edges=[
            GraphEdgeResource(
                source_id=edge.source_id,
                target_id=edge.target_id,
                is_canon_path=edge.is_canon_path,
            )
            for edge in graph.edges
        ],
    )


def _build_reader_response(state: ReaderState) -> ReaderStateResponse:
    return ReaderStateResponse(
        cursor=list(state.cursor),
        current_node=(
            _build_node_resource(state.current_node)
            if state.current_node is not None
            else None
        ),
        branches=[_build_node_resource(node) for node in state.branches],
        is_empty=state.is_empty,
        is_end_of_path=state.is_end_of_path,
    )


def _parse_cursor(raw: str | None) -> list[str]:
    if raw is None:
        return []
    return [part.strip() for part in raw.split(",") if part.strip()]


class StoryService:
    """Business logic supporting the story endpoints."""

    def __init__(
        self,
        store: NodeStore,
        *,
        layout: GraphLayout | None = None,
        rewarder: ContributionRewarder | None = None,
    ) -> None:
        self._store = store
        self._layout = layout or GraphLayout()
        self._rewarder = rewarder

    def list_stories(self, *, owner_id: str | None = None) -> StoryListResponse:
        stories = self._store.list_stories(owner_id=owner_id)
        return StoryListResponse(data=[_build_story_resource(story) for story in stories])

    def get_story(self, story_id: str) -> StoryResource:
        return _build_story_resource(self._store.get_story(story_id))

    def create_story(self, payload: StoryCreateRequest) -> StoryResource:
        story = self._store.create_story(
            title=payload.title,
            genre=payload.genre,
            visibility=payload.visibility,
            owner_id=payload.owner_id,
            owner_name=payload.owner_name,
            description=payload.description,
            starter_prompt=payload.starter_prompt,
        )
        return _build_story_resource(story)

    def list_nodes(self, story_id: str) -> NodeListResponse:
        nodes = self._story_nodes(story_id)
        return NodeListResponse(data=[_build_node_resource(node) for node in nodes])

    def create_node(self, story_id: str, payload: NodeCreateRequest) -> NodeResource:
        node = self._store.create_node(
            story_id,
            parent_id=payload.parent_id,
            content=payload.content,
            author_id=payload.author_id,
            author_name=payload.author_name,
        )
        if self._rewarder is not None:
            self._rewarder.node_created(self._store.get_story(story_id), node)
        return _build_node_resource(node)

    def vote(self, node_id: str, user_id: str) -> VoteResponse:
        node = self._store.vote_node(node_id, user_id)
        added = node.has_voted(user_id)
        if self._rewarder is not None:
            self._rewarder.vote_cast(node, user_id, added)
        return VoteResponse(
            node=_build_node_resource(node), action="added" if added else "removed"
        )

    def mark_canon(self, node_id: str) -> NodeResource:
        return _build_node_resource(self._store.mark_node_canon(node_id))

    def update_node(self, node_id: str, content: str) -> NodeResource:
        return _build_node_resource(self._store.update_node(node_id, content))

    def delete_node(self, node_id: str) -> None:
        self._store.delete_node(node_id)

    def react_to_node(self, node_id: str, payload: ReactionRequest) -> NodeResource:
        node = self._store.react_to_node(node_id, payload.user_id, payload.emoji)
        return _build_node_resource(node)

    def list_comments(self, node_id: str) -> CommentListResponse:
        self._store.get_node(node_id)
        comments = self._store.fetch_node_comments(node_id)
        return CommentListResponse(data=[_build_comment_resource(item) for item in comments])

    def add_comment(self, node_id: str, payload: CommentCreateRequest) -> CommentResource:
        comment = self._store.add_comment(
            node_id,
            user_id=payload.user_id,
            user_name=payload.user_name,
            content=payload.content,
        )
        return _build_comment_resource(comment)

    def react_to_comment(
        self, node_id: str, comment_id: str, payload: ReactionRequest
    ) -> CommentResource:
        self._comment_on_node(node_id, comment_id)
        comment = self._store.react_to_comment(comment_id, payload.user_id, payload.emoji)
        return _build_comment_resource(comment)

    def delete_comment(self, node_id: str, comment_id: str, user_id: str) -> None:
        self._comment_on_node(node_id, comment_id)
        self._store.delete_comment(comment_id, user_id)

    def graph(self, story_id: str) -> StoryGraphResponse:
        graph = build_graph(self._story_nodes(story_id), self._layout)
        return _build_graph_response(graph)

    def metrics(self, story_id: str) -> StoryMetricsResource:
        metrics = compute_story_metrics(self._story_nodes(story_id))
        return StoryMetricsResource(**metrics.to_payload())

    def reader_state(self, story_id: str, cursor: Sequence[str]) -> ReaderStateResponse:
        nodes = self._story_nodes(story_id)
        if not cursor:
            return _build_reader_response(start(nodes))
        return _build_reader_response(resolve_state(validate_cursor(cursor, nodes), nodes))

    def choose_branch(
        self, story_id: str, cursor: Sequence[str], node_id: str
    ) -> ReaderStateResponse:
        nodes = self._story_nodes(story_id)
        path = validate_cursor(cursor, nodes)
        return _build_reader_response(choose_branch(path, node_id, nodes))

    def _story_nodes(self, story_id: str) -> list[StoryNode]:
        self._store.get_story(story_id)
        return self._store.fetch_story_nodes(story_id)

    def _comment_on_node(self, node_id: str, comment_id: str) -> NodeComment:
        comment = self._store.get_comment(comment_id)
        if comment.node_id != node_id:
            raise KeyError(f"Comment '{comment_id}' does not belong to node '{node_id}'")
        return comment


def _raise_for(exc: Exception) -> HTTPException:
    if isinstance(exc, CommentPermissionError):
        return HTTPException(status_code=403, detail=str(exc))
    if isinstance(exc, KeyError):
        detail = exc.args[0] if exc.args else "Not found."
        return HTTPException(status_code=404, detail=str(detail))
    if isinstance(exc, InvalidTransitionError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, (ValueError, TypeError)):
        return HTTPException(status_code=400, detail=str(exc))
    logger.error("Story service failure: %s", exc)
    return HTTPException(status_code=500, detail=str(exc))


_HANDLED_ERRORS = (KeyError, ValueError, TypeError, RuntimeError)


def create_app(
    store: NodeStore | None = None,
    *,
    settings: StoryApiSettings | None = None,
    rewarder: ContributionRewarder | None = None,
) -> FastAPI:
    """Create a FastAPI app exposing the collaborative story endpoints."""

    resolved_settings = settings or StoryApiSettings.from_env()

    resolved_store = store
    if resolved_store is None:
        if resolved_settings.data_root is not None:
            resolved_store = FileNodeStore(resolved_settings.data_root)
        else:
            resolved_store = InMemoryNodeStore()

    service = StoryService(
        resolved_store, layout=resolved_settings.layout, rewarder=rewarder
    )

    app = FastAPI(title="Storyweave API")

    @app.get("/api/health", tags=["System"])
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/stories", response_model=StoryListResponse, tags=["Stories"])
    def list_stories(owner_id: str | None = Query(None)) -> StoryListResponse:
        try:
            return service.list_stories(owner_id=owner_id)
        except _HANDLED_ERRORS as exc:
            raise _raise_for(exc) from exc

    @app.post(
        "/api/stories",
        response_model=StoryResource,
        status_code=201,
        tags=["Stories"],
    )
    def create_story(payload: StoryCreateRequest) -> StoryResource:
        try:
            return service.create_story(payload)
        except _HANDLED_ERRORS as exc:
            raise _raise_for(exc) from exc

    @app.get("/api/stories/{story_id}", response_model=StoryResource, tags=["Stories"])
    def get_story(story_id: str) -> StoryResource:
        try:
            return service.get_story(story_id)
        except _HANDLED_ERRORS as exc:
            raise _raise_for(exc) from exc

    @app.get(
        "/api/stories/{story_id}/nodes",
        response_model=NodeListResponse,
        tags=["Nodes"],
    )
    def list_nodes(story_id: str) -> NodeListResponse:
        try:
            return service.list_nodes(story_id)
        except _HANDLED_ERRORS as exc:
            raise _raise_for(exc) from exc

    @app.post(
        "/api/stories/{story_id}/nodes",
        response_model=NodeResource,
        status_code=201,
        tags=["Nodes"],
    )
    def create_node(story_id: str, payload: NodeCreateRequest) -> NodeResource:
        try:
            return service.create_node(story_id, payload)
        except _HANDLED_ERRORS as exc:
            raise _raise_for(exc) from exc

    @app.put("/api/nodes/{node_id}", response_model=NodeResource, tags=["Nodes"])
    def update_node(node_id: str, payload: NodeUpdateRequest) -> NodeResource:
        try:
            return service.update_node(node_id, payload.content)
        except _HANDLED_ERRORS as exc:
            raise _raise_for(exc) from exc

    @app.delete("/api/nodes/{node_id}", status_code=204, tags=["Nodes"])
    def delete_node(node_id: str) -> Response:
        try:
            service.delete_node(node_id)
        except _HANDLED_ERRORS as exc:
            raise _raise_for(exc) from exc
        return Response(status_code=204)

    @app.post(
        "/api/nodes/{node_id}/votes",
        response_model=VoteResponse,
        tags=["Nodes"],
    )
    def vote_node(node_id: str, payload: VoteRequest) -> VoteResponse:
        try:
            return service.vote(node_id, payload.user_id)
        except _HANDLED_ERRORS as exc:
            raise _raise_for(exc) from exc

    @app.post(
        "/api/nodes/{node_id}/canon",
        response_model=NodeResource,
        tags=["Nodes"],
    )
    def mark_canon(node_id: str) -> NodeResource:
        try:
            return service.mark_canon(node_id)
        except _HANDLED_ERRORS as exc:
            raise _raise_for(exc) from exc

    @app.post(
        "/api/nodes/{node_id}/reactions",
        response_model=NodeResource,
        tags=["Nodes"],
    )
    def react_to_node(node_id: str, payload: ReactionRequest) -> NodeResource:
        try:
            return service.react_to_node(node_id, payload)
        except _HANDLED_ERRORS as exc:
            raise _raise_for(exc) from exc

    @app.get(
        "/api/nodes/{node_id}/comments",
        response_model=CommentListResponse,
        tags=["Comments"],
    )
    def list_comments(node_id: str) -> CommentListResponse:
        try:
            return service.list_comments(node_id)
        except _HANDLED_ERRORS as exc:
            raise _raise_for(exc) from exc

    @app.post(
        "/api/nodes/{node_id}/comments",
        response_model=CommentResource,
        status_code=201,
        tags=["Comments"],
    )
    def add_comment(node_id: str, payload: CommentCreateRequest) -> CommentResource:
        try:
            return service.add_comment(node_id, payload)
        except _HANDLED_ERRORS as exc:
            raise _raise_for(exc) from exc

    @app.post(
        "/api/nodes/{node_id}/comments/{comment_id}/reactions",
        response_model=CommentResource,
        tags=["Comments"],
    )
    def react_to_comment(
        node_id: str, comment_id: str, payload: ReactionRequest
    ) -> CommentResource:
        try:
            return service.react_to_comment(node_id, comment_id, payload)
        except _HANDLED_ERRORS as exc:
            raise _raise_for(exc) from exc

    @app.delete(
        "/api/nodes/{node_id}/comments/{comment_id}",
        status_code=204,
        tags=["Comments"],
    )
    def delete_comment(
        node_id: str,
        comment_id: str,
        user_id: str = Query(..., description="Identity requesting the deletion."),
    ) -> Response:
        try:
            service.delete_comment(node_id, comment_id, user_id)
        except _HANDLED_ERRORS as exc:
            raise _raise_for(exc) from exc
        return Response(status_code=204)

    @app.get(
        "/api/stories/{story_id}/graph",
        response_model=StoryGraphResponse,
        tags=["Graph"],
    )
    def story_graph(story_id: str) -> StoryGraphResponse:
        try:
            return service.graph(story_id)
        except _HANDLED_ERRORS as exc:
            raise _raise_for(exc) from exc

    @app.get(
        "/api/stories/{story_id}/metrics",
        response_model=StoryMetricsResource,
        tags=["Graph"],
    )
    def story_metrics(story_id: str) -> StoryMetricsResource:
        try:
            return service.metrics(story_id)
        except _HANDLED_ERRORS as exc:
            raise _raise_for(exc) from exc

    @app.get(
        "/api/stories/{story_id}/reader",
        response_model=ReaderStateResponse,
        tags=["Reader"],
    )
    def reader_state(
        story_id: str,
        cursor: str | None = Query(
            None, description="Comma separated node ids from the root."
        ),
    ) -> ReaderStateResponse:
        try:
            return service.reader_state(story_id, _parse_cursor(cursor))
        except _HANDLED_ERRORS as exc:
            raise _raise_for(exc) from exc

    @app.post(
        "/api/stories/{story_id}/reader/branch",
        response_model=ReaderStateResponse,
        tags=["Reader"],
    )
    def reader_branch(story_id: str, payload: BranchRequest) -> ReaderStateResponse:
        try:
            return service.choose_branch(story_id, payload.cursor, payload.node_id)
        except _HANDLED_ERRORS as exc:
            raise _raise_for(exc) from exc

    return app


__all__ = [
    "ContributionRewarder",
    "StoryService",
    "create_app",
]
