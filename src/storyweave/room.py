"""Keep a rendered graph and a reader in step with a live node feed."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, List

from .graph import GraphLayout, StoryGraph, build_graph
from .models import StoryNode
from .reader import StoryReader
from .store import NodeStore, Unsubscribe

logger = logging.getLogger(__name__)

RoomListener = Callable[["StoryRoom"], None]


class StoryRoom:
    """Subscribe to one story's nodes and rebuild derived views per snapshot.

    Every snapshot replaces the graph wholesale; there is no incremental
    update. The reader keeps the longest part of its path that still exists.
    """

    def __init__(
        self,
        store: NodeStore,
        story_id: str,
        *,
        layout: GraphLayout | None = None,
    ) -> None:
        self.story_id = story_id
        self._layout = layout or GraphLayout()
        self._lock = threading.Lock()
        self._nodes: List[StoryNode] = []
        self._graph = StoryGraph()
        self._reader = StoryReader(())
        self._listeners: Dict[int, RoomListener] = {}
        self._next_token = 0
        self._unsubscribe: Unsubscribe | None = None
        self._closed = False
        # Raises KeyError for unknown stories before subscribing.
        store.get_story(story_id)
        self._unsubscribe = store.subscribe_story_nodes(story_id, self._on_snapshot)

    @property
    def nodes(self) -> List[StoryNode]:
        with self._lock:
            return list(self._nodes)

    @property
    def graph(self) -> StoryGraph:
        with self._lock:
            return self._graph

    @property
    def reader(self) -> StoryReader:
        with self._lock:
            return self._reader

    @property
    def closed(self) -> bool:
        return self._closed

    def add_listener(self, callback: RoomListener) -> Callable[[], None]:
        """Call ``callback`` after every rebuild; returns a removal handle."""

        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._listeners[token] = callback

        def remove() -> None:
            with self._lock:
                self._listeners.pop(token, None)

        return remove

    def close(self) -> None:
        self._closed = True
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def __enter__(self) -> "StoryRoom":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _on_snapshot(self, nodes: List[StoryNode]) -> None:
        if self._closed:
            return
        graph = build_graph(nodes, self._layout)
        with self._lock:
            previous = self._reader
            reader = previous.with_nodes(nodes)
            if not reader.cursor:
                reader.start()
            self._nodes = list(nodes)
            self._graph = graph
            self._reader = reader
            listeners = list(self._listeners.values())

        logger.debug(
            "Room %s rebuilt with %d nodes and %d edges",
            self.story_id,
            len(graph.positioned_nodes),
            len(graph.edges),
        )
        for listener in listeners:
            listener(self)


__all__ = ["StoryRoom", "RoomListener"]
