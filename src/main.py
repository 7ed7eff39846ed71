"""Command-line reader for stories stored on disk."""

from __future__ import annotations

import argparse
import logging
import os
import textwrap
from pathlib import Path
from typing import Sequence

from storyweave import (
    FileNodeStore,
    InvalidTransitionError,
    NodeStore,
    ReaderState,
    StoryReader,
    build_graph,
)
from storyweave.graph import GraphLayout

_WRAP_WIDTH = 78


def _format_state(state: ReaderState) -> str:
    """Render the current node and its numbered branches."""

    if state.is_empty or state.current_node is None:
        return "This story has no nodes yet."

    node = state.current_node
    canon = " [canon]" if node.is_canon else ""
    lines = [
        f"-- {node.author_name}{canon} ({node.votes} votes) --",
        textwrap.fill(node.content, width=_WRAP_WIDTH),
    ]
    if state.branches:
        lines.append("")
        for index, branch in enumerate(state.branches, start=1):
            preview = textwrap.shorten(branch.content, width=60, placeholder="...")
            lines.append(f"[{index}] {preview} ({branch.votes} votes)")
    else:
        lines.append("")
        lines.append("The path ends here. Type 'reset' to start over.")
    return "\n".join(lines)


def _format_path(reader: StoryReader) -> str:
    by_id = {node.id: node for node in reader.nodes}
    entries = []
    for index, node_id in enumerate(reader.cursor):
        node = by_id.get(node_id)
        label = textwrap.shorten(node.content, width=40, placeholder="...") if node else node_id
        entries.append(f"{index}: {label}")
    return "\n".join(entries) if entries else "(empty path)"


def format_graph(store: NodeStore, story_id: str, layout: GraphLayout | None = None) -> str:
    """Return a level-by-level outline of the story tree."""

    graph = build_graph(store.fetch_story_nodes(story_id), layout)
    if graph.is_empty:
        return "This story has no nodes yet."

    canon_targets = {edge.target_id for edge in graph.edges if edge.is_canon_path}
    lines = []
    for level, members in graph.levels().items():
        labels = []
        for member in members:
            marker = "*" if member.source_node.is_canon or member.id in canon_targets else ""
            preview = textwrap.shorten(member.source_node.content, width=24, placeholder="...")
            labels.append(f"{preview}{marker}")
        lines.append(f"L{level}: " + " | ".join(labels))
    lines.append(f"{len(graph.edges)} links across {len(graph.positioned_nodes)} nodes")
    return "\n".join(lines)


def run_cli(store: NodeStore, story_id: str) -> None:
    """Drive a small interactive reading loop using ``input``/``print``."""

    story = store.get_story(story_id)
    reader = StoryReader(store.fetch_story_nodes(story_id))
    state = reader.start()

    print(f"Reading '{story.title}' ({story.genre}).")
    print("Type a branch number, 'back', 'reset', 'jump <n>', 'path' or 'quit'.")
    print()
    print(_format_state(state))

    while True:
        try:
            raw = input("> ")
        except EOFError:
            print()
            break

        command = raw.strip().lower()
        if not command:
            continue
        if command in {"quit", "q", "exit"}:
            break

        try:
            if command.isdigit():
                index = int(command) - 1
                if not 0 <= index < len(state.branches):
                    print(f"There is no branch {command}.")
                    continue
                state = reader.choose_branch(state.branches[index].id)
            elif command == "back":
                state = reader.go_back()
            elif command == "reset":
                state = reader.reset_to_start()
            elif command.startswith("jump"):
                _, _, argument = command.partition(" ")
                if not argument.strip().isdigit():
                    print("Usage: jump <position>")
                    continue
                state = reader.jump_to(int(argument))
            elif command == "path":
                print(_format_path(reader))
                continue
            else:
                print(f"Unknown command '{command}'.")
                continue
        except InvalidTransitionError as exc:
            print(str(exc))
            continue

        print()
        print(_format_state(state))

    print("Goodbye!")


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Read a collaborative story")
    parser.add_argument(
        "--data-root",
        type=Path,
        help=(
            "Directory holding the story documents. "
            "Defaults to STORYWEAVE_DATA_ROOT when unset."
        ),
    )
    parser.add_argument(
        "--story",
        required=True,
        help="Identifier of the story to read.",
    )
    parser.add_argument(
        "--graph",
        action="store_true",
        help="Print the story tree level by level and exit.",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity (default: WARNING).",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> None:
    """Open a story from disk and read it interactively."""

    args = _parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level))

    data_root: Path | None = args.data_root
    if data_root is None:
        env_root = os.getenv("STORYWEAVE_DATA_ROOT")
        if env_root is not None and env_root.strip():
            data_root = Path(env_root.strip()).expanduser()
    if data_root is None:
        print("A data directory is required (--data-root or STORYWEAVE_DATA_ROOT).")
        raise SystemExit(2)

    store = FileNodeStore(data_root)
    try:
        store.get_story(args.story)
    except KeyError:
        print(f"Story '{args.story}' does not exist in {data_root}.")
        raise SystemExit(1)

    if args.graph:
        print(format_graph(store, args.story))
        return

    run_cli(store, args.story)


if __name__ == "__main__":
    main()
