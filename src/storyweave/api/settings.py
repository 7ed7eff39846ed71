"""Configuration helpers for deploying the FastAPI story service."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from ..graph import GraphLayout


def _normalise_path(value: str | None) -> Path | None:
    if value is None:
        return None

    trimmed = value.strip()
    if not trimmed:
        return None

    return Path(trimmed).expanduser()


def _parse_spacing(value: str | None, *, name: str, default: float) -> float:
    if value is None:
        return default

    trimmed = value.strip()
    if not trimmed:
        return default

    try:
        parsed = float(trimmed)
    except ValueError as exc:
        raise ValueError(f"{name} must be a positive number.") from exc
    if parsed <= 0:
        raise ValueError(f"{name} must be greater than zero.")
    return parsed


@dataclass(frozen=True)
class StoryApiSettings:
    """Deployment settings for the FastAPI application.

    Values come from environment variables so the service can be configured
    without code changes. When no data root is configured the application keeps
    everything in memory, which is mostly useful for demos and tests.
    """

    data_root: Path | None = None
    horizontal_spacing: float = 250.0
    vertical_spacing: float = 150.0

    @property
    def layout(self) -> GraphLayout:
        return GraphLayout(
            horizontal_spacing=self.horizontal_spacing,
            vertical_spacing=self.vertical_spacing,
        )

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "StoryApiSettings":
        """Return settings populated from ``environ``.

        Args:
            environ: Optional mapping of environment variables. When omitted,
                :data:`os.environ` is used.
        """

        source = environ if environ is not None else os.environ

        return cls(
            data_root=_normalise_path(source.get("STORYWEAVE_DATA_ROOT")),
            horizontal_spacing=_parse_spacing(
                source.get("STORYWEAVE_HORIZONTAL_SPACING"),
                name="STORYWEAVE_HORIZONTAL_SPACING",
                default=250.0,
            ),
            vertical_spacing=_parse_spacing(
                source.get("STORYWEAVE_VERTICAL_SPACING"),
                name="STORYWEAVE_VERTICAL_SPACING",
                default=150.0,
            ),
        )


__all__ = ["StoryApiSettings"]
