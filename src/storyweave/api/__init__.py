"""FastAPI application exposing collaborative story endpoints."""

from .app import ContributionRewarder, StoryService, create_app
from .settings import StoryApiSettings

__all__ = ["ContributionRewarder", "StoryApiSettings", "StoryService", "create_app"]
