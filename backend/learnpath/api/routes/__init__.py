"""API routes."""

from learnpath.api.routes import roadmaps

__all__ = ["roadmaps"]
