"""Service layer modules."""

from learnpath.services import collaborators, locks, roadmap_service, roadmap_store

__all__ = [
    "collaborators",
    "locks",
    "roadmap_service",
    "roadmap_store",
]
