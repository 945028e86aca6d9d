"""API dependencies."""

from collections.abc import AsyncGenerator
from functools import lru_cache
from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from learnpath.core.config import EngineConfig, get_settings
from learnpath.core.database import get_session
from learnpath.core.logging import get_logger
from learnpath.engine.llm import get_llm
from learnpath.engine.rate_limit import SlidingWindowRateLimiter, TTLResponseCache
from learnpath.engine.requester import RoadmapRequester
from learnpath.services.collaborators import InMemoryCollaborators
from learnpath.services.locks import StudentLockRegistry
from learnpath.services.roadmap_service import RoadmapService

logger = get_logger(__name__)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency."""
    async for session in get_session():
        yield session


@lru_cache
def get_engine_config() -> EngineConfig:
    return EngineConfig.from_settings(get_settings())


@lru_cache
def get_collaborators() -> InMemoryCollaborators:
    """Catalog, profile and assessment stores, seeded from CATALOG_SEED_PATH when set."""
    settings = get_settings()
    if settings.CATALOG_SEED_PATH:
        return InMemoryCollaborators.from_seed(settings.CATALOG_SEED_PATH)
    logger.warning("No catalog seed configured, starting with an empty catalog")
    return InMemoryCollaborators()


@lru_cache
def get_requester() -> RoadmapRequester | None:
    """Provider requester, or None when AI generation is disabled or unconfigured."""
    settings = get_settings()
    if not settings.AI_ENABLED:
        return None
    if not settings.OPENAI_API_KEY:
        logger.warning("OPENAI_API_KEY not set, using rule-based generation only")
        return None
    return RoadmapRequester(
        get_llm(),
        timeout_seconds=settings.PROVIDER_TIMEOUT_SECONDS,
        retry_backoff_seconds=settings.PROVIDER_RETRY_BACKOFF_SECONDS,
        rate_limiter=SlidingWindowRateLimiter(
            settings.RATE_LIMIT_REQUESTS_PER_MINUTE,
            settings.RATE_LIMIT_TOKENS_PER_MINUTE,
        ),
        cache=TTLResponseCache(settings.RESPONSE_CACHE_TTL_SECONDS, settings.RESPONSE_CACHE_MAX_SIZE),
        max_remedial_items=settings.MAX_REMEDIAL_ITEMS,
    )


@lru_cache
def get_lock_registry() -> StudentLockRegistry:
    return StudentLockRegistry()


def get_roadmap_service() -> RoadmapService:
    collaborators = get_collaborators()
    return RoadmapService(
        catalog=collaborators,
        profiles=collaborators,
        assessments=collaborators,
        requester=get_requester(),
        config=get_engine_config(),
        locks=get_lock_registry(),
    )


# Database dependency
DBDep = Annotated[AsyncSession, Depends(get_db)]

# Roadmap service dependency
ServiceDep = Annotated[RoadmapService, Depends(get_roadmap_service)]
