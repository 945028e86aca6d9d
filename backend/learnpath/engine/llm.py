"""LLM provider configuration."""

from functools import lru_cache

from langchain_openai import ChatOpenAI

from learnpath.core.config import get_settings
from learnpath.core.logging import get_logger

logger = get_logger(__name__)


@lru_cache
def get_llm() -> ChatOpenAI:
    """Get the chat model used for roadmap reasoning.

    Client-side retries are disabled; the requester owns the retry policy
    and the per-call timeout.
    """
    settings = get_settings()

    kwargs: dict = {
        "model": settings.OPENAI_MODEL,
        "temperature": settings.OPENAI_TEMPERATURE,
        "timeout": settings.PROVIDER_TIMEOUT_SECONDS,
        "max_retries": 0,
    }

    if settings.OPENAI_API_KEY:
        kwargs["api_key"] = settings.OPENAI_API_KEY
    if settings.OPENAI_API_BASE_URL:
        kwargs["base_url"] = settings.OPENAI_API_BASE_URL

    logger.info("Initializing LLM", model=settings.OPENAI_MODEL)
    return ChatOpenAI(**kwargs)
