"""Application configuration."""

from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # App
    APP_NAME: str = "LearnPath"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False
    ENV: str = "development"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    WORKERS: int = 1

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./learnpath.db"
    DATABASE_ECHO: bool = False

    # Collaborators
    CATALOG_SEED_PATH: Path | None = None

    # AI
    AI_ENABLED: bool = True
    OPENAI_API_KEY: str | None = None
    OPENAI_API_BASE_URL: str | None = None
    OPENAI_MODEL: str = "gpt-4o-mini"
    OPENAI_TEMPERATURE: float = 0.3
    PROVIDER_TIMEOUT_SECONDS: float = 10.0
    PROVIDER_RETRY_BACKOFF_SECONDS: float = 1.0
    REQUEST_TIMEOUT_SECONDS: float = 20.0
    RATE_LIMIT_REQUESTS_PER_MINUTE: int = 60
    RATE_LIMIT_TOKENS_PER_MINUTE: int = 90_000
    RESPONSE_CACHE_TTL_SECONDS: float = 300.0
    RESPONSE_CACHE_MAX_SIZE: int = 256

    # Engine thresholds
    KNOWLEDGE_GAP_THRESHOLD: float = 0.5
    SLOW_PACE_MULTIPLIER: float = 1.3
    FAST_PACE_MULTIPLIER: float = 0.8
    MAX_REPAIR_RATIO: float = 0.3
    DEFAULT_REMEDIAL_MINUTES: int = 30
    ASSESSMENT_WINDOW: int = 5
    STRUGGLE_THRESHOLD: float = 65.0
    STRENGTH_THRESHOLD: float = 85.0
    MAX_REMEDIAL_ITEMS: int = 3
    CONSECUTIVE_FAILURES_FOR_ALTERNATIVE: int = 2
    ALLOW_DRAFTS: bool = False

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENV == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENV == "production"


class EngineConfig(BaseModel):
    """Immutable knobs for generation and adjustment.

    Built once per request from ``Settings`` and passed down explicitly, so
    engine code never reads ambient configuration mid-computation.
    """

    model_config = ConfigDict(frozen=True)

    knowledge_gap_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    slow_pace_multiplier: float = Field(default=1.3, gt=0)
    fast_pace_multiplier: float = Field(default=0.8, gt=0)
    max_repair_ratio: float = Field(default=0.3, ge=0.0, le=1.0)
    default_remedial_minutes: int = Field(default=30, gt=0)
    default_course_minutes: int = Field(default=120, gt=0)
    assessment_window: int = Field(default=5, ge=1)
    struggle_threshold: float = 65.0
    strength_threshold: float = 85.0
    min_pattern_data_points: int = Field(default=2, ge=1)
    confidence_saturation_points: int = Field(default=5, ge=1)
    max_remedial_items: int = Field(default=3, ge=1)
    consecutive_failures_for_alternative: int = Field(default=2, ge=1)
    allow_drafts: bool = False
    ai_enabled: bool = True
    request_timeout_seconds: float = Field(default=20.0, gt=0)

    @classmethod
    def from_settings(cls, settings: Settings) -> "EngineConfig":
        return cls(
            knowledge_gap_threshold=settings.KNOWLEDGE_GAP_THRESHOLD,
            slow_pace_multiplier=settings.SLOW_PACE_MULTIPLIER,
            fast_pace_multiplier=settings.FAST_PACE_MULTIPLIER,
            max_repair_ratio=settings.MAX_REPAIR_RATIO,
            default_remedial_minutes=settings.DEFAULT_REMEDIAL_MINUTES,
            assessment_window=settings.ASSESSMENT_WINDOW,
            struggle_threshold=settings.STRUGGLE_THRESHOLD,
            strength_threshold=settings.STRENGTH_THRESHOLD,
            max_remedial_items=settings.MAX_REMEDIAL_ITEMS,
            consecutive_failures_for_alternative=settings.CONSECUTIVE_FAILURES_FOR_ALTERNATIVE,
            allow_drafts=settings.ALLOW_DRAFTS,
            ai_enabled=settings.AI_ENABLED,
            request_timeout_seconds=settings.REQUEST_TIMEOUT_SECONDS,
        )

    @property
    def threshold_range(self) -> float:
        """Width of the band between struggle and strength thresholds."""
        return max(self.strength_threshold - self.struggle_threshold, 1.0)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
