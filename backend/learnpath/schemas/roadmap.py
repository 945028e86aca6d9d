"""Roadmap schemas for the engine and API."""

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, Field, computed_field, model_validator

from learnpath.schemas.course import Difficulty
from learnpath.schemas.student import TimeConstraints


class ItemKind(StrEnum):
    COURSE = "course"
    LESSON = "lesson"
    ASSESSMENT = "assessment"
    REMEDIAL = "remedial"


class ItemStatus(StrEnum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class GenerationStrategy(StrEnum):
    AI = "ai"
    RULE_BASED = "rule_based"
    HYBRID = "hybrid"


class RoadmapStatus(StrEnum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


def utcnow() -> datetime:
    return datetime.now(UTC)


class LearningPathItem(BaseModel):
    """One step in a roadmap. Progress status is derived, never stored here."""

    position: int = Field(ge=0)
    reference: str
    kind: ItemKind
    title: str = ""
    estimated_time: int = Field(gt=0, description="Minutes")
    difficulty: Difficulty
    rationale: str = ""
    topics: list[str] = Field(default_factory=list)


class DifficultyProgression(BaseModel):
    start: Difficulty
    end: Difficulty

    @model_validator(mode="after")
    def _ordered(self) -> "DifficultyProgression":
        if self.start.rank > self.end.rank:
            raise ValueError("difficulty_progression.start must not exceed end")
        return self


class PersonalizationFactors(BaseModel):
    knowledge_gaps: list[str] = Field(default_factory=list)
    preference_summary: str = ""
    time_constraint_summary: str | None = None
    target_skills: list[str] | None = None


class Roadmap(BaseModel):
    """Ordered, validated learning path for one student."""

    student_id: str
    learning_path: list[LearningPathItem] = Field(default_factory=list)
    personalization_reasoning: str = ""
    alternative_paths: list[str] = Field(default_factory=list)
    success_metrics: list[str] = Field(default_factory=list)
    difficulty_progression: DifficultyProgression
    personalization_factors: PersonalizationFactors = Field(default_factory=PersonalizationFactors)
    generation_strategy: GenerationStrategy
    created_at: datetime = Field(default_factory=utcnow)
    last_adjusted_at: datetime | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_estimated_time(self) -> int:
        return sum(item.estimated_time for item in self.learning_path)

    @model_validator(mode="after")
    def _dense_positions(self) -> "Roadmap":
        positions = [item.position for item in self.learning_path]
        if positions != list(range(len(positions))):
            raise ValueError("learning_path positions must be dense and start at 0")
        return self

    def references(self) -> list[str]:
        return [item.reference for item in self.learning_path]


def renumber(items: list[LearningPathItem]) -> list[LearningPathItem]:
    """Return copies of ``items`` with positions re-derived from list order."""
    return [item.model_copy(update={"position": i}) for i, item in enumerate(items)]


def difficulty_span(items: list[LearningPathItem]) -> DifficultyProgression:
    """Lowest and highest difficulty present in ``items`` (beginner when empty)."""
    if not items:
        return DifficultyProgression(start=Difficulty.BEGINNER, end=Difficulty.BEGINNER)
    ranks = sorted(items, key=lambda item: item.difficulty.rank)
    return DifficultyProgression(start=ranks[0].difficulty, end=ranks[-1].difficulty)


# ============================================================================
# Progress view
# ============================================================================


class LearningPathItemProgress(LearningPathItem):
    """Path item enriched with progress derived from the student's records."""

    status: ItemStatus = ItemStatus.NOT_STARTED
    is_unlocked: bool = False


# ============================================================================
# API
# ============================================================================


class GenerateRoadmapRequest(BaseModel):
    student_id: str
    target_skills: list[str] | None = None
    time_constraints: TimeConstraints | None = None
    force_regenerate: bool = False


class RoadmapStatusUpdate(BaseModel):
    status: RoadmapStatus


class RoadmapResponse(BaseModel):
    """Stored roadmap plus derived progress."""

    student_id: str
    version: int
    status: RoadmapStatus
    generation_strategy: GenerationStrategy
    total_estimated_time: int
    personalization_reasoning: str
    alternative_paths: list[str]
    success_metrics: list[str]
    difficulty_progression: DifficultyProgression
    personalization_factors: PersonalizationFactors
    learning_path: list[LearningPathItemProgress]
    created_at: datetime
    last_adjusted_at: datetime | None
