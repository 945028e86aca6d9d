"""Student profile, preference and assessment schemas."""

from datetime import date, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Pace(StrEnum):
    SLOW = "slow"
    MODERATE = "moderate"
    FAST = "fast"


class LearningStyle(StrEnum):
    VISUAL = "visual"
    AUDITORY = "auditory"
    READING = "reading"
    KINESTHETIC = "kinesthetic"
    MIXED = "mixed"


class TimeConstraints(BaseModel):
    """Time budget supplied with a generation request."""

    model_config = ConfigDict(frozen=True)

    hours_per_week: float = Field(gt=0)
    target_completion_date: date | None = None


class LearningPreferences(BaseModel):
    model_config = ConfigDict(frozen=True)

    pace: Pace = Pace.MODERATE
    style: LearningStyle = LearningStyle.MIXED
    preferred_media: frozenset[str] = frozenset()
    hours_per_week: float | None = Field(default=None, gt=0)
    target_completion_date: date | None = None

    def summary(self) -> str:
        parts = [f"pace={self.pace.value}", f"style={self.style.value}"]
        if self.preferred_media:
            parts.append(f"media={','.join(sorted(self.preferred_media))}")
        if self.hours_per_week:
            parts.append(f"hours_per_week={self.hours_per_week:g}")
        return "; ".join(parts)


class AssessmentRecord(BaseModel):
    """A graded assessment attempt. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    assessment_id: str
    topic_tags: frozenset[str] = frozenset()
    score: float = Field(ge=0, le=100)
    passed: bool
    wrong_answer_topics: frozenset[str] = frozenset()
    timestamp: datetime


class StudentRecords(BaseModel):
    """Heterogeneous raw records gathered from the profile and assessment stores."""

    student_id: str
    knowledge_profile: dict[str, Any] = Field(default_factory=dict)
    learning_preferences: dict[str, Any] = Field(default_factory=dict)
    completed_content: list[str] = Field(default_factory=list)
    in_progress_content: list[str] = Field(default_factory=list)
    assessment_history: list[AssessmentRecord] = Field(default_factory=list)


class StudentContext(BaseModel):
    """Normalized, immutable view of a student for one generation request."""

    model_config = ConfigDict(frozen=True)

    student_id: str
    knowledge_profile: dict[str, float] = Field(default_factory=dict)
    preferences: LearningPreferences = Field(default_factory=LearningPreferences)
    completed_content: frozenset[str] = frozenset()
    in_progress_content: frozenset[str] = frozenset()
    assessment_history: tuple[AssessmentRecord, ...] = ()
    knowledge_gaps: frozenset[str] = frozenset()

    def has_gap(self, topics: frozenset[str]) -> bool:
        gaps = {g.lower() for g in self.knowledge_gaps}
        return any(t.lower() in gaps for t in topics)
