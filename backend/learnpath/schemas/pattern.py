"""Learning pattern and adjustment schemas."""

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from learnpath.schemas.roadmap import RoadmapResponse, utcnow


class PatternType(StrEnum):
    STRUGGLE_AREA = "struggle_area"
    STRENGTH_AREA = "strength_area"
    PACE_PREFERENCE = "pace_preference"
    CONTENT_PREFERENCE = "content_preference"


class LearningPattern(BaseModel):
    """A detected performance or behavior trend.

    ``subject`` is the topic for struggle/strength patterns and the attribute
    name ("pace", "content_type") for preference patterns.
    """

    student_id: str
    pattern_type: PatternType
    subject: str
    confidence: float = Field(ge=0.0, le=1.0)
    metrics: dict[str, Any] = Field(default_factory=dict)
    detected_at: datetime = Field(default_factory=utcnow)
    superseded_at: datetime | None = None

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.student_id, self.pattern_type.value, self.subject.lower())

    def same_finding(self, other: "LearningPattern") -> bool:
        """True when ``other`` reports exactly what this pattern reports."""
        return (
            self.key == other.key
            and round(self.confidence, 4) == round(other.confidence, 4)
            and self.metrics == other.metrics
        )


class AssessmentOutcomeRequest(BaseModel):
    """Outcome reported by the assessment-taking subsystem."""

    assessment_id: str
    passed: bool
    score: float = Field(ge=0, le=100)
    topic_tags: list[str] | None = None
    wrong_answer_topics: list[str] | None = None
    timestamp: datetime | None = None


class AdjustmentResponse(BaseModel):
    student_id: str
    adjusted: bool
    degraded: bool = False
    reason: str | None = None
    remedial_items_added: int = 0
    alternative_path_added: bool = False
    patterns: list[LearningPattern] = Field(default_factory=list)
    roadmap: RoadmapResponse | None = None
