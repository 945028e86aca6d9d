"""Pydantic schemas."""

from learnpath.schemas.course import Course, Difficulty, Lesson
from learnpath.schemas.pattern import (
    AdjustmentResponse,
    AssessmentOutcomeRequest,
    LearningPattern,
    PatternType,
)
from learnpath.schemas.roadmap import (
    DifficultyProgression,
    GenerateRoadmapRequest,
    GenerationStrategy,
    ItemKind,
    ItemStatus,
    LearningPathItem,
    LearningPathItemProgress,
    PersonalizationFactors,
    Roadmap,
    RoadmapResponse,
    RoadmapStatus,
    RoadmapStatusUpdate,
)
from learnpath.schemas.student import (
    AssessmentRecord,
    LearningPreferences,
    LearningStyle,
    Pace,
    StudentContext,
    StudentRecords,
    TimeConstraints,
)

__all__ = [
    "Course",
    "Difficulty",
    "Lesson",
    "AssessmentRecord",
    "LearningPreferences",
    "LearningStyle",
    "Pace",
    "StudentContext",
    "StudentRecords",
    "TimeConstraints",
    "DifficultyProgression",
    "GenerateRoadmapRequest",
    "GenerationStrategy",
    "ItemKind",
    "ItemStatus",
    "LearningPathItem",
    "LearningPathItemProgress",
    "PersonalizationFactors",
    "Roadmap",
    "RoadmapResponse",
    "RoadmapStatus",
    "RoadmapStatusUpdate",
    "AdjustmentResponse",
    "AssessmentOutcomeRequest",
    "LearningPattern",
    "PatternType",
]
