"""Database models."""

from learnpath.models.pattern import LearningPatternRecord
from learnpath.models.roadmap import RoadmapRecord

__all__ = [
    "RoadmapRecord",
    "LearningPatternRecord",
]
