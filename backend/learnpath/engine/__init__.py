"""Roadmap generation and adaptive adjustment engine."""

from learnpath.engine.adjustment import AdjustmentResult, adjust_for_assessment
from learnpath.engine.course_graph import CourseGraph, load_course_graph
from learnpath.engine.orchestrator import (
    GenerationOutcome,
    RemedialOutcome,
    generate_remedial,
    generate_roadmap,
    get_generation_graph,
)
from learnpath.engine.profile import aggregate_student_context
from learnpath.engine.progress import with_progress
from learnpath.engine.requester import RawPayload, RoadmapRequester
from learnpath.engine.rule_based import build_remedial_items, generate_rule_based_roadmap
from learnpath.engine.state import GenerationPhase
from learnpath.engine.validator import (
    RejectedPayload,
    ValidatedRemedial,
    ValidatedRoadmap,
    validate_remedial_payload,
    validate_roadmap_payload,
)

__all__ = [
    "AdjustmentResult",
    "adjust_for_assessment",
    "CourseGraph",
    "load_course_graph",
    "GenerationOutcome",
    "RemedialOutcome",
    "generate_remedial",
    "generate_roadmap",
    "get_generation_graph",
    "aggregate_student_context",
    "with_progress",
    "RawPayload",
    "RoadmapRequester",
    "build_remedial_items",
    "generate_rule_based_roadmap",
    "GenerationPhase",
    "RejectedPayload",
    "ValidatedRemedial",
    "ValidatedRoadmap",
    "validate_remedial_payload",
    "validate_roadmap_payload",
]
