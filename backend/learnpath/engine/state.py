"""LangGraph state for roadmap and remedial generation."""

import operator
from enum import StrEnum
from typing import Annotated, TypedDict

from learnpath.engine.requester import RawPayload
from learnpath.engine.validator import RejectedPayload, ValidatedRemedial, ValidatedRoadmap
from learnpath.schemas.roadmap import GenerationStrategy, LearningPathItem, Roadmap
from learnpath.schemas.student import StudentContext, TimeConstraints


class GenerationPhase(StrEnum):
    START = "START"
    AI_REQUESTED = "AI_REQUESTED"
    AI_VALIDATED = "AI_VALIDATED"
    AI_FAILED = "AI_FAILED"
    RULE_BASED = "RULE_BASED"
    DONE = "DONE"


class GenerationMode(StrEnum):
    ROADMAP = "roadmap"
    REMEDIAL = "remedial"


class GenerationState(TypedDict, total=False):
    """State passed between generation nodes.

    Per-request collaborators (graph, requester, config) travel in the
    runnable config, not in state.
    """

    # === Input ===
    mode: GenerationMode
    context: StudentContext
    target_skills: list[str] | None
    time_constraints: TimeConstraints | None
    roadmap: Roadmap | None  # current roadmap, remedial mode only
    gap_topics: list[str]

    # === Progress (with reducer) ===
    use_ai: bool
    phase: GenerationPhase
    transitions: Annotated[list[GenerationPhase], operator.add]

    # === AI branch ===
    raw_payload: RawPayload | None
    validated: ValidatedRoadmap | None
    validated_remedial: ValidatedRemedial | None
    rejected: RejectedPayload | None
    failure: str | None

    # === Output ===
    result: Roadmap | None
    remedial_items: list[LearningPathItem]
    strategy: GenerationStrategy | None
    degraded_reason: str | None
