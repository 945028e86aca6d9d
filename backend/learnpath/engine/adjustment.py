"""Adaptive adjustment of an existing roadmap after a failed assessment."""

from dataclasses import dataclass, field
from datetime import datetime

from learnpath.core.config import EngineConfig
from learnpath.core.logging import get_logger
from learnpath.engine.course_graph import CourseGraph
from learnpath.engine.orchestrator import RemedialFallback, generate_remedial
from learnpath.engine.patterns import (
    PatternScan,
    consecutive_failures,
    detect_topic_patterns,
    extract_gap_topics,
    merge_history,
)
from learnpath.engine.requester import RoadmapRequester
from learnpath.engine.rule_based import unique_reference
from learnpath.schemas.pattern import LearningPattern, PatternType
from learnpath.schemas.roadmap import (
    GenerationStrategy,
    LearningPathItem,
    Roadmap,
    renumber,
    utcnow,
)
from learnpath.schemas.student import AssessmentRecord, StudentContext

logger = get_logger(__name__)

TEXT_HEAVY_TAGS = frozenset({"text", "reading", "article"})
DEFAULT_ALTERNATIVE_MEDIA = ("interactive", "video")


@dataclass
class AdjustmentResult:
    roadmap: Roadmap
    patterns: list[LearningPattern] = field(default_factory=list)
    cleared: list[tuple[PatternType, str]] = field(default_factory=list)
    gap_topics: list[str] = field(default_factory=list)
    remedial_items: list[LearningPathItem] = field(default_factory=list)
    alternative_path: str | None = None
    degraded_reason: str | None = None

    @property
    def adjusted(self) -> bool:
        return bool(self.remedial_items) or self.alternative_path is not None

    @property
    def degraded(self) -> bool:
        return self.degraded_reason is not None


# ============================================================================
# Insertion
# ============================================================================


def current_position(roadmap: Roadmap, context: StudentContext) -> int:
    """Index of the first item the student has not completed (end of path if none)."""
    for index, item in enumerate(roadmap.learning_path):
        if item.reference not in context.completed_content:
            return index
    return len(roadmap.learning_path)


def find_insertion_point(
    roadmap: Roadmap,
    context: StudentContext,
    graph: CourseGraph,
    gap_topics: list[str],
) -> int:
    """Before the first uncompleted item depending on a gap topic, else at the current position."""
    start = current_position(roadmap, context)
    gaps = {t.lower() for t in gap_topics}
    for index in range(start, len(roadmap.learning_path)):
        item = roadmap.learning_path[index]
        if item.reference in context.completed_content:
            continue
        if gaps & {t.lower() for t in item.topics}:
            return index
        if any(graph.depends_on_topic(item.reference, topic) for topic in gaps):
            return index
    return start


def _fits_at(item: LearningPathItem, index: int, roadmap: Roadmap, graph: CourseGraph) -> bool:
    """Catalog prerequisites of ``item`` that sit in the path must come before ``index``."""
    if item.reference not in graph:
        return True
    later = set(roadmap.references()[index:])
    return not (graph.prerequisites(item.reference) & later)


def insert_remedial_items(
    roadmap: Roadmap,
    items: list[LearningPathItem],
    index: int,
    graph: CourseGraph,
    config: EngineConfig,
) -> list[LearningPathItem]:
    """New path with up to ``max_remedial_items`` inserted at ``index``, renumbered."""
    taken = set(roadmap.references())
    accepted: list[LearningPathItem] = []
    for item in items[: config.max_remedial_items]:
        if not _fits_at(item, index, roadmap, graph):
            logger.warning("Skipping remedial item with later prerequisites", reference=item.reference)
            continue
        reference = unique_reference(item.reference, taken)
        taken.add(reference)
        accepted.append(item.model_copy(update={"reference": reference}))

    path = list(roadmap.learning_path)
    path[index:index] = accepted
    return renumber(path)


# ============================================================================
# Alternative paths
# ============================================================================


def build_alternative_path(
    topic: str,
    roadmap: Roadmap,
    context: StudentContext,
    graph: CourseGraph,
) -> str:
    """Describe a swap of text-heavy items on ``topic`` for preferred-media courses."""
    media = sorted(context.preferences.preferred_media - TEXT_HEAVY_TAGS) or list(DEFAULT_ALTERNATIVE_MEDIA)
    in_path = set(roadmap.references())
    used: set[str] = set()
    swaps: list[str] = []

    for item in roadmap.learning_path:
        if item.reference in context.completed_content:
            continue
        course = graph.course(item.reference)
        if course is None or not course.covers(topic) or not (course.tags & TEXT_HEAVY_TAGS):
            continue
        replacement = next(
            (
                c
                for c in graph.covering(topic)
                if c.id not in in_path
                and c.id not in used
                and c.id not in context.completed_content
                and c.tags & set(media)
            ),
            None,
        )
        if replacement is not None:
            used.add(replacement.id)
            swaps.append(f"{course.title} -> {replacement.title}")

    if swaps:
        return (
            f"Alternative path for '{topic}' ({', '.join(media)} focus): "
            + "; ".join(swaps)
            + ". The original sequence stays available."
        )
    return (
        f"Alternative path for '{topic}': revisit the topic through {', '.join(media)} material"
        " before retrying the assessment. The original sequence stays available."
    )


# ============================================================================
# Entry point
# ============================================================================


def _merged_strategy(current: GenerationStrategy, added: GenerationStrategy | None) -> GenerationStrategy:
    if added is None or added == current:
        return current
    return GenerationStrategy.HYBRID


def _reasoning_note(
    trigger: AssessmentRecord,
    gap_topics: list[str],
    added: int,
    strategy: GenerationStrategy | None,
    struggles: list[LearningPattern],
    now: datetime,
) -> str:
    note = (
        f"Adaptive adjustment ({now.date().isoformat()}): assessment {trigger.assessment_id}"
        f" scored {trigger.score:g}. Gaps: {', '.join(gap_topics)}."
        f" Added {added} remedial item(s)"
    )
    if strategy is not None:
        note += f" via {strategy.value}"
    note += "."
    if struggles:
        note += " Struggling with: " + ", ".join(f"{p.subject} ({p.confidence:.2f})" for p in struggles) + "."
    return note


def scan_outcome_patterns(
    trigger: AssessmentRecord,
    context: StudentContext,
    config: EngineConfig,
    now: datetime,
) -> PatternScan:
    """Topic patterns touched by one attempt: its tags, plus gap topics when it failed."""
    history = merge_history(context.assessment_history, trigger)
    topics = {t.lower() for t in trigger.topic_tags}
    if not trigger.passed:
        topics |= set(extract_gap_topics(trigger, history, config.assessment_window))
    return detect_topic_patterns(context.student_id, history, sorted(topics), config, now)


async def adjust_for_assessment(
    *,
    trigger: AssessmentRecord,
    context: StudentContext,
    graph: CourseGraph,
    roadmap: Roadmap,
    config: EngineConfig,
    requester: RoadmapRequester | None,
    remedial_fallback: RemedialFallback | None = None,
    now: datetime | None = None,
) -> AdjustmentResult:
    """React to one assessment outcome.

    Passed attempts only refresh topic patterns. Failed attempts also get
    remedial items inserted ahead of dependent content, a dated reasoning
    note, and an alternative path after repeated failures. If no remedial
    content can be produced the roadmap is returned unchanged with a
    degraded reason.
    """
    now = now or utcnow()
    scan = scan_outcome_patterns(trigger, context, config, now)
    if trigger.passed:
        return AdjustmentResult(roadmap=roadmap, patterns=scan.patterns, cleared=scan.cleared)

    history = merge_history(context.assessment_history, trigger)
    trigger_topics = sorted({t.lower() for t in trigger.topic_tags})
    gap_topics = extract_gap_topics(trigger, history, config.assessment_window)
    result = AdjustmentResult(roadmap=roadmap, patterns=scan.patterns, cleared=scan.cleared, gap_topics=gap_topics)

    if not gap_topics:
        result.degraded_reason = "Assessment carries no topic information"
        return result

    outcome = await generate_remedial(
        context,
        graph,
        config,
        requester,
        roadmap,
        gap_topics,
        remedial_fallback=remedial_fallback,
    )
    if outcome.degraded_reason or not outcome.items:
        result.degraded_reason = outcome.degraded_reason or "No remedial content could be generated"
        logger.warning(
            "Adjustment degraded",
            student_id=context.student_id,
            assessment_id=trigger.assessment_id,
            reason=result.degraded_reason,
        )
        return result

    index = find_insertion_point(roadmap, context, graph, gap_topics)
    path = insert_remedial_items(roadmap, outcome.items, index, graph, config)
    existing = set(roadmap.references())
    added = [item for item in path if item.reference not in existing]
    if not added:
        result.degraded_reason = "Remedial items could not be placed without breaking prerequisites"
        return result

    alternative_paths = list(roadmap.alternative_paths)
    for topic in trigger_topics or gap_topics:
        if consecutive_failures(history, topic) >= config.consecutive_failures_for_alternative:
            description = build_alternative_path(topic, roadmap, context, graph)
            if description not in alternative_paths:
                alternative_paths.append(description)
                result.alternative_path = description
            break

    struggles = [p for p in scan.patterns if p.pattern_type == PatternType.STRUGGLE_AREA]
    note = _reasoning_note(trigger, gap_topics, len(added), outcome.strategy, struggles, now)
    reasoning = f"{roadmap.personalization_reasoning}\n\n{note}" if roadmap.personalization_reasoning else note

    result.remedial_items = added
    result.roadmap = roadmap.model_copy(
        update={
            "learning_path": path,
            "personalization_reasoning": reasoning,
            "alternative_paths": alternative_paths,
            "generation_strategy": _merged_strategy(roadmap.generation_strategy, outcome.strategy),
            "last_adjusted_at": now,
        }
    )
    logger.info(
        "Roadmap adjusted",
        student_id=context.student_id,
        assessment_id=trigger.assessment_id,
        gap_topics=gap_topics,
        remedial_added=len(added),
        insertion_index=index,
        alternative_path=result.alternative_path is not None,
    )
    return result
