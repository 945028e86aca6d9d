"""Deterministic roadmap generation from the course graph alone.

Never fails on a well-formed context and graph; used whenever the
reasoning provider is disabled or its output cannot be trusted.
"""

from datetime import datetime

from learnpath.core.config import EngineConfig
from learnpath.core.logging import get_logger
from learnpath.engine.course_graph import CourseGraph
from learnpath.schemas.course import Course, Difficulty
from learnpath.schemas.roadmap import (
    GenerationStrategy,
    ItemKind,
    LearningPathItem,
    PersonalizationFactors,
    Roadmap,
    difficulty_span,
    renumber,
    utcnow,
)
from learnpath.schemas.student import Pace, StudentContext, TimeConstraints

logger = get_logger(__name__)


# ============================================================================
# Shared helpers
# ============================================================================


def pace_multiplier(pace: Pace, config: EngineConfig) -> float:
    if pace == Pace.SLOW:
        return config.slow_pace_multiplier
    if pace == Pace.FAST:
        return config.fast_pace_multiplier
    return 1.0


def scaled_minutes(minutes: int, pace: Pace, config: EngineConfig) -> int:
    return max(1, round(minutes * pace_multiplier(pace, config)))


def time_budget_minutes(
    context: StudentContext,
    time_constraints: TimeConstraints | None,
    now: datetime,
) -> int | None:
    """Total minutes available until the target date, or None when unbounded.

    Request constraints win over stored preferences. A target date that is
    today or already past does not bound the path.
    """
    if time_constraints is not None:
        hours = time_constraints.hours_per_week
        target = time_constraints.target_completion_date
    else:
        hours = context.preferences.hours_per_week
        target = context.preferences.target_completion_date
    if not hours or target is None:
        return None
    days = (target - now.date()).days
    if days <= 0:
        return None
    return int(hours * 60 * days / 7)


def time_constraint_summary(
    context: StudentContext,
    time_constraints: TimeConstraints | None,
) -> str | None:
    hours = time_constraints.hours_per_week if time_constraints else context.preferences.hours_per_week
    target = (
        time_constraints.target_completion_date
        if time_constraints
        else context.preferences.target_completion_date
    )
    if not hours:
        return None
    summary = f"{hours:g} hours/week"
    if target:
        summary += f" until {target.isoformat()}"
    return summary


def build_personalization_factors(
    context: StudentContext,
    target_skills: list[str] | None,
    time_constraints: TimeConstraints | None,
) -> PersonalizationFactors:
    return PersonalizationFactors(
        knowledge_gaps=sorted(context.knowledge_gaps),
        preference_summary=context.preferences.summary(),
        time_constraint_summary=time_constraint_summary(context, time_constraints),
        target_skills=sorted(target_skills) if target_skills else None,
    )


def default_success_metrics(items: list[LearningPathItem], context: StudentContext) -> list[str]:
    metrics = [f"Complete all {len(items)} learning path items"]
    metrics.append("Score at least 70% on each related assessment")
    if context.knowledge_gaps:
        metrics.append(f"Close knowledge gaps: {', '.join(sorted(context.knowledge_gaps))}")
    return metrics


# ============================================================================
# Roadmap generation
# ============================================================================


def _candidate_courses(
    graph: CourseGraph,
    context: StudentContext,
    target_skills: list[str] | None,
) -> set[str]:
    open_courses = {c.id for c in graph.courses if c.id not in context.completed_content}
    if not target_skills:
        return open_courses

    targeted: set[str] = set()
    for skill in target_skills:
        for course in graph.covering(skill):
            targeted.add(course.id)
            targeted |= graph.all_prerequisites(course.id)
    targeted &= open_courses
    if not targeted:
        logger.info("No course covers target skills, using full catalog", target_skills=target_skills)
        return open_courses
    return targeted


def _split_blocked(
    graph: CourseGraph,
    candidates: set[str],
    completed: frozenset[str],
) -> tuple[set[str], dict[str, list[str]]]:
    """Separate candidates whose prerequisites can never be met in this path."""
    blocked: dict[str, list[str]] = {}
    for course_id in graph.topological_order(candidates, key=lambda cid: cid):
        missing = sorted(
            p
            for p in graph.prerequisites(course_id)
            if p not in completed and (p not in candidates or p in blocked)
        )
        if missing:
            blocked[course_id] = missing
    return candidates - set(blocked), blocked


def _rationale(course: Course, context: StudentContext, dependents: list[str]) -> str:
    gap_topics = sorted(t for t in course.topics if t.lower() in context.knowledge_gaps)
    if gap_topics:
        return f"Addresses knowledge gap: {', '.join(gap_topics)}"
    if dependents:
        return f"Prerequisite for {', '.join(dependents)}"
    return "Next step in the prerequisite progression"


def generate_rule_based_roadmap(
    context: StudentContext,
    graph: CourseGraph,
    config: EngineConfig,
    *,
    target_skills: list[str] | None = None,
    time_constraints: TimeConstraints | None = None,
    now: datetime | None = None,
) -> Roadmap:
    """Topologically ordered roadmap over uncompleted courses.

    Ties are broken by gap relevance, then difficulty, then course id, so
    identical inputs produce an identical item sequence. Items that do not
    fit the time budget are summarized as an alternative path.
    """
    now = now or utcnow()
    candidates = _candidate_courses(graph, context, target_skills)
    eligible, blocked = _split_blocked(graph, candidates, context.completed_content)

    courses = {c.id: c for c in graph.courses if c.id in eligible}

    def priority(course_id: str) -> tuple[int, int, str]:
        course = courses[course_id]
        return (0 if context.has_gap(course.topics) else 1, course.difficulty.rank, course_id)

    order = graph.topological_order(eligible, key=priority)
    budget = time_budget_minutes(context, time_constraints, now)
    pace = context.preferences.pace

    items: list[LearningPathItem] = []
    overflow: list[str] = []
    spent = 0
    for course_id in order:
        course = courses[course_id]
        minutes = scaled_minutes(course.estimated_duration, pace, config)
        if overflow or (budget is not None and spent + minutes > budget):
            overflow.append(f"{course.title} ({minutes} min)")
            continue
        spent += minutes
        dependents = sorted(
            graph.title(other) for other in order if course_id in graph.prerequisites(other)
        )
        items.append(
            LearningPathItem(
                position=len(items),
                reference=course.id,
                kind=ItemKind.COURSE,
                title=course.title,
                estimated_time=minutes,
                difficulty=course.difficulty,
                rationale=_rationale(course, context, dependents),
                topics=sorted(course.topics),
            )
        )

    alternative_paths: list[str] = []
    if overflow:
        alternative_paths.append(
            "Beyond the current time budget, continue with: " + ", ".join(overflow)
        )
    if blocked:
        alternative_paths.append(
            "Unavailable until prerequisites open up: "
            + "; ".join(f"{graph.title(cid)} (needs {', '.join(req)})" for cid, req in sorted(blocked.items()))
        )

    gaps = sorted(context.knowledge_gaps)
    reasoning = (
        f"Rule-based roadmap of {len(items)} courses ordered by prerequisites"
        f" at a {pace.value} pace."
    )
    if gaps:
        reasoning += f" Courses addressing {', '.join(gaps)} come first where prerequisites allow."
    if budget is not None:
        reasoning += f" Fits a budget of {budget} minutes."

    logger.info(
        "Rule-based roadmap generated",
        student_id=context.student_id,
        items=len(items),
        overflow=len(overflow),
        blocked=len(blocked),
    )

    return Roadmap(
        student_id=context.student_id,
        learning_path=items,
        personalization_reasoning=reasoning,
        alternative_paths=alternative_paths,
        success_metrics=default_success_metrics(items, context),
        difficulty_progression=difficulty_span(items),
        personalization_factors=build_personalization_factors(context, target_skills, time_constraints),
        generation_strategy=GenerationStrategy.RULE_BASED,
        created_at=now,
    )


# ============================================================================
# Remedial items
# ============================================================================


def _slug(topic: str) -> str:
    return "-".join(topic.lower().split())


def unique_reference(reference: str, taken: set[str]) -> str:
    if reference not in taken:
        return reference
    n = 2
    while f"{reference}#{n}" in taken:
        n += 1
    return f"{reference}#{n}"


def build_remedial_items(
    context: StudentContext,
    graph: CourseGraph,
    roadmap: Roadmap,
    gap_topics: list[str],
    config: EngineConfig,
) -> list[LearningPathItem]:
    """Rule-based remedial content for ``gap_topics``.

    Picks the easiest unseen course covering each topic whose prerequisites
    the student has completed; otherwise emits a review placeholder. Positions
    are placeholders and get assigned on insertion.
    """
    seen = set(context.completed_content) | set(context.in_progress_content) | set(roadmap.references())
    taken = set(roadmap.references())
    items: list[LearningPathItem] = []

    for topic in sorted({t.lower() for t in gap_topics}):
        if len(items) >= config.max_remedial_items:
            break
        course = next(
            (
                c
                for c in graph.covering(topic)
                if c.id not in seen and c.prerequisites <= context.completed_content
            ),
            None,
        )
        if course is not None:
            seen.add(course.id)
            reference = unique_reference(course.id, taken)
            item = LearningPathItem(
                position=0,
                reference=reference,
                kind=ItemKind.REMEDIAL,
                title=f"Review: {course.title}",
                estimated_time=scaled_minutes(course.estimated_duration, context.preferences.pace, config),
                difficulty=course.difficulty,
                rationale=f"Remedial course for '{topic}' after a failed assessment",
                topics=[topic],
            )
        else:
            reference = unique_reference(f"review:{_slug(topic)}", taken)
            item = LearningPathItem(
                position=0,
                reference=reference,
                kind=ItemKind.REMEDIAL,
                title=f"Review: {topic}",
                estimated_time=config.default_remedial_minutes,
                difficulty=Difficulty.BEGINNER,
                rationale=f"Targeted review of '{topic}' after a failed assessment",
                topics=[topic],
            )
        taken.add(reference)
        items.append(item)

    return renumber(items)
