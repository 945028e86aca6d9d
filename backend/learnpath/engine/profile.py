"""Profile aggregation: raw student records to an immutable StudentContext."""

from datetime import date
from typing import Any

from learnpath.core.config import EngineConfig
from learnpath.core.logging import get_logger
from learnpath.schemas.student import (
    AssessmentRecord,
    LearningPreferences,
    LearningStyle,
    Pace,
    StudentContext,
    StudentRecords,
)

logger = get_logger(__name__)

_LEVEL_PROFICIENCY = {
    "none": 0.0,
    "beginner": 0.2,
    "novice": 0.2,
    "intermediate": 0.5,
    "advanced": 0.8,
    "expert": 0.95,
}

_PACE_ALIASES = {
    "slow": Pace.SLOW,
    "relaxed": Pace.SLOW,
    "moderate": Pace.MODERATE,
    "medium": Pace.MODERATE,
    "normal": Pace.MODERATE,
    "fast": Pace.FAST,
    "intensive": Pace.FAST,
}


def _normalize_topic(topic: str) -> str:
    return topic.strip().lower()


def _proficiency(value: Any) -> float | None:
    """Coerce a profile value to [0, 1].

    Accepts fractions, percentages, level names, or a mapping carrying a
    ``score``/``proficiency``/``level`` entry.
    """
    if isinstance(value, dict):
        for key in ("proficiency", "score", "level"):
            if key in value:
                return _proficiency(value[key])
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        number = float(value)
        if number > 1.0:
            number /= 100.0
        return min(max(number, 0.0), 1.0)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _LEVEL_PROFICIENCY:
            return _LEVEL_PROFICIENCY[text]
        try:
            return _proficiency(float(text))
        except ValueError:
            return None
    return None


def normalize_knowledge_profile(raw: dict[str, Any]) -> dict[str, float]:
    profile: dict[str, float] = {}
    for topic, value in raw.items():
        score = _proficiency(value)
        if score is None:
            logger.debug("Skipping unreadable proficiency", topic=topic)
            continue
        profile[_normalize_topic(topic)] = round(score, 4)
    return dict(sorted(profile.items()))


def _as_str_set(value: Any) -> frozenset[str]:
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, list | tuple | set | frozenset):
        items = [str(v) for v in value]
    else:
        return frozenset()
    return frozenset(v.strip().lower() for v in items if v and v.strip())


def parse_preferences(raw: dict[str, Any]) -> LearningPreferences:
    """Lenient preference parsing; unknown values fall back to defaults."""
    pace_raw = str(raw.get("pace") or raw.get("learning_pace") or "").strip().lower()
    pace = _PACE_ALIASES.get(pace_raw, Pace.MODERATE)

    style_raw = str(raw.get("style") or raw.get("learning_style") or "").strip().lower()
    try:
        style = LearningStyle(style_raw)
    except ValueError:
        style = LearningStyle.MIXED

    media = _as_str_set(
        raw.get("preferred_media") or raw.get("preferred_content_types") or raw.get("media")
    )

    hours: float | None = None
    hours_raw = raw.get("hours_per_week") or raw.get("available_hours_per_week")
    try:
        if hours_raw is not None and float(hours_raw) > 0:
            hours = float(hours_raw)
    except (TypeError, ValueError):
        logger.debug("Ignoring unreadable hours_per_week", value=hours_raw)

    target: date | None = None
    target_raw = raw.get("target_completion_date")
    if isinstance(target_raw, date):
        target = target_raw
    elif isinstance(target_raw, str) and target_raw:
        try:
            target = date.fromisoformat(target_raw[:10])
        except ValueError:
            logger.debug("Ignoring unreadable target date", value=target_raw)

    return LearningPreferences(
        pace=pace,
        style=style,
        preferred_media=media,
        hours_per_week=hours,
        target_completion_date=target,
    )


def failed_assessment_topics(record: AssessmentRecord) -> set[str]:
    """Topics a failed attempt points at: wrong answers, else the assessment tags."""
    topics = record.wrong_answer_topics or record.topic_tags
    return {_normalize_topic(t) for t in topics}


def aggregate_student_context(records: StudentRecords, config: EngineConfig) -> StudentContext:
    """Build the immutable context used by one generation request.

    Pure and deterministic: the same records always produce the same context.
    Knowledge gaps are topics below ``config.knowledge_gap_threshold`` plus
    topics referenced by failed assessments.
    """
    profile = normalize_knowledge_profile(records.knowledge_profile)
    history = tuple(
        sorted(records.assessment_history, key=lambda r: (r.timestamp, r.assessment_id))
    )

    gaps = {topic for topic, score in profile.items() if score < config.knowledge_gap_threshold}
    for record in history:
        if not record.passed:
            gaps |= failed_assessment_topics(record)

    return StudentContext(
        student_id=records.student_id,
        knowledge_profile=profile,
        preferences=parse_preferences(records.learning_preferences),
        completed_content=frozenset(records.completed_content),
        in_progress_content=frozenset(records.in_progress_content) - set(records.completed_content),
        assessment_history=history,
        knowledge_gaps=frozenset(gaps),
    )
