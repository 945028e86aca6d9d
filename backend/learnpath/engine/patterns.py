"""Learning pattern detection from assessment history."""

from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from statistics import fmean, pvariance

from learnpath.core.config import EngineConfig
from learnpath.engine.course_graph import CourseGraph
from learnpath.schemas.pattern import LearningPattern, PatternType
from learnpath.schemas.student import AssessmentRecord, StudentContext


@dataclass(frozen=True)
class TopicStats:
    topic: str
    scores: tuple[float, ...]
    average: float
    variance: float

    @property
    def data_points(self) -> int:
        return len(self.scores)


def _topics(record: AssessmentRecord) -> set[str]:
    return {t.lower() for t in record.topic_tags}


def merge_history(history: tuple[AssessmentRecord, ...], trigger: AssessmentRecord) -> list[AssessmentRecord]:
    """History plus ``trigger``, deduplicated by assessment attempt and ordered by time."""
    records = {(r.assessment_id, r.timestamp): r for r in history}
    records[(trigger.assessment_id, trigger.timestamp)] = trigger
    return sorted(records.values(), key=lambda r: (r.timestamp, r.assessment_id))


def cluster_records(history: list[AssessmentRecord], topic: str, window: int) -> list[AssessmentRecord]:
    """The last ``window`` records tagged with ``topic``, oldest first."""
    needle = topic.lower()
    return [r for r in history if needle in _topics(r)][-window:]


def extract_gap_topics(
    trigger: AssessmentRecord,
    history: list[AssessmentRecord],
    window: int,
) -> list[str]:
    """Wrong-answer topics of the trigger and recent attempts in the same clusters.

    Falls back to the trigger's own tags when no wrong-answer detail exists.
    """
    gaps = {t.lower() for t in trigger.wrong_answer_topics}
    for topic in _topics(trigger):
        for record in cluster_records(history, topic, window):
            gaps |= {t.lower() for t in record.wrong_answer_topics}
    if not gaps:
        gaps = _topics(trigger)
    return sorted(gaps)


def topic_statistics(history: list[AssessmentRecord], topic: str, window: int) -> TopicStats | None:
    records = cluster_records(history, topic, window)
    if not records:
        return None
    scores = tuple(r.score for r in records)
    return TopicStats(
        topic=topic.lower(),
        scores=scores,
        average=fmean(scores),
        variance=pvariance(scores),
    )


def consecutive_failures(history: list[AssessmentRecord], topic: str) -> int:
    """Length of the trailing run of failed attempts on ``topic``."""
    count = 0
    for record in reversed(cluster_records(history, topic, len(history) or 1)):
        if record.passed:
            break
        count += 1
    return count


def _confidence(stats: TopicStats, distance: float, config: EngineConfig) -> float:
    volume = min(1.0, stats.data_points / config.confidence_saturation_points)
    strength = min(1.0, distance / config.threshold_range)
    return round(volume * strength, 4)


def classify_topic(
    student_id: str,
    stats: TopicStats,
    config: EngineConfig,
    now: datetime,
) -> LearningPattern | None:
    """Struggle or strength finding for one topic, struggle taking precedence."""
    if stats.data_points < config.min_pattern_data_points:
        return None

    metrics = {
        "rolling_average": round(stats.average, 2),
        "variance": round(stats.variance, 2),
        "data_points": stats.data_points,
    }
    if stats.average < config.struggle_threshold:
        return LearningPattern(
            student_id=student_id,
            pattern_type=PatternType.STRUGGLE_AREA,
            subject=stats.topic,
            confidence=_confidence(stats, config.struggle_threshold - stats.average, config),
            metrics=metrics,
            detected_at=now,
        )
    if stats.average > config.strength_threshold:
        return LearningPattern(
            student_id=student_id,
            pattern_type=PatternType.STRENGTH_AREA,
            subject=stats.topic,
            confidence=_confidence(stats, stats.average - config.strength_threshold, config),
            metrics=metrics,
            detected_at=now,
        )
    return None


@dataclass
class PatternScan:
    """Findings for a set of topics plus the topic findings that no longer hold."""

    patterns: list[LearningPattern]
    cleared: list[tuple[PatternType, str]]


def detect_topic_patterns(
    student_id: str,
    history: list[AssessmentRecord],
    topics: list[str],
    config: EngineConfig,
    now: datetime,
) -> PatternScan:
    patterns: list[LearningPattern] = []
    cleared: list[tuple[PatternType, str]] = []
    for topic in sorted({t.lower() for t in topics}):
        stats = topic_statistics(history, topic, config.assessment_window)
        if stats is None or stats.data_points < config.min_pattern_data_points:
            continue
        pattern = classify_topic(student_id, stats, config, now)
        for pattern_type in (PatternType.STRUGGLE_AREA, PatternType.STRENGTH_AREA):
            if pattern is None or pattern.pattern_type != pattern_type:
                cleared.append((pattern_type, topic))
        if pattern is not None:
            patterns.append(pattern)
    return PatternScan(patterns=patterns, cleared=cleared)


# ============================================================================
# Preference patterns
# ============================================================================


def detect_pace_pattern(
    student_id: str,
    history: list[AssessmentRecord],
    config: EngineConfig,
    now: datetime,
) -> LearningPattern | None:
    """Slow when at least half of recent attempts failed; fast when all passed above the strength line."""
    recent = history[-config.assessment_window :]
    if len(recent) < config.min_pattern_data_points:
        return None

    failed_share = sum(1 for r in recent if not r.passed) / len(recent)
    average = fmean(r.score for r in recent)
    volume = min(1.0, len(recent) / config.confidence_saturation_points)
    metrics = {
        "failed_share": round(failed_share, 2),
        "average_score": round(average, 2),
        "data_points": len(recent),
    }
    if failed_share >= 0.5:
        return LearningPattern(
            student_id=student_id,
            pattern_type=PatternType.PACE_PREFERENCE,
            subject="pace",
            confidence=round(volume * failed_share, 4),
            metrics={**metrics, "preferred_pace": "slow"},
            detected_at=now,
        )
    if failed_share == 0 and average > config.strength_threshold:
        return LearningPattern(
            student_id=student_id,
            pattern_type=PatternType.PACE_PREFERENCE,
            subject="pace",
            confidence=round(volume * min(1.0, (average - config.strength_threshold) / config.threshold_range), 4),
            metrics={**metrics, "preferred_pace": "fast"},
            detected_at=now,
        )
    return None


def detect_content_preference(
    student_id: str,
    context: StudentContext,
    graph: CourseGraph,
    now: datetime,
) -> LearningPattern | None:
    """Most frequent content-type tag among completed courses."""
    counts: Counter[str] = Counter()
    for reference in context.completed_content:
        course = graph.course(reference)
        if course is not None:
            counts.update(tag.lower() for tag in course.tags)
    if not counts:
        return None

    total = sum(counts.values())
    tag, count = min(counts.items(), key=lambda kv: (-kv[1], kv[0]))
    return LearningPattern(
        student_id=student_id,
        pattern_type=PatternType.CONTENT_PREFERENCE,
        subject="content_type",
        confidence=round(count / total, 4),
        metrics={"preferred_content_type": tag, "occurrences": count, "total_tags": total},
        detected_at=now,
    )


def refresh_patterns(
    context: StudentContext,
    graph: CourseGraph,
    config: EngineConfig,
    now: datetime,
) -> PatternScan:
    """Full re-scan over every topic in the history plus preference patterns."""
    history = list(context.assessment_history)
    topics = sorted({t for r in history for t in _topics(r)})
    scan = detect_topic_patterns(context.student_id, history, topics, config, now)
    for pattern in (
        detect_pace_pattern(context.student_id, history, config, now),
        detect_content_preference(context.student_id, context, graph, now),
    ):
        if pattern is not None:
            scan.patterns.append(pattern)
    return scan
