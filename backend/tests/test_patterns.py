"""Tests for learning pattern detection."""

import pytest

from conftest import NOW, make_assessment
from learnpath.core.config import EngineConfig
from learnpath.engine.course_graph import CourseGraph
from learnpath.engine.patterns import (
    classify_topic,
    consecutive_failures,
    detect_content_preference,
    detect_pace_pattern,
    detect_topic_patterns,
    extract_gap_topics,
    merge_history,
    refresh_patterns,
    topic_statistics,
)
from learnpath.engine.profile import aggregate_student_context
from learnpath.schemas.pattern import PatternType
from learnpath.schemas.student import StudentContext, StudentRecords


def _history(*scores: float, topic: str = "fractions") -> list:
    return [
        make_assessment(f"q{i}", score, topics={topic}, minutes_ago=100 - i) for i, score in enumerate(scores)
    ]


class TestTopicPatterns:
    """Struggle and strength detection."""

    def test_struggle_confidence(self, engine_config: EngineConfig):
        """55, 60, 40 average 51.67; 3/5 volume times 13.33/20 distance gives 0.4."""
        stats = topic_statistics(_history(55, 60, 40), "fractions", engine_config.assessment_window)
        pattern = classify_topic("s1", stats, engine_config, NOW)

        assert pattern.pattern_type == PatternType.STRUGGLE_AREA
        assert pattern.subject == "fractions"
        assert pattern.confidence == pytest.approx(0.4)
        assert pattern.metrics["data_points"] == 3
        assert pattern.metrics["rolling_average"] == pytest.approx(51.67)

    def test_strength(self, engine_config: EngineConfig):
        stats = topic_statistics(_history(95, 95), "fractions", engine_config.assessment_window)
        pattern = classify_topic("s1", stats, engine_config, NOW)

        assert pattern.pattern_type == PatternType.STRENGTH_AREA
        assert pattern.confidence == pytest.approx(0.2)

    def test_single_data_point_ignored(self, engine_config: EngineConfig):
        stats = topic_statistics(_history(20), "fractions", engine_config.assessment_window)
        assert classify_topic("s1", stats, engine_config, NOW) is None

    def test_struggle_takes_precedence(self):
        config = EngineConfig(struggle_threshold=90, strength_threshold=50)
        stats = topic_statistics(_history(70, 70), "fractions", config.assessment_window)
        assert classify_topic("s1", stats, config, NOW).pattern_type == PatternType.STRUGGLE_AREA

    def test_window_limits_history(self):
        config = EngineConfig(assessment_window=2)
        stats = topic_statistics(_history(10, 10, 90, 90), "fractions", config.assessment_window)
        assert stats.scores == (90, 90)

    def test_middle_band_clears_previous_findings(self, engine_config: EngineConfig):
        scan = detect_topic_patterns("s1", _history(75, 75), ["Fractions"], engine_config, NOW)

        assert scan.patterns == []
        assert set(scan.cleared) == {
            (PatternType.STRUGGLE_AREA, "fractions"),
            (PatternType.STRENGTH_AREA, "fractions"),
        }

    def test_struggle_clears_only_strength(self, engine_config: EngineConfig):
        scan = detect_topic_patterns("s1", _history(40, 50), ["fractions"], engine_config, NOW)

        assert [p.pattern_type for p in scan.patterns] == [PatternType.STRUGGLE_AREA]
        assert scan.cleared == [(PatternType.STRENGTH_AREA, "fractions")]


class TestHistoryHelpers:
    """Gap extraction, failure runs and history merging."""

    def test_consecutive_failures(self):
        history = _history(40, 90, 50, 60)
        assert consecutive_failures(history, "fractions") == 2
        assert consecutive_failures(history, "geometry") == 0

    def test_gap_topics_from_cluster(self, engine_config: EngineConfig):
        earlier = make_assessment("q1", 50, topics={"fractions"}, wrong={"decimals"}, minutes_ago=10)
        trigger = make_assessment("q2", 40, topics={"fractions"}, wrong={"Common Denominators"})
        history = merge_history((earlier,), trigger)

        assert extract_gap_topics(trigger, history, engine_config.assessment_window) == [
            "common denominators",
            "decimals",
        ]

    def test_gap_topics_fall_back_to_tags(self, engine_config: EngineConfig):
        trigger = make_assessment("q1", 40, topics={"fractions"})
        assert extract_gap_topics(trigger, [trigger], engine_config.assessment_window) == ["fractions"]

    def test_merge_history_deduplicates_trigger(self):
        trigger = make_assessment("q1", 40, topics={"fractions"})
        merged = merge_history((trigger,), trigger)
        assert merged == [trigger]


class TestPreferencePatterns:
    """Pace and content-type preferences."""

    def test_slow_pace(self, engine_config: EngineConfig):
        pattern = detect_pace_pattern("s1", _history(40, 50, 80, 60), engine_config, NOW)

        assert pattern.pattern_type == PatternType.PACE_PREFERENCE
        assert pattern.metrics["preferred_pace"] == "slow"
        assert pattern.confidence == pytest.approx(0.6)

    def test_fast_pace(self, engine_config: EngineConfig):
        pattern = detect_pace_pattern("s1", _history(90, 95), engine_config, NOW)
        assert pattern.metrics["preferred_pace"] == "fast"

    def test_no_pace_signal(self, engine_config: EngineConfig):
        assert detect_pace_pattern("s1", _history(75, 80), engine_config, NOW) is None

    def test_content_preference(self, course_graph: CourseGraph):
        context = StudentContext(
            student_id="s1",
            completed_content=frozenset({"algebra-1", "geometry-1", "calculus-1"}),
        )
        pattern = detect_content_preference("s1", context, course_graph, NOW)

        assert pattern.subject == "content_type"
        assert pattern.metrics["preferred_content_type"] == "text"
        assert pattern.confidence == pytest.approx(0.6667)


def test_refresh_patterns(student_records: StudentRecords, course_graph: CourseGraph, engine_config: EngineConfig):
    context = aggregate_student_context(student_records, engine_config)
    scan = refresh_patterns(context, course_graph, engine_config, NOW)

    by_type = {p.pattern_type: p for p in scan.patterns}
    assert by_type[PatternType.STRUGGLE_AREA].subject == "algebra"
    assert by_type[PatternType.STRUGGLE_AREA].confidence == pytest.approx(0.15)
    assert by_type[PatternType.PACE_PREFERENCE].metrics["preferred_pace"] == "slow"
    assert by_type[PatternType.CONTENT_PREFERENCE].metrics["preferred_content_type"] == "text"
