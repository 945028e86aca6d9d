"""Tests for profile aggregation."""

from datetime import date

from conftest import make_assessment
from learnpath.core.config import EngineConfig
from learnpath.engine.profile import (
    aggregate_student_context,
    normalize_knowledge_profile,
    parse_preferences,
)
from learnpath.schemas.student import LearningStyle, Pace, StudentRecords


def test_knowledge_profile_normalization() -> None:
    profile = normalize_knowledge_profile(
        {
            "Algebra": 0.4,
            "geometry": 80,
            "calculus": "beginner",
            "physics": {"score": 65},
            "chemistry": "n/a",
        }
    )
    assert profile == {"algebra": 0.4, "calculus": 0.2, "geometry": 0.8, "physics": 0.65}


def test_preferences_are_parsed_leniently() -> None:
    prefs = parse_preferences(
        {
            "learning_pace": "Medium",
            "learning_style": "visual",
            "preferred_media": "Video, interactive",
            "hours_per_week": "5",
            "target_completion_date": "2026-06-01T00:00:00Z",
        }
    )
    assert prefs.pace == Pace.MODERATE
    assert prefs.style == LearningStyle.VISUAL
    assert prefs.preferred_media == frozenset({"video", "interactive"})
    assert prefs.hours_per_week == 5.0
    assert prefs.target_completion_date == date(2026, 6, 1)


def test_unknown_preferences_fall_back_to_defaults() -> None:
    prefs = parse_preferences({"pace": "warp", "style": "telepathic", "hours_per_week": "lots"})
    assert prefs.pace == Pace.MODERATE
    assert prefs.style == LearningStyle.MIXED
    assert prefs.hours_per_week is None


def test_gaps_from_threshold_and_failed_assessments(
    student_records: StudentRecords, engine_config: EngineConfig
) -> None:
    context = aggregate_student_context(student_records, engine_config)

    # algebra is below 0.5; quiz-1 failed with wrong answers on linear equations;
    # quiz-2 failed without detail so its tags count
    assert context.knowledge_gaps == frozenset({"algebra", "linear equations"})
    assert "geometry" not in context.knowledge_gaps


def test_history_sorted_by_timestamp(engine_config: EngineConfig) -> None:
    records = StudentRecords(
        student_id="s",
        assessment_history=[
            make_assessment("late", 90, topics={"x"}, minutes_ago=1),
            make_assessment("early", 90, topics={"x"}, minutes_ago=100),
        ],
    )
    context = aggregate_student_context(records, engine_config)
    assert [r.assessment_id for r in context.assessment_history] == ["early", "late"]


def test_aggregation_is_deterministic(student_records: StudentRecords, engine_config: EngineConfig) -> None:
    first = aggregate_student_context(student_records, engine_config)
    second = aggregate_student_context(student_records, engine_config)
    assert first == second


def test_completed_content_not_in_progress(engine_config: EngineConfig) -> None:
    records = StudentRecords(
        student_id="s",
        completed_content=["a"],
        in_progress_content=["a", "b"],
    )
    context = aggregate_student_context(records, engine_config)
    assert context.in_progress_content == frozenset({"b"})
