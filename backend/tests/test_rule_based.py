"""Tests for the rule-based generator."""

from datetime import timedelta

from conftest import NOW, make_course
from learnpath.core.config import EngineConfig
from learnpath.engine.course_graph import CourseGraph, load_course_graph
from learnpath.engine.rule_based import build_remedial_items, generate_rule_based_roadmap
from learnpath.schemas.course import Difficulty
from learnpath.schemas.roadmap import GenerationStrategy, ItemKind, Roadmap
from learnpath.schemas.student import LearningPreferences, Pace, StudentContext, TimeConstraints


def _context(**kwargs) -> StudentContext:
    return StudentContext(student_id="s1", **kwargs)


def _assert_prerequisites_first(roadmap: Roadmap, graph: CourseGraph) -> None:
    positions = {item.reference: item.position for item in roadmap.learning_path}
    for item in roadmap.learning_path:
        for prereq in graph.prerequisites(item.reference):
            if prereq in positions:
                assert positions[prereq] < item.position, f"{prereq} must precede {item.reference}"


class TestOrdering:
    """Topological order and tie-breaks."""

    def test_prerequisite_chain(self, engine_config: EngineConfig):
        """B depends on A; an empty profile yields [A, B] at positions 0 and 1."""
        graph = load_course_graph([make_course("b", prerequisites={"a"}), make_course("a")])
        roadmap = generate_rule_based_roadmap(_context(), graph, engine_config, now=NOW)

        assert [(i.reference, i.position) for i in roadmap.learning_path] == [("a", 0), ("b", 1)]
        assert roadmap.generation_strategy == GenerationStrategy.RULE_BASED

    def test_deterministic(self, course_graph: CourseGraph, engine_config: EngineConfig):
        """Identical inputs should produce an identical item sequence."""
        context = _context(knowledge_gaps=frozenset({"geometry"}))
        first = generate_rule_based_roadmap(context, course_graph, engine_config, now=NOW)
        second = generate_rule_based_roadmap(context, course_graph, engine_config, now=NOW)
        assert first.learning_path == second.learning_path

    def test_gap_courses_first(self, engine_config: EngineConfig):
        """Among available courses, gap-addressing ones come first."""
        graph = load_course_graph(
            [
                make_course("a-geometry", topics={"geometry"}),
                make_course("b-algebra", topics={"algebra"}),
            ]
        )
        context = _context(knowledge_gaps=frozenset({"algebra"}))
        roadmap = generate_rule_based_roadmap(context, graph, engine_config, now=NOW)
        assert roadmap.references() == ["b-algebra", "a-geometry"]
        assert "knowledge gap" in roadmap.learning_path[0].rationale

    def test_easier_courses_first_on_tie(self, engine_config: EngineConfig):
        """Without gaps, difficulty then id decides."""
        graph = load_course_graph(
            [
                make_course("a-hard", difficulty=Difficulty.ADVANCED),
                make_course("z-easy"),
            ]
        )
        roadmap = generate_rule_based_roadmap(_context(), graph, engine_config, now=NOW)
        assert roadmap.references() == ["z-easy", "a-hard"]

    def test_completed_courses_skipped(self, course_graph: CourseGraph, engine_config: EngineConfig):
        """Completed content never appears in the path."""
        context = _context(completed_content=frozenset({"algebra-1"}))
        roadmap = generate_rule_based_roadmap(context, course_graph, engine_config, now=NOW)

        assert "algebra-1" not in roadmap.references()
        _assert_prerequisites_first(roadmap, course_graph)

    def test_full_catalog_respects_prerequisites(self, course_graph: CourseGraph, engine_config: EngineConfig):
        roadmap = generate_rule_based_roadmap(_context(), course_graph, engine_config, now=NOW)

        assert set(roadmap.references()) == {"algebra-1", "algebra-2", "geometry-1", "calculus-1"}
        assert roadmap.references()[-1] == "calculus-1"
        _assert_prerequisites_first(roadmap, course_graph)

    def test_blocked_courses_reported(self, engine_config: EngineConfig):
        """Courses needing unavailable prerequisites are left out and mentioned."""
        graph = load_course_graph([make_course("a"), make_course("b", prerequisites={"missing"})])
        roadmap = generate_rule_based_roadmap(_context(), graph, engine_config, now=NOW)

        assert roadmap.references() == ["a"]
        assert any("needs missing" in text for text in roadmap.alternative_paths)

    def test_target_skills_narrow_the_path(self, course_graph: CourseGraph, engine_config: EngineConfig):
        """Target skills keep covering courses plus their prerequisites."""
        roadmap = generate_rule_based_roadmap(
            _context(), course_graph, engine_config, target_skills=["equations"], now=NOW
        )
        assert roadmap.references() == ["algebra-1", "algebra-2"]
        assert roadmap.personalization_factors.target_skills == ["equations"]


class TestTime:
    """Pace scaling and time budget."""

    def test_slow_pace_scales_up(self, engine_config: EngineConfig):
        graph = load_course_graph([make_course("a", duration=100)])
        context = _context(preferences=LearningPreferences(pace=Pace.SLOW))
        roadmap = generate_rule_based_roadmap(context, graph, engine_config, now=NOW)
        assert roadmap.learning_path[0].estimated_time == 130

    def test_fast_pace_scales_down(self, engine_config: EngineConfig):
        graph = load_course_graph([make_course("a", duration=100)])
        context = _context(preferences=LearningPreferences(pace=Pace.FAST))
        roadmap = generate_rule_based_roadmap(context, graph, engine_config, now=NOW)
        assert roadmap.learning_path[0].estimated_time == 80

    def test_budget_overflow_becomes_alternative_path(self, engine_config: EngineConfig):
        """2 h/week for two weeks = 240 minutes; the third course overflows."""
        graph = load_course_graph([make_course("a"), make_course("b"), make_course("c")])
        constraints = TimeConstraints(
            hours_per_week=2,
            target_completion_date=(NOW + timedelta(days=14)).date(),
        )
        roadmap = generate_rule_based_roadmap(
            _context(), graph, engine_config, time_constraints=constraints, now=NOW
        )

        assert roadmap.references() == ["a", "b"]
        assert roadmap.total_estimated_time == 240
        assert any("C (120 min)" in text for text in roadmap.alternative_paths)

    def test_past_target_date_does_not_bound(self, engine_config: EngineConfig):
        graph = load_course_graph([make_course("a"), make_course("b")])
        constraints = TimeConstraints(hours_per_week=1, target_completion_date=(NOW - timedelta(days=3)).date())
        roadmap = generate_rule_based_roadmap(
            _context(), graph, engine_config, time_constraints=constraints, now=NOW
        )
        assert len(roadmap.learning_path) == 2


class TestRemedialFallback:
    """Rule-based remedial content."""

    def _roadmap(self, graph: CourseGraph, config: EngineConfig) -> Roadmap:
        return generate_rule_based_roadmap(_context(), graph, config, now=NOW)

    def test_placeholder_when_no_course_available(self, course_graph: CourseGraph, engine_config: EngineConfig):
        """Every algebra course is already in the path, so a review placeholder is used."""
        roadmap = self._roadmap(course_graph, engine_config)
        items = build_remedial_items(_context(), course_graph, roadmap, ["algebra"], engine_config)

        assert len(items) == 1
        item = items[0]
        assert item.reference == "review:algebra"
        assert item.kind == ItemKind.REMEDIAL
        assert item.difficulty == Difficulty.BEGINNER
        assert item.estimated_time == engine_config.default_remedial_minutes
        assert item.title == "Review: algebra"

    def test_unseen_course_preferred(self, engine_config: EngineConfig):
        graph = load_course_graph(
            [
                make_course("a"),
                make_course("algebra-video", topics={"algebra"}, duration=45),
            ]
        )
        roadmap = generate_rule_based_roadmap(_context(), graph, engine_config, now=NOW)
        roadmap = roadmap.model_copy(update={"learning_path": []})
        items = build_remedial_items(_context(), graph, roadmap, ["algebra"], engine_config)

        assert items[0].reference == "algebra-video"
        assert items[0].kind == ItemKind.REMEDIAL
        assert items[0].estimated_time == 45

    def test_capped(self, course_graph: CourseGraph, engine_config: EngineConfig):
        roadmap = self._roadmap(course_graph, engine_config)
        items = build_remedial_items(
            _context(), course_graph, roadmap, ["t1", "t2", "t3", "t4", "t5"], engine_config
        )
        assert len(items) == engine_config.max_remedial_items
        assert [i.position for i in items] == [0, 1, 2]
