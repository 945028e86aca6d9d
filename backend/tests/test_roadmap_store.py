"""Tests for roadmap and pattern persistence."""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import NOW
from learnpath.core.config import EngineConfig
from learnpath.core.errors import ConcurrentAdjustment, RoadmapNotFound
from learnpath.engine.course_graph import CourseGraph
from learnpath.engine.rule_based import generate_rule_based_roadmap
from learnpath.schemas.pattern import LearningPattern, PatternType
from learnpath.schemas.roadmap import Roadmap, RoadmapStatus
from learnpath.schemas.student import StudentContext
from learnpath.services import roadmap_store


@pytest.fixture
def roadmap(course_graph: CourseGraph, engine_config: EngineConfig) -> Roadmap:
    return generate_rule_based_roadmap(StudentContext(student_id="s1"), course_graph, engine_config, now=NOW)


def _pattern(confidence: float = 0.4, subject: str = "algebra") -> LearningPattern:
    return LearningPattern(
        student_id="s1",
        pattern_type=PatternType.STRUGGLE_AREA,
        subject=subject,
        confidence=confidence,
        metrics={"rolling_average": 51.67, "data_points": 3},
        detected_at=NOW,
    )


class TestRoadmaps:
    """Versioned roadmap storage."""

    @pytest.mark.asyncio
    async def test_put_and_get(self, test_session: AsyncSession, roadmap: Roadmap):
        record = await roadmap_store.put_roadmap(test_session, roadmap)

        assert record.version == 1
        assert record.status == RoadmapStatus.ACTIVE.value
        assert await roadmap_store.get_roadmap(test_session, "s1") == roadmap

    @pytest.mark.asyncio
    async def test_replace_keeps_identity_and_bumps_version(self, test_session: AsyncSession, roadmap: Roadmap):
        first = await roadmap_store.put_roadmap(test_session, roadmap)
        changed = roadmap.model_copy(update={"personalization_reasoning": "Updated"})
        second = await roadmap_store.put_roadmap(test_session, changed, expected_version=1)

        assert second.id == first.id
        assert second.version == 2
        stored = await roadmap_store.get_roadmap(test_session, "s1")
        assert stored.personalization_reasoning == "Updated"

    @pytest.mark.asyncio
    async def test_stale_version_rejected(self, test_session: AsyncSession, roadmap: Roadmap):
        await roadmap_store.put_roadmap(test_session, roadmap)
        await roadmap_store.put_roadmap(test_session, roadmap)

        with pytest.raises(ConcurrentAdjustment):
            await roadmap_store.put_roadmap(test_session, roadmap, expected_version=1)

    @pytest.mark.asyncio
    async def test_status_survives_replacement(self, test_session: AsyncSession, roadmap: Roadmap):
        await roadmap_store.put_roadmap(test_session, roadmap)
        await roadmap_store.update_roadmap_status(test_session, "s1", RoadmapStatus.PAUSED)

        record = await roadmap_store.put_roadmap(test_session, roadmap)
        assert record.status == RoadmapStatus.PAUSED.value

        record = await roadmap_store.put_roadmap(test_session, roadmap, status=RoadmapStatus.ACTIVE)
        assert record.status == RoadmapStatus.ACTIVE.value

    @pytest.mark.asyncio
    async def test_status_update_for_missing_roadmap(self, test_session: AsyncSession):
        with pytest.raises(RoadmapNotFound):
            await roadmap_store.update_roadmap_status(test_session, "nobody", RoadmapStatus.PAUSED)

    @pytest.mark.asyncio
    async def test_missing_roadmap_is_none(self, test_session: AsyncSession):
        assert await roadmap_store.get_roadmap(test_session, "nobody") is None


class TestPatterns:
    """Append-only pattern history."""

    @pytest.mark.asyncio
    async def test_same_finding_is_not_duplicated(self, test_session: AsyncSession):
        assert await roadmap_store.upsert_pattern(test_session, _pattern()) is not None
        assert await roadmap_store.upsert_pattern(test_session, _pattern()) is None
        await test_session.commit()

        assert len(await roadmap_store.list_patterns(test_session, "s1", include_superseded=True)) == 1

    @pytest.mark.asyncio
    async def test_changed_finding_supersedes(self, test_session: AsyncSession):
        await roadmap_store.upsert_pattern(test_session, _pattern(0.4))
        await roadmap_store.upsert_pattern(test_session, _pattern(0.6))
        await test_session.commit()

        active = await roadmap_store.list_patterns(test_session, "s1")
        history = await roadmap_store.list_patterns(test_session, "s1", include_superseded=True)

        assert [p.confidence for p in active] == [0.6]
        assert [p.confidence for p in history] == [0.4, 0.6]
        assert history[0].superseded_at is not None

    @pytest.mark.asyncio
    async def test_record_patterns_applies_clears(self, test_session: AsyncSession):
        await roadmap_store.record_patterns(test_session, [_pattern()], [], "s1", NOW)
        changed = await roadmap_store.record_patterns(
            test_session,
            [_pattern(subject="geometry")],
            [(PatternType.STRUGGLE_AREA, "algebra")],
            "s1",
            NOW,
        )

        assert [p.subject for p in changed] == ["geometry"]
        active = await roadmap_store.list_patterns(test_session, "s1")
        assert [p.subject for p in active] == ["geometry"]
