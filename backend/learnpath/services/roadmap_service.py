"""Roadmap lifecycle: generation, retrieval, status, and assessment-driven adjustment."""

from collections.abc import Callable
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from learnpath.core.config import EngineConfig
from learnpath.core.errors import AdjustmentDegraded, RoadmapNotFound
from learnpath.core.logging import get_logger
from learnpath.engine.adjustment import adjust_for_assessment, scan_outcome_patterns
from learnpath.engine.course_graph import CourseGraph, load_course_graph
from learnpath.engine.orchestrator import RemedialFallback, generate_roadmap
from learnpath.engine.patterns import refresh_patterns
from learnpath.engine.profile import aggregate_student_context
from learnpath.engine.progress import with_progress
from learnpath.engine.requester import RoadmapRequester
from learnpath.models.roadmap import RoadmapRecord
from learnpath.schemas.pattern import AdjustmentResponse, AssessmentOutcomeRequest, LearningPattern
from learnpath.schemas.roadmap import (
    GenerateRoadmapRequest,
    Roadmap,
    RoadmapResponse,
    RoadmapStatus,
    utcnow,
)
from learnpath.schemas.student import AssessmentRecord, StudentContext
from learnpath.services import roadmap_store
from learnpath.services.collaborators import AssessmentStore, CourseCatalog, ProfileStore
from learnpath.services.locks import StudentLockRegistry

logger = get_logger(__name__)


def build_response(
    record: RoadmapRecord,
    roadmap: Roadmap,
    context: StudentContext,
    graph: CourseGraph | None = None,
) -> RoadmapResponse:
    """Stored roadmap plus progress derived from the student's records."""
    return RoadmapResponse(
        student_id=record.student_id,
        version=record.version,
        status=RoadmapStatus(record.status),
        generation_strategy=roadmap.generation_strategy,
        total_estimated_time=roadmap.total_estimated_time,
        personalization_reasoning=roadmap.personalization_reasoning,
        alternative_paths=roadmap.alternative_paths,
        success_metrics=roadmap.success_metrics,
        difficulty_progression=roadmap.difficulty_progression,
        personalization_factors=roadmap.personalization_factors,
        learning_path=with_progress(roadmap, context, graph),
        created_at=roadmap.created_at,
        last_adjusted_at=roadmap.last_adjusted_at,
    )


class RoadmapService:
    """Coordinates collaborators, the engine, and the roadmap store."""

    def __init__(
        self,
        *,
        catalog: CourseCatalog,
        profiles: ProfileStore,
        assessments: AssessmentStore,
        requester: RoadmapRequester | None,
        config: EngineConfig,
        locks: StudentLockRegistry | None = None,
        remedial_fallback: RemedialFallback | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.catalog = catalog
        self.profiles = profiles
        self.assessments = assessments
        self.requester = requester
        self.config = config
        self.locks = locks or StudentLockRegistry()
        self.remedial_fallback = remedial_fallback
        self.clock = clock

    async def load_graph(self) -> CourseGraph:
        """Load a fresh course graph. Raises CycleDetected on a cyclic catalog."""
        courses = await self.catalog.list_courses(include_drafts=self.config.allow_drafts)
        return load_course_graph(courses, include_drafts=self.config.allow_drafts)

    async def load_context(self, student_id: str) -> StudentContext:
        """Aggregate the student's records. Raises StudentNotFound."""
        records = await self.profiles.get_profile(student_id)
        history = await self.assessments.list_assessments(student_id)
        records = records.model_copy(update={"assessment_history": history or records.assessment_history})
        return aggregate_student_context(records, self.config)

    # ========================================================================
    # Generation and retrieval
    # ========================================================================

    async def generate(self, db: AsyncSession, request: GenerateRoadmapRequest) -> RoadmapResponse:
        """Generate (or return the existing) roadmap for a student.

        Without ``force_regenerate`` an existing roadmap that is not completed
        is returned unchanged. Nothing is stored unless generation succeeded.

        Raises:
            StudentNotFound: Unknown student.
            CycleDetected: The catalog prerequisites are cyclic.
        """
        student_id = request.student_id
        context = await self.load_context(student_id)
        graph = await self.load_graph()

        record = await roadmap_store.get_roadmap_record(db, student_id)
        if record is not None and not request.force_regenerate and record.status != RoadmapStatus.COMPLETED:
            logger.info("Returning existing roadmap", student_id=student_id, version=record.version)
            return build_response(record, roadmap_store.load_roadmap(record), context, graph)

        outcome = await generate_roadmap(
            context,
            graph,
            self.config,
            self.requester,
            target_skills=request.target_skills,
            time_constraints=request.time_constraints,
            now=self.clock(),
        )
        record = await roadmap_store.put_roadmap(db, outcome.roadmap, status=RoadmapStatus.ACTIVE)
        logger.info(
            "Roadmap generated",
            student_id=student_id,
            strategy=outcome.strategy.value,
            failure=outcome.failure,
            repairs=len(outcome.repairs),
            version=record.version,
        )
        return build_response(record, outcome.roadmap, context, graph)

    async def get(self, db: AsyncSession, student_id: str) -> RoadmapResponse:
        """Stored roadmap with derived progress. Raises RoadmapNotFound."""
        record = await roadmap_store.get_roadmap_record(db, student_id)
        if record is None:
            raise RoadmapNotFound(student_id)
        context = await self.load_context(student_id)
        graph = await self.load_graph()
        return build_response(record, roadmap_store.load_roadmap(record), context, graph)

    async def update_status(
        self,
        db: AsyncSession,
        student_id: str,
        status: RoadmapStatus,
    ) -> RoadmapResponse:
        record = await roadmap_store.update_roadmap_status(db, student_id, status)
        context = await self.load_context(student_id)
        return build_response(record, roadmap_store.load_roadmap(record), context)

    # ========================================================================
    # Adaptive adjustment
    # ========================================================================

    async def _trigger(self, student_id: str, outcome: AssessmentOutcomeRequest) -> AssessmentRecord:
        stored = await self.assessments.get_assessment(student_id, outcome.assessment_id)
        topic_tags = outcome.topic_tags if outcome.topic_tags is not None else (stored.topic_tags if stored else [])
        wrong = (
            outcome.wrong_answer_topics
            if outcome.wrong_answer_topics is not None
            else (stored.wrong_answer_topics if stored else [])
        )
        timestamp = outcome.timestamp or (stored.timestamp if stored else self.clock())
        return AssessmentRecord(
            assessment_id=outcome.assessment_id,
            topic_tags=frozenset(topic_tags),
            score=outcome.score,
            passed=outcome.passed,
            wrong_answer_topics=frozenset(wrong),
            timestamp=timestamp,
        )

    async def report_assessment_outcome(
        self,
        db: AsyncSession,
        student_id: str,
        outcome: AssessmentOutcomeRequest,
    ) -> AdjustmentResponse:
        """Detect patterns and, for a failed attempt, adjust the roadmap.

        Patterns are written before the roadmap; the roadmap write is
        version-checked.

        Raises:
            ConcurrentAdjustment: An adjustment for this student is in flight.
            AdjustmentDegraded: Remedial content could not be generated; the
                roadmap is unchanged and only patterns were recorded.
            StudentNotFound: Unknown student.
        """
        async with self.locks.hold(student_id):
            context = await self.load_context(student_id)
            graph = await self.load_graph()
            trigger = await self._trigger(student_id, outcome)
            now = self.clock()

            record = await roadmap_store.get_roadmap_record(db, student_id)
            if record is None or trigger.passed:
                scan = scan_outcome_patterns(trigger, context, self.config, now)
                await roadmap_store.record_patterns(db, scan.patterns, scan.cleared, student_id, now)
                return AdjustmentResponse(
                    student_id=student_id,
                    adjusted=False,
                    reason="No roadmap to adjust" if record is None else "Assessment passed",
                    patterns=scan.patterns,
                    roadmap=(
                        build_response(record, roadmap_store.load_roadmap(record), context, graph)
                        if record is not None
                        else None
                    ),
                )

            roadmap = roadmap_store.load_roadmap(record)
            result = await adjust_for_assessment(
                trigger=trigger,
                context=context,
                graph=graph,
                roadmap=roadmap,
                config=self.config,
                requester=self.requester,
                remedial_fallback=self.remedial_fallback,
                now=now,
            )
            await roadmap_store.record_patterns(db, result.patterns, result.cleared, student_id, now)

            if result.degraded_reason is not None:
                raise AdjustmentDegraded(result.degraded_reason, result.patterns)

            record = await roadmap_store.put_roadmap(db, result.roadmap, expected_version=record.version)
            return AdjustmentResponse(
                student_id=student_id,
                adjusted=True,
                remedial_items_added=len(result.remedial_items),
                alternative_path_added=result.alternative_path is not None,
                patterns=result.patterns,
                roadmap=build_response(record, result.roadmap, context, graph),
            )

    async def refresh_patterns(self, db: AsyncSession, student_id: str) -> list[LearningPattern]:
        """Re-scan the full history and return the active patterns afterwards."""
        context = await self.load_context(student_id)
        graph = await self.load_graph()
        now = self.clock()
        scan = refresh_patterns(context, graph, self.config, now)
        await roadmap_store.record_patterns(db, scan.patterns, scan.cleared, student_id, now)
        return await roadmap_store.list_patterns(db, student_id)
