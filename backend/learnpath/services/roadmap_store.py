"""Roadmap and learning-pattern persistence."""

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from learnpath.core.errors import ConcurrentAdjustment, RoadmapNotFound
from learnpath.core.logging import get_logger
from learnpath.models.pattern import LearningPatternRecord
from learnpath.models.roadmap import RoadmapRecord
from learnpath.schemas.pattern import LearningPattern, PatternType
from learnpath.schemas.roadmap import Roadmap, RoadmapStatus, utcnow

logger = get_logger(__name__)


# ============================================================================
# Roadmaps
# ============================================================================


async def get_roadmap_record(db: AsyncSession, student_id: str) -> RoadmapRecord | None:
    result = await db.execute(select(RoadmapRecord).where(RoadmapRecord.student_id == student_id))
    return result.scalar_one_or_none()


def load_roadmap(record: RoadmapRecord) -> Roadmap:
    """Rebuild the validated roadmap from its stored payload."""
    return Roadmap.model_validate(record.payload)


async def get_roadmap(db: AsyncSession, student_id: str) -> Roadmap | None:
    record = await get_roadmap_record(db, student_id)
    return load_roadmap(record) if record else None


async def put_roadmap(
    db: AsyncSession,
    roadmap: Roadmap,
    *,
    expected_version: int | None = None,
    status: RoadmapStatus | None = None,
) -> RoadmapRecord:
    """Store ``roadmap`` as the student's roadmap.

    The roadmap identity is kept across regenerations and adjustments; each
    put replaces the payload and bumps the version. ``status`` is applied when
    given; a new roadmap starts active.

    Args:
        db: Database session
        roadmap: Validated roadmap to store
        expected_version: Version the caller read; a mismatch means another
            writer got there first
        status: Status to set, e.g. active on regeneration

    Returns:
        The stored record

    Raises:
        ConcurrentAdjustment: If ``expected_version`` no longer matches.

    Note: This function commits the transaction.
    """
    now = utcnow()
    record = await get_roadmap_record(db, roadmap.student_id)
    payload = roadmap.model_dump(mode="json")

    if record is None:
        record = RoadmapRecord(
            student_id=roadmap.student_id,
            payload=payload,
            generation_strategy=roadmap.generation_strategy.value,
            status=(status or RoadmapStatus.ACTIVE).value,
            version=1,
            created_at=roadmap.created_at,
            last_adjusted_at=roadmap.last_adjusted_at,
            updated_at=now,
        )
        db.add(record)
    else:
        if expected_version is not None and record.version != expected_version:
            raise ConcurrentAdjustment(roadmap.student_id)
        record.payload = payload
        record.generation_strategy = roadmap.generation_strategy.value
        if status is not None:
            record.status = status.value
        record.version += 1
        record.last_adjusted_at = roadmap.last_adjusted_at
        record.updated_at = now

    await db.commit()
    await db.refresh(record)

    logger.info(
        "Roadmap stored",
        roadmap_id=record.id,
        student_id=record.student_id,
        version=record.version,
        strategy=record.generation_strategy,
        items=len(roadmap.learning_path),
    )
    return record


async def update_roadmap_status(
    db: AsyncSession,
    student_id: str,
    status: RoadmapStatus,
) -> RoadmapRecord:
    """Set the roadmap status (active, paused, completed).

    Raises:
        RoadmapNotFound: If the student has no roadmap.

    Note: This function commits the transaction.
    """
    record = await get_roadmap_record(db, student_id)
    if record is None:
        raise RoadmapNotFound(student_id)

    record.status = status.value
    record.updated_at = utcnow()
    await db.commit()
    await db.refresh(record)

    logger.info("Roadmap status updated", student_id=student_id, status=status.value)
    return record


# ============================================================================
# Learning patterns
# ============================================================================


def to_pattern(record: LearningPatternRecord) -> LearningPattern:
    return LearningPattern(
        student_id=record.student_id,
        pattern_type=PatternType(record.pattern_type),
        subject=record.subject,
        confidence=record.confidence,
        metrics=record.metrics or {},
        detected_at=record.detected_at,
        superseded_at=record.superseded_at,
    )


async def _active_pattern(
    db: AsyncSession,
    student_id: str,
    pattern_type: PatternType,
    subject: str,
) -> LearningPatternRecord | None:
    result = await db.execute(
        select(LearningPatternRecord)
        .where(
            LearningPatternRecord.student_id == student_id,
            LearningPatternRecord.pattern_type == pattern_type.value,
            LearningPatternRecord.subject == subject.lower(),
            LearningPatternRecord.is_active,
        )
        .order_by(LearningPatternRecord.id.desc())
    )
    return result.scalars().first()


async def upsert_pattern(db: AsyncSession, pattern: LearningPattern) -> LearningPatternRecord | None:
    """Record a detected pattern.

    Re-detecting exactly what is already active is a no-op (returns None).
    A changed finding supersedes the active row and appends a new one.

    Note: This function does not commit; call ``db.commit()`` after a batch.
    """
    active = await _active_pattern(db, pattern.student_id, pattern.pattern_type, pattern.subject)
    if active is not None:
        if pattern.same_finding(to_pattern(active)):
            return None
        active.is_active = False
        active.superseded_at = pattern.detected_at

    record = LearningPatternRecord(
        student_id=pattern.student_id,
        pattern_type=pattern.pattern_type.value,
        subject=pattern.subject.lower(),
        confidence=pattern.confidence,
        metrics=pattern.metrics,
        detected_at=pattern.detected_at,
        is_active=True,
    )
    db.add(record)
    await db.flush()
    return record


async def supersede_pattern(
    db: AsyncSession,
    student_id: str,
    pattern_type: PatternType,
    subject: str,
    when: datetime | None = None,
) -> bool:
    """Mark the active pattern as superseded without a replacement.

    Note: This function does not commit.
    """
    active = await _active_pattern(db, student_id, pattern_type, subject)
    if active is None:
        return False
    active.is_active = False
    active.superseded_at = when or utcnow()
    await db.flush()
    return True


async def list_patterns(
    db: AsyncSession,
    student_id: str,
    *,
    include_superseded: bool = False,
) -> list[LearningPattern]:
    query = select(LearningPatternRecord).where(LearningPatternRecord.student_id == student_id)
    if not include_superseded:
        query = query.where(LearningPatternRecord.is_active)
    result = await db.execute(query.order_by(LearningPatternRecord.id))
    return [to_pattern(r) for r in result.scalars().all()]


async def record_patterns(
    db: AsyncSession,
    patterns: list[LearningPattern],
    cleared: list[tuple[PatternType, str]],
    student_id: str,
    when: datetime | None = None,
) -> list[LearningPattern]:
    """Apply a detection run and commit. Returns the patterns that changed storage.

    Note: This function commits the transaction.
    """
    changed: list[LearningPattern] = []
    for pattern in patterns:
        if await upsert_pattern(db, pattern) is not None:
            changed.append(pattern)
    for pattern_type, subject in cleared:
        await supersede_pattern(db, student_id, pattern_type, subject, when)
    await db.commit()

    if changed or cleared:
        logger.info(
            "Learning patterns recorded",
            student_id=student_id,
            changed=len(changed),
            cleared=len(cleared),
        )
    return changed
