"""Roadmap API routes."""

from fastapi import APIRouter, HTTPException, Response, status

from learnpath.api.deps import DBDep, ServiceDep
from learnpath.core.errors import (
    AdjustmentDegraded,
    ConcurrentAdjustment,
    CycleDetected,
    RoadmapNotFound,
    StudentNotFound,
)
from learnpath.core.logging import bind_request_context, get_logger
from learnpath.schemas.pattern import AdjustmentResponse, AssessmentOutcomeRequest, LearningPattern
from learnpath.schemas.roadmap import GenerateRoadmapRequest, RoadmapResponse, RoadmapStatusUpdate
from learnpath.services import roadmap_store

logger = get_logger(__name__)
router = APIRouter(prefix="/roadmaps", tags=["roadmaps"])

CONCURRENT_RETRY_AFTER_SECONDS = 1


def _not_found(error: RoadmapNotFound | StudentNotFound) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))


def _cycle(error: CycleDetected) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail={"error": "cycle_detected", "cycle": error.cycle, "message": str(error)},
    )


@router.post("/generate", response_model=RoadmapResponse)
async def generate_roadmap(
    data: GenerateRoadmapRequest,
    db: DBDep,
    service: ServiceDep,
) -> dict:
    """Generate a roadmap, or return the stored one unless force_regenerate is set."""
    bind_request_context(student_id=data.student_id)
    try:
        roadmap = await service.generate(db, data)
    except StudentNotFound as e:
        raise _not_found(e) from e
    except CycleDetected as e:
        raise _cycle(e) from e
    return roadmap.model_dump(mode="json")


@router.get("/{student_id}", response_model=RoadmapResponse)
async def get_roadmap(
    student_id: str,
    db: DBDep,
    service: ServiceDep,
) -> dict:
    """Get the stored roadmap with derived progress."""
    try:
        roadmap = await service.get(db, student_id)
    except (RoadmapNotFound, StudentNotFound) as e:
        raise _not_found(e) from e
    except CycleDetected as e:
        raise _cycle(e) from e
    return roadmap.model_dump(mode="json")


@router.patch("/{student_id}/status", response_model=RoadmapResponse)
async def update_roadmap_status(
    student_id: str,
    data: RoadmapStatusUpdate,
    db: DBDep,
    service: ServiceDep,
) -> dict:
    """Pause, resume, or complete a roadmap."""
    try:
        roadmap = await service.update_status(db, student_id, data.status)
    except (RoadmapNotFound, StudentNotFound) as e:
        raise _not_found(e) from e
    return roadmap.model_dump(mode="json")


@router.post("/{student_id}/assessments", response_model=AdjustmentResponse)
async def report_assessment_outcome(
    student_id: str,
    data: AssessmentOutcomeRequest,
    db: DBDep,
    service: ServiceDep,
    response: Response,
) -> dict:
    """Report an assessment outcome; failed attempts adjust the roadmap."""
    bind_request_context(student_id=student_id, assessment_id=data.assessment_id)
    try:
        result = await service.report_assessment_outcome(db, student_id, data)
    except StudentNotFound as e:
        raise _not_found(e) from e
    except ConcurrentAdjustment as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(e),
            headers={"Retry-After": str(CONCURRENT_RETRY_AFTER_SECONDS)},
        ) from e
    except CycleDetected as e:
        raise _cycle(e) from e
    except AdjustmentDegraded as e:
        response.headers["X-Adjustment-Degraded"] = "true"
        result = AdjustmentResponse(
            student_id=student_id,
            adjusted=False,
            degraded=True,
            reason=e.reason,
            patterns=e.patterns,
        )
    return result.model_dump(mode="json")


@router.get("/{student_id}/patterns", response_model=list[LearningPattern])
async def list_patterns(
    student_id: str,
    db: DBDep,
    include_superseded: bool = False,
) -> list[dict]:
    """List detected learning patterns (active only by default)."""
    patterns = await roadmap_store.list_patterns(db, student_id, include_superseded=include_superseded)
    return [p.model_dump(mode="json") for p in patterns]


@router.post("/{student_id}/patterns/refresh", response_model=list[LearningPattern])
async def refresh_patterns(
    student_id: str,
    db: DBDep,
    service: ServiceDep,
) -> list[dict]:
    """Re-scan the assessment history and return the active patterns."""
    try:
        patterns = await service.refresh_patterns(db, student_id)
    except StudentNotFound as e:
        raise _not_found(e) from e
    except CycleDetected as e:
        raise _cycle(e) from e
    return [p.model_dump(mode="json") for p in patterns]
