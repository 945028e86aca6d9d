"""Derived progress view of a stored roadmap."""

from learnpath.engine.course_graph import CourseGraph
from learnpath.schemas.roadmap import ItemStatus, LearningPathItemProgress, Roadmap
from learnpath.schemas.student import StudentContext


def item_status(reference: str, context: StudentContext) -> ItemStatus:
    if reference in context.completed_content:
        return ItemStatus.COMPLETED
    if reference in context.in_progress_content:
        return ItemStatus.IN_PROGRESS
    return ItemStatus.NOT_STARTED


def with_progress(
    roadmap: Roadmap,
    context: StudentContext,
    graph: CourseGraph | None = None,
) -> list[LearningPathItemProgress]:
    """Attach status and unlock flags to each path item.

    The first item is always unlocked. Any other item unlocks once the
    previous item and all of its catalog prerequisites are completed.
    Nothing here is persisted.
    """
    enriched: list[LearningPathItemProgress] = []
    previous_done = True
    for item in roadmap.learning_path:
        status = item_status(item.reference, context)
        prerequisites = graph.prerequisites(item.reference) if graph is not None else frozenset()
        unlocked = item.position == 0 or (
            previous_done and prerequisites <= context.completed_content
        )
        enriched.append(
            LearningPathItemProgress(**item.model_dump(), status=status, is_unlocked=unlocked)
        )
        previous_done = status == ItemStatus.COMPLETED
    return enriched
