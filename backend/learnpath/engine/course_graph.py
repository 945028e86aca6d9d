"""In-memory prerequisite graph built from catalog course records."""

from collections.abc import Callable, Iterable
from typing import Any

import networkx as nx

from learnpath.core.errors import CycleDetected
from learnpath.core.logging import get_logger
from learnpath.schemas.course import Course, Difficulty, Lesson
from learnpath.schemas.roadmap import ItemKind

logger = get_logger(__name__)


class CourseGraph:
    """Read-only DAG keyed by course id, edges course -> prerequisite.

    Lesson ids resolve to their parent course; a lesson inherits the
    parent's prerequisites. Safe to share across concurrent requests.
    """

    def __init__(self, courses: dict[str, Course], graph: nx.DiGraph) -> None:
        self._courses = courses
        self._graph = graph
        self._lessons: dict[str, tuple[Lesson, Course]] = {
            lesson.id: (lesson, course) for course in courses.values() for lesson in course.lessons
        }

    def __contains__(self, reference: object) -> bool:
        return reference in self._courses or reference in self._lessons

    def __len__(self) -> int:
        return len(self._courses)

    @property
    def courses(self) -> list[Course]:
        return [self._courses[cid] for cid in sorted(self._courses)]

    def course(self, reference: str) -> Course | None:
        """Course for a course id, or the parent course of a lesson id."""
        if reference in self._courses:
            return self._courses[reference]
        if reference in self._lessons:
            return self._lessons[reference][1]
        return None

    def lesson(self, reference: str) -> Lesson | None:
        entry = self._lessons.get(reference)
        return entry[0] if entry else None

    def kind_of(self, reference: str) -> ItemKind | None:
        if reference in self._courses:
            return ItemKind.COURSE
        if reference in self._lessons:
            return ItemKind.LESSON
        return None

    def title(self, reference: str) -> str:
        lesson = self.lesson(reference)
        if lesson:
            return lesson.title
        course = self.course(reference)
        return course.title if course else reference

    def difficulty(self, reference: str) -> Difficulty | None:
        course = self.course(reference)
        return course.difficulty if course else None

    def estimated_duration(self, reference: str) -> int | None:
        lesson = self.lesson(reference)
        if lesson:
            return lesson.estimated_duration
        course = self.course(reference)
        return course.estimated_duration if course else None

    def topics(self, reference: str) -> list[str]:
        lesson = self.lesson(reference)
        if lesson and lesson.topics:
            return sorted(lesson.topics)
        course = self.course(reference)
        return sorted(course.topics) if course else []

    def prerequisites(self, reference: str) -> frozenset[str]:
        """Direct prerequisite course ids declared for ``reference``."""
        course = self.course(reference)
        return course.prerequisites if course else frozenset()

    def all_prerequisites(self, reference: str) -> set[str]:
        """Transitive prerequisites known to the graph."""
        course = self.course(reference)
        if course is None:
            return set()
        return set(nx.descendants(self._graph, course.id))

    def covering(self, topic: str) -> list[Course]:
        """Courses that cover ``topic``, easiest first."""
        matches = [c for c in self._courses.values() if c.covers(topic)]
        return sorted(matches, key=lambda c: (c.difficulty.rank, c.estimated_duration, c.id))

    def depends_on_topic(self, reference: str, topic: str) -> bool:
        """True if the content covers ``topic`` or builds on a course that does."""
        course = self.course(reference)
        if course is None:
            return False
        if course.covers(topic):
            return True
        return any(self._courses[p].covers(topic) for p in self.all_prerequisites(reference))

    def topological_order(
        self,
        nodes: Iterable[str],
        key: Callable[[str], Any],
    ) -> list[str]:
        """Prerequisites-first order over ``nodes``; ``key`` breaks ties."""
        # Edges point at prerequisites, so reverse to get prerequisite -> dependent
        subgraph = self._graph.subgraph(nodes).reverse(copy=True)
        return list(nx.lexicographical_topological_sort(subgraph, key=key))


def load_course_graph(courses: Iterable[Course], *, include_drafts: bool = False) -> CourseGraph:
    """Build the prerequisite graph.

    Unpublished courses are skipped unless ``include_drafts`` is set
    (instructor preview). Prerequisites pointing outside the loaded set are
    kept on the course record but get no edge.

    Raises:
        CycleDetected: if the prerequisite relation is not acyclic.
    """
    selected: dict[str, Course] = {}
    skipped_drafts = 0
    for course in courses:
        if not course.published and not include_drafts:
            skipped_drafts += 1
            continue
        if course.id in selected:
            logger.warning("Duplicate course id in catalog, keeping last", course_id=course.id)
        selected[course.id] = course

    graph = nx.DiGraph()
    graph.add_nodes_from(sorted(selected))
    for course_id in sorted(selected):
        for prereq in sorted(selected[course_id].prerequisites):
            if prereq in selected:
                graph.add_edge(course_id, prereq)

    try:
        edges = nx.find_cycle(graph, orientation="original")
    except nx.NetworkXNoCycle:
        edges = []

    if edges:
        cycle = [edges[0][0]] + [edge[1] for edge in edges]
        logger.error("Prerequisite cycle in catalog", cycle=cycle)
        raise CycleDetected(cycle)

    logger.debug(
        "Course graph loaded",
        courses=len(selected),
        edges=graph.number_of_edges(),
        skipped_drafts=skipped_drafts,
    )
    return CourseGraph(selected, graph)
