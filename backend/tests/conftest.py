"""Shared fixtures for engine, store, and API tests."""

import asyncio
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio
from langchain_core.messages import AIMessage
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from learnpath import models  # noqa: F401
from learnpath.core.config import EngineConfig
from learnpath.core.database import Base
from learnpath.engine.course_graph import CourseGraph, load_course_graph
from learnpath.schemas.course import Course, Difficulty, Lesson
from learnpath.schemas.student import AssessmentRecord, StudentRecords

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)


# ============================================================================
# Database
# ============================================================================


@pytest_asyncio.fixture
async def test_session() -> AsyncGenerator[AsyncSession, None]:
    """Session bound to a fresh in-memory SQLite database."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session

    await engine.dispose()


# ============================================================================
# Catalog and students
# ============================================================================


def make_course(
    course_id: str,
    *,
    difficulty: Difficulty = Difficulty.BEGINNER,
    prerequisites: set[str] | None = None,
    duration: int = 120,
    topics: set[str] | None = None,
    tags: set[str] | None = None,
    published: bool = True,
    lessons: list[Lesson] | None = None,
) -> Course:
    return Course(
        id=course_id,
        title=course_id.replace("-", " ").title(),
        difficulty=difficulty,
        prerequisites=frozenset(prerequisites or ()),
        estimated_duration=duration,
        topics=frozenset(topics or ()),
        tags=frozenset(tags or ()),
        published=published,
        lessons=lessons or [],
    )


def make_assessment(
    assessment_id: str,
    score: float,
    *,
    topics: set[str],
    wrong: set[str] | None = None,
    passed: bool | None = None,
    minutes_ago: int = 0,
) -> AssessmentRecord:
    return AssessmentRecord(
        assessment_id=assessment_id,
        topic_tags=frozenset(topics),
        score=score,
        passed=score >= 70 if passed is None else passed,
        wrong_answer_topics=frozenset(wrong or ()),
        timestamp=NOW - timedelta(minutes=minutes_ago),
    )


@pytest.fixture
def catalog() -> list[Course]:
    return [
        make_course("algebra-1", topics={"algebra"}, tags={"text"}),
        make_course("geometry-1", duration=90, topics={"geometry"}, tags={"video"}),
        make_course(
            "algebra-2",
            difficulty=Difficulty.INTERMEDIATE,
            prerequisites={"algebra-1"},
            duration=150,
            topics={"algebra", "equations"},
            tags={"text"},
            lessons=[Lesson(id="algebra-2-l1", title="Linear Equations", estimated_duration=40)],
        ),
        make_course(
            "calculus-1",
            difficulty=Difficulty.ADVANCED,
            prerequisites={"algebra-2", "geometry-1"},
            duration=180,
            topics={"calculus"},
            tags={"text"},
        ),
        make_course("stats-preview", topics={"statistics"}, published=False),
    ]


@pytest.fixture
def course_graph(catalog: list[Course]) -> CourseGraph:
    return load_course_graph(catalog)


@pytest.fixture
def engine_config() -> EngineConfig:
    return EngineConfig()


@pytest.fixture
def student_records() -> StudentRecords:
    return StudentRecords(
        student_id="student-1",
        knowledge_profile={"algebra": 0.3, "geometry": 0.8},
        learning_preferences={"pace": "moderate", "preferred_media": ["video"]},
        completed_content=["algebra-1"],
        assessment_history=[
            make_assessment("quiz-1", 55, topics={"algebra"}, wrong={"linear equations"}, minutes_ago=60),
            make_assessment("quiz-2", 60, topics={"algebra"}, minutes_ago=30),
        ],
    )


# ============================================================================
# Reasoning provider
# ============================================================================


class ScriptedLLM:
    """Chat model double: replays scripted replies or raises scripted errors.

    The last outcome repeats once the script runs out.
    """

    model_name = "scripted-model"

    def __init__(self, *outcomes: str | BaseException, delay: float = 0.0) -> None:
        self.outcomes = list(outcomes)
        self.delay = delay
        self.calls: list[list] = []

    async def ainvoke(self, messages: list) -> AIMessage:
        self.calls.append(messages)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if self.delay:
            await asyncio.sleep(self.delay)
        if isinstance(outcome, BaseException):
            raise outcome
        return AIMessage(content=outcome)
