"""Read-only collaborator interfaces: course catalog, profile store, assessment store.

The engine only reads through these protocols. ``InMemoryCollaborators``
backs all three from a JSON seed file for local runs and tests.
"""

import json
from pathlib import Path
from typing import Any, Protocol

from pydantic import BaseModel, Field

from learnpath.core.errors import StudentNotFound
from learnpath.core.logging import get_logger
from learnpath.schemas.course import Course
from learnpath.schemas.student import AssessmentRecord, StudentRecords

logger = get_logger(__name__)


class CourseCatalog(Protocol):
    async def list_courses(self, *, include_drafts: bool = False) -> list[Course]: ...


class ProfileStore(Protocol):
    async def get_profile(self, student_id: str) -> StudentRecords:
        """Raises StudentNotFound for unknown students."""
        ...


class AssessmentStore(Protocol):
    async def list_assessments(self, student_id: str) -> list[AssessmentRecord]: ...

    async def get_assessment(self, student_id: str, assessment_id: str) -> AssessmentRecord | None: ...


class SeedData(BaseModel):
    courses: list[Course] = Field(default_factory=list)
    students: list[StudentRecords] = Field(default_factory=list)


class InMemoryCollaborators:
    """Catalog, profile and assessment store over plain in-memory data."""

    def __init__(
        self,
        courses: list[Course] | None = None,
        students: list[StudentRecords] | None = None,
    ) -> None:
        self.courses: list[Course] = list(courses or [])
        self.students: dict[str, StudentRecords] = {s.student_id: s for s in students or []}

    @classmethod
    def from_seed(cls, path: Path) -> "InMemoryCollaborators":
        data: dict[str, Any] = json.loads(path.read_text(encoding="utf-8"))
        seed = SeedData.model_validate(data)
        logger.info(
            "Collaborator seed loaded",
            path=str(path),
            courses=len(seed.courses),
            students=len(seed.students),
        )
        return cls(seed.courses, seed.students)

    # === CourseCatalog ===

    async def list_courses(self, *, include_drafts: bool = False) -> list[Course]:
        return [c for c in self.courses if include_drafts or c.published]

    # === ProfileStore ===

    async def get_profile(self, student_id: str) -> StudentRecords:
        records = self.students.get(student_id)
        if records is None:
            raise StudentNotFound(student_id)
        return records

    # === AssessmentStore ===

    async def list_assessments(self, student_id: str) -> list[AssessmentRecord]:
        records = self.students.get(student_id)
        return list(records.assessment_history) if records else []

    async def get_assessment(self, student_id: str, assessment_id: str) -> AssessmentRecord | None:
        matches = [a for a in await self.list_assessments(student_id) if a.assessment_id == assessment_id]
        return max(matches, key=lambda a: a.timestamp) if matches else None
