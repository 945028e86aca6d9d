"""Course catalog schemas."""

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class Difficulty(StrEnum):
    """Ordered difficulty scale. Compare with ``rank``, never as strings."""

    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"

    @property
    def rank(self) -> int:
        return _DIFFICULTY_ORDER.index(self)

    @classmethod
    def parse(cls, value: object, default: "Difficulty | None" = None) -> "Difficulty | None":
        """Lenient parse used on untrusted input; unknown values yield ``default``."""
        if isinstance(value, Difficulty):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                return default
        return default


_DIFFICULTY_ORDER = [Difficulty.BEGINNER, Difficulty.INTERMEDIATE, Difficulty.ADVANCED]


class Lesson(BaseModel):
    """A lesson inside a course. Inherits the course's prerequisites."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    estimated_duration: int = Field(default=30, gt=0, description="Minutes")
    learning_objectives: list[str] = Field(default_factory=list)
    topics: frozenset[str] = frozenset()


class Course(BaseModel):
    """Read-only course record as delivered by the catalog."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    description: str = ""
    difficulty: Difficulty = Difficulty.BEGINNER
    prerequisites: frozenset[str] = frozenset()
    estimated_duration: int = Field(default=120, gt=0, description="Minutes")
    tags: frozenset[str] = Field(
        default=frozenset(), description="Content-type tags, e.g. video, text, interactive"
    )
    topics: frozenset[str] = Field(default=frozenset(), description="Subject tags used for gap matching")
    learning_objectives: list[str] = Field(default_factory=list)
    lessons: list[Lesson] = Field(default_factory=list)
    published: bool = True

    def covers(self, topic: str) -> bool:
        needle = topic.lower()
        if any(t.lower() == needle for t in self.topics):
            return True
        return any(t.lower() == needle for lesson in self.lessons for t in lesson.topics)
