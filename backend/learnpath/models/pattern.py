"""Learning pattern model. Rows are append-only; superseded rows stay for audit."""

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, Float, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from learnpath.core.database import Base


class LearningPatternRecord(Base):
    __tablename__ = "learning_patterns"
    __table_args__ = (
        Index("ix_learning_patterns_key", "student_id", "pattern_type", "subject", "is_active"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    student_id: Mapped[str] = mapped_column(String, index=True)
    pattern_type: Mapped[str] = mapped_column(String)
    subject: Mapped[str] = mapped_column(String)

    confidence: Mapped[float] = mapped_column(Float)
    metrics: Mapped[dict[str, object]] = mapped_column(JSON, default=dict)

    detected_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    superseded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
