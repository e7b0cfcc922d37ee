"""Student result model."""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import BaseModel


class ResultStatus(str, Enum):
    """Lifecycle status of a student result."""

    DRAFT = "draft"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"
    PUBLISHED = "published"


VISIBLE_RESULT_STATUSES = (ResultStatus.APPROVED, ResultStatus.PUBLISHED)


class Result(BaseModel):
    """Merged academic record for one student, session and term."""

    __tablename__ = "results"
    __table_args__ = (
        UniqueConstraint("student_id", "session", "term", name="uq_result_student_session_term"),
    )

    school_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("schools.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    student_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("students.id", ondelete="CASCADE"),
        nullable=False,
    )
    class_id: Mapped[UUID | None] = mapped_column(
        Uuid,
        ForeignKey("school_classes.id", ondelete="SET NULL"),
    )
    session: Mapped[str] = mapped_column(String(20), nullable=False)
    term: Mapped[str] = mapped_column(String(20), nullable=False)

    # [{"subject", "subject_id", "scores", "total", "grade", "remark"}, ...]
    subjects: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    total_score: Mapped[float] = mapped_column(Float, default=0)
    average_score: Mapped[float] = mapped_column(Float, default=0)
    position: Mapped[int | None] = mapped_column(Integer)
    total_students: Mapped[int | None] = mapped_column(Integer)

    teacher_comment: Mapped[str | None] = mapped_column(Text)
    principal_comment: Mapped[str | None] = mapped_column(Text)
    attendance: Mapped[dict[str, Any] | None] = mapped_column(JSON)  # {present, absent, total}

    status: Mapped[ResultStatus] = mapped_column(
        String(20),
        default=ResultStatus.DRAFT,
        server_default="draft",
        index=True,
    )
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    approved_by: Mapped[UUID | None] = mapped_column(Uuid, ForeignKey("users.id"))
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    rejection_reason: Mapped[str | None] = mapped_column(Text)
    uploaded_by: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id"),
        nullable=False,
    )

    @property
    def is_published(self) -> bool:
        return self.status == ResultStatus.PUBLISHED

    def __repr__(self) -> str:
        return f"<Result(id={self.id}, student={self.student_id}, status={self.status})>"
