"""Result sheet models - a teacher's per-class, per-subject batch of scores."""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, DateTime, Float, ForeignKey, Index, String, Text, UniqueConstraint, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import BaseModel


class SheetStatus(str, Enum):
    """Review status of a result sheet."""

    DRAFT = "draft"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"


LIVE_SHEET_STATUSES = (SheetStatus.DRAFT, SheetStatus.SUBMITTED, SheetStatus.APPROVED)

_LIVE_CLAUSE = text(
    "status IN (" + ", ".join(f"'{status.value}'" for status in LIVE_SHEET_STATUSES) + ")"
)


class Term(str, Enum):
    """Academic term."""

    FIRST = "First"
    SECOND = "Second"
    THIRD = "Third"


class ResultSheet(BaseModel):
    """Score sheet for one class, subject, session and term."""

    __tablename__ = "result_sheets"
    __table_args__ = (
        # One live sheet per teacher for a class, subject, session and term
        Index(
            "uq_result_sheet_live",
            "school_id",
            "class_id",
            "subject_id",
            "session",
            "term",
            "created_by",
            unique=True,
            postgresql_where=_LIVE_CLAUSE,
            sqlite_where=_LIVE_CLAUSE,
        ),
    )

    school_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("schools.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    class_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("school_classes.id", ondelete="CASCADE"),
        nullable=False,
    )
    subject_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("subjects.id", ondelete="CASCADE"),
        nullable=False,
    )
    session: Mapped[str] = mapped_column(String(20), nullable=False)  # e.g. "2024/2025"
    term: Mapped[Term] = mapped_column(String(20), nullable=False)
    status: Mapped[SheetStatus] = mapped_column(
        String(20),
        default=SheetStatus.DRAFT,
        server_default="draft",
        index=True,
    )

    created_by: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id"),
        nullable=False,
    )
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    approved_by: Mapped[UUID | None] = mapped_column(Uuid, ForeignKey("users.id"))
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    rejection_reason: Mapped[str | None] = mapped_column(Text)

    # Relationships
    entries: Mapped[list["ResultSheetEntry"]] = relationship(
        "ResultSheetEntry",
        back_populates="sheet",
        cascade="all, delete-orphan",
        order_by="ResultSheetEntry.position",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<ResultSheet(id={self.id}, status={self.status})>"


class ResultSheetEntry(BaseModel):
    """One student's component scores on a sheet."""

    __tablename__ = "result_sheet_entries"
    __table_args__ = (
        UniqueConstraint("sheet_id", "student_id", name="uq_sheet_student"),
    )

    sheet_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("result_sheets.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    student_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("students.id", ondelete="CASCADE"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(default=0)  # Order on the sheet
    component_scores: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    total: Mapped[float] = mapped_column(Float, default=0)
    grade: Mapped[str | None] = mapped_column(String(5))
    remark: Mapped[str | None] = mapped_column(String(50))

    sheet: Mapped["ResultSheet"] = relationship("ResultSheet", back_populates="entries")
