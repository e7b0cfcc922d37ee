"""SchoolClass model."""

from uuid import UUID

from sqlalchemy import ForeignKey, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import BaseModel


class SchoolClass(BaseModel):
    """SchoolClass model - the cohort students are ranked within."""

    __tablename__ = "school_classes"
    __table_args__ = (
        UniqueConstraint("school_id", "name", "arm", name="uq_school_class_name_arm"),
    )

    school_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("schools.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)  # e.g. "JSS 1"
    arm: Mapped[str | None] = mapped_column(String(5))  # A, B, C, etc.

    # Relationships
    school: Mapped["School"] = relationship("School", back_populates="classes")
    students: Mapped[list["Student"]] = relationship("Student", back_populates="school_class")

    @property
    def display_name(self) -> str:
        """Return class name like 'JSS 1A'."""
        return f"{self.name}{self.arm or ''}"
