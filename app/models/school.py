"""School model."""

from typing import Any

from sqlalchemy import JSON, Boolean, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import BaseModel


class School(BaseModel):
    """School model - represents a tenant in the system."""

    __tablename__ = "schools"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    code: Mapped[str | None] = mapped_column(String(50), unique=True)
    address: Mapped[str | None] = mapped_column(String(500))
    phone: Mapped[str | None] = mapped_column(String(50))

    # Branding - approval is blocked until a logo exists
    logo: Mapped[str | None] = mapped_column(Text)
    motto: Mapped[str | None] = mapped_column(Text)

    # Optional grade bands: [{"min_score": 80, "grade": "A", "remark": "Excellent"}, ...]
    grade_ranges: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON)

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        server_default="true",
    )

    # Relationships
    users: Mapped[list["User"]] = relationship("User", back_populates="school")
    students: Mapped[list["Student"]] = relationship("Student", back_populates="school")
    classes: Mapped[list["SchoolClass"]] = relationship("SchoolClass", back_populates="school")

    @property
    def has_branding(self) -> bool:
        """Approved results are render-ready only once a logo is configured."""
        return bool(self.logo and self.logo.strip())

    def __repr__(self) -> str:
        return f"<School(id={self.id}, name={self.name})>"
