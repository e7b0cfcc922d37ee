"""PIN model - access codes for anonymous result checking."""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import BaseModel


class Pin(BaseModel):
    """One access code bound to a school, session and term."""

    __tablename__ = "pins"

    school_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("schools.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    code: Mapped[str] = mapped_column(String(32), unique=True, nullable=False, index=True)
    session: Mapped[str] = mapped_column(String(20), nullable=False)
    term: Mapped[str] = mapped_column(String(20), nullable=False)
    expiry_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    max_attempts: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    # [{"type": "success"|"failed", "admission_number", "timestamp", ...}]
    attempts: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)
    max_usage_count: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    usage_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    used_by: Mapped[dict[str, Any] | None] = mapped_column(JSON)

    generated_by: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id"),
        nullable=False,
    )
    # Bumped on every verification write; guards compare-and-swap updates
    version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    @property
    def is_exhausted(self) -> bool:
        return self.usage_count >= self.max_usage_count

    @property
    def attempts_left(self) -> int:
        return max(self.max_attempts - len(self.attempts or []), 0)

    def __repr__(self) -> str:
        return f"<Pin(id={self.id}, usage={self.usage_count}/{self.max_usage_count})>"
