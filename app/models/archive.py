"""Archived copies of deleted sheets and results."""

from typing import Any
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import BaseModel


class ArchivedResultSheet(BaseModel):
    """Snapshot of a result sheet and its entries."""

    __tablename__ = "archived_result_sheets"

    original_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    school_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    snapshot: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    archived_by: Mapped[UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)


class ArchivedResult(BaseModel):
    """Snapshot of a student result."""

    __tablename__ = "archived_results"

    original_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    school_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    snapshot: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    archived_by: Mapped[UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
