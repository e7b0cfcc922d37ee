"""Result sheet schemas."""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.models.result_sheet import SheetStatus, Term
from app.schemas.validators import AcademicSession


class SheetEntryInput(BaseModel):
    """One student's component scores, e.g. {"CA1": 8, "CA2": 9, "Exam": 70}."""

    student_id: UUID
    scores: dict[str, float] = Field(default_factory=dict)


class ResultSheetCreate(BaseModel):
    """Schema for starting a result sheet."""

    class_id: UUID
    subject_id: UUID
    session: AcademicSession
    term: Term
    entries: list[SheetEntryInput] = []


class ResultSheetEntriesUpdate(BaseModel):
    """Replace a sheet's entries."""

    entries: list[SheetEntryInput]


class RejectRequest(BaseModel):
    """Rejection needs a reason; the service enforces it."""

    reason: str | None = None


class ResultSheetEntryResponse(BaseModel):
    id: UUID
    student_id: UUID
    component_scores: dict[str, float]
    total: float
    grade: str | None
    remark: str | None

    model_config = ConfigDict(from_attributes=True)


class ResultSheetResponse(BaseModel):
    """Schema for result sheet response."""

    id: UUID
    school_id: UUID
    class_id: UUID
    subject_id: UUID
    session: str
    term: Term
    status: SheetStatus
    created_by: UUID
    submitted_at: datetime | None
    approved_by: UUID | None
    approved_at: datetime | None
    rejection_reason: str | None
    entries: list[ResultSheetEntryResponse] = []
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ResultSheetListResponse(BaseModel):
    """Schema for paginated result sheet list."""

    items: list[ResultSheetResponse]
    total: int
    skip: int
    limit: int


class StudentAggregationError(BaseModel):
    student_id: UUID
    detail: str

    model_config = ConfigDict(from_attributes=True)


class AggregationReportResponse(BaseModel):
    """Outcome of merging approved sheets into student results."""

    school_id: UUID
    session: str
    term: str
    created: int
    updated: int
    students_ranked: int
    skipped_published: list[UUID]
    errors: list[StudentAggregationError]

    model_config = ConfigDict(from_attributes=True)


class SheetApprovalResponse(BaseModel):
    sheet: ResultSheetResponse
    aggregation: AggregationReportResponse


class AggregateRequest(BaseModel):
    """Re-run aggregation for a school, session and term."""

    session: AcademicSession
    term: Term


class BulkSheetActionRequest(BaseModel):
    ids: list[UUID] = Field(..., min_length=1)
    action: Literal["delete", "archive"]
