"""Student result schemas."""

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.models.result import ResultStatus
from app.models.result_sheet import Term
from app.schemas.validators import AcademicSession, AdmissionNumber


class SubjectScoreInput(BaseModel):
    """Component scores for one subject."""

    subject: str = Field(..., min_length=1, max_length=100)
    subject_id: UUID | None = None
    scores: dict[str, float] = Field(default_factory=dict)


class Attendance(BaseModel):
    present: int = Field(0, ge=0)
    absent: int = Field(0, ge=0)
    total: int = Field(0, ge=0)

    @model_validator(mode="after")
    def validate_total(self) -> "Attendance":
        """Present and absent days cannot exceed the total."""
        if self.total and self.present + self.absent > self.total:
            raise ValueError("present + absent cannot exceed total")
        return self


class ResultCreate(BaseModel):
    """Schema for authoring a result directly."""

    student_id: UUID
    session: AcademicSession
    term: Term
    class_id: UUID | None = None  # Defaults to the student's class
    subjects: list[SubjectScoreInput] = Field(..., min_length=1)
    attendance: Attendance | None = None


class ResultUpdate(BaseModel):
    """Schema for editing a draft or rejected result."""

    class_id: UUID | None = None
    subjects: list[SubjectScoreInput] | None = Field(default=None, min_length=1)
    attendance: Attendance | None = None


class ResultBulkRow(BaseModel):
    admission_number: AdmissionNumber
    subjects: list[SubjectScoreInput] = Field(..., min_length=1)
    attendance: Attendance | None = None


class ResultBulkUpload(BaseModel):
    """Many results for one session and term, keyed by admission number."""

    session: AcademicSession
    term: Term
    rows: list[ResultBulkRow] = Field(..., min_length=1)


class ResultBulkUploadResponse(BaseModel):
    success: int
    failed: int
    errors: list[str]
    result_ids: list[UUID]


class CommentRequest(BaseModel):
    text: str = Field(..., max_length=2000)


class BulkResultActionRequest(BaseModel):
    ids: list[UUID] = Field(..., min_length=1)
    action: Literal["submit", "approve", "reject", "publish", "delete", "archive"]
    reason: str | None = None  # Required for reject


class SubjectEntryResponse(BaseModel):
    subject: str
    subject_id: UUID | None = None
    scores: dict[str, float]
    total: float
    grade: str
    remark: str


class ResultResponse(BaseModel):
    """Schema for result response."""

    id: UUID
    school_id: UUID
    student_id: UUID
    class_id: UUID | None
    session: str
    term: str
    subjects: list[SubjectEntryResponse]
    total_score: float
    average_score: float
    position: int | None
    total_students: int | None
    teacher_comment: str | None
    principal_comment: str | None
    attendance: dict[str, Any] | None
    status: ResultStatus
    published_at: datetime | None
    approved_by: UUID | None
    approved_at: datetime | None
    rejection_reason: str | None
    uploaded_by: UUID
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ResultListResponse(BaseModel):
    """Schema for paginated result list."""

    items: list[ResultResponse]
    total: int
    skip: int
    limit: int
