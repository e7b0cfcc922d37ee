"""PIN schemas."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.core.config import settings
from app.models.result_sheet import Term
from app.schemas.validators import AcademicSession, AdmissionNumber


class PinIssueRequest(BaseModel):
    """Schema for issuing a batch of PINs."""

    school_id: UUID | None = None  # Required for super admins
    session: AcademicSession
    term: Term
    quantity: int = Field(..., ge=1, le=settings.PIN_MAX_BATCH)
    max_usage_count: int = Field(1, ge=1)
    max_attempts: int | None = Field(None, ge=1)
    expiry_date: datetime | None = None
    never_expires: bool = False

    @model_validator(mode="after")
    def validate_expiry(self) -> "PinIssueRequest":
        """An explicit expiry date and never_expires are exclusive."""
        if self.never_expires and self.expiry_date is not None:
            raise ValueError("expiry_date cannot be combined with never_expires")
        return self


class PinResponse(BaseModel):
    """Schema for PIN response."""

    id: UUID
    school_id: UUID
    code: str
    session: str
    term: str
    expiry_date: datetime
    max_attempts: int
    attempts: list[dict[str, Any]]
    max_usage_count: int
    usage_count: int
    used_by: dict[str, Any] | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PinListResponse(BaseModel):
    items: list[PinResponse]
    total: int
    skip: int
    limit: int


class CheckResultRequest(BaseModel):
    """Anonymous result check."""

    pin: str = Field(..., min_length=1, max_length=32)
    admission_number: AdmissionNumber
    session: AcademicSession
    term: Term


class StudentSummary(BaseModel):
    first_name: str
    last_name: str
    other_names: str | None = None
    admission_number: str
    class_name: str | None = None


class SchoolSummary(BaseModel):
    name: str
    logo: str | None = None
    motto: str | None = None


class ResultView(BaseModel):
    """What a guardian sees after a successful PIN check."""

    student: StudentSummary
    school: SchoolSummary
    session: str
    term: str
    subjects: list[dict[str, Any]]
    total_score: float
    average_score: float
    position: int | None
    total_students: int | None
    teacher_comment: str | None
    principal_comment: str | None
    attendance: dict[str, Any] | None
    uses_remaining: int
