"""Result sheet routes."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.deps import AuthorUser, CurrentUser, SchoolAdminUser, TeacherUser
from app.core.permissions import Role
from app.models.result_sheet import SheetStatus, Term
from app.schemas.common import BulkActionResponse
from app.schemas.result_sheet import (
    AggregateRequest,
    AggregationReportResponse,
    BulkSheetActionRequest,
    RejectRequest,
    ResultSheetCreate,
    ResultSheetEntriesUpdate,
    ResultSheetListResponse,
    ResultSheetResponse,
    SheetApprovalResponse,
)
from app.services import result_sheet as sheet_service

router = APIRouter(prefix="/result-sheets", tags=["Result Sheets"])


@router.get("", response_model=ResultSheetListResponse)
async def list_sheets(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: CurrentUser,
    school_id: UUID | None = Query(None, description="Filter by school ID (super admin)"),
    sheet_status: SheetStatus | None = Query(None, alias="status", description="Filter by status"),
    class_id: UUID | None = Query(None),
    subject_id: UUID | None = Query(None),
    session: str | None = Query(None, description="e.g. 2024/2025"),
    term: Term | None = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
) -> ResultSheetListResponse:
    """
    List result sheets.

    Teachers see only their own sheets; school admins see every sheet in
    their school.
    """
    created_by = None
    if not current_user.is_super_admin:
        school_id = current_user.school_id
    if current_user.role == Role.TEACHER:
        created_by = current_user.id

    sheets, total = await sheet_service.get_sheets(
        db,
        school_id=school_id,
        status=sheet_status,
        class_id=class_id,
        subject_id=subject_id,
        session=session,
        term=term.value if term else None,
        created_by=created_by,
        skip=skip,
        limit=limit,
    )
    return ResultSheetListResponse(
        items=[ResultSheetResponse.model_validate(sheet) for sheet in sheets],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.post("", response_model=ResultSheetResponse)
async def create_sheet(
    data: ResultSheetCreate,
    response: Response,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: TeacherUser,
) -> ResultSheetResponse:
    """Start a sheet. Returns 200 instead of 201 when an existing draft is resumed."""
    sheet, created = await sheet_service.create_sheet(db, data, current_user)
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return ResultSheetResponse.model_validate(sheet)


@router.post("/aggregate", response_model=AggregationReportResponse)
async def aggregate_results(
    data: AggregateRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: SchoolAdminUser,
) -> AggregationReportResponse:
    """Re-run aggregation of approved sheets for the admin's school."""
    report = await sheet_service.rerun_aggregation(
        db, data.session, data.term.value, current_user
    )
    return AggregationReportResponse.model_validate(report)


@router.post("/bulk-action", response_model=BulkActionResponse)
async def bulk_sheet_action(
    data: BulkSheetActionRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: SchoolAdminUser,
) -> BulkActionResponse:
    """Delete or archive many sheets. Failures are reported per sheet."""
    return await sheet_service.bulk_sheet_action(db, data.ids, data.action, current_user)


@router.get("/{sheet_id}", response_model=ResultSheetResponse)
async def get_sheet(
    sheet_id: UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: CurrentUser,
) -> ResultSheetResponse:
    """Get result sheet by ID."""
    sheet = await sheet_service.get_sheet_for_actor(db, sheet_id, current_user)
    return ResultSheetResponse.model_validate(sheet)


@router.put("/{sheet_id}/entries", response_model=ResultSheetResponse)
async def update_entries(
    sheet_id: UUID,
    data: ResultSheetEntriesUpdate,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: TeacherUser,
) -> ResultSheetResponse:
    """Replace the entries of a draft or rejected sheet."""
    sheet = await sheet_service.update_entries(db, sheet_id, data.entries, current_user)
    return ResultSheetResponse.model_validate(sheet)


@router.post("/{sheet_id}/submit", response_model=ResultSheetResponse)
async def submit_sheet(
    sheet_id: UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: TeacherUser,
) -> ResultSheetResponse:
    sheet = await sheet_service.submit_sheet(db, sheet_id, current_user)
    return ResultSheetResponse.model_validate(sheet)


@router.post("/{sheet_id}/approve", response_model=SheetApprovalResponse)
async def approve_sheet(
    sheet_id: UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: SchoolAdminUser,
) -> SheetApprovalResponse:
    """Approve a sheet and merge the scope's approved sheets into student results."""
    sheet, report = await sheet_service.approve_sheet(db, sheet_id, current_user)
    return SheetApprovalResponse(
        sheet=ResultSheetResponse.model_validate(sheet),
        aggregation=AggregationReportResponse.model_validate(report),
    )


@router.post("/{sheet_id}/reject", response_model=ResultSheetResponse)
async def reject_sheet(
    sheet_id: UUID,
    data: RejectRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: SchoolAdminUser,
) -> ResultSheetResponse:
    sheet = await sheet_service.reject_sheet(db, sheet_id, current_user, data.reason)
    return ResultSheetResponse.model_validate(sheet)


@router.delete("/{sheet_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_sheet(
    sheet_id: UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: AuthorUser,
) -> None:
    """Delete a sheet. Teachers may delete their own drafts only."""
    await sheet_service.delete_sheet(db, sheet_id, current_user)
