"""Student result routes."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.deps import AuthorUser, CurrentUser, SchoolAdminUser
from app.models.result import ResultStatus
from app.models.result_sheet import Term
from app.schemas.common import BulkActionResponse
from app.schemas.result import (
    BulkResultActionRequest,
    CommentRequest,
    ResultBulkUpload,
    ResultBulkUploadResponse,
    ResultCreate,
    ResultListResponse,
    ResultResponse,
    ResultUpdate,
)
from app.schemas.result_sheet import RejectRequest
from app.services import result as result_service

router = APIRouter(prefix="/results", tags=["Results"])


@router.get("", response_model=ResultListResponse)
async def list_results(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: CurrentUser,
    school_id: UUID | None = Query(None, description="Filter by school ID (super admin)"),
    student_id: UUID | None = Query(None),
    class_id: UUID | None = Query(None),
    session: str | None = Query(None, description="e.g. 2024/2025"),
    term: Term | None = Query(None),
    result_status: ResultStatus | None = Query(None, alias="status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
) -> ResultListResponse:
    """List results in the caller's school."""
    if not current_user.is_super_admin:
        school_id = current_user.school_id

    results, total = await result_service.get_results(
        db,
        school_id=school_id,
        student_id=student_id,
        class_id=class_id,
        session=session,
        term=term.value if term else None,
        status=result_status,
        skip=skip,
        limit=limit,
    )
    return ResultListResponse(
        items=[ResultResponse.model_validate(result) for result in results],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.post("", response_model=ResultResponse, status_code=status.HTTP_201_CREATED)
async def create_result(
    data: ResultCreate,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: AuthorUser,
) -> ResultResponse:
    """Author a draft result for one student."""
    result = await result_service.create_result(db, data, current_user)
    return ResultResponse.model_validate(result)


@router.post("/bulk", response_model=ResultBulkUploadResponse)
async def bulk_upload(
    data: ResultBulkUpload,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: AuthorUser,
) -> ResultBulkUploadResponse:
    """Upload many draft results keyed by admission number."""
    return await result_service.bulk_upload_results(db, data, current_user)


@router.post("/bulk-action", response_model=BulkActionResponse)
async def bulk_result_action(
    data: BulkResultActionRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: SchoolAdminUser,
) -> BulkActionResponse:
    """Apply one lifecycle action to many results. Failures are reported per result."""
    return await result_service.bulk_result_action(
        db, data.ids, data.action, current_user, reason=data.reason
    )


@router.get("/{result_id}", response_model=ResultResponse)
async def get_result(
    result_id: UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: CurrentUser,
) -> ResultResponse:
    """Get result by ID."""
    result = await result_service.get_result_for_actor(db, result_id, current_user)
    return ResultResponse.model_validate(result)


@router.put("/{result_id}", response_model=ResultResponse)
async def update_result(
    result_id: UUID,
    data: ResultUpdate,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: AuthorUser,
) -> ResultResponse:
    """Edit a draft or rejected result."""
    result = await result_service.update_result(db, result_id, data, current_user)
    return ResultResponse.model_validate(result)


@router.post("/{result_id}/submit", response_model=ResultResponse)
async def submit_result(
    result_id: UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: AuthorUser,
) -> ResultResponse:
    result = await result_service.submit_result(db, result_id, current_user)
    return ResultResponse.model_validate(result)


@router.post("/{result_id}/approve", response_model=ResultResponse)
async def approve_result(
    result_id: UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: SchoolAdminUser,
) -> ResultResponse:
    result = await result_service.approve_result(db, result_id, current_user)
    return ResultResponse.model_validate(result)


@router.post("/{result_id}/reject", response_model=ResultResponse)
async def reject_result(
    result_id: UUID,
    data: RejectRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: SchoolAdminUser,
) -> ResultResponse:
    result = await result_service.reject_result(db, result_id, current_user, data.reason)
    return ResultResponse.model_validate(result)


@router.post("/{result_id}/publish", response_model=ResultResponse)
async def publish_result(
    result_id: UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: SchoolAdminUser,
) -> ResultResponse:
    result = await result_service.publish_result(db, result_id, current_user)
    return ResultResponse.model_validate(result)


@router.post("/{result_id}/comment", response_model=ResultResponse)
async def comment_result(
    result_id: UUID,
    data: CommentRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: AuthorUser,
) -> ResultResponse:
    """Teachers set the teacher comment, school admins the principal comment."""
    result = await result_service.comment_result(db, result_id, current_user, data.text)
    return ResultResponse.model_validate(result)
