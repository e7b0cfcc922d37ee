"""PIN administration routes."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.deps import PinAdminUser
from app.models.result_sheet import Term
from app.schemas.pin import PinIssueRequest, PinListResponse, PinResponse
from app.services import pin as pin_service

router = APIRouter(prefix="/pins", tags=["PINs"])


@router.get("", response_model=PinListResponse)
async def list_pins(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: PinAdminUser,
    school_id: UUID | None = Query(None, description="Filter by school ID (super admin)"),
    session: str | None = Query(None),
    term: Term | None = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
) -> PinListResponse:
    """List PINs, newest first."""
    if not current_user.is_super_admin:
        school_id = current_user.school_id

    pins, total = await pin_service.get_pins(
        db,
        school_id=school_id,
        session=session,
        term=term.value if term else None,
        skip=skip,
        limit=limit,
    )
    return PinListResponse(
        items=[PinResponse.model_validate(pin) for pin in pins],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.post("", response_model=list[PinResponse], status_code=status.HTTP_201_CREATED)
async def issue_pins(
    data: PinIssueRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: PinAdminUser,
) -> list[PinResponse]:
    """Issue a batch of PINs for a school, session and term."""
    pins = await pin_service.issue_pins(db, data, current_user)
    return [PinResponse.model_validate(pin) for pin in pins]


@router.delete("/{pin_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_pin(
    pin_id: UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: PinAdminUser,
) -> None:
    await pin_service.delete_pin(db, pin_id, current_user)
