"""Unauthenticated routes for guardians."""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.schemas.pin import CheckResultRequest, ResultView
from app.services import pin as pin_service

router = APIRouter(prefix="/public", tags=["Public"])


@router.post("/check-result", response_model=ResultView)
async def check_result(
    data: CheckResultRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> ResultView:
    """Check a student's result with a PIN. Each success uses up one PIN use."""
    view = await pin_service.check_result(
        db, data.pin, data.admission_number, data.session, data.term.value
    )
    return ResultView.model_validate(view)
