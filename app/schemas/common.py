"""Schemas shared by bulk operations."""

from uuid import UUID

from pydantic import BaseModel


class BulkItemError(BaseModel):
    """Why one item of a bulk action failed."""

    id: UUID
    code: str
    detail: str


class BulkActionResponse(BaseModel):
    """Outcome of a bulk action. Succeeded items stay committed."""

    action: str
    succeeded: list[UUID]
    failed: list[BulkItemError]
