"""Pydantic schemas."""

from app.schemas.auth import (
    Token,
    LoginRequest,
    RefreshRequest,
)
from app.schemas.common import BulkActionResponse, BulkItemError

__all__ = [
    # Auth
    "Token",
    "LoginRequest",
    "RefreshRequest",
    # Bulk actions
    "BulkActionResponse",
    "BulkItemError",
]
