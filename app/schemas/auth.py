"""Authentication schemas."""

from uuid import UUID

from pydantic import BaseModel, Field

from app.core.permissions import Role
from app.schemas.validators import PhoneNumber


class Token(BaseModel):
    """Token pair plus the identity the client routes on."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    role: Role
    school_id: UUID | None = None


class RefreshRequest(BaseModel):
    refresh_token: str


class LoginRequest(BaseModel):
    """Phone number and password sign-in."""

    phone_number: PhoneNumber
    password: str = Field(..., min_length=6)
