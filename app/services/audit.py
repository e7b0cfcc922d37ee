"""Audit sink."""

from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.notification import AuditLog


def record(
    db: AsyncSession,
    actor_id: UUID | None,
    action: str,
    resource: str,
    resource_id: UUID | None = None,
    details: dict[str, Any] | None = None,
    school_id: UUID | None = None,
) -> AuditLog:
    """Queue an audit entry. The caller commits."""
    entry = AuditLog(
        user_id=actor_id,
        school_id=school_id,
        action=action,
        resource=resource,
        resource_id=resource_id,
        details=details,
    )
    db.add(entry)
    return entry
