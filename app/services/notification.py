"""Notification sink - rows commit with the caller's unit of work."""

import logging
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.permissions import Role
from app.models.notification import Notification
from app.models.user import User

logger = logging.getLogger(__name__)


def notify(
    db: AsyncSession,
    user_id: UUID,
    type: str,
    title: str,
    message: str,
    data: dict[str, Any] | None = None,
) -> Notification:
    """Queue a notification for a user. The caller commits."""
    notification = Notification(
        user_id=user_id,
        type=type,
        title=title,
        message=message,
        data=data,
    )
    db.add(notification)
    logger.debug("Queued %s notification for user %s", type, user_id)
    return notification


async def notify_school_admins(
    db: AsyncSession,
    school_id: UUID,
    type: str,
    title: str,
    message: str,
    data: dict[str, Any] | None = None,
) -> int:
    """Queue a notification for every active school admin. Returns the count."""
    result = await db.execute(
        select(User.id).where(
            User.school_id == school_id,
            User.role == Role.SCHOOL_ADMIN.value,
            User.is_active == True,
        )
    )
    admin_ids = list(result.scalars().all())
    for admin_id in admin_ids:
        notify(db, admin_id, type, title, message, data)
    return len(admin_ids)


async def get_notifications(
    db: AsyncSession,
    user_id: UUID,
    unread_only: bool = False,
    skip: int = 0,
    limit: int = 50,
) -> tuple[list[Notification], int]:
    """Get a user's notifications, newest first."""
    query = select(Notification).where(Notification.user_id == user_id)
    if unread_only:
        query = query.where(Notification.is_read == False)

    count_query = select(func.count()).select_from(query.subquery())
    total_result = await db.execute(count_query)
    total = total_result.scalar() or 0

    query = query.order_by(Notification.created_at.desc()).offset(skip).limit(limit)
    result = await db.execute(query)
    return list(result.scalars().all()), total
