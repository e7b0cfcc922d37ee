"""User roles and permissions."""

from enum import Enum

from app.core.exceptions import ForbiddenError


class Role(str, Enum):
    """User roles in the system."""

    SUPER_ADMIN = "super_admin"  # Platform admin, access to all schools
    SCHOOL_ADMIN = "school_admin"  # Reviews and publishes results for their school
    TEACHER = "teacher"  # Authors sheets and results in their school


# Permissions by role
ROLE_PERMISSIONS = {
    Role.SUPER_ADMIN: [
        "results:read",
        "sheets:read",
        "pins:read",
        "pins:issue",
        "pins:delete",
    ],
    Role.SCHOOL_ADMIN: [
        "results:read",
        "results:write",
        "results:approve",
        "results:publish",
        "results:principal_comment",
        "results:bulk",
        "sheets:read",
        "sheets:approve",
        "sheets:bulk",
        "pins:read",
        "pins:issue",
        "pins:delete",
    ],
    Role.TEACHER: [
        "results:read",
        "results:write",
        "results:teacher_comment",
        "sheets:read",
        "sheets:write",
    ],
}


def has_permission(role: Role, permission: str) -> bool:
    """Check if a role has a specific permission."""
    try:
        role = Role(role)
    except ValueError:
        return False
    return permission in ROLE_PERMISSIONS.get(role, [])


def ensure_permission(actor, permission: str) -> None:
    """Raise ForbiddenError unless the actor's role grants ``permission``."""
    if not has_permission(actor.role, permission):
        raise ForbiddenError("Not enough permissions")


def ensure_school_scope(actor, school_id) -> None:
    """Raise ForbiddenError when a school-bound actor reaches into another school."""
    if actor.is_super_admin:
        return
    if actor.school_id is None or actor.school_id != school_id:
        raise ForbiddenError("Cannot access records from other schools")
