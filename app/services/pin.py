"""PIN service - issuing access codes and checking results with them."""

import calendar
import logging
import secrets
import string
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import as_utc, utcnow
from app.core.exceptions import (
    AttemptsExhaustedError,
    ConflictError,
    NotApprovedError,
    NotFoundError,
    PinExpiredError,
    PinNotFoundError,
    ResultNotFoundError,
    ScopeMismatchError,
    StudentNotFoundError,
    UsageExhaustedError,
    ValidationFailedError,
)
from app.core.permissions import Role, ensure_permission, ensure_school_scope
from app.models.pin import Pin
from app.models.result import VISIBLE_RESULT_STATUSES, Result, ResultStatus
from app.models.user import User
from app.schemas.pin import PinIssueRequest
from app.services import audit
from app.services import school as school_service
from app.services import student as student_service

logger = logging.getLogger(__name__)

PIN_ALPHABET = string.ascii_uppercase + string.digits

# Stored for PINs issued with never_expires
NEVER_EXPIRES = datetime(9999, 12, 31, 23, 59, 59, tzinfo=timezone.utc)


def generate_code() -> str:
    """Random code such as ``7K2Q-ZP4M-A9XC``."""
    raw = "".join(secrets.choice(PIN_ALPHABET) for _ in range(settings.PIN_LENGTH))
    return format_code(raw)


def format_code(raw: str) -> str:
    """Upper-case a code and regroup it, ignoring spaces and dashes in the input."""
    cleaned = "".join(ch for ch in raw.upper() if ch.isalnum())
    size = settings.PIN_GROUP_SIZE
    return "-".join(cleaned[i : i + size] for i in range(0, len(cleaned), size))


def add_months(value: datetime, months: int) -> datetime:
    """Shift a datetime by calendar months, clamping the day to the month's end."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


async def get_pin_by_id(db: AsyncSession, pin_id: UUID) -> Pin | None:
    """Get PIN by ID."""
    result = await db.execute(select(Pin).where(Pin.id == pin_id))
    return result.scalar_one_or_none()


async def get_pins(
    db: AsyncSession,
    school_id: UUID | None = None,
    session: str | None = None,
    term: str | None = None,
    skip: int = 0,
    limit: int = 100,
) -> tuple[list[Pin], int]:
    """Get PINs with filters."""
    query = select(Pin)

    if school_id:
        query = query.where(Pin.school_id == school_id)
    if session:
        query = query.where(Pin.session == session)
    if term:
        query = query.where(Pin.term == term)

    count_query = select(func.count()).select_from(query.subquery())
    total_result = await db.execute(count_query)
    total = total_result.scalar() or 0

    query = query.order_by(Pin.created_at.desc()).offset(skip).limit(limit)
    result = await db.execute(query)
    return list(result.scalars().all()), total


async def _unused_codes(db: AsyncSession, quantity: int) -> list[str]:
    """Generate ``quantity`` codes that collide neither with each other nor the table."""
    codes: set[str] = set()
    while len(codes) < quantity:
        batch = {generate_code() for _ in range(quantity - len(codes))} - codes
        taken = await db.execute(select(Pin.code).where(Pin.code.in_(batch)))
        codes |= batch - set(taken.scalars().all())
    return list(codes)


async def issue_pins(db: AsyncSession, data: PinIssueRequest, actor: User) -> list[Pin]:
    """
    Issue a batch of PINs for one school, session and term.

    School admins issue for their own school. Super admins name the school
    in the request.
    """
    ensure_permission(actor, "pins:issue")
    if actor.role == Role.SUPER_ADMIN:
        if data.school_id is None:
            raise ValidationFailedError("school_id is required")
        school_id = data.school_id
    else:
        school_id = data.school_id or actor.school_id
        ensure_school_scope(actor, school_id)
    await school_service.get_school_or_404(db, school_id)

    max_attempts = data.max_attempts or max(settings.PIN_MAX_ATTEMPTS, data.max_usage_count)
    if max_attempts < data.max_usage_count:
        raise ValidationFailedError("max_attempts cannot be lower than max_usage_count")

    if data.never_expires:
        expiry_date = NEVER_EXPIRES
    elif data.expiry_date is not None:
        expiry_date = as_utc(data.expiry_date)
        if expiry_date <= utcnow():
            raise ValidationFailedError("expiry_date must be in the future")
    else:
        expiry_date = add_months(utcnow(), settings.PIN_EXPIRY_MONTHS)

    pins = [
        Pin(
            school_id=school_id,
            code=code,
            session=data.session,
            term=data.term.value,
            expiry_date=expiry_date,
            max_attempts=max_attempts,
            attempts=[],
            max_usage_count=data.max_usage_count,
            usage_count=0,
            generated_by=actor.id,
        )
        for code in await _unused_codes(db, data.quantity)
    ]
    db.add_all(pins)
    audit.record(
        db,
        actor.id,
        "issue_pins",
        "pin",
        None,
        {
            "quantity": data.quantity,
            "session": data.session,
            "term": data.term.value,
            "max_usage_count": data.max_usage_count,
        },
        school_id=school_id,
    )
    await db.commit()

    logger.info("Issued %d PINs for school %s by %s", len(pins), school_id, actor.id)
    return pins


async def delete_pin(db: AsyncSession, pin_id: UUID, actor: User) -> None:
    """Administrative deletion of a PIN."""
    ensure_permission(actor, "pins:delete")
    pin = await get_pin_by_id(db, pin_id)
    if not pin:
        raise NotFoundError("PIN not found")
    ensure_school_scope(actor, pin.school_id)

    audit.record(
        db,
        actor.id,
        "delete_pin",
        "pin",
        pin.id,
        {"usage_count": pin.usage_count},
        school_id=pin.school_id,
    )
    await db.delete(pin)
    await db.commit()
    logger.info("PIN %s deleted by %s", pin_id, actor.id)


async def _read_pin(db: AsyncSession, code: str) -> Pin | None:
    result = await db.execute(
        select(Pin)
        .where(Pin.code == format_code(code))
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _swap(db: AsyncSession, pin: Pin, read_version: int, **values: Any) -> bool:
    """
    Write ``values`` only if nobody changed the PIN since ``read_version``.

    Returns False when another verification got there first.
    """
    result = await db.execute(
        update(Pin)
        .where(Pin.id == pin.id, Pin.version == read_version)
        .values(version=read_version + 1, updated_at=utcnow(), **values)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount == 1


def _attempt(kind: str, admission_number: str, **details: Any) -> dict[str, Any]:
    return {
        "type": kind,
        "admission_number": admission_number,
        "timestamp": utcnow().isoformat(),
        **details,
    }


async def check_result(
    db: AsyncSession,
    code: str,
    admission_number: str,
    session: str,
    term: str,
) -> dict[str, Any]:
    """
    Verify a PIN and return the student's result view, consuming one use.

    Reads the PIN, decides, then writes with a compare-and-swap on its
    version. Losing the race re-reads and re-decides, so two callers can
    never both spend the last use, and failed identity checks never push
    ``attempts`` past ``max_attempts``.
    """
    admission_number = admission_number.strip().upper()

    for attempt in range(1, settings.PIN_VERIFY_MAX_RETRIES + 1):
        pin = await _read_pin(db, code)
        if pin is None:
            logger.info("PIN check failed: unknown code")
            raise PinNotFoundError()
        read_version = pin.version

        if pin.session != session or pin.term != term:
            logger.info("PIN %s check failed: scope mismatch", pin.id)
            raise ScopeMismatchError()
        if utcnow() > as_utc(pin.expiry_date):
            logger.info("PIN %s check failed: expired", pin.id)
            raise PinExpiredError()

        if pin.attempts_left == 0:
            logger.info("PIN %s check failed: attempts exhausted", pin.id)
            raise AttemptsExhaustedError()
        if pin.is_exhausted:
            logger.info("PIN %s check failed: usage exhausted", pin.id)
            raise UsageExhaustedError()

        attempts = list(pin.attempts or [])
        student = await student_service.get_student_by_admission_number(
            db, admission_number, pin.school_id
        )
        if student is None:
            attempts.append(_attempt("failed", admission_number, reason="student_not_found"))
            if await _swap(db, pin, read_version, attempts=attempts):
                logger.info("PIN %s check failed: unknown admission number", pin.id)
                raise StudentNotFoundError()
            logger.debug("PIN %s changed during check, retrying (%d)", pin.id, attempt)
            continue

        result = await db.execute(
            select(Result).where(
                Result.student_id == student.id,
                Result.session == session,
                Result.term == term,
            )
        )
        record = result.scalar_one_or_none()
        if record is None:
            logger.info("PIN %s check: no result for student %s", pin.id, student.id)
            raise ResultNotFoundError()
        if ResultStatus(record.status) not in VISIBLE_RESULT_STATUSES:
            logger.info("PIN %s check: result %s is not approved", pin.id, record.id)
            raise NotApprovedError()

        attempts.append(_attempt("success", admission_number, student_id=str(student.id)))
        used_by = {
            "admission_number": admission_number,
            "student_name": student.full_name,
            "timestamp": utcnow().isoformat(),
        }
        usage_count = pin.usage_count + 1
        if await _swap(
            db, pin, read_version, attempts=attempts, usage_count=usage_count, used_by=used_by
        ):
            logger.info("PIN %s used (%d/%d)", pin.id, usage_count, pin.max_usage_count)
            return await _compose_view(db, student, record, pin.max_usage_count - usage_count)
        logger.debug("PIN %s changed during check, retrying (%d)", pin.id, attempt)

    raise ConflictError("PIN is busy, please try again")


async def _compose_view(db: AsyncSession, student, record: Result, uses_remaining: int) -> dict:
    school = await school_service.get_school_or_404(db, record.school_id)
    school_class = None
    if record.class_id:
        school_class = await student_service.get_school_class_by_id(db, record.class_id)

    return {
        "student": {
            "first_name": student.first_name,
            "last_name": student.last_name,
            "other_names": student.other_names,
            "admission_number": student.admission_number,
            "class_name": school_class.display_name if school_class else None,
        },
        "school": {"name": school.name, "logo": school.logo, "motto": school.motto},
        "session": record.session,
        "term": record.term,
        "subjects": record.subjects,
        "total_score": record.total_score,
        "average_score": record.average_score,
        "position": record.position,
        "total_students": record.total_students,
        "teacher_comment": record.teacher_comment,
        "principal_comment": record.principal_comment,
        "attendance": record.attendance,
        "uses_remaining": uses_remaining,
    }
