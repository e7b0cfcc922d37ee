"""Result sheet service - teacher score sheets and their review lifecycle."""

import logging
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.database import utcnow
from app.core.exceptions import (
    ConflictError,
    EmptySheetError,
    ForbiddenError,
    ImmutableError,
    InvalidStateError,
    NotFoundError,
    ResultServiceError,
    ValidationFailedError,
)
from app.core.permissions import Role, ensure_permission, ensure_school_scope
from app.models.archive import ArchivedResultSheet
from app.models.result import Result, ResultStatus
from app.models.result_sheet import LIVE_SHEET_STATUSES, ResultSheet, ResultSheetEntry, SheetStatus
from app.models.subject import Subject
from app.models.user import User
from app.schemas.common import BulkActionResponse, BulkItemError
from app.schemas.result_sheet import ResultSheetCreate, SheetEntryInput
from app.services import aggregator, audit, notification
from app.services import school as school_service
from app.services import student as student_service
from app.services.aggregator import AggregationReport
from app.services.grading import compute_entry
from app.services.lifecycle import SHEET_EDITABLE, next_sheet_status

logger = logging.getLogger(__name__)


async def get_sheet_by_id(db: AsyncSession, sheet_id: UUID) -> ResultSheet | None:
    """Get a sheet with its entries."""
    result = await db.execute(
        select(ResultSheet)
        .where(ResultSheet.id == sheet_id)
        .options(selectinload(ResultSheet.entries))
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_sheet_for_actor(db: AsyncSession, sheet_id: UUID, actor: User) -> ResultSheet:
    """Get a sheet the actor is allowed to see, or raise."""
    ensure_permission(actor, "sheets:read")
    sheet = await get_sheet_by_id(db, sheet_id)
    if not sheet:
        raise NotFoundError("Result sheet not found")
    ensure_school_scope(actor, sheet.school_id)
    return sheet


async def get_sheets(
    db: AsyncSession,
    school_id: UUID | None = None,
    status: SheetStatus | None = None,
    class_id: UUID | None = None,
    subject_id: UUID | None = None,
    session: str | None = None,
    term: str | None = None,
    created_by: UUID | None = None,
    skip: int = 0,
    limit: int = 100,
) -> tuple[list[ResultSheet], int]:
    """Get sheets with filters."""
    query = select(ResultSheet)

    if school_id:
        query = query.where(ResultSheet.school_id == school_id)
    if status:
        query = query.where(ResultSheet.status == status.value)
    if class_id:
        query = query.where(ResultSheet.class_id == class_id)
    if subject_id:
        query = query.where(ResultSheet.subject_id == subject_id)
    if session:
        query = query.where(ResultSheet.session == session)
    if term:
        query = query.where(ResultSheet.term == term)
    if created_by:
        query = query.where(ResultSheet.created_by == created_by)

    count_query = select(func.count()).select_from(query.subquery())
    total_result = await db.execute(count_query)
    total = total_result.scalar() or 0

    query = query.options(selectinload(ResultSheet.entries)).order_by(
        ResultSheet.created_at.desc()
    )
    query = query.offset(skip).limit(limit)

    result = await db.execute(query)
    return list(result.scalars().all()), total


async def _commit_or_conflict(db: AsyncSession, message: str) -> None:
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise ConflictError(message) from exc


def _ensure_creator(sheet: ResultSheet, actor: User) -> None:
    if sheet.created_by != actor.id:
        raise ForbiddenError("Only the teacher who created this sheet can change it")


async def _scored_entries(
    db: AsyncSession,
    school_id: UUID,
    class_id: UUID,
    entries: list[SheetEntryInput],
) -> list[tuple[SheetEntryInput, float, str, str]]:
    """Validate entry rows and grade them with the school's bands."""
    student_ids = [entry.student_id for entry in entries]
    if len(set(student_ids)) != len(student_ids):
        raise ValidationFailedError("A student can appear only once on a sheet")

    school = await school_service.get_school_or_404(db, school_id)
    bands = school_service.get_grade_bands(school)
    metric_names = await school_service.get_active_metric_names(db, school_id)
    students = await student_service.get_students_by_ids(db, student_ids)

    scored = []
    for entry in entries:
        student = students.get(entry.student_id)
        if not student or student.school_id != school_id:
            raise ValidationFailedError(f"Student {entry.student_id} not found in this school")
        if student.school_class_id != class_id:
            raise ValidationFailedError(f"Student {entry.student_id} is not in this class")
        if metric_names:
            unknown = set(entry.scores) - metric_names
            if unknown:
                raise ValidationFailedError(
                    f"Unknown score components: {', '.join(sorted(unknown))}"
                )
        score = compute_entry(entry.scores, bands)
        scored.append((entry, score.total, score.grade, score.remark))
    return scored


async def _replace_entries(
    db: AsyncSession, sheet: ResultSheet, entries: list[SheetEntryInput]
) -> None:
    """Update rows in place by student; add new students, drop missing ones."""
    scored = await _scored_entries(db, sheet.school_id, sheet.class_id, entries)
    existing = {entry.student_id: entry for entry in sheet.entries}

    new_entries = []
    for position, (entry, total, grade, remark) in enumerate(scored):
        row = existing.get(entry.student_id) or ResultSheetEntry(student_id=entry.student_id)
        row.position = position
        row.component_scores = dict(entry.scores)
        row.total = total
        row.grade = grade
        row.remark = remark
        new_entries.append(row)
    sheet.entries = new_entries


async def _find_live_sheet(
    db: AsyncSession,
    school_id: UUID,
    class_id: UUID,
    subject_id: UUID,
    session: str,
    term: str,
    created_by: UUID,
    exclude_id: UUID | None = None,
) -> ResultSheet | None:
    query = (
        select(ResultSheet)
        .where(
            ResultSheet.school_id == school_id,
            ResultSheet.class_id == class_id,
            ResultSheet.subject_id == subject_id,
            ResultSheet.session == session,
            ResultSheet.term == term,
            ResultSheet.created_by == created_by,
            ResultSheet.status.in_([status.value for status in LIVE_SHEET_STATUSES]),
        )
        .options(selectinload(ResultSheet.entries))
    )
    if exclude_id is not None:
        query = query.where(ResultSheet.id != exclude_id)
    result = await db.execute(query)
    return result.scalars().first()


async def create_sheet(
    db: AsyncSession, data: ResultSheetCreate, actor: User
) -> tuple[ResultSheet, bool]:
    """
    Start a sheet, or resume the caller's live draft for the same tuple.

    Returns ``(sheet, created)``. A submitted or approved sheet for the same
    class, subject, session and term blocks creation with ``ConflictError``.
    """
    ensure_permission(actor, "sheets:write")
    if actor.school_id is None:
        raise ForbiddenError("School association required")

    school_class = await student_service.get_school_class_by_id(db, data.class_id)
    if not school_class or school_class.school_id != actor.school_id:
        raise NotFoundError("Class not found")
    subject = await db.get(Subject, data.subject_id)
    if not subject or subject.school_id != actor.school_id:
        raise NotFoundError("Subject not found")

    live = await _find_live_sheet(
        db,
        actor.school_id,
        data.class_id,
        data.subject_id,
        data.session,
        data.term.value,
        actor.id,
    )
    if live is not None:
        if live.status != SheetStatus.DRAFT:
            raise ConflictError(
                f"A {SheetStatus(live.status).value} sheet already exists for this class and subject"
            )
        if data.entries:
            await _replace_entries(db, live, data.entries)
            await _commit_or_conflict(db, "Sheet was changed concurrently")
        logger.info("Resumed draft sheet %s for teacher %s", live.id, actor.id)
        return await get_sheet_by_id(db, live.id), False

    sheet = ResultSheet(
        school_id=actor.school_id,
        class_id=data.class_id,
        subject_id=data.subject_id,
        session=data.session,
        term=data.term.value,
        status=SheetStatus.DRAFT,
        created_by=actor.id,
        entries=[],
    )
    db.add(sheet)
    if data.entries:
        await _replace_entries(db, sheet, data.entries)
    await _commit_or_conflict(db, "A live sheet already exists for this class and subject")

    logger.info("Created sheet %s for teacher %s", sheet.id, actor.id)
    return await get_sheet_by_id(db, sheet.id), True


async def update_entries(
    db: AsyncSession, sheet_id: UUID, entries: list[SheetEntryInput], actor: User
) -> ResultSheet:
    """Replace a sheet's entries. Only the creator, only while draft or rejected."""
    sheet = await get_sheet_for_actor(db, sheet_id, actor)
    _ensure_creator(sheet, actor)
    if sheet.status not in SHEET_EDITABLE:
        raise ImmutableError(
            f"Sheet is {SheetStatus(sheet.status).value} and can no longer be edited"
        )

    await _replace_entries(db, sheet, entries)
    await _commit_or_conflict(db, "Sheet was changed concurrently")
    return await get_sheet_by_id(db, sheet.id)


async def submit_sheet(db: AsyncSession, sheet_id: UUID, actor: User) -> ResultSheet:
    """Send a draft or rejected sheet for review."""
    sheet = await get_sheet_for_actor(db, sheet_id, actor)
    _ensure_creator(sheet, actor)
    new_status = next_sheet_status(sheet.status, "submit")
    if not sheet.entries:
        raise EmptySheetError("Cannot submit a sheet with no entries")
    if sheet.status == SheetStatus.REJECTED:
        # A new draft may have been started while this one was rejected
        other = await _find_live_sheet(
            db,
            sheet.school_id,
            sheet.class_id,
            sheet.subject_id,
            sheet.session,
            sheet.term,
            sheet.created_by,
            exclude_id=sheet.id,
        )
        if other is not None:
            raise ConflictError(
                f"A {SheetStatus(other.status).value} sheet already exists for this class and subject"
            )

    sheet.status = new_status
    sheet.submitted_at = utcnow()
    sheet.rejection_reason = None

    await notification.notify_school_admins(
        db,
        sheet.school_id,
        "sheet_submitted",
        "Result sheet submitted",
        f"A result sheet for {sheet.session} {sheet.term} term is awaiting review.",
        {"sheet_id": str(sheet.id)},
    )
    await _commit_or_conflict(db, "A live sheet already exists for this class and subject")

    logger.info("Sheet %s submitted by %s", sheet.id, actor.id)
    return await get_sheet_by_id(db, sheet.id)


async def approve_sheet(
    db: AsyncSession, sheet_id: UUID, actor: User
) -> tuple[ResultSheet, AggregationReport]:
    """Approve a submitted sheet, then fold the scope's approved sheets into results."""
    ensure_permission(actor, "sheets:approve")
    sheet = await get_sheet_for_actor(db, sheet_id, actor)
    new_status = next_sheet_status(sheet.status, "approve")
    await school_service.ensure_branding(db, sheet.school_id)

    sheet.status = new_status
    sheet.approved_by = actor.id
    sheet.approved_at = utcnow()

    notification.notify(
        db,
        sheet.created_by,
        "sheet_approved",
        "Result sheet approved",
        f"Your result sheet for {sheet.session} {sheet.term} term was approved.",
        {"sheet_id": str(sheet.id)},
    )
    audit.record(
        db,
        actor.id,
        "approve_sheet",
        "result_sheet",
        sheet.id,
        {"entries": len(sheet.entries)},
        school_id=sheet.school_id,
    )
    await db.commit()
    logger.info("Sheet %s approved by %s", sheet.id, actor.id)

    school_id, session, term, actor_id = sheet.school_id, sheet.session, sheet.term, actor.id
    report = await aggregator.aggregate_scope(db, school_id, session, term, actor_id)
    return await get_sheet_by_id(db, sheet_id), report


async def reject_sheet(
    db: AsyncSession, sheet_id: UUID, actor: User, reason: str | None
) -> ResultSheet:
    """Return a submitted sheet to its creator with a reason."""
    ensure_permission(actor, "sheets:approve")
    if not reason or not reason.strip():
        raise ValidationFailedError("A rejection reason is required")
    sheet = await get_sheet_for_actor(db, sheet_id, actor)
    new_status = next_sheet_status(sheet.status, "reject")

    sheet.status = new_status
    sheet.rejection_reason = reason.strip()

    notification.notify(
        db,
        sheet.created_by,
        "sheet_rejected",
        "Result sheet rejected",
        f"Your result sheet for {sheet.session} {sheet.term} term was rejected: {sheet.rejection_reason}",
        {"sheet_id": str(sheet.id)},
    )
    audit.record(
        db,
        actor.id,
        "reject_sheet",
        "result_sheet",
        sheet.id,
        {"reason": sheet.rejection_reason},
        school_id=sheet.school_id,
    )
    await db.commit()

    logger.info("Sheet %s rejected by %s", sheet.id, actor.id)
    return await get_sheet_by_id(db, sheet.id)


async def feeds_published_result(db: AsyncSession, sheet: ResultSheet) -> bool:
    """True when an approved sheet's scores already sit in a published result."""
    if sheet.status != SheetStatus.APPROVED or not sheet.entries:
        return False
    result = await db.execute(
        select(func.count(Result.id)).where(
            Result.student_id.in_([entry.student_id for entry in sheet.entries]),
            Result.session == sheet.session,
            Result.term == sheet.term,
            Result.status == ResultStatus.PUBLISHED.value,
        )
    )
    return (result.scalar() or 0) > 0


async def delete_sheet(db: AsyncSession, sheet_id: UUID, actor: User) -> None:
    """
    Delete a sheet.

    Creators may delete their own drafts. School admins may delete any sheet
    whose scores have not reached a published result.
    """
    sheet = await get_sheet_for_actor(db, sheet_id, actor)

    if actor.role == Role.SCHOOL_ADMIN:
        if await feeds_published_result(db, sheet):
            raise ImmutableError("Sheet feeds a published result and cannot be deleted")
    elif sheet.created_by == actor.id:
        if sheet.status != SheetStatus.DRAFT:
            raise InvalidStateError("Only draft sheets can be deleted")
    else:
        raise ForbiddenError("Only the creator or a school admin can delete this sheet")

    audit.record(
        db,
        actor.id,
        "delete_sheet",
        "result_sheet",
        sheet.id,
        {"status": SheetStatus(sheet.status).value},
        school_id=sheet.school_id,
    )
    await db.delete(sheet)
    await db.commit()
    logger.info("Sheet %s deleted by %s", sheet_id, actor.id)


def _sheet_snapshot(sheet: ResultSheet) -> dict:
    return {
        "class_id": str(sheet.class_id),
        "subject_id": str(sheet.subject_id),
        "session": sheet.session,
        "term": sheet.term,
        "status": SheetStatus(sheet.status).value,
        "created_by": str(sheet.created_by),
        "approved_by": str(sheet.approved_by) if sheet.approved_by else None,
        "rejection_reason": sheet.rejection_reason,
        "created_at": sheet.created_at.isoformat(),
        "entries": [
            {
                "student_id": str(entry.student_id),
                "component_scores": entry.component_scores,
                "total": entry.total,
                "grade": entry.grade,
                "remark": entry.remark,
            }
            for entry in sheet.entries
        ],
    }


async def bulk_sheet_action(
    db: AsyncSession, sheet_ids: list[UUID], action: str, actor: User
) -> BulkActionResponse:
    """Delete or archive many sheets; each item commits on its own."""
    ensure_permission(actor, "sheets:bulk")
    actor_id = actor.id
    succeeded: list[UUID] = []
    failed: list[BulkItemError] = []

    for sheet_id in dict.fromkeys(sheet_ids):
        try:
            sheet = await get_sheet_for_actor(db, sheet_id, actor)
            if await feeds_published_result(db, sheet):
                raise ImmutableError("Sheet feeds a published result")

            if action == "archive":
                db.add(
                    ArchivedResultSheet(
                        original_id=sheet.id,
                        school_id=sheet.school_id,
                        snapshot=_sheet_snapshot(sheet),
                        archived_by=actor_id,
                    )
                )
            audit.record(
                db,
                actor_id,
                f"{action}_sheet",
                "result_sheet",
                sheet.id,
                {"bulk": True},
                school_id=sheet.school_id,
            )
            await db.delete(sheet)
            await db.commit()
            succeeded.append(sheet_id)
        except ResultServiceError as exc:
            failed.append(BulkItemError(id=sheet_id, code=exc.code, detail=exc.message))

    logger.info(
        "Bulk %s of sheets by %s: %d succeeded, %d failed",
        action,
        actor_id,
        len(succeeded),
        len(failed),
    )
    return BulkActionResponse(action=action, succeeded=succeeded, failed=failed)


async def rerun_aggregation(
    db: AsyncSession, session: str, term: str, actor: User
) -> AggregationReport:
    """Re-run the aggregation job for the actor's school."""
    ensure_permission(actor, "sheets:approve")
    if actor.school_id is None:
        raise ForbiddenError("School association required")
    return await aggregator.aggregate_scope(db, actor.school_id, session, term, actor.id)
