"""Result service - directly authored student results and their lifecycle."""

import logging
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import utcnow
from app.core.exceptions import (
    ConflictError,
    ForbiddenError,
    ImmutableError,
    NotFoundError,
    ResultServiceError,
    ValidationFailedError,
)
from app.core.permissions import Role, ensure_permission, ensure_school_scope
from app.models.archive import ArchivedResult
from app.models.result import Result, ResultStatus
from app.models.user import User
from app.schemas.common import BulkActionResponse, BulkItemError
from app.schemas.result import (
    ResultBulkUpload,
    ResultBulkUploadResponse,
    ResultCreate,
    ResultUpdate,
    SubjectScoreInput,
)
from app.services import audit, notification
from app.services import school as school_service
from app.services import student as student_service
from app.services.grading import GradeBand, aggregate, compute_entry
from app.services.lifecycle import RESULT_EDITABLE, next_result_status

logger = logging.getLogger(__name__)


async def get_result_by_id(db: AsyncSession, result_id: UUID) -> Result | None:
    """Get result by ID."""
    result = await db.execute(
        select(Result)
        .where(Result.id == result_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_result_for_actor(db: AsyncSession, result_id: UUID, actor: User) -> Result:
    """Get a result the actor may see, or raise."""
    ensure_permission(actor, "results:read")
    result = await get_result_by_id(db, result_id)
    if not result:
        raise NotFoundError("Result not found")
    ensure_school_scope(actor, result.school_id)
    return result


async def get_results(
    db: AsyncSession,
    school_id: UUID | None = None,
    student_id: UUID | None = None,
    class_id: UUID | None = None,
    session: str | None = None,
    term: str | None = None,
    status: ResultStatus | None = None,
    skip: int = 0,
    limit: int = 100,
) -> tuple[list[Result], int]:
    """Get results with filters."""
    query = select(Result)

    if school_id:
        query = query.where(Result.school_id == school_id)
    if student_id:
        query = query.where(Result.student_id == student_id)
    if class_id:
        query = query.where(Result.class_id == class_id)
    if session:
        query = query.where(Result.session == session)
    if term:
        query = query.where(Result.term == term)
    if status:
        query = query.where(Result.status == status.value)

    count_query = select(func.count()).select_from(query.subquery())
    total_result = await db.execute(count_query)
    total = total_result.scalar() or 0

    query = query.order_by(Result.position.asc(), Result.created_at.desc())
    query = query.offset(skip).limit(limit)

    result = await db.execute(query)
    return list(result.scalars().all()), total


async def _grade_subjects(
    db: AsyncSession,
    school_id: UUID,
    subjects: list[SubjectScoreInput],
    bands: tuple[GradeBand, ...],
    metric_names: set[str],
) -> list[dict]:
    """Compute total, grade and remark for each subject row."""
    names = [subject.subject.strip().lower() for subject in subjects]
    if len(set(names)) != len(names):
        raise ValidationFailedError("A subject can appear only once on a result")

    subject_ids = [subject.subject_id for subject in subjects if subject.subject_id]
    known = await school_service.get_subjects_by_ids(db, subject_ids)

    entries = []
    for subject in subjects:
        if subject.subject_id:
            record = known.get(subject.subject_id)
            if not record or record.school_id != school_id:
                raise ValidationFailedError(f"Subject {subject.subject_id} not found in this school")
        if metric_names:
            unknown = set(subject.scores) - metric_names
            if unknown:
                raise ValidationFailedError(
                    f"Unknown score components: {', '.join(sorted(unknown))}"
                )
        score = compute_entry(subject.scores, bands)
        entries.append(
            {
                "subject": subject.subject.strip(),
                "subject_id": str(subject.subject_id) if subject.subject_id else None,
                "scores": dict(subject.scores),
                "total": score.total,
                "grade": score.grade,
                "remark": score.remark,
            }
        )
    return entries


class _Grader:
    """School grading configuration loaded once per request."""

    def __init__(self, bands, metric_names, weights):
        self.bands = bands
        self.metric_names = metric_names
        self.weights = weights

    @classmethod
    async def load(cls, db: AsyncSession, school_id: UUID) -> "_Grader":
        school = await school_service.get_school_or_404(db, school_id)
        return cls(
            school_service.get_grade_bands(school),
            await school_service.get_active_metric_names(db, school_id),
            await school_service.get_subject_weights(db, school_id),
        )

    async def apply(
        self, db: AsyncSession, result: Result, subjects: list[SubjectScoreInput]
    ) -> None:
        entries = await _grade_subjects(
            db, result.school_id, subjects, self.bands, self.metric_names
        )
        result.subjects = entries
        result.total_score, result.average_score = aggregate(entries, self.weights)


async def _existing_result(
    db: AsyncSession, student_id: UUID, session: str, term: str
) -> Result | None:
    result = await db.execute(
        select(Result).where(
            Result.student_id == student_id,
            Result.session == session,
            Result.term == term,
        )
    )
    return result.scalar_one_or_none()


async def _resolve_class(db: AsyncSession, school_id: UUID, class_id: UUID | None, default):
    if class_id is None:
        return default
    school_class = await student_service.get_school_class_by_id(db, class_id)
    if not school_class or school_class.school_id != school_id:
        raise ValidationFailedError("Class not found in this school")
    return class_id


async def create_result(db: AsyncSession, data: ResultCreate, actor: User) -> Result:
    """Author a draft result for one student."""
    ensure_permission(actor, "results:write")
    if actor.school_id is None:
        raise ForbiddenError("School association required")

    student = await student_service.get_student_by_id(db, data.student_id)
    if not student or student.school_id != actor.school_id:
        raise NotFoundError("Student not found")
    if await _existing_result(db, student.id, data.session, data.term.value):
        raise ConflictError("A result already exists for this student, session and term")

    grader = await _Grader.load(db, actor.school_id)
    result = Result(
        school_id=actor.school_id,
        student_id=student.id,
        class_id=await _resolve_class(db, actor.school_id, data.class_id, student.school_class_id),
        session=data.session,
        term=data.term.value,
        attendance=data.attendance.model_dump() if data.attendance else None,
        status=ResultStatus.DRAFT,
        uploaded_by=actor.id,
    )
    await grader.apply(db, result, data.subjects)
    db.add(result)

    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise ConflictError("A result already exists for this student, session and term") from exc

    logger.info("Result %s created by %s", result.id, actor.id)
    return await get_result_by_id(db, result.id)


async def update_result(
    db: AsyncSession, result_id: UUID, data: ResultUpdate, actor: User
) -> Result:
    """Edit subjects, class or attendance while the result is draft or rejected."""
    ensure_permission(actor, "results:write")
    result = await get_result_for_actor(db, result_id, actor)
    if result.uploaded_by != actor.id and actor.role != Role.SCHOOL_ADMIN:
        raise ForbiddenError("Only the uploader or a school admin can edit this result")
    if result.status not in RESULT_EDITABLE:
        raise ImmutableError(
            f"Result is {ResultStatus(result.status).value} and can no longer be edited"
        )

    update_data = data.model_dump(exclude_unset=True)
    if "class_id" in update_data:
        result.class_id = await _resolve_class(
            db, result.school_id, data.class_id, result.class_id
        )
    if "attendance" in update_data:
        result.attendance = data.attendance.model_dump() if data.attendance else None
    if data.subjects is not None:
        grader = await _Grader.load(db, result.school_id)
        await grader.apply(db, result, data.subjects)

    await db.commit()
    return await get_result_by_id(db, result.id)


async def bulk_upload_results(
    db: AsyncSession, data: ResultBulkUpload, actor: User
) -> ResultBulkUploadResponse:
    """
    Create draft results from rows keyed by admission number.

    Bad rows and students that already have a result for the session and
    term are reported in ``errors``; the remaining rows are saved together.
    """
    ensure_permission(actor, "results:write")
    if actor.school_id is None:
        raise ForbiddenError("School association required")

    grader = await _Grader.load(db, actor.school_id)
    term = data.term.value
    errors: list[str] = []
    created: list[Result] = []
    seen: set[UUID] = set()

    for index, row in enumerate(data.rows, start=1):
        student = await student_service.get_student_by_admission_number(
            db, row.admission_number, actor.school_id
        )
        if not student:
            errors.append(f"Row {index}: student {row.admission_number} not found")
            continue
        if student.id in seen or await _existing_result(db, student.id, data.session, term):
            errors.append(f"Row {index}: result already exists for {row.admission_number}")
            continue

        result = Result(
            school_id=actor.school_id,
            student_id=student.id,
            class_id=student.school_class_id,
            session=data.session,
            term=term,
            attendance=row.attendance.model_dump() if row.attendance else None,
            status=ResultStatus.DRAFT,
            uploaded_by=actor.id,
        )
        try:
            await grader.apply(db, result, row.subjects)
        except ResultServiceError as exc:
            errors.append(f"Row {index}: {exc.message}")
            continue

        db.add(result)
        seen.add(student.id)
        created.append(result)

    if created:
        try:
            await db.commit()
        except IntegrityError as exc:
            await db.rollback()
            raise ConflictError("Results were uploaded concurrently for these students") from exc

    logger.info(
        "Bulk upload by %s: %d created, %d failed", actor.id, len(created), len(errors)
    )
    return ResultBulkUploadResponse(
        success=len(created),
        failed=len(errors),
        errors=errors,
        result_ids=[result.id for result in created],
    )


def _ensure_not_self_review(result: Result, actor: User) -> None:
    if result.uploaded_by == actor.id:
        raise ForbiddenError("You cannot review a result you uploaded")


async def submit_result(db: AsyncSession, result_id: UUID, actor: User) -> Result:
    """Send a draft or rejected result for review. Only the uploader may submit."""
    result = await get_result_for_actor(db, result_id, actor)
    if result.uploaded_by != actor.id:
        raise ForbiddenError("Only the uploader can submit this result")
    result.status = next_result_status(result.status, "submit")
    result.rejection_reason = None

    await notification.notify_school_admins(
        db,
        result.school_id,
        "result_submitted",
        "Result submitted",
        f"A result for {result.session} {result.term} term is awaiting review.",
        {"result_id": str(result.id)},
    )
    await db.commit()

    logger.info("Result %s submitted by %s", result.id, actor.id)
    return await get_result_by_id(db, result.id)


async def approve_result(db: AsyncSession, result_id: UUID, actor: User) -> Result:
    """Approve a submitted result. Needs school branding and a second pair of eyes."""
    ensure_permission(actor, "results:approve")
    result = await get_result_for_actor(db, result_id, actor)
    _ensure_not_self_review(result, actor)
    new_status = next_result_status(result.status, "approve")
    await school_service.ensure_branding(db, result.school_id)

    result.status = new_status
    result.approved_by = actor.id
    result.approved_at = utcnow()

    notification.notify(
        db,
        result.uploaded_by,
        "result_approved",
        "Result approved",
        f"A result for {result.session} {result.term} term was approved.",
        {"result_id": str(result.id)},
    )
    audit.record(
        db, actor.id, "approve_result", "result", result.id, school_id=result.school_id
    )
    await db.commit()

    logger.info("Result %s approved by %s", result.id, actor.id)
    return await get_result_by_id(db, result.id)


async def reject_result(
    db: AsyncSession, result_id: UUID, actor: User, reason: str | None
) -> Result:
    """Return a submitted result to its uploader with a reason."""
    ensure_permission(actor, "results:approve")
    if not reason or not reason.strip():
        raise ValidationFailedError("A rejection reason is required")
    result = await get_result_for_actor(db, result_id, actor)
    _ensure_not_self_review(result, actor)
    result.status = next_result_status(result.status, "reject")
    result.rejection_reason = reason.strip()

    notification.notify(
        db,
        result.uploaded_by,
        "result_rejected",
        "Result rejected",
        f"A result for {result.session} {result.term} term was rejected: {result.rejection_reason}",
        {"result_id": str(result.id)},
    )
    audit.record(
        db,
        actor.id,
        "reject_result",
        "result",
        result.id,
        {"reason": result.rejection_reason},
        school_id=result.school_id,
    )
    await db.commit()

    logger.info("Result %s rejected by %s", result.id, actor.id)
    return await get_result_by_id(db, result.id)


async def publish_result(db: AsyncSession, result_id: UUID, actor: User) -> Result:
    """Publish an approved result. Publication freezes everything but comments."""
    ensure_permission(actor, "results:publish")
    result = await get_result_for_actor(db, result_id, actor)
    result.status = next_result_status(result.status, "publish")
    result.published_at = utcnow()

    notification.notify(
        db,
        result.uploaded_by,
        "result_published",
        "Result published",
        f"A result for {result.session} {result.term} term was published.",
        {"result_id": str(result.id)},
    )
    audit.record(
        db, actor.id, "publish_result", "result", result.id, school_id=result.school_id
    )
    await db.commit()

    logger.info("Result %s published by %s", result.id, actor.id)
    return await get_result_by_id(db, result.id)


async def comment_result(db: AsyncSession, result_id: UUID, actor: User, text: str) -> Result:
    """
    Set the comment that belongs to the actor's role.

    Teachers write ``teacher_comment`` and school admins write
    ``principal_comment``. Comments stay editable after publication.
    """
    result = await get_result_for_actor(db, result_id, actor)
    if actor.role == Role.TEACHER:
        ensure_permission(actor, "results:teacher_comment")
        result.teacher_comment = text
    elif actor.role == Role.SCHOOL_ADMIN:
        ensure_permission(actor, "results:principal_comment")
        result.principal_comment = text
    else:
        raise ForbiddenError("Only teachers and school admins can comment on results")

    await db.commit()
    return await get_result_by_id(db, result.id)


def _result_snapshot(result: Result) -> dict:
    return {
        "student_id": str(result.student_id),
        "class_id": str(result.class_id) if result.class_id else None,
        "session": result.session,
        "term": result.term,
        "subjects": result.subjects,
        "total_score": result.total_score,
        "average_score": result.average_score,
        "position": result.position,
        "total_students": result.total_students,
        "teacher_comment": result.teacher_comment,
        "principal_comment": result.principal_comment,
        "attendance": result.attendance,
        "status": ResultStatus(result.status).value,
        "published_at": result.published_at.isoformat() if result.published_at else None,
        "uploaded_by": str(result.uploaded_by),
    }


async def _remove_result(db: AsyncSession, result_id: UUID, action: str, actor: User) -> None:
    result = await get_result_for_actor(db, result_id, actor)
    if action == "delete" and result.is_published:
        raise ImmutableError("Published results cannot be deleted; archive them instead")

    if action == "archive":
        db.add(
            ArchivedResult(
                original_id=result.id,
                school_id=result.school_id,
                snapshot=_result_snapshot(result),
                archived_by=actor.id,
            )
        )
    audit.record(
        db,
        actor.id,
        f"{action}_result",
        "result",
        result.id,
        {"bulk": True},
        school_id=result.school_id,
    )
    await db.delete(result)
    await db.commit()


async def bulk_result_action(
    db: AsyncSession,
    result_ids: list[UUID],
    action: str,
    actor: User,
    reason: str | None = None,
) -> BulkActionResponse:
    """Apply one action to many results. Each item commits or fails on its own."""
    ensure_permission(actor, "results:bulk")
    actor_id = actor.id
    succeeded: list[UUID] = []
    failed: list[BulkItemError] = []

    for result_id in dict.fromkeys(result_ids):
        try:
            if action == "submit":
                await submit_result(db, result_id, actor)
            elif action == "approve":
                await approve_result(db, result_id, actor)
            elif action == "reject":
                await reject_result(db, result_id, actor, reason)
            elif action == "publish":
                await publish_result(db, result_id, actor)
            elif action in ("delete", "archive"):
                await _remove_result(db, result_id, action, actor)
            else:
                raise ValidationFailedError(f"Unknown action '{action}'")
            succeeded.append(result_id)
        except ResultServiceError as exc:
            failed.append(BulkItemError(id=result_id, code=exc.code, detail=exc.message))

    logger.info(
        "Bulk %s of results by %s: %d succeeded, %d failed",
        action,
        actor_id,
        len(succeeded),
        len(failed),
    )
    return BulkActionResponse(action=action, succeeded=succeeded, failed=failed)
