"""Result aggregator - folds approved result sheets into per-student results.

One job covers a school, session and term. It reads every approved sheet in
that scope, rebuilds each student's subject list from scratch, ranks students
within their class and overwrites the stored results. Re-running it with the
same approved sheets gives the same results.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.config import settings
from app.core.database import as_utc, utcnow
from app.core.exceptions import ConflictError, ResultServiceError
from app.models.result import Result, ResultStatus
from app.models.result_sheet import ResultSheet, SheetStatus
from app.services import audit
from app.services import school as school_service
from app.services.grading import aggregate, competition_rank, compute_entry

logger = logging.getLogger(__name__)


@dataclass
class StudentError:
    student_id: UUID
    detail: str


@dataclass
class AggregationReport:
    """What one aggregation run did."""

    school_id: UUID
    session: str
    term: str
    created: int = 0
    updated: int = 0
    students_ranked: int = 0
    skipped_published: list[UUID] = field(default_factory=list)
    errors: list[StudentError] = field(default_factory=list)


@dataclass
class _StudentFigures:
    class_id: UUID
    subjects: list[dict]
    total_score: float
    average_score: float


async def _approved_sheets(
    db: AsyncSession, school_id: UUID, session: str, term: str
) -> list[ResultSheet]:
    result = await db.execute(
        select(ResultSheet)
        .where(
            ResultSheet.school_id == school_id,
            ResultSheet.session == session,
            ResultSheet.term == term,
            ResultSheet.status == SheetStatus.APPROVED.value,
        )
        .options(selectinload(ResultSheet.entries))
        .execution_options(populate_existing=True)
    )
    sheets = list(result.scalars().all())
    # Oldest approval first, so later approvals overwrite earlier ones
    sheets.sort(key=lambda sheet: (as_utc(sheet.approved_at or sheet.created_at), str(sheet.id)))
    return sheets


async def _compute(
    db: AsyncSession,
    school_id: UUID,
    sheets: list[ResultSheet],
    report: AggregationReport,
) -> dict[UUID, _StudentFigures]:
    """Build each student's subject list and figures from the sheets."""
    school = await school_service.get_school_or_404(db, school_id)
    bands = school_service.get_grade_bands(school)
    weights = await school_service.get_subject_weights(db, school_id)
    subjects = await school_service.get_subjects_by_ids(
        db, list({sheet.subject_id for sheet in sheets})
    )

    # student -> subject_id -> entry dict; class follows the latest sheet
    per_student: dict[UUID, dict[UUID, dict]] = defaultdict(dict)
    student_class: dict[UUID, UUID] = {}
    failed: set[UUID] = set()

    for sheet in sheets:
        subject = subjects.get(sheet.subject_id)
        subject_name = subject.name if subject else str(sheet.subject_id)
        for entry in sheet.entries:
            student_class[entry.student_id] = sheet.class_id
            try:
                score = compute_entry(entry.component_scores, bands)
            except ResultServiceError as exc:
                if entry.student_id not in failed:
                    failed.add(entry.student_id)
                    report.errors.append(StudentError(entry.student_id, exc.message))
                logger.warning(
                    "Aggregation skipped student %s on sheet %s: %s",
                    entry.student_id,
                    sheet.id,
                    exc.message,
                )
                continue
            per_student[entry.student_id][sheet.subject_id] = {
                "subject": subject_name,
                "subject_id": str(sheet.subject_id),
                "scores": dict(entry.component_scores),
                "total": score.total,
                "grade": score.grade,
                "remark": score.remark,
            }

    figures = {}
    for student_id, by_subject in per_student.items():
        if student_id in failed:
            continue
        subject_entries = sorted(by_subject.values(), key=lambda item: item["subject"])
        total_score, average_score = aggregate(subject_entries, weights)
        figures[student_id] = _StudentFigures(
            class_id=student_class[student_id],
            subjects=subject_entries,
            total_score=total_score,
            average_score=average_score,
        )
    return figures


async def _write(
    db: AsyncSession,
    school_id: UUID,
    session: str,
    term: str,
    actor_id: UUID,
    figures: dict[UUID, _StudentFigures],
    report: AggregationReport,
) -> None:
    """Rank each class and overwrite the stored results."""
    now = utcnow()
    existing_result = await db.execute(
        select(Result)
        .where(
            Result.student_id.in_(list(figures)),
            Result.session == session,
            Result.term == term,
        )
        .execution_options(populate_existing=True)
    )
    existing = {result.student_id: result for result in existing_result.scalars().all()}

    by_class: dict[UUID, dict[UUID, float]] = defaultdict(dict)
    for student_id, student in figures.items():
        by_class[student.class_id][student_id] = student.average_score

    for class_id, averages in by_class.items():
        positions = competition_rank(averages)
        cohort = len(averages)
        for student_id, position in positions.items():
            student = figures[student_id]
            result = existing.get(student_id)

            if result is not None and result.is_published:
                report.skipped_published.append(student_id)
                logger.warning(
                    "Aggregation conflict: result %s for student %s is published and was not changed",
                    result.id,
                    student_id,
                )
                continue

            if result is None:
                result = Result(
                    school_id=school_id,
                    student_id=student_id,
                    session=session,
                    term=term,
                    uploaded_by=actor_id,
                )
                db.add(result)
                report.created += 1
            else:
                report.updated += 1

            result.class_id = class_id
            result.subjects = student.subjects
            result.total_score = student.total_score
            result.average_score = student.average_score
            result.position = position
            result.total_students = cohort
            # Merged from approved sheets, so the merged record is approved as well
            result.status = ResultStatus.APPROVED
            result.approved_by = actor_id
            result.approved_at = now
            result.rejection_reason = None
            report.students_ranked += 1


async def aggregate_scope(
    db: AsyncSession,
    school_id: UUID,
    session: str,
    term: str,
    actor_id: UUID,
) -> AggregationReport:
    """
    Recompute every student result for a school, session and term.

    Students whose scores cannot be computed are reported in ``errors`` and
    left out of the ranking; the rest of the job still completes. Published
    results are never rewritten and are listed in ``skipped_published``. A
    concurrent job creating the same result makes this one roll back and
    start over.
    """
    attempts = settings.AGGREGATION_MAX_RETRIES
    for attempt in range(1, attempts + 1):
        report = AggregationReport(school_id=school_id, session=session, term=term)
        sheets = await _approved_sheets(db, school_id, session, term)
        figures = await _compute(db, school_id, sheets, report)
        await _write(db, school_id, session, term, actor_id, figures, report)

        audit.record(
            db,
            actor_id,
            "aggregate_results",
            "result",
            None,
            {
                "session": session,
                "term": term,
                "sheets": len(sheets),
                "created": report.created,
                "updated": report.updated,
                "errors": len(report.errors),
            },
            school_id=school_id,
        )
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            logger.debug(
                "Aggregation for school %s %s %s hit a write conflict (attempt %d/%d)",
                school_id,
                session,
                term,
                attempt,
                attempts,
            )
            continue

        logger.info(
            "Aggregated %d sheets for school %s %s %s: %d created, %d updated, %d errors",
            len(sheets),
            school_id,
            session,
            term,
            report.created,
            report.updated,
            len(report.errors),
        )
        return report

    raise ConflictError("Results were changed concurrently; aggregation gave up")
