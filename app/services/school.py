"""School service - read-side lookups for school configuration."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFoundError, PreconditionFailedError
from app.models.school import School
from app.models.subject import ScoreMetric, Subject
from app.services.grading import GradeBand, build_bands


async def get_school_by_id(db: AsyncSession, school_id: UUID) -> School | None:
    """Get school by ID."""
    result = await db.execute(select(School).where(School.id == school_id))
    return result.scalar_one_or_none()


async def get_school_or_404(db: AsyncSession, school_id: UUID) -> School:
    school = await get_school_by_id(db, school_id)
    if not school:
        raise NotFoundError("School not found")
    return school


async def ensure_branding(db: AsyncSession, school_id: UUID) -> School:
    """Approval needs a logo; approved results are render-ready."""
    school = await get_school_or_404(db, school_id)
    if not school.has_branding:
        raise PreconditionFailedError(
            "School logo must be configured before results can be approved"
        )
    return school


def get_grade_bands(school: School) -> tuple[GradeBand, ...]:
    """Return the school's grade bands, or the defaults."""
    return build_bands(school.grade_ranges)


async def get_subjects_by_ids(
    db: AsyncSession, subject_ids: list[UUID]
) -> dict[UUID, Subject]:
    if not subject_ids:
        return {}
    result = await db.execute(select(Subject).where(Subject.id.in_(subject_ids)))
    return {subject.id: subject for subject in result.scalars().all()}


async def get_subject_weights(db: AsyncSession, school_id: UUID) -> dict[str, float] | None:
    """
    Map subject names to their weights.

    Returns None when no subject in the school has a weight, which keeps the
    record average unweighted.
    """
    result = await db.execute(select(Subject).where(Subject.school_id == school_id))
    subjects = result.scalars().all()
    if not any(subject.weight is not None for subject in subjects):
        return None
    return {
        subject.name: subject.weight if subject.weight is not None else 1.0
        for subject in subjects
    }


async def get_active_metric_names(db: AsyncSession, school_id: UUID) -> set[str]:
    """Names of the school's active score components. Empty means any name is accepted."""
    result = await db.execute(
        select(ScoreMetric.name).where(
            ScoreMetric.school_id == school_id,
            ScoreMetric.is_active == True,
        )
    )
    return set(result.scalars().all())
