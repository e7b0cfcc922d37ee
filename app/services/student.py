"""Student service - lookups used by sheets, results and PIN checks."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.school_class import SchoolClass
from app.models.student import Student


async def get_student_by_id(db: AsyncSession, student_id: UUID) -> Student | None:
    """Get student by ID."""
    result = await db.execute(select(Student).where(Student.id == student_id))
    return result.scalar_one_or_none()


async def get_student_by_admission_number(
    db: AsyncSession, admission_number: str, school_id: UUID
) -> Student | None:
    """Find a student by admission number within one school. Matching ignores case."""
    result = await db.execute(
        select(Student).where(
            Student.school_id == school_id,
            Student.admission_number == admission_number.strip().upper(),
        )
    )
    return result.scalar_one_or_none()


async def get_students_by_ids(
    db: AsyncSession, student_ids: list[UUID]
) -> dict[UUID, Student]:
    if not student_ids:
        return {}
    result = await db.execute(select(Student).where(Student.id.in_(student_ids)))
    return {student.id: student for student in result.scalars().all()}


async def get_school_class_by_id(db: AsyncSession, class_id: UUID) -> SchoolClass | None:
    """Get a school class by ID."""
    result = await db.execute(select(SchoolClass).where(SchoolClass.id == class_id))
    return result.scalar_one_or_none()
