"""Tests for folding approved sheets into student results."""

from sqlalchemy import select

from app.models import Result, ResultStatus
from app.models.result_sheet import Term
from app.schemas.result_sheet import ResultSheetCreate, SheetEntryInput
from app.services import aggregator
from app.services import result_sheet as sheet_service
from tests.conftest import auth_header

SESSION = "2024/2025"


async def start_sheet(db, teacher, school_class, subject, scores):
    """Create and submit a sheet; ``scores`` maps students to their exam score."""
    sheet, _ = await sheet_service.create_sheet(
        db,
        ResultSheetCreate(
            class_id=school_class.id,
            subject_id=subject.id,
            session=SESSION,
            term=Term.FIRST,
            entries=[
                SheetEntryInput(student_id=student.id, scores={"Exam": score})
                for student, score in scores
            ],
        ),
        teacher,
    )
    return await sheet_service.submit_sheet(db, sheet.id, teacher)


async def results_by_student(db) -> dict:
    rows = await db.execute(select(Result).execution_options(populate_existing=True))
    return {result.student_id: result for result in rows.scalars().all()}


class TestAggregation:
    """Tests for the aggregation job."""

    async def test_competition_ranking(
        self, db, teacher, school_admin, school_class, mathematics, students
    ):
        sheet = await start_sheet(
            db, teacher, school_class, mathematics, zip(students, [90, 90, 80])
        )
        _, report = await sheet_service.approve_sheet(db, sheet.id, school_admin)

        results = await results_by_student(db)
        assert [results[s.id].position for s in students] == [1, 1, 3]
        assert all(results[s.id].total_students == 3 for s in students)
        assert all(results[s.id].status == ResultStatus.APPROVED for s in students)
        assert report.students_ranked == 3

    async def test_merges_subjects_across_sheets(
        self,
        db,
        teacher,
        other_teacher,
        school_admin,
        school_class,
        mathematics,
        english,
        students,
    ):
        maths = await start_sheet(
            db, teacher, school_class, mathematics, zip(students[:2], [80, 60])
        )
        await sheet_service.approve_sheet(db, maths.id, school_admin)
        eng = await start_sheet(
            db, other_teacher, school_class, english, zip(students[:2], [40, 90])
        )
        _, report = await sheet_service.approve_sheet(db, eng.id, school_admin)

        assert report.created == 0
        assert report.updated == 2

        results = await results_by_student(db)
        first, second = results[students[0].id], results[students[1].id]
        assert [s["subject"] for s in first.subjects] == ["English", "Mathematics"]
        assert first.total_score == 120
        assert first.average_score == 60
        assert second.average_score == 75
        assert (first.position, second.position) == (2, 1)

    async def test_subject_weights(
        self, db, teacher, school_admin, school_class, mathematics, english, students
    ):
        mathematics.weight = 3
        await db.commit()
        maths = await start_sheet(db, teacher, school_class, mathematics, [(students[0], 80)])
        await sheet_service.approve_sheet(db, maths.id, school_admin)
        eng = await start_sheet(db, teacher, school_class, english, [(students[0], 40)])
        await sheet_service.approve_sheet(db, eng.id, school_admin)

        result = (await results_by_student(db))[students[0].id]
        assert result.average_score == 70  # (80 * 3 + 40) / 4

    async def test_published_result_is_not_rewritten(
        self,
        db,
        teacher,
        other_teacher,
        school_admin,
        school_class,
        mathematics,
        english,
        students,
    ):
        maths = await start_sheet(
            db, teacher, school_class, mathematics, zip(students[:2], [70, 50])
        )
        await sheet_service.approve_sheet(db, maths.id, school_admin)
        published = (await results_by_student(db))[students[0].id]
        published.status = ResultStatus.PUBLISHED
        await db.commit()

        eng = await start_sheet(
            db, other_teacher, school_class, english, zip(students[:2], [90, 90])
        )
        _, report = await sheet_service.approve_sheet(db, eng.id, school_admin)

        assert report.skipped_published == [students[0].id]
        results = await results_by_student(db)
        assert len(results[students[0].id].subjects) == 1
        assert results[students[0].id].status == ResultStatus.PUBLISHED
        assert len(results[students[1].id].subjects) == 2

    async def test_bad_entry_does_not_abort_batch(
        self, db, teacher, school_admin, school_class, mathematics, students
    ):
        sheet = await start_sheet(
            db, teacher, school_class, mathematics, zip(students, [90, 70, 50])
        )
        sheet.entries[0].component_scores = {"Exam": -5}
        await db.commit()

        _, report = await sheet_service.approve_sheet(db, sheet.id, school_admin)

        assert [error.student_id for error in report.errors] == [students[0].id]
        results = await results_by_student(db)
        assert students[0].id not in results
        assert results[students[1].id].position == 1
        assert results[students[2].id].position == 2
        assert results[students[1].id].total_students == 2

    async def test_rerun_is_idempotent(
        self, db, teacher, school_admin, school_class, mathematics, students
    ):
        sheet = await start_sheet(
            db, teacher, school_class, mathematics, zip(students, [55, 75, 65])
        )
        await sheet_service.approve_sheet(db, sheet.id, school_admin)
        before = {
            student_id: (result.position, result.average_score)
            for student_id, result in (await results_by_student(db)).items()
        }

        report = await aggregator.aggregate_scope(
            db, school_admin.school_id, SESSION, "First", school_admin.id
        )

        assert report.created == 0
        assert report.updated == 3
        after = {
            student_id: (result.position, result.average_score)
            for student_id, result in (await results_by_student(db)).items()
        }
        assert after == before

    async def test_rerun_route(
        self, client, admin_token, db, teacher, school_admin, school_class, mathematics, students
    ):
        sheet = await start_sheet(db, teacher, school_class, mathematics, zip(students, [55, 75, 65]))
        await sheet_service.approve_sheet(db, sheet.id, school_admin)

        response = await client.post(
            "/api/v1/result-sheets/aggregate",
            json={"session": SESSION, "term": "First"},
            headers=auth_header(admin_token),
        )
        assert response.status_code == 200
        data = response.json()
        assert data["updated"] == 3
        assert data["errors"] == []
