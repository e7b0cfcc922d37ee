"""Tests for result sheets and their lifecycle."""

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from app.core.exceptions import (
    ConflictError,
    EmptySheetError,
    ForbiddenError,
    ImmutableError,
    InvalidStateError,
    PreconditionFailedError,
    ValidationFailedError,
)
from app.models import ArchivedResultSheet, AuditLog, Notification, Result, ResultStatus
from app.models.result_sheet import LIVE_SHEET_STATUSES, ResultSheet, SheetStatus, Term
from app.schemas.result_sheet import ResultSheetCreate, SheetEntryInput
from app.services import result_sheet as sheet_service
from tests.conftest import auth_header

SESSION = "2024/2025"


def sheet_data(school_class, subject, entries=None) -> ResultSheetCreate:
    return ResultSheetCreate(
        class_id=school_class.id,
        subject_id=subject.id,
        session=SESSION,
        term=Term.FIRST,
        entries=entries or [],
    )


def entry(student, **scores) -> SheetEntryInput:
    return SheetEntryInput(student_id=student.id, scores=scores)


@pytest.fixture
def two_entries(students):
    return [
        entry(students[0], CA1=10, CA2=10, Exam=72),
        entry(students[1], CA1=20, CA2=19, Exam=60),
    ]


class TestCreateSheet:
    """Tests for starting sheets."""

    async def test_entries_are_graded(self, db, teacher, school_class, mathematics, two_entries):
        sheet, created = await sheet_service.create_sheet(
            db, sheet_data(school_class, mathematics, two_entries), teacher
        )

        assert created is True
        assert sheet.status == SheetStatus.DRAFT
        assert [e.total for e in sheet.entries] == [92, 99]
        assert [e.grade for e in sheet.entries] == ["A", "A"]

    async def test_resumes_live_draft(self, db, teacher, school_class, mathematics, two_entries):
        first, _ = await sheet_service.create_sheet(
            db, sheet_data(school_class, mathematics), teacher
        )
        second, created = await sheet_service.create_sheet(
            db, sheet_data(school_class, mathematics, two_entries), teacher
        )

        assert created is False
        assert second.id == first.id
        assert len(second.entries) == 2

    async def test_submitted_sheet_blocks_new_one(
        self, db, teacher, school_class, mathematics, two_entries
    ):
        sheet, _ = await sheet_service.create_sheet(
            db, sheet_data(school_class, mathematics, two_entries), teacher
        )
        await sheet_service.submit_sheet(db, sheet.id, teacher)

        with pytest.raises(ConflictError):
            await sheet_service.create_sheet(db, sheet_data(school_class, mathematics), teacher)

    async def test_other_teacher_gets_own_sheet(
        self, db, teacher, other_teacher, school_class, mathematics, two_entries
    ):
        sheet, _ = await sheet_service.create_sheet(
            db, sheet_data(school_class, mathematics, two_entries), teacher
        )
        await sheet_service.submit_sheet(db, sheet.id, teacher)

        other, created = await sheet_service.create_sheet(
            db, sheet_data(school_class, mathematics), other_teacher
        )
        assert created is True
        assert other.id != sheet.id

    async def test_duplicate_student_rejected(self, db, teacher, school_class, mathematics, students):
        entries = [entry(students[0], Exam=50), entry(students[0], Exam=60)]
        with pytest.raises(ValidationFailedError):
            await sheet_service.create_sheet(
                db, sheet_data(school_class, mathematics, entries), teacher
            )

    async def test_unknown_metric_rejected(
        self, db, teacher, school_class, mathematics, students, metrics
    ):
        entries = [entry(students[0], Project=50)]
        with pytest.raises(ValidationFailedError):
            await sheet_service.create_sheet(
                db, sheet_data(school_class, mathematics, entries), teacher
            )


class TestSheetLifecycle:
    """Tests for submit, approve and reject."""

    async def test_draft_cannot_be_approved(
        self, db, teacher, school_admin, school_class, mathematics, two_entries
    ):
        sheet, _ = await sheet_service.create_sheet(
            db, sheet_data(school_class, mathematics, two_entries), teacher
        )

        with pytest.raises(InvalidStateError):
            await sheet_service.approve_sheet(db, sheet.id, school_admin)

    async def test_empty_sheet_cannot_be_submitted(self, db, teacher, school_class, mathematics):
        sheet, _ = await sheet_service.create_sheet(
            db, sheet_data(school_class, mathematics), teacher
        )

        with pytest.raises(EmptySheetError):
            await sheet_service.submit_sheet(db, sheet.id, teacher)

    async def test_only_creator_submits(
        self, db, teacher, other_teacher, school_class, mathematics, two_entries
    ):
        sheet, _ = await sheet_service.create_sheet(
            db, sheet_data(school_class, mathematics, two_entries), teacher
        )

        with pytest.raises(ForbiddenError):
            await sheet_service.submit_sheet(db, sheet.id, other_teacher)

    async def test_submit_notifies_admins(
        self, db, teacher, school_admin, school_class, mathematics, two_entries
    ):
        sheet, _ = await sheet_service.create_sheet(
            db, sheet_data(school_class, mathematics, two_entries), teacher
        )
        await sheet_service.submit_sheet(db, sheet.id, teacher)

        result = await db.execute(
            select(Notification).where(Notification.user_id == school_admin.id)
        )
        notifications = result.scalars().all()
        assert [n.type for n in notifications] == ["sheet_submitted"]

    async def test_reject_requires_reason(
        self, db, teacher, school_admin, school_class, mathematics, two_entries
    ):
        sheet, _ = await sheet_service.create_sheet(
            db, sheet_data(school_class, mathematics, two_entries), teacher
        )
        await sheet_service.submit_sheet(db, sheet.id, teacher)

        with pytest.raises(ValidationFailedError):
            await sheet_service.reject_sheet(db, sheet.id, school_admin, "  ")

        rejected = await sheet_service.reject_sheet(db, sheet.id, school_admin, "Exam column wrong")
        assert rejected.status == SheetStatus.REJECTED
        assert rejected.rejection_reason == "Exam column wrong"

    async def test_reject_only_from_submitted(
        self, db, teacher, school_admin, school_class, mathematics, two_entries
    ):
        sheet, _ = await sheet_service.create_sheet(
            db, sheet_data(school_class, mathematics, two_entries), teacher
        )

        with pytest.raises(InvalidStateError):
            await sheet_service.reject_sheet(db, sheet.id, school_admin, "Not ready")

    async def test_rejected_sheet_edited_and_resubmitted(
        self, db, teacher, school_admin, school_class, mathematics, two_entries, students
    ):
        sheet, _ = await sheet_service.create_sheet(
            db, sheet_data(school_class, mathematics, two_entries), teacher
        )
        await sheet_service.submit_sheet(db, sheet.id, teacher)
        await sheet_service.reject_sheet(db, sheet.id, school_admin, "Add Chidi")

        edited = await sheet_service.update_entries(
            db, sheet.id, two_entries + [entry(students[2], Exam=45)], teacher
        )
        assert edited.status == SheetStatus.REJECTED
        assert len(edited.entries) == 3

        resubmitted = await sheet_service.submit_sheet(db, sheet.id, teacher)
        assert resubmitted.status == SheetStatus.SUBMITTED
        assert resubmitted.rejection_reason is None

    async def test_resubmit_blocked_by_newer_live_sheet(
        self, db, teacher, school_admin, school_class, mathematics, two_entries
    ):
        rejected, _ = await sheet_service.create_sheet(
            db, sheet_data(school_class, mathematics, two_entries), teacher
        )
        await sheet_service.submit_sheet(db, rejected.id, teacher)
        await sheet_service.reject_sheet(db, rejected.id, school_admin, "Wrong exam scores")

        replacement, created = await sheet_service.create_sheet(
            db, sheet_data(school_class, mathematics, two_entries), teacher
        )
        assert created is True

        with pytest.raises(ConflictError):
            await sheet_service.submit_sheet(db, rejected.id, teacher)

        result = await db.execute(
            select(ResultSheet).where(
                ResultSheet.status.in_([status.value for status in LIVE_SHEET_STATUSES])
            )
        )
        assert [sheet.id for sheet in result.scalars().all()] == [replacement.id]

    async def test_database_allows_one_live_sheet(
        self, db, teacher, school_admin, school_class, mathematics, two_entries
    ):
        rejected, _ = await sheet_service.create_sheet(
            db, sheet_data(school_class, mathematics, two_entries), teacher
        )
        await sheet_service.submit_sheet(db, rejected.id, teacher)
        await sheet_service.reject_sheet(db, rejected.id, school_admin, "Wrong exam scores")
        await sheet_service.create_sheet(
            db, sheet_data(school_class, mathematics, two_entries), teacher
        )

        stale = await sheet_service.get_sheet_by_id(db, rejected.id)
        stale.status = SheetStatus.SUBMITTED
        with pytest.raises(IntegrityError):
            await db.commit()
        await db.rollback()

    async def test_submitted_sheet_is_immutable(
        self, db, teacher, school_class, mathematics, two_entries
    ):
        sheet, _ = await sheet_service.create_sheet(
            db, sheet_data(school_class, mathematics, two_entries), teacher
        )
        await sheet_service.submit_sheet(db, sheet.id, teacher)

        with pytest.raises(ImmutableError):
            await sheet_service.update_entries(db, sheet.id, two_entries, teacher)

    async def test_update_keeps_existing_rows(
        self, db, teacher, school_class, mathematics, two_entries, students
    ):
        sheet, _ = await sheet_service.create_sheet(
            db, sheet_data(school_class, mathematics, two_entries), teacher
        )
        kept_id = sheet.entries[0].id

        updated = await sheet_service.update_entries(
            db, sheet.id, [entry(students[0], Exam=30)], teacher
        )
        assert [e.id for e in updated.entries] == [kept_id]
        assert updated.entries[0].total == 30
        assert updated.entries[0].grade == "F"

    async def test_approval_needs_logo(
        self, db, school, teacher, school_admin, school_class, mathematics, two_entries
    ):
        school.logo = None
        await db.commit()
        sheet, _ = await sheet_service.create_sheet(
            db, sheet_data(school_class, mathematics, two_entries), teacher
        )
        await sheet_service.submit_sheet(db, sheet.id, teacher)

        with pytest.raises(PreconditionFailedError):
            await sheet_service.approve_sheet(db, sheet.id, school_admin)

    async def test_admin_of_other_school_forbidden(
        self, db, teacher, foreign_admin, school_class, mathematics, two_entries
    ):
        sheet, _ = await sheet_service.create_sheet(
            db, sheet_data(school_class, mathematics, two_entries), teacher
        )
        await sheet_service.submit_sheet(db, sheet.id, teacher)

        with pytest.raises(ForbiddenError):
            await sheet_service.approve_sheet(db, sheet.id, foreign_admin)

    async def test_approval_aggregates_and_audits(
        self, db, teacher, school_admin, school_class, mathematics, two_entries, students
    ):
        sheet, _ = await sheet_service.create_sheet(
            db, sheet_data(school_class, mathematics, two_entries), teacher
        )
        await sheet_service.submit_sheet(db, sheet.id, teacher)

        approved, report = await sheet_service.approve_sheet(db, sheet.id, school_admin)

        assert approved.status == SheetStatus.APPROVED
        assert approved.approved_by == school_admin.id
        assert report.created == 2
        assert report.errors == []

        audit_result = await db.execute(select(AuditLog.action))
        actions = set(audit_result.scalars().all())
        assert {"approve_sheet", "aggregate_results"} <= actions


class TestDeleteSheet:
    """Tests for single and bulk removal."""

    async def test_creator_deletes_draft(self, db, teacher, school_class, mathematics, two_entries):
        sheet, _ = await sheet_service.create_sheet(
            db, sheet_data(school_class, mathematics, two_entries), teacher
        )

        await sheet_service.delete_sheet(db, sheet.id, teacher)
        assert await sheet_service.get_sheet_by_id(db, sheet.id) is None

    async def test_creator_cannot_delete_submitted(
        self, db, teacher, school_class, mathematics, two_entries
    ):
        sheet, _ = await sheet_service.create_sheet(
            db, sheet_data(school_class, mathematics, two_entries), teacher
        )
        await sheet_service.submit_sheet(db, sheet.id, teacher)

        with pytest.raises(InvalidStateError):
            await sheet_service.delete_sheet(db, sheet.id, teacher)

    async def test_other_teacher_cannot_delete(
        self, db, teacher, other_teacher, school_class, mathematics, two_entries
    ):
        sheet, _ = await sheet_service.create_sheet(
            db, sheet_data(school_class, mathematics, two_entries), teacher
        )

        with pytest.raises(ForbiddenError):
            await sheet_service.delete_sheet(db, sheet.id, other_teacher)

    async def test_sheet_feeding_published_result_is_kept(
        self, db, teacher, school_admin, school_class, mathematics, two_entries
    ):
        sheet, _ = await sheet_service.create_sheet(
            db, sheet_data(school_class, mathematics, two_entries), teacher
        )
        await sheet_service.submit_sheet(db, sheet.id, teacher)
        await sheet_service.approve_sheet(db, sheet.id, school_admin)

        result = (await db.execute(select(Result))).scalars().first()
        result.status = ResultStatus.PUBLISHED
        await db.commit()

        with pytest.raises(ImmutableError):
            await sheet_service.delete_sheet(db, sheet.id, school_admin)

        report = await sheet_service.bulk_sheet_action(db, [sheet.id], "archive", school_admin)
        assert report.succeeded == []
        assert report.failed[0].code == "immutable"

    async def test_bulk_archive_partial_failure(
        self, db, teacher, school_admin, school_class, mathematics, english, two_entries
    ):
        sheet, _ = await sheet_service.create_sheet(
            db, sheet_data(school_class, mathematics, two_entries), teacher
        )
        missing = english.id  # not a sheet id

        report = await sheet_service.bulk_sheet_action(
            db, [sheet.id, missing], "archive", school_admin
        )

        assert report.succeeded == [sheet.id]
        assert [item.id for item in report.failed] == [missing]
        assert report.failed[0].code == "not_found"

        archived = (await db.execute(select(ArchivedResultSheet))).scalars().all()
        assert len(archived) == 1
        assert archived[0].original_id == sheet.id
        assert len(archived[0].snapshot["entries"]) == 2
        assert await sheet_service.get_sheet_by_id(db, sheet.id) is None


class TestResultSheetRoutes:
    """HTTP tests for the sheet workflow."""

    async def test_full_workflow_ranks_students(
        self,
        client: AsyncClient,
        teacher_token,
        admin_token,
        school_class,
        mathematics,
        students,
    ):
        response = await client.post(
            "/api/v1/result-sheets",
            json={
                "class_id": str(school_class.id),
                "subject_id": str(mathematics.id),
                "session": SESSION,
                "term": "First",
                "entries": [
                    {"student_id": str(students[0].id), "scores": {"CA1": 10, "CA2": 10, "Exam": 72}},
                    {"student_id": str(students[1].id), "scores": {"CA1": 20, "CA2": 19, "Exam": 60}},
                ],
            },
            headers=auth_header(teacher_token),
        )
        assert response.status_code == 201
        sheet_id = response.json()["id"]

        response = await client.post(
            f"/api/v1/result-sheets/{sheet_id}/submit", headers=auth_header(teacher_token)
        )
        assert response.status_code == 200
        assert response.json()["status"] == "submitted"

        response = await client.post(
            f"/api/v1/result-sheets/{sheet_id}/approve", headers=auth_header(admin_token)
        )
        assert response.status_code == 200
        data = response.json()
        assert data["sheet"]["status"] == "approved"
        assert data["aggregation"]["created"] == 2

        response = await client.get(
            "/api/v1/results", params={"session": SESSION}, headers=auth_header(admin_token)
        )
        positions = {item["student_id"]: item["position"] for item in response.json()["items"]}
        assert positions[str(students[0].id)] == 2
        assert positions[str(students[1].id)] == 1

    async def test_error_body_has_code(
        self, client: AsyncClient, teacher_token, admin_token, school_class, mathematics
    ):
        response = await client.post(
            "/api/v1/result-sheets",
            json={
                "class_id": str(school_class.id),
                "subject_id": str(mathematics.id),
                "session": SESSION,
                "term": "First",
            },
            headers=auth_header(teacher_token),
        )
        sheet_id = response.json()["id"]

        response = await client.post(
            f"/api/v1/result-sheets/{sheet_id}/submit", headers=auth_header(teacher_token)
        )
        assert response.status_code == 422
        assert response.json()["code"] == "empty_sheet"

    async def test_infinite_score_rejected(
        self, client: AsyncClient, teacher_token, school_class, mathematics, students
    ):
        # Infinity is not standard JSON, so the body is sent raw
        body = (
            '{"class_id": "%s", "subject_id": "%s", "session": "%s", "term": "First", '
            '"entries": [{"student_id": "%s", "scores": {"Exam": Infinity}}]}'
        ) % (school_class.id, mathematics.id, SESSION, students[0].id)
        response = await client.post(
            "/api/v1/result-sheets",
            content=body,
            headers={**auth_header(teacher_token), "Content-Type": "application/json"},
        )

        assert response.status_code == 422
        assert response.json()["code"] == "invalid_score"

    async def test_teacher_cannot_approve(
        self, client: AsyncClient, teacher_token, school_class, mathematics
    ):
        response = await client.post(
            "/api/v1/result-sheets",
            json={
                "class_id": str(school_class.id),
                "subject_id": str(mathematics.id),
                "session": SESSION,
                "term": "First",
            },
            headers=auth_header(teacher_token),
        )
        sheet_id = response.json()["id"]

        response = await client.post(
            f"/api/v1/result-sheets/{sheet_id}/approve", headers=auth_header(teacher_token)
        )
        assert response.status_code == 403

    async def test_invalid_session_rejected(
        self, client: AsyncClient, teacher_token, school_class, mathematics
    ):
        response = await client.post(
            "/api/v1/result-sheets",
            json={
                "class_id": str(school_class.id),
                "subject_id": str(mathematics.id),
                "session": "2024-2025",
                "term": "First",
            },
            headers=auth_header(teacher_token),
        )
        assert response.status_code == 422

    async def test_teacher_lists_own_sheets(
        self, client: AsyncClient, teacher_token, school_class, mathematics, english
    ):
        for subject in (mathematics, english):
            await client.post(
                "/api/v1/result-sheets",
                json={
                    "class_id": str(school_class.id),
                    "subject_id": str(subject.id),
                    "session": SESSION,
                    "term": "First",
                },
                headers=auth_header(teacher_token),
            )

        response = await client.get("/api/v1/result-sheets", headers=auth_header(teacher_token))
        assert response.status_code == 200
        assert response.json()["total"] == 2
