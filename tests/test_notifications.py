"""Tests for the notification feed."""

from httpx import AsyncClient

from app.models.result_sheet import Term
from app.schemas.result import ResultCreate, SubjectScoreInput
from app.services import result as result_service
from tests.conftest import auth_header


class TestNotifications:
    async def test_author_hears_about_rejection(
        self, client: AsyncClient, db, teacher, teacher_token, school_admin, students
    ):
        result = await result_service.create_result(
            db,
            ResultCreate(
                student_id=students[0].id,
                session="2024/2025",
                term=Term.FIRST,
                subjects=[SubjectScoreInput(subject="Mathematics", scores={"Exam": 55})],
            ),
            teacher,
        )
        await result_service.submit_result(db, result.id, teacher)
        await result_service.reject_result(db, result.id, school_admin, "Missing CA scores")

        response = await client.get("/api/v1/notifications", headers=auth_header(teacher_token))

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["items"][0]["type"] == "result_rejected"
        assert "Missing CA scores" in data["items"][0]["message"]
        assert data["items"][0]["is_read"] is False

    async def test_unread_filter(self, client: AsyncClient, admin_token):
        response = await client.get(
            "/api/v1/notifications",
            params={"unread_only": True},
            headers=auth_header(admin_token),
        )
        assert response.status_code == 200
        assert response.json()["items"] == []
