"""
API tests for admin test authoring
"""
from lms_backend import models

SINGLE = {
    "stem": "Capital of France?",
    "kind": "single_choice",
    "points": 2,
    "options": [
        {"text": "Paris", "is_correct": True},
        {"text": "Rome", "is_correct": False},
    ],
}


class TestAdminAccess:
    def test_students_are_forbidden(self, client, auth_headers):
        response = client.post("/admin/tests", json={"title": "Nope"}, headers=auth_headers)
        assert response.status_code == 403

    def test_anonymous_is_unauthorized(self, client):
        response = client.post("/admin/tests", json={"title": "Nope"})
        assert response.status_code == 401

    def test_options_request_is_not_routed(self, client):
        response = client.options("/admin/tests")
        assert response.status_code == 405


class TestAuthoring:
    def test_create_add_publish(self, client, admin_headers, admin):
        created = client.post(
            "/admin/tests",
            json={"title": "Geography", "kind": "quiz", "allowed_attempts": 2, "passing_score": 50},
            headers=admin_headers,
        )
        assert created.status_code == 201
        test_id = created.json()["id"]
        assert created.json()["published"] is False

        # Drafts are not visible in the catalogue
        assert client.get(f"/tests/{test_id}").status_code == 404

        question = client.post(f"/admin/tests/{test_id}/questions", json=SINGLE, headers=admin_headers)
        assert question.status_code == 201
        body = question.json()
        assert body["order_index"] == 0
        assert [o["is_correct"] for o in body["options"]] == [True, False]

        published = client.post(f"/admin/tests/{test_id}/publish", headers=admin_headers)
        assert published.status_code == 200
        assert published.json()["published"] is True
        assert client.get(f"/tests/{test_id}").json()["question_count"] == 1

    def test_single_choice_needs_one_correct_option(self, client, admin_headers, make_test):
        test = make_test(published=False)
        payload = dict(SINGLE, options=[{"text": "A", "is_correct": True}, {"text": "B", "is_correct": True}])

        response = client.post(f"/admin/tests/{test.id}/questions", json=payload, headers=admin_headers)
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_question"

    def test_free_text_needs_no_options(self, client, admin_headers, make_test):
        test = make_test(published=False)
        payload = {"stem": "Explain gravity", "kind": "essay", "points": 5}

        response = client.post(f"/admin/tests/{test.id}/questions", json=payload, headers=admin_headers)
        assert response.status_code == 201
        assert response.json()["options"] == []

    def test_missing_test_is_404(self, client, admin_headers):
        response = client.post("/admin/tests/999/questions", json=SINGLE, headers=admin_headers)
        assert response.status_code == 404


class TestLockedTests:
    def test_questions_locked_once_attempted(self, client, admin_headers, auth_headers, two_question_test, db_session):
        client.post(f"/tests/{two_question_test.id}/attempts", headers=auth_headers)

        response = client.post(f"/admin/tests/{two_question_test.id}/questions", json=SINGLE, headers=admin_headers)
        assert response.status_code == 409
        assert response.json()["error"] == "test_locked"

        forced = client.post(
            f"/admin/tests/{two_question_test.id}/questions",
            params={"force": "true"},
            json=SINGLE,
            headers=admin_headers,
        )
        assert forced.status_code == 201
        assert db_session.query(models.Question).filter_by(test_id=two_question_test.id).count() == 3
