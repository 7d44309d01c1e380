"""
Tests for the HTTP layer.

Tests cover:
1. API key and user header checks
2. Status code mapping of failed results and exceptions
3. Task, event, progress and achievement routes
"""
import pytest
from fastapi.testclient import TestClient

from fitquest import config
from fitquest.database import get_db
from fitquest.main import app


@pytest.fixture
def client(db_session):
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def headers():
    return {"X-API-Key": config.API_KEY, "X-User-Id": "user-1"}


def create_daily_task(client, headers):
    response = client.post(
        "/api/tasks",
        json={"name": "Daily Pushups", "recurrence_pattern": "daily", "start_date": "2024-01-01"},
        headers=headers,
    )
    assert response.status_code == 201
    return response.json()


class TestAuth:
    """API key and user header"""

    def test_health_check_is_open(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert response.json()["status"] == "active"

    def test_missing_api_key(self, client):
        response = client.get("/api/progress", headers={"X-User-Id": "user-1"})

        assert response.status_code == 401

    def test_missing_user_header(self, client):
        response = client.get("/api/progress", headers={"X-API-Key": config.API_KEY})

        assert response.status_code == 422


class TestTaskRoutes:
    """Task routes"""

    def test_complete_and_uncomplete(self, client, headers):
        task = create_daily_task(client, headers)

        complete = client.post(
            f"/api/tasks/{task['id']}/complete", json={"completion_date": "2024-01-10"}, headers=headers
        )
        assert complete.status_code == 200
        assert complete.json()["xpAwarded"] == 10

        uncomplete = client.post(
            f"/api/tasks/{task['id']}/uncomplete", json={"completion_date": "2024-01-10"}, headers=headers
        )
        assert uncomplete.status_code == 200
        assert uncomplete.json()["xpAwarded"] == -10

    def test_complete_same_day_twice(self, client, headers):
        task = create_daily_task(client, headers)
        url = f"/api/tasks/{task['id']}/complete"

        client.post(url, json={"completion_date": "2024-01-10"}, headers=headers)
        second = client.post(url, json={"completion_date": "2024-01-10"}, headers=headers)

        assert second.status_code == 200
        assert second.json()["xpAwarded"] == 0
        assert second.json()["warning"] == "task already completed on that date"
        assert client.get("/api/progress", headers=headers).json()["total_xp"] == 10

    def test_invalid_time(self, client, headers):
        response = client.post("/api/tasks", json={"name": "Plank", "scheduled_time": "9am"}, headers=headers)

        assert response.status_code == 400

    def test_not_due(self, client, headers):
        task = create_daily_task(client, headers)

        response = client.post(
            f"/api/tasks/{task['id']}/complete", json={"completion_date": "2023-12-31"}, headers=headers
        )

        assert response.status_code == 400

    def test_task_not_found(self, client, headers):
        assert client.get("/api/tasks/999", headers=headers).status_code == 404
        assert client.post("/api/tasks/999/complete", headers=headers).status_code == 404

    def test_due_and_streak(self, client, headers):
        task = create_daily_task(client, headers)

        due = client.get("/api/tasks/due", params={"day": "2024-01-10"}, headers=headers)
        streak = client.get(f"/api/tasks/{task['id']}/streak", headers=headers)

        assert [t["id"] for t in due.json()] == [task["id"]]
        assert streak.status_code == 200
        assert streak.json()["current_streak"] == 0

    def test_delete(self, client, headers):
        task = create_daily_task(client, headers)

        assert client.delete(f"/api/tasks/{task['id']}", headers=headers).status_code == 204
        assert client.get(f"/api/tasks/{task['id']}", headers=headers).status_code == 404


class TestEventRoutes:
    """Event routes"""

    def test_process_and_reverse(self, client, headers):
        body = {"token": "tok-1", "userId": "user-1", "source": "trophe", "action": "nutrition_goal_met"}

        forward = client.post("/api/events", json=body, headers=headers)
        assert forward.status_code == 200
        assert forward.json()["xpAwarded"] == 20

        reverse = client.post("/api/events/tok-1/reverse", json={"reason": "mistake"}, headers=headers)
        assert reverse.status_code == 200
        assert reverse.json()["originalToken"] == "tok-1"

        again = client.post("/api/events/tok-1/reverse", headers=headers)
        assert again.status_code == 409
        assert again.json()["errorCode"] == "ERR_REVERSAL_FAILED"

    def test_user_mismatch(self, client, headers):
        body = {"token": "tok-1", "userId": "user-2", "source": "trophe", "action": "nutrition_goal_met"}

        assert client.post("/api/events", json=body, headers=headers).status_code == 403

    def test_unknown_action(self, client, headers):
        body = {"token": "tok-1", "userId": "user-1", "source": "trophe", "action": "ate_salad"}

        response = client.post("/api/events", json=body, headers=headers)

        assert response.status_code == 400
        assert response.json()["errorCode"] == "ERR_VALIDATION"

    def test_reverse_unknown(self, client, headers):
        response = client.post("/api/events/missing/reverse", headers=headers)

        assert response.status_code == 404

    def test_stats(self, client, headers):
        body = {"token": "tok-1", "userId": "user-1", "source": "trophe", "action": "nutrition_goal_met"}
        client.post("/api/events", json=body, headers=headers)

        response = client.get("/api/events/stats", headers=headers)

        assert response.json()["net_xp"] == 20


class TestProgressRoutes:
    """Progress, weight and achievement routes"""

    def test_progress_created_on_read(self, client, headers):
        response = client.get("/api/progress", headers=headers)

        assert response.status_code == 200
        assert response.json()["level"] == 1
        assert response.json()["xp_to_next_level"] == 100

    def test_history(self, client, headers):
        response = client.get("/api/progress/history", headers=headers)

        assert response.status_code == 200
        assert response.json()[0]["source"] == "account_creation"

    def test_weight(self, client, headers):
        logged = client.post("/api/progress/weight", json={"value": 82.5, "unit": "kg"}, headers=headers)
        assert logged.status_code == 200
        assert logged.json()["xpAwarded"] == 5

        entries = client.get("/api/progress/weight", headers=headers).json()
        assert entries[0]["value"] == 82.5

        deleted = client.delete(f"/api/progress/weight/{entries[0]['id']}", headers=headers)
        assert deleted.status_code == 204
        assert client.delete(f"/api/progress/weight/{entries[0]['id']}", headers=headers).status_code == 404

    def test_achievements(self, client, headers):
        response = client.get("/api/achievements", headers=headers)

        assert response.status_code == 200
        assert any(a["id"] == "streak_7" and a["requires_claim"] for a in response.json())

    def test_claim_unknown_achievement(self, client, headers):
        response = client.post("/api/achievements/nope/claim", headers=headers)

        assert response.status_code == 404
