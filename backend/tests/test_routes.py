"""
HTTP tests for the coach and intervention endpoints.
"""

import pytest
from fastapi.testclient import TestClient

from auth import create_token
from database import get_db
from errors import GENERIC_ERROR_MESSAGE
from main import app
from models.intervention import Intervention
from routes.coach_routes import get_coach_service
from routes.intervention_routes import get_intervention_service, get_risk_engine
from services.chat_service import CoachService
from services.intervention_service import InterventionService
from services.proactive_service import RiskEngine
from fakes import ScriptedProvider, make_chain, text_reply

AUTH = {"Authorization": f"Bearer {create_token({'user_id': 1})}"}
CRON = {"X-Cron-Secret": "cron-test-secret"}


class BrokenChain:
    async def complete(self, *args, **kwargs):
        raise RuntimeError("chain unavailable")


@pytest.fixture
def provider():
    return ScriptedProvider("primary", [text_reply("Hello from your coach")])


@pytest.fixture
def client(db, user, provider):
    chain = make_chain(provider)
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_coach_service] = lambda: CoachService(db, chain=chain)
    app.dependency_overrides[get_risk_engine] = lambda: RiskEngine(db, chain=chain)
    app.dependency_overrides[get_intervention_service] = lambda: InterventionService(db, chain=chain)
    yield TestClient(app)
    app.dependency_overrides.clear()


def open_intervention(client):
    return client.get("/api/v1/interventions/check", headers=AUTH).json()["intervention"]


class TestAuth:
    def test_missing_token(self, client):
        response = client.post("/api/v1/coach/chat", json={"message": "hi"})
        assert response.status_code == 401

    def test_bad_token(self, client):
        response = client.post("/api/v1/coach/chat", json={"message": "hi"}, headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    def test_subject_claim(self, client):
        headers = {"Authorization": f"Bearer {create_token({'sub': '1'})}"}
        assert client.get("/api/v1/coach/conversations", headers=headers).status_code == 200

    def test_expired_token(self, client):
        headers = {"Authorization": f"Bearer {create_token({'user_id': 1}, expires_hours=-1)}"}
        assert client.get("/api/v1/interventions/check", headers=headers).status_code == 401


class TestHealth:
    def test_health_check(self, client):
        body = client.get("/api/v1/health-check").json()
        assert body["status"] == "ok"
        assert isinstance(body["providers"], list)


class TestChatRoutes:
    def test_chat(self, client):
        response = client.post("/api/v1/coach/chat", json={"message": "hello there"}, headers=AUTH)

        assert response.status_code == 200
        body = response.json()
        assert body["content"] == "Hello from your coach"
        assert body["role"] == "assistant"
        assert body["lane"] == "chat"
        assert set(body["metrics"]) == {"tool_iterations", "read_tools", "write_tools", "crisis_detected", "autonomy_score"}

    def test_empty_message(self, client):
        response = client.post("/api/v1/coach/chat", json={"message": "  "}, headers=AUTH)
        assert response.status_code == 400

    def test_unknown_conversation(self, client):
        response = client.post("/api/v1/coach/chat", json={"message": "hi", "conversation_id": 999}, headers=AUTH)
        assert response.status_code == 404

    def test_crisis_with_unknown_conversation_gets_resources(self, client):
        response = client.post("/api/v1/coach/chat", json={"message": "I want to kill myself", "conversation_id": 999}, headers=AUTH)

        assert response.status_code == 200
        body = response.json()
        assert "988" in body["content"]
        assert "741741" in body["content"]
        assert body["conversation_id"] is None
        assert body["metrics"]["crisis_detected"] is True

    def test_internal_error_is_generic(self, client, db):
        app.dependency_overrides[get_coach_service] = lambda: CoachService(db, chain=BrokenChain())
        response = client.post("/api/v1/coach/chat", json={"message": "hello there"}, headers=AUTH)

        assert response.status_code == 500
        assert response.json()["detail"] == GENERIC_ERROR_MESSAGE

    def test_conversation_listing_and_messages(self, client):
        conversation_id = client.post("/api/v1/coach/chat", json={"message": "hello there"}, headers=AUTH).json()["conversation_id"]

        listing = client.get("/api/v1/coach/conversations", headers=AUTH).json()
        messages = client.get(f"/api/v1/coach/conversations/{conversation_id}/messages", headers=AUTH).json()

        assert listing["status"] == "success"
        assert listing["data"][0]["id"] == conversation_id
        assert [m["role"] for m in messages["data"]] == ["user", "assistant"]

    def test_delete_conversation(self, client):
        conversation_id = client.post("/api/v1/coach/chat", json={"message": "hello there"}, headers=AUTH).json()["conversation_id"]

        assert client.delete(f"/api/v1/coach/conversations/{conversation_id}", headers=AUTH).status_code == 200
        assert client.delete(f"/api/v1/coach/conversations/{conversation_id}", headers=AUTH).status_code == 404


class TestInterventionRoutes:
    def test_check_creates_then_returns_existing(self, client):
        first = client.get("/api/v1/interventions/check", headers=AUTH).json()
        second = client.get("/api/v1/interventions/check", headers=AUTH).json()

        assert first["needs_intervention"] is True
        assert first["is_existing"] is False
        assert first["intervention"]["message"] == "Hello from your coach"
        assert second["is_existing"] is True
        assert second["intervention"]["id"] == first["intervention"]["id"]

    def test_acknowledge(self, client, db):
        intervention = open_intervention(client)
        response = client.post(
            f"/api/v1/interventions/{intervention['id']}/acknowledge",
            json={"action_taken": "talk_to_coach", "was_helpful": True},
            headers=AUTH,
        )

        assert response.status_code == 200
        row = db.get(Intervention, intervention["id"])
        db.refresh(row)
        assert row.was_acknowledged is True
        assert row.action_taken == "talk_to_coach"

    def test_dismiss(self, client, db):
        intervention = open_intervention(client)
        response = client.post(f"/api/v1/interventions/{intervention['id']}/dismiss", headers=AUTH)

        assert response.status_code == 200
        row = db.get(Intervention, intervention["id"])
        db.refresh(row)
        assert row.action_taken == "dismissed"

    def test_acknowledge_unknown(self, client):
        response = client.post("/api/v1/interventions/999/acknowledge", json={}, headers=AUTH)
        assert response.status_code == 404

    def test_sweep_requires_secret(self, client):
        assert client.post("/api/v1/interventions/sweep").status_code == 401
        assert client.post("/api/v1/interventions/sweep", headers={"X-Cron-Secret": "wrong"}).status_code == 401

    def test_sweep(self, client):
        response = client.post("/api/v1/interventions/sweep", headers=CRON)

        assert response.status_code == 200
        assert response.json() == {"success": True, "processed": 1, "interventions": 1, "skipped": 0, "cooldown_skipped": 0}
