"""HTTP surface, exercised with FastAPI's TestClient."""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from schedule_agent import routes
from schedule_agent.agent.intent_router import KeywordIntentSource
from schedule_agent.agent.response_agent import EMPTY_INPUT_MESSAGE, NO_EVENTS_MESSAGE
from schedule_agent.agent.scheduler import Scheduler
from schedule_agent.app import app
from schedule_agent.config import API_BASE
from schedule_agent.state import LocalCalendarBackend


@pytest.fixture
def client():
    routes.reset_sessions()
    routes._shared["backend"] = LocalCalendarBackend()
    routes._shared["intent_source"] = KeywordIntentSource(timezone_name="Asia/Tokyo")
    yield TestClient(app)
    routes.reset_sessions()


def turn(client, text, session_id="s1"):
    return client.post(f"{API_BASE}/agent/turn",
                       json={"input_as_text": text, "session_id": session_id})


class TestAgentTurn:

    def test_follow_up_question(self, client):
        resp = turn(client, 'add "Lunch"')
        assert resp.status_code == 200
        body = resp.json()
        assert body["session_id"] == "s1"
        assert body["state"] == "needs_info"
        assert body["reply"] == "Could you tell me the event's start time?"

    def test_list_empty(self, client):
        body = turn(client, "show today's events").json()
        assert body["state"] == "executed"
        assert body["reply"] == NO_EVENTS_MESSAGE

    def test_blank_input(self, client):
        body = turn(client, "   ").json()
        assert body["reply"] == EMPTY_INPUT_MESSAGE
        assert body["state"] is None

    def test_default_session(self, client):
        body = client.post(f"{API_BASE}/agent/turn", json={"input_as_text": "hello"}).json()
        assert body["session_id"] == "default"

    def test_unexpected_failure_is_502(self, client):
        with patch.object(Scheduler, "run_turn", side_effect=RuntimeError("boom")):
            resp = turn(client, "hello")
        assert resp.status_code == 502
        assert "boom" in resp.json()["detail"]


class TestHistory:

    def test_history_and_clear(self, client):
        turn(client, "show today's events")
        turn(client, "show today's events", session_id="other")

        body = client.get(f"{API_BASE}/agent/history", params={"session_id": "s1"}).json()
        assert body["total_turns"] == 2
        assert body["by_role"]["user"] == 1
        assert [t["role"] for t in body["turns"]] == ["user", "assistant"]

        log = client.get(f"{API_BASE}/agent/history/log", params={"session_id": "s1"})
        assert "User: show today's events" in log.text

        summary = client.get(f"{API_BASE}/agent/history/summary", params={"session_id": "s1"})
        assert "Total turns: 2" in summary.text

        resp = client.delete(f"{API_BASE}/agent/history", params={"session_id": "s1"})
        assert resp.json() == {"ok": True, "session_id": "s1"}
        assert client.get(f"{API_BASE}/agent/history",
                          params={"session_id": "s1"}).json()["total_turns"] == 0
        assert client.get(f"{API_BASE}/agent/history",
                          params={"session_id": "other"}).json()["total_turns"] == 2


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}
