import asyncio

import pytest
from fastapi.testclient import TestClient

from fakes import FakeAlerts, FakeLocator, FakeNotifier, FakeTracker, MemoryStore
from mummyhelp import api
from mummyhelp.alerts import EscalationDispatcher
from mummyhelp.commands import CommandRegistry
from mummyhelp.session import VoiceSession
from mummyhelp.settings import SettingsStore
from mummyhelp.trigger import HitAccumulator


@pytest.fixture
def client():
    locator = FakeLocator()
    notifier = FakeNotifier()
    dispatcher = EscalationDispatcher(FakeAlerts(), locator, notifier, FakeTracker())
    session = VoiceSession(
        SettingsStore(MemoryStore()),
        HitAccumulator(),
        CommandRegistry(dispatcher, locator, notifier),
        dispatcher,
    )

    async def start():
        await session.initialize()
        await session.start_listening()

    asyncio.run(start())
    api.set_session(session)
    yield TestClient(api.app)
    api.set_session(None)


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["listening"] is True


def test_text_escalates_after_repeated_wake_phrase(client):
    for _ in range(2):
        response = client.post("/text", json={"text": "mummy help"})
        assert response.json()["results"][0]["type"] == "single_hit"

    response = client.post("/text", json={"text": "mummy help"})
    result = response.json()["results"][0]

    assert result["type"] == "emergency_sent"
    assert result["data"]["alert_id"] == "alert-1"


def test_text_rejected_when_not_listening(client):
    assert client.post("/listening/stop").json() == {"changed": True, "listening": False}

    response = client.post("/text", json={"text": "mummy help"})

    assert response.status_code == 409


def test_empty_text_is_invalid(client):
    assert client.post("/text", json={"text": ""}).status_code == 422


def test_process_command_reports_no_match(client):
    response = client.post("/commands/process", json={"text": "xyzzy"})

    assert response.status_code == 200
    assert response.json()["type"] == "no_match"
    assert response.json()["input"] == "xyzzy"


def test_list_commands(client):
    phrases = [entry["phrase"] for entry in client.get("/commands").json()]

    assert phrases[0] == "emergency"
    assert "share location" in phrases


def test_emergency_confirm_and_cancel(client):
    confirmed = client.post("/emergency/confirm").json()
    assert confirmed["type"] == "emergency_confirmed"

    cancelled = client.post("/emergency/cancel").json()
    assert cancelled["type"] == "emergency_cancelled"


def test_reset_hits(client):
    client.post("/text", json={"text": "mummy help"})

    response = client.post("/hits/reset")

    assert response.json()["count"] == 0


def test_settings_roundtrip(client):
    assert client.get("/settings").json()["hit_threshold"] == 3

    response = client.patch("/settings", json={"hit_threshold": 2})
    assert response.status_code == 200
    assert response.json()["hit_threshold"] == 2
    assert client.get("/status").json()["trigger"]["settings"]["required_hits"] == 2

    assert client.patch("/settings", json={"hotkey": "fn"}).status_code == 400


def test_simulate_then_cancel_alert(client):
    results = client.post("/hits/simulate").json()["results"]
    assert [result["type"] for result in results] == ["emergency_sent"]
    assert client.get("/status").json()["alert"]["has_active_alert"] is True

    assert client.post("/alert/cancel").json() == {"cancelled": True}
    assert client.post("/alert/cancel").json() == {"cancelled": False}


def test_command_help_and_reset(client):
    assert '"emergency" - Triggers emergency alert' in client.get("/commands/help").json()

    status = client.post("/reset").json()
    assert status["alert"]["is_processing"] is False
    assert status["settings"]["wake_phrases_count"] == 3


def test_missing_session_returns_503():
    api.set_session(None)

    assert TestClient(api.app).get("/status").status_code == 503
