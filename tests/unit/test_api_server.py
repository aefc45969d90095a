"""
Unit tests for the FastAPI server (callrelay/web/server.py).

Covers the /ws/call relay end to end and every REST endpoint, using
FastAPI TestClient against an app built with a fresh store, in-memory
storage and a disabled notifier.
"""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from callrelay.notifications.manager import NotificationManager
from callrelay.notifications.models import EmailConfig, NotificationConfig
from callrelay.session.models import CallStatus
from callrelay.session.store import SessionStore
from callrelay.storage.base import InMemoryStorage, StorageError
from callrelay.web.server import create_app


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def app_store():
    return SessionStore()


@pytest.fixture
def client(relay_settings, app_store, memory_storage, disabled_notifier):
    app = create_app(
        settings=relay_settings,
        store=app_store,
        storage=memory_storage,
        notifier=disabled_notifier,
    )
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c


def _enabled_notifier(tmp_path):
    return NotificationManager(
        config_path=str(tmp_path / "notifications.yaml"),
        config=NotificationConfig(email=EmailConfig(enabled=True, to_address="ops@example.com")),
    )


def _notify_body(**overrides):
    body = {
        "transcript": "[USER]: hi\n[ASSISTANT]: hello",
        "callStartTime": "2026-03-01T12:00:00Z",
        "callEndTime": "2026-03-01T12:01:05Z",
        "duration": "65",
        "browserInfo": "Chrome on Desktop",
    }
    body.update(overrides)
    return body


# ---------------------------------------------------------------------------
# WebSocket /ws/call
# ---------------------------------------------------------------------------


class TestCallRelaySocket:

    def test_full_call_scenario(self, client, app_store):
        with client.websocket_connect("/ws/call") as ws:
            ws.send_json({"type": "start_session"})
            created = ws.receive_json()
            assert created["type"] == "session_created"
            session_id = created["sessionId"]
            assert session_id

            ws.send_json({"type": "call_start"})
            assert ws.receive_json() == {"type": "status_update", "status": "connecting"}

            ws.send_json({"type": "call_connected"})
            assert ws.receive_json() == {"type": "status_update", "status": "connected"}

            ws.send_json({"type": "transcript", "role": "user", "content": "hi"})
            update = ws.receive_json()
            assert update["type"] == "transcript_update"
            assert len(update["transcript"]) == 1
            assert update["transcript"][0]["role"] == "user"
            assert update["transcript"][0]["content"] == "hi"

            ws.send_json({"type": "call_end"})
            ended = ws.receive_json()
            assert ended["type"] == "status_update"
            assert ended["status"] == "ended"
            assert ended["duration"] >= 0

        assert app_store.get(session_id).status == CallStatus.ENDED

    def test_reconnect_restores_state(self, client, app_store):
        with client.websocket_connect("/ws/call") as ws:
            ws.send_json({"type": "start_session", "sessionId": None})
            session_id = ws.receive_json()["sessionId"]
            ws.send_json({"type": "call_start"})
            ws.receive_json()
            ws.send_json({"type": "transcript", "role": "assistant", "content": "hello"})
            ws.receive_json()

        with client.websocket_connect("/ws/call") as ws:
            ws.send_json({"type": "start_session", "sessionId": session_id})
            restored = ws.receive_json()

        assert restored["type"] == "session_restored"
        assert restored["sessionId"] == session_id
        assert restored["status"] == "connecting"
        assert restored["duration"] == 0
        assert [e["content"] for e in restored["transcript"]] == ["hello"]

    def test_malformed_frame_keeps_connection(self, client):
        with client.websocket_connect("/ws/call") as ws:
            ws.send_text("this is not json")
            ws.send_json({"type": "nonsense"})
            ws.send_json({"type": "ping"})
            assert ws.receive_json()["type"] == "pong"

    def test_binary_frames_are_parsed(self, client, app_store):
        with client.websocket_connect("/ws/call") as ws:
            ws.send_json({"type": "start_session"})
            session_id = ws.receive_json()["sessionId"]

            ws.send_bytes(b'{"type": "ping"}')
            assert ws.receive_json()["type"] == "pong"
            ws.send_json({"type": "ping"})
            assert ws.receive_json()["type"] == "pong"

            assert app_store.get(session_id).connection is not None

    def test_undecodable_binary_frame_keeps_connection(self, client):
        with client.websocket_connect("/ws/call") as ws:
            ws.send_bytes(b"\xff\xfe\x00garbage")
            ws.send_json({"type": "ping"})
            assert ws.receive_json()["type"] == "pong"

    def test_get_session_from_another_socket(self, client):
        with client.websocket_connect("/ws/call") as owner:
            owner.send_json({"type": "start_session"})
            session_id = owner.receive_json()["sessionId"]

            with client.websocket_connect("/ws/call") as viewer:
                viewer.send_json({"type": "get_session", "sessionId": session_id})
                data = viewer.receive_json()
                viewer.send_json({"type": "get_session", "sessionId": "missing"})
                missing = viewer.receive_json()

        assert data["type"] == "session_data"
        assert data["session"]["id"] == session_id
        assert data["session"]["status"] == "idle"
        assert missing == {"type": "session_not_found", "sessionId": "missing"}

    def test_session_kept_after_disconnect(self, client, app_store):
        with client.websocket_connect("/ws/call") as ws:
            ws.send_json({"type": "start_session"})
            session_id = ws.receive_json()["sessionId"]

        # Grace period is 30s in the test settings
        assert app_store.get(session_id) is not None


# ---------------------------------------------------------------------------
# Call logs
# ---------------------------------------------------------------------------


class TestCallLogs:

    def test_create_call_log(self, client):
        resp = client.post(
            "/api/calls",
            json={"duration": 42, "status": "completed", "endedAt": "2026-03-01T12:00:42Z"},
        )
        assert resp.status_code == 201
        data = resp.json()
        assert data["duration"] == 42
        assert data["status"] == "completed"
        assert data["id"]
        assert "startedAt" in data
        assert "endedAt" in data

    def test_create_invalid_call_log(self, client):
        resp = client.post("/api/calls", json={"duration": "long"})
        assert resp.status_code == 400
        body = resp.json()
        assert body["error"] == "Invalid call log data"
        assert isinstance(body["details"], list)
        assert body["details"]

    def test_create_negative_duration_rejected(self, client):
        resp = client.post("/api/calls", json={"duration": -1, "status": "completed"})
        assert resp.status_code == 400

    def test_create_with_non_json_body(self, client):
        resp = client.post("/api/calls", content=b"{oops", headers={"Content-Type": "application/json"})
        assert resp.status_code == 400

    def test_list_and_get(self, client):
        first = client.post("/api/calls", json={"duration": 1, "status": "completed"}).json()
        client.post("/api/calls", json={"duration": 2, "status": "completed"})

        listed = client.get("/api/calls").json()
        assert len(listed) == 2

        resp = client.get(f"/api/calls/{first['id']}")
        assert resp.status_code == 200
        assert resp.json()["duration"] == 1

    def test_get_missing(self, client):
        resp = client.get("/api/calls/does-not-exist")
        assert resp.status_code == 404
        assert resp.json() == {"error": "Call log not found"}

    def test_patch(self, client):
        created = client.post("/api/calls", json={"duration": 5, "status": "completed"}).json()
        resp = client.patch(
            f"/api/calls/{created['id']}",
            json={"recordingUrl": "https://example.com/r.mp3", "status": "reviewed"},
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["recordingUrl"] == "https://example.com/r.mp3"
        assert data["status"] == "reviewed"
        assert data["duration"] == 5

    def test_patch_missing(self, client):
        resp = client.patch("/api/calls/nope", json={"status": "x"})
        assert resp.status_code == 404

    def test_storage_failure_returns_500(self, relay_settings, disabled_notifier):
        class BrokenStorage(InMemoryStorage):
            async def get_call_logs(self):
                raise StorageError("db down")

        app = create_app(relay_settings, SessionStore(), BrokenStorage(), disabled_notifier)
        with TestClient(app) as c:
            resp = c.get("/api/calls")
        assert resp.status_code == 500
        assert resp.json() == {"error": "Failed to fetch call logs"}


class TestStats:

    def test_empty_stats(self, client):
        data = client.get("/api/stats").json()
        assert data == {
            "totalCalls": 0,
            "avgDuration": 0,
            "totalDuration": 0,
            "completedCalls": 0,
            "totalLeads": 0,
            "leadCaptureRate": 0,
        }

    def test_stats_with_calls_and_leads(self, client):
        client.post("/api/calls", json={"duration": 10, "status": "completed"})
        client.post("/api/calls", json={"duration": 21, "status": "completed"})
        client.post("/api/calls", json={"duration": 0, "status": "missed"})
        client.post("/api/leads", json={"name": "Ada"})

        data = client.get("/api/stats").json()
        assert data["totalCalls"] == 3
        assert data["totalDuration"] == 31
        assert data["avgDuration"] == 10
        assert data["completedCalls"] == 2
        assert data["totalLeads"] == 1
        assert data["leadCaptureRate"] == 33


# ---------------------------------------------------------------------------
# Leads
# ---------------------------------------------------------------------------


class TestLeads:

    def test_create_and_get_lead(self, client):
        resp = client.post(
            "/api/leads",
            json={"name": "Ada", "email": "ada@example.com", "extractedData": {"budget": "10k"}},
        )
        assert resp.status_code == 201
        lead = resp.json()
        assert lead["extractedData"] == {"budget": "10k"}

        fetched = client.get(f"/api/leads/{lead['id']}")
        assert fetched.status_code == 200
        assert fetched.json()["email"] == "ada@example.com"
        assert len(client.get("/api/leads").json()) == 1

    def test_invalid_email_rejected(self, client):
        resp = client.post("/api/leads", json={"email": "not-an-email"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "Invalid lead data"

    def test_missing_lead(self, client):
        resp = client.get("/api/leads/nope")
        assert resp.status_code == 404
        assert resp.json() == {"error": "Lead not found"}


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


class TestNotify:

    def test_blank_transcript_rejected(self, client):
        resp = client.post("/api/notify", json=_notify_body(transcript="   "))
        assert resp.status_code == 400
        assert resp.json() == {"error": "No transcript provided"}

    def test_missing_transcript_rejected(self, client):
        body = _notify_body()
        del body["transcript"]
        resp = client.post("/api/notify", json=body)
        assert resp.status_code == 400

    def test_disabled_email_is_not_an_error(self, client):
        resp = client.post("/api/notify", json=_notify_body())
        assert resp.status_code == 200
        assert resp.json()["success"] is False

    def test_invalid_times_rejected(self, client):
        resp = client.post("/api/notify", json=_notify_body(callStartTime="yesterday"))
        assert resp.status_code == 400
        assert resp.json()["error"] == "Invalid notification data"

    def test_sent(self, relay_settings, tmp_path):
        notifier = _enabled_notifier(tmp_path)
        app = create_app(relay_settings, SessionStore(), InMemoryStorage(), notifier)
        with patch.object(NotificationManager, "_send_email") as send:
            with TestClient(app) as c:
                resp = c.post("/api/notify", json=_notify_body())

        assert resp.status_code == 200
        assert resp.json()["success"] is True
        send.assert_called_once()
        assert send.call_args.kwargs["to_address"] == "ops@example.com"

    def test_send_failure_returns_500(self, relay_settings, tmp_path):
        notifier = _enabled_notifier(tmp_path)
        app = create_app(relay_settings, SessionStore(), InMemoryStorage(), notifier)
        with patch.object(NotificationManager, "_send_email", side_effect=OSError("smtp down")):
            with TestClient(app) as c:
                resp = c.post("/api/notify", json=_notify_body())

        assert resp.status_code == 500
        assert resp.json() == {"error": "Failed to send notification"}


# ---------------------------------------------------------------------------
# Health and lifecycle
# ---------------------------------------------------------------------------


class TestLifecycle:

    def test_health(self, client):
        data = client.get("/api/health").json()
        assert data["status"] == "ok"
        assert data["active_sessions"] == 0
        assert data["sweeper_running"] is True

    def test_security_headers(self, client):
        resp = client.get("/api/health")
        assert resp.headers["X-Frame-Options"] == "DENY"
        assert resp.headers["X-Request-ID"]

    def test_sweeper_stopped_on_shutdown(self, relay_settings, disabled_notifier):
        app = create_app(relay_settings, SessionStore(), InMemoryStorage(), disabled_notifier)
        with TestClient(app):
            assert app.state.sweeper.running
        assert not app.state.sweeper.running
