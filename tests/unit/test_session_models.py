"""
Unit tests for CallSession and TranscriptEntry.
"""

from datetime import datetime, timedelta, timezone

import pytest

from callrelay.session.models import CallSession, CallStatus, TranscriptEntry, TranscriptRole

T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def _session(**overrides):
    return CallSession(session_id="s-1", **overrides)


class TestDefaults:

    def test_new_session_is_idle(self):
        session = _session()
        assert session.status == CallStatus.IDLE
        assert session.duration == 0
        assert session.transcript == []
        assert session.connection is None
        assert session.start_time is None
        assert session.reconnect_attempts == 0

    def test_connection_not_serialized(self):
        session = _session()
        session.attach(object(), T0)
        assert "connection" not in session.model_dump()


class TestConnectionOwnership:

    def test_attach_sets_owner_and_touches(self):
        session = _session()
        conn = object()
        session.attach(conn, T0)
        assert session.connection is conn
        assert session.last_ping == T0
        assert session.disconnected_at is None

    def test_detach_by_owner(self):
        session = _session()
        conn = object()
        session.attach(conn, T0)
        assert session.detach(conn, T0 + timedelta(seconds=5)) is True
        assert session.connection is None
        assert session.disconnected_at == T0 + timedelta(seconds=5)
        assert session.reconnect_attempts == 1

    def test_detach_by_stale_connection_is_ignored(self):
        session = _session()
        old, new = object(), object()
        session.attach(old, T0)
        session.attach(new, T0)
        assert session.detach(old, T0) is False
        assert session.connection is new
        assert session.reconnect_attempts == 0

    def test_has_live_connection(self):
        class Conn:
            is_open = True
        session = _session()
        assert not session.has_live_connection
        conn = Conn()
        session.attach(conn, T0)
        assert session.has_live_connection
        conn.is_open = False
        assert not session.has_live_connection


class TestLifecycle:

    def test_duration_is_floor_of_seconds(self):
        session = _session()
        session.start_call(T0)
        session.mark_connected()
        duration = session.end_call(T0 + timedelta(seconds=12, milliseconds=999))
        assert duration == 12
        assert session.duration == 12
        assert session.status == CallStatus.ENDED

    def test_end_without_start_keeps_zero_duration(self):
        session = _session()
        assert session.end_call(T0) == 0
        assert session.end_time == T0

    def test_duration_never_negative(self):
        session = _session()
        session.start_call(T0)
        assert session.end_call(T0 - timedelta(seconds=3)) == 0

    def test_new_cycle_resets_previous_call(self):
        session = _session()
        session.start_call(T0)
        session.end_call(T0 + timedelta(seconds=30))
        session.start_call(T0 + timedelta(seconds=60))
        assert session.status == CallStatus.CONNECTING
        assert session.end_time is None
        assert session.duration == 0

    def test_transcript_kept_across_cycles(self):
        session = _session()
        session.append_transcript(TranscriptRole.USER, "first", T0)
        session.start_call(T0)
        assert len(session.transcript) == 1


class TestWireViews:

    def test_transcript_payload_is_json_ready(self):
        session = _session()
        session.append_transcript(TranscriptRole.USER, "hi", T0)
        session.append_transcript(TranscriptRole.ASSISTANT, "hello", T0)
        payload = session.transcript_payload()
        assert [e["role"] for e in payload] == ["user", "assistant"]
        assert [e["content"] for e in payload] == ["hi", "hello"]
        assert isinstance(payload[0]["timestamp"], str)

    def test_public_state(self):
        session = _session()
        state = session.public_state()
        assert state == {"status": "idle", "duration": 0, "transcript": []}

    def test_transcript_entry_rejects_unknown_role(self):
        with pytest.raises(ValueError):
            TranscriptEntry(role="system", content="x")
