"""
Shared fixtures for call relay tests
"""

import sys
import os
from datetime import datetime, timedelta, timezone

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from callrelay.config import RelaySettings
from callrelay.notifications.models import NotificationConfig
from callrelay.notifications.manager import NotificationManager
from callrelay.session.store import SessionStore
from callrelay.storage.base import InMemoryStorage


# ============ FAKES ============

class FakeConnection:
    """Stands in for WebSocketConnection; records every frame sent."""

    def __init__(self, is_open=True, fail_sends=False):
        self.is_open = is_open
        self.fail_sends = fail_sends
        self.sent = []
        self.closed = False

    async def send(self, message):
        if self.fail_sends:
            raise ConnectionResetError("peer went away")
        if not self.is_open:
            return False
        self.sent.append(message)
        return True

    def mark_closed(self):
        self.closed = True
        self.is_open = False

    def types(self):
        return [m["type"] for m in self.sent]

    def last(self, message_type):
        for message in reversed(self.sent):
            if message["type"] == message_type:
                return message
        return None


class FakeClock:
    """Manually advanced clock returning aware datetimes."""

    def __init__(self, start=None):
        self.now = start or datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


# ============ FIXTURES ============

@pytest.fixture
def store():
    return SessionStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def connection():
    return FakeConnection()


@pytest.fixture
def make_connection():
    def _make(**kwargs):
        return FakeConnection(**kwargs)
    return _make


@pytest.fixture
def relay_settings():
    return RelaySettings(
        keep_alive_interval=3600,
        session_timeout=60,
        reconnect_grace_period=30,
    )


@pytest.fixture
def disabled_notifier(tmp_path):
    return NotificationManager(
        config_path=str(tmp_path / "notifications.yaml"),
        config=NotificationConfig(),
    )


@pytest.fixture
def memory_storage():
    return InMemoryStorage()
