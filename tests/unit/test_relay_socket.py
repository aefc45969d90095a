"""
Unit tests for RelaySocket (client side of /ws/call).

A fake connector stands in for ``websockets.connect``: each open yields
an in-memory socket the test can push frames into or drop.
"""

import asyncio
import json
from contextlib import asynccontextmanager

import pytest
from websockets.exceptions import InvalidURI

from callrelay.client.socket import RelaySocket, relay_ws_url


class FakeServerSocket:
    def __init__(self):
        self.sent = []
        self._incoming = asyncio.Queue()

    async def send(self, data):
        self.sent.append(json.loads(data))

    def push(self, message):
        self._incoming.put_nowait(message if isinstance(message, str) else json.dumps(message))

    def drop(self):
        self._incoming.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._incoming.get()
        if item is None:
            raise StopAsyncIteration
        return item


class FakeConnector:
    def __init__(self, failures=0):
        self.failures = failures
        self.sockets = []
        self.attempts = 0

    def __call__(self, url):
        self.attempts += 1
        return self._open()

    @asynccontextmanager
    async def _open(self):
        if self.failures:
            self.failures -= 1
            raise OSError("connection refused")
        ws = FakeServerSocket()
        self.sockets.append(ws)
        yield ws


async def wait_for(predicate, timeout=1.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture
def make_socket():
    created = []

    def _make(connector, **kwargs):
        kwargs.setdefault("reconnect_interval", 0.01)
        kwargs.setdefault("ping_interval", 10)
        sock = RelaySocket("ws://relay.test/ws/call", connect=connector, **kwargs)
        created.append(sock)
        return sock

    return _make


class TestRelayWsUrl:

    @pytest.mark.parametrize("base,expected", [
        ("http://localhost:8000", "ws://localhost:8000/ws/call"),
        ("https://relay.example.com/", "wss://relay.example.com/ws/call"),
        ("ws://already", "ws://already/ws/call"),
        ("http://localhost:8000/relay/", "ws://localhost:8000/relay/ws/call"),
    ])
    def test_conversion(self, base, expected):
        assert relay_ws_url(base) == expected


class TestRelaySocket:

    @pytest.mark.asyncio
    async def test_announces_null_session_on_first_open(self, connector, make_socket):
        sock = make_socket(connector)
        sock.start()
        await wait_for(lambda: connector.sockets and connector.sockets[0].sent)

        assert connector.sockets[0].sent[0] == {"type": "start_session", "sessionId": None}
        assert sock.is_open
        await sock.close()

    @pytest.mark.asyncio
    async def test_records_session_and_resumes_after_drop(self, connector, make_socket):
        sock = make_socket(connector)
        sock.start()
        await wait_for(lambda: connector.sockets)
        connector.sockets[0].push({"type": "session_created", "sessionId": "s-1"})
        await wait_for(lambda: sock.session_id == "s-1")

        connector.sockets[0].drop()
        await wait_for(lambda: len(connector.sockets) == 2 and connector.sockets[1].sent)

        assert connector.sockets[1].sent[0] == {"type": "start_session", "sessionId": "s-1"}
        assert sock.connect_count == 2
        await sock.close()

    @pytest.mark.asyncio
    async def test_session_restored_updates_id(self, connector, make_socket):
        sock = make_socket(connector)
        sock.session_id = "old"
        sock.start()
        await wait_for(lambda: connector.sockets)
        connector.sockets[0].push({"type": "session_restored", "sessionId": "old", "status": "idle"})
        connector.sockets[0].push({"type": "session_created", "sessionId": "new"})
        await wait_for(lambda: sock.session_id == "new")
        await sock.close()

    @pytest.mark.asyncio
    async def test_retries_forever_on_connect_failure(self, make_socket):
        connector = FakeConnector(failures=5)
        sock = make_socket(connector)
        sock.start()
        await wait_for(lambda: connector.sockets, timeout=2.0)

        assert connector.attempts == 6
        await sock.close()

    @pytest.mark.asyncio
    async def test_websocket_exception_triggers_reconnect(self, make_socket):
        calls = []

        @asynccontextmanager
        async def flaky(url):
            calls.append(url)
            if len(calls) == 1:
                raise InvalidURI(url, "bad")
            yield FakeServerSocket()

        sock = make_socket(flaky)
        sock.start()
        await wait_for(lambda: sock.is_open)
        assert len(calls) == 2
        await sock.close()

    @pytest.mark.asyncio
    async def test_pings_while_open(self, connector, make_socket):
        sock = make_socket(connector, ping_interval=0.01)
        sock.start()
        await wait_for(lambda: connector.sockets and len(connector.sockets[0].sent) >= 3)
        assert {m["type"] for m in connector.sockets[0].sent[1:]} == {"ping"}
        await sock.close()

    @pytest.mark.asyncio
    async def test_send_when_open(self, connector, make_socket):
        sock = make_socket(connector)
        sock.start()
        await wait_for(lambda: sock.is_open)

        assert await sock.send("transcript", role="user", content="hi") is True
        assert connector.sockets[0].sent[-1] == {"type": "transcript", "role": "user", "content": "hi"}
        await sock.close()

    @pytest.mark.asyncio
    async def test_send_when_closed_is_dropped(self, connector, make_socket):
        sock = make_socket(connector)
        assert await sock.send("call_start") is False

    @pytest.mark.asyncio
    async def test_listeners_receive_frames_and_bad_frames_ignored(self, connector, make_socket):
        received = []
        sock = make_socket(connector)
        sock.add_listener(received.append)
        sock.start()
        await wait_for(lambda: connector.sockets)

        connector.sockets[0].push("{broken")
        connector.sockets[0].push({"type": "keep_alive", "timestamp": 1})
        await wait_for(lambda: received)

        assert received == [{"type": "keep_alive", "timestamp": 1}]
        await sock.close()

    @pytest.mark.asyncio
    async def test_close_stops_reconnecting(self, connector, make_socket):
        sock = make_socket(connector)
        sock.start()
        await wait_for(lambda: sock.is_open)
        await sock.close()
        attempts = connector.attempts

        await asyncio.sleep(0.05)
        assert connector.attempts == attempts
        assert not sock.is_open
