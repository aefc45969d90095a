"""
RelaySocket - the client's persistent connection to ``/ws/call``.

The socket is a side channel: it mirrors the call lifecycle to the relay
so the server-side session survives page reloads and network drops. It
never carries call control. On every open it announces the session id
it holds (None the first time), records whatever id the relay answers
with, and pings on a fixed interval. When the connection drops it
reconnects after a fixed delay, with no attempt cap, until ``close``.
"""

import asyncio
import json
from typing import Any, Callable, List, Optional

import httpx
import structlog
import websockets
from websockets.exceptions import WebSocketException

logger = structlog.get_logger("client")

_SESSION_FRAMES = ("session_created", "session_restored")

_WS_SCHEMES = {"http": "ws", "https": "wss"}


def relay_ws_url(base_url: str) -> str:
    """``http(s)://host[:port]`` → ``ws(s)://host[:port]/ws/call``."""
    url = httpx.URL(base_url)
    return str(url.copy_with(
        scheme=_WS_SCHEMES.get(url.scheme, url.scheme),
        path=url.path.rstrip("/") + "/ws/call",
    ))


class RelaySocket:
    """
    Reconnecting WebSocket client for the call relay.

    Args:
        url: WebSocket URL of the relay endpoint.
        reconnect_interval: Fixed delay in seconds before each reconnect.
        ping_interval: Seconds between ``ping`` frames while open.
        connect: Factory returning an async context manager that yields a
            connection; defaults to ``websockets.connect``.
    """

    def __init__(
        self,
        url: str,
        reconnect_interval: float = 3.0,
        ping_interval: float = 20.0,
        connect: Optional[Callable[[str], Any]] = None,
    ):
        self.url = url
        self.reconnect_interval = reconnect_interval
        self.ping_interval = ping_interval
        self._connect = connect or websockets.connect

        self.session_id: Optional[str] = None
        self.connect_count = 0
        self._ws = None
        self._task: Optional[asyncio.Task] = None
        self._closed = False
        self._listeners: List[Callable[[dict], Any]] = []

    @property
    def is_open(self) -> bool:
        return self._ws is not None

    def add_listener(self, listener: Callable[[dict], Any]) -> None:
        """Register a callback for every decoded server frame."""
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._closed = False
        self._task = asyncio.create_task(self._run())

    async def close(self) -> None:
        """Stop reconnecting and close the current connection."""
        self._closed = True
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._ws = None
        logger.info("relay_socket_closed", session_id=self.session_id)

    async def _run(self) -> None:
        while not self._closed:
            try:
                async with self._connect(self.url) as ws:
                    await self._serve(ws)
            except asyncio.CancelledError:
                raise
            except (OSError, WebSocketException) as e:
                logger.warning(
                    "relay_socket_error",
                    url=self.url,
                    error=str(e),
                    error_type=type(e).__name__,
                )
            finally:
                self._ws = None

            if self._closed:
                break
            logger.info("relay_socket_reconnect_scheduled", delay=self.reconnect_interval)
            await asyncio.sleep(self.reconnect_interval)

    async def _serve(self, ws) -> None:
        self._ws = ws
        self.connect_count += 1
        logger.info(
            "relay_socket_opened",
            url=self.url,
            session_id=self.session_id,
            connect_count=self.connect_count,
        )
        await ws.send(json.dumps({"type": "start_session", "sessionId": self.session_id}))

        ping_task = asyncio.create_task(self._ping_loop(ws))
        try:
            async for raw in ws:
                self._on_frame(raw)
        finally:
            ping_task.cancel()
            try:
                await ping_task
            except asyncio.CancelledError:
                pass
        logger.info("relay_socket_disconnected", session_id=self.session_id)

    async def _ping_loop(self, ws) -> None:
        while True:
            await asyncio.sleep(self.ping_interval)
            try:
                await ws.send(json.dumps({"type": "ping"}))
            except (OSError, WebSocketException) as e:
                logger.debug("relay_ping_failed", error=str(e))
                return

    def _on_frame(self, raw) -> None:
        try:
            message = json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.warning("relay_frame_malformed", error=str(e))
            return
        if not isinstance(message, dict):
            logger.warning("relay_frame_malformed", error="not an object")
            return

        if message.get("type") in _SESSION_FRAMES and message.get("sessionId"):
            if message["sessionId"] != self.session_id:
                logger.info(
                    "relay_session_bound",
                    frame=message["type"],
                    session_id=message["sessionId"],
                    previous_session_id=self.session_id,
                )
            self.session_id = message["sessionId"]

        for listener in list(self._listeners):
            try:
                listener(message)
            except Exception as e:
                logger.error("relay_listener_failed", error=str(e), error_type=type(e).__name__)

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    async def send(self, message_type: str, **payload: Any) -> bool:
        """Send ``{"type": message_type, **payload}`` if open; dropped otherwise."""
        ws = self._ws
        if ws is None:
            logger.debug("relay_send_skipped_not_open", message_type=message_type)
            return False
        try:
            await ws.send(json.dumps({"type": message_type, **payload}, ensure_ascii=False))
            return True
        except (OSError, WebSocketException) as e:
            logger.debug("relay_send_failed", message_type=message_type, error=str(e))
            return False
