"""
Live connection wrapper used as the owner of a CallSession.

Sends are best-effort: a frame for a socket that is not open is dropped,
and a failing send is logged and reported as False. Nothing is queued;
the transcript kept in the session is the durable fallback.
"""

import itertools
import json
from typing import Any, Dict

import structlog
from starlette.websockets import WebSocket, WebSocketDisconnect, WebSocketState

logger = structlog.get_logger("relay")

_connection_ids = itertools.count(1)


class WebSocketConnection:
    """Wraps a Starlette WebSocket accepted on ``/ws/call``."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket
        self.connection_id = next(_connection_ids)
        self._closed = False

    @property
    def is_open(self) -> bool:
        if self._closed:
            return False
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    def mark_closed(self) -> None:
        self._closed = True

    async def send(self, message: Dict[str, Any]) -> bool:
        if not self.is_open:
            logger.debug(
                "send_skipped_not_open",
                connection_id=self.connection_id,
                message_type=message.get("type"),
            )
            return False
        try:
            await self.websocket.send_text(json.dumps(message, ensure_ascii=False))
            return True
        except (WebSocketDisconnect, RuntimeError, OSError) as e:
            self._closed = True
            logger.debug(
                "send_failed",
                connection_id=self.connection_id,
                message_type=message.get("type"),
                error=str(e),
            )
            return False

    def __repr__(self) -> str:
        return f"WebSocketConnection(id={self.connection_id}, open={self.is_open})"
