"""
Wire protocol for ``/ws/call``.

One JSON object per frame with a required ``type``. Inbound frames are
validated into pydantic models; outbound frames are plain dicts built by
the helpers at the bottom of this module. Field names on the wire are
camelCase (``sessionId``).
"""

import json
import time
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from callrelay.session.exceptions import ProtocolError
from callrelay.session.models import CallSession, CallStatus, TranscriptRole


class MessageType(str, Enum):
    """Lifecycle messages sent by the client."""
    START_SESSION = "start_session"
    CALL_START = "call_start"
    CALL_CONNECTED = "call_connected"
    CALL_END = "call_end"
    TRANSCRIPT = "transcript"
    PING = "ping"
    GET_SESSION = "get_session"


class ServerMessageType(str, Enum):
    """Frames sent by the relay."""
    SESSION_CREATED = "session_created"
    SESSION_RESTORED = "session_restored"
    STATUS_UPDATE = "status_update"
    TRANSCRIPT_UPDATE = "transcript_update"
    PONG = "pong"
    KEEP_ALIVE = "keep_alive"
    SESSION_DATA = "session_data"
    SESSION_NOT_FOUND = "session_not_found"


# ---------------------------------------------------------------------------
# Inbound messages
# ---------------------------------------------------------------------------


class _Inbound(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class StartSessionMessage(_Inbound):
    type: Literal["start_session"]
    session_id: Optional[str] = Field(default=None, alias="sessionId", max_length=128)


class CallStartMessage(_Inbound):
    type: Literal["call_start"]


class CallConnectedMessage(_Inbound):
    type: Literal["call_connected"]


class CallEndMessage(_Inbound):
    type: Literal["call_end"]


class TranscriptMessage(_Inbound):
    type: Literal["transcript"]
    role: TranscriptRole
    content: str = Field(max_length=20000)


class PingMessage(_Inbound):
    type: Literal["ping"]


class GetSessionMessage(_Inbound):
    type: Literal["get_session"]
    session_id: Optional[str] = Field(default=None, alias="sessionId", max_length=128)


InboundMessage = Annotated[
    Union[
        StartSessionMessage,
        CallStartMessage,
        CallConnectedMessage,
        CallEndMessage,
        TranscriptMessage,
        PingMessage,
        GetSessionMessage,
    ],
    Field(discriminator="type"),
]

_inbound_adapter = TypeAdapter(InboundMessage)
_KNOWN_TYPES = {t.value for t in MessageType}


def parse_message(raw: Union[str, bytes]) -> InboundMessage:
    """
    Decode one frame into a lifecycle message.

    Raises:
        ProtocolError: If the frame is not a JSON object with a known
            ``type`` and valid fields.
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise ProtocolError(f"Malformed JSON: {e}") from e

    if not isinstance(data, dict):
        raise ProtocolError("Frame must be a JSON object")

    message_type = data.get("type")
    if message_type not in _KNOWN_TYPES:
        raise ProtocolError(f"Unknown message type: {message_type!r}")

    try:
        return _inbound_adapter.validate_python(data)
    except ValidationError as e:
        raise ProtocolError(f"Invalid {message_type} message: {e.error_count()} error(s)") from e


# ---------------------------------------------------------------------------
# Outbound frames
# ---------------------------------------------------------------------------


def now_ms() -> int:
    return int(time.time() * 1000)


def session_created(session_id: str) -> Dict[str, Any]:
    return {"type": ServerMessageType.SESSION_CREATED.value, "sessionId": session_id}


def session_restored(session: CallSession) -> Dict[str, Any]:
    return {
        "type": ServerMessageType.SESSION_RESTORED.value,
        "sessionId": session.session_id,
        **session.public_state(),
    }


def status_update(status: CallStatus, duration: Optional[int] = None) -> Dict[str, Any]:
    frame: Dict[str, Any] = {"type": ServerMessageType.STATUS_UPDATE.value, "status": status.value}
    if duration is not None:
        frame["duration"] = duration
    return frame


def transcript_update(transcript: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {"type": ServerMessageType.TRANSCRIPT_UPDATE.value, "transcript": transcript}


def pong(timestamp: Optional[int] = None) -> Dict[str, Any]:
    return {"type": ServerMessageType.PONG.value, "timestamp": timestamp if timestamp is not None else now_ms()}


def keep_alive(timestamp: Optional[int] = None) -> Dict[str, Any]:
    return {"type": ServerMessageType.KEEP_ALIVE.value, "timestamp": timestamp if timestamp is not None else now_ms()}


def session_data(session: CallSession) -> Dict[str, Any]:
    return {
        "type": ServerMessageType.SESSION_DATA.value,
        "session": {"id": session.session_id, **session.public_state()},
    }


def session_not_found(session_id: str) -> Dict[str, Any]:
    return {"type": ServerMessageType.SESSION_NOT_FOUND.value, "sessionId": session_id}
