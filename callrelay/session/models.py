"""
Pydantic models for call sessions.

CallSession holds the server-side state of one call attempt: lifecycle
status, timestamps, transcript and the live connection that currently
owns it. Sessions live only in memory (see SessionStore).
"""

import math
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CallStatus(str, Enum):
    """Call lifecycle status, shared by the relay and the client controller."""
    IDLE = "idle"                # No call yet (or session just created)
    CONNECTING = "connecting"    # Call requested, engine not connected yet
    CONNECTED = "connected"      # Engine reported call start
    ENDED = "ended"              # Call finished after being connected
    FAILED = "failed"            # Attempt never connected (client-side only)


class TranscriptRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class TranscriptEntry(BaseModel):
    """One utterance, stamped with the server time it was received."""

    role: TranscriptRole
    content: str
    timestamp: datetime = Field(default_factory=utcnow)


class CallSession(BaseModel):
    """
    Represents one call attempt tracked by the relay.

    The session is mutated in place by the protocol handler bound to its
    connection and read by the liveness sweeper. ``connection`` is the
    live socket wrapper that owns the session, or None while the client
    is between reconnect attempts.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    session_id: str = Field(..., description="Server-generated UUID, held by the client for resumption")
    status: CallStatus = Field(default=CallStatus.IDLE)
    start_time: Optional[datetime] = Field(default=None, description="Set by call_start")
    end_time: Optional[datetime] = Field(default=None, description="Set by call_end")
    duration: int = Field(default=0, description="Whole seconds, computed at call_end")
    transcript: List[TranscriptEntry] = Field(default_factory=list)
    connection: Optional[Any] = Field(default=None, exclude=True)
    last_ping: datetime = Field(default_factory=utcnow)
    reconnect_attempts: int = Field(default=0, description="Disconnects since the last successful resume")
    created_at: datetime = Field(default_factory=utcnow)
    disconnected_at: Optional[datetime] = Field(default=None)

    # ------------------------------------------------------------------
    # Connection ownership
    # ------------------------------------------------------------------

    @property
    def has_live_connection(self) -> bool:
        return self.connection is not None and bool(getattr(self.connection, "is_open", False))

    def attach(self, connection: Any, now: Optional[datetime] = None) -> None:
        """Make ``connection`` the single owner of this session."""
        self.connection = connection
        self.disconnected_at = None
        self.last_ping = now or utcnow()

    def detach(self, connection: Any, now: Optional[datetime] = None) -> bool:
        """Drop ``connection`` if it still owns the session.

        Returns False when another connection has already claimed the
        session; the newer owner is left untouched.
        """
        if self.connection is not connection:
            return False
        self.connection = None
        self.disconnected_at = now or utcnow()
        self.reconnect_attempts += 1
        return True

    def touch(self, now: Optional[datetime] = None) -> None:
        self.last_ping = now or utcnow()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start_call(self, now: Optional[datetime] = None) -> None:
        self.status = CallStatus.CONNECTING
        self.start_time = now or utcnow()
        # A new cycle on a reused session must not report the previous call's length
        self.end_time = None
        self.duration = 0

    def mark_connected(self) -> None:
        self.status = CallStatus.CONNECTED

    def end_call(self, now: Optional[datetime] = None) -> int:
        """Mark the call ended and derive its duration from the timestamps."""
        self.status = CallStatus.ENDED
        self.end_time = now or utcnow()
        if self.start_time is not None:
            elapsed = (self.end_time - self.start_time).total_seconds()
            self.duration = max(0, math.floor(elapsed))
        return self.duration

    def append_transcript(
        self, role: TranscriptRole, content: str, now: Optional[datetime] = None
    ) -> TranscriptEntry:
        entry = TranscriptEntry(role=role, content=content, timestamp=now or utcnow())
        self.transcript.append(entry)
        return entry

    # ------------------------------------------------------------------
    # Wire views
    # ------------------------------------------------------------------

    def transcript_payload(self) -> List[Dict[str, Any]]:
        return [entry.model_dump(mode="json") for entry in self.transcript]

    def public_state(self) -> Dict[str, Any]:
        """Status, duration and transcript as sent to clients."""
        return {
            "status": self.status.value,
            "duration": self.duration,
            "transcript": self.transcript_payload(),
        }
