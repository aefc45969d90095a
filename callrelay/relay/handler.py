"""
SessionProtocolHandler - per-connection dispatcher for ``/ws/call``.

One handler is bound to each accepted socket. ``start_session`` binds it
to a new or existing CallSession; the lifecycle verbs then mutate that
session and broadcast the result to whichever connection currently owns
it. Each verb finishes its session mutation before the first await, so
concurrent handlers and the sweeper never observe a half-applied change.
"""

from datetime import datetime
from typing import Callable, Optional

import structlog

from callrelay.relay import protocol
from callrelay.relay.protocol import (
    CallConnectedMessage,
    CallEndMessage,
    CallStartMessage,
    GetSessionMessage,
    InboundMessage,
    MessageType,
    PingMessage,
    StartSessionMessage,
    TranscriptMessage,
)
from callrelay.session.exceptions import InvalidTransitionError, ProtocolError
from callrelay.session.models import CallSession, CallStatus, utcnow
from callrelay.session.status import validate_transition
from callrelay.session.store import SessionStore

logger = structlog.get_logger("relay")


class SessionProtocolHandler:
    """
    Implements the reconnect/lifecycle protocol for one connection.

    Args:
        store: Session store shared by all connections.
        connection: Socket wrapper exposing ``is_open`` and ``async send(dict)``.
        sweeper: Optional LivenessSweeper; receives grace-period evictions
            when the socket closes and cancellations when a session resumes.
        clock: Returns the current aware datetime (overridable in tests).
    """

    def __init__(
        self,
        store: SessionStore,
        connection,
        sweeper=None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.connection = connection
        self.sweeper = sweeper
        self._clock = clock
        self.session_id: Optional[str] = None

        self._dispatch = {
            MessageType.START_SESSION.value: self._on_start_session,
            MessageType.CALL_START.value: self._on_call_start,
            MessageType.CALL_CONNECTED.value: self._on_call_connected,
            MessageType.CALL_END.value: self._on_call_end,
            MessageType.TRANSCRIPT.value: self._on_transcript,
            MessageType.PING.value: self._on_ping,
            MessageType.GET_SESSION.value: self._on_get_session,
        }

    @property
    def session(self) -> Optional[CallSession]:
        return self.store.get(self.session_id)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def handle_raw(self, raw) -> None:
        """Parse a frame and dispatch it. Bad frames are logged and dropped."""
        try:
            message = protocol.parse_message(raw)
        except ProtocolError as e:
            logger.warning(
                "malformed_message_dropped",
                session_id=self.session_id,
                error=str(e),
            )
            return
        await self.handle(message)

    async def handle(self, message: InboundMessage) -> None:
        await self._dispatch[message.type](message)

    def on_close(self) -> None:
        """Release the session; it stays in the store for the grace period."""
        mark_closed = getattr(self.connection, "mark_closed", None)
        if mark_closed is not None:
            mark_closed()

        session = self.session
        if session is None:
            logger.debug("connection_closed_unbound", session_id=self.session_id)
            return
        if self._release(session):
            logger.info(
                "session_connection_lost",
                session_id=session.session_id,
                status=session.status.value,
                reconnect_attempts=session.reconnect_attempts,
            )
        else:
            logger.debug("stale_connection_closed", session_id=session.session_id)

    # ------------------------------------------------------------------
    # Verbs
    # ------------------------------------------------------------------

    async def _on_start_session(self, message: StartSessionMessage) -> None:
        now = self._clock()
        existing = self.store.get(message.session_id)

        # A socket re-announcing itself under a different id gives up its old session
        current = self.session
        if current is not None and current is not existing:
            self._release(current)

        if existing is not None:
            existing.attach(self.connection, now)
            existing.reconnect_attempts = 0
            self.session_id = existing.session_id
            if self.sweeper is not None:
                self.sweeper.cancel_eviction(existing.session_id)
            logger.info(
                "session_restored",
                session_id=existing.session_id,
                status=existing.status.value,
                transcript_entries=len(existing.transcript),
            )
            await self.connection.send(protocol.session_restored(existing))
            return

        if message.session_id:
            logger.info("session_unknown_creating_new", requested_session_id=message.session_id)

        session = self.store.create()
        session.attach(self.connection, now)
        self.session_id = session.session_id
        await self.connection.send(protocol.session_created(session.session_id))

    async def _on_call_start(self, message: CallStartMessage) -> None:
        session = self._bound_session(message.type)
        if session is None:
            return
        self._check_transition(session, CallStatus.CONNECTING)
        session.start_call(self._clock())
        logger.info("call_starting", session_id=session.session_id)
        await self._broadcast(session, protocol.status_update(CallStatus.CONNECTING))

    async def _on_call_connected(self, message: CallConnectedMessage) -> None:
        session = self._bound_session(message.type)
        if session is None:
            return
        self._check_transition(session, CallStatus.CONNECTED)
        session.mark_connected()
        logger.info("call_connected", session_id=session.session_id)
        await self._broadcast(session, protocol.status_update(CallStatus.CONNECTED))

    async def _on_call_end(self, message: CallEndMessage) -> None:
        session = self._bound_session(message.type)
        if session is None:
            return
        self._check_transition(session, CallStatus.ENDED)
        duration = session.end_call(self._clock())
        logger.info(
            "call_ended",
            session_id=session.session_id,
            duration=duration,
            transcript_entries=len(session.transcript),
        )
        await self._broadcast(session, protocol.status_update(CallStatus.ENDED, duration=duration))

    async def _on_transcript(self, message: TranscriptMessage) -> None:
        session = self._bound_session(message.type)
        if session is None:
            return
        session.append_transcript(message.role, message.content, self._clock())
        payload = session.transcript_payload()
        logger.debug(
            "transcript_appended",
            session_id=session.session_id,
            role=message.role.value,
            entries=len(payload),
        )
        await self._broadcast(session, protocol.transcript_update(payload))

    async def _on_ping(self, message: PingMessage) -> None:
        session = self.session
        if session is not None and session.connection is self.connection:
            session.touch(self._clock())
        await self.connection.send(protocol.pong())

    async def _on_get_session(self, message: GetSessionMessage) -> None:
        if not message.session_id:
            logger.debug("get_session_without_id")
            return
        target = self.store.get(message.session_id)
        if target is None:
            await self.connection.send(protocol.session_not_found(message.session_id))
            return
        await self.connection.send(protocol.session_data(target))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _bound_session(self, verb: str) -> Optional[CallSession]:
        session = self.session
        if session is None:
            logger.debug("message_ignored_unbound", verb=verb, session_id=self.session_id)
            return None
        if session.connection is not self.connection:
            # Another socket resumed this session; this one lost ownership
            logger.debug("message_ignored_not_owner", verb=verb, session_id=session.session_id)
            return None
        return session

    def _check_transition(self, session: CallSession, target: CallStatus) -> None:
        try:
            validate_transition(session.status, target)
        except InvalidTransitionError as e:
            # The client drives the call; record the anomaly and follow it
            logger.warning(
                "unexpected_transition",
                session_id=session.session_id,
                error=str(e),
            )

    def _release(self, session: CallSession) -> bool:
        if not session.detach(self.connection, self._clock()):
            return False
        if self.sweeper is not None:
            self.sweeper.schedule_eviction(session)
        return True

    async def _broadcast(self, session: CallSession, message: dict) -> None:
        owner = session.connection
        if owner is None:
            logger.debug(
                "broadcast_dropped_no_connection",
                session_id=session.session_id,
                message_type=message.get("type"),
            )
            return
        await owner.send(message)
