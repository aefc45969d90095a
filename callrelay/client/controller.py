"""
ClientSessionController - client-side call state machine.

Bridges a voice engine to the UI and mirrors the lifecycle to the relay.
The engine's events are the source of truth for the call; the relay
socket only records what happened. Every timer (duration counter,
ringtone timeout, post-call reset) is an asyncio task owned by the
controller and cancelled on every exit path.

Usage:
    controller = ClientSessionController(engine, microphone, socket, api)
    controller.attach()
    await controller.start_call()
    ...
    await controller.close()
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, List, Optional, Set

import structlog

from callrelay.client.api import RelayApiClient
from callrelay.client.engine import (
    EVENT_CALL_END,
    EVENT_CALL_START,
    EVENT_ERROR,
    EVENT_MESSAGE,
    EVENT_VOLUME_LEVEL,
    MicrophoneAccess,
    Ringtone,
    SilentRingtone,
    VoiceEngine,
)
from callrelay.client.socket import RelaySocket
from callrelay.config import ClientSettings
from callrelay.session.models import CallStatus, TranscriptEntry, TranscriptRole, utcnow
from callrelay.session.status import is_call_active

logger = structlog.get_logger("client")


@dataclass
class ControllerState:
    """What the UI renders."""
    status: CallStatus = CallStatus.IDLE
    reached_connected: bool = False
    is_muted: bool = False
    volume_level: float = 0.0
    duration: int = 0
    transcript: List[TranscriptEntry] = field(default_factory=list)
    call_started_at: Optional[datetime] = None


@dataclass(frozen=True)
class CallSummary:
    """Snapshot taken at call end, handed to the reporting task."""
    started_at: datetime
    ended_at: datetime
    duration: int
    transcript: List[TranscriptEntry]


class ClientSessionController:
    """
    Drives one voice engine and keeps the relay informed.

    Args:
        engine: Voice SDK wrapper.
        microphone: Permission gate checked before every call.
        socket: Relay socket (started by ``attach``).
        api: REST client for notification and call-log side effects.
        ringtone: Played while the engine connects.
        settings: Client timings.
        clock: Returns the current aware datetime (overridable in tests).
    """

    def __init__(
        self,
        engine: VoiceEngine,
        microphone: MicrophoneAccess,
        socket: RelaySocket,
        api: RelayApiClient,
        ringtone: Optional[Ringtone] = None,
        settings: Optional[ClientSettings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.engine = engine
        self.microphone = microphone
        self.socket = socket
        self.api = api
        self.ringtone = ringtone or SilentRingtone()
        self.settings = settings or ClientSettings()
        self._clock = clock

        self.state = ControllerState()
        self._listeners: List[Callable[[ControllerState], Any]] = []
        self._ticker_task: Optional[asyncio.Task] = None
        self._ringtone_task: Optional[asyncio.Task] = None
        self._reset_task: Optional[asyncio.Task] = None
        self._report_tasks: Set[asyncio.Task] = set()
        self._attached = False

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    def attach(self) -> None:
        """Register engine handlers and open the relay socket."""
        if self._attached:
            return
        self.engine.on(EVENT_CALL_START, self._on_call_start)
        self.engine.on(EVENT_CALL_END, self._on_call_end)
        self.engine.on(EVENT_MESSAGE, self._on_message)
        self.engine.on(EVENT_VOLUME_LEVEL, self._on_volume_level)
        self.engine.on(EVENT_ERROR, self._on_error)
        self.socket.start()
        self._attached = True

    def subscribe(self, listener: Callable[[ControllerState], Any]) -> Callable[[], None]:
        """Call ``listener(state)`` after every state change. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _changed(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self.state)
            except Exception as e:
                logger.error("state_listener_failed", error=str(e), error_type=type(e).__name__)

    def _set_status(self, status: CallStatus) -> None:
        previous = self.state.status
        self.state.status = status
        if previous != status:
            logger.info("client_status_changed", from_status=previous.value, to_status=status.value)
        self._changed()

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def start_call(self) -> None:
        if is_call_active(self.state.status):
            logger.debug("start_call_ignored", status=self.state.status.value)
            return
        self._cancel(self._reset_task)

        try:
            await self.microphone.request_access()
        except Exception as e:
            logger.warning("microphone_access_denied", error=str(e), error_type=type(e).__name__)
            self._set_status(CallStatus.FAILED)
            return

        self.state.is_muted = False
        self.state.reached_connected = False
        self.state.duration = 0
        self.state.transcript = []
        self._set_status(CallStatus.CONNECTING)
        await self.socket.send("call_start")
        self._start_ringtone()

        try:
            await self.engine.start(self.settings.assistant_id)
        except Exception as e:
            logger.error("engine_start_failed", error=str(e), error_type=type(e).__name__)
            self._stop_ringtone()
            self._set_status(CallStatus.FAILED)

    def end_call(self) -> None:
        self._stop_ringtone()
        self.engine.stop()

    def toggle_mute(self) -> None:
        muted = not self.state.is_muted
        self.engine.set_muted(muted)
        self.state.is_muted = muted
        self._changed()

    def reset_status(self) -> None:
        """Back to idle with a clean slate (the UI's retry affordance)."""
        self._cancel(self._reset_task)
        self._reset_task = None
        self.state.duration = 0
        self.state.is_muted = False
        self.state.reached_connected = False
        self.state.transcript = []
        self.state.call_started_at = None
        self._set_status(CallStatus.IDLE)

    async def close(self) -> None:
        """Tear down every timer, the engine, the socket and the HTTP client."""
        for task in (self._ticker_task, self._ringtone_task, self._reset_task):
            self._cancel(task)
        self._ticker_task = self._ringtone_task = self._reset_task = None
        self.ringtone.stop()
        try:
            self.engine.stop()
        except Exception as e:
            logger.warning("engine_stop_failed", error=str(e))

        # Let in-flight reports finish; they are bounded by the request timeout
        if self._report_tasks:
            await asyncio.gather(*self._report_tasks, return_exceptions=True)

        await self.socket.close()
        await self.api.aclose()
        logger.info("controller_closed", status=self.state.status.value)

    # ------------------------------------------------------------------
    # Engine events
    # ------------------------------------------------------------------

    async def _on_call_start(self) -> None:
        self._stop_ringtone()
        self.state.reached_connected = True
        self.state.duration = 0
        self.state.is_muted = False
        self.state.transcript = []
        self.state.call_started_at = self._clock()
        self._cancel(self._ticker_task)
        self._ticker_task = asyncio.create_task(self._tick())
        self._set_status(CallStatus.CONNECTED)
        await self.socket.send("call_connected")

    async def _on_call_end(self) -> None:
        self._stop_ringtone()
        self._cancel(self._ticker_task)
        self._ticker_task = None

        if self.state.reached_connected:
            self._set_status(CallStatus.ENDED)
            summary = CallSummary(
                started_at=self.state.call_started_at or self._clock(),
                ended_at=self._clock(),
                duration=self.state.duration,
                transcript=list(self.state.transcript),
            )
            self._spawn_report(summary)
            self._cancel(self._reset_task)
            self._reset_task = asyncio.create_task(self._reset_later())
        else:
            # Hung up (or dropped) before the engine ever connected
            self._set_status(CallStatus.FAILED)

        await self.socket.send("call_end")

    async def _on_message(self, message: dict) -> None:
        if not isinstance(message, dict) or message.get("type") != "transcript":
            return
        try:
            role = TranscriptRole(message.get("role"))
        except ValueError:
            logger.warning("transcript_role_unknown", role=message.get("role"))
            return
        content = message.get("transcript") or ""

        self.state.transcript.append(TranscriptEntry(role=role, content=content, timestamp=self._clock()))
        self._changed()
        await self.socket.send("transcript", role=role.value, content=content)

    def _on_volume_level(self, level: float) -> None:
        self.state.volume_level = float(level)
        self._changed()

    def _on_error(self, error: BaseException) -> None:
        logger.error("engine_error", error=str(error), error_type=type(error).__name__)
        self._stop_ringtone()
        self._cancel(self._ticker_task)
        self._ticker_task = None
        self._cancel(self._reset_task)
        self._reset_task = None
        self.state.is_muted = False
        self.state.reached_connected = False
        self.state.transcript = []
        self.state.call_started_at = None
        self._set_status(CallStatus.FAILED)

    # ------------------------------------------------------------------
    # Timers and side effects
    # ------------------------------------------------------------------

    async def _tick(self) -> None:
        while True:
            await asyncio.sleep(self.settings.tick_interval)
            self.state.duration += 1
            self._changed()

    def _start_ringtone(self) -> None:
        self._stop_ringtone()
        try:
            self.ringtone.play()
        except Exception as e:
            logger.warning("ringtone_play_failed", error=str(e))
        self._ringtone_task = asyncio.create_task(self._ringtone_timeout())

    async def _ringtone_timeout(self) -> None:
        await asyncio.sleep(self.settings.ringtone_timeout)
        self._ringtone_task = None
        self.ringtone.stop()

    def _stop_ringtone(self) -> None:
        self._cancel(self._ringtone_task)
        self._ringtone_task = None
        self.ringtone.stop()

    async def _reset_later(self) -> None:
        await asyncio.sleep(self.settings.reset_delay)
        self._reset_task = None
        self.reset_status()

    def _spawn_report(self, summary: CallSummary) -> None:
        task = asyncio.create_task(self._report_call(summary))
        self._report_tasks.add(task)
        task.add_done_callback(self._report_tasks.discard)

    async def _report_call(self, summary: CallSummary) -> None:
        await self.api.send_transcript_notification(
            summary.transcript,
            call_start_time=summary.started_at,
            call_end_time=summary.ended_at,
            duration=summary.duration,
        )
        if summary.duration > 0:
            await self.api.log_call(summary.duration, status="completed", ended_at=summary.ended_at)
        else:
            logger.info("call_log_skipped", reason="zero_duration")

    @staticmethod
    def _cancel(task: Optional[asyncio.Task]) -> None:
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
