"""
LivenessSweeper - background keep-alive and eviction for call sessions.

Every ``interval`` seconds the sweeper pushes a ``keep_alive`` frame to
each session that has a live connection (keeps proxies from closing idle
sockets) and evicts sessions whose ``last_ping`` is older than
``stale_after`` unless they are ``connected``: an active call is never
dropped on a timer.

It also owns the grace-period evictions scheduled when a socket closes.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

import structlog

from callrelay.relay import protocol
from callrelay.session.models import CallSession, CallStatus, utcnow
from callrelay.session.store import SessionStore

logger = structlog.get_logger("sweeper")


@dataclass
class SweepReport:
    """Outcome of one sweep pass."""
    kept_alive: List[str] = field(default_factory=list)
    evicted: List[str] = field(default_factory=list)
    send_failures: List[str] = field(default_factory=list)


class LivenessSweeper:
    """
    Periodic task over the session store.

    Args:
        store: Session store to sweep.
        interval: Seconds between sweeps.
        stale_after: Maximum age of ``last_ping`` for a non-connected session.
        grace_period: Seconds a session without a connection is kept for reconnection.
        clock: Returns the current aware datetime (overridable in tests).
    """

    def __init__(
        self,
        store: SessionStore,
        interval: float = 20.0,
        stale_after: float = 60.0,
        grace_period: float = 30.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.interval = interval
        self.stale_after = timedelta(seconds=stale_after)
        self.grace_period = grace_period
        self._clock = clock
        self._task: Optional[asyncio.Task] = None
        self._pending_evictions: Dict[str, asyncio.Task] = {}

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ------------------------------------------------------------------
    # Periodic sweep
    # ------------------------------------------------------------------

    async def sweep_once(self, now: Optional[datetime] = None) -> SweepReport:
        """Run one keep-alive/eviction pass over a snapshot of the store."""
        now = now or self._clock()
        report = SweepReport()

        for session in self.store.sessions():
            connection = session.connection
            if connection is not None and getattr(connection, "is_open", False):
                try:
                    sent = await connection.send(protocol.keep_alive())
                except Exception as e:
                    sent = False
                    logger.warning(
                        "keep_alive_send_failed",
                        session_id=session.session_id,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                if sent:
                    report.kept_alive.append(session.session_id)
                else:
                    report.send_failures.append(session.session_id)

            if self._is_stale(session, now) and self._evict(session, reason="stale"):
                report.evicted.append(session.session_id)

        if report.evicted or report.send_failures:
            logger.info(
                "sweep_completed",
                kept_alive=len(report.kept_alive),
                evicted=len(report.evicted),
                send_failures=len(report.send_failures),
                active_sessions=len(self.store),
            )
        return report

    def _is_stale(self, session: CallSession, now: datetime) -> bool:
        if session.status == CallStatus.CONNECTED:
            return False
        return now - session.last_ping > self.stale_after

    def _evict(self, session: CallSession, reason: str) -> bool:
        # The id may have been deleted and reused while we awaited a send
        if self.store.get(session.session_id) is not session:
            return False
        self.store.delete(session.session_id)
        self.cancel_eviction(session.session_id)
        logger.info(
            "session_evicted",
            session_id=session.session_id,
            reason=reason,
            status=session.status.value,
            last_ping=session.last_ping.isoformat(),
        )
        return True

    async def _run(self) -> None:
        try:
            while True:
                await asyncio.sleep(self.interval)
                try:
                    await self.sweep_once()
                except Exception as e:
                    logger.error("sweep_failed", error=str(e), error_type=type(e).__name__)
        except asyncio.CancelledError:
            logger.debug("sweeper_cancelled")
            raise

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.info(
            "sweeper_started",
            interval=self.interval,
            stale_after=self.stale_after.total_seconds(),
            grace_period=self.grace_period,
        )

    async def stop(self) -> None:
        """Cancel the periodic task and every pending grace-period eviction."""
        tasks = list(self._pending_evictions.values())
        self._pending_evictions.clear()
        if self._task is not None:
            tasks.append(self._task)
            self._task = None
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("sweeper_stopped", cancelled_tasks=len(tasks))

    # ------------------------------------------------------------------
    # Grace-period evictions
    # ------------------------------------------------------------------

    def schedule_eviction(self, session: CallSession) -> None:
        """Evict ``session`` after the grace period unless it is reclaimed or connected."""
        self.cancel_eviction(session.session_id)
        task = asyncio.create_task(self._evict_after_grace(session))
        self._pending_evictions[session.session_id] = task
        task.add_done_callback(lambda t, sid=session.session_id: self._forget(sid, t))
        logger.debug(
            "eviction_scheduled",
            session_id=session.session_id,
            grace_period=self.grace_period,
        )

    def cancel_eviction(self, session_id: str) -> None:
        task = self._pending_evictions.pop(session_id, None)
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            logger.debug("eviction_cancelled", session_id=session_id)

    def pending_evictions(self) -> List[str]:
        return list(self._pending_evictions)

    def _forget(self, session_id: str, task: asyncio.Task) -> None:
        if self._pending_evictions.get(session_id) is task:
            del self._pending_evictions[session_id]

    async def _evict_after_grace(self, session: CallSession) -> None:
        await asyncio.sleep(self.grace_period)
        if session.connection is not None:
            return
        if session.status == CallStatus.CONNECTED:
            logger.info("grace_expired_call_still_connected", session_id=session.session_id)
            return
        self._evict(session, reason="grace_period_expired")
