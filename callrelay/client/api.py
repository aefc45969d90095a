"""
HTTP client for the relay's REST side effects at call end.

Both calls are best-effort: failures are logged and reported as False,
they never raise into the call flow.
"""

import platform
from datetime import datetime
from typing import Iterable, Optional

import httpx
import structlog

from callrelay.session.models import TranscriptEntry, utcnow

logger = structlog.get_logger("client")


def default_client_info() -> str:
    return f"Python {platform.python_version()} on {platform.system() or 'Unknown'}"


def format_transcript(entries: Iterable[TranscriptEntry]) -> str:
    """One ``[ROLE]: content`` line per entry."""
    return "\n".join(f"[{entry.role.value.upper()}]: {entry.content}" for entry in entries)


class RelayApiClient:
    """
    Thin async wrapper over ``POST /api/notify`` and ``POST /api/calls``.

    Args:
        base_url: Relay server URL, e.g. ``http://localhost:8000``.
        timeout: Request timeout in seconds.
        transport: Optional httpx transport (``httpx.MockTransport`` in tests).
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def send_transcript_notification(
        self,
        transcript: Iterable[TranscriptEntry],
        call_start_time: datetime,
        call_end_time: datetime,
        duration: int,
        browser_info: Optional[str] = None,
    ) -> bool:
        text = format_transcript(transcript)
        if not text.strip():
            logger.info("transcript_notification_skipped", reason="empty_transcript")
            return False

        payload = {
            "transcript": text,
            "callStartTime": call_start_time.isoformat(),
            "callEndTime": call_end_time.isoformat(),
            "duration": str(duration),
            "browserInfo": browser_info or default_client_info(),
        }
        return await self._post("/api/notify", payload, event="transcript_notification")

    async def log_call(
        self,
        duration: int,
        status: str = "completed",
        ended_at: Optional[datetime] = None,
    ) -> bool:
        payload = {
            "duration": duration,
            "status": status,
            "endedAt": (ended_at or utcnow()).isoformat(),
        }
        return await self._post("/api/calls", payload, event="call_log")

    async def _post(self, path: str, payload: dict, event: str) -> bool:
        try:
            response = await self._client.post(path, json=payload)
        except httpx.HTTPError as e:
            logger.error(f"{event}_failed", path=path, error=str(e), error_type=type(e).__name__)
            return False

        if not response.is_success:
            logger.error(
                f"{event}_rejected",
                path=path,
                status_code=response.status_code,
                body=response.text[:500],
            )
            return False

        logger.info(f"{event}_sent", path=path)
        return True
