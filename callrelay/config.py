"""
Settings for the relay server and the relay client.

Values come from environment variables (a ``.env`` file is loaded first
when present). Every field has a default so the server starts with no
configuration at all: sessions in memory, call logs in memory, email off.
"""

import os
from typing import Optional

import structlog
from dotenv import load_dotenv
from pydantic import BaseModel, Field

logger = structlog.get_logger("config")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("invalid_env_value", name=name, value=raw, fallback=default)
        return default


class RelaySettings(BaseModel):
    """Server-side settings: relay timings, storage, notifications."""

    keep_alive_interval: float = Field(default=20.0, gt=0, description="Sweeper period in seconds")
    session_timeout: float = Field(default=60.0, gt=0, description="Staleness threshold for last_ping, seconds")
    reconnect_grace_period: float = Field(default=30.0, ge=0, description="Seconds a disconnected session is kept")
    database_url: str = Field(default="", description="SQLAlchemy URL; empty keeps call logs in memory")
    notifications_config: str = Field(default="config/notifications.yaml")
    log_level: str = Field(default="INFO")
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)

    @classmethod
    def from_env(cls) -> "RelaySettings":
        load_dotenv()
        settings = cls(
            keep_alive_interval=_env_float("RELAY_KEEP_ALIVE_INTERVAL", 20.0),
            session_timeout=_env_float("RELAY_SESSION_TIMEOUT", 60.0),
            reconnect_grace_period=_env_float("RELAY_RECONNECT_GRACE_PERIOD", 30.0),
            database_url=os.getenv("DATABASE_URL", ""),
            notifications_config=os.getenv("NOTIFICATIONS_CONFIG", "config/notifications.yaml"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(_env_float("PORT", 8000)),
        )
        logger.info(
            "relay_settings_loaded",
            keep_alive_interval=settings.keep_alive_interval,
            session_timeout=settings.session_timeout,
            grace_period=settings.reconnect_grace_period,
            storage="database" if settings.database_url else "memory",
        )
        return settings


class ClientSettings(BaseModel):
    """Client-side timings for the session controller and relay socket."""

    base_url: str = Field(default="http://localhost:8000")
    assistant_id: Optional[str] = Field(default=None)
    reconnect_interval: float = Field(default=3.0, gt=0)
    ping_interval: float = Field(default=20.0, gt=0)
    ringtone_timeout: float = Field(default=3.0, ge=0)
    reset_delay: float = Field(default=2.5, ge=0, description="How long 'ended' stays visible before idle")
    tick_interval: float = Field(default=1.0, gt=0, description="Duration counter period")
    request_timeout: float = Field(default=10.0, gt=0)

    @classmethod
    def from_env(cls) -> "ClientSettings":
        load_dotenv()
        return cls(
            base_url=os.getenv("RELAY_BASE_URL", "http://localhost:8000"),
            assistant_id=os.getenv("VOICE_ASSISTANT_ID") or None,
            reconnect_interval=_env_float("RELAY_CLIENT_RECONNECT_INTERVAL", 3.0),
            ping_interval=_env_float("RELAY_CLIENT_PING_INTERVAL", 20.0),
        )
