"""
Call-session relay: ``/ws/call`` protocol handling and liveness sweeping.

Usage:
    from callrelay.relay import SessionProtocolHandler, LivenessSweeper

    sweeper = LivenessSweeper(store, interval=20, stale_after=60, grace_period=30)
    handler = SessionProtocolHandler(store, connection, sweeper=sweeper)
    await handler.handle_raw('{"type": "start_session"}')
"""

from callrelay.relay.connection import WebSocketConnection
from callrelay.relay.handler import SessionProtocolHandler
from callrelay.relay.sweeper import LivenessSweeper, SweepReport

__all__ = [
    "SessionProtocolHandler",
    "LivenessSweeper",
    "SweepReport",
    "WebSocketConnection",
]
