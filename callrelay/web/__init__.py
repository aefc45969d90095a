"""HTTP and WebSocket surface of the relay."""

from callrelay.web.server import create_app

__all__ = ["create_app"]
