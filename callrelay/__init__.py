"""
callrelay - call-session relay for the voice support widget.

A browser (or any client built on ``callrelay.client``) opens a voice call
with a third-party speech engine and mirrors the call lifecycle over the
``/ws/call`` WebSocket, so call state and transcript survive short network
drops. The same server process exposes the REST collaborators used at call
end (call logs, leads, transcript notification).
"""

__version__ = "1.0.0"
