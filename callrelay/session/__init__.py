"""
Call session state for the relay.

Usage:
    from callrelay.session import SessionStore, CallStatus

    store = SessionStore()
    session = store.create()
    session.start_call()
    print(session.session_id, session.status)
"""

from callrelay.session.models import CallSession, CallStatus, TranscriptEntry, TranscriptRole
from callrelay.session.store import SessionStore

__all__ = [
    "SessionStore",
    "CallSession",
    "CallStatus",
    "TranscriptEntry",
    "TranscriptRole",
]
