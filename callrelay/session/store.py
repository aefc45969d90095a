"""
SessionStore - in-memory owner of all call sessions.

Every read and lifetime change of a session goes through the store.
Mutation happens in place on the CallSession returned by ``get``; the
store does not serialize or persist anything, a process restart loses
all sessions. Durable records are written to the call-log repository
by the client when a call ends.
"""

import uuid
from typing import Dict, Iterator, List, Optional

import structlog

from callrelay.session.models import CallSession

logger = structlog.get_logger("session")


class SessionStore:
    """
    Maps session identifiers to CallSession records.

    Store operations never await, so within one event loop each of them
    is atomic with respect to the protocol handlers and the sweeper.
    """

    def __init__(self) -> None:
        self._sessions: Dict[str, CallSession] = {}

    def create(self) -> CallSession:
        """Allocate a fresh identifier and register an idle session."""
        session_id = str(uuid.uuid4())
        while session_id in self._sessions:
            logger.warning("session_id_collision", session_id=session_id)
            session_id = str(uuid.uuid4())

        session = CallSession(session_id=session_id)
        self._sessions[session_id] = session
        logger.info("session_created", session_id=session_id, active_sessions=len(self._sessions))
        return session

    def get(self, session_id: Optional[str]) -> Optional[CallSession]:
        if not session_id:
            return None
        return self._sessions.get(session_id)

    def delete(self, session_id: str) -> None:
        """Remove a session; unknown ids are ignored."""
        session = self._sessions.pop(session_id, None)
        if session is not None:
            logger.info(
                "session_deleted",
                session_id=session_id,
                status=session.status.value,
                active_sessions=len(self._sessions),
            )

    def sessions(self) -> List[CallSession]:
        """Snapshot of current sessions, safe to iterate across awaits."""
        return list(self._sessions.values())

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __iter__(self) -> Iterator[CallSession]:
        return iter(self.sessions())
