"""
Call status state machine.

The relay mirrors what the client reports, so these transitions describe
the expected lifecycle rather than a gate: the protocol handler logs an
unexpected transition and still applies it.
"""

from typing import Set

from .models import CallStatus
from .exceptions import InvalidTransitionError


# Expected transitions from each status
ALLOWED_TRANSITIONS: dict[CallStatus, Set[CallStatus]] = {
    CallStatus.IDLE: {
        CallStatus.CONNECTING,
    },
    CallStatus.CONNECTING: {
        CallStatus.CONNECTING,  # retry after an attempt the client abandoned
        CallStatus.CONNECTED,
        CallStatus.ENDED,       # hung up before the engine connected
        CallStatus.FAILED,
    },
    CallStatus.CONNECTED: {
        CallStatus.ENDED,
        CallStatus.FAILED,
    },
    # A new call on the same session starts a fresh cycle
    CallStatus.ENDED: {
        CallStatus.CONNECTING,
    },
    CallStatus.FAILED: {
        CallStatus.CONNECTING,
    },
}


def validate_transition(from_status: CallStatus, to_status: CallStatus) -> None:
    """
    Validate that a status transition is part of the call lifecycle.

    Args:
        from_status: Current status
        to_status: Target status

    Raises:
        InvalidTransitionError: If the transition is not expected
    """
    allowed = ALLOWED_TRANSITIONS.get(from_status, set())
    if to_status not in allowed:
        raise InvalidTransitionError(
            f"Invalid transition: {from_status.value} → {to_status.value}"
        )


def is_call_active(status: CallStatus) -> bool:
    """True while a call is being set up or is in progress."""
    return status in (CallStatus.CONNECTING, CallStatus.CONNECTED)
