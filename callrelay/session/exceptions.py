"""
Custom exceptions for call sessions and the relay protocol.
"""


class InvalidTransitionError(ValueError):
    """
    Raised when a call status change is outside the lifecycle table.

    Example:
        >>> from callrelay.session.models import CallStatus
        >>> from callrelay.session.status import validate_transition
        >>> validate_transition(CallStatus.IDLE, CallStatus.ENDED)
        InvalidTransitionError: Invalid transition: idle → ended
    """
    pass


class ProtocolError(ValueError):
    """
    Raised when a WebSocket frame cannot be turned into a lifecycle message
    (not JSON, not an object, missing or unknown ``type``, bad fields).
    """
    pass
