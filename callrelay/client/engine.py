"""
Collaborators of the client session controller.

The controller never talks to audio hardware or a voice vendor directly;
it drives these interfaces. Production code plugs in a vendor SDK
wrapper, tests plug in fakes.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

# Events emitted by a VoiceEngine
EVENT_CALL_START = "call-start"
EVENT_CALL_END = "call-end"
EVENT_MESSAGE = "message"
EVENT_VOLUME_LEVEL = "volume-level"
EVENT_ERROR = "error"


class VoiceEngine(ABC):
    """Third-party voice SDK that places and carries the actual call.

    Event handlers registered with ``on`` receive:
        call-start:   no arguments
        call-end:     no arguments
        message:      dict payload (``{"type": "transcript", "role", "transcript"}``)
        volume-level: float in [0, 1]
        error:        the exception
    Handlers may be plain functions or coroutine functions.
    """

    @abstractmethod
    async def start(self, assistant_id: Optional[str]) -> None:
        """Begin a call; resolves once the request is accepted, not when connected."""

    @abstractmethod
    def stop(self) -> None: ...

    @abstractmethod
    def set_muted(self, muted: bool) -> None: ...

    @abstractmethod
    def on(self, event: str, handler: Callable[..., Any]) -> None: ...


class MicrophoneAccess(ABC):
    @abstractmethod
    async def request_access(self) -> None:
        """Raises PermissionError when the user or platform denies the microphone."""


class Ringtone(ABC):
    """Outgoing-call tone played while the engine connects."""

    @abstractmethod
    def play(self) -> None: ...

    @abstractmethod
    def stop(self) -> None: ...


class SilentRingtone(Ringtone):
    def play(self) -> None:
        pass

    def stop(self) -> None:
        pass
