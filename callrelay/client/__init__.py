"""Client side of the relay: session controller, relay socket, REST side effects."""

from callrelay.client.api import RelayApiClient
from callrelay.client.controller import ClientSessionController, ControllerState
from callrelay.client.engine import MicrophoneAccess, Ringtone, VoiceEngine
from callrelay.client.socket import RelaySocket, relay_ws_url

__all__ = [
    "ClientSessionController",
    "ControllerState",
    "RelayApiClient",
    "RelaySocket",
    "relay_ws_url",
    "VoiceEngine",
    "MicrophoneAccess",
    "Ringtone",
]
