"""
Even Bridge Client — the session state machine and its transports.

The controller talks to the server through BridgeAPI (REST) and
BridgeConnection (WebSocket) and draws through one or more renderers.
"""

from evenbridge.client.api import BridgeAPI, BridgeAPIError, RequestAborted
from evenbridge.client.connection import BridgeConnection
from evenbridge.client.controller import SessionController
from evenbridge.client.state import AppState, ClientState, InputEvent, InputKind, View

__all__ = [
    "BridgeAPI",
    "BridgeAPIError",
    "RequestAborted",
    "BridgeConnection",
    "SessionController",
    "AppState",
    "ClientState",
    "InputEvent",
    "InputKind",
    "View",
]
