"""Exceptions raised across the bridge.

Handlers translate these into the fixed user-facing texts of the HTTP and
WebSocket protocols; the messages here are for logs.
"""

from __future__ import annotations


class BridgeError(Exception):
    """Base class for every error the bridge raises on purpose."""


class ConfigurationError(BridgeError):
    """Credentials or session data are missing or unusable."""


class MessengerNotFoundError(BridgeError):
    """No adapter is registered under the requested name."""


class UnsupportedOperationError(BridgeError):
    """The active adapter does not offer the requested capability."""


class MessageNotFoundError(BridgeError):
    """A folder message could not be located by its Message-ID."""


class ReplyMetadataError(BridgeError):
    """Reply attempted for a message that was never fetched."""

    def __init__(self, message_id: str):
        super().__init__("Message metadata not found. View the message first.")
        self.message_id = message_id


class TranscriptionError(BridgeError):
    """The speech-to-text call failed."""
