"""
Services Package — the bridge's stateful helpers.

- CredentialStore: settings.json + env fallback
- LastRecipientStore: last send target per messenger
- TranscriptionService: PCM -> WAV -> Whisper
- TelegramAuthFlow: interactive Telegram login
"""

from evenbridge.services.last_recipient import LastRecipient, LastRecipientStore
from evenbridge.services.settings_store import CredentialStore
from evenbridge.services.telegram_auth import AuthState, TelegramAuthFlow
from evenbridge.services.transcription import TranscriptionService

__all__ = [
    "CredentialStore",
    "LastRecipient",
    "LastRecipientStore",
    "TranscriptionService",
    "AuthState",
    "TelegramAuthFlow",
]
