"""
Even Bridge Configuration — single source of truth for all settings.

Reads from environment variables with sensible defaults.
Messenger credentials are NOT here: they live in settings.json (see
evenbridge.services.settings_store) with env vars as fallback.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()


@dataclass(frozen=True)
class ServerConfig:
    """Server settings."""

    host: str = "0.0.0.0"
    port: int = 3000
    data_dir: str = "."  # settings.json, telegram-session.txt, last-recipient-*.json
    static_dir: str = ""

    @classmethod
    def from_env(cls) -> ServerConfig:
        return cls(
            host=os.getenv("EVENBRIDGE_HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "3000")),
            data_dir=os.getenv("EVENBRIDGE_DATA_DIR", "."),
            static_dir=os.getenv("EVENBRIDGE_STATIC_DIR", ""),
        )


@dataclass(frozen=True)
class AudioConfig:
    """Raw PCM format streamed by clients over the WebSocket."""

    sample_rate: int = 16000
    sample_width: int = 2  # bytes, 16-bit little-endian
    channels: int = 1

    @classmethod
    def from_env(cls) -> AudioConfig:
        return cls(
            sample_rate=int(os.getenv("EVENBRIDGE_SAMPLE_RATE", "16000")),
        )

    @property
    def bytes_per_second(self) -> int:
        return self.sample_rate * self.sample_width * self.channels


@dataclass(frozen=True)
class TranscriptionConfig:
    """Speech-to-text settings (OpenAI Whisper)."""

    model: str = "whisper-1"
    timeout: float = 60.0

    @classmethod
    def from_env(cls) -> TranscriptionConfig:
        return cls(
            model=os.getenv("EVENBRIDGE_TRANSCRIBE_MODEL", "whisper-1"),
            timeout=float(os.getenv("EVENBRIDGE_TRANSCRIBE_TIMEOUT", "60.0")),
        )


@dataclass(frozen=True)
class MessengerConfig:
    """Adapter limits and mail server endpoints."""

    dialog_limit: int = 100
    history_limit: int = 4
    folder_page_size: int = 10
    snippet_chars: int = 80
    body_chars: int = 2000
    telegram_connection_retries: int = 5
    imap_host: str = "imap.gmail.com"
    imap_port: int = 993
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 465

    @classmethod
    def from_env(cls) -> MessengerConfig:
        return cls(
            dialog_limit=int(os.getenv("EVENBRIDGE_DIALOG_LIMIT", "100")),
            history_limit=int(os.getenv("EVENBRIDGE_HISTORY_LIMIT", "4")),
            folder_page_size=int(os.getenv("EVENBRIDGE_FOLDER_PAGE_SIZE", "10")),
            imap_host=os.getenv("EVENBRIDGE_IMAP_HOST", "imap.gmail.com"),
            imap_port=int(os.getenv("EVENBRIDGE_IMAP_PORT", "993")),
            smtp_host=os.getenv("EVENBRIDGE_SMTP_HOST", "smtp.gmail.com"),
            smtp_port=int(os.getenv("EVENBRIDGE_SMTP_PORT", "465")),
        )


@dataclass(frozen=True)
class AuthConfig:
    """Telegram interactive login timing."""

    start_timeout: float = 15.0  # max wait for the code request to go out
    submit_settle_delay: float = 2.0  # fixed wait after code/password submission

    @classmethod
    def from_env(cls) -> AuthConfig:
        return cls(
            start_timeout=float(os.getenv("EVENBRIDGE_AUTH_START_TIMEOUT", "15.0")),
            submit_settle_delay=float(
                os.getenv("EVENBRIDGE_AUTH_SETTLE_DELAY", "2.0")
            ),
        )


@dataclass(frozen=True)
class ClientConfig:
    """Navigation timing for the client session state machine."""

    server_url: str = "http://localhost:3000"
    max_retries: int = 3
    retry_delay: float = 5.0
    fallback_delay: float = 3.0
    poll_interval: float = 5.0
    reconnect_delay: float = 2.0
    request_timeout: float = 10.0
    contacts_timeout: float = 30.0
    folders_timeout: float = 15.0
    history_path: str = "sent-history.json"

    @classmethod
    def from_env(cls) -> ClientConfig:
        return cls(
            server_url=os.getenv("EVENBRIDGE_CLIENT_SERVER_URL", "http://localhost:3000"),
            max_retries=int(os.getenv("EVENBRIDGE_CLIENT_MAX_RETRIES", "3")),
            retry_delay=float(os.getenv("EVENBRIDGE_CLIENT_RETRY_DELAY", "5.0")),
            fallback_delay=float(os.getenv("EVENBRIDGE_CLIENT_FALLBACK_DELAY", "3.0")),
            poll_interval=float(os.getenv("EVENBRIDGE_CLIENT_POLL_INTERVAL", "5.0")),
            reconnect_delay=float(os.getenv("EVENBRIDGE_CLIENT_RECONNECT_DELAY", "2.0")),
            history_path=os.getenv("EVENBRIDGE_CLIENT_HISTORY", "sent-history.json"),
        )


@dataclass(frozen=True)
class BridgeConfig:
    """Root configuration — one object for the whole process."""

    server: ServerConfig = field(default_factory=ServerConfig)
    audio: AudioConfig = field(default_factory=AudioConfig)
    transcription: TranscriptionConfig = field(default_factory=TranscriptionConfig)
    messenger: MessengerConfig = field(default_factory=MessengerConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    client: ClientConfig = field(default_factory=ClientConfig)

    @classmethod
    def from_env(cls) -> BridgeConfig:
        return cls(
            server=ServerConfig.from_env(),
            audio=AudioConfig.from_env(),
            transcription=TranscriptionConfig.from_env(),
            messenger=MessengerConfig.from_env(),
            auth=AuthConfig.from_env(),
            client=ClientConfig.from_env(),
        )


# Singleton — import the module and read `config_module.config` to see reloads
config = BridgeConfig.from_env()


def reload_config() -> BridgeConfig:
    """Re-read env vars and replace the module-level singleton."""
    global config
    config = BridgeConfig.from_env()
    return config
