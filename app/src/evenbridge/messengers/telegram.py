"""
Telegram adapter — user-account session over MTProto (Telethon).

The session string is produced by the interactive login flow
(evenbridge.services.telegram_auth) and stored in telegram-session.txt.
Only pinned dialogs are offered as contacts.
"""

from __future__ import annotations

import logging
import os

from telethon import TelegramClient
from telethon.sessions import StringSession

from evenbridge.core.errors import ConfigurationError
from evenbridge.messengers.base import Contact, Message, Messenger

logger = logging.getLogger(__name__)

SESSION_FILENAME = "telegram-session.txt"


class TelegramSessionFile:
    """The saved Telethon StringSession on disk."""

    def __init__(self, data_dir: str) -> None:
        self.path = os.path.join(data_dir, SESSION_FILENAME)

    def exists(self) -> bool:
        return bool(self.load())

    def load(self) -> str:
        if not os.path.exists(self.path):
            return ""
        with open(self.path, encoding="utf-8") as f:
            return f.read().strip()

    def save(self, session: str) -> None:
        with open(self.path, "w", encoding="utf-8") as f:
            f.write(session)
        logger.info("Telegram session saved to %s", self.path)


def parse_api_id(value: str | None) -> int:
    """Telegram api_id as int; 0 when missing or malformed."""
    try:
        return int(value or 0)
    except ValueError:
        return 0


def _entity_ref(entity_id: str) -> int | str:
    # Telethon resolves numeric peer ids only as ints; usernames stay strings
    try:
        return int(entity_id)
    except ValueError:
        return entity_id


class TelegramMessenger(Messenger):
    name = "Telegram"

    def __init__(
        self,
        api_id: int,
        api_hash: str,
        session: str,
        dialog_limit: int = 100,
        connection_retries: int = 5,
        client: TelegramClient | None = None,
    ) -> None:
        if not api_id or not api_hash:
            raise ConfigurationError("Missing Telegram API credentials")
        if not session:
            raise ConfigurationError(
                "Telegram not authenticated. Please authenticate via Settings."
            )
        self._dialog_limit = dialog_limit
        self._client = client or TelegramClient(
            StringSession(session),
            api_id,
            api_hash,
            connection_retries=connection_retries,
        )

    async def init(self) -> None:
        await self._client.connect()
        if not await self._client.is_user_authorized():
            raise ConfigurationError(
                "Telegram session is no longer authorized. Re-authenticate via Settings."
            )
        logger.info("Telegram client connected with saved session")

    async def get_contacts(self) -> list[Contact]:
        dialogs = await self._client.get_dialogs(limit=self._dialog_limit)
        return [
            Contact(
                id=str(d.id),
                name=d.name or "Unknown",
                username=getattr(d.entity, "username", None) or None,
                is_user=bool(d.is_user),
                is_group=bool(d.is_group),
                is_channel=bool(d.is_channel),
            )
            for d in dialogs
            if d.pinned
        ]

    async def get_messages(self, entity_id: str, limit: int = 4) -> list[Message]:
        messages = await self._client.get_messages(_entity_ref(entity_id), limit=limit)
        result = []
        for m in messages:
            sender = m.sender
            sender_name = ""
            if sender is not None:
                sender_name = (
                    getattr(sender, "first_name", None)
                    or getattr(sender, "title", None)
                    or ""
                )
            result.append(
                Message(
                    id=m.id,
                    text=m.message or "",
                    out=bool(m.out),
                    date=int(m.date.timestamp()) if m.date else 0,
                    sender_name=sender_name,
                )
            )
        return result

    async def send_message(self, text: str, recipient: str) -> None:
        await self._client.send_message(_entity_ref(recipient), text)
        logger.info("Telegram message sent to %s", recipient)

    async def close(self) -> None:
        await self._client.disconnect()
