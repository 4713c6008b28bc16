"""
Messenger Registry — which adapters are configured, and how to build one.

Add a new messenger? Add it to MESSENGERS and an elif in create_messenger().

ActiveMessengerSlot holds the one process-wide active adapter. Each
selection takes a ticket before its (slow) init(); only the newest live
ticket may commit, so the latest *requested* selection wins even when an
older init() finishes later. A ticket whose init() fails is abandoned and
no longer blocks older ones.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from evenbridge.core.config import MessengerConfig
from evenbridge.core.errors import MessengerNotFoundError
from evenbridge.messengers.base import Messenger
from evenbridge.services.settings_store import CredentialStore

logger = logging.getLogger(__name__)

# registry name -> credential service that must be configured
MESSENGERS = {
    "telegram": "telegram",
    "slack": "slack",
    "gmail": "gmail",
}


def available_messenger_names(store: CredentialStore) -> list[str]:
    return [name for name, service in MESSENGERS.items() if store.is_configured(service)]


def create_messenger(
    name: str,
    store: CredentialStore,
    data_dir: str = ".",
    settings: MessengerConfig | None = None,
) -> Messenger:
    """Construct (but do not init) the adapter registered under name."""
    settings = settings or MessengerConfig()
    if name == "telegram":
        from evenbridge.messengers.telegram import (
            TelegramMessenger,
            TelegramSessionFile,
            parse_api_id,
        )

        return TelegramMessenger(
            api_id=parse_api_id(store.get_credential("telegram.apiId")),
            api_hash=store.get_credential("telegram.apiHash") or "",
            session=TelegramSessionFile(data_dir).load(),
            dialog_limit=settings.dialog_limit,
            connection_retries=settings.telegram_connection_retries,
        )
    elif name == "slack":
        from evenbridge.messengers.slack import SlackMessenger

        return SlackMessenger(token=store.get_credential("slack.userToken") or "")
    elif name == "gmail":
        from evenbridge.messengers.gmail import GmailMessenger

        return GmailMessenger(
            address=store.get_credential("gmail.address") or "",
            app_password=store.get_credential("gmail.appPassword") or "",
            imap_host=settings.imap_host,
            imap_port=settings.imap_port,
            smtp_host=settings.smtp_host,
            smtp_port=settings.smtp_port,
            snippet_chars=settings.snippet_chars,
            body_chars=settings.body_chars,
        )
    raise MessengerNotFoundError(f'Unknown messenger: "{name}"')


@dataclass(frozen=True)
class SelectionTicket:
    generation: int
    name: str


class ActiveMessengerSlot:
    """Single-writer cell for the active adapter, guarded by a generation."""

    def __init__(self) -> None:
        self._generation = 0
        self._committed = 0
        self._pending: set[int] = set()
        self._name: str | None = None
        self._messenger: Messenger | None = None

    @property
    def current(self) -> Messenger | None:
        return self._messenger

    @property
    def name(self) -> str | None:
        """Registry name of the active adapter (keys last-recipient files)."""
        return self._name

    @property
    def generation(self) -> int:
        return self._generation

    def begin(self, name: str) -> SelectionTicket:
        self._generation += 1
        self._pending.add(self._generation)
        return SelectionTicket(self._generation, name)

    def abandon(self, ticket: SelectionTicket) -> None:
        """Withdraw a ticket whose init() failed; older pending tickets may still commit."""
        self._pending.discard(ticket.generation)

    def is_current(self, ticket: SelectionTicket) -> bool:
        """True while no newer selection is pending or committed."""
        newest = max(self._pending, default=0)
        return ticket.generation >= max(newest, self._committed)

    async def commit(self, ticket: SelectionTicket, messenger: Messenger) -> bool:
        """Install messenger if ticket is still the newest; close the one replaced.

        Returns False (and leaves the slot untouched) for a superseded ticket.
        """
        current = self.is_current(ticket)
        self._pending.discard(ticket.generation)
        if not current:
            return False
        previous = self._messenger
        self._committed = ticket.generation
        self._name = ticket.name
        self._messenger = messenger
        if previous is not None and previous is not messenger:
            await self._close(previous)
        logger.info(f"Active messenger: {messenger.name}", extra={"messenger": ticket.name})
        return True

    async def clear(self) -> None:
        previous, self._messenger, self._name = self._messenger, None, None
        if previous is not None:
            await self._close(previous)

    @staticmethod
    async def _close(messenger: Messenger) -> None:
        try:
            await messenger.close()
        except Exception as e:
            logger.warning(f"Error closing {messenger.name}: {e}")
