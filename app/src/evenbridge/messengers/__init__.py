"""
Even Bridge Messengers — adapter contract, models and registry.

Concrete adapters (Telegram, Slack, Gmail) are imported lazily by the
registry so a missing vendor SDK only breaks the messenger that needs it.
"""

from evenbridge.messengers.base import (
    Contact,
    Folder,
    FolderMessage,
    FolderMessenger,
    Message,
    Messenger,
)
from evenbridge.messengers.registry import (
    ActiveMessengerSlot,
    available_messenger_names,
    create_messenger,
)

__all__ = [
    "Contact",
    "Message",
    "Folder",
    "FolderMessage",
    "Messenger",
    "FolderMessenger",
    "ActiveMessengerSlot",
    "available_messenger_names",
    "create_messenger",
]
