"""
Messenger base classes — the adapter contract.

Two families share one interface:
  Messenger        → chat-style: contacts, conversation history, send
  FolderMessenger  → folder-style: folders, folder messages, reply

A chat-style adapter implements only the Messenger members. A folder-style
adapter also implements the folder members and refuses send_message(),
pointing callers at reply_to_message().

Models are frozen dataclasses. to_dict() produces the camelCase JSON shape
the clients speak; from_dict() parses it back.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from evenbridge.core.errors import UnsupportedOperationError


@dataclass(frozen=True)
class Contact:
    """A conversation the user can send to (person, group or channel)."""

    id: str
    name: str
    username: str | None = None
    is_user: bool = False
    is_group: bool = False
    is_channel: bool = False

    @property
    def entity_id(self) -> str:
        """Identifier adapters resolve best: username when known, else id."""
        return self.username or self.id

    @property
    def kind(self) -> str:
        if self.is_group:
            return "group"
        if self.is_channel:
            return "channel"
        return "user"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "username": self.username,
            "isUser": self.is_user,
            "isGroup": self.is_group,
            "isChannel": self.is_channel,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Contact:
        return cls(
            id=str(data.get("id", "")),
            name=data.get("name") or "Unknown",
            username=data.get("username") or None,
            is_user=bool(data.get("isUser", False)),
            is_group=bool(data.get("isGroup", False)),
            is_channel=bool(data.get("isChannel", False)),
        )


@dataclass(frozen=True)
class Message:
    """One message of a chat-style conversation."""

    id: str | int
    text: str
    out: bool
    date: int  # unix seconds
    sender_name: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "out": self.out,
            "date": self.date,
            "senderName": self.sender_name,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        return cls(
            id=data.get("id", ""),
            text=data.get("text") or "",
            out=bool(data.get("out", False)),
            date=int(data.get("date") or 0),
            sender_name=data.get("senderName") or "",
        )


@dataclass(frozen=True)
class Folder:
    """A mailbox of a folder-style messenger."""

    id: str  # adapter-native path, e.g. "[Gmail]/Sent Mail"
    name: str
    unread_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "unreadCount": self.unread_count}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Folder:
        return cls(
            id=str(data.get("id", "")),
            name=data.get("name") or "",
            unread_count=int(data.get("unreadCount") or 0),
        )


@dataclass(frozen=True)
class FolderMessage:
    """A message inside a folder, normalized to plain text."""

    id: str  # Message-ID header
    subject: str
    snippet: str
    body: str
    from_name: str
    from_address: str
    date: int
    is_read: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "subject": self.subject,
            "snippet": self.snippet,
            "body": self.body,
            "from": self.from_name,
            "fromAddress": self.from_address,
            "date": self.date,
            "isRead": self.is_read,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FolderMessage:
        return cls(
            id=str(data.get("id", "")),
            subject=data.get("subject") or "(no subject)",
            snippet=data.get("snippet") or "",
            body=data.get("body") or "",
            from_name=data.get("from") or "Unknown",
            from_address=data.get("fromAddress") or "",
            date=int(data.get("date") or 0),
            is_read=bool(data.get("isRead", False)),
        )


class Messenger(ABC):
    """Chat-style messenger adapter.

    Constructed fresh for every messenger selection. init() performs the
    network handshake and must raise if credentials are rejected.
    """

    name: str = ""
    has_folders: bool = False

    @abstractmethod
    async def init(self) -> None:
        ...

    @abstractmethod
    async def get_contacts(self) -> list[Contact]:
        ...

    @abstractmethod
    async def get_messages(self, entity_id: str, limit: int = 4) -> list[Message]:
        ...

    @abstractmethod
    async def send_message(self, text: str, recipient: str) -> None:
        ...

    async def close(self) -> None:
        """Release network resources. Called when the adapter is replaced."""


class FolderMessenger(Messenger):
    """Folder-style messenger adapter (mailbox + folder + reply model)."""

    has_folders = True

    async def get_contacts(self) -> list[Contact]:
        return []

    async def get_messages(self, entity_id: str, limit: int = 4) -> list[Message]:
        return []

    async def send_message(self, text: str, recipient: str) -> None:
        raise UnsupportedOperationError(
            f"{self.name} uses reply_to_message() instead of send_message()"
        )

    @abstractmethod
    async def get_folders(self) -> list[Folder]:
        ...

    @abstractmethod
    async def get_folder_messages(
        self, folder_id: str, limit: int = 10
    ) -> list[FolderMessage]:
        ...

    @abstractmethod
    async def get_folder_message(self, folder_id: str, message_id: str) -> FolderMessage:
        ...

    @abstractmethod
    async def reply_to_message(self, message_id: str, text: str) -> None:
        ...
