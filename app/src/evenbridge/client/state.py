"""
Client state — what the session state machine knows at any moment.

One ClientState per running client. The session object is replaced (never
mutated across families) when a messenger is selected: a ChatSession for
contact/conversation messengers, a FolderSession for mailbox messengers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from evenbridge.messengers.base import Contact, Folder, FolderMessage, Message


class AppState(str, Enum):
    STARTUP = "startup"
    MESSENGER_SELECT = "messengerSelect"
    PROCESSING = "processing"
    CONTACTS = "contacts"
    FOLDER_SELECT = "folderSelect"
    CONVERSATION = "conversation"
    MESSAGE_LIST = "messageList"
    MESSAGE_VIEW = "messageView"
    RECORDING = "recording"
    PREVIEW = "preview"
    SETTINGS = "settings"


class View(str, Enum):
    """Screens a renderer can show; every transition hides the others."""

    MESSENGER_LIST = "messengerList"
    CONTACT_LIST = "contactList"
    CONVERSATION = "conversation"
    FOLDER_LIST = "folderList"
    MESSAGE_LIST = "messageList"
    MESSAGE_VIEW = "messageView"
    PREVIEW = "preview"
    SETTINGS = "settings"


class InputKind(str, Enum):
    TAP = "tap"
    DOUBLE_TAP = "doubleTap"
    SCROLL_UP = "scrollUp"
    SCROLL_DOWN = "scrollDown"


@dataclass(frozen=True)
class InputEvent:
    """A normalized user gesture. index is set for list picks."""

    kind: InputKind
    index: int | None = None


@dataclass
class ChatSession:
    type: str = field(default="chat", init=False)
    contacts: list[Contact] = field(default_factory=list)
    selected_contact: Contact | None = None
    conversation_messages: list[Message] = field(default_factory=list)


@dataclass
class FolderSession:
    type: str = field(default="folder", init=False)
    folders: list[Folder] = field(default_factory=list)
    selected_folder: Folder | None = None
    folder_messages: list[FolderMessage] = field(default_factory=list)
    selected_message: FolderMessage | None = None


@dataclass
class ClientState:
    app_state: AppState = AppState.STARTUP
    available_messengers: list[str] = field(default_factory=list)
    messenger_select_index: int = 0
    selected_messenger_name: str | None = None
    messenger_display_name: str | None = None
    session: ChatSession | FolderSession | None = None
    pending_text: str = ""
    is_recording: bool = False
    list_index: int = 0  # cursor in the current list view
    status: str = ""
    settings_status: dict | None = None

    @property
    def chat(self) -> ChatSession | None:
        return self.session if isinstance(self.session, ChatSession) else None

    @property
    def folder(self) -> FolderSession | None:
        return self.session if isinstance(self.session, FolderSession) else None

    def has_target(self) -> bool:
        """Whether there is a contact or message to record for."""
        if self.chat is not None:
            return self.chat.selected_contact is not None
        if self.folder is not None:
            return self.folder.selected_message is not None
        return False
