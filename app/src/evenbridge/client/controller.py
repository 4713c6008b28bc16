"""
Session Controller — the client-side state machine.

Drives navigation between messenger select, contacts/conversation (chat
family) and folders/messages (folder family), recording, preview and send.

Every transition bumps a navigation generation (_nav). Work started for an
older generation checks it after each await and drops its result once the
user has moved on.

Inputs:
  handle_input(InputEvent)        gestures from the glasses or keyboard
  on_server_message(dict)         frames from the bridge WebSocket
  set_visibility(bool)            display asleep / awake
"""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import Any, Awaitable, Callable, Iterable

from evenbridge.client.api import BridgeAPI, BridgeAPIError, RequestAborted
from evenbridge.client.connection import BridgeConnection
from evenbridge.client.history import SentHistory
from evenbridge.client.renderers.base import Renderer
from evenbridge.client.state import (
    AppState,
    ChatSession,
    ClientState,
    FolderSession,
    InputEvent,
    InputKind,
    View,
)
from evenbridge.core.config import ClientConfig
from evenbridge.messengers.base import Contact, Folder, FolderMessage
from evenbridge.messengers.text import display_name
from evenbridge.services.last_recipient import LastRecipient

logger = logging.getLogger(__name__)

NO_MESSENGERS_HELP = (
    "No messengers configured.\n\n"
    "Set up in .env or Settings:\n\n"
    "Telegram:\n  TELEGRAM_API_ID\n  TELEGRAM_API_HASH\n\n"
    "Slack:\n  SLACK_USER_TOKEN\n\n"
    "Gmail:\n  GMAIL_ADDRESS\n  GMAIL_APP_PASSWORD"
)

STATE_VIEWS = {
    AppState.MESSENGER_SELECT: View.MESSENGER_LIST,
    AppState.CONTACTS: View.CONTACT_LIST,
    AppState.FOLDER_SELECT: View.FOLDER_LIST,
    AppState.CONVERSATION: View.CONVERSATION,
    AppState.MESSAGE_LIST: View.MESSAGE_LIST,
    AppState.MESSAGE_VIEW: View.MESSAGE_VIEW,
    AppState.PREVIEW: View.PREVIEW,
    AppState.SETTINGS: View.SETTINGS,
}

LIST_STATES = {AppState.CONTACTS, AppState.FOLDER_SELECT, AppState.MESSAGE_LIST}


class StaleNavigation(Exception):
    """The user navigated away while a step was in flight."""


class RetriesExhausted(Exception):
    pass


def navigation(method):
    """Navigation steps end quietly when superseded or aborted."""

    @functools.wraps(method)
    async def wrapper(self, *args, **kwargs):
        try:
            return await method(self, *args, **kwargs)
        except StaleNavigation:
            logger.debug(f"{method.__name__} superseded by newer navigation")
        except RequestAborted:
            logger.info(f"{method.__name__} aborted")

    return wrapper


def prioritize_last_recipient(
    contacts: list[Contact], last: LastRecipient | None
) -> list[Contact]:
    """Move the last recipient to the front (no-op if absent or already first)."""
    if last is None:
        return contacts
    idx = next((i for i, c in enumerate(contacts) if c.id == last.id), -1)
    if idx <= 0:
        return contacts
    logger.info(f'Last recipient "{last.name}" moved to top')
    return [contacts[idx], *contacts[:idx], *contacts[idx + 1:]]


class SessionController:
    def __init__(
        self,
        api: BridgeAPI,
        connection: BridgeConnection,
        renderers: Iterable[Renderer],
        history: SentHistory,
        settings: ClientConfig | None = None,
        audio_source_factory: Callable[[Callable[[bytes], Any]], Any] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.api = api
        self.connection = connection
        self.renderers = list(renderers)
        self.history = history
        self.settings = settings or ClientConfig()
        self.audio_source_factory = audio_source_factory
        self._sleep = sleep

        self.state = ClientState()
        self._nav = 0
        self._loading: tuple[str, Any] | None = None
        self._tasks: set[asyncio.Task] = set()
        self._poll_task: asyncio.Task | None = None
        self._audio_source: Any = None

    # ─── Plumbing ─────────────────────────────────────────────

    def spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None and not isinstance(exc, (StaleNavigation, RequestAborted)):
            logger.error(f"Background task failed: {exc}", exc_info=exc)

    def _enter(self, app_state: AppState) -> int:
        """Switch state and start a new navigation generation."""
        self._nav += 1
        self.state.app_state = app_state
        return self._nav

    def _check(self, nav: int) -> None:
        if nav != self._nav:
            raise StaleNavigation()

    def _show_only(self, view: View | None) -> None:
        for renderer in self.renderers:
            for other in View:
                if other != view:
                    renderer.hide(other)
            if view is not None:
                renderer.show(view, self.state)

    def _show_state(self) -> None:
        self._show_only(STATE_VIEWS.get(self.state.app_state))

    def set_status(self, text: str, error: bool = False) -> None:
        self.state.status = text
        for renderer in self.renderers:
            renderer.set_status(text, error)

    def _notice(self, text: str, centered: bool = False) -> None:
        for renderer in self.renderers:
            renderer.notice(text, centered)

    def _record_button(self, mode: str) -> None:
        for renderer in self.renderers:
            renderer.set_record_button(mode)

    async def _with_retry(self, label: str, nav: int, fetch: Callable[[], Awaitable[Any]]) -> Any:
        """Run fetch up to max_retries + 1 times, retry_delay apart.

        Raises StaleNavigation if the user moves on, RetriesExhausted when
        every attempt failed. RequestAborted passes straight through.
        """
        retries = self.settings.max_retries
        for attempt in range(retries + 1):
            self._check(nav)
            if attempt == 0:
                self.set_status(f"Loading {label}...")
                self._notice(f"Loading {label}...", centered=True)
            else:
                self.set_status(f"Retrying {label} ({attempt}/{retries})...")
                self._notice(f"Retrying... ({attempt}/{retries})", centered=True)
            try:
                result = await fetch()
            except BridgeAPIError as e:
                logger.warning(f"Error loading {label} (attempt {attempt + 1}): {e}")
                if attempt == retries:
                    break
                await self._sleep(self.settings.retry_delay)
                continue
            self._check(nav)
            return result
        self._check(nav)
        raise RetriesExhausted(label)

    def _fall_back(self, nav: int, text: str, target: Callable[[], Awaitable[Any]]) -> None:
        """Report a failed step, then run target after fallback_delay."""
        self.set_status("Connection failed", error=True)
        self._notice(f"Connection failed.\n{text}")

        async def later() -> None:
            await self._sleep(self.settings.fallback_delay)
            if nav == self._nav:
                await target()

        self.spawn(later())

    # ─── Messenger select ─────────────────────────────────────

    @navigation
    async def go_to_messenger_select(self) -> None:
        nav = self._enter(AppState.MESSENGER_SELECT)
        self._stop_polling()
        self._loading = ("messengers", None)
        self.state.selected_messenger_name = None
        self.state.messenger_display_name = None
        self.state.session = None
        self.state.pending_text = ""
        self._show_only(None)
        self.set_status("Loading messengers...")

        try:
            names = await self.api.available_messengers()
        except BridgeAPIError as e:
            logger.error(f"Error loading messengers: {e}")
            self.set_status("Error loading messengers", error=True)
            return
        self._check(nav)
        self._loading = None
        self.state.available_messengers = names
        logger.info(f"Available messengers: {', '.join(names)}")

        if not names:
            self.set_status("No messengers configured", error=True)
            self._notice(NO_MESSENGERS_HELP)
            return

        self.state.messenger_select_index = 0
        self.set_status("Select a messenger")
        self._show_state()

    async def select_messenger(self, name: str) -> None:
        self._enter(AppState.PROCESSING)
        self.state.selected_messenger_name = name
        label = display_name(name)
        self._show_only(None)
        self.set_status(f"Connecting to {label}...")
        self._notice(f"Connecting to {label}...", centered=True)

        if not await self.connection.send_json({"type": "select-messenger", "name": name}):
            logger.warning("WebSocket not open, cannot select messenger")
            self.connection.ensure_connected()
            self.set_status(f"Failed to connect to {label}", error=True)
            self._fall_back(self._nav, "Returning to main screen...", self.go_to_messenger_select)

    # ─── Chat family ──────────────────────────────────────────

    @navigation
    async def go_to_contacts(self) -> None:
        nav = self._enter(AppState.CONTACTS)
        self._stop_polling()
        self._loading = ("contacts", None)
        chat = self.state.chat or ChatSession()
        chat.selected_contact = None
        chat.conversation_messages = []
        chat.contacts = []
        self.state.session = chat
        self.state.pending_text = ""
        self.state.list_index = 0
        self._show_only(None)

        async def fetch() -> list[Contact]:
            contacts, last = await asyncio.gather(self.api.contacts(), self.api.last_recipient())
            return prioritize_last_recipient(contacts, last)

        try:
            contacts = await self._with_retry("contacts", nav, fetch)
        except RetriesExhausted:
            self._loading = None
            self._fall_back(nav, "Returning to main screen...", self.go_to_messenger_select)
            return
        self._loading = None
        chat.contacts = contacts
        logger.info(f"Loaded {len(contacts)} contacts")

        if not contacts:
            self.set_status("No contacts found", error=True)
            self._notice("No contacts found", centered=True)
            return
        self.set_status("Select a contact")
        self._show_state()

    @navigation
    async def go_to_conversation(self, contact: Contact) -> None:
        chat = self.state.chat
        if chat is None:
            return
        nav = self._enter(AppState.CONVERSATION)
        self._stop_polling()
        self._loading = ("conversation", contact)
        chat.selected_contact = contact
        logger.info(f"Selected contact: {contact.name}")
        self._show_only(None)

        try:
            messages = await self._with_retry(
                f"conversation with {contact.name}",
                nav,
                lambda: self.api.messages(contact.entity_id),
            )
        except RetriesExhausted:
            self._loading = None
            self._fall_back(nav, "Returning to contacts...", self.go_to_contacts)
            return
        self._loading = None
        chat.conversation_messages = messages
        logger.info(f"Loaded {len(messages)} messages")
        self.set_status(f"Conversation with {contact.name}")
        self._record_button("ready")
        self._show_state()
        self._start_polling()

    @navigation
    async def refresh_conversation(self) -> None:
        chat = self.state.chat
        if chat is None or chat.selected_contact is None:
            return
        contact = chat.selected_contact
        nav = self._enter(AppState.CONVERSATION)
        try:
            chat.conversation_messages = await self.api.messages(contact.entity_id)
        except BridgeAPIError as e:
            logger.warning(f"Error refreshing messages: {e}")
        self._check(nav)
        self.set_status(f"Conversation with {contact.name}")
        self._record_button("ready")
        self._show_state()
        self._start_polling()

    def _start_polling(self) -> None:
        self._stop_polling()
        self._poll_task = asyncio.ensure_future(self._poll_loop(self._nav))

    def _stop_polling(self) -> None:
        if self._poll_task is not None:
            self._poll_task.cancel()
            self._poll_task = None

    async def _poll_loop(self, nav: int) -> None:
        chat = self.state.chat
        contact = chat.selected_contact if chat else None
        if contact is None:
            return
        while True:
            await self._sleep(self.settings.poll_interval)
            if not self._polling_for(nav, contact):
                return
            try:
                messages = await self.api.messages(contact.entity_id)
            except (BridgeAPIError, RequestAborted) as e:
                logger.debug(f"Poll failed: {e}")
                continue
            # The user may have moved on while the request was in flight
            if not self._polling_for(nav, contact):
                return
            self.state.chat.conversation_messages = messages
            self._show_state()

    def _polling_for(self, nav: int, contact: Contact) -> bool:
        chat = self.state.chat
        return (
            nav == self._nav
            and self.state.app_state == AppState.CONVERSATION
            and chat is not None
            and chat.selected_contact is not None
            and chat.selected_contact.id == contact.id
        )

    # ─── Folder family ────────────────────────────────────────

    @navigation
    async def go_to_folders(self) -> None:
        nav = self._enter(AppState.FOLDER_SELECT)
        self._stop_polling()
        self._loading = ("folders", None)
        folder = self.state.folder or FolderSession()
        folder.selected_folder = None
        folder.selected_message = None
        folder.folder_messages = []
        self.state.session = folder
        self.state.pending_text = ""
        self.state.list_index = 0
        self._show_only(None)

        try:
            folders = await self._with_retry("folders", nav, self.api.folders)
        except RetriesExhausted:
            self._loading = None
            self._fall_back(nav, "Returning to main screen...", self.go_to_messenger_select)
            return
        self._loading = None
        folder.folders = folders
        if not folders:
            self.set_status("No folders found", error=True)
            self._notice("No folders found", centered=True)
            return
        self.set_status("Select a folder")
        self._show_state()

    @navigation
    async def go_to_message_list(self, selected: Folder) -> None:
        folder = self.state.folder
        if folder is None:
            return
        nav = self._enter(AppState.MESSAGE_LIST)
        self._loading = ("messageList", selected)
        folder.selected_folder = selected
        folder.selected_message = None
        self.state.list_index = 0
        self._show_only(None)

        try:
            messages = await self._with_retry(
                selected.name, nav, lambda: self.api.folder_messages(selected.id)
            )
        except RetriesExhausted:
            self._loading = None
            self._fall_back(nav, "Returning to folders...", self.go_to_folders)
            return
        self._loading = None
        folder.folder_messages = messages
        if not messages:
            self.set_status(f"No messages in {selected.name}")
            self._notice(f"No messages in {selected.name}", centered=True)
            return
        self.set_status(selected.name)
        self._show_state()

    @navigation
    async def go_to_message_view(self, message: FolderMessage) -> None:
        folder = self.state.folder
        if folder is None or folder.selected_folder is None:
            return
        nav = self._enter(AppState.MESSAGE_VIEW)
        self._loading = ("messageView", message)
        folder_id = folder.selected_folder.id
        self._show_only(None)

        try:
            full = await self._with_retry(
                "message", nav, lambda: self.api.folder_message(folder_id, message.id)
            )
        except RetriesExhausted:
            self._loading = None
            self._fall_back(
                nav,
                "Returning to messages...",
                lambda: self.go_to_message_list(folder.selected_folder),
            )
            return
        self._loading = None
        # Opening a message marks it read on the server; keep the list in step
        folder.folder_messages = [full if m.id == full.id else m for m in folder.folder_messages]
        folder.selected_message = full
        self._show_message_view()

    def _show_message_view(self) -> None:
        self.state.app_state = AppState.MESSAGE_VIEW
        message = self.state.folder.selected_message
        self.set_status(f"From {message.from_name}: {message.subject}")
        self._record_button("ready")
        self._show_state()

    # ─── Recording ────────────────────────────────────────────

    async def toggle_recording(self) -> None:
        if not self.state.has_target():
            logger.info("Nothing selected, ignoring record toggle")
            return
        if self.state.is_recording:
            await self._stop_recording()
        else:
            await self._start_recording()

    def _target_name(self) -> str:
        if self.state.chat is not None and self.state.chat.selected_contact is not None:
            return self.state.chat.selected_contact.name
        if self.state.folder is not None and self.state.folder.selected_message is not None:
            return self.state.folder.selected_message.from_name
        return "Unknown"

    async def _start_recording(self) -> None:
        self._enter(AppState.RECORDING)
        self._stop_polling()
        self.state.is_recording = True
        self._show_only(None)
        self.set_status(f"Recording for {self._target_name()}...")
        self._notice("Recording...\n\nTap to stop", centered=True)
        self._record_button("recording")

        try:
            if self.audio_source_factory is None:
                raise RuntimeError("no audio source configured")
            self._audio_source = self.audio_source_factory(self.on_audio)
            await self._audio_source.start()
        except Exception as e:
            logger.error(f"Mic error: {e}")
            self.state.is_recording = False
            self._audio_source = None
            self.set_status("Mic not available", error=True)
            await self._return_to_target()

    async def _stop_recording(self) -> None:
        self._enter(AppState.PROCESSING)
        self.state.is_recording = False
        self.set_status("Processing...")
        self._notice("Processing...", centered=True)
        self._record_button("processing")
        source, self._audio_source = self._audio_source, None
        if source is not None:
            await source.stop()
        await self.connection.send_json({"type": "stop"})

    async def on_audio(self, chunk: bytes) -> None:
        if self.state.is_recording and self.connection.is_open:
            await self.connection.send_audio(chunk)

    async def _return_to_target(self) -> None:
        if self.state.folder is not None and self.state.folder.selected_message is not None:
            self._enter(AppState.MESSAGE_VIEW)
            self._show_message_view()
        else:
            await self.refresh_conversation()

    # ─── Preview & send ───────────────────────────────────────

    async def send_pending_message(self) -> None:
        text = self.state.pending_text
        if not text:
            return

        folder = self.state.folder
        chat = self.state.chat
        if folder is not None and folder.selected_message is not None:
            payload = {"type": "reply", "text": text, "messageId": folder.selected_message.id}
        elif chat is not None and chat.selected_contact is not None:
            contact = chat.selected_contact
            payload = {
                "type": "send",
                "text": text,
                "recipient": contact.entity_id,
                "recipientId": contact.id,
                "recipientName": contact.name,
                "recipientUsername": contact.username,
            }
        else:
            return

        self._enter(AppState.PROCESSING)
        self._show_only(None)
        self.set_status("Sending...")
        self._notice("Sending...", centered=True)
        if not await self.connection.send_json(payload):
            self.connection.ensure_connected()
            await self._handle_error("Not connected to server")

    async def cancel_preview(self) -> None:
        logger.info("Preview cancelled")
        self.state.pending_text = ""
        await self._return_to_target()

    # ─── Server messages ──────────────────────────────────────

    def on_server_message(self, msg: dict) -> None:
        """BridgeConnection callback: handle each frame in its own task."""
        self.spawn(self.handle_server_message(msg))

    async def handle_server_message(self, msg: dict) -> None:
        msg_type = msg.get("type")
        text = msg.get("text") or ""

        if msg_type == "messenger-selected":
            name = msg.get("name") or display_name(self.state.selected_messenger_name or "")
            logger.info(f"Messenger selected: {name}")
            self.state.messenger_display_name = name
            for renderer in self.renderers:
                renderer.set_title(f"Even Bridge → {name}")
            if msg.get("hasFolders"):
                self.state.session = FolderSession()
                await self.go_to_folders()
            else:
                self.state.session = ChatSession()
                await self.go_to_contacts()

        elif msg_type == "status":
            logger.info(f"Status: {text}")
            self.set_status(text)

        elif msg_type == "preview":
            logger.info(f"Preview: {text}")
            self._enter(AppState.PREVIEW)
            self.state.pending_text = text
            self.set_status("Preview: tap to send, swipe to cancel")
            self._record_button("hidden")
            self._show_state()

        elif msg_type == "sent":
            await self._handle_sent(text)

        elif msg_type == "error":
            await self._handle_error(text)

        else:
            logger.debug(f"Ignoring server message {msg_type!r}")

    async def _handle_sent(self, text: str) -> None:
        contact_name = self._target_name()
        try:
            self.history.add(text, contact_name)
        except OSError as e:
            logger.warning(f"Could not save history: {e}")
        for renderer in self.renderers:
            renderer.render_history(self.history.recent())
        logger.info(f"Sent to {contact_name}: {text}")
        self.state.pending_text = ""
        await self._return_to_target()

    async def _handle_error(self, text: str) -> None:
        logger.error(f"Error: {text}")
        self.state.is_recording = False
        self.set_status(text, error=True)
        self._notice("Error:\n" + text)
        nav = self._enter(self.state.app_state)

        async def later() -> None:
            await self._sleep(self.settings.fallback_delay)
            if nav == self._nav:
                await self._fall_back_to_stable()

        self.spawn(later())

    async def _fall_back_to_stable(self) -> None:
        chat = self.state.chat
        folder = self.state.folder
        if chat is not None and chat.selected_contact is not None:
            await self.refresh_conversation()
        elif folder is not None and folder.selected_message is not None:
            self._enter(AppState.MESSAGE_VIEW)
            self._show_message_view()
        elif folder is not None and folder.selected_folder is not None:
            await self.go_to_message_list(folder.selected_folder)
        elif folder is not None:
            await self.go_to_folders()
        elif chat is not None:
            await self.go_to_contacts()
        else:
            await self.go_to_messenger_select()

    # ─── Visibility ───────────────────────────────────────────

    async def set_visibility(self, visible: bool) -> None:
        if not visible:
            aborted = self.api.abort_inflight()
            self._stop_polling()
            logger.info(f"Display hidden, aborted {aborted} in-flight requests")
            return

        logger.info("Display visible, resuming")
        loading, self._loading = self._loading, None
        if loading is not None:
            kind, arg = loading
            logger.info(f"Resuming: retrying {kind}")
            if kind == "messengers":
                await self.go_to_messenger_select()
            elif kind == "contacts":
                await self.go_to_contacts()
            elif kind == "conversation":
                await self.go_to_conversation(arg)
            elif kind == "folders":
                await self.go_to_folders()
            elif kind == "messageList":
                await self.go_to_message_list(arg)
            elif kind == "messageView":
                await self.go_to_message_view(arg)
        elif self.state.app_state == AppState.CONVERSATION:
            await self.refresh_conversation()
        self.connection.ensure_connected()

    # ─── Input ────────────────────────────────────────────────

    async def handle_input(self, event: InputEvent) -> None:
        app_state = self.state.app_state
        if event.kind == InputKind.TAP:
            await self._on_tap(event)
        elif event.kind == InputKind.DOUBLE_TAP:
            if app_state in (AppState.CONTACTS, AppState.FOLDER_SELECT):
                await self.go_to_messenger_select()
            elif app_state == AppState.MESSAGE_LIST:
                await self.go_to_folders()
            elif app_state in (AppState.CONVERSATION, AppState.MESSAGE_VIEW):
                await self.toggle_recording()
        else:
            await self._on_scroll(1 if event.kind == InputKind.SCROLL_DOWN else -1)

    async def _on_tap(self, event: InputEvent) -> None:
        app_state = self.state.app_state
        if app_state == AppState.MESSENGER_SELECT:
            names = self.state.available_messengers
            index = event.index if event.index is not None else self.state.messenger_select_index
            if 0 <= index < len(names):
                await self.select_messenger(names[index])
        elif app_state in LIST_STATES:
            index = event.index if event.index is not None else self.state.list_index
            await self._pick(index)
        elif app_state == AppState.RECORDING:
            await self.toggle_recording()
        elif app_state == AppState.PREVIEW:
            await self.send_pending_message()

    async def _pick(self, index: int) -> None:
        app_state = self.state.app_state
        if app_state == AppState.CONTACTS:
            items: list = self.state.chat.contacts
            target = self.go_to_conversation
        elif app_state == AppState.FOLDER_SELECT:
            items = self.state.folder.folders
            target = self.go_to_message_list
        else:
            items = self.state.folder.folder_messages
            target = self.go_to_message_view
        if 0 <= index < len(items):
            await target(items[index])

    async def _on_scroll(self, step: int) -> None:
        app_state = self.state.app_state
        if app_state == AppState.MESSENGER_SELECT:
            count = len(self.state.available_messengers)
            if count:
                self.state.messenger_select_index = (
                    self.state.messenger_select_index + step
                ) % count
                self._show_state()
        elif app_state in LIST_STATES:
            count = self._list_length()
            if count:
                self.state.list_index = max(0, min(count - 1, self.state.list_index + step))
                self._show_state()
        elif app_state == AppState.CONVERSATION:
            await self.go_to_contacts()
        elif app_state == AppState.MESSAGE_VIEW:
            folder = self.state.folder
            await self.go_to_message_list(folder.selected_folder)
        elif app_state == AppState.PREVIEW:
            await self.cancel_preview()

    def _list_length(self) -> int:
        if self.state.app_state == AppState.CONTACTS and self.state.chat:
            return len(self.state.chat.contacts)
        if self.state.app_state == AppState.FOLDER_SELECT and self.state.folder:
            return len(self.state.folder.folders)
        if self.state.app_state == AppState.MESSAGE_LIST and self.state.folder:
            return len(self.state.folder.folder_messages)
        return 0

    # ─── Settings ─────────────────────────────────────────────

    @navigation
    async def go_to_settings(self) -> None:
        nav = self._enter(AppState.SETTINGS)
        self._stop_polling()
        self._show_only(None)
        self.set_status("Loading settings...")
        try:
            status = await self.api.settings_status()
        except BridgeAPIError as e:
            logger.error(f"Error loading settings: {e}")
            self.set_status("Error loading settings", error=True)
            return
        self._check(nav)
        self.state.settings_status = status
        self.set_status("Settings")
        self._show_state()

    async def save_credentials(self, service: str, values: dict) -> bool:
        try:
            await self.api.save_settings(service, values)
        except BridgeAPIError as e:
            logger.error(f"Error saving {service} settings: {e}")
            self.set_status(f"Failed to save {display_name(service)}", error=True)
            return False
        self.set_status(f"{display_name(service)} saved")
        await self.go_to_settings()
        return True

    async def delete_credentials(self, service: str) -> bool:
        try:
            await self.api.delete_settings(service)
        except BridgeAPIError as e:
            logger.error(f"Error deleting {service} settings: {e}")
            self.set_status(f"Failed to remove {display_name(service)}", error=True)
            return False
        self.set_status(f"{display_name(service)} removed")
        await self.go_to_settings()
        return True

    async def _auth_call(self, call: Awaitable[dict]) -> dict:
        try:
            result = await call
        except BridgeAPIError as e:
            logger.error(f"Telegram auth request failed: {e}")
            result = {"state": "error", "error": str(e)}
        state = result.get("state", "unknown")
        if result.get("error"):
            self.set_status(f"Telegram login: {result['error']}", error=True)
        elif state == "awaiting_code":
            self.set_status("Telegram login: enter the code sent to your app")
        elif state == "awaiting_password":
            self.set_status("Telegram login: enter your 2FA password")
        elif state == "authenticated":
            self.set_status("Telegram login complete")
        else:
            self.set_status(f"Telegram login: {state}")
        return result

    async def telegram_login_start(self, phone: str) -> dict:
        return await self._auth_call(self.api.telegram_auth_start(phone))

    async def telegram_login_code(self, code: str) -> dict:
        return await self._auth_call(self.api.telegram_auth_code(code))

    async def telegram_login_password(self, password: str) -> dict:
        return await self._auth_call(self.api.telegram_auth_password(password))

    async def telegram_login_reset(self) -> dict:
        return await self._auth_call(self.api.telegram_auth_reset())

    # ─── Shutdown ─────────────────────────────────────────────

    async def shutdown(self) -> None:
        self._nav += 1
        self._stop_polling()
        if self._audio_source is not None:
            await self._audio_source.stop()
            self._audio_source = None
        for task in list(self._tasks):
            task.cancel()
        await self.connection.close()
        await self.api.aclose()
