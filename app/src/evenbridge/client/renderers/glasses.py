"""
Glasses renderer — drives the 576x288 monochrome display via page containers.

The display is opaque to us: we hand it container payloads through a
DisplayBridge (rebuild_page_container / text_container_upgrade) and get
gesture and microphone events back as dicts. A full rebuild replaces the
page. A text upgrade only swaps the content of container 1 and is used
while a plain-text page is already up.

Hub event codes: 0 (or missing) = tap, 1/2 = scroll up/down, 3 = double tap.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Protocol

from evenbridge.client.renderers.base import Renderer
from evenbridge.client.state import ClientState, InputEvent, InputKind, View
from evenbridge.messengers.text import display_name, truncate

logger = logging.getLogger(__name__)

WIDTH = 576
HEIGHT = 288
CHAR_WIDTH = 9
LINE_HEIGHT = 30
HINT_HEIGHT = 30
MAX_LIST_ITEMS = 15
MAX_NAME_CHARS = 28
MESSAGE_CHARS = 80
PREVIEW_CHARS = 200
BODY_CHARS = 600
DIVIDER = "─" * MAX_NAME_CHARS

_EVENT_KINDS = {
    0: InputKind.TAP,
    None: InputKind.TAP,
    1: InputKind.SCROLL_UP,
    2: InputKind.SCROLL_DOWN,
    3: InputKind.DOUBLE_TAP,
}


class DisplayBridge(Protocol):
    def rebuild_page_container(self, payload: dict) -> Any: ...

    def text_container_upgrade(self, payload: dict) -> Any: ...

    def audio_control(self, enabled: bool) -> Any: ...


def sanitize_name(name: str | None) -> str:
    clean = str(name or "").strip()
    if not clean:
        return "Unknown"
    return clean[:MAX_NAME_CHARS]


def format_time(unix_ts: int) -> str:
    return datetime.fromtimestamp(unix_ts).strftime("%H:%M")


def parse_hub_event(event: dict) -> tuple[InputEvent | None, bytes | None]:
    """Split a hub event into (gesture, audio chunk); either may be None."""
    audio = (event.get("audioEvent") or {}).get("audioPcm")
    if audio is not None:
        return None, bytes(audio)

    list_event = event.get("listEvent")
    if list_event is not None:
        kind = _EVENT_KINDS.get(list_event.get("eventType"))
        if kind is None:
            return None, None
        return InputEvent(kind, list_event.get("currentSelectItemIndex") or 0), None

    ev = event.get("textEvent") or event.get("sysEvent")
    if ev is None:
        return None, None
    kind = _EVENT_KINDS.get(ev.get("eventType"))
    return (InputEvent(kind) if kind else None), None


def _text_container(
    content: str,
    x: int = 0,
    y: int = 0,
    width: int = WIDTH,
    height: int = HEIGHT,
    container_id: int = 1,
    name: str = "main",
    capture: bool = True,
    padding: int = 4,
) -> dict:
    return {
        "containerID": container_id,
        "containerName": name,
        "xPosition": x,
        "yPosition": y,
        "width": width,
        "height": height,
        "isEventCapture": 1 if capture else 0,
        "borderWidth": 0,
        "borderColor": 0,
        "borderRdaius": 0,  # sic, device API field name
        "paddingLength": padding,
        "content": content,
    }


def list_page(name: str, items: list[str], hint: str) -> dict:
    names = [sanitize_name(item) for item in items[:MAX_LIST_ITEMS]]
    return {
        "containerTotalNum": 2,
        "listObject": [
            {
                "containerID": 1,
                "containerName": name,
                "xPosition": 0,
                "yPosition": 0,
                "width": WIDTH,
                "height": HEIGHT - HINT_HEIGHT,
                "isEventCapture": 1,
                "borderWidth": 1,
                "borderColor": 13,
                "borderRdaius": 6,
                "paddingLength": 5,
                "itemContainer": {
                    "itemCount": len(names),
                    "itemWidth": WIDTH - 16,
                    "isItemSelectBorderEn": 1,
                    "itemName": names,
                },
            }
        ],
        "textObject": [
            _text_container(
                hint,
                y=HEIGHT - HINT_HEIGHT,
                height=HINT_HEIGHT,
                container_id=2,
                name="hint",
                capture=False,
                padding=2,
            )
        ],
    }


def text_page(text: str, centered: bool = False) -> dict:
    if centered:
        lines = text.split("\n")
        width = max(max(len(line) for line in lines) * CHAR_WIDTH, 200)
        height = len(lines) * LINE_HEIGHT + 10
        container = _text_container(
            text,
            x=(WIDTH - width) // 2,
            y=(HEIGHT - height) // 2,
            width=width,
            height=height,
            padding=0,
        )
    else:
        container = _text_container(text)
    return {"containerTotalNum": 1, "textObject": [container]}


def messenger_select_text(state: ClientState) -> str:
    return "\n\n".join(
        f"{'>' if i == state.messenger_select_index else ' '} {display_name(name)}"
        for i, name in enumerate(state.available_messengers)
    )


def conversation_text(state: ClientState) -> str:
    chat = state.chat
    contact = chat.selected_contact if chat else None
    if contact is None:
        return "No conversation"
    lines = [f"To: {contact.name}", DIVIDER]
    messages = list(reversed(chat.conversation_messages))
    for m in messages:
        sender = "Me" if m.out else (m.sender_name or contact.name)
        lines.append(f"{sender} ({format_time(m.date)}): {(m.text or '')[:MESSAGE_CHARS]}")
    if not messages:
        lines.append("No messages yet")
    lines.append(DIVIDER)
    lines.append("Double tap to record | Swipe to go back")
    return "\n".join(lines)


def message_view_text(state: ClientState) -> str:
    folder = state.folder
    message = folder.selected_message if folder else None
    if message is None:
        return "No message"
    return "\n".join(
        [
            f"From: {sanitize_name(message.from_name)}",
            f"Subject: {message.subject[:MESSAGE_CHARS]}",
            DIVIDER,
            truncate(message.body, BODY_CHARS),
            DIVIDER,
            "Double tap to reply | Swipe to go back",
        ]
    )


def preview_text(text: str) -> str:
    return "\n".join(
        ["Preview:", "", f'"{truncate(text, PREVIEW_CHARS)}"', "", "Tap to send | Swipe to cancel"]
    )


class GlassesRenderer(Renderer):
    def __init__(self, bridge: DisplayBridge) -> None:
        super().__init__()
        self.bridge = bridge
        # True while a single full-page text container is up (upgrade-able)
        self.text_page_up = False
        self.messenger_select_built = False
        self.mic_on = False

    # ─── Bridge calls ─────────────────────────────────────────

    def _rebuild(self, payload: dict, text_page_up: bool = False) -> None:
        try:
            self.bridge.rebuild_page_container(payload)
        except Exception as e:
            logger.error(f"Display rebuild failed: {e}")
            return
        self.text_page_up = text_page_up
        self.messenger_select_built = False

    def _upgrade(self, content: str, name: str = "main") -> None:
        try:
            self.bridge.text_container_upgrade(
                {"containerID": 1, "containerName": name, "content": content}
            )
        except Exception as e:
            logger.error(f"Display update failed: {e}")

    def show_text(self, text: str, centered: bool = False, force_rebuild: bool = False) -> None:
        if self.text_page_up and not force_rebuild:
            self._upgrade(text)
        else:
            self._rebuild(text_page(text, centered), text_page_up=True)
        logger.debug(f"Display updated: {text[:40]!r}")

    # ─── Renderer hooks ───────────────────────────────────────

    def _render(self, view: View, state: ClientState) -> None:
        if view == View.MESSENGER_LIST:
            self._render_messenger_select(state)
        elif view == View.CONTACT_LIST:
            chat = state.chat
            if chat and chat.contacts:
                self._rebuild(
                    list_page(
                        "contacts", [c.name for c in chat.contacts], "Double tap to go back"
                    )
                )
        elif view == View.FOLDER_LIST:
            folder = state.folder
            if folder and folder.folders:
                labels = [
                    f"{f.name} ({f.unread_count})" if f.unread_count else f.name
                    for f in folder.folders
                ]
                self._rebuild(list_page("folders", labels, "Double tap to go back"))
        elif view == View.MESSAGE_LIST:
            folder = state.folder
            if folder and folder.folder_messages:
                labels = [
                    f"{'' if m.is_read else '* '}{m.from_name}: {m.subject}"
                    for m in folder.folder_messages
                ]
                self._rebuild(list_page("messages", labels, "Double tap to go back"))
        elif view == View.CONVERSATION:
            self.show_text(conversation_text(state), force_rebuild=True)
        elif view == View.MESSAGE_VIEW:
            self.show_text(message_view_text(state), force_rebuild=True)
        elif view == View.PREVIEW:
            self.show_text(preview_text(state.pending_text), force_rebuild=True)
        elif view == View.SETTINGS:
            self.show_text("Settings are available in the terminal client", centered=True)

    def _render_messenger_select(self, state: ClientState) -> None:
        if not state.available_messengers:
            return
        content = messenger_select_text(state)
        if self.messenger_select_built:
            self._upgrade(content, name="select")
            return
        longest = max(len(name) for name in state.available_messengers)
        text_width = (2 + longest) * CHAR_WIDTH
        list_height = len(state.available_messengers) * 40
        y = (HEIGHT - list_height) // 2
        container = _text_container(
            content,
            x=(WIDTH - text_width) // 2,
            y=y,
            width=text_width + 10,
            height=HEIGHT - y,
            name="select",
            padding=0,
        )
        self._rebuild({"containerTotalNum": 1, "textObject": [container]})
        self.messenger_select_built = True

    def set_status(self, text: str, error: bool = False) -> None:
        # Status lines only reach the glasses while a plain-text page is up
        if self.text_page_up:
            self._upgrade(text)

    def notice(self, text: str, centered: bool = False) -> None:
        self.show_text(text, centered=centered, force_rebuild=True)

    def set_record_button(self, mode: str) -> None:
        # The glasses microphone follows the record state
        mic_on = mode == "recording"
        if mic_on == self.mic_on:
            return
        try:
            self.bridge.audio_control(mic_on)
        except Exception as e:
            logger.error(f"Glasses audio control failed: {e}")
            return
        self.mic_on = mic_on
        logger.info(f"Glasses microphone {'opened' if mic_on else 'closed'}")


class ConsoleDisplayBridge:
    """DisplayBridge that prints page contents, for running without glasses."""

    def __init__(self, console) -> None:
        self.console = console

    def rebuild_page_container(self, payload: dict) -> None:
        for obj in payload.get("listObject", []):
            items = obj["itemContainer"]["itemName"]
            self.console.print(f"[dim]glasses list[/dim] {obj['containerName']}: {items}")
        for obj in payload.get("textObject", []):
            self.console.print(f"[dim]glasses text[/dim]\n{obj['content']}")

    def text_container_upgrade(self, payload: dict) -> None:
        self.console.print(f"[dim]glasses update[/dim]\n{payload['content']}")

    def audio_control(self, enabled: bool) -> None:
        self.console.print(f"[dim]glasses mic {'on' if enabled else 'off'}[/dim]")
