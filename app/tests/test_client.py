"""Tests for the client transport pieces: REST client, WebSocket connection, history, renderers."""

from __future__ import annotations

import asyncio
import contextlib
import io
import json

import httpx
import pytest
from rich.console import Console
from websockets.exceptions import InvalidHandshake

from evenbridge.client.api import BridgeAPI, BridgeAPIError, RequestAborted
from evenbridge.client.connection import BridgeConnection, ws_url
from evenbridge.client.history import SentHistory
from evenbridge.client.renderers.glasses import (
    DIVIDER,
    GlassesRenderer,
    conversation_text,
    list_page,
    messenger_select_text,
    parse_hub_event,
    preview_text,
    sanitize_name,
    text_page,
)
from evenbridge.client.renderers.terminal import TerminalRenderer
from evenbridge.client.state import (
    ChatSession,
    ClientState,
    FolderSession,
    InputEvent,
    InputKind,
    View,
)
from evenbridge.core.config import ClientConfig
from evenbridge.messengers.base import Contact, Folder, FolderMessage, Message


# ─── REST client ──────────────────────────────────────────────


def _api(handler) -> BridgeAPI:
    return BridgeAPI(ClientConfig(server_url="http://bridge.test"), transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_contacts_are_parsed():
    def handler(request):
        assert request.url.path == "/api/contacts"
        return httpx.Response(200, json=[{"id": 5, "name": "Ann", "username": "ann", "isUser": True}])

    api = _api(handler)
    contacts = await api.contacts()
    assert contacts == [Contact(id="5", name="Ann", username="ann", is_user=True)]
    await api.aclose()


@pytest.mark.asyncio
async def test_error_status_raises():
    api = _api(lambda request: httpx.Response(400, json={"error": "No messenger selected"}))
    with pytest.raises(BridgeAPIError) as exc_info:
        await api.folders()
    assert exc_info.value.status_code == 400
    await api.aclose()


@pytest.mark.asyncio
async def test_last_recipient_is_best_effort():
    api = _api(lambda request: httpx.Response(500))
    assert await api.last_recipient() is None
    await api.aclose()

    api = _api(lambda request: httpx.Response(200, json=None))
    assert await api.last_recipient() is None
    await api.aclose()


@pytest.mark.asyncio
async def test_folder_ids_are_encoded():
    seen = []

    def handler(request):
        seen.append(request.url.raw_path)
        return httpx.Response(200, json=[])

    api = _api(handler)
    await api.folder_messages("[Gmail]/Sent Mail", limit=5)
    assert seen[0] == b"/api/folders/%5BGmail%5D%2FSent%20Mail/messages?limit=5"
    await api.aclose()


@pytest.mark.asyncio
async def test_abort_inflight():
    release = asyncio.Event()

    async def handler(request):
        await release.wait()
        return httpx.Response(200, json=[])

    api = _api(handler)
    task = asyncio.create_task(api.contacts())
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    assert api.abort_inflight() == 1
    with pytest.raises(RequestAborted):
        await task
    await api.aclose()


# ─── WebSocket connection ─────────────────────────────────────


def test_ws_url():
    assert ws_url("http://localhost:3000") == "ws://localhost:3000/ws"
    assert ws_url("https://bridge.example.com/") == "wss://bridge.example.com/ws"


class FakeSocket:
    def __init__(self, frames):
        self.frames = frames
        self.sent = []
        self.closed = False

    def __aiter__(self):
        return self._frames()

    async def _frames(self):
        for frame in self.frames:
            yield frame
        await asyncio.Event().wait()

    async def send(self, data):
        self.sent.append(data)

    async def close(self):
        self.closed = True


@pytest.mark.asyncio
async def test_connection_dispatches_json_frames():
    socket = FakeSocket(["not json", b"\x00", json.dumps({"type": "status", "text": "hi"})])

    @contextlib.asynccontextmanager
    async def fake_connect(url, max_size=None):
        assert url == "ws://bridge.test/ws"
        yield socket

    received = []
    conn = BridgeConnection("ws://bridge.test/ws", received.append, connect=fake_connect)
    assert not await conn.send_json({"type": "stop"})

    conn.start()
    await asyncio.wait_for(conn.connected.wait(), 1.0)
    for _ in range(5):
        await asyncio.sleep(0)
    assert received == [{"type": "status", "text": "hi"}]

    assert await conn.send_json({"type": "stop"})
    assert await conn.send_audio(b"\x01")
    assert socket.sent == ['{"type": "stop"}', b"\x01"]

    await conn.close()
    assert socket.closed
    assert not conn.is_open


@pytest.mark.asyncio
async def test_connection_retries_after_handshake_rejection():
    socket = FakeSocket([json.dumps({"type": "status", "text": "back"})])
    attempts = []

    @contextlib.asynccontextmanager
    async def flaky_connect(url, max_size=None):
        attempts.append(url)
        if len(attempts) == 1:
            raise InvalidHandshake("503 during restart")
        if len(attempts) == 2:
            raise asyncio.TimeoutError()
        yield socket

    received = []
    conn = BridgeConnection("ws://bridge.test/ws", received.append, reconnect_delay=0.01, connect=flaky_connect)
    conn.start()
    await asyncio.wait_for(conn.connected.wait(), 1.0)
    for _ in range(5):
        await asyncio.sleep(0)

    assert len(attempts) == 3
    assert received == [{"type": "status", "text": "back"}]
    await conn.close()


# ─── History ──────────────────────────────────────────────────


def test_history_newest_first_and_capped(tmp_path):
    history = SentHistory(str(tmp_path / "h.json"), max_entries=3)
    for i in range(5):
        history.add(f"msg {i}", "Ann")
    entries = history.entries()
    assert [e["text"] for e in entries] == ["msg 4", "msg 3", "msg 2"]
    assert history.recent(1)[0]["contact"] == "Ann"


# ─── Glasses renderer ─────────────────────────────────────────


class FakeBridge:
    def __init__(self):
        self.rebuilds = []
        self.upgrades = []
        self.mic = []

    def rebuild_page_container(self, payload):
        self.rebuilds.append(payload)

    def text_container_upgrade(self, payload):
        self.upgrades.append(payload)

    def audio_control(self, enabled):
        self.mic.append(enabled)


class TestHubEvents:
    def test_list_event(self):
        event, audio = parse_hub_event({"listEvent": {"eventType": 0, "currentSelectItemIndex": 3}})
        assert event == InputEvent(InputKind.TAP, 3)
        assert audio is None

    def test_list_event_index_defaults_to_zero(self):
        event, _ = parse_hub_event({"listEvent": {}})
        assert event == InputEvent(InputKind.TAP, 0)

    def test_text_and_sys_events(self):
        assert parse_hub_event({"textEvent": {"eventType": 3}})[0] == InputEvent(InputKind.DOUBLE_TAP)
        assert parse_hub_event({"sysEvent": {"eventType": 1}})[0] == InputEvent(InputKind.SCROLL_UP)
        assert parse_hub_event({"textEvent": {"eventType": 2}})[0] == InputEvent(InputKind.SCROLL_DOWN)
        assert parse_hub_event({"sysEvent": {"eventType": 42}}) == (None, None)

    def test_audio_event(self):
        assert parse_hub_event({"audioEvent": {"audioPcm": [1, 2, 3]}}) == (None, b"\x01\x02\x03")


class TestGlassesPayloads:
    def test_list_page(self):
        page = list_page("contacts", ["Ann", "", "x" * 40] + ["y"] * 20, "Double tap to go back")
        items = page["listObject"][0]["itemContainer"]
        assert page["containerTotalNum"] == 2
        assert items["itemCount"] == 15
        assert items["itemName"][:3] == ["Ann", "Unknown", "x" * 28]
        assert page["textObject"][0]["content"] == "Double tap to go back"

    def test_centered_text_page(self):
        container = text_page("Loading...", centered=True)["textObject"][0]
        assert container["width"] == 200
        assert container["xPosition"] == (576 - 200) // 2

    def test_sanitize_name(self):
        assert sanitize_name("  ") == "Unknown"
        assert sanitize_name(None) == "Unknown"

    def test_messenger_select_cursor(self):
        state = ClientState(available_messengers=["telegram", "gmail"], messenger_select_index=1)
        assert messenger_select_text(state) == "  Telegram\n\n> Gmail"

    def test_conversation_oldest_first(self):
        contact = Contact(id="1", name="Ann")
        state = ClientState(
            session=ChatSession(
                selected_contact=contact,
                conversation_messages=[
                    Message(id=2, text="later", out=True, date=1700000060),
                    Message(id=1, text="earlier", out=False, date=1700000000),
                ],
            )
        )
        lines = conversation_text(state).split("\n")
        assert lines[0] == "To: Ann"
        assert lines[1] == DIVIDER
        assert lines[2].startswith("Ann (") and lines[2].endswith("): earlier")
        assert lines[3].startswith("Me (")
        assert lines[-1] == "Double tap to record | Swipe to go back"

    def test_empty_conversation(self):
        state = ClientState(session=ChatSession(selected_contact=Contact(id="1", name="Ann")))
        assert "No messages yet" in conversation_text(state)

    def test_preview_text(self):
        text = preview_text("a" * 250)
        assert text.startswith('Preview:\n\n"' + "a" * 200 + '..."')
        assert text.endswith("Tap to send | Swipe to cancel")


class TestGlassesRenderer:
    def test_messenger_select_upgrades_after_first_build(self):
        bridge = FakeBridge()
        renderer = GlassesRenderer(bridge)
        state = ClientState(available_messengers=["telegram", "slack"])
        renderer.show(View.MESSENGER_LIST, state)
        state.messenger_select_index = 1
        renderer.show(View.MESSENGER_LIST, state)
        assert len(bridge.rebuilds) == 1
        assert bridge.upgrades[-1]["content"].endswith("> Slack")

    def test_status_only_reaches_text_pages(self):
        bridge = FakeBridge()
        renderer = GlassesRenderer(bridge)
        renderer.set_status("Loading...")
        assert bridge.upgrades == []
        renderer.notice("Connecting...", centered=True)
        renderer.set_status("Still connecting...")
        assert bridge.upgrades[-1]["content"] == "Still connecting..."

    def test_list_rebuild_disables_status_upgrades(self):
        bridge = FakeBridge()
        renderer = GlassesRenderer(bridge)
        renderer.notice("Loading...")
        state = ClientState(session=FolderSession(folders=[Folder(id="INBOX", name="Inbox", unread_count=2)]))
        renderer.show(View.FOLDER_LIST, state)
        assert bridge.rebuilds[-1]["listObject"][0]["itemContainer"]["itemName"] == ["Inbox (2)"]
        renderer.set_status("Select a folder")
        assert bridge.upgrades == []

    def test_mic_follows_record_button(self):
        bridge = FakeBridge()
        renderer = GlassesRenderer(bridge)
        renderer.set_record_button("ready")
        renderer.set_record_button("recording")
        renderer.set_record_button("recording")
        renderer.set_record_button("processing")
        assert bridge.mic == [True, False]

    def test_bridge_failure_is_logged(self):
        class Broken(FakeBridge):
            def rebuild_page_container(self, payload):
                raise RuntimeError("display gone")

        renderer = GlassesRenderer(Broken())
        renderer.notice("hello")
        assert not renderer.text_page_up


# ─── Terminal renderer ────────────────────────────────────────


def _terminal():
    out = io.StringIO()
    return TerminalRenderer(Console(file=out, width=100, color_system=None)), out


def test_terminal_message_list():
    renderer, out = _terminal()
    message = FolderMessage(
        id="<a@b>",
        subject="Lunch?",
        snippet="are you free",
        body="",
        from_name="Bob",
        from_address="bob@example.com",
        date=0,
        is_read=False,
    )
    renderer.show(View.MESSAGE_LIST, ClientState(session=FolderSession(folder_messages=[message])))
    text = out.getvalue()
    assert "Bob" in text
    assert "Lunch?" in text


def test_terminal_settings_shows_login_state():
    renderer, out = _terminal()
    state = ClientState(
        settings_status={"telegram": {"configured": True, "authenticated": False}, "slack": {"configured": False}}
    )
    renderer.show(View.SETTINGS, state)
    text = out.getvalue()
    assert "(login needed)" in text
    assert "Slack" in text


def test_terminal_history():
    renderer, out = _terminal()
    renderer.render_history([{"text": "hello there", "contact": "Ann", "timestamp": "bad"}])
    text = out.getvalue()
    assert "--:--" in text
    assert "Ann" in text
