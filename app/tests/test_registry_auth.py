"""Tests for the messenger registry, the active slot and the Telegram auth flow."""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from evenbridge.core.config import AuthConfig
from evenbridge.core.errors import ConfigurationError, MessengerNotFoundError
from evenbridge.messengers.base import Messenger
from evenbridge.messengers.gmail import GmailMessenger
from evenbridge.messengers.registry import (
    ActiveMessengerSlot,
    available_messenger_names,
    create_messenger,
)
from evenbridge.messengers.slack import SlackMessenger
from evenbridge.messengers.telegram import TelegramSessionFile
from evenbridge.services.settings_store import ENV_MAP, CredentialStore
from evenbridge.services.telegram_auth import AuthState, TelegramAuthFlow


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in ENV_MAP.values():
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def store(tmp_path):
    return CredentialStore(str(tmp_path))


class FakeMessenger(Messenger):
    def __init__(self, name="Fake"):
        self.name = name
        self.closed = False

    async def init(self):
        pass

    async def get_contacts(self):
        return []

    async def get_messages(self, entity_id, limit=4):
        return []

    async def send_message(self, text, recipient):
        pass

    async def close(self):
        self.closed = True


# ─── Registry ─────────────────────────────────────────────


class TestRegistry:
    def test_available_follows_credentials(self, store):
        assert available_messenger_names(store) == []
        store.set_service("slack", {"userToken": "xoxp"})
        store.set_service("gmail", {"address": "a@b.c", "appPassword": "p"})
        assert available_messenger_names(store) == ["slack", "gmail"]

    def test_available_keeps_registry_order(self, store, monkeypatch):
        monkeypatch.setenv("GMAIL_ADDRESS", "a@b.c")
        monkeypatch.setenv("GMAIL_APP_PASSWORD", "p")
        monkeypatch.setenv("TELEGRAM_API_ID", "1")
        monkeypatch.setenv("TELEGRAM_API_HASH", "h")
        assert available_messenger_names(store) == ["telegram", "gmail"]

    def test_unknown_name(self, store):
        with pytest.raises(MessengerNotFoundError):
            create_messenger("myspace", store)

    def test_creates_slack_and_gmail(self, store):
        store.set_service("slack", {"userToken": "xoxp"})
        store.set_service("gmail", {"address": "a@b.c", "appPassword": "p"})
        assert isinstance(create_messenger("slack", store), SlackMessenger)
        gmail = create_messenger("gmail", store)
        assert isinstance(gmail, GmailMessenger)
        assert gmail.has_folders

    def test_telegram_without_session(self, store, tmp_path):
        store.set_service("telegram", {"apiId": "1", "apiHash": "h"})
        with pytest.raises(ConfigurationError):
            create_messenger("telegram", store, data_dir=str(tmp_path))


# ─── Active slot ──────────────────────────────────────────


class TestActiveMessengerSlot:
    @pytest.mark.asyncio
    async def test_commit_replaces_and_closes_previous(self):
        slot = ActiveMessengerSlot()
        first, second = FakeMessenger("A"), FakeMessenger("B")
        assert await slot.commit(slot.begin("a"), first)
        assert await slot.commit(slot.begin("b"), second)
        assert slot.current is second
        assert slot.name == "b"
        assert first.closed

    @pytest.mark.asyncio
    async def test_newest_request_wins(self):
        """An older selection that finishes later cannot overwrite a newer one."""
        slot = ActiveMessengerSlot()
        old_ticket = slot.begin("telegram")
        new_ticket = slot.begin("slack")
        newer, older = FakeMessenger("Slack"), FakeMessenger("Telegram")

        assert await slot.commit(new_ticket, newer)
        assert not await slot.commit(old_ticket, older)
        assert slot.current is newer
        assert slot.name == "slack"
        assert not newer.closed

    @pytest.mark.asyncio
    async def test_failed_selection_leaves_slot(self):
        slot = ActiveMessengerSlot()
        active = FakeMessenger()
        await slot.commit(slot.begin("a"), active)
        slot.abandon(slot.begin("b"))  # init() of "b" fails; nothing is committed
        assert slot.current is active

    @pytest.mark.asyncio
    async def test_failed_newer_selection_does_not_supersede(self):
        slot = ActiveMessengerSlot()
        slow = slot.begin("telegram")
        failing = slot.begin("slack")
        slot.abandon(failing)  # init() of "slack" raised

        telegram = FakeMessenger("Telegram")
        assert await slot.commit(slow, telegram)
        assert slot.current is telegram
        assert slot.name == "telegram"

    @pytest.mark.asyncio
    async def test_pending_newer_selection_still_supersedes(self):
        slot = ActiveMessengerSlot()
        old_ticket = slot.begin("telegram")
        slot.begin("slack")
        assert not await slot.commit(old_ticket, FakeMessenger("Telegram"))
        assert slot.current is None

    @pytest.mark.asyncio
    async def test_clear(self):
        slot = ActiveMessengerSlot()
        m = FakeMessenger()
        await slot.commit(slot.begin("a"), m)
        await slot.clear()
        assert slot.current is None
        assert slot.name is None
        assert m.closed


# ─── Telegram auth flow ───────────────────────────────────


class FakeTelethon:
    def __init__(self, needs_password=False, fail=None):
        self.needs_password = needs_password
        self.fail = fail
        self.session = SimpleNamespace(save=lambda: "SESSION-STRING")
        self.disconnected = False
        self.code = None
        self.password = None

    async def start(self, phone, code_callback, password):
        self.phone = phone
        if self.fail:
            raise self.fail
        self.code = await code_callback()
        if self.needs_password:
            self.password = await password()

    async def disconnect(self):
        self.disconnected = True


def _flow(store, tmp_path, client):
    store.set_service("telegram", {"apiId": "12345", "apiHash": "hash"})
    return TelegramAuthFlow(
        store,
        TelegramSessionFile(str(tmp_path)),
        AuthConfig(start_timeout=1.0, submit_settle_delay=0.0),
        client_factory=lambda session, api_id, api_hash: client,
    )


class TestTelegramAuthFlow:
    @pytest.mark.asyncio
    async def test_missing_credentials(self, store, tmp_path):
        flow = TelegramAuthFlow(store, TelegramSessionFile(str(tmp_path)))
        result = await flow.start("+15550000")
        assert result == {"state": "error", "error": "Telegram API credentials not configured"}

    @pytest.mark.asyncio
    async def test_code_login(self, store, tmp_path):
        client = FakeTelethon()
        flow = _flow(store, tmp_path, client)

        assert await flow.start("+15550000") == {"state": "awaiting_code"}
        assert flow.submit_code("12345") == {"state": "awaiting_code"}
        await flow.wait_for((AuthState.AUTHENTICATED,), 1.0)

        assert flow.state == AuthState.AUTHENTICATED
        assert client.code == "12345"
        assert client.disconnected
        assert TelegramSessionFile(str(tmp_path)).load() == "SESSION-STRING"
        assert flow.is_authenticated()

    @pytest.mark.asyncio
    async def test_password_login(self, store, tmp_path):
        client = FakeTelethon(needs_password=True)
        flow = _flow(store, tmp_path, client)

        await flow.start("+15550000")
        flow.submit_code("11111")
        await flow.wait_for((AuthState.AWAITING_PASSWORD,), 1.0)
        assert flow.snapshot() == {"state": "awaiting_password"}
        flow.submit_password("hunter2")
        await flow.wait_for((AuthState.AUTHENTICATED,), 1.0)

        assert client.password == "hunter2"
        assert flow.state == AuthState.AUTHENTICATED

    @pytest.mark.asyncio
    async def test_submit_when_not_awaiting(self, store, tmp_path):
        flow = _flow(store, tmp_path, FakeTelethon())
        assert flow.submit_code("1") == {"state": "idle", "error": "Not awaiting code"}
        assert flow.submit_password("p") == {"state": "idle", "error": "Not awaiting password"}

    @pytest.mark.asyncio
    async def test_start_while_awaiting(self, store, tmp_path):
        flow = _flow(store, tmp_path, FakeTelethon())
        await flow.start("+15550000")
        result = await flow.start("+15550000")
        assert result == {"state": "awaiting_code", "error": "Auth already in progress"}
        await flow.reset()

    @pytest.mark.asyncio
    async def test_reset_cancels_login(self, store, tmp_path):
        client = FakeTelethon()
        flow = _flow(store, tmp_path, client)
        await flow.start("+15550000")
        await flow.reset()

        assert flow.state == AuthState.IDLE
        assert client.disconnected
        assert flow.submit_code("1")["error"] == "Not awaiting code"
        assert not flow.is_authenticated()

    @pytest.mark.asyncio
    async def test_failure_sets_error(self, store, tmp_path):
        flow = _flow(store, tmp_path, FakeTelethon(fail=RuntimeError("PHONE_NUMBER_INVALID")))
        result = await flow.start("+1")
        assert result == {"state": "error", "error": "PHONE_NUMBER_INVALID"}
        assert not flow.is_authenticated()
