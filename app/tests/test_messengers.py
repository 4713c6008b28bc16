"""Tests for the messenger adapters (Telegram, Slack, Gmail) with fake clients."""

from __future__ import annotations

from datetime import datetime, timezone
from email.message import EmailMessage
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from slack_sdk.errors import SlackApiError

from evenbridge.core.errors import (
    ConfigurationError,
    MessageNotFoundError,
    ReplyMetadataError,
    UnsupportedOperationError,
)
from evenbridge.messengers.base import Folder
from evenbridge.messengers.gmail import GmailMessenger, _parse_mailbox_name, sort_folders
from evenbridge.messengers.slack import SlackMessenger
from evenbridge.messengers.telegram import (
    TelegramMessenger,
    TelegramSessionFile,
    parse_api_id,
)


# ─── Telegram ─────────────────────────────────────────────


def _dialog(id, name, pinned=True, username=None, is_user=True, is_group=False, is_channel=False):
    return SimpleNamespace(
        id=id,
        name=name,
        pinned=pinned,
        entity=SimpleNamespace(username=username),
        is_user=is_user,
        is_group=is_group,
        is_channel=is_channel,
    )


def _fake_telethon(authorized=True):
    client = MagicMock()
    client.connect = AsyncMock()
    client.disconnect = AsyncMock()
    client.is_user_authorized = AsyncMock(return_value=authorized)
    client.get_dialogs = AsyncMock(return_value=[])
    client.get_messages = AsyncMock(return_value=[])
    client.send_message = AsyncMock()
    return client


class TestTelegram:
    def test_missing_credentials(self):
        with pytest.raises(ConfigurationError):
            TelegramMessenger(api_id=0, api_hash="", session="s", client=_fake_telethon())

    def test_missing_session(self):
        with pytest.raises(ConfigurationError, match="not authenticated"):
            TelegramMessenger(api_id=1, api_hash="h", session="", client=_fake_telethon())

    @pytest.mark.asyncio
    async def test_init_rejects_unauthorized_session(self):
        m = TelegramMessenger(1, "h", "s", client=_fake_telethon(authorized=False))
        with pytest.raises(ConfigurationError):
            await m.init()

    @pytest.mark.asyncio
    async def test_contacts_are_pinned_dialogs(self):
        client = _fake_telethon()
        client.get_dialogs.return_value = [
            _dialog(1, "Ann", username="ann"),
            _dialog(2, "Unpinned", pinned=False),
            _dialog(-100, "Team", is_user=False, is_group=True),
        ]
        m = TelegramMessenger(1, "h", "s", client=client)
        contacts = await m.get_contacts()
        assert [c.name for c in contacts] == ["Ann", "Team"]
        assert contacts[0].username == "ann"
        assert contacts[1].id == "-100"
        assert contacts[1].is_group

    @pytest.mark.asyncio
    async def test_messages_map_sender_and_numeric_ids(self):
        client = _fake_telethon()
        when = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        client.get_messages.return_value = [
            SimpleNamespace(id=9, message="hi", out=False, date=when,
                            sender=SimpleNamespace(first_name="Ann")),
            SimpleNamespace(id=8, message=None, out=True, date=when,
                            sender=SimpleNamespace(first_name=None, title="Team")),
        ]
        m = TelegramMessenger(1, "h", "s", client=client)
        messages = await m.get_messages("12345", limit=4)

        client.get_messages.assert_awaited_once_with(12345, limit=4)
        assert messages[0].sender_name == "Ann"
        assert messages[0].date == int(when.timestamp())
        assert messages[1].text == ""
        assert messages[1].sender_name == "Team"

    @pytest.mark.asyncio
    async def test_send_by_username_and_close(self):
        client = _fake_telethon()
        m = TelegramMessenger(1, "h", "s", client=client)
        await m.send_message("hello", "ann")
        client.send_message.assert_awaited_once_with("ann", "hello")
        await m.close()
        client.disconnect.assert_awaited_once()

    def test_session_file(self, tmp_path):
        f = TelegramSessionFile(str(tmp_path))
        assert not f.exists()
        f.save("1abc==")
        assert f.exists()
        assert f.load() == "1abc=="

    def test_parse_api_id(self):
        assert parse_api_id("123") == 123
        assert parse_api_id("abc") == 0
        assert parse_api_id(None) == 0


# ─── Slack ────────────────────────────────────────────────


def _fake_slack():
    client = MagicMock()
    client.auth_test = AsyncMock(return_value={"user_id": "U_ME", "user": "me"})
    client.conversations_list = AsyncMock(return_value={"channels": []})
    client.users_info = AsyncMock(return_value={"user": {"real_name": "Bob Smith"}})
    client.conversations_history = AsyncMock(return_value={"messages": []})
    client.chat_postMessage = AsyncMock()
    client.session = None
    return client


class TestSlack:
    def test_missing_token(self):
        with pytest.raises(ConfigurationError):
            SlackMessenger(token="")

    @pytest.mark.asyncio
    async def test_contacts_filter_membership_and_resolve_dms(self):
        client = _fake_slack()
        client.conversations_list.return_value = {
            "channels": [
                {"id": "C1", "name": "general", "is_channel": True, "is_member": True},
                {"id": "C2", "name": "random", "is_channel": True, "is_member": False},
                {"id": "D1", "is_im": True, "user": "U_BOB"},
                {"id": "G1", "name": "mpdm-a-b", "is_mpim": True, "is_member": True},
            ]
        }
        m = SlackMessenger("xoxp", client=client)
        await m.init()
        contacts = await m.get_contacts()

        assert [c.id for c in contacts] == ["C1", "D1", "G1"]
        assert contacts[0].username == "general"
        assert contacts[1].name == "Bob Smith"
        assert contacts[1].is_user
        assert contacts[2].is_group

    @pytest.mark.asyncio
    async def test_user_names_cached(self):
        client = _fake_slack()
        m = SlackMessenger("xoxp", client=client)
        assert await m._resolve_user_name("U_BOB") == "Bob Smith"
        assert await m._resolve_user_name("U_BOB") == "Bob Smith"
        assert client.users_info.await_count == 1

    @pytest.mark.asyncio
    async def test_user_lookup_failure_falls_back_to_id(self):
        client = _fake_slack()
        client.users_info.side_effect = SlackApiError("nope", {"error": "user_not_found"})
        m = SlackMessenger("xoxp", client=client)
        assert await m._resolve_user_name("U_GONE") == "U_GONE"

    @pytest.mark.asyncio
    async def test_messages_out_flag_and_date(self):
        client = _fake_slack()
        client.conversations_history.return_value = {
            "messages": [
                {"ts": "1700000000.123", "text": "mine", "user": "U_ME"},
                {"ts": "1699999999.900", "text": "theirs", "user": "U_BOB"},
                {"ts": "1699999990.000", "text": "bot post"},
            ]
        }
        m = SlackMessenger("xoxp", client=client)
        await m.init()
        messages = await m.get_messages("C1")

        assert messages[0].id == "1700000000.123"
        assert messages[0].date == 1700000000
        assert messages[0].out is True
        assert messages[1].out is False
        assert messages[1].sender_name == "Bob Smith"
        assert messages[2].out is False
        assert messages[2].sender_name == ""

    @pytest.mark.asyncio
    async def test_channel_names_resolve_to_ids(self):
        client = _fake_slack()
        client.conversations_list.return_value = {
            "channels": [{"id": "C1", "name": "general", "is_channel": True, "is_member": True}]
        }
        m = SlackMessenger("xoxp", client=client)
        await m.get_contacts()
        await m.get_messages("general")
        await m.send_message("hi", "general")
        assert client.conversations_history.call_args.kwargs["channel"] == "C1"
        client.chat_postMessage.assert_awaited_once_with(channel="C1", text="hi")


# ─── Gmail ────────────────────────────────────────────────


def _raw_email(message_id, subject="Hello", body="Plain body", html=False, references=None):
    msg = EmailMessage()
    msg["From"] = "Bob <bob@example.com>"
    msg["To"] = "me@example.com"
    msg["Subject"] = subject
    msg["Message-ID"] = message_id
    msg["Date"] = "Mon, 01 Jan 2024 12:00:00 +0000"
    if references:
        msg["References"] = references
    if html:
        msg.set_content(body, subtype="html")
    else:
        msg.set_content(body)
    return msg.as_bytes()


class FakeIMAP:
    """Enough of imaplib.IMAP4 for the adapter."""

    def __init__(self, host=None, port=None, messages=None):
        self.messages = messages or []  # list of (raw, flags)
        self.logged_in = False
        self.stored = []
        self.selected = None

    def login(self, user, password):
        self.logged_in = True
        return "OK", [b"Logged in"]

    def noop(self):
        return "OK", [b""]

    def logout(self):
        return "BYE", [b""]

    def list(self):
        return "OK", [
            b'(\\HasNoChildren) "/" "INBOX"',
            b'(\\HasNoChildren \\Sent) "/" "[Gmail]/Sent Mail"',
            b'(\\HasNoChildren) "/" "Receipts"',
            b'(\\HasNoChildren \\Flagged) "/" "[Gmail]/Starred"',
        ]

    def status(self, mailbox, names):
        unseen = 2 if mailbox == '"INBOX"' else 0
        return "OK", [mailbox.encode() + b" (UNSEEN %d)" % unseen]

    def select(self, mailbox, readonly=False):
        self.selected = (mailbox, readonly)
        return "OK", [str(len(self.messages)).encode()]

    def fetch(self, message_set, parts):
        start, end = (int(x) for x in message_set.split(":"))
        data = []
        for seq in range(start, end + 1):
            raw, flags = self.messages[seq - 1]
            data.append((f"{seq} (FLAGS ({flags}) BODY[] {{{len(raw)}}}".encode(), raw))
            data.append(b")")
        return "OK", data

    def uid(self, command, *args):
        if command == "SEARCH":
            wanted = args[2].strip('"')
            for i, (raw, _) in enumerate(self.messages):
                if f"Message-ID: {wanted}".encode() in raw:
                    return "OK", [str(100 + i).encode()]
            return "OK", [b""]
        if command == "FETCH":
            raw, flags = self.messages[int(args[0]) - 100]
            return "OK", [(f"1 (UID {args[0]} FLAGS ({flags}) BODY[] {{{len(raw)}}}".encode(), raw), b")"]
        if command == "STORE":
            self.stored.append(args)
            return "OK", [b""]
        raise AssertionError(command)


class FakeSMTP:
    sent: list = []

    def __init__(self, host=None, port=None):
        pass

    def login(self, user, password):
        pass

    def send_message(self, msg):
        FakeSMTP.sent.append(msg)

    def quit(self):
        pass


def _gmail(imap):
    FakeSMTP.sent = []
    return GmailMessenger(
        "me@example.com",
        "app-pass",
        imap_factory=lambda host, port: imap,
        smtp_factory=FakeSMTP,
    )


class TestGmail:
    def test_missing_credentials(self):
        with pytest.raises(ConfigurationError):
            GmailMessenger("", "")

    def test_parse_mailbox_name(self):
        assert _parse_mailbox_name(b'(\\HasNoChildren) "/" "[Gmail]/Sent Mail"') == "[Gmail]/Sent Mail"
        assert _parse_mailbox_name(b"garbage") is None

    def test_sort_folders_inbox_first(self):
        folders = [Folder("[Gmail]/Starred", "Starred"), Folder("INBOX", "Inbox"),
                   Folder("[Gmail]/Drafts", "Drafts")]
        assert [f.name for f in sort_folders(folders)] == ["Inbox", "Drafts", "Starred"]

    @pytest.mark.asyncio
    async def test_folders_filtered_and_counted(self):
        gmail = _gmail(FakeIMAP())
        await gmail.init()
        folders = await gmail.get_folders()
        assert [f.name for f in folders] == ["Inbox", "Sent", "Starred"]
        assert folders[0].unread_count == 2

    @pytest.mark.asyncio
    async def test_send_message_unsupported(self):
        gmail = _gmail(FakeIMAP())
        with pytest.raises(UnsupportedOperationError):
            await gmail.send_message("hi", "bob@example.com")
        assert await gmail.get_contacts() == []

    @pytest.mark.asyncio
    async def test_folder_messages_newest_first_and_read_only(self):
        imap = FakeIMAP(messages=[
            (_raw_email("<1@x>", subject="First"), "\\Seen"),
            (_raw_email("<2@x>", subject="Second", body="<p>Hi <b>there</b></p>", html=True), ""),
        ])
        gmail = _gmail(imap)
        messages = await gmail.get_folder_messages("INBOX", limit=10)

        assert [m.subject for m in messages] == ["Second", "First"]
        assert imap.selected == ('"INBOX"', True)
        assert messages[0].is_read is False
        assert messages[1].is_read is True
        assert messages[0].body == "Hi there"
        assert messages[0].from_name == "Bob"
        assert messages[0].from_address == "bob@example.com"
        assert imap.stored == []

    @pytest.mark.asyncio
    async def test_folder_messages_limit(self):
        imap = FakeIMAP(messages=[(_raw_email(f"<{i}@x>"), "") for i in range(5)])
        messages = await _gmail(imap).get_folder_messages("INBOX", limit=2)
        assert [m.id for m in messages] == ["<4@x>", "<3@x>"]

    @pytest.mark.asyncio
    async def test_snippet_truncated(self):
        imap = FakeIMAP(messages=[(_raw_email("<1@x>", body="word " * 50), "")])
        [msg] = await _gmail(imap).get_folder_messages("INBOX")
        assert msg.snippet.endswith("...")
        assert len(msg.snippet) == 83

    @pytest.mark.asyncio
    async def test_fetch_one_marks_read(self):
        imap = FakeIMAP(messages=[(_raw_email("<1@x>"), "")])
        gmail = _gmail(imap)
        msg = await gmail.get_folder_message("INBOX", "<1@x>")
        assert msg.is_read is True
        assert imap.stored == [("100", "+FLAGS", "(\\Seen)")]

    @pytest.mark.asyncio
    async def test_fetch_one_missing(self):
        gmail = _gmail(FakeIMAP(messages=[(_raw_email("<1@x>"), "")]))
        with pytest.raises(MessageNotFoundError):
            await gmail.get_folder_message("INBOX", "<nope@x>")

    @pytest.mark.asyncio
    async def test_reply_requires_fetched_message(self):
        gmail = _gmail(FakeIMAP())
        with pytest.raises(ReplyMetadataError):
            await gmail.reply_to_message("<never@x>", "hello")
        assert FakeSMTP.sent == []

    @pytest.mark.asyncio
    async def test_reply_threading_headers(self):
        imap = FakeIMAP(messages=[
            (_raw_email("<2@x>", subject="Plans", references="<0@x> <1@x>"), ""),
        ])
        gmail = _gmail(imap)
        await gmail.get_folder_messages("INBOX")
        await gmail.reply_to_message("<2@x>", "Sounds good")

        [reply] = FakeSMTP.sent
        assert reply["To"] == "bob@example.com"
        assert reply["Subject"] == "Re: Plans"
        assert reply["In-Reply-To"] == "<2@x>"
        assert reply["References"] == "<0@x> <1@x> <2@x>"
        assert reply.get_content().strip() == "Sounds good"

    @pytest.mark.asyncio
    async def test_reply_keeps_existing_re_prefix(self):
        imap = FakeIMAP(messages=[(_raw_email("<3@x>", subject="Re: Plans"), "")])
        gmail = _gmail(imap)
        await gmail.get_folder_message("INBOX", "<3@x>")
        reply = gmail.build_reply("<3@x>", "ok")
        assert reply["Subject"] == "Re: Plans"
        assert reply["References"] == "<3@x>"
