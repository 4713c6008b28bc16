"""
Gmail adapter — IMAP for reading, SMTP for replies (app password auth).

imaplib and smtplib are blocking, so every call runs in a worker thread via
asyncio.to_thread. One IMAP connection is shared by all calls; the mailbox
lock serializes SELECT + FETCH sequences so two requests never interleave
on the selected folder.

Reply metadata (sender, subject, threading headers) is cached by Message-ID
whenever a message is fetched. A reply is only possible after its message
has been fetched at least once.
"""

from __future__ import annotations

import asyncio
import email
import imaplib
import logging
import re
import smtplib
from dataclasses import dataclass
from email import policy
from email.message import EmailMessage
from email.utils import parseaddr, parsedate_to_datetime
from typing import Callable

from evenbridge.core.errors import (
    ConfigurationError,
    MessageNotFoundError,
    ReplyMetadataError,
)
from evenbridge.messengers.base import Folder, FolderMessage, FolderMessenger
from evenbridge.messengers.text import collapse_whitespace, strip_html, truncate

logger = logging.getLogger(__name__)

INBOX = "INBOX"

# Well-known folders shown to the user; everything else is hidden
FOLDER_NAMES = {
    "INBOX": "Inbox",
    "[Gmail]/Starred": "Starred",
    "[Gmail]/Sent Mail": "Sent",
    "[Gmail]/Drafts": "Drafts",
    "[Gmail]/Important": "Important",
    "[Gmail]/Spam": "Spam",
}

_LIST_RE = re.compile(rb'\((?P<flags>[^)]*)\) (?P<delim>"[^"]*"|NIL) (?P<name>.+)')
_UNSEEN_RE = re.compile(rb"UNSEEN (\d+)")


@dataclass(frozen=True)
class ReplyMeta:
    """What a reply needs to know about the message it answers."""

    from_address: str
    subject: str
    message_id: str
    references: str


def _quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _parse_mailbox_name(line: bytes) -> str | None:
    match = _LIST_RE.match(line)
    if not match:
        return None
    name = match.group("name").decode("utf-8", errors="replace").strip()
    if name.startswith('"') and name.endswith('"'):
        name = name[1:-1].replace('\\"', '"').replace("\\\\", "\\")
    return name


def sort_folders(folders: list[Folder]) -> list[Folder]:
    """Inbox first, then alphabetical by display name."""
    return sorted(folders, key=lambda f: (f.id != INBOX, f.name.lower()))


def _check(typ: str, data: list, action: str) -> list:
    if typ != "OK":
        detail = data[0].decode(errors="replace") if data and isinstance(data[0], bytes) else data
        raise imaplib.IMAP4.error(f"{action} failed: {detail}")
    return data


class GmailMessenger(FolderMessenger):
    name = "Gmail"

    def __init__(
        self,
        address: str,
        app_password: str,
        imap_host: str = "imap.gmail.com",
        imap_port: int = 993,
        smtp_host: str = "smtp.gmail.com",
        smtp_port: int = 465,
        snippet_chars: int = 80,
        body_chars: int = 2000,
        imap_factory: Callable[[str, int], imaplib.IMAP4] = imaplib.IMAP4_SSL,
        smtp_factory: Callable[[str, int], smtplib.SMTP] = smtplib.SMTP_SSL,
    ) -> None:
        if not address or not app_password:
            raise ConfigurationError("Missing Gmail address or app password")
        self._address = address
        self._password = app_password
        self._imap_host = imap_host
        self._imap_port = imap_port
        self._smtp_host = smtp_host
        self._smtp_port = smtp_port
        self._snippet_chars = snippet_chars
        self._body_chars = body_chars
        self._imap_factory = imap_factory
        self._smtp_factory = smtp_factory

        self._imap: imaplib.IMAP4 | None = None
        self._lock = asyncio.Lock()
        self._reply_meta: dict[str, ReplyMeta] = {}

    # ─── Connections (worker thread) ──────────────────────────────

    def _get_imap(self) -> imaplib.IMAP4:
        if self._imap is not None:
            try:
                self._imap.noop()
                return self._imap
            except (imaplib.IMAP4.abort, OSError):
                logger.info("IMAP connection dropped, reconnecting")
                self._imap = None

        imap = self._imap_factory(self._imap_host, self._imap_port)
        imap.login(self._address, self._password)
        self._imap = imap
        return imap

    def _smtp_session(self) -> smtplib.SMTP:
        smtp = self._smtp_factory(self._smtp_host, self._smtp_port)
        smtp.login(self._address, self._password)
        return smtp

    def _verify(self) -> None:
        self._get_imap()
        smtp = self._smtp_session()
        smtp.quit()

    async def init(self) -> None:
        async with self._lock:
            await asyncio.to_thread(self._verify)
        logger.info("Gmail authenticated as %s", self._address)

    async def close(self) -> None:
        async with self._lock:
            imap, self._imap = self._imap, None
            if imap is not None:
                try:
                    await asyncio.to_thread(imap.logout)
                except (imaplib.IMAP4.error, OSError) as e:
                    logger.debug("IMAP logout failed: %s", e)

    # ─── Parsing ──────────────────────────────────────────────────

    def _normalize(
        self, raw: bytes, flags: tuple, fallback_id: str, mark_read: bool = False
    ) -> FolderMessage:
        msg = email.message_from_bytes(raw, policy=policy.default)

        subject = str(msg.get("subject") or "").strip() or "(no subject)"
        from_name, from_address = parseaddr(str(msg.get("from") or ""))
        message_id = str(msg.get("message-id") or "").strip() or fallback_id

        date = 0
        if msg.get("date"):
            try:
                date = int(parsedate_to_datetime(str(msg["date"])).timestamp())
            except (TypeError, ValueError):
                date = 0

        body = ""
        part = msg.get_body(preferencelist=("plain", "html"))
        if part is not None:
            try:
                content = part.get_content()
            except LookupError:
                # unknown charset
                content = part.get_payload(decode=True).decode("utf-8", errors="replace")
            if isinstance(content, str):
                body = strip_html(content) if part.get_content_subtype() == "html" else content

        references = str(msg.get("references") or msg.get("in-reply-to") or "").strip()
        self._reply_meta[message_id] = ReplyMeta(
            from_address=from_address,
            subject=subject,
            message_id=message_id,
            references=references,
        )

        return FolderMessage(
            id=message_id,
            subject=subject,
            snippet=truncate(collapse_whitespace(body), self._snippet_chars),
            body=truncate(body.strip(), self._body_chars),
            from_name=from_name or from_address or "Unknown",
            from_address=from_address,
            date=date,
            is_read=mark_read or b"\\Seen" in flags,
        )

    # ─── Folders ──────────────────────────────────────────────────

    def _list_folders(self) -> list[Folder]:
        imap = self._get_imap()
        data = _check(*imap.list(), "LIST")

        folders = []
        for line in data:
            if not isinstance(line, bytes):
                continue
            path = _parse_mailbox_name(line)
            display = FOLDER_NAMES.get(path or "")
            if not display:
                continue

            unread = 0
            try:
                typ, status = imap.status(_quote(path), "(UNSEEN)")
                if typ == "OK" and status and status[0]:
                    match = _UNSEEN_RE.search(status[0])
                    unread = int(match.group(1)) if match else 0
            except imaplib.IMAP4.error as e:
                logger.debug("STATUS unavailable for %s: %s", path, e)

            folders.append(Folder(id=path, name=display, unread_count=unread))
        return sort_folders(folders)

    async def get_folders(self) -> list[Folder]:
        async with self._lock:
            return await asyncio.to_thread(self._list_folders)

    # ─── Messages ─────────────────────────────────────────────────

    def _fetch_recent(self, folder_id: str, limit: int) -> list[FolderMessage]:
        imap = self._get_imap()
        data = _check(*imap.select(_quote(folder_id), readonly=True), f"SELECT {folder_id}")
        total = int(data[0] or 0)
        if total == 0:
            return []

        start = max(1, total - limit + 1)
        data = _check(*imap.fetch(f"{start}:{total}", "(FLAGS BODY.PEEK[])"), "FETCH")

        messages = []
        for item in data:
            if not isinstance(item, tuple):
                continue
            header, raw = item
            seq = header.split(b" ", 1)[0].decode()
            messages.append(self._normalize(raw, imaplib.ParseFlags(header), seq))

        messages.reverse()
        return messages

    async def get_folder_messages(
        self, folder_id: str, limit: int = 10
    ) -> list[FolderMessage]:
        async with self._lock:
            return await asyncio.to_thread(self._fetch_recent, folder_id, limit)

    def _fetch_one(self, folder_id: str, message_id: str) -> FolderMessage:
        imap = self._get_imap()
        _check(*imap.select(_quote(folder_id)), f"SELECT {folder_id}")

        data = _check(
            *imap.uid("SEARCH", "HEADER", "Message-ID", _quote(message_id)), "SEARCH"
        )
        uids = data[0].split() if data and data[0] else []
        if not uids:
            raise MessageNotFoundError(f"Message not found: {message_id}")
        uid = uids[0].decode()

        data = _check(*imap.uid("FETCH", uid, "(FLAGS BODY.PEEK[])"), "FETCH")
        fetched = next((item for item in data if isinstance(item, tuple)), None)
        if fetched is None:
            raise MessageNotFoundError(f"Failed to fetch message: {message_id}")

        _check(*imap.uid("STORE", uid, "+FLAGS", "(\\Seen)"), "STORE")

        header, raw = fetched
        return self._normalize(raw, imaplib.ParseFlags(header), message_id, mark_read=True)

    async def get_folder_message(self, folder_id: str, message_id: str) -> FolderMessage:
        async with self._lock:
            return await asyncio.to_thread(self._fetch_one, folder_id, message_id)

    # ─── Reply ────────────────────────────────────────────────────

    def build_reply(self, message_id: str, text: str) -> EmailMessage:
        meta = self._reply_meta.get(message_id)
        if meta is None:
            raise ReplyMetadataError(message_id)

        subject = meta.subject if meta.subject.startswith("Re:") else f"Re: {meta.subject}"
        references = (
            f"{meta.references} {meta.message_id}" if meta.references else meta.message_id
        )

        reply = EmailMessage()
        reply["From"] = self._address
        reply["To"] = meta.from_address
        reply["Subject"] = subject
        reply["In-Reply-To"] = meta.message_id
        reply["References"] = references
        reply.set_content(text)
        return reply

    def _send(self, reply: EmailMessage) -> None:
        smtp = self._smtp_session()
        try:
            smtp.send_message(reply)
        finally:
            smtp.quit()

    async def reply_to_message(self, message_id: str, text: str) -> None:
        reply = self.build_reply(message_id, text)
        await asyncio.to_thread(self._send, reply)
        logger.info("Gmail reply sent to %s", reply["To"])
