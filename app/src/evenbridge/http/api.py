"""
Messenger API — read-mostly REST endpoints over the active adapter.

Endpoints:
    GET /api/available-messengers                        → configured names
    GET /api/contacts                                    → Contact[]
    GET /api/last-recipient                              → LastRecipient | null
    GET /api/messages/{entity_id}                        → Message[] (last 4)
    GET /api/folders                                     → Folder[]
    GET /api/folders/{folder_id}/messages?limit=         → FolderMessage[]
    GET /api/folders/{folder_id}/messages/{message_id}   → FolderMessage

Folder ids are mailbox paths and Message-IDs are RFC 5322 ids; both may
contain "/" ("[Gmail]/Sent Mail", "<CA+ab/cd@mail.gmail.com>"). Starlette
matches on the decoded path, so everything under /folders/ goes through one
path route and split_folder_path().
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Awaitable, Callable

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from evenbridge.core.metrics import metrics
from evenbridge.messengers.base import FolderMessenger, Messenger
from evenbridge.messengers.registry import available_messenger_names

if TYPE_CHECKING:
    from evenbridge.core.config import MessengerConfig
    from evenbridge.messengers.registry import ActiveMessengerSlot
    from evenbridge.services.last_recipient import LastRecipientStore
    from evenbridge.services.settings_store import CredentialStore

logger = logging.getLogger(__name__)

NO_MESSENGER = {"error": "No messenger selected"}


def parse_limit(raw: str | None, default: int) -> int:
    """Positive int from a query string; default when absent or malformed."""
    try:
        value = int(raw or "")
    except ValueError:
        return default
    return value if value > 0 else default


def split_folder_path(path: str) -> tuple[str, str | None] | None:
    """Split the decoded tail of /api/folders/... into (folder_id, message_id).

    "INBOX/messages" -> ("INBOX", None)
    "[Gmail]/Sent Mail/messages/<a/b@x>" -> ("[Gmail]/Sent Mail", "<a/b@x>")

    Folder ids come from a fixed allow-list and never contain "/messages/",
    so the first occurrence is the separator and the message id keeps any "/".
    """
    folder_id, sep, message_id = path.partition("/messages/")
    if sep:
        return (folder_id, message_id) if folder_id and message_id else None
    if path.endswith("/messages") and len(path) > len("/messages"):
        return path[: -len("/messages")], None
    return None


def create_api_router(
    slot: "ActiveMessengerSlot",
    last_recipients: "LastRecipientStore",
    store: "CredentialStore",
    settings: "MessengerConfig",
) -> APIRouter:
    """Create the messenger data router."""

    router = APIRouter(prefix="/api", tags=["messengers"])

    async def _call(
        op: str, failure: str, fn: Callable[[Messenger], Awaitable]
    ) -> JSONResponse:
        messenger = slot.current
        if messenger is None:
            return JSONResponse(NO_MESSENGER, status_code=400)

        started = time.time()
        try:
            result = await fn(messenger)
        except Exception as e:
            metrics.inc("api.errors", labels={"op": op})
            logger.error(f"Error in {op}: {e}", exc_info=True)
            return JSONResponse({"error": failure}, status_code=500)

        elapsed_ms = (time.time() - started) * 1000
        metrics.observe("api.latency_ms", elapsed_ms, labels={"op": op})
        logger.debug(
            f"api:{op} {elapsed_ms:.0f}ms",
            extra={"messenger": slot.name, "duration_ms": round(elapsed_ms)},
        )
        if isinstance(result, list):
            return JSONResponse([item.to_dict() for item in result])
        return JSONResponse(result.to_dict())

    def _folder_capable(feature: str) -> JSONResponse | None:
        messenger = slot.current
        if messenger is None:
            return JSONResponse(NO_MESSENGER, status_code=400)
        if not isinstance(messenger, FolderMessenger):
            return JSONResponse(
                {"error": f"Messenger does not support {feature}"}, status_code=400
            )
        return None

    # ─── Chat-style ───────────────────────────────────────────

    @router.get("/available-messengers")
    async def get_available_messengers() -> JSONResponse:
        return JSONResponse(available_messenger_names(store))

    @router.get("/contacts")
    async def get_contacts() -> JSONResponse:
        return await _call(
            "contacts", "Failed to fetch contacts", lambda m: m.get_contacts()
        )

    @router.get("/last-recipient")
    async def get_last_recipient() -> JSONResponse:
        last = last_recipients.load(slot.name or "unknown")
        return JSONResponse(last.to_dict() if last else None)

    @router.get("/messages/{entity_id}")
    async def get_messages(entity_id: str) -> JSONResponse:
        return await _call(
            "messages",
            "Failed to fetch messages",
            lambda m: m.get_messages(entity_id, settings.history_limit),
        )

    # ─── Folder-style ─────────────────────────────────────────

    @router.get("/folders")
    async def get_folders() -> JSONResponse:
        rejected = _folder_capable("folders")
        if rejected:
            return rejected
        return await _call(
            "folders", "Failed to fetch folders", lambda m: m.get_folders()
        )

    @router.get("/folders/{path:path}")
    async def get_folder_path(path: str, limit: str | None = None) -> JSONResponse:
        parsed = split_folder_path(path)
        if parsed is None:
            return JSONResponse({"detail": "Not Found"}, status_code=404)
        rejected = _folder_capable("folder messages")
        if rejected:
            return rejected

        folder_id, message_id = parsed
        if message_id is None:
            count = parse_limit(limit, settings.folder_page_size)
            return await _call(
                "folder-messages",
                "Failed to fetch folder messages",
                lambda m: m.get_folder_messages(folder_id, count),
            )
        return await _call(
            "folder-message",
            "Failed to fetch message",
            lambda m: m.get_folder_message(folder_id, message_id),
        )

    return router
