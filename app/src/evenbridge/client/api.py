"""
Bridge REST client (httpx).

Every request runs as a tracked task so abort_inflight() can cancel all of
them at once, e.g. when the display goes to sleep. An aborted request
raises RequestAborted; any other failure raises BridgeAPIError.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any
from urllib.parse import quote

import httpx

from evenbridge.core.config import ClientConfig
from evenbridge.messengers.base import Contact, Folder, FolderMessage, Message
from evenbridge.services.last_recipient import LastRecipient

logger = logging.getLogger(__name__)


class BridgeAPIError(Exception):
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RequestAborted(Exception):
    """The request was cancelled by abort_inflight()."""


def _segment(value: str) -> str:
    return quote(value, safe="")


class BridgeAPI:
    def __init__(
        self,
        settings: ClientConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings or ClientConfig()
        self._http = httpx.AsyncClient(
            base_url=self.settings.server_url,
            timeout=self.settings.request_timeout,
            transport=transport,
        )
        self._inflight: set[asyncio.Task] = set()
        self._aborted: set[asyncio.Task] = set()

    async def aclose(self) -> None:
        await self._http.aclose()

    def abort_inflight(self) -> int:
        """Cancel every in-flight request. Returns how many were cancelled."""
        count = 0
        for task in list(self._inflight):
            if not task.done():
                self._aborted.add(task)
                task.cancel()
                count += 1
        return count

    async def _request(
        self,
        method: str,
        path: str,
        failure: str,
        timeout: float | None = None,
        body: dict | None = None,
    ) -> Any:
        kwargs: dict[str, Any] = {}
        if timeout is not None:
            kwargs["timeout"] = timeout
        if body is not None:
            kwargs["json"] = body

        task = asyncio.ensure_future(self._http.request(method, path, **kwargs))
        self._inflight.add(task)
        try:
            response = await task
        except asyncio.CancelledError:
            if task in self._aborted:
                raise RequestAborted(path) from None
            raise
        except httpx.HTTPError as e:
            raise BridgeAPIError(f"{failure}: {e}") from e
        finally:
            self._inflight.discard(task)
            self._aborted.discard(task)

        if not response.is_success:
            raise BridgeAPIError(failure, response.status_code)
        return response.json()

    # ─── Messenger data ───────────────────────────────────────

    async def available_messengers(self) -> list[str]:
        return await self._request(
            "GET", "/api/available-messengers", "Failed to fetch available messengers"
        )

    async def contacts(self) -> list[Contact]:
        data = await self._request(
            "GET",
            "/api/contacts",
            "Failed to fetch contacts",
            timeout=self.settings.contacts_timeout,
        )
        return [Contact.from_dict(c) for c in data]

    async def last_recipient(self) -> LastRecipient | None:
        """Best effort: None on any failure except an abort."""
        try:
            data = await self._request(
                "GET", "/api/last-recipient", "Failed to fetch last recipient"
            )
        except BridgeAPIError as e:
            logger.debug(f"No last recipient: {e}")
            return None
        if not data or not data.get("id"):
            return None
        return LastRecipient(
            id=str(data["id"]),
            name=data.get("name") or "",
            username=data.get("username") or None,
        )

    async def messages(self, entity_id: str) -> list[Message]:
        data = await self._request(
            "GET", f"/api/messages/{_segment(entity_id)}", "Failed to fetch messages"
        )
        return [Message.from_dict(m) for m in data]

    async def folders(self) -> list[Folder]:
        data = await self._request(
            "GET",
            "/api/folders",
            "Failed to fetch folders",
            timeout=self.settings.folders_timeout,
        )
        return [Folder.from_dict(f) for f in data]

    async def folder_messages(self, folder_id: str, limit: int = 10) -> list[FolderMessage]:
        data = await self._request(
            "GET",
            f"/api/folders/{_segment(folder_id)}/messages?limit={limit}",
            "Failed to fetch folder messages",
            timeout=self.settings.folders_timeout,
        )
        return [FolderMessage.from_dict(m) for m in data]

    async def folder_message(self, folder_id: str, message_id: str) -> FolderMessage:
        data = await self._request(
            "GET",
            f"/api/folders/{_segment(folder_id)}/messages/{_segment(message_id)}",
            "Failed to fetch message",
            timeout=self.settings.folders_timeout,
        )
        return FolderMessage.from_dict(data)

    # ─── Settings ─────────────────────────────────────────────

    async def settings_status(self) -> dict:
        return await self._request("GET", "/api/settings/status", "Failed to fetch settings")

    async def save_settings(self, service: str, values: dict) -> dict:
        return await self._request(
            "POST", f"/api/settings/{service}", "Failed to save settings", body=values
        )

    async def delete_settings(self, service: str) -> dict:
        return await self._request(
            "DELETE", f"/api/settings/{service}", "Failed to delete settings"
        )

    async def telegram_auth_start(self, phone: str) -> dict:
        # The server waits up to its start timeout for Telegram to answer
        return await self._request(
            "POST",
            "/api/settings/telegram/auth/start",
            "Failed to start auth",
            timeout=self.settings.contacts_timeout,
            body={"phone": phone},
        )

    async def telegram_auth_code(self, code: str) -> dict:
        return await self._request(
            "POST", "/api/settings/telegram/auth/code", "Failed to submit code",
            body={"code": code},
        )

    async def telegram_auth_password(self, password: str) -> dict:
        return await self._request(
            "POST", "/api/settings/telegram/auth/password", "Failed to submit password",
            body={"password": password},
        )

    async def telegram_auth_state(self) -> dict:
        return await self._request(
            "GET", "/api/settings/telegram/auth/state", "Failed to fetch auth state"
        )

    async def telegram_auth_reset(self) -> dict:
        return await self._request(
            "POST", "/api/settings/telegram/auth/reset", "Failed to reset auth"
        )
