"""
Telegram Interactive Auth — phone/code/password login driven over HTTP.

Telethon's client.start() asks for the login code and the 2FA password via
callbacks. Here each callback parks a one-shot future and flips the flow
state; the HTTP layer polls the state and resolves the futures when the user
submits the code or password.

    idle → awaiting_code → awaiting_password → authenticated
      └──────────────┴───────────┴──────────→ error

One login task runs at a time. Every start() or reset() bumps a generation
counter, so a task that finishes after being superseded cannot overwrite the
state of the flow that replaced it.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Callable

from telethon import TelegramClient
from telethon.sessions import StringSession

from evenbridge.core.config import AuthConfig
from evenbridge.messengers.telegram import TelegramSessionFile, parse_api_id
from evenbridge.services.settings_store import CredentialStore

logger = logging.getLogger(__name__)


class AuthState(str, Enum):
    IDLE = "idle"
    AWAITING_CODE = "awaiting_code"
    AWAITING_PASSWORD = "awaiting_password"
    AUTHENTICATED = "authenticated"
    ERROR = "error"


_AWAITING_INPUT = (AuthState.AWAITING_CODE, AuthState.AWAITING_PASSWORD)
_START_SETTLED = (AuthState.AWAITING_CODE, AuthState.AUTHENTICATED, AuthState.ERROR)


def _default_client_factory(session: str, api_id: int, api_hash: str) -> TelegramClient:
    return TelegramClient(StringSession(session), api_id, api_hash, connection_retries=5)


class TelegramAuthFlow:
    def __init__(
        self,
        store: CredentialStore,
        session_file: TelegramSessionFile,
        settings: AuthConfig | None = None,
        client_factory: Callable[[str, int, str], Any] = _default_client_factory,
    ) -> None:
        self._store = store
        self._session_file = session_file
        self._settings = settings or AuthConfig()
        self._client_factory = client_factory

        self.state = AuthState.IDLE
        self.error = ""
        self._generation = 0
        self._task: asyncio.Task | None = None
        self._pending_code: asyncio.Future | None = None
        self._pending_password: asyncio.Future | None = None
        self._changed = asyncio.Event()

    # ─── State ────────────────────────────────────────────────────

    def snapshot(self, error: str | None = None) -> dict[str, Any]:
        result: dict[str, Any] = {"state": self.state.value}
        if error:
            result["error"] = error
        elif self.state == AuthState.ERROR:
            result["error"] = self.error
        return result

    def is_authenticated(self) -> bool:
        return self._session_file.exists()

    def _set_state(self, state: AuthState, error: str = "") -> None:
        self.state = state
        self.error = error
        self._changed.set()
        logger.debug(f"Telegram auth state -> {state.value}")

    async def wait_for(self, targets: tuple[AuthState, ...], timeout: float) -> None:
        """Return once the state is one of targets, or when timeout expires."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while self.state not in targets:
            remaining = deadline - loop.time()
            if remaining <= 0:
                return
            self._changed.clear()
            try:
                await asyncio.wait_for(self._changed.wait(), remaining)
            except asyncio.TimeoutError:
                return

    def _drop_pending(self) -> None:
        for fut in (self._pending_code, self._pending_password):
            if fut is not None and not fut.done():
                fut.cancel()
        self._pending_code = None
        self._pending_password = None

    # ─── Flow ─────────────────────────────────────────────────────

    async def start(self, phone: str) -> dict[str, Any]:
        if self.state in _AWAITING_INPUT:
            return self.snapshot(error="Auth already in progress")

        api_id = parse_api_id(self._store.get_credential("telegram.apiId"))
        api_hash = self._store.get_credential("telegram.apiHash")
        if not api_id or not api_hash:
            self._set_state(AuthState.ERROR, "Telegram API credentials not configured")
            return self.snapshot()

        await self._cancel_task()
        self._generation += 1
        self._set_state(AuthState.IDLE)

        client = self._client_factory(self._session_file.load(), api_id, api_hash)
        self._task = asyncio.create_task(self._run(self._generation, client, phone))

        await self.wait_for(_START_SETTLED, self._settings.start_timeout)
        return self.snapshot()

    async def _run(self, generation: int, client: Any, phone: str) -> None:
        loop = asyncio.get_running_loop()

        def current() -> bool:
            return generation == self._generation

        async def ask_code() -> str:
            fut = loop.create_future()
            if current():
                self._pending_code = fut
                self._set_state(AuthState.AWAITING_CODE)
            return await fut

        async def ask_password() -> str:
            fut = loop.create_future()
            if current():
                self._pending_password = fut
                self._set_state(AuthState.AWAITING_PASSWORD)
            return await fut

        try:
            await client.start(phone=phone, code_callback=ask_code, password=ask_password)
            self._session_file.save(client.session.save())
            if current():
                self._set_state(AuthState.AUTHENTICATED)
                logger.info("Telegram authenticated via Settings")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Telegram auth failed: {e}")
            if current():
                self._drop_pending()
                self._set_state(AuthState.ERROR, str(e) or "Auth failed")
        finally:
            await client.disconnect()

    def submit_code(self, code: str) -> dict[str, Any]:
        fut = self._pending_code
        if self.state != AuthState.AWAITING_CODE or fut is None or fut.done():
            return self.snapshot(error="Not awaiting code")
        fut.set_result(code)
        self._pending_code = None
        return self.snapshot()

    def submit_password(self, password: str) -> dict[str, Any]:
        fut = self._pending_password
        if self.state != AuthState.AWAITING_PASSWORD or fut is None or fut.done():
            return self.snapshot(error="Not awaiting password")
        fut.set_result(password)
        self._pending_password = None
        return self.snapshot()

    async def _cancel_task(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def reset(self) -> None:
        self._generation += 1
        self._drop_pending()
        await self._cancel_task()
        self._set_state(AuthState.IDLE)
        logger.info("Telegram auth flow reset")
