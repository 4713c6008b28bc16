"""
Settings API — credential management and the Telegram login flow.

Endpoints:
    GET    /api/settings/status                   → {service: {configured, fields}}
    POST   /api/settings/{service}                → store credentials
    DELETE /api/settings/{service}                → forget credentials
    POST   /api/settings/telegram/auth/start      → {phone}
    POST   /api/settings/telegram/auth/code       → {code}
    POST   /api/settings/telegram/auth/password   → {password}
    POST   /api/settings/telegram/auth/reset
    GET    /api/settings/telegram/auth/state

Secrets are write-only: nothing here ever returns a credential value.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from evenbridge.services.settings_store import SERVICE_FIELDS

if TYPE_CHECKING:
    from evenbridge.core.config import AuthConfig
    from evenbridge.services.settings_store import CredentialStore
    from evenbridge.services.telegram_auth import TelegramAuthFlow

logger = logging.getLogger(__name__)


async def _json_body(request: Request) -> dict:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return {}
    return body if isinstance(body, dict) else {}


def create_settings_router(
    store: "CredentialStore",
    auth_flow: "TelegramAuthFlow",
    auth_settings: "AuthConfig",
) -> APIRouter:
    """Create the settings router."""

    router = APIRouter(prefix="/api/settings", tags=["settings"])

    # ─── Telegram auth flow ───────────────────────────────────

    @router.post("/telegram/auth/start")
    async def auth_start(request: Request) -> JSONResponse:
        phone = (await _json_body(request)).get("phone")
        if not phone:
            return JSONResponse({"error": "Phone number required"}, status_code=400)
        try:
            return JSONResponse(await auth_flow.start(str(phone)))
        except Exception as e:
            logger.error(f"Telegram auth start failed: {e}", exc_info=True)
            return JSONResponse({"state": "error", "error": str(e)}, status_code=500)

    @router.post("/telegram/auth/code")
    async def auth_code(request: Request) -> JSONResponse:
        code = (await _json_body(request)).get("code")
        if not code:
            return JSONResponse({"error": "Code required"}, status_code=400)
        result = auth_flow.submit_code(str(code))
        if "error" in result:
            return JSONResponse(result)
        await asyncio.sleep(auth_settings.submit_settle_delay)
        return JSONResponse(auth_flow.snapshot())

    @router.post("/telegram/auth/password")
    async def auth_password(request: Request) -> JSONResponse:
        password = (await _json_body(request)).get("password")
        if not password:
            return JSONResponse({"error": "Password required"}, status_code=400)
        result = auth_flow.submit_password(str(password))
        if "error" in result:
            return JSONResponse(result)
        await asyncio.sleep(auth_settings.submit_settle_delay)
        return JSONResponse(auth_flow.snapshot())

    @router.get("/telegram/auth/state")
    async def auth_state() -> JSONResponse:
        return JSONResponse(auth_flow.snapshot())

    @router.post("/telegram/auth/reset")
    async def auth_reset() -> JSONResponse:
        await auth_flow.reset()
        return JSONResponse({"ok": True})

    # ─── Credentials ──────────────────────────────────────────

    @router.get("/status")
    async def get_status() -> JSONResponse:
        status = store.status()
        status["telegram"]["authenticated"] = auth_flow.is_authenticated()
        return JSONResponse(status)

    @router.post("/{service}")
    async def save_service(service: str, request: Request) -> JSONResponse:
        if service not in SERVICE_FIELDS:
            return JSONResponse({"error": "Unknown service"}, status_code=400)
        store.set_service(service, await _json_body(request))
        return JSONResponse({"ok": True})

    @router.delete("/{service}")
    async def delete_service(service: str) -> JSONResponse:
        if service not in SERVICE_FIELDS:
            return JSONResponse({"error": "Unknown service"}, status_code=400)
        store.delete_service(service)
        return JSONResponse({"ok": True})

    return router
