"""
Even Bridge — voice messaging bridge server.

Wearable/terminal clients pick a messenger, browse contacts or mail folders
over REST, stream microphone audio over /ws, and confirm the transcribed
text before it is sent.

Run: uvicorn evenbridge.main:app --host 0.0.0.0 --port 3000
  or: evenbridge-server
"""

from __future__ import annotations

import logging
from functools import partial
from pathlib import Path
from typing import Callable

from fastapi import FastAPI, WebSocket
from fastapi.responses import HTMLResponse, JSONResponse
from fastapi.staticfiles import StaticFiles

import evenbridge.core.config as _config_mod
from evenbridge.core.config import BridgeConfig
from evenbridge.core.errors import ConfigurationError
from evenbridge.core.logging import setup_logging
from evenbridge.core.metrics import metrics
from evenbridge.http.api import create_api_router
from evenbridge.http.settings import create_settings_router
from evenbridge.messengers.base import Messenger
from evenbridge.messengers.registry import (
    ActiveMessengerSlot,
    available_messenger_names,
    create_messenger,
)
from evenbridge.messengers.telegram import TelegramSessionFile
from evenbridge.services.last_recipient import LastRecipientStore
from evenbridge.services.settings_store import CredentialStore
from evenbridge.services.telegram_auth import TelegramAuthFlow
from evenbridge.services.transcription import TranscriptionService
from evenbridge.ws.session import BridgeSession, Transcriber

logger = logging.getLogger("evenbridge")

VERSION = "0.1.0"


def create_app(
    bridge_config: BridgeConfig | None = None,
    store: CredentialStore | None = None,
    transcriber: Transcriber | None = None,
    messenger_factory: Callable[[str], Messenger] | None = None,
    auth_flow: TelegramAuthFlow | None = None,
) -> FastAPI:
    """Build the app. Collaborators default to the real services."""
    cfg = bridge_config or _config_mod.config
    data_dir = cfg.server.data_dir

    store = store or CredentialStore(data_dir)
    slot = ActiveMessengerSlot()
    last_recipients = LastRecipientStore(data_dir)
    transcriber = transcriber or TranscriptionService(store, cfg.transcription, cfg.audio)
    messenger_factory = messenger_factory or partial(
        create_messenger, store=store, data_dir=data_dir, settings=cfg.messenger
    )
    auth_flow = auth_flow or TelegramAuthFlow(
        store, TelegramSessionFile(data_dir), cfg.auth
    )

    app = FastAPI(title="Even Bridge", version=VERSION)
    app.state.slot = slot
    app.state.store = store

    static_dir = Path(cfg.server.static_dir) if cfg.server.static_dir else None
    if static_dir is not None and static_dir.exists():
        app.mount("/static", StaticFiles(directory=str(static_dir)), name="static")

    app.include_router(create_api_router(slot, last_recipients, store, cfg.messenger))
    app.include_router(create_settings_router(store, auth_flow, cfg.auth))

    @app.on_event("startup")
    async def startup():
        if not store.get_credential("openai.apiKey"):
            raise ConfigurationError(
                "OpenAI API key not configured (set OPENAI_API_KEY or settings.json)"
            )
        logger.info(
            f"Even Bridge v{VERSION} ready (data_dir={data_dir}, "
            f"messengers={available_messenger_names(store)})"
        )

    @app.on_event("shutdown")
    async def shutdown():
        await auth_flow.reset()
        await slot.clear()

    @app.get("/")
    async def root():
        if static_dir is not None:
            index_path = static_dir / "index.html"
            if index_path.exists():
                return HTMLResponse(index_path.read_text())
        return HTMLResponse(f"<h1>Even Bridge v{VERSION}</h1><p>Client files not found.</p>")

    @app.get("/health")
    async def health():
        """Health check — configured services and the active messenger."""
        return JSONResponse(
            {
                "status": "ok",
                "version": VERSION,
                "activeMessenger": slot.name,
                "availableMessengers": available_messenger_names(store),
                "telegramAuthenticated": auth_flow.is_authenticated(),
            }
        )

    @app.get("/metrics")
    async def get_metrics():
        return JSONResponse(metrics.snapshot())

    @app.websocket("/ws")
    async def websocket_endpoint(ws: WebSocket):
        session = BridgeSession(
            ws,
            slot=slot,
            transcriber=transcriber,
            last_recipients=last_recipients,
            messenger_factory=messenger_factory,
            audio=cfg.audio,
        )
        await session.run()

    return app


def main() -> None:
    import uvicorn

    cfg = _config_mod.config
    uvicorn.run(
        "evenbridge.main:app",
        host=cfg.server.host,
        port=cfg.server.port,
        log_config=None,
    )


# --- Setup ---
setup_logging()
app = create_app()


if __name__ == "__main__":
    main()
