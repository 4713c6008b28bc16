"""
Bridge WebSocket connection (websockets) with automatic reconnect.

Inbound JSON frames are handed to on_message. If the socket drops, the
connection waits reconnect_delay seconds and dials again until close().
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from typing import Any, Awaitable, Callable

import websockets
from websockets.exceptions import WebSocketException

logger = logging.getLogger(__name__)

MessageHandler = Callable[[dict], "Awaitable[None] | None"]


def ws_url(server_url: str) -> str:
    """http(s)://host:port → ws(s)://host:port/ws"""
    if server_url.startswith("https://"):
        base = "wss://" + server_url[len("https://"):]
    elif server_url.startswith("http://"):
        base = "ws://" + server_url[len("http://"):]
    else:
        base = server_url
    return base.rstrip("/") + "/ws"


class BridgeConnection:
    def __init__(
        self,
        url: str,
        on_message: MessageHandler,
        reconnect_delay: float = 2.0,
        connect: Callable[..., Any] = websockets.connect,
    ) -> None:
        self.url = url
        self.on_message = on_message
        self.reconnect_delay = reconnect_delay
        self._connect = connect
        self._ws: Any = None
        self._task: asyncio.Task | None = None
        self._closing = False
        self.connected = asyncio.Event()

    @property
    def is_open(self) -> bool:
        return self._ws is not None and self.connected.is_set()

    def start(self) -> asyncio.Task:
        """Run the connect/receive loop in the background (idempotent)."""
        if self._task is None or self._task.done():
            self._closing = False
            self._task = asyncio.create_task(self._run())
        return self._task

    def ensure_connected(self) -> None:
        """Dial again right away if the loop has stopped."""
        if not self.is_open:
            logger.info("WebSocket not open, reconnecting")
            self.start()

    async def close(self) -> None:
        self._closing = True
        if self._ws is not None:
            await self._ws.close()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None

    async def _run(self) -> None:
        while not self._closing:
            try:
                async with self._connect(self.url, max_size=None) as ws:
                    self._ws = ws
                    self.connected.set()
                    logger.info(f"WebSocket connected to {self.url}")
                    async for raw in ws:
                        await self._dispatch(raw)
            except (WebSocketException, OSError, asyncio.TimeoutError) as e:
                logger.warning(f"WebSocket dropped: {e}")
            finally:
                self._ws = None
                self.connected.clear()

            if self._closing:
                break
            logger.info(f"WebSocket disconnected, reconnecting in {self.reconnect_delay}s")
            await asyncio.sleep(self.reconnect_delay)

    async def _dispatch(self, raw: str | bytes) -> None:
        if isinstance(raw, bytes):
            return
        try:
            msg = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Ignoring non-JSON frame: {raw[:80]!r}")
            return
        try:
            result = self.on_message(msg)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Error handling {msg.get('type')!r}: {e}", exc_info=True)

    async def send_json(self, payload: dict) -> bool:
        """Send a control frame. False (and nothing sent) if not connected."""
        if not self.is_open:
            return False
        await self._ws.send(json.dumps(payload))
        return True

    async def send_audio(self, chunk: bytes) -> bool:
        if not self.is_open:
            return False
        await self._ws.send(chunk)
        return True
