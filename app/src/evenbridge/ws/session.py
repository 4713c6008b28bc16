"""
WebSocket Session — one handler per /ws connection.

Protocol:
  Client sends:
    {"type": "select-messenger", "name": "telegram"}     — connect an adapter
    <binary frame>                                      — raw PCM audio chunk
    {"type": "stop"}  (or the bare text "stop")         — end of recording
    {"type": "send", "text", "recipient",
     "recipientId"?, "recipientName"?, "recipientUsername"?}
    {"type": "reply", "text", "messageId"}

  Server sends:
    {"type": "status", "text": "..."}
    {"type": "messenger-selected", "name": "Telegram", "hasFolders": false}
    {"type": "preview", "text": "..."}                  — transcription result
    {"type": "sent", "text": "..."}
    {"type": "error", "text": "..."}

The only per-connection state is the audio buffer. The active messenger is
process-wide (ActiveMessengerSlot) and survives reconnects.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from typing import Any, Awaitable, Callable, Protocol

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from evenbridge.core.config import AudioConfig
from evenbridge.core.logging import StageTimer
from evenbridge.core.metrics import metrics
from evenbridge.messengers.base import FolderMessenger, Messenger
from evenbridge.messengers.registry import ActiveMessengerSlot
from evenbridge.messengers.text import display_name
from evenbridge.services.last_recipient import LastRecipient, LastRecipientStore
from evenbridge.services.transcription import pcm_duration

logger = logging.getLogger(__name__)


class Transcriber(Protocol):
    async def transcribe(self, pcm: bytes) -> str: ...


class BridgeSession:
    """Protocol handler for a single WebSocket connection."""

    def __init__(
        self,
        ws: WebSocket,
        slot: ActiveMessengerSlot,
        transcriber: Transcriber,
        last_recipients: LastRecipientStore,
        messenger_factory: Callable[[str], Messenger],
        audio: AudioConfig | None = None,
    ) -> None:
        self.ws = ws
        self.slot = slot
        self.transcriber = transcriber
        self.last_recipients = last_recipients
        self.messenger_factory = messenger_factory
        self.audio = audio or AudioConfig()

        self.session_id = str(uuid.uuid4())[:8]
        self.audio_chunks: list[bytes] = []
        self._tasks: set[asyncio.Task] = set()

    # ─── Connection lifecycle ─────────────────────────────────

    async def run(self) -> None:
        await self.ws.accept()
        metrics.gauge_inc("ws.connections")
        logger.info("Client connected", extra={"session_id": self.session_id})

        try:
            await self._message_loop()
        except WebSocketDisconnect:
            logger.info("Client disconnected", extra={"session_id": self.session_id})
        except Exception as e:
            logger.error(f"WS error: {e}", exc_info=True)
        finally:
            self.audio_chunks.clear()
            for task in list(self._tasks):
                task.cancel()
            metrics.gauge_dec("ws.connections")

    async def _message_loop(self) -> None:
        while True:
            message = await self.ws.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))

            data = message.get("bytes")
            if data is not None:
                self.audio_chunks.append(data)
                continue

            text = message.get("text")
            if text is not None:
                await self.handle_text(text)

    async def send(self, msg_type: str, **fields: Any) -> None:
        """Send a JSON frame; dropped if the socket is already gone."""
        if self.ws.client_state != WebSocketState.CONNECTED:
            return
        try:
            await self.ws.send_text(json.dumps({"type": msg_type, **fields}))
        except (WebSocketDisconnect, RuntimeError) as e:
            logger.debug(f"Dropped {msg_type} frame: {e}")

    async def send_error(self, text: str) -> None:
        metrics.inc("ws.errors")
        await self.send("error", text=text)

    # ─── Dispatch ─────────────────────────────────────────────

    async def handle_text(self, raw: str) -> None:
        if raw == "stop":
            await self.handle_stop()
            return

        try:
            msg = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Ignoring non-JSON frame: {raw[:80]!r}")
            return
        if not isinstance(msg, dict):
            logger.warning(f"Ignoring non-object frame: {raw[:80]!r}")
            return

        msg_type = msg.get("type")
        if msg_type == "select-messenger":
            # Runs beside the loop so audio and a newer selection keep flowing
            self._spawn(self.handle_select(str(msg.get("name") or "")))
        elif msg_type == "stop":
            await self.handle_stop()
        elif msg_type == "send":
            await self.handle_send(msg)
        elif msg_type == "reply":
            await self.handle_reply(msg)
        else:
            logger.warning(f"Ignoring unknown frame type: {msg_type!r}")

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # ─── Handlers ─────────────────────────────────────────────

    async def handle_select(self, name: str) -> None:
        label = display_name(name)
        ticket = self.slot.begin(name)
        messenger: Messenger | None = None
        try:
            messenger = self.messenger_factory(name)
            await self.send("status", text=f"Connecting to {label}...")
            await messenger.init()
        except Exception as e:
            logger.error(f"Error initializing {name}: {e}", exc_info=True)
            metrics.inc("messenger.init_failures", labels={"messenger": name})
            self.slot.abandon(ticket)
            if messenger is not None:
                await self._close_quietly(messenger)
            await self.send_error(f"Failed to connect to {label}")
            return

        if not await self.slot.commit(ticket, messenger):
            logger.info(
                f"Discarding {name}: a newer selection was requested",
                extra={"messenger": name},
            )
            await self._close_quietly(messenger)
            await self.send_error(f"Failed to connect to {label}")
            return

        await self.send(
            "messenger-selected", name=messenger.name, hasFolders=messenger.has_folders
        )
        logger.info(f"Messenger selected: {messenger.name}", extra={"messenger": name})

    async def handle_stop(self) -> None:
        logger.info(f"Recording stopped. Received {len(self.audio_chunks)} audio chunks.")
        if not self.audio_chunks:
            await self.send_error("No audio recorded")
            return

        timer = StageTimer()
        pcm = b"".join(self.audio_chunks)
        self.audio_chunks.clear()
        duration = pcm_duration(pcm, self.audio)
        timer.mark("Buffer")
        logger.info(f"Processing {len(pcm)} bytes ({duration:.1f}s) of audio...")
        metrics.observe("audio.duration_s", duration)

        await self.send("status", text="Transcribing...")
        try:
            text = await self.transcriber.transcribe(pcm)
        except Exception as e:
            logger.error(f"Transcription error: {e}", exc_info=True)
            await self.send_error("Error transcribing audio")
            return
        timer.mark("Transcribe")
        logger.info(
            f"Transcription: {text!r} ({timer.summary()})",
            extra={"session_id": self.session_id, "duration_ms": round(timer.total() * 1000)},
        )

        if text.strip():
            await self.send("preview", text=text)
        else:
            await self.send_error("No speech detected")

    async def handle_send(self, msg: dict) -> None:
        messenger = self.slot.current
        if messenger is None:
            await self.send_error("No messenger selected")
            return

        text = msg.get("text")
        recipient = msg.get("recipient")
        if not text or not recipient:
            await self.send_error("Missing text or recipient")
            return
        messenger_key = self.slot.name or messenger.name.lower()

        try:
            await messenger.send_message(text, str(recipient))
        except Exception as e:
            logger.error(f"Send error: {e}", exc_info=True)
            await self.send_error("Error sending message")
            return

        metrics.inc("ws.sends", labels={"messenger": messenger_key})
        recipient_id = msg.get("recipientId")
        if recipient_id:
            try:
                self.last_recipients.save(
                    messenger_key,
                    LastRecipient(
                        id=str(recipient_id),
                        name=msg.get("recipientName") or "Unknown",
                        username=msg.get("recipientUsername") or None,
                    ),
                )
            except OSError as e:
                logger.warning(f"Could not persist last recipient: {e}")

        await self.send("sent", text=text)
        logger.info(f"Sent to {recipient} successfully", extra={"messenger": messenger_key})

    async def handle_reply(self, msg: dict) -> None:
        messenger = self.slot.current
        if messenger is None:
            await self.send_error("No messenger selected")
            return

        text = msg.get("text")
        message_id = msg.get("messageId")
        if not text or not message_id:
            await self.send_error("Missing text or messageId")
            return
        if not isinstance(messenger, FolderMessenger):
            await self.send_error("Messenger does not support replies")
            return

        try:
            await messenger.reply_to_message(str(message_id), text)
        except Exception as e:
            logger.error(f"Reply error: {e}", exc_info=True)
            await self.send_error("Error sending reply")
            return

        metrics.inc("ws.replies", labels={"messenger": self.slot.name or messenger.name})
        await self.send("sent", text=text)
        logger.info(f"Replied to {message_id} successfully")

    @staticmethod
    async def _close_quietly(messenger: Messenger) -> None:
        try:
            await messenger.close()
        except Exception as e:
            logger.warning(f"Error closing {messenger.name}: {e}")
