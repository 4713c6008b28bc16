"""
Audio sources for recording — 16 kHz mono int16 PCM, the bridge's wire format.

Each source takes an async chunk callback and exposes start() / stop().
MicrophoneSource captures from the default input device (sounddevice);
WavFileSource replays a WAV file in real time, which is handy on machines
without a microphone and in demos.
"""

from __future__ import annotations

import asyncio
import logging
import wave
from typing import Any, Awaitable, Callable

from evenbridge.core.config import AudioConfig

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[bytes], Awaitable[None]]

BLOCK_MS = 40


class MicrophoneSource:
    def __init__(self, on_chunk: ChunkCallback, audio: AudioConfig | None = None) -> None:
        self.on_chunk = on_chunk
        self.audio = audio or AudioConfig()
        self._stream: Any = None
        self._loop: asyncio.AbstractEventLoop | None = None

    async def start(self) -> None:
        import sounddevice as sd

        self._loop = asyncio.get_running_loop()
        self._stream = sd.RawInputStream(
            samplerate=self.audio.sample_rate,
            blocksize=int(self.audio.sample_rate * BLOCK_MS / 1000),
            dtype="int16",
            channels=self.audio.channels,
            callback=self._callback,
        )
        self._stream.start()
        logger.info("Microphone opened")

    def _callback(self, indata, frames, timeinfo, status) -> None:  # sounddevice thread
        if status:
            logger.debug(f"Audio status: {status}")
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        asyncio.run_coroutine_threadsafe(self.on_chunk(bytes(indata)), loop)

    async def stop(self) -> None:
        stream, self._stream = self._stream, None
        if stream is not None:
            stream.stop()
            stream.close()
            logger.info("Microphone closed")


class WavFileSource:
    """Streams a WAV file as if it were being recorded."""

    def __init__(
        self,
        on_chunk: ChunkCallback,
        path: str,
        audio: AudioConfig | None = None,
        realtime: bool = True,
    ) -> None:
        self.on_chunk = on_chunk
        self.path = path
        self.audio = audio or AudioConfig()
        self.realtime = realtime
        self._task: asyncio.Task | None = None

    def _read_frames(self) -> bytes:
        with wave.open(self.path, "rb") as wav:
            if (
                wav.getframerate() != self.audio.sample_rate
                or wav.getsampwidth() != self.audio.sample_width
                or wav.getnchannels() != self.audio.channels
            ):
                raise ValueError(
                    f"{self.path}: expected {self.audio.sample_rate} Hz "
                    f"{self.audio.sample_width * 8}-bit mono"
                )
            return wav.readframes(wav.getnframes())

    async def start(self) -> None:
        pcm = await asyncio.to_thread(self._read_frames)
        self._task = asyncio.create_task(self._play(pcm))
        logger.info(f"Streaming {self.path} ({len(pcm)} bytes)")

    async def _play(self, pcm: bytes) -> None:
        chunk_size = self.audio.bytes_per_second * BLOCK_MS // 1000
        for offset in range(0, len(pcm), chunk_size):
            await self.on_chunk(pcm[offset:offset + chunk_size])
            if self.realtime:
                await asyncio.sleep(BLOCK_MS / 1000)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        if self.realtime:
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
