"""
Transcription Service — raw PCM in, text out (OpenAI Whisper).

Clients stream 16 kHz mono 16-bit little-endian PCM. The buffer is wrapped
in a WAV container and uploaded once; there are no retries.
"""

from __future__ import annotations

import io
import logging
import time
import wave

from openai import AsyncOpenAI

from evenbridge.core.config import AudioConfig, TranscriptionConfig
from evenbridge.core.errors import ConfigurationError, TranscriptionError
from evenbridge.core.metrics import metrics
from evenbridge.services.settings_store import CredentialStore

logger = logging.getLogger(__name__)


def pcm_to_wav(pcm: bytes, audio: AudioConfig | None = None) -> bytes:
    """Prefix raw PCM with a 44-byte RIFF/WAVE header."""
    audio = audio or AudioConfig()
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wav:
        wav.setnchannels(audio.channels)
        wav.setsampwidth(audio.sample_width)
        wav.setframerate(audio.sample_rate)
        wav.writeframes(pcm)
    return buf.getvalue()


def pcm_duration(pcm: bytes, audio: AudioConfig | None = None) -> float:
    """Seconds of audio in a PCM buffer."""
    audio = audio or AudioConfig()
    return len(pcm) / audio.bytes_per_second


class TranscriptionService:
    def __init__(
        self,
        store: CredentialStore,
        settings: TranscriptionConfig | None = None,
        audio: AudioConfig | None = None,
    ) -> None:
        self._store = store
        self._settings = settings or TranscriptionConfig()
        self._audio = audio or AudioConfig()
        self.client: AsyncOpenAI | None = None
        self._client_key: str | None = None

    def _get_client(self) -> AsyncOpenAI:
        api_key = self._store.get_credential("openai.apiKey")
        if not api_key:
            raise ConfigurationError("OpenAI API key not configured. Add it in Settings.")
        # Rebuild when the key changes through the settings page
        if self.client is None or api_key != self._client_key:
            self.client = AsyncOpenAI(api_key=api_key, timeout=self._settings.timeout)
            self._client_key = api_key
        return self.client

    async def transcribe(self, pcm: bytes) -> str:
        """Transcribe a PCM buffer. Empty string means no speech."""
        client = self._get_client()
        wav_bytes = pcm_to_wav(pcm, self._audio)

        started = time.time()
        metrics.inc("transcription.requests")
        try:
            response = await client.audio.transcriptions.create(
                model=self._settings.model,
                file=("audio.wav", wav_bytes, "audio/wav"),
            )
        except Exception as e:
            metrics.inc("transcription.errors")
            raise TranscriptionError(f"Transcription failed: {e}") from e

        elapsed_ms = (time.time() - started) * 1000
        metrics.observe("transcription.latency_ms", elapsed_ms)
        text = (response.text or "").strip()
        logger.info(f"Transcribed {len(pcm)} bytes in {elapsed_ms:.0f}ms: {text[:60]!r}")
        return text
