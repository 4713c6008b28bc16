"""
Even Bridge Logging — clean, colorized logging.

Features:
- Color formatter for dev mode (auto-detects TTY)
- JSON structured formatter for production (EVENBRIDGE_LOG_FORMAT=json)
- Suppresses noisy third-party loggers (httpx, openai, telethon, slack_sdk)
- Configurable via EVENBRIDGE_LOG_LEVEL, EVENBRIDGE_LOG_COLOR, EVENBRIDGE_LOG_FORMAT
- Stage timer for the record -> transcribe -> send flow

Structured log extra fields (pass via logger.info(..., extra={...})):
    messenger, session_id, duration_ms, status
"""

from __future__ import annotations

import json
import logging
import os
import sys
import time
from datetime import datetime, timezone


# --- Color codes ---
COLORS = {
    "DEBUG": "\033[36m",  # Cyan
    "INFO": "\033[32m",  # Green
    "WARNING": "\033[33m",  # Yellow
    "ERROR": "\033[31m",  # Red
    "CRITICAL": "\033[1;31m",  # Bold red
    "RESET": "\033[0m",
    "DIM": "\033[2m",
    "BOLD": "\033[1m",
}


class ColorFormatter(logging.Formatter):
    """Colorized log formatter for terminal output."""

    def __init__(self, use_color: bool = True):
        super().__init__(
            fmt="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
            datefmt="%H:%M:%S",
        )
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        if not self.use_color:
            return super().format(record)

        level_color = COLORS.get(record.levelname, "")
        reset = COLORS["RESET"]
        dim = COLORS["DIM"]

        # Save originals
        orig_levelname = record.levelname
        orig_name = record.name

        record.levelname = f"{level_color}{record.levelname}{reset}"
        record.name = f"{dim}{record.name}{reset}"

        result = super().format(record)

        # Restore
        record.levelname = orig_levelname
        record.name = orig_name

        return result


# Structured log fields forwarded from logger.info(..., extra={...})
_STRUCTURED_FIELDS = (
    "messenger",
    "session_id",
    "duration_ms",
    "status",
)


class StructuredFormatter(logging.Formatter):
    """JSON log formatter for production / log aggregation.

    Each log line is a single JSON object. Extra fields passed via
    logger.info("msg", extra={"messenger": "slack", "duration_ms": 42})
    are included at the top level.

    Enable with: EVENBRIDGE_LOG_FORMAT=json
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }

        for key in _STRUCTURED_FIELDS:
            if hasattr(record, key):
                entry[key] = getattr(record, key)

        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class StageTimer:
    """Tracks timing across the stages of a single voice message.

    Usage:
        timer = StageTimer()
        timer.mark("Buffer")
        # ... transcribe ...
        timer.mark("Transcribe")
        timer.summary()  # -> "Buffer: 0.0s | Transcribe: 1.2s | Total: 1.2s"
    """

    def __init__(self):
        self._marks: list[tuple[str, float]] = []
        self._start = time.monotonic()

    def mark(self, stage: str) -> None:
        """Record a timestamp for a stage completion."""
        self._marks.append((stage, time.monotonic()))

    def elapsed(self, stage: str) -> float | None:
        """Time between the previous mark and this one."""
        for i, (name, ts) in enumerate(self._marks):
            if name == stage:
                prev_ts = self._marks[i - 1][1] if i > 0 else self._start
                return ts - prev_ts
        return None

    def total(self) -> float:
        return time.monotonic() - self._start

    def summary(self) -> str:
        parts = []
        for i, (name, ts) in enumerate(self._marks):
            prev_ts = self._marks[i - 1][1] if i > 0 else self._start
            parts.append(f"{name}: {ts - prev_ts:.1f}s")
        parts.append(f"Total: {self.total():.1f}s")
        return " | ".join(parts)


def _should_use_color() -> bool:
    """Auto-detect color support."""
    env_val = os.getenv("EVENBRIDGE_LOG_COLOR", "auto").lower()
    if env_val == "true":
        return True
    if env_val == "false":
        return False
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


def setup_logging(stream=None) -> None:
    """Configure logging for the entire application.

    Call this once at startup. The terminal client passes its own stream so
    log lines don't tear through the prompt.

    Env vars:
        EVENBRIDGE_LOG_LEVEL  — DEBUG / INFO / WARNING / ERROR (default: INFO)
        EVENBRIDGE_LOG_COLOR  — true / false / auto (default: auto, TTY detection)
        EVENBRIDGE_LOG_FORMAT — text / json (default: text)
    """
    level_name = os.getenv("EVENBRIDGE_LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    log_format = os.getenv("EVENBRIDGE_LOG_FORMAT", "text").lower()

    root = logging.getLogger()
    root.setLevel(level)

    # Remove existing handlers (avoid duplicate output)
    root.handlers.clear()

    if log_format == "json":
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = ColorFormatter(use_color=stream is None and _should_use_color())

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(formatter)
    root.addHandler(handler)

    # --- Suppress noisy third-party loggers ---
    for noisy_logger in [
        "httpx",
        "httpcore",
        "openai",
        "openai._base_client",
        "telethon",
        "slack_sdk",
        "websockets",
        "uvicorn.access",
    ]:
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)

    logging.getLogger("uvicorn.error").setLevel(level)

    logger = logging.getLogger("evenbridge")
    logger.debug("Logging configured (level=%s, format=%s)", level_name, log_format)
