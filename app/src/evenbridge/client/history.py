"""Sent-message history kept on the client (newest first, capped)."""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

MAX_ENTRIES = 100
SHOWN_ENTRIES = 20


class SentHistory:
    def __init__(self, path: str, max_entries: int = MAX_ENTRIES) -> None:
        self.path = path
        self.max_entries = max_entries

    def entries(self) -> list[dict]:
        if not os.path.exists(self.path):
            return []
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable history {self.path}: {e}")
            return []
        return data if isinstance(data, list) else []

    def recent(self, count: int = SHOWN_ENTRIES) -> list[dict]:
        return self.entries()[:count]

    def add(self, text: str, contact: str) -> dict:
        entry = {
            "text": text,
            "contact": contact,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        history = [entry, *self.entries()][: self.max_entries]
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(history, f)
        return entry
