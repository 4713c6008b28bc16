"""Last-Recipient Store — one small JSON file per messenger."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LastRecipient:
    id: str
    name: str
    username: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


class LastRecipientStore:
    def __init__(self, data_dir: str = ".") -> None:
        self.data_dir = data_dir

    def path_for(self, messenger_name: str) -> str:
        return os.path.join(self.data_dir, f"last-recipient-{messenger_name}.json")

    def load(self, messenger_name: str) -> LastRecipient | None:
        path = self.path_for(messenger_name)
        if not os.path.exists(path):
            return None
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
            return LastRecipient(
                id=str(data["id"]),
                name=data.get("name") or "",
                username=data.get("username") or None,
            )
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning("Ignoring unreadable %s: %s", path, e)
            return None

    def save(self, messenger_name: str, recipient: LastRecipient) -> None:
        with open(self.path_for(messenger_name), "w", encoding="utf-8") as f:
            json.dump(recipient.to_dict(), f)
