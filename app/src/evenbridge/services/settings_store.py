"""
Credential Store — settings.json with environment fallback.

Credentials are addressed as "<service>.<field>" (e.g. "slack.userToken").
A value in settings.json wins; otherwise the matching env var is used.
Secrets never leave this module: status() reports booleans only.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any

logger = logging.getLogger(__name__)

SETTINGS_FILENAME = "settings.json"

# service -> credential fields it needs, in order
SERVICE_FIELDS: dict[str, tuple[str, ...]] = {
    "openai": ("apiKey",),
    "telegram": ("apiId", "apiHash"),
    "slack": ("userToken",),
    "gmail": ("address", "appPassword"),
}

ENV_MAP = {
    "openai.apiKey": "OPENAI_API_KEY",
    "telegram.apiId": "TELEGRAM_API_ID",
    "telegram.apiHash": "TELEGRAM_API_HASH",
    "slack.userToken": "SLACK_USER_TOKEN",
    "gmail.address": "GMAIL_ADDRESS",
    "gmail.appPassword": "GMAIL_APP_PASSWORD",
}


class CredentialStore:
    """Reads and writes settings.json in the data directory."""

    def __init__(self, data_dir: str = ".") -> None:
        self.path = os.path.join(data_dir, SETTINGS_FILENAME)

    def load(self) -> dict[str, Any]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Ignoring unreadable %s: %s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def save(self, settings: dict[str, Any]) -> None:
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(settings, f, indent=2)

    def get_credential(self, key: str) -> str | None:
        service, _, field_name = key.partition(".")
        section = self.load().get(service)
        if isinstance(section, dict):
            value = section.get(field_name)
            if value:
                return str(value)
        env_key = ENV_MAP.get(key)
        return (os.getenv(env_key) or None) if env_key else None

    def is_configured(self, service: str) -> bool:
        return all(
            self.get_credential(f"{service}.{name}") for name in SERVICE_FIELDS[service]
        )

    def status(self) -> dict[str, dict[str, Any]]:
        result = {}
        for service, fields in SERVICE_FIELDS.items():
            flags = {name: bool(self.get_credential(f"{service}.{name}")) for name in fields}
            result[service] = {"configured": all(flags.values()), "fields": flags}
        return result

    def set_service(self, service: str, values: dict[str, Any]) -> None:
        """Store a service's credentials; incomplete input clears the service."""
        if service not in SERVICE_FIELDS:
            raise KeyError(service)
        fields = SERVICE_FIELDS[service]
        settings = self.load()
        if all(values.get(name) for name in fields):
            settings[service] = {name: str(values[name]) for name in fields}
        else:
            settings.pop(service, None)
        self.save(settings)
        logger.info("Settings updated for %s", service)

    def delete_service(self, service: str) -> None:
        if service not in SERVICE_FIELDS:
            raise KeyError(service)
        settings = self.load()
        settings.pop(service, None)
        self.save(settings)
        logger.info("Settings removed for %s", service)
