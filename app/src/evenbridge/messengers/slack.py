"""
Slack adapter — Web API with a user token (slack_sdk AsyncWebClient).

Contacts are the conversations the user is a member of. DM names are
resolved through users.info and cached per adapter instance.
"""

from __future__ import annotations

import logging
import math

from slack_sdk.errors import SlackApiError
from slack_sdk.web.async_client import AsyncWebClient

from evenbridge.core.errors import ConfigurationError
from evenbridge.messengers.base import Contact, Message, Messenger

logger = logging.getLogger(__name__)

CONVERSATION_TYPES = "public_channel,private_channel,mpim,im"


class SlackMessenger(Messenger):
    name = "Slack"

    def __init__(
        self,
        token: str,
        conversation_limit: int = 100,
        client: AsyncWebClient | None = None,
    ) -> None:
        if not token:
            raise ConfigurationError("Missing Slack user token")
        self._client = client or AsyncWebClient(token=token)
        self._conversation_limit = conversation_limit
        self._user_id = ""
        self._user_names: dict[str, str] = {}
        self._channel_ids: dict[str, str] = {}  # channel name -> id

    async def init(self) -> None:
        result = await self._client.auth_test()
        self._user_id = result["user_id"]
        logger.info("Slack authenticated as %s (%s)", result.get("user"), self._user_id)

    async def _resolve_user_name(self, user_id: str) -> str:
        cached = self._user_names.get(user_id)
        if cached is not None:
            return cached
        try:
            info = await self._client.users_info(user=user_id)
            user = info.get("user") or {}
            name = user.get("real_name") or user.get("name") or user_id
        except SlackApiError as e:
            logger.warning("users.info failed for %s: %s", user_id, e.response.get("error"))
            name = user_id
        self._user_names[user_id] = name
        return name

    def _channel_ref(self, entity_id: str) -> str:
        """Clients address channels by name; the Web API wants the id."""
        return self._channel_ids.get(entity_id, entity_id)

    async def get_contacts(self) -> list[Contact]:
        result = await self._client.conversations_list(
            types=CONVERSATION_TYPES,
            exclude_archived=True,
            limit=self._conversation_limit,
        )

        contacts = []
        for ch in result.get("channels") or []:
            is_im = bool(ch.get("is_im"))
            # IMs carry no is_member flag; an open IM is always the user's own
            if not is_im and not ch.get("is_member"):
                continue

            name = ch.get("name") or "Unknown"
            if is_im and ch.get("user"):
                name = await self._resolve_user_name(ch["user"])

            if ch.get("name") and ch.get("id"):
                self._channel_ids[ch["name"]] = ch["id"]
            contacts.append(
                Contact(
                    id=ch.get("id", ""),
                    name=name,
                    username=ch.get("name") or None,
                    is_user=is_im,
                    is_group=bool(ch.get("is_group") or ch.get("is_mpim")),
                    is_channel=bool(ch.get("is_channel")),
                )
            )
        return contacts

    async def get_messages(self, entity_id: str, limit: int = 4) -> list[Message]:
        result = await self._client.conversations_history(
            channel=self._channel_ref(entity_id), limit=limit
        )

        messages = []
        for msg in result.get("messages") or []:
            user = msg.get("user")
            ts = msg.get("ts") or "0"
            messages.append(
                Message(
                    id=ts,
                    text=msg.get("text") or "",
                    out=bool(user) and user == self._user_id,
                    date=math.floor(float(ts)),
                    sender_name=await self._resolve_user_name(user) if user else "",
                )
            )
        return messages

    async def send_message(self, text: str, recipient: str) -> None:
        await self._client.chat_postMessage(channel=self._channel_ref(recipient), text=text)
        logger.info("Slack message posted to %s", recipient)

    async def close(self) -> None:
        session = getattr(self._client, "session", None)
        if session is not None and not session.closed:
            await session.close()
