"""Chat notifications through a GroupMe bot."""

from __future__ import annotations

import logging
from typing import Protocol

import httpx

from config.settings import get_settings

LOGGER = logging.getLogger(__name__)


class Notifier(Protocol):
    async def send(self, text: str) -> None: ...


class GroupMeNotifier:
    """Posts plain-text messages as the configured GroupMe bot."""

    def __init__(
        self,
        bot_id: str,
        *,
        endpoint: str = "https://api.groupme.com/v3/bots/post",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._bot_id = bot_id
        self._endpoint = endpoint
        self._transport = transport

    async def send(self, text: str) -> None:
        payload = {"bot_id": self._bot_id, "text": text}
        async with httpx.AsyncClient(timeout=15, transport=self._transport) as client:
            response = await client.post(self._endpoint, json=payload)
        try:
            response.raise_for_status()
        except httpx.HTTPError as exc:
            LOGGER.error("GroupMe post failed: %s", exc)
            raise


class LogNotifier:
    """Fallback when no chat is configured: notifications only go to the log."""

    async def send(self, text: str) -> None:
        LOGGER.info("Notification: %s", text)


def build_notifier() -> Notifier:
    settings = get_settings()
    if not settings.groupme_bot_id:
        LOGGER.warning("GROUPME_BOT_ID not set; notifications are logged only")
        return LogNotifier()
    return GroupMeNotifier(settings.groupme_bot_id, endpoint=settings.groupme_api_url)
