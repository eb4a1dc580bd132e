"""Telegram publisher: bot messages to every channel an org has registered.

Each channel may carry its own bot token; channels without one use the
token on the org's Telegram connection. A photo that Telegram rejects is
retried as a plain text message and the delivery marked degraded.
"""

from __future__ import annotations

import logging
from typing import Any

from social_dispatch.errors import ConfigurationError, PlatformError
from social_dispatch.http import check_response
from social_dispatch.models import Connection, Delivery, Destination, Platform
from social_dispatch.publisher import Publisher

logger = logging.getLogger(__name__)

API_URL = "https://api.telegram.org"
CAPTION_LIMIT = 1024


class TelegramPublisher(Publisher):
    platform = Platform.TELEGRAM
    char_limit = 4096
    supports_images = True

    def destinations(self, connection: Connection) -> list[Destination]:
        channels = self._directory.destinations_for(connection.org_id, self.platform) if self._directory else []
        if not channels:
            raise ConfigurationError("No Telegram channels found", platform=self.name)
        return channels

    def _call(self, token: str, method: str, payload: dict[str, Any]) -> dict[str, Any]:
        resp = self._transport.request(
            "POST", f"{API_URL}/bot{token}/{method}", json_body=payload, timeout=self._timeout,
        )
        body = check_response(resp, "Telegram API", self.name)
        if body.get("ok") is False:
            raise PlatformError(f"Telegram API error: {body.get('description', 'unknown error')}", platform=self.name)
        return body

    def send(
        self,
        token: str,
        text: str,
        image_url: str | None,
        destination: Destination,
        connection: Connection,
    ) -> Delivery:
        chat_id = destination.destination_id
        delivery = Delivery()
        body: dict[str, Any] | None = None

        if image_url:
            try:
                body = self._call(token, "sendPhoto", {
                    "chat_id": chat_id,
                    "photo": image_url,
                    "caption": self.refit(text, CAPTION_LIMIT),
                    "parse_mode": "HTML",
                })
            except PlatformError as exc:
                logger.warning("Telegram photo rejected for %s, sending text only: %s", destination.label, exc)
                delivery.degraded = True
                delivery.note = "image attach failed"

        if body is None:
            body = self._call(token, "sendMessage", {
                "chat_id": chat_id,
                "text": text,
                "parse_mode": "HTML",
            })

        result = body.get("result") or {}
        message_id = result.get("message_id")
        username = (result.get("chat") or {}).get("username")
        delivery.response_id = str(message_id) if message_id is not None else None
        delivery.url = f"https://t.me/{username}/{message_id}" if username and message_id else None
        delivery.raw = body
        return delivery
