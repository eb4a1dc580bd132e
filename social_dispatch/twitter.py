"""Twitter / X publisher (API v2 tweets, v1.1 media upload)."""

from __future__ import annotations

import base64
import logging
from typing import Any

from social_dispatch.errors import DispatchError
from social_dispatch.http import check_response, default_message
from social_dispatch.models import Connection, Delivery, Destination, Platform
from social_dispatch.publisher import Publisher, twitter_length

logger = logging.getLogger(__name__)

TWEETS_URL = "https://api.twitter.com/2/tweets"
MEDIA_UPLOAD_URL = "https://upload.twitter.com/1.1/media/upload.json"


def _twitter_message(body: Any) -> str | None:
    if isinstance(body, dict):
        errors = body.get("errors")
        if isinstance(errors, list) and errors and isinstance(errors[0], dict):
            return errors[0].get("message") or errors[0].get("detail")
        return body.get("detail") or body.get("title") or default_message(body)
    return None


class TwitterPublisher(Publisher):
    platform = Platform.TWITTER
    char_limit = 280
    supports_images = True

    def measure(self, text: str) -> int:
        return twitter_length(text)

    def _upload_media(self, token: str, image_url: str) -> str:
        data, _mime = self.download(image_url)
        resp = self._transport.request(
            "POST",
            MEDIA_UPLOAD_URL,
            headers={"Authorization": f"Bearer {token}"},
            form={"media_data": base64.b64encode(data).decode("ascii")},
            timeout=self._timeout,
        )
        body = check_response(resp, "Twitter media upload", self.name, _twitter_message)
        media_id = body.get("media_id_string") or body.get("media_id")
        if not media_id:
            raise DispatchError("Twitter media upload returned no media id", platform=self.name)
        return str(media_id)

    def send(
        self,
        token: str,
        text: str,
        image_url: str | None,
        destination: Destination,
        connection: Connection,
    ) -> Delivery:
        payload: dict[str, Any] = {"text": text}
        delivery = Delivery()

        if image_url:
            try:
                payload["media"] = {"media_ids": [self._upload_media(token, image_url)]}
            except DispatchError as exc:
                logger.warning("Twitter image upload failed, posting text only: %s", exc)
                delivery.degraded = True
                delivery.note = "image attach failed"

        resp = self._transport.request(
            "POST",
            TWEETS_URL,
            headers={"Authorization": f"Bearer {token}"},
            json_body=payload,
            timeout=self._timeout,
        )
        body = check_response(resp, "Twitter API", self.name, _twitter_message)
        tweet_id = (body.get("data") or {}).get("id")
        delivery.response_id = tweet_id
        delivery.url = f"https://twitter.com/i/web/status/{tweet_id}" if tweet_id else None
        delivery.raw = body
        return delivery
