"""Facebook Page publisher (Graph API feed and photos edges)."""

from __future__ import annotations

import logging

from social_dispatch.errors import PlatformError
from social_dispatch.http import check_response
from social_dispatch.models import Connection, Delivery, Destination, Platform
from social_dispatch.publisher import Publisher

logger = logging.getLogger(__name__)

GRAPH_URL = "https://graph.facebook.com/v18.0"


class FacebookPublisher(Publisher):
    platform = Platform.FACEBOOK
    char_limit = 63206
    supports_images = True

    def destinations(self, connection: Connection) -> list[Destination]:
        page_id = connection.metadata.get("page_id") or connection.account_id
        return [Destination(str(page_id), connection.account_name)]

    def send(
        self,
        token: str,
        text: str,
        image_url: str | None,
        destination: Destination,
        connection: Connection,
    ) -> Delivery:
        base = f"{GRAPH_URL}/{destination.destination_id}"
        delivery = Delivery()

        if image_url:
            try:
                body = check_response(
                    self._transport.request(
                        "POST", f"{base}/photos",
                        form={"url": image_url, "caption": text, "access_token": token},
                        timeout=self._timeout,
                    ),
                    "Facebook API", self.name,
                )
                post_id = body.get("post_id") or body.get("id")
                return Delivery(
                    response_id=post_id,
                    url=f"https://www.facebook.com/{post_id}" if post_id else None,
                    raw=body,
                )
            except PlatformError as exc:
                logger.warning("Facebook photo post rejected, posting text only: %s", exc)
                delivery.degraded = True
                delivery.note = "image attach failed"

        body = check_response(
            self._transport.request(
                "POST", f"{base}/feed",
                form={"message": text, "access_token": token},
                timeout=self._timeout,
            ),
            "Facebook API", self.name,
        )
        post_id = body.get("id")
        delivery.response_id = post_id
        delivery.url = f"https://www.facebook.com/{post_id}" if post_id else None
        delivery.raw = body
        return delivery
