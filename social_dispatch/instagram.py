"""Instagram publisher via the Graph API two-step container flow.

Instagram has no text-only posts: a media container is created from an
image URL with the caption, then published.
"""

from __future__ import annotations

from social_dispatch.errors import PlatformError
from social_dispatch.http import check_response
from social_dispatch.models import Connection, Delivery, Destination, Platform
from social_dispatch.publisher import Publisher

GRAPH_URL = "https://graph.facebook.com/v18.0"


class InstagramPublisher(Publisher):
    platform = Platform.INSTAGRAM
    char_limit = 2200
    supports_images = True

    def destinations(self, connection: Connection) -> list[Destination]:
        ig_user = connection.metadata.get("ig_user_id") or connection.account_id
        return [Destination(str(ig_user), connection.account_name)]

    def send(
        self,
        token: str,
        text: str,
        image_url: str | None,
        destination: Destination,
        connection: Connection,
    ) -> Delivery:
        if not image_url:
            raise PlatformError(
                "Instagram requires an image; add an [IMAGE: url] marker to the payload",
                platform=self.name,
            )
        headers = {"Authorization": f"Bearer {token}"}
        base = f"{GRAPH_URL}/{destination.destination_id}"

        container = check_response(
            self._transport.request(
                "POST", f"{base}/media", headers=headers,
                form={"image_url": image_url, "caption": text}, timeout=self._timeout,
            ),
            "Instagram API", self.name,
        )
        creation_id = container.get("id")
        if not creation_id:
            raise PlatformError("Instagram returned no media container id", platform=self.name)

        published = check_response(
            self._transport.request(
                "POST", f"{base}/media_publish", headers=headers,
                form={"creation_id": creation_id}, timeout=self._timeout,
            ),
            "Instagram API", self.name,
        )
        media_id = published.get("id")
        return Delivery(response_id=media_id, raw=published)
