"""YouTube publisher: channel bulletins through the Data API activities endpoint."""

from __future__ import annotations

from social_dispatch.http import check_response
from social_dispatch.models import Connection, Delivery, Destination, Platform
from social_dispatch.publisher import Publisher

ACTIVITIES_URL = "https://www.googleapis.com/youtube/v3/activities?part=snippet"


class YouTubePublisher(Publisher):
    platform = Platform.YOUTUBE
    char_limit = 5000

    def send(
        self,
        token: str,
        text: str,
        image_url: str | None,
        destination: Destination,
        connection: Connection,
    ) -> Delivery:
        resp = self._transport.request(
            "POST",
            ACTIVITIES_URL,
            headers={"Authorization": f"Bearer {token}"},
            json_body={"snippet": {"description": text}},
            timeout=self._timeout,
        )
        body = check_response(resp, "YouTube API", self.name)
        return Delivery(response_id=body.get("id"), raw=body)
