"""LinkedIn publisher: member shares through the UGC Posts API."""

from __future__ import annotations

from typing import Any

from social_dispatch.http import check_response
from social_dispatch.models import Connection, Delivery, Destination, Platform
from social_dispatch.publisher import Publisher

UGC_POSTS_URL = "https://api.linkedin.com/v2/ugcPosts"


def build_share(author_id: str, text: str) -> dict[str, Any]:
    return {
        "author": f"urn:li:person:{author_id}",
        "lifecycleState": "PUBLISHED",
        "specificContent": {
            "com.linkedin.ugc.ShareContent": {
                "shareCommentary": {"text": text},
                "shareMediaCategory": "NONE",
            },
        },
        "visibility": {"com.linkedin.ugc.MemberNetworkVisibility": "PUBLIC"},
    }


class LinkedInPublisher(Publisher):
    platform = Platform.LINKEDIN
    char_limit = 3000

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
            UGC_POSTS_URL,
            headers={
                "Authorization": f"Bearer {token}",
                "X-Restli-Protocol-Version": "2.0.0",
            },
            json_body=build_share(destination.destination_id, text),
            timeout=self._timeout,
        )
        body = check_response(resp, "LinkedIn API", self.name)
        share_id = resp.header("x-restli-id") or body.get("id")
        return Delivery(
            response_id=share_id,
            url=f"https://www.linkedin.com/feed/update/{share_id}/" if share_id else None,
            raw=body,
        )
