"""WordPress publisher via the core REST API with application passwords.

The connection's access_token holds "username:application-password" and
its metadata (or account id) the site URL. An embedded image is uploaded to
the media library first and set as the featured image; if that upload
fails the post goes out without it.
"""

from __future__ import annotations

import base64
import html
import logging
import posixpath
import urllib.parse

from social_dispatch.errors import DispatchError
from social_dispatch.http import check_response
from social_dispatch.models import Connection, Delivery, Destination, Platform
from social_dispatch.publisher import Publisher, fit_to_limit

logger = logging.getLogger(__name__)

TITLE_LIMIT = 120


def format_for_wordpress(text: str) -> tuple[str, str]:
    """Split text into (title, html content): first line is the title."""
    lines = text.strip().split("\n", 1)
    title = fit_to_limit(lines[0].strip(), TITLE_LIMIT)
    rest = lines[1] if len(lines) > 1 else lines[0]
    paragraphs = [p.strip() for p in rest.split("\n\n") if p.strip()]
    content = "\n".join(f"<p>{html.escape(p).replace(chr(10), '<br>')}</p>" for p in paragraphs)
    return title, content


class WordPressPublisher(Publisher):
    platform = Platform.WORDPRESS
    supports_images = True

    def destinations(self, connection: Connection) -> list[Destination]:
        site = connection.metadata.get("site_url") or connection.account_id
        return [Destination(str(site).rstrip("/"), connection.account_name)]

    @staticmethod
    def _auth(credential: str) -> dict[str, str]:
        encoded = base64.b64encode(credential.encode("utf-8")).decode("ascii")
        return {"Authorization": f"Basic {encoded}"}

    def _upload_media(self, site: str, credential: str, image_url: str) -> int:
        data, mime = self.download(image_url)
        filename = posixpath.basename(urllib.parse.urlsplit(image_url).path) or "image.jpg"
        headers = {
            **self._auth(credential),
            "Content-Type": mime,
            "Content-Disposition": f'attachment; filename="{filename}"',
        }
        resp = self._transport.request(
            "POST", f"{site}/wp-json/wp/v2/media", headers=headers, data=data, timeout=self._timeout,
        )
        body = check_response(resp, "WordPress media upload", self.name)
        if not body.get("id"):
            raise DispatchError("WordPress media upload returned no id", platform=self.name)
        return int(body["id"])

    def send(
        self,
        token: str,
        text: str,
        image_url: str | None,
        destination: Destination,
        connection: Connection,
    ) -> Delivery:
        site = destination.destination_id
        title, content = format_for_wordpress(text)
        post: dict[str, object] = {"title": title, "content": content, "status": "publish"}
        delivery = Delivery()

        if image_url:
            try:
                post["featured_media"] = self._upload_media(site, token, image_url)
            except DispatchError as exc:
                logger.warning("WordPress media upload failed, publishing without image: %s", exc)
                delivery.degraded = True
                delivery.note = "image attach failed"

        resp = self._transport.request(
            "POST",
            f"{site}/wp-json/wp/v2/posts",
            headers=self._auth(token),
            json_body=post,
            timeout=self._timeout,
        )
        body = check_response(resp, "WordPress API", self.name)
        post_id = body.get("id")
        delivery.response_id = str(post_id) if post_id is not None else None
        delivery.url = body.get("link") or None
        delivery.raw = body
        return delivery
