"""Discord publisher: bot messages to one or more channels.

Channels come from the org's destination directory; an org without a
channel list posts to the channel stored on its connection.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from social_dispatch.http import check_response
from social_dispatch.models import Connection, Delivery, Destination, Platform
from social_dispatch.publisher import Publisher

API_URL = "https://discord.com/api/v10"


@dataclass
class DiscordEmbed:
    """Embed carrying the post image; message text stays in content."""
    image_url: str
    color: int = 0x5865F2

    def to_payload(self) -> dict[str, Any]:
        return {"color": self.color, "image": {"url": self.image_url}}


class DiscordPublisher(Publisher):
    platform = Platform.DISCORD
    char_limit = 2000
    supports_images = True

    def destinations(self, connection: Connection) -> list[Destination]:
        if self._directory:
            listed = self._directory.destinations_for(connection.org_id, self.platform)
            if listed:
                return listed
        channel = connection.metadata.get("channel_id") or connection.account_id
        return [Destination(str(channel), connection.account_name)]

    def send(
        self,
        token: str,
        text: str,
        image_url: str | None,
        destination: Destination,
        connection: Connection,
    ) -> Delivery:
        message: dict[str, Any] = {"content": text}
        if image_url:
            message["embeds"] = [DiscordEmbed(image_url=image_url).to_payload()]

        channel_id = destination.destination_id
        resp = self._transport.request(
            "POST",
            f"{API_URL}/channels/{channel_id}/messages",
            headers={"Authorization": f"Bot {token}"},
            json_body=message,
            timeout=self._timeout,
        )
        body = check_response(resp, "Discord API", self.name)
        message_id = body.get("id")
        guild_id = body.get("guild_id") or connection.metadata.get("guild_id")
        url = None
        if message_id and guild_id:
            url = f"https://discord.com/channels/{guild_id}/{channel_id}/{message_id}"
        return Delivery(response_id=message_id, url=url, raw=body)
