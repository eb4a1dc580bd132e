"""Reddit publisher: self posts to one or more subreddits."""

from __future__ import annotations

from typing import Any

from social_dispatch.errors import PlatformError, RateLimitedError
from social_dispatch.http import Transport, check_response
from social_dispatch.models import Connection, Delivery, Destination, Platform
from social_dispatch.publisher import Publisher, fit_to_limit
from social_dispatch.store import DestinationDirectory

SUBMIT_URL = "https://oauth.reddit.com/api/submit"
TITLE_LIMIT = 300
DEFAULT_USER_AGENT = "social-dispatch/0.1"


def title_from(text: str) -> str:
    first_line = text.strip().split("\n", 1)[0]
    return fit_to_limit(first_line, TITLE_LIMIT)


def _submit_errors(body: Any) -> list[list[str]]:
    if not isinstance(body, dict):
        return []
    return list((body.get("json") or {}).get("errors") or [])


class RedditPublisher(Publisher):
    platform = Platform.REDDIT
    char_limit = 40000

    def __init__(
        self,
        transport: Transport,
        signature: str = "",
        directory: DestinationDirectory | None = None,
        timeout: float | None = None,
        user_agent: str = DEFAULT_USER_AGENT,
    ) -> None:
        super().__init__(transport, signature, directory, timeout)
        self._user_agent = user_agent

    def destinations(self, connection: Connection) -> list[Destination]:
        if self._directory:
            listed = self._directory.destinations_for(connection.org_id, self.platform)
            if listed:
                return listed
        subreddit = connection.metadata.get("subreddit") or connection.account_id
        return [Destination(str(subreddit), f"r/{subreddit}")]

    def send(
        self,
        token: str,
        text: str,
        image_url: str | None,
        destination: Destination,
        connection: Connection,
    ) -> Delivery:
        subreddit = destination.destination_id
        resp = self._transport.request(
            "POST",
            SUBMIT_URL,
            headers={"Authorization": f"Bearer {token}", "User-Agent": self._user_agent},
            form={
                "kind": "self",
                "sr": subreddit,
                "title": title_from(text),
                "text": text,
                "api_type": "json",
            },
            timeout=self._timeout,
        )
        body = check_response(resp, "Reddit API", self.name)

        errors = _submit_errors(body)
        if errors:
            code = errors[0][0] if errors[0] else ""
            detail = "; ".join(": ".join(str(p) for p in err[:2]) for err in errors)
            message = f"Reddit API error: {detail}"
            if code == "RATELIMIT":
                raise RateLimitedError(message, platform=self.name)
            raise PlatformError(message, platform=self.name)

        data = (body.get("json") or {}).get("data") or {}
        return Delivery(
            response_id=data.get("name") or data.get("id"),
            url=data.get("url"),
            raw=body,
        )
