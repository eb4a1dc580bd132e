"""Publisher base class, platform registry and payload shaping helpers.

A publisher turns one post payload into one or more platform API calls.
Subclasses implement send() for a single destination; publish() handles
destination fan-out, retry wrapping (via the runner the dispatcher passes
in) and folding per-destination outcomes into one PublishResult.
"""

from __future__ import annotations

import logging
import re
from typing import Callable, Collection, Iterable

from social_dispatch.errors import ConfigurationError, PlatformError, error_kind
from social_dispatch.http import Transport
from social_dispatch.models import (
    Connection,
    Delivery,
    Destination,
    DestinationOutcome,
    Platform,
    PublishResult,
)
from social_dispatch.retry import RetryOutcome
from social_dispatch.store import DestinationDirectory

logger = logging.getLogger(__name__)

Runner = Callable[[Callable[[], Delivery], str], RetryOutcome[Delivery]]

ELLIPSIS = "…"

_IMAGE_MARKER = re.compile(r"\[IMAGE:\s*(?P<url>https?://[^\]\s]+)\s*\]", re.IGNORECASE)
_MARKDOWN_IMAGE = re.compile(r"!\[[^\]]*\]\((?P<url>https?://[^)\s]+)\)")
_URL = re.compile(r"https?://\S+")


def extract_image(text: str) -> str | None:
    """First image URL embedded as [IMAGE: url] or ![alt](url), if any."""
    found = [m for m in (_IMAGE_MARKER.search(text), _MARKDOWN_IMAGE.search(text)) if m]
    if not found:
        return None
    return min(found, key=lambda m: m.start()).group("url")


def strip_image_marker(text: str) -> str:
    text = _IMAGE_MARKER.sub("", text)
    text = _MARKDOWN_IMAGE.sub("", text)
    text = re.sub(r"[ \t]+\n", "\n", text)
    return re.sub(r"\n{3,}", "\n\n", text).strip()


def twitter_length(text: str) -> int:
    """Length as Twitter counts it: every link is 23 characters."""
    return len(_URL.sub("x" * 23, text))


def fit_to_limit(
    body: str,
    limit: int | None,
    suffix: str = "",
    measure: Callable[[str], int] = len,
) -> str:
    """Join body and suffix, trimming the body to fit limit.

    The suffix (required hashtags, attribution) is a fixed cost and is never
    trimmed unless it alone exceeds the limit. The body is cut at a word
    boundary where possible and marked with an ellipsis.
    """
    sep = "\n\n" if suffix and body else ""
    full = f"{body}{sep}{suffix}"
    if limit is None or measure(full) <= limit:
        return full

    tail = f"{sep}{suffix}"
    budget = limit - measure(tail)
    if budget <= len(ELLIPSIS):
        return suffix if measure(suffix) <= limit else suffix[:limit]

    cut = min(len(body), budget)
    while cut > 0:
        candidate = body[:cut]
        space = candidate.rfind(" ")
        if space > cut // 2:
            candidate = candidate[:space]
        candidate = candidate.rstrip(" \n\t,.;:-") + ELLIPSIS
        overshoot = measure(candidate) - budget
        if overshoot <= 0:
            return f"{candidate}{tail}"
        cut -= max(1, overshoot)
    return suffix


class Publisher:
    """Base publisher; one instance per platform, built once at startup."""

    platform: Platform
    char_limit: int | None = None
    supports_images: bool = False

    def __init__(
        self,
        transport: Transport,
        signature: str = "",
        directory: DestinationDirectory | None = None,
        timeout: float | None = None,
    ) -> None:
        self._transport = transport
        self._signature = signature
        self._directory = directory
        self._timeout = timeout

    @property
    def name(self) -> str:
        return self.platform.value

    def measure(self, text: str) -> int:
        return len(text)

    def shape(self, payload: str) -> tuple[str, str | None]:
        """Fit the payload to this platform: (text, image_url)."""
        image = extract_image(payload) if self.supports_images else None
        body = strip_image_marker(payload)
        return fit_to_limit(body, self.char_limit, self._signature, self.measure), image

    def refit(self, text: str, limit: int) -> str:
        """Re-fit already shaped text to a tighter limit, keeping the signature."""
        sig = self._signature
        body = text[: -len(sig)].rstrip() if sig and text.endswith(sig) else text
        return fit_to_limit(body, limit, sig, self.measure)

    def download(self, url: str) -> tuple[bytes, str]:
        """Fetch an image for platforms that need the bytes: (data, mime type)."""
        resp = self._transport.request("GET", url, timeout=self._timeout)
        if not resp.ok or not resp.body:
            raise PlatformError(f"Image download failed ({resp.status}): {url}", platform=self.name)
        return resp.body, resp.header("Content-Type") or "image/jpeg"

    def destinations(self, connection: Connection) -> list[Destination]:
        return [Destination(connection.account_id, connection.account_name)]

    def send(
        self,
        token: str,
        text: str,
        image_url: str | None,
        destination: Destination,
        connection: Connection,
    ) -> Delivery:
        raise NotImplementedError

    def publish(
        self,
        token: str,
        payload: str,
        connection: Connection,
        run: Runner,
        delivered: Collection[str] = (),
    ) -> PublishResult:
        """Send to every destination independently and aggregate the outcomes.

        Destinations whose ids are in delivered already received this post and
        are reported as skipped successes without another send.
        """
        dests = self.destinations(connection)
        if not dests:
            raise ConfigurationError(f"No {self.name} destinations configured", platform=self.name)
        text, image = self.shape(payload)

        outcomes: list[DestinationOutcome] = []
        kinds: list[str] = []
        for dest in dests:
            if dest.destination_id in delivered:
                logger.info("%s destination %s already delivered, skipping", self.name, dest.label)
                outcomes.append(DestinationOutcome(
                    destination_id=dest.destination_id,
                    name=dest.name,
                    success=True,
                    skipped=True,
                    note="already delivered",
                ))
                continue
            credential = dest.credential or token
            retry_outcome = run(
                lambda d=dest, c=credential: self.send(c, text, image, d, connection),
                f"{self.name}:{dest.label}",
            )
            outcomes.append(self._outcome(dest, retry_outcome))
            if not retry_outcome.success and retry_outcome.error is not None:
                kinds.append(error_kind(retry_outcome.error))
                logger.warning(
                    "%s destination %s failed: %s", self.name, dest.label, retry_outcome.describe(),
                )
        return self._aggregate(outcomes, kinds)

    @staticmethod
    def _outcome(dest: Destination, outcome: RetryOutcome[Delivery]) -> DestinationOutcome:
        if outcome.success and outcome.result is not None:
            delivery = outcome.result
            return DestinationOutcome(
                destination_id=dest.destination_id,
                name=dest.name,
                success=True,
                attempts=outcome.attempts,
                response_id=delivery.response_id,
                url=delivery.url,
                degraded=delivery.degraded,
                note=delivery.note,
            )
        return DestinationOutcome(
            destination_id=dest.destination_id,
            name=dest.name,
            success=False,
            attempts=outcome.attempts,
            error=outcome.describe(),
        )

    def _aggregate(self, outcomes: list[DestinationOutcome], kinds: list[str]) -> PublishResult:
        failed = [o for o in outcomes if not o.success]
        sent = [o for o in outcomes if o.success and not o.skipped]
        first = sent[0] if sent else None
        notes = [o.note for o in outcomes if o.degraded and o.note]

        if len(outcomes) == 1:
            error = failed[0].error if failed else None
        else:
            error = "; ".join(f"{o.name or o.destination_id}: {o.error}" for o in failed) or None

        return PublishResult(
            platform=self.platform,
            success=not failed,
            response_id=first.response_id if first else None,
            url=first.url if first else None,
            error=error,
            error_kind=kinds[0] if kinds else None,
            attempts=max(o.attempts for o in outcomes),
            degraded=any(o.degraded for o in outcomes),
            notes=notes,
            destinations=outcomes,
        )


class PublisherRegistry:
    """Maps a platform to the publisher that handles it."""

    def __init__(self, publishers: Iterable[Publisher] = ()) -> None:
        self._publishers: dict[Platform, Publisher] = {}
        for publisher in publishers:
            self.register(publisher)

    def register(self, publisher: Publisher) -> None:
        self._publishers[publisher.platform] = publisher

    def get(self, platform: Platform) -> Publisher | None:
        return self._publishers.get(platform)

    def __contains__(self, platform: object) -> bool:
        return platform in self._publishers

    @property
    def platforms(self) -> list[Platform]:
        return list(self._publishers)
