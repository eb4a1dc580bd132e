"""HTTP transport shared by every publisher and token refresher.

Two implementations share one interface:
  UrllibTransport  -> real network calls via urllib.request
  DryRunTransport  -> records requests, returns synthetic 2xx responses

Transports never raise on HTTP status; they return an HttpResponse and leave
classification to check_response(). Only network-level failures raise.
"""

from __future__ import annotations

import json
import logging
import socket
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

from social_dispatch.errors import (
    AuthError,
    PlatformError,
    RateLimitedError,
    TransientError,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
USER_AGENT = "social-dispatch/0.1"


@dataclass
class HttpResponse:
    status: int
    body: bytes = b""
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        if not self.body:
            return {}
        try:
            return json.loads(self.text)
        except ValueError:
            return {}

    def header(self, name: str) -> str | None:
        return self.headers.get(name.lower())


class Transport(Protocol):
    def request(
        self,
        method: str,
        url: str,
        headers: dict[str, str] | None = None,
        json_body: Any = None,
        form: dict[str, Any] | None = None,
        data: bytes | None = None,
        timeout: float | None = None,
    ) -> HttpResponse: ...


def _encode_body(
    headers: dict[str, str],
    json_body: Any,
    form: dict[str, Any] | None,
    data: bytes | None,
) -> bytes | None:
    if json_body is not None:
        headers.setdefault("Content-Type", "application/json")
        return json.dumps(json_body).encode("utf-8")
    if form is not None:
        headers.setdefault("Content-Type", "application/x-www-form-urlencoded")
        return urllib.parse.urlencode(form).encode("utf-8")
    return data


class UrllibTransport:
    """Stateless HTTP client over urllib.request."""

    def __init__(self, timeout: float = DEFAULT_TIMEOUT, user_agent: str = USER_AGENT) -> None:
        self._timeout = timeout
        self._user_agent = user_agent

    def request(
        self,
        method: str,
        url: str,
        headers: dict[str, str] | None = None,
        json_body: Any = None,
        form: dict[str, Any] | None = None,
        data: bytes | None = None,
        timeout: float | None = None,
    ) -> HttpResponse:
        hdrs = dict(headers or {})
        hdrs.setdefault("User-Agent", self._user_agent)
        payload = _encode_body(hdrs, json_body, form, data)
        req = urllib.request.Request(url, data=payload, headers=hdrs, method=method)
        try:
            with urllib.request.urlopen(req, timeout=timeout or self._timeout) as resp:
                return HttpResponse(
                    status=resp.status,
                    body=resp.read(),
                    headers={k.lower(): v for k, v in resp.headers.items()},
                )
        except urllib.error.HTTPError as exc:
            return HttpResponse(
                status=exc.code,
                body=exc.read() or b"",
                headers={k.lower(): v for k, v in (exc.headers or {}).items()},
            )
        except urllib.error.URLError as exc:
            raise TransientError(f"Connection error: {exc.reason}") from exc
        except (socket.timeout, TimeoutError) as exc:
            raise TransientError(f"Request timed out: {method} {_host(url)}") from exc


class DryRunTransport:
    """Records requests and answers with a synthetic success body."""

    def __init__(self) -> None:
        self.requests: list[dict[str, Any]] = []

    def request(
        self,
        method: str,
        url: str,
        headers: dict[str, str] | None = None,
        json_body: Any = None,
        form: dict[str, Any] | None = None,
        data: bytes | None = None,
        timeout: float | None = None,
    ) -> HttpResponse:
        self.requests.append({
            "method": method,
            "url": url,
            "headers": dict(headers or {}),
            "json": json_body,
            "form": dict(form) if form is not None else None,
        })
        n = len(self.requests)
        logger.info("[DRY-RUN] %s %s", method, _host(url))
        fake_id = f"dry-run-{n}"
        body = {
            "id": fake_id,
            "data": {"id": fake_id},
            "result": {"message_id": n},
            "json": {"errors": [], "data": {"id": fake_id, "name": f"t3_{fake_id}"}},
            "media_id_string": fake_id,
            "link": "",
            "access_token": f"dry-run-token-{n}",
            "expires_in": 3600,
        }
        return HttpResponse(status=200, body=json.dumps(body).encode("utf-8"))

    @property
    def request_count(self) -> int:
        return len(self.requests)


def _host(url: str) -> str:
    return urllib.parse.urlsplit(url).netloc or url


def _retry_after(response: HttpResponse) -> float | None:
    value = response.header("Retry-After")
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def default_message(body: Any) -> str | None:
    """Pull a human-readable message out of the usual error body shapes."""
    if not isinstance(body, dict):
        return None
    err = body.get("error")
    if isinstance(err, dict):
        return err.get("message") or err.get("error_user_msg")
    for key in ("detail", "message", "description", "error_description"):
        if body.get(key):
            return str(body[key])
    if isinstance(err, str):
        return err
    return None


def check_response(
    response: HttpResponse,
    label: str,
    platform: str | None = None,
    extract: Callable[[Any], str | None] = default_message,
) -> Any:
    """Return the parsed JSON body of a 2xx response or raise a classified error.

    429 -> RateLimitedError, 5xx -> TransientError, 401/403 -> AuthError,
    any other non-2xx -> PlatformError. The message always carries the
    platform's own error text when the body has one.
    """
    if response.ok:
        return response.json()

    detail = extract(response.json()) or response.text.strip()[:300] or f"HTTP {response.status}"
    message = f"{label} error {response.status}: {detail}"
    if response.status == 429:
        raise RateLimitedError(message, platform=platform, retry_after=_retry_after(response))
    if response.status >= 500:
        raise TransientError(message, platform=platform, status=response.status)
    if response.status in (401, 403):
        raise AuthError(message, platform=platform, status=response.status)
    raise PlatformError(message, platform=platform, status=response.status)
