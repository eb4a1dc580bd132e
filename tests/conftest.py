"""Shared fixtures: a scripted transport and pre-built stores."""

import json
from datetime import datetime, timezone

import pytest

from social_dispatch.http import HttpResponse
from social_dispatch.models import Connection, Platform
from social_dispatch.store import ConnectionStore

NOW = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)


def respond(status=200, body=None, headers=None, raw=None):
    payload = raw if raw is not None else json.dumps(body if body is not None else {}).encode("utf-8")
    return HttpResponse(
        status=status,
        body=payload,
        headers={k.lower(): v for k, v in (headers or {}).items()},
    )


class FakeTransport:
    """Answers requests from per-URL-fragment queues and records every call.

    script("sendMessage", respond(500), respond(200, {...})) answers the
    first matching call with 500 and later ones with 200; the last queued
    response repeats. Unmatched URLs get the default response.
    """

    def __init__(self, default=None):
        self.calls = []
        self._routes = []
        self._default = default or respond(200, {"id": "default-id"})

    def script(self, fragment, *responses):
        self._routes.append((fragment, list(responses)))
        return self

    def request(self, method, url, headers=None, json_body=None, form=None, data=None, timeout=None):
        self.calls.append({
            "method": method,
            "url": url,
            "headers": dict(headers or {}),
            "json": json_body,
            "form": dict(form) if form is not None else None,
            "data": data,
        })
        for fragment, queue in self._routes:
            if fragment in url:
                response = queue.pop(0) if len(queue) > 1 else queue[0]
                if isinstance(response, BaseException):
                    raise response
                return response
        return self._default

    def calls_to(self, fragment):
        return [c for c in self.calls if fragment in c["url"]]


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def connections():
    store = ConnectionStore()
    store.put(Connection("org1", Platform.TWITTER, "tw1", "tw-token", created_at=NOW))
    store.put(Connection("org1", Platform.LINKEDIN, "li1", "li-token", refresh_token="li-refresh", created_at=NOW))
    store.put(Connection("org1", Platform.DISCORD, "dc1", "bot-token", created_at=NOW, metadata={"channel_id": "chan-1"}))
    store.put(Connection("org1", Platform.TELEGRAM, "tg1", "tg-token", created_at=NOW))
    return store
