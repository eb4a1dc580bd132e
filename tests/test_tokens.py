"""Tests for the token lifecycle manager."""

import threading
import time
from datetime import timedelta

import pytest

from conftest import NOW, FakeTransport, respond
from social_dispatch.errors import ConfigurationError, NeedsReauthError, PlatformError, TransientError
from social_dispatch.models import Connection, Platform
from social_dispatch.store import ConnectionStore
from social_dispatch.tokens import (
    LINKEDIN_TOKEN_URL,
    REDDIT_TOKEN_URL,
    ExpiryPolicy,
    OAuth2RefreshGrant,
    TokenLifecycleManager,
)


def _manager(store, refreshers=None, now=NOW, **kwargs):
    return TokenLifecycleManager(
        store, refreshers=refreshers, clock=lambda: now, sleep_func=lambda _: None, **kwargs,
    )


def _linkedin(age_days, refresh_token="li-refresh"):
    return Connection(
        "org1", Platform.LINKEDIN, "li1", "old-token",
        refresh_token=refresh_token, created_at=NOW - timedelta(days=age_days),
    )


class CountingRefresher:
    def __init__(self, result=None, error=None, delay=0.0):
        self.calls = 0
        self._result = result or {"access_token": "new-token", "refresh_token": "new-refresh", "expires_in": 5184000}
        self._error = error
        self._delay = delay
        self._lock = threading.Lock()

    def __call__(self, connection):
        with self._lock:
            self.calls += 1
        if self._delay:
            time.sleep(self._delay)
        if self._error:
            raise self._error
        return dict(self._result)


class TestExpiryPolicy:
    def test_never_policy(self):
        assert not ExpiryPolicy().needs_refresh(_linkedin(400), NOW)

    def test_age_threshold(self):
        policy = ExpiryPolicy(refresh_after=timedelta(days=50))
        assert not policy.needs_refresh(_linkedin(49), NOW)
        assert policy.needs_refresh(_linkedin(50), NOW)

    def test_known_expiry_wins(self):
        conn = _linkedin(1)
        conn.expires_at = NOW + timedelta(minutes=2)
        assert ExpiryPolicy(refresh_after=timedelta(days=50)).needs_refresh(conn, NOW)

    def test_age_counts_from_last_refresh(self):
        conn = _linkedin(100)
        conn.updated_at = NOW - timedelta(days=1)
        assert not ExpiryPolicy(refresh_after=timedelta(days=50)).needs_refresh(conn, NOW)


class TestGetFreshToken:
    def test_fresh_token_makes_no_refresh_call(self):
        store = ConnectionStore()
        store.put(_linkedin(10))
        refresher = CountingRefresher()
        token = _manager(store, {Platform.LINKEDIN: refresher}).get_fresh_token("org1", Platform.LINKEDIN, "li1")
        assert token == "old-token"
        assert refresher.calls == 0

    def test_stale_token_refreshes_once(self):
        store = ConnectionStore()
        store.put(_linkedin(55))
        refresher = CountingRefresher()
        token = _manager(store, {Platform.LINKEDIN: refresher}).get_fresh_token("org1", Platform.LINKEDIN, "li1")
        assert token == "new-token"
        assert refresher.calls == 1
        stored = store.get("org1", Platform.LINKEDIN, "li1")
        assert stored.access_token == "new-token"
        assert stored.refresh_token == "new-refresh"
        assert stored.updated_at == NOW
        assert stored.expires_at == NOW + timedelta(seconds=5184000)

    def test_refresh_keeps_old_refresh_token_when_none_returned(self):
        store = ConnectionStore()
        store.put(_linkedin(55))
        refresher = CountingRefresher(result={"access_token": "new-token"})
        _manager(store, {Platform.LINKEDIN: refresher}).get_fresh_token("org1", Platform.LINKEDIN, "li1")
        assert store.get("org1", Platform.LINKEDIN, "li1").refresh_token == "li-refresh"

    def test_refresh_failure_needs_reauth_and_leaves_token(self):
        store = ConnectionStore()
        store.put(_linkedin(55))
        refresher = CountingRefresher(error=TransientError("token endpoint 503"))
        manager = _manager(store, {Platform.LINKEDIN: refresher})
        with pytest.raises(NeedsReauthError) as exc_info:
            manager.get_fresh_token("org1", Platform.LINKEDIN, "li1")
        assert str(exc_info.value).startswith("linkedin needs reauthentication:")
        assert exc_info.value.attempts == 2
        assert refresher.calls == 2
        assert store.get("org1", Platform.LINKEDIN, "li1").access_token == "old-token"

    def test_missing_refresh_token(self):
        store = ConnectionStore()
        store.put(_linkedin(55, refresh_token=None))
        refresher = CountingRefresher()
        with pytest.raises(NeedsReauthError, match="no refresh token stored"):
            _manager(store, {Platform.LINKEDIN: refresher}).get_fresh_token("org1", Platform.LINKEDIN, "li1")
        assert refresher.calls == 0

    def test_no_refresher_configured(self):
        store = ConnectionStore()
        store.put(_linkedin(55))
        with pytest.raises(NeedsReauthError, match="no refresh grant configured"):
            _manager(store).get_fresh_token("org1", Platform.LINKEDIN, "li1")

    def test_long_lived_token_never_refreshed(self):
        store = ConnectionStore()
        store.put(Connection("org1", Platform.TWITTER, "tw1", "tw-token", created_at=NOW - timedelta(days=900)))
        refresher = CountingRefresher()
        token = _manager(store, {Platform.TWITTER: refresher}).get_fresh_token("org1", Platform.TWITTER, "tw1")
        assert token == "tw-token"
        assert refresher.calls == 0

    def test_expired_long_lived_token_needs_reauth(self):
        store = ConnectionStore()
        store.put(Connection(
            "org1", Platform.FACEBOOK, "fb1", "fb-token",
            created_at=NOW - timedelta(days=70), expires_at=NOW - timedelta(days=10),
        ))
        with pytest.raises(NeedsReauthError, match="expired"):
            _manager(store).get_fresh_token("org1", Platform.FACEBOOK, "fb1")

    def test_unknown_connection(self):
        with pytest.raises(ConfigurationError, match="No connection found for reddit"):
            _manager(ConnectionStore()).get_fresh_token("org1", Platform.REDDIT, "nobody")

    def test_concurrent_callers_share_one_refresh(self):
        store = ConnectionStore()
        store.put(Connection(
            "org1", Platform.REDDIT, "rd1", "old", refresh_token="rt",
            created_at=NOW - timedelta(hours=2),
        ))
        refresher = CountingRefresher(result={"access_token": "shared", "expires_in": 3600}, delay=0.05)
        manager = _manager(store, {Platform.REDDIT: refresher})
        tokens = []

        def fetch():
            tokens.append(manager.get_fresh_token("org1", Platform.REDDIT, "rd1"))

        threads = [threading.Thread(target=fetch) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert refresher.calls == 1
        assert tokens == ["shared"] * 5


class TestManualRefresh:
    def test_long_lived_platform_reports_success(self):
        store = ConnectionStore()
        store.put(Connection("org1", Platform.DISCORD, "dc1", "bot", created_at=NOW))
        outcome = _manager(store).refresh("org1", Platform.DISCORD, "dc1")
        assert outcome.success
        assert outcome.new_access_token == "bot"
        assert outcome.error is None
        assert "no refresh" in outcome.note

    def test_forces_refresh(self):
        store = ConnectionStore()
        store.put(_linkedin(1))
        refresher = CountingRefresher()
        outcome = _manager(store, {Platform.LINKEDIN: refresher}).refresh("org1", Platform.LINKEDIN, "li1")
        assert outcome.success
        assert outcome.expires_in == 5184000
        assert refresher.calls == 1

    def test_unknown_connection(self):
        outcome = _manager(ConnectionStore()).refresh("org1", Platform.LINKEDIN, "li1")
        assert not outcome.success


class TestTokenStatuses:
    def test_statuses(self):
        store = ConnectionStore()
        store.put(_linkedin(55))
        store.put(Connection("org1", Platform.TWITTER, "tw1", "tw", created_at=NOW))
        statuses = {s.platform: s for s in _manager(store).token_statuses("org1")}
        assert statuses[Platform.LINKEDIN].needs_refresh
        assert statuses[Platform.LINKEDIN].needs_reauth  # no refresher configured
        assert not statuses[Platform.TWITTER].needs_refresh
        assert statuses[Platform.TWITTER].to_dict()["expires_at"] is None


class TestOAuth2RefreshGrant:
    def test_body_credentials(self):
        transport = FakeTransport().script("linkedin.com", respond(200, {"access_token": "a", "expires_in": 10}))
        grant = OAuth2RefreshGrant(Platform.LINKEDIN, LINKEDIN_TOKEN_URL, "cid", "secret", transport)
        data = grant(_linkedin(55))
        assert data["access_token"] == "a"
        call = transport.calls[0]
        assert call["form"] == {
            "grant_type": "refresh_token", "refresh_token": "li-refresh",
            "client_id": "cid", "client_secret": "secret",
        }

    def test_basic_auth_and_user_agent(self):
        transport = FakeTransport().script("reddit.com", respond(200, {"access_token": "a"}))
        grant = OAuth2RefreshGrant(
            Platform.REDDIT, REDDIT_TOKEN_URL, "cid", "secret", transport,
            basic_auth=True, user_agent="bot/1.0",
        )
        grant(Connection("org1", Platform.REDDIT, "rd1", "old", refresh_token="rt"))
        call = transport.calls[0]
        assert call["headers"]["Authorization"].startswith("Basic ")
        assert call["headers"]["User-Agent"] == "bot/1.0"
        assert "client_secret" not in call["form"]

    def test_rejected_grant_raises(self):
        transport = FakeTransport().script("linkedin.com", respond(400, {"error_description": "invalid_grant"}))
        grant = OAuth2RefreshGrant(Platform.LINKEDIN, LINKEDIN_TOKEN_URL, "cid", "secret", transport)
        with pytest.raises(PlatformError, match="invalid_grant"):
            grant(_linkedin(55))
