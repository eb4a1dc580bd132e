"""Token lifecycle: decide whether a stored credential is usable, refresh it if not.

get_fresh_token() is the only entry point the dispatcher uses. A refresh is
one outbound call wrapped in the retry policy; on success it is the only
write this core makes to the connection store. On failure the stale token
is left in place and NeedsReauthError is raised for the current dispatch.

Refreshes are serialized per (org, platform, account): two dispatches that
need the same connection share one refresh instead of racing and
invalidating each other's refresh token.
"""

from __future__ import annotations

import base64
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable

from social_dispatch.errors import ConfigurationError, NeedsReauthError
from social_dispatch.http import HttpResponse, Transport, check_response
from social_dispatch.models import (
    Connection,
    ConnectionKey,
    Platform,
    RefreshOutcome,
    utcnow,
)
from social_dispatch.retry import RetryConfig, with_retry
from social_dispatch.store import ConnectionStore

logger = logging.getLogger(__name__)

LINKEDIN_TOKEN_URL = "https://www.linkedin.com/oauth/v2/accessToken"
REDDIT_TOKEN_URL = "https://www.reddit.com/api/v1/access_token"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"


@dataclass(frozen=True)
class ExpiryPolicy:
    """When a platform's access token must be refreshed.

    refresh_after is measured from when the token was issued and leaves a
    margin before real expiry. None means the token never needs refreshing
    (bot tokens, app passwords, long-lived user tokens).
    """
    refresh_after: timedelta | None = None
    margin: timedelta = timedelta(minutes=5)

    @property
    def refreshable(self) -> bool:
        return self.refresh_after is not None

    def needs_refresh(self, connection: Connection, now: datetime) -> bool:
        if not self.refreshable:
            return False
        if connection.expires_at is not None and now >= connection.expires_at - self.margin:
            return True
        return now - connection.issued_at >= self.refresh_after  # type: ignore[operator]


NEVER = ExpiryPolicy()

DEFAULT_POLICIES: dict[Platform, ExpiryPolicy] = {
    # OAuth 1.0a user tokens; no expiry.
    Platform.TWITTER: NEVER,
    # 60-day tokens, refresh at 50 days.
    Platform.LINKEDIN: ExpiryPolicy(refresh_after=timedelta(days=50), margin=timedelta(days=1)),
    # 1-hour tokens.
    Platform.REDDIT: ExpiryPolicy(refresh_after=timedelta(minutes=45)),
    Platform.YOUTUBE: ExpiryPolicy(refresh_after=timedelta(minutes=45)),
    # Long-lived page/user tokens.
    Platform.INSTAGRAM: NEVER,
    Platform.FACEBOOK: NEVER,
    # Bot tokens.
    Platform.DISCORD: NEVER,
    Platform.TELEGRAM: NEVER,
    # Application passwords.
    Platform.WORDPRESS: NEVER,
}


def is_expired(connection: Connection, now: datetime) -> bool:
    return connection.expires_at is not None and now >= connection.expires_at


@dataclass
class TokenStatus:
    platform: Platform
    account_id: str
    account_name: str
    expires_at: datetime | None
    is_expired: bool
    needs_refresh: bool
    needs_reauth: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "platform": self.platform.value,
            "account_id": self.account_id,
            "account_name": self.account_name,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "is_expired": self.is_expired,
            "needs_refresh": self.needs_refresh,
            "needs_reauth": self.needs_reauth,
        }


class OAuth2RefreshGrant:
    """Exchanges a refresh token at a platform's token endpoint."""

    def __init__(
        self,
        platform: Platform,
        token_url: str,
        client_id: str,
        client_secret: str,
        transport: Transport,
        basic_auth: bool = False,
        user_agent: str = "",
    ) -> None:
        self.platform = platform
        self.token_url = token_url
        self._client_id = client_id
        self._client_secret = client_secret
        self._transport = transport
        self._basic_auth = basic_auth
        self._user_agent = user_agent

    def __call__(self, connection: Connection) -> dict[str, Any]:
        form = {"grant_type": "refresh_token", "refresh_token": connection.refresh_token or ""}
        headers: dict[str, str] = {}
        if self._basic_auth:
            pair = f"{self._client_id}:{self._client_secret}".encode("utf-8")
            headers["Authorization"] = f"Basic {base64.b64encode(pair).decode('ascii')}"
        else:
            form["client_id"] = self._client_id
            form["client_secret"] = self._client_secret
        if self._user_agent:
            headers["User-Agent"] = self._user_agent

        resp: HttpResponse = self._transport.request("POST", self.token_url, headers=headers, form=form)
        data = check_response(resp, f"{self.platform.value} token refresh", self.platform.value)
        if not data.get("access_token"):
            raise ConfigurationError(
                f"{self.platform.value} token refresh returned no access_token",
                platform=self.platform.value,
            )
        return data


Refresher = Callable[[Connection], dict[str, Any]]


class TokenLifecycleManager:
    """Hands out tokens that are usable now, refreshing first when due."""

    def __init__(
        self,
        connections: ConnectionStore,
        refreshers: dict[Platform, Refresher] | None = None,
        policies: dict[Platform, ExpiryPolicy] | None = None,
        retry_configs: dict[str, RetryConfig] | None = None,
        clock: Callable[[], datetime] | None = None,
        sleep_func: Callable[[float], None] | None = None,
    ) -> None:
        self._connections = connections
        self._refreshers = refreshers or {}
        self._policies = {**DEFAULT_POLICIES, **(policies or {})}
        self._retry_configs = retry_configs or {}
        self._clock = clock or utcnow
        self._sleep = sleep_func
        self._locks: dict[ConnectionKey, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def policy_for(self, platform: Platform) -> ExpiryPolicy:
        return self._policies.get(platform, NEVER)

    def _lock_for(self, key: ConnectionKey) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(key, threading.Lock())

    def _load(self, org_id: str, platform: Platform, account_id: str) -> Connection:
        conn = self._connections.get(org_id, platform, account_id)
        if conn is None:
            raise ConfigurationError(f"No connection found for {platform.value}", platform=platform.value)
        return conn

    def get_fresh_token(self, org_id: str, platform: Platform, account_id: str) -> str:
        """Return an access token usable now.

        Raises:
            ConfigurationError: no such connection.
            NeedsReauthError: the token is expired or due for refresh and
                cannot be refreshed.
        """
        conn = self._load(org_id, platform, account_id)
        policy = self.policy_for(platform)
        now = self._clock()

        if not policy.needs_refresh(conn, now):
            if is_expired(conn, now):
                raise NeedsReauthError(platform.value, "access token expired and cannot be refreshed")
            return conn.access_token

        with self._lock_for(conn.key):
            # Another dispatch may have refreshed while we waited.
            conn = self._load(org_id, platform, account_id)
            now = self._clock()
            if not policy.needs_refresh(conn, now):
                return conn.access_token
            outcome = self._refresh(conn, now)

        if not outcome.success:
            raise NeedsReauthError(platform.value, outcome.error or "refresh failed", outcome.attempts)
        return outcome.new_access_token  # type: ignore[return-value]

    def refresh(self, org_id: str, platform: Platform, account_id: str) -> RefreshOutcome:
        """Force a refresh now, for operators; long-lived tokens report success unchanged."""
        try:
            conn = self._load(org_id, platform, account_id)
        except ConfigurationError as exc:
            return RefreshOutcome(success=False, error=str(exc))
        if not self.policy_for(platform).refreshable:
            return RefreshOutcome(
                success=True,
                new_access_token=conn.access_token,
                note=f"{platform.value} tokens are long-lived and need no refresh; "
                      "if posting fails, reconnect the account",
            )
        with self._lock_for(conn.key):
            return self._refresh(self._load(org_id, platform, account_id), self._clock())

    def _refresh(self, conn: Connection, now: datetime) -> RefreshOutcome:
        platform = conn.platform
        refresher = self._refreshers.get(platform)
        if refresher is None:
            return RefreshOutcome(success=False, error=f"no refresh grant configured for {platform.value}")
        if not conn.refresh_token:
            return RefreshOutcome(success=False, error="no refresh token stored")

        label = f"{platform.value}:refresh:{conn.account_id}"
        logger.info("Refreshing %s token for account %s (org %s)", platform.value, conn.account_id, conn.org_id)
        retry_cfg = self._retry_configs.get(platform.value) or RetryConfig.for_platform(platform.value)
        outcome = with_retry(lambda: refresher(conn), label, retry_cfg, sleep_func=self._sleep)
        if not outcome.success:
            logger.error("Token refresh failed for %s: %s", label, outcome.describe())
            return RefreshOutcome(success=False, error=outcome.describe(), attempts=outcome.attempts)

        data = outcome.result or {}
        expires_in = data.get("expires_in")
        expires_at = now + timedelta(seconds=int(expires_in)) if expires_in else None
        self._connections.update_tokens(
            conn.key,
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=expires_at,
            now=now,
        )
        return RefreshOutcome(
            success=True,
            new_access_token=data["access_token"],
            new_refresh_token=data.get("refresh_token"),
            expires_in=int(expires_in) if expires_in else None,
            attempts=outcome.attempts,
        )

    def token_statuses(self, org_id: str) -> list[TokenStatus]:
        now = self._clock()
        statuses = []
        for conn in self._connections.for_org(org_id):
            policy = self.policy_for(conn.platform)
            due = policy.needs_refresh(conn, now)
            expired = is_expired(conn, now)
            can_refresh = bool(conn.refresh_token) and conn.platform in self._refreshers
            statuses.append(TokenStatus(
                platform=conn.platform,
                account_id=conn.account_id,
                account_name=conn.account_name,
                expires_at=conn.expires_at,
                is_expired=expired,
                needs_refresh=due,
                needs_reauth=(due or expired) and not (policy.refreshable and can_refresh),
            ))
        return statuses
