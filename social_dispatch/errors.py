"""Error taxonomy for platform dispatch.

Four kinds of failure reach the dispatcher:
  configuration -> missing connection, payload or destination; never retried
  auth          -> credential the token manager cannot make usable
  transient     -> network, 5xx, rate limit; the retry policy handles these
  platform      -> call executed, platform rejected the content
"""

from __future__ import annotations

CONFIGURATION = "configuration"
AUTH = "auth"
TRANSIENT = "transient"
PLATFORM = "platform"


class DispatchError(Exception):
    """Base class for every error raised inside the dispatch core."""

    kind = PLATFORM
    retryable = False

    def __init__(
        self,
        message: str,
        platform: str | None = None,
        status: int | None = None,
    ) -> None:
        self.message = message
        self.platform = platform
        self.status = status
        super().__init__(message)


class ConfigurationError(DispatchError):
    """A requested platform lacks a connection, payload or destination."""

    kind = CONFIGURATION


class AuthError(DispatchError):
    """Credentials were rejected by the platform (401/403)."""

    kind = AUTH


class NeedsReauthError(AuthError):
    """The stored connection cannot be refreshed; a user must reconnect."""

    def __init__(self, platform: str, reason: str, attempts: int = 0) -> None:
        self.reason = reason
        self.attempts = attempts
        super().__init__(f"{platform} needs reauthentication: {reason}", platform=platform)


class TransientError(DispatchError):
    """A failure expected to succeed on retry."""

    kind = TRANSIENT
    retryable = True


class RateLimitedError(TransientError):
    """The platform asked us to slow down (HTTP 429)."""

    def __init__(
        self,
        message: str,
        platform: str | None = None,
        retry_after: float | None = None,
    ) -> None:
        self.retry_after = retry_after
        super().__init__(message, platform=platform, status=429)


class PlatformError(DispatchError):
    """The platform executed the call and rejected the content."""

    kind = PLATFORM


def error_kind(exc: BaseException) -> str:
    if isinstance(exc, DispatchError):
        return exc.kind
    if isinstance(exc, (OSError, TimeoutError)):
        return TRANSIENT
    return PLATFORM
