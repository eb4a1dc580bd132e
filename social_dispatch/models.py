"""Core data model: connections, posts and per-platform publish results."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_dt(value: str | None) -> datetime | None:
    if not value:
        return None
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _fmt_dt(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class Platform(Enum):
    TWITTER = "twitter"
    LINKEDIN = "linkedin"
    INSTAGRAM = "instagram"
    FACEBOOK = "facebook"
    YOUTUBE = "youtube"
    DISCORD = "discord"
    REDDIT = "reddit"
    TELEGRAM = "telegram"
    WORDPRESS = "wordpress"

    @classmethod
    def parse(cls, value: str | Platform) -> Platform:
        """Accept "twitter", "Twitter" or "LinkedIn" alike."""
        if isinstance(value, Platform):
            return value
        return cls(value.strip().lower())


class PostState(Enum):
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    PUBLISHED = "published"


ConnectionKey = tuple[str, Platform, str]


@dataclass
class Connection:
    """Stored credential set for one org's account on one platform."""
    org_id: str
    platform: Platform
    account_id: str
    access_token: str
    refresh_token: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    expires_at: datetime | None = None
    updated_at: datetime | None = None
    account_name: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> ConnectionKey:
        return (self.org_id, self.platform, self.account_id)

    @property
    def issued_at(self) -> datetime:
        """When the current access token was obtained."""
        return self.updated_at or self.created_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "org_id": self.org_id,
            "platform": self.platform.value,
            "account_id": self.account_id,
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "created_at": _fmt_dt(self.created_at),
            "expires_at": _fmt_dt(self.expires_at),
            "updated_at": _fmt_dt(self.updated_at),
            "account_name": self.account_name,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Connection:
        return cls(
            org_id=data["org_id"],
            platform=Platform.parse(data["platform"]),
            account_id=str(data["account_id"]),
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            created_at=_parse_dt(data.get("created_at")) or utcnow(),
            expires_at=_parse_dt(data.get("expires_at")),
            updated_at=_parse_dt(data.get("updated_at")),
            account_name=data.get("account_name", ""),
            metadata=data.get("metadata") or {},
        )


@dataclass
class Post:
    """One authored piece of content with a text payload per platform."""
    post_id: str
    org_id: str
    title: str = ""
    payloads: dict[Platform, str] = field(default_factory=dict)
    state: PostState = PostState.DRAFT
    scheduled_for: datetime | None = None
    published_at: datetime | None = None
    dispatch_attempts: int = 0
    last_errors: list[tuple[str, str]] = field(default_factory=list)
    cycle: int = 0

    def payload_for(self, platform: Platform) -> str:
        return (self.payloads.get(platform) or "").strip()

    def requested_platforms(self) -> list[Platform]:
        """Platforms whose payload field is populated, in enum order."""
        return [p for p in Platform if self.payload_for(p)]

    def schedule(self, when: datetime, now: datetime | None = None) -> None:
        if self.state != PostState.DRAFT:
            raise ValueError(f"Cannot schedule a post in state {self.state.value}")
        if when <= (now or utcnow()):
            raise ValueError("Scheduled time must be in the future")
        self.scheduled_for = when
        self.state = PostState.SCHEDULED

    def recycle(self) -> None:
        """Reset a published post to draft so it can be reused."""
        if self.state != PostState.PUBLISHED:
            raise ValueError("Only published posts can be recycled")
        self.state = PostState.DRAFT
        self.published_at = None
        self.scheduled_for = None
        self.dispatch_attempts = 0
        self.last_errors = []
        self.cycle += 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "post_id": self.post_id,
            "org_id": self.org_id,
            "title": self.title,
            "payloads": {p.value: text for p, text in self.payloads.items()},
            "state": self.state.value,
            "scheduled_for": _fmt_dt(self.scheduled_for),
            "published_at": _fmt_dt(self.published_at),
            "dispatch_attempts": self.dispatch_attempts,
            "last_errors": [list(e) for e in self.last_errors],
            "cycle": self.cycle,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Post:
        payloads: dict[Platform, str] = {}
        for name, text in (data.get("payloads") or {}).items():
            try:
                payloads[Platform.parse(name)] = text
            except ValueError:
                continue
        return cls(
            post_id=data["post_id"],
            org_id=data["org_id"],
            title=data.get("title", ""),
            payloads=payloads,
            state=PostState(data.get("state", "draft")),
            scheduled_for=_parse_dt(data.get("scheduled_for")),
            published_at=_parse_dt(data.get("published_at")),
            dispatch_attempts=int(data.get("dispatch_attempts", 0)),
            last_errors=[tuple(e) for e in data.get("last_errors", [])],
            cycle=int(data.get("cycle", 0)),
        )


@dataclass
class Destination:
    """One target under a platform, e.g. a Telegram channel or a subreddit."""
    destination_id: str
    name: str = ""
    credential: str | None = None

    @property
    def label(self) -> str:
        return self.name or self.destination_id


@dataclass
class Delivery:
    """What a publisher's single send produced."""
    response_id: str | None = None
    url: str | None = None
    degraded: bool = False
    note: str = ""
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class DestinationOutcome:
    destination_id: str
    name: str = ""
    success: bool = False
    attempts: int = 0
    response_id: str | None = None
    url: str | None = None
    error: str | None = None
    degraded: bool = False
    note: str = ""
    skipped: bool = False


@dataclass
class PublishResult:
    """Outcome of one dispatch attempt for one platform."""
    platform: Platform
    success: bool
    response_id: str | None = None
    url: str | None = None
    error: str | None = None
    error_kind: str | None = None
    attempts: int = 0
    degraded: bool = False
    notes: list[str] = field(default_factory=list)
    skipped: bool = False
    destinations: list[DestinationOutcome] = field(default_factory=list)

    @classmethod
    def failure(
        cls, platform: Platform, error: str, kind: str, attempts: int = 0,
    ) -> PublishResult:
        return cls(platform=platform, success=False, error=error, error_kind=kind, attempts=attempts)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"platform": self.platform.value, "success": self.success}
        for name in ("response_id", "url", "error", "error_kind"):
            value = getattr(self, name)
            if value is not None:
                data[name] = value
        data["attempts"] = self.attempts
        if self.degraded:
            data["degraded"] = True
            data["notes"] = list(self.notes)
        if self.skipped:
            data["skipped"] = True
        if len(self.destinations) > 1:
            data["destinations"] = [
                {
                    "destination": d.name or d.destination_id,
                    "success": d.success,
                    "attempts": d.attempts,
                    **({"skipped": True} if d.skipped else {}),
                    **({"error": d.error} if d.error else {}),
                }
                for d in self.destinations
            ]
        return data


@dataclass
class RefreshOutcome:
    """Result of one token refresh attempt."""
    success: bool
    new_access_token: str | None = None
    new_refresh_token: str | None = None
    expires_in: int | None = None
    error: str | None = None
    attempts: int = 0
    note: str = ""


@dataclass
class DispatchReport:
    """Everything one dispatch produced for the caller."""
    post_id: str
    results: list[PublishResult]
    new_state: PostState
    published_at: datetime | None = None
    errors: list[tuple[str, str]] = field(default_factory=list)

    @property
    def succeeded(self) -> list[PublishResult]:
        return [r for r in self.results if r.success]

    def to_dict(self) -> dict[str, Any]:
        return {
            "post_id": self.post_id,
            "state": self.new_state.value,
            "published_at": _fmt_dt(self.published_at),
            "results": [r.to_dict() for r in self.results],
            "errors": [{"platform": p, "error": e} for p, e in self.errors],
        }
