"""Configuration loader for social-dispatch.

Loads a YAML config file with environment variable overrides.
All env vars use the SOCIAL_DISPATCH_ prefix.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

import yaml

from social_dispatch.errors import ConfigurationError

ENV_PREFIX = "SOCIAL_DISPATCH_"


@dataclass
class OAuthClient:
    client_id: str = ""
    client_secret: str = ""

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)


@dataclass
class DispatchConfig:
    """Unified configuration for the dispatch core and its CLI."""
    live_mode: bool = False
    data_dir: str = "data"
    delivery_log_path: str = "delivery_log.json"
    delivery_log_max_records: int | None = None
    max_workers: int = 4
    dispatch_deadline: float = 300.0
    request_timeout: float = 30.0
    max_post_attempts: int = 5
    # Applied to every platform over its retry table entry; None keeps the table value.
    retry_max_attempts: int | None = None
    retry_base_delay: float | None = None
    retry_max_delay: float | None = None
    retry_multiplier: float | None = None
    retry_max_elapsed: float | None = None
    retry_overrides: dict[str, dict[str, Any]] = field(default_factory=dict)
    circuit_failure_threshold: int = 5
    circuit_reset_timeout: float = 60.0
    rate_limit_per_second: float = 1.0
    rate_limit_burst: float = 5.0
    linkedin: OAuthClient = field(default_factory=OAuthClient)
    reddit: OAuthClient = field(default_factory=OAuthClient)
    google: OAuthClient = field(default_factory=OAuthClient)
    reddit_user_agent: str = "social-dispatch/0.1"
    signatures: dict[str, str] = field(default_factory=dict)

    @property
    def connections_path(self) -> Path:
        return Path(self.data_dir) / "connections.json"

    @property
    def posts_path(self) -> Path:
        return Path(self.data_dir) / "posts.json"

    @property
    def destinations_path(self) -> Path:
        return Path(self.data_dir) / "destinations.json"


def load_config(path: Path | None = None) -> DispatchConfig:
    """Load config from YAML file with env var overrides.

    Env vars override YAML values. Mapping:
      SOCIAL_DISPATCH_LIVE_MODE -> live_mode
      SOCIAL_DISPATCH_DATA_DIR -> data_dir
      SOCIAL_DISPATCH_DELIVERY_LOG_PATH -> delivery_log_path
      SOCIAL_DISPATCH_MAX_WORKERS -> dispatch.max_workers
      SOCIAL_DISPATCH_DEADLINE -> dispatch.deadline
      SOCIAL_DISPATCH_MAX_POST_ATTEMPTS -> dispatch.max_post_attempts
      SOCIAL_DISPATCH_LINKEDIN_CLIENT_ID / _SECRET -> oauth.linkedin.*
      SOCIAL_DISPATCH_REDDIT_CLIENT_ID / _SECRET -> oauth.reddit.*
      SOCIAL_DISPATCH_GOOGLE_CLIENT_ID / _SECRET -> oauth.google.*
      SOCIAL_DISPATCH_REDDIT_USER_AGENT -> oauth.reddit.user_agent
    """
    raw: dict[str, Any] = {}
    if path and path.exists():
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")

    dispatch = raw.get("dispatch") or {}
    retry = raw.get("retry") or {}
    circuit = raw.get("circuit_breaker") or {}
    rate = raw.get("rate_limit") or {}
    oauth = raw.get("oauth") or {}

    max_records = raw.get("delivery_log_max_records")
    try:
        cfg = DispatchConfig(
            live_mode=_env_bool("LIVE_MODE", bool(raw.get("live_mode", False))),
            data_dir=_env_or("DATA_DIR", raw.get("data_dir", "data")),
            delivery_log_path=_env_or("DELIVERY_LOG_PATH", raw.get("delivery_log_path", "delivery_log.json")),
            delivery_log_max_records=int(max_records) if max_records is not None else None,
            max_workers=int(_env_or("MAX_WORKERS", dispatch.get("max_workers", 4))),
            dispatch_deadline=float(_env_or("DEADLINE", dispatch.get("deadline", 300.0))),
            request_timeout=float(dispatch.get("request_timeout", 30.0)),
            max_post_attempts=int(_env_or("MAX_POST_ATTEMPTS", dispatch.get("max_post_attempts", 5))),
            retry_max_attempts=_optional(int, retry.get("max_attempts")),
            retry_base_delay=_optional(float, retry.get("base_delay")),
            retry_max_delay=_optional(float, retry.get("max_delay")),
            retry_multiplier=_optional(float, retry.get("multiplier")),
            retry_max_elapsed=_optional(float, retry.get("max_elapsed")),
            retry_overrides={
                str(k).lower(): dict(v) for k, v in (retry.get("platforms") or {}).items()
            },
            circuit_failure_threshold=int(circuit.get("failure_threshold", 5)),
            circuit_reset_timeout=float(circuit.get("reset_timeout", 60.0)),
            rate_limit_per_second=float(rate.get("per_second", 1.0)),
            rate_limit_burst=float(rate.get("burst", 5.0)),
            linkedin=_oauth_client("LINKEDIN", oauth.get("linkedin") or {}),
            reddit=_oauth_client("REDDIT", oauth.get("reddit") or {}),
            google=_oauth_client("GOOGLE", oauth.get("google") or {}),
            reddit_user_agent=_env_or(
                "REDDIT_USER_AGENT",
                (oauth.get("reddit") or {}).get("user_agent", "social-dispatch/0.1"),
            ),
            signatures={str(k).lower(): str(v) for k, v in (raw.get("signatures") or {}).items()},
        )
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc

    return cfg


def _optional(convert: Callable[[Any], Any], value: Any) -> Any:
    return convert(value) if value is not None else None


def _oauth_client(name: str, section: dict[str, Any]) -> OAuthClient:
    return OAuthClient(
        client_id=_env_or(f"{name}_CLIENT_ID", section.get("client_id", "")),
        client_secret=_env_or(f"{name}_CLIENT_SECRET", section.get("client_secret", "")),
    )


def _env_or(suffix: str, default: Any) -> Any:
    return os.environ.get(f"{ENV_PREFIX}{suffix}", default)


def _env_bool(suffix: str, default: bool) -> bool:
    val = os.environ.get(f"{ENV_PREFIX}{suffix}")
    if val is None:
        return default
    return val.lower() in ("true", "1", "yes")
