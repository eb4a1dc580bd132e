"""Factory for building the dispatch core from a DispatchConfig.

Shared by the CLI and any host application so publishers, refresh grants
and stores are constructed once per process.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from social_dispatch.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from social_dispatch.config import DispatchConfig
from social_dispatch.delivery_log import DeliveryLog
from social_dispatch.discord import DiscordPublisher
from social_dispatch.dispatcher import PublishDispatcher
from social_dispatch.facebook import FacebookPublisher
from social_dispatch.http import DryRunTransport, Transport, UrllibTransport
from social_dispatch.instagram import InstagramPublisher
from social_dispatch.linkedin import LinkedInPublisher
from social_dispatch.models import Platform
from social_dispatch.publisher import PublisherRegistry
from social_dispatch.rate_limiter import RateLimiter, RateLimiterConfig
from social_dispatch.reddit import RedditPublisher
from social_dispatch.retry import RetryConfig
from social_dispatch.scheduler import ScheduledPublisher
from social_dispatch.store import ConnectionStore, DestinationDirectory, PostStore
from social_dispatch.telegram import TelegramPublisher
from social_dispatch.tokens import (
    GOOGLE_TOKEN_URL,
    LINKEDIN_TOKEN_URL,
    REDDIT_TOKEN_URL,
    OAuth2RefreshGrant,
    Refresher,
    TokenLifecycleManager,
)
from social_dispatch.twitter import TwitterPublisher
from social_dispatch.wordpress import WordPressPublisher
from social_dispatch.youtube import YouTubePublisher


@dataclass
class Stores:
    connections: ConnectionStore
    posts: PostStore
    destinations: DestinationDirectory
    delivery_log: DeliveryLog


def build_transport(cfg: DispatchConfig) -> Transport:
    """Live urllib transport, or the recording dry-run transport."""
    if cfg.live_mode:
        return UrllibTransport(timeout=cfg.request_timeout)
    return DryRunTransport()


def build_stores(cfg: DispatchConfig) -> Stores:
    log_path = Path(cfg.delivery_log_path) if cfg.delivery_log_path else None
    return Stores(
        connections=ConnectionStore(cfg.connections_path),
        posts=PostStore(cfg.posts_path),
        destinations=DestinationDirectory(path=cfg.destinations_path),
        delivery_log=DeliveryLog(log_path, max_records=cfg.delivery_log_max_records),
    )


def build_registry(
    cfg: DispatchConfig,
    transport: Transport,
    directory: DestinationDirectory | None = None,
) -> PublisherRegistry:
    """One publisher per supported platform."""
    def sig(platform: Platform) -> str:
        return cfg.signatures.get(platform.value, "")

    timeout = cfg.request_timeout
    return PublisherRegistry([
        TwitterPublisher(transport, sig(Platform.TWITTER), directory, timeout),
        LinkedInPublisher(transport, sig(Platform.LINKEDIN), directory, timeout),
        InstagramPublisher(transport, sig(Platform.INSTAGRAM), directory, timeout),
        FacebookPublisher(transport, sig(Platform.FACEBOOK), directory, timeout),
        YouTubePublisher(transport, sig(Platform.YOUTUBE), directory, timeout),
        DiscordPublisher(transport, sig(Platform.DISCORD), directory, timeout),
        RedditPublisher(
            transport, sig(Platform.REDDIT), directory, timeout, user_agent=cfg.reddit_user_agent,
        ),
        TelegramPublisher(transport, sig(Platform.TELEGRAM), directory, timeout),
        WordPressPublisher(transport, sig(Platform.WORDPRESS), directory, timeout),
    ])


def build_refreshers(cfg: DispatchConfig, transport: Transport) -> dict[Platform, Refresher]:
    """Refresh grants for every platform whose OAuth client is configured."""
    refreshers: dict[Platform, Refresher] = {}
    if cfg.linkedin.configured:
        refreshers[Platform.LINKEDIN] = OAuth2RefreshGrant(
            Platform.LINKEDIN, LINKEDIN_TOKEN_URL,
            cfg.linkedin.client_id, cfg.linkedin.client_secret, transport,
        )
    if cfg.reddit.configured:
        refreshers[Platform.REDDIT] = OAuth2RefreshGrant(
            Platform.REDDIT, REDDIT_TOKEN_URL,
            cfg.reddit.client_id, cfg.reddit.client_secret, transport,
            basic_auth=True, user_agent=cfg.reddit_user_agent,
        )
    if cfg.google.configured:
        refreshers[Platform.YOUTUBE] = OAuth2RefreshGrant(
            Platform.YOUTUBE, GOOGLE_TOKEN_URL,
            cfg.google.client_id, cfg.google.client_secret, transport,
        )
    return refreshers


def base_retry_config(cfg: DispatchConfig) -> dict[str, Any]:
    """Retry settings configured for every platform; unset ones are left out."""
    configured = {
        "max_attempts": cfg.retry_max_attempts,
        "base_delay": cfg.retry_base_delay,
        "max_delay": cfg.retry_max_delay,
        "multiplier": cfg.retry_multiplier,
        "max_elapsed": cfg.retry_max_elapsed,
    }
    return {k: v for k, v in configured.items() if v is not None}


def build_token_manager(
    cfg: DispatchConfig,
    connections: ConnectionStore,
    transport: Transport,
    sleep_func: Callable[[float], None] | None = None,
) -> TokenLifecycleManager:
    base = base_retry_config(cfg)
    return TokenLifecycleManager(
        connections,
        refreshers=build_refreshers(cfg, transport),
        retry_configs={
            p.value: RetryConfig.for_platform(p.value, cfg.retry_overrides, base) for p in Platform
        },
        sleep_func=sleep_func,
    )


def build_dispatcher(
    cfg: DispatchConfig,
    stores: Stores | None = None,
    transport: Transport | None = None,
    sleep_func: Callable[[float], None] | None = None,
) -> PublishDispatcher:
    """Build a PublishDispatcher from a DispatchConfig.

    Args:
        cfg: Dispatch configuration with credentials and live_mode.
        stores: Optional pre-built stores. If None, they are constructed
            from the paths in cfg.
        transport: Optional transport. If None, live_mode picks one.
        sleep_func: Sleep used between retries and by rate limiters.

    Returns:
        A fully wired PublishDispatcher.
    """
    stores = stores or build_stores(cfg)
    transport = transport or build_transport(cfg)
    breaker_cfg = CircuitBreakerConfig(
        failure_threshold=cfg.circuit_failure_threshold,
        reset_timeout=cfg.circuit_reset_timeout,
    )
    limiter_cfg = RateLimiterConfig(
        tokens_per_second=cfg.rate_limit_per_second,
        max_tokens=cfg.rate_limit_burst,
    )
    return PublishDispatcher(
        registry=build_registry(cfg, transport, stores.destinations),
        tokens=build_token_manager(cfg, stores.connections, transport, sleep_func),
        connections=stores.connections,
        delivery_log=stores.delivery_log,
        post_store=stores.posts,
        circuit_breakers={p.value: CircuitBreaker(p.value, breaker_cfg) for p in Platform},
        rate_limiters={p.value: RateLimiter(limiter_cfg, sleep_func=sleep_func) for p in Platform},
        retry_base=base_retry_config(cfg),
        retry_overrides=cfg.retry_overrides,
        max_workers=cfg.max_workers,
        deadline=cfg.dispatch_deadline,
        sleep_func=sleep_func,
    )


def build_scheduler(
    cfg: DispatchConfig,
    stores: Stores | None = None,
    transport: Transport | None = None,
    sleep_func: Callable[[float], None] | None = None,
) -> ScheduledPublisher:
    stores = stores or build_stores(cfg)
    dispatcher = build_dispatcher(cfg, stores, transport, sleep_func)
    return ScheduledPublisher(dispatcher, stores.posts, max_post_attempts=cfg.max_post_attempts)
