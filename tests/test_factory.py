"""Tests for building the dispatch core from configuration."""

from conftest import NOW
from social_dispatch.config import DispatchConfig, OAuthClient
from social_dispatch.dispatcher import PublishDispatcher
from social_dispatch.factory import (
    build_dispatcher,
    build_refreshers,
    build_registry,
    build_scheduler,
    build_stores,
    build_token_manager,
    build_transport,
)
from social_dispatch.http import DryRunTransport, UrllibTransport
from social_dispatch.models import Connection, Platform, Post, PostState
from social_dispatch.scheduler import ScheduledPublisher
from social_dispatch.store import ConnectionStore


def _config(tmp_path, **kwargs):
    return DispatchConfig(
        data_dir=str(tmp_path),
        delivery_log_path=str(tmp_path / "delivery_log.json"),
        **kwargs,
    )


class TestBuildTransport:
    def test_dry_run_by_default(self):
        assert isinstance(build_transport(DispatchConfig()), DryRunTransport)

    def test_live_mode(self):
        assert isinstance(build_transport(DispatchConfig(live_mode=True)), UrllibTransport)


class TestBuildRegistry:
    def test_every_platform_registered(self):
        registry = build_registry(DispatchConfig(), DryRunTransport())
        assert set(registry.platforms) == set(Platform)

    def test_signature_applied(self):
        registry = build_registry(DispatchConfig(signatures={"twitter": "#launch"}), DryRunTransport())
        text, _ = registry.get(Platform.TWITTER).shape("Hello")
        assert text == "Hello\n\n#launch"


class TestBuildRefreshers:
    def test_none_without_credentials(self):
        assert build_refreshers(DispatchConfig(), DryRunTransport()) == {}

    def test_configured_clients(self):
        cfg = DispatchConfig(
            linkedin=OAuthClient("li", "li-secret"),
            google=OAuthClient("g", "g-secret"),
            reddit=OAuthClient("rd", ""),
        )
        refreshers = build_refreshers(cfg, DryRunTransport())
        assert set(refreshers) == {Platform.LINKEDIN, Platform.YOUTUBE}


class TestBuildDispatcher:
    def test_build_with_empty_config(self, tmp_path):
        dispatcher = build_dispatcher(_config(tmp_path))
        assert isinstance(dispatcher, PublishDispatcher)

    def test_retry_overrides(self, tmp_path):
        cfg = _config(tmp_path, retry_overrides={"twitter": {"max_attempts": 7}})
        dispatcher = build_dispatcher(cfg)
        assert dispatcher.retry_config_for(Platform.TWITTER).max_attempts == 7
        assert dispatcher.retry_config_for(Platform.TELEGRAM).max_attempts == 2

    def test_configured_retry_reaches_every_platform(self, tmp_path):
        cfg = _config(
            tmp_path, retry_max_attempts=6, retry_base_delay=0.1,
            retry_overrides={"twitter": {"max_attempts": 1}},
        )
        dispatcher = build_dispatcher(cfg)
        telegram = dispatcher.retry_config_for(Platform.TELEGRAM)
        assert telegram.max_attempts == 6
        assert telegram.base_delay == 0.1
        assert telegram.max_delay == 10.0
        assert dispatcher.retry_config_for(Platform.TWITTER).max_attempts == 1

    def test_configured_retry_reaches_token_refresh(self, tmp_path):
        manager = build_token_manager(_config(tmp_path, retry_max_attempts=4), ConnectionStore(), DryRunTransport())
        assert manager._retry_configs["linkedin"].max_attempts == 4

    def test_stores_live_under_data_dir(self, tmp_path):
        cfg = _config(tmp_path)
        stores = build_stores(cfg)
        stores.connections.put(Connection("org1", Platform.TWITTER, "tw1", "tok", created_at=NOW))
        stores.posts.save(Post("p1", "org1"))
        assert (tmp_path / "connections.json").exists()
        assert (tmp_path / "posts.json").exists()

    def test_dry_run_dispatch_end_to_end(self, tmp_path):
        cfg = _config(tmp_path)
        stores = build_stores(cfg)
        stores.connections.put(Connection("org1", Platform.TWITTER, "tw1", "tok", created_at=NOW))
        transport = DryRunTransport()
        dispatcher = build_dispatcher(cfg, stores, transport, sleep_func=lambda _: None)

        report = dispatcher.dispatch(Post("p1", "org1", payloads={Platform.TWITTER: "Hello"}))
        assert report.new_state == PostState.PUBLISHED
        assert transport.request_count == 1
        assert stores.posts.get("p1").state == PostState.PUBLISHED
        assert stores.delivery_log.has_been_delivered("p1", "twitter")


class TestBuildScheduler:
    def test_attempt_cap_from_config(self, tmp_path):
        scheduler = build_scheduler(_config(tmp_path, max_post_attempts=2))
        assert isinstance(scheduler, ScheduledPublisher)
        assert scheduler._max_post_attempts == 2
