"""Publish dispatcher: one post, many platforms, independent outcomes.

Each requested platform runs in its own worker: resolve the payload, the
connection and a fresh token, then hand the publisher a runner that wraps
every outbound call in the rate limiter and the retry policy. A failure on
one platform never touches another platform's result.

The batch has a deadline. Platforms still running when it passes are
reported as timed out; their workers are left to finish and record what
they actually did in the delivery log, so a later retry does not publish
them twice.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from datetime import datetime
from typing import Any, Callable, Iterable, Mapping

from social_dispatch.circuit_breaker import CircuitBreaker, CircuitOpenError
from social_dispatch.delivery_log import DeliveryLog
from social_dispatch.errors import (
    CONFIGURATION,
    PLATFORM,
    TRANSIENT,
    ConfigurationError,
    DispatchError,
    NeedsReauthError,
)
from social_dispatch.models import (
    Delivery,
    DispatchReport,
    Platform,
    Post,
    PublishResult,
    utcnow,
)
from social_dispatch.publisher import PublisherRegistry, Runner
from social_dispatch.rate_limiter import RateLimiter
from social_dispatch.reducer import apply_reduction, reduce_post
from social_dispatch.retry import RetryConfig, RetryOutcome, with_retry
from social_dispatch.store import ConnectionStore, PostStore
from social_dispatch.tokens import TokenLifecycleManager

logger = logging.getLogger(__name__)


def parse_platforms(names: Iterable[Platform | str]) -> list[Platform]:
    platforms = []
    for name in names:
        try:
            platforms.append(Platform.parse(name))
        except ValueError:
            raise ConfigurationError(f"Unsupported platform: {name}") from None
    return platforms


class PublishDispatcher:
    """Fans a post out to its platforms and folds the results back into it."""

    def __init__(
        self,
        registry: PublisherRegistry,
        tokens: TokenLifecycleManager,
        connections: ConnectionStore,
        delivery_log: DeliveryLog | None = None,
        post_store: PostStore | None = None,
        circuit_breakers: Mapping[str, CircuitBreaker] | None = None,
        rate_limiters: Mapping[str, RateLimiter] | None = None,
        retry_base: Mapping[str, Any] | None = None,
        retry_overrides: Mapping[str, Mapping[str, object]] | None = None,
        max_workers: int = 4,
        deadline: float | None = 300.0,
        clock: Callable[[], datetime] | None = None,
        sleep_func: Callable[[float], None] | None = None,
    ) -> None:
        self._registry = registry
        self._tokens = tokens
        self._connections = connections
        self._delivery_log = delivery_log
        self._post_store = post_store
        self._breakers = dict(circuit_breakers or {})
        self._limiters = dict(rate_limiters or {})
        self._retry_base = retry_base
        self._retry_overrides = retry_overrides or {}
        self._max_workers = max(1, max_workers)
        self._deadline = deadline
        self._clock = clock or utcnow
        self._sleep = sleep_func

    @property
    def tokens(self) -> TokenLifecycleManager:
        return self._tokens

    @property
    def registry(self) -> PublisherRegistry:
        return self._registry

    def retry_config_for(self, platform: Platform) -> RetryConfig:
        return RetryConfig.for_platform(platform.value, self._retry_overrides, self._retry_base)

    def _runner(self, platform: Platform) -> Runner:
        cfg = self.retry_config_for(platform)
        limiter = self._limiters.get(platform.value)

        def run(operation: Callable[[], Delivery], label: str) -> RetryOutcome[Delivery]:
            def attempt() -> Delivery:
                if limiter is not None:
                    limiter.acquire(block=True)
                return operation()
            return with_retry(attempt, label, cfg, sleep_func=self._sleep)

        return run

    def _publish_platform(self, post: Post, platform: Platform) -> PublishResult:
        name = platform.value
        payload = post.payload_for(platform)
        if not payload:
            return PublishResult.failure(platform, f"No {name} content found", CONFIGURATION)

        publisher = self._registry.get(platform)
        if publisher is None:
            return PublishResult.failure(platform, f"Unsupported platform: {name}", CONFIGURATION)

        if self._delivery_log and self._delivery_log.has_been_delivered(post.post_id, name, post.cycle):
            logger.info("Post %s already delivered to %s, skipping", post.post_id, name)
            return PublishResult(platform=platform, success=True, skipped=True, notes=["already delivered"])

        conn = self._connections.find(post.org_id, platform)
        if conn is None:
            return PublishResult.failure(platform, f"No connection found for {name}", CONFIGURATION)

        try:
            token = self._tokens.get_fresh_token(conn.org_id, platform, conn.account_id)
        except NeedsReauthError as exc:
            logger.warning("Skipping %s for post %s: %s", name, post.post_id, exc)
            return PublishResult.failure(platform, str(exc), exc.kind, attempts=exc.attempts)
        except DispatchError as exc:
            return PublishResult.failure(platform, str(exc), exc.kind)

        delivered: set[str] = set()
        if self._delivery_log is not None:
            delivered = self._delivery_log.delivered_destinations(post.post_id, name, post.cycle)

        breaker = self._breakers.get(name)
        if breaker is not None:
            try:
                breaker.before_call()
            except CircuitOpenError as exc:
                return PublishResult.failure(platform, str(exc), TRANSIENT)

        try:
            result = publisher.publish(token, payload, conn, self._runner(platform), delivered)
        except DispatchError as exc:
            result = PublishResult.failure(platform, str(exc), exc.kind)
        except Exception:
            if breaker is not None:
                breaker.record_failure()
            raise

        if breaker is not None:
            if not result.success and result.error_kind == TRANSIENT:
                breaker.record_failure()
            else:
                breaker.record_success()
        return result

    def _worker(self, post: Post, platform: Platform) -> PublishResult:
        attempt_no, cycle = post.dispatch_attempts, post.cycle
        try:
            result = self._publish_platform(post, platform)
        except Exception as exc:
            logger.exception("Unexpected error publishing post %s to %s", post.post_id, platform.value)
            result = PublishResult.failure(platform, f"Unexpected error: {exc}", PLATFORM)
        if self._delivery_log is not None:
            self._delivery_log.record_results(post.post_id, [result], attempt_no, cycle)
        if result.success and not result.skipped:
            logger.info("Published post %s to %s (%s)", post.post_id, platform.value, result.url or result.response_id)
        elif not result.success:
            logger.warning("Post %s failed on %s: %s", post.post_id, platform.value, result.error)
        return result

    def _run_all(self, post: Post, platforms: list[Platform]) -> dict[Platform, PublishResult]:
        collected: dict[Platform, PublishResult] = {}
        lock = threading.Lock()

        def task(platform: Platform) -> None:
            result = self._worker(post, platform)
            with lock:
                collected[platform] = result

        executor = ThreadPoolExecutor(
            max_workers=min(self._max_workers, len(platforms)),
            thread_name_prefix="dispatch",
        )
        try:
            futures: dict[Future[None], Platform] = {
                executor.submit(task, platform): platform for platform in platforms
            }
            wait(futures, timeout=self._deadline)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        with lock:
            snapshot = dict(collected)

        for platform in platforms:
            if platform in snapshot:
                continue
            timed_out = PublishResult.failure(
                platform, f"{platform.value} timed out after {self._deadline:g}s", TRANSIENT,
            )
            logger.error("Post %s: %s", post.post_id, timed_out.error)
            if self._delivery_log is not None:
                self._delivery_log.record_results(
                    post.post_id, [timed_out], post.dispatch_attempts, post.cycle,
                )
            snapshot[platform] = timed_out
        return snapshot

    def dispatch(self, post: Post, platforms: Iterable[Platform | str] | None = None) -> DispatchReport:
        """Publish post to platforms (default: every platform with a payload).

        Updates the post's state, publish time, attempt count and errors, and
        saves it when a post store is configured.
        """
        if platforms is None:
            requested = post.requested_platforms()
        else:
            requested = list(dict.fromkeys(parse_platforms(platforms)))

        logger.info(
            "Dispatching post %s to %s",
            post.post_id, ", ".join(p.value for p in requested) or "no platforms",
        )
        collected = self._run_all(post, requested) if requested else {}
        results = [collected[p] for p in requested]

        reduction = reduce_post(post, results, self._clock())
        apply_reduction(post, reduction)
        if self._post_store is not None:
            self._post_store.save(post)

        if reduction.published:
            logger.info("Post %s published on all %d platform(s)", post.post_id, len(results))
        else:
            logger.warning(
                "Post %s not published: %d of %d platform(s) failed",
                post.post_id, len(reduction.errors), len(results),
            )
        return DispatchReport(
            post_id=post.post_id,
            results=results,
            new_state=post.state,
            published_at=post.published_at,
            errors=list(reduction.errors),
        )
