"""Scheduler trigger and manual publish.

run_due() is what an external cron invokes on a fixed interval: it picks
every scheduled post whose time has come and dispatches each once.
publish_now() is the operator's manual path for one post and shares the
same dispatcher and reducer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable

from social_dispatch.dispatcher import PublishDispatcher
from social_dispatch.errors import ConfigurationError
from social_dispatch.models import DispatchReport, Platform, PublishResult, utcnow
from social_dispatch.store import PostStore

logger = logging.getLogger(__name__)

NO_PLATFORMS = "No platforms found for posting"


@dataclass
class BatchReport:
    """Summary of one scheduler run."""
    total: int = 0
    published: int = 0
    partial: int = 0
    failed: int = 0
    reports: list[DispatchReport] = field(default_factory=list)
    errors: list[tuple[str, str]] = field(default_factory=list)
    held: list[str] = field(default_factory=list)

    def add(self, report: DispatchReport) -> None:
        self.reports.append(report)
        ok = sum(1 for r in report.results if r.success)
        if report.results and ok == len(report.results):
            self.published += 1
        elif ok:
            self.partial += 1
        else:
            self.failed += 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "summary": {
                "total": self.total,
                "published": self.published,
                "partial": self.partial,
                "failed": self.failed,
                "held": len(self.held),
            },
            "reports": [r.to_dict() for r in self.reports],
            "errors": [{"post_id": p, "error": e} for p, e in self.errors],
        }


@dataclass
class ManualPublishResponse:
    post_id: str
    success: bool
    results: list[PublishResult]
    errors: list[tuple[str, str]]
    state: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "post_id": self.post_id,
            "success": self.success,
            "state": self.state,
            "results": [r.to_dict() for r in self.results],
            "errors": [{"platform": p, "error": e} for p, e in self.errors],
        }


class ScheduledPublisher:
    """Drives the dispatcher from the post store."""

    def __init__(
        self,
        dispatcher: PublishDispatcher,
        posts: PostStore,
        max_post_attempts: int | None = 5,
    ) -> None:
        self._dispatcher = dispatcher
        self._posts = posts
        self._max_post_attempts = max_post_attempts

    def run_due(self, now: datetime | None = None) -> BatchReport:
        now = now or utcnow()
        batch = BatchReport()
        due = self._posts.due(now)
        if not due:
            logger.info("No posts scheduled for posting at %s", now.isoformat())
            return batch

        for post in due:
            if self._max_post_attempts is not None and post.dispatch_attempts >= self._max_post_attempts:
                logger.warning(
                    "Post %s reached %d dispatch attempts; waiting for a manual re-trigger",
                    post.post_id, post.dispatch_attempts,
                )
                batch.held.append(post.post_id)
                continue

            batch.total += 1
            if not post.requested_platforms():
                logger.warning("No platforms found for post %s", post.post_id)
                batch.errors.append((post.post_id, NO_PLATFORMS))
                batch.failed += 1
                continue

            try:
                report = self._dispatcher.dispatch(post)
            except Exception as exc:
                logger.exception("Error processing post %s", post.post_id)
                batch.errors.append((post.post_id, str(exc)))
                batch.failed += 1
                continue
            batch.add(report)
            for platform, error in report.errors:
                batch.errors.append((post.post_id, f"{platform}: {error}"))

        logger.info(
            "Scheduled run complete: %d processed, %d published, %d partial, %d failed, %d held",
            batch.total, batch.published, batch.partial, batch.failed, len(batch.held),
        )
        return batch

    def publish_now(
        self,
        post_id: str,
        platforms: Iterable[Platform | str] | None = None,
    ) -> ManualPublishResponse:
        """Dispatch one post immediately, regardless of schedule or attempt count."""
        post = self._posts.get(post_id)
        if post is None:
            raise ConfigurationError("Post not found")
        requested = list(platforms) if platforms is not None else post.requested_platforms()
        if not requested:
            raise ConfigurationError(NO_PLATFORMS)

        report = self._dispatcher.dispatch(post, requested)
        return ManualPublishResponse(
            post_id=post_id,
            success=bool(report.results) and all(r.success for r in report.results),
            results=report.results,
            errors=report.errors,
            state=report.new_state.value,
        )
