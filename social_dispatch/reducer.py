"""Fold one dispatch's per-platform results into the post's lifecycle state."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable

from social_dispatch.models import Post, PostState, PublishResult, utcnow


@dataclass
class Reduction:
    new_state: PostState
    published_at: datetime | None
    errors: list[tuple[str, str]] = field(default_factory=list)

    @property
    def published(self) -> bool:
        return self.new_state == PostState.PUBLISHED


def reduce_post(
    post: Post,
    results: Iterable[PublishResult],
    now: datetime | None = None,
) -> Reduction:
    """All requested platforms succeeded -> published; anything else keeps the prior state.

    An empty result set never publishes a post.
    """
    results = list(results)
    errors = [
        (r.platform.value, r.error or "unknown error")
        for r in results if not r.success
    ]
    if results and not errors:
        return Reduction(PostState.PUBLISHED, now or utcnow())
    if not results:
        errors = [("*", "No platforms were dispatched")]
    return Reduction(post.state, post.published_at, errors)


def apply_reduction(post: Post, reduction: Reduction) -> Post:
    post.state = reduction.new_state
    post.published_at = reduction.published_at
    post.dispatch_attempts += 1
    post.last_errors = list(reduction.errors)
    return post
