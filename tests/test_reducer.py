"""Tests for folding dispatch results into post state."""

from conftest import NOW
from social_dispatch.errors import TRANSIENT
from social_dispatch.models import Platform, Post, PostState, PublishResult
from social_dispatch.reducer import apply_reduction, reduce_post


def _post(**kwargs):
    return Post("p1", "org1", state=PostState.SCHEDULED, **kwargs)


def _ok(platform, **kwargs):
    return PublishResult(platform=platform, success=True, **kwargs)


class TestReducePost:
    def test_all_success_publishes(self):
        reduction = reduce_post(_post(), [_ok(Platform.TWITTER), _ok(Platform.LINKEDIN)], NOW)
        assert reduction.published
        assert reduction.new_state == PostState.PUBLISHED
        assert reduction.published_at == NOW
        assert reduction.errors == []

    def test_skipped_counts_as_success(self):
        reduction = reduce_post(_post(), [_ok(Platform.TWITTER, skipped=True), _ok(Platform.DISCORD)], NOW)
        assert reduction.published

    def test_degraded_counts_as_success(self):
        reduction = reduce_post(_post(), [_ok(Platform.TWITTER, degraded=True, notes=["image attach failed"])], NOW)
        assert reduction.published

    def test_partial_failure_keeps_state(self):
        results = [
            _ok(Platform.TWITTER),
            PublishResult.failure(Platform.LINKEDIN, "LinkedIn API error 503: down", TRANSIENT),
        ]
        reduction = reduce_post(_post(), results, NOW)
        assert not reduction.published
        assert reduction.new_state == PostState.SCHEDULED
        assert reduction.published_at is None
        assert reduction.errors == [("linkedin", "LinkedIn API error 503: down")]

    def test_failure_without_message(self):
        result = PublishResult(platform=Platform.REDDIT, success=False)
        assert reduce_post(_post(), [result], NOW).errors == [("reddit", "unknown error")]

    def test_empty_results_never_publish(self):
        reduction = reduce_post(_post(), [], NOW)
        assert not reduction.published
        assert reduction.errors == [("*", "No platforms were dispatched")]


class TestApplyReduction:
    def test_counts_attempts_and_records_errors(self):
        post = _post()
        failed = reduce_post(post, [PublishResult.failure(Platform.TWITTER, "boom", TRANSIENT)], NOW)
        apply_reduction(post, failed)
        assert post.dispatch_attempts == 1
        assert post.last_errors == [("twitter", "boom")]

        apply_reduction(post, reduce_post(post, [_ok(Platform.TWITTER)], NOW))
        assert post.dispatch_attempts == 2
        assert post.state == PostState.PUBLISHED
        assert post.published_at == NOW
        assert post.last_errors == []
