"""Tests for the post model lifecycle and the JSON-backed stores."""

from datetime import timedelta

import pytest

from conftest import NOW
from social_dispatch.models import Connection, Platform, Post, PostState
from social_dispatch.store import ConnectionStore, DestinationDirectory, PostStore


class TestPostLifecycle:
    def test_schedule_future(self):
        post = Post("p1", "org1")
        post.schedule(NOW + timedelta(hours=1), now=NOW)
        assert post.state == PostState.SCHEDULED

    def test_schedule_past_rejected(self):
        with pytest.raises(ValueError, match="future"):
            Post("p1", "org1").schedule(NOW - timedelta(minutes=1), now=NOW)

    def test_schedule_only_from_draft(self):
        post = Post("p1", "org1", state=PostState.PUBLISHED)
        with pytest.raises(ValueError):
            post.schedule(NOW + timedelta(hours=1), now=NOW)

    def test_recycle_starts_new_cycle(self):
        post = Post("p1", "org1", state=PostState.PUBLISHED, published_at=NOW, dispatch_attempts=2)
        post.recycle()
        assert post.state == PostState.DRAFT
        assert post.published_at is None
        assert post.dispatch_attempts == 0
        assert post.cycle == 1

    def test_requested_platforms_ignore_blank_payloads(self):
        post = Post("p1", "org1", payloads={Platform.REDDIT: "Hi", Platform.TWITTER: "Hi", Platform.DISCORD: "  "})
        assert post.requested_platforms() == [Platform.TWITTER, Platform.REDDIT]

    def test_from_dict_accepts_any_case_and_skips_unknown(self):
        post = Post.from_dict({
            "post_id": "p1", "org_id": "org1",
            "payloads": {"LinkedIn": "Hi", "myspace": "Hi"},
        })
        assert list(post.payloads) == [Platform.LINKEDIN]


class TestConnectionStore:
    def test_persists_and_reloads(self, tmp_path):
        path = tmp_path / "connections.json"
        store = ConnectionStore(path)
        store.put(Connection("org1", Platform.LINKEDIN, "li1", "tok", refresh_token="rt", created_at=NOW))
        reloaded = ConnectionStore(path)
        assert reloaded.get("org1", Platform.LINKEDIN, "li1").refresh_token == "rt"

    def test_update_tokens(self):
        store = ConnectionStore()
        store.put(Connection("org1", Platform.REDDIT, "rd1", "old", refresh_token="rt", created_at=NOW))
        updated = store.update_tokens(("org1", Platform.REDDIT, "rd1"), "new", now=NOW)
        assert updated.access_token == "new"
        assert updated.refresh_token == "rt"
        assert updated.updated_at == NOW

    def test_update_unknown_connection(self):
        with pytest.raises(KeyError):
            ConnectionStore().update_tokens(("org1", Platform.REDDIT, "nobody"), "new")

    def test_returned_connections_are_copies(self, connections):
        conn = connections.find("org1", Platform.TWITTER)
        conn.access_token = "mutated"
        assert connections.find("org1", Platform.TWITTER).access_token == "tw-token"


class TestPostStore:
    def test_due_oldest_first(self):
        store = PostStore()
        store.save(Post("late", "org1", state=PostState.SCHEDULED, scheduled_for=NOW - timedelta(minutes=1)))
        store.save(Post("early", "org1", state=PostState.SCHEDULED, scheduled_for=NOW - timedelta(hours=1)))
        store.save(Post("future", "org1", state=PostState.SCHEDULED, scheduled_for=NOW + timedelta(hours=1)))
        store.save(Post("draft", "org1", scheduled_for=NOW - timedelta(hours=2)))
        assert [p.post_id for p in store.due(NOW)] == ["early", "late"]

    def test_persists_and_reloads(self, tmp_path):
        path = tmp_path / "posts.json"
        PostStore(path).save(Post("p1", "org1", payloads={Platform.TWITTER: "Hi"}, cycle=2))
        post = PostStore(path).get("p1")
        assert post.payloads == {Platform.TWITTER: "Hi"}
        assert post.cycle == 2


class TestDestinationDirectory:
    def test_entries_and_file(self, tmp_path):
        path = tmp_path / "destinations.json"
        path.write_text(
            '{"destinations": [{"org_id": "org1", "platform": "Telegram", "destination_id": -1002, "name": "@b"}]}',
            encoding="utf-8",
        )
        directory = DestinationDirectory({"org1": {"telegram": []}}, path=path)
        dests = directory.destinations_for("org1", Platform.TELEGRAM)
        assert [d.destination_id for d in dests] == ["-1002"]
        assert directory.destinations_for("org2", Platform.TELEGRAM) == []
