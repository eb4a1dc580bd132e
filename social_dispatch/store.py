"""JSON file-backed stores for connections, posts and per-org destinations.

These stand in for the application's database. Each store keeps its
records in memory, guards them with a lock and, when given a path, writes
the whole file atomically after every mutation.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable

from social_dispatch.models import (
    Connection,
    ConnectionKey,
    Destination,
    Platform,
    Post,
    PostState,
    utcnow,
)

logger = logging.getLogger(__name__)


class _JsonFile:
    def __init__(self, path: Path | None) -> None:
        self._path = path

    def load(self, key: str) -> list[dict[str, Any]]:
        if not self._path or not self._path.exists():
            return []
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            logger.error("Could not read %s: %s", self._path, exc)
            return []
        return list(data.get(key, []))

    def save(self, key: str, records: list[dict[str, Any]]) -> None:
        if not self._path:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(json.dumps({key: records}, indent=2), encoding="utf-8")
        os.replace(str(tmp), str(self._path))


class ConnectionStore:
    """At most one connection per (org_id, platform, account_id)."""

    def __init__(self, path: Path | None = None) -> None:
        self._file = _JsonFile(path)
        self._lock = threading.Lock()
        self._connections: dict[ConnectionKey, Connection] = {}
        for raw in self._file.load("connections"):
            try:
                conn = Connection.from_dict(raw)
            except (KeyError, ValueError) as exc:
                logger.warning("Skipping malformed connection record: %s", exc)
                continue
            self._connections[conn.key] = conn

    def _save(self) -> None:
        self._file.save("connections", [c.to_dict() for c in self._connections.values()])

    def put(self, connection: Connection) -> None:
        """Insert or replace; this is the (re)connect path of the OAuth handshake."""
        with self._lock:
            self._connections[connection.key] = connection
            self._save()

    def get(self, org_id: str, platform: Platform, account_id: str) -> Connection | None:
        with self._lock:
            conn = self._connections.get((org_id, platform, account_id))
            return Connection.from_dict(conn.to_dict()) if conn else None

    def find(self, org_id: str, platform: Platform) -> Connection | None:
        """First connection an org has on a platform, by account id."""
        with self._lock:
            matches = sorted(
                (c for c in self._connections.values()
                 if c.org_id == org_id and c.platform == platform),
                key=lambda c: c.account_id,
            )
            return Connection.from_dict(matches[0].to_dict()) if matches else None

    def for_org(self, org_id: str) -> list[Connection]:
        with self._lock:
            return [
                Connection.from_dict(c.to_dict())
                for c in self._connections.values() if c.org_id == org_id
            ]

    def update_tokens(
        self,
        key: ConnectionKey,
        access_token: str,
        refresh_token: str | None = None,
        expires_at: datetime | None = None,
        now: datetime | None = None,
    ) -> Connection:
        """Overwrite the token fields of one connection in a single step."""
        with self._lock:
            conn = self._connections.get(key)
            if conn is None:
                raise KeyError(f"No connection for {key[1].value}/{key[2]} in org {key[0]}")
            conn.access_token = access_token
            if refresh_token:
                conn.refresh_token = refresh_token
            conn.expires_at = expires_at
            conn.updated_at = now or utcnow()
            self._save()
            return Connection.from_dict(conn.to_dict())

    def __len__(self) -> int:
        return len(self._connections)


class PostStore:
    """Content records keyed by post id."""

    def __init__(self, path: Path | None = None) -> None:
        self._file = _JsonFile(path)
        self._lock = threading.Lock()
        self._posts: dict[str, Post] = {}
        for raw in self._file.load("posts"):
            try:
                post = Post.from_dict(raw)
            except (KeyError, ValueError) as exc:
                logger.warning("Skipping malformed post record: %s", exc)
                continue
            self._posts[post.post_id] = post

    def _save(self) -> None:
        self._file.save("posts", [p.to_dict() for p in self._posts.values()])

    def save(self, post: Post) -> None:
        with self._lock:
            self._posts[post.post_id] = Post.from_dict(post.to_dict())
            self._save()

    def get(self, post_id: str) -> Post | None:
        with self._lock:
            post = self._posts.get(post_id)
            return Post.from_dict(post.to_dict()) if post else None

    def due(self, now: datetime) -> list[Post]:
        """Scheduled posts whose time has come, oldest first."""
        with self._lock:
            due = [
                p for p in self._posts.values()
                if p.state == PostState.SCHEDULED
                and p.scheduled_for is not None
                and p.scheduled_for <= now
            ]
            due.sort(key=lambda p: p.scheduled_for)  # type: ignore[arg-type, return-value]
            return [Post.from_dict(p.to_dict()) for p in due]

    def all(self) -> list[Post]:
        with self._lock:
            return [Post.from_dict(p.to_dict()) for p in self._posts.values()]


class DestinationDirectory:
    """Read-only per-org destination lists, e.g. several Telegram channels."""

    def __init__(
        self,
        entries: dict[str, dict[str, Iterable[Destination]]] | None = None,
        path: Path | None = None,
    ) -> None:
        self._entries: dict[tuple[str, Platform], list[Destination]] = {}
        for org_id, by_platform in (entries or {}).items():
            for platform, dests in by_platform.items():
                self._entries[(org_id, Platform.parse(platform))] = list(dests)
        for raw in _JsonFile(path).load("destinations"):
            key = (raw["org_id"], Platform.parse(raw["platform"]))
            self._entries.setdefault(key, []).append(Destination(
                destination_id=str(raw["destination_id"]),
                name=raw.get("name", ""),
                credential=raw.get("credential"),
            ))

    def destinations_for(self, org_id: str, platform: Platform) -> list[Destination]:
        return list(self._entries.get((org_id, platform), []))
