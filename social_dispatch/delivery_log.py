"""Persistent delivery log: one record per platform per dispatch attempt.

Operators read it to see what went out and what failed; the dispatcher
reads it to avoid publishing a platform, or one of a platform's channels,
twice when a partially failed post is dispatched again.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from social_dispatch.models import PublishResult

logger = logging.getLogger(__name__)


@dataclass
class DeliveryRecord:
    """A single delivery attempt."""
    record_id: str
    post_id: str
    platform: str
    status: str  # "success", "failure", "skipped"
    timestamp: str = ""
    attempts: int = 0
    external_id: str = ""
    external_url: str = ""
    error: str = ""
    degraded: bool = False
    cycle: int = 0
    delivered_destinations: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.timestamp:
            self.timestamp = datetime.now(timezone.utc).isoformat()

    @classmethod
    def from_result(
        cls, post_id: str, result: PublishResult, attempt_no: int = 0, cycle: int = 0,
    ) -> DeliveryRecord:
        if result.skipped:
            status = "skipped"
        else:
            status = "success" if result.success else "failure"
        metadata: dict[str, Any] = {}
        if result.notes:
            metadata["notes"] = list(result.notes)
        if result.error_kind:
            metadata["error_kind"] = result.error_kind
        if len(result.destinations) > 1:
            metadata["destinations"] = {
                d.name or d.destination_id: "success" if d.success else (d.error or "failure")
                for d in result.destinations
            }
        return cls(
            record_id=f"{post_id}-{cycle}-{result.platform.value}-{attempt_no}",
            post_id=post_id,
            platform=result.platform.value,
            status=status,
            attempts=result.attempts,
            external_id=result.response_id or "",
            external_url=result.url or "",
            error=result.error or "",
            degraded=result.degraded,
            cycle=cycle,
            delivered_destinations=[d.destination_id for d in result.destinations if d.success],
            metadata=metadata,
        )


class DeliveryLog:
    """JSON file-backed delivery log, safe to append from worker threads."""

    def __init__(self, path: Path | None = None, max_records: int | None = None) -> None:
        self._path = path
        self._max_records = max_records
        self._lock = threading.Lock()
        self._records: list[DeliveryRecord] = []
        if path and path.exists():
            self._load()

    def _load(self) -> None:
        if not self._path or not self._path.exists():
            return
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
            self._records = [
                DeliveryRecord(**rec) for rec in data.get("records", [])
            ]
        except (json.JSONDecodeError, TypeError) as exc:
            logger.error("Delivery log %s is unreadable, starting empty: %s", self._path, exc)
            self._records = []

    def _save(self) -> None:
        if not self._path:
            return
        data = {"records": [asdict(r) for r in self._records]}
        tmp = self._path.with_suffix(".tmp")
        tmp.write_text(json.dumps(data, indent=2), encoding="utf-8")
        os.replace(str(tmp), str(self._path))

    def append(self, record: DeliveryRecord) -> None:
        with self._lock:
            self._records.append(record)
            if self._max_records is not None and len(self._records) > self._max_records:
                self._records = self._records[-self._max_records:]
            self._save()

    def record_results(
        self, post_id: str, results: list[PublishResult], attempt_no: int = 0, cycle: int = 0,
    ) -> None:
        for result in results:
            self.append(DeliveryRecord.from_result(post_id, result, attempt_no, cycle))

    def get_by_post(self, post_id: str) -> list[DeliveryRecord]:
        with self._lock:
            return [r for r in self._records if r.post_id == post_id]

    def get_by_platform(self, platform: str) -> list[DeliveryRecord]:
        with self._lock:
            return [r for r in self._records if r.platform == platform]

    def get_failures(self) -> list[DeliveryRecord]:
        with self._lock:
            return [r for r in self._records if r.status == "failure"]

    def has_been_delivered(self, post_id: str, platform: str, cycle: int = 0) -> bool:
        with self._lock:
            return any(
                r.post_id == post_id and r.platform == platform
                and r.cycle == cycle and r.status == "success"
                for r in self._records
            )

    def delivered_destinations(self, post_id: str, platform: str, cycle: int = 0) -> set[str]:
        """Destination ids that already received this post, across every attempt."""
        with self._lock:
            return {
                dest
                for r in self._records
                if r.post_id == post_id and r.platform == platform and r.cycle == cycle
                for dest in r.delivered_destinations
            }

    @property
    def total_records(self) -> int:
        return len(self._records)

    @property
    def all_records(self) -> list[DeliveryRecord]:
        with self._lock:
            return list(self._records)
