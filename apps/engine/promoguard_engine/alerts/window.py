"""Per-key rolling windows of emitted alerts and qualifying hits.

This is the only shared mutable state in the pipeline. It is injected into
the dispatcher rather than held at module level.
"""

import logging
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Optional

import redis

from promoguard_engine.schemas.alerts import AlertEvent, AlertType
from promoguard_engine.utils.clock import epoch_seconds
from promoguard_engine.utils.hashing import shard_for

logger = logging.getLogger(__name__)


class AlertWindowStore(ABC):
    @abstractmethod
    def append(self, key: str, event: AlertEvent) -> None:
        """Record an emitted alert for ``key``."""

    @abstractmethod
    def get(self, key: str, window: timedelta, now: datetime) -> list[AlertEvent]:
        """Alerts for ``key`` with ``now - window < timestamp <= now``, oldest first."""

    @abstractmethod
    def record_hit(self, key: str, alert_type: AlertType, at: datetime) -> None:
        """Record one qualifying analysis of ``alert_type`` for ``key``."""

    @abstractmethod
    def count_hits(self, key: str, alert_type: AlertType, since: datetime, until: datetime) -> int:
        """Hits with ``since < at <= until``."""

    @abstractmethod
    def prune(self, before: datetime) -> int:
        """Drop alerts and hits older than ``before``. Returns the number removed."""


class InMemoryAlertWindowStore(AlertWindowStore):
    """Process-local store with one lock per shard of keys."""

    def __init__(self, shards: int = 16):
        self._shards = max(1, shards)
        self._locks = [threading.Lock() for _ in range(self._shards)]
        self._alerts: dict[str, list[AlertEvent]] = {}
        self._hits: dict[tuple[str, AlertType], list[datetime]] = {}

    def _lock_for(self, key: str) -> threading.Lock:
        return self._locks[shard_for(key, self._shards)]

    def append(self, key: str, event: AlertEvent) -> None:
        with self._lock_for(key):
            events = self._alerts.setdefault(key, [])
            events.append(event)
            events.sort(key=lambda e: e.timestamp)

    def get(self, key: str, window: timedelta, now: datetime) -> list[AlertEvent]:
        since = now - window
        with self._lock_for(key):
            return [e for e in self._alerts.get(key, []) if since < e.timestamp <= now]

    def record_hit(self, key: str, alert_type: AlertType, at: datetime) -> None:
        with self._lock_for(key):
            self._hits.setdefault((key, alert_type), []).append(at)

    def count_hits(self, key: str, alert_type: AlertType, since: datetime, until: datetime) -> int:
        with self._lock_for(key):
            return sum(1 for at in self._hits.get((key, alert_type), []) if since < at <= until)

    def prune(self, before: datetime) -> int:
        removed = 0
        for key in list(self._alerts):
            with self._lock_for(key):
                events = self._alerts.get(key, [])
                kept = [e for e in events if e.timestamp >= before]
                removed += len(events) - len(kept)
                if kept:
                    self._alerts[key] = kept
                else:
                    self._alerts.pop(key, None)
        for hit_key in list(self._hits):
            with self._lock_for(hit_key[0]):
                hits = self._hits.get(hit_key, [])
                kept_hits = [at for at in hits if at >= before]
                removed += len(hits) - len(kept_hits)
                if kept_hits:
                    self._hits[hit_key] = kept_hits
                else:
                    self._hits.pop(hit_key, None)
        return removed


class RedisAlertWindowStore(AlertWindowStore):
    """Sorted sets scored by epoch seconds, shared across worker processes."""

    def __init__(self, client: redis.Redis, retention: timedelta, prefix: str = "promoguard"):
        self.client = client
        self.retention_seconds = int(retention.total_seconds())
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str, retention: timedelta, socket_timeout: float = 5.0) -> "RedisAlertWindowStore":
        client = redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        return cls(client, retention)

    def _alerts_key(self, key: str) -> str:
        return f"{self.prefix}:alerts:{key}"

    def _hits_key(self, key: str, alert_type: AlertType) -> str:
        return f"{self.prefix}:hits:{key}:{alert_type.value}"

    def append(self, key: str, event: AlertEvent) -> None:
        name = self._alerts_key(key)
        pipe = self.client.pipeline()
        pipe.zadd(name, {event.model_dump_json(): epoch_seconds(event.timestamp)})
        pipe.expire(name, self.retention_seconds)
        pipe.execute()

    def get(self, key: str, window: timedelta, now: datetime) -> list[AlertEvent]:
        since = epoch_seconds(now - window)
        members = self.client.zrangebyscore(self._alerts_key(key), f"({since}", epoch_seconds(now))
        return [AlertEvent.model_validate_json(m) for m in members]

    def record_hit(self, key: str, alert_type: AlertType, at: datetime) -> None:
        name = self._hits_key(key, alert_type)
        pipe = self.client.pipeline()
        pipe.zadd(name, {uuid.uuid4().hex: epoch_seconds(at)})
        pipe.expire(name, self.retention_seconds)
        pipe.execute()

    def count_hits(self, key: str, alert_type: AlertType, since: datetime, until: datetime) -> int:
        return int(
            self.client.zcount(
                self._hits_key(key, alert_type),
                f"({epoch_seconds(since)}",
                epoch_seconds(until),
            )
        )

    def prune(self, before: datetime) -> int:
        cutoff = f"({epoch_seconds(before)}"
        removed = 0
        for pattern in (f"{self.prefix}:alerts:*", f"{self.prefix}:hits:*"):
            for name in self.client.scan_iter(match=pattern):
                removed += int(self.client.zremrangebyscore(name, "-inf", cutoff))
        logger.info("Pruned alert windows", extra={"removed": removed})
        return removed


def build_window_store(
    backend: str,
    redis_url: Optional[str],
    retention: timedelta,
    socket_timeout: float = 5.0,
) -> AlertWindowStore:
    if backend == "redis":
        return RedisAlertWindowStore.from_url(redis_url, retention, socket_timeout)
    return InMemoryAlertWindowStore()
