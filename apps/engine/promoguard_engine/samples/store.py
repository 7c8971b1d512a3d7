"""Time-ordered engagement sample storage per (promoter, campaign) key."""

import bisect
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from promoguard_engine.errors import SampleStoreError
from promoguard_engine.models import EngagementSampleRecord
from promoguard_engine.schemas.samples import EngagementSample, Platform
from promoguard_engine.utils.hashing import pair_key, shard_for

logger = logging.getLogger(__name__)


def _order(sample: EngagementSample) -> tuple:
    return (sample.observed_at, sample.post_id)


class SampleStore(ABC):
    """Append, range-scan and evict engagement samples."""

    @abstractmethod
    def add_many(self, samples: Iterable[EngagementSample]) -> int:
        """Store samples, ignoring ones already present. Returns the number added.

        Raises:
            SampleStoreError: the backing store failed.
        """

    @abstractmethod
    def window(
        self,
        promoter_id: str,
        campaign_id: str,
        lookback_seconds: int,
        anchor: Optional[datetime] = None,
    ) -> list[EngagementSample]:
        """Ordered samples observed at most ``lookback_seconds`` before ``anchor``.

        ``anchor`` defaults to the latest sample stored for the key.

        Raises:
            SampleStoreError: the backing store failed.
        """

    @abstractmethod
    def evict(self, before: datetime) -> int:
        """Drop samples observed before ``before``. Returns the number removed."""


class InMemorySampleStore(SampleStore):
    """Process-local store. Keys are spread over lock shards."""

    def __init__(self, shards: int = 16):
        self._shards = max(1, shards)
        self._locks = [threading.Lock() for _ in range(self._shards)]
        self._samples: dict[str, list[EngagementSample]] = {}
        self._identities: dict[str, set] = {}

    def _lock_for(self, key: str) -> threading.Lock:
        return self._locks[shard_for(key, self._shards)]

    def add_many(self, samples: Iterable[EngagementSample]) -> int:
        added = 0
        for sample in samples:
            key = pair_key(sample.promoter_id, sample.campaign_id)
            with self._lock_for(key):
                seen = self._identities.setdefault(key, set())
                if sample.identity in seen:
                    continue
                seen.add(sample.identity)
                bisect.insort(self._samples.setdefault(key, []), sample, key=_order)
                added += 1
        return added

    def window(
        self,
        promoter_id: str,
        campaign_id: str,
        lookback_seconds: int,
        anchor: Optional[datetime] = None,
    ) -> list[EngagementSample]:
        key = pair_key(promoter_id, campaign_id)
        with self._lock_for(key):
            samples = self._samples.get(key, [])
            if not samples:
                return []
            cutoff = (anchor or samples[-1].observed_at) - timedelta(seconds=lookback_seconds)
            start = bisect.bisect_left(samples, cutoff, key=lambda s: s.observed_at)
            return list(samples[start:])

    def evict(self, before: datetime) -> int:
        removed = 0
        for key in list(self._samples):
            with self._lock_for(key):
                samples = self._samples.get(key, [])
                cut = bisect.bisect_left(samples, before, key=lambda s: s.observed_at)
                if not cut:
                    continue
                for sample in samples[:cut]:
                    self._identities[key].discard(sample.identity)
                del samples[:cut]
                removed += cut
                if not samples:
                    del self._samples[key]
                    del self._identities[key]
        return removed


class SqlSampleStore(SampleStore):
    """SQLAlchemy-backed store shared between worker processes."""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    @staticmethod
    def _to_record(sample: EngagementSample) -> EngagementSampleRecord:
        return EngagementSampleRecord(
            platform=sample.platform.value,
            promoter_id=sample.promoter_id,
            campaign_id=sample.campaign_id,
            post_id=sample.post_id,
            view_count=sample.view_count,
            like_count=sample.like_count,
            comment_count=sample.comment_count,
            share_count=sample.share_count,
            observed_at=sample.observed_at,
        )

    @staticmethod
    def _to_sample(record: EngagementSampleRecord) -> EngagementSample:
        return EngagementSample(
            platform=Platform(record.platform),
            promoter_id=record.promoter_id,
            campaign_id=record.campaign_id,
            post_id=record.post_id,
            view_count=record.view_count,
            like_count=record.like_count,
            comment_count=record.comment_count,
            share_count=record.share_count,
            observed_at=record.observed_at,
        )

    def _existing_identities(self, db: Session, promoter_id: str, campaign_id: str, observed: list[datetime]) -> set:
        rows = (
            db.query(EngagementSampleRecord.post_id, EngagementSampleRecord.observed_at)
            .filter(
                EngagementSampleRecord.promoter_id == promoter_id,
                EngagementSampleRecord.campaign_id == campaign_id,
                EngagementSampleRecord.observed_at >= min(observed),
                EngagementSampleRecord.observed_at <= max(observed),
            )
            .all()
        )
        return {(post_id, observed_at) for post_id, observed_at in rows}

    def add_many(self, samples: Iterable[EngagementSample]) -> int:
        by_key: dict[tuple[str, str], dict] = {}
        for sample in samples:
            by_key.setdefault((sample.promoter_id, sample.campaign_id), {}).setdefault(sample.identity, sample)

        added = 0
        db = self.session_factory()
        try:
            for (promoter_id, campaign_id), batch in by_key.items():
                observed = [identity[1] for identity in batch]
                existing = self._existing_identities(db, promoter_id, campaign_id, observed)
                fresh = [s for identity, s in batch.items() if identity not in existing]
                if not fresh:
                    continue
                db.add_all([self._to_record(s) for s in fresh])
                try:
                    db.commit()
                    added += len(fresh)
                except IntegrityError:
                    # A concurrent delivery won the race; fall back to row-by-row inserts.
                    db.rollback()
                    added += self._add_one_by_one(db, fresh)
        except SQLAlchemyError as e:
            db.rollback()
            raise SampleStoreError(f"Failed to store samples: {e}") from e
        finally:
            db.close()
        return added

    def _add_one_by_one(self, db: Session, samples: list[EngagementSample]) -> int:
        added = 0
        for sample in samples:
            db.add(self._to_record(sample))
            try:
                db.commit()
                added += 1
            except IntegrityError:
                db.rollback()
        return added

    def window(
        self,
        promoter_id: str,
        campaign_id: str,
        lookback_seconds: int,
        anchor: Optional[datetime] = None,
    ) -> list[EngagementSample]:
        db = self.session_factory()
        try:
            if anchor is None:
                anchor = (
                    db.query(func.max(EngagementSampleRecord.observed_at))
                    .filter(
                        EngagementSampleRecord.promoter_id == promoter_id,
                        EngagementSampleRecord.campaign_id == campaign_id,
                    )
                    .scalar()
                )
            if anchor is None:
                return []
            cutoff = anchor - timedelta(seconds=lookback_seconds)
            records = (
                db.query(EngagementSampleRecord)
                .filter(
                    EngagementSampleRecord.promoter_id == promoter_id,
                    EngagementSampleRecord.campaign_id == campaign_id,
                    EngagementSampleRecord.observed_at >= cutoff,
                )
                .order_by(EngagementSampleRecord.observed_at, EngagementSampleRecord.post_id)
                .all()
            )
            return [self._to_sample(r) for r in records]
        except SQLAlchemyError as e:
            raise SampleStoreError(f"Failed to read samples for {promoter_id}:{campaign_id}: {e}") from e
        finally:
            db.close()

    def evict(self, before: datetime) -> int:
        db = self.session_factory()
        try:
            removed = (
                db.query(EngagementSampleRecord)
                .filter(EngagementSampleRecord.observed_at < before)
                .delete(synchronize_session=False)
            )
            db.commit()
            return removed
        except SQLAlchemyError:
            db.rollback()
            logger.error("Sample eviction failed", exc_info=True)
            raise
        finally:
            db.close()
