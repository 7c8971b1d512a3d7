"""Physical storage for the append-only audit ledger."""

import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from promoguard_engine.errors import LedgerUnavailableError, LedgerWriteError
from promoguard_engine.models import LedgerEntryRecord
from promoguard_engine.schemas.ledger import (
    AlertLifecycleRecord,
    AlertRecord,
    AnalysisRecord,
    DeliveryRecord,
    LedgerEntry,
)

logger = logging.getLogger(__name__)


def reference_id(entry: LedgerEntry) -> Optional[str]:
    """Id an entry is looked up by: the alert for alert entries, the analysis otherwise."""
    payload = entry.payload
    if isinstance(payload, AlertRecord):
        return payload.alert.alert_id
    if isinstance(payload, DeliveryRecord):
        return payload.outcome.alert_id
    if isinstance(payload, AlertLifecycleRecord):
        return payload.alert_id
    if isinstance(payload, AnalysisRecord):
        return payload.analysis.analysis_id
    return getattr(payload, "analysis_id", None)


def _in_range(entry: LedgerEntry, start: Optional[datetime], end: Optional[datetime]) -> bool:
    if start is not None and entry.recorded_at < start:
        return False
    if end is not None and entry.recorded_at >= end:
        return False
    return True


class LedgerStore(ABC):
    """Append, range-scan and lookup. Entries are never updated or deleted."""

    @abstractmethod
    def append(self, entry: LedgerEntry) -> LedgerEntry:
        """Persist ``entry`` and return it with its sequence number.

        Appending an entry id that already exists is a no-op.

        Raises:
            LedgerWriteError: the entry could not be persisted.
        """

    @abstractmethod
    def scan(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        kinds: Optional[Iterable[str]] = None,
    ) -> list[LedgerEntry]:
        """Entries with ``start <= recorded_at < end`` in (recorded_at, sequence) order.

        Raises:
            LedgerUnavailableError: the store cannot be read.
        """

    @abstractmethod
    def history(
        self,
        promoter_id: str,
        campaign_id: str,
        kinds: Optional[Iterable[str]] = None,
        limit: Optional[int] = None,
    ) -> list[LedgerEntry]:
        """The most recent ``limit`` entries for a key, oldest first."""

    @abstractmethod
    def find(self, ref_id: str, kind: str) -> list[LedgerEntry]:
        """Entries of ``kind`` referring to an alert or analysis id."""


class InMemoryLedgerStore(LedgerStore):
    def __init__(self):
        self._entries: list[LedgerEntry] = []
        self._ids: set[str] = set()
        self._sequence = 0
        self._lock = threading.Lock()

    def append(self, entry: LedgerEntry) -> LedgerEntry:
        with self._lock:
            if entry.entry_id in self._ids:
                return next(e for e in self._entries if e.entry_id == entry.entry_id)
            self._sequence += 1
            stored = entry.model_copy(update={"sequence": self._sequence})
            self._entries.append(stored)
            self._ids.add(entry.entry_id)
            return stored

    def _snapshot(self) -> list[LedgerEntry]:
        with self._lock:
            return list(self._entries)

    def scan(self, start=None, end=None, kinds=None) -> list[LedgerEntry]:
        wanted = set(kinds) if kinds is not None else None
        selected = [
            e for e in self._snapshot()
            if _in_range(e, start, end) and (wanted is None or e.kind in wanted)
        ]
        return sorted(selected, key=lambda e: (e.recorded_at, e.sequence))

    def history(self, promoter_id, campaign_id, kinds=None, limit=None) -> list[LedgerEntry]:
        wanted = set(kinds) if kinds is not None else None
        selected = sorted(
            (
                e for e in self._snapshot()
                if e.promoter_id == promoter_id
                and e.campaign_id == campaign_id
                and (wanted is None or e.kind in wanted)
            ),
            key=lambda e: (e.recorded_at, e.sequence),
        )
        if limit is not None:
            selected = selected[-limit:] if limit > 0 else []
        return selected

    def find(self, ref_id: str, kind: str) -> list[LedgerEntry]:
        return [e for e in self._snapshot() if e.kind == kind and reference_id(e) == ref_id]


class SqlLedgerStore(LedgerStore):
    """SQLAlchemy-backed ledger. The autoincrement id is the sequence."""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    @staticmethod
    def _to_entry(record: LedgerEntryRecord) -> LedgerEntry:
        return LedgerEntry(
            entry_id=record.entry_id,
            sequence=record.id,
            recorded_at=record.recorded_at,
            promoter_id=record.promoter_id,
            campaign_id=record.campaign_id,
            payload=record.payload_json,
        )

    def append(self, entry: LedgerEntry) -> LedgerEntry:
        db = self.session_factory()
        try:
            existing = db.query(LedgerEntryRecord).filter(LedgerEntryRecord.entry_id == entry.entry_id).first()
            if existing:
                return self._to_entry(existing)
            record = LedgerEntryRecord(
                entry_id=entry.entry_id,
                entry_type=entry.kind,
                reference_id=reference_id(entry),
                promoter_id=entry.promoter_id,
                campaign_id=entry.campaign_id,
                payload_json=entry.payload.model_dump(mode="json"),
                recorded_at=entry.recorded_at,
            )
            db.add(record)
            db.commit()
            return entry.model_copy(update={"sequence": record.id})
        except SQLAlchemyError as e:
            db.rollback()
            raise LedgerWriteError(f"Failed to append ledger entry {entry.entry_id}: {e}") from e
        finally:
            db.close()

    def _query(self, build) -> list[LedgerEntry]:
        db = self.session_factory()
        try:
            return [self._to_entry(r) for r in build(db).all()]
        except SQLAlchemyError as e:
            raise LedgerUnavailableError(f"Ledger read failed: {e}") from e
        finally:
            db.close()

    def scan(self, start=None, end=None, kinds=None) -> list[LedgerEntry]:
        def build(db: Session):
            query = db.query(LedgerEntryRecord)
            if start is not None:
                query = query.filter(LedgerEntryRecord.recorded_at >= start)
            if end is not None:
                query = query.filter(LedgerEntryRecord.recorded_at < end)
            if kinds is not None:
                query = query.filter(LedgerEntryRecord.entry_type.in_(list(kinds)))
            return query.order_by(LedgerEntryRecord.recorded_at, LedgerEntryRecord.id)

        return self._query(build)

    def history(self, promoter_id, campaign_id, kinds=None, limit=None) -> list[LedgerEntry]:
        def build(db: Session):
            query = db.query(LedgerEntryRecord).filter(
                LedgerEntryRecord.promoter_id == promoter_id,
                LedgerEntryRecord.campaign_id == campaign_id,
            )
            if kinds is not None:
                query = query.filter(LedgerEntryRecord.entry_type.in_(list(kinds)))
            query = query.order_by(LedgerEntryRecord.recorded_at.desc(), LedgerEntryRecord.id.desc())
            if limit is not None:
                query = query.limit(limit)
            return query

        return list(reversed(self._query(build)))

    def find(self, ref_id: str, kind: str) -> list[LedgerEntry]:
        return self._query(
            lambda db: db.query(LedgerEntryRecord)
            .filter(LedgerEntryRecord.reference_id == ref_id, LedgerEntryRecord.entry_type == kind)
            .order_by(LedgerEntryRecord.recorded_at, LedgerEntryRecord.id)
        )
