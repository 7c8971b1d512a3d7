"""Audit ledger service: retried, never-blocking-forever appends and reads."""

import logging
import threading
import time
import uuid
from collections import deque
from datetime import datetime
from typing import Callable, Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field

from promoguard_engine.errors import LedgerWriteError, SampleValidationError
from promoguard_engine.ledger.store import LedgerStore
from promoguard_engine.schemas.alerts import AlertEvent, DeliveryOutcome
from promoguard_engine.schemas.analysis import ActionResult, AnalysisLog, BotAnalysis
from promoguard_engine.schemas.ledger import (
    AlertLifecycleRecord,
    AlertRecord,
    AnalysisRecord,
    DeliveryRecord,
    LedgerEntry,
    SystemErrorRecord,
    ValidationFailureRecord,
)
from promoguard_engine.utils import metrics
from promoguard_engine.utils.clock import Clock, utcnow

logger = logging.getLogger(__name__)


class LedgerPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(3, ge=0)
    backoff_seconds: float = Field(0.2, ge=0)
    pending_limit: int = Field(10_000, ge=1)
    history_limit: int = Field(100, ge=1)


class LedgerService:
    """Writes ledger entries with bounded retries.

    A write that exhausts its retries puts the service in degraded mode: the
    entry stays in a bounded pending buffer, a warning is logged, and the
    caller carries on. Pending entries are written, in order, ahead of the
    next append.
    """

    def __init__(
        self,
        store: LedgerStore,
        policy: Optional[LedgerPolicy] = None,
        clock: Clock = utcnow,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.policy = policy or LedgerPolicy()
        self.clock = clock
        self.sleep = sleep
        self._pending: deque[LedgerEntry] = deque()
        self._lock = threading.Lock()
        self._degraded = False

    @property
    def degraded(self) -> bool:
        return self._degraded

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def _write(self, entry: LedgerEntry) -> bool:
        attempts = self.policy.max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                self.store.append(entry)
                return True
            except LedgerWriteError as e:
                logger.warning(
                    f"Ledger write attempt {attempt}/{attempts} failed: {e}",
                    extra={"entry_id": entry.entry_id, "kind": entry.kind},
                )
                if attempt < attempts:
                    self.sleep(self.policy.backoff_seconds * 2 ** (attempt - 1))
        return False

    def _drain_locked(self) -> bool:
        while self._pending:
            entry = self._pending[0]
            if not self._write(entry):
                metrics.ledger_write_failures.inc()
                if not self._degraded:
                    logger.warning(
                        "Ledger persistence degraded, buffering entries",
                        extra={"pending": len(self._pending)},
                    )
                self._degraded = True
                return False
            self._pending.popleft()
        if self._degraded:
            logger.info("Ledger persistence recovered")
            self._degraded = False
        return True

    def append(
        self,
        promoter_id: str,
        campaign_id: str,
        payload,
        recorded_at: Optional[datetime] = None,
    ) -> LedgerEntry:
        """Append one entry. Never raises on persistence failure."""
        entry = LedgerEntry(
            entry_id=uuid.uuid4().hex,
            recorded_at=recorded_at or self.clock(),
            promoter_id=promoter_id,
            campaign_id=campaign_id,
            payload=payload,
        )
        with self._lock:
            if len(self._pending) >= self.policy.pending_limit:
                dropped = self._pending.popleft()
                logger.error(
                    "Ledger pending buffer full, dropping oldest entry",
                    extra={"entry_id": dropped.entry_id, "kind": dropped.kind},
                )
            self._pending.append(entry)
            self._drain_locked()
        return entry

    def flush_pending(self) -> bool:
        """Retry buffered entries. Returns True when nothing is left pending."""
        with self._lock:
            return self._drain_locked()

    # Record helpers

    def record_analysis(self, analysis: BotAnalysis, action_result: ActionResult, processing_ms: float = 0.0) -> LedgerEntry:
        return self.append(
            analysis.promoter_id,
            analysis.campaign_id,
            AnalysisRecord(analysis=analysis, action_result=action_result, processing_ms=processing_ms),
            recorded_at=analysis.evaluated_at,
        )

    def record_alert(self, event: AlertEvent) -> LedgerEntry:
        return self.append(event.promoter_id, event.campaign_id, AlertRecord(alert=event), recorded_at=event.timestamp)

    def record_delivery(self, outcome: DeliveryOutcome) -> LedgerEntry:
        return self.append(
            outcome.promoter_id,
            outcome.campaign_id,
            DeliveryRecord(outcome=outcome),
            recorded_at=outcome.completed_at,
        )

    def record_validation_failure(self, promoter_id: str, campaign_id: str, error: SampleValidationError) -> LedgerEntry:
        return self.append(
            promoter_id,
            campaign_id,
            ValidationFailureRecord(message=str(error), errors=error.errors, raw=error.raw),
        )

    def record_system_error(
        self,
        promoter_id: str,
        campaign_id: str,
        operation: str,
        message: str,
        analysis_id: Optional[str] = None,
    ) -> LedgerEntry:
        return self.append(
            promoter_id,
            campaign_id,
            SystemErrorRecord(operation=operation, message=message, analysis_id=analysis_id),
        )

    def record_lifecycle(self, alert: AlertEvent, state: str, actor: str) -> LedgerEntry:
        return self.append(
            alert.promoter_id,
            alert.campaign_id,
            AlertLifecycleRecord(alert_id=alert.alert_id, state=state, actor=actor),
        )

    # Reads

    def scan(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        kinds: Optional[Iterable[str]] = None,
    ) -> list[LedgerEntry]:
        """Committed entries in range. Raises ``LedgerUnavailableError`` when unreadable."""
        return self.store.scan(start, end, kinds)

    def history(self, promoter_id: str, campaign_id: str, limit: Optional[int] = None) -> list[AnalysisLog]:
        entries = self.store.history(
            promoter_id,
            campaign_id,
            kinds=["analysis"],
            limit=limit or self.policy.history_limit,
        )
        return [e.as_analysis_log() for e in entries]

    def find_alert(self, alert_id: str) -> Optional[AlertEvent]:
        entries = self.store.find(alert_id, "alert")
        if not entries:
            return None
        return entries[0].payload.alert

    def alert_states(self, alert_id: str) -> list[str]:
        return [e.payload.state for e in self.store.find(alert_id, "alert_lifecycle")]
