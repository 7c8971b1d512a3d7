"""Tests for ledger storage and the retrying ledger service."""

from datetime import timedelta
from unittest.mock import MagicMock, Mock, call

import pytest
from sqlalchemy.exc import OperationalError

from helpers import START, make_analysis
from promoguard_engine.errors import LedgerUnavailableError, LedgerWriteError
from promoguard_engine.ledger.service import LedgerPolicy, LedgerService
from promoguard_engine.ledger.store import InMemoryLedgerStore, SqlLedgerStore
from promoguard_engine.policy.executor import LoggingActionExecutor, execute_action
from promoguard_engine.schemas.alerts import AlertEvent, AlertType, Severity
from promoguard_engine.schemas.analysis import ActionTier


class FlakyStore(InMemoryLedgerStore):
    """Fails the first ``failures`` appends."""

    def __init__(self, failures: int):
        super().__init__()
        self.failures = failures
        self.calls = 0

    def append(self, entry):
        self.calls += 1
        if self.failures > 0:
            self.failures -= 1
            raise LedgerWriteError("database is locked")
        return super().append(entry)


def record(service: LedgerService, minute: int = 0, action=ActionTier.WARNING, score=60, **kwargs):
    analysis = make_analysis(action, score, at=START + timedelta(minutes=minute), **kwargs)
    result = execute_action(analysis, LoggingActionExecutor(), clock=lambda: analysis.evaluated_at)
    return service.record_analysis(analysis, result, processing_ms=12.5)


def make_alert(alert_id="alert-1", minute=0) -> AlertEvent:
    return AlertEvent(
        alert_id=alert_id,
        timestamp=START + timedelta(minutes=minute),
        type=AlertType.HIGH_RISK,
        severity=Severity.CRITICAL,
        promoter_id="promoter-1",
        campaign_id="campaign-1",
        bot_score=95,
        action_taken=ActionTier.BAN,
    )


@pytest.fixture
def sql_ledger(session_factory, clock):
    return LedgerService(SqlLedgerStore(session_factory), clock=clock, sleep=Mock())


class TestSqlLedgerStore:
    def test_append_assigns_sequence(self, sql_ledger):
        first = record(sql_ledger, 0)
        second = record(sql_ledger, 1)

        stored = sql_ledger.scan()
        assert [e.entry_id for e in stored] == [first.entry_id, second.entry_id]
        assert stored[0].sequence < stored[1].sequence

    def test_duplicate_entry_id_is_noop(self, session_factory, sql_ledger):
        entry = record(sql_ledger, 0)
        store = SqlLedgerStore(session_factory)
        store.append(entry)
        assert len(store.scan()) == 1

    def test_scan_range_is_half_open_and_filters_kinds(self, sql_ledger):
        record(sql_ledger, 0)
        record(sql_ledger, 30)
        record(sql_ledger, 60)
        sql_ledger.record_alert(make_alert(minute=30))

        entries = sql_ledger.scan(START, START + timedelta(minutes=60))
        assert len(entries) == 3
        assert [e.kind for e in sql_ledger.scan(kinds=["alert"])] == ["alert"]

    def test_history_returns_most_recent_oldest_first(self, sql_ledger):
        for minute in range(5):
            record(sql_ledger, minute)
        record(sql_ledger, 10, promoter_id="promoter-2")

        history = sql_ledger.history("promoter-1", "campaign-1", limit=3)
        assert [h.recorded_at for h in history] == [START + timedelta(minutes=m) for m in (2, 3, 4)]

    def test_analysis_round_trip(self, sql_ledger):
        entry = record(sql_ledger, 0, action=ActionTier.BAN, score=95)
        log = sql_ledger.history("promoter-1", "campaign-1")[0]

        assert log.analysis == entry.payload.analysis
        assert log.action_result.executed is True
        assert log.processing_ms == 12.5

    def test_find_alert_and_lifecycle(self, sql_ledger):
        alert = make_alert("alert-42")
        sql_ledger.record_alert(alert)
        sql_ledger.record_lifecycle(alert, "acknowledged", "ops")

        assert sql_ledger.find_alert("alert-42") == alert
        assert sql_ledger.find_alert("missing") is None
        assert sql_ledger.alert_states("alert-42") == ["acknowledged"]

    def test_read_failure_raises_unavailable(self):
        db = MagicMock()
        db.query.side_effect = OperationalError("SELECT", {}, Exception("no such table"))
        store = SqlLedgerStore(lambda: db)

        with pytest.raises(LedgerUnavailableError):
            store.scan()
        db.close.assert_called_once()

    def test_write_failure_raises_write_error(self):
        db = MagicMock()
        db.query.return_value.filter.return_value.first.return_value = None
        db.commit.side_effect = OperationalError("INSERT", {}, Exception("disk full"))
        store = SqlLedgerStore(lambda: db)

        entry = record(LedgerService(InMemoryLedgerStore()), 0)
        with pytest.raises(LedgerWriteError):
            store.append(entry)
        db.rollback.assert_called_once()


class TestLedgerService:
    def test_retries_with_exponential_backoff(self, clock):
        sleep = Mock()
        store = FlakyStore(failures=2)
        service = LedgerService(store, clock=clock, sleep=sleep)

        record(service)

        assert store.calls == 3
        assert sleep.call_args_list == [call(0.2), call(0.4)]
        assert not service.degraded
        assert len(service.scan()) == 1

    def test_exhausted_retries_degrade_without_raising(self, clock):
        store = FlakyStore(failures=4)
        service = LedgerService(store, clock=clock, sleep=Mock())

        entry = record(service)

        assert service.degraded
        assert service.pending_count == 1
        assert service.scan() == []
        assert entry.kind == "analysis"

    def test_pending_entries_flush_in_order(self, clock):
        store = FlakyStore(failures=8)
        service = LedgerService(store, clock=clock, sleep=Mock())

        first = record(service, 0)
        second = record(service, 1)
        assert service.pending_count == 2

        third = record(service, 2)

        assert not service.degraded
        assert service.pending_count == 0
        assert [e.entry_id for e in service.scan()] == [first.entry_id, second.entry_id, third.entry_id]
        assert [e.sequence for e in service.scan()] == [1, 2, 3]

    def test_flush_pending(self, clock):
        store = FlakyStore(failures=4)
        service = LedgerService(store, clock=clock, sleep=Mock())
        record(service)

        assert service.flush_pending() is True
        assert service.pending_count == 0

    def test_pending_buffer_drops_oldest(self, clock):
        store = FlakyStore(failures=1000)
        service = LedgerService(
            store,
            policy=LedgerPolicy(max_retries=0, pending_limit=2),
            clock=clock,
            sleep=Mock(),
        )
        record(service, 0)
        second = record(service, 1)
        third = record(service, 2)

        store.failures = 0
        service.flush_pending()
        assert [e.entry_id for e in service.scan()] == [second.entry_id, third.entry_id]

    def test_record_timestamps(self, ledger, clock):
        analysis_entry = record(ledger, 5)
        assert analysis_entry.recorded_at == START + timedelta(minutes=5)

        clock.advance(minutes=30)
        entry = ledger.record_system_error("promoter-1", "campaign-1", "ban", "gateway down", analysis_id="a-1")
        assert entry.recorded_at == clock()
        assert entry.kind == "system_error"

    def test_history_uses_default_limit(self, clock):
        service = LedgerService(
            InMemoryLedgerStore(),
            policy=LedgerPolicy(history_limit=2),
            clock=clock,
            sleep=Mock(),
        )
        for minute in range(4):
            record(service, minute)
        assert len(service.history("promoter-1", "campaign-1")) == 2
        assert len(service.history("promoter-1", "campaign-1", limit=10)) == 4
