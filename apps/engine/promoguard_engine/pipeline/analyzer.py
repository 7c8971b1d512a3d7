"""Bot analyzer: the public entry point of the detection pipeline.

Scoring and action resolution run synchronously on the caller's thread.
Ledger writes and alert dispatch are handed to a keyed I/O executor so a
slow channel or database never delays the next analysis.
"""

import logging
import time
import uuid
from concurrent.futures import Future
from datetime import date, datetime, timedelta
from functools import lru_cache
from typing import Any, Iterable, Optional

import redis
from sqlalchemy.exc import SQLAlchemyError

from promoguard_engine.alerts.channels import (
    ChannelRegistry,
    DashboardChannel,
    NotificationChannel,
    RedisDashboardChannel,
    WebhookChannel,
)
from promoguard_engine.alerts.dispatcher import AlertDispatcher
from promoguard_engine.alerts.window import build_window_store
from promoguard_engine.errors import AlertNotFoundError, BanExecutionError, SampleStoreError
from promoguard_engine.ledger.service import LedgerService
from promoguard_engine.ledger.store import InMemoryLedgerStore, SqlLedgerStore
from promoguard_engine.pipeline.executor import KeyedExecutor
from promoguard_engine.policy.engine import ActionResolver
from promoguard_engine.policy.executor import ActionExecutor, LoggingActionExecutor, execute_action
from promoguard_engine.reports.rollups import ReportGenerator
from promoguard_engine.samples.store import InMemorySampleStore, SampleStore, SqlSampleStore
from promoguard_engine.samples.validation import prepare_batch, select_window
from promoguard_engine.schemas.alerts import AlertEvent
from promoguard_engine.schemas.analysis import ActionResult, ActionTier, AnalysisLog, BotAnalysis
from promoguard_engine.schemas.ledger import AnalysisRecord
from promoguard_engine.schemas.reports import (
    ActionCounts,
    DailyReport,
    DetectionStatistics,
    MonthlySummary,
    WeeklyReport,
)
from promoguard_engine.schemas.samples import EngagementSample
from promoguard_engine.scoring.engine import ScoreEngine
from promoguard_engine.settings import Settings, get_settings
from promoguard_engine.utils import metrics
from promoguard_engine.utils.clock import Clock, utcnow
from promoguard_engine.utils.hashing import pair_key

logger = logging.getLogger(__name__)

RECENT_ACTIVITY = timedelta(hours=24)


class BotAnalyzer:
    def __init__(
        self,
        ledger: LedgerService,
        dispatcher: AlertDispatcher,
        score_engine: Optional[ScoreEngine] = None,
        resolver: Optional[ActionResolver] = None,
        sample_store: Optional[SampleStore] = None,
        action_executor: Optional[ActionExecutor] = None,
        auto_execute: bool = True,
        io_executor: Optional[KeyedExecutor] = None,
        analysis_executor: Optional[KeyedExecutor] = None,
        clock: Clock = utcnow,
        sample_retention: timedelta = timedelta(hours=24),
        alert_retention: timedelta = timedelta(days=7),
    ):
        self.ledger = ledger
        self.dispatcher = dispatcher
        self.score_engine = score_engine or ScoreEngine()
        self.resolver = resolver or ActionResolver()
        self.sample_store = sample_store
        self.action_executor = action_executor
        self.auto_execute = auto_execute
        self.io_executor = io_executor
        self.analysis_executor = analysis_executor
        self.clock = clock
        self.sample_retention = sample_retention
        self.alert_retention = alert_retention
        self.reports = ReportGenerator(ledger)

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        channels: Iterable[NotificationChannel] = (),
        action_executor: Optional[ActionExecutor] = None,
        clock: Clock = utcnow,
    ) -> "BotAnalyzer":
        """Wire every component from configuration.

        ``channels`` adds host-provided senders (email, SMS) on top of the
        dashboard and the optional webhook.
        """
        settings = settings or get_settings()
        settings.validate_production_settings()

        session_factory = None
        if settings.ledger_backend == "sql" or settings.sample_store_backend == "sql":
            from promoguard_engine.db.session import get_session_factory, init_db

            init_db()
            session_factory = get_session_factory()

        ledger_store = SqlLedgerStore(session_factory) if settings.ledger_backend == "sql" else InMemoryLedgerStore()
        sample_store = (
            SqlSampleStore(session_factory) if settings.sample_store_backend == "sql" else InMemorySampleStore()
        )
        alert_retention = timedelta(hours=settings.alert_retention_hours)
        window_store = build_window_store(
            settings.alert_store_backend,
            settings.redis_url,
            alert_retention,
            settings.redis_socket_timeout_seconds,
        )

        registry = ChannelRegistry()
        if settings.alert_store_backend == "redis":
            client = redis.from_url(
                settings.redis_url,
                decode_responses=True,
                socket_timeout=settings.redis_socket_timeout_seconds,
                socket_connect_timeout=settings.redis_socket_timeout_seconds,
            )
            registry.register(RedisDashboardChannel(client, max_items=settings.dashboard_feed_size))
        else:
            registry.register(DashboardChannel(max_items=settings.dashboard_feed_size))
        if settings.webhook_url:
            registry.register(
                WebhookChannel(
                    settings.webhook_url,
                    secret=settings.webhook_secret,
                    timeout_seconds=settings.channel_timeout_seconds,
                )
            )
        for channel in channels:
            registry.register(channel)

        ledger = LedgerService(ledger_store, settings.ledger_policy(), clock=clock)
        dispatcher = AlertDispatcher(
            window_store,
            registry,
            ledger,
            policy=settings.alert_policy(),
            delivery=settings.delivery_policy(),
            clock=clock,
            max_workers=settings.io_workers,
        )
        return cls(
            ledger=ledger,
            dispatcher=dispatcher,
            score_engine=ScoreEngine(settings.scoring_config()),
            resolver=ActionResolver(settings.action_thresholds()),
            sample_store=sample_store,
            action_executor=action_executor or LoggingActionExecutor(),
            auto_execute=settings.auto_execute,
            io_executor=KeyedExecutor(settings.io_workers, name="ledger-io"),
            analysis_executor=KeyedExecutor(settings.analysis_shards, name="analysis"),
            clock=clock,
            sample_retention=timedelta(hours=settings.sample_retention_hours),
            alert_retention=alert_retention,
        )

    def _background(self, key: str, fn, *args) -> None:
        if self.io_executor is None:
            fn(*args)
        else:
            self.io_executor.submit(key, fn, *args)

    def analyze(self, promoter_id: str, campaign_id: str, samples: Iterable[Any]) -> tuple[BotAnalysis, ActionResult]:
        """Score a batch of samples for one key and act on the result.

        Malformed samples are rejected individually and recorded in the
        ledger. Calls for the same key must not overlap; use ``submit`` to
        have that guaranteed.

        Raises:
            BanExecutionError: the resolved action was a ban and it could
                not be executed.
        """
        started = time.perf_counter()
        key = pair_key(promoter_id, campaign_id)

        accepted, rejected = prepare_batch(promoter_id, campaign_id, samples)
        for error in rejected:
            metrics.samples_rejected.inc()
            self._background(key, self.ledger.record_validation_failure, promoter_id, campaign_id, error)

        window = self._load_window(key, promoter_id, campaign_id, accepted)
        card = self.score_engine.score(window)
        action = self.resolver.resolve(card.bot_score)
        analysis = BotAnalysis(
            analysis_id=uuid.uuid4().hex,
            promoter_id=promoter_id,
            campaign_id=campaign_id,
            evaluated_at=self.clock(),
            window_start=window[0].observed_at if window else None,
            window_end=window[-1].observed_at if window else None,
            samples_analyzed=card.samples_analyzed,
            platforms=sorted({s.platform for s in window}, key=lambda p: p.value),
            bot_score=card.bot_score,
            action=action,
            reason=card.reason,
            findings=card.findings,
            metrics=card.metrics,
        )
        action_result = execute_action(analysis, self.action_executor, self.auto_execute, self.clock)

        elapsed = time.perf_counter() - started
        metrics.analysis_duration.observe(elapsed)
        metrics.analyses_total.labels(action=action.value).inc()
        logger.info(
            "Analysis complete",
            extra={
                "analysis_id": analysis.analysis_id,
                "promoter_id": promoter_id,
                "campaign_id": campaign_id,
                "bot_score": analysis.bot_score,
                "action": action.value,
                "samples": card.samples_analyzed,
                "rejected": len(rejected),
            },
        )

        self._background(key, self.ledger.record_analysis, analysis, action_result, round(elapsed * 1000, 3))
        self._background(key, self.dispatcher.process, analysis)

        if action == ActionTier.BAN and action_result.error is not None:
            self._background(key, self._report_ban_failure, analysis, action_result)
            raise BanExecutionError(
                f"Ban execution failed for {key}: {action_result.error}",
                analysis=analysis,
                action_result=action_result,
            )
        return analysis, action_result

    def _load_window(self, key: str, promoter_id: str, campaign_id: str, accepted: list[EngagementSample]) -> list[EngagementSample]:
        """Store the batch and read back the samples to score.

        The lookback is measured from the batch's earliest sample, so every
        sample submitted in this call is scored. When the store fails the
        batch alone is scored and the outage goes to the ledger.
        """
        lookback = self.score_engine.config.analysis_window_seconds
        anchor = accepted[0].observed_at if accepted else None
        if self.sample_store is None:
            return select_window(accepted, lookback, anchor)
        try:
            self.sample_store.add_many(accepted)
            return self.sample_store.window(promoter_id, campaign_id, lookback, anchor)
        except (SampleStoreError, SQLAlchemyError) as e:
            metrics.sample_store_failures.inc()
            logger.warning(
                "Sample store unavailable, scoring the submitted batch only",
                extra={"promoter_id": promoter_id, "campaign_id": campaign_id, "error": str(e)},
            )
            self._background(
                key, self.ledger.record_system_error, promoter_id, campaign_id, "sample_store", str(e)
            )
            return select_window(accepted, lookback, anchor)

    def _report_ban_failure(self, analysis: BotAnalysis, action_result: ActionResult) -> None:
        message = f"Ban execution failed: {action_result.error}"
        self.ledger.record_system_error(
            analysis.promoter_id,
            analysis.campaign_id,
            operation="execute_ban",
            message=message,
            analysis_id=analysis.analysis_id,
        )
        self.dispatcher.dispatch(self.dispatcher.system_alert(analysis, message))

    def submit(self, promoter_id: str, campaign_id: str, samples: Iterable[Any]) -> Future:
        """Queue an analysis behind earlier ones for the same key."""
        if self.analysis_executor is None:
            self.analysis_executor = KeyedExecutor(name="analysis")
        return self.analysis_executor.submit(
            pair_key(promoter_id, campaign_id), self.analyze, promoter_id, campaign_id, list(samples)
        )

    def get_history(self, promoter_id: str, campaign_id: str, limit: Optional[int] = None) -> list[AnalysisLog]:
        """Past analyses for a key, oldest first."""
        return self.ledger.history(promoter_id, campaign_id, limit)

    def generate_daily_summary(self, day: date) -> DailyReport:
        return self.reports.generate_daily_summary(day)

    def generate_weekly_summary(self, week_start: date) -> WeeklyReport:
        return self.reports.generate_weekly_summary(week_start)

    def generate_monthly_summary(self, month: int, year: int) -> MonthlySummary:
        return self.reports.generate_monthly_summary(month, year)

    # Alert lifecycle

    def _transition(self, alert_id: str, state: str, actor: str) -> AlertEvent:
        alert = self.ledger.find_alert(alert_id)
        if alert is None:
            raise AlertNotFoundError(f"Unknown alert {alert_id}")
        self.ledger.record_lifecycle(alert, state, actor)
        logger.info(f"Alert {state}", extra={"alert_id": alert_id, "actor": actor})
        return alert

    def acknowledge_alert(self, alert_id: str, actor: str = "system") -> AlertEvent:
        return self._transition(alert_id, "acknowledged", actor)

    def resolve_alert(self, alert_id: str, actor: str = "system") -> AlertEvent:
        return self._transition(alert_id, "resolved", actor)

    def open_alerts(self, since: Optional[datetime] = None) -> list[AlertEvent]:
        """Alerts raised since ``since`` that have not been resolved."""
        entries = self.ledger.scan(since, None, kinds=["alert", "alert_lifecycle"])
        resolved = {e.payload.alert_id for e in entries if e.kind == "alert_lifecycle" and e.payload.state == "resolved"}
        return [e.payload.alert for e in entries if e.kind == "alert" and e.payload.alert.alert_id not in resolved]

    def get_statistics(self) -> DetectionStatistics:
        entries = self.ledger.scan(kinds=["analysis"])
        analyses = [e.payload.analysis for e in entries if isinstance(e.payload, AnalysisRecord)]
        recent_cutoff = self.clock() - RECENT_ACTIVITY
        recent = [a for a in analyses if a.evaluated_at >= recent_cutoff]
        counts = {tier.value: sum(1 for a in analyses if a.action == tier) for tier in ActionTier}
        return DetectionStatistics(
            total_analyses=len(analyses),
            actions=ActionCounts(**counts),
            average_bot_score=round(sum(a.bot_score for a in analyses) / len(analyses), 2) if analyses else 0.0,
            recent_analyses=len(recent),
            recent_detections=sum(1 for a in recent if a.action != ActionTier.NONE),
            open_alerts=len(self.open_alerts()),
        )

    # Maintenance

    def evict_expired(self) -> int:
        if self.sample_store is None:
            return 0
        removed = self.sample_store.evict(self.clock() - self.sample_retention)
        logger.info("Evicted expired samples", extra={"removed": removed})
        return removed

    def prune_alert_windows(self) -> int:
        return self.dispatcher.window_store.prune(self.clock() - self.alert_retention)

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Wait for queued analyses, ledger writes and dispatches, then retry pending ledger entries."""
        drained = True
        if self.analysis_executor is not None:
            drained = self.analysis_executor.drain(timeout) and drained
        if self.io_executor is not None:
            drained = self.io_executor.drain(timeout) and drained
        return self.ledger.flush_pending() and drained

    def close(self) -> None:
        self.flush()
        for executor in (self.analysis_executor, self.io_executor):
            if executor is not None:
                executor.shutdown()
        self.dispatcher.close()


@lru_cache()
def get_analyzer() -> BotAnalyzer:
    """Process-wide analyzer built from settings."""
    return BotAnalyzer.from_settings()
