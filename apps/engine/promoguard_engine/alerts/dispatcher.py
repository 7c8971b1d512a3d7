"""Alert escalation, storm suppression and per-channel fan-out."""

import logging
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor, wait
from datetime import datetime, timedelta
from typing import Callable, Optional

import redis
from pydantic import BaseModel, ConfigDict, Field

from promoguard_engine.alerts.channels import ChannelRegistry
from promoguard_engine.alerts.window import AlertWindowStore
from promoguard_engine.errors import AlertStoreError
from promoguard_engine.ledger.service import LedgerService
from promoguard_engine.schemas.alerts import (
    AlertEvent,
    AlertMetadata,
    AlertType,
    Channel,
    DeliveryOutcome,
    DeliveryStatus,
    NotificationPayload,
    Severity,
)
from promoguard_engine.schemas.analysis import ActionTier, BotAnalysis
from promoguard_engine.utils import metrics
from promoguard_engine.utils.clock import Clock, utcnow
from promoguard_engine.utils.hashing import pair_key

logger = logging.getLogger(__name__)


class AlertPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    window_minutes: int = Field(60, gt=0)
    warning_alert_count: int = Field(5, ge=1)
    monitor_alert_count: int = Field(10, ge=1)
    critical_bot_score: int = Field(90, ge=0, le=100)
    store_max_retries: int = Field(2, ge=0)
    store_backoff_seconds: float = Field(0.1, ge=0)

    @property
    def window(self) -> timedelta:
        return timedelta(minutes=self.window_minutes)


class DeliveryPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    timeout_seconds: float = Field(10.0, gt=0)
    max_retries: int = Field(3, ge=0)
    backoff_seconds: float = Field(0.5, ge=0)

    @property
    def join_timeout_seconds(self) -> float:
        """Upper bound for one channel: every attempt plus every backoff sleep."""
        attempts = self.max_retries + 1
        backoff = sum(self.backoff_seconds * 2 ** i for i in range(self.max_retries))
        return self.timeout_seconds * attempts + backoff


STORE_ERRORS = (AlertStoreError, redis.RedisError, OSError)

# Severity-ordered fan-out
CHANNEL_ROUTING: dict[Severity, list[Channel]] = {
    Severity.CRITICAL: [Channel.DASHBOARD, Channel.WEBHOOK, Channel.EMAIL, Channel.SMS],
    Severity.HIGH: [Channel.DASHBOARD, Channel.WEBHOOK, Channel.EMAIL],
    Severity.MEDIUM: [Channel.DASHBOARD],
    Severity.LOW: [Channel.DASHBOARD],
}

PRIORITY = {
    Severity.CRITICAL: "urgent",
    Severity.HIGH: "high",
    Severity.MEDIUM: "normal",
    Severity.LOW: "low",
}


def render_notification(event: AlertEvent) -> tuple[str, str]:
    """Title and message for an alert."""
    who = f"Promoter {event.promoter_id} on campaign {event.campaign_id}"
    if event.type == AlertType.HIGH_RISK:
        title = "High-risk bot activity detected"
        message = (
            f"{who} scored {event.bot_score}/100 and the {event.action_taken.value} action was taken. "
            f"{event.reason}"
        )
    elif event.type == AlertType.WARNING:
        title = "Repeated suspicious activity"
        message = (
            f"{who} reached the warning tier repeatedly within the alert window "
            f"(latest score {event.bot_score}/100). {event.reason}"
        )
    elif event.type == AlertType.MONITOR:
        title = "Promoter under monitoring"
        message = (
            f"{who} keeps triggering low-confidence bot patterns "
            f"(latest score {event.bot_score}/100). {event.reason}"
        )
    else:
        title = "Bot detection system error"
        message = f"{who}: {event.reason}"
    return title, message


class AlertDispatcher:
    """Decides which analyses become alerts and delivers them.

    Calls for one (promoter, campaign) key must be serialized by the caller;
    the analyzer routes them through a keyed executor.
    """

    def __init__(
        self,
        window_store: AlertWindowStore,
        registry: ChannelRegistry,
        ledger: LedgerService,
        policy: Optional[AlertPolicy] = None,
        delivery: Optional[DeliveryPolicy] = None,
        clock: Clock = utcnow,
        sleep: Callable[[float], None] = time.sleep,
        max_workers: int = 4,
    ):
        self.window_store = window_store
        self.registry = registry
        self.ledger = ledger
        self.policy = policy or AlertPolicy()
        self.delivery = delivery or DeliveryPolicy()
        self.clock = clock
        self.sleep = sleep
        self.max_workers = max_workers
        self._pools: dict[Channel, ThreadPoolExecutor] = {}
        self._pools_lock = threading.Lock()

    @staticmethod
    def channels_for(severity: Severity) -> list[Channel]:
        return list(CHANNEL_ROUTING[severity])

    def is_critical(self, analysis: BotAnalysis) -> bool:
        return analysis.action == ActionTier.BAN or analysis.bot_score >= self.policy.critical_bot_score

    def _pool_for(self, channel: Channel) -> ThreadPoolExecutor:
        # One pool per channel: a sender stuck past its timeout only holds its own threads.
        with self._pools_lock:
            pool = self._pools.get(channel)
            if pool is None:
                pool = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix=f"alert-{channel.value}")
                self._pools[channel] = pool
            return pool

    def _store(self, operation: str, fn, *args):
        """Call the window store with bounded retries and exponential backoff.

        Raises:
            AlertStoreError: every attempt failed.
        """
        attempts = self.policy.store_max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return fn(*args)
            except STORE_ERRORS as e:
                logger.warning(
                    f"Alert window {operation} attempt {attempt}/{attempts} failed: {e}",
                    extra={"operation": operation},
                )
                if attempt == attempts:
                    raise AlertStoreError(f"Alert window {operation} failed after {attempts} attempts: {e}") from e
                self.sleep(self.policy.store_backoff_seconds * 2 ** (attempt - 1))

    def _new_event(
        self,
        analysis: BotAnalysis,
        alert_type: AlertType,
        severity: Severity,
        previous_alerts: int,
        reason: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> AlertEvent:
        return AlertEvent(
            alert_id=uuid.uuid4().hex,
            timestamp=timestamp or analysis.evaluated_at,
            type=alert_type,
            severity=severity,
            promoter_id=analysis.promoter_id,
            campaign_id=analysis.campaign_id,
            bot_score=analysis.bot_score,
            reason=reason if reason is not None else analysis.reason,
            action_taken=analysis.action,
            analysis_id=analysis.analysis_id,
            metadata=AlertMetadata(
                views_analyzed=analysis.metrics.ratio.total_views,
                suspicious_patterns=[f.description for f in analysis.findings],
                previous_alerts=previous_alerts,
            ),
        )

    def _threshold_reached(self, key: str, alert_type: AlertType, count: int, now: datetime, recent: list[AlertEvent]) -> bool:
        """Record a hit and report whether it completes a batch of ``count`` since the last alert."""
        since = now - self.policy.window
        last = [e.timestamp for e in recent if e.type == alert_type]
        if last:
            since = max(since, max(last))
        self._store("record_hit", self.window_store.record_hit, key, alert_type, now)
        hits = self._store("count_hits", self.window_store.count_hits, key, alert_type, since, now)
        if hits < count:
            metrics.alerts_suppressed.labels(type=alert_type.value).inc()
            logger.debug(
                "Alert suppressed below count threshold",
                extra={"key": key, "type": alert_type.value, "hits": hits, "threshold": count},
            )
            return False
        return True

    def evaluate(self, analysis: BotAnalysis) -> Optional[AlertEvent]:
        """Decide whether ``analysis`` escalates, updating the key's window."""
        key = pair_key(analysis.promoter_id, analysis.campaign_id)
        now = analysis.evaluated_at
        recent = self._store("get", self.window_store.get, key, self.policy.window, now)
        previous = len(recent)

        if self.is_critical(analysis):
            event = self._new_event(analysis, AlertType.HIGH_RISK, Severity.CRITICAL, previous)
        elif analysis.action == ActionTier.WARNING:
            if not self._threshold_reached(key, AlertType.WARNING, self.policy.warning_alert_count, now, recent):
                return None
            event = self._new_event(analysis, AlertType.WARNING, Severity.HIGH, previous)
        elif analysis.action == ActionTier.MONITOR:
            # Monitor escalates only past its count, warning as soon as it is reached.
            if not self._threshold_reached(key, AlertType.MONITOR, self.policy.monitor_alert_count + 1, now, recent):
                return None
            event = self._new_event(analysis, AlertType.MONITOR, Severity.MEDIUM, previous)
        else:
            return None

        self._store("append", self.window_store.append, key, event)
        metrics.alerts_emitted.labels(severity=event.severity.value, type=event.type.value).inc()
        logger.info(
            "Alert raised",
            extra={
                "alert_id": event.alert_id,
                "key": key,
                "type": event.type.value,
                "severity": event.severity.value,
                "previous_alerts": previous,
            },
        )
        return event

    def system_alert(self, analysis: BotAnalysis, message: str) -> AlertEvent:
        """Critical alert for a failure the operators must see."""
        key = pair_key(analysis.promoter_id, analysis.campaign_id)
        now = self.clock()
        try:
            previous = len(self._store("get", self.window_store.get, key, self.policy.window, now))
        except AlertStoreError:
            logger.warning("Alert window unavailable, counting previous alerts as zero", extra={"key": key})
            previous = 0
        event = self._new_event(
            analysis, AlertType.SYSTEM, Severity.CRITICAL, previous, reason=message, timestamp=now
        )
        try:
            self._store("append", self.window_store.append, key, event)
        except AlertStoreError:
            logger.warning("System alert not kept in the alert window", extra={"alert_id": event.alert_id, "key": key})
        metrics.alerts_emitted.labels(severity=event.severity.value, type=event.type.value).inc()
        logger.error("System alert raised", extra={"alert_id": event.alert_id, "key": key, "reason": message})
        return event

    def build_payload(self, event: AlertEvent) -> NotificationPayload:
        title, message = render_notification(event)
        return NotificationPayload(
            alert_id=event.alert_id,
            title=title,
            message=message,
            severity=event.severity,
            type=event.type,
            priority=PRIORITY[event.severity],
            promoter_id=event.promoter_id,
            campaign_id=event.campaign_id,
            bot_score=event.bot_score,
            action_taken=event.action_taken,
            previous_alerts=event.metadata.previous_alerts,
            created_at=event.timestamp,
        )

    def _outcome(self, event: AlertEvent, channel: Channel, status: DeliveryStatus, attempts: int, error: Optional[str] = None) -> DeliveryOutcome:
        return DeliveryOutcome(
            alert_id=event.alert_id,
            promoter_id=event.promoter_id,
            campaign_id=event.campaign_id,
            channel=channel,
            status=status,
            attempts=attempts,
            error=error,
            completed_at=self.clock(),
        )

    def _deliver(self, event: AlertEvent, channel: Channel, payload: NotificationPayload) -> DeliveryOutcome:
        """Deliver through one channel with bounded retries and exponential backoff."""
        sender = self.registry.get(channel)
        attempts = self.delivery.max_retries + 1
        last_error = None
        for attempt in range(1, attempts + 1):
            try:
                sender.send(payload)
                return self._outcome(event, channel, DeliveryStatus.SUCCESS, attempt)
            except Exception as e:
                last_error = str(e)
                logger.warning(
                    f"Channel delivery attempt {attempt}/{attempts} failed: {e}",
                    extra={"alert_id": event.alert_id, "channel": channel.value},
                )
                if attempt < attempts:
                    self.sleep(self.delivery.backoff_seconds * 2 ** (attempt - 1))
        logger.error(
            f"Channel delivery failed after {attempts} attempts",
            extra={"alert_id": event.alert_id, "channel": channel.value},
        )
        return self._outcome(event, channel, DeliveryStatus.FAILED, attempts, last_error)

    def dispatch(self, event: AlertEvent) -> list[DeliveryOutcome]:
        """Fan out to the severity's channels and record everything in the ledger.

        One channel's failure never blocks the others. The alert and every
        outcome are appended to the ledger before this returns.
        """
        self.ledger.record_alert(event)
        payload = self.build_payload(event)

        channels = self.channels_for(event.severity)
        outcomes: dict[Channel, DeliveryOutcome] = {}
        futures = {}
        for channel in channels:
            if channel not in self.registry:
                logger.warning(
                    f"Channel {channel.value} not configured, skipping",
                    extra={"alert_id": event.alert_id},
                )
                outcomes[channel] = self._outcome(event, channel, DeliveryStatus.SKIPPED, 0, "channel not configured")
                continue
            futures[channel] = self._pool_for(channel).submit(self._deliver, event, channel, payload)

        if futures:
            wait(futures.values(), timeout=self.delivery.join_timeout_seconds)
        for channel, future in futures.items():
            if future.done() and future.exception() is None:
                outcomes[channel] = future.result()
            elif future.done():
                outcomes[channel] = self._outcome(
                    event, channel, DeliveryStatus.FAILED, 0, str(future.exception())
                )
            else:
                future.cancel()
                logger.error(
                    f"Channel {channel.value} timed out",
                    extra={"alert_id": event.alert_id, "channel": channel.value},
                )
                outcomes[channel] = self._outcome(event, channel, DeliveryStatus.FAILED, 0, "timed out")

        ordered = [outcomes[channel] for channel in channels]
        for outcome in ordered:
            metrics.channel_deliveries.labels(channel=outcome.channel.value, status=outcome.status.value).inc()
            self.ledger.record_delivery(outcome)
        return ordered

    def _evaluate_without_window(self, analysis: BotAnalysis, error: AlertStoreError) -> Optional[AlertEvent]:
        """Fallback when the window store stays down: record it, and still alert on critical analyses."""
        logger.error(
            f"Alert window unavailable: {error}",
            extra={"analysis_id": analysis.analysis_id, "promoter_id": analysis.promoter_id, "campaign_id": analysis.campaign_id},
        )
        self.ledger.record_system_error(
            analysis.promoter_id,
            analysis.campaign_id,
            operation="alert_window",
            message=str(error),
            analysis_id=analysis.analysis_id,
        )
        if not self.is_critical(analysis):
            return None
        # History unknown, so no previous alerts are claimed.
        event = self._new_event(analysis, AlertType.HIGH_RISK, Severity.CRITICAL, 0)
        metrics.alerts_emitted.labels(severity=event.severity.value, type=event.type.value).inc()
        logger.info(
            "Alert raised without window history",
            extra={"alert_id": event.alert_id, "type": event.type.value, "severity": event.severity.value},
        )
        return event

    def process(self, analysis: BotAnalysis) -> Optional[tuple[AlertEvent, list[DeliveryOutcome]]]:
        """Evaluate an analysis and dispatch the resulting alert, if any."""
        try:
            event = self.evaluate(analysis)
        except AlertStoreError as e:
            event = self._evaluate_without_window(analysis, e)
        if event is None:
            return None
        return event, self.dispatch(event)

    def close(self) -> None:
        with self._pools_lock:
            pools = list(self._pools.values())
            self._pools.clear()
        for pool in pools:
            pool.shutdown(wait=False, cancel_futures=True)
        self.registry.close()
