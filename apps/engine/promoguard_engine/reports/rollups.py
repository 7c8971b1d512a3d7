"""Daily, weekly and monthly rollups projected from the audit ledger.

Every report is a pure function of the ledger entries in its range: no
generation timestamps, and every ranking has a total tie-break, so
regenerating a report over an unchanged range yields identical bytes.
"""

import calendar
import logging
from collections import Counter, defaultdict
from datetime import date, datetime, time, timedelta
from typing import Iterable, Optional

from promoguard_engine.ledger.service import LedgerService
from promoguard_engine.reports.recommendations import WeeklySignals, recommend
from promoguard_engine.schemas.alerts import DeliveryStatus, Severity
from promoguard_engine.schemas.analysis import ActionTier
from promoguard_engine.schemas.ledger import AlertRecord, AnalysisRecord, DeliveryRecord, LedgerEntry
from promoguard_engine.schemas.reports import (
    ActionCounts,
    CampaignRisk,
    CampaignStats,
    DailyReport,
    DayBreakdown,
    DeliveryCounts,
    MonthlySummary,
    OffenderStats,
    PlatformBreakdown,
    ProcessingStats,
    RiskTierCounts,
    SeverityCounts,
    SuspiciousPromoter,
    TrendSummary,
    WeeklyReport,
)
from promoguard_engine.schemas.samples import Platform

logger = logging.getLogger(__name__)

SUSPICIOUS_SCORE = 50
TOP_SUSPICIOUS = 10
TOP_CAMPAIGNS = 10
TOP_OFFENDERS = 20
TOP_CAMPAIGN_RISK = 15
PEAK_HOURS = 3
HIGH_RISK_RATE = 0.3
MEDIUM_RISK_RATE = 0.1
TREND_TOLERANCE = 0.01


def _start_of(day: date) -> datetime:
    return datetime.combine(day, time.min)


def _rate(numerator: int, denominator: int) -> float:
    return round(numerator / denominator, 4) if denominator else 0.0


def _mean(values: list[float]) -> float:
    return round(sum(values) / len(values), 2) if values else 0.0


def _is_detection(action: ActionTier) -> bool:
    return action != ActionTier.NONE


class _Slice:
    """Ledger entries of one range, split by kind."""

    def __init__(self, entries: Iterable[LedgerEntry]):
        self.analyses: list[tuple[LedgerEntry, AnalysisRecord]] = []
        self.alerts: list[AlertRecord] = []
        self.deliveries: list[DeliveryRecord] = []
        self.validation_failures = 0
        self.system_errors = 0
        for entry in entries:
            payload = entry.payload
            if isinstance(payload, AnalysisRecord):
                self.analyses.append((entry, payload))
            elif isinstance(payload, AlertRecord):
                self.alerts.append(payload)
            elif isinstance(payload, DeliveryRecord):
                self.deliveries.append(payload)
            elif entry.kind == "validation_failure":
                self.validation_failures += 1
            elif entry.kind == "system_error":
                self.system_errors += 1

    @property
    def total(self) -> int:
        return len(self.analyses)

    @property
    def detections(self) -> int:
        return sum(1 for _, r in self.analyses if _is_detection(r.analysis.action))

    @property
    def detection_rate(self) -> float:
        return _rate(self.detections, self.total)

    @property
    def average_bot_score(self) -> float:
        return _mean([r.analysis.bot_score for _, r in self.analyses])

    def action_counts(self) -> ActionCounts:
        counts = Counter(r.analysis.action.value for _, r in self.analyses)
        return ActionCounts(**{tier.value: counts.get(tier.value, 0) for tier in ActionTier})

    def severity_counts(self) -> SeverityCounts:
        counts = Counter(a.alert.severity.value for a in self.alerts)
        return SeverityCounts(**{s.value: counts.get(s.value, 0) for s in Severity})

    def delivery_counts(self) -> DeliveryCounts:
        counts = Counter(d.outcome.status.value for d in self.deliveries)
        return DeliveryCounts(**{s.value: counts.get(s.value, 0) for s in DeliveryStatus})

    def hour_counts(self) -> Counter:
        return Counter(entry.recorded_at.hour for entry, _ in self.analyses)

    def processing(self) -> ProcessingStats:
        durations = [r.processing_ms for _, r in self.analyses]
        if not durations:
            return ProcessingStats()
        hours = self.hour_counts()
        peak_hour = min(hours, key=lambda h: (-hours[h], h))
        total = sum(durations)
        return ProcessingStats(
            count=len(durations),
            min_ms=round(min(durations), 3),
            avg_ms=round(total / len(durations), 3),
            max_ms=round(max(durations), 3),
            total_ms=round(total, 3),
            peak_hour=peak_hour,
        )


class ReportGenerator:
    """Builds rollups from committed ledger entries. Read-only."""

    def __init__(self, ledger: LedgerService):
        self.ledger = ledger

    def _slice(self, start: datetime, end: datetime) -> _Slice:
        return _Slice(self.ledger.scan(start, end))

    def generate_daily_summary(self, day: date) -> DailyReport:
        start = _start_of(day)
        data = self._slice(start, start + timedelta(days=1))

        platforms = []
        for platform in Platform:
            on_platform = [r for _, r in data.analyses if platform in r.analysis.platforms]
            detections = sum(1 for r in on_platform if _is_detection(r.analysis.action))
            platforms.append(
                PlatformBreakdown(
                    platform=platform,
                    analyses=len(on_platform),
                    detections=detections,
                    detection_rate=_rate(detections, len(on_platform)),
                )
            )

        # Highest score per key
        best: dict[tuple[str, str], AnalysisRecord] = {}
        for _, record in data.analyses:
            a = record.analysis
            if a.bot_score <= SUSPICIOUS_SCORE:
                continue
            key = (a.promoter_id, a.campaign_id)
            if key not in best or a.bot_score > best[key].analysis.bot_score:
                best[key] = record
        suspicious = sorted(
            best.values(),
            key=lambda r: (-r.analysis.bot_score, r.analysis.promoter_id, r.analysis.campaign_id),
        )[:TOP_SUSPICIOUS]

        report = DailyReport(
            date=day,
            total_analyses=data.total,
            action_counts=data.action_counts(),
            average_bot_score=data.average_bot_score,
            alert_severity=data.severity_counts(),
            platform_breakdown=platforms,
            processing=data.processing(),
            top_suspicious=[
                SuspiciousPromoter(
                    promoter_id=r.analysis.promoter_id,
                    campaign_id=r.analysis.campaign_id,
                    bot_score=r.analysis.bot_score,
                    action=r.analysis.action,
                )
                for r in suspicious
            ],
            deliveries=data.delivery_counts(),
            validation_failures=data.validation_failures,
            system_errors=data.system_errors,
        )
        logger.info("Daily report generated", extra={"date": day.isoformat(), "analyses": data.total})
        return report

    def _campaign_stats(self, data: _Slice) -> list[CampaignStats]:
        grouped: dict[str, list[AnalysisRecord]] = defaultdict(list)
        for _, record in data.analyses:
            grouped[record.analysis.campaign_id].append(record)

        stats = []
        for campaign_id, records in grouped.items():
            detections = sum(1 for r in records if _is_detection(r.analysis.action))
            if not detections:
                continue
            actions = Counter(r.analysis.action.value for r in records)
            stats.append(
                CampaignStats(
                    campaign_id=campaign_id,
                    analyses=len(records),
                    detections=detections,
                    average_bot_score=_mean([r.analysis.bot_score for r in records]),
                    actions=ActionCounts(**{t.value: actions.get(t.value, 0) for t in ActionTier}),
                )
            )
        stats.sort(key=lambda s: (-s.detections, -s.average_bot_score, s.campaign_id))
        return stats[:TOP_CAMPAIGNS]

    def generate_weekly_summary(self, week_start: date) -> WeeklyReport:
        start = _start_of(week_start)
        end = start + timedelta(days=7)
        data = self._slice(start, end)
        previous = self._slice(start - timedelta(days=7), start)

        per_day = Counter(entry.recorded_at.date() for entry, _ in data.analyses)
        detections_per_day = Counter(
            entry.recorded_at.date() for entry, r in data.analyses if _is_detection(r.analysis.action)
        )
        days = [week_start + timedelta(days=i) for i in range(7)]
        busiest = max(days, key=lambda d: per_day.get(d, 0)) if data.total else None

        hours = data.hour_counts()
        peak_hours = sorted(hours, key=lambda h: (-hours[h], h))[:PEAK_HOURS]

        change = round(data.detection_rate - previous.detection_rate, 4)
        if change > TREND_TOLERANCE:
            direction = "increasing"
        elif change < -TREND_TOLERANCE:
            direction = "decreasing"
        else:
            direction = "stable"

        severity = data.severity_counts()
        deliveries = data.delivery_counts()
        attempted = deliveries.success + deliveries.failed

        report = WeeklyReport(
            week_start=week_start,
            week_end=week_start + timedelta(days=6),
            total_analyses=data.total,
            detections=data.detections,
            detection_rate=data.detection_rate,
            average_bot_score=data.average_bot_score,
            trend=TrendSummary(
                previous_detection_rate=previous.detection_rate,
                detection_rate_change=change,
                direction=direction,
                most_active_day=calendar.day_name[busiest.weekday()] if busiest else None,
                peak_hours=peak_hours,
            ),
            daily_breakdown=[
                DayBreakdown(date=d, analyses=per_day.get(d, 0), detections=detections_per_day.get(d, 0))
                for d in days
            ],
            top_problematic_campaigns=self._campaign_stats(data),
            alert_severity=severity,
            delivery_failure_rate=_rate(deliveries.failed, attempted),
            recommendations=recommend(
                WeeklySignals(
                    detection_rate=data.detection_rate,
                    critical_alerts=severity.critical,
                    average_bot_score=data.average_bot_score,
                    total_analyses=data.total,
                )
            ),
        )
        logger.info("Weekly report generated", extra={"week_start": week_start.isoformat(), "analyses": data.total})
        return report

    def _top_offenders(self, data: _Slice) -> list[OffenderStats]:
        grouped: dict[str, list[AnalysisRecord]] = defaultdict(list)
        for _, record in data.analyses:
            grouped[record.analysis.promoter_id].append(record)

        offenders = []
        for promoter_id, records in grouped.items():
            violations = sum(1 for r in records if _is_detection(r.analysis.action))
            if not violations:
                continue
            last_action = records[-1].analysis.action
            if last_action == ActionTier.BAN:
                status = "BANNED"
            elif last_action == ActionTier.WARNING:
                status = "WARNING"
            else:
                status = "ACTIVE"
            offenders.append(
                OffenderStats(
                    promoter_id=promoter_id,
                    violations=violations,
                    average_bot_score=_mean([r.analysis.bot_score for r in records]),
                    status=status,
                )
            )
        offenders.sort(key=lambda o: (-o.violations, -o.average_bot_score, o.promoter_id))
        return offenders[:TOP_OFFENDERS]

    def _campaign_risk(self, data: _Slice) -> tuple[list[CampaignRisk], RiskTierCounts]:
        grouped: dict[str, list[AnalysisRecord]] = defaultdict(list)
        for _, record in data.analyses:
            grouped[record.analysis.campaign_id].append(record)

        risks = []
        for campaign_id, records in grouped.items():
            rate = _rate(sum(1 for r in records if _is_detection(r.analysis.action)), len(records))
            if rate > HIGH_RISK_RATE:
                level = "HIGH"
            elif rate > MEDIUM_RISK_RATE:
                level = "MEDIUM"
            else:
                level = "LOW"
            risks.append(CampaignRisk(campaign_id=campaign_id, analyses=len(records), detection_rate=rate, risk_level=level))

        tiers = Counter(r.risk_level for r in risks)
        risks.sort(key=lambda r: (-r.detection_rate, -r.analyses, r.campaign_id))
        return risks[:TOP_CAMPAIGN_RISK], RiskTierCounts(
            high=tiers.get("HIGH", 0), medium=tiers.get("MEDIUM", 0), low=tiers.get("LOW", 0)
        )

    def generate_monthly_summary(self, month: int, year: int) -> MonthlySummary:
        if not 1 <= month <= 12:
            raise ValueError(f"month must be between 1 and 12, got {month}")
        start = datetime(year, month, 1)
        end = datetime(year + 1, 1, 1) if month == 12 else datetime(year, month + 1, 1)
        prior_start = datetime(year - 1, 12, 1) if month == 1 else datetime(year, month - 1, 1)
        data = self._slice(start, end)
        prior = self._slice(prior_start, start)

        growth: Optional[float] = None
        if prior.total:
            growth = round((data.total - prior.total) / prior.total * 100, 2)

        hourly = Counter(
            entry.recorded_at.replace(minute=0, second=0, microsecond=0) for entry, _ in data.analyses
        )
        campaign_risk, tiers = self._campaign_risk(data)

        report = MonthlySummary(
            month=month,
            year=year,
            month_name=calendar.month_name[month],
            total_analyses=data.total,
            total_detections=data.detections,
            detection_rate=data.detection_rate,
            average_bot_score=data.average_bot_score,
            growth_percent=growth,
            top_offenders=self._top_offenders(data),
            campaign_risk=campaign_risk,
            risk_tiers=tiers,
            alert_severity=data.severity_counts(),
            processing=data.processing(),
            peak_hourly_throughput=max(hourly.values(), default=0),
        )
        logger.info("Monthly report generated", extra={"month": month, "year": year, "analyses": data.total})
        return report

