"""Tests for ledger rollup reports."""

import json
from datetime import date, datetime, timedelta

import pytest

from helpers import START, make_analysis
from promoguard_engine.errors import SampleValidationError
from promoguard_engine.policy.executor import LoggingActionExecutor, execute_action
from promoguard_engine.reports.export import export_report
from promoguard_engine.reports.recommendations import DEFAULT_RECOMMENDATION, RULES
from promoguard_engine.reports.rollups import ReportGenerator
from promoguard_engine.schemas.alerts import AlertEvent, AlertType, Severity
from promoguard_engine.schemas.analysis import ActionTier
from promoguard_engine.schemas.samples import Platform

DAY = START.date()


def log(ledger, action, score, at, promoter_id="promoter-1", campaign_id="campaign-1", platforms=(Platform.TIKTOK,), processing_ms=10.0):
    analysis = make_analysis(action, score, at=at, promoter_id=promoter_id, campaign_id=campaign_id, platforms=platforms)
    result = execute_action(analysis, LoggingActionExecutor(), clock=lambda: at)
    ledger.record_analysis(analysis, result, processing_ms=processing_ms)
    return analysis


def alert(ledger, at, severity=Severity.CRITICAL, alert_id="alert-1"):
    ledger.record_alert(
        AlertEvent(
            alert_id=alert_id,
            timestamp=at,
            type=AlertType.HIGH_RISK,
            severity=severity,
            promoter_id="promoter-1",
            campaign_id="campaign-1",
            bot_score=95,
            action_taken=ActionTier.BAN,
        )
    )


@pytest.fixture
def reports(ledger) -> ReportGenerator:
    return ReportGenerator(ledger)


class TestDailyReport:
    @pytest.fixture
    def populated(self, ledger):
        log(ledger, ActionTier.BAN, 95, START, processing_ms=20.0)
        log(ledger, ActionTier.WARNING, 60, START + timedelta(hours=1))
        log(ledger, ActionTier.NONE, 5, START + timedelta(hours=1, minutes=30), promoter_id="promoter-2")
        log(
            ledger,
            ActionTier.MONITOR,
            30,
            START + timedelta(hours=1, minutes=45),
            promoter_id="promoter-3",
            campaign_id="campaign-2",
            platforms=(Platform.INSTAGRAM,),
        )
        # Next day, excluded
        log(ledger, ActionTier.BAN, 99, datetime(2024, 3, 5, 0, 0), promoter_id="promoter-4")
        alert(ledger, START)
        ledger.record_validation_failure("promoter-1", "campaign-1", SampleValidationError("bad sample"))
        return ledger

    def test_counts(self, populated, reports):
        report = reports.generate_daily_summary(DAY)

        assert report.total_analyses == 4
        assert report.action_counts.model_dump() == {"ban": 1, "warning": 1, "monitor": 1, "none": 1}
        assert report.average_bot_score == 47.5
        assert report.alert_severity.critical == 1
        assert report.validation_failures == 1
        assert report.system_errors == 0

    def test_platform_breakdown(self, populated, reports):
        breakdown = {p.platform: p for p in reports.generate_daily_summary(DAY).platform_breakdown}

        assert breakdown[Platform.TIKTOK].analyses == 3
        assert breakdown[Platform.TIKTOK].detections == 2
        assert breakdown[Platform.TIKTOK].detection_rate == 0.6667
        assert breakdown[Platform.INSTAGRAM].detection_rate == 1.0

    def test_top_suspicious_keeps_highest_score_per_key(self, populated, reports):
        top = reports.generate_daily_summary(DAY).top_suspicious

        assert len(top) == 1
        assert top[0].promoter_id == "promoter-1"
        assert top[0].bot_score == 95
        assert top[0].action == ActionTier.BAN

    def test_processing_stats(self, populated, reports):
        processing = reports.generate_daily_summary(DAY).processing

        assert processing.count == 4
        assert processing.max_ms == 20.0
        assert processing.min_ms == 10.0
        assert processing.peak_hour == 11

    def test_regeneration_is_byte_identical(self, populated, reports):
        first = reports.generate_daily_summary(DAY).model_dump_json()
        second = reports.generate_daily_summary(DAY).model_dump_json()
        assert first == second

    def test_empty_day(self, reports):
        report = reports.generate_daily_summary(DAY)
        assert report.total_analyses == 0
        assert report.average_bot_score == 0.0
        assert report.processing.peak_hour is None


class TestWeeklyReport:
    @pytest.fixture
    def populated(self, ledger):
        previous_week = START - timedelta(days=7)
        for i in range(10):
            action = ActionTier.WARNING if i == 0 else ActionTier.NONE
            log(ledger, action, 60 if i == 0 else 5, previous_week + timedelta(minutes=i))

        log(ledger, ActionTier.BAN, 95, START)
        log(ledger, ActionTier.BAN, 95, START + timedelta(minutes=5), promoter_id="promoter-2")
        log(ledger, ActionTier.NONE, 5, START + timedelta(minutes=10), campaign_id="campaign-2")
        log(ledger, ActionTier.WARNING, 60, START + timedelta(days=2))
        return ledger

    def test_totals_and_trend(self, populated, reports):
        report = reports.generate_weekly_summary(DAY)

        assert report.week_end == date(2024, 3, 10)
        assert report.total_analyses == 4
        assert report.detections == 3
        assert report.detection_rate == 0.75
        assert report.average_bot_score == 63.75
        assert report.trend.previous_detection_rate == 0.1
        assert report.trend.detection_rate_change == 0.65
        assert report.trend.direction == "increasing"
        assert report.trend.most_active_day == "Monday"
        assert report.trend.peak_hours == [10]

    def test_daily_breakdown_covers_seven_days(self, populated, reports):
        days = reports.generate_weekly_summary(DAY).daily_breakdown

        assert [d.date for d in days] == [DAY + timedelta(days=i) for i in range(7)]
        assert (days[0].analyses, days[0].detections) == (3, 2)
        assert (days[2].analyses, days[2].detections) == (1, 1)

    def test_problematic_campaigns_require_detections(self, populated, reports):
        campaigns = reports.generate_weekly_summary(DAY).top_problematic_campaigns

        assert [c.campaign_id for c in campaigns] == ["campaign-1"]
        assert campaigns[0].actions.ban == 2

    def test_recommendations_follow_rule_order(self, populated, reports):
        recommendations = reports.generate_weekly_summary(DAY).recommendations
        by_name = {rule.name: rule.message for rule in RULES}

        assert recommendations == [by_name["detection_rate"], by_name["average_score"]]

    def test_quiet_week(self, reports):
        report = reports.generate_weekly_summary(DAY)

        assert report.recommendations == [DEFAULT_RECOMMENDATION]
        assert report.trend.direction == "stable"
        assert report.trend.most_active_day is None

    def test_decreasing_trend(self, ledger, reports):
        log(ledger, ActionTier.BAN, 95, START - timedelta(days=7))
        log(ledger, ActionTier.NONE, 5, START)

        assert reports.generate_weekly_summary(DAY).trend.direction == "decreasing"


class TestMonthlySummary:
    @pytest.fixture
    def populated(self, ledger):
        march = datetime(2024, 3, 4, 9, 0)
        log(ledger, ActionTier.BAN, 95, march, campaign_id="campaign-1")
        log(ledger, ActionTier.BAN, 97, march + timedelta(days=1), campaign_id="campaign-1")
        log(ledger, ActionTier.WARNING, 60, march, promoter_id="promoter-2", campaign_id="campaign-2")
        log(ledger, ActionTier.NONE, 5, march + timedelta(days=2), promoter_id="promoter-2", campaign_id="campaign-2")
        log(ledger, ActionTier.NONE, 5, march, promoter_id="promoter-3", campaign_id="campaign-3")
        log(ledger, ActionTier.WARNING, 60, march, promoter_id="promoter-4", campaign_id="campaign-4")
        for i in range(4):
            log(
                ledger,
                ActionTier.NONE,
                5,
                march + timedelta(hours=1, minutes=i),
                promoter_id="promoter-4",
                campaign_id="campaign-4",
            )

        for i in range(5):
            log(ledger, ActionTier.NONE, 5, datetime(2024, 2, 10, 12, i))
        return ledger

    def test_totals_and_growth(self, populated, reports):
        summary = reports.generate_monthly_summary(3, 2024)

        assert summary.month_name == "March"
        assert summary.total_analyses == 10
        assert summary.total_detections == 4
        assert summary.detection_rate == 0.4
        assert summary.growth_percent == 100.0
        assert summary.peak_hourly_throughput == 4

    def test_top_offenders(self, populated, reports):
        offenders = reports.generate_monthly_summary(3, 2024).top_offenders

        assert [o.promoter_id for o in offenders] == ["promoter-1", "promoter-2", "promoter-4"]
        assert [o.status for o in offenders] == ["BANNED", "ACTIVE", "ACTIVE"]
        assert offenders[0].violations == 2

    def test_campaign_risk_tiers(self, populated, reports):
        summary = reports.generate_monthly_summary(3, 2024)
        levels = {c.campaign_id: c.risk_level for c in summary.campaign_risk}

        assert levels == {
            "campaign-1": "HIGH",
            "campaign-2": "HIGH",
            "campaign-3": "LOW",
            "campaign-4": "MEDIUM",
        }
        assert summary.risk_tiers.model_dump() == {"high": 2, "medium": 1, "low": 1}
        assert summary.campaign_risk[0].campaign_id == "campaign-1"

    def test_growth_unknown_without_prior_month(self, ledger, reports):
        log(ledger, ActionTier.NONE, 5, datetime(2024, 1, 15, 12, 0))

        assert reports.generate_monthly_summary(1, 2024).growth_percent is None

    def test_december_range(self, ledger, reports):
        log(ledger, ActionTier.BAN, 95, datetime(2023, 12, 31, 23, 59))
        log(ledger, ActionTier.BAN, 95, datetime(2024, 1, 1, 0, 0))

        assert reports.generate_monthly_summary(12, 2023).total_analyses == 1

    @pytest.mark.parametrize("month", [0, 13])
    def test_invalid_month(self, reports, month):
        with pytest.raises(ValueError):
            reports.generate_monthly_summary(month, 2024)


class TestExport:
    def test_export_writes_json(self, ledger, reports, tmp_path):
        log(ledger, ActionTier.BAN, 95, START)

        path = export_report(reports.generate_daily_summary(DAY), tmp_path)

        assert path == tmp_path / "daily" / "2024-03-04.json"
        assert json.loads(path.read_text())["total_analyses"] == 1

    def test_reexport_is_identical(self, ledger, reports, tmp_path):
        log(ledger, ActionTier.WARNING, 60, START)

        first = export_report(reports.generate_weekly_summary(DAY), tmp_path).read_bytes()
        second = export_report(reports.generate_weekly_summary(DAY), tmp_path).read_bytes()
        assert first == second

    def test_monthly_filename(self, reports, tmp_path):
        path = export_report(reports.generate_monthly_summary(3, 2024), tmp_path)
        assert path.name == "2024-03.json"
