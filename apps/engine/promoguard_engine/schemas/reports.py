"""Rollup report schemas. Derived projections over the ledger, never stored as truth."""

from datetime import date
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from promoguard_engine.schemas.analysis import ActionTier
from promoguard_engine.schemas.samples import Platform


class _Report(BaseModel):
    model_config = ConfigDict(frozen=True)


class ActionCounts(_Report):
    ban: int = 0
    warning: int = 0
    monitor: int = 0
    none: int = 0


class SeverityCounts(_Report):
    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0


class DeliveryCounts(_Report):
    success: int = 0
    failed: int = 0
    skipped: int = 0


class PlatformBreakdown(_Report):
    platform: Platform
    analyses: int = 0
    detections: int = 0
    detection_rate: float = 0.0


class ProcessingStats(_Report):
    count: int = 0
    min_ms: float = 0.0
    avg_ms: float = 0.0
    max_ms: float = 0.0
    total_ms: float = 0.0
    peak_hour: Optional[int] = None


class SuspiciousPromoter(_Report):
    promoter_id: str
    campaign_id: str
    bot_score: int
    action: ActionTier


class DailyReport(_Report):
    date: date
    total_analyses: int = 0
    action_counts: ActionCounts = Field(default_factory=ActionCounts)
    average_bot_score: float = 0.0
    alert_severity: SeverityCounts = Field(default_factory=SeverityCounts)
    platform_breakdown: list[PlatformBreakdown] = Field(default_factory=list)
    processing: ProcessingStats = Field(default_factory=ProcessingStats)
    top_suspicious: list[SuspiciousPromoter] = Field(default_factory=list)
    deliveries: DeliveryCounts = Field(default_factory=DeliveryCounts)
    validation_failures: int = 0
    system_errors: int = 0


class DayBreakdown(_Report):
    date: date
    analyses: int = 0
    detections: int = 0


class CampaignStats(_Report):
    campaign_id: str
    analyses: int
    detections: int
    average_bot_score: float
    actions: ActionCounts


class TrendSummary(_Report):
    previous_detection_rate: float = 0.0
    detection_rate_change: float = 0.0
    direction: Literal["increasing", "decreasing", "stable"] = "stable"
    most_active_day: Optional[str] = None
    peak_hours: list[int] = Field(default_factory=list)


class WeeklyReport(_Report):
    week_start: date
    week_end: date
    total_analyses: int = 0
    detections: int = 0
    detection_rate: float = 0.0
    average_bot_score: float = 0.0
    trend: TrendSummary = Field(default_factory=TrendSummary)
    daily_breakdown: list[DayBreakdown] = Field(default_factory=list)
    top_problematic_campaigns: list[CampaignStats] = Field(default_factory=list)
    alert_severity: SeverityCounts = Field(default_factory=SeverityCounts)
    delivery_failure_rate: float = 0.0
    recommendations: list[str] = Field(default_factory=list)


class OffenderStats(_Report):
    promoter_id: str
    violations: int
    average_bot_score: float
    status: Literal["BANNED", "WARNING", "ACTIVE"]


class CampaignRisk(_Report):
    campaign_id: str
    analyses: int
    detection_rate: float
    risk_level: Literal["HIGH", "MEDIUM", "LOW"]


class RiskTierCounts(_Report):
    high: int = 0
    medium: int = 0
    low: int = 0


class MonthlySummary(_Report):
    month: int
    year: int
    month_name: str
    total_analyses: int = 0
    total_detections: int = 0
    detection_rate: float = 0.0
    average_bot_score: float = 0.0
    growth_percent: Optional[float] = None
    top_offenders: list[OffenderStats] = Field(default_factory=list)
    campaign_risk: list[CampaignRisk] = Field(default_factory=list)
    risk_tiers: RiskTierCounts = Field(default_factory=RiskTierCounts)
    alert_severity: SeverityCounts = Field(default_factory=SeverityCounts)
    processing: ProcessingStats = Field(default_factory=ProcessingStats)
    peak_hourly_throughput: int = 0


class DetectionStatistics(_Report):
    """Running totals across the whole ledger."""

    total_analyses: int = 0
    actions: ActionCounts = Field(default_factory=ActionCounts)
    average_bot_score: float = 0.0
    recent_analyses: int = 0
    recent_detections: int = 0
    open_alerts: int = 0
