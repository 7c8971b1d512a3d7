"""Domain schemas - re-exported for convenience."""

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
from promoguard_engine.schemas.analysis import (
    ActionResult,
    ActionTier,
    AnalysisLog,
    BotAnalysis,
    HeuristicCategory,
    HeuristicFinding,
    MetricsSnapshot,
)
from promoguard_engine.schemas.ledger import LedgerEntry
from promoguard_engine.schemas.reports import (
    DailyReport,
    DetectionStatistics,
    MonthlySummary,
    WeeklyReport,
)
from promoguard_engine.schemas.samples import EngagementSample, Platform

__all__ = [
    "ActionResult",
    "ActionTier",
    "AlertEvent",
    "AlertMetadata",
    "AlertType",
    "AnalysisLog",
    "BotAnalysis",
    "Channel",
    "DailyReport",
    "DeliveryOutcome",
    "DeliveryStatus",
    "DetectionStatistics",
    "EngagementSample",
    "HeuristicCategory",
    "HeuristicFinding",
    "LedgerEntry",
    "MetricsSnapshot",
    "MonthlySummary",
    "NotificationPayload",
    "Platform",
    "Severity",
    "WeeklyReport",
]
