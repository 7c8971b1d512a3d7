"""Alert, notification and delivery schemas."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from promoguard_engine.schemas.analysis import ActionTier


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class AlertType(str, Enum):
    HIGH_RISK = "highRisk"
    WARNING = "warning"
    MONITOR = "monitor"
    SYSTEM = "system"


class Channel(str, Enum):
    DASHBOARD = "dashboard"
    WEBHOOK = "webhook"
    EMAIL = "email"
    SMS = "sms"


class DeliveryStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class AlertMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    views_analyzed: int = 0
    suspicious_patterns: list[str] = Field(default_factory=list)
    previous_alerts: int = 0


class AlertEvent(BaseModel):
    """A notification-worthy escalation. Never mutated once created."""

    model_config = ConfigDict(frozen=True)

    alert_id: str
    timestamp: datetime
    type: AlertType
    severity: Severity
    promoter_id: str
    campaign_id: str
    bot_score: int = 0
    reason: str = ""
    action_taken: ActionTier = ActionTier.NONE
    analysis_id: Optional[str] = None
    metadata: AlertMetadata = Field(default_factory=AlertMetadata)


class NotificationPayload(BaseModel):
    """What a channel sender receives."""

    model_config = ConfigDict(frozen=True)

    alert_id: str
    title: str
    message: str
    severity: Severity
    type: AlertType
    priority: str
    promoter_id: str
    campaign_id: str
    bot_score: int
    action_taken: ActionTier
    previous_alerts: int = 0
    created_at: datetime


class DeliveryOutcome(BaseModel):
    """Result of delivering one alert through one channel."""

    model_config = ConfigDict(frozen=True)

    alert_id: str
    promoter_id: str
    campaign_id: str
    channel: Channel
    status: DeliveryStatus
    attempts: int = 0
    error: Optional[str] = None
    completed_at: datetime
