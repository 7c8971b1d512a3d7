"""Audit ledger entry schemas."""

from datetime import datetime
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from promoguard_engine.schemas.alerts import AlertEvent, DeliveryOutcome
from promoguard_engine.schemas.analysis import ActionResult, AnalysisLog, BotAnalysis


class _Record(BaseModel):
    model_config = ConfigDict(frozen=True)


class AnalysisRecord(_Record):
    kind: Literal["analysis"] = "analysis"
    analysis: BotAnalysis
    action_result: ActionResult
    processing_ms: float = 0.0


class AlertRecord(_Record):
    kind: Literal["alert"] = "alert"
    alert: AlertEvent


class DeliveryRecord(_Record):
    kind: Literal["delivery"] = "delivery"
    outcome: DeliveryOutcome


class ValidationFailureRecord(_Record):
    kind: Literal["validation_failure"] = "validation_failure"
    message: str
    errors: list[dict[str, Any]] = Field(default_factory=list)
    raw: dict[str, Any] = Field(default_factory=dict)


class SystemErrorRecord(_Record):
    kind: Literal["system_error"] = "system_error"
    operation: str
    message: str
    analysis_id: Optional[str] = None


class AlertLifecycleRecord(_Record):
    kind: Literal["alert_lifecycle"] = "alert_lifecycle"
    alert_id: str
    state: Literal["acknowledged", "resolved"]
    actor: str = "system"


LedgerPayload = Annotated[
    Union[
        AnalysisRecord,
        AlertRecord,
        DeliveryRecord,
        ValidationFailureRecord,
        SystemErrorRecord,
        AlertLifecycleRecord,
    ],
    Field(discriminator="kind"),
]


class LedgerEntry(BaseModel):
    """One immutable ledger row, keyed by (promoter, campaign, recorded_at)."""

    model_config = ConfigDict(frozen=True)

    entry_id: str
    sequence: Optional[int] = None
    recorded_at: datetime
    promoter_id: str
    campaign_id: str
    payload: LedgerPayload

    @property
    def kind(self) -> str:
        return self.payload.kind

    def as_analysis_log(self) -> AnalysisLog:
        """Project an analysis entry into the public history shape."""
        if not isinstance(self.payload, AnalysisRecord):
            raise TypeError(f"ledger entry {self.entry_id} is a {self.kind} entry")
        return AnalysisLog(
            recorded_at=self.recorded_at,
            promoter_id=self.promoter_id,
            campaign_id=self.campaign_id,
            analysis=self.payload.analysis,
            action_result=self.payload.action_result,
            processing_ms=self.payload.processing_ms,
        )
