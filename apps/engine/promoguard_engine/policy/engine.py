"""Action resolver: deterministic mapping from bot score to action tier."""

import logging
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from promoguard_engine.errors import ConfigurationError
from promoguard_engine.schemas.analysis import ActionTier

logger = logging.getLogger(__name__)


class ActionThresholds(BaseModel):
    """Confidence bands. Each threshold is the lowest score in its band."""

    model_config = ConfigDict(frozen=True)

    ban: int = Field(90, ge=0, le=100)
    warning: int = Field(50, ge=0, le=100)
    monitor: int = Field(20, ge=0, le=100)


class ActionResolver:
    """Pure, total score-to-action mapping over injected thresholds."""

    def __init__(self, thresholds: Optional[ActionThresholds] = None):
        thresholds = thresholds or ActionThresholds()
        if not thresholds.monitor <= thresholds.warning <= thresholds.ban:
            raise ConfigurationError(
                "Thresholds must satisfy monitor <= warning <= ban, got "
                f"monitor={thresholds.monitor} warning={thresholds.warning} ban={thresholds.ban}"
            )
        self.thresholds = thresholds

    def resolve(self, bot_score: int) -> ActionTier:
        """Map a score to its action tier. Same input always yields the same tier."""
        t = self.thresholds
        if bot_score >= t.ban:
            tier = ActionTier.BAN
            rationale = f"Score {bot_score} meets ban threshold {t.ban}"
        elif bot_score >= t.warning:
            tier = ActionTier.WARNING
            rationale = f"Score {bot_score} between warning {t.warning} and ban {t.ban}"
        elif bot_score >= t.monitor:
            tier = ActionTier.MONITOR
            rationale = f"Score {bot_score} between monitor {t.monitor} and warning {t.warning}"
        else:
            tier = ActionTier.NONE
            rationale = f"Score {bot_score} below monitor threshold {t.monitor}"

        logger.debug(
            "Action resolved",
            extra={"bot_score": bot_score, "action": tier.value, "rationale": rationale},
        )
        return tier
