"""Execution of resolved actions against external collaborators."""

import logging
from abc import ABC, abstractmethod
from typing import Callable, Optional

from promoguard_engine.errors import ActionExecutionError
from promoguard_engine.schemas.analysis import ActionResult, ActionTier, BotAnalysis
from promoguard_engine.utils.clock import Clock, utcnow

logger = logging.getLogger(__name__)


class ActionExecutor(ABC):
    """Carries out ban, payout hold and monitoring requests."""

    @abstractmethod
    def execute(self, analysis: BotAnalysis) -> None:
        """Execute ``analysis.action``.

        Raises:
            ActionExecutionError: the action could not be carried out.
        """


class LoggingActionExecutor(ActionExecutor):
    """Records the requested action. Used when no external hooks are wired."""

    def execute(self, analysis: BotAnalysis) -> None:
        log_extra = {
            "promoter_id": analysis.promoter_id,
            "campaign_id": analysis.campaign_id,
            "analysis_id": analysis.analysis_id,
            "bot_score": analysis.bot_score,
        }
        if analysis.action == ActionTier.BAN:
            logger.warning("Ban requested for promoter", extra=log_extra)
        elif analysis.action == ActionTier.WARNING:
            logger.info("Payout hold requested for promoter", extra=log_extra)
        elif analysis.action == ActionTier.MONITOR:
            logger.info("Enhanced monitoring requested for promoter", extra=log_extra)


class CallbackActionExecutor(ActionExecutor):
    """Dispatches each tier to a host-supplied hook."""

    def __init__(self, hooks: dict[ActionTier, Callable[[BotAnalysis], None]]):
        self.hooks = dict(hooks)

    def execute(self, analysis: BotAnalysis) -> None:
        hook = self.hooks.get(analysis.action)
        if hook is None:
            return
        try:
            hook(analysis)
        except ActionExecutionError:
            raise
        except Exception as e:
            raise ActionExecutionError(f"{analysis.action.value} hook failed: {e}") from e


def execute_action(
    analysis: BotAnalysis,
    executor: Optional[ActionExecutor],
    auto_execute: bool = True,
    clock: Clock = utcnow,
) -> ActionResult:
    """Attempt the resolved action and describe what happened.

    Failures are reported on the result, never raised; the caller decides
    whether a failure must be surfaced.
    """
    executed = False
    error = None
    if analysis.action != ActionTier.NONE and auto_execute and executor is not None:
        try:
            executor.execute(analysis)
            executed = True
        except Exception as e:
            error = str(e) or e.__class__.__name__
            logger.error(
                f"Action execution failed: {error}",
                extra={
                    "promoter_id": analysis.promoter_id,
                    "campaign_id": analysis.campaign_id,
                    "action": analysis.action.value,
                },
            )

    return ActionResult(
        analysis_id=analysis.analysis_id,
        promoter_id=analysis.promoter_id,
        campaign_id=analysis.campaign_id,
        action=analysis.action,
        executed=executed,
        timestamp=clock(),
        suspicious_patterns=[f.description for f in analysis.findings],
        error=error,
    )
