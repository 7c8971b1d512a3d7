"""Celery tasks for analysis, report export and retention."""

import logging
from datetime import date, timedelta
from typing import Optional

from promoguard_engine.errors import BanExecutionError, LedgerUnavailableError
from promoguard_engine.pipeline.analyzer import get_analyzer
from promoguard_engine.reports.export import export_report
from promoguard_engine.settings import get_settings
from promoguard_engine.utils.clock import utcnow
from promoguard_worker.celery_app import celery_app
from promoguard_worker.routing import queue_for_key

logger = logging.getLogger(__name__)

FLUSH_TIMEOUT_SECONDS = 60


@celery_app.task(bind=True, name="promoguard_worker.tasks.analyze_samples")
def analyze_samples(self, promoter_id: str, campaign_id: str, samples: list[dict]) -> dict:
    """Analyze one batch. Runs on the key's shard queue."""
    analyzer = get_analyzer()
    log_extra = {
        "task": "analyze_samples",
        "promoter_id": promoter_id,
        "campaign_id": campaign_id,
        "task_id": self.request.id,
    }
    try:
        analysis, action_result = analyzer.analyze(promoter_id, campaign_id, samples)
        error = None
    except BanExecutionError as e:
        logger.error(f"Ban execution failed: {e}", extra=log_extra)
        analysis, action_result, error = e.analysis, e.action_result, str(e)

    if not analyzer.flush(timeout=FLUSH_TIMEOUT_SECONDS):
        logger.warning("Ledger and alert work still pending after task", extra=log_extra)

    return {
        "analysis": analysis.model_dump(mode="json"),
        "action_result": action_result.model_dump(mode="json"),
        "error": error,
    }


def submit_samples(promoter_id: str, campaign_id: str, samples: list[dict]):
    """Enqueue an analysis on the queue that owns the key."""
    return analyze_samples.apply_async(
        args=(promoter_id, campaign_id, samples),
        queue=queue_for_key(promoter_id, campaign_id),
    )


@celery_app.task(
    bind=True,
    name="promoguard_worker.tasks.export_daily_report",
    autoretry_for=(LedgerUnavailableError,),
    max_retries=3,
    retry_backoff=True,
    retry_backoff_max=600,
    retry_jitter=True,
)
def export_daily_report(self, day: Optional[str] = None) -> str:
    """Export the report for ``day`` (ISO date), defaulting to yesterday."""
    target = date.fromisoformat(day) if day else utcnow().date() - timedelta(days=1)
    report = get_analyzer().generate_daily_summary(target)
    return str(export_report(report, get_settings().report_path))


@celery_app.task(
    bind=True,
    name="promoguard_worker.tasks.export_weekly_report",
    autoretry_for=(LedgerUnavailableError,),
    max_retries=3,
    retry_backoff=True,
    retry_backoff_max=600,
    retry_jitter=True,
)
def export_weekly_report(self, week_start: Optional[str] = None) -> str:
    """Export the week starting ``week_start``, defaulting to the previous Monday-based week."""
    if week_start:
        start = date.fromisoformat(week_start)
    else:
        today = utcnow().date()
        start = today - timedelta(days=today.weekday() + 7)
    report = get_analyzer().generate_weekly_summary(start)
    return str(export_report(report, get_settings().report_path))


@celery_app.task(
    bind=True,
    name="promoguard_worker.tasks.export_monthly_report",
    autoretry_for=(LedgerUnavailableError,),
    max_retries=3,
    retry_backoff=True,
    retry_backoff_max=600,
    retry_jitter=True,
)
def export_monthly_report(self, month: Optional[int] = None, year: Optional[int] = None) -> str:
    """Export a month, defaulting to the previous calendar month."""
    if month is None or year is None:
        first_of_month = utcnow().date().replace(day=1)
        previous = first_of_month - timedelta(days=1)
        month, year = previous.month, previous.year
    report = get_analyzer().generate_monthly_summary(month, year)
    return str(export_report(report, get_settings().report_path))


@celery_app.task(name="promoguard_worker.tasks.prune_retention")
def prune_retention() -> dict:
    """Evict expired samples and prune alert windows."""
    analyzer = get_analyzer()
    result = {
        "samples_evicted": analyzer.evict_expired(),
        "alert_entries_pruned": analyzer.prune_alert_windows(),
    }
    logger.info("Retention pruning complete", extra=result)
    return result
