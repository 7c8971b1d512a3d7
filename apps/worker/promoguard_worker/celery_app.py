"""Celery application configuration.

Each ``analysis.shard-<n>`` queue must be consumed by exactly one worker
running with ``--concurrency=1`` so analyses for a key stay in order:

    celery -A promoguard_worker.celery_app worker -Q analysis.shard-0 --concurrency=1
"""

from celery import Celery
from celery.schedules import crontab
from celery.signals import setup_logging

from promoguard_engine.logging_config import configure_logging
from promoguard_engine.settings import get_settings
from promoguard_worker.routing import route_task

settings = get_settings()

celery_app = Celery(
    "promoguard_worker",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=30 * 60,  # 30 minutes
    task_soft_time_limit=25 * 60,  # 25 minutes
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_routes=(route_task,),
    beat_schedule={
        "export-daily-report": {
            "task": "promoguard_worker.tasks.export_daily_report",
            "schedule": crontab(hour=0, minute=15),
        },
        "export-weekly-report": {
            "task": "promoguard_worker.tasks.export_weekly_report",
            "schedule": crontab(hour=0, minute=30, day_of_week=1),
        },
        "export-monthly-report": {
            "task": "promoguard_worker.tasks.export_monthly_report",
            "schedule": crontab(hour=1, minute=0, day_of_month=1),
        },
        "prune-retention": {
            "task": "promoguard_worker.tasks.prune_retention",
            "schedule": crontab(minute=5),
        },
    },
)


@setup_logging.connect
def _setup_logging(**kwargs):
    configure_logging(settings)


# Import tasks to register them with Celery
# This must be done after celery_app is created
from promoguard_worker import tasks  # noqa: F401, E402
