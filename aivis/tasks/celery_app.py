from celery import Celery
from celery.schedules import crontab

from aivis.core.config import settings
from aivis.core.sentry import init_sentry

init_sentry()

celery_app = Celery(
    "aivis_metrics",
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
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    broker_connection_retry_on_startup=True,
)

# Celery Beat schedule: nightly citation repair for every user
celery_app.conf.beat_schedule = {
    "reprocess-citations-daily": {
        "task": "reprocess_citations",
        "schedule": crontab(hour=settings.reprocess_hour, minute=0),
    },
}

celery_app.conf.include = [
    "aivis.tasks.maintenance_tasks",
]
