"""
Celery Application Configuration
"""
from celery import Celery

from inbox.core.config import settings

celery_app = Celery(
    "inbox",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["inbox.workers.tasks"]
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=300,  # 5 minutes
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
)

# Beat schedule for periodic tasks
celery_app.conf.beat_schedule = {
    # markers שפג תוקפם (24 שעות) ו-OAuth states שפגו
    "sweep-expired-state-hourly": {
        "task": "inbox.workers.tasks.sweep_expired_state",
        "schedule": 3600.0,  # שעה
    },
}
