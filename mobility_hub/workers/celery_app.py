"""
Celery Application Configuration
"""
from celery import Celery

from mobility_hub.core.config import settings

celery_app = Celery(
    "mobility_hub",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["mobility_hub.workers.tasks"]
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="Africa/Kigali",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=300,  # 5 minutes
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
)

# Beat schedule for periodic tasks
celery_app.conf.beat_schedule = {
    # sweep for rows the request's background task did not deliver
    "process-outbox-every-10-seconds": {
        "task": "mobility_hub.workers.tasks.process_outbox_messages",
        "schedule": 10.0,
    },
    "reset-idle-sessions-every-15-minutes": {
        "task": "mobility_hub.workers.tasks.reset_idle_sessions",
        "schedule": 900.0,
    },
    "release-stalled-commands-every-minute": {
        "task": "mobility_hub.workers.tasks.release_stalled_commands",
        "schedule": 60.0,
    },
    "purge-dedup-records-hourly": {
        "task": "mobility_hub.workers.tasks.purge_dedup_records",
        "schedule": 3600.0,
    },
    "cleanup-old-outbox-messages-daily": {
        "task": "mobility_hub.workers.tasks.cleanup_old_outbox_messages",
        "schedule": 86400.0,  # 24 hours
    },
    "emit-operational-metrics-every-5-minutes": {
        "task": "mobility_hub.workers.tasks.emit_operational_metrics",
        "schedule": 300.0,
    },
}
