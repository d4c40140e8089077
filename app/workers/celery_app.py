"""
Celery application configuration.
"""

from celery import Celery
from celery.schedules import crontab

from app.config import settings

# Create Celery app
celery_app = Celery(
    "barbershop_payments",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "app.workers.expire_pending",
    ],
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone=settings.local_timezone,
    enable_utc=True,
    task_track_started=True,
    task_time_limit=300,  # 5 minutes
    worker_prefetch_multiplier=1,
    task_acks_late=True,
)

# Beat schedule for periodic tasks
celery_app.conf.beat_schedule = {
    # Abandoned checkouts give their queue positions back
    "expire-stale-pending-appointments": {
        "task": "app.workers.expire_pending.expire_stale_pending_appointments",
        "schedule": crontab(minute="*/10"),
    },
}
