"""
Celery application configuration.

Redis is the broker and result backend. The worker runs periodic
maintenance (expired pending confirmations); request handling never
depends on Celery being up.
"""

from celery import Celery
from celery.schedules import crontab
from fansite.core.config import settings

# Create Celery instance
celery_app = Celery(
    "fansite_worker",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL
)

# Configure Celery
celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # Timezone
    timezone="UTC",
    enable_utc=True,

    # Task behavior
    task_track_started=True,
    task_time_limit=120,
    task_soft_time_limit=90,

    # Result backend
    result_expires=3600,  # Results expire after 1 hour

    # Worker behavior
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=100,

    beat_schedule={
        "cleanup-expired-pending-subscriptions": {
            "task": "cleanup_expired_pending_subscriptions",
            "schedule": crontab(minute=0),  # Hourly
        },
    },
)

# Auto-discover tasks from fansite.tasks
celery_app.autodiscover_tasks(["fansite"])
