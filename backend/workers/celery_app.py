from celery import Celery
from celery.schedules import crontab
from kombu import Queue

from app.core.config import settings

celery_app = Celery(
    "platform_ops",
    broker=settings.cache_redis_url,
    backend=settings.cache_redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_default_queue="platform_ops",
    task_queues=(Queue("platform_ops"),),
    task_routes={
        "workers.tasks.*": {"queue": "platform_ops"},
    },
    beat_schedule={
        "platform-usage-daily-at-midnight": {
            "task": "workers.tasks.record_daily_platform_usage",
            "schedule": crontab(minute=0, hour=0),
            "options": {"queue": "platform_ops"},
        },
    },
)

celery_app.autodiscover_tasks(["workers"])
