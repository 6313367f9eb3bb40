"""
Celery application: broker and result backend from settings.
Tasks are in app.workers.tasks (generation, notifications, watchdog).
"""
from celery import Celery
from celery.schedules import crontab

from app.core.config import settings

celery_app = Celery(
    "app",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "app.workers.tasks.generation",
        "app.workers.tasks.notifications",
        "app.workers.tasks.watchdog",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_track_started=True,
    task_time_limit=3600,
    result_expires=86400,
    beat_schedule={
        "process-scheduled-notifications": {
            "task": "app.workers.tasks.notifications.process_scheduled",
            "schedule": crontab(minute="*"),
        },
        "cleanup-old-notifications": {
            "task": "app.workers.tasks.notifications.cleanup",
            "schedule": crontab(hour="3", minute="0"),
        },
        "fail-stuck-generations": {
            "task": "app.workers.tasks.watchdog.fail_stuck_generations",
            "schedule": crontab(minute="*/5"),
        },
    },
)

celery_app.conf.task_routes = {
    "app.workers.tasks.generation.generate_image": {"queue": "generation"},
}

celery_app.autodiscover_tasks(["app.workers.tasks"])
