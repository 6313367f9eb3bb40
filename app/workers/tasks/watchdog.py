"""
Celery beat task: fail images stuck in 'generating' (lost or crashed generation task).
Failing goes through ImageService.fail, so the debit is refunded once.
"""
import logging

from app.core.celery_app import celery_app
from app.db.session import SessionLocal
from app.services.images.service import ImageService

logger = logging.getLogger(__name__)


@celery_app.task(
    name="app.workers.tasks.watchdog.fail_stuck_generations",
    time_limit=60,
    soft_time_limit=55,
)
def fail_stuck_generations() -> dict:
    db = SessionLocal()
    try:
        return {"ok": True, "failed_count": ImageService(db).fail_stuck()}
    finally:
        db.close()
