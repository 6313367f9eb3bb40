"""
Notification delivery tasks.
deliver_notification retries failed channel deliveries until the attempt ceiling.
"""
import logging
from datetime import datetime

from sqlalchemy.orm import Session

from app.core.celery_app import celery_app
from app.core.config import settings
from app.db.session import SessionLocal
from app.models.notification import Notification, STATUS_PENDING
from app.services.notifications.service import NotificationService

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, name="app.workers.tasks.notifications.deliver_notification")
def deliver_notification(self, notification_id: str) -> dict:
    db: Session = SessionLocal()
    try:
        notification = db.query(Notification).filter(Notification.id == notification_id).one_or_none()
        if not notification:
            logger.error("notification_not_found", extra={"notification_id": notification_id})
            return {"ok": False, "error": "notification_not_found"}

        svc = NotificationService(db)
        result = svc.deliver(notification)
        if result["status"] == STATUS_PENDING and result["channels"]:
            svc.enqueue_delivery(notification_id, countdown=settings.notification_retry_delay_seconds)
        return {"ok": True, "notification_id": notification_id, **result}
    finally:
        db.close()


@celery_app.task(bind=True, name="app.workers.tasks.notifications.send_bulk")
def send_bulk(self, user_ids: list[str], batch_id: str | None = None, **options) -> dict:
    """Options are NotificationService.send_notification keyword arguments (JSON-safe)."""
    if isinstance(options.get("scheduled_for"), str):
        options["scheduled_for"] = datetime.fromisoformat(options["scheduled_for"])
    db: Session = SessionLocal()
    try:
        result = NotificationService(db).send_bulk(user_ids, batch_id=batch_id, **options)
        logger.info("bulk_notifications_sent", extra={"amount": result["sent"]})
        return result
    finally:
        db.close()


@celery_app.task(name="app.workers.tasks.notifications.process_scheduled", time_limit=120, soft_time_limit=110)
def process_scheduled() -> dict:
    db: Session = SessionLocal()
    try:
        return {"ok": True, "queued": NotificationService(db).process_scheduled()}
    finally:
        db.close()


@celery_app.task(name="app.workers.tasks.notifications.cleanup", time_limit=300, soft_time_limit=290)
def cleanup() -> dict:
    db: Session = SessionLocal()
    try:
        return {"ok": True, "deleted": NotificationService(db).cleanup_old(settings.notification_retention_days)}
    finally:
        db.close()
