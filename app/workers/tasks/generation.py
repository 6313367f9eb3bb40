"""
Celery task: run a queued image generation.
API calls: send_task("app.workers.tasks.generation.generate_image", args=[image_id, provider_name]).
"""
import logging

from sqlalchemy.orm import Session

from app.core.celery_app import celery_app
from app.db.session import SessionLocal
from app.services.images.service import ImageService

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, name="app.workers.tasks.generation.generate_image")
def generate_image(self, image_id: str, provider_name: str) -> dict:
    """
    Generate with the provider fixed at request time, store the result and
    mark the image completed, or failed (with refund) on provider errors.
    """
    db: Session = SessionLocal()
    try:
        return ImageService(db).run_generation(image_id, provider_name)
    finally:
        db.close()
