"""
ImageService: AI image generation requests and the user's image gallery.

generate() validates and prices against the effective provider, creates the
Image and the spend entry in one commit, then hands the job to the worker
(app.workers.tasks.generation.generate_image) with the provider name, so the
worker never depends on process-wide provider state.
"""
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy.orm import Session

from app.core.celery_app import celery_app
from app.core.config import settings
from app.core.errors import BadRequestError, InsufficientTokensError, NotFoundError
from app.models.image import Image, STATUS_COMPLETED, STATUS_FAILED, STATUS_GENERATING
from app.models.user import User
from app.services.app_settings.settings_service import AppSettingsService
from app.services.audit.service import AuditService
from app.services.image_generation import (
    ImageGenerationError,
    ImageGenerationProvider,
    ImageGenerationRequest,
    ImageProviderFactory,
    generate_with_retry,
)
from app.services.ledger.service import LedgerService, RequestContext
from app.services.notifications.service import NotificationService
from app.storage import Storage, StorageError, generate_key, get_storage
from app.utils.metrics import (
    generation_duration_seconds,
    images_completed_total,
    images_failed_total,
    images_requested_total,
)
from app.utils.thumbnails import make_thumbnail

logger = logging.getLogger(__name__)

GENERATE_TASK = "app.workers.tasks.generation.generate_image"


def spend_description(prompt: str) -> str:
    return f'AI Image Generation: "{prompt[:50]}{"..." if len(prompt) > 50 else ""}"'


class ImageService:
    def __init__(self, db: Session, storage: Storage | None = None):
        self.db = db
        self._storage = storage
        self.app_settings = AppSettingsService(db)

    @property
    def storage(self) -> Storage:
        if self._storage is None:
            self._storage = get_storage()
        return self._storage

    # ------------------------------------------------------------------
    # Providers
    # ------------------------------------------------------------------

    def effective_provider_name(self) -> str:
        return self.app_settings.get_effective_provider(settings)

    def build_provider(self, name: str | None = None) -> ImageGenerationProvider:
        """Fresh provider instance for `name` (default: the effective provider)."""
        try:
            return ImageProviderFactory.create_from_settings(settings, name or self.effective_provider_name())
        except ValueError as e:
            raise BadRequestError(str(e)) from e

    def providers_info(self) -> dict[str, Any]:
        current = self.effective_provider_name()
        providers = []
        for name in ImageProviderFactory.get_available_providers():
            provider = self.build_provider(name)
            info = provider.get_info()
            info["is_current"] = name == current
            info["available"] = provider.is_available()
            providers.append(info)
        return {"providers": providers, "current_provider": current}

    def provider_status(self) -> dict[str, Any]:
        return self.build_provider().get_status()

    def switch_provider(self, name: str, admin: User) -> dict[str, Any]:
        """Persist the admin override once the provider can actually be built and is configured."""
        name = (name or "").strip().lower()
        if not name:
            raise BadRequestError("Provider name is required")
        provider = self.build_provider(name)
        if not provider.is_available():
            raise BadRequestError(f"Provider '{name}' is not configured")
        previous = self.effective_provider_name()
        self.app_settings.set_image_provider(name, updated_by=admin.id)
        AuditService(self.db).log(
            actor_type="admin",
            actor_id=admin.id,
            action="image_provider_switched",
            entity_type="app_settings",
            entity_id="1",
            payload={"from": previous, "to": name},
        )
        logger.info("image_provider_switched", extra={"user_id": admin.id, "provider": name})
        return {"message": f"Switched to {name} provider", "current_provider": name}

    def test_provider(self, name: str) -> dict[str, Any]:
        """Probe a throwaway instance; the effective provider is left untouched."""
        name = (name or "").strip().lower()
        if not name:
            raise BadRequestError("Provider name is required")
        try:
            provider = ImageProviderFactory.create_from_settings(settings, name)
            status = provider.get_status()
        except Exception as e:
            logger.warning("image_provider_test_failed", extra={"provider": name, "error": str(e)})
            return {"success": False, "provider": name, "error": str(e)}
        return {"success": True, "provider": name, "status": status}

    def models(self) -> list[dict[str, Any]]:
        return self.build_provider().get_available_models()

    def pricing(self) -> dict[str, Any]:
        return self.build_provider().get_pricing()

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def generate(
        self,
        user: User,
        prompt: Any,
        style: str | None = None,
        size: str | None = None,
        model: str | None = None,
        quality: str | None = None,
        context: RequestContext | None = None,
    ) -> dict[str, Any]:
        style = style or settings.default_image_style
        size = size or settings.default_image_size
        provider = self.build_provider()

        valid, error = provider.validate_prompt(prompt)
        if not valid:
            raise BadRequestError(error)
        prompt = prompt.strip()

        cost = provider.calculate_token_cost(size=size, style=style, model=model, quality=quality)

        image = Image(
            user_id=user.id,
            prompt=prompt,
            status=STATUS_GENERATING,
            tokens_used=cost,
            provider=provider.name,
            meta={"style": style, "size": size, "model": model, "quality": quality},
        )
        self.db.add(image)
        self.db.flush()

        try:
            _, new_balance = LedgerService(self.db).spend(
                user.id,
                cost,
                spend_description(prompt),
                "ai_generation",
                ai_provider=provider.name,
                generation_type="text_to_image",
                image_count=1,
                image_size=size,
                prompt=prompt,
                image_id=image.id,
                meta={"style": style, "model": model, "quality": quality},
                context=context,
                commit=False,
            )
        except InsufficientTokensError:
            self.db.rollback()
            available = LedgerService(self.db).get_balance(user.id)
            raise InsufficientTokensError(f"Insufficient tokens. Required: {cost}, Available: {available}")

        self.db.commit()
        images_requested_total.labels(provider=provider.name).inc()
        celery_app.send_task(GENERATE_TASK, args=[image.id, provider.name])
        logger.info(
            "image_generation_queued",
            extra={"user_id": user.id, "image_id": image.id, "provider": provider.name, "tokens": cost},
        )
        return {
            "message": "Image generation started",
            "image_id": image.id,
            "tokens_used": cost,
            "new_balance": new_balance,
            "provider": provider.name,
        }

    # ------------------------------------------------------------------
    # Gallery
    # ------------------------------------------------------------------

    def list_for_user(self, user_id: str, page: int = 1, limit: int = 12) -> tuple[list[Image], int]:
        q = self.db.query(Image).filter(Image.user_id == user_id)
        total = q.count()
        rows = q.order_by(Image.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
        return rows, total

    def get(self, image_id: str, user_id: str) -> Image:
        image = self.db.query(Image).filter(Image.id == image_id, Image.user_id == user_id).one_or_none()
        if not image:
            raise NotFoundError("Image not found")
        return image

    def delete(self, image_id: str, user_id: str) -> None:
        """Stored objects first (failures only logged), then the row."""
        image = self.get(image_id, user_id)
        for key in (image.storage_key, image.thumbnail_key):
            if key and not self.storage.delete(key):
                logger.warning("image_object_delete_failed", extra={"image_id": image.id})
        self.db.delete(image)
        self.db.commit()
        logger.info("image_deleted", extra={"user_id": user_id, "image_id": image_id})

    def status(self, image_id: str, user_id: str) -> dict[str, Any]:
        image = self.get(image_id, user_id)
        return {"status": image.status, "image_url": image.image_url, "thumbnail_url": image.thumbnail_url}

    # ------------------------------------------------------------------
    # Worker side
    # ------------------------------------------------------------------

    def run_generation(self, image_id: str, provider_name: str) -> dict[str, Any]:
        """
        Execute a queued generation with the provider chosen at request time.
        Only images still `generating` are processed, so a redelivered task is a no-op.
        """
        image = self.db.query(Image).filter(Image.id == image_id).one_or_none()
        if not image:
            logger.error("image_not_found", extra={"image_id": image_id})
            return {"ok": False, "error": "image_not_found"}
        if image.status != STATUS_GENERATING:
            return {"ok": True, "image_id": image_id, "status": image.status, "skipped": True}

        meta = dict(image.meta or {})
        started = time.monotonic()
        try:
            provider = ImageProviderFactory.create_from_settings(settings, provider_name)
            result = generate_with_retry(
                provider,
                ImageGenerationRequest(
                    prompt=image.prompt,
                    model=meta.get("model"),
                    size=meta.get("size"),
                    style=meta.get("style"),
                    quality=meta.get("quality"),
                ),
                settings,
            )
            image_url, thumbnail_url = result.image_url, result.thumbnail_url
            storage_key = thumbnail_key = None
            if result.image_content:
                stored = self.storage.upload(
                    generate_key(f"{image.id}.png", folder=f"ai-images/{image.user_id}"),
                    result.image_content,
                    "image/png",
                    metadata={"generated_by": "AI", "user_id": image.user_id},
                )
                thumb = self.storage.upload(
                    generate_key(f"{image.id}.png", folder=f"ai-images/{image.user_id}/thumbnails"),
                    make_thumbnail(result.image_content),
                    "image/png",
                    metadata={"generated_by": "AI", "user_id": image.user_id},
                )
                image_url, storage_key = stored.url, stored.key
                thumbnail_url, thumbnail_key = thumb.url, thumb.key
        except (ImageGenerationError, StorageError, ValueError) as e:
            return self.fail(image, str(e), getattr(e, "detail", {}))
        finally:
            generation_duration_seconds.labels(provider=provider_name).observe(time.monotonic() - started)

        # Requested options win over what the provider reports back
        for key, value in result.metadata.items():
            if value is not None and meta.get(key) is None:
                meta[key] = value
        meta["model"] = meta.get("model") or result.model
        image.image_url = image_url
        image.thumbnail_url = thumbnail_url
        image.storage_key = storage_key
        image.thumbnail_key = thumbnail_key
        image.status = STATUS_COMPLETED
        image.meta = meta
        user = self.db.query(User).filter(User.id == image.user_id).one_or_none()
        if user:
            user.bump_stat("total_images_generated")
            self.db.add(user)
        self.db.add(image)
        self.db.commit()
        images_completed_total.labels(provider=provider_name).inc()
        logger.info("image_generation_completed", extra={"image_id": image.id, "user_id": image.user_id, "provider": provider_name})

        notifications = NotificationService(self.db)
        notifications.image_generated(image.user_id, [image.id])
        if user and (user.tokens or 0) <= settings.low_token_threshold:
            notifications.low_tokens(user.id, user.tokens or 0)
        return {"ok": True, "image_id": image.id, "status": image.status}

    def fail(self, image: Image, error: str, detail: dict | None = None) -> dict[str, Any]:
        """Mark the image failed; the debit is refunded once when REFUND_FAILED_GENERATIONS is on."""
        detail = detail or {}
        meta = dict(image.meta or {})
        meta["error"] = error
        image.meta = meta
        image.status = STATUS_FAILED
        self.db.add(image)
        self.db.commit()
        images_failed_total.labels(
            provider=image.provider or "unknown",
            failure_type=detail.get("failure_type", "unknown"),
        ).inc()
        logger.warning(
            "image_generation_failed",
            extra={"image_id": image.id, "user_id": image.user_id, "provider": image.provider, "error": error},
        )
        refunded = False
        if settings.refund_failed_generations:
            refunded = LedgerService(self.db).refund_image(image, reason=detail.get("failure_type") or "generation_failed") is not None
        return {"ok": False, "image_id": image.id, "status": image.status, "error": error, "refunded": refunded}

    def fail_stuck(self, older_than_minutes: int | None = None) -> int:
        """Fail images left `generating` longer than the threshold (lost worker, crashed task)."""
        minutes = older_than_minutes or settings.generation_stuck_minutes
        cutoff = datetime.now(timezone.utc) - timedelta(minutes=minutes)
        stuck = (
            self.db.query(Image)
            .filter(Image.status == STATUS_GENERATING, Image.created_at < cutoff)
            .all()
        )
        for image in stuck:
            self.fail(image, "Generation timed out", {"failure_type": "stuck"})
        if stuck:
            logger.warning("stuck_generations_failed", extra={"amount": len(stuck)})
        return len(stuck)
