"""Tests for ImageService: request-time debit, worker execution, refunds and provider admin."""
import io
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from PIL import Image as PILImage

from app.core.errors import BadRequestError, InsufficientTokensError, NotFoundError
from app.models.audit_log import AuditLog
from app.models.image import Image, STATUS_COMPLETED, STATUS_FAILED, STATUS_GENERATING
from app.models.notification import Notification
from app.models.token_transaction import TokenTransaction, TYPE_REFUND, TYPE_SPEND
from app.services.image_generation import ImageGenerationError, ImageGenerationResponse
from app.services.images.service import GENERATE_TASK, ImageService, spend_description
from app.storage.local import LocalStorage


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(str(tmp_path), "http://testserver/media")


@pytest.fixture
def service(db, storage):
    return ImageService(db, storage=storage)


def _png(size=(600, 400)) -> bytes:
    out = io.BytesIO()
    PILImage.new("RGB", size, (200, 10, 10)).save(out, "PNG")
    return out.getvalue()


class TestGenerate:
    def test_debit_and_queue(self, db, service, make_user, send_task):
        user = make_user(tokens=20)

        result = service.generate(user, "  a red fox in snow  ", style="artistic", size="1024x1024")

        assert result["tokens_used"] == 11
        assert result["new_balance"] == 9
        assert result["provider"] == "mock"
        image = db.query(Image).one()
        assert image.status == STATUS_GENERATING
        assert image.prompt == "a red fox in snow"
        tx = db.query(TokenTransaction).one()
        assert tx.type == TYPE_SPEND
        assert tx.image_id == image.id
        assert tx.description == 'AI Image Generation: "a red fox in snow"'
        send_task.assert_called_once_with(GENERATE_TASK, args=[image.id, "mock"])

    def test_insufficient_balance_leaves_nothing_behind(self, db, service, make_user, send_task):
        user = make_user(tokens=3)

        with pytest.raises(InsufficientTokensError) as exc:
            service.generate(user, "a red fox")

        assert exc.value.message == "Insufficient tokens. Required: 5, Available: 3"
        assert db.query(Image).count() == 0
        assert db.query(TokenTransaction).count() == 0
        send_task.assert_not_called()

    def test_invalid_prompt(self, db, service, make_user):
        user = make_user(tokens=20)
        with pytest.raises(BadRequestError, match="at least 3"):
            service.generate(user, "ab")
        assert db.query(Image).count() == 0

    def test_defaults_from_settings(self, db, service, make_user):
        user = make_user(tokens=20)
        service.generate(user, "a red fox")
        meta = db.query(Image).one().meta
        assert meta["style"] == "realistic"
        assert meta["size"] == "512x512"

    def test_admin_override_used_for_new_requests(self, db, service, make_user, admin, send_task):
        with patch("app.services.images.service.settings.openai_api_key", "sk-test"):
            service.switch_provider("openai", admin)
            user = make_user(tokens=20)
            result = service.generate(user, "a red fox")
        assert result["provider"] == "openai"
        assert result["tokens_used"] == 5  # dall-e-3 has no 512x512 price, base cost applies
        assert send_task.call_args.kwargs["args"][1] == "openai"


def test_spend_description_truncates_long_prompts():
    assert spend_description("x" * 60) == f'AI Image Generation: "{"x" * 50}..."'


class TestRunGeneration:
    def _queued(self, db, user, tokens_used=5):
        image = Image(user_id=user.id, prompt="a red fox", status=STATUS_GENERATING, tokens_used=tokens_used,
                      provider="mock", meta={"style": "realistic", "size": "512x512", "model": None})
        db.add(image)
        db.commit()
        return image

    @patch("app.services.images.service.generate_with_retry")
    def test_hosted_result(self, run, db, service, make_user):
        user = make_user(tokens=50)
        image = self._queued(db, user)
        run.return_value = ImageGenerationResponse(
            model="mock-realistic", provider="mock",
            image_url="https://picsum.photos/512/512", thumbnail_url="https://picsum.photos/256/256",
            metadata={"processing_time_ms": 3, "style": "ignored"},
        )

        result = service.run_generation(image.id, "mock")

        assert result["status"] == STATUS_COMPLETED
        db.refresh(image)
        assert image.image_url == "https://picsum.photos/512/512"
        assert image.storage_key is None
        assert image.meta["model"] == "mock-realistic"
        assert image.meta["style"] == "realistic"
        db.refresh(user)
        assert user.stats["total_images_generated"] == 1
        assert db.query(Notification).filter(Notification.category == "image_generation").count() == 1

    @patch("app.services.images.service.generate_with_retry")
    def test_bytes_are_stored_with_thumbnail(self, run, db, service, storage, make_user):
        user = make_user(tokens=50)
        image = self._queued(db, user)
        run.return_value = ImageGenerationResponse(
            model="dall-e-3", provider="openai", image_content=_png(), image_url="https://cdn/tmp.png",
        )

        service.run_generation(image.id, "openai")

        db.refresh(image)
        assert image.storage_key.startswith(f"ai-images/{user.id}/")
        assert image.thumbnail_key.startswith(f"ai-images/{user.id}/thumbnails/")
        assert image.image_url == storage.url_for(image.storage_key)
        thumb = PILImage.open(io.BytesIO((storage.base_path / image.thumbnail_key).read_bytes()))
        assert max(thumb.size) == 256

    @patch("app.services.images.service.generate_with_retry")
    def test_failure_refunds_once(self, run, db, service, make_user):
        user = make_user(tokens=0)
        image = self._queued(db, user, tokens_used=7)
        run.side_effect = ImageGenerationError("provider down", {"failure_type": "transport_transient"})

        result = service.run_generation(image.id, "mock")

        assert result["refunded"] is True
        db.refresh(image)
        assert image.status == STATUS_FAILED
        assert image.meta["error"] == "provider down"
        db.refresh(user)
        assert user.tokens == 7

        # A second failure report for the same image never refunds again
        assert service.fail(image, "again")["refunded"] is False
        assert db.query(TokenTransaction).filter(TokenTransaction.type == TYPE_REFUND).count() == 1

    @patch("app.services.images.service.generate_with_retry")
    def test_no_refund_when_disabled(self, run, db, service, make_user):
        user = make_user(tokens=0)
        image = self._queued(db, user)
        run.side_effect = ImageGenerationError("boom")
        with patch("app.services.images.service.settings.refund_failed_generations", False):
            result = service.run_generation(image.id, "mock")
        assert result["refunded"] is False
        db.refresh(user)
        assert user.tokens == 0

    @patch("app.services.images.service.generate_with_retry")
    def test_redelivered_task_is_noop(self, run, db, service, make_user):
        user = make_user()
        image = self._queued(db, user)
        image.status = STATUS_COMPLETED
        db.commit()
        assert service.run_generation(image.id, "mock")["skipped"] is True
        run.assert_not_called()

    @patch("app.services.images.service.generate_with_retry")
    def test_low_balance_notification(self, run, db, service, make_user):
        user = make_user(tokens=2)
        image = self._queued(db, user)
        run.return_value = ImageGenerationResponse(model="m", provider="mock", image_url="https://x/1.png")
        service.run_generation(image.id, "mock")
        assert db.query(Notification).filter(Notification.category == "token").count() == 1

    def test_stuck_generations_failed(self, db, service, make_user):
        user = make_user(tokens=0)
        old = self._queued(db, user)
        old.created_at = datetime.now(timezone.utc) - timedelta(hours=1)
        fresh = self._queued(db, user)
        db.commit()

        assert service.fail_stuck(older_than_minutes=15) == 1
        db.refresh(old)
        db.refresh(fresh)
        assert old.status == STATUS_FAILED
        assert fresh.status == STATUS_GENERATING


class TestGallery:
    def test_owner_scoping(self, db, service, make_user):
        owner = make_user()
        other = make_user()
        image = Image(user_id=owner.id, prompt="p", status=STATUS_COMPLETED)
        db.add(image)
        db.commit()
        with pytest.raises(NotFoundError, match="Image not found"):
            service.get(image.id, other.id)
        assert service.status(image.id, owner.id)["status"] == STATUS_COMPLETED

    def test_delete_removes_objects(self, db, service, storage, make_user):
        user = make_user()
        stored = storage.upload("ai-images/x/a.png", b"1", "image/png")
        thumb = storage.upload("ai-images/x/thumbnails/a.png", b"2", "image/png")
        image = Image(user_id=user.id, prompt="p", status=STATUS_COMPLETED,
                      storage_key=stored.key, thumbnail_key=thumb.key)
        db.add(image)
        db.commit()

        service.delete(image.id, user.id)

        assert db.query(Image).count() == 0
        assert not (storage.base_path / stored.key).exists()
        assert not (storage.base_path / thumb.key).exists()


class TestProviderAdmin:
    def test_switch_requires_configured_provider(self, db, service, admin):
        with patch("app.services.images.service.settings.openai_api_key", ""):
            with pytest.raises(BadRequestError, match="not configured"):
                service.switch_provider("openai", admin)

    def test_switch_unknown_provider(self, service, admin):
        with pytest.raises(BadRequestError):
            service.switch_provider("dalle-99", admin)

    def test_switch_is_audited(self, db, service, admin):
        service.switch_provider("mock", admin)
        entry = db.query(AuditLog).filter(AuditLog.action == "image_provider_switched").one()
        assert entry.payload == {"from": "mock", "to": "mock"}

    def test_provider_check_failure_reported(self, service):
        result = service.test_provider("dalle-99")
        assert result["success"] is False

    def test_providers_info_marks_current(self, service):
        info = service.providers_info()
        assert info["current_provider"] == "mock"
        current = [p["name"] for p in info["providers"] if p["is_current"]]
        assert current == ["mock"]
