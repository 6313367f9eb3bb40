"""Tests for UserService: registration, login, profile and avatar handling."""
from datetime import date

import pytest

from app.core.errors import BadRequestError, NotFoundError
from app.models.image import Image, STATUS_COMPLETED, STATUS_FAILED
from app.models.notification import Notification
from app.services.auth.jwt import decode_access_token, verify_password
from app.services.notifications.service import DELIVER_TASK
from app.services.users.service import UserService
from app.storage.local import LocalStorage


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(str(tmp_path), "http://testserver/media")


@pytest.fixture
def service(db, storage):
    return UserService(db, storage=storage)


class TestRegistration:
    def test_register_issues_token(self, service):
        user, token = service.register("Ann", "ann", "ANN@example.com", "secret123")
        assert user.email == "ann@example.com"
        assert user.tokens == 0
        assert decode_access_token(token)["sub"] == user.id
        assert verify_password("secret123", user.password_hash)

    def test_missing_fields(self, service):
        with pytest.raises(BadRequestError, match="required"):
            service.register("", "ann", "ann@example.com", "secret123")

    def test_authenticate_deactivated(self, service, make_user):
        make_user(username="bob", password="hunter22", is_active=False)
        with pytest.raises(BadRequestError, match="deactivated"):
            service.authenticate("bob", "hunter22")

    def test_authenticate_sets_last_login(self, service, make_user):
        make_user(username="bob", password="hunter22")
        user, _ = service.authenticate("bob", "hunter22")
        assert user.last_login is not None


class TestProfile:
    def test_update_merges_nested_preferences(self, service, make_user):
        user = make_user()
        service.update_profile(
            user,
            {"bio": "Painter", "date_of_birth": "1990-05-01"},
            social_links={"github": "ann", "myspace": "nope"},
            preferences={"theme": "dark", "ai_preferences": {"default_style": "anime"}},
        )
        assert user.bio == "Painter"
        assert user.date_of_birth == date(1990, 5, 1)
        assert user.social_links == {"github": "ann"}
        assert user.preferences["theme"] == "dark"
        assert user.preferences["language"] == "en"
        assert user.preferences["ai_preferences"]["default_style"] == "anime"
        assert user.preferences["ai_preferences"]["default_size"] == "512x512"

    def test_change_password(self, service, make_user):
        user = make_user(password="oldpass1")
        with pytest.raises(BadRequestError, match="Current password is incorrect"):
            service.change_password(user, "wrong1", "newpass1")
        with pytest.raises(BadRequestError, match="at least 6"):
            service.change_password(user, "oldpass1", "123")
        service.change_password(user, "oldpass1", "newpass1")
        assert verify_password("newpass1", user.password_hash)

    def test_password_change_sends_security_alert(self, db, service, make_user, send_task):
        user = make_user(password="oldpass1")
        service.change_password(user, "oldpass1", "newpass1", ip_address="203.0.113.7")

        alert = db.query(Notification).filter(Notification.category == "security").one()
        assert alert.priority == "high"
        assert alert.data["ip_address"] == "203.0.113.7"
        assert alert.meta["send_email"] is True
        send_task.assert_called_once_with(DELIVER_TASK, args=[alert.id], countdown=None)

    def test_public_profile_counts_completed_images(self, db, service, make_user):
        user = make_user(bio="hi")
        db.add_all([
            Image(user_id=user.id, prompt="a", status=STATUS_COMPLETED),
            Image(user_id=user.id, prompt="b", status=STATUS_FAILED),
        ])
        db.commit()
        profile = service.public_profile(user.id)
        assert profile["total_images_generated"] == 1
        assert "email" not in profile

    def test_public_profile_hides_inactive(self, service, make_user):
        user = make_user(is_active=False)
        with pytest.raises(NotFoundError):
            service.public_profile(user.id)


class TestAvatar:
    def test_replacing_avatar_deletes_previous(self, service, storage, make_user):
        user = make_user()
        first = service.upload_avatar(user, "me.PNG", b"one", "image/png")
        second = service.upload_avatar(user, "me2.png", b"two", "image/png")

        assert first["key"].startswith("avatars/")
        assert first["key"].endswith(".png")
        assert not (storage.base_path / first["key"]).exists()
        assert (storage.base_path / second["key"]).read_bytes() == b"two"
        assert user.avatar_url == second["url"]

    def test_non_image_rejected(self, service, make_user):
        with pytest.raises(BadRequestError, match="Only image files"):
            service.upload_avatar(make_user(), "a.pdf", b"x", "application/pdf")

    def test_delete_without_avatar(self, service, make_user):
        with pytest.raises(BadRequestError, match="No avatar to delete"):
            service.delete_avatar(make_user())
