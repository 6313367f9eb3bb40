import logging
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import BadRequestError, NotFoundError
from app.models.image import Image, STATUS_COMPLETED
from app.models.user import User, default_preferences
from app.services.auth.jwt import create_access_token, hash_password, verify_password
from app.services.notifications.service import NotificationService
from app.storage import Storage, generate_key, get_storage

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6
PROFILE_FIELDS = ("name", "bio", "website", "location", "phone", "date_of_birth", "gender")
SOCIAL_LINKS = ("twitter", "instagram", "linkedin", "github")


class UserService:
    def __init__(self, db: Session, storage: Storage | None = None):
        self.db = db
        self._storage = storage

    @property
    def storage(self) -> Storage:
        if self._storage is None:
            self._storage = get_storage()
        return self._storage

    def get(self, user_id: str) -> User:
        user = self.db.query(User).filter(User.id == user_id).one_or_none()
        if not user:
            raise NotFoundError("User not found")
        return user

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    def register(self, name: str, username: str, email: str, password: str) -> tuple[User, str]:
        if not name or not username or not email or not password:
            raise BadRequestError("Name, username, email and password are required")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise BadRequestError("Password must be at least 6 characters long")
        email = email.strip().lower()
        username = username.strip()
        taken = (
            self.db.query(User.id)
            .filter(or_(User.email == email, User.username == username))
            .first()
        )
        if taken:
            raise BadRequestError("User with this email or username already exists")

        user = User(name=name.strip(), username=username, email=email, password_hash=hash_password(password))
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)
        logger.info("user_registered", extra={"user_id": user.id})

        NotificationService(self.db).welcome(user.id)
        return user, self.issue_token(user)

    def authenticate(self, login: str, password: str) -> tuple[User, str]:
        """Login by email or username."""
        if not login or not password:
            raise BadRequestError("Login and password are required")
        ident = login.strip()
        user = (
            self.db.query(User)
            .filter(or_(User.email == ident.lower(), User.username == ident))
            .one_or_none()
        )
        if not user or not verify_password(password, user.password_hash):
            raise BadRequestError("Invalid credentials")
        if not user.is_active:
            raise BadRequestError("Account is deactivated")
        user.last_login = datetime.now(timezone.utc)
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)
        return user, self.issue_token(user)

    @staticmethod
    def issue_token(user: User) -> str:
        return create_access_token({"sub": user.id, "role": user.role})

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------

    def update_profile(
        self,
        user: User,
        fields: dict[str, Any],
        social_links: dict[str, Any] | None = None,
        preferences: dict[str, Any] | None = None,
    ) -> User:
        """Only keys present in `fields` are written; social links and preferences are merged."""
        for key in PROFILE_FIELDS:
            if key in fields:
                value = fields[key]
                if key == "date_of_birth" and isinstance(value, str):
                    value = date.fromisoformat(value) if value else None
                setattr(user, key, value)

        if social_links:
            links = dict(user.social_links or {})
            for key in SOCIAL_LINKS:
                if social_links.get(key) is not None:
                    links[key] = social_links[key]
            user.social_links = links

        if preferences:
            user.preferences = _merge_preferences(user.preferences, preferences)

        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)
        return user

    def upload_avatar(self, user: User, filename: str, content: bytes, content_type: str) -> dict[str, str]:
        if not content:
            raise BadRequestError("No avatar file uploaded")
        if not (content_type or "").startswith("image/"):
            raise BadRequestError("Only image files are allowed for avatar")
        if len(content) > settings.max_avatar_size_mb * 1024 * 1024:
            raise BadRequestError(f"Avatar must be at most {settings.max_avatar_size_mb}MB")

        old_key = user.avatar_key
        stored = self.storage.upload(
            generate_key(f"{user.id}{_ext(filename)}", folder="avatars"),
            content,
            content_type,
            metadata={"uploaded_by": user.id, "original_name": filename or ""},
        )
        user.avatar_url = stored.url
        user.avatar_key = stored.key
        self.db.add(user)
        self.db.commit()

        if old_key and not self.storage.delete(old_key):
            logger.warning("old_avatar_delete_failed", extra={"user_id": user.id})
        return {"url": stored.url, "key": stored.key}

    def delete_avatar(self, user: User) -> None:
        if not user.avatar_url:
            raise BadRequestError("No avatar to delete")
        if user.avatar_key:
            self.storage.delete(user.avatar_key)
        user.avatar_url = None
        user.avatar_key = None
        self.db.add(user)
        self.db.commit()

    def change_password(self, user: User, current_password: str, new_password: str, ip_address: str | None = None) -> None:
        if not current_password or not new_password:
            raise BadRequestError("Current password and new password are required")
        if len(new_password) < MIN_PASSWORD_LENGTH:
            raise BadRequestError("New password must be at least 6 characters long")
        if not verify_password(current_password, user.password_hash):
            raise BadRequestError("Current password is incorrect")
        user.password_hash = hash_password(new_password)
        self.db.add(user)
        self.db.commit()
        logger.info("password_changed", extra={"user_id": user.id})
        NotificationService(self.db).security_alert(user.id, "Password changed", ip_address)

    def record_activity(self, user: User) -> None:
        stats = dict(user.stats or {})
        stats["last_activity"] = datetime.now(timezone.utc).isoformat()
        user.stats = stats
        self.db.add(user)
        self.db.commit()

    def public_profile(self, user_id: str) -> dict[str, Any]:
        user = (
            self.db.query(User)
            .filter(User.id == user_id, User.is_active.is_(True))
            .one_or_none()
        )
        if not user:
            raise NotFoundError("User not found")
        images = (
            self.db.query(func.count(Image.id))
            .filter(Image.user_id == user.id, Image.status == STATUS_COMPLETED)
            .scalar()
        )
        return {
            "id": user.id,
            "name": user.name,
            "username": user.username,
            "bio": user.bio,
            "avatar_url": user.avatar_url,
            "location": user.location,
            "social_links": user.social_links or {},
            "member_since": user.created_at.isoformat() if user.created_at else None,
            "total_images_generated": images or 0,
        }


def _merge_preferences(current: dict | None, updates: dict[str, Any]) -> dict:
    prefs = {**default_preferences(), **(current or {})}
    for key in ("language", "theme"):
        if updates.get(key) is not None:
            prefs[key] = updates[key]
    if updates.get("email_notifications") is not None:
        prefs["email_notifications"] = {**prefs.get("email_notifications", {}), **updates["email_notifications"]}
    if updates.get("ai_preferences") is not None:
        ai = dict(prefs.get("ai_preferences", {}))
        for key in ("default_style", "default_size", "favorite_prompts"):
            if updates["ai_preferences"].get(key) is not None:
                ai[key] = updates["ai_preferences"][key]
        prefs["ai_preferences"] = ai
    return prefs


def _ext(filename: str | None) -> str:
    if filename and "." in filename:
        return "." + filename.rsplit(".", 1)[1].lower()
    return ""
