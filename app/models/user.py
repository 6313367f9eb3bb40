from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Boolean, Column, Date, DateTime, Integer, String, Text

from app.db.base import Base, JSONType

ROLE_USER = "user"
ROLE_ADMIN = "admin"
ROLE_SUPER_ADMIN = "super_admin"
ROLES = (ROLE_USER, ROLE_ADMIN, ROLE_SUPER_ADMIN)


def default_preferences() -> dict:
    return {
        "language": "en",
        "theme": "light",
        "email_notifications": {"marketing": False, "updates": True, "security": True},
        "ai_preferences": {"default_style": "realistic", "default_size": "512x512", "favorite_prompts": []},
    }


def default_stats() -> dict:
    return {
        "total_images_generated": 0,
        "total_tokens_spent": 0,
        "total_files_uploaded": 0,
        "last_activity": None,
    }


def default_notification_preferences() -> dict:
    return {"email": True, "push": True, "in_app": True, "marketing": False}


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    name = Column(String, nullable=False)
    username = Column(String, unique=True, nullable=False, index=True)
    email = Column(String, unique=True, nullable=False, index=True)
    password_hash = Column(String, nullable=False)
    # Cached balance; always moved together with a token_transactions row
    tokens = Column(Integer, nullable=False, default=0)
    role = Column(String, nullable=False, default=ROLE_USER)
    is_verified = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    last_login = Column(DateTime(timezone=True), nullable=True)

    avatar_url = Column(String, nullable=True)
    avatar_key = Column(String, nullable=True)
    bio = Column(Text, nullable=True)
    website = Column(String, nullable=True)
    location = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    date_of_birth = Column(Date, nullable=True)
    gender = Column(String, nullable=True)
    social_links = Column(JSONType, nullable=False, default=dict)
    preferences = Column(JSONType, nullable=False, default=default_preferences)
    stats = Column(JSONType, nullable=False, default=default_stats)

    push_tokens = Column(JSONType, nullable=False, default=list)
    notification_preferences = Column(JSONType, nullable=False, default=default_notification_preferences)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def is_admin(self) -> bool:
        return self.role in (ROLE_ADMIN, ROLE_SUPER_ADMIN)

    def is_super_admin(self) -> bool:
        return self.role == ROLE_SUPER_ADMIN

    def wants(self, channel: str) -> bool:
        """Notification preference for a channel (email, push, in_app, marketing)."""
        prefs = self.notification_preferences or {}
        return bool(prefs.get(channel, channel != "marketing"))

    def bump_stat(self, key: str, delta: int = 1) -> None:
        # Reassign so the JSON column is flagged dirty
        stats = dict(self.stats or default_stats())
        stats[key] = int(stats.get(key) or 0) + delta
        stats["last_activity"] = datetime.now(timezone.utc).isoformat()
        self.stats = stats

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "username": self.username,
            "email": self.email,
            "tokens": self.tokens,
            "role": self.role,
            "is_verified": self.is_verified,
            "is_active": self.is_active,
            "last_login": self.last_login.isoformat() if self.last_login else None,
            "avatar_url": self.avatar_url,
            "bio": self.bio,
            "website": self.website,
            "location": self.location,
            "phone": self.phone,
            "date_of_birth": self.date_of_birth.isoformat() if self.date_of_birth else None,
            "gender": self.gender,
            "social_links": self.social_links or {},
            "preferences": self.preferences or default_preferences(),
            "stats": self.stats or default_stats(),
            "notification_preferences": self.notification_preferences or default_notification_preferences(),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
