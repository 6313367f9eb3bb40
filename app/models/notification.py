from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, Integer, String

from app.db.base import Base, JSONType

MAX_DELIVERY_ATTEMPTS = 3

STATUS_PENDING = "pending"
STATUS_SENT = "sent"
STATUS_DELIVERED = "delivered"
STATUS_FAILED = "failed"
STATUS_READ = "read"
UNREAD_STATUSES = (STATUS_PENDING, STATUS_SENT, STATUS_DELIVERED)

TYPES = ("email", "push", "in_app", "sms")
CATEGORIES = ("system", "payment", "token", "image_generation", "security", "marketing", "admin")
PRIORITIES = ("low", "normal", "high", "urgent")


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String, nullable=False, index=True)
    type = Column(String, nullable=False, default="in_app")
    category = Column(String, nullable=False, default="system")
    title = Column(String(200), nullable=False)
    message = Column(String(1000), nullable=False)
    data = Column(JSONType, nullable=False, default=dict)
    priority = Column(String, nullable=False, default="normal")
    status = Column(String, nullable=False, default=STATUS_PENDING, index=True)
    delivery_attempts = Column(Integer, nullable=False, default=0)
    scheduled_for = Column(DateTime(timezone=True), nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    read_at = Column(DateTime(timezone=True), nullable=True)
    meta = Column("metadata", JSONType, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc), index=True)

    def mark_as_read(self) -> None:
        self.status = STATUS_READ
        self.read_at = datetime.now(timezone.utc)

    def mark_as_sent(self) -> None:
        self.status = STATUS_SENT
        self.sent_at = datetime.now(timezone.utc)

    def increment_attempts(self, max_attempts: int = MAX_DELIVERY_ATTEMPTS) -> None:
        """Count a failed delivery; the last allowed attempt makes the failure permanent."""
        self.delivery_attempts = (self.delivery_attempts or 0) + 1
        self.status = STATUS_FAILED if self.delivery_attempts >= max_attempts else STATUS_PENDING

    @property
    def is_unread(self) -> bool:
        return self.status in UNREAD_STATUSES

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "type": self.type,
            "category": self.category,
            "title": self.title,
            "message": self.message,
            "data": self.data or {},
            "priority": self.priority,
            "status": self.status,
            "delivery_attempts": self.delivery_attempts,
            "scheduled_for": self.scheduled_for.isoformat() if self.scheduled_for else None,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
