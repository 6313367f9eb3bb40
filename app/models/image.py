from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, Integer, String, Text

from app.db.base import Base, JSONType

STATUS_GENERATING = "generating"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"


class Image(Base):
    __tablename__ = "images"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String, nullable=False, index=True)
    prompt = Column(Text, nullable=False)
    image_url = Column(String, nullable=True)
    thumbnail_url = Column(String, nullable=True)
    storage_key = Column(String, nullable=True)
    thumbnail_key = Column(String, nullable=True)
    status = Column(String, nullable=False, default=STATUS_GENERATING)
    tokens_used = Column(Integer, nullable=False, default=0)
    provider = Column(String, nullable=True)
    meta = Column("metadata", JSONType, nullable=False, default=dict)  # style, size, model, quality, error
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "prompt": self.prompt,
            "image_url": self.image_url,
            "thumbnail_url": self.thumbnail_url,
            "status": self.status,
            "tokens_used": self.tokens_used,
            "provider": self.provider,
            "metadata": self.meta or {},
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
