from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, Integer, String

from app.db.base import Base, JSONType


def file_type_for(mime_type: str | None) -> str:
    """Coarse file type from the MIME prefix."""
    mime = (mime_type or "").lower()
    if mime.startswith("image/"):
        return "image"
    if mime.startswith("video/"):
        return "video"
    if mime.startswith("audio/"):
        return "audio"
    if mime.startswith("application/") or mime.startswith("text/"):
        return "document"
    return "other"


def format_size(size: int) -> str:
    if not size:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    value = float(size)
    idx = 0
    while value >= 1024 and idx < len(units) - 1:
        value /= 1024
        idx += 1
    return f"{round(value, 2):g} {units[idx]}"


class File(Base):
    __tablename__ = "files"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String, nullable=False, index=True)
    original_name = Column(String, nullable=False)
    file_name = Column(String, nullable=False)  # storage key
    file_url = Column(String, nullable=False)
    file_size = Column(Integer, nullable=False)
    mime_type = Column(String, nullable=False)
    file_type = Column(String, nullable=False, default="other")
    is_public = Column(Boolean, nullable=False, default=False)
    tags = Column(JSONType, nullable=False, default=list)
    description = Column(String(500), nullable=True)
    meta = Column("metadata", JSONType, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    @property
    def formatted_size(self) -> str:
        return format_size(self.file_size or 0)

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "original_name": self.original_name,
            "file_name": self.file_name,
            "file_url": self.file_url,
            "file_size": self.file_size,
            "formatted_size": self.formatted_size,
            "mime_type": self.mime_type,
            "file_type": self.file_type,
            "is_public": self.is_public,
            "tags": self.tags or [],
            "description": self.description,
            "uploaded_at": self.created_at.isoformat() if self.created_at else None,
        }
