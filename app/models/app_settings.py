from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String

from app.db.base import Base


class AppSettings(Base):
    """Global app settings (single row, id=1). Overrides set from the admin API."""

    __tablename__ = "app_settings"

    id = Column(Integer, primary_key=True, default=1)
    # null = use AI_PROVIDER from the environment
    image_provider = Column(String, nullable=True)
    updated_by = Column(String, nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
