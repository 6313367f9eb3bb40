"""Global app settings edited from the admin API: the image provider override."""
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from app.models.app_settings import AppSettings


class AppSettingsService:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get(self) -> AppSettings | None:
        return self.db.query(AppSettings).filter(AppSettings.id == 1).first()

    def get_or_create(self) -> AppSettings:
        row = self.get()
        if row:
            return row
        row = AppSettings(id=1, image_provider=None)
        self.db.add(row)
        self.db.commit()
        self.db.refresh(row)
        return row

    def get_effective_provider(self, settings) -> str:
        """
        Provider used for new generations.
        The admin override wins; otherwise AI_PROVIDER from the environment.
        """
        row = self.get()
        if row and row.image_provider:
            return row.image_provider
        return settings.ai_provider

    def set_image_provider(self, provider_name: str | None, updated_by: str | None = None) -> AppSettings:
        row = self.get_or_create()
        row.image_provider = provider_name
        row.updated_by = updated_by
        row.updated_at = datetime.now(timezone.utc)
        self.db.add(row)
        self.db.commit()
        self.db.refresh(row)
        return row

