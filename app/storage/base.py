import os
import secrets
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from app.core.errors import ServiceUnavailableError


class StorageError(ServiceUnavailableError):
    pass


@dataclass
class StoredObject:
    key: str
    url: str
    size: int
    content_type: str | None = None


def generate_key(original_name: str, folder: str = "uploads") -> str:
    """<folder>/<stem>_<unix ms>_<16 hex chars><ext>"""
    base = os.path.basename(original_name or "file")
    stem, ext = os.path.splitext(base)
    return f"{folder.strip('/')}/{stem or 'file'}_{int(time.time() * 1000)}_{secrets.token_hex(8)}{ext}"


class Storage(ABC):
    name = "base"

    @abstractmethod
    def upload(self, key: str, content: bytes, content_type: str, metadata: dict[str, str] | None = None) -> StoredObject:
        raise NotImplementedError

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Delete by key; returns False when the object could not be removed."""
        raise NotImplementedError

    @abstractmethod
    def key_from_url(self, url: str) -> str | None:
        raise NotImplementedError

    @abstractmethod
    def signed_url(self, key: str, expires_in: int) -> tuple[str, int | None]:
        """Download URL and its lifetime in seconds (None when the URL does not expire)."""
        raise NotImplementedError

    @abstractmethod
    def list(self, folder: str, prefix: str = "", max_keys: int = 100) -> list[dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    def info(self, key: str) -> dict[str, Any]:
        raise NotImplementedError

    def delete_url(self, url: str) -> bool:
        key = self.key_from_url(url)
        return self.delete(key) if key else False


def _iso(value: datetime | float) -> str:
    if isinstance(value, datetime):
        return value.isoformat()
    return datetime.fromtimestamp(value).isoformat()
