"""
Filesystem storage under STORAGE_BASE_PATH, served from STORAGE_PUBLIC_URL.
"""
import logging
import os
from pathlib import Path
from typing import Any

from app.core.config import settings
from app.storage.base import Storage, StorageError, StoredObject, _iso

logger = logging.getLogger(__name__)


class LocalStorage(Storage):
    name = "local"

    def __init__(self, base_path: str | None = None, public_url: str | None = None):
        self.base_path = Path(base_path or settings.storage_base_path)
        self.public_url = (public_url or settings.storage_public_url).rstrip("/")

    def _path(self, key: str) -> Path:
        path = (self.base_path / key).resolve()
        if not str(path).startswith(str(self.base_path.resolve())):
            raise StorageError(f"Invalid storage key: {key}")
        return path

    def url_for(self, key: str) -> str:
        return f"{self.public_url}/{key}"

    def upload(self, key, content, content_type, metadata=None) -> StoredObject:
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(content)
        except OSError as e:
            logger.error("storage_upload_failed", extra={"error": str(e)})
            raise StorageError("Failed to store file") from e
        return StoredObject(key=key, url=self.url_for(key), size=len(content), content_type=content_type)

    def delete(self, key: str) -> bool:
        try:
            self._path(key).unlink(missing_ok=True)
        except (OSError, StorageError) as e:
            logger.warning("storage_delete_failed", extra={"error": str(e)})
            return False
        return True

    def key_from_url(self, url: str) -> str | None:
        prefix = f"{self.public_url}/"
        return url[len(prefix):] if url and url.startswith(prefix) else None

    def signed_url(self, key: str, expires_in: int) -> tuple[str, int | None]:
        return self.url_for(key), None

    def list(self, folder: str, prefix: str = "", max_keys: int = 100) -> list[dict[str, Any]]:
        root = self._path(folder)
        if not root.is_dir():
            return []
        items = []
        for path in sorted(root.rglob(f"{prefix}*")):
            if not path.is_file():
                continue
            stat = path.stat()
            items.append({
                "key": str(path.relative_to(self.base_path.resolve())).replace(os.sep, "/"),
                "size": stat.st_size,
                "last_modified": _iso(stat.st_mtime),
            })
            if len(items) >= max_keys:
                break
        return items

    def info(self, key: str) -> dict[str, Any]:
        path = self._path(key)
        if not path.is_file():
            raise StorageError("Failed to get file info")
        stat = path.stat()
        return {"size": stat.st_size, "last_modified": _iso(stat.st_mtime), "content_type": None, "metadata": {}}
