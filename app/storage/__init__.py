from app.core.config import settings
from app.storage.base import Storage, StorageError, StoredObject, generate_key


def get_storage() -> Storage:
    """S3 when AWS credentials and bucket are configured, local filesystem otherwise."""
    if settings.s3_configured:
        from app.storage.s3 import S3Storage

        return S3Storage()
    from app.storage.local import LocalStorage

    return LocalStorage()


__all__ = ["Storage", "StorageError", "StoredObject", "generate_key", "get_storage"]
