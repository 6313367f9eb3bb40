"""
AWS S3 storage (boto3). Objects are public-read; private downloads use presigned URLs.
"""
import logging
from typing import Any
from urllib.parse import unquote, urlparse

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from app.core.config import settings
from app.storage.base import Storage, StorageError, StoredObject, _iso

logger = logging.getLogger(__name__)


class S3Storage(Storage):
    name = "s3"

    def __init__(self, bucket: str | None = None, client=None):
        self.bucket = bucket or settings.aws_s3_bucket
        self.region = settings.aws_region
        self.client = client or boto3.client(
            "s3",
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=settings.aws_secret_access_key,
            region_name=self.region,
        )

    def url_for(self, key: str) -> str:
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"

    def upload(self, key, content, content_type, metadata=None) -> StoredObject:
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=content,
                ContentType=content_type,
                ACL="public-read",
                Metadata={k: str(v) for k, v in (metadata or {}).items()},
            )
        except (BotoCoreError, ClientError) as e:
            logger.error("storage_upload_failed", extra={"error": str(e)})
            raise StorageError("Failed to upload file to cloud storage") from e
        return StoredObject(key=key, url=self.url_for(key), size=len(content), content_type=content_type)

    def delete(self, key: str) -> bool:
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            logger.warning("storage_delete_failed", extra={"error": str(e)})
            return False
        return True

    def key_from_url(self, url: str) -> str | None:
        if not url:
            return None
        path = unquote(urlparse(url).path).lstrip("/")
        return path or None

    def signed_url(self, key: str, expires_in: int) -> tuple[str, int | None]:
        try:
            url = self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=expires_in,
            )
        except (BotoCoreError, ClientError) as e:
            logger.error("storage_signed_url_failed", extra={"error": str(e)})
            raise StorageError("Failed to generate signed URL") from e
        return url, expires_in

    def list(self, folder: str, prefix: str = "", max_keys: int = 100) -> list[dict[str, Any]]:
        try:
            result = self.client.list_objects_v2(Bucket=self.bucket, Prefix=f"{folder}/{prefix}", MaxKeys=max_keys)
        except (BotoCoreError, ClientError) as e:
            raise StorageError("Failed to list files") from e
        return [
            {"key": obj["Key"], "size": obj["Size"], "last_modified": _iso(obj["LastModified"])}
            for obj in result.get("Contents", [])
        ]

    def info(self, key: str) -> dict[str, Any]:
        try:
            result = self.client.head_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            raise StorageError("Failed to get file info") from e
        return {
            "size": result.get("ContentLength"),
            "last_modified": _iso(result["LastModified"]) if result.get("LastModified") else None,
            "content_type": result.get("ContentType"),
            "metadata": result.get("Metadata", {}),
        }
