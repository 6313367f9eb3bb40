import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import BadRequestError, NotFoundError
from app.models.file import File, file_type_for
from app.models.user import User
from app.storage import Storage, generate_key, get_storage

logger = logging.getLogger(__name__)

INVALID_TYPE_MESSAGE = "Invalid file type. Only images, videos, PDFs, and documents are allowed."


@dataclass
class IncomingFile:
    filename: str
    content_type: str
    content: bytes


class FileService:
    def __init__(self, db: Session, storage: Storage | None = None):
        self.db = db
        self._storage = storage

    @property
    def storage(self) -> Storage:
        if self._storage is None:
            self._storage = get_storage()
        return self._storage

    def validate(self, files: list[IncomingFile]) -> None:
        """Whole request is rejected before anything is stored."""
        if not files:
            raise BadRequestError("No files uploaded")
        if len(files) > settings.max_files_per_upload:
            raise BadRequestError(f"Too many files. Maximum is {settings.max_files_per_upload}")
        allowed = settings.allowed_upload_mime_types_set
        max_bytes = settings.max_file_size_mb * 1024 * 1024
        for f in files:
            if (f.content_type or "").lower() not in allowed:
                raise BadRequestError(INVALID_TYPE_MESSAGE)
            if len(f.content) > max_bytes:
                raise BadRequestError(f"File too large. Maximum size is {settings.max_file_size_mb}MB")

    def upload(self, user: User, files: list[IncomingFile], folder: str = "uploads") -> list[File]:
        self.validate(files)
        records = []
        for f in files:
            stored = self.storage.upload(
                generate_key(f.filename, folder=folder or "uploads"),
                f.content,
                f.content_type,
                metadata={"uploaded_by": user.id, "original_name": f.filename},
            )
            record = File(
                user_id=user.id,
                original_name=f.filename,
                file_name=stored.key,
                file_url=stored.url,
                file_size=stored.size,
                mime_type=f.content_type,
                file_type=file_type_for(f.content_type),
                meta={"storage": self.storage.name, "key": stored.key},
            )
            self.db.add(record)
            records.append(record)

        user.bump_stat("total_files_uploaded", len(records))
        self.db.add(user)
        self.db.commit()
        for record in records:
            self.db.refresh(record)
            logger.info("file_uploaded", extra={"user_id": user.id, "file_id": record.id})
        return records

    def list_for_user(self, user_id: str, page: int = 1, limit: int = 20) -> tuple[list[File], int]:
        q = self.db.query(File).filter(File.user_id == user_id)
        total = q.count()
        rows = q.order_by(File.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
        return rows, total

    def get(self, file_id: str, user_id: str) -> File:
        record = self.db.query(File).filter(File.id == file_id, File.user_id == user_id).one_or_none()
        if not record:
            raise NotFoundError("File not found")
        return record

    def delete(self, file_id: str, user_id: str) -> None:
        record = self.get(file_id, user_id)
        if not self.storage.delete(record.file_name):
            logger.warning("file_object_delete_failed", extra={"file_id": record.id})
        self.db.delete(record)
        self.db.commit()
        logger.info("file_deleted", extra={"user_id": user_id, "file_id": file_id})

    def download_url(self, file_id: str, user_id: str) -> dict[str, Any]:
        record = self.get(file_id, user_id)
        url, expires_in = self.storage.signed_url(record.file_name, settings.signed_url_ttl_seconds)
        return {"download_url": url, "expires_in": expires_in}

    def usage(self, user_id: str) -> dict[str, Any]:
        rows = self.db.query(File.file_size, File.mime_type).filter(File.user_id == user_id).all()
        total = sum(r.file_size or 0 for r in rows)
        file_types: dict[str, int] = {}
        for r in rows:
            major = (r.mime_type or "other").split("/")[0]
            file_types[major] = file_types.get(major, 0) + 1
        return {
            "total_size": total,
            "total_size_mb": f"{total / (1024 * 1024):.2f}",
            "file_count": len(rows),
            "file_types": file_types,
        }
