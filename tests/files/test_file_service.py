"""Tests for FileService and the storage backends it runs on."""
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from app.core.errors import BadRequestError, NotFoundError
from app.models.file import File
from app.services.files.service import INVALID_TYPE_MESSAGE, FileService, IncomingFile
from app.storage import StorageError, generate_key
from app.storage.local import LocalStorage
from app.storage.s3 import S3Storage


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(str(tmp_path), "http://testserver/media")


@pytest.fixture
def service(db, storage):
    return FileService(db, storage=storage)


def _pdf(name="report.pdf", size=10):
    return IncomingFile(filename=name, content_type="application/pdf", content=b"x" * size)


class TestValidation:
    def test_empty_request(self, service):
        with pytest.raises(BadRequestError, match="No files uploaded"):
            service.validate([])

    def test_too_many_files(self, service):
        with pytest.raises(BadRequestError, match="Too many files"):
            service.validate([_pdf() for _ in range(6)])

    def test_type_not_allowed(self, service):
        with pytest.raises(BadRequestError) as exc:
            service.validate([IncomingFile("run.exe", "application/x-msdownload", b"MZ")])
        assert exc.value.message == INVALID_TYPE_MESSAGE

    def test_one_bad_file_rejects_batch(self, db, service, make_user):
        user = make_user()
        with pytest.raises(BadRequestError):
            service.upload(user, [_pdf(), IncomingFile("x.zip", "application/zip", b"z")])
        assert db.query(File).count() == 0


class TestUpload:
    def test_upload_and_usage(self, db, service, storage, make_user):
        user = make_user()
        records = service.upload(
            user,
            [_pdf(size=1024), IncomingFile("cat.png", "image/png", b"p" * 2048)],
            folder="docs",
        )

        assert [r.file_type for r in records] == ["document", "image"]
        assert records[0].file_name.startswith("docs/report_")
        assert (storage.base_path / records[1].file_name).read_bytes() == b"p" * 2048
        db.refresh(user)
        assert user.stats["total_files_uploaded"] == 2

        usage = service.usage(user.id)
        assert usage["total_size"] == 3072
        assert usage["file_count"] == 2
        assert usage["file_types"] == {"application": 1, "image": 1}

    def test_owner_scoping_and_delete(self, db, service, storage, make_user):
        owner = make_user()
        other = make_user()
        record = service.upload(owner, [_pdf()])[0]

        with pytest.raises(NotFoundError, match="File not found"):
            service.get(record.id, other.id)

        key = record.file_name
        service.delete(record.id, owner.id)
        assert not (storage.base_path / key).exists()
        assert db.query(File).count() == 0

    def test_download_url(self, service, make_user):
        user = make_user()
        record = service.upload(user, [_pdf()])[0]
        result = service.download_url(record.id, user.id)
        assert result["download_url"] == f"http://testserver/media/{record.file_name}"
        assert result["expires_in"] is None


class TestStorage:
    def test_generate_key_shape(self):
        key = generate_key("../../etc/my photo.jpg", folder="uploads/")
        folder, name = key.split("/")
        assert folder == "uploads"
        assert name.startswith("my photo_")
        assert name.endswith(".jpg")

    def test_local_rejects_traversal(self, storage):
        with pytest.raises(StorageError):
            storage.upload("../outside.txt", b"x", "text/plain")

    def test_local_key_from_url(self, storage):
        assert storage.key_from_url("http://testserver/media/a/b.png") == "a/b.png"
        assert storage.key_from_url("https://elsewhere/a.png") is None

    def test_local_list_and_info(self, storage):
        storage.upload("docs/a.txt", b"abc", "text/plain")
        items = storage.list("docs")
        assert [i["key"] for i in items] == ["docs/a.txt"]
        assert storage.info("docs/a.txt")["size"] == 3

    def test_s3_upload(self):
        client = MagicMock()
        storage = S3Storage(bucket="bucket", client=client)
        stored = storage.upload("uploads/a.png", b"abc", "image/png", metadata={"user_id": "u1"})
        kwargs = client.put_object.call_args.kwargs
        assert kwargs["Bucket"] == "bucket"
        assert kwargs["Key"] == "uploads/a.png"
        assert kwargs["ContentType"] == "image/png"
        assert stored.size == 3
        assert storage.key_from_url(stored.url) == "uploads/a.png"

    def test_s3_errors(self):
        client = MagicMock()
        client.put_object.side_effect = ClientError({"Error": {"Code": "500", "Message": "boom"}}, "PutObject")
        client.delete_object.side_effect = ClientError({"Error": {"Code": "500", "Message": "boom"}}, "DeleteObject")
        storage = S3Storage(bucket="bucket", client=client)
        with pytest.raises(StorageError):
            storage.upload("a", b"x", "text/plain")
        assert storage.delete("a") is False

    def test_s3_signed_url(self):
        client = MagicMock()
        client.generate_presigned_url.return_value = "https://signed"
        url, expires = S3Storage(bucket="bucket", client=client).signed_url("a", 600)
        assert (url, expires) == ("https://signed", 600)
