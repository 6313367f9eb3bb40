"""Upload and avatar endpoints: sync handlers, size rejected before the body is read."""
import inspect
from unittest.mock import patch

from app.api.routes import profile, upload
from app.models.file import File


def test_upload_handlers_run_in_threadpool():
    for handler in (upload.upload_single, upload.upload_multiple, profile.upload_avatar):
        assert not inspect.iscoroutinefunction(handler)


def test_upload_single_stores_file(client, db, make_user, auth_headers):
    user = make_user()
    response = client.post(
        "/api/upload/single",
        files={"file": ("notes.txt", b"hello", "text/plain")},
        headers=auth_headers(user),
    )
    assert response.status_code == 200
    assert response.json()["file"]["original_name"] == "notes.txt"
    assert db.query(File).count() == 1


def test_oversized_file_rejected_before_service(client, make_user, auth_headers):
    user = make_user()
    with patch("app.api.routes.upload.settings.max_file_size_mb", 0), \
            patch("app.api.routes.upload.FileService.upload") as service_upload:
        response = client.post(
            "/api/upload/single",
            files={"file": ("big.txt", b"x" * 2048, "text/plain")},
            headers=auth_headers(user),
        )
    assert response.status_code == 400
    assert response.json() == {"detail": "File too large. Maximum size is 0MB"}
    service_upload.assert_not_called()


def test_oversized_avatar_rejected_before_service(client, make_user, auth_headers):
    user = make_user()
    with patch("app.api.routes.profile.settings.max_avatar_size_mb", 0), \
            patch("app.api.routes.profile.UserService.upload_avatar") as upload_avatar:
        response = client.post(
            "/api/profile/avatar",
            files={"avatar": ("me.png", b"\x89PNG" + b"0" * 2048, "image/png")},
            headers=auth_headers(user),
        )
    assert response.status_code == 400
    upload_avatar.assert_not_called()
