from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.session import get_db
from app.models.user import User
from app.services.auth.jwt import get_current_user
from app.services.files.service import FileService, IncomingFile
from app.utils.pagination import pagination

router = APIRouter(prefix="/api/upload", tags=["upload"])


def _read(files: list[UploadFile]) -> list[IncomingFile]:
    # Reject on the declared size before pulling the body into memory
    max_bytes = settings.max_file_size_mb * 1024 * 1024
    for f in files:
        if f.size is not None and f.size > max_bytes:
            raise HTTPException(status_code=400, detail=f"File too large. Maximum size is {settings.max_file_size_mb}MB")
    return [IncomingFile(f.filename or "file", f.content_type or "", f.file.read()) for f in files]


@router.post("/single")
def upload_single(
    file: UploadFile = File(...),
    folder: str = Form("uploads"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    record = FileService(db).upload(current_user, _read([file]), folder)[0]
    return {"message": "File uploaded successfully", "file": record.as_dict()}


@router.post("/multiple")
def upload_multiple(
    files: list[UploadFile] = File(...),
    folder: str = Form("uploads"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if len(files) > settings.max_files_per_upload:
        raise HTTPException(status_code=400, detail=f"Too many files. Maximum is {settings.max_files_per_upload}")
    records = FileService(db).upload(current_user, _read(files), folder)
    return {
        "message": f"{len(records)} files uploaded successfully",
        "files": [r.as_dict() for r in records],
    }


@router.get("/my-files")
def my_files(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    rows, total = FileService(db).list_for_user(current_user.id, page, limit)
    return {"files": [f.as_dict() for f in rows], "pagination": pagination(page, limit, total)}


@router.get("/stats/usage")
def usage(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return FileService(db).usage(current_user.id)


@router.get("/{file_id}")
def get_file(file_id: str, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return {"file": FileService(db).get(file_id, current_user.id).as_dict()}


@router.delete("/{file_id}")
def delete_file(file_id: str, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    FileService(db).delete(file_id, current_user.id)
    return {"message": "File deleted successfully"}


@router.get("/{file_id}/download")
def download(file_id: str, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return FileService(db).download_url(file_id, current_user.id)
