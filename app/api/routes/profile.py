from fastapi import APIRouter, Body, Depends, File, HTTPException, Request, UploadFile
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.session import get_db
from app.models.user import User, default_stats
from app.schemas.profile import PasswordChange, ProfileUpdate
from app.services.auth.jwt import get_current_user
from app.services.auth.login_rate_limit import get_client_ip
from app.services.users.service import UserService

router = APIRouter(prefix="/api/profile", tags=["profile"])


@router.get("")
def get_profile(current_user: User = Depends(get_current_user)):
    return {"user": current_user.as_dict()}


@router.put("")
def update_profile(
    body: ProfileUpdate = Body(...),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    fields = body.model_dump(exclude_unset=True, exclude={"social_links", "preferences"})
    user = UserService(db).update_profile(
        current_user,
        fields,
        social_links=body.social_links.model_dump(exclude_none=True) if body.social_links else None,
        preferences=body.preferences.model_dump(exclude_none=True) if body.preferences else None,
    )
    return {"message": "Profile updated successfully", "user": user.as_dict()}


@router.post("/avatar")
def upload_avatar(
    avatar: UploadFile = File(...),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if avatar.size is not None and avatar.size > settings.max_avatar_size_mb * 1024 * 1024:
        raise HTTPException(status_code=400, detail=f"Avatar must be at most {settings.max_avatar_size_mb}MB")
    content = avatar.file.read()
    result = UserService(db).upload_avatar(current_user, avatar.filename, content, avatar.content_type)
    return {"message": "Avatar uploaded successfully", "avatar": result}


@router.delete("/avatar")
def delete_avatar(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    UserService(db).delete_avatar(current_user)
    return {"message": "Avatar deleted successfully"}


@router.put("/password")
def change_password(
    request: Request,
    body: PasswordChange = Body(...),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    UserService(db).change_password(
        current_user, body.current_password, body.new_password, ip_address=get_client_ip(request)
    )
    return {"message": "Password changed successfully"}


@router.get("/stats")
def get_stats(current_user: User = Depends(get_current_user)):
    return {"stats": current_user.stats or default_stats()}


@router.post("/activity")
def record_activity(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    UserService(db).record_activity(current_user)
    return {"message": "Activity updated"}


@router.get("/{user_id}/public")
def public_profile(user_id: str, db: Session = Depends(get_db)):
    return {"user": UserService(db).public_profile(user_id)}
