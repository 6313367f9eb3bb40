from fastapi import APIRouter, Body, Depends, Query, Request
from sqlalchemy.orm import Session

from app.api.context import request_context
from app.db.session import get_db
from app.models.user import User
from app.schemas.images import GenerateRequest, ProviderRequest
from app.services.auth.jwt import get_current_user, require_admin
from app.services.images.service import ImageService
from app.utils.pagination import pagination

router = APIRouter(prefix="/api/images", tags=["images"])


@router.post("/generate")
def generate(
    request: Request,
    body: GenerateRequest = Body(...),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return ImageService(db).generate(
        current_user,
        body.prompt,
        style=body.style,
        size=body.size,
        model=body.model,
        quality=body.quality,
        context=request_context(request),
    )


# ---------- Providers (admin) ----------
@router.get("/providers")
def providers(admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    return ImageService(db).providers_info()


@router.get("/providers/status")
def provider_status(admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    return ImageService(db).provider_status()


@router.post("/providers/switch")
def switch_provider(
    body: ProviderRequest = Body(...),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return ImageService(db).switch_provider(body.provider, admin)


@router.post("/providers/test")
def test_provider(
    body: ProviderRequest = Body(...),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return ImageService(db).test_provider(body.provider)


@router.get("/models")
def models(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return {"models": ImageService(db).models()}


@router.get("/pricing")
def pricing(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return {"pricing": ImageService(db).pricing()}


# ---------- Gallery ----------
@router.get("/my-images")
def my_images(
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    rows, total = ImageService(db).list_for_user(current_user.id, page, limit)
    return {"images": [i.as_dict() for i in rows], "pagination": pagination(page, limit, total)}


@router.get("/{image_id}")
def get_image(image_id: str, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return {"image": ImageService(db).get(image_id, current_user.id).as_dict()}


@router.delete("/{image_id}")
def delete_image(image_id: str, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    ImageService(db).delete(image_id, current_user.id)
    return {"message": "Image deleted successfully"}


@router.get("/{image_id}/status")
def image_status(image_id: str, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return ImageService(db).status(image_id, current_user.id)
