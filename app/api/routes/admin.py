"""
Admin API: dashboard, users, token packages, token grants, logs.
Order: /users before /users/{user_id}.
"""
from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.models.user import User
from app.schemas.admin import RoleUpdate, TokenGrant
from app.schemas.payments import TokenPackageCreate, TokenPackageUpdate
from app.services.admin.service import AdminService
from app.services.auth.jwt import require_admin, require_super_admin
from app.utils.pagination import pagination

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.get("/dashboard")
def dashboard(admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    return AdminService(db).dashboard()


# ---------- Users ----------
@router.get("/users")
def users_list(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
    role: str | None = None,
    is_active: bool | None = None,
    search: str | None = None,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    rows, total = AdminService(db).list_users(page, limit, role, is_active, search)
    return {"users": [u.as_dict() for u in rows], "pagination": pagination(page, limit, total)}


@router.get("/users/{user_id}")
def user_detail(user_id: str, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    return AdminService(db).user_detail(user_id)


@router.patch("/users/{user_id}/role")
def update_role(
    user_id: str,
    body: RoleUpdate = Body(...),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    user = AdminService(db).set_role(user_id, body.role, admin)
    return {"message": "User role updated successfully", "user": user.as_dict()}


@router.patch("/users/{user_id}/status")
def toggle_status(user_id: str, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    user = AdminService(db).toggle_status(user_id, admin)
    state = "activated" if user.is_active else "deactivated"
    return {
        "message": f"User {state} successfully",
        "user": {"id": user.id, "username": user.username, "email": user.email, "is_active": user.is_active},
    }


@router.post("/users/{user_id}/tokens")
def grant_tokens(
    user_id: str,
    body: TokenGrant = Body(...),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return AdminService(db).grant_tokens(user_id, body.amount, body.description, admin)


@router.delete("/users/{user_id}")
def delete_user(user_id: str, admin: User = Depends(require_super_admin), db: Session = Depends(get_db)):
    AdminService(db).delete_user(user_id, admin)
    return {"message": "User and all associated data deleted successfully"}


# ---------- Token packages ----------
@router.get("/token-packages")
def packages_list(admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    return [p.as_dict() for p in AdminService(db).list_packages()]


@router.post("/token-packages")
def package_create(
    body: TokenPackageCreate = Body(...),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return AdminService(db).create_package(body.model_dump(), admin).as_dict()


@router.put("/token-packages/{package_id}")
def package_update(
    package_id: str,
    body: TokenPackageUpdate = Body(...),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return AdminService(db).update_package(package_id, body.model_dump(exclude_unset=True), admin).as_dict()


@router.delete("/token-packages/{package_id}")
def package_delete(package_id: str, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    AdminService(db).delete_package(package_id, admin)
    return {"message": "Package deleted successfully"}


# ---------- Logs ----------
@router.get("/logs")
def system_logs(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    admin: User = Depends(require_super_admin),
    db: Session = Depends(get_db),
):
    return AdminService(db).system_logs(page, limit)
