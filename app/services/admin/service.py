"""
AdminService: dashboard, user management, token package CRUD and user deletion.
Every write is recorded in the audit log.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import BadRequestError, NotFoundError
from app.models.file import File
from app.models.image import Image
from app.models.notification import Notification
from app.models.payment import Payment, STATUS_SUCCEEDED
from app.models.token_package import TokenPackage
from app.models.token_transaction import TokenTransaction, TYPE_SPEND
from app.models.user import ROLES, User
from app.services.audit.service import AuditService
from app.services.ledger.service import LedgerService
from app.storage import Storage, get_storage

logger = logging.getLogger(__name__)

PACKAGE_FIELDS = (
    "name",
    "description",
    "tokens",
    "price",
    "currency",
    "is_active",
    "is_popular",
    "is_limited",
    "max_purchases",
    "expires_at",
    "bonus_tokens",
    "discount_percentage",
    "features",
)


class AdminService:
    def __init__(self, db: Session, storage: Storage | None = None):
        self.db = db
        self.audit = AuditService(db)
        self._storage = storage

    @property
    def storage(self) -> Storage:
        if self._storage is None:
            self._storage = get_storage()
        return self._storage

    def _user(self, user_id: str) -> User:
        user = self.db.query(User).filter(User.id == user_id).one_or_none()
        if not user:
            raise NotFoundError("User not found")
        return user

    # ------------------------------------------------------------------
    # Dashboard
    # ------------------------------------------------------------------

    def dashboard(self) -> dict[str, Any]:
        month_ago = datetime.now(timezone.utc) - timedelta(days=30)
        tokens_used = (
            self.db.query(func.coalesce(func.sum(TokenTransaction.amount), 0))
            .filter(TokenTransaction.type == TYPE_SPEND)
            .scalar()
        )
        revenue = (
            self.db.query(func.coalesce(func.sum(Payment.amount), 0))
            .filter(Payment.status == STATUS_SUCCEEDED)
            .scalar()
        )
        recent_users = self.db.query(User).order_by(User.created_at.desc()).limit(5).all()
        recent_payments = self.db.query(Payment).order_by(Payment.created_at.desc()).limit(5).all()
        return {
            "statistics": {
                "total_users": self.db.query(User).count(),
                "total_images": self.db.query(Image).count(),
                "total_payments": self.db.query(Payment).count(),
                "total_files": self.db.query(File).count(),
                "total_tokens_used": abs(int(tokens_used or 0)),
                "total_revenue": int(revenue or 0),
                "new_users_this_month": self.db.query(User).filter(User.created_at >= month_ago).count(),
            },
            "recent_users": [
                {"id": u.id, "username": u.username, "email": u.email, "role": u.role,
                 "created_at": u.created_at.isoformat() if u.created_at else None}
                for u in recent_users
            ],
            "recent_payments": [p.as_dict() for p in recent_payments],
        }

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def list_users(
        self,
        page: int = 1,
        limit: int = 20,
        role: str | None = None,
        is_active: bool | None = None,
        search: str | None = None,
    ) -> tuple[list[User], int]:
        q = self.db.query(User)
        if role:
            q = q.filter(User.role == role)
        if is_active is not None:
            q = q.filter(User.is_active.is_(is_active))
        if search:
            s = f"%{search}%"
            q = q.filter(or_(User.username.ilike(s), User.email.ilike(s), User.name.ilike(s)))
        total = q.count()
        rows = q.order_by(User.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
        return rows, total

    def user_detail(self, user_id: str) -> dict[str, Any]:
        user = self._user(user_id)

        def latest(model):
            return (
                self.db.query(model)
                .filter(model.user_id == user_id)
                .order_by(model.created_at.desc())
                .limit(10)
                .all()
            )

        return {
            "user": user.as_dict(),
            "images": [i.as_dict() for i in latest(Image)],
            "payments": [p.as_dict() for p in latest(Payment)],
            "token_transactions": [t.as_dict() for t in latest(TokenTransaction)],
        }

    def set_role(self, user_id: str, role: str, admin: User) -> User:
        if role not in ROLES:
            raise BadRequestError("Invalid role")
        if user_id == admin.id:
            raise BadRequestError("Cannot change your own role")
        user = self._user(user_id)
        previous = user.role
        user.role = role
        self.db.add(user)
        self.audit.log("admin", admin.id, "user_role_changed", "user", user.id, {"from": previous, "to": role}, commit=False)
        self.db.commit()
        self.db.refresh(user)
        return user

    def toggle_status(self, user_id: str, admin: User) -> User:
        if user_id == admin.id:
            raise BadRequestError("Cannot deactivate your own account")
        user = self._user(user_id)
        user.is_active = not user.is_active
        self.db.add(user)
        self.audit.log("admin", admin.id, "user_status_changed", "user", user.id, {"is_active": user.is_active}, commit=False)
        self.db.commit()
        self.db.refresh(user)
        return user

    def grant_tokens(self, user_id: str, amount: int, description: str | None, admin: User) -> dict[str, Any]:
        self._user(user_id)
        tx, balance = LedgerService(self.db).admin_adjust(
            user_id, amount, description or "Admin token adjustment", admin_id=admin.id
        )
        return {"message": "Tokens added successfully", "new_balance": balance, "transaction": tx.as_dict()}

    def delete_user(self, user_id: str, admin: User) -> None:
        """Removes the user and everything they own. Stored objects are removed best-effort."""
        if user_id == admin.id:
            raise BadRequestError("Cannot delete your own account")
        user = self._user(user_id)

        keys = [f.file_name for f in self.db.query(File.file_name).filter(File.user_id == user_id)]
        for row in self.db.query(Image.storage_key, Image.thumbnail_key).filter(Image.user_id == user_id):
            keys += [k for k in (row.storage_key, row.thumbnail_key) if k]
        if user.avatar_key:
            keys.append(user.avatar_key)

        for model in (Image, Payment, TokenTransaction, File, Notification):
            self.db.query(model).filter(model.user_id == user_id).delete(synchronize_session=False)
        self.db.delete(user)
        self.audit.log("admin", admin.id, "user_deleted", "user", user_id, {"email": user.email}, commit=False)
        self.db.commit()

        for key in keys:
            self.storage.delete(key)
        logger.info("user_deleted", extra={"user_id": user_id})

    # ------------------------------------------------------------------
    # Token packages
    # ------------------------------------------------------------------

    def list_packages(self) -> list[TokenPackage]:
        return self.db.query(TokenPackage).order_by(TokenPackage.price).all()

    def _package(self, package_id: str) -> TokenPackage:
        package = self.db.query(TokenPackage).filter(TokenPackage.id == package_id).one_or_none()
        if not package:
            raise NotFoundError("Package not found")
        return package

    def _save_package(self, package: TokenPackage, action: str, admin: User) -> TokenPackage:
        self.db.add(package)
        try:
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            raise BadRequestError("Package name already exists")
        self.audit.log("admin", admin.id, action, "token_package", package.id, {"name": package.name}, commit=False)
        self.db.commit()
        self.db.refresh(package)
        return package

    def create_package(self, data: dict[str, Any], admin: User) -> TokenPackage:
        package = TokenPackage(**{k: v for k, v in data.items() if k in PACKAGE_FIELDS})
        return self._save_package(package, "token_package_created", admin)

    def update_package(self, package_id: str, data: dict[str, Any], admin: User) -> TokenPackage:
        package = self._package(package_id)
        for key, value in data.items():
            if key in PACKAGE_FIELDS:
                setattr(package, key, value)
        return self._save_package(package, "token_package_updated", admin)

    def delete_package(self, package_id: str, admin: User) -> None:
        package = self._package(package_id)
        self.db.delete(package)
        self.audit.log("admin", admin.id, "token_package_deleted", "token_package", package_id, {"name": package.name}, commit=False)
        self.db.commit()

    # ------------------------------------------------------------------
    # Logs
    # ------------------------------------------------------------------

    def system_logs(self, page: int = 1, limit: int = 50) -> dict[str, Any]:
        entries, total = self.audit.list(page=page, limit=limit)

        def recent(model):
            return self.db.query(model).order_by(model.created_at.desc()).limit(10).all()

        return {
            "recent_payments": [p.as_dict() for p in recent(Payment)],
            "recent_images": [i.as_dict() for i in recent(Image)],
            "recent_token_transactions": [t.as_dict() for t in recent(TokenTransaction)],
            "audit_log": [e.as_dict() for e in entries],
            "audit_total": total,
        }
