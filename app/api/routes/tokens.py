from datetime import datetime

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from app.api.context import request_context
from app.db.session import get_db
from app.models.token_transaction import TRANSACTION_TYPES, TYPE_SPEND
from app.models.user import User
from app.schemas.tokens import AddRequest, SpendRequest
from app.services.auth.jwt import get_current_user, require_admin
from app.services.ledger.service import LedgerService
from app.services.payments.service import PaymentService
from app.utils.pagination import pagination

router = APIRouter(prefix="/api/tokens", tags=["tokens"])


@router.get("/balance")
def balance(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return {"tokens": LedgerService(db).get_balance(current_user.id)}


@router.get("/history")
def history(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    type: str | None = None,
    category: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    search: str | None = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    rows, total = LedgerService(db).history(
        current_user.id,
        type_=type,
        category=category,
        start_date=start_date,
        end_date=end_date,
        search=search,
        page=page,
        limit=limit,
    )
    return {"transactions": [t.as_dict() for t in rows], "pagination": pagination(page, limit, total)}


@router.get("/analytics")
def analytics(
    period: str = Query("30d"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return LedgerService(db).analytics(current_user.id, period)


@router.get("/packages")
def packages(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return [p.as_dict() for p in PaymentService(db).list_active_packages()]


@router.post("/spend")
def spend(
    request: Request,
    body: SpendRequest = Body(...),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    tx, new_balance = LedgerService(db).spend(
        current_user.id,
        body.amount,
        body.description,
        body.category,
        ai_provider=body.ai_provider,
        generation_type=body.generation_type,
        image_count=body.image_count,
        image_size=body.image_size,
        prompt=body.prompt,
        context=request_context(request),
    )
    return {"message": "Tokens spent successfully", "new_balance": new_balance, "transaction": tx.as_dict()}


@router.post("/add")
def add(
    request: Request,
    body: AddRequest = Body(...),
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    if body.type not in TRANSACTION_TYPES or body.type == TYPE_SPEND:
        raise HTTPException(status_code=400, detail="Invalid transaction type")
    tx, new_balance = LedgerService(db).add(
        current_user.id,
        body.amount,
        body.description,
        body.type,
        body.category,
        package_id=body.package_id,
        meta=body.metadata,
        context=request_context(request),
    )
    return {"message": "Tokens added successfully", "new_balance": new_balance, "transaction": tx.as_dict()}


@router.get("/admin/transactions")
def admin_transactions(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    user_id: str | None = None,
    type: str | None = None,
    category: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    rows, total = LedgerService(db).history(
        user_id,
        type_=type,
        category=category,
        start_date=start_date,
        end_date=end_date,
        page=page,
        limit=limit,
    )
    return {"transactions": [t.as_dict() for t in rows], "pagination": pagination(page, limit, total)}


@router.get("/admin/analytics")
def admin_analytics(
    period: str = Query("30d"),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return LedgerService(db).system_analytics(period)


@router.get("/admin/reconcile/{user_id}")
def admin_reconcile(user_id: str, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    return LedgerService(db).reconcile(user_id)
