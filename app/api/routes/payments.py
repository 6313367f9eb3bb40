from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.models.user import User
from app.schemas.payments import ConfirmPaymentRequest, CreatePaymentIntentRequest
from app.services.auth.jwt import get_current_user
from app.services.payments.service import PaymentService
from app.utils.pagination import pagination

router = APIRouter(prefix="/api/payments", tags=["payments"])


@router.get("/packages")
def packages(db: Session = Depends(get_db)):
    return {"packages": [p.as_dict() for p in PaymentService(db).list_active_packages()]}


@router.post("/create-payment-intent")
def create_payment_intent(
    body: CreatePaymentIntentRequest = Body(...),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return PaymentService(db).create_payment_intent(current_user, body.package_id)


@router.post("/confirm")
def confirm(
    body: ConfirmPaymentRequest = Body(...),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return PaymentService(db).confirm_payment(current_user, body.payment_intent_id)


@router.get("/history")
def history(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    rows, total = PaymentService(db).get_user_payments(current_user.id, page, limit)
    return {"payments": [p.as_dict() for p in rows], "pagination": pagination(page, limit, total)}
