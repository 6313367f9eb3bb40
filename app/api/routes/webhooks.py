"""
Stripe webhook. The raw body is verified against STRIPE_WEBHOOK_SECRET before anything is read.
"""
import logging

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from app.db.session import get_db
from app.services.payments.service import PaymentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


@router.post("/stripe")
async def stripe_webhook(request: Request, db: Session = Depends(get_db)):
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")
    try:
        event = PaymentService.construct_event(payload, sig_header)
    except (ValueError, stripe.SignatureVerificationError) as e:
        logger.warning("webhook_signature_invalid", extra={"error": str(e)})
        raise HTTPException(status_code=400, detail="Invalid signature")

    await run_in_threadpool(PaymentService(db).handle_webhook_event, event)
    return {"received": True}
