"""
PaymentService: Stripe token purchases.

Responsibilities:
- Token package catalog (listing, default seed)
- PaymentIntent creation with package validation
- Client-driven confirmation and webhook reconciliation, both through LedgerService.credit_payment
- Payment history
"""
import logging
from decimal import Decimal
from typing import Any

import stripe
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import BadRequestError, NotFoundError, ServiceUnavailableError
from app.models.payment import (
    Payment,
    STATUS_CANCELLED,
    STATUS_DISPUTED,
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_SUCCEEDED,
)
from app.models.token_package import TokenPackage
from app.models.user import User
from app.services.audit.service import AuditService
from app.services.ledger.service import CreditResult, LedgerService
from app.services.notifications.service import NotificationService
from app.utils.metrics import payments_total, webhook_events_total

logger = logging.getLogger(__name__)

DEFAULT_PACKAGES = [
    {
        "name": "Starter",
        "description": "Perfect for trying out AI image generation",
        "tokens": 50,
        "price": Decimal("9.99"),
        "bonus_tokens": 0,
        "discount_percentage": 0,
        "is_popular": False,
        "features": ["50 AI image generations", "Standard quality", "Email support"],
    },
    {
        "name": "Popular",
        "description": "Most popular choice for regular users",
        "tokens": 150,
        "price": Decimal("24.99"),
        "bonus_tokens": 25,
        "discount_percentage": 17,
        "is_popular": True,
        "features": ["175 AI image generations", "25 bonus tokens", "High quality", "Priority support"],
    },
    {
        "name": "Pro",
        "description": "For power users and professionals",
        "tokens": 500,
        "price": Decimal("69.99"),
        "bonus_tokens": 100,
        "discount_percentage": 30,
        "is_popular": False,
        "features": ["600 AI image generations", "100 bonus tokens", "HD quality", "Priority support"],
    },
    {
        "name": "Enterprise",
        "description": "For teams and heavy usage",
        "tokens": 1500,
        "price": Decimal("199.99"),
        "bonus_tokens": 300,
        "discount_percentage": 33,
        "is_popular": False,
        "features": ["1800 AI image generations", "300 bonus tokens", "HD quality", "Dedicated support"],
    },
]


class PaymentService:
    def __init__(self, db: Session):
        self.db = db
        self.ledger = LedgerService(db)

    # ------------------------------------------------------------------
    # Package catalog
    # ------------------------------------------------------------------

    def list_active_packages(self) -> list[TokenPackage]:
        return (
            self.db.query(TokenPackage)
            .filter(TokenPackage.is_active.is_(True))
            .order_by(TokenPackage.price)
            .all()
        )

    def get_package(self, package_id: str) -> TokenPackage | None:
        return self.db.query(TokenPackage).filter(TokenPackage.id == package_id).one_or_none()

    def seed_default_packages(self) -> int:
        """Create the default packages that are missing (matched by name). Returns how many were added."""
        added = 0
        for data in DEFAULT_PACKAGES:
            exists = self.db.query(TokenPackage.id).filter(TokenPackage.name == data["name"]).first()
            if exists:
                continue
            self.db.add(TokenPackage(currency="USD", is_active=True, **data))
            added += 1
        self.db.commit()
        if added:
            logger.info("default_packages_seeded", extra={"amount": added})
        return added

    # ------------------------------------------------------------------
    # Purchase flow
    # ------------------------------------------------------------------

    def _require_stripe(self) -> None:
        if not settings.stripe_configured:
            raise ServiceUnavailableError("Payment service is not configured")

    def create_payment_intent(self, user: User, package_id: str) -> dict[str, Any]:
        """
        Validate the package, create a Stripe PaymentIntent and a pending Payment.
        Validation failures never reach Stripe and never create a row.
        """
        self._require_stripe()

        package = self.get_package(package_id) if package_id else None
        if not package or not package.is_active:
            raise BadRequestError("Invalid or inactive package selected")
        if package.is_expired():
            raise BadRequestError("Package has expired")
        if package.max_purchases:
            purchases = (
                self.db.query(Payment)
                .filter(
                    Payment.user_id == user.id,
                    Payment.package_id == package.id,
                    Payment.status == STATUS_SUCCEEDED,
                )
                .count()
            )
            if purchases >= package.max_purchases:
                raise BadRequestError("Purchase limit reached for this package")

        total_tokens = package.total_tokens
        amount = package.amount_cents
        currency = (package.currency or "USD").lower()

        try:
            intent = stripe.PaymentIntent.create(
                amount=amount,
                currency=currency,
                metadata={
                    "user_id": user.id,
                    "package_id": package.id,
                    "tokens": str(total_tokens),
                    "base_tokens": str(package.tokens),
                    "bonus_tokens": str(package.bonus_tokens),
                    "discount_percentage": str(package.discount_percentage),
                },
                api_key=settings.stripe_secret_key,
            )
        except stripe.StripeError as e:
            logger.error("payment_intent_create_failed", extra={"user_id": user.id, "package_id": package.id, "error": str(e)})
            raise ServiceUnavailableError("Failed to create payment intent") from e

        payment = Payment(
            user_id=user.id,
            package_id=package.id,
            stripe_payment_intent_id=intent.id,
            amount=amount,
            currency=currency,
            tokens=total_tokens,
            status=STATUS_PENDING,
            meta={
                "base_tokens": package.tokens,
                "bonus_tokens": package.bonus_tokens,
                "discount_percentage": package.discount_percentage,
                "original_price": float(package.price),
                "package_name": package.name,
            },
        )
        self.db.add(payment)
        self.db.commit()
        self.db.refresh(payment)
        payments_total.labels(status=STATUS_PENDING).inc()

        logger.info(
            "payment_intent_created",
            extra={
                "user_id": user.id,
                "payment_id": payment.id,
                "payment_intent_id": intent.id,
                "package_id": package.id,
                "amount": amount,
                "tokens": total_tokens,
            },
        )
        return {"client_secret": intent.client_secret, "payment_id": payment.id}

    def confirm_payment(self, user: User, payment_intent_id: str) -> dict[str, Any]:
        """Client-driven confirmation. A second confirmation is rejected, never re-credited."""
        self._require_stripe()
        if not payment_intent_id:
            raise BadRequestError("Payment intent id is required")

        try:
            intent = stripe.PaymentIntent.retrieve(payment_intent_id, api_key=settings.stripe_secret_key)
        except stripe.StripeError as e:
            logger.error("payment_intent_retrieve_failed", extra={"payment_intent_id": payment_intent_id, "error": str(e)})
            raise ServiceUnavailableError("Payment service unavailable") from e

        if intent.status != "succeeded":
            raise BadRequestError("Payment not completed")

        result = self._credit(payment_intent_id, user_id=user.id)
        if result.already_processed:
            raise BadRequestError("Payment already processed")

        package = self.get_package(result.payment.package_id) if result.payment.package_id else None
        return {
            "message": "Payment confirmed and tokens added",
            "tokens": result.tokens,
            "new_balance": result.new_balance,
            "package": package.as_dict() if package else None,
        }

    def _credit(self, payment_intent_id: str, user_id: str | None = None) -> CreditResult:
        result = self.ledger.credit_payment(payment_intent_id, user_id=user_id)
        if not result.already_processed:
            payments_total.labels(status=STATUS_SUCCEEDED).inc()
            NotificationService(self.db).payment_success(
                result.payment.user_id,
                tokens=result.tokens,
                amount=result.payment.amount,
                currency=result.payment.currency,
            )
        return result

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    @staticmethod
    def construct_event(payload: bytes, sig_header: str | None):
        """Verify the Stripe signature. Raises ValueError / stripe.SignatureVerificationError."""
        return stripe.Webhook.construct_event(payload, sig_header, settings.stripe_webhook_secret)

    def handle_webhook_event(self, event) -> None:
        """Dispatch a verified event. Unknown event types and unknown payments are logged and acknowledged."""
        event_type = event["type"]
        obj = event["data"]["object"]
        webhook_events_total.labels(event_type=event_type).inc()

        if event_type == "payment_intent.succeeded":
            try:
                self._credit(obj["id"])
            except NotFoundError:
                logger.error("webhook_payment_not_found", extra={"event_type": event_type, "payment_intent_id": obj["id"]})
        elif event_type == "payment_intent.payment_failed":
            self._transition(obj["id"], STATUS_FAILED, event_type)
        elif event_type == "payment_intent.canceled":
            self._transition(obj["id"], STATUS_CANCELLED, event_type)
        elif event_type == "charge.dispute.created":
            self._mark_disputed(obj, event_type)
        else:
            logger.info("webhook_event_ignored", extra={"event_type": event_type})

    def _find_by_intent(self, payment_intent_id: str | None, lock: bool = False) -> Payment | None:
        if not payment_intent_id:
            return None
        q = self.db.query(Payment).filter(Payment.stripe_payment_intent_id == payment_intent_id)
        if lock:
            q = q.with_for_update()
        return q.one_or_none()

    def _transition(self, payment_intent_id: str, status: str, event_type: str) -> None:
        """pending -> failed/cancelled. Terminal payments are left alone."""
        payment = self._find_by_intent(payment_intent_id, lock=True)
        if not payment:
            logger.error("webhook_payment_not_found", extra={"event_type": event_type, "payment_intent_id": payment_intent_id})
            return
        if payment.status != STATUS_PENDING:
            logger.info(
                "webhook_transition_skipped",
                extra={"event_type": event_type, "payment_id": payment.id, "error": f"status={payment.status}"},
            )
            self.db.rollback()
            return
        payment.status = status
        self.db.add(payment)
        self.db.commit()
        payments_total.labels(status=status).inc()
        logger.info("payment_status_changed", extra={"event_type": event_type, "payment_id": payment.id, "user_id": payment.user_id})

    def _mark_disputed(self, dispute, event_type: str) -> None:
        """Bookkeeping only: tokens already granted are not reversed."""
        payment_intent_id = dispute.get("payment_intent")
        payment = self._find_by_intent(payment_intent_id, lock=True)
        if not payment:
            logger.error("webhook_payment_not_found", extra={"event_type": event_type, "payment_intent_id": payment_intent_id})
            return
        payment.status = STATUS_DISPUTED
        self.db.add(payment)
        AuditService(self.db).log(
            actor_type="stripe",
            actor_id=None,
            action="payment_disputed",
            entity_type="payment",
            entity_id=payment.id,
            payload={
                "dispute_id": dispute.get("id"),
                "amount": dispute.get("amount"),
                "reason": dispute.get("reason"),
                "tokens_granted": payment.tokens,
            },
            commit=False,
        )
        self.db.commit()
        payments_total.labels(status=STATUS_DISPUTED).inc()
        logger.warning(
            "payment_disputed",
            extra={"payment_id": payment.id, "payment_intent_id": payment_intent_id, "user_id": payment.user_id},
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_user_payments(self, user_id: str, page: int = 1, limit: int = 10) -> tuple[list[Payment], int]:
        q = self.db.query(Payment).filter(Payment.user_id == user_id)
        total = q.count()
        rows = q.order_by(Payment.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
        return rows, total
