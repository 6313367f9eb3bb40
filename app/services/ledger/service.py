"""
LedgerService: every token balance change.

Each operation locks the user row (SELECT ... FOR UPDATE), moves the cached
User.tokens balance and appends a TokenTransaction in the same DB transaction.
Unique constraints on (payment_id, type) and (image_id, type) make purchase
credits and image refunds one-shot even under concurrent callers.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import BadRequestError, InsufficientTokensError, NotFoundError
from app.models.image import Image
from app.models.payment import Payment, STATUS_SUCCEEDED
from app.models.token_package import TokenPackage
from app.models.token_transaction import (
    TokenTransaction,
    TYPE_ADMIN_ADJUSTMENT,
    TYPE_BONUS,
    TYPE_PURCHASE,
    TYPE_REFUND,
    TYPE_SPEND,
)
from app.models.user import User
from app.services.audit.service import AuditService
from app.utils.metrics import balance_rejected_total, token_operations_total

logger = logging.getLogger(__name__)

PERIOD_DAYS = {"7d": 7, "30d": 30, "90d": 90, "1y": 365}


def period_start(period: str | None, now: datetime | None = None) -> datetime:
    """Window start for analytics periods (7d, 30d, 90d, 1y); unknown values mean 30d."""
    now = now or datetime.now(timezone.utc)
    return now - timedelta(days=PERIOD_DAYS.get(period or "30d", 30))


@dataclass
class RequestContext:
    """Client details recorded on ledger entries."""
    session_id: str | None = None
    user_agent: str | None = None
    ip_address: str | None = None


@dataclass
class CreditResult:
    payment: Payment
    tokens: int
    new_balance: int
    already_processed: bool = False
    transaction: TokenTransaction | None = None


class LedgerService:
    def __init__(self, db: Session) -> None:
        self.db = db

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _lock_user(self, user_id: str) -> User:
        user = (
            self.db.query(User)
            .filter(User.id == user_id)
            .with_for_update()
            .one_or_none()
        )
        if not user:
            raise NotFoundError("User not found")
        return user

    def _append(
        self,
        user: User,
        amount: int,
        type_: str,
        description: str,
        category: str,
        context: RequestContext | None = None,
        **fields: Any,
    ) -> TokenTransaction:
        user.tokens = (user.tokens or 0) + amount
        tx = TokenTransaction(
            user_id=user.id,
            type=type_,
            amount=amount,
            description=description,
            category=category,
            session_id=context.session_id if context else None,
            user_agent=context.user_agent if context else None,
            ip_address=context.ip_address if context else None,
            **fields,
        )
        self.db.add(user)
        self.db.add(tx)
        return tx

    def _finish(self, commit: bool) -> None:
        if commit:
            self.db.commit()
        else:
            self.db.flush()

    @staticmethod
    def _validate(amount: Any, description: str | None) -> int:
        if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
            raise BadRequestError("Invalid amount")
        if not description or not str(description).strip():
            raise BadRequestError("Description is required")
        return amount

    # ------------------------------------------------------------------
    # Balance operations
    # ------------------------------------------------------------------

    def get_balance(self, user_id: str) -> int:
        tokens = self.db.query(User.tokens).filter(User.id == user_id).scalar()
        if tokens is None:
            raise NotFoundError("User not found")
        return tokens

    def spend(
        self,
        user_id: str,
        amount: int,
        description: str,
        category: str = "ai_generation",
        *,
        ai_provider: str | None = None,
        generation_type: str | None = None,
        image_count: int | None = None,
        image_size: str | None = None,
        prompt: str | None = None,
        image_id: str | None = None,
        meta: dict | None = None,
        context: RequestContext | None = None,
        commit: bool = True,
    ) -> tuple[TokenTransaction, int]:
        """
        Debit tokens. Raises InsufficientTokensError without touching the balance.
        commit=False keeps the debit in the caller's transaction (image creation).
        """
        amount = self._validate(amount, description)
        user = self._lock_user(user_id)
        if (user.tokens or 0) < amount:
            balance_rejected_total.inc()
            logger.info(
                "token_spend_rejected",
                extra={"user_id": user_id, "amount": amount, "new_balance": user.tokens},
            )
            raise InsufficientTokensError("Insufficient tokens")

        tx = self._append(
            user,
            -amount,
            TYPE_SPEND,
            description,
            category,
            context,
            ai_provider=ai_provider,
            generation_type=generation_type,
            image_count=image_count,
            image_size=image_size,
            prompt=prompt,
            image_id=image_id,
            meta=meta or {},
        )
        user.bump_stat("total_tokens_spent", amount)
        self._finish(commit)
        token_operations_total.labels(operation=TYPE_SPEND).inc()
        logger.info(
            "tokens_spent",
            extra={"user_id": user_id, "amount": amount, "new_balance": user.tokens, "image_id": image_id},
        )
        return tx, user.tokens

    def add(
        self,
        user_id: str,
        amount: int,
        description: str,
        type_: str = TYPE_BONUS,
        category: str = "admin_bonus",
        *,
        package_id: str | None = None,
        meta: dict | None = None,
        context: RequestContext | None = None,
        commit: bool = True,
    ) -> tuple[TokenTransaction, int]:
        amount = self._validate(amount, description)
        user = self._lock_user(user_id)
        tx = self._append(
            user,
            amount,
            type_,
            description,
            category,
            context,
            package_id=package_id,
            meta=meta or {},
        )
        self._finish(commit)
        token_operations_total.labels(operation=type_).inc()
        logger.info("tokens_added", extra={"user_id": user_id, "amount": amount, "new_balance": user.tokens})
        return tx, user.tokens

    def admin_adjust(
        self,
        user_id: str,
        amount: int,
        description: str,
        admin_id: str,
    ) -> tuple[TokenTransaction, int]:
        """Admin grant or deduction. The balance never goes below zero."""
        if not isinstance(amount, int) or isinstance(amount, bool) or amount == 0:
            raise BadRequestError("Invalid amount")
        if not description or not description.strip():
            raise BadRequestError("Description is required")

        user = self._lock_user(user_id)
        if (user.tokens or 0) + amount < 0:
            raise BadRequestError("Adjustment would make balance negative")

        tx = self._append(
            user,
            amount,
            TYPE_ADMIN_ADJUSTMENT,
            description,
            "admin_bonus" if amount > 0 else "other",
            meta={"admin_id": admin_id},
        )
        AuditService(self.db).log(
            actor_type="admin",
            actor_id=admin_id,
            action="tokens_adjusted",
            entity_type="user",
            entity_id=user_id,
            payload={"amount": amount, "description": description},
            commit=False,
        )
        self.db.commit()
        token_operations_total.labels(operation=TYPE_ADMIN_ADJUSTMENT).inc()
        logger.info(
            "tokens_adjusted",
            extra={"user_id": user_id, "amount": amount, "new_balance": user.tokens},
        )
        return tx, user.tokens

    def credit_payment(self, payment_intent_id: str, user_id: str | None = None) -> CreditResult:
        """
        Apply the one-time purchase credit for a payment intent.
        Shared by the confirm endpoint and the Stripe webhook.
        user_id scopes the lookup (confirm endpoint); the webhook passes None.
        """
        q = self.db.query(Payment).filter(Payment.stripe_payment_intent_id == payment_intent_id)
        if user_id is not None:
            q = q.filter(Payment.user_id == user_id)
        payment = q.with_for_update().one_or_none()
        if not payment:
            raise NotFoundError("Payment not found")

        if payment.status == STATUS_SUCCEEDED:
            logger.info(
                "payment_already_processed",
                extra={"payment_id": payment.id, "payment_intent_id": payment_intent_id},
            )
            return CreditResult(
                payment=payment,
                tokens=payment.tokens,
                new_balance=self.get_balance(payment.user_id),
                already_processed=True,
            )

        package = None
        if payment.package_id:
            package = self.db.query(TokenPackage).filter(TokenPackage.id == payment.package_id).one_or_none()
        package_name = package.name if package else (payment.meta or {}).get("package_name", "token package")

        try:
            payment.status = STATUS_SUCCEEDED
            user = self._lock_user(payment.user_id)
            tx = self._append(
                user,
                payment.tokens,
                TYPE_PURCHASE,
                f"Purchased {payment.tokens} tokens from {package_name}",
                "purchase",
                payment_id=payment.id,
                package_id=payment.package_id,
                meta={
                    "stripe_payment_intent_id": payment_intent_id,
                    "amount": payment.amount,
                    "currency": payment.currency,
                    **{k: v for k, v in (payment.meta or {}).items() if k in ("base_tokens", "bonus_tokens", "discount_percentage")},
                },
            )
            self.db.add(payment)
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.warning(
                "payment_duplicate_credit",
                extra={"payment_intent_id": payment_intent_id},
            )
            payment = (
                self.db.query(Payment)
                .filter(Payment.stripe_payment_intent_id == payment_intent_id)
                .one()
            )
            return CreditResult(
                payment=payment,
                tokens=payment.tokens,
                new_balance=self.get_balance(payment.user_id),
                already_processed=True,
            )

        token_operations_total.labels(operation=TYPE_PURCHASE).inc()
        logger.info(
            "payment_credited",
            extra={
                "user_id": user.id,
                "payment_id": payment.id,
                "payment_intent_id": payment_intent_id,
                "package_id": payment.package_id,
                "tokens": payment.tokens,
                "new_balance": user.tokens,
            },
        )
        return CreditResult(payment=payment, tokens=payment.tokens, new_balance=user.tokens, transaction=tx)

    def refund_image(self, image: Image, reason: str = "generation_failed") -> TokenTransaction | None:
        """Give back the tokens charged for a failed image. At most once per image."""
        if not image.tokens_used or image.tokens_used <= 0:
            return None
        try:
            user = self._lock_user(image.user_id)
            tx = self._append(
                user,
                image.tokens_used,
                TYPE_REFUND,
                "Refund for failed image generation",
                "refund",
                image_id=image.id,
                ai_provider=image.provider,
                meta={"reason": reason},
            )
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.info("image_refund_already_applied", extra={"image_id": image.id})
            return None
        token_operations_total.labels(operation=TYPE_REFUND).inc()
        logger.info(
            "image_refunded",
            extra={"user_id": image.user_id, "image_id": image.id, "tokens": image.tokens_used, "new_balance": user.tokens},
        )
        return tx

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def history(
        self,
        user_id: str | None = None,
        *,
        type_: str | None = None,
        category: str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        search: str | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[TokenTransaction], int]:
        q = self.db.query(TokenTransaction)
        if user_id:
            q = q.filter(TokenTransaction.user_id == user_id)
        if type_:
            q = q.filter(TokenTransaction.type == type_)
        if category:
            q = q.filter(TokenTransaction.category == category)
        if start_date:
            q = q.filter(TokenTransaction.created_at >= start_date)
        if end_date:
            q = q.filter(TokenTransaction.created_at <= end_date)
        if search:
            pattern = f"%{search}%"
            q = q.filter(or_(TokenTransaction.description.ilike(pattern), TokenTransaction.prompt.ilike(pattern)))
        total = q.count()
        rows = (
            q.order_by(TokenTransaction.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return rows, total

    def _grouped(self, column, since: datetime, user_id: str | None = None, *extra_filters) -> list[dict]:
        q = self.db.query(
            column.label("key"),
            func.sum(TokenTransaction.amount).label("total"),
            func.count(TokenTransaction.id).label("count"),
        ).filter(TokenTransaction.created_at >= since, *extra_filters)
        if user_id:
            q = q.filter(TokenTransaction.user_id == user_id)
        rows = q.group_by(column).order_by(column).all()
        return [
            {"id": str(r.key) if r.key is not None else None, "total": int(r.total or 0), "count": r.count}
            for r in rows
        ]

    def analytics(self, user_id: str, period: str = "30d") -> dict:
        since = period_start(period)
        total_spent = (
            self.db.query(func.coalesce(func.sum(TokenTransaction.amount), 0))
            .filter(
                TokenTransaction.user_id == user_id,
                TokenTransaction.type == TYPE_SPEND,
                TokenTransaction.created_at >= since,
            )
            .scalar()
        )
        return {
            "period": period if period in PERIOD_DAYS else "30d",
            "total_spent": abs(int(total_spent or 0)),
            "tokens_by_category": self._grouped(TokenTransaction.category, since, user_id),
            "tokens_by_provider": self._grouped(
                TokenTransaction.ai_provider, since, user_id, TokenTransaction.ai_provider.isnot(None)
            ),
            "daily_usage": self._grouped(func.date(TokenTransaction.created_at), since, user_id),
        }

    def system_analytics(self, period: str = "30d") -> dict:
        since = period_start(period)
        total = (
            self.db.query(func.coalesce(func.sum(TokenTransaction.amount), 0))
            .filter(TokenTransaction.created_at >= since)
            .scalar()
        )
        spent = func.sum(TokenTransaction.amount).label("total_spent")
        top = (
            self.db.query(User.id, User.username, User.email, spent)
            .join(TokenTransaction, TokenTransaction.user_id == User.id)
            .filter(TokenTransaction.type == TYPE_SPEND, TokenTransaction.created_at >= since)
            .group_by(User.id, User.username, User.email)
            .order_by(spent.asc())
            .limit(10)
            .all()
        )
        return {
            "period": period if period in PERIOD_DAYS else "30d",
            "total_tokens": int(total or 0),
            "tokens_by_type": self._grouped(TokenTransaction.type, since),
            "top_users": [
                {"user_id": r.id, "username": r.username, "email": r.email, "total_spent": abs(int(r.total_spent or 0))}
                for r in top
            ],
            "daily_system_usage": self._grouped(func.date(TokenTransaction.created_at), since),
        }

    def reconcile(self, user_id: str) -> dict:
        """Compare the cached balance with the ledger sum."""
        balance = self.get_balance(user_id)
        ledger_sum = (
            self.db.query(func.coalesce(func.sum(TokenTransaction.amount), 0))
            .filter(TokenTransaction.user_id == user_id)
            .scalar()
        )
        ledger_sum = int(ledger_sum or 0)
        drift = balance - ledger_sum
        if drift:
            logger.warning("ledger_drift_detected", extra={"user_id": user_id, "amount": drift})
        return {"user_id": user_id, "balance": balance, "ledger_sum": ledger_sum, "drift": drift}
