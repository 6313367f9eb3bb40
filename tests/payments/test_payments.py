"""Tests for PaymentService: intent creation, confirmation and webhook reconciliation (Stripe mocked)."""
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest
import stripe

from app.core.errors import BadRequestError, ServiceUnavailableError
from app.models.audit_log import AuditLog
from app.models.payment import (
    Payment,
    STATUS_CANCELLED,
    STATUS_DISPUTED,
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_SUCCEEDED,
)
from app.models.token_package import TokenPackage
from app.models.token_transaction import TokenTransaction, TYPE_PURCHASE
from app.services.payments.service import PaymentService


@pytest.fixture(autouse=True)
def stripe_key():
    with patch("app.services.payments.service.settings.stripe_secret_key", "sk_test_123"):
        yield


@pytest.fixture
def package(db):
    pkg = TokenPackage(
        name="Popular",
        description="Most popular",
        tokens=150,
        bonus_tokens=25,
        price=Decimal("24.99"),
        discount_percentage=17,
        currency="USD",
    )
    db.add(pkg)
    db.commit()
    return pkg


def _intent(id_="pi_1", status="requires_payment_method"):
    intent = MagicMock()
    intent.id = id_
    intent.client_secret = f"{id_}_secret"
    intent.status = status
    return intent


def _event(type_, obj):
    return {"type": type_, "data": {"object": obj}}


class TestPackages:
    def test_seed_is_idempotent(self, db):
        service = PaymentService(db)
        assert service.seed_default_packages() == 4
        assert service.seed_default_packages() == 0
        assert [p.name for p in service.list_active_packages()] == ["Starter", "Popular", "Pro", "Enterprise"]

    def test_inactive_packages_hidden(self, db, package):
        package.is_active = False
        db.commit()
        assert PaymentService(db).list_active_packages() == []


class TestCreatePaymentIntent:
    @patch("app.services.payments.service.stripe.PaymentIntent.create")
    def test_creates_pending_payment_with_discounted_amount(self, create, db, make_user, package):
        create.return_value = _intent()
        user = make_user()

        result = PaymentService(db).create_payment_intent(user, package.id)

        assert result["client_secret"] == "pi_1_secret"
        kwargs = create.call_args.kwargs
        assert kwargs["amount"] == 2074  # 24.99 less 17%, half-up
        assert kwargs["currency"] == "usd"
        assert kwargs["metadata"]["tokens"] == "175"
        payment = db.query(Payment).one()
        assert payment.status == STATUS_PENDING
        assert payment.tokens == 175
        assert payment.stripe_payment_intent_id == "pi_1"

    @patch("app.services.payments.service.stripe.PaymentIntent.create")
    def test_unknown_package_never_reaches_stripe(self, create, db, make_user):
        with pytest.raises(BadRequestError, match="Invalid or inactive package"):
            PaymentService(db).create_payment_intent(make_user(), "nope")
        create.assert_not_called()
        assert db.query(Payment).count() == 0

    @patch("app.services.payments.service.stripe.PaymentIntent.create")
    def test_expired_package(self, create, db, make_user, package):
        package.expires_at = datetime.now(timezone.utc) - timedelta(days=1)
        db.commit()
        with pytest.raises(BadRequestError, match="expired"):
            PaymentService(db).create_payment_intent(make_user(), package.id)
        create.assert_not_called()

    @patch("app.services.payments.service.stripe.PaymentIntent.create")
    def test_purchase_limit(self, create, db, make_user, package):
        package.max_purchases = 1
        user = make_user()
        db.add(Payment(
            user_id=user.id, package_id=package.id, stripe_payment_intent_id="pi_old",
            amount=2074, tokens=175, status=STATUS_SUCCEEDED,
        ))
        db.commit()
        with pytest.raises(BadRequestError, match="Purchase limit"):
            PaymentService(db).create_payment_intent(user, package.id)
        create.assert_not_called()
        assert db.query(Payment).count() == 1

    @patch("app.services.payments.service.stripe.PaymentIntent.create")
    def test_stripe_error_maps_to_unavailable(self, create, db, make_user, package):
        create.side_effect = stripe.APIConnectionError("down")
        with pytest.raises(ServiceUnavailableError):
            PaymentService(db).create_payment_intent(make_user(), package.id)
        assert db.query(Payment).count() == 0

    def test_not_configured(self, db, make_user, package):
        with patch("app.services.payments.service.settings.stripe_secret_key", ""):
            with pytest.raises(ServiceUnavailableError):
                PaymentService(db).create_payment_intent(make_user(), package.id)


class TestConfirmPayment:
    def _pending(self, db, user, package):
        payment = Payment(
            user_id=user.id, package_id=package.id, stripe_payment_intent_id="pi_1",
            amount=2074, tokens=175, status=STATUS_PENDING, meta={"package_name": package.name},
        )
        db.add(payment)
        db.commit()
        return payment

    @patch("app.services.payments.service.stripe.PaymentIntent.retrieve")
    def test_confirm_credits_once(self, retrieve, db, make_user, package, send_task):
        retrieve.return_value = _intent(status="succeeded")
        user = make_user()
        self._pending(db, user, package)
        service = PaymentService(db)

        result = service.confirm_payment(user, "pi_1")
        assert result["tokens"] == 175
        assert result["new_balance"] == 175
        assert result["package"]["name"] == "Popular"
        send_task.assert_called()  # payment notification queued

        with pytest.raises(BadRequestError, match="already processed"):
            service.confirm_payment(user, "pi_1")
        db.refresh(user)
        assert user.tokens == 175

    @patch("app.services.payments.service.stripe.PaymentIntent.retrieve")
    def test_incomplete_intent_rejected(self, retrieve, db, make_user, package):
        retrieve.return_value = _intent(status="processing")
        user = make_user()
        self._pending(db, user, package)
        with pytest.raises(BadRequestError, match="Payment not completed"):
            PaymentService(db).confirm_payment(user, "pi_1")
        assert db.query(TokenTransaction).count() == 0


class TestSinglePurchasePackage:
    @patch("app.services.payments.service.stripe.PaymentIntent.retrieve")
    @patch("app.services.payments.service.stripe.PaymentIntent.create")
    def test_buy_once_then_limit(self, create, retrieve, db, make_user):
        pkg = TokenPackage(
            name="Fifty", tokens=50, bonus_tokens=0, price=Decimal("9.99"),
            discount_percentage=0, currency="USD", max_purchases=1,
        )
        db.add(pkg)
        db.commit()
        user = make_user()
        service = PaymentService(db)

        create.return_value = _intent("pi_50")
        service.create_payment_intent(user, pkg.id)
        assert create.call_args.kwargs["amount"] == 999

        retrieve.return_value = _intent("pi_50", status="succeeded")
        result = service.confirm_payment(user, "pi_50")
        assert result["tokens"] == 50
        assert result["new_balance"] == 50

        entries = db.query(TokenTransaction).filter(TokenTransaction.user_id == user.id).all()
        assert [(e.type, e.amount) for e in entries] == [(TYPE_PURCHASE, 50)]

        create.reset_mock()
        with pytest.raises(BadRequestError, match="Purchase limit"):
            service.create_payment_intent(user, pkg.id)
        create.assert_not_called()
        db.refresh(user)
        assert user.tokens == 50


class TestWebhookEvents:
    def _pending(self, db, user, intent_id="pi_1"):
        payment = Payment(
            user_id=user.id, stripe_payment_intent_id=intent_id,
            amount=999, tokens=50, status=STATUS_PENDING,
        )
        db.add(payment)
        db.commit()
        return payment

    def test_succeeded_after_confirm_does_not_double_credit(self, db, make_user):
        user = make_user()
        self._pending(db, user)
        service = PaymentService(db)

        service.handle_webhook_event(_event("payment_intent.succeeded", {"id": "pi_1"}))
        service.handle_webhook_event(_event("payment_intent.succeeded", {"id": "pi_1"}))

        db.refresh(user)
        assert user.tokens == 50
        assert db.query(TokenTransaction).filter(TokenTransaction.type == TYPE_PURCHASE).count() == 1

    def test_unknown_payment_is_acknowledged(self, db):
        PaymentService(db).handle_webhook_event(_event("payment_intent.succeeded", {"id": "pi_missing"}))

    @pytest.mark.parametrize(
        "event_type,status",
        [("payment_intent.payment_failed", STATUS_FAILED), ("payment_intent.canceled", STATUS_CANCELLED)],
    )
    def test_pending_transitions(self, db, make_user, event_type, status):
        user = make_user()
        self._pending(db, user)
        PaymentService(db).handle_webhook_event(_event(event_type, {"id": "pi_1"}))
        assert db.query(Payment).one().status == status

    def test_failed_event_does_not_touch_succeeded_payment(self, db, make_user):
        user = make_user()
        payment = self._pending(db, user)
        payment.status = STATUS_SUCCEEDED
        db.commit()
        PaymentService(db).handle_webhook_event(_event("payment_intent.payment_failed", {"id": "pi_1"}))
        assert db.query(Payment).one().status == STATUS_SUCCEEDED

    def test_dispute_marks_payment_and_keeps_tokens(self, db, make_user):
        user = make_user()
        self._pending(db, user)
        service = PaymentService(db)
        service.handle_webhook_event(_event("payment_intent.succeeded", {"id": "pi_1"}))

        service.handle_webhook_event(_event(
            "charge.dispute.created",
            {"id": "dp_1", "payment_intent": "pi_1", "amount": 999, "reason": "fraudulent"},
        ))

        assert db.query(Payment).one().status == STATUS_DISPUTED
        db.refresh(user)
        assert user.tokens == 50
        entry = db.query(AuditLog).filter(AuditLog.action == "payment_disputed").one()
        assert entry.payload["dispute_id"] == "dp_1"

    def test_unhandled_event_type_ignored(self, db):
        PaymentService(db).handle_webhook_event(_event("customer.created", {"id": "cus_1"}))
