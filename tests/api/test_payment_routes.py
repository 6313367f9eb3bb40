"""Payment endpoints when the Celery broker is unreachable after the credit commits."""
from unittest.mock import MagicMock, patch

import pytest
from kombu.exceptions import OperationalError

from app.models.notification import Notification, STATUS_PENDING as NOTIFICATION_PENDING
from app.models.payment import Payment, STATUS_PENDING, STATUS_SUCCEEDED


@pytest.fixture(autouse=True)
def stripe_key():
    with patch("app.services.payments.service.settings.stripe_secret_key", "sk_test_123"):
        yield


@pytest.fixture
def broker_down(send_task):
    send_task.side_effect = OperationalError("broker down")
    return send_task


def _succeeded_intent(intent_id: str) -> MagicMock:
    intent = MagicMock()
    intent.id = intent_id
    intent.status = "succeeded"
    return intent


@patch("app.services.payments.service.stripe.PaymentIntent.retrieve")
def test_confirm_reports_credit_when_broker_down(retrieve, client, db, make_user, auth_headers, broker_down):
    user = make_user()
    db.add(Payment(user_id=user.id, stripe_payment_intent_id="pi_50", amount=999, tokens=50, status=STATUS_PENDING))
    db.commit()
    retrieve.return_value = _succeeded_intent("pi_50")

    response = client.post("/api/payments/confirm", json={"payment_intent_id": "pi_50"}, headers=auth_headers(user))

    assert response.status_code == 200
    assert response.json()["new_balance"] == 50
    broker_down.assert_called()
    db.expire_all()
    assert db.query(Payment).one().status == STATUS_SUCCEEDED
    # the in-app record survives; delivery is simply not queued
    assert db.query(Notification).one().status == NOTIFICATION_PENDING

    again = client.post("/api/payments/confirm", json={"payment_intent_id": "pi_50"}, headers=auth_headers(user))
    assert again.status_code == 400
    assert again.json() == {"detail": "Payment already processed"}


def test_webhook_acknowledged_when_broker_down(client, db, make_user, broker_down):
    user = make_user()
    db.add(Payment(user_id=user.id, stripe_payment_intent_id="pi_w", amount=999, tokens=50, status=STATUS_PENDING))
    db.commit()
    event = {"type": "payment_intent.succeeded", "data": {"object": {"id": "pi_w"}}}

    with patch("app.api.routes.webhooks.PaymentService.construct_event", return_value=event):
        response = client.post("/api/webhooks/stripe", content=b"{}", headers={"stripe-signature": "t=1,v1=x"})

    assert response.status_code == 200
    db.refresh(user)
    assert user.tokens == 50


def test_register_succeeds_when_broker_down(client, broker_down):
    response = client.post(
        "/api/auth/register",
        json={"name": "Ada", "username": "ada", "email": "ada@example.com", "password": "secret123"},
    )
    assert response.status_code == 201
    assert response.json()["access_token"]
