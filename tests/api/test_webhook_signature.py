"""Webhook requests signed with a real Stripe-Signature header (no verification mocks)."""
import hashlib
import hmac
import json
import time
from unittest.mock import patch

import pytest

from app.models.payment import Payment, STATUS_PENDING, STATUS_SUCCEEDED
from app.models.token_transaction import TokenTransaction

WEBHOOK_SECRET = "whsec_expected"


def _signed(event: dict, secret: str) -> tuple[bytes, dict]:
    payload = json.dumps(event)
    ts = int(time.time())
    signature = hmac.new(secret.encode(), f"{ts}.{payload}".encode(), hashlib.sha256).hexdigest()
    return payload.encode(), {"stripe-signature": f"t={ts},v1={signature}", "content-type": "application/json"}


def _succeeded(intent_id: str) -> dict:
    return {
        "id": "evt_1",
        "object": "event",
        "type": "payment_intent.succeeded",
        "data": {"object": {"id": intent_id, "object": "payment_intent", "status": "succeeded"}},
    }


@pytest.fixture(autouse=True)
def webhook_secret():
    with patch("app.services.payments.service.settings.stripe_webhook_secret", WEBHOOK_SECRET):
        yield


@pytest.fixture
def pending(db, make_user):
    user = make_user()
    db.add(Payment(user_id=user.id, stripe_payment_intent_id="pi_sig", amount=999, tokens=50, status=STATUS_PENDING))
    db.commit()
    return user


def test_wrong_secret_rejected_without_state_change(client, db, pending):
    body, headers = _signed(_succeeded("pi_sig"), "whsec_attacker")

    response = client.post("/api/webhooks/stripe", content=body, headers=headers)

    assert response.status_code == 400
    assert response.json() == {"detail": "Invalid signature"}
    db.expire_all()
    assert db.query(Payment).one().status == STATUS_PENDING
    assert db.query(TokenTransaction).count() == 0
    db.refresh(pending)
    assert pending.tokens == 0


def test_missing_signature_header_rejected(client, db, pending):
    body, _ = _signed(_succeeded("pi_sig"), WEBHOOK_SECRET)
    response = client.post("/api/webhooks/stripe", content=body, headers={"content-type": "application/json"})
    assert response.status_code == 400
    db.expire_all()
    assert db.query(Payment).one().status == STATUS_PENDING


def test_valid_signature_credits(client, db, pending):
    body, headers = _signed(_succeeded("pi_sig"), WEBHOOK_SECRET)

    response = client.post("/api/webhooks/stripe", content=body, headers=headers)

    assert response.status_code == 200
    assert response.json() == {"received": True}
    db.expire_all()
    assert db.query(Payment).one().status == STATUS_SUCCEEDED
    db.refresh(pending)
    assert pending.tokens == 50
