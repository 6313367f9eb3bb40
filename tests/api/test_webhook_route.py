"""Tests for the Stripe webhook endpoint: signature gate and acknowledgement."""
from unittest.mock import patch

import stripe

from app.models.payment import Payment, STATUS_PENDING, STATUS_SUCCEEDED


def test_invalid_signature_rejected(client):
    with patch(
        "app.api.routes.webhooks.PaymentService.construct_event",
        side_effect=stripe.SignatureVerificationError("bad", "sig"),
    ):
        response = client.post("/api/webhooks/stripe", content=b"{}", headers={"stripe-signature": "bad"})
    assert response.status_code == 400
    assert response.json() == {"detail": "Invalid signature"}


def test_malformed_payload_rejected(client):
    with patch("app.api.routes.webhooks.PaymentService.construct_event", side_effect=ValueError("bad json")):
        response = client.post("/api/webhooks/stripe", content=b"not json")
    assert response.status_code == 400


def test_succeeded_event_credits_payment(client, db, make_user):
    user = make_user()
    db.add(Payment(user_id=user.id, stripe_payment_intent_id="pi_9", amount=999, tokens=50, status=STATUS_PENDING))
    db.commit()
    event = {"type": "payment_intent.succeeded", "data": {"object": {"id": "pi_9"}}}

    with patch("app.api.routes.webhooks.PaymentService.construct_event", return_value=event):
        response = client.post("/api/webhooks/stripe", content=b"{}", headers={"stripe-signature": "t=1,v1=x"})

    assert response.status_code == 200
    assert response.json() == {"received": True}
    db.expire_all()
    assert db.query(Payment).one().status == STATUS_SUCCEEDED
    db.refresh(user)
    assert user.tokens == 50


def test_unknown_event_acknowledged(client):
    event = {"type": "invoice.paid", "data": {"object": {"id": "in_1"}}}
    with patch("app.api.routes.webhooks.PaymentService.construct_event", return_value=event):
        response = client.post("/api/webhooks/stripe", content=b"{}")
    assert response.status_code == 200
