import hashlib
import hmac
import json
import time

import pytest
import stripe

from aktion.deps import get_payments
from aktion.services.payments import (
    StripeGateway,
    resolve_plan,
    stripe_value,
    subscription_period_end,
    subscription_price_id,
)
from main import app

CHECKOUT = {"priceId": "price_indie", "userId": "user-1", "userEmail": "maker@example.com"}


def subscription(price_id="price_indie", status="active", user_id="user-1"):
    return {
        "id": "sub_1",
        "status": status,
        "metadata": {"userId": user_id},
        "items": {"data": [{"price": {"id": price_id}, "current_period_end": 1767225600}]},
    }


def send_event(client, event_type, obj, signature="valid-signature"):
    payload = json.dumps({"type": event_type, "data": {"object": obj}})
    return client.post(
        "/api/stripe/webhook", content=payload, headers={"stripe-signature": signature}
    )


@pytest.fixture
def profile(fake_db):
    fake_db.seed(
        "profiles",
        {
            "id": "user-1",
            "credits": 40,
            "subscription_tier": "hobbyist",
            "stripe_subscription_id": "sub_1",
        },
    )
    return fake_db.rows("profiles")[0]


def test_resolve_plan(test_settings):
    assert resolve_plan("price_pro", test_settings) == ("pro", 2000)
    assert resolve_plan("price_unknown", test_settings) == ("free", 0)
    assert resolve_plan(None, test_settings) == ("free", 0)


def test_period_end_is_iso():
    assert subscription_period_end(subscription()) == "2026-01-01T00:00:00+00:00"
    assert subscription_period_end({"items": {"data": []}}) is None


# =====================================================
# Checkout
# =====================================================
def test_checkout_session(client, payments):
    response = client.post("/api/stripe/create-checkout-session", json=CHECKOUT)

    assert response.json() == {
        "sessionId": "cs_test_1",
        "url": "https://checkout.stripe.test/cs_test_1",
    }
    params = payments.sessions[0]
    assert params["mode"] == "subscription"
    assert params["line_items"] == [{"price": "price_indie", "quantity": 1}]
    assert params["success_url"].startswith("https://aktion.test/canvas?session_id=")
    assert params["subscription_data"]["metadata"]["userId"] == "user-1"
    assert "discounts" not in params


def test_checkout_with_data_sharing_discount(client, payments):
    client.post("/api/stripe/create-checkout-session", json={**CHECKOUT, "dataOptIn": True})

    params = payments.sessions[0]
    assert params["discounts"] == [{"coupon": "DATA_SHARING_10"}]
    assert params["metadata"]["dataOptIn"] == "true"


def test_checkout_missing_fields(client, payments):
    response = client.post("/api/stripe/create-checkout-session", json={"priceId": "price_pro"})

    assert response.status_code == 400
    assert response.json() == {"error": "Missing required fields: userId, userEmail"}
    assert payments.sessions == []


# =====================================================
# Webhook
# =====================================================
def test_webhook_rejects_bad_signature(client, profile):
    response = send_event(client, "customer.subscription.deleted", {"id": "sub_1"}, "forged")

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid signature"}
    assert profile["credits"] == 40


def test_checkout_completed_activates_plan(client, payments, profile):
    payments.subscriptions["sub_1"] = subscription("price_indie")

    response = send_event(
        client,
        "checkout.session.completed",
        {"metadata": {"userId": "user-1"}, "subscription": "sub_1", "customer": "cus_1"},
    )

    assert response.json() == {"received": True}
    assert profile["subscription_tier"] == "indie"
    assert profile["credits"] == 500
    assert profile["stripe_customer_id"] == "cus_1"
    assert profile["current_period_end"] == "2026-01-01T00:00:00+00:00"


def test_checkout_completed_creates_missing_profile(client, fake_db, payments):
    payments.subscriptions["sub_1"] = subscription("price_pro")

    send_event(
        client,
        "checkout.session.completed",
        {"metadata": {"userId": "user-9"}, "subscription": "sub_1", "customer": "cus_9"},
    )

    row = fake_db.rows("profiles")[0]
    assert (row["id"], row["subscription_tier"], row["credits"]) == ("user-9", "pro", 2000)


def test_subscription_updated(client, profile):
    send_event(client, "customer.subscription.updated", subscription("price_pro", "active"))

    assert profile["subscription_tier"] == "pro"
    assert profile["credits"] == 2000


def test_subscription_deleted(client, profile):
    send_event(client, "customer.subscription.deleted", {"id": "sub_1"})

    assert profile["subscription_tier"] == "free"
    assert profile["subscription_status"] == "canceled"
    assert profile["credits"] == 0


def test_renewal_refills_credits(client, payments, profile):
    payments.subscriptions["sub_1"] = subscription("price_hobbyist")

    send_event(client, "invoice.payment_succeeded", {"subscription": "sub_1"})

    assert profile["credits"] == 100
    assert profile["subscription_status"] == "active"


def test_failed_payment_marks_past_due(client, payments, profile):
    payments.subscriptions["sub_1"] = subscription()

    send_event(client, "invoice.payment_failed", {"subscription": "sub_1"})

    assert profile["subscription_status"] == "past_due"
    assert profile["credits"] == 40


def test_unknown_event_is_acknowledged(client, profile):
    response = send_event(client, "charge.refunded", {"id": "ch_1"})

    assert response.json() == {"received": True}


# =====================================================
# Real SDK objects
# =====================================================
def test_helpers_read_stripe_objects():
    sub = stripe.Subscription.construct_from(subscription("price_pro"), "sk_test_key")

    assert subscription_price_id(sub) == "price_pro"
    assert subscription_period_end(sub) == "2026-01-01T00:00:00+00:00"
    assert stripe_value(sub, "customer") is None
    assert stripe_value(sub["metadata"], "userId") == "user-1"


def test_period_end_moved_to_subscription_items():
    sub = stripe.Subscription.construct_from(
        {"id": "sub_2", "items": {"data": [{"current_period_end": 1767225600}]}}, "sk_test_key"
    )

    assert subscription_period_end(sub) == "2026-01-01T00:00:00+00:00"
    assert subscription_price_id(sub) is None


def signed(payload: str, secret: str = "whsec_test") -> str:
    timestamp = int(time.time())
    digest = hmac.new(
        secret.encode(), f"{timestamp}.{payload}".encode(), hashlib.sha256
    ).hexdigest()
    return f"t={timestamp},v1={digest}"


def test_webhook_through_stripe_sdk(client, profile):
    app.dependency_overrides[get_payments] = lambda: StripeGateway("sk_test_key", "whsec_test")
    payload = json.dumps(
        {
            "id": "evt_1",
            "object": "event",
            "type": "customer.subscription.updated",
            "data": {"object": {"object": "subscription", **subscription("price_pro")}},
        }
    )

    response = client.post(
        "/api/stripe/webhook", content=payload, headers={"stripe-signature": signed(payload)}
    )

    assert response.status_code == 200
    assert profile["subscription_tier"] == "pro"
    assert profile["credits"] == 2000
    assert profile["current_period_end"] == "2026-01-01T00:00:00+00:00"


def test_webhook_sdk_rejects_wrong_secret(client, profile):
    app.dependency_overrides[get_payments] = lambda: StripeGateway("sk_test_key", "whsec_test")
    payload = json.dumps({"id": "evt_2", "object": "event", "type": "charge.refunded"})

    response = client.post(
        "/api/stripe/webhook",
        content=payload,
        headers={"stripe-signature": signed(payload, "whsec_other")},
    )

    assert response.status_code == 400
    assert profile["credits"] == 40
