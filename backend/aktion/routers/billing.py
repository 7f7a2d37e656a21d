"""
Subscription billing (Stripe)

Endpoints:
- POST /api/stripe/create-checkout-session -> hosted checkout URL for a plan
- POST /api/stripe/webhook                 -> subscription lifecycle events
"""

import logging

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request
from supabase import Client

from aktion.config import Settings
from aktion.deps import get_payments, get_settings, get_supabase
from aktion.schemas import CamelModel, RequiredStr
from aktion.services.payments import (
    StripeGateway,
    resolve_plan,
    stripe_value,
    subscription_period_end,
    subscription_price_id,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/stripe", tags=["billing"])


class CheckoutRequest(CamelModel):
    price_id: RequiredStr
    user_id: RequiredStr
    user_email: RequiredStr
    data_opt_in: bool = False


# =====================================================
# Checkout
# =====================================================
@router.post("/create-checkout-session")
async def create_checkout_session(
    req: CheckoutRequest,
    settings: Settings = Depends(get_settings),
    payments: StripeGateway = Depends(get_payments),
):
    """Start a subscription checkout; data-sharing opt-in earns a discount coupon."""
    opt_in = "true" if req.data_opt_in else "false"
    params = {
        "mode": "subscription",
        "payment_method_types": ["card"],
        "line_items": [{"price": req.price_id, "quantity": 1}],
        "success_url": f"{settings.site_url}/canvas?session_id={{CHECKOUT_SESSION_ID}}",
        "cancel_url": f"{settings.site_url}/pricing?canceled=true",
        "customer_email": req.user_email,
        "metadata": {"userId": req.user_id, "dataOptIn": opt_in},
        "subscription_data": {"metadata": {"userId": req.user_id, "dataOptIn": opt_in}},
    }
    if req.data_opt_in:
        params["discounts"] = [{"coupon": settings.stripe_data_sharing_coupon_id}]

    session = payments.create_checkout_session(**params)
    logger.info(f"Checkout session created: user={req.user_id}, price={req.price_id}")
    return {"sessionId": session["id"], "url": session["url"]}


# =====================================================
# Webhook
# =====================================================
@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    supabase: Client = Depends(get_supabase),
    settings: Settings = Depends(get_settings),
    payments: StripeGateway = Depends(get_payments),
):
    payload = await request.body()
    signature = request.headers.get("stripe-signature", "")

    try:
        event = payments.construct_event(payload, signature)
    except (ValueError, stripe.SignatureVerificationError) as e:
        logger.error(f"Webhook signature verification failed: {e}")
        raise HTTPException(status_code=400, detail="Invalid signature")

    event_type = event["type"]
    obj = event["data"]["object"]
    logger.info(f"Stripe webhook received: {event_type}")

    if event_type == "checkout.session.completed":
        _checkout_completed(supabase, settings, payments, obj)
    elif event_type == "customer.subscription.updated":
        _subscription_updated(supabase, settings, obj)
    elif event_type == "customer.subscription.deleted":
        _subscription_deleted(supabase, obj)
    elif event_type == "invoice.payment_succeeded":
        _payment_succeeded(supabase, settings, payments, obj)
    elif event_type == "invoice.payment_failed":
        _payment_failed(supabase, payments, obj)
    else:
        logger.info(f"Unhandled event type: {event_type}")

    return {"received": True}


def _checkout_completed(supabase: Client, settings: Settings, payments: StripeGateway, session):
    """Activate the subscription: tier, credits and Stripe ids on the profile."""
    user_id = stripe_value(stripe_value(session, "metadata"), "userId")
    if not user_id:
        logger.error("No userId in checkout session metadata")
        return

    subscription = payments.retrieve_subscription(session["subscription"])
    tier, credits = resolve_plan(subscription_price_id(subscription), settings)

    supabase.table("profiles").upsert(
        {
            "id": user_id,
            "subscription_tier": tier,
            "stripe_customer_id": stripe_value(session, "customer"),
            "stripe_subscription_id": subscription["id"],
            "subscription_status": subscription["status"],
            "current_period_end": subscription_period_end(subscription),
            "credits": credits,
        }
    ).execute()

    logger.info(f"Subscription activated: user={user_id}, tier={tier}, credits={credits}")


def _subscription_updated(supabase: Client, settings: Settings, subscription):
    tier, credits = resolve_plan(subscription_price_id(subscription), settings)

    supabase.table("profiles").update(
        {
            "subscription_tier": tier,
            "subscription_status": subscription["status"],
            "current_period_end": subscription_period_end(subscription),
            "credits": credits,
        }
    ).eq("stripe_subscription_id", subscription["id"]).execute()

    logger.info(
        f"Subscription updated: id={subscription['id']}, tier={tier}, "
        f"status={subscription['status']}"
    )


def _subscription_deleted(supabase: Client, subscription):
    supabase.table("profiles").update(
        {"subscription_tier": "free", "subscription_status": "canceled", "credits": 0}
    ).eq("stripe_subscription_id", subscription["id"]).execute()

    logger.info(f"Subscription canceled: {subscription['id']}")


def _invoice_subscription(payments: StripeGateway, invoice):
    subscription_id = stripe_value(invoice, "subscription")
    if not subscription_id:
        # Newer API versions nest it under parent.subscription_details
        details = stripe_value(stripe_value(invoice, "parent"), "subscription_details")
        subscription_id = stripe_value(details, "subscription")
    if not subscription_id:
        return None, None
    subscription = payments.retrieve_subscription(subscription_id)
    user_id = stripe_value(stripe_value(subscription, "metadata"), "userId")
    return subscription, user_id


def _payment_succeeded(supabase: Client, settings: Settings, payments: StripeGateway, invoice):
    """Refill the plan's credits on every successful renewal."""
    subscription, user_id = _invoice_subscription(payments, invoice)
    if not user_id:
        return

    _, credits = resolve_plan(subscription_price_id(subscription), settings)
    supabase.table("profiles").update(
        {"credits": credits, "subscription_status": "active"}
    ).eq("id", user_id).execute()

    logger.info(f"Payment succeeded: user={user_id}, credits refilled to {credits}")


def _payment_failed(supabase: Client, payments: StripeGateway, invoice):
    _, user_id = _invoice_subscription(payments, invoice)
    if not user_id:
        return

    supabase.table("profiles").update({"subscription_status": "past_due"}).eq(
        "id", user_id
    ).execute()

    logger.warning(f"Payment failed: user={user_id}")
