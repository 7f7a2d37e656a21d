"""
Stripe gateway

Thin wrapper around the stripe SDK so handlers receive an injected object
(and tests a fake) instead of a module-level client. Objects returned by
Stripe are read with item syntax, optional fields through stripe_value().
"""

import logging
from datetime import datetime, timezone

import stripe

from aktion.config import Settings
from aktion.services.providers import ProviderNotConfigured

logger = logging.getLogger(__name__)

# Monthly credit allowance per subscription tier
PLAN_CREDITS = {
    "hobbyist": 100,
    "indie": 500,
    "pro": 2000,
}


class StripeGateway:
    def __init__(self, secret_key: str, webhook_secret: str = ""):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret

    def _ensure_configured(self) -> None:
        if not self.secret_key:
            raise ProviderNotConfigured("Stripe")

    def create_payment_intent(
        self,
        *,
        amount: int,
        metadata: dict,
        currency: str = "usd",
        receipt_email: str | None = None,
        description: str | None = None,
    ):
        self._ensure_configured()
        params = {"amount": amount, "currency": currency, "metadata": metadata}
        if receipt_email:
            params["receipt_email"] = receipt_email
        if description:
            params["description"] = description

        intent = stripe.PaymentIntent.create(api_key=self.secret_key, **params)
        logger.info(f"Payment intent created: id={intent['id']}, amount={amount}")
        return intent

    def retrieve_payment_intent(self, intent_id: str):
        self._ensure_configured()
        return stripe.PaymentIntent.retrieve(intent_id, api_key=self.secret_key)

    def create_checkout_session(self, **params):
        self._ensure_configured()
        return stripe.checkout.Session.create(api_key=self.secret_key, **params)

    def retrieve_subscription(self, subscription_id: str):
        self._ensure_configured()
        return stripe.Subscription.retrieve(subscription_id, api_key=self.secret_key)

    def construct_event(self, payload: bytes, signature: str):
        """Verify a webhook payload. Raises ValueError or SignatureVerificationError."""
        if not self.webhook_secret:
            raise ProviderNotConfigured("Stripe webhook")
        return stripe.Webhook.construct_event(payload, signature, self.webhook_secret)


def stripe_value(obj, key: str, default=None):
    """Read an optional field from a StripeObject (or a plain dict).

    StripeObject is not a dict, so .get() is unavailable; membership and
    item access work on both.
    """
    if obj is None or key not in obj:
        return default
    value = obj[key]
    return default if value is None else value


def resolve_plan(price_id: str | None, settings: Settings) -> tuple[str, int]:
    """Map a Stripe price id to (tier, monthly credits)."""
    prices = {
        settings.stripe_price_hobbyist: "hobbyist",
        settings.stripe_price_indie: "indie",
        settings.stripe_price_pro: "pro",
    }
    tier = prices.get(price_id) if price_id else None
    if tier is None:
        return "free", 0
    return tier, PLAN_CREDITS[tier]


def _subscription_items(subscription) -> list:
    return stripe_value(stripe_value(subscription, "items"), "data", [])


def subscription_price_id(subscription) -> str | None:
    items = _subscription_items(subscription)
    if not items:
        return None
    return stripe_value(stripe_value(items[0], "price"), "id")


def subscription_period_end(subscription) -> str | None:
    """ISO timestamp of the current period end (moved onto items in newer API versions)."""
    end = stripe_value(subscription, "current_period_end")
    if end is None:
        items = _subscription_items(subscription)
        end = stripe_value(items[0], "current_period_end") if items else None
    if end is None:
        return None
    return datetime.fromtimestamp(end, tz=timezone.utc).isoformat()
