"""
Stripe billing provider implementation.

Implements BillingProvider protocol using the Stripe SDK for signature
verification, and parses ``checkout.session.completed`` events into
``CheckoutCompleted``.
"""
import json
import logging
from typing import Any, Dict, Optional

import stripe

from quota_backend.core.config import settings
from quota_backend.core.records import normalize_record
from quota_backend.features.billing.provider import (
    BillingProviderError,
    BillingWebhookError,
    BillingWebhookEvent,
    CheckoutCompleted,
)
from quota_backend.features.plans.service import credits_for_price, get_credit_pack, plan_for_price


logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"


def _to_int(value: Any) -> Optional[int]:
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class StripeProvider:
    """Stripe implementation of BillingProvider protocol."""

    def __init__(self, secret_key: Optional[str] = None, webhook_secret: Optional[str] = None):
        """
        Args:
            secret_key: Stripe secret key (defaults to STRIPE_SECRET_KEY setting)
            webhook_secret: Stripe webhook secret (defaults to STRIPE_WEBHOOK_SECRET setting)
        """
        self.secret_key = secret_key or settings.STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret or settings.STRIPE_WEBHOOK_SECRET

        if not self.secret_key:
            raise BillingProviderError("STRIPE_SECRET_KEY not configured")

        stripe.api_key = self.secret_key

    def handle_webhook(self, headers: Dict[str, str], body: bytes) -> BillingWebhookEvent:
        """Verify Stripe webhook signature and parse event."""
        if not self.webhook_secret:
            raise BillingWebhookError("STRIPE_WEBHOOK_SECRET not configured")

        sig_header = headers.get("stripe-signature") or headers.get("Stripe-Signature")
        if not sig_header:
            raise BillingWebhookError("Missing stripe-signature header")

        try:
            stripe.Webhook.construct_event(body, sig_header, self.webhook_secret)
        except ValueError as e:
            raise BillingWebhookError(f"Invalid payload: {e}")
        except stripe.SignatureVerificationError as e:
            logger.warning("billing.signature_invalid", extra={"error_code": "invalid_signature"})
            raise BillingWebhookError(f"Invalid signature: {e}")

        # Signature is valid; work from the plain JSON rather than StripeObject
        event = json.loads(body)
        return self._parse_event(event)

    def _parse_event(self, event: Dict[str, Any]) -> BillingWebhookEvent:
        event_type = event.get("type") or ""
        event_id = event.get("id")
        if not event_id:
            raise BillingWebhookError("Event id missing")

        checkout = None
        if event_type == CHECKOUT_COMPLETED:
            checkout = self._parse_checkout(event_id, event.get("data", {}).get("object", {}))
        return BillingWebhookEvent(event_id=event_id, event_type=event_type, checkout=checkout)

    def _parse_checkout(self, event_id: str, session: Dict[str, Any]) -> CheckoutCompleted:
        metadata = normalize_record(session.get("metadata") or {}) or {}
        customer_details = session.get("customer_details") or {}

        service = metadata.get("service")
        plan = metadata.get("plan")
        if not plan:
            mapped = plan_for_price(metadata.get("price_id"))
            if mapped:
                service = service or mapped[0]
                plan = mapped[1]

        credits = _to_int(metadata.get("credits"))
        if credits is None and metadata.get("pack_id"):
            pack = get_credit_pack(metadata["pack_id"])
            credits = pack["credits"] if pack else None
        if credits is None and not plan:
            credits = credits_for_price(metadata.get("price_id"))

        return CheckoutCompleted(
            event_id=event_id,
            session_id=session.get("id") or event_id,
            user_id=metadata.get("user_id"),
            email=customer_details.get("email") or session.get("customer_email") or metadata.get("email"),
            plan=plan,
            service=service,
            credits=credits,
            site_url=metadata.get("site_url"),
            site_hash=metadata.get("site_hash"),
            install_id=metadata.get("install_id"),
            customer_id=session.get("customer"),
            subscription_id=session.get("subscription"),
            payment_intent_id=session.get("payment_intent"),
            metadata=metadata,
        )
