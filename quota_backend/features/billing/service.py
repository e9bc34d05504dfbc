"""
Billing service orchestrator.

Coordinates:
- Webhook intake with event-level idempotency (billing_events)
- Credit-pack purchases into the credit ledger
- Plan purchases into licenses and subscription rows

All Stripe-specific code is in stripe_provider.py.
"""
import hashlib
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from quota_backend.core.config import settings
from quota_backend.core.errors import AppError, ValidationError
from quota_backend.core.logging import log_event
from quota_backend.core.store import get_store
from quota_backend.features.billing.provider import (
    BillingProvider,
    BillingProviderError,
    BillingWebhookError,
    CheckoutCompleted,
)
from quota_backend.features.billing.stripe_provider import StripeProvider
from quota_backend.features.billing.subscriptions import upsert_subscription
from quota_backend.features.credits.service import add_credits_by_email, normalize_email
from quota_backend.features.licenses.service import (
    apply_plan_purchase,
    auto_attach_license,
    create_license,
    find_license_by_subscription,
    find_license_for_user,
    get_license_snapshot,
)
from quota_backend.features.notifications.service import (
    CREDITS_PURCHASED,
    LICENSE_ACTIVATED,
    PostCommitHooks,
    get_sender,
)
from quota_backend.features.plans.service import DEFAULT_SERVICE, validate_plan
from quota_backend.features.users.service import get_user, get_user_by_email
from quota_backend.models.license import BillingRefs, Recipient, UserOwner
from quota_backend.models.site import SiteInfo


logger = logging.getLogger(__name__)

_provider: Optional[BillingProvider] = None


def billing_enabled() -> bool:
    """Check if billing is enabled (Stripe configured)."""
    return bool(settings.STRIPE_SECRET_KEY)


def get_provider() -> Optional[BillingProvider]:
    """Get billing provider if billing is enabled."""
    if _provider is not None:
        return _provider
    if not billing_enabled():
        return None
    try:
        return StripeProvider()
    except BillingProviderError:
        return None


def set_provider(provider: Optional[BillingProvider]) -> None:
    global _provider
    _provider = provider


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _mark_event(event_id: str, values: Dict[str, Any]) -> None:
    _, error = get_store().update("billing_events", {"stripe_event_id": event_id}, values)
    if error:
        logger.error("billing.event_mark_failed", extra={"stripe_event_id": event_id, "error_code": error.code})


def process_webhook_event(headers: Dict[str, str], body: bytes) -> Dict[str, Any]:
    """
    Process billing webhook event (idempotent).

    1. Verify signature
    2. Check idempotency (skip only if already processed)
    3. Record the event, or re-dispatch one whose earlier delivery failed
    4. Apply state changes
    5. Mark as processed, or store the error and re-raise

    Raises:
        BillingWebhookError: If billing is disabled or the signature is invalid
    """
    provider = get_provider()
    if not provider:
        raise BillingWebhookError("Billing not enabled")

    event = provider.handle_webhook(headers, body)
    summary: Dict[str, Any] = {"eventId": event.event_id, "eventType": event.event_type, "duplicate": False}

    store = get_store()
    recorded = store.select_one(
        "billing_events", {"stripe_event_id": event.event_id}, columns=["id", "processed"]
    ).unwrap()
    if recorded and recorded["processed"]:
        logger.info("billing.duplicate_event", extra={"stripe_event_id": event.event_id, "event_type": event.event_type})
        return {**summary, "duplicate": True}

    if recorded:
        # Earlier delivery failed or never finished; the ledger key and the
        # subscription lookup keep the re-run from granting twice
        logger.info("billing.event_retry", extra={"stripe_event_id": event.event_id, "event_type": event.event_type})
        _mark_event(event.event_id, {"error": None})
    else:
        _, error = store.insert(
            "billing_events",
            {
                "stripe_event_id": event.event_id,
                "event_type": event.event_type,
                "payload_hash": hashlib.sha256(body).hexdigest(),
                "processed": False,
                "received_at": _now(),
            },
        )
        if error:
            if error.conflict:
                # Race condition: another worker already recorded this event
                return {**summary, "duplicate": True}
            raise error

    try:
        if event.checkout is not None:
            summary["result"] = handle_checkout_completed(event.checkout)
        else:
            logger.info("billing.event_ignored", extra={"event_type": event.event_type})
    except Exception as e:
        _mark_event(event.event_id, {"error": str(e)[:1000]})
        log_event(
            "error",
            "billing.event_failed",
            event_type=event.event_type,
            error_code=getattr(e, "code", "unhandled"),
            extra={"stripe_event_id": event.event_id, "error": e},
        )
        raise

    _mark_event(event.event_id, {"processed": True, "processed_at": _now()})
    return summary


def _resolve_user_id(event: CheckoutCompleted) -> Optional[str]:
    if event.user_id and get_user(event.user_id):
        return event.user_id
    if event.email:
        user = get_user_by_email(event.email)
        if user:
            return user.id
    return None


def handle_checkout_completed(event: CheckoutCompleted) -> Dict[str, Any]:
    """
    Apply a completed checkout.

    Credit purchases go to the credit ledger keyed by the checkout session id,
    so a replayed session adds nothing. Plan purchases upgrade the buyer's
    existing license or issue a new one.
    """
    if event.is_credit_purchase:
        return _apply_credit_purchase(event)
    return _apply_plan_purchase(event)


def _apply_credit_purchase(event: CheckoutCompleted) -> Dict[str, Any]:
    if not event.email:
        raise ValidationError("Credit purchase has no customer email")
    if not event.credits:
        raise ValidationError("Credit purchase has no credit amount")

    balance = add_credits_by_email(event.email, event.credits, idempotency_key=event.session_id)

    hooks = PostCommitHooks(context={"stripe_event_id": event.event_id})
    hooks.add(
        "credits.email",
        get_sender().send,
        event.email,
        CREDITS_PURCHASED,
        {"credits": event.credits, "balance": balance},
    )
    hooks.run()
    return {"kind": "credits", "credits": event.credits, "balance": balance}


def _apply_plan_purchase(event: CheckoutCompleted) -> Dict[str, Any]:
    plan = validate_plan(event.plan)
    service = event.service or DEFAULT_SERVICE
    billing = BillingRefs(stripe_customer_id=event.customer_id, stripe_subscription_id=event.subscription_id)
    site_info = SiteInfo(site_url=event.site_url, site_hash=event.site_hash, install_id=event.install_id)

    if event.subscription_id:
        existing = find_license_by_subscription(event.subscription_id)
        if existing is not None:
            logger.info("billing.license_exists", extra={"license_key": existing.license_key})
            return {"kind": "plan", "license": get_license_snapshot(existing), "created": False}

    user_id = _resolve_user_id(event)
    license = find_license_for_user(user_id, service) if user_id else None
    created = license is None

    if license is not None:
        license = apply_plan_purchase(license.id, plan, service, billing)
        if not site_info.is_empty:
            try:
                license = auto_attach_license(license.id, site_info).license
            except AppError as exc:
                logger.warning(
                    "license.attach_failed",
                    extra={"license_key": license.license_key, "error_code": exc.code},
                )
    else:
        license = create_license(
            plan,
            service,
            owner=UserOwner(user_id=user_id) if user_id else None,
            site_info=site_info,
            billing=billing,
            recipient=Recipient(email=event.email) if event.email else None,
        )

    if user_id:
        get_store().update("app_users", {"id": user_id}, {"plan": plan, "service": service}).unwrap()

    if event.email and event.subscription_id:
        upsert_subscription(
            event.email,
            plan,
            "active",
            event.subscription_id,
            service=service,
            stripe_customer_id=event.customer_id,
        )

    hooks = PostCommitHooks(context={"stripe_event_id": event.event_id, "license_key": license.license_key})
    if event.email and not created:
        hooks.add(
            "license.activated_email",
            get_sender().send,
            normalize_email(event.email),
            LICENSE_ACTIVATED,
            {"plan": plan, "licenseKey": license.license_key, "tokenLimit": license.token_limit},
        )
    hooks.run()

    logger.info(
        "billing.plan_applied",
        extra={"license_key": license.license_key, "plan": plan, "service": service, "new_license": created},
    )
    return {"kind": "plan", "license": get_license_snapshot(license), "created": created}
