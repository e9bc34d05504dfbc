"""
quota_backend/features/access/service.py

Access control evaluator.

Decides whether an email may run a metered action. Precedence (first match
wins):

1. No email, or no identity can be resolved -> deny ``no_identity``
2. No subscription, free plan, or inactive subscription -> allow while the
   credit balance is positive, else deny ``no_subscription`` (none / free)
   or ``subscription_inactive``
3. Active paid subscription -> allow

Any internal failure denies with ``subscription_inactive``; the evaluator
never raises.
"""

import logging
from typing import Optional

from quota_backend.features.billing.subscriptions import get_subscription_status
from quota_backend.features.credits.service import get_balance, get_or_create_identity
from quota_backend.models.access import AccessDecision, DenyReason
from quota_backend.models.subscription import SubscriptionStatus


logger = logging.getLogger(__name__)


def _decide(subscription: Optional[SubscriptionStatus], balance: int) -> AccessDecision:
    if subscription is not None and subscription.is_paid and subscription.is_active:
        return AccessDecision.allow()
    if balance > 0:
        return AccessDecision.allow()
    if subscription is None or not subscription.is_paid:
        return AccessDecision.deny(DenyReason.NO_SUBSCRIPTION)
    return AccessDecision.deny(DenyReason.SUBSCRIPTION_INACTIVE)


def evaluate_access(email: Optional[str], action: str = "ai_generate") -> AccessDecision:
    """Decide access for ``email``. Fails closed."""
    if not email or not email.strip():
        return AccessDecision.deny(DenyReason.NO_IDENTITY)

    try:
        identity = get_or_create_identity(email)
    except Exception:
        logger.warning("access.identity_unresolved", exc_info=True, extra={"event_type": action})
        return AccessDecision.deny(DenyReason.NO_IDENTITY)

    try:
        subscription = get_subscription_status(identity.email)
        balance = get_balance(identity.id)
        decision = _decide(subscription, balance)
    except Exception:
        logger.error(
            "access.evaluate_failed",
            exc_info=True,
            extra={"identity_id": identity.id, "event_type": action, "error_code": DenyReason.SUBSCRIPTION_INACTIVE.value},
        )
        return AccessDecision.deny(DenyReason.SUBSCRIPTION_INACTIVE)

    if not decision.allowed:
        logger.info(
            "access.denied",
            extra={"identity_id": identity.id, "event_type": action, "error_code": decision.reason.value},
        )
    return decision
