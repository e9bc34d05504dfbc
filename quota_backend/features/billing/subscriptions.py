"""
Subscription status reader.

Reads the latest subscription row for a user email and normalizes the
provider's status vocabulary to active / past_due / cancelled / inactive.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from quota_backend.core.store import get_store
from quota_backend.features.credits.service import normalize_email
from quota_backend.features.plans.service import DEFAULT_SERVICE
from quota_backend.models.subscription import SubscriptionStatus


logger = logging.getLogger(__name__)

_STATUS_MAP = {
    "active": "active",
    "trialing": "active",
    "past_due": "past_due",
    "unpaid": "past_due",
    "canceled": "cancelled",
    "cancelled": "cancelled",
}


def normalize_status(raw_status: Optional[str]) -> str:
    return _STATUS_MAP.get((raw_status or "").strip().lower(), "inactive")


def get_subscription_status(email: str) -> Optional[SubscriptionStatus]:
    """Latest subscription for ``email``, or None when there is none."""
    record = get_store().select_one(
        "subscriptions",
        {"user_email": normalize_email(email)},
        order_by=["-updated_at", "-created_at"],
    ).unwrap()
    if record is None:
        return None
    return SubscriptionStatus.from_record(record, normalize_status(record.get("status")))


def upsert_subscription(
    email: str,
    plan: str,
    status: str,
    stripe_subscription_id: str,
    service: Optional[str] = None,
    stripe_customer_id: Optional[str] = None,
    renews_at: Optional[datetime] = None,
) -> SubscriptionStatus:
    """Insert or update the subscription row keyed by ``stripe_subscription_id``."""
    store = get_store()
    now = datetime.now(timezone.utc)
    values = {
        "user_email": normalize_email(email),
        "plan": plan,
        "status": status,
        "service": service or DEFAULT_SERVICE,
        "stripe_customer_id": stripe_customer_id,
        "renews_at": renews_at,
        "canceled_at": now if normalize_status(status) == "cancelled" else None,
        "updated_at": now,
    }

    rows = store.update("subscriptions", {"stripe_subscription_id": stripe_subscription_id}, values).unwrap()
    if rows:
        record = rows[0]
    else:
        record, error = store.insert(
            "subscriptions",
            {**values, "stripe_subscription_id": stripe_subscription_id, "created_at": now},
        )
        if error:
            if not error.conflict:
                raise error
            # Concurrent insert for the same subscription; apply ours on top
            record = store.update(
                "subscriptions", {"stripe_subscription_id": stripe_subscription_id}, values
            ).unwrap()[0]

    logger.info(
        "subscription.upserted",
        extra={"plan": plan, "status": status, "stripe_subscription_id": stripe_subscription_id},
    )
    return SubscriptionStatus.from_record(record, normalize_status(record.get("status")))
