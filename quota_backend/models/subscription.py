from datetime import datetime
from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict


class SubscriptionStatus(BaseModel):
    """Normalized view of a user's most recent subscription."""
    model_config = ConfigDict(frozen=True)

    plan: str
    status: str  # active, past_due, cancelled, inactive
    service: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    renews_at: Optional[datetime] = None
    canceled_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    @property
    def is_paid(self) -> bool:
        return bool(self.plan) and self.plan != "free"

    @classmethod
    def from_record(cls, record: Dict[str, Any], status: str) -> "SubscriptionStatus":
        return cls(
            plan=record.get("plan") or "free",
            status=status,
            service=record.get("service"),
            stripe_subscription_id=record.get("stripe_subscription_id"),
            renews_at=record.get("renews_at"),
            canceled_at=record.get("canceled_at"),
        )
