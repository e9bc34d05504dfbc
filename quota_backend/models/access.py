"""
quota_backend/models/access.py

Access decision returned by the access control evaluator.
"""

from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict

NO_ACCESS = "NO_ACCESS"


class DenyReason(str, Enum):
    NO_IDENTITY = "no_identity"
    NO_SUBSCRIPTION = "no_subscription"
    SUBSCRIPTION_INACTIVE = "subscription_inactive"
    NO_CREDITS = "no_credits"


DENY_MESSAGES: Dict[DenyReason, str] = {
    DenyReason.NO_IDENTITY: "We could not identify your account. Please sign in to continue.",
    DenyReason.NO_SUBSCRIPTION: "No active subscription found. Please subscribe to continue.",
    DenyReason.SUBSCRIPTION_INACTIVE: "Your subscription is inactive. Please renew to continue.",
    DenyReason.NO_CREDITS: "You have no credits remaining. Please purchase credits or subscribe.",
}


class AccessDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    allowed: bool
    code: Optional[str] = None
    reason: Optional[DenyReason] = None
    message: Optional[str] = None

    @classmethod
    def allow(cls) -> "AccessDecision":
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: DenyReason) -> "AccessDecision":
        return cls(allowed=False, code=NO_ACCESS, reason=reason, message=DENY_MESSAGES[reason])

    def to_dict(self) -> Dict[str, Any]:
        if self.allowed:
            return {"allowed": True}
        return {
            "allowed": False,
            "code": self.code,
            "reason": self.reason.value if self.reason else None,
            "message": self.message,
        }
