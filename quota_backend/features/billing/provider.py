"""
Billing provider protocol.

Defines the interface for billing providers (Stripe, etc.) so webhook
intake does not depend on a specific provider's SDK.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol


@dataclass(frozen=True)
class CheckoutCompleted:
    """A completed checkout, normalized from the provider's event payload."""
    event_id: str
    session_id: str
    user_id: Optional[str] = None
    email: Optional[str] = None
    plan: Optional[str] = None
    service: Optional[str] = None
    credits: Optional[int] = None
    site_url: Optional[str] = None
    site_hash: Optional[str] = None
    install_id: Optional[str] = None
    customer_id: Optional[str] = None
    subscription_id: Optional[str] = None
    payment_intent_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_credit_purchase(self) -> bool:
        return bool(self.credits) or self.metadata.get("type") in ("credits", "credit_pack")


@dataclass(frozen=True)
class BillingWebhookEvent:
    """Verified webhook envelope. ``checkout`` is set for completed checkouts."""
    event_id: str
    event_type: str
    checkout: Optional[CheckoutCompleted] = None


class BillingProvider(Protocol):
    """
    Protocol for billing providers.

    Implementations must verify the webhook signature before parsing.
    """

    def handle_webhook(self, headers: Dict[str, str], body: bytes) -> BillingWebhookEvent:
        """
        Verify webhook signature and parse event.

        Args:
            headers: HTTP headers (must include signature header)
            body: Raw webhook body (for signature verification)

        Raises:
            BillingWebhookError: If signature invalid or parsing fails
        """
        ...


class BillingProviderError(Exception):
    """Base exception for billing provider errors."""
    pass


class BillingWebhookError(BillingProviderError):
    """Exception for webhook processing errors."""
    pass
