"""
quota_backend/features/plans/service.py

Static plan/limit table.

Handles:
- Token limits per (service, plan), with fallback to the service's free tier
- Plan validation and site capacity per plan
- Stripe price id -> (service, plan) mapping
- Credit pack catalog and the one-off credits price
"""

from typing import Dict, Optional, Tuple

from quota_backend.core.config import settings
from quota_backend.core.errors import InvalidPlanError


VALID_PLANS = ("free", "pro", "agency")
DEFAULT_SERVICE = "alttext-ai"

# Service-specific token quotas per billing cycle
PLAN_LIMITS: Dict[str, Dict[str, int]] = {
    "alttext-ai": {
        "free": 50,
        "pro": 1000,
        "agency": 10000,
    },
    "seo-ai-meta": {
        "free": 10,
        "pro": 100,
        "agency": 1000,
    },
    "beepbeep-ai": {
        "free": 25,
        "pro": 2500,
        "agency": 15000,
    },
}

AGENCY_MAX_SITES = 10
DEFAULT_MAX_SITES = 1

# Prices are in pence
CREDIT_PACKS = (
    {"id": "pack_100", "credits": 100, "price": 300},
    {"id": "pack_500", "credits": 500, "price": 1200},
    {"id": "pack_1000", "credits": 1000, "price": 2000},
    {"id": "pack_2500", "credits": 2500, "price": 4500},
)

# One-off purchase of ALTTEXT_AI_STRIPE_PRICE_CREDITS
CREDITS_PRICE_CREDITS = 100


def validate_plan(plan: Optional[str]) -> str:
    """Return ``plan`` if it is a known tier, else raise InvalidPlanError."""
    if plan not in VALID_PLANS:
        raise InvalidPlanError(f"Invalid plan: {plan}")
    return plan


def get_token_limit(plan: Optional[str], service: Optional[str] = None) -> int:
    """Token limit for a plan and service.

    Unknown services use the default service's table; unknown plans use the
    service's free tier.
    """
    service_limits = PLAN_LIMITS.get(service or DEFAULT_SERVICE) or PLAN_LIMITS[DEFAULT_SERVICE]
    return service_limits.get(plan or "free", service_limits["free"])


def max_sites_for_plan(plan: Optional[str]) -> int:
    return AGENCY_MAX_SITES if plan == "agency" else DEFAULT_MAX_SITES


def _price_table() -> Dict[Optional[str], Tuple[str, str]]:
    return {
        settings.ALTTEXT_AI_STRIPE_PRICE_PRO: ("alttext-ai", "pro"),
        settings.ALTTEXT_AI_STRIPE_PRICE_AGENCY: ("alttext-ai", "agency"),
        settings.SEO_AI_META_STRIPE_PRICE_PRO: ("seo-ai-meta", "pro"),
        settings.SEO_AI_META_STRIPE_PRICE_AGENCY: ("seo-ai-meta", "agency"),
        settings.BEEPBEEP_AI_STRIPE_PRICE_PRO: ("beepbeep-ai", "pro"),
        settings.BEEPBEEP_AI_STRIPE_PRICE_AGENCY: ("beepbeep-ai", "agency"),
    }


def plan_for_price(price_id: Optional[str]) -> Optional[Tuple[str, str]]:
    """Map a configured Stripe price id to ``(service, plan)``."""
    if not price_id:
        return None
    return _price_table().get(price_id)


def get_credit_pack(pack_id: str) -> Optional[Dict[str, int]]:
    for pack in CREDIT_PACKS:
        if pack["id"] == pack_id:
            return dict(pack)
    return None


def credits_for_price(price_id: Optional[str]) -> Optional[int]:
    """Credits granted by the configured one-off credits price, if it matches."""
    if price_id and price_id == settings.ALTTEXT_AI_STRIPE_PRICE_CREDITS:
        return CREDITS_PRICE_CREDITS
    return None
