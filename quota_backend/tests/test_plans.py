"""
Plan/limit table.
"""
import pytest

from quota_backend.core.errors import InvalidPlanError
from quota_backend.features.plans import service as plans


@pytest.mark.parametrize(
    "service,plan,expected",
    [
        ("alttext-ai", "free", 50),
        ("alttext-ai", "pro", 1000),
        ("alttext-ai", "agency", 10000),
        ("seo-ai-meta", "free", 10),
        ("seo-ai-meta", "pro", 100),
        ("seo-ai-meta", "agency", 1000),
        ("beepbeep-ai", "free", 25),
        ("beepbeep-ai", "pro", 2500),
        ("beepbeep-ai", "agency", 15000),
    ],
)
def test_token_limits_per_service_and_plan(service, plan, expected):
    assert plans.get_token_limit(plan, service) == expected


def test_unknown_service_uses_default_table():
    assert plans.get_token_limit("pro", "no-such-service") == 1000


def test_unknown_plan_falls_back_to_free_tier():
    assert plans.get_token_limit("enterprise", "seo-ai-meta") == 10
    assert plans.get_token_limit(None, None) == 50


def test_validate_plan_rejects_unknown():
    with pytest.raises(InvalidPlanError) as exc_info:
        plans.validate_plan("enterprise")
    assert exc_info.value.code == "invalid_plan"
    assert exc_info.value.status_code == 400


def test_site_capacity_per_plan():
    assert plans.max_sites_for_plan("agency") == 10
    assert plans.max_sites_for_plan("pro") == 1
    assert plans.max_sites_for_plan("free") == 1


def test_plan_for_price_uses_configured_prices(monkeypatch):
    monkeypatch.setattr(plans.settings, "SEO_AI_META_STRIPE_PRICE_AGENCY", "price_seo_agency")
    assert plans.plan_for_price("price_seo_agency") == ("seo-ai-meta", "agency")
    assert plans.plan_for_price("price_unknown") is None
    assert plans.plan_for_price(None) is None


def test_credit_pack_lookup():
    assert plans.get_credit_pack("pack_500") == {"id": "pack_500", "credits": 500, "price": 1200}
    assert plans.get_credit_pack("pack_nope") is None
