"""
Access control evaluator decision table and fail-closed behavior.
"""
from unittest.mock import patch

import pytest

from quota_backend.features.access.service import evaluate_access
from quota_backend.features.billing.subscriptions import get_subscription_status, normalize_status, upsert_subscription
from quota_backend.features.credits.service import add_credits_by_email
from quota_backend.models.access import NO_ACCESS, DenyReason


EMAIL = "user@example.com"


def _subscribe(plan, status, sub_id="sub_1"):
    upsert_subscription(EMAIL, plan, status, sub_id)


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("active", "active"),
        ("trialing", "active"),
        ("past_due", "past_due"),
        ("unpaid", "past_due"),
        ("canceled", "cancelled"),
        ("cancelled", "cancelled"),
        ("incomplete", "inactive"),
        (None, "inactive"),
    ],
)
def test_status_normalization(raw, expected):
    assert normalize_status(raw) == expected


def test_subscription_status_absent():
    assert get_subscription_status(EMAIL) is None


def test_upsert_subscription_updates_in_place():
    _subscribe("pro", "active")
    _subscribe("pro", "past_due")

    status = get_subscription_status(EMAIL.upper())
    assert status.plan == "pro"
    assert status.status == "past_due"
    assert not status.is_active


@pytest.mark.parametrize("email", [None, "", "   "])
def test_missing_email_denies_no_identity(email):
    decision = evaluate_access(email)
    assert not decision.allowed
    assert decision.reason == DenyReason.NO_IDENTITY
    assert decision.code == NO_ACCESS


def test_no_subscription_and_no_credits():
    decision = evaluate_access(EMAIL)
    assert decision.reason == DenyReason.NO_SUBSCRIPTION
    assert decision.message


def test_no_subscription_with_credits_is_allowed():
    add_credits_by_email(EMAIL, 5)
    assert evaluate_access(EMAIL).allowed


def test_free_plan_without_credits():
    _subscribe("free", "active")
    assert evaluate_access(EMAIL).reason == DenyReason.NO_SUBSCRIPTION


def test_active_paid_subscription_is_allowed():
    _subscribe("pro", "active")
    assert evaluate_access(EMAIL).allowed


def test_trialing_counts_as_active():
    _subscribe("agency", "trialing")
    assert evaluate_access(EMAIL).allowed


def test_inactive_paid_subscription_without_credits():
    _subscribe("pro", "past_due")
    decision = evaluate_access(EMAIL)
    assert decision.reason == DenyReason.SUBSCRIPTION_INACTIVE
    assert decision.to_dict() == {
        "allowed": False,
        "code": NO_ACCESS,
        "reason": "subscription_inactive",
        "message": decision.message,
    }


def test_cancelled_subscription_falls_back_to_credits():
    _subscribe("pro", "canceled")
    add_credits_by_email(EMAIL, 1)
    assert evaluate_access(EMAIL).allowed


def test_internal_error_fails_closed():
    add_credits_by_email(EMAIL, 5)
    with patch(
        "quota_backend.features.access.service.get_balance",
        side_effect=RuntimeError("store down"),
    ):
        decision = evaluate_access(EMAIL)
    assert not decision.allowed
    assert decision.reason == DenyReason.SUBSCRIPTION_INACTIVE


def test_identity_failure_denies_no_identity():
    with patch(
        "quota_backend.features.access.service.get_or_create_identity",
        side_effect=RuntimeError("store down"),
    ):
        decision = evaluate_access(EMAIL)
    assert decision.reason == DenyReason.NO_IDENTITY
