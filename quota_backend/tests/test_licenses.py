"""
License manager: creation, auto-attach, notifications and snapshots.
"""
import uuid

import pytest

from quota_backend.core.errors import (
    InvalidPlanError,
    LicenseNotFoundError,
    PersistenceError,
    NoOwningOrganizationError,
    SiteLimitReachedError,
    SiteOwnershipConflictError,
)
from quota_backend.core.store import QueryStore, StoreResult, get_store, set_store
from quota_backend.features.licenses import service as licenses
from quota_backend.features.notifications.service import LICENSE_ISSUED, SendResult
from quota_backend.features.organizations import service as organizations
from quota_backend.models.license import BillingRefs, OrganizationOwner, Recipient, UserOwner
from quota_backend.models.site import SiteInfo


SITE_A = SiteInfo(site_url="https://a.example", site_hash="hash-a", install_id="install-a")
SITE_B = SiteInfo(site_url="https://b.example", site_hash="hash-b", install_id="install-b")


@pytest.mark.parametrize(
    "plan,service,expected",
    [
        ("free", "alttext-ai", 50),
        ("pro", "alttext-ai", 1000),
        ("agency", "alttext-ai", 10000),
        ("pro", "seo-ai-meta", 100),
        ("agency", "beepbeep-ai", 15000),
    ],
)
def test_create_license_sets_quota_from_plan(plan, service, expected):
    license = licenses.create_license(plan, service)

    assert license.plan == plan
    assert license.service == service
    assert license.token_limit == expected
    assert license.tokens_remaining == expected
    assert license.auto_attach_status == "manual"
    assert license.owner is None
    uuid.UUID(license.license_key)


def test_create_license_rejects_invalid_plan():
    with pytest.raises(InvalidPlanError):
        licenses.create_license("enterprise")
    assert get_store().count("licenses").unwrap() == 0


def test_create_license_with_site_auto_attaches(make_user):
    user_id = make_user("owner@example.com")

    license = licenses.create_license("pro", owner=UserOwner(user_id=user_id), site_info=SITE_A)

    assert license.auto_attach_status == "attached"
    assert license.site_hash == "hash-a"
    site = organizations.get_site(site_hash="hash-a")
    assert site is not None and site.is_active
    memberships = organizations.get_user_memberships(user_id)
    assert [m.role for m in memberships] == ["owner"]
    org = organizations.get_organization(memberships[0].organization_id)
    assert org.name == "owner's Organization"
    assert org.max_sites == 1
    assert org.tokens_remaining == 1000


def test_anonymous_license_with_site_stays_pending():
    license = licenses.create_license("free", site_info=SITE_A)

    assert license.auto_attach_status == "pending"
    assert get_store().count("sites").unwrap() == 0


def test_attach_without_owner_raises_no_owning_organization():
    license = licenses.create_license("free")
    with pytest.raises(NoOwningOrganizationError):
        licenses.auto_attach_license(license.license_key, SITE_A)


def test_attach_unknown_license():
    with pytest.raises(LicenseNotFoundError):
        licenses.auto_attach_license("missing-key", SITE_A)


def test_attach_with_missing_organization_row():
    license = licenses.create_license("pro", owner=OrganizationOwner(organization_id="gone"))
    with pytest.raises(NoOwningOrganizationError):
        licenses.auto_attach_license(license.id, SITE_A)


def test_attach_is_idempotent(make_user):
    user_id = make_user("owner@example.com")
    license = licenses.create_license("pro", owner=UserOwner(user_id=user_id))

    first = licenses.auto_attach_license(license.license_key, SITE_A)
    second = licenses.auto_attach_license(license.license_key, SITE_A)

    assert first.site.id == second.site.id
    assert get_store().count("sites").unwrap() == 1
    assert second.license.auto_attach_status == "attached"


def test_attach_matches_site_by_install_id(make_user):
    user_id = make_user("owner@example.com")
    license = licenses.create_license("pro", owner=UserOwner(user_id=user_id), site_info=SITE_A)

    result = licenses.auto_attach_license(license.id, SiteInfo(install_id="install-a", site_url="https://moved.example"))

    assert result.site.site_hash == "hash-a"
    assert result.site.site_url == "https://moved.example"
    assert get_store().count("sites").unwrap() == 1


def test_site_owned_by_other_organization_conflicts(make_user):
    alice = make_user("alice@example.com")
    bob = make_user("bob@example.com")
    licenses.create_license("pro", owner=UserOwner(user_id=alice), site_info=SITE_A)
    bobs = licenses.create_license("pro", owner=UserOwner(user_id=bob))

    with pytest.raises(SiteOwnershipConflictError) as exc_info:
        licenses.auto_attach_license(bobs.license_key, SITE_A)
    assert exc_info.value.status_code == 409


def test_site_limit_reached(make_user):
    user_id = make_user("owner@example.com")
    license = licenses.create_license("pro", owner=UserOwner(user_id=user_id), site_info=SITE_A)

    with pytest.raises(SiteLimitReachedError) as exc_info:
        licenses.auto_attach_license(license.license_key, SITE_B)
    assert exc_info.value.max_sites == 1
    assert exc_info.value.code == "site_limit_reached"


def test_agency_allows_ten_sites(make_user):
    user_id = make_user("agency@example.com")
    license = licenses.create_license("agency", owner=UserOwner(user_id=user_id))

    for i in range(10):
        licenses.auto_attach_license(license.license_key, SiteInfo(site_hash=f"hash-{i}"))
    with pytest.raises(SiteLimitReachedError):
        licenses.auto_attach_license(license.license_key, SiteInfo(site_hash="hash-11"))


def test_deactivated_site_frees_capacity_and_reactivates(make_user):
    user_id = make_user("owner@example.com")
    license = licenses.create_license("pro", owner=UserOwner(user_id=user_id), site_info=SITE_A)

    organizations.deactivate_site(user_id, site_hash="hash-a")
    result = licenses.auto_attach_license(license.license_key, SITE_B)
    assert result.site.site_hash == "hash-b"

    organizations.deactivate_site(user_id, site_hash="hash-b")
    again = licenses.auto_attach_license(license.license_key, SITE_A)
    assert again.site.is_active
    assert organizations.count_active_sites(again.organization.id) == 1


def test_site_limit_is_soft_under_interleaved_attaches(make_user):
    """Two attaches that both check capacity before either writes both succeed."""
    user_id = make_user("owner@example.com")
    license = licenses.create_license("pro", owner=UserOwner(user_id=user_id))
    org_id = organizations.get_or_create_user_organization(user_id, license)
    org = organizations.get_organization(org_id)

    first_check = organizations.can_add_site(org_id, org, organizations.find_existing_site("hash-a", None, org_id))
    second_check = organizations.can_add_site(org_id, org, organizations.find_existing_site("hash-b", None, org_id))
    assert first_check and second_check

    organizations.create_or_update_site(None, org_id, SITE_A)
    organizations.create_or_update_site(None, org_id, SITE_B)

    assert organizations.count_active_sites(org_id) == org.max_sites + 1


def test_license_email_records_delivery(sender, make_user):
    user_id = make_user("owner@example.com")
    license = licenses.create_license(
        "pro",
        owner=UserOwner(user_id=user_id),
        site_info=SITE_A,
        recipient=Recipient(email="owner@example.com", name="Owner"),
    )

    assert license.email_status == "sent"
    assert license.license_email_sent_at is not None
    [(email, kind, data)] = sender.sent
    assert email == "owner@example.com"
    assert kind == LICENSE_ISSUED
    assert data["licenseKey"] == license.license_key
    assert data["tokenLimit"] == 1000
    assert data["isAttached"] is True
    assert data["siteUrl"] == "https://a.example"


def test_failed_email_is_recorded_and_does_not_fail_creation():
    class Rejecting:
        def send(self, email, template_kind, template_data):
            return SendResult(success=False, error="rejected")

    license = licenses.create_license("free", recipient=Recipient(email="x@example.com"), sender=Rejecting())

    assert license.email_status == "failed"
    assert license.license_email_sent_at is None


def test_raising_sender_does_not_fail_creation():
    class Broken:
        def send(self, email, template_kind, template_data):
            raise RuntimeError("smtp down")

    license = licenses.create_license("free", recipient=Recipient(email="x@example.com"), sender=Broken())

    assert license.email_status == "pending"
    assert get_store().count("licenses").unwrap() == 1


def test_snapshot_is_identical_for_snake_and_camel_records():
    snake = {
        "license_key": "key-1",
        "plan": "pro",
        "service": "alttext-ai",
        "site_url": "https://a.example",
        "auto_attach_status": "pending",
    }
    camel = {
        "licenseKey": "key-1",
        "plan": "pro",
        "service": "alttext-ai",
        "siteUrl": "https://a.example",
        "autoAttachStatus": "pending",
    }

    snapshot = licenses.get_license_snapshot(snake)
    assert snapshot == licenses.get_license_snapshot(camel)
    assert snapshot["tokenLimit"] == 1000
    assert snapshot["tokensRemaining"] == 1000
    assert snapshot["isAttached"] is False
    assert snapshot["siteUrl"] == "https://a.example"


def test_snapshot_prefers_attached_site_values(make_user):
    user_id = make_user("owner@example.com")
    license = licenses.create_license("pro", owner=UserOwner(user_id=user_id), site_info=SITE_A)
    get_store().update("sites", {"site_hash": "hash-a"}, {"site_url": "https://renamed.example"}).unwrap()

    snapshot = licenses.get_license_snapshot(license.license_key)

    assert snapshot["isAttached"] is True
    assert snapshot["siteUrl"] == "https://renamed.example"
    assert snapshot["autoAttachStatus"] == "attached"


def test_apply_plan_purchase_resets_quota():
    license = licenses.create_license("free")

    upgraded = licenses.apply_plan_purchase(
        license.license_key,
        "agency",
        billing=BillingRefs(stripe_customer_id="cus_1", stripe_subscription_id="sub_1"),
    )

    assert upgraded.plan == "agency"
    assert upgraded.token_limit == 10000
    assert upgraded.tokens_remaining == 10000
    assert upgraded.stripe_subscription_id == "sub_1"
    assert licenses.find_license_by_subscription("sub_1").id == license.id


def test_plan_purchase_moves_owned_organization_to_new_plan(make_user):
    user_id = make_user("owner@example.com")
    license = licenses.create_license("free", owner=UserOwner(user_id=user_id), site_info=SITE_A)
    org_id = organizations.get_user_memberships(user_id)[0].organization_id
    assert organizations.get_organization(org_id).max_sites == 1

    licenses.apply_plan_purchase(license.id, "agency")

    org = organizations.get_organization(org_id)
    assert org.plan == "agency"
    assert org.max_sites == 10
    assert org.tokens_remaining == 10000
    assert licenses.auto_attach_license(license.id, SITE_B).site.site_hash == "hash-b"
    assert organizations.count_active_sites(org_id) == 2


def test_plan_purchase_leaves_organizations_the_user_does_not_own(make_user):
    owner_id = make_user("owner@example.com")
    member_id = make_user("member@example.com")
    owner_license = licenses.create_license("free", owner=UserOwner(user_id=owner_id), site_info=SITE_A)
    org_id = organizations.get_user_memberships(owner_id)[0].organization_id
    get_store().insert(
        "organization_members", {"organization_id": org_id, "user_id": member_id, "role": "member"}
    ).unwrap()

    member_license = licenses.create_license("free", owner=UserOwner(user_id=member_id))
    licenses.apply_plan_purchase(member_license.id, "agency")

    assert organizations.get_organization(org_id).plan == "free"
    assert licenses.find_license(owner_license.id).plan == "free"


def test_reload_failure_after_hooks_returns_created_license():
    class LicenseReadDownStore(QueryStore):
        def select_one(self, table, filters=None, **kwargs):
            if table == "licenses":
                return StoreResult(None, PersistenceError("read failed"))
            return super().select_one(table, filters, **kwargs)

    set_store(LicenseReadDownStore())
    license = licenses.create_license("pro", recipient=Recipient(email="buyer@example.com"))

    assert license.plan == "pro"
    assert license.token_limit == 1000
    set_store(None)
    assert get_store().count("licenses").unwrap() == 1


def test_find_license_for_user(make_user):
    user_id = make_user("owner@example.com")
    assert licenses.find_license_for_user(user_id) is None
    license = licenses.create_license("free", owner=UserOwner(user_id=user_id))
    assert licenses.find_license_for_user(user_id).id == license.id
    assert licenses.find_license_for_user(user_id, service="seo-ai-meta") is None


def test_validate_license(make_user):
    user_id = make_user("owner@example.com")
    license = licenses.create_license("pro", owner=UserOwner(user_id=user_id), site_info=SITE_A)
    org_id = organizations.get_user_memberships(user_id)[0].organization_id
    org = organizations.get_organization(org_id)

    assert licenses.validate_license("nope")["valid"] is False

    by_license = licenses.validate_license(license.license_key, site_hash="hash-a")
    assert by_license["valid"] is True
    assert by_license["type"] == "license"
    assert by_license["siteAssociated"] is True

    by_org = licenses.validate_license(org.license_key, site_hash="hash-unknown")
    assert by_org["type"] == "organization"
    assert by_org["siteAssociated"] is False
