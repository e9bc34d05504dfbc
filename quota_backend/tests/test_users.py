"""
Registration and installation records.
"""
import pytest

from quota_backend.core.errors import ConflictError
from quota_backend.core.store import get_store
from quota_backend.features.installations.service import record_installation
from quota_backend.features.organizations.service import get_site
from quota_backend.features.users import service as users
from quota_backend.models.site import SiteInfo


def test_register_issues_free_license_and_email(sender):
    user, license = users.register_user("  New@Example.com ", name="New User", service="seo-ai-meta")

    assert user.email == "new@example.com"
    assert user.display_name == "New User"
    assert license.plan == "free"
    assert license.service == "seo-ai-meta"
    assert license.token_limit == 10
    assert license.user_id == user.id
    assert license.email_status == "sent"
    [(email, _, data)] = sender.sent
    assert email == "new@example.com"
    assert data["name"] == "New User"


def test_register_with_site_attaches_license():
    user, license = users.register_user("site@example.com", site_info=SiteInfo(site_url="https://s.example", site_hash="s1"))

    assert license.auto_attach_status == "attached"
    assert get_site(site_hash="s1") is not None


def test_duplicate_registration_conflicts():
    users.register_user("dup@example.com")
    with pytest.raises(ConflictError):
        users.register_user("DUP@example.com")
    assert get_store().count("licenses").unwrap() == 1


def test_lookup_helpers():
    user, _ = users.register_user("find@example.com")
    assert users.get_user(user.id).email == "find@example.com"
    assert users.get_user_by_email("FIND@example.com").id == user.id
    assert users.get_user("missing") is None


def test_register_records_installation():
    users.register_user("plugin@example.com", site_info=SiteInfo(site_hash="p1"), plugin="alttext-ai")
    rows = get_store().select("plugin_installations", {"email": "plugin@example.com"}).unwrap()
    assert [(r["plugin_slug"], r["site_hash"]) for r in rows] == [("alttext-ai", "p1")]


def test_record_installation_upserts():
    site = SiteInfo(site_url="https://a.example", site_hash="a1")
    first = record_installation("a@example.com", "alttext-ai", site, version="1.0.0")
    second = record_installation("A@example.com", "alttext-ai", site, version="1.1.0")

    assert first["id"] == second["id"]
    assert second["version"] == "1.1.0"
    assert get_store().count("plugin_installations").unwrap() == 1
