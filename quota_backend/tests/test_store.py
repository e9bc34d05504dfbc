"""
QueryStore filters, result pairs and record normalization.
"""
import pytest

from quota_backend.core.errors import PersistenceError
from quota_backend.core.records import first_present, normalize_record, to_camel, to_snake
from quota_backend.core.store import QueryStore


@pytest.fixture
def store():
    return QueryStore()


def _org(store, name, max_sites=1, plan="free"):
    return store.insert(
        "organizations",
        {"name": name, "licenseKey": f"key-{name}", "plan": plan, "maxSites": max_sites},
    ).unwrap()


def test_case_conversion():
    assert to_snake("tokenLimit") == "token_limit"
    assert to_snake("token_limit") == "token_limit"
    assert to_snake("licenseEmailSentAt") == "license_email_sent_at"
    assert to_camel("license_email_sent_at") == "licenseEmailSentAt"


def test_normalize_record_prefers_non_null_then_snake_case():
    assert normalize_record({"tokenLimit": 5, "token_limit": None}) == {"token_limit": 5}
    assert normalize_record({"token_limit": None, "tokenLimit": 5}) == {"token_limit": 5}
    assert normalize_record({"tokenLimit": 5, "token_limit": 7}) == {"token_limit": 7}
    assert normalize_record(None) is None


def test_first_present_skips_none():
    assert first_present({"a": None, "b": 0}, "a", "b") == 0
    assert first_present({}, "a", default=3) == 3


def test_insert_accepts_camel_case_and_returns_snake_case(store):
    row = _org(store, "acme", max_sites=3)
    assert row["max_sites"] == 3
    assert row["license_key"] == "key-acme"
    assert "maxSites" not in row
    assert row["id"]


def test_select_filters_and_ordering(store):
    for name, sites in (("a", 1), ("b", 5), ("c", 10)):
        _org(store, name, max_sites=sites)

    rows = store.select("organizations", {"max_sites__gte": 5}, order_by=["-max_sites"]).unwrap()
    assert [r["name"] for r in rows] == ["c", "b"]

    rows = store.select("organizations", {"name__in": ["a", "c"]}, order_by=["name"]).unwrap()
    assert [r["name"] for r in rows] == ["a", "c"]

    assert store.count("organizations", {"max_sites__lt": 10}).unwrap() == 2
    assert store.sum("organizations", "max_sites").unwrap() == 16
    assert store.select_one("organizations", {"name": "zzz"}).unwrap() is None


def test_update_returns_updated_rows(store):
    org = _org(store, "acme")
    rows = store.update("organizations", {"id": org["id"]}, {"plan": "agency"}).unwrap()
    assert len(rows) == 1
    assert rows[0]["plan"] == "agency"


def test_update_without_filters_is_refused(store):
    _org(store, "acme")
    rows, error = store.update("organizations", {}, {"plan": "agency"})
    assert rows is None
    assert isinstance(error, PersistenceError)


def test_unknown_filter_column_is_an_error_result(store):
    result = store.select("organizations", {"nope": 1})
    assert not result.ok
    with pytest.raises(PersistenceError):
        result.unwrap()


def test_unique_violation_is_flagged_as_conflict(store):
    _org(store, "acme")
    _, error = store.insert("organizations", {"name": "again", "license_key": "key-acme"})
    assert error is not None
    assert error.conflict is True
    assert error.code == "persistence_error"
