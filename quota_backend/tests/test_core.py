"""
Configuration validation, structured logging and error taxonomy.
"""
import json
import logging

import pytest

from quota_backend.core import errors
from quota_backend.core.config import Settings, validate_config
from quota_backend.core.logging import (
    JsonFormatter,
    RequestIdFilter,
    configure_logging,
    log_event,
    request_id_ctx_var,
    set_request_id,
)


def test_validate_config_warns_when_not_strict(caplog):
    cfg = Settings(DATABASE_URL=None, STRIPE_SECRET_KEY=None, _env_file=None)
    with caplog.at_level(logging.WARNING):
        assert validate_config(strict=False, settings_obj=cfg) is True
    assert "STRIPE_SECRET_KEY" in caplog.text
    assert "sk_" not in caplog.text


def test_validate_config_raises_when_strict():
    cfg = Settings(DATABASE_URL=None, _env_file=None)
    with pytest.raises(RuntimeError):
        validate_config(strict=True, settings_obj=cfg)


def test_json_formatter_includes_structured_fields():
    token = set_request_id("req-1")
    try:
        record = logging.LogRecord("quota_backend", logging.INFO, __file__, 1, "license.created", None, None)
        record.license_key = "key-1"
        record.plan = "pro"
        RequestIdFilter().filter(record)
        payload = json.loads(JsonFormatter().format(record))
    finally:
        request_id_ctx_var.reset(token)

    assert payload["message"] == "license.created"
    assert payload["request_id"] == "req-1"
    assert payload["license_key"] == "key-1"
    assert payload["plan"] == "pro"


def test_configure_logging_picks_formatter_by_env():
    logger = configure_logging("production")
    try:
        (handler,) = logger.handlers
        assert handler.formatter.as_json is True

        (handler,) = configure_logging("development").handlers
        assert handler.formatter.as_json is False
        record = logging.LogRecord("quota_backend", logging.INFO, __file__, 1, "site.created", None, None)
        record.site_hash = "abc"
        handler.filter(record)
        line = handler.format(record)
        assert "site.created" in line
        assert "site_hash=abc" in line
    finally:
        logger.handlers = []


def test_log_event_truncates_extra(caplog):
    with caplog.at_level(logging.INFO, logger="quota_backend"):
        log_event("info", "credits.added", identity_id="id-1", extra={"note": "x" * 1000})
    record = caplog.records[-1]
    assert record.identity_id == "id-1"
    assert record.note.endswith("...<truncated>")


@pytest.mark.parametrize(
    "error,code,status",
    [
        (errors.InvalidPlanError("x"), "invalid_plan", 400),
        (errors.InvalidAmountError("x"), "invalid_amount", 400),
        (errors.LicenseNotFoundError("x"), "license_not_found", 404),
        (errors.NoOwningOrganizationError("x"), "no_owning_organization", 422),
        (errors.SiteOwnershipConflictError("x"), "site_ownership_conflict", 409),
        (errors.SiteLimitReachedError(1), "site_limit_reached", 403),
        (errors.InsufficientCreditsError(0, 1), "no_credits", 402),
        (errors.PersistenceError("x"), "persistence_error", 500),
    ],
)
def test_error_codes(error, code, status):
    assert error.code == code
    assert error.status_code == status
    assert code in {kind.value for kind in errors.ErrorKind}
