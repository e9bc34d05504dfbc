# quota_backend/conftest.py
import os

# Must be set before quota_backend.core.database resolves its URL
os.environ.setdefault("TEST_DATABASE_URL", "sqlite+pysqlite:///:memory:")

import pytest

from quota_backend.core import database
from quota_backend.core.store import set_store
from quota_backend.features.billing.service import set_provider
from quota_backend.features.notifications.service import LogNotificationSender, set_sender


@pytest.fixture(scope="function", autouse=True)
def reset_db():
    """
    Fresh schema for every test.

    Uses TEST_DATABASE_URL (in-memory SQLite by default); tables are dropped
    and recreated so no state leaks between tests.
    """
    database.dispose_engine()
    database.init_engine(os.environ["TEST_DATABASE_URL"])
    database.reset_database()
    set_store(None)
    yield
    set_store(None)
    set_provider(None)
    database.dispose_engine()


@pytest.fixture(scope="function", autouse=True)
def sender():
    """Capture notifications instead of delivering them."""
    log_sender = LogNotificationSender()
    set_sender(log_sender)
    yield log_sender
    set_sender(None)


@pytest.fixture
def make_user():
    """Insert an application user directly and return its id."""
    from quota_backend.core.store import get_store

    def _make(email: str, plan: str = "free") -> str:
        return get_store().insert("app_users", {"email": email, "plan": plan}).unwrap()["id"]

    return _make
