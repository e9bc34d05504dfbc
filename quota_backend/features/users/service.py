"""
quota_backend/features/users/service.py

Application user registration.

A new user gets a free license for the requested service. Site attach and
the installation record are best-effort and never fail registration.
"""

import logging
from datetime import datetime, timezone
from typing import Optional, Tuple

from quota_backend.core.errors import ConflictError
from quota_backend.core.store import get_store
from quota_backend.features.credits.service import normalize_email
from quota_backend.features.installations.service import record_installation
from quota_backend.features.licenses.service import create_license
from quota_backend.features.notifications.service import PostCommitHooks
from quota_backend.features.plans.service import DEFAULT_SERVICE
from quota_backend.models.license import License, Recipient, UserOwner
from quota_backend.models.site import SiteInfo
from quota_backend.models.user import User


logger = logging.getLogger(__name__)


def get_user(user_id: str) -> Optional[User]:
    record = get_store().select_one("app_users", {"id": user_id}).unwrap()
    return User.from_record(record) if record else None


def get_user_by_email(email: str) -> Optional[User]:
    record = get_store().select_one("app_users", {"email": normalize_email(email)}).unwrap()
    return User.from_record(record) if record else None


def register_user(
    email: str,
    name: Optional[str] = None,
    service: str = DEFAULT_SERVICE,
    site_info: Optional[SiteInfo] = None,
    plugin: Optional[str] = None,
) -> Tuple[User, License]:
    """
    Create a user and issue their free license.

    Raises:
        ValidationError: If the email is empty
        ConflictError: If a user with this email already exists
    """
    email = normalize_email(email)
    service = service or DEFAULT_SERVICE
    store = get_store()

    if store.select_one("app_users", {"email": email}, columns=["id"]).unwrap():
        raise ConflictError("User already exists")

    record, error = store.insert(
        "app_users",
        {
            "email": email,
            "name": name,
            "plan": "free",
            "service": service,
            "created_at": datetime.now(timezone.utc),
        },
    )
    if error:
        if error.conflict:
            raise ConflictError("User already exists")
        raise error
    user = User.from_record(record)
    logger.info("user.registered", extra={"user_id": user.id, "service": service})

    license = create_license(
        "free",
        service,
        owner=UserOwner(user_id=user.id),
        site_info=site_info,
        recipient=Recipient(email=email, name=user.display_name),
    )

    if plugin:
        hooks = PostCommitHooks(context={"user_id": user.id})
        hooks.add("installation.record", record_installation, email, plugin, site_info)
        hooks.run()

    return user, license
