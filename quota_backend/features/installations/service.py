"""Plugin installation records, one per (email, plugin, site)."""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from quota_backend.core.errors import ValidationError
from quota_backend.core.store import get_store
from quota_backend.features.credits.service import normalize_email
from quota_backend.models.site import SiteInfo


logger = logging.getLogger(__name__)


def record_installation(
    email: str,
    plugin_slug: str,
    site_info: Optional[SiteInfo] = None,
    version: Optional[str] = None,
) -> Dict[str, Any]:
    """Insert the installation, or bump ``last_seen_at`` if it is already known."""
    if not plugin_slug:
        raise ValidationError("plugin_slug is required")
    email = normalize_email(email)
    site_info = site_info or SiteInfo()
    store = get_store()
    now = datetime.now(timezone.utc)

    key = {"email": email, "plugin_slug": plugin_slug, "site_hash": site_info.site_hash}
    existing = store.select_one("plugin_installations", key).unwrap()
    if existing:
        values: Dict[str, Any] = {"last_seen_at": now}
        if version:
            values["version"] = version
        if site_info.site_url:
            values["site_url"] = site_info.site_url
        if site_info.install_id:
            values["install_id"] = site_info.install_id
        return store.update("plugin_installations", {"id": existing["id"]}, values).unwrap()[0]

    record = store.insert(
        "plugin_installations",
        {
            **key,
            "site_url": site_info.site_url,
            "install_id": site_info.install_id,
            "version": version,
            "created_at": now,
            "last_seen_at": now,
        },
    ).unwrap()
    logger.info("installation.recorded", extra={"plugin": plugin_slug, "site_hash": site_info.site_hash})
    return record
