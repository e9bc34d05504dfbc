"""Registration surface."""
from typing import Any, Dict, Mapping

from quota_backend.core.records import normalize_record
from quota_backend.core.results import as_result
from quota_backend.features.licenses.service import get_license_snapshot
from quota_backend.features.plans.service import DEFAULT_SERVICE
from quota_backend.features.users.service import register_user as _register_user
from quota_backend.models.site import SiteInfo


@as_result
def register_user(request: Mapping[str, Any]) -> Dict[str, Any]:
    payload = normalize_record(request) or {}
    user, license = _register_user(
        payload.get("email"),
        name=payload.get("name"),
        service=payload.get("service") or DEFAULT_SERVICE,
        site_info=SiteInfo.from_mapping(payload),
        plugin=payload.get("plugin"),
    )
    return {
        "user": {"id": user.id, "email": user.email, "plan": user.plan, "service": user.service},
        "license": get_license_snapshot(license),
    }
