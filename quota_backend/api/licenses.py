"""
License surface.

Request dicts may use snake_case or camelCase keys. Every function returns an
``OperationResult``; domain errors come back as failures with their code.
"""
from typing import Any, Dict, Mapping, Optional

from quota_backend.core.errors import ValidationError
from quota_backend.core.records import normalize_record
from quota_backend.core.results import as_result
from quota_backend.features.licenses import service as license_service
from quota_backend.features.organizations import service as organization_service
from quota_backend.features.plans.service import DEFAULT_SERVICE
from quota_backend.models.license import (
    BillingRefs,
    OrganizationOwner,
    Recipient,
    UserOwner,
)
from quota_backend.models.site import SiteInfo


def _owner(request: Mapping[str, Any]):
    if request.get("user_id") and request.get("organization_id"):
        raise ValidationError("A license is owned by a user or an organization, not both")
    if request.get("organization_id"):
        return OrganizationOwner(organization_id=request["organization_id"])
    if request.get("user_id"):
        return UserOwner(user_id=request["user_id"])
    return None


@as_result
def create_license(request: Mapping[str, Any]) -> Dict[str, Any]:
    payload = normalize_record(request) or {}
    recipient = None
    if payload.get("email"):
        recipient = Recipient(email=payload["email"], name=payload.get("name"))

    license = license_service.create_license(
        payload.get("plan"),
        payload.get("service") or DEFAULT_SERVICE,
        owner=_owner(payload),
        site_info=SiteInfo.from_mapping(payload),
        billing=BillingRefs(
            stripe_customer_id=payload.get("stripe_customer_id"),
            stripe_subscription_id=payload.get("stripe_subscription_id"),
        ),
        recipient=recipient,
    )
    return license_service.get_license_snapshot(license)


@as_result
def auto_attach_license(license_key: str, site: Mapping[str, Any]) -> Dict[str, Any]:
    site_info = SiteInfo.from_mapping(site)
    if site_info.is_empty:
        raise ValidationError("siteUrl, siteHash or installId is required")
    result = license_service.auto_attach_license(license_key, site_info)
    return {
        "license": license_service.get_license_snapshot(result.license),
        "site": result.site.model_dump(),
        "organization": {
            "id": result.organization.id,
            "name": result.organization.name,
            "plan": result.organization.plan,
            "maxSites": result.organization.max_sites,
        },
    }


@as_result
def get_license_snapshot(license_key: str) -> Dict[str, Any]:
    return license_service.get_license_snapshot(license_key)


@as_result
def validate_license(license_key: str, site_hash: Optional[str] = None) -> Dict[str, Any]:
    return license_service.validate_license(license_key, site_hash)


@as_result
def deactivate_site(
    acting_user_id: str,
    site_id: Optional[str] = None,
    site_hash: Optional[str] = None,
) -> Dict[str, Any]:
    if not site_id and not site_hash:
        raise ValidationError("siteId or siteHash is required")
    site = organization_service.deactivate_site(acting_user_id, site_id=site_id, site_hash=site_hash)
    return {"siteHash": site.site_hash, "isActive": site.is_active}
