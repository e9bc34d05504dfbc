"""
quota_backend/features/licenses/service.py

License manager.

Handles:
- License creation with plan/service token limits
- Auto-attach of a license to a site under organization capacity rules
- License-issued notifications
- Read-model snapshots tolerant of snake_case and camelCase records
- In-place plan upgrades from checkout
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Union

from quota_backend.core.errors import (
    LicenseNotFoundError,
    NoOwningOrganizationError,
    SiteLimitReachedError,
    ValidationError,
)
from quota_backend.core.records import first_present, normalize_record
from quota_backend.core.store import get_store
from quota_backend.features.notifications.service import (
    LICENSE_ISSUED,
    NotificationSender,
    PostCommitHooks,
    SendResult,
    get_sender,
)
from quota_backend.features.organizations.service import (
    apply_plan_to_organization,
    can_add_site,
    create_or_update_site,
    find_existing_site,
    find_owned_organization,
    get_or_create_user_organization,
    get_organization,
)
from quota_backend.features.plans.service import (
    DEFAULT_SERVICE,
    get_token_limit,
    validate_plan,
)
from quota_backend.models.license import (
    BillingRefs,
    License,
    LicenseOwner,
    OrganizationOwner,
    Recipient,
    UserOwner,
    owner_columns,
)
from quota_backend.models.organization import Organization
from quota_backend.models.site import Site, SiteInfo


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AttachResult:
    license: License
    site: Site
    organization: Organization


def _now() -> datetime:
    return datetime.now(timezone.utc)


def find_license(license_ref: str) -> License:
    """
    Resolve a license by license key, then by id.

    Raises:
        LicenseNotFoundError: If neither matches
    """
    if not license_ref:
        raise LicenseNotFoundError("License not found")
    store = get_store()
    record = store.select_one("licenses", {"license_key": license_ref.strip()}).unwrap()
    if record is None:
        record = store.select_one("licenses", {"id": license_ref}).unwrap()
    if record is None:
        raise LicenseNotFoundError("License not found")
    return License.from_record(record)


def find_license_for_user(user_id: str, service: Optional[str] = None) -> Optional[License]:
    """Most recently created license owned by ``user_id``."""
    filters: Dict[str, Any] = {"user_id": user_id}
    if service:
        filters["service"] = service
    record = get_store().select_one("licenses", filters, order_by=["-created_at"]).unwrap()
    return License.from_record(record) if record else None


def find_license_by_subscription(stripe_subscription_id: str) -> Optional[License]:
    record = get_store().select_one("licenses", {"stripe_subscription_id": stripe_subscription_id}).unwrap()
    return License.from_record(record) if record else None


def create_license(
    plan: str,
    service: str = DEFAULT_SERVICE,
    owner: Optional[LicenseOwner] = None,
    site_info: Optional[SiteInfo] = None,
    billing: Optional[BillingRefs] = None,
    recipient: Optional[Recipient] = None,
    sender: Optional[NotificationSender] = None,
) -> License:
    """
    Create and persist a license.

    Auto-attach (when site info is given) and the license email (when a
    recipient is given) run after the license row is stored; their failures are
    logged and do not fail creation.

    Raises:
        InvalidPlanError: If ``plan`` is not free, pro or agency
        PersistenceError: If the license row cannot be stored
    """
    validate_plan(plan)
    service = service or DEFAULT_SERVICE
    site_info = site_info or SiteInfo()
    billing = billing or BillingRefs()

    token_limit = get_token_limit(plan, service)
    license_key = str(uuid.uuid4())
    now = _now()

    record = get_store().insert(
        "licenses",
        {
            "license_key": license_key,
            "plan": plan,
            "service": service,
            "token_limit": token_limit,
            "tokens_remaining": token_limit,
            "site_url": site_info.site_url,
            "site_hash": site_info.site_hash,
            "install_id": site_info.install_id,
            "auto_attach_status": "manual" if site_info.is_empty else "pending",
            "stripe_customer_id": billing.stripe_customer_id,
            "stripe_subscription_id": billing.stripe_subscription_id,
            "email_status": "pending",
            "license_email_sent_at": None,
            "created_at": now,
            "updated_at": now,
            **owner_columns(owner),
        },
    ).unwrap()
    license = License.from_record(record)
    logger.info(
        "license.created",
        extra={"license_key": license_key, "plan": plan, "service": service, "event_type": "license_created"},
    )

    hooks = PostCommitHooks(context={"license_key": license_key})
    if not site_info.is_empty:
        hooks.add("license.auto_attach", auto_attach_license, license.id, site_info)
    if recipient is not None and recipient.email:
        # Resolve the license at send time so the email reflects any attach above
        hooks.add(
            "license.email",
            lambda: send_license_email(find_license(license.id), recipient, sender=sender),
        )
    if not len(hooks):
        return license

    hooks.run()
    record, error = get_store().select_one("licenses", {"id": license.id})
    if error or record is None:
        logger.warning(
            "license.reload_failed",
            extra={"license_key": license_key, "error_code": error.code if error else "license_not_found"},
        )
        return license
    return License.from_record(record)


def auto_attach_license(license_ref: str, site_info: SiteInfo) -> AttachResult:
    """
    Bind a license to a site.

    Re-attaching the same (license, site_hash | install_id) reactivates the
    existing site row instead of creating a new one.

    Raises:
        LicenseNotFoundError: If the license does not exist
        NoOwningOrganizationError: If no organization can own the site
        SiteOwnershipConflictError: If the site belongs to another organization
        SiteLimitReachedError: If the organization has no free site capacity
    """
    license = find_license(license_ref)

    organization_id: Optional[str] = None
    if isinstance(license.owner, OrganizationOwner):
        organization_id = license.owner.organization_id
    elif isinstance(license.owner, UserOwner):
        organization_id = get_or_create_user_organization(license.owner.user_id, license)

    if not organization_id:
        raise NoOwningOrganizationError("Cannot determine organization for license")

    organization = get_organization(organization_id)
    if organization is None:
        raise NoOwningOrganizationError("Organization not found")

    existing_site = find_existing_site(site_info.site_hash, site_info.install_id, organization_id)
    if not can_add_site(organization_id, organization, existing_site):
        logger.warning(
            "license.site_limit_reached",
            extra={"license_key": license.license_key, "organization_id": organization_id, "error_code": SiteLimitReachedError.code},
        )
        raise SiteLimitReachedError(organization.max_sites)

    site = create_or_update_site(existing_site, organization_id, site_info)

    rows = get_store().update(
        "licenses",
        {"id": license.id},
        {
            "site_url": site_info.site_url or site.site_url,
            "site_hash": site.site_hash,
            "install_id": site_info.install_id or site.install_id,
            "auto_attach_status": "attached",
            "updated_at": _now(),
        },
    ).unwrap()
    updated = License.from_record(rows[0])
    logger.info(
        "license.attached",
        extra={"license_key": license.license_key, "organization_id": organization_id, "site_hash": site.site_hash},
    )
    return AttachResult(license=updated, site=site, organization=organization)


def _site_for_hash(site_hash: Optional[str]) -> Optional[Dict[str, Any]]:
    if not site_hash:
        return None
    return get_store().select_one("sites", {"site_hash": site_hash}).unwrap()


def send_license_email(
    license: Union[License, Mapping[str, Any]],
    recipient: Recipient,
    sender: Optional[NotificationSender] = None,
) -> SendResult:
    """
    Send the license-issued notification and record the delivery status.

    Raises:
        ValidationError: If the recipient has no email
    """
    if not recipient.email:
        raise ValidationError("Email address required")

    record = _as_record(license)
    site = _site_for_hash(record.get("site_hash"))
    token_limit = _token_limit(record)

    template_data = {
        "name": recipient.name or recipient.email.split("@")[0],
        "licenseKey": record.get("license_key"),
        "plan": record.get("plan"),
        "tokenLimit": token_limit,
        "tokensRemaining": first_present(record, "tokens_remaining", default=token_limit),
        "siteUrl": (site or {}).get("site_url") or record.get("site_url"),
        "isAttached": site is not None,
    }
    result = (sender or get_sender()).send(recipient.email, LICENSE_ISSUED, template_data)

    status_update: Dict[str, Any] = {
        "email_status": "sent" if result.success else "failed",
        "updated_at": _now(),
    }
    if result.success:
        status_update["license_email_sent_at"] = _now()
    if record.get("id"):
        _, error = get_store().update("licenses", {"id": record["id"]}, status_update)
        if error:
            logger.warning("license.email_status_not_saved", extra={"license_key": record.get("license_key"), "error_code": error.code})

    log_fn = logger.info if result.success else logger.warning
    log_fn("license.email_sent" if result.success else "license.email_failed", extra={"license_key": record.get("license_key")})
    return result


def _as_record(license: Union[License, Mapping[str, Any]]) -> Dict[str, Any]:
    if isinstance(license, License):
        data = license.model_dump(exclude={"owner"})
        data.update(owner_columns(license.owner))
        return data
    return normalize_record(license) or {}


def _token_limit(record: Mapping[str, Any]) -> int:
    return first_present(record, "token_limit") or get_token_limit(record.get("plan"), record.get("service"))


def get_license_snapshot(license: Union[str, License, Mapping[str, Any]]) -> Dict[str, Any]:
    """
    Standardized camelCase projection of a license.

    Accepts a license key, a ``License``, or a raw record whose fields may be
    snake_case or camelCase. Missing derived fields default from the plan table;
    the attached site's values win when the site row exists.

    Raises:
        LicenseNotFoundError: If given a key that does not exist
    """
    if isinstance(license, str):
        record = _as_record(find_license(license))
    else:
        record = _as_record(license)

    site = _site_for_hash(record.get("site_hash"))
    site = normalize_record(site) or {}
    token_limit = _token_limit(record)

    return {
        "licenseKey": record.get("license_key"),
        "plan": record.get("plan"),
        "service": record.get("service") or DEFAULT_SERVICE,
        "tokenLimit": token_limit,
        "tokensRemaining": first_present(record, "tokens_remaining", default=token_limit),
        "siteUrl": site.get("site_url") or record.get("site_url"),
        "siteHash": site.get("site_hash") or record.get("site_hash"),
        "installId": site.get("install_id") or record.get("install_id"),
        "autoAttachStatus": record.get("auto_attach_status") or "manual",
        "isAttached": bool(site) and bool(site.get("is_active", True)),
        "createdAt": record.get("created_at"),
        "updatedAt": record.get("updated_at"),
        "licenseEmailSentAt": record.get("license_email_sent_at"),
    }


def apply_plan_purchase(
    license_ref: str,
    plan: str,
    service: Optional[str] = None,
    billing: Optional[BillingRefs] = None,
) -> License:
    """
    Upgrade (or change) a license's plan in place and reset its quota.

    The organization owning the license (directly, or through the owning
    user's primary organization) moves to the same plan and site capacity.

    Raises:
        InvalidPlanError: If ``plan`` is not a known tier
        LicenseNotFoundError: If the license does not exist
    """
    validate_plan(plan)
    license = find_license(license_ref)
    service = service or license.service
    billing = billing or BillingRefs()
    token_limit = get_token_limit(plan, service)

    values: Dict[str, Any] = {
        "plan": plan,
        "service": service,
        "token_limit": token_limit,
        "tokens_remaining": token_limit,
        "updated_at": _now(),
    }
    if billing.stripe_customer_id:
        values["stripe_customer_id"] = billing.stripe_customer_id
    if billing.stripe_subscription_id:
        values["stripe_subscription_id"] = billing.stripe_subscription_id

    rows = get_store().update("licenses", {"id": license.id}, values).unwrap()
    logger.info(
        "license.plan_changed",
        extra={"license_key": license.license_key, "plan": plan, "service": service, "previous_plan": license.plan},
    )

    organization_id: Optional[str] = None
    if isinstance(license.owner, OrganizationOwner):
        organization_id = license.owner.organization_id
    elif isinstance(license.owner, UserOwner):
        organization_id = find_owned_organization(license.owner.user_id)
    if organization_id:
        apply_plan_to_organization(organization_id, plan, service, token_limit)

    return License.from_record(rows[0])


def validate_license(license_key: str, site_hash: Optional[str] = None) -> Dict[str, Any]:
    """
    Check a key against organization keys, then license keys.

    Returns ``{"valid": False}`` for unknown keys. When ``site_hash`` is given,
    ``siteAssociated`` reports whether that site belongs to the key.
    """
    key = (license_key or "").strip()
    if not key:
        raise ValidationError("licenseKey is required")

    store = get_store()
    organization = store.select_one("organizations", {"license_key": key}).unwrap()
    license = None if organization else store.select_one("licenses", {"license_key": key}).unwrap()

    if not organization and not license:
        logger.info("license.validate_unknown_key", extra={"license_key": key[:8] + "..."})
        return {"valid": False, "error": "License key not found"}

    result: Dict[str, Any] = {
        "valid": True,
        "type": "organization" if organization else "license",
        "plan": (organization or license)["plan"],
        "service": (organization or license)["service"],
    }

    if site_hash:
        site = _site_for_hash(site_hash.strip())
        if site is None:
            result["siteAssociated"] = False
        elif organization:
            result["siteAssociated"] = site["organization_id"] == organization["id"]
        else:
            owner_org = license.get("organization_id")
            result["siteAssociated"] = license.get("site_hash") == site["site_hash"] or (
                owner_org is not None and site["organization_id"] == owner_org
            )
    return result
