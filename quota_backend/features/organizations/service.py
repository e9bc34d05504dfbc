"""
quota_backend/features/organizations/service.py

Organization and site resolution.

Handles:
- Resolving (or creating) the organization that owns a user's licenses
- Site lookup by hash / install id with cross-organization conflict detection
- Per-organization active-site capacity
- Site creation, reactivation and deactivation

The capacity check in ``can_add_site`` is a read followed by a conditional
write with no lock. Two concurrent attaches of distinct new sites can both
pass the check and leave an organization one site over ``max_sites``; the
limit is soft.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from quota_backend.core.errors import (
    NotFoundError,
    PermissionError,
    SiteOwnershipConflictError,
)
from quota_backend.core.store import get_store
from quota_backend.features.plans.service import get_token_limit, max_sites_for_plan
from quota_backend.models.license import License
from quota_backend.models.organization import ROLE_PRIORITY, Organization, OrganizationMember
from quota_backend.models.site import Site, SiteInfo


logger = logging.getLogger(__name__)

MANAGER_ROLES = ("owner", "admin")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def get_organization(organization_id: str) -> Optional[Organization]:
    record = get_store().select_one("organizations", {"id": organization_id}).unwrap()
    return Organization.from_record(record) if record else None


def get_user_memberships(user_id: str) -> List[OrganizationMember]:
    """Memberships of a user, owner roles first, then oldest first."""
    rows = get_store().select(
        "organization_members", {"user_id": user_id}, order_by=["created_at"]
    ).unwrap()
    members = [OrganizationMember.from_record(row) for row in rows]
    return sorted(members, key=lambda m: ROLE_PRIORITY.get(m.role, len(ROLE_PRIORITY)))


def list_user_organizations(user_id: str) -> List[dict]:
    """Organizations a user belongs to, with the user's role in each."""
    result = []
    for member in get_user_memberships(user_id):
        organization = get_organization(member.organization_id)
        if organization:
            result.append({"organization": organization, "role": member.role})
    return result


def get_or_create_user_organization(user_id: str, license: License) -> str:
    """
    Return the id of the user's primary organization, creating one if needed.

    A new organization takes its plan, service, site capacity and token seed
    from ``license``, and the user becomes its owner.

    Raises:
        NotFoundError: If the user does not exist
        PersistenceError: If the organization row cannot be created
    """
    memberships = get_user_memberships(user_id)
    if memberships:
        return memberships[0].organization_id

    store = get_store()
    user = store.select_one("app_users", {"id": user_id}, columns=["id", "email"]).unwrap()
    if not user:
        raise NotFoundError(f"User {user_id} not found")

    now = _now()
    token_limit = license.token_limit or get_token_limit(license.plan, license.service)
    org = store.insert(
        "organizations",
        {
            "name": f"{user['email'].split('@')[0]}'s Organization",
            "license_key": str(uuid.uuid4()),
            "plan": license.plan,
            "service": license.service,
            "max_sites": max_sites_for_plan(license.plan),
            "tokens_remaining": token_limit,
            "created_at": now,
            "updated_at": now,
        },
    ).unwrap()

    _, member_error = store.insert(
        "organization_members",
        {"organization_id": org["id"], "user_id": user_id, "role": "owner", "created_at": now},
    )
    if member_error:
        # No transaction spans both writes; keep the organization and flag it
        logger.error(
            "organization.orphaned",
            extra={
                "organization_id": org["id"],
                "user_id": user_id,
                "error_code": member_error.code,
            },
        )
    else:
        logger.info("organization.created", extra={"organization_id": org["id"], "user_id": user_id, "plan": license.plan})

    return org["id"]


def find_owned_organization(user_id: str) -> Optional[str]:
    """Id of the user's primary organization when the user owns it."""
    memberships = get_user_memberships(user_id)
    if memberships and memberships[0].role == "owner":
        return memberships[0].organization_id
    return None


def apply_plan_to_organization(organization_id: str, plan: str, service: str, token_limit: int) -> Optional[Organization]:
    """
    Move an organization to ``plan``: site capacity and token quota follow.

    Sites already active above a lowered capacity stay active; only new
    attaches are refused.
    """
    rows = get_store().update(
        "organizations",
        {"id": organization_id},
        {
            "plan": plan,
            "service": service,
            "max_sites": max_sites_for_plan(plan),
            "tokens_remaining": token_limit,
            "updated_at": _now(),
        },
    ).unwrap()
    if not rows:
        return None
    logger.info("organization.plan_changed", extra={"organization_id": organization_id, "plan": plan, "service": service})
    return Organization.from_record(rows[0])


def find_existing_site(
    site_hash: Optional[str],
    install_id: Optional[str],
    organization_id: str,
) -> Optional[Site]:
    """
    Find a site by hash, then by install id.

    Raises:
        SiteOwnershipConflictError: If the matching site belongs to another organization
    """
    store = get_store()
    for column, value in (("site_hash", site_hash), ("install_id", install_id)):
        if not value:
            continue
        record = store.select_one("sites", {column: value}, order_by=["first_seen"]).unwrap()
        if record:
            if record["organization_id"] != organization_id:
                logger.warning(
                    "site.ownership_conflict",
                    extra={"organization_id": organization_id, "site_hash": record["site_hash"]},
                )
                raise SiteOwnershipConflictError("Site already registered to different organization")
            return Site.from_record(record)
    return None


def count_active_sites(organization_id: str) -> int:
    return get_store().count("sites", {"organization_id": organization_id, "is_active": True}).unwrap()


def can_add_site(organization_id: str, organization: Organization, existing_site: Optional[Site]) -> bool:
    """Known sites (active or not) can always be refreshed; new ones need free capacity."""
    if existing_site is not None:
        return True
    return count_active_sites(organization_id) < organization.max_sites


def create_or_update_site(existing_site: Optional[Site], organization_id: str, site_info: SiteInfo) -> Site:
    """Reactivate and refresh ``existing_site``, or register a new active site."""
    store = get_store()
    now = _now()

    if existing_site is not None:
        rows = store.update(
            "sites",
            {"id": existing_site.id},
            {
                "is_active": True,
                "site_url": site_info.site_url or existing_site.site_url,
                "install_id": site_info.install_id or existing_site.install_id,
                "last_seen": now,
            },
        ).unwrap()
        if not existing_site.is_active:
            logger.info("site.reactivated", extra={"organization_id": organization_id, "site_hash": existing_site.site_hash})
        return Site.from_record(rows[0])

    record = store.insert(
        "sites",
        {
            "organization_id": organization_id,
            "site_hash": site_info.site_hash or str(uuid.uuid4()),
            "site_url": site_info.site_url,
            "install_id": site_info.install_id,
            "is_active": True,
            "first_seen": now,
            "last_seen": now,
        },
    ).unwrap()
    logger.info("site.created", extra={"organization_id": organization_id, "site_hash": record["site_hash"]})
    return Site.from_record(record)


def get_site(site_id: Optional[str] = None, site_hash: Optional[str] = None) -> Optional[Site]:
    if not site_id and not site_hash:
        return None
    filters = {"id": site_id} if site_id else {"site_hash": site_hash}
    record = get_store().select_one("sites", filters).unwrap()
    return Site.from_record(record) if record else None


def list_organization_sites(organization_id: str, active_only: bool = False) -> List[Site]:
    filters = {"organization_id": organization_id}
    if active_only:
        filters["is_active"] = True
    rows = get_store().select("sites", filters, order_by=["first_seen"]).unwrap()
    return [Site.from_record(row) for row in rows]


def deactivate_site(acting_user_id: str, site_id: Optional[str] = None, site_hash: Optional[str] = None) -> Site:
    """
    Deactivate a site, freeing one unit of organization capacity.

    Raises:
        NotFoundError: If no site matches
        PermissionError: If the acting user is not an owner/admin of the site's organization
    """
    site = get_site(site_id=site_id, site_hash=site_hash)
    if site is None:
        raise NotFoundError("Site not found")

    store = get_store()
    manager = store.select_one(
        "organization_members",
        {"organization_id": site.organization_id, "user_id": acting_user_id, "role__in": MANAGER_ROLES},
    ).unwrap()
    if not manager:
        raise PermissionError("You do not have permission to manage this organization")

    rows = store.update("sites", {"id": site.id}, {"is_active": False, "last_seen": _now()}).unwrap()
    logger.info("site.deactivated", extra={"organization_id": site.organization_id, "site_hash": site.site_hash})
    return Site.from_record(rows[0])
