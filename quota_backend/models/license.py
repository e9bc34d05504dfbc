"""
quota_backend/models/license.py

License model: a quota grant for one service.

Ownership is a tagged union. A license is owned by a single user, by an
organization, or (for anonymous site licenses) by nobody, never by both a user
and an organization.
"""

from datetime import datetime
from typing import Annotated, Any, Dict, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field

AttachStatus = Literal["manual", "pending", "attached"]


class UserOwner(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["user"] = "user"
    user_id: str


class OrganizationOwner(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["organization"] = "organization"
    organization_id: str


LicenseOwner = Annotated[Union[UserOwner, OrganizationOwner], Field(discriminator="kind")]


def owner_from_record(record: Dict[str, Any]) -> Optional[Union[UserOwner, OrganizationOwner]]:
    user_id = record.get("user_id")
    organization_id = record.get("organization_id")
    if user_id and organization_id:
        raise ValueError("License cannot be owned by both a user and an organization")
    if organization_id:
        return OrganizationOwner(organization_id=organization_id)
    if user_id:
        return UserOwner(user_id=user_id)
    return None


def owner_columns(owner: Optional[Union[UserOwner, OrganizationOwner]]) -> Dict[str, Optional[str]]:
    """Flatten an owner into the two nullable storage columns."""
    if isinstance(owner, OrganizationOwner):
        return {"user_id": None, "organization_id": owner.organization_id}
    if isinstance(owner, UserOwner):
        return {"user_id": owner.user_id, "organization_id": None}
    return {"user_id": None, "organization_id": None}


class BillingRefs(BaseModel):
    model_config = ConfigDict(frozen=True)

    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None


class Recipient(BaseModel):
    """Who receives the license-issued email."""
    model_config = ConfigDict(frozen=True)

    email: str
    name: Optional[str] = None


class License(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    license_key: str
    plan: str
    service: str
    token_limit: int
    tokens_remaining: int
    auto_attach_status: AttachStatus = "manual"
    owner: Optional[LicenseOwner] = None
    site_url: Optional[str] = None
    site_hash: Optional[str] = None
    install_id: Optional[str] = None
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    email_status: str = "pending"
    license_email_sent_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def user_id(self) -> Optional[str]:
        return self.owner.user_id if isinstance(self.owner, UserOwner) else None

    @property
    def organization_id(self) -> Optional[str]:
        return self.owner.organization_id if isinstance(self.owner, OrganizationOwner) else None

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "License":
        """Build from a normalized (snake_case) store record."""
        return cls(
            id=record["id"],
            license_key=record["license_key"],
            plan=record["plan"],
            service=record["service"],
            token_limit=record["token_limit"],
            tokens_remaining=record["tokens_remaining"],
            auto_attach_status=record.get("auto_attach_status") or "manual",
            owner=owner_from_record(record),
            site_url=record.get("site_url"),
            site_hash=record.get("site_hash"),
            install_id=record.get("install_id"),
            stripe_customer_id=record.get("stripe_customer_id"),
            stripe_subscription_id=record.get("stripe_subscription_id"),
            email_status=record.get("email_status") or "pending",
            license_email_sent_at=record.get("license_email_sent_at"),
            created_at=record.get("created_at"),
            updated_at=record.get("updated_at"),
        )
