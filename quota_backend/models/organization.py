"""
quota_backend/models/organization.py

Organization: billing/quota boundary owning one or more Sites.
OrganizationMember: user membership with a role.
"""

from datetime import datetime
from typing import Any, Dict, Literal, Optional
from pydantic import BaseModel, ConfigDict

Role = Literal["owner", "admin", "member"]

# Lower sorts first when resolving a user's primary organization
ROLE_PRIORITY: Dict[str, int] = {"owner": 0, "admin": 1, "member": 2}


class Organization(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    license_key: str
    plan: str = "free"
    service: str = "alttext-ai"
    max_sites: int = 1
    tokens_remaining: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Organization":
        return cls(
            id=record["id"],
            name=record["name"],
            license_key=record["license_key"],
            plan=record.get("plan") or "free",
            service=record.get("service") or "alttext-ai",
            max_sites=record.get("max_sites") or 1,
            tokens_remaining=record.get("tokens_remaining") or 0,
            created_at=record.get("created_at"),
            updated_at=record.get("updated_at"),
        )


class OrganizationMember(BaseModel):
    model_config = ConfigDict(frozen=True)

    organization_id: str
    user_id: str
    role: Role
    created_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "OrganizationMember":
        return cls(
            organization_id=record["organization_id"],
            user_id=record["user_id"],
            role=record["role"],
            created_at=record.get("created_at"),
        )
