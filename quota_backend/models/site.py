"""
quota_backend/models/site.py

Site: a registered plugin installation consuming quota under one Organization.
"""

from datetime import datetime
from typing import Any, Dict, Mapping, Optional
from pydantic import BaseModel, ConfigDict

from quota_backend.core.records import normalize_record


class SiteInfo(BaseModel):
    """Site metadata supplied at license creation, checkout or registration."""
    model_config = ConfigDict(frozen=True)

    site_url: Optional[str] = None
    site_hash: Optional[str] = None
    install_id: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not (self.site_url or self.site_hash or self.install_id)

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "SiteInfo":
        """Build from request or Stripe metadata (snake_case or camelCase keys)."""
        record = normalize_record(data) or {}
        return cls(
            site_url=record.get("site_url") or None,
            site_hash=record.get("site_hash") or None,
            install_id=record.get("install_id") or None,
        )


class Site(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    organization_id: str
    site_hash: str
    install_id: Optional[str] = None
    site_url: Optional[str] = None
    is_active: bool = True
    first_seen: Optional[datetime] = None
    last_seen: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Site":
        return cls(
            id=record["id"],
            organization_id=record["organization_id"],
            site_hash=record["site_hash"],
            install_id=record.get("install_id"),
            site_url=record.get("site_url"),
            is_active=bool(record.get("is_active", True)),
            first_seen=record.get("first_seen"),
            last_seen=record.get("last_seen"),
        )
