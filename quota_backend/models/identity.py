"""
quota_backend/models/identity.py

Identity: the billing/credit principal, keyed by normalized email.
"""

from datetime import datetime
from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict


class Identity(BaseModel):
    """
    Stable principal for credit balances.

    Distinct from an application user account: billing events usually carry an
    email, balances are keyed by identity id.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    created_at: Optional[datetime] = None
    last_seen_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Identity":
        return cls(
            id=record["id"],
            email=record["email"],
            created_at=record.get("created_at"),
            last_seen_at=record.get("last_seen_at"),
        )
