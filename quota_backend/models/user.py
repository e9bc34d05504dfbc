from datetime import datetime
from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict


class User(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    name: Optional[str] = None
    plan: str = "free"
    service: str = "alttext-ai"
    created_at: Optional[datetime] = None

    @property
    def display_name(self) -> str:
        if self.name and self.name.strip():
            return self.name.strip()
        return self.email.split("@")[0]

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "User":
        return cls(
            id=record["id"],
            email=record["email"],
            name=record.get("name"),
            plan=record.get("plan") or "free",
            service=record.get("service") or "alttext-ai",
            created_at=record.get("created_at"),
        )
