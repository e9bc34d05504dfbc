"""
quota_backend/models/credit.py

Credit ledger entry: an immutable balance delta for one identity.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict


class TransactionType(str, Enum):
    PURCHASE = "purchase"
    CONSUMPTION = "consumption"
    REFUND = "refund"


class CreditLedgerEntry(BaseModel):
    """
    One row of the append-only credit ledger.

    ``amount`` is signed: purchases are positive, consumption and refunds
    negative. The current balance is the sum over an identity's entries.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    identity_id: str
    amount: int
    transaction_type: TransactionType
    idempotency_key: Optional[str] = None
    details: Dict[str, Any] = {}
    created_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "CreditLedgerEntry":
        return cls(
            id=record["id"],
            identity_id=record["identity_id"],
            amount=record["amount"],
            transaction_type=record["transaction_type"],
            idempotency_key=record.get("idempotency_key"),
            details=record.get("details") or {},
            created_at=record.get("created_at"),
        )
