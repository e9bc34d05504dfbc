"""Credit ledger surface."""
from typing import Any, Dict, Optional

from quota_backend.core.results import as_result
from quota_backend.features.credits import service as credit_service


@as_result
def add_credits(identity_id: str, amount: int, idempotency_key: Optional[str] = None) -> Dict[str, Any]:
    return {"balance": credit_service.add_credits(identity_id, amount, idempotency_key=idempotency_key)}


@as_result
def add_credits_by_email(email: str, amount: int, idempotency_key: Optional[str] = None) -> Dict[str, Any]:
    return {"balance": credit_service.add_credits_by_email(email, amount, idempotency_key=idempotency_key)}


@as_result
def get_balance(identity_id: str) -> Dict[str, Any]:
    return {"balance": credit_service.get_balance(identity_id)}


@as_result
def get_balance_by_email(email: str) -> Dict[str, Any]:
    return {"balance": credit_service.get_balance_by_email(email)}


@as_result
def get_transaction_history(identity_id: str, page: int = 1, limit: int = 50) -> Dict[str, Any]:
    history = credit_service.get_transaction_history(identity_id, page=page, limit=limit)
    return {
        "transactions": [entry.model_dump(mode="json") for entry in history["transactions"]],
        "pagination": history["pagination"],
    }
