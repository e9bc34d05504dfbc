"""
quota_backend/features/credits/service.py

Credit ledger keyed by identity.

Manages prepaid credits with:
- Append-only ledger (balance is the sum of an identity's entries)
- Idempotent purchases (lookup by key, plus a unique constraint for races)
- Consumption that never drives the balance negative
- Idempotent, balance-capped refunds
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from quota_backend.core.errors import InsufficientCreditsError, InvalidAmountError, ValidationError
from quota_backend.core.store import get_store
from quota_backend.models.credit import CreditLedgerEntry, TransactionType
from quota_backend.models.identity import Identity


logger = logging.getLogger(__name__)

MAX_HISTORY_PAGE_SIZE = 100


def _now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_email(email: Optional[str]) -> str:
    """Lowercase and trim; empty input raises ValidationError."""
    normalized = (email or "").strip().lower()
    if not normalized:
        raise ValidationError("Email is required")
    return normalized


def _validate_amount(amount: Any) -> int:
    # bool is an int subclass; True is not a credit amount
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmountError("Amount must be a positive integer")
    return amount


def find_identity(email: str) -> Optional[Identity]:
    """Look up an identity without creating one."""
    record = get_store().select_one("identities", {"email": normalize_email(email)}).unwrap()
    return Identity.from_record(record) if record else None


def get_or_create_identity(email: str) -> Identity:
    """
    Resolve the identity for ``email``, creating it on first sight.

    Bumps ``last_seen_at`` on every call. A concurrent creation that wins the
    unique email constraint is re-read rather than reported.
    """
    normalized = normalize_email(email)
    store = get_store()
    now = _now()

    record = store.select_one("identities", {"email": normalized}).unwrap()
    if record:
        rows = store.update("identities", {"id": record["id"]}, {"last_seen_at": now}).unwrap()
        return Identity.from_record(rows[0] if rows else record)

    record, error = store.insert("identities", {"email": normalized, "created_at": now, "last_seen_at": now})
    if error:
        if not error.conflict:
            raise error
        record = store.select_one("identities", {"email": normalized}).unwrap()
        if record is None:
            raise error
    else:
        logger.info("identity.created", extra={"identity_id": record["id"]})
    return Identity.from_record(record)


def get_balance(identity_id: str) -> int:
    """Sum of ledger entries, floored at zero."""
    total = get_store().sum("credit_transactions", "amount", {"identity_id": identity_id}).unwrap()
    return max(0, total)


def get_balance_by_email(email: str) -> int:
    identity = find_identity(email)
    if identity is None:
        return 0
    return get_balance(identity.id)


def _find_entry(identity_id: str, transaction_type: TransactionType, idempotency_key: str) -> Optional[Dict[str, Any]]:
    return get_store().select_one(
        "credit_transactions",
        {
            "identity_id": identity_id,
            "transaction_type": transaction_type.value,
            "idempotency_key": idempotency_key,
        },
    ).unwrap()


def _append(
    identity_id: str,
    amount: int,
    transaction_type: TransactionType,
    idempotency_key: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> bool:
    """
    Append one ledger entry.

    Returns False when the entry already exists under ``idempotency_key``
    (a concurrent writer won the unique constraint).
    """
    _, error = get_store().insert(
        "credit_transactions",
        {
            "identity_id": identity_id,
            "amount": amount,
            "transaction_type": transaction_type.value,
            "idempotency_key": idempotency_key,
            "details": details or {},
            "created_at": _now(),
        },
    )
    if error:
        if error.conflict and idempotency_key:
            return False
        raise error
    return True


def add_credits(
    identity_id: str,
    amount: int,
    idempotency_key: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> int:
    """
    Record a credit purchase and return the new balance.

    A purchase whose ``idempotency_key`` was already recorded for this identity
    is a no-op that returns the unchanged balance.

    Raises:
        InvalidAmountError: If ``amount`` is not a positive integer
    """
    amount = _validate_amount(amount)

    if idempotency_key and _find_entry(identity_id, TransactionType.PURCHASE, idempotency_key):
        logger.info("credits.duplicate_purchase", extra={"identity_id": identity_id, "idempotency_key": idempotency_key})
        return get_balance(identity_id)

    inserted = _append(identity_id, amount, TransactionType.PURCHASE, idempotency_key, details)
    if not inserted:
        logger.info("credits.duplicate_purchase", extra={"identity_id": identity_id, "idempotency_key": idempotency_key, "race": True})
    else:
        logger.info("credits.added", extra={"identity_id": identity_id, "amount": amount})
    return get_balance(identity_id)


def add_credits_by_email(email: str, amount: int, idempotency_key: Optional[str] = None) -> int:
    _validate_amount(amount)
    identity = get_or_create_identity(email)
    return add_credits(identity.id, amount, idempotency_key=idempotency_key, details={"source": "email"})


def spend_credits(identity_id: str, amount: int = 1, details: Optional[Dict[str, Any]] = None) -> int:
    """
    Consume credits and return the remaining balance.

    Raises:
        InvalidAmountError: If ``amount`` is not a positive integer
        InsufficientCreditsError: If the balance is below ``amount``
    """
    amount = _validate_amount(amount)
    balance = get_balance(identity_id)
    if balance < amount:
        logger.info(
            "credits.insufficient",
            extra={"identity_id": identity_id, "error_code": InsufficientCreditsError.code, "balance": balance},
        )
        raise InsufficientCreditsError(balance, amount)

    _append(identity_id, -amount, TransactionType.CONSUMPTION, details=details)
    return balance - amount


def refund_credits(identity_id: str, amount: int, idempotency_key: str) -> int:
    """
    Remove previously purchased credits (e.g. a refunded payment).

    The deduction is capped at the current balance, and a repeated
    ``idempotency_key`` is a no-op. Returns the new balance.
    """
    amount = _validate_amount(amount)
    if not idempotency_key:
        raise ValidationError("idempotency_key is required for refunds")

    if _find_entry(identity_id, TransactionType.REFUND, idempotency_key):
        logger.info("credits.duplicate_refund", extra={"identity_id": identity_id, "idempotency_key": idempotency_key})
        return get_balance(identity_id)

    balance = get_balance(identity_id)
    deduction = min(amount, balance)
    if deduction > 0:
        _append(
            identity_id,
            -deduction,
            TransactionType.REFUND,
            idempotency_key,
            details={"requested": amount},
        )
        logger.info("credits.refunded", extra={"identity_id": identity_id, "amount": deduction})
    return get_balance(identity_id)


def get_transaction_history(identity_id: str, page: int = 1, limit: int = 50) -> Dict[str, Any]:
    """Newest-first page of ledger entries with pagination metadata."""
    page = max(1, int(page or 1))
    limit = min(max(1, int(limit or 50)), MAX_HISTORY_PAGE_SIZE)

    store = get_store()
    rows = store.select(
        "credit_transactions",
        {"identity_id": identity_id},
        order_by=["-created_at"],
        limit=limit,
        offset=(page - 1) * limit,
    ).unwrap()
    total = store.count("credit_transactions", {"identity_id": identity_id}).unwrap()

    return {
        "transactions": [CreditLedgerEntry.from_record(row) for row in rows],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": (total + limit - 1) // limit,
        },
    }
