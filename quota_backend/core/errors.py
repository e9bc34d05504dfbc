"""Error taxonomy for the license, credit and access core.

Every error carries a stable ``code`` and a suggested HTTP ``status_code`` so the
(external) HTTP layer can map failures without this package knowing about HTTP.
"""

import builtins
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    INVALID_PLAN = "invalid_plan"
    INVALID_AMOUNT = "invalid_amount"
    LICENSE_NOT_FOUND = "license_not_found"
    NO_OWNING_ORGANIZATION = "no_owning_organization"
    SITE_OWNERSHIP_CONFLICT = "site_ownership_conflict"
    SITE_LIMIT_REACHED = "site_limit_reached"
    NO_IDENTITY = "no_identity"
    NO_SUBSCRIPTION = "no_subscription"
    SUBSCRIPTION_INACTIVE = "subscription_inactive"
    NO_CREDITS = "no_credits"
    PERSISTENCE_ERROR = "persistence_error"


class AppError(Exception):
    code = "app_error"
    status_code = 500

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None, request_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.request_id = request_id


class ValidationError(AppError, ValueError):
    code = "validation_error"
    status_code = 400


class NotFoundError(AppError, ValueError):
    code = "not_found"
    status_code = 404


class PermissionError(AppError, builtins.PermissionError):
    code = "forbidden"
    status_code = 403


class ConflictError(AppError):
    code = "conflict"
    status_code = 409


class InvalidPlanError(ValidationError):
    code = ErrorKind.INVALID_PLAN.value


class InvalidAmountError(ValidationError):
    code = ErrorKind.INVALID_AMOUNT.value


class LicenseNotFoundError(NotFoundError):
    code = ErrorKind.LICENSE_NOT_FOUND.value


class NoOwningOrganizationError(AppError):
    """License has neither an organization nor a user that can own one."""
    code = ErrorKind.NO_OWNING_ORGANIZATION.value
    status_code = 422


class SiteOwnershipConflictError(ConflictError):
    """Site is already registered to a different organization."""
    code = ErrorKind.SITE_OWNERSHIP_CONFLICT.value


class SiteLimitReachedError(AppError):
    code = ErrorKind.SITE_LIMIT_REACHED.value
    status_code = 403

    def __init__(self, max_sites: int, **kwargs):
        super().__init__(
            f"Site limit reached. This license allows {max_sites} active site(s).",
            **kwargs,
        )
        self.max_sites = max_sites


class InsufficientCreditsError(AppError):
    code = ErrorKind.NO_CREDITS.value
    status_code = 402

    def __init__(self, current_balance: int, requested: int, **kwargs):
        super().__init__(
            f"Insufficient credits: balance {current_balance}, requested {requested}",
            **kwargs,
        )
        self.current_balance = current_balance
        self.requested = requested


class PersistenceError(AppError):
    """Store-level failure. ``conflict`` is set for unique-constraint violations."""
    code = ErrorKind.PERSISTENCE_ERROR.value
    status_code = 500

    def __init__(self, message: str, *, conflict: bool = False, **kwargs):
        super().__init__(message, **kwargs)
        self.conflict = conflict
