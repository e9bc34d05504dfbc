"""Plain result objects returned across the package boundary."""

import functools
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, TypeVar

from quota_backend.core.errors import AppError


logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


@dataclass(frozen=True)
class OperationResult:
    success: bool
    data: Any = None
    error: Optional[str] = None
    message: Optional[str] = None
    status_code: int = 200

    @classmethod
    def ok(cls, data: Any = None, status_code: int = 200) -> "OperationResult":
        return cls(success=True, data=data, status_code=status_code)

    @classmethod
    def failure(cls, exc: AppError) -> "OperationResult":
        return cls(success=False, error=exc.code, message=exc.message, status_code=exc.status_code)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"success": self.success}
        if self.success:
            payload["data"] = self.data
        else:
            payload["error"] = self.error
            payload["message"] = self.message
        return payload


def as_result(fn: F) -> F:
    """Run ``fn`` and wrap its return value or failure in an ``OperationResult``.

    ``AppError`` subclasses keep their code and status; anything else becomes an
    ``internal_error`` (logged with traceback).
    """

    @functools.wraps(fn)
    def wrapper(*args, **kwargs) -> OperationResult:
        try:
            return OperationResult.ok(fn(*args, **kwargs))
        except AppError as exc:
            log_level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
            logger.log(
                log_level,
                "app.error",
                extra={"error_code": exc.code, "operation": fn.__name__, "status": exc.status_code},
            )
            return OperationResult.failure(exc)
        except Exception:
            logger.error("unhandled.exception", exc_info=True, extra={"error_code": "internal_error", "operation": fn.__name__})
            return OperationResult(
                success=False,
                error="internal_error",
                message="Unexpected error",
                status_code=500,
            )

    return wrapper  # type: ignore[return-value]
