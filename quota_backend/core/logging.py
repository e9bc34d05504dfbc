"""
Structured logging for the quota backend.

Records carry a request id from a ContextVar plus whichever correlation
fields (license, organization, identity, site) the caller passed in
``extra``. Production renders JSON lines; other environments render one
readable line per record.
"""

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

LOGGER_NAME = "quota_backend"

request_id_ctx_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

CORRELATION_FIELDS = (
    "event_type",
    "error_code",
    "license_key",
    "license_id",
    "organization_id",
    "identity_id",
    "site_hash",
    "user_id",
    "plan",
    "service",
)

MAX_FIELD_LENGTH = 500


def set_request_id(request_id: Optional[str]):
    """Bind a request id to the current context. Returns the reset token."""
    return request_id_ctx_var.set(request_id)


class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = request_id_ctx_var.get()
        return True


class StructuredFormatter(logging.Formatter):
    """Renders a record as a JSON object, or as ``ts LEVEL [rid] msg k=v``."""

    def __init__(self, as_json: bool = False):
        super().__init__()
        self.as_json = as_json

    def _fields(self, record: logging.LogRecord) -> Dict[str, Any]:
        return {
            name: getattr(record, name)
            for name in CORRELATION_FIELDS
            if getattr(record, name, None) is not None
        }

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created, timezone.utc).isoformat().replace("+00:00", "Z")
        rid = getattr(record, "request_id", None)
        fields = self._fields(record)

        if self.as_json:
            payload = {"timestamp": ts, "level": record.levelname, "logger": record.name, "message": record.getMessage(), "request_id": rid}
            payload.update(fields)
            if record.exc_info:
                payload["exc_info"] = self.formatException(record.exc_info)
            return json.dumps(payload, default=str)

        parts = [ts, record.levelname]
        if rid:
            parts.append(f"[rid={rid}]")
        parts.append(record.getMessage())
        parts.extend(f"{k}={v}" for k, v in fields.items())
        line = " ".join(parts)
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


class JsonFormatter(StructuredFormatter):
    def __init__(self):
        super().__init__(as_json=True)


def configure_logging(env: str = "development") -> logging.Logger:
    """Install one stdout handler on the package logger and return it."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter(as_json=env.lower() == "production"))
    handler.addFilter(RequestIdFilter())
    logger.handlers = [handler]

    # Engine echo is controlled by DB_ECHO; the pool stays quiet
    logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)
    return logger


def _truncate(value: Any) -> str:
    text = str(value)
    if len(text) <= MAX_FIELD_LENGTH:
        return text
    return text[:MAX_FIELD_LENGTH] + "...<truncated>"


def log_event(level: str, msg: str, *, extra: Optional[Dict[str, Any]] = None, **fields: Any) -> None:
    """
    Log ``msg`` on the package logger.

    ``fields`` are correlation values (``license_key``, ``identity_id``, ...)
    logged as-is when not None; ``extra`` values are stringified and
    truncated.
    """
    payload: Dict[str, Any] = {k: v for k, v in fields.items() if v is not None}
    for key, value in (extra or {}).items():
        payload[key] = _truncate(value)
    logger = logging.getLogger(LOGGER_NAME)
    getattr(logger, level, logger.info)(msg, extra=payload)
