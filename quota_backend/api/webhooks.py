"""Billing webhook surface."""
from typing import Any, Dict

from quota_backend.core.errors import AppError
from quota_backend.core.results import as_result
from quota_backend.features.billing import service as billing_service
from quota_backend.features.billing.provider import BillingWebhookError


class WebhookRejected(AppError):
    code = "invalid_webhook"
    status_code = 400


@as_result
def process_webhook_event(headers: Dict[str, str], body: bytes) -> Dict[str, Any]:
    """Verify and apply a billing webhook; verification failures are 400s."""
    try:
        return billing_service.process_webhook_event(headers, body)
    except BillingWebhookError as exc:
        raise WebhookRejected(str(exc)) from exc
