"""
Notification delivery and post-commit side effects.

Senders never raise: a failed delivery is a ``SendResult(success=False)``.
``PostCommitHooks`` runs best-effort work (emails, installation records,
auto-attach) after a primary write has been stored; its ``run`` method
catches every failure, so a side effect can never undo or fail that write.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

import httpx

from quota_backend.core.config import settings


logger = logging.getLogger(__name__)

LICENSE_ISSUED = "license_issued"
LICENSE_ACTIVATED = "license_activated"
CREDITS_PURCHASED = "credits_purchased"

SUBJECTS: Dict[str, str] = {
    LICENSE_ISSUED: "Your license key is ready",
    LICENSE_ACTIVATED: "Your subscription is active",
    CREDITS_PURCHASED: "Your credits have been added",
}


@dataclass(frozen=True)
class SendResult:
    success: bool
    id: Optional[str] = None
    error: Optional[str] = None


class NotificationSender(Protocol):
    def send(self, email: str, template_kind: str, template_data: Dict[str, Any]) -> SendResult:
        """Deliver a templated notification. Must not raise."""
        ...


class LogNotificationSender:
    """Development sender: logs the notification instead of delivering it."""

    def __init__(self):
        self.sent: List[Tuple[str, str, Dict[str, Any]]] = []

    def send(self, email: str, template_kind: str, template_data: Dict[str, Any]) -> SendResult:
        self.sent.append((email, template_kind, dict(template_data)))
        logger.info(
            "notification.logged",
            extra={"event_type": template_kind, "recipient": email, "fields": sorted(template_data)},
        )
        return SendResult(success=True, id=f"log-{len(self.sent)}")


class ResendNotificationSender:
    """Deliver through the Resend HTTP API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        from_address: Optional[str] = None,
        api_url: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.Client] = None,
    ):
        self.api_key = api_key or settings.RESEND_API_KEY
        self.from_address = from_address or settings.EMAIL_FROM
        self.api_url = api_url or settings.RESEND_API_URL
        self.timeout = timeout if timeout is not None else settings.NOTIFICATION_TIMEOUT_SECONDS
        self._client = client

    def _payload(self, email: str, template_kind: str, template_data: Dict[str, Any]) -> Dict[str, Any]:
        lines = [f"{key}: {value}" for key, value in template_data.items() if value is not None]
        return {
            "from": self.from_address,
            "to": [email],
            "subject": SUBJECTS.get(template_kind, "Account update"),
            "text": "\n".join(lines),
            "tags": [{"name": "template", "value": template_kind}],
        }

    def send(self, email: str, template_kind: str, template_data: Dict[str, Any]) -> SendResult:
        if not self.api_key:
            return SendResult(success=False, error="RESEND_API_KEY not configured")

        headers = {"Authorization": f"Bearer {self.api_key}"}
        payload = self._payload(email, template_kind, template_data)
        try:
            if self._client is not None:
                response = self._client.post(self.api_url, json=payload, headers=headers, timeout=self.timeout)
            else:
                with httpx.Client(timeout=self.timeout) as client:
                    response = client.post(self.api_url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("notification.send_failed", extra={"event_type": template_kind, "error_code": "http_error"})
            return SendResult(success=False, error=str(exc))

        if response.status_code >= 400:
            logger.warning(
                "notification.rejected",
                extra={"event_type": template_kind, "error_code": "provider_rejected", "status": response.status_code},
            )
            return SendResult(success=False, error=f"Resend returned {response.status_code}")

        try:
            message_id = response.json().get("id")
        except ValueError:
            message_id = None
        return SendResult(success=True, id=message_id)


_sender: Optional[NotificationSender] = None


def get_sender() -> NotificationSender:
    """Resend when an API key is configured, otherwise the logging sender."""
    global _sender
    if _sender is None:
        _sender = ResendNotificationSender() if settings.RESEND_API_KEY else LogNotificationSender()
    return _sender


def set_sender(sender: Optional[NotificationSender]) -> None:
    global _sender
    _sender = sender


@dataclass(frozen=True)
class SideEffectOutcome:
    name: str
    ok: bool
    value: Any = None
    error: Optional[str] = None


@dataclass
class PostCommitHooks:
    """Best-effort work queued behind a primary write.

    Register callables with ``add`` while building the primary record and call
    ``run`` once it has been stored. ``run`` returns one outcome per hook and
    never raises.
    """

    context: Dict[str, Any] = field(default_factory=dict)
    _hooks: List[Tuple[str, Callable[[], Any]]] = field(default_factory=list)

    def add(self, name: str, fn: Callable[..., Any], *args, **kwargs) -> "PostCommitHooks":
        self._hooks.append((name, lambda: fn(*args, **kwargs)))
        return self

    def __len__(self) -> int:
        return len(self._hooks)

    def run(self) -> List[SideEffectOutcome]:
        outcomes = []
        for name, hook in self._hooks:
            try:
                outcomes.append(SideEffectOutcome(name=name, ok=True, value=hook()))
            except Exception as exc:
                logger.warning(
                    "post_commit.failed",
                    exc_info=True,
                    extra={"event_type": name, "error_code": getattr(exc, "code", "side_effect_failed"), **self.context},
                )
                outcomes.append(SideEffectOutcome(name=name, ok=False, error=str(exc)))
        self._hooks.clear()
        return outcomes
