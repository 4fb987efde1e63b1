"""Outbound compliance notifications.

The engine only knows the ``NotificationSender`` interface. Rendering and
delivery belong to the host application; two senders ship here: one that
writes structured log events (local development, tests) and one that posts
JSON to a webhook which the host's mailer consumes.

All engine call sites go through ``deliver()``, which bounds the call with a
timeout and converts any failure into an unsuccessful ``NotificationResult``.
Callers decide what a failure means: the deadline monitor withholds its
audit row, every other operation just logs it.
"""

import asyncio
import uuid
from enum import StrEnum
from typing import Any, Protocol

import httpx
import structlog

from .models import ComplianceRecommendation, NotificationResult

logger = structlog.get_logger()


class NotificationTemplate(StrEnum):
    INVESTIGATION_OPENED = "investigation_opened"
    INFORMATION_REQUESTED = "information_requested"
    INVESTIGATION_ESCALATED = "investigation_escalated"
    DECISION_APPROVED = "decision_approved"
    DECISION_ONGOING_MONITORING = "decision_ongoing_monitoring"
    DECISION_ENHANCED_MONITORING = "decision_enhanced_monitoring"
    DECISION_BLOCKED = "decision_blocked"
    SMR_CREATED = "smr_created"
    TTR_DEADLINE = "ttr_deadline"
    SMR_DEADLINE = "smr_deadline"


DECISION_TEMPLATES: dict[ComplianceRecommendation, NotificationTemplate] = {
    ComplianceRecommendation.APPROVE_RELATIONSHIP: NotificationTemplate.DECISION_APPROVED,
    ComplianceRecommendation.ONGOING_MONITORING: NotificationTemplate.DECISION_ONGOING_MONITORING,
    ComplianceRecommendation.ENHANCED_MONITORING: NotificationTemplate.DECISION_ENHANCED_MONITORING,
    ComplianceRecommendation.REJECT_RELATIONSHIP: NotificationTemplate.DECISION_BLOCKED,
    ComplianceRecommendation.ESCALATE_TO_SMR: NotificationTemplate.DECISION_BLOCKED,
}


class NotificationSender(Protocol):
    async def send(
        self,
        recipients: list[str],
        template: NotificationTemplate,
        context: dict[str, Any],
    ) -> NotificationResult: ...


class LogNotificationSender:
    """Writes each notification as a structured log event and reports success."""

    async def send(
        self,
        recipients: list[str],
        template: NotificationTemplate,
        context: dict[str, Any],
    ) -> NotificationResult:
        message_id = str(uuid.uuid4())
        logger.info(
            "notification_logged",
            message_id=message_id,
            template=template.value,
            recipients=recipients,
            context=context,
        )
        return NotificationResult(success=True, message_id=message_id)


class WebhookNotificationSender:
    """POSTs ``{template, recipients, context}`` as JSON to the host mailer."""

    def __init__(self, url: str, client: httpx.AsyncClient | None = None) -> None:
        self.url = url
        self._client = client

    async def send(
        self,
        recipients: list[str],
        template: NotificationTemplate,
        context: dict[str, Any],
    ) -> NotificationResult:
        payload = {
            "template": template.value,
            "recipients": recipients,
            "context": context,
        }

        if self._client is not None:
            response = await self._client.post(self.url, json=payload)
        else:
            async with httpx.AsyncClient() as client:
                response = await client.post(self.url, json=payload)

        if response.status_code >= 300:
            return NotificationResult(
                success=False, error=f"webhook returned HTTP {response.status_code}"
            )

        message_id = None
        if response.headers.get("content-type", "").startswith("application/json"):
            message_id = response.json().get("id")
        return NotificationResult(success=True, message_id=message_id)


async def deliver(
    sender: NotificationSender,
    recipients: list[str],
    template: NotificationTemplate,
    context: dict[str, Any],
    timeout: float,
) -> NotificationResult:
    """Send one notification; never raises."""
    if not recipients:
        logger.warning("notification_skipped_no_recipients", template=template.value)
        return NotificationResult(success=False, error="no recipients")

    try:
        result = await asyncio.wait_for(
            sender.send(recipients, template, context), timeout=timeout
        )
    except TimeoutError:
        logger.warning(
            "notification_timeout", template=template.value, timeout_seconds=timeout
        )
        return NotificationResult(success=False, error="timeout")
    except Exception as exc:
        logger.exception("notification_send_failed", template=template.value)
        return NotificationResult(success=False, error=str(exc) or type(exc).__name__)

    if not result.success:
        logger.warning(
            "notification_rejected", template=template.value, error=result.error
        )
    return result
