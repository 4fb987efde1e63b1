"""Daily statutory deadline sweep.

Finds unsubmitted TTRs and open SMRs whose deadline is within the alert
window and notifies compliance staff, at most once per entity per calendar
day in the legal time zone.

The once-per-day guarantee comes from the audit trail, not from in-process
state: the audit table is queried for each entity immediately before its
notification is sent, and the audit row is written only after the sender
reports success. Overlapping sweeps therefore never skip an entity whose
alert failed, and a failed alert is retried on the next run.

The same sweep flags pending customer information requests on active
investigations as overdue once their deadline has passed.
"""

from datetime import UTC, date, datetime
from typing import Any

import structlog

from .config import ComplianceConfig, default_config
from .deadlines import DeadlineCalculator, format_deadline
from .errors import ConcurrentModificationError, PersistenceError
from .models import (
    ACTIVE_STATUSES,
    OPEN_REPORT_STATUSES,
    AuditEntry,
    DeadlineSweepResult,
    RequestStatus,
)
from .notifications import NotificationSender, NotificationTemplate, deliver
from .investigation import INVESTIGATION_ENTITY_TYPE
from .smr import REPORT_ENTITY_TYPE
from .store import ComplianceStore, record_audit
from .ttr import TRANSACTION_ENTITY_TYPE

logger = structlog.get_logger()

TTR_ALERT_ACTION = "ttr_deadline_alert"
SMR_ALERT_ACTION = "smr_deadline_alert"


class DeadlineMonitor:
    def __init__(
        self,
        store: ComplianceStore,
        deadlines: DeadlineCalculator,
        sender: NotificationSender,
        config: ComplianceConfig | None = None,
    ) -> None:
        self.store = store
        self.deadlines = deadlines
        self.sender = sender
        self.config = config or default_config

    async def run(self, now: datetime | None = None) -> DeadlineSweepResult:
        now = now or datetime.now(UTC)
        day_start = self.deadlines.calendar.start_of_day(self.deadlines.calendar.today(now))
        result = DeadlineSweepResult(started_at=now)

        logger.info("deadline_check_started", day_start=day_start.isoformat())

        await self._sweep_ttrs(result, day_start, now)
        await self._sweep_smrs(result, day_start, now)
        await self._sweep_information_requests(result, now)

        result.finished_at = datetime.now(UTC)
        await record_audit(
            self.store,
            AuditEntry(
                action_type="deadline_check_run",
                entity_type="system",
                description=(
                    f"Deadline check: {result.ttr_alerts_sent} TTR alerts, "
                    f"{result.smr_alerts_sent} SMR alerts"
                ),
                metadata={
                    "ttr_alerts_sent": result.ttr_alerts_sent,
                    "smr_alerts_sent": result.smr_alerts_sent,
                    "ttr_checked": result.ttr_checked,
                    "smr_checked": result.smr_checked,
                    "requests_marked_overdue": result.requests_marked_overdue,
                    "errors": result.errors,
                },
                created_at=now,
            ),
        )

        log = logger.warning if result.errors else logger.info
        log(
            "deadline_check_completed",
            ttr_alerts_sent=result.ttr_alerts_sent,
            smr_alerts_sent=result.smr_alerts_sent,
            requests_marked_overdue=result.requests_marked_overdue,
            error_count=len(result.errors),
        )
        return result

    # ------------------------------------------------------------------
    # Sweeps
    # ------------------------------------------------------------------

    async def _sweep_ttrs(
        self, result: DeadlineSweepResult, day_start: datetime, now: datetime
    ) -> None:
        cfg = self.config.deadlines
        try:
            transactions = await self.store.list_pending_ttr_transactions()
        except PersistenceError as exc:
            logger.exception("ttr_deadline_fetch_failed")
            result.errors.append(f"TTR fetch failed: {exc}")
            return

        for tx in transactions:
            result.ttr_checked += 1
            deadline = tx.ttr_submission_deadline
            days = self.deadlines.days_remaining(deadline, now)
            if not 0 <= days <= cfg.ttr_alert_window_days:
                continue

            severity = "critical" if days <= cfg.ttr_critical_days else "high"
            customer_name = await self._customer_name(result, tx.customer_id)
            transaction_date = self.deadlines.calendar.local_date(tx.created_at)
            sent = await self._alert(
                result,
                action_type=TTR_ALERT_ACTION,
                entity_type=TRANSACTION_ENTITY_TYPE,
                entity_id=tx.id,
                template=NotificationTemplate.TTR_DEADLINE,
                deadline=deadline,
                days_remaining=days,
                severity=severity,
                day_start=day_start,
                now=now,
                context={
                    "transaction_id": tx.id,
                    "ttr_reference": tx.ttr_reference,
                    "customer_id": tx.customer_id,
                    "customer_name": customer_name,
                    "amount_aud": tx.amount_aud,
                    "transaction_date": f"{transaction_date:%d/%m/%Y}",
                },
            )
            if sent:
                result.ttr_alerts_sent += 1

    async def _customer_name(self, result: DeadlineSweepResult, customer_id: str) -> str:
        try:
            customer = await self.store.get_customer(customer_id)
        except PersistenceError as exc:
            logger.exception("deadline_alert_customer_lookup_failed", customer_id=customer_id)
            result.errors.append(f"customer {customer_id}: lookup failed: {exc}")
            return "Unknown"
        return (customer.name if customer else "").strip() or "Unknown"

    async def _sweep_smrs(
        self, result: DeadlineSweepResult, day_start: datetime, now: datetime
    ) -> None:
        cfg = self.config.deadlines
        try:
            reports = await self.store.list_reports_by_status(OPEN_REPORT_STATUSES)
        except PersistenceError as exc:
            logger.exception("smr_deadline_fetch_failed")
            result.errors.append(f"SMR fetch failed: {exc}")
            return

        for report in reports:
            result.smr_checked += 1
            deadline = report.submission_deadline
            days = self.deadlines.days_remaining(deadline, now)
            if not 0 <= days <= cfg.smr_alert_window_days:
                continue

            severity = "critical" if days <= cfg.smr_critical_days else "high"
            sent = await self._alert(
                result,
                action_type=SMR_ALERT_ACTION,
                entity_type=REPORT_ENTITY_TYPE,
                entity_id=report.id,
                template=NotificationTemplate.SMR_DEADLINE,
                deadline=deadline,
                days_remaining=days,
                severity=severity,
                day_start=day_start,
                now=now,
                context={
                    "report_id": report.id,
                    "customer_id": report.customer_id,
                    "suspicion_category": report.suspicion_category.value,
                    "status": report.status.value,
                },
            )
            if sent:
                result.smr_alerts_sent += 1

    async def _sweep_information_requests(
        self, result: DeadlineSweepResult, now: datetime
    ) -> None:
        """Flag pending customer information requests whose deadline has passed."""
        try:
            cases = await self.store.list_cases(
                statuses=[s.value for s in ACTIVE_STATUSES], limit=None
            )
        except PersistenceError as exc:
            logger.exception("information_request_fetch_failed")
            result.errors.append(f"Investigation fetch failed: {exc}")
            return

        for case in cases:
            lapsed = [
                r
                for r in case.information_requests
                if r.status == RequestStatus.PENDING
                and r.deadline is not None
                and self.deadlines.is_passed(r.deadline, now)
            ]
            if not lapsed:
                continue

            for request in lapsed:
                request.status = RequestStatus.OVERDUE
            try:
                await self.store.save_case(case)
            except ConcurrentModificationError:
                logger.info("information_request_overdue_deferred", case_id=case.id)
                continue
            except PersistenceError as exc:
                logger.exception("information_request_overdue_failed", case_id=case.id)
                result.errors.append(f"investigation {case.id}: overdue update failed: {exc}")
                continue

            result.requests_marked_overdue += len(lapsed)
            logger.warning(
                "information_requests_overdue",
                case_id=case.id,
                request_ids=[r.id for r in lapsed],
            )
            for request in lapsed:
                await record_audit(
                    self.store,
                    AuditEntry(
                        action_type="edd_information_request_overdue",
                        entity_type=INVESTIGATION_ENTITY_TYPE,
                        entity_id=case.id,
                        description=f"Information request {request.sequence} is overdue",
                        metadata={
                            "request_id": request.id,
                            "deadline": request.deadline.isoformat(),
                        },
                        created_at=now,
                    ),
                )

    async def _alert(
        self,
        result: DeadlineSweepResult,
        *,
        action_type: str,
        entity_type: str,
        entity_id: str,
        template: NotificationTemplate,
        deadline: date,
        days_remaining: int,
        severity: str,
        day_start: datetime,
        now: datetime,
        context: dict[str, Any],
    ) -> bool:
        """Send one deadline alert unless one was already recorded today."""
        try:
            if await self.store.has_audit_since(action_type, entity_type, entity_id, day_start):
                logger.debug("deadline_alert_already_sent", action_type=action_type, entity_id=entity_id)
                return False
        except PersistenceError as exc:
            logger.exception("deadline_alert_dedup_failed", entity_id=entity_id)
            result.errors.append(f"{action_type} {entity_id}: dedup check failed: {exc}")
            return False

        overdue = self.deadlines.is_passed(deadline, now)
        notification = await deliver(
            self.sender,
            self.config.notifications.compliance_recipients,
            template,
            {
                **context,
                "deadline": format_deadline(deadline),
                "days_remaining": days_remaining,
                "severity": severity,
                "overdue": overdue,
            },
            timeout=self.config.notifications.send_timeout_seconds,
        )
        if not notification.success:
            result.errors.append(f"{action_type} {entity_id}: {notification.error}")
            return False

        try:
            await self.store.append_audit(
                AuditEntry(
                    action_type=action_type,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    description=f"Deadline alert sent: {days_remaining} business days remaining",
                    metadata={
                        "days_remaining": days_remaining,
                        "severity": severity,
                        "deadline": deadline.isoformat(),
                        "overdue": overdue,
                        "message_id": notification.message_id,
                    },
                    created_at=now,
                )
            )
        except PersistenceError as exc:
            # Sent but unrecorded: the next sweep may alert this entity again.
            logger.exception("deadline_alert_audit_failed", entity_id=entity_id)
            result.errors.append(f"{action_type} {entity_id}: audit write failed: {exc}")

        logger.info(
            "deadline_alert_sent",
            action_type=action_type,
            entity_id=entity_id,
            days_remaining=days_remaining,
            severity=severity,
        )
        return True
