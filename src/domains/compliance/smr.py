"""Suspicious Matter Report (SMR) generation and lifecycle.

Regulatory basis:
  AML/CTF Act 2006 s 41: a reporting entity must report a suspicious matter
  to AUSTRAC within 3 business days of forming the suspicion.
  AML/CTF Rules 18: SMR content, including the grounds for suspicion.

Generation has three side effects that succeed or fail independently: the
persisted report, its audit row, and the notification to compliance staff.
Only the first is allowed to fail the call.

Lifecycle: pending -> under_review -> reported, or dismissed from either open
state. Reported and dismissed reports are final.
"""

import uuid
from datetime import UTC, datetime

import structlog

from .config import ComplianceConfig, default_config
from .deadlines import DeadlineCalculator, format_deadline
from .errors import (
    InvalidCategoryError,
    MissingFieldsError,
    NotFoundError,
    ReportClosedError,
)
from .fx import AmountNormalizer
from .models import (
    OPEN_REPORT_STATUSES,
    AuditEntry,
    ReportStatus,
    StaffIdentity,
    SuspicionCategory,
    SuspiciousMatterReport,
)
from .notifications import NotificationSender, NotificationTemplate, deliver
from .store import ComplianceStore, record_audit

logger = structlog.get_logger()

REPORT_ENTITY_TYPE = "suspicious_activity_report"

SMR_NARRATIVE_TEMPLATE = """Suspicious Matter Report

Suspicion Type: {category}
Indicators: {indicators}

Narrative:
{narrative}

{boilerplate}"""

SMR_BOILERPLATE = (
    "This matter was flagged by automated compliance systems and requires "
    "review within 3 business days."
)


def build_narrative(
    category: SuspicionCategory, indicators: list[str], narrative_seed: str
) -> str:
    return SMR_NARRATIVE_TEMPLATE.format(
        category=category.value,
        indicators=", ".join(indicators),
        narrative=narrative_seed,
        boilerplate=SMR_BOILERPLATE,
    )


class SMRGenerator:
    def __init__(
        self,
        store: ComplianceStore,
        deadlines: DeadlineCalculator,
        normalizer: AmountNormalizer,
        sender: NotificationSender,
        config: ComplianceConfig | None = None,
    ) -> None:
        self.store = store
        self.deadlines = deadlines
        self.normalizer = normalizer
        self.sender = sender
        self.config = config or default_config

    async def generate(
        self,
        customer_id: str,
        suspicion_category: str,
        indicators: list[str],
        narrative_seed: str,
        transaction_id: str | None = None,
        amount_aud: float | None = None,
        investigation_case_id: str | None = None,
        now: datetime | None = None,
    ) -> SuspiciousMatterReport:
        """Assemble, persist, audit and announce a new SMR.

        Raises:
            MissingFieldsError: customer or narrative seed missing.
            InvalidCategoryError: category is not a known suspicion category.
            NotFoundError: ``transaction_id`` does not exist.
            NoRateAvailableError: the transaction needs conversion and no
                rate could be obtained.
        """
        missing = [
            name
            for name, value in (
                ("customer_id", customer_id),
                ("narrative_seed", narrative_seed),
            )
            if not value or not str(value).strip()
        ]
        if missing:
            raise MissingFieldsError(missing)

        try:
            category = SuspicionCategory(suspicion_category)
        except ValueError as exc:
            raise InvalidCategoryError(
                f"Unknown suspicion category: {suspicion_category!r}"
            ) from exc

        now = now or datetime.now(UTC)
        original_amount: float | None = None
        original_currency: str | None = None
        fx_rate: float | None = None

        if transaction_id is not None:
            transaction = await self.store.get_transaction(transaction_id)
            if transaction is None:
                raise NotFoundError("transaction", transaction_id)

            reporting_currency = self.config.fx.reporting_currency
            if amount_aud is None and transaction.amount_aud is not None:
                amount_aud = transaction.amount_aud
            if amount_aud is None:
                if transaction.currency.upper() == reporting_currency:
                    amount_aud = transaction.amount
                else:
                    conversion = await self.normalizer.convert(
                        transaction.amount, transaction.currency, reporting_currency, now=now
                    )
                    amount_aud = conversion.normalized_amount
                    original_amount = transaction.amount
                    original_currency = conversion.from_currency
                    fx_rate = conversion.rate

        deadline = self.deadlines.smr_deadline(now)

        report = SuspiciousMatterReport(
            id=str(uuid.uuid4()),
            customer_id=customer_id,
            transaction_id=transaction_id,
            investigation_case_id=investigation_case_id,
            suspicion_category=category,
            indicators=list(indicators),
            description=build_narrative(category, indicators, narrative_seed),
            amount_aud=amount_aud,
            original_amount=original_amount,
            original_currency=original_currency,
            fx_rate=fx_rate,
            status=ReportStatus.PENDING,
            submission_deadline=deadline,
            created_at=now,
        )
        await self.store.save_report(report)

        logger.warning(
            "smr_created",
            report_id=report.id,
            customer_id=customer_id,
            category=category.value,
            deadline=deadline.isoformat(),
            amount_aud=amount_aud,
        )

        await record_audit(
            self.store,
            AuditEntry(
                action_type="smr_created",
                entity_type=REPORT_ENTITY_TYPE,
                entity_id=report.id,
                description=f"SMR created for {category.value}",
                metadata={
                    "customer_id": customer_id,
                    "transaction_id": transaction_id,
                    "investigation_case_id": investigation_case_id,
                    "indicators": report.indicators,
                    "amount_aud": amount_aud,
                    "original_currency": original_currency,
                    "fx_rate": fx_rate,
                },
                created_at=now,
            ),
        )

        await deliver(
            self.sender,
            self.config.notifications.compliance_recipients,
            NotificationTemplate.SMR_CREATED,
            {
                "report_id": report.id,
                "customer_id": customer_id,
                "suspicion_category": category.value,
                "deadline": format_deadline(deadline),
                "amount_aud": amount_aud,
                "review_url": f"{self.config.notifications.admin_base_url}/admin/smr-reports",
            },
            timeout=self.config.notifications.send_timeout_seconds,
        )

        return report

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def _load_open(self, report_id: str) -> SuspiciousMatterReport:
        report = await self.store.get_report(report_id)
        if report is None:
            raise NotFoundError("report", report_id)
        if report.status not in OPEN_REPORT_STATUSES:
            raise ReportClosedError(
                f"Report {report_id} is {report.status.value} and can no longer change"
            )
        return report

    async def mark_under_review(
        self, report_id: str, staff: StaffIdentity, now: datetime | None = None
    ) -> SuspiciousMatterReport:
        report = await self._load_open(report_id)
        if report.status == ReportStatus.UNDER_REVIEW:
            return report

        report.status = ReportStatus.UNDER_REVIEW
        await self.store.save_report(report)
        await record_audit(
            self.store,
            AuditEntry(
                action_type="smr_under_review",
                entity_type=REPORT_ENTITY_TYPE,
                entity_id=report.id,
                description="SMR marked as under review",
                metadata={"staff_id": staff.staff_id},
                created_at=now or datetime.now(UTC),
            ),
        )
        logger.info("smr_under_review", report_id=report.id, staff_id=staff.staff_id)
        return report

    async def mark_submitted(
        self,
        report_id: str,
        austrac_reference: str,
        staff: StaffIdentity,
        now: datetime | None = None,
    ) -> SuspiciousMatterReport:
        """Record lodgement with AUSTRAC under the reference it issued."""
        if not austrac_reference or not austrac_reference.strip():
            raise MissingFieldsError(["austrac_reference"])

        report = await self._load_open(report_id)
        now = now or datetime.now(UTC)

        report.status = ReportStatus.REPORTED
        report.austrac_reference = austrac_reference.strip()
        report.submitted_at = now
        await self.store.save_report(report)

        await record_audit(
            self.store,
            AuditEntry(
                action_type="smr_submitted",
                entity_type=REPORT_ENTITY_TYPE,
                entity_id=report.id,
                description=f"SMR submitted to AUSTRAC: {report.austrac_reference}",
                metadata={
                    "austrac_reference": report.austrac_reference,
                    "staff_id": staff.staff_id,
                    "deadline": report.submission_deadline.isoformat(),
                    "late": self.deadlines.is_passed(report.submission_deadline, now),
                },
                created_at=now,
            ),
        )
        logger.info(
            "smr_submitted",
            report_id=report.id,
            austrac_reference=report.austrac_reference,
            staff_id=staff.staff_id,
        )
        return report

    async def dismiss(
        self,
        report_id: str,
        reason: str,
        staff: StaffIdentity,
        now: datetime | None = None,
    ) -> SuspiciousMatterReport:
        if not reason or not reason.strip():
            raise MissingFieldsError(["reason"])

        report = await self._load_open(report_id)
        report.status = ReportStatus.DISMISSED
        report.dismissal_reason = reason.strip()
        await self.store.save_report(report)

        await record_audit(
            self.store,
            AuditEntry(
                action_type="smr_dismissed",
                entity_type=REPORT_ENTITY_TYPE,
                entity_id=report.id,
                description="SMR dismissed",
                metadata={"reason": report.dismissal_reason, "staff_id": staff.staff_id},
                created_at=now or datetime.now(UTC),
            ),
        )
        logger.info("smr_dismissed", report_id=report.id, staff_id=staff.staff_id)
        return report

    async def list_open(self) -> list[SuspiciousMatterReport]:
        reports = await self.store.list_reports_by_status(OPEN_REPORT_STATUSES)
        return sorted(reports, key=lambda r: r.submission_deadline)
