"""Case record store: the persistence interface consumed by the engine.

Every call is its own short unit of work. Case writes are guarded by the
case ``version`` column; a save against a stale version raises
``ConcurrentModificationError`` instead of silently dropping the other write.
A customer passed to ``insert_case`` or ``save_case`` is written in the same
unit of work as the case: either both rows change or neither does.

``InMemoryComplianceStore`` backs the unit tests and local development. The
PostgreSQL implementation lives in ``src.db.compliance_store``.
"""

from collections.abc import Iterable
from datetime import datetime
from typing import Protocol

import structlog

from .errors import (
    ActiveInvestigationExistsError,
    ConcurrentModificationError,
    PersistenceError,
)
from .models import (
    ACTIVE_STATUSES,
    AuditEntry,
    CachedRate,
    CustomerRecord,
    InvestigationCase,
    ReportStatus,
    SuspiciousMatterReport,
    ThresholdTransaction,
)

logger = structlog.get_logger()


class ComplianceStore(Protocol):
    # Investigation cases
    async def get_case(self, case_id: str) -> InvestigationCase | None: ...

    async def find_active_case(self, customer_id: str) -> InvestigationCase | None: ...

    async def insert_case(
        self, case: InvestigationCase, customer: CustomerRecord | None = None
    ) -> InvestigationCase: ...

    async def save_case(
        self, case: InvestigationCase, customer: CustomerRecord | None = None
    ) -> InvestigationCase: ...

    async def list_cases(
        self, statuses: Iterable[str] | None = None, limit: int | None = 100
    ) -> list[InvestigationCase]: ...

    # Customers
    async def get_customer(self, customer_id: str) -> CustomerRecord | None: ...

    async def save_customer(self, customer: CustomerRecord) -> CustomerRecord: ...

    # Suspicious matter reports
    async def get_report(self, report_id: str) -> SuspiciousMatterReport | None: ...

    async def save_report(
        self, report: SuspiciousMatterReport
    ) -> SuspiciousMatterReport: ...

    async def list_reports_by_status(
        self, statuses: Iterable[ReportStatus]
    ) -> list[SuspiciousMatterReport]: ...

    # Threshold transactions
    async def get_transaction(self, transaction_id: str) -> ThresholdTransaction | None: ...

    async def save_transaction(
        self, transaction: ThresholdTransaction
    ) -> ThresholdTransaction: ...

    async def list_pending_ttr_transactions(self) -> list[ThresholdTransaction]: ...

    # Audit trail
    async def append_audit(self, entry: AuditEntry) -> None: ...

    async def has_audit_since(
        self, action_type: str, entity_type: str, entity_id: str, since: datetime
    ) -> bool: ...

    # FX rate cache
    async def upsert_rate(self, rate: CachedRate) -> None: ...

    async def latest_rate(
        self, from_currency: str, to_currency: str
    ) -> CachedRate | None: ...


class InMemoryComplianceStore:
    """Dict-backed store. Returns copies so callers never alias stored state."""

    def __init__(self) -> None:
        self.cases: dict[str, InvestigationCase] = {}
        self.customers: dict[str, CustomerRecord] = {}
        self.reports: dict[str, SuspiciousMatterReport] = {}
        self.transactions: dict[str, ThresholdTransaction] = {}
        self.audit_log: list[AuditEntry] = []
        self.rates: dict[tuple[str, str], CachedRate] = {}

    # ------------------------------------------------------------------
    # Investigation cases
    # ------------------------------------------------------------------

    async def get_case(self, case_id: str) -> InvestigationCase | None:
        case = self.cases.get(case_id)
        return case.model_copy(deep=True) if case else None

    async def find_active_case(self, customer_id: str) -> InvestigationCase | None:
        for case in self.cases.values():
            if case.customer_id == customer_id and case.status in ACTIVE_STATUSES:
                return case.model_copy(deep=True)
        return None

    async def insert_case(
        self, case: InvestigationCase, customer: CustomerRecord | None = None
    ) -> InvestigationCase:
        existing = await self.find_active_case(case.customer_id)
        if existing is not None:
            raise ActiveInvestigationExistsError(
                case.customer_id, existing.investigation_number
            )
        if customer is not None:
            await self.save_customer(customer)
        stored = case.model_copy(deep=True, update={"version": 1})
        self.cases[case.id] = stored
        return stored.model_copy(deep=True)

    async def save_case(
        self, case: InvestigationCase, customer: CustomerRecord | None = None
    ) -> InvestigationCase:
        current = self.cases.get(case.id)
        if current is None or current.version != case.version:
            raise ConcurrentModificationError(
                f"Investigation {case.id} was modified by another request"
            )
        if customer is not None:
            await self.save_customer(customer)
        stored = case.model_copy(deep=True, update={"version": case.version + 1})
        self.cases[case.id] = stored
        return stored.model_copy(deep=True)

    async def list_cases(
        self, statuses: Iterable[str] | None = None, limit: int | None = 100
    ) -> list[InvestigationCase]:
        wanted = set(statuses) if statuses is not None else None
        cases = [
            c for c in self.cases.values() if wanted is None or c.status in wanted
        ]
        cases.sort(key=lambda c: c.opened_at, reverse=True)
        return [c.model_copy(deep=True) for c in cases[:limit]]

    # ------------------------------------------------------------------
    # Customers
    # ------------------------------------------------------------------

    async def get_customer(self, customer_id: str) -> CustomerRecord | None:
        customer = self.customers.get(customer_id)
        return customer.model_copy() if customer else None

    async def save_customer(self, customer: CustomerRecord) -> CustomerRecord:
        self.customers[customer.id] = customer.model_copy()
        return customer

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    async def get_report(self, report_id: str) -> SuspiciousMatterReport | None:
        report = self.reports.get(report_id)
        return report.model_copy(deep=True) if report else None

    async def save_report(self, report: SuspiciousMatterReport) -> SuspiciousMatterReport:
        self.reports[report.id] = report.model_copy(deep=True)
        return report

    async def list_reports_by_status(
        self, statuses: Iterable[ReportStatus]
    ) -> list[SuspiciousMatterReport]:
        wanted = set(statuses)
        return [
            r.model_copy(deep=True) for r in self.reports.values() if r.status in wanted
        ]

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def get_transaction(self, transaction_id: str) -> ThresholdTransaction | None:
        tx = self.transactions.get(transaction_id)
        return tx.model_copy() if tx else None

    async def save_transaction(
        self, transaction: ThresholdTransaction
    ) -> ThresholdTransaction:
        self.transactions[transaction.id] = transaction.model_copy()
        return transaction

    async def list_pending_ttr_transactions(self) -> list[ThresholdTransaction]:
        return [
            tx.model_copy()
            for tx in self.transactions.values()
            if tx.requires_ttr
            and tx.ttr_submitted_at is None
            and tx.ttr_submission_deadline is not None
        ]

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    async def append_audit(self, entry: AuditEntry) -> None:
        self.audit_log.append(entry.model_copy(deep=True))

    async def has_audit_since(
        self, action_type: str, entity_type: str, entity_id: str, since: datetime
    ) -> bool:
        return any(
            e.action_type == action_type
            and e.entity_type == entity_type
            and e.entity_id == entity_id
            and e.created_at >= since
            for e in self.audit_log
        )

    # ------------------------------------------------------------------
    # FX rate cache
    # ------------------------------------------------------------------

    async def upsert_rate(self, rate: CachedRate) -> None:
        self.rates[(rate.from_currency, rate.to_currency)] = rate.model_copy()

    async def latest_rate(self, from_currency: str, to_currency: str) -> CachedRate | None:
        rate = self.rates.get((from_currency, to_currency))
        return rate.model_copy() if rate else None


async def record_audit(store: ComplianceStore, entry: AuditEntry) -> bool:
    """Append an audit row after the primary write has already succeeded.

    A failure here is logged rather than raised: the primary write is final
    and must not be reported to the caller as failed.
    """
    try:
        await store.append_audit(entry)
    except PersistenceError:
        logger.exception(
            "audit_write_failed",
            action_type=entry.action_type,
            entity_type=entry.entity_type,
            entity_id=entry.entity_id,
        )
        return False
    return True
