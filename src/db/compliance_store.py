"""PostgreSQL implementation of the compliance store.

Each method runs in its own short transaction from the session factory; no
transaction is held open across a network call made by the engine.
SQLAlchemy errors surface as ``PersistenceError``.
"""

from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from datetime import datetime

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.db.models import (
    AuditLogDB,
    CustomerDB,
    EscalationDB,
    FxRateCacheDB,
    InformationRequestDB,
    InvestigationDB,
    SuspiciousMatterReportDB,
    TransactionDB,
)
from src.domains.compliance.errors import (
    ActiveInvestigationExistsError,
    ConcurrentModificationError,
    PersistenceError,
)
from src.domains.compliance.models import (
    ACTIVE_STATUSES,
    AuditEntry,
    CachedRate,
    Checklist,
    CustomerRecord,
    Escalation,
    InformationRequest,
    InvestigationCase,
    ReportStatus,
    SuspiciousMatterReport,
    ThresholdTransaction,
)

logger = structlog.get_logger()


# ---------------------------------------------------------------------------
# Row <-> model mapping
# ---------------------------------------------------------------------------


def _case_values(case: InvestigationCase) -> dict:
    return {
        "investigation_number": case.investigation_number,
        "customer_id": case.customer_id,
        "transaction_id": case.transaction_id,
        "trigger_reason": case.trigger_reason,
        "triggered_by": case.triggered_by.value,
        "triggered_by_admin_id": case.triggered_by_admin_id,
        "assigned_to": case.assigned_to,
        "status": case.status.value,
        "checklist": case.checklist.model_dump(mode="json"),
        "investigation_findings": case.investigation_findings,
        "risk_assessment_summary": case.risk_assessment_summary,
        "compliance_recommendation": (
            case.compliance_recommendation.value if case.compliance_recommendation else None
        ),
        "monitoring_level": case.monitoring_level.value if case.monitoring_level else None,
        "reviewed_by": case.reviewed_by,
        "completed_at": case.completed_at,
        "smr_report_id": case.smr_report_id,
        "approved_by_management": case.approved_by_management,
        "management_approver_id": case.management_approver_id,
        "management_approved_at": case.management_approved_at,
        "opened_at": case.opened_at,
        "last_activity_at": case.last_activity_at,
    }


def _case_from_row(
    row: InvestigationDB,
    requests: list[InformationRequestDB],
    escalations: list[EscalationDB],
) -> InvestigationCase:
    return InvestigationCase(
        id=row.case_id,
        investigation_number=row.investigation_number,
        customer_id=row.customer_id,
        transaction_id=row.transaction_id,
        trigger_reason=row.trigger_reason,
        triggered_by=row.triggered_by,
        triggered_by_admin_id=row.triggered_by_admin_id,
        assigned_to=row.assigned_to,
        status=row.status,
        checklist=Checklist.model_validate(row.checklist or {}),
        information_requests=[
            InformationRequest(
                id=r.request_id,
                sequence=r.sequence,
                items=r.items,
                deadline=r.deadline,
                requested_by=r.requested_by,
                requested_at=r.requested_at,
                status=r.status,
                received_at=r.received_at,
                response_notes=r.response_notes,
            )
            for r in requests
        ],
        escalations=[
            Escalation(
                id=e.escalation_id,
                sequence=e.sequence,
                reason=e.reason,
                escalated_to=e.escalated_to,
                escalated_by=e.escalated_by,
                escalated_at=e.escalated_at,
                resolved=e.resolved,
                resolved_at=e.resolved_at,
                resolution_notes=e.resolution_notes,
            )
            for e in escalations
        ],
        investigation_findings=row.investigation_findings,
        risk_assessment_summary=row.risk_assessment_summary,
        compliance_recommendation=row.compliance_recommendation,
        monitoring_level=row.monitoring_level,
        reviewed_by=row.reviewed_by,
        completed_at=row.completed_at,
        smr_report_id=row.smr_report_id,
        approved_by_management=row.approved_by_management,
        management_approver_id=row.management_approver_id,
        management_approved_at=row.management_approved_at,
        opened_at=row.opened_at,
        last_activity_at=row.last_activity_at,
        version=row.version,
    )


def _request_values(case_id: str, r: InformationRequest) -> dict:
    return {
        "request_id": r.id,
        "case_id": case_id,
        "sequence": r.sequence,
        "items": r.items,
        "deadline": r.deadline,
        "requested_by": r.requested_by,
        "requested_at": r.requested_at,
        "status": r.status.value,
        "received_at": r.received_at,
        "response_notes": r.response_notes,
    }


def _escalation_values(case_id: str, e: Escalation) -> dict:
    return {
        "escalation_id": e.id,
        "case_id": case_id,
        "sequence": e.sequence,
        "reason": e.reason,
        "escalated_to": e.escalated_to,
        "escalated_by": e.escalated_by,
        "escalated_at": e.escalated_at,
        "resolved": e.resolved,
        "resolved_at": e.resolved_at,
        "resolution_notes": e.resolution_notes,
    }


def _report_values(report: SuspiciousMatterReport) -> dict:
    values = report.model_dump(exclude={"id"})
    values["report_id"] = report.id
    values["suspicion_category"] = report.suspicion_category.value
    values["status"] = report.status.value
    return values


def _report_from_row(row: SuspiciousMatterReportDB) -> SuspiciousMatterReport:
    return SuspiciousMatterReport(
        id=row.report_id,
        customer_id=row.customer_id,
        transaction_id=row.transaction_id,
        investigation_case_id=row.investigation_case_id,
        report_type=row.report_type,
        suspicion_category=row.suspicion_category,
        indicators=row.indicators or [],
        description=row.description,
        amount_aud=row.amount_aud,
        original_amount=row.original_amount,
        original_currency=row.original_currency,
        fx_rate=row.fx_rate,
        status=row.status,
        submission_deadline=row.submission_deadline,
        austrac_reference=row.austrac_reference,
        submitted_at=row.submitted_at,
        dismissal_reason=row.dismissal_reason,
        flagged_by_system=row.flagged_by_system,
        created_at=row.created_at,
    )


def _transaction_from_row(row: TransactionDB) -> ThresholdTransaction:
    return ThresholdTransaction(
        id=row.transaction_id,
        customer_id=row.customer_id,
        amount=row.amount,
        currency=row.currency,
        amount_aud=row.amount_aud,
        created_at=row.created_at,
        requires_ttr=row.requires_ttr,
        ttr_reference=row.ttr_reference,
        ttr_generated_at=row.ttr_generated_at,
        ttr_submission_deadline=row.ttr_submission_deadline,
        ttr_submitted_at=row.ttr_submitted_at,
    )


def _customer_from_row(row: CustomerDB) -> CustomerRecord:
    return CustomerRecord(
        id=row.customer_id,
        name=row.name,
        email=row.email,
        monitoring_level=row.monitoring_level,
        current_investigation_id=row.current_investigation_id,
        requires_enhanced_dd=row.requires_enhanced_dd,
        edd_completed=row.edd_completed,
        last_investigation_completed_at=row.last_investigation_completed_at,
    )


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class SqlAlchemyComplianceStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session, session.begin():
                yield session
        except SQLAlchemyError as exc:
            logger.exception("compliance_store_error", error=str(exc))
            raise PersistenceError(str(exc)) from exc

    async def _load_children(
        self, session: AsyncSession, case_ids: list[str]
    ) -> tuple[dict[str, list[InformationRequestDB]], dict[str, list[EscalationDB]]]:
        requests: dict[str, list[InformationRequestDB]] = {cid: [] for cid in case_ids}
        escalations: dict[str, list[EscalationDB]] = {cid: [] for cid in case_ids}
        if not case_ids:
            return requests, escalations

        result = await session.execute(
            select(InformationRequestDB)
            .where(InformationRequestDB.case_id.in_(case_ids))
            .order_by(InformationRequestDB.sequence)
        )
        for row in result.scalars():
            requests[row.case_id].append(row)

        result = await session.execute(
            select(EscalationDB)
            .where(EscalationDB.case_id.in_(case_ids))
            .order_by(EscalationDB.sequence)
        )
        for row in result.scalars():
            escalations[row.case_id].append(row)

        return requests, escalations

    async def _upsert_children(self, session: AsyncSession, case: InvestigationCase) -> None:
        for request in case.information_requests:
            values = _request_values(case.id, request)
            stmt = insert(InformationRequestDB).values(**values)
            await session.execute(
                stmt.on_conflict_do_update(
                    index_elements=[InformationRequestDB.request_id],
                    set_={
                        k: stmt.excluded[k]
                        for k in ("status", "received_at", "response_notes", "deadline")
                    },
                )
            )
        for escalation in case.escalations:
            values = _escalation_values(case.id, escalation)
            stmt = insert(EscalationDB).values(**values)
            await session.execute(
                stmt.on_conflict_do_update(
                    index_elements=[EscalationDB.escalation_id],
                    set_={
                        k: stmt.excluded[k]
                        for k in ("resolved", "resolved_at", "resolution_notes")
                    },
                )
            )

    async def _upsert_customer(self, session: AsyncSession, customer: CustomerRecord) -> None:
        values = customer.model_dump(exclude={"id"})
        values["monitoring_level"] = customer.monitoring_level.value
        stmt = insert(CustomerDB).values(customer_id=customer.id, **values)
        await session.execute(
            stmt.on_conflict_do_update(
                index_elements=[CustomerDB.customer_id],
                set_={k: stmt.excluded[k] for k in values},
            )
        )

    # ------------------------------------------------------------------
    # Investigation cases
    # ------------------------------------------------------------------

    async def get_case(self, case_id: str) -> InvestigationCase | None:
        async with self._transaction() as session:
            result = await session.execute(
                select(InvestigationDB).where(InvestigationDB.case_id == case_id)
            )
            row = result.scalar_one_or_none()
            if row is None:
                return None
            requests, escalations = await self._load_children(session, [case_id])
            return _case_from_row(row, requests[case_id], escalations[case_id])

    async def find_active_case(self, customer_id: str) -> InvestigationCase | None:
        async with self._transaction() as session:
            result = await session.execute(
                select(InvestigationDB).where(
                    InvestigationDB.customer_id == customer_id,
                    InvestigationDB.status.in_([s.value for s in ACTIVE_STATUSES]),
                )
            )
            row = result.scalars().first()
            if row is None:
                return None
            requests, escalations = await self._load_children(session, [row.case_id])
            return _case_from_row(row, requests[row.case_id], escalations[row.case_id])

    async def insert_case(
        self, case: InvestigationCase, customer: CustomerRecord | None = None
    ) -> InvestigationCase:
        async with self._transaction() as session:
            session.add(InvestigationDB(case_id=case.id, version=1, **_case_values(case)))
            try:
                await session.flush()
            except IntegrityError as exc:
                # Partial unique index on active cases per customer
                raise ActiveInvestigationExistsError(case.customer_id, "unknown") from exc
            await self._upsert_children(session, case)
            if customer is not None:
                await self._upsert_customer(session, customer)
        return case.model_copy(update={"version": 1})

    async def save_case(
        self, case: InvestigationCase, customer: CustomerRecord | None = None
    ) -> InvestigationCase:
        async with self._transaction() as session:
            result = await session.execute(
                update(InvestigationDB)
                .where(
                    InvestigationDB.case_id == case.id,
                    InvestigationDB.version == case.version,
                )
                .values(**_case_values(case), version=case.version + 1)
            )
            if result.rowcount == 0:
                raise ConcurrentModificationError(
                    f"Investigation {case.id} was modified by another request"
                )
            await self._upsert_children(session, case)
            if customer is not None:
                await self._upsert_customer(session, customer)
        return case.model_copy(update={"version": case.version + 1})

    async def list_cases(
        self, statuses: Iterable[str] | None = None, limit: int | None = 100
    ) -> list[InvestigationCase]:
        async with self._transaction() as session:
            stmt = select(InvestigationDB).order_by(InvestigationDB.opened_at.desc()).limit(limit)
            if statuses is not None:
                stmt = stmt.where(InvestigationDB.status.in_(list(statuses)))
            rows = list((await session.execute(stmt)).scalars())
            requests, escalations = await self._load_children(
                session, [row.case_id for row in rows]
            )
            return [
                _case_from_row(row, requests[row.case_id], escalations[row.case_id])
                for row in rows
            ]

    # ------------------------------------------------------------------
    # Customers
    # ------------------------------------------------------------------

    async def get_customer(self, customer_id: str) -> CustomerRecord | None:
        async with self._transaction() as session:
            result = await session.execute(
                select(CustomerDB).where(CustomerDB.customer_id == customer_id)
            )
            row = result.scalar_one_or_none()
            return _customer_from_row(row) if row else None

    async def save_customer(self, customer: CustomerRecord) -> CustomerRecord:
        async with self._transaction() as session:
            await self._upsert_customer(session, customer)
        return customer

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    async def get_report(self, report_id: str) -> SuspiciousMatterReport | None:
        async with self._transaction() as session:
            result = await session.execute(
                select(SuspiciousMatterReportDB).where(
                    SuspiciousMatterReportDB.report_id == report_id
                )
            )
            row = result.scalar_one_or_none()
            return _report_from_row(row) if row else None

    async def save_report(self, report: SuspiciousMatterReport) -> SuspiciousMatterReport:
        values = _report_values(report)
        async with self._transaction() as session:
            stmt = insert(SuspiciousMatterReportDB).values(**values)
            await session.execute(
                stmt.on_conflict_do_update(
                    index_elements=[SuspiciousMatterReportDB.report_id],
                    set_={k: stmt.excluded[k] for k in values if k != "report_id"},
                )
            )
        return report

    async def list_reports_by_status(
        self, statuses: Iterable[ReportStatus]
    ) -> list[SuspiciousMatterReport]:
        async with self._transaction() as session:
            result = await session.execute(
                select(SuspiciousMatterReportDB)
                .where(SuspiciousMatterReportDB.status.in_([s.value for s in statuses]))
                .order_by(SuspiciousMatterReportDB.submission_deadline)
            )
            return [_report_from_row(row) for row in result.scalars()]

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def get_transaction(self, transaction_id: str) -> ThresholdTransaction | None:
        async with self._transaction() as session:
            result = await session.execute(
                select(TransactionDB).where(TransactionDB.transaction_id == transaction_id)
            )
            row = result.scalar_one_or_none()
            return _transaction_from_row(row) if row else None

    async def save_transaction(self, transaction: ThresholdTransaction) -> ThresholdTransaction:
        values = transaction.model_dump(exclude={"id"})
        async with self._transaction() as session:
            stmt = insert(TransactionDB).values(transaction_id=transaction.id, **values)
            await session.execute(
                stmt.on_conflict_do_update(
                    index_elements=[TransactionDB.transaction_id],
                    set_={k: stmt.excluded[k] for k in values},
                )
            )
        return transaction

    async def list_pending_ttr_transactions(self) -> list[ThresholdTransaction]:
        async with self._transaction() as session:
            result = await session.execute(
                select(TransactionDB).where(
                    TransactionDB.requires_ttr.is_(True),
                    TransactionDB.ttr_submitted_at.is_(None),
                    TransactionDB.ttr_submission_deadline.is_not(None),
                )
            )
            return [_transaction_from_row(row) for row in result.scalars()]

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    async def append_audit(self, entry: AuditEntry) -> None:
        async with self._transaction() as session:
            session.add(
                AuditLogDB(
                    action_type=entry.action_type,
                    entity_type=entry.entity_type,
                    entity_id=entry.entity_id,
                    description=entry.description,
                    details=entry.model_dump(mode="json")["metadata"],
                    created_at=entry.created_at,
                )
            )

    async def has_audit_since(
        self, action_type: str, entity_type: str, entity_id: str, since: datetime
    ) -> bool:
        async with self._transaction() as session:
            result = await session.execute(
                select(func.count()).where(
                    AuditLogDB.action_type == action_type,
                    AuditLogDB.entity_type == entity_type,
                    AuditLogDB.entity_id == entity_id,
                    AuditLogDB.created_at >= since,
                )
            )
            return result.scalar_one() > 0

    # ------------------------------------------------------------------
    # FX rate cache
    # ------------------------------------------------------------------

    async def upsert_rate(self, rate: CachedRate) -> None:
        async with self._transaction() as session:
            stmt = insert(FxRateCacheDB).values(
                from_currency=rate.from_currency,
                to_currency=rate.to_currency,
                rate=rate.rate,
                fetched_at=rate.fetched_at,
            )
            await session.execute(
                stmt.on_conflict_do_update(
                    index_elements=[FxRateCacheDB.from_currency, FxRateCacheDB.to_currency],
                    set_={"rate": stmt.excluded.rate, "fetched_at": stmt.excluded.fetched_at},
                )
            )

    async def latest_rate(self, from_currency: str, to_currency: str) -> CachedRate | None:
        async with self._transaction() as session:
            result = await session.execute(
                select(FxRateCacheDB)
                .where(
                    FxRateCacheDB.from_currency == from_currency,
                    FxRateCacheDB.to_currency == to_currency,
                )
                .order_by(FxRateCacheDB.fetched_at.desc())
                .limit(1)
            )
            row = result.scalar_one_or_none()
            if row is None:
                return None
            return CachedRate(
                from_currency=row.from_currency,
                to_currency=row.to_currency,
                rate=row.rate,
                fetched_at=row.fetched_at,
            )
