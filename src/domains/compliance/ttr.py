"""Threshold Transaction Reports (TTR).

Regulatory basis:
  AML/CTF Act 2006 s 43: a transfer of physical currency of AUD 10,000 or
  more must be reported to AUSTRAC within 10 business days.

Generation stamps the transaction with a TTR reference and its submission
deadline; the deadline monitor sweeps every stamped transaction until it is
marked submitted. Pending TTRs are exported as CSV for upload to AUSTRAC
Online.
"""

import csv
import io
from datetime import UTC, datetime

import structlog

from .config import ComplianceConfig, default_config
from .deadlines import DeadlineCalculator
from .errors import (
    BelowThresholdError,
    InvalidTransitionError,
    MissingFieldsError,
    NotFoundError,
    ReportClosedError,
)
from .fx import AmountNormalizer
from .models import AuditEntry, StaffIdentity, ThresholdTransaction, TTRRecord
from .store import ComplianceStore, record_audit

logger = structlog.get_logger()

TRANSACTION_ENTITY_TYPE = "transaction"

CSV_COLUMNS: list[tuple[str, str]] = [
    ("Transaction Date", "transaction_date"),
    ("Transaction Type", "transaction_type"),
    ("Amount", "transaction_amount"),
    ("Currency", "transaction_currency"),
    ("Amount (AUD)", "amount_aud"),
    ("Customer Name", "customer_name"),
    ("Internal Reference", "internal_reference"),
    ("TTR Reference", "ttr_reference"),
    ("Submission Deadline", "submission_deadline"),
]


def ttr_reference(transaction_id: str, now: datetime) -> str:
    return f"TTR-{int(now.timestamp() * 1000)}-{transaction_id[:8]}"


class TTRService:
    def __init__(
        self,
        store: ComplianceStore,
        deadlines: DeadlineCalculator,
        normalizer: AmountNormalizer,
        config: ComplianceConfig | None = None,
    ) -> None:
        self.store = store
        self.deadlines = deadlines
        self.normalizer = normalizer
        self.config = config or default_config

    async def _load(self, transaction_id: str) -> ThresholdTransaction:
        transaction = await self.store.get_transaction(transaction_id)
        if transaction is None:
            raise NotFoundError("transaction", transaction_id)
        return transaction

    async def generate(
        self, transaction_id: str, now: datetime | None = None
    ) -> TTRRecord:
        """Stamp a threshold transaction with its TTR reference and deadline.

        Calling this again for an already-stamped transaction returns the
        existing record unchanged.
        """
        transaction = await self._load(transaction_id)
        if transaction.ttr_reference:
            logger.info(
                "ttr_already_generated",
                transaction_id=transaction_id,
                ttr_reference=transaction.ttr_reference,
            )
            return await self._to_record(transaction)

        now = now or datetime.now(UTC)

        if transaction.amount_aud is None:
            reporting_currency = self.config.fx.reporting_currency
            if transaction.currency.upper() == reporting_currency:
                transaction.amount_aud = transaction.amount
            else:
                conversion = await self.normalizer.convert(
                    transaction.amount, transaction.currency, reporting_currency, now=now
                )
                transaction.amount_aud = conversion.normalized_amount

        threshold = self.config.thresholds.ttr_threshold_aud
        if transaction.amount_aud < threshold:
            raise BelowThresholdError(
                f"Transaction {transaction_id} is AUD {transaction.amount_aud:,.2f}, "
                f"below the AUD {threshold:,.2f} reporting threshold"
            )

        transaction.requires_ttr = True
        transaction.ttr_reference = ttr_reference(transaction.id, now)
        transaction.ttr_generated_at = now
        transaction.ttr_submission_deadline = self.deadlines.ttr_deadline(
            transaction.created_at
        )
        await self.store.save_transaction(transaction)

        logger.warning(
            "ttr_generated",
            transaction_id=transaction.id,
            ttr_reference=transaction.ttr_reference,
            amount_aud=transaction.amount_aud,
            deadline=transaction.ttr_submission_deadline.isoformat(),
        )
        await record_audit(
            self.store,
            AuditEntry(
                action_type="ttr_generated",
                entity_type=TRANSACTION_ENTITY_TYPE,
                entity_id=transaction.id,
                description=f"TTR {transaction.ttr_reference} generated",
                metadata={
                    "ttr_reference": transaction.ttr_reference,
                    "amount_aud": transaction.amount_aud,
                    "deadline": transaction.ttr_submission_deadline.isoformat(),
                },
                created_at=now,
            ),
        )
        return await self._to_record(transaction)

    async def mark_submitted(
        self,
        transaction_ids: list[str],
        staff: StaffIdentity,
        now: datetime | None = None,
    ) -> list[ThresholdTransaction]:
        """Mark TTRs as lodged with AUSTRAC. All ids are checked before any write."""
        if not transaction_ids:
            raise MissingFieldsError(["transaction_ids"])

        transactions = [await self._load(tx_id) for tx_id in transaction_ids]
        for transaction in transactions:
            if transaction.ttr_reference is None:
                raise InvalidTransitionError(
                    f"Transaction {transaction.id} has no TTR to submit"
                )
            if transaction.ttr_submitted_at is not None:
                raise ReportClosedError(
                    f"TTR {transaction.ttr_reference} was already submitted"
                )
        now = now or datetime.now(UTC)

        for transaction in transactions:
            transaction.ttr_submitted_at = now
            await self.store.save_transaction(transaction)
            await record_audit(
                self.store,
                AuditEntry(
                    action_type="ttr_submitted",
                    entity_type=TRANSACTION_ENTITY_TYPE,
                    entity_id=transaction.id,
                    description="TTR submitted to AUSTRAC",
                    metadata={
                        "ttr_reference": transaction.ttr_reference,
                        "staff_id": staff.staff_id,
                    },
                    created_at=now,
                ),
            )

        logger.info(
            "ttrs_marked_submitted", count=len(transactions), staff_id=staff.staff_id
        )
        return transactions

    async def export_pending(self) -> list[TTRRecord]:
        transactions = await self.store.list_pending_ttr_transactions()
        transactions.sort(key=lambda tx: tx.created_at)
        return [await self._to_record(tx) for tx in transactions]

    async def _to_record(self, transaction: ThresholdTransaction) -> TTRRecord:
        customer = await self.store.get_customer(transaction.customer_id)
        customer_name = (customer.name if customer else "").strip() or "Name not provided"
        deadline = transaction.ttr_submission_deadline
        return TTRRecord(
            transaction_date=self.deadlines.calendar.local_date(
                transaction.created_at
            ).isoformat(),
            transaction_amount=transaction.amount,
            transaction_currency=transaction.currency,
            amount_aud=transaction.amount_aud,
            customer_name=customer_name,
            internal_reference=transaction.id,
            ttr_reference=transaction.ttr_reference,
            submission_deadline=deadline.isoformat() if deadline else None,
        )


def to_csv(records: list[TTRRecord]) -> str:
    """Render TTR records in the column layout of the AUSTRAC bulk upload."""
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow([header for header, _ in CSV_COLUMNS])
    for record in records:
        row = record.model_dump()
        writer.writerow(
            ["" if row[field] is None else row[field] for _, field in CSV_COLUMNS]
        )
    return buffer.getvalue()
