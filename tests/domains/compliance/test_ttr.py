"""Tests for threshold transaction reports and the CSV export."""

import csv
import io
from datetime import date, timedelta
from typing import Any

import pytest

from src.domains.compliance.errors import (
    BelowThresholdError,
    InvalidTransitionError,
    MissingFieldsError,
    NotFoundError,
    ReportClosedError,
)
from src.domains.compliance.models import ThresholdTransaction
from src.domains.compliance.ttr import CSV_COLUMNS, to_csv, ttr_reference
from tests.conftest import NOW


def _make_transaction(**kwargs: Any) -> ThresholdTransaction:
    defaults: dict[str, Any] = {
        "id": "a1b2c3d4-0000-4000-8000-000000000001",
        "customer_id": "cust-001",
        "amount": 12_000.0,
        "currency": "AUD",
        "created_at": NOW,
    }
    defaults.update(kwargs)
    return ThresholdTransaction(**defaults)


class TestGenerate:
    @pytest.mark.asyncio
    async def test_stamps_reference_and_deadline(self, engine, store):
        tx = _make_transaction()
        store.transactions[tx.id] = tx

        record = await engine.ttr.generate(tx.id, now=NOW)

        stored = store.transactions[tx.id]
        assert stored.requires_ttr
        assert stored.ttr_reference == record.ttr_reference
        assert record.ttr_reference.startswith("TTR-")
        assert record.ttr_reference.endswith("-a1b2c3d4")
        assert stored.ttr_submission_deadline == date(2026, 3, 18)
        assert record.customer_name == "Jane Citizen"
        assert any(e.action_type == "ttr_generated" for e in store.audit_log)

    @pytest.mark.asyncio
    async def test_deadline_counts_from_transaction_date(self, engine, store):
        tx = _make_transaction(created_at=NOW - timedelta(days=2))
        store.transactions[tx.id] = tx

        await engine.ttr.generate(tx.id, now=NOW)

        assert store.transactions[tx.id].ttr_submission_deadline == date(2026, 3, 16)

    @pytest.mark.asyncio
    async def test_foreign_currency_is_converted_before_threshold_check(self, engine, store):
        tx = _make_transaction(amount=8_000.0, currency="USD")
        store.transactions[tx.id] = tx

        record = await engine.ttr.generate(tx.id, now=NOW)

        assert record.amount_aud == pytest.approx(12_000.0)
        assert record.transaction_currency == "USD"

    @pytest.mark.asyncio
    async def test_below_threshold_rejected(self, engine, store):
        tx = _make_transaction(amount=9_999.99)
        store.transactions[tx.id] = tx

        with pytest.raises(BelowThresholdError):
            await engine.ttr.generate(tx.id, now=NOW)
        assert store.transactions[tx.id].ttr_reference is None

    @pytest.mark.asyncio
    async def test_exactly_threshold_is_reportable(self, engine, store):
        tx = _make_transaction(amount=10_000.0)
        store.transactions[tx.id] = tx

        record = await engine.ttr.generate(tx.id, now=NOW)

        assert record.ttr_reference is not None

    @pytest.mark.asyncio
    async def test_generation_is_idempotent(self, engine, store):
        tx = _make_transaction()
        store.transactions[tx.id] = tx

        first = await engine.ttr.generate(tx.id, now=NOW)
        second = await engine.ttr.generate(tx.id, now=NOW + timedelta(hours=1))

        assert first.ttr_reference == second.ttr_reference
        assert len([e for e in store.audit_log if e.action_type == "ttr_generated"]) == 1

    @pytest.mark.asyncio
    async def test_unknown_transaction(self, engine):
        with pytest.raises(NotFoundError):
            await engine.ttr.generate("missing", now=NOW)


class TestSubmissionAndExport:
    @pytest.mark.asyncio
    async def test_submitted_ttrs_leave_the_pending_export(self, engine, store, analyst):
        first = _make_transaction(id="tx-first-0001")
        second = _make_transaction(id="tx-second-002", created_at=NOW + timedelta(hours=1))
        for tx in (first, second):
            store.transactions[tx.id] = tx
            await engine.ttr.generate(tx.id, now=NOW)

        pending = await engine.ttr.export_pending()
        assert [r.internal_reference for r in pending] == [first.id, second.id]

        await engine.ttr.mark_submitted([first.id], analyst, now=NOW)

        pending = await engine.ttr.export_pending()
        assert [r.internal_reference for r in pending] == [second.id]
        assert store.transactions[first.id].ttr_submitted_at == NOW

    @pytest.mark.asyncio
    async def test_mark_submitted_checks_all_ids_first(self, engine, store, analyst):
        tx = _make_transaction()
        store.transactions[tx.id] = tx
        await engine.ttr.generate(tx.id, now=NOW)

        with pytest.raises(NotFoundError):
            await engine.ttr.mark_submitted([tx.id, "missing"], analyst, now=NOW)
        assert store.transactions[tx.id].ttr_submitted_at is None

    @pytest.mark.asyncio
    async def test_mark_submitted_requires_ids(self, engine, analyst):
        with pytest.raises(MissingFieldsError):
            await engine.ttr.mark_submitted([], analyst)

    @pytest.mark.asyncio
    async def test_mark_submitted_rejects_transaction_without_ttr(self, engine, store, analyst):
        tx = _make_transaction()
        store.transactions[tx.id] = tx

        with pytest.raises(InvalidTransitionError):
            await engine.ttr.mark_submitted([tx.id], analyst, now=NOW)
        assert store.transactions[tx.id].ttr_submitted_at is None

    @pytest.mark.asyncio
    async def test_mark_submitted_twice_keeps_first_timestamp(self, engine, store, analyst):
        tx = _make_transaction()
        store.transactions[tx.id] = tx
        await engine.ttr.generate(tx.id, now=NOW)
        await engine.ttr.mark_submitted([tx.id], analyst, now=NOW)

        with pytest.raises(ReportClosedError):
            await engine.ttr.mark_submitted([tx.id], analyst, now=NOW + timedelta(days=1))
        assert store.transactions[tx.id].ttr_submitted_at == NOW

    @pytest.mark.asyncio
    async def test_unnamed_customer_in_export(self, engine, store):
        store.customers["cust-002"] = store.customers["cust-001"].model_copy(
            update={"id": "cust-002", "name": ""}
        )
        tx = _make_transaction(customer_id="cust-002")
        store.transactions[tx.id] = tx

        record = await engine.ttr.generate(tx.id, now=NOW)

        assert record.customer_name == "Name not provided"


class TestCsv:
    @pytest.mark.asyncio
    async def test_csv_layout(self, engine, store):
        tx = _make_transaction()
        store.transactions[tx.id] = tx
        await engine.ttr.generate(tx.id, now=NOW)

        text = to_csv(await engine.ttr.export_pending())
        rows = list(csv.reader(io.StringIO(text)))

        assert rows[0] == [header for header, _ in CSV_COLUMNS]
        assert len(rows) == 2
        row = dict(zip(rows[0], rows[1], strict=True))
        assert row["Transaction Date"] == "2026-03-04"
        assert row["Customer Name"] == "Jane Citizen"
        assert row["Submission Deadline"] == "2026-03-18"

    def test_empty_export_has_header_only(self):
        rows = list(csv.reader(io.StringIO(to_csv([]))))
        assert len(rows) == 1


def test_reference_format():
    assert ttr_reference("abcdef123456", NOW) == f"TTR-{int(NOW.timestamp() * 1000)}-abcdef12"
