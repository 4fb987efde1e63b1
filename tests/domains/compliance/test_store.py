"""Tests for the in-memory compliance store and audit recording."""

from datetime import timedelta
from typing import Any

import pytest

from src.domains.compliance.errors import (
    ActiveInvestigationExistsError,
    ConcurrentModificationError,
    PersistenceError,
)
from src.domains.compliance.models import (
    AuditEntry,
    CustomerRecord,
    InvestigationCase,
    InvestigationStatus,
)
from src.domains.compliance.store import InMemoryComplianceStore, record_audit
from tests.conftest import NOW


def _make_case(**kwargs: Any) -> InvestigationCase:
    defaults: dict[str, Any] = {
        "id": "case-1",
        "investigation_number": "EDD-20260304-AAAAAA",
        "customer_id": "cust-001",
        "trigger_reason": "Large purchase",
        "opened_at": NOW,
        "last_activity_at": NOW,
    }
    defaults.update(kwargs)
    return InvestigationCase(**defaults)


class TestCases:
    @pytest.mark.asyncio
    async def test_insert_sets_first_version(self):
        store = InMemoryComplianceStore()

        case = await store.insert_case(_make_case())

        assert case.version == 1

    @pytest.mark.asyncio
    async def test_second_active_case_rejected(self):
        store = InMemoryComplianceStore()
        await store.insert_case(_make_case())

        with pytest.raises(ActiveInvestigationExistsError):
            await store.insert_case(_make_case(id="case-2", investigation_number="EDD-2"))

    @pytest.mark.asyncio
    async def test_save_increments_version(self):
        store = InMemoryComplianceStore()
        case = await store.insert_case(_make_case())

        case.status = InvestigationStatus.UNDER_REVIEW
        saved = await store.save_case(case)

        assert saved.version == 2
        assert store.cases["case-1"].status == InvestigationStatus.UNDER_REVIEW

    @pytest.mark.asyncio
    async def test_lost_update_is_detected(self):
        store = InMemoryComplianceStore()
        await store.insert_case(_make_case())
        first = await store.get_case("case-1")
        second = await store.get_case("case-1")

        first.status = InvestigationStatus.ESCALATED
        await store.save_case(first)
        second.assigned_to = "staff-other"

        with pytest.raises(ConcurrentModificationError):
            await store.save_case(second)

    @pytest.mark.asyncio
    async def test_save_case_writes_customer_with_case(self):
        store = InMemoryComplianceStore()
        case = await store.insert_case(_make_case())

        case.status = InvestigationStatus.COMPLETED_APPROVED
        customer = CustomerRecord(id="cust-001", name="Jane Citizen", edd_completed=True)
        await store.save_case(case, customer)

        assert store.cases["case-1"].status == InvestigationStatus.COMPLETED_APPROVED
        assert store.customers["cust-001"].edd_completed

    @pytest.mark.asyncio
    async def test_rejected_case_write_leaves_customer_untouched(self):
        store = InMemoryComplianceStore()
        await store.insert_case(_make_case())
        stale = await store.get_case("case-1")
        await store.save_case(await store.get_case("case-1"))

        customer = CustomerRecord(id="cust-001", current_investigation_id="case-1")
        with pytest.raises(ConcurrentModificationError):
            await store.save_case(stale, customer)
        with pytest.raises(ActiveInvestigationExistsError):
            await store.insert_case(
                _make_case(id="case-2", investigation_number="EDD-2"), customer
            )

        assert "cust-001" not in store.customers

    @pytest.mark.asyncio
    async def test_reads_are_copies(self):
        store = InMemoryComplianceStore()
        await store.insert_case(_make_case())

        copy = await store.get_case("case-1")
        copy.checklist.source_of_funds.completed = True

        assert not store.cases["case-1"].checklist.source_of_funds.completed


class TestAudit:
    @pytest.mark.asyncio
    async def test_has_audit_since(self):
        store = InMemoryComplianceStore()
        await store.append_audit(
            AuditEntry(
                action_type="smr_deadline_alert",
                entity_type="suspicious_activity_report",
                entity_id="smr-1",
                created_at=NOW,
            )
        )

        assert await store.has_audit_since(
            "smr_deadline_alert", "suspicious_activity_report", "smr-1", NOW - timedelta(hours=1)
        )
        assert not await store.has_audit_since(
            "smr_deadline_alert", "suspicious_activity_report", "smr-1", NOW + timedelta(seconds=1)
        )
        assert not await store.has_audit_since(
            "smr_deadline_alert", "suspicious_activity_report", "smr-2", NOW - timedelta(hours=1)
        )

    @pytest.mark.asyncio
    async def test_record_audit_swallows_persistence_errors(self, monkeypatch):
        store = InMemoryComplianceStore()

        async def broken_append(entry):
            raise PersistenceError("disk full")

        monkeypatch.setattr(store, "append_audit", broken_append)

        written = await record_audit(
            store, AuditEntry(action_type="x", entity_type="y", created_at=NOW)
        )

        assert written is False
