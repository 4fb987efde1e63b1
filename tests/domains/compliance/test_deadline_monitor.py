"""Tests for the daily deadline sweep and its once-per-day alert guarantee."""

from datetime import UTC, date, datetime, timedelta
from typing import Any

import pytest

from src.domains.compliance.deadline_monitor import SMR_ALERT_ACTION, TTR_ALERT_ACTION
from src.domains.compliance.errors import PersistenceError
from src.domains.compliance.models import (
    AuditEntry,
    InvestigationStatus,
    ReportStatus,
    RequestStatus,
    SuspicionCategory,
    SuspiciousMatterReport,
    ThresholdTransaction,
)
from src.domains.compliance.notifications import NotificationTemplate
from tests.conftest import NOW


def _make_ttr(**kwargs: Any) -> ThresholdTransaction:
    defaults: dict[str, Any] = {
        "id": "tx-0001",
        "customer_id": "cust-001",
        "amount": 15_000.0,
        "amount_aud": 15_000.0,
        "created_at": NOW - timedelta(days=7),
        "requires_ttr": True,
        "ttr_reference": "TTR-1772586000000-tx-0001",
        "ttr_submission_deadline": date(2026, 3, 9),
    }
    defaults.update(kwargs)
    return ThresholdTransaction(**defaults)


def _make_smr(**kwargs: Any) -> SuspiciousMatterReport:
    defaults: dict[str, Any] = {
        "id": "smr-0001",
        "customer_id": "cust-001",
        "suspicion_category": SuspicionCategory.STRUCTURING,
        "description": "Structured purchases",
        "status": ReportStatus.PENDING,
        "submission_deadline": date(2026, 3, 5),
        "created_at": NOW - timedelta(days=2),
    }
    defaults.update(kwargs)
    return SuspiciousMatterReport(**defaults)


def _alerts(store, action_type: str) -> list[AuditEntry]:
    return [e for e in store.audit_log if e.action_type == action_type]


class TestSweep:
    @pytest.mark.asyncio
    async def test_alerts_ttr_and_smr_inside_window(self, engine, store, sender):
        store.transactions["tx-0001"] = _make_ttr()
        store.reports["smr-0001"] = _make_smr()

        result = await engine.monitor.run(now=NOW)

        assert result.ttr_alerts_sent == 1
        assert result.smr_alerts_sent == 1
        assert result.total_alerts_sent == 2
        assert result.errors == []
        assert sender.templates() == [
            NotificationTemplate.TTR_DEADLINE,
            NotificationTemplate.SMR_DEADLINE,
        ]

        ttr_alert = _alerts(store, TTR_ALERT_ACTION)[0]
        assert ttr_alert.metadata["days_remaining"] == 3
        assert ttr_alert.metadata["severity"] == "high"
        smr_alert = _alerts(store, SMR_ALERT_ACTION)[0]
        assert smr_alert.metadata["days_remaining"] == 1
        assert smr_alert.metadata["severity"] == "critical"

    @pytest.mark.asyncio
    async def test_second_run_same_day_sends_nothing(self, engine, store, sender):
        store.transactions["tx-0001"] = _make_ttr()
        store.reports["smr-0001"] = _make_smr()

        await engine.monitor.run(now=NOW)
        result = await engine.monitor.run(now=NOW + timedelta(hours=6))

        assert result.total_alerts_sent == 0
        assert len(sender.sent) == 2
        assert len(_alerts(store, TTR_ALERT_ACTION)) == 1

    @pytest.mark.asyncio
    async def test_next_day_alerts_again(self, engine, store, sender):
        store.transactions["tx-0001"] = _make_ttr()

        await engine.monitor.run(now=NOW)
        result = await engine.monitor.run(now=NOW + timedelta(days=1))

        assert result.ttr_alerts_sent == 1
        assert len(_alerts(store, TTR_ALERT_ACTION)) == 2

    @pytest.mark.asyncio
    async def test_day_boundary_is_legal_time_zone(self, engine, store):
        store.transactions["tx-0001"] = _make_ttr()
        # 12:30 UTC on 4 March is 23:30 in Sydney, still the same local day
        late_evening = datetime(2026, 3, 4, 12, 30, tzinfo=UTC)
        # 13:30 UTC on 4 March is 00:30 on 5 March in Sydney
        past_midnight = datetime(2026, 3, 4, 13, 30, tzinfo=UTC)

        await engine.monitor.run(now=NOW)
        same_day = await engine.monitor.run(now=late_evening)
        next_day = await engine.monitor.run(now=past_midnight)

        assert same_day.ttr_alerts_sent == 0
        assert next_day.ttr_alerts_sent == 1

    @pytest.mark.asyncio
    async def test_outside_window_is_checked_but_not_alerted(self, engine, store, sender):
        store.transactions["tx-0001"] = _make_ttr(ttr_submission_deadline=date(2026, 3, 18))
        store.reports["smr-0001"] = _make_smr(submission_deadline=date(2026, 3, 9))

        result = await engine.monitor.run(now=NOW)

        assert result.ttr_checked == 1
        assert result.smr_checked == 1
        assert result.total_alerts_sent == 0
        assert sender.sent == []

    @pytest.mark.asyncio
    async def test_overdue_is_critical(self, engine, store, sender):
        store.reports["smr-0001"] = _make_smr(submission_deadline=date(2026, 3, 2))

        result = await engine.monitor.run(now=NOW)

        assert result.smr_alerts_sent == 1
        context = sender.sent[0]["context"]
        assert context["overdue"] is True
        assert context["severity"] == "critical"
        assert context["days_remaining"] == 0

    @pytest.mark.asyncio
    async def test_submitted_and_closed_items_are_ignored(self, engine, store):
        store.transactions["tx-0001"] = _make_ttr(ttr_submitted_at=NOW - timedelta(days=1))
        store.reports["smr-0001"] = _make_smr(status=ReportStatus.DISMISSED)
        store.reports["smr-0002"] = _make_smr(id="smr-0002", status=ReportStatus.REPORTED)

        result = await engine.monitor.run(now=NOW)

        assert result.ttr_checked == 0
        assert result.smr_checked == 0

    @pytest.mark.asyncio
    async def test_under_review_smr_still_alerted(self, engine, store):
        store.reports["smr-0001"] = _make_smr(status=ReportStatus.UNDER_REVIEW)

        result = await engine.monitor.run(now=NOW)

        assert result.smr_alerts_sent == 1

    @pytest.mark.asyncio
    async def test_ttr_alert_names_customer_and_transaction_date(self, engine, store, sender):
        store.transactions["tx-0001"] = _make_ttr()
        store.transactions["tx-0002"] = _make_ttr(id="tx-0002", customer_id="cust-gone")

        await engine.monitor.run(now=NOW)

        contexts = {s["context"]["transaction_id"]: s["context"] for s in sender.sent}
        assert contexts["tx-0001"]["customer_name"] == "Jane Citizen"
        assert contexts["tx-0001"]["transaction_date"] == "25/02/2026"
        assert contexts["tx-0002"]["customer_name"] == "Unknown"

    @pytest.mark.asyncio
    async def test_records_summary_audit(self, engine, store):
        store.transactions["tx-0001"] = _make_ttr()

        await engine.monitor.run(now=NOW)

        summary = _alerts(store, "deadline_check_run")
        assert len(summary) == 1
        assert summary[0].entity_type == "system"
        assert summary[0].metadata["ttr_alerts_sent"] == 1


class TestInformationRequestDeadlines:
    @pytest.mark.asyncio
    async def test_lapsed_request_marked_overdue_once(self, engine, store, analyst):
        case = await engine.investigations.open_investigation(
            "cust-001", "Large purchase", analyst, now=NOW - timedelta(days=10)
        )
        case = await engine.investigations.request_information(
            case.id, ["Bank statements"], analyst, deadline=date(2026, 3, 3), now=NOW
        )
        await engine.investigations.request_information(
            case.id, ["Payslips"], analyst, deadline=date(2026, 3, 18), now=NOW
        )

        result = await engine.monitor.run(now=NOW)

        requests = store.cases[case.id].information_requests
        assert [r.status for r in requests] == [RequestStatus.OVERDUE, RequestStatus.PENDING]
        assert result.requests_marked_overdue == 1
        overdue = _alerts(store, "edd_information_request_overdue")
        assert [e.metadata["request_id"] for e in overdue] == [requests[0].id]

        again = await engine.monitor.run(now=NOW + timedelta(days=1))
        assert again.requests_marked_overdue == 0

    @pytest.mark.asyncio
    async def test_request_due_today_is_not_overdue(self, engine, store, analyst):
        case = await engine.investigations.open_investigation(
            "cust-001", "Large purchase", analyst, now=NOW
        )
        await engine.investigations.request_information(
            case.id, ["Bank statements"], analyst, deadline=date(2026, 3, 4), now=NOW
        )

        result = await engine.monitor.run(now=NOW)

        assert result.requests_marked_overdue == 0
        assert store.cases[case.id].information_requests[0].status == RequestStatus.PENDING

    @pytest.mark.asyncio
    async def test_overdue_request_can_still_be_received(self, engine, store, analyst):
        case = await engine.investigations.open_investigation(
            "cust-001", "Large purchase", analyst, now=NOW
        )
        case = await engine.investigations.request_information(
            case.id, ["Bank statements"], analyst, deadline=date(2026, 3, 3), now=NOW
        )
        await engine.monitor.run(now=NOW)

        case = await engine.investigations.record_information_received(
            case.id, case.information_requests[0].id, analyst, now=NOW
        )

        assert case.information_requests[0].status == RequestStatus.RECEIVED
        assert case.status == InvestigationStatus.UNDER_REVIEW


class TestFailures:
    @pytest.mark.asyncio
    async def test_failed_notification_is_not_recorded_and_retried(
        self, engine, store, sender
    ):
        store.transactions["tx-0001"] = _make_ttr()
        sender.fail = True

        failed = await engine.monitor.run(now=NOW)

        assert failed.ttr_alerts_sent == 0
        assert failed.errors == [f"{TTR_ALERT_ACTION} tx-0001: smtp down"]
        assert _alerts(store, TTR_ALERT_ACTION) == []

        sender.fail = False
        retried = await engine.monitor.run(now=NOW + timedelta(minutes=30))

        assert retried.ttr_alerts_sent == 1

    @pytest.mark.asyncio
    async def test_no_recipients_counts_as_failure(self, engine, store, compliance_config):
        compliance_config.notifications.compliance_recipients = []
        store.transactions["tx-0001"] = _make_ttr()

        result = await engine.monitor.run(now=NOW)

        assert result.ttr_alerts_sent == 0
        assert "no recipients" in result.errors[0]

    @pytest.mark.asyncio
    async def test_fetch_failure_is_reported_and_sweep_continues(
        self, engine, store, monkeypatch
    ):
        async def broken_list():
            raise PersistenceError("connection reset")

        monkeypatch.setattr(store, "list_pending_ttr_transactions", broken_list)
        store.reports["smr-0001"] = _make_smr()

        result = await engine.monitor.run(now=NOW)

        assert result.smr_alerts_sent == 1
        assert result.errors[0].startswith("TTR fetch failed")

    @pytest.mark.asyncio
    async def test_one_failure_does_not_stop_the_others(self, engine, store, sender):
        store.transactions["tx-0001"] = _make_ttr()
        store.transactions["tx-0002"] = _make_ttr(id="tx-0002")
        calls = {"n": 0}
        original_send = sender.send

        async def flaky_send(recipients, template, context):
            calls["n"] += 1
            if calls["n"] == 1:
                raise RuntimeError("mailer crashed")
            return await original_send(recipients, template, context)

        sender.send = flaky_send

        result = await engine.monitor.run(now=NOW)

        assert result.ttr_alerts_sent == 1
        assert len(result.errors) == 1
