"""API contract tests for the compliance and cron endpoints.

The engine is backed by the in-memory store, a fixed-rate price feed and a
recording sender, injected through the ``get_engine`` dependency.
"""

import pytest
from httpx import ASGITransport, AsyncClient

from src.api.dependencies import get_engine
from src.config import settings
from src.domains.compliance.models import ThresholdTransaction
from src.main import app
from tests.conftest import NOW

pytestmark = pytest.mark.integration

BASE_URL = "http://test"
PREFIX = "/api/v1/compliance"

ANALYST = {"X-Staff-Id": "staff-analyst"}
MANAGER = {"X-Staff-Id": "staff-manager", "X-Staff-Role": "management"}


@pytest.fixture
def client_engine(engine):
    app.dependency_overrides[get_engine] = lambda: engine
    yield engine
    app.dependency_overrides.clear()


def _client():
    """Return an AsyncClient bound to the test app."""
    transport = ASGITransport(app=app)
    return AsyncClient(transport=transport, base_url=BASE_URL)


async def _open_case(c) -> dict:
    resp = await c.post(
        f"{PREFIX}/investigations",
        json={"customer_id": "cust-001", "trigger_reason": "Large cash purchase"},
        headers=ANALYST,
    )
    assert resp.status_code == 201
    return resp.json()


# =========================================================================
# INVESTIGATIONS
# =========================================================================


class TestInvestigationEndpoints:
    @pytest.mark.asyncio
    async def test_open_and_fetch(self, client_engine):
        async with _client() as c:
            case = await _open_case(c)
            assert case["status"] == "open"
            assert case["investigation_number"].startswith("EDD-")

            resp = await c.get(f"{PREFIX}/investigations/{case['id']}")
            assert resp.status_code == 200
            assert resp.json()["customer_id"] == "cust-001"

            resp = await c.get(f"{PREFIX}/investigations", params={"status": "open"})
            assert resp.json()["total"] == 1

    @pytest.mark.asyncio
    async def test_missing_staff_header_is_forbidden(self, client_engine):
        async with _client() as c:
            resp = await c.post(
                f"{PREFIX}/investigations",
                json={"customer_id": "cust-001", "trigger_reason": "x"},
            )
            assert resp.status_code == 403
            assert resp.json()["error"] == "not_authorized"

    @pytest.mark.asyncio
    async def test_duplicate_active_case_conflicts(self, client_engine):
        async with _client() as c:
            await _open_case(c)
            resp = await c.post(
                f"{PREFIX}/investigations",
                json={"customer_id": "cust-001", "trigger_reason": "again"},
                headers=ANALYST,
            )
            assert resp.status_code == 409
            assert resp.json()["error"] == "active_investigation_exists"

    @pytest.mark.asyncio
    async def test_unknown_case_is_404(self, client_engine):
        async with _client() as c:
            resp = await c.get(f"{PREFIX}/investigations/missing")
            assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_invalid_section_is_400(self, client_engine):
        async with _client() as c:
            case = await _open_case(c)
            resp = await c.put(
                f"{PREFIX}/investigations/{case['id']}/checklist/astrology",
                json={"completed": True},
                headers=ANALYST,
            )
            assert resp.status_code == 400
            assert resp.json()["error"] == "invalid_section"

    @pytest.mark.asyncio
    async def test_complete_missing_fields_is_400(self, client_engine):
        async with _client() as c:
            case = await _open_case(c)
            resp = await c.post(
                f"{PREFIX}/investigations/{case['id']}/complete",
                json={"decision": "approve_relationship"},
                headers=ANALYST,
            )
            assert resp.status_code == 400
            assert resp.json()["error"] == "missing_fields"

    @pytest.mark.asyncio
    async def test_high_risk_flow(self, client_engine):
        async with _client() as c:
            case = await _open_case(c)
            case_url = f"{PREFIX}/investigations/{case['id']}"
            completion = {
                "findings": "Funds traced to unregistered remitter",
                "risk_assessment": "High",
                "decision": "reject_relationship",
            }

            resp = await c.post(f"{case_url}/complete", json=completion, headers=ANALYST)
            assert resp.status_code == 403
            assert resp.json()["error"] == "approval_required"

            await c.post(
                f"{case_url}/decision",
                json={"decision": "reject_relationship"},
                headers=ANALYST,
            )
            resp = await c.post(f"{case_url}/approve", headers=ANALYST)
            assert resp.status_code == 403

            resp = await c.post(f"{case_url}/approve", headers=MANAGER)
            assert resp.status_code == 200
            assert resp.json()["approved_by_management"] is True

            resp = await c.post(f"{case_url}/complete", json=completion, headers=ANALYST)
            assert resp.status_code == 200
            assert resp.json()["status"] == "completed_rejected"

            resp = await c.put(
                f"{case_url}/checklist/source_of_funds",
                json={"completed": True},
                headers=ANALYST,
            )
            assert resp.status_code == 409

    @pytest.mark.asyncio
    async def test_information_request_round_trip(self, client_engine):
        async with _client() as c:
            case = await _open_case(c)
            case_url = f"{PREFIX}/investigations/{case['id']}"

            resp = await c.post(
                f"{case_url}/information-requests",
                json={"items": ["Bank statements"], "deadline": "2026-03-18"},
                headers=ANALYST,
            )
            assert resp.status_code == 200
            body = resp.json()
            assert body["status"] == "awaiting_customer_info"

            request_id = body["information_requests"][0]["id"]
            resp = await c.post(
                f"{case_url}/information-requests/{request_id}/received",
                json={"notes": "Received by email"},
                headers=ANALYST,
            )
            assert resp.json()["status"] == "under_review"


# =========================================================================
# SMR / TTR
# =========================================================================


class TestReportEndpoints:
    @pytest.mark.asyncio
    async def test_smr_lifecycle(self, client_engine):
        async with _client() as c:
            resp = await c.post(
                f"{PREFIX}/smr",
                json={
                    "customer_id": "cust-001",
                    "suspicion_category": "unusual_pattern",
                    "indicators": ["Cash purchases at multiple branches"],
                    "narrative": "Customer visited three branches in one day.",
                },
                headers=ANALYST,
            )
            assert resp.status_code == 201
            report_id = resp.json()["id"]

            resp = await c.get(f"{PREFIX}/smr")
            assert resp.json()["total"] == 1
            assert "days_remaining" in resp.json()["items"][0]

            resp = await c.post(
                f"{PREFIX}/smr/{report_id}/submit",
                json={"austrac_reference": "AUS-99"},
                headers=ANALYST,
            )
            assert resp.json()["status"] == "reported"

            resp = await c.post(
                f"{PREFIX}/smr/{report_id}/dismiss",
                json={"reason": "too late"},
                headers=ANALYST,
            )
            assert resp.status_code == 409

    @pytest.mark.asyncio
    async def test_smr_invalid_category(self, client_engine):
        async with _client() as c:
            resp = await c.post(
                f"{PREFIX}/smr",
                json={
                    "customer_id": "cust-001",
                    "suspicion_category": "gut_feeling",
                    "narrative": "n/a",
                },
                headers=ANALYST,
            )
            assert resp.status_code == 400
            assert resp.json()["error"] == "invalid_category"

    @pytest.mark.asyncio
    async def test_ttr_generate_export_submit(self, client_engine, store):
        store.transactions["tx-0001"] = ThresholdTransaction(
            id="tx-0001", customer_id="cust-001", amount=25_000.0, created_at=NOW
        )
        async with _client() as c:
            resp = await c.post(f"{PREFIX}/ttr/tx-0001", headers=ANALYST)
            assert resp.status_code == 200
            assert resp.json()["ttr_reference"].startswith("TTR-")

            resp = await c.get(f"{PREFIX}/ttr/export")
            assert resp.status_code == 200
            assert resp.headers["content-type"].startswith("text/csv")
            assert "Jane Citizen" in resp.text

            resp = await c.post(
                f"{PREFIX}/ttr/submitted",
                json={"transaction_ids": ["tx-0001"]},
                headers=ANALYST,
            )
            assert resp.status_code == 200
            assert resp.json()["count"] == 1

            resp = await c.post(
                f"{PREFIX}/ttr/submitted",
                json={"transaction_ids": ["tx-0001"]},
                headers=ANALYST,
            )
            assert resp.status_code == 409
            assert resp.json()["error"] == "report_closed"

            resp = await c.get(f"{PREFIX}/ttr/pending")
            assert resp.json()["total"] == 0

    @pytest.mark.asyncio
    async def test_ttr_below_threshold_is_400(self, client_engine, store):
        store.transactions["tx-0002"] = ThresholdTransaction(
            id="tx-0002", customer_id="cust-001", amount=500.0, created_at=NOW
        )
        async with _client() as c:
            resp = await c.post(f"{PREFIX}/ttr/tx-0002", headers=ANALYST)
            assert resp.status_code == 400
            assert resp.json()["error"] == "below_threshold"


# =========================================================================
# FX / DEADLINES / CALENDAR
# =========================================================================


class TestLookupEndpoints:
    @pytest.mark.asyncio
    async def test_fx_convert_live(self, client_engine):
        async with _client() as c:
            resp = await c.get(
                f"{PREFIX}/fx/convert", params={"amount": 100, "from_currency": "USD"}
            )
            assert resp.status_code == 200
            data = resp.json()
            assert data["normalized_amount"] == pytest.approx(150.0)
            assert data["is_degraded"] is False

    @pytest.mark.asyncio
    async def test_fx_no_rate_is_503(self, client_engine, feed):
        feed.fail = True
        async with _client() as c:
            resp = await c.get(
                f"{PREFIX}/fx/convert", params={"amount": 100, "from_currency": "USD"}
            )
            assert resp.status_code == 503
            assert resp.json()["error"] == "no_rate_available"

    @pytest.mark.asyncio
    async def test_smr_deadline_over_christmas(self, client_engine):
        async with _client() as c:
            resp = await c.get(f"{PREFIX}/deadlines/smr", params={"origin": "2025-12-24"})
            assert resp.status_code == 200
            data = resp.json()
            assert data["deadline"] == "2025-12-31"
            assert data["deadline_display"] == "Wednesday, 31 December 2025"

    @pytest.mark.asyncio
    async def test_unknown_report_type_is_422(self, client_engine):
        async with _client() as c:
            resp = await c.get(f"{PREFIX}/deadlines/ctr", params={"origin": "2025-12-24"})
            assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_holidays(self, client_engine):
        async with _client() as c:
            resp = await c.get(f"{PREFIX}/calendar/holidays/2026")
            data = resp.json()
            assert data["timezone"] == "Australia/Sydney"
            assert {"date": "2026-04-03", "name": "Good Friday"} in data["items"]


# =========================================================================
# CRON
# =========================================================================


class TestCronEndpoint:
    @pytest.mark.asyncio
    async def test_rejects_wrong_secret(self, client_engine, monkeypatch):
        monkeypatch.setattr(settings, "cron_secret", "s3cret")
        async with _client() as c:
            resp = await c.post(
                "/api/cron/check-deadlines", headers={"Authorization": "Bearer nope"}
            )
            assert resp.status_code == 401
            assert resp.json() == {"error": "unauthorized"}

    @pytest.mark.asyncio
    async def test_runs_sweep_with_secret(self, client_engine, store, monkeypatch):
        monkeypatch.setattr(settings, "cron_secret", "s3cret")
        today = client_engine.calendar.today()
        store.transactions["tx-0001"] = ThresholdTransaction(
            id="tx-0001",
            customer_id="cust-001",
            amount=15_000.0,
            amount_aud=15_000.0,
            created_at=NOW,
            requires_ttr=True,
            ttr_reference="TTR-1-tx-0001",
            ttr_submission_deadline=client_engine.calendar.add_business_days(today, 1),
        )
        async with _client() as c:
            resp = await c.get(
                "/api/cron/check-deadlines", headers={"Authorization": "Bearer s3cret"}
            )
            assert resp.status_code == 200
            data = resp.json()
            assert data["success"] is True
            assert data["ttr_alerts_sent"] == 1
            assert data["total_alerts_sent"] == 1

            resp = await c.post(
                "/api/cron/check-deadlines", headers={"Authorization": "Bearer s3cret"}
            )
            assert resp.json()["total_alerts_sent"] == 0

