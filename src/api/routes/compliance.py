"""Compliance case and reporting API endpoints.

EDD investigations, SMR lifecycle, TTR generation/export, FX conversion and
deadline lookups. Every mutating endpoint requires the ``X-Staff-Id`` header;
management actions additionally require ``X-Staff-Role: management``.
"""

from datetime import date
from typing import Any, Literal

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from pydantic import BaseModel, Field

from src.api.dependencies import get_engine, get_staff
from src.domains.compliance.deadlines import format_deadline
from src.domains.compliance.engine import ComplianceEngine
from src.domains.compliance.models import InvestigationStatus, StaffIdentity, TriggerType
from src.domains.compliance.ttr import to_csv

router = APIRouter(prefix="/api/v1/compliance", tags=["compliance"])


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class InvestigationCreateRequest(BaseModel):
    customer_id: str
    trigger_reason: str
    transaction_id: str | None = None
    triggered_by: TriggerType = TriggerType.ADMIN


class InformationRequestCreate(BaseModel):
    items: list[str]
    deadline: date | None = None


class InformationReceivedRequest(BaseModel):
    notes: str | None = None


class EscalationCreateRequest(BaseModel):
    reason: str
    escalate_to: str | None = None


class EscalationResolveRequest(BaseModel):
    notes: str | None = None


class DecisionProposalRequest(BaseModel):
    decision: str


class CompletionRequest(BaseModel):
    findings: str | None = None
    risk_assessment: str | None = None
    decision: str | None = None


class SMRCreateRequest(BaseModel):
    customer_id: str
    suspicion_category: str
    indicators: list[str] = Field(default_factory=list)
    narrative: str
    transaction_id: str | None = None
    amount_aud: float | None = None


class SMRSubmitRequest(BaseModel):
    austrac_reference: str


class SMRDismissRequest(BaseModel):
    reason: str


class TTRSubmittedRequest(BaseModel):
    transaction_ids: list[str]


# ---------------------------------------------------------------------------
# Investigations
# ---------------------------------------------------------------------------


@router.post("/investigations", status_code=201)
async def open_investigation(
    request: InvestigationCreateRequest,
    engine: ComplianceEngine = Depends(get_engine),  # noqa: B008
    staff: StaffIdentity = Depends(get_staff),  # noqa: B008
) -> dict:
    case = await engine.investigations.open_investigation(
        customer_id=request.customer_id,
        trigger_reason=request.trigger_reason,
        staff=staff,
        transaction_id=request.transaction_id,
        triggered_by=request.triggered_by,
    )
    return case.model_dump(mode="json")


@router.get("/investigations")
async def list_investigations(
    status: InvestigationStatus | None = None,
    limit: int = Query(default=50, ge=1, le=500),
    engine: ComplianceEngine = Depends(get_engine),  # noqa: B008
) -> dict:
    cases = await engine.investigations.list_investigations(status=status, limit=limit)
    return {
        "items": [c.model_dump(mode="json") for c in cases],
        "total": len(cases),
        "limit": limit,
    }


@router.get("/investigations/{case_id}")
async def get_investigation(
    case_id: str,
    engine: ComplianceEngine = Depends(get_engine),  # noqa: B008
) -> dict:
    case = await engine.investigations.get_investigation(case_id)
    return case.model_dump(mode="json")


@router.put("/investigations/{case_id}/checklist/{section}")
async def update_checklist_section(
    case_id: str,
    section: str,
    patch: dict[str, Any],
    engine: ComplianceEngine = Depends(get_engine),  # noqa: B008
    staff: StaffIdentity = Depends(get_staff),  # noqa: B008
) -> dict:
    case = await engine.investigations.update_checklist_section(case_id, section, patch, staff)
    return case.model_dump(mode="json")


@router.post("/investigations/{case_id}/information-requests")
async def request_information(
    case_id: str,
    request: InformationRequestCreate,
    engine: ComplianceEngine = Depends(get_engine),  # noqa: B008
    staff: StaffIdentity = Depends(get_staff),  # noqa: B008
) -> dict:
    case = await engine.investigations.request_information(
        case_id, request.items, staff, deadline=request.deadline
    )
    return case.model_dump(mode="json")


@router.post("/investigations/{case_id}/information-requests/{request_id}/received")
async def record_information_received(
    case_id: str,
    request_id: str,
    request: InformationReceivedRequest,
    engine: ComplianceEngine = Depends(get_engine),  # noqa: B008
    staff: StaffIdentity = Depends(get_staff),  # noqa: B008
) -> dict:
    case = await engine.investigations.record_information_received(
        case_id, request_id, staff, notes=request.notes
    )
    return case.model_dump(mode="json")


@router.post("/investigations/{case_id}/escalations")
async def escalate_investigation(
    case_id: str,
    request: EscalationCreateRequest,
    engine: ComplianceEngine = Depends(get_engine),  # noqa: B008
    staff: StaffIdentity = Depends(get_staff),  # noqa: B008
) -> dict:
    case = await engine.investigations.escalate(
        case_id, request.reason, staff, escalate_to=request.escalate_to
    )
    return case.model_dump(mode="json")


@router.post("/investigations/{case_id}/escalations/{escalation_id}/resolve")
async def resolve_escalation(
    case_id: str,
    escalation_id: str,
    request: EscalationResolveRequest,
    engine: ComplianceEngine = Depends(get_engine),  # noqa: B008
    staff: StaffIdentity = Depends(get_staff),  # noqa: B008
) -> dict:
    case = await engine.investigations.resolve_escalation(
        case_id, escalation_id, staff, notes=request.notes
    )
    return case.model_dump(mode="json")


@router.post("/investigations/{case_id}/decision")
async def propose_decision(
    case_id: str,
    request: DecisionProposalRequest,
    engine: ComplianceEngine = Depends(get_engine),  # noqa: B008
    staff: StaffIdentity = Depends(get_staff),  # noqa: B008
) -> dict:
    case = await engine.investigations.propose_decision(case_id, request.decision, staff)
    return case.model_dump(mode="json")


@router.post("/investigations/{case_id}/approve")
async def approve_management(
    case_id: str,
    engine: ComplianceEngine = Depends(get_engine),  # noqa: B008
    staff: StaffIdentity = Depends(get_staff),  # noqa: B008
) -> dict:
    case = await engine.investigations.approve_management(case_id, staff)
    return case.model_dump(mode="json")


@router.post("/investigations/{case_id}/complete")
async def complete_investigation(
    case_id: str,
    request: CompletionRequest,
    engine: ComplianceEngine = Depends(get_engine),  # noqa: B008
    staff: StaffIdentity = Depends(get_staff),  # noqa: B008
) -> dict:
    case = await engine.investigations.complete(
        case_id,
        findings=request.findings,
        risk_assessment=request.risk_assessment,
        decision_code=request.decision,
        staff=staff,
    )
    return case.model_dump(mode="json")


# ---------------------------------------------------------------------------
# Suspicious Matter Reports
# ---------------------------------------------------------------------------


@router.post("/smr", status_code=201)
async def create_smr(
    request: SMRCreateRequest,
    engine: ComplianceEngine = Depends(get_engine),  # noqa: B008
    staff: StaffIdentity = Depends(get_staff),  # noqa: B008
) -> dict:
    report = await engine.smr.generate(
        customer_id=request.customer_id,
        suspicion_category=request.suspicion_category,
        indicators=request.indicators,
        narrative_seed=request.narrative,
        transaction_id=request.transaction_id,
        amount_aud=request.amount_aud,
    )
    return report.model_dump(mode="json")


@router.get("/smr")
async def list_open_smrs(
    engine: ComplianceEngine = Depends(get_engine),  # noqa: B008
) -> dict:
    reports = await engine.smr.list_open()
    return {
        "items": [
            {
                **r.model_dump(mode="json"),
                "days_remaining": engine.deadlines.days_remaining(r.submission_deadline),
            }
            for r in reports
        ],
        "total": len(reports),
    }


@router.post("/smr/{report_id}/review")
async def mark_smr_under_review(
    report_id: str,
    engine: ComplianceEngine = Depends(get_engine),  # noqa: B008
    staff: StaffIdentity = Depends(get_staff),  # noqa: B008
) -> dict:
    report = await engine.smr.mark_under_review(report_id, staff)
    return report.model_dump(mode="json")


@router.post("/smr/{report_id}/submit")
async def mark_smr_submitted(
    report_id: str,
    request: SMRSubmitRequest,
    engine: ComplianceEngine = Depends(get_engine),  # noqa: B008
    staff: StaffIdentity = Depends(get_staff),  # noqa: B008
) -> dict:
    report = await engine.smr.mark_submitted(report_id, request.austrac_reference, staff)
    return report.model_dump(mode="json")


@router.post("/smr/{report_id}/dismiss")
async def dismiss_smr(
    report_id: str,
    request: SMRDismissRequest,
    engine: ComplianceEngine = Depends(get_engine),  # noqa: B008
    staff: StaffIdentity = Depends(get_staff),  # noqa: B008
) -> dict:
    report = await engine.smr.dismiss(report_id, request.reason, staff)
    return report.model_dump(mode="json")


# ---------------------------------------------------------------------------
# Threshold Transaction Reports
# ---------------------------------------------------------------------------


@router.get("/ttr/pending")
async def list_pending_ttrs(
    engine: ComplianceEngine = Depends(get_engine),  # noqa: B008
) -> dict:
    records = await engine.ttr.export_pending()
    return {"items": [r.model_dump(mode="json") for r in records], "total": len(records)}


@router.get("/ttr/export")
async def export_pending_ttrs(
    engine: ComplianceEngine = Depends(get_engine),  # noqa: B008
) -> Response:
    records = await engine.ttr.export_pending()
    filename = f"ttr-export-{engine.calendar.today().isoformat()}.csv"
    return Response(
        content=to_csv(records),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/ttr/submitted")
async def mark_ttrs_submitted(
    request: TTRSubmittedRequest,
    engine: ComplianceEngine = Depends(get_engine),  # noqa: B008
    staff: StaffIdentity = Depends(get_staff),  # noqa: B008
) -> dict:
    transactions = await engine.ttr.mark_submitted(request.transaction_ids, staff)
    return {"updated": [tx.id for tx in transactions], "count": len(transactions)}


# Declared after the literal /ttr/... paths so they are matched first.
@router.post("/ttr/{transaction_id}")
async def generate_ttr(
    transaction_id: str,
    engine: ComplianceEngine = Depends(get_engine),  # noqa: B008
    staff: StaffIdentity = Depends(get_staff),  # noqa: B008
) -> dict:
    record = await engine.ttr.generate(transaction_id)
    return record.model_dump(mode="json")


# ---------------------------------------------------------------------------
# FX and deadlines
# ---------------------------------------------------------------------------


@router.get("/fx/convert")
async def convert_amount(
    amount: float = Query(gt=0),
    from_currency: str = Query(min_length=3, max_length=3),
    to_currency: str | None = Query(default=None, min_length=3, max_length=3),
    engine: ComplianceEngine = Depends(get_engine),  # noqa: B008
) -> dict:
    result = await engine.normalizer.convert(amount, from_currency, to_currency)
    return {**result.model_dump(mode="json"), "is_degraded": result.is_degraded}


@router.get("/deadlines/{report_type}")
async def get_deadline(
    report_type: Literal["ttr", "smr"],
    origin: date,
    engine: ComplianceEngine = Depends(get_engine),  # noqa: B008
) -> dict:
    """Statutory deadline for a report type from an origin date."""
    deadlines = engine.deadlines
    if report_type == "ttr":
        deadline = deadlines.ttr_deadline(origin)
        window = deadlines.config.ttr_alert_window_days
    else:
        deadline = deadlines.smr_deadline(origin)
        window = deadlines.config.smr_alert_window_days
    return {
        "report_type": report_type,
        "origin": origin.isoformat(),
        "deadline": deadline.isoformat(),
        "deadline_display": format_deadline(deadline),
        "days_remaining": deadlines.days_remaining(deadline),
        "is_approaching": deadlines.is_approaching(deadline, window),
        "is_passed": deadlines.is_passed(deadline),
    }


@router.get("/calendar/holidays/{year}")
async def list_holidays(
    year: int,
    engine: ComplianceEngine = Depends(get_engine),  # noqa: B008
) -> dict:
    holidays = engine.calendar.holidays_for_year(year)
    return {
        "year": year,
        "timezone": engine.calendar.config.timezone,
        "items": [{"date": d.isoformat(), "name": name} for d, name in holidays],
    }
