"""Pydantic models for the compliance domain."""

from datetime import date, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class InvestigationStatus(StrEnum):
    OPEN = "open"
    AWAITING_CUSTOMER_INFO = "awaiting_customer_info"
    UNDER_REVIEW = "under_review"
    ESCALATED = "escalated"
    COMPLETED_APPROVED = "completed_approved"
    COMPLETED_REJECTED = "completed_rejected"
    COMPLETED_ONGOING_MONITORING = "completed_ongoing_monitoring"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {
        InvestigationStatus.COMPLETED_APPROVED,
        InvestigationStatus.COMPLETED_REJECTED,
        InvestigationStatus.COMPLETED_ONGOING_MONITORING,
    }
)
ACTIVE_STATUSES = frozenset(InvestigationStatus) - TERMINAL_STATUSES


class TriggerType(StrEnum):
    SYSTEM = "system"
    ADMIN = "admin"
    TRANSACTION_REVIEW = "transaction_review"


class ComplianceRecommendation(StrEnum):
    APPROVE_RELATIONSHIP = "approve_relationship"
    ONGOING_MONITORING = "ongoing_monitoring"
    ENHANCED_MONITORING = "enhanced_monitoring"
    REJECT_RELATIONSHIP = "reject_relationship"
    ESCALATE_TO_SMR = "escalate_to_smr"

    @property
    def requires_management_approval(self) -> bool:
        return self in HIGH_RISK_DECISIONS


HIGH_RISK_DECISIONS = frozenset(
    {
        ComplianceRecommendation.REJECT_RELATIONSHIP,
        ComplianceRecommendation.ESCALATE_TO_SMR,
    }
)


class MonitoringLevel(StrEnum):
    STANDARD = "standard"
    ONGOING_REVIEW = "ongoing_review"
    ENHANCED = "enhanced"
    BLOCKED = "blocked"


class RequestStatus(StrEnum):
    PENDING = "pending"
    RECEIVED = "received"
    OVERDUE = "overdue"


class SuspicionCategory(StrEnum):
    STRUCTURING = "structuring"
    SANCTIONS_MATCH = "sanctions_match"
    UNUSUAL_PATTERN = "unusual_pattern"
    HIGH_RISK = "high_risk"
    ENHANCED_DD_ESCALATION = "enhanced_dd_escalation"
    OTHER = "other"


class ReportStatus(StrEnum):
    PENDING = "pending"
    UNDER_REVIEW = "under_review"
    REPORTED = "reported"
    DISMISSED = "dismissed"


OPEN_REPORT_STATUSES = (ReportStatus.PENDING, ReportStatus.UNDER_REVIEW)


class ChecklistSectionName(StrEnum):
    CUSTOMER_INFORMATION_REVIEW = "customer_information_review"
    EMPLOYMENT_VERIFICATION = "employment_verification"
    SOURCE_OF_WEALTH = "source_of_wealth"
    SOURCE_OF_FUNDS = "source_of_funds"
    TRANSACTION_PATTERN_ANALYSIS = "transaction_pattern_analysis"
    ADDITIONAL_INFORMATION = "additional_information"


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


class StaffIdentity(BaseModel):
    """Acting staff member, resolved once per request by the host application."""

    model_config = ConfigDict(frozen=True)

    staff_id: str
    is_management: bool = False


# ---------------------------------------------------------------------------
# Investigation checklist
# ---------------------------------------------------------------------------


class ChecklistSection(BaseModel):
    model_config = ConfigDict(extra="forbid")

    completed: bool = False
    verified: bool = False
    findings: str | None = None
    notes: str | None = None
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None


class CustomerInformationReview(ChecklistSection):
    pass


class EmploymentVerification(ChecklistSection):
    occupation: str | None = None
    employer: str | None = None
    position: str | None = None
    length_of_employment: str | None = None


class SourceOfWealth(ChecklistSection):
    primary_source: str | None = None
    documentation_type: str | None = None
    documentation_verified: bool = False


class SourceOfFunds(ChecklistSection):
    funding_source: str | None = None
    bank_statements_verified: bool = False
    supporting_documents: list[str] = Field(default_factory=list)


class TransactionPatternAnalysis(ChecklistSection):
    unusual_activity: bool = False
    pattern_description: str | None = None
    compared_to_similar_customers: bool = False


class AdditionalInformation(ChecklistSection):
    information_requested: list[str] = Field(default_factory=list)
    information_received: list[str] = Field(default_factory=list)


class Checklist(BaseModel):
    customer_information_review: CustomerInformationReview = Field(
        default_factory=CustomerInformationReview
    )
    employment_verification: EmploymentVerification = Field(
        default_factory=EmploymentVerification
    )
    source_of_wealth: SourceOfWealth = Field(default_factory=SourceOfWealth)
    source_of_funds: SourceOfFunds = Field(default_factory=SourceOfFunds)
    transaction_pattern_analysis: TransactionPatternAnalysis = Field(
        default_factory=TransactionPatternAnalysis
    )
    additional_information: AdditionalInformation = Field(
        default_factory=AdditionalInformation
    )

    def section(self, name: ChecklistSectionName) -> ChecklistSection:
        return getattr(self, name.value)

    def completed_count(self) -> int:
        return sum(1 for name in ChecklistSectionName if self.section(name).completed)


# ---------------------------------------------------------------------------
# Investigation case
# ---------------------------------------------------------------------------


class InformationRequest(BaseModel):
    id: str
    sequence: int = 0
    items: list[str]
    deadline: date | None = None
    requested_by: str
    requested_at: datetime
    status: RequestStatus = RequestStatus.PENDING
    received_at: datetime | None = None
    response_notes: str | None = None


class Escalation(BaseModel):
    id: str
    sequence: int = 0
    reason: str
    escalated_to: str = "management"
    escalated_by: str
    escalated_at: datetime
    resolved: bool = False
    resolved_at: datetime | None = None
    resolution_notes: str | None = None


class InvestigationCase(BaseModel):
    id: str
    investigation_number: str
    customer_id: str
    transaction_id: str | None = None
    trigger_reason: str
    triggered_by: TriggerType = TriggerType.ADMIN
    triggered_by_admin_id: str | None = None
    assigned_to: str | None = None
    status: InvestigationStatus = InvestigationStatus.OPEN

    checklist: Checklist = Field(default_factory=Checklist)
    information_requests: list[InformationRequest] = Field(default_factory=list)
    escalations: list[Escalation] = Field(default_factory=list)

    # Outcome (set at completion)
    investigation_findings: str | None = None
    risk_assessment_summary: str | None = None
    compliance_recommendation: ComplianceRecommendation | None = None
    monitoring_level: MonitoringLevel | None = None
    reviewed_by: str | None = None
    completed_at: datetime | None = None
    smr_report_id: str | None = None

    # Management approval
    approved_by_management: bool = False
    management_approver_id: str | None = None
    management_approved_at: datetime | None = None

    opened_at: datetime
    last_activity_at: datetime
    version: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def requires_management_approval(self) -> bool:
        return (
            self.compliance_recommendation is not None
            and self.compliance_recommendation.requires_management_approval
        )


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


class SuspiciousMatterReport(BaseModel):
    id: str
    customer_id: str
    transaction_id: str | None = None
    investigation_case_id: str | None = None
    report_type: str = "SMR"
    suspicion_category: SuspicionCategory
    indicators: list[str] = Field(default_factory=list)
    description: str
    amount_aud: float | None = None
    original_amount: float | None = None
    original_currency: str | None = None
    fx_rate: float | None = None
    status: ReportStatus = ReportStatus.PENDING
    submission_deadline: date
    austrac_reference: str | None = None
    submitted_at: datetime | None = None
    dismissal_reason: str | None = None
    flagged_by_system: bool = True
    created_at: datetime


class ThresholdTransaction(BaseModel):
    """A purchase transaction as seen by the reporting engine."""

    id: str
    customer_id: str
    amount: float
    currency: str = "AUD"
    amount_aud: float | None = None
    created_at: datetime
    requires_ttr: bool = False
    ttr_reference: str | None = None
    ttr_generated_at: datetime | None = None
    ttr_submission_deadline: date | None = None
    ttr_submitted_at: datetime | None = None


class TTRRecord(BaseModel):
    """One row of the TTR export submitted to AUSTRAC Online."""

    transaction_date: str
    transaction_type: str = "Purchase of bullion"
    transaction_amount: float
    transaction_currency: str
    amount_aud: float | None = None
    customer_name: str
    internal_reference: str
    ttr_reference: str | None = None
    submission_deadline: str | None = None


class CustomerRecord(BaseModel):
    id: str
    name: str = ""
    email: str | None = None
    monitoring_level: MonitoringLevel = MonitoringLevel.STANDARD
    current_investigation_id: str | None = None
    requires_enhanced_dd: bool = False
    edd_completed: bool = False
    last_investigation_completed_at: datetime | None = None


# ---------------------------------------------------------------------------
# Audit, FX, sweep results
# ---------------------------------------------------------------------------


class AuditEntry(BaseModel):
    action_type: str
    entity_type: str
    entity_id: str | None = None
    description: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class CachedRate(BaseModel):
    from_currency: str
    to_currency: str
    rate: float
    fetched_at: datetime


class FxQuote(BaseModel):
    rate: float = Field(gt=0)
    as_of: datetime


class RateSource(StrEnum):
    IDENTITY = "identity"
    LIVE = "live"
    CACHE = "cache"


class ConversionResult(BaseModel):
    from_currency: str
    to_currency: str
    amount: float
    rate: float
    normalized_amount: float
    as_of: datetime
    source: RateSource
    staleness_hours: float = 0.0

    @property
    def is_degraded(self) -> bool:
        return self.source == RateSource.CACHE


class NotificationResult(BaseModel):
    success: bool
    message_id: str | None = None
    error: str | None = None


class DeadlineSweepResult(BaseModel):
    ttr_alerts_sent: int = 0
    smr_alerts_sent: int = 0
    ttr_checked: int = 0
    smr_checked: int = 0
    requests_marked_overdue: int = 0
    errors: list[str] = Field(default_factory=list)
    started_at: datetime
    finished_at: datetime | None = None

    @property
    def total_alerts_sent(self) -> int:
        return self.ttr_alerts_sent + self.smr_alerts_sent
