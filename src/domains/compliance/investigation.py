"""Enhanced Due Diligence (EDD) investigation state machine.

Regulatory basis:
  AML/CTF Rules Chapter 15.9-15.11: enhanced customer due diligence for
  high-risk customers, including source-of-wealth/funds verification and
  senior management approval before continuing a high-risk relationship.

States:
    open --request_information--> awaiting_customer_info
    awaiting_customer_info --record_information_received--> under_review
    any active --escalate--> escalated --resolve_escalation--> under_review
    any active --complete--> completed_approved
                             completed_rejected
                             completed_ongoing_monitoring   (all terminal)

Terminal cases reject every mutation. Decisions in the high-risk set
(reject_relationship, escalate_to_smr) must be proposed and approved by a
manager before ``complete`` will record them.

Each operation validates its input before reading or writing anything, saves
the case under its optimistic-concurrency version, then writes the audit row
and sends notifications. Audit and notification failures are logged and do
not fail the operation.
"""

import uuid
from datetime import UTC, date, datetime
from typing import Any

import structlog
from pydantic import ValidationError

from .config import ComplianceConfig, default_config
from .deadlines import DeadlineCalculator, format_deadline
from .errors import (
    ActiveInvestigationExistsError,
    ApprovalNotRequiredError,
    ApprovalRequiredError,
    InvalidDecisionError,
    InvalidSectionError,
    InvalidTransitionError,
    InvestigationClosedError,
    MissingFieldsError,
    NotAuthorizedError,
    NotFoundError,
)
from .models import (
    OPEN_REPORT_STATUSES,
    AuditEntry,
    ChecklistSectionName,
    ComplianceRecommendation,
    CustomerRecord,
    Escalation,
    InformationRequest,
    InvestigationCase,
    InvestigationStatus,
    MonitoringLevel,
    RequestStatus,
    StaffIdentity,
    SuspicionCategory,
    SuspiciousMatterReport,
    TriggerType,
)
from .notifications import (
    DECISION_TEMPLATES,
    NotificationSender,
    NotificationTemplate,
    deliver,
)
from .smr import SMRGenerator
from .store import ComplianceStore, record_audit

logger = structlog.get_logger()

INVESTIGATION_ENTITY_TYPE = "edd_investigation"

MONITORING_LEVEL_MAP: dict[ComplianceRecommendation, MonitoringLevel] = {
    ComplianceRecommendation.APPROVE_RELATIONSHIP: MonitoringLevel.STANDARD,
    ComplianceRecommendation.ONGOING_MONITORING: MonitoringLevel.ONGOING_REVIEW,
    ComplianceRecommendation.ENHANCED_MONITORING: MonitoringLevel.ENHANCED,
    ComplianceRecommendation.REJECT_RELATIONSHIP: MonitoringLevel.BLOCKED,
    ComplianceRecommendation.ESCALATE_TO_SMR: MonitoringLevel.BLOCKED,
}

STATUS_MAP: dict[ComplianceRecommendation, InvestigationStatus] = {
    ComplianceRecommendation.APPROVE_RELATIONSHIP: InvestigationStatus.COMPLETED_APPROVED,
    ComplianceRecommendation.ONGOING_MONITORING: InvestigationStatus.COMPLETED_ONGOING_MONITORING,
    ComplianceRecommendation.ENHANCED_MONITORING: InvestigationStatus.COMPLETED_ONGOING_MONITORING,
    ComplianceRecommendation.REJECT_RELATIONSHIP: InvestigationStatus.COMPLETED_REJECTED,
    ComplianceRecommendation.ESCALATE_TO_SMR: InvestigationStatus.COMPLETED_REJECTED,
}


def investigation_number(now: datetime) -> str:
    return f"EDD-{now:%Y%m%d}-{uuid.uuid4().hex[:6].upper()}"


def _require(**fields: Any) -> None:
    missing = [
        name
        for name, value in fields.items()
        if value is None or (isinstance(value, str) and not value.strip())
    ]
    if missing:
        raise MissingFieldsError(missing)


def _parse_decision(decision_code: str) -> ComplianceRecommendation:
    try:
        return ComplianceRecommendation(decision_code)
    except ValueError as exc:
        raise InvalidDecisionError(f"Unknown decision code: {decision_code!r}") from exc


class InvestigationService:
    def __init__(
        self,
        store: ComplianceStore,
        deadlines: DeadlineCalculator,
        smr_generator: SMRGenerator,
        sender: NotificationSender,
        config: ComplianceConfig | None = None,
    ) -> None:
        self.store = store
        self.deadlines = deadlines
        self.smr_generator = smr_generator
        self.sender = sender
        self.config = config or default_config

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _load(self, case_id: str) -> InvestigationCase:
        case = await self.store.get_case(case_id)
        if case is None:
            raise NotFoundError("investigation", case_id)
        return case

    async def _load_active(self, case_id: str) -> InvestigationCase:
        case = await self._load(case_id)
        if case.is_terminal:
            raise InvestigationClosedError(
                f"Investigation {case.investigation_number} is {case.status.value}"
            )
        return case

    async def _save(
        self,
        case: InvestigationCase,
        now: datetime,
        customer: CustomerRecord | None = None,
    ) -> InvestigationCase:
        case.last_activity_at = now
        return await self.store.save_case(case, customer)

    async def _open_report_for(self, case_id: str) -> SuspiciousMatterReport | None:
        reports = await self.store.list_reports_by_status(OPEN_REPORT_STATUSES)
        return next((r for r in reports if r.investigation_case_id == case_id), None)

    async def _audit(
        self,
        action_type: str,
        case: InvestigationCase,
        staff: StaffIdentity,
        description: str,
        now: datetime,
        **metadata: Any,
    ) -> None:
        await record_audit(
            self.store,
            AuditEntry(
                action_type=action_type,
                entity_type=INVESTIGATION_ENTITY_TYPE,
                entity_id=case.id,
                description=description,
                metadata={
                    "investigation_number": case.investigation_number,
                    "customer_id": case.customer_id,
                    "staff_id": staff.staff_id,
                    **metadata,
                },
                created_at=now,
            ),
        )

    async def _notify_customer(
        self,
        case: InvestigationCase,
        template: NotificationTemplate,
        context: dict[str, Any],
    ) -> None:
        customer = await self.store.get_customer(case.customer_id)
        recipients = [customer.email] if customer and customer.email else []
        await deliver(
            self.sender,
            recipients,
            template,
            {
                "customer_name": customer.name if customer else "",
                "investigation_number": case.investigation_number,
                **context,
            },
            timeout=self.config.notifications.send_timeout_seconds,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_investigation(self, case_id: str) -> InvestigationCase:
        return await self._load(case_id)

    async def list_investigations(
        self, status: InvestigationStatus | None = None, limit: int = 100
    ) -> list[InvestigationCase]:
        statuses = [status.value] if status is not None else None
        return await self.store.list_cases(statuses=statuses, limit=limit)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def open_investigation(
        self,
        customer_id: str,
        trigger_reason: str,
        staff: StaffIdentity,
        transaction_id: str | None = None,
        triggered_by: TriggerType = TriggerType.ADMIN,
        now: datetime | None = None,
    ) -> InvestigationCase:
        """Open a new case. A customer may have only one active case at a time."""
        _require(customer_id=customer_id, trigger_reason=trigger_reason)

        customer = await self.store.get_customer(customer_id)
        if customer is None:
            raise NotFoundError("customer", customer_id)

        existing = await self.store.find_active_case(customer_id)
        if existing is not None:
            raise ActiveInvestigationExistsError(customer_id, existing.investigation_number)

        now = now or datetime.now(UTC)
        case = InvestigationCase(
            id=str(uuid.uuid4()),
            investigation_number=investigation_number(now),
            customer_id=customer_id,
            transaction_id=transaction_id,
            trigger_reason=trigger_reason.strip(),
            triggered_by=triggered_by,
            triggered_by_admin_id=staff.staff_id if triggered_by == TriggerType.ADMIN else None,
            assigned_to=staff.staff_id,
            opened_at=now,
            last_activity_at=now,
        )
        customer.current_investigation_id = case.id
        customer.requires_enhanced_dd = True
        case = await self.store.insert_case(case, customer)

        logger.info(
            "edd_investigation_created",
            case_id=case.id,
            investigation_number=case.investigation_number,
            customer_id=customer_id,
            triggered_by=triggered_by.value,
        )
        await self._audit(
            "edd_investigation_created",
            case,
            staff,
            f"EDD investigation {case.investigation_number} opened",
            now,
            trigger_reason=case.trigger_reason,
            transaction_id=transaction_id,
        )
        await self._notify_customer(
            case,
            NotificationTemplate.INVESTIGATION_OPENED,
            {"trigger_reason": case.trigger_reason},
        )
        return case

    async def update_checklist_section(
        self,
        case_id: str,
        section_name: str,
        patch: dict[str, Any],
        staff: StaffIdentity,
        now: datetime | None = None,
    ) -> InvestigationCase:
        """Merge ``patch`` into one checklist section and stamp the reviewer."""
        try:
            name = ChecklistSectionName(section_name)
        except ValueError as exc:
            raise InvalidSectionError(f"Unknown checklist section: {section_name!r}") from exc

        case = await self._load_active(case_id)
        now = now or datetime.now(UTC)

        section = case.checklist.section(name)
        merged = {
            **section.model_dump(),
            **patch,
            "reviewed_by": staff.staff_id,
            "reviewed_at": now,
        }
        try:
            updated = type(section).model_validate(merged)
        except ValidationError as exc:
            raise InvalidSectionError(
                f"Invalid fields for section {name.value}: {exc.error_count()} error(s)"
            ) from exc
        setattr(case.checklist, name.value, updated)

        case = await self._save(case, now)
        logger.info(
            "edd_checklist_updated",
            case_id=case.id,
            section=name.value,
            completed=updated.completed,
            staff_id=staff.staff_id,
        )
        await self._audit(
            "edd_checklist_updated",
            case,
            staff,
            f"Checklist section {name.value} updated",
            now,
            section=name.value,
            fields=sorted(patch),
        )
        return case

    async def request_information(
        self,
        case_id: str,
        items: list[str],
        staff: StaffIdentity,
        deadline: date | None = None,
        now: datetime | None = None,
    ) -> InvestigationCase:
        items = [item.strip() for item in items or [] if item and item.strip()]
        if not items:
            raise MissingFieldsError(["items"])

        case = await self._load_active(case_id)
        now = now or datetime.now(UTC)

        request = InformationRequest(
            id=str(uuid.uuid4()),
            sequence=len(case.information_requests),
            items=items,
            deadline=deadline,
            requested_by=staff.staff_id,
            requested_at=now,
        )
        case.information_requests.append(request)
        case.checklist.additional_information.information_requested.extend(items)
        case.status = InvestigationStatus.AWAITING_CUSTOMER_INFO

        case = await self._save(case, now)
        logger.info(
            "edd_information_requested",
            case_id=case.id,
            request_id=request.id,
            item_count=len(items),
        )
        await self._audit(
            "edd_information_requested",
            case,
            staff,
            f"Requested {len(items)} item(s) from customer",
            now,
            request_id=request.id,
            items=items,
            deadline=deadline.isoformat() if deadline else None,
        )
        await self._notify_customer(
            case,
            NotificationTemplate.INFORMATION_REQUESTED,
            {
                "items": items,
                "deadline": format_deadline(deadline) if deadline else None,
            },
        )
        return case

    async def record_information_received(
        self,
        case_id: str,
        request_id: str,
        staff: StaffIdentity,
        notes: str | None = None,
        now: datetime | None = None,
    ) -> InvestigationCase:
        """Mark one request as answered; the case returns to review once none are pending."""
        case = await self._load_active(case_id)
        request = next((r for r in case.information_requests if r.id == request_id), None)
        if request is None:
            raise NotFoundError("information_request", request_id)
        if request.status == RequestStatus.RECEIVED:
            raise InvalidTransitionError(f"Information request {request_id} already received")

        now = now or datetime.now(UTC)
        request.status = RequestStatus.RECEIVED
        request.received_at = now
        request.response_notes = notes
        case.checklist.additional_information.information_received.extend(request.items)

        still_pending = any(
            r.status != RequestStatus.RECEIVED for r in case.information_requests
        )
        if case.status == InvestigationStatus.AWAITING_CUSTOMER_INFO and not still_pending:
            case.status = InvestigationStatus.UNDER_REVIEW

        case = await self._save(case, now)
        await self._audit(
            "edd_information_received",
            case,
            staff,
            "Customer information received",
            now,
            request_id=request_id,
        )
        return case

    async def escalate(
        self,
        case_id: str,
        reason: str,
        staff: StaffIdentity,
        escalate_to: str | None = None,
        now: datetime | None = None,
    ) -> InvestigationCase:
        _require(reason=reason)

        case = await self._load_active(case_id)
        now = now or datetime.now(UTC)

        escalation = Escalation(
            id=str(uuid.uuid4()),
            sequence=len(case.escalations),
            reason=reason.strip(),
            escalated_to=escalate_to or "management",
            escalated_by=staff.staff_id,
            escalated_at=now,
        )
        case.escalations.append(escalation)
        case.status = InvestigationStatus.ESCALATED

        case = await self._save(case, now)
        logger.warning(
            "edd_investigation_escalated",
            case_id=case.id,
            escalation_id=escalation.id,
            escalated_to=escalation.escalated_to,
        )
        await self._audit(
            "edd_investigation_escalated",
            case,
            staff,
            f"Escalated to {escalation.escalated_to}",
            now,
            escalation_id=escalation.id,
            reason=escalation.reason,
            escalated_to=escalation.escalated_to,
        )

        notifications = self.config.notifications
        await deliver(
            self.sender,
            notifications.management_recipients or notifications.compliance_recipients,
            NotificationTemplate.INVESTIGATION_ESCALATED,
            {
                "severity": "high",
                "investigation_number": case.investigation_number,
                "customer_id": case.customer_id,
                "reason": escalation.reason,
                "escalated_to": escalation.escalated_to,
                "escalated_by": staff.staff_id,
                "review_url": f"{notifications.admin_base_url}/admin/edd-investigations/{case.id}",
            },
            timeout=notifications.send_timeout_seconds,
        )
        return case

    async def resolve_escalation(
        self,
        case_id: str,
        escalation_id: str,
        staff: StaffIdentity,
        notes: str | None = None,
        now: datetime | None = None,
    ) -> InvestigationCase:
        case = await self._load_active(case_id)
        escalation = next((e for e in case.escalations if e.id == escalation_id), None)
        if escalation is None:
            raise NotFoundError("escalation", escalation_id)
        if escalation.resolved:
            raise InvalidTransitionError(f"Escalation {escalation_id} already resolved")

        now = now or datetime.now(UTC)
        escalation.resolved = True
        escalation.resolved_at = now
        escalation.resolution_notes = notes

        if case.status == InvestigationStatus.ESCALATED and all(
            e.resolved for e in case.escalations
        ):
            case.status = InvestigationStatus.UNDER_REVIEW

        case = await self._save(case, now)
        await self._audit(
            "edd_escalation_resolved",
            case,
            staff,
            "Escalation resolved",
            now,
            escalation_id=escalation_id,
        )
        return case

    async def propose_decision(
        self,
        case_id: str,
        decision_code: str,
        staff: StaffIdentity,
        now: datetime | None = None,
    ) -> InvestigationCase:
        """Record the decision the reviewer intends to complete with.

        Changing the proposal withdraws any management approval given for the
        previous one.
        """
        decision = _parse_decision(decision_code)
        case = await self._load_active(case_id)
        now = now or datetime.now(UTC)

        if case.compliance_recommendation != decision and case.approved_by_management:
            logger.info(
                "management_approval_withdrawn",
                case_id=case.id,
                previous_decision=case.compliance_recommendation,
                decision=decision.value,
            )
            case.approved_by_management = False
            case.management_approver_id = None
            case.management_approved_at = None

        case.compliance_recommendation = decision
        case = await self._save(case, now)
        await self._audit(
            "edd_decision_proposed",
            case,
            staff,
            f"Decision proposed: {decision.value}",
            now,
            decision=decision.value,
            requires_management_approval=decision.requires_management_approval,
        )
        return case

    async def approve_management(
        self,
        case_id: str,
        staff: StaffIdentity,
        now: datetime | None = None,
    ) -> InvestigationCase:
        """Grant management approval for the proposed high-risk decision.

        A second call on an already-approved case returns it unchanged and
        keeps the original approver.
        """
        if not staff.is_management:
            raise NotAuthorizedError(
                f"Staff {staff.staff_id} does not hold management authority"
            )

        case = await self._load_active(case_id)
        if not case.requires_management_approval:
            proposed = (
                case.compliance_recommendation.value
                if case.compliance_recommendation
                else "none"
            )
            raise ApprovalNotRequiredError(
                f"Proposed decision {proposed!r} does not require management approval"
            )

        if case.approved_by_management:
            logger.info(
                "management_approval_already_present",
                case_id=case.id,
                approver_id=case.management_approver_id,
                requested_by=staff.staff_id,
            )
            return case

        now = now or datetime.now(UTC)
        case.approved_by_management = True
        case.management_approver_id = staff.staff_id
        case.management_approved_at = now

        case = await self._save(case, now)
        logger.info(
            "edd_management_approved",
            case_id=case.id,
            decision=case.compliance_recommendation.value,
            approver_id=staff.staff_id,
        )
        await self._audit(
            "edd_management_approved",
            case,
            staff,
            f"Management approved {case.compliance_recommendation.value}",
            now,
            decision=case.compliance_recommendation.value,
        )
        return case

    async def complete(
        self,
        case_id: str,
        findings: str,
        risk_assessment: str,
        decision_code: str,
        staff: StaffIdentity,
        now: datetime | None = None,
    ) -> InvestigationCase:
        """Finalize the case, update the customer, and raise an SMR if required.

        Raises:
            MissingFieldsError: findings, risk assessment or decision missing.
            ApprovalRequiredError: high-risk decision without management
                approval for that decision.
            InvestigationClosedError: case already terminal.
        """
        _require(
            findings=findings,
            risk_assessment=risk_assessment,
            decision_code=decision_code,
        )
        decision = _parse_decision(decision_code)

        case = await self._load_active(case_id)

        if decision.requires_management_approval:
            if not case.approved_by_management:
                raise ApprovalRequiredError(
                    f"Decision {decision.value!r} requires management approval"
                )
            if case.compliance_recommendation != decision:
                raise ApprovalRequiredError(
                    f"Management approved {case.compliance_recommendation!s}, "
                    f"not {decision.value!r}"
                )

        now = now or datetime.now(UTC)
        monitoring_level = MONITORING_LEVEL_MAP[decision]

        # The SMR must exist before the case is finalized: if generation fails
        # the case stays open and the completion can be retried. A retry reuses
        # the open SMR left by an earlier attempt whose case write failed.
        if decision == ComplianceRecommendation.ESCALATE_TO_SMR:
            report = await self._open_report_for(case.id)
            if report is None:
                report = await self.smr_generator.generate(
                    customer_id=case.customer_id,
                    suspicion_category=SuspicionCategory.ENHANCED_DD_ESCALATION,
                    indicators=[findings, risk_assessment],
                    narrative_seed=(
                        f"EDD Investigation {case.investigation_number} escalated to SMR. "
                        f"{findings}"
                    ),
                    transaction_id=case.transaction_id,
                    investigation_case_id=case.id,
                    now=now,
                )
            case.smr_report_id = report.id

        case.status = STATUS_MAP[decision]
        case.investigation_findings = findings
        case.risk_assessment_summary = risk_assessment
        case.compliance_recommendation = decision
        case.monitoring_level = monitoring_level
        case.reviewed_by = staff.staff_id
        case.completed_at = now

        customer = await self.store.get_customer(case.customer_id)
        if customer is None:
            logger.warning("edd_customer_missing", case_id=case.id, customer_id=case.customer_id)
        else:
            customer.monitoring_level = monitoring_level
            customer.edd_completed = True
            customer.requires_enhanced_dd = False
            customer.last_investigation_completed_at = now
            if customer.current_investigation_id == case.id:
                customer.current_investigation_id = None

        case = await self._save(case, now, customer)

        logger.info(
            "edd_investigation_completed",
            case_id=case.id,
            decision=decision.value,
            status=case.status.value,
            monitoring_level=monitoring_level.value,
            smr_report_id=case.smr_report_id,
        )
        await self._audit(
            "edd_investigation_completed",
            case,
            staff,
            f"Investigation completed: {decision.value}",
            now,
            decision=decision.value,
            monitoring_level=monitoring_level.value,
            smr_report_id=case.smr_report_id,
            management_approver_id=case.management_approver_id,
        )
        await self._notify_customer(
            case,
            DECISION_TEMPLATES[decision],
            {"decision": decision.value, "monitoring_level": monitoring_level.value},
        )
        return case
