"""SQLAlchemy ORM models for compliance case and deadline state."""

from datetime import date, datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    Date,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

ACTIVE_STATUS_SQL = "status IN ('open', 'awaiting_customer_info', 'under_review', 'escalated')"


class Base(DeclarativeBase):
    pass


class CustomerDB(Base):
    __tablename__ = "customers"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    customer_id: Mapped[str] = mapped_column(String, unique=True, index=True)
    name: Mapped[str] = mapped_column(String, default="")
    email: Mapped[str | None] = mapped_column(String, nullable=True)
    monitoring_level: Mapped[str] = mapped_column(String, default="standard")
    current_investigation_id: Mapped[str | None] = mapped_column(String, nullable=True)
    requires_enhanced_dd: Mapped[bool] = mapped_column(Boolean, default=False)
    edd_completed: Mapped[bool] = mapped_column(Boolean, default=False)
    last_investigation_completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )


class InvestigationDB(Base):
    __tablename__ = "edd_investigations"
    __table_args__ = (
        Index("ix_edd_investigations_customer_status", "customer_id", "status"),
        # At most one active case per customer
        Index(
            "uq_edd_investigations_active_customer",
            "customer_id",
            unique=True,
            postgresql_where=text(ACTIVE_STATUS_SQL),
        ),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    case_id: Mapped[str] = mapped_column(String, unique=True, index=True)
    investigation_number: Mapped[str] = mapped_column(String, unique=True)
    customer_id: Mapped[str] = mapped_column(String, index=True)
    transaction_id: Mapped[str | None] = mapped_column(String, nullable=True)
    trigger_reason: Mapped[str] = mapped_column(Text)
    triggered_by: Mapped[str] = mapped_column(String, default="admin")
    triggered_by_admin_id: Mapped[str | None] = mapped_column(String, nullable=True)
    assigned_to: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String, default="open", index=True)

    # Fixed six-section record, validated by the domain model on every write
    checklist: Mapped[dict] = mapped_column(JSONB, default=dict)

    investigation_findings: Mapped[str | None] = mapped_column(Text, nullable=True)
    risk_assessment_summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    compliance_recommendation: Mapped[str | None] = mapped_column(String, nullable=True)
    monitoring_level: Mapped[str | None] = mapped_column(String, nullable=True)
    reviewed_by: Mapped[str | None] = mapped_column(String, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    smr_report_id: Mapped[str | None] = mapped_column(String, nullable=True)

    approved_by_management: Mapped[bool] = mapped_column(Boolean, default=False)
    management_approver_id: Mapped[str | None] = mapped_column(String, nullable=True)
    management_approved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    opened_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    last_activity_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    version: Mapped[int] = mapped_column(Integer, default=1)


class InformationRequestDB(Base):
    __tablename__ = "edd_information_requests"
    __table_args__ = (UniqueConstraint("case_id", "sequence"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    request_id: Mapped[str] = mapped_column(String, unique=True, index=True)
    case_id: Mapped[str] = mapped_column(String, index=True)
    sequence: Mapped[int] = mapped_column(Integer)
    items: Mapped[list] = mapped_column(JSONB, default=list)
    deadline: Mapped[date | None] = mapped_column(Date, nullable=True)
    requested_by: Mapped[str] = mapped_column(String)
    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    status: Mapped[str] = mapped_column(String, default="pending")
    received_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    response_notes: Mapped[str | None] = mapped_column(Text, nullable=True)


class EscalationDB(Base):
    __tablename__ = "edd_escalations"
    __table_args__ = (UniqueConstraint("case_id", "sequence"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    escalation_id: Mapped[str] = mapped_column(String, unique=True, index=True)
    case_id: Mapped[str] = mapped_column(String, index=True)
    sequence: Mapped[int] = mapped_column(Integer)
    reason: Mapped[str] = mapped_column(Text)
    escalated_to: Mapped[str] = mapped_column(String, default="management")
    escalated_by: Mapped[str] = mapped_column(String)
    escalated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    resolved: Mapped[bool] = mapped_column(Boolean, default=False)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)


class SuspiciousMatterReportDB(Base):
    __tablename__ = "suspicious_matter_reports"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    report_id: Mapped[str] = mapped_column(String, unique=True, index=True)
    customer_id: Mapped[str] = mapped_column(String, index=True)
    transaction_id: Mapped[str | None] = mapped_column(String, nullable=True)
    investigation_case_id: Mapped[str | None] = mapped_column(String, nullable=True)
    report_type: Mapped[str] = mapped_column(String, default="SMR")
    suspicion_category: Mapped[str] = mapped_column(String)
    indicators: Mapped[list] = mapped_column(JSONB, default=list)
    description: Mapped[str] = mapped_column(Text)
    amount_aud: Mapped[float | None] = mapped_column(Float, nullable=True)
    original_amount: Mapped[float | None] = mapped_column(Float, nullable=True)
    original_currency: Mapped[str | None] = mapped_column(String, nullable=True)
    fx_rate: Mapped[float | None] = mapped_column(Float, nullable=True)
    status: Mapped[str] = mapped_column(String, default="pending", index=True)
    submission_deadline: Mapped[date] = mapped_column(Date)
    austrac_reference: Mapped[str | None] = mapped_column(String, nullable=True)
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    dismissal_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    flagged_by_system: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class TransactionDB(Base):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    transaction_id: Mapped[str] = mapped_column(String, unique=True, index=True)
    customer_id: Mapped[str] = mapped_column(String, index=True)
    amount: Mapped[float] = mapped_column(Float)
    currency: Mapped[str] = mapped_column(String, default="AUD")
    amount_aud: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    requires_ttr: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    ttr_reference: Mapped[str | None] = mapped_column(String, nullable=True)
    ttr_generated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    ttr_submission_deadline: Mapped[date | None] = mapped_column(Date, nullable=True)
    ttr_submitted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )


class AuditLogDB(Base):
    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("ix_audit_logs_entity_action", "entity_type", "entity_id", "action_type", "created_at"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    action_type: Mapped[str] = mapped_column(String, index=True)
    entity_type: Mapped[str] = mapped_column(String)
    entity_id: Mapped[str | None] = mapped_column(String, nullable=True)
    description: Mapped[str] = mapped_column(Text, default="")
    details: Mapped[dict] = mapped_column(JSONB, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class FxRateCacheDB(Base):
    __tablename__ = "fx_rate_cache"
    __table_args__ = (UniqueConstraint("from_currency", "to_currency"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    from_currency: Mapped[str] = mapped_column(String(3))
    to_currency: Mapped[str] = mapped_column(String(3))
    rate: Mapped[float] = mapped_column(Float)
    fetched_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
