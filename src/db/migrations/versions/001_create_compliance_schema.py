"""Create compliance case, report, audit and FX cache tables.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

ACTIVE_STATUS_SQL = "status IN ('open', 'awaiting_customer_info', 'under_review', 'escalated')"


def upgrade() -> None:
    op.create_table(
        "customers",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("customer_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False, server_default=""),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("monitoring_level", sa.String(), nullable=False, server_default="standard"),
        sa.Column("current_investigation_id", sa.String(), nullable=True),
        sa.Column("requires_enhanced_dd", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("edd_completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("last_investigation_completed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(op.f("ix_customers_customer_id"), "customers", ["customer_id"], unique=True)

    op.create_table(
        "edd_investigations",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("case_id", sa.String(), nullable=False),
        sa.Column("investigation_number", sa.String(), nullable=False, unique=True),
        sa.Column("customer_id", sa.String(), nullable=False),
        sa.Column("transaction_id", sa.String(), nullable=True),
        sa.Column("trigger_reason", sa.Text(), nullable=False),
        sa.Column("triggered_by", sa.String(), nullable=False, server_default="admin"),
        sa.Column("triggered_by_admin_id", sa.String(), nullable=True),
        sa.Column("assigned_to", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="open"),
        sa.Column("checklist", JSONB(), nullable=False, server_default="{}"),
        sa.Column("investigation_findings", sa.Text(), nullable=True),
        sa.Column("risk_assessment_summary", sa.Text(), nullable=True),
        sa.Column("compliance_recommendation", sa.String(), nullable=True),
        sa.Column("monitoring_level", sa.String(), nullable=True),
        sa.Column("reviewed_by", sa.String(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("smr_report_id", sa.String(), nullable=True),
        sa.Column(
            "approved_by_management", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("management_approver_id", sa.String(), nullable=True),
        sa.Column("management_approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("opened_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_activity_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
    )
    op.create_index(
        op.f("ix_edd_investigations_case_id"), "edd_investigations", ["case_id"], unique=True
    )
    op.create_index(
        op.f("ix_edd_investigations_customer_id"), "edd_investigations", ["customer_id"]
    )
    op.create_index(op.f("ix_edd_investigations_status"), "edd_investigations", ["status"])
    op.create_index(
        "ix_edd_investigations_customer_status",
        "edd_investigations",
        ["customer_id", "status"],
    )
    op.create_index(
        "uq_edd_investigations_active_customer",
        "edd_investigations",
        ["customer_id"],
        unique=True,
        postgresql_where=sa.text(ACTIVE_STATUS_SQL),
    )

    op.create_table(
        "edd_information_requests",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("request_id", sa.String(), nullable=False),
        sa.Column("case_id", sa.String(), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("items", JSONB(), nullable=False, server_default="[]"),
        sa.Column("deadline", sa.Date(), nullable=True),
        sa.Column("requested_by", sa.String(), nullable=False),
        sa.Column("requested_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("response_notes", sa.Text(), nullable=True),
        sa.UniqueConstraint("case_id", "sequence"),
    )
    op.create_index(
        op.f("ix_edd_information_requests_request_id"),
        "edd_information_requests",
        ["request_id"],
        unique=True,
    )
    op.create_index(
        op.f("ix_edd_information_requests_case_id"), "edd_information_requests", ["case_id"]
    )

    op.create_table(
        "edd_escalations",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("escalation_id", sa.String(), nullable=False),
        sa.Column("case_id", sa.String(), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("escalated_to", sa.String(), nullable=False, server_default="management"),
        sa.Column("escalated_by", sa.String(), nullable=False),
        sa.Column("escalated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("resolved", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolution_notes", sa.Text(), nullable=True),
        sa.UniqueConstraint("case_id", "sequence"),
    )
    op.create_index(
        op.f("ix_edd_escalations_escalation_id"),
        "edd_escalations",
        ["escalation_id"],
        unique=True,
    )
    op.create_index(op.f("ix_edd_escalations_case_id"), "edd_escalations", ["case_id"])

    op.create_table(
        "suspicious_matter_reports",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("report_id", sa.String(), nullable=False),
        sa.Column("customer_id", sa.String(), nullable=False),
        sa.Column("transaction_id", sa.String(), nullable=True),
        sa.Column("investigation_case_id", sa.String(), nullable=True),
        sa.Column("report_type", sa.String(), nullable=False, server_default="SMR"),
        sa.Column("suspicion_category", sa.String(), nullable=False),
        sa.Column("indicators", JSONB(), nullable=False, server_default="[]"),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("amount_aud", sa.Float(), nullable=True),
        sa.Column("original_amount", sa.Float(), nullable=True),
        sa.Column("original_currency", sa.String(), nullable=True),
        sa.Column("fx_rate", sa.Float(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("submission_deadline", sa.Date(), nullable=False),
        sa.Column("austrac_reference", sa.String(), nullable=True),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("dismissal_reason", sa.Text(), nullable=True),
        sa.Column("flagged_by_system", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        op.f("ix_suspicious_matter_reports_report_id"),
        "suspicious_matter_reports",
        ["report_id"],
        unique=True,
    )
    op.create_index(
        op.f("ix_suspicious_matter_reports_customer_id"),
        "suspicious_matter_reports",
        ["customer_id"],
    )
    op.create_index(
        op.f("ix_suspicious_matter_reports_status"), "suspicious_matter_reports", ["status"]
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("transaction_id", sa.String(), nullable=False),
        sa.Column("customer_id", sa.String(), nullable=False),
        sa.Column("amount", sa.Float(), nullable=False),
        sa.Column("currency", sa.String(), nullable=False, server_default="AUD"),
        sa.Column("amount_aud", sa.Float(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("requires_ttr", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("ttr_reference", sa.String(), nullable=True),
        sa.Column("ttr_generated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ttr_submission_deadline", sa.Date(), nullable=True),
        sa.Column("ttr_submitted_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        op.f("ix_transactions_transaction_id"), "transactions", ["transaction_id"], unique=True
    )
    op.create_index(op.f("ix_transactions_customer_id"), "transactions", ["customer_id"])
    op.create_index(op.f("ix_transactions_requires_ttr"), "transactions", ["requires_ttr"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("action_type", sa.String(), nullable=False),
        sa.Column("entity_type", sa.String(), nullable=False),
        sa.Column("entity_id", sa.String(), nullable=True),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("details", JSONB(), nullable=False, server_default="{}"),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
    )
    op.create_index(op.f("ix_audit_logs_action_type"), "audit_logs", ["action_type"])
    op.create_index(
        "ix_audit_logs_entity_action",
        "audit_logs",
        ["entity_type", "entity_id", "action_type", "created_at"],
    )

    op.create_table(
        "fx_rate_cache",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("from_currency", sa.String(3), nullable=False),
        sa.Column("to_currency", sa.String(3), nullable=False),
        sa.Column("rate", sa.Float(), nullable=False),
        sa.Column("fetched_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("from_currency", "to_currency"),
    )


def downgrade() -> None:
    op.drop_table("fx_rate_cache")
    op.drop_index("ix_audit_logs_entity_action", table_name="audit_logs")
    op.drop_index(op.f("ix_audit_logs_action_type"), table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_table("transactions")
    op.drop_table("suspicious_matter_reports")
    op.drop_table("edd_escalations")
    op.drop_table("edd_information_requests")
    op.drop_index("uq_edd_investigations_active_customer", table_name="edd_investigations")
    op.drop_table("edd_investigations")
    op.drop_table("customers")
