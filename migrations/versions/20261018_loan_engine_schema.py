"""Create loan engine tables

Revision ID: 20261018_loan_engine_schema
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "20261018_loan_engine_schema"
down_revision = None
branch_labels = None
depends_on = None


APPLICATION_STATUSES = (
    "'draft', 'kyc_stage2_required', 'submitted', 'under_review', "
    "'pending_loan_officer', 'pending_finance_director', 'approved', 'rejected', "
    "'disbursed', 'completed', 'defaulted'"
)


def _timestamp(name: str, nullable: bool = False) -> sa.Column:
    if nullable:
        return sa.Column(name, sa.TIMESTAMP(timezone=True), nullable=True)
    return sa.Column(name, sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False)


def upgrade() -> None:
    op.create_table(
        "profiles",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("role", sa.String(length=30), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True, unique=True),
        sa.Column("full_name", sa.String(length=255), nullable=True),
        sa.Column(
            "kyc_stage1_status",
            sa.String(length=20),
            nullable=False,
            server_default=sa.text("'not_started'"),
        ),
        sa.Column("kyc_stage1_completed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("credit_score", sa.Integer(), nullable=True),
        _timestamp("credit_score_fetched_at", nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.CheckConstraint(
            "role IN ('borrower', 'loan_officer', 'managing_director', 'finance_director', 'admin')",
            name="ck_profile_role",
        ),
        sa.CheckConstraint(
            "kyc_stage1_status IN ('not_started', 'pending', 'verified', 'rejected')",
            name="ck_profile_kyc_stage1_status",
        ),
        sa.CheckConstraint(
            "credit_score IS NULL OR (credit_score >= 300 AND credit_score <= 850)",
            name="ck_profile_credit_score_range",
        ),
    )
    op.create_index("ix_profiles_role", "profiles", ["role"])

    op.create_table(
        "loan_products",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False, unique=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("min_amount", sa.Numeric(18, 6), nullable=False),
        sa.Column("max_amount", sa.Numeric(18, 6), nullable=False),
        sa.Column("interest_rate", sa.Numeric(10, 4), nullable=False),
        sa.Column("min_duration_months", sa.Integer(), nullable=False),
        sa.Column("max_duration_months", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _timestamp("created_at"),
        sa.CheckConstraint("min_amount > 0", name="ck_loan_product_min_amount_positive"),
        sa.CheckConstraint("max_amount >= min_amount", name="ck_loan_product_amount_range"),
        sa.CheckConstraint("interest_rate >= 0", name="ck_loan_product_rate_nonneg"),
        sa.CheckConstraint("min_duration_months >= 1", name="ck_loan_product_min_duration"),
        sa.CheckConstraint(
            "max_duration_months >= min_duration_months",
            name="ck_loan_product_duration_range",
        ),
    )

    op.create_table(
        "loan_applications",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "owner_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("profiles.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column(
            "product_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("loan_products.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("status", sa.String(length=30), nullable=False, server_default=sa.text("'draft'")),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("amount", sa.Numeric(18, 6), nullable=False),
        sa.Column("duration_months", sa.Integer(), nullable=False),
        sa.Column("interest_rate", sa.Numeric(10, 4), nullable=False),
        sa.Column("monthly_installment", sa.Numeric(28, 10), nullable=False, server_default=sa.text("0")),
        sa.Column("purpose", sa.Text(), nullable=True),
        sa.Column(
            "assigned_reviewer_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("profiles.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("review_notes", sa.Text(), nullable=True),
        sa.Column(
            "status_history",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        _timestamp("submitted_at", nullable=True),
        _timestamp("approved_at", nullable=True),
        _timestamp("rejected_at", nullable=True),
        _timestamp("disbursed_at", nullable=True),
        _timestamp("completed_at", nullable=True),
        _timestamp("defaulted_at", nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.CheckConstraint("amount > 0", name="ck_loan_app_amount_positive"),
        sa.CheckConstraint("duration_months >= 1", name="ck_loan_app_duration_positive"),
        sa.CheckConstraint("interest_rate >= 0", name="ck_loan_app_rate_nonneg"),
        sa.CheckConstraint("monthly_installment >= 0", name="ck_loan_app_installment_nonneg"),
        sa.CheckConstraint("version >= 1", name="ck_loan_app_version_positive"),
        sa.CheckConstraint(f"status IN ({APPLICATION_STATUSES})", name="ck_loan_app_status"),
        sa.CheckConstraint(
            "status <> 'rejected' OR rejection_reason IS NOT NULL",
            name="ck_loan_app_rejection_reason",
        ),
    )
    op.create_index("ix_loan_applications_owner_id", "loan_applications", ["owner_id"])
    op.create_index("ix_loan_applications_status", "loan_applications", ["status"])

    op.create_table(
        "kyc_documents",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "owner_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("profiles.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("stage", sa.String(length=10), nullable=False),
        sa.Column("document_kind", sa.String(length=50), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column(
            "loan_application_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("loan_applications.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column("document_url", sa.String(length=1024), nullable=True),
        sa.Column(
            "reviewed_by",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("profiles.id", ondelete="SET NULL"),
            nullable=True,
        ),
        _timestamp("reviewed_at", nullable=True),
        _timestamp("uploaded_at"),
        sa.CheckConstraint("stage IN ('stage1', 'stage2')", name="ck_kyc_document_stage"),
        sa.CheckConstraint("status IN ('pending', 'verified', 'rejected')", name="ck_kyc_document_status"),
        sa.CheckConstraint(
            "document_kind IN ('national_id', 'passport', 'drivers_license', 'proof_of_residence', "
            "'proof_of_income', 'proof_of_funds')",
            name="ck_kyc_document_kind",
        ),
        sa.CheckConstraint(
            "(stage = 'stage2' AND loan_application_id IS NOT NULL) "
            "OR (stage = 'stage1' AND loan_application_id IS NULL)",
            name="ck_kyc_document_application_link",
        ),
    )
    op.create_index("ix_kyc_documents_owner_id", "kyc_documents", ["owner_id"])
    op.create_index("ix_kyc_documents_loan_application_id", "kyc_documents", ["loan_application_id"])
    op.create_index("ix_kyc_documents_owner_stage", "kyc_documents", ["owner_id", "stage"])

    op.create_table(
        "payment_installments",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "loan_application_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("loan_applications.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("installment_number", sa.Integer(), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("principal_amount", sa.Numeric(28, 10), nullable=False),
        sa.Column("interest_amount", sa.Numeric(28, 10), nullable=False),
        sa.Column("total_amount", sa.Numeric(28, 10), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("paid_date", sa.Date(), nullable=True),
        sa.Column("paid_amount", sa.Numeric(28, 10), nullable=True),
        _timestamp("created_at"),
        sa.CheckConstraint("installment_number >= 1", name="ck_installment_number_positive"),
        sa.CheckConstraint("principal_amount >= 0", name="ck_installment_principal_nonneg"),
        sa.CheckConstraint("interest_amount >= 0", name="ck_installment_interest_nonneg"),
        sa.CheckConstraint("total_amount >= 0", name="ck_installment_total_nonneg"),
        sa.CheckConstraint("status IN ('pending', 'paid')", name="ck_installment_status"),
        sa.UniqueConstraint("loan_application_id", "installment_number", name="uq_installment_loan_number"),
    )
    op.create_index(
        "ix_payment_installments_loan_application_id",
        "payment_installments",
        ["loan_application_id"],
    )

    op.create_table(
        "risk_assessments",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "loan_application_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("loan_applications.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("score", sa.Integer(), nullable=False),
        sa.Column("level", sa.String(length=10), nullable=False),
        sa.Column(
            "flags",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column("outcome", sa.String(length=20), nullable=False),
        sa.Column("reviewer_action", sa.String(length=20), nullable=True),
        sa.Column(
            "reviewed_by",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("profiles.id", ondelete="SET NULL"),
            nullable=True,
        ),
        _timestamp("reviewed_at", nullable=True),
        sa.Column("resolution_notes", sa.Text(), nullable=True),
        _timestamp("assessed_at"),
        sa.CheckConstraint("score >= 0 AND score <= 100", name="ck_risk_score_range"),
        sa.CheckConstraint("level IN ('low', 'medium', 'high')", name="ck_risk_level"),
        sa.CheckConstraint("outcome IN ('auto_route', 'manual_review')", name="ck_risk_outcome"),
        sa.CheckConstraint(
            "reviewer_action IS NULL OR reviewer_action IN ('approved', 'rejected', 'manual_review')",
            name="ck_risk_reviewer_action",
        ),
    )

    op.create_table(
        "notifications",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("profiles.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "notification_type",
            sa.String(length=30),
            nullable=False,
            server_default=sa.text("'system'"),
        ),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _timestamp("created_at"),
        sa.CheckConstraint(
            "notification_type IN ('application_status', 'kyc_status', 'payment_due', "
            "'fraud_alert', 'new_application', 'system')",
            name="ck_notification_type",
        ),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("event_type", sa.String(length=100), nullable=False),
        sa.Column("loan_application_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("actor_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("from_status", sa.String(length=30), nullable=True),
        sa.Column("to_status", sa.String(length=30), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True),
        _timestamp("occurred_at"),
    )
    op.create_index("ix_audit_logs_loan_application_id", "audit_logs", ["loan_application_id"])


def downgrade() -> None:
    op.drop_index("ix_audit_logs_loan_application_id", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_notifications_user_id", table_name="notifications")
    op.drop_table("notifications")
    op.drop_table("risk_assessments")
    op.drop_index("ix_payment_installments_loan_application_id", table_name="payment_installments")
    op.drop_table("payment_installments")
    op.drop_index("ix_kyc_documents_owner_stage", table_name="kyc_documents")
    op.drop_index("ix_kyc_documents_loan_application_id", table_name="kyc_documents")
    op.drop_index("ix_kyc_documents_owner_id", table_name="kyc_documents")
    op.drop_table("kyc_documents")
    op.drop_index("ix_loan_applications_status", table_name="loan_applications")
    op.drop_index("ix_loan_applications_owner_id", table_name="loan_applications")
    op.drop_table("loan_applications")
    op.drop_table("loan_products")
    op.drop_index("ix_profiles_role", table_name="profiles")
    op.drop_table("profiles")
