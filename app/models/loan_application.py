import uuid

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID

from app.db.base import Base, utcnow


class LoanApplication(Base):
    __tablename__ = "loan_applications"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_loan_app_amount_positive"),
        CheckConstraint("duration_months >= 1", name="ck_loan_app_duration_positive"),
        CheckConstraint("interest_rate >= 0", name="ck_loan_app_rate_nonneg"),
        CheckConstraint("monthly_installment >= 0", name="ck_loan_app_installment_nonneg"),
        CheckConstraint("version >= 1", name="ck_loan_app_version_positive"),
        CheckConstraint(
            "status IN ('draft', 'kyc_stage2_required', 'submitted', 'under_review', "
            "'pending_loan_officer', 'pending_finance_director', 'approved', 'rejected', "
            "'disbursed', 'completed', 'defaulted')",
            name="ck_loan_app_status",
        ),
        CheckConstraint(
            "status <> 'rejected' OR rejection_reason IS NOT NULL",
            name="ck_loan_app_rejection_reason",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    owner_id = Column(
        UUID(as_uuid=True),
        ForeignKey("profiles.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    product_id = Column(
        UUID(as_uuid=True),
        ForeignKey("loan_products.id", ondelete="SET NULL"),
        nullable=True,
    )
    status = Column(String(30), nullable=False, default="draft", index=True)
    version = Column(Integer, nullable=False, default=1)
    amount = Column(Numeric(18, 6), nullable=False)
    duration_months = Column(Integer, nullable=False)
    interest_rate = Column(Numeric(10, 4), nullable=False)
    monthly_installment = Column(Numeric(28, 10), nullable=False, default=0)
    purpose = Column(Text, nullable=True)
    assigned_reviewer_id = Column(
        UUID(as_uuid=True), ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True
    )
    rejection_reason = Column(Text, nullable=True)
    review_notes = Column(Text, nullable=True)
    status_history = Column(JSONB, nullable=False, default=list)
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    disbursed_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    defaulted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
        onupdate=func.now(),
    )
