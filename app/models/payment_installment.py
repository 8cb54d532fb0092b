import uuid

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID

from app.db.base import Base, utcnow


class PaymentInstallment(Base):
    __tablename__ = "payment_installments"
    __table_args__ = (
        CheckConstraint("installment_number >= 1", name="ck_installment_number_positive"),
        CheckConstraint("principal_amount >= 0", name="ck_installment_principal_nonneg"),
        CheckConstraint("interest_amount >= 0", name="ck_installment_interest_nonneg"),
        CheckConstraint("total_amount >= 0", name="ck_installment_total_nonneg"),
        # overdue is derived at read time and never stored
        CheckConstraint("status IN ('pending', 'paid')", name="ck_installment_status"),
        UniqueConstraint(
            "loan_application_id", "installment_number", name="uq_installment_loan_number"
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    loan_application_id = Column(
        UUID(as_uuid=True),
        ForeignKey("loan_applications.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    installment_number = Column(Integer, nullable=False)
    due_date = Column(Date, nullable=False)
    principal_amount = Column(Numeric(28, 10), nullable=False)
    interest_amount = Column(Numeric(28, 10), nullable=False)
    total_amount = Column(Numeric(28, 10), nullable=False)
    status = Column(String(20), nullable=False, default="pending")
    paid_date = Column(Date, nullable=True)
    paid_amount = Column(Numeric(28, 10), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
