import uuid

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Integer, Numeric, String, Text, func
from sqlalchemy.dialects.postgresql import UUID

from app.db.base import Base, utcnow


class LoanProduct(Base):
    __tablename__ = "loan_products"
    __table_args__ = (
        CheckConstraint("min_amount > 0", name="ck_loan_product_min_amount_positive"),
        CheckConstraint("max_amount >= min_amount", name="ck_loan_product_amount_range"),
        CheckConstraint("interest_rate >= 0", name="ck_loan_product_rate_nonneg"),
        CheckConstraint("min_duration_months >= 1", name="ck_loan_product_min_duration"),
        CheckConstraint(
            "max_duration_months >= min_duration_months",
            name="ck_loan_product_duration_range",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    min_amount = Column(Numeric(18, 6), nullable=False)
    max_amount = Column(Numeric(18, 6), nullable=False)
    interest_rate = Column(Numeric(10, 4), nullable=False)
    min_duration_months = Column(Integer, nullable=False)
    max_duration_months = Column(Integer, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
