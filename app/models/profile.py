import uuid

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Integer, String, func
from sqlalchemy.dialects.postgresql import UUID

from app.db.base import Base, utcnow


class Profile(Base):
    __tablename__ = "profiles"
    __table_args__ = (
        CheckConstraint(
            "role IN ('borrower', 'loan_officer', 'managing_director', 'finance_director', 'admin')",
            name="ck_profile_role",
        ),
        CheckConstraint(
            "kyc_stage1_status IN ('not_started', 'pending', 'verified', 'rejected')",
            name="ck_profile_kyc_stage1_status",
        ),
        CheckConstraint(
            "credit_score IS NULL OR (credit_score >= 300 AND credit_score <= 850)",
            name="ck_profile_credit_score_range",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    role = Column(String(30), nullable=False, index=True)
    email = Column(String(255), nullable=True, unique=True)
    full_name = Column(String(255), nullable=True)
    kyc_stage1_status = Column(String(20), nullable=False, default="not_started")
    kyc_stage1_completed = Column(Boolean, nullable=False, default=False)
    credit_score = Column(Integer, nullable=True)
    credit_score_fetched_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
        onupdate=func.now(),
    )
