import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB, UUID

from app.db.base import Base, utcnow


class RiskAssessment(Base):
    __tablename__ = "risk_assessments"
    __table_args__ = (
        CheckConstraint("score >= 0 AND score <= 100", name="ck_risk_score_range"),
        CheckConstraint("level IN ('low', 'medium', 'high')", name="ck_risk_level"),
        CheckConstraint("outcome IN ('auto_route', 'manual_review')", name="ck_risk_outcome"),
        CheckConstraint(
            "reviewer_action IS NULL OR reviewer_action IN ('approved', 'rejected', 'manual_review')",
            name="ck_risk_reviewer_action",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    loan_application_id = Column(
        UUID(as_uuid=True),
        ForeignKey("loan_applications.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    score = Column(Integer, nullable=False)
    level = Column(String(10), nullable=False)
    flags = Column(JSONB, nullable=False, default=list)
    outcome = Column(String(20), nullable=False)
    reviewer_action = Column(String(20), nullable=True)
    reviewed_by = Column(UUID(as_uuid=True), ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    resolution_notes = Column(Text, nullable=True)
    assessed_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
