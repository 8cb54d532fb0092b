import uuid

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID

from app.db.base import Base, utcnow


DOCUMENT_KINDS = (
    "national_id",
    "passport",
    "drivers_license",
    "proof_of_residence",
    "proof_of_income",
    "proof_of_funds",
)


class KYCDocument(Base):
    __tablename__ = "kyc_documents"
    __table_args__ = (
        CheckConstraint("stage IN ('stage1', 'stage2')", name="ck_kyc_document_stage"),
        CheckConstraint(
            "status IN ('pending', 'verified', 'rejected')",
            name="ck_kyc_document_status",
        ),
        CheckConstraint(
            "document_kind IN ('national_id', 'passport', 'drivers_license', 'proof_of_residence', "
            "'proof_of_income', 'proof_of_funds')",
            name="ck_kyc_document_kind",
        ),
        CheckConstraint(
            "(stage = 'stage2' AND loan_application_id IS NOT NULL) "
            "OR (stage = 'stage1' AND loan_application_id IS NULL)",
            name="ck_kyc_document_application_link",
        ),
        Index("ix_kyc_documents_owner_stage", "owner_id", "stage"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    owner_id = Column(
        UUID(as_uuid=True),
        ForeignKey("profiles.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    stage = Column(String(10), nullable=False)
    document_kind = Column(String(50), nullable=False)
    status = Column(String(20), nullable=False, default="pending")
    rejection_reason = Column(Text, nullable=True)
    loan_application_id = Column(
        UUID(as_uuid=True),
        ForeignKey("loan_applications.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    document_url = Column(String(1024), nullable=True)
    reviewed_by = Column(UUID(as_uuid=True), ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    uploaded_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
