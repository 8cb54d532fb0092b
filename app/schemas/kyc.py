from __future__ import annotations

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class KYCStage(str, Enum):
    STAGE1 = "stage1"
    STAGE2 = "stage2"


class KYCDocumentKind(str, Enum):
    NATIONAL_ID = "national_id"
    PASSPORT = "passport"
    DRIVERS_LICENSE = "drivers_license"
    PROOF_OF_RESIDENCE = "proof_of_residence"
    PROOF_OF_INCOME = "proof_of_income"
    PROOF_OF_FUNDS = "proof_of_funds"


class KYCDocumentStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class KYCVerdict(str, Enum):
    APPROVED = "approved"
    PENDING = "pending"
    REJECTED = "rejected"


STAGE_KINDS: dict[KYCStage, frozenset[KYCDocumentKind]] = {
    KYCStage.STAGE1: frozenset(
        {
            KYCDocumentKind.NATIONAL_ID,
            KYCDocumentKind.PASSPORT,
            KYCDocumentKind.DRIVERS_LICENSE,
            KYCDocumentKind.PROOF_OF_RESIDENCE,
        }
    ),
    KYCStage.STAGE2: frozenset({KYCDocumentKind.PROOF_OF_INCOME, KYCDocumentKind.PROOF_OF_FUNDS}),
}


class KYCDocumentCreate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    document_kind: KYCDocumentKind
    document_url: str = Field(min_length=1, max_length=1024)


class KYCDocumentReviewRequest(BaseModel):
    status: KYCDocumentStatus
    rejection_reason: str | None = Field(default=None, max_length=1000)


class KYCDocumentDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    owner_id: UUID
    stage: KYCStage
    document_kind: KYCDocumentKind
    status: KYCDocumentStatus
    rejection_reason: str | None = None
    loan_application_id: UUID | None = None
    document_url: str | None = None
    uploaded_at: datetime | None = None
    reviewed_at: datetime | None = None
    reviewed_by: UUID | None = None


class KYCVerdictResponse(BaseModel):
    stage: KYCStage
    verdict: KYCVerdict
    missing: list[KYCDocumentKind | str] = Field(default_factory=list)
