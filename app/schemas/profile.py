from __future__ import annotations

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class ProfileRole(str, Enum):
    BORROWER = "borrower"
    LOAN_OFFICER = "loan_officer"
    MANAGING_DIRECTOR = "managing_director"
    FINANCE_DIRECTOR = "finance_director"
    ADMIN = "admin"
    # Not assignable to a profile; used by engine-driven steps.
    SYSTEM = "system"


class KYCStage1Status(str, Enum):
    NOT_STARTED = "not_started"
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class ProfileDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    role: ProfileRole
    email: str | None = None
    full_name: str | None = None
    kyc_stage1_status: KYCStage1Status
    kyc_stage1_completed: bool
    credit_score: int | None = None
    created_at: datetime | None = None
