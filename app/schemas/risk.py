from __future__ import annotations

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RiskOutcome(str, Enum):
    AUTO_ROUTE = "auto_route"
    MANUAL_REVIEW = "manual_review"


class RiskReviewerAction(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"
    MANUAL_REVIEW = "manual_review"


class RiskDecision(str, Enum):
    """What the lifecycle may do with an application leaving ``under_review``."""

    PROCEED = "proceed"
    HOLD = "hold"
    REJECT = "reject"


class RiskScoreResult(BaseModel):
    score: int = Field(ge=0, le=100)
    level: RiskLevel
    flags: list[str] = Field(default_factory=list)


class RiskDispositionRequest(BaseModel):
    action: RiskReviewerAction
    notes: str | None = Field(default=None, max_length=2000)


class RiskAssessmentDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    loan_application_id: UUID
    score: int
    level: RiskLevel
    flags: list[str]
    outcome: RiskOutcome
    reviewer_action: RiskReviewerAction | None = None
    reviewed_by: UUID | None = None
    reviewed_at: datetime | None = None
    resolution_notes: str | None = None
    assessed_at: datetime | None = None
