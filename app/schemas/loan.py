from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class LoanApplicationStatus(str, Enum):
    DRAFT = "draft"
    KYC_STAGE2_REQUIRED = "kyc_stage2_required"
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    PENDING_LOAN_OFFICER = "pending_loan_officer"
    PENDING_FINANCE_DIRECTOR = "pending_finance_director"
    APPROVED = "approved"
    REJECTED = "rejected"
    DISBURSED = "disbursed"
    COMPLETED = "completed"
    DEFAULTED = "defaulted"


class ApprovalTier(str, Enum):
    LOAN_OFFICER = "loan_officer"
    FINANCE_DIRECTOR = "finance_director"


class InstallmentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"


class LoanApplicationCreate(BaseModel):
    amount: Decimal = Field(gt=0)
    duration_months: int = Field(ge=1)
    interest_rate: Decimal | None = Field(default=None, ge=0)
    product_id: UUID | None = None
    purpose: str | None = Field(default=None, max_length=2000)


class LoanApplicationDraftUpdate(BaseModel):
    amount: Decimal | None = Field(default=None, gt=0)
    duration_months: int | None = Field(default=None, ge=1)
    interest_rate: Decimal | None = Field(default=None, ge=0)
    purpose: str | None = Field(default=None, max_length=2000)


class LoanTransitionRequest(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    status: LoanApplicationStatus
    note: str | None = Field(default=None, max_length=2000)
    rejection_reason: str | None = Field(default=None, max_length=2000)
    version: int | None = Field(default=None, ge=1)


class LoanDecisionRequest(BaseModel):
    approve: bool
    notes: str | None = Field(default=None, max_length=2000)
    rejection_reason: str | None = Field(default=None, max_length=2000)
    version: int | None = Field(default=None, ge=1)


class LoanDisbursementRequest(BaseModel):
    disbursement_date: date | None = None


class LoanResubmissionRequest(BaseModel):
    amount: Decimal | None = Field(default=None, gt=0)
    duration_months: int | None = Field(default=None, ge=1)
    note: str | None = Field(default=None, max_length=2000)


class LoanDefaultRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=2000)


class StatusHistoryEntry(BaseModel):
    from_status: str | None = None
    to_status: str
    actor_id: str | None = None
    actor_role: str | None = None
    at: datetime
    note: str | None = None


class LoanApplicationDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True, json_encoders={Decimal: lambda value: str(value)})

    id: UUID
    owner_id: UUID
    product_id: UUID | None = None
    amount: Decimal
    duration_months: int
    interest_rate: Decimal
    monthly_installment: Decimal
    purpose: str | None = None
    status: LoanApplicationStatus
    version: int
    required_tier: ApprovalTier | None = None
    submitted_at: datetime | None = None
    approved_at: datetime | None = None
    rejected_at: datetime | None = None
    disbursed_at: datetime | None = None
    completed_at: datetime | None = None
    defaulted_at: datetime | None = None
    assigned_reviewer_id: UUID | None = None
    rejection_reason: str | None = None
    review_notes: str | None = None
    status_history: list[StatusHistoryEntry] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None


class LoanApplicationListResponse(BaseModel):
    items: list[LoanApplicationDTO]
    total: int


class PaymentInstallmentDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True, json_encoders={Decimal: lambda value: str(value)})

    id: UUID
    loan_application_id: UUID
    installment_number: int
    due_date: date
    principal_amount: Decimal
    interest_amount: Decimal
    total_amount: Decimal
    status: InstallmentStatus
    paid_date: date | None = None
    paid_amount: Decimal | None = None


class LoanScheduleEntry(BaseModel):
    model_config = ConfigDict(json_encoders={Decimal: lambda value: str(value)})

    period: int
    due_date: date
    payment: Decimal
    principal: Decimal
    interest: Decimal
    remaining_balance: Decimal


class LoanScheduleResponse(BaseModel):
    model_config = ConfigDict(json_encoders={Decimal: lambda value: str(value)})

    loan_id: UUID | None = None
    start_date: date
    term_months: int
    principal: Decimal
    annual_rate_percent: Decimal
    monthly_installment: Decimal
    total_interest: Decimal
    total_payable: Decimal
    entries: list[LoanScheduleEntry]


class InstallmentPaymentRequest(BaseModel):
    amount: Decimal = Field(gt=0)
    paid_date: date | None = None


class LoanPaymentStatusDTO(BaseModel):
    model_config = ConfigDict(json_encoders={Decimal: lambda value: str(value)})

    next_installment_number: int | None
    next_payment_date: date | None
    next_payment_amount: Decimal | None
    overdue_count: int
    overdue_amount_total: Decimal
    overdue_dates: list[date]
    paid_count: int
    principal_remaining: Decimal
    interest_remaining: Decimal
    total_remaining: Decimal


class LoanProductDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True, json_encoders={Decimal: lambda value: str(value)})

    id: UUID
    name: str
    description: str | None = None
    min_amount: Decimal
    max_amount: Decimal
    interest_rate: Decimal
    min_duration_months: int
    max_duration_months: int
    is_active: bool
