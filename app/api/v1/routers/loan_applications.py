from dataclasses import asdict
from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from app.api import deps
from app.models.loan_application import LoanApplication
from app.models.payment_installment import PaymentInstallment
from app.schemas.loan import (
    LoanApplicationCreate,
    LoanApplicationDraftUpdate,
    LoanApplicationDTO,
    LoanApplicationListResponse,
    LoanApplicationStatus,
    LoanPaymentStatusDTO,
    LoanResubmissionRequest,
    LoanScheduleResponse,
    LoanTransitionRequest,
    PaymentInstallmentDTO,
)
from app.services import approval_router, loan_applications, loan_lifecycle, loan_schedules
from app.services.context import Actor, EngineContext

router = APIRouter(prefix="/loan-applications", tags=["loan-applications"])


def build_application_payload(application: LoanApplication) -> LoanApplicationDTO:
    dto = LoanApplicationDTO.model_validate(application)
    return dto.model_copy(update={"required_tier": approval_router.required_tier(application.amount)})


def build_installment_payload(installment: PaymentInstallment, as_of: date) -> PaymentInstallmentDTO:
    dto = PaymentInstallmentDTO.model_validate(installment)
    return dto.model_copy(update={"status": loan_schedules.effective_status(installment, as_of)})


@router.post(
    "",
    response_model=LoanApplicationDTO,
    status_code=201,
    summary="Create a draft loan application",
)
async def create_loan_application(
    payload: LoanApplicationCreate,
    actor: Actor = Depends(deps.get_current_actor),
    ctx: EngineContext = Depends(deps.get_engine_context),
) -> LoanApplicationDTO:
    application = await loan_applications.create_draft_application(ctx, actor, payload)
    return build_application_payload(application)


@router.get("", response_model=LoanApplicationListResponse, summary="List loan applications")
async def list_loan_applications(
    status_filter: LoanApplicationStatus | None = Query(default=None, alias="status"),
    actor: Actor = Depends(deps.get_current_actor),
    ctx: EngineContext = Depends(deps.get_engine_context),
) -> LoanApplicationListResponse:
    applications = await loan_applications.list_applications(ctx, actor, status=status_filter)
    items = [build_application_payload(application) for application in applications]
    return LoanApplicationListResponse(items=items, total=len(items))


@router.get("/{application_id}", response_model=LoanApplicationDTO, summary="Get a loan application")
async def get_loan_application(
    application_id: UUID,
    actor: Actor = Depends(deps.get_current_actor),
    ctx: EngineContext = Depends(deps.get_engine_context),
) -> LoanApplicationDTO:
    application = await loan_applications.get_application(ctx, application_id, actor)
    return build_application_payload(application)


@router.patch("/{application_id}", response_model=LoanApplicationDTO, summary="Update a draft application")
async def update_loan_application(
    application_id: UUID,
    payload: LoanApplicationDraftUpdate,
    actor: Actor = Depends(deps.get_current_actor),
    ctx: EngineContext = Depends(deps.get_engine_context),
) -> LoanApplicationDTO:
    application = await loan_applications.update_draft_application(ctx, application_id, actor, payload)
    return build_application_payload(application)


@router.post(
    "/{application_id}/income-verification",
    response_model=LoanApplicationDTO,
    summary="Leave draft and request income verification",
)
async def request_income_verification(
    application_id: UUID,
    actor: Actor = Depends(deps.get_current_actor),
    ctx: EngineContext = Depends(deps.get_engine_context),
) -> LoanApplicationDTO:
    application = await loan_applications.request_income_verification(ctx, application_id, actor)
    return build_application_payload(application)


@router.post("/{application_id}/submit", response_model=LoanApplicationDTO, summary="Submit for review")
async def submit_loan_application(
    application_id: UUID,
    actor: Actor = Depends(deps.get_current_actor),
    ctx: EngineContext = Depends(deps.get_engine_context),
) -> LoanApplicationDTO:
    application = await loan_applications.submit_application(ctx, application_id, actor)
    return build_application_payload(application)


@router.post(
    "/{application_id}/resubmit",
    response_model=LoanApplicationDTO,
    summary="Re-submit a rejected application",
)
async def resubmit_loan_application(
    application_id: UUID,
    payload: LoanResubmissionRequest,
    actor: Actor = Depends(deps.get_current_actor),
    ctx: EngineContext = Depends(deps.get_engine_context),
) -> LoanApplicationDTO:
    application = await loan_applications.resubmit_application(
        ctx,
        application_id,
        actor,
        amount=payload.amount,
        duration_months=payload.duration_months,
        note=payload.note,
    )
    return build_application_payload(application)


@router.post(
    "/{application_id}/transitions",
    response_model=LoanApplicationDTO,
    summary="Request a status transition",
)
async def transition_loan_application(
    application_id: UUID,
    payload: LoanTransitionRequest,
    actor: Actor = Depends(deps.get_current_actor),
    ctx: EngineContext = Depends(deps.get_engine_context),
) -> LoanApplicationDTO:
    application = await loan_applications.get_application(ctx, application_id, actor)
    application = await loan_lifecycle.attempt_transition(
        ctx,
        application,
        payload.status,
        actor,
        note=payload.note,
        rejection_reason=payload.rejection_reason,
        expected_version=payload.version,
    )
    return build_application_payload(application)


@router.get(
    "/{application_id}/schedule",
    response_model=LoanScheduleResponse,
    summary="Get the amortization schedule",
)
async def get_loan_schedule(
    application_id: UUID,
    start_date: date | None = Query(default=None),
    actor: Actor = Depends(deps.get_current_actor),
    ctx: EngineContext = Depends(deps.get_engine_context),
) -> LoanScheduleResponse:
    return await loan_applications.get_schedule(ctx, application_id, actor, start_date=start_date)


@router.get(
    "/{application_id}/installments",
    response_model=list[PaymentInstallmentDTO],
    summary="List repayment installments",
)
async def list_installments(
    application_id: UUID,
    as_of_date: date | None = Query(default=None),
    actor: Actor = Depends(deps.get_current_actor),
    ctx: EngineContext = Depends(deps.get_engine_context),
) -> list[PaymentInstallmentDTO]:
    installments = await loan_applications.get_installments(ctx, application_id, actor)
    as_of = as_of_date or ctx.now().date()
    return [build_installment_payload(installment, as_of) for installment in installments]


@router.get(
    "/{application_id}/payment-status",
    response_model=LoanPaymentStatusDTO,
    summary="Summarize repayment progress",
)
async def get_payment_status(
    application_id: UUID,
    as_of_date: date | None = Query(default=None),
    actor: Actor = Depends(deps.get_current_actor),
    ctx: EngineContext = Depends(deps.get_engine_context),
) -> LoanPaymentStatusDTO:
    summary = await loan_applications.get_payment_status(ctx, application_id, actor, as_of_date=as_of_date)
    return LoanPaymentStatusDTO(**asdict(summary))
