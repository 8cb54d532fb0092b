from uuid import UUID

from fastapi import APIRouter, Depends

from app.api import deps
from app.api.v1.routers.loan_applications import build_application_payload
from app.core.exceptions import EntityNotFound
from app.schemas.loan import (
    LoanApplicationDTO,
    LoanDecisionRequest,
    LoanDefaultRequest,
    LoanDisbursementRequest,
)
from app.schemas.risk import RiskAssessmentDTO, RiskDispositionRequest
from app.services import loan_applications, loan_repayments, risk_gate
from app.services.context import Actor, EngineContext

router = APIRouter(prefix="/loan-applications", tags=["loan-reviews"])


@router.post(
    "/{application_id}/review",
    response_model=LoanApplicationDTO,
    summary="Start review, score risk and route to an approval tier",
)
async def start_review(
    application_id: UUID,
    actor: Actor = Depends(deps.get_current_actor),
    ctx: EngineContext = Depends(deps.get_engine_context),
) -> LoanApplicationDTO:
    application = await loan_applications.start_review(ctx, application_id, actor)
    return build_application_payload(application)


@router.get(
    "/{application_id}/risk-assessment",
    response_model=RiskAssessmentDTO,
    summary="Get the risk assessment",
)
async def get_risk_assessment(
    application_id: UUID,
    actor: Actor = Depends(deps.get_current_actor),
    ctx: EngineContext = Depends(deps.get_engine_context),
) -> RiskAssessmentDTO:
    await loan_applications.get_application(ctx, application_id, actor)
    assessment = await risk_gate.get_assessment(ctx, application_id)
    if assessment is None:
        raise EntityNotFound(
            message="Risk assessment not found",
            details={"application_id": str(application_id)},
        )
    return RiskAssessmentDTO.model_validate(assessment)


@router.post(
    "/{application_id}/risk-disposition",
    response_model=LoanApplicationDTO,
    summary="Resolve a manual risk review",
)
async def record_risk_disposition(
    application_id: UUID,
    payload: RiskDispositionRequest,
    actor: Actor = Depends(deps.get_current_actor),
    ctx: EngineContext = Depends(deps.get_engine_context),
) -> LoanApplicationDTO:
    application = await loan_applications.record_risk_disposition(
        ctx, application_id, actor, payload.action, payload.notes
    )
    return build_application_payload(application)


@router.post(
    "/{application_id}/decision",
    response_model=LoanApplicationDTO,
    summary="Approve or reject at the required tier",
)
async def decide_application(
    application_id: UUID,
    payload: LoanDecisionRequest,
    actor: Actor = Depends(deps.get_current_actor),
    ctx: EngineContext = Depends(deps.get_engine_context),
) -> LoanApplicationDTO:
    application = await loan_applications.decide_application(ctx, application_id, actor, payload)
    return build_application_payload(application)


@router.post(
    "/{application_id}/disburse",
    response_model=LoanApplicationDTO,
    summary="Disburse an approved loan and create its schedule",
)
async def disburse_application(
    application_id: UUID,
    payload: LoanDisbursementRequest,
    actor: Actor = Depends(deps.get_current_actor),
    ctx: EngineContext = Depends(deps.get_engine_context),
) -> LoanApplicationDTO:
    application = await loan_applications.disburse_application(
        ctx, application_id, actor, payload.disbursement_date
    )
    return build_application_payload(application)


@router.post(
    "/{application_id}/default",
    response_model=LoanApplicationDTO,
    summary="Mark a disbursed loan as defaulted",
)
async def mark_defaulted(
    application_id: UUID,
    payload: LoanDefaultRequest,
    actor: Actor = Depends(deps.get_current_actor),
    ctx: EngineContext = Depends(deps.get_engine_context),
) -> LoanApplicationDTO:
    application = await loan_repayments.mark_defaulted(ctx, application_id, actor, payload.reason)
    return build_application_payload(application)
