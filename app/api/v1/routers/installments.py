from uuid import UUID

from fastapi import APIRouter, Depends

from app.api import deps
from app.api.v1.routers.loan_applications import build_installment_payload
from app.schemas.loan import InstallmentPaymentRequest, PaymentInstallmentDTO
from app.services import loan_repayments
from app.services.context import Actor, EngineContext

router = APIRouter(prefix="/loan-applications", tags=["installments"])


@router.post(
    "/{application_id}/installments/{installment_number}/payments",
    response_model=PaymentInstallmentDTO,
    summary="Record payment of an installment",
)
async def pay_installment(
    application_id: UUID,
    installment_number: int,
    payload: InstallmentPaymentRequest,
    actor: Actor = Depends(deps.get_current_actor),
    ctx: EngineContext = Depends(deps.get_engine_context),
) -> PaymentInstallmentDTO:
    installment = await loan_repayments.record_installment_payment(
        ctx, application_id, installment_number, actor, payload
    )
    return build_installment_payload(installment, ctx.now().date())
