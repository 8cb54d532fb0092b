from __future__ import annotations

import logging
from datetime import date
from decimal import ROUND_UP, Decimal
from uuid import UUID

from app.core.exceptions import EntityNotFound, InvalidPayment, UnauthorizedActor
from app.models.loan_application import LoanApplication
from app.models.payment_installment import PaymentInstallment
from app.schemas.loan import InstallmentPaymentRequest, InstallmentStatus, LoanApplicationStatus
from app.schemas.profile import ProfileRole
from app.services import loan_lifecycle
from app.services.audit import LedgerEvent, emit_ledger_event
from app.services.context import SYSTEM_ACTOR, Actor, EngineContext


logger = logging.getLogger(__name__)

TWOPLACES = Decimal("0.01")
STAFF_PAYMENT_ROLES = frozenset({ProfileRole.FINANCE_DIRECTOR, ProfileRole.ADMIN, ProfileRole.SYSTEM})


def _as_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def amount_due(installment: PaymentInstallment) -> Decimal:
    """Installment total rounded up to whole cents."""
    return _as_decimal(installment.total_amount).quantize(TWOPLACES, rounding=ROUND_UP)


def _check_payer(actor: Actor, application: LoanApplication) -> None:
    if actor.role == ProfileRole.BORROWER and actor.id == application.owner_id:
        return
    if actor.role in STAFF_PAYMENT_ROLES:
        return
    raise UnauthorizedActor(
        message="Only the borrower or finance staff may record a payment",
        details={"application_id": str(application.id), "actor_role": actor.role.value},
    )


async def record_installment_payment(
    ctx: EngineContext,
    application_id: UUID,
    installment_number: int,
    actor: Actor,
    payload: InstallmentPaymentRequest,
) -> PaymentInstallment:
    """Mark one installment paid and complete the loan once nothing is left."""
    application = await ctx.store.get_or_raise(LoanApplication, application_id)
    _check_payer(actor, application)
    if application.status != LoanApplicationStatus.DISBURSED.value:
        raise InvalidPayment(
            message="Payments can only be recorded for disbursed loans",
            details={"application_id": str(application.id), "status": application.status},
        )

    async with ctx.locks.for_entity(("installments", application.id)):
        installments = await ctx.store.list(PaymentInstallment, loan_application_id=application.id)
        installment = next(
            (item for item in installments if item.installment_number == installment_number), None
        )
        if installment is None:
            raise EntityNotFound(
                message="Installment not found",
                details={"application_id": str(application.id), "installment_number": installment_number},
            )
        if installment.status == InstallmentStatus.PAID.value:
            raise InvalidPayment(
                message="Installment has already been paid",
                details={"installment_number": installment_number, "paid_date": str(installment.paid_date)},
            )
        due = amount_due(installment)
        amount = _as_decimal(payload.amount)
        if amount < due:
            raise InvalidPayment(
                message=f"Payment must cover the installment total of {due}",
                details={"installment_number": installment_number, "amount": str(amount), "due": str(due)},
            )

        paid_date: date = payload.paid_date or ctx.now().date()
        installment.status = InstallmentStatus.PAID.value
        installment.paid_date = paid_date
        installment.paid_amount = amount
        installment = await ctx.store.update(installment)
        remaining = [
            item
            for item in installments
            if item.id != installment.id and item.status != InstallmentStatus.PAID.value
        ]

    logger.info(
        "Installment %s paid amount=%s remaining=%s",
        installment_number,
        amount,
        len(remaining),
        extra={"application_id": application.id, "installment_number": installment_number},
    )
    await emit_ledger_event(
        ctx.ledger,
        LedgerEvent(
            event_type="installment.paid",
            loan_application_id=application.id,
            actor_id=actor.id,
            details={
                "installment_number": installment_number,
                "amount": amount,
                "paid_date": paid_date,
                "late": paid_date > installment.due_date,
            },
        ),
    )
    if not remaining:
        await loan_lifecycle.attempt_transition(
            ctx,
            application,
            LoanApplicationStatus.COMPLETED,
            SYSTEM_ACTOR,
            note="All installments paid",
        )
    return installment


async def mark_defaulted(
    ctx: EngineContext,
    application_id: UUID,
    actor: Actor,
    reason: str | None = None,
) -> LoanApplication:
    application = await ctx.store.get_or_raise(LoanApplication, application_id)
    return await loan_lifecycle.attempt_transition(
        ctx,
        application,
        LoanApplicationStatus.DEFAULTED,
        actor,
        note=reason or "Marked as defaulted",
    )
