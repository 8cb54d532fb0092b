from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from uuid import UUID

from app.core.exceptions import (
    ApplicationValidationError,
    EntityNotFound,
    ScheduleGenerationFailure,
    UnauthorizedActor,
)
from app.models.loan_application import LoanApplication
from app.models.loan_product import LoanProduct
from app.models.payment_installment import PaymentInstallment
from app.models.profile import Profile
from app.schemas.loan import (
    LoanApplicationCreate,
    LoanApplicationDraftUpdate,
    LoanApplicationStatus,
    LoanDecisionRequest,
    LoanScheduleResponse,
)
from app.schemas.profile import ProfileRole
from app.schemas.risk import RiskDecision, RiskReviewerAction
from app.services import approval_router, loan_lifecycle, loan_payment_status, loan_schedules, risk_gate
from app.services.audit import LedgerEvent, emit_ledger_event, model_snapshot
from app.services.context import SYSTEM_ACTOR, Actor, EngineContext


logger = logging.getLogger(__name__)

SCHEDULED_STATUSES = frozenset(
    {
        LoanApplicationStatus.DISBURSED.value,
        LoanApplicationStatus.COMPLETED.value,
        LoanApplicationStatus.DEFAULTED.value,
    }
)


def _application_snapshot(application: LoanApplication) -> dict:
    return model_snapshot(application, exclude={"status_history", "created_at", "updated_at"})


def _require_borrower(actor: Actor) -> None:
    if actor.role != ProfileRole.BORROWER:
        raise UnauthorizedActor(
            message="Only borrowers can create loan applications",
            details={"actor_role": actor.role.value},
        )


def ensure_can_view(actor: Actor, application: LoanApplication) -> None:
    if actor.role == ProfileRole.BORROWER and actor.id != application.owner_id:
        raise UnauthorizedActor(
            message="Borrowers may only view their own applications",
            details={"application_id": str(application.id)},
        )


async def _load_product(ctx: EngineContext, product_id: UUID) -> LoanProduct:
    product = await ctx.store.get(LoanProduct, product_id)
    if product is None or not product.is_active:
        raise ApplicationValidationError(
            message="Loan product is not available",
            details={"product_id": str(product_id)},
        )
    return product


def _check_product_limits(product: LoanProduct, amount: Decimal, duration_months: int) -> None:
    details = {
        "product_id": str(product.id),
        "amount": str(amount),
        "duration_months": duration_months,
        "min_amount": str(product.min_amount),
        "max_amount": str(product.max_amount),
        "min_duration_months": product.min_duration_months,
        "max_duration_months": product.max_duration_months,
    }
    if not Decimal(str(product.min_amount)) <= amount <= Decimal(str(product.max_amount)):
        raise ApplicationValidationError(
            message=f"Amount must be between {product.min_amount} and {product.max_amount}",
            details=details,
        )
    if not product.min_duration_months <= duration_months <= product.max_duration_months:
        raise ApplicationValidationError(
            message=(
                f"Duration must be between {product.min_duration_months} and "
                f"{product.max_duration_months} months"
            ),
            details=details,
        )


def _installment_for(amount: Decimal, interest_rate: Decimal, duration_months: int) -> Decimal:
    try:
        return loan_schedules.monthly_installment(amount, interest_rate, duration_months)
    except ScheduleGenerationFailure as exc:
        raise ApplicationValidationError(message=exc.message, details=exc.details) from exc


async def _resolve_terms(
    ctx: EngineContext,
    *,
    product_id: UUID | None,
    amount: Decimal,
    duration_months: int,
    interest_rate: Decimal | None,
) -> tuple[Decimal, Decimal]:
    if product_id is not None:
        product = await _load_product(ctx, product_id)
        _check_product_limits(product, amount, duration_months)
        interest_rate = Decimal(str(product.interest_rate))
    if interest_rate is None:
        raise ApplicationValidationError(
            message="Interest rate is required when no loan product is selected",
            details={"amount": str(amount), "duration_months": duration_months},
        )
    return interest_rate, _installment_for(amount, interest_rate, duration_months)


async def get_application(ctx: EngineContext, application_id: UUID, actor: Actor) -> LoanApplication:
    application = await ctx.store.get_or_raise(LoanApplication, application_id)
    ensure_can_view(actor, application)
    return application


async def list_applications(
    ctx: EngineContext,
    actor: Actor,
    *,
    status: LoanApplicationStatus | None = None,
) -> list[LoanApplication]:
    filters: dict = {}
    if actor.role == ProfileRole.BORROWER:
        filters["owner_id"] = actor.id
    if status is not None:
        filters["status"] = LoanApplicationStatus(status).value
    applications = await ctx.store.list(LoanApplication, **filters)
    return sorted(applications, key=lambda item: item.created_at, reverse=True)


async def create_draft_application(
    ctx: EngineContext,
    actor: Actor,
    payload: LoanApplicationCreate,
) -> LoanApplication:
    _require_borrower(actor)
    await ctx.store.get_or_raise(Profile, actor.id)
    interest_rate, installment = await _resolve_terms(
        ctx,
        product_id=payload.product_id,
        amount=payload.amount,
        duration_months=payload.duration_months,
        interest_rate=payload.interest_rate,
    )
    now = ctx.now()
    application = await ctx.store.create(
        LoanApplication(
            owner_id=actor.id,
            product_id=payload.product_id,
            status=LoanApplicationStatus.DRAFT.value,
            version=1,
            amount=payload.amount,
            duration_months=payload.duration_months,
            interest_rate=interest_rate,
            monthly_installment=installment,
            purpose=payload.purpose,
            status_history=[
                {
                    "from_status": None,
                    "to_status": LoanApplicationStatus.DRAFT.value,
                    "actor_id": str(actor.id),
                    "actor_role": actor.role.value,
                    "at": now.isoformat(),
                    "note": "Application created",
                }
            ],
            created_at=now,
            updated_at=now,
        )
    )
    logger.info(
        "Draft application created amount=%s duration=%s",
        application.amount,
        application.duration_months,
        extra={"application_id": application.id},
    )
    await emit_ledger_event(
        ctx.ledger,
        LedgerEvent(
            event_type="loan_application.created",
            loan_application_id=application.id,
            actor_id=actor.id,
            to_status=LoanApplicationStatus.DRAFT.value,
            details=_application_snapshot(application),
            occurred_at=now,
        ),
    )
    return application


async def update_draft_application(
    ctx: EngineContext,
    application_id: UUID,
    actor: Actor,
    payload: LoanApplicationDraftUpdate,
) -> LoanApplication:
    application = await get_application(ctx, application_id, actor)
    if actor.role != ProfileRole.BORROWER:
        raise UnauthorizedActor(
            message="Only the owner can edit a draft",
            details={"application_id": str(application.id), "actor_role": actor.role.value},
        )
    if application.status != LoanApplicationStatus.DRAFT.value:
        raise ApplicationValidationError(
            message="Only draft applications can be updated",
            details={"application_id": str(application.id), "status": application.status},
        )

    old_snapshot = _application_snapshot(application)
    amount = payload.amount if payload.amount is not None else Decimal(str(application.amount))
    duration_months = payload.duration_months or application.duration_months
    requested_rate = payload.interest_rate
    if requested_rate is None and application.product_id is None:
        requested_rate = Decimal(str(application.interest_rate))
    interest_rate, installment = await _resolve_terms(
        ctx,
        product_id=application.product_id,
        amount=amount,
        duration_months=duration_months,
        interest_rate=requested_rate,
    )
    application.amount = amount
    application.duration_months = duration_months
    application.interest_rate = interest_rate
    application.monthly_installment = installment
    if payload.purpose is not None:
        application.purpose = payload.purpose

    application = await ctx.store.update(application, expected_version=application.version)
    await emit_ledger_event(
        ctx.ledger,
        LedgerEvent(
            event_type="loan_application.updated",
            loan_application_id=application.id,
            actor_id=actor.id,
            from_status=application.status,
            to_status=application.status,
            details={"before": old_snapshot, "after": _application_snapshot(application)},
        ),
    )
    return application


async def request_income_verification(
    ctx: EngineContext, application_id: UUID, actor: Actor
) -> LoanApplication:
    application = await get_application(ctx, application_id, actor)
    return await loan_lifecycle.attempt_transition(
        ctx, application, LoanApplicationStatus.KYC_STAGE2_REQUIRED, actor
    )


async def submit_application(ctx: EngineContext, application_id: UUID, actor: Actor) -> LoanApplication:
    application = await get_application(ctx, application_id, actor)
    return await loan_lifecycle.attempt_transition(ctx, application, LoanApplicationStatus.SUBMITTED, actor)


async def resubmit_application(
    ctx: EngineContext,
    application_id: UUID,
    actor: Actor,
    *,
    amount: Decimal | None = None,
    duration_months: int | None = None,
    note: str | None = None,
) -> LoanApplication:
    """Send a rejected application back for review.

    ``amount`` and ``duration_months`` may be echoed back by the caller; they
    must match the stored terms.
    """
    application = await get_application(ctx, application_id, actor)
    if amount is not None:
        application.amount = amount
    if duration_months is not None:
        application.duration_months = duration_months
    return await loan_lifecycle.attempt_transition(
        ctx,
        application,
        LoanApplicationStatus.SUBMITTED,
        actor,
        note=note or "Re-submitted after rejection",
    )


async def route_reviewed_application(ctx: EngineContext, application: LoanApplication) -> LoanApplication:
    """Move an application out of ``under_review`` when the risk outcome allows it."""
    if application.status != LoanApplicationStatus.UNDER_REVIEW.value:
        return application
    assessment = await risk_gate.get_assessment(ctx, application.id)
    if assessment is None or risk_gate.decide(assessment) != RiskDecision.PROCEED:
        return application
    target = approval_router.pending_status_for(application.amount)
    return await loan_lifecycle.attempt_transition(
        ctx,
        application,
        target,
        SYSTEM_ACTOR,
        note=f"Risk score {assessment.score} routed to {target.value}",
    )


async def start_review(ctx: EngineContext, application_id: UUID, actor: Actor) -> LoanApplication:
    """Take a submitted application into review, score it and route it if possible.

    If scoring is unavailable the application stays ``under_review`` and the
    call can be repeated.
    """
    application = await ctx.store.get_or_raise(LoanApplication, application_id)
    if application.status == LoanApplicationStatus.UNDER_REVIEW.value:
        approval_router.authorize(actor, application, approval_router.pending_status_for(application.amount))
    else:
        application = await loan_lifecycle.attempt_transition(
            ctx, application, LoanApplicationStatus.UNDER_REVIEW, actor
        )
    await risk_gate.run_risk_assessment(ctx, application)
    return await route_reviewed_application(ctx, application)


async def record_risk_disposition(
    ctx: EngineContext,
    application_id: UUID,
    actor: Actor,
    action: RiskReviewerAction,
    notes: str | None = None,
) -> LoanApplication:
    application = await ctx.store.get_or_raise(LoanApplication, application_id)
    await risk_gate.record_disposition(ctx, application, actor, action, notes)
    action = RiskReviewerAction(action)
    if action == RiskReviewerAction.REJECTED:
        return await loan_lifecycle.attempt_transition(
            ctx,
            application,
            LoanApplicationStatus.REJECTED,
            actor,
            note=notes,
            rejection_reason=notes,
        )
    return await route_reviewed_application(ctx, application)


async def decide_application(
    ctx: EngineContext,
    application_id: UUID,
    actor: Actor,
    payload: LoanDecisionRequest,
    *,
    application: LoanApplication | None = None,
) -> LoanApplication:
    if application is None:
        application = await ctx.store.get_or_raise(LoanApplication, application_id)
    target = LoanApplicationStatus.APPROVED if payload.approve else LoanApplicationStatus.REJECTED
    return await loan_lifecycle.attempt_transition(
        ctx,
        application,
        target,
        actor,
        note=payload.notes,
        rejection_reason=None if payload.approve else payload.rejection_reason,
        expected_version=payload.version,
    )


async def disburse_application(
    ctx: EngineContext,
    application_id: UUID,
    actor: Actor,
    disbursement_date: date | None = None,
) -> LoanApplication:
    application = await ctx.store.get_or_raise(LoanApplication, application_id)
    return await loan_lifecycle.attempt_transition(
        ctx,
        application,
        LoanApplicationStatus.DISBURSED,
        actor,
        disbursement_date=disbursement_date,
    )


async def get_installments(
    ctx: EngineContext, application_id: UUID, actor: Actor
) -> list[PaymentInstallment]:
    await get_application(ctx, application_id, actor)
    installments = await ctx.store.list(PaymentInstallment, loan_application_id=application_id)
    return sorted(installments, key=lambda item: item.installment_number)


async def get_schedule(
    ctx: EngineContext,
    application_id: UUID,
    actor: Actor,
    *,
    start_date: date | None = None,
) -> LoanScheduleResponse:
    """Repayment plan for a loan; a preview starting ``start_date`` before disbursement."""
    application = await get_application(ctx, application_id, actor)
    if application.status in SCHEDULED_STATUSES:
        return loan_schedules.build_schedule(application)
    return loan_schedules.build_schedule(application, start_date=start_date or ctx.now().date())


async def get_payment_status(
    ctx: EngineContext,
    application_id: UUID,
    actor: Actor,
    *,
    as_of_date: date | None = None,
) -> loan_payment_status.LoanPaymentStatus:
    application = await get_application(ctx, application_id, actor)
    if application.status not in SCHEDULED_STATUSES:
        raise EntityNotFound(
            message="Loan has no repayment schedule yet",
            details={"application_id": str(application.id), "status": application.status},
        )
    installments = await ctx.store.list(PaymentInstallment, loan_application_id=application.id)
    return loan_payment_status.compute_payment_status(installments, as_of_date or ctx.now().date())

