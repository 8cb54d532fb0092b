from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from app.core.exceptions import (
    ApplicationValidationError,
    ConflictingUpdate,
    GatePending,
    InvalidTransition,
    ScheduleGenerationFailure,
)
from app.models.loan_application import LoanApplication
from app.models.payment_installment import PaymentInstallment
from app.schemas.loan import InstallmentStatus, LoanApplicationStatus as S
from app.services import approval_router, kyc_gate, loan_schedules, risk_gate
from app.services.audit import LedgerEvent, emit_ledger_event
from app.services.context import Actor, EngineContext
from app.services.notifications import notify_status_change
from app.services.store.adapter import entity_values


logger = logging.getLogger(__name__)


TRANSITIONS: dict[S, frozenset[S]] = {
    S.DRAFT: frozenset({S.KYC_STAGE2_REQUIRED}),
    S.KYC_STAGE2_REQUIRED: frozenset({S.SUBMITTED}),
    S.SUBMITTED: frozenset({S.UNDER_REVIEW}),
    S.UNDER_REVIEW: frozenset({S.PENDING_LOAN_OFFICER, S.PENDING_FINANCE_DIRECTOR, S.REJECTED}),
    S.PENDING_LOAN_OFFICER: frozenset({S.APPROVED, S.REJECTED}),
    S.PENDING_FINANCE_DIRECTOR: frozenset({S.APPROVED, S.REJECTED}),
    S.APPROVED: frozenset({S.DISBURSED}),
    # Re-submission is the only edge leading back up the graph.
    S.REJECTED: frozenset({S.SUBMITTED}),
    S.DISBURSED: frozenset({S.COMPLETED, S.DEFAULTED}),
    S.COMPLETED: frozenset(),
    S.DEFAULTED: frozenset(),
}

TERMINAL_STATUSES = frozenset(status for status, successors in TRANSITIONS.items() if not successors)

TIMESTAMP_FIELDS: dict[S, str] = {
    S.SUBMITTED: "submitted_at",
    S.APPROVED: "approved_at",
    S.REJECTED: "rejected_at",
    S.DISBURSED: "disbursed_at",
    S.COMPLETED: "completed_at",
    S.DEFAULTED: "defaulted_at",
}

REVIEW_DECISION_SOURCES = frozenset({S.UNDER_REVIEW, S.PENDING_LOAN_OFFICER, S.PENDING_FINANCE_DIRECTOR})


def successors(status: S | str) -> frozenset[S]:
    return TRANSITIONS.get(S(status), frozenset())


def _as_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _check_successor(application: LoanApplication, current: S, requested: S) -> None:
    if requested not in successors(current):
        raise InvalidTransition(
            message=f"Cannot move an application from {current.value} to {requested.value}",
            details={
                "application_id": str(application.id),
                "current_status": current.value,
                "requested_status": requested.value,
                "allowed": sorted(status.value for status in successors(current)),
            },
        )


async def _check_terms_unchanged(ctx: EngineContext, application: LoanApplication) -> None:
    persisted = await ctx.store.get_or_raise(LoanApplication, application.id)
    if (
        _as_decimal(persisted.amount) != _as_decimal(application.amount)
        or int(persisted.duration_months) != int(application.duration_months)
    ):
        raise ApplicationValidationError(
            message="Amount and duration cannot change once the application has left draft",
            details={
                "application_id": str(application.id),
                "amount": str(persisted.amount),
                "duration_months": persisted.duration_months,
                "requested_amount": str(application.amount),
                "requested_duration_months": application.duration_months,
            },
        )


async def _check_gates(
    ctx: EngineContext,
    application: LoanApplication,
    current: S,
    requested: S,
    rejection_reason: str | None,
) -> None:
    details = {"application_id": str(application.id), "requested_status": requested.value}

    if current != S.DRAFT:
        await _check_terms_unchanged(ctx, application)

    if current == S.DRAFT:
        kyc_gate.raise_for_verdict(await kyc_gate.evaluate_stage1(ctx, application.owner_id), **details)
    elif requested == S.SUBMITTED:
        uploaded_after = application.rejected_at if current == S.REJECTED else None
        result = await kyc_gate.evaluate_stage2(ctx, application, uploaded_after=uploaded_after)
        kyc_gate.raise_for_verdict(result, **details)

    if current == S.UNDER_REVIEW:
        assessment = await risk_gate.get_assessment(ctx, application.id)
        risk_gate.check_exit(assessment, application, requested)
        if requested != S.REJECTED:
            expected = approval_router.pending_status_for(application.amount)
            if requested != expected:
                raise InvalidTransition(
                    message=f"Amount {application.amount} routes to {expected.value}",
                    details={**details, "required_status": expected.value},
                )

    if requested == S.REJECTED and not (rejection_reason or "").strip():
        raise ApplicationValidationError(message="Rejection reason is required", details=details)

    if requested == S.COMPLETED:
        installments = await ctx.store.list(PaymentInstallment, loan_application_id=application.id)
        unpaid = [item for item in installments if item.status != InstallmentStatus.PAID.value]
        if not installments or unpaid:
            raise GatePending(
                message="Loan still has unpaid installments",
                details={**details, "gate": "repayment", "unpaid_count": len(unpaid)},
            )


def _check_version(application: LoanApplication, expected_version: int | None) -> None:
    if expected_version is not None and application.version != expected_version:
        raise ConflictingUpdate(
            message="LoanApplication was updated by another request. Refresh and retry.",
            details={
                "entity": "LoanApplication",
                "id": str(application.id),
                "expected_version": expected_version,
                "actual_version": application.version,
            },
        )


def _history_entry(current: S, requested: S, actor: Actor, at: datetime, note: str | None) -> dict[str, Any]:
    return {
        "from_status": current.value,
        "to_status": requested.value,
        "actor_id": str(actor.id) if actor.id else None,
        "actor_role": actor.role.value,
        "at": at.isoformat(),
        "note": note,
    }


def _apply_transition(
    application: LoanApplication,
    current: S,
    requested: S,
    actor: Actor,
    now: datetime,
    *,
    note: str | None,
    rejection_reason: str | None,
    disbursement_date: date | None,
) -> None:
    application.status = requested.value
    field_name = TIMESTAMP_FIELDS.get(requested)
    if field_name:
        setattr(application, field_name, now)
    if requested == S.DISBURSED and disbursement_date is not None:
        application.disbursed_at = datetime.combine(disbursement_date, now.timetz())
    if requested == S.UNDER_REVIEW and not actor.is_system:
        application.assigned_reviewer_id = actor.id
    if requested == S.REJECTED:
        application.rejection_reason = rejection_reason
    elif current == S.REJECTED:
        application.rejection_reason = None
    if note and current in REVIEW_DECISION_SOURCES:
        application.review_notes = note
    history = list(application.status_history or [])
    history.append(_history_entry(current, requested, actor, now, note or rejection_reason))
    application.status_history = history


def _restore(application: LoanApplication, values: dict[str, Any]) -> None:
    for key, value in values.items():
        setattr(application, key, value)


async def _persist_schedule(
    ctx: EngineContext,
    application: LoanApplication,
    installments: list[PaymentInstallment],
    before: dict[str, Any],
) -> None:
    try:
        await ctx.store.create_batch(installments)
    except Exception as exc:
        logger.error(
            "Installment schedule write failed; restoring approved status",
            exc_info=True,
            extra={"application_id": application.id},
        )
        flipped_version = application.version
        _restore(application, {key: value for key, value in before.items() if key != "version"})
        try:
            await ctx.store.update(application, expected_version=flipped_version)
        except ConflictingUpdate:
            logger.error(
                "Could not restore status after schedule failure",
                exc_info=True,
                extra={"application_id": application.id},
            )
            raise
        raise ScheduleGenerationFailure(
            message="Repayment schedule could not be saved; the loan was not disbursed",
            details={"application_id": str(application.id), "installments": len(installments)},
        ) from exc


async def attempt_transition(
    ctx: EngineContext,
    application: LoanApplication,
    requested_status: S | str,
    actor: Actor,
    *,
    note: str | None = None,
    rejection_reason: str | None = None,
    disbursement_date: date | None = None,
    expected_version: int | None = None,
) -> LoanApplication:
    """Move ``application`` to ``requested_status`` on behalf of ``actor``.

    Checks run in a fixed order: the version the caller read (when given)
    must still be current, the target must be a direct successor, the
    actor must hold authority for the current status, then the KYC, risk,
    routing and schedule preconditions must hold. Any failure raises before
    anything is written. The write itself is a compare-and-swap on
    ``version``, so a stale caller gets ``ConflictingUpdate``.
    """
    requested = S(requested_status)
    async with ctx.locks.for_entity(application.id):
        _check_version(application, expected_version)
        current = S(application.status)
        _check_successor(application, current, requested)
        approval_router.authorize(actor, application, requested)
        await _check_gates(ctx, application, current, requested, rejection_reason)
        if current == S.REJECTED:
            await risk_gate.discard_assessment(ctx, application.id)

        now = ctx.now()
        installments: list[PaymentInstallment] | None = None
        if requested == S.DISBURSED:
            installments = loan_schedules.generate_installments(
                application, disbursement_date or now.date()
            )

        before = entity_values(application)
        read_version = application.version
        _apply_transition(
            application,
            current,
            requested,
            actor,
            now,
            note=note,
            rejection_reason=rejection_reason,
            disbursement_date=disbursement_date,
        )
        try:
            application = await ctx.store.update(application, expected_version=read_version)
        except Exception:
            _restore(application, before)
            raise

        if installments is not None:
            await _persist_schedule(ctx, application, installments, before)

    logger.info(
        "Application moved %s -> %s by role=%s",
        current.value,
        requested.value,
        actor.role.value,
        extra={"application_id": application.id},
    )
    await emit_ledger_event(
        ctx.ledger,
        LedgerEvent(
            event_type="loan_application.transition",
            loan_application_id=application.id,
            actor_id=actor.id,
            from_status=current.value,
            to_status=requested.value,
            details={"note": note, "rejection_reason": rejection_reason, "version": application.version},
            occurred_at=now,
        ),
    )
    await notify_status_change(ctx.notifier, application.owner_id, requested, reason=rejection_reason)
    return application
