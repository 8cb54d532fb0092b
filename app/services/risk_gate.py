from __future__ import annotations

import asyncio
import logging

from app.core.exceptions import (
    ApplicationValidationError,
    EntityNotFound,
    GatePending,
    GateRejected,
    InvalidTransition,
    UnauthorizedActor,
)
from app.core.settings import settings
from app.models.loan_application import LoanApplication
from app.models.risk_assessment import RiskAssessment
from app.schemas.loan import LoanApplicationStatus
from app.schemas.risk import (
    RiskDecision,
    RiskLevel,
    RiskOutcome,
    RiskReviewerAction,
    RiskScoreResult,
)
from app.services import approval_router, credit_scores
from app.services.audit import LedgerEvent, emit_ledger_event
from app.services.context import Actor, EngineContext


logger = logging.getLogger(__name__)

def outcome_for(score: int, level: RiskLevel | str) -> RiskOutcome:
    if score >= settings.risk_manual_review_score or RiskLevel(level) == RiskLevel.HIGH:
        return RiskOutcome.MANUAL_REVIEW
    return RiskOutcome.AUTO_ROUTE


def decide(assessment: RiskAssessment) -> RiskDecision:
    if RiskOutcome(assessment.outcome) == RiskOutcome.AUTO_ROUTE:
        return RiskDecision.PROCEED
    action = assessment.reviewer_action
    if action == RiskReviewerAction.APPROVED.value:
        return RiskDecision.PROCEED
    if action == RiskReviewerAction.REJECTED.value:
        return RiskDecision.REJECT
    return RiskDecision.HOLD


async def get_assessment(ctx: EngineContext, application_id) -> RiskAssessment | None:
    rows = await ctx.store.list(RiskAssessment, loan_application_id=application_id)
    return rows[0] if rows else None


async def discard_assessment(ctx: EngineContext, application_id) -> int:
    """Drop the previous review round's assessment so a re-submission is scored afresh."""
    async with ctx.locks.for_entity(("risk", application_id)):
        rows = await ctx.store.list(RiskAssessment, loan_application_id=application_id)
        if rows:
            await ctx.store.delete_batch(rows)
    if rows:
        logger.info(
            "Discarded %d risk assessment(s) from the previous review round",
            len(rows),
            extra={"application_id": application_id},
        )
    return len(rows)


def check_exit(
    assessment: RiskAssessment | None,
    application: LoanApplication,
    target: LoanApplicationStatus,
) -> RiskDecision:
    """Raise unless the risk outcome allows leaving ``under_review`` for ``target``."""
    details = {"gate": "risk", "application_id": str(application.id), "requested_status": target.value}
    if assessment is None:
        raise GatePending(message="Risk assessment has not been completed", details=details)
    decision = decide(assessment)
    details.update(score=assessment.score, level=assessment.level, decision=decision.value)
    if decision == RiskDecision.HOLD:
        raise GatePending(message="Risk assessment is awaiting manual review", details=details)
    if decision == RiskDecision.REJECT and target != LoanApplicationStatus.REJECTED:
        raise GateRejected(message="Risk review rejected the application", details=details)
    return decision


async def run_risk_assessment(ctx: EngineContext, application: LoanApplication) -> RiskAssessment:
    """Score an application once; later calls return the stored assessment."""
    async with ctx.locks.for_entity(("risk", application.id)):
        existing = await get_assessment(ctx, application.id)
        if existing is not None:
            return existing

        if ctx.risk_scorer is None:
            raise GatePending(
                message="Risk scoring service is not configured",
                details={"gate": "risk", "application_id": str(application.id)},
            )
        credit_score = await credit_scores.get_credit_score(ctx, application.owner_id)
        details = {"gate": "risk", "application_id": str(application.id)}
        try:
            result: RiskScoreResult = await asyncio.wait_for(
                ctx.risk_scorer.score(application.id, application.amount, credit_score),
                timeout=settings.external_call_timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise GatePending(message="Risk scoring timed out", details=details) from exc
        except Exception as exc:
            logger.warning(
                "Risk scoring failed",
                exc_info=True,
                extra={"application_id": application.id},
            )
            raise GatePending(message="Risk scoring is unavailable", details=details) from exc

        outcome = outcome_for(result.score, result.level)
        assessment = await ctx.store.create(
            RiskAssessment(
                loan_application_id=application.id,
                score=result.score,
                level=RiskLevel(result.level).value,
                flags=list(result.flags),
                outcome=outcome.value,
                assessed_at=ctx.now(),
            )
        )

    logger.info(
        "Risk assessment score=%s level=%s outcome=%s",
        assessment.score,
        assessment.level,
        assessment.outcome,
        extra={"application_id": application.id},
    )
    await emit_ledger_event(
        ctx.ledger,
        LedgerEvent(
            event_type="risk_assessed",
            loan_application_id=application.id,
            actor_id=None,
            details={"score": assessment.score, "level": assessment.level, "outcome": assessment.outcome},
        ),
    )
    return assessment


async def record_disposition(
    ctx: EngineContext,
    application: LoanApplication,
    actor: Actor,
    action: RiskReviewerAction | str,
    notes: str | None = None,
) -> RiskAssessment:
    action = RiskReviewerAction(action)
    roles = approval_router.tier_roles(application.amount)
    if actor.role not in roles:
        raise UnauthorizedActor(
            message="Only reviewers at the required tier may resolve this risk assessment",
            details={
                "actor_role": actor.role.value,
                "allowed_roles": sorted(role.value for role in roles),
            },
        )
    if application.status != LoanApplicationStatus.UNDER_REVIEW.value:
        raise InvalidTransition(
            message="Risk dispositions are only recorded while the application is under review",
            details={"application_id": str(application.id), "current_status": application.status},
        )
    if action == RiskReviewerAction.REJECTED and not (notes or "").strip():
        raise ApplicationValidationError(
            message="Notes are required when rejecting on risk grounds",
            details={"application_id": str(application.id)},
        )

    async with ctx.locks.for_entity(("risk", application.id)):
        assessment = await get_assessment(ctx, application.id)
        if assessment is None:
            raise EntityNotFound(
                message="Risk assessment not found",
                details={"entity": "RiskAssessment", "application_id": str(application.id)},
            )
        if RiskOutcome(assessment.outcome) != RiskOutcome.MANUAL_REVIEW:
            raise ApplicationValidationError(
                message="Risk assessment does not require manual review",
                details={"application_id": str(application.id), "outcome": assessment.outcome},
            )
        if decide(assessment) != RiskDecision.HOLD:
            raise ApplicationValidationError(
                message="Risk assessment has already been resolved",
                details={"application_id": str(application.id), "reviewer_action": assessment.reviewer_action},
            )
        assessment.reviewer_action = action.value
        assessment.reviewed_by = actor.id
        assessment.reviewed_at = ctx.now()
        assessment.resolution_notes = notes
        assessment = await ctx.store.update(assessment)

    await emit_ledger_event(
        ctx.ledger,
        LedgerEvent(
            event_type="risk_disposition_recorded",
            loan_application_id=application.id,
            actor_id=actor.id,
            details={"action": action.value, "notes": notes},
        ),
    )
    return assessment
