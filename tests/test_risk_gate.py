import asyncio
from decimal import Decimal
from uuid import uuid4

import pytest

from conftest import make_profile
from app.core.exceptions import GatePending, GateRejected, InvalidTransition, UnauthorizedActor
from app.core.settings import settings
from app.models.loan_application import LoanApplication
from app.models.profile import Profile
from app.models.risk_assessment import RiskAssessment
from app.schemas.loan import LoanApplicationStatus as S
from app.schemas.profile import ProfileRole
from app.schemas.risk import RiskDecision, RiskLevel, RiskOutcome
from app.services import credit_scores as credit_score_service, risk_gate


def _assessment(outcome: RiskOutcome, reviewer_action: str | None = None) -> RiskAssessment:
    return RiskAssessment(
        id=uuid4(),
        loan_application_id=uuid4(),
        score=70,
        level="medium",
        flags=[],
        outcome=outcome.value,
        reviewer_action=reviewer_action,
    )


def _application(status: S = S.UNDER_REVIEW) -> LoanApplication:
    return LoanApplication(
        id=uuid4(),
        owner_id=uuid4(),
        status=status.value,
        version=1,
        amount=Decimal("5000"),
        duration_months=12,
        interest_rate=Decimal("12"),
    )


@pytest.mark.parametrize(
    ("score", "level", "outcome"),
    [
        (0, RiskLevel.LOW, RiskOutcome.AUTO_ROUTE),
        (59, RiskLevel.MEDIUM, RiskOutcome.AUTO_ROUTE),
        (60, RiskLevel.LOW, RiskOutcome.MANUAL_REVIEW),
        (75, RiskLevel.MEDIUM, RiskOutcome.MANUAL_REVIEW),
        (10, RiskLevel.HIGH, RiskOutcome.MANUAL_REVIEW),
    ],
)
def test_outcome_for(score: int, level: RiskLevel, outcome: RiskOutcome) -> None:
    assert risk_gate.outcome_for(score, level) == outcome


def test_decide() -> None:
    assert risk_gate.decide(_assessment(RiskOutcome.AUTO_ROUTE)) == RiskDecision.PROCEED
    assert risk_gate.decide(_assessment(RiskOutcome.MANUAL_REVIEW)) == RiskDecision.HOLD
    assert risk_gate.decide(_assessment(RiskOutcome.MANUAL_REVIEW, "manual_review")) == RiskDecision.HOLD
    assert risk_gate.decide(_assessment(RiskOutcome.MANUAL_REVIEW, "approved")) == RiskDecision.PROCEED
    assert risk_gate.decide(_assessment(RiskOutcome.MANUAL_REVIEW, "rejected")) == RiskDecision.REJECT


def test_check_exit() -> None:
    application = _application()

    with pytest.raises(GatePending):
        risk_gate.check_exit(None, application, S.PENDING_LOAN_OFFICER)
    with pytest.raises(GatePending):
        risk_gate.check_exit(_assessment(RiskOutcome.MANUAL_REVIEW), application, S.REJECTED)
    with pytest.raises(GateRejected):
        risk_gate.check_exit(_assessment(RiskOutcome.MANUAL_REVIEW, "rejected"), application, S.PENDING_LOAN_OFFICER)
    assert (
        risk_gate.check_exit(_assessment(RiskOutcome.MANUAL_REVIEW, "rejected"), application, S.REJECTED)
        == RiskDecision.REJECT
    )


@pytest.mark.asyncio
async def test_disposition_requires_reviewer_and_review_status(ctx) -> None:
    borrower = await make_profile(ctx)
    officer = await make_profile(ctx, ProfileRole.LOAN_OFFICER)

    with pytest.raises(UnauthorizedActor):
        await risk_gate.record_disposition(ctx, _application(), borrower, "approved")
    with pytest.raises(InvalidTransition):
        await risk_gate.record_disposition(ctx, _application(S.SUBMITTED), officer, "approved")


@pytest.mark.asyncio
async def test_missing_scorer_is_pending(ctx) -> None:
    ctx.risk_scorer = None

    with pytest.raises(GatePending):
        await risk_gate.run_risk_assessment(ctx, _application())


@pytest.mark.asyncio
async def test_credit_score_is_cached_on_profile(ctx, credit_scores) -> None:
    borrower = await make_profile(ctx)

    first = await credit_score_service.get_credit_score(ctx, borrower.id)
    second = await credit_score_service.get_credit_score(ctx, borrower.id)

    assert first == second == 720
    assert credit_scores.calls == 1
    profile = await ctx.store.get(Profile, borrower.id)
    assert profile.credit_score == 720
    assert profile.credit_score_fetched_at is not None


@pytest.mark.asyncio
async def test_out_of_range_credit_score_is_not_cached(ctx, credit_scores) -> None:
    borrower = await make_profile(ctx)
    credit_scores.score = 900

    with pytest.raises(GatePending):
        await credit_score_service.get_credit_score(ctx, borrower.id)

    profile = await ctx.store.get(Profile, borrower.id)
    assert profile.credit_score is None


@pytest.mark.asyncio
async def test_credit_score_timeout_is_pending(ctx, monkeypatch) -> None:
    borrower = await make_profile(ctx)
    monkeypatch.setattr(settings, "external_call_timeout_seconds", 0.01)

    class SlowProvider:
        async def fetch(self, borrower_id):
            await asyncio.sleep(1)
            return 700

    ctx.credit_scores = SlowProvider()

    with pytest.raises(GatePending) as exc_info:
        await credit_score_service.get_credit_score(ctx, borrower.id)
    assert exc_info.value.details["gate"] == "credit_score"


@pytest.mark.asyncio
async def test_discard_assessment_only_clears_one_application(ctx) -> None:
    kept = await ctx.store.create(_assessment(RiskOutcome.AUTO_ROUTE))
    dropped = await ctx.store.create(_assessment(RiskOutcome.MANUAL_REVIEW, "rejected"))

    assert await risk_gate.discard_assessment(ctx, dropped.loan_application_id) == 1
    assert await risk_gate.discard_assessment(ctx, dropped.loan_application_id) == 0

    assert await risk_gate.get_assessment(ctx, dropped.loan_application_id) is None
    assert (await risk_gate.get_assessment(ctx, kept.loan_application_id)).id == kept.id


@pytest.mark.asyncio
async def test_disposition_is_limited_to_the_amount_tier(ctx) -> None:
    officer = await make_profile(ctx, ProfileRole.LOAN_OFFICER)
    application = _application()
    application.amount = Decimal("20000")

    with pytest.raises(UnauthorizedActor) as exc_info:
        await risk_gate.record_disposition(ctx, application, officer, "approved")

    assert exc_info.value.details["allowed_roles"] == ["finance_director"]
