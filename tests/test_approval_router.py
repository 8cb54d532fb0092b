from decimal import Decimal
from uuid import uuid4

import pytest

from app.core.exceptions import UnauthorizedActor
from app.models.loan_application import LoanApplication
from app.schemas.loan import ApprovalTier, LoanApplicationStatus as S
from app.schemas.profile import ProfileRole as R
from app.services import approval_router
from app.services.context import SYSTEM_ACTOR, Actor
from app.services.loan_lifecycle import TRANSITIONS


def _application(status: S, amount: str = "5000", owner_id=None) -> LoanApplication:
    return LoanApplication(
        id=uuid4(),
        owner_id=owner_id or uuid4(),
        status=status.value,
        amount=Decimal(amount),
        duration_months=12,
        interest_rate=Decimal("10"),
        version=1,
    )


@pytest.mark.parametrize(
    ("amount", "tier"),
    [
        ("0.01", ApprovalTier.LOAN_OFFICER),
        ("9999.99", ApprovalTier.LOAN_OFFICER),
        ("10000", ApprovalTier.FINANCE_DIRECTOR),
        ("10000.00", ApprovalTier.FINANCE_DIRECTOR),
        ("250000", ApprovalTier.FINANCE_DIRECTOR),
    ],
)
def test_required_tier_threshold(amount: str, tier: ApprovalTier) -> None:
    assert approval_router.required_tier(Decimal(amount)) == tier


def test_required_tier_honours_explicit_threshold() -> None:
    assert approval_router.required_tier(Decimal("500"), threshold=Decimal("400")) == ApprovalTier.FINANCE_DIRECTOR
    assert approval_router.pending_status_for(Decimal("15000")) == S.PENDING_FINANCE_DIRECTOR
    assert approval_router.pending_status_for(Decimal("5000")) == S.PENDING_LOAN_OFFICER


def test_policy_only_covers_real_edges() -> None:
    for current, target in approval_router.POLICY:
        assert target in TRANSITIONS[current]
    for current, targets in TRANSITIONS.items():
        for target in targets:
            assert approval_router.allowed_roles(current, target), (current, target)


def test_loan_officer_cannot_approve_finance_director_tier() -> None:
    application = _application(S.PENDING_FINANCE_DIRECTOR, amount="15000")
    officer = Actor(id=uuid4(), role=R.LOAN_OFFICER)

    with pytest.raises(UnauthorizedActor) as exc_info:
        approval_router.authorize(officer, application, S.APPROVED)

    assert exc_info.value.details["allowed_roles"] == ["finance_director"]


def test_managing_director_acts_for_loan_officer_tier() -> None:
    application = _application(S.PENDING_LOAN_OFFICER)
    director = Actor(id=uuid4(), role=R.MANAGING_DIRECTOR)

    approval_router.authorize(director, application, S.APPROVED)

    with pytest.raises(UnauthorizedActor):
        approval_router.authorize(director, _application(S.PENDING_FINANCE_DIRECTOR, "20000"), S.APPROVED)


def test_finance_director_cannot_take_loan_officer_tier() -> None:
    with pytest.raises(UnauthorizedActor):
        approval_router.authorize(
            Actor(id=uuid4(), role=R.FINANCE_DIRECTOR), _application(S.PENDING_LOAN_OFFICER), S.APPROVED
        )


def test_borrower_must_own_the_application() -> None:
    owner = Actor(id=uuid4(), role=R.BORROWER)
    stranger = Actor(id=uuid4(), role=R.BORROWER)
    application = _application(S.KYC_STAGE2_REQUIRED, owner_id=owner.id)

    approval_router.authorize(owner, application, S.SUBMITTED)
    with pytest.raises(UnauthorizedActor):
        approval_router.authorize(stranger, application, S.SUBMITTED)


def test_borrower_cannot_review_or_disburse() -> None:
    borrower = Actor(id=uuid4(), role=R.BORROWER)

    with pytest.raises(UnauthorizedActor):
        approval_router.authorize(borrower, _application(S.SUBMITTED, owner_id=borrower.id), S.UNDER_REVIEW)
    with pytest.raises(UnauthorizedActor):
        approval_router.authorize(borrower, _application(S.APPROVED, owner_id=borrower.id), S.DISBURSED)


def test_system_settles_but_does_not_disburse() -> None:
    approval_router.authorize(SYSTEM_ACTOR, _application(S.DISBURSED), S.COMPLETED)
    approval_router.authorize(SYSTEM_ACTOR, _application(S.UNDER_REVIEW), S.PENDING_LOAN_OFFICER)

    with pytest.raises(UnauthorizedActor):
        approval_router.authorize(SYSTEM_ACTOR, _application(S.APPROVED), S.DISBURSED)


def test_rejecting_out_of_review_is_scoped_to_the_amount_tier() -> None:
    assert approval_router.allowed_roles(S.UNDER_REVIEW, S.REJECTED) == approval_router.POLICY[
        (S.UNDER_REVIEW, S.REJECTED)
    ]
    assert approval_router.allowed_roles(S.UNDER_REVIEW, S.REJECTED, Decimal("15000")) == {R.FINANCE_DIRECTOR}
    assert approval_router.allowed_roles(S.UNDER_REVIEW, S.REJECTED, Decimal("5000")) == {
        R.LOAN_OFFICER,
        R.MANAGING_DIRECTOR,
    }
    assert approval_router.allowed_roles(S.UNDER_REVIEW, S.PENDING_FINANCE_DIRECTOR, Decimal("15000")) == (
        approval_router.POLICY[(S.UNDER_REVIEW, S.PENDING_FINANCE_DIRECTOR)]
    )

    officer = Actor(id=uuid4(), role=R.LOAN_OFFICER)
    with pytest.raises(UnauthorizedActor) as exc_info:
        approval_router.authorize(officer, _application(S.UNDER_REVIEW, amount="15000"), S.REJECTED)
    assert exc_info.value.details["allowed_roles"] == ["finance_director"]
    approval_router.authorize(officer, _application(S.UNDER_REVIEW), S.REJECTED)
