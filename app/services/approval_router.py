from __future__ import annotations

from decimal import Decimal

from app.core.exceptions import UnauthorizedActor
from app.core.settings import settings
from app.models.loan_application import LoanApplication
from app.schemas.loan import ApprovalTier, LoanApplicationStatus as S
from app.schemas.profile import ProfileRole as R
from app.services.context import Actor


TIER_PENDING_STATUS: dict[ApprovalTier, S] = {
    ApprovalTier.LOAN_OFFICER: S.PENDING_LOAN_OFFICER,
    ApprovalTier.FINANCE_DIRECTOR: S.PENDING_FINANCE_DIRECTOR,
}

# Roles that act for each tier. Managing directors sit in the loan officer tier.
TIER_ROLES: dict[ApprovalTier, frozenset[R]] = {
    ApprovalTier.LOAN_OFFICER: frozenset({R.LOAN_OFFICER, R.MANAGING_DIRECTOR}),
    ApprovalTier.FINANCE_DIRECTOR: frozenset({R.FINANCE_DIRECTOR}),
}

_BORROWER = frozenset({R.BORROWER})
_REVIEWERS = frozenset({R.LOAN_OFFICER, R.MANAGING_DIRECTOR, R.FINANCE_DIRECTOR, R.SYSTEM})
_DISBURSERS = frozenset({R.FINANCE_DIRECTOR, R.ADMIN})
_SETTLEMENT = frozenset({R.SYSTEM, R.ADMIN})

# The one place deciding who may move an application out of a status.
POLICY: dict[tuple[S, S], frozenset[R]] = {
    (S.DRAFT, S.KYC_STAGE2_REQUIRED): _BORROWER,
    (S.KYC_STAGE2_REQUIRED, S.SUBMITTED): _BORROWER,
    (S.REJECTED, S.SUBMITTED): _BORROWER,
    (S.SUBMITTED, S.UNDER_REVIEW): _REVIEWERS,
    (S.UNDER_REVIEW, S.PENDING_LOAN_OFFICER): _REVIEWERS,
    (S.UNDER_REVIEW, S.PENDING_FINANCE_DIRECTOR): _REVIEWERS,
    (S.UNDER_REVIEW, S.REJECTED): _REVIEWERS,
    (S.PENDING_LOAN_OFFICER, S.APPROVED): TIER_ROLES[ApprovalTier.LOAN_OFFICER],
    (S.PENDING_LOAN_OFFICER, S.REJECTED): TIER_ROLES[ApprovalTier.LOAN_OFFICER],
    (S.PENDING_FINANCE_DIRECTOR, S.APPROVED): TIER_ROLES[ApprovalTier.FINANCE_DIRECTOR],
    (S.PENDING_FINANCE_DIRECTOR, S.REJECTED): TIER_ROLES[ApprovalTier.FINANCE_DIRECTOR],
    (S.APPROVED, S.DISBURSED): _DISBURSERS,
    (S.DISBURSED, S.COMPLETED): _SETTLEMENT,
    (S.DISBURSED, S.DEFAULTED): _DISBURSERS,
}

# Rejecting straight out of review takes the authority of the tier the amount needs.
TIER_SCOPED = frozenset({(S.UNDER_REVIEW, S.REJECTED)})


def required_tier(amount, threshold: Decimal | None = None) -> ApprovalTier:
    limit = settings.approval_threshold_amount if threshold is None else threshold
    value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    if value < limit:
        return ApprovalTier.LOAN_OFFICER
    return ApprovalTier.FINANCE_DIRECTOR


def pending_status_for(amount) -> S:
    return TIER_PENDING_STATUS[required_tier(amount)]


def tier_roles(amount) -> frozenset[R]:
    return TIER_ROLES[required_tier(amount)]


def allowed_roles(current: S, target: S, amount=None) -> frozenset[R]:
    """Roles for an edge; with ``amount``, tier-scoped edges narrow to that tier."""
    key = (S(current), S(target))
    if amount is not None and key in TIER_SCOPED:
        return tier_roles(amount)
    return POLICY.get(key, frozenset())


def authorize(actor: Actor, application: LoanApplication, target: S) -> None:
    current = S(application.status)
    target = S(target)
    roles = allowed_roles(current, target, application.amount)
    details = {
        "current_status": current.value,
        "requested_status": target.value,
        "actor_role": actor.role.value,
        "allowed_roles": sorted(role.value for role in roles),
    }
    if actor.role not in roles:
        raise UnauthorizedActor(
            message=f"Role {actor.role.value} cannot move an application from {current.value} to {target.value}",
            details=details,
        )
    if actor.role == R.BORROWER and actor.id != application.owner_id:
        raise UnauthorizedActor(
            message="Borrowers may only act on their own applications",
            details=details,
        )
