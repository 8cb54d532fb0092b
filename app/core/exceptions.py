from __future__ import annotations

from dataclasses import dataclass, field
from typing import ClassVar


@dataclass(frozen=True, eq=False)
class LoanEngineError(Exception):
    """Base for every failure surfaced by the loan engine.

    ``code`` is a stable machine identifier, ``message`` is safe to show to a
    user, and ``details`` carries the context needed to render it (current and
    requested status, failing gate, and so on).
    """

    message: str
    details: dict = field(default_factory=dict)

    code: ClassVar[str] = "loan_engine_error"
    http_status: ClassVar[int] = 400
    retryable: ClassVar[bool] = False

    def __str__(self) -> str:
        return self.message


class InvalidTransition(LoanEngineError):
    """Requested status is not a direct successor of the current status."""

    code = "invalid_transition"
    http_status = 409


class UnauthorizedActor(LoanEngineError):
    """Actor role or tier does not match the authority for the current status."""

    code = "unauthorized_actor"
    http_status = 403


class GatePending(LoanEngineError):
    """A KYC or risk precondition is not satisfied yet; retry later."""

    code = "gate_pending"
    http_status = 423
    retryable = True


class GateRejected(LoanEngineError):
    """A KYC or risk precondition failed permanently."""

    code = "gate_rejected"
    http_status = 422


class ConflictingUpdate(LoanEngineError):
    """Another writer changed the entity first; re-read and retry."""

    code = "conflicting_update"
    http_status = 409
    retryable = True


class ScheduleGenerationFailure(LoanEngineError):
    """Amortization inputs or outputs violate a schedule invariant."""

    code = "schedule_generation_failure"
    http_status = 422


class EntityNotFound(LoanEngineError):
    code = "not_found"
    http_status = 404


class ApplicationValidationError(LoanEngineError):
    code = "validation_error"
    http_status = 422


class InvalidDocumentReview(LoanEngineError):
    code = "invalid_document_review"
    http_status = 409


class InvalidPayment(LoanEngineError):
    code = "invalid_payment"
    http_status = 422
