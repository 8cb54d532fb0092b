from __future__ import annotations

import calendar
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, localcontext

from app.core.exceptions import ScheduleGenerationFailure
from app.core.settings import settings
from app.models.loan_application import LoanApplication
from app.models.payment_installment import PaymentInstallment
from app.schemas.loan import InstallmentStatus, LoanScheduleEntry, LoanScheduleResponse


# Ten fractional digits keep the compounding drift over a 360-month term far
# below one cent; presentation rounds to cents.
SCHEDULE_QUANTUM = Decimal("0.0000000001")
TWOPLACES = Decimal("0.01")
ZERO = Decimal("0")


def _as_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _q(value: Decimal) -> Decimal:
    return value.quantize(SCHEDULE_QUANTUM, rounding=ROUND_HALF_UP)


def to_cents(value) -> Decimal:
    return _as_decimal(value).quantize(TWOPLACES, rounding=ROUND_HALF_UP)


def _monthly_rate(annual_rate_percent: Decimal) -> Decimal:
    return annual_rate_percent / Decimal("1200")


def _add_months(start: date, months: int) -> date:
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def validate_terms(principal, annual_rate_percent, term_months, *, max_term_months: int | None = None) -> None:
    max_term = max_term_months or settings.max_term_months
    details = {
        "principal": str(principal),
        "annual_rate_percent": str(annual_rate_percent),
        "term_months": term_months,
    }
    if principal is None or _as_decimal(principal) <= 0:
        raise ScheduleGenerationFailure(message="Principal must be positive", details=details)
    if annual_rate_percent is None or _as_decimal(annual_rate_percent) < 0:
        raise ScheduleGenerationFailure(message="Interest rate cannot be negative", details=details)
    if term_months is None or int(term_months) < 1:
        raise ScheduleGenerationFailure(message="Term must be at least one month", details=details)
    if int(term_months) > max_term:
        raise ScheduleGenerationFailure(
            message=f"Term cannot exceed {max_term} months",
            details={**details, "max_term_months": max_term},
        )


def monthly_installment(principal, annual_rate_percent, term_months: int) -> Decimal:
    validate_terms(principal, annual_rate_percent, term_months)
    principal = _as_decimal(principal)
    rate = _monthly_rate(_as_decimal(annual_rate_percent))
    with localcontext() as ctx:
        ctx.prec = 50
        if rate == 0:
            return _q(principal / Decimal(term_months))
        factor = (Decimal("1") + rate) ** term_months
        return _q(principal * rate * factor / (factor - Decimal("1")))


def build_schedule_from_terms(
    *,
    principal,
    annual_rate,
    term_months: int,
    start_date: date,
    loan_id=None,
) -> LoanScheduleResponse:
    principal = _q(_as_decimal(principal))
    annual_rate = _as_decimal(annual_rate)
    payment = monthly_installment(principal, annual_rate, term_months)
    rate = _monthly_rate(annual_rate)

    balance = principal
    entries: list[LoanScheduleEntry] = []
    total_interest = ZERO
    with localcontext() as ctx:
        ctx.prec = 50
        for period in range(1, term_months + 1):
            interest = _q(balance * rate)
            principal_payment = payment - interest
            row_payment = payment
            if period == term_months:
                principal_payment = balance
                row_payment = principal_payment + interest
            if principal_payment < 0:
                raise ScheduleGenerationFailure(
                    message="Installment does not cover accrued interest",
                    details={"period": period, "interest": str(interest), "payment": str(payment)},
                )
            balance = balance - principal_payment
            total_interest += interest
            entries.append(
                LoanScheduleEntry(
                    period=period,
                    due_date=_add_months(start_date, period),
                    payment=row_payment,
                    principal=principal_payment,
                    interest=interest,
                    remaining_balance=balance,
                )
            )

    return LoanScheduleResponse(
        loan_id=loan_id,
        start_date=start_date,
        term_months=term_months,
        principal=principal,
        annual_rate_percent=annual_rate,
        monthly_installment=payment,
        total_interest=total_interest,
        total_payable=principal + total_interest,
        entries=entries,
    )


def _start_date(application: LoanApplication, start_date: date | None) -> date:
    if start_date is not None:
        return start_date
    disbursed_at = application.disbursed_at
    if isinstance(disbursed_at, datetime):
        return disbursed_at.date()
    if isinstance(disbursed_at, date):
        return disbursed_at
    raise ScheduleGenerationFailure(
        message="Schedule start date is unknown until the loan is disbursed",
        details={"loan_id": str(application.id)},
    )


def build_schedule(application: LoanApplication, start_date: date | None = None) -> LoanScheduleResponse:
    return build_schedule_from_terms(
        loan_id=application.id,
        principal=application.amount,
        annual_rate=application.interest_rate,
        term_months=int(application.duration_months or 0),
        start_date=_start_date(application, start_date),
    )


def _check_schedule(schedule: LoanScheduleResponse) -> None:
    entries = schedule.entries
    numbers = [entry.period for entry in entries]
    if numbers != list(range(1, schedule.term_months + 1)):
        raise ScheduleGenerationFailure(
            message="Installment numbers must be contiguous from 1",
            details={"loan_id": str(schedule.loan_id), "count": len(entries)},
        )
    principal_total = sum((entry.principal for entry in entries), ZERO)
    if principal_total != schedule.principal or entries[-1].remaining_balance != 0:
        raise ScheduleGenerationFailure(
            message="Installment principal does not amortize the loan exactly",
            details={
                "loan_id": str(schedule.loan_id),
                "principal": str(schedule.principal),
                "principal_total": str(principal_total),
            },
        )


def generate_installments(application: LoanApplication, disbursement_date: date) -> list[PaymentInstallment]:
    """Build the full repayment plan for a loan about to be disbursed.

    Nothing is persisted here. The caller writes the returned rows as one
    batch, so a failure in this function leaves no partial schedule behind.
    """
    schedule = build_schedule(application, start_date=disbursement_date)
    _check_schedule(schedule)
    return [
        PaymentInstallment(
            loan_application_id=application.id,
            installment_number=entry.period,
            due_date=entry.due_date,
            principal_amount=entry.principal,
            interest_amount=entry.interest,
            total_amount=entry.payment,
            status=InstallmentStatus.PENDING.value,
        )
        for entry in schedule.entries
    ]


def is_overdue(installment: PaymentInstallment, as_of: date) -> bool:
    return installment.status == InstallmentStatus.PENDING.value and as_of > installment.due_date


def effective_status(installment: PaymentInstallment, as_of: date) -> InstallmentStatus:
    if is_overdue(installment, as_of):
        return InstallmentStatus.OVERDUE
    return InstallmentStatus(installment.status)
