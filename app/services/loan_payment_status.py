from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from app.models.payment_installment import PaymentInstallment
from app.schemas.loan import InstallmentStatus
from app.services import loan_schedules


@dataclass(frozen=True)
class LoanPaymentStatus:
    next_installment_number: int | None
    next_payment_date: date | None
    next_payment_amount: Decimal | None
    overdue_count: int
    overdue_amount_total: Decimal
    overdue_dates: list[date]
    paid_count: int
    principal_remaining: Decimal
    interest_remaining: Decimal
    total_remaining: Decimal


def _as_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def compute_payment_status(
    installments: list[PaymentInstallment],
    as_of_date: date,
) -> LoanPaymentStatus:
    ordered = sorted(installments, key=lambda item: item.installment_number)

    next_installment = None
    overdue_dates: list[date] = []
    overdue_total = Decimal("0")
    paid_count = 0
    principal_remaining = Decimal("0")
    interest_remaining = Decimal("0")

    for installment in ordered:
        status = loan_schedules.effective_status(installment, as_of_date)
        if status == InstallmentStatus.PAID:
            paid_count += 1
            continue
        principal_remaining += _as_decimal(installment.principal_amount)
        interest_remaining += _as_decimal(installment.interest_amount)
        if next_installment is None:
            next_installment = installment
        if status == InstallmentStatus.OVERDUE:
            overdue_dates.append(installment.due_date)
            overdue_total += _as_decimal(installment.total_amount)

    return LoanPaymentStatus(
        next_installment_number=next_installment.installment_number if next_installment else None,
        next_payment_date=next_installment.due_date if next_installment else None,
        next_payment_amount=_as_decimal(next_installment.total_amount) if next_installment else None,
        overdue_count=len(overdue_dates),
        overdue_amount_total=overdue_total,
        overdue_dates=overdue_dates,
        paid_count=paid_count,
        principal_remaining=principal_remaining,
        interest_remaining=interest_remaining,
        total_remaining=principal_remaining + interest_remaining,
    )
