from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from app.core.exceptions import ScheduleGenerationFailure
from app.models.loan_application import LoanApplication
from app.schemas.loan import InstallmentStatus
from app.services import loan_schedules
from app.services.loan_payment_status import compute_payment_status


def _application(amount="5000", rate="12", months=12, **overrides) -> LoanApplication:
    values = dict(
        id=uuid4(),
        owner_id=uuid4(),
        amount=Decimal(amount),
        interest_rate=Decimal(rate),
        duration_months=months,
        status="approved",
        version=1,
    )
    values.update(overrides)
    return LoanApplication(**values)


def test_five_thousand_at_twelve_percent_over_a_year() -> None:
    schedule = loan_schedules.build_schedule_from_terms(
        principal=Decimal("5000"),
        annual_rate=Decimal("12"),
        term_months=12,
        start_date=date(2026, 1, 1),
    )

    assert loan_schedules.to_cents(schedule.monthly_installment) == Decimal("444.24")
    first = schedule.entries[0]
    assert loan_schedules.to_cents(first.interest) == Decimal("50.00")
    assert loan_schedules.to_cents(first.principal) == Decimal("394.24")
    assert loan_schedules.to_cents(schedule.total_interest) == Decimal("330.93")
    assert schedule.entries[-1].remaining_balance == 0
    assert sum(entry.principal for entry in schedule.entries) == Decimal("5000")


@pytest.mark.parametrize("months", [1, 2, 7, 12, 36, 61, 120, 240, 359, 360])
@pytest.mark.parametrize("rate", ["0", "3.5", "12", "29.99"])
def test_schedule_amortizes_exactly(months: int, rate: str) -> None:
    principal = Decimal("123456.78")
    schedule = loan_schedules.build_schedule_from_terms(
        principal=principal,
        annual_rate=Decimal(rate),
        term_months=months,
        start_date=date(2026, 3, 31),
    )

    entries = schedule.entries
    assert [entry.period for entry in entries] == list(range(1, months + 1))
    assert sum(entry.principal for entry in entries) == principal
    assert entries[-1].remaining_balance == 0
    for entry in entries:
        assert entry.payment == entry.principal + entry.interest
        assert entry.principal >= 0
    for entry in entries[:-1]:
        assert entry.payment == schedule.monthly_installment
    assert abs(entries[-1].payment - schedule.monthly_installment) < Decimal("0.01")
    balances = [entry.remaining_balance for entry in entries]
    assert balances == sorted(balances, reverse=True)


def test_zero_rate_splits_principal_evenly() -> None:
    schedule = loan_schedules.build_schedule_from_terms(
        principal=Decimal("1000"),
        annual_rate=Decimal("0"),
        term_months=3,
        start_date=date(2026, 1, 1),
    )

    assert [entry.interest for entry in schedule.entries] == [0, 0, 0]
    assert schedule.entries[0].principal == Decimal("333.3333333333")
    assert schedule.entries[-1].principal == Decimal("333.3333333334")
    assert schedule.total_interest == 0


def test_due_dates_clamp_to_month_end() -> None:
    schedule = loan_schedules.build_schedule_from_terms(
        principal=Decimal("1200"),
        annual_rate=Decimal("6"),
        term_months=3,
        start_date=date(2026, 1, 31),
    )

    assert [entry.due_date for entry in schedule.entries] == [
        date(2026, 2, 28),
        date(2026, 3, 31),
        date(2026, 4, 30),
    ]


@pytest.mark.parametrize(
    ("principal", "rate", "months"),
    [
        (Decimal("0"), Decimal("5"), 12),
        (Decimal("-10"), Decimal("5"), 12),
        (Decimal("1000"), Decimal("-1"), 12),
        (Decimal("1000"), Decimal("5"), 0),
        (Decimal("1000"), Decimal("5"), 361),
    ],
)
def test_invalid_terms_are_refused(principal, rate, months) -> None:
    with pytest.raises(ScheduleGenerationFailure):
        loan_schedules.build_schedule_from_terms(
            principal=principal,
            annual_rate=rate,
            term_months=months,
            start_date=date(2026, 1, 1),
        )


def test_build_schedule_requires_a_start_before_disbursement() -> None:
    application = _application(disbursed_at=None)

    with pytest.raises(ScheduleGenerationFailure):
        loan_schedules.build_schedule(application)

    preview = loan_schedules.build_schedule(application, start_date=date(2026, 5, 1))
    assert preview.loan_id == application.id
    assert preview.entries[0].due_date == date(2026, 6, 1)


def test_generate_installments_builds_pending_rows() -> None:
    application = _application()

    installments = loan_schedules.generate_installments(application, date(2026, 2, 1))

    assert len(installments) == 12
    assert {item.loan_application_id for item in installments} == {application.id}
    assert {item.status for item in installments} == {InstallmentStatus.PENDING.value}
    assert installments[0].due_date == date(2026, 3, 1)
    assert sum(item.principal_amount for item in installments) == Decimal("5000")


def test_overdue_is_derived_from_due_date() -> None:
    installment = loan_schedules.generate_installments(_application(), date(2026, 2, 1))[0]

    assert loan_schedules.effective_status(installment, date(2026, 3, 1)) == InstallmentStatus.PENDING
    assert loan_schedules.effective_status(installment, date(2026, 3, 2)) == InstallmentStatus.OVERDUE
    installment.status = InstallmentStatus.PAID.value
    assert loan_schedules.effective_status(installment, date(2026, 9, 1)) == InstallmentStatus.PAID


def test_payment_status_summarizes_progress() -> None:
    installments = loan_schedules.generate_installments(_application(), date(2026, 2, 1))
    installments[0].status = InstallmentStatus.PAID.value
    installments[0].paid_date = date(2026, 3, 1)

    summary = compute_payment_status(installments, date(2026, 4, 15))

    assert summary.paid_count == 1
    assert summary.next_installment_number == 2
    assert summary.next_payment_date == date(2026, 4, 1)
    assert summary.overdue_count == 1
    assert summary.overdue_dates == [date(2026, 4, 1)]
    assert summary.overdue_amount_total == installments[1].total_amount
    unpaid = installments[1:]
    assert summary.principal_remaining == sum(item.principal_amount for item in unpaid)
    assert summary.total_remaining == summary.principal_remaining + summary.interest_remaining


def test_payment_status_when_everything_is_paid() -> None:
    installments = loan_schedules.generate_installments(_application(months=2), date(2026, 2, 1))
    for item in installments:
        item.status = InstallmentStatus.PAID.value

    summary = compute_payment_status(installments, date(2027, 1, 1))

    assert summary.next_installment_number is None
    assert summary.next_payment_amount is None
    assert summary.overdue_count == 0
    assert summary.total_remaining == 0
