from __future__ import annotations

import logging
from typing import Protocol
from uuid import UUID

from app.models.notification import Notification
from app.schemas.loan import LoanApplicationStatus
from app.services.store.adapter import EntityStore


logger = logging.getLogger(__name__)


STATUS_MESSAGES: dict[LoanApplicationStatus, tuple[str, str]] = {
    LoanApplicationStatus.KYC_STAGE2_REQUIRED: (
        "Income verification required",
        "Upload proof of income and proof of funds to continue your application.",
    ),
    LoanApplicationStatus.SUBMITTED: (
        "Application submitted",
        "Your loan application has been submitted for review.",
    ),
    LoanApplicationStatus.UNDER_REVIEW: (
        "Application under review",
        "Your loan application is being reviewed.",
    ),
    LoanApplicationStatus.PENDING_LOAN_OFFICER: (
        "Awaiting loan officer approval",
        "Your application is waiting for a loan officer decision.",
    ),
    LoanApplicationStatus.PENDING_FINANCE_DIRECTOR: (
        "Awaiting finance director approval",
        "Your application is waiting for a finance director decision.",
    ),
    LoanApplicationStatus.APPROVED: (
        "Application approved",
        "Your loan application has been approved.",
    ),
    LoanApplicationStatus.REJECTED: (
        "Application rejected",
        "Your loan application was rejected.",
    ),
    LoanApplicationStatus.DISBURSED: (
        "Loan disbursed",
        "Your loan has been disbursed. Your repayment schedule is now available.",
    ),
    LoanApplicationStatus.COMPLETED: (
        "Loan completed",
        "All installments have been paid. Your loan is complete.",
    ),
    LoanApplicationStatus.DEFAULTED: (
        "Loan defaulted",
        "Your loan has been marked as defaulted.",
    ),
}


class Notifier(Protocol):
    async def notify(self, user_id: UUID, title: str, message: str, notification_type: str) -> None: ...


class StoreNotifier:
    def __init__(self, store: EntityStore) -> None:
        self._store = store

    async def notify(self, user_id: UUID, title: str, message: str, notification_type: str) -> None:
        await self._store.create(
            Notification(
                user_id=user_id,
                notification_type=notification_type,
                title=title,
                message=message,
                read=False,
            )
        )


async def notify_best_effort(
    notifier: Notifier,
    user_id: UUID,
    title: str,
    message: str,
    notification_type: str = "system",
) -> bool:
    try:
        await notifier.notify(user_id, title, message, notification_type)
    except Exception:
        logger.warning("Notification to user=%s failed title=%s", user_id, title, exc_info=True)
        return False
    return True


async def notify_status_change(
    notifier: Notifier,
    user_id: UUID,
    status: LoanApplicationStatus,
    *,
    reason: str | None = None,
) -> bool:
    title, message = STATUS_MESSAGES.get(
        status, ("Application updated", f"Your application is now {status.value}.")
    )
    if status == LoanApplicationStatus.REJECTED and reason:
        message = f"{message} Reason: {reason}"
    return await notify_best_effort(notifier, user_id, title, message, "application_status")
