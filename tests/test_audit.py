from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from conftest import FakeLedger
from app.models.audit_log import AuditLog
from app.models.notification import Notification
from app.schemas.loan import LoanApplicationStatus
from app.services.audit import LedgerEvent, StoreLedgerRecorder, emit_ledger_event, serialize_for_audit
from app.services.notifications import StoreNotifier, notify_status_change
from app.services.store.adapter import InMemoryEntityStore


def test_serialize_for_audit_handles_money_and_dates() -> None:
    application_id = uuid4()

    payload = serialize_for_audit(
        {"amount": Decimal("444.2438787960"), "due": date(2026, 3, 1), "id": application_id}
    )

    assert payload == {"amount": "444.2438787960", "due": "2026-03-01", "id": str(application_id)}


@pytest.mark.asyncio
async def test_emit_retries_until_recorded() -> None:
    ledger = FakeLedger(failures=1)
    event = LedgerEvent(event_type="loan_application.transition", loan_application_id=uuid4(), actor_id=None)

    assert await emit_ledger_event(ledger, event, attempts=3) is True
    assert ledger.calls == 2
    assert ledger.events == [event]


@pytest.mark.asyncio
async def test_emit_gives_up_without_raising() -> None:
    ledger = FakeLedger(failures=5)
    event = LedgerEvent(event_type="installment.paid", loan_application_id=uuid4(), actor_id=None)

    assert await emit_ledger_event(ledger, event, attempts=2) is False
    assert ledger.events == []


@pytest.mark.asyncio
async def test_store_ledger_recorder_writes_audit_rows() -> None:
    store = InMemoryEntityStore()
    application_id = uuid4()
    recorder = StoreLedgerRecorder(store)

    await recorder.record(
        LedgerEvent(
            event_type="loan_application.transition",
            loan_application_id=application_id,
            actor_id=None,
            from_status="approved",
            to_status="disbursed",
            details={"amount": Decimal("5000")},
        )
    )

    rows = await store.list(AuditLog, loan_application_id=application_id)
    assert len(rows) == 1
    assert rows[0].to_status == "disbursed"
    assert rows[0].details == {"amount": "5000"}


@pytest.mark.asyncio
async def test_status_notification_includes_rejection_reason() -> None:
    store = InMemoryEntityStore()
    user_id = uuid4()

    sent = await notify_status_change(
        StoreNotifier(store), user_id, LoanApplicationStatus.REJECTED, reason="Income too low"
    )

    assert sent is True
    rows = await store.list(Notification, user_id=user_id)
    assert rows[0].title == "Application rejected"
    assert rows[0].message.endswith("Reason: Income too low")
    assert rows[0].notification_type == "application_status"
    assert rows[0].read is False
