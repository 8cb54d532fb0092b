from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable, Protocol
from uuid import UUID

from fastapi.encoders import jsonable_encoder

from app.core.logging import get_audit_logger
from app.core.settings import settings
from app.db.base import utcnow
from app.models.audit_log import AuditLog
from app.services.store.adapter import EntityStore


logger = logging.getLogger(__name__)
audit_logger = get_audit_logger()


def serialize_for_audit(value: Any) -> Any:
    return jsonable_encoder(
        value,
        custom_encoder={
            Decimal: lambda v: str(v),
            datetime: lambda v: v.isoformat(),
            date: lambda v: v.isoformat(),
            UUID: lambda v: str(v),
        },
    )


def model_snapshot(model: Any, *, exclude: Iterable[str] | None = None) -> dict[str, Any]:
    if model is None:
        return {}
    excluded = set(exclude or [])
    data: dict[str, Any] = {}
    for column in model.__table__.columns:
        name = column.name
        if name in excluded:
            continue
        data[name] = getattr(model, name)
    return serialize_for_audit(data)


@dataclass(frozen=True)
class LedgerEvent:
    event_type: str
    loan_application_id: UUID | None
    actor_id: UUID | None
    from_status: str | None = None
    to_status: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=utcnow)


class LedgerRecorder(Protocol):
    async def record(self, event: LedgerEvent) -> None: ...


class StoreLedgerRecorder:
    """Persists ledger events as ``AuditLog`` rows."""

    def __init__(self, store: EntityStore) -> None:
        self._store = store

    async def record(self, event: LedgerEvent) -> None:
        await self._store.create(
            AuditLog(
                event_type=event.event_type,
                loan_application_id=event.loan_application_id,
                actor_id=event.actor_id,
                from_status=event.from_status,
                to_status=event.to_status,
                details=serialize_for_audit(event.details),
                occurred_at=event.occurred_at,
            )
        )


async def emit_ledger_event(
    recorder: LedgerRecorder,
    event: LedgerEvent,
    *,
    attempts: int | None = None,
) -> bool:
    """Record ``event``, retrying locally; a failure is logged and never raised.

    Returns ``True`` when the recorder accepted the event.
    """
    max_attempts = max(1, attempts or settings.audit_retry_attempts)
    extra = {
        "application_id": event.loan_application_id,
        "event_type": event.event_type,
        "from_status": event.from_status,
        "to_status": event.to_status,
    }
    for attempt in range(1, max_attempts + 1):
        try:
            await recorder.record(event)
        except Exception:
            logger.warning(
                "Ledger write failed event=%s attempt=%s/%s",
                event.event_type,
                attempt,
                max_attempts,
                exc_info=True,
                extra=extra,
            )
            if attempt < max_attempts:
                await asyncio.sleep(0.05 * attempt)
            continue
        audit_logger.info(
            "%s %s->%s",
            event.event_type,
            event.from_status,
            event.to_status,
            extra=extra,
        )
        return True
    logger.error(
        "Ledger event dropped event=%s from=%s to=%s details=%s",
        event.event_type,
        event.from_status,
        event.to_status,
        serialize_for_audit(event.details),
        extra=extra,
    )
    return False
