from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import text

from app.core.settings import settings
from app.db.session import engine

APP_VERSION = "0.1.0"
SERVICE_NAME = "loan-engine"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


async def _check_db() -> dict[str, str]:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as exc:  # pragma: no cover - needs a live database
        return {"status": "error", "error": str(exc)}
    return {"status": "ok"}


def _check_collaborators() -> dict[str, Any]:
    """Configuration check only; remote services are never called from a health check."""
    endpoints = {
        "document_verification": settings.document_verification_url,
        "risk_scoring": settings.risk_scoring_url,
        "credit_score": settings.credit_score_url,
    }
    missing = sorted(name for name, url in endpoints.items() if not (url or "").strip())
    result: dict[str, Any] = {
        "status": "error" if missing else "ok",
        "timeout_seconds": settings.external_call_timeout_seconds,
    }
    if missing:
        result["missing"] = missing
    return result


async def _gather_checks() -> dict[str, dict[str, Any]]:
    return {
        "api": {"status": "ok", "service": SERVICE_NAME, "version": APP_VERSION},
        "database": await _check_db(),
        "collaborators": _check_collaborators(),
    }


def _rollup(checks: dict[str, dict[str, Any]]) -> dict[str, Any]:
    ready = all(check.get("status") == "ok" for check in checks.values())
    return {"status": "ok" if ready else "degraded", "ready": ready}


async def live_payload() -> dict[str, str]:
    return {"status": "ok", "timestamp": _now()}


async def ready_payload() -> dict[str, Any]:
    checks = await _gather_checks()
    return {
        **_rollup(checks),
        "environment": settings.environment,
        "timestamp": _now(),
        "checks": checks,
    }


async def status_summary_payload() -> dict[str, Any]:
    payload = await ready_payload()
    payload.update(
        version=APP_VERSION,
        approval_threshold_amount=str(settings.approval_threshold_amount),
        risk_manual_review_score=settings.risk_manual_review_score,
        max_term_months=settings.max_term_months,
    )
    return payload
