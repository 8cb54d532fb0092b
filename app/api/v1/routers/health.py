from fastapi import APIRouter

from app.core import health
from app.core.limiter import limiter

router = APIRouter(tags=["health"])


@router.get("/health/live", summary="Process is up")
@limiter.exempt
async def health_live() -> dict:
    return await health.live_payload()


@router.get("/health/ready", summary="Database and collaborator configuration are usable")
@router.get("/health", include_in_schema=False)
@limiter.exempt
async def health_ready() -> dict:
    return await health.ready_payload()


@router.get("/status/summary", tags=["status"], summary="Readiness plus the active lending policy")
@limiter.exempt
async def status_summary() -> dict:
    return await health.status_summary_payload()
