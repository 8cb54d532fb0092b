from __future__ import annotations

import asyncio
import logging
from uuid import UUID

from app.core.exceptions import GatePending
from app.core.settings import settings
from app.models.profile import Profile
from app.services.context import EngineContext


logger = logging.getLogger(__name__)

MIN_CREDIT_SCORE = 300
MAX_CREDIT_SCORE = 850


async def get_credit_score(ctx: EngineContext, borrower_id: UUID) -> int:
    """Return the borrower's credit score, fetching it once and caching it on the profile."""
    profile = await ctx.store.get_or_raise(Profile, borrower_id)
    if profile.credit_score is not None:
        return profile.credit_score

    details = {"gate": "credit_score", "borrower_id": str(borrower_id)}
    if ctx.credit_scores is None:
        raise GatePending(message="Credit score service is not configured", details=details)
    try:
        score = await asyncio.wait_for(
            ctx.credit_scores.fetch(borrower_id), timeout=settings.external_call_timeout_seconds
        )
    except asyncio.TimeoutError as exc:
        raise GatePending(message="Credit score service timed out", details=details) from exc
    except Exception as exc:
        logger.warning("Credit score fetch failed borrower=%s", borrower_id, exc_info=True)
        raise GatePending(message="Credit score service is unavailable", details=details) from exc

    if not MIN_CREDIT_SCORE <= score <= MAX_CREDIT_SCORE:
        raise GatePending(
            message="Credit score service returned an out-of-range score",
            details={**details, "score": score},
        )

    profile.credit_score = score
    profile.credit_score_fetched_at = ctx.now()
    await ctx.store.update(profile)
    logger.info("Cached credit score for borrower=%s", borrower_id)
    return score
