from functools import lru_cache
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status

from app.core.context import set_actor_id
from app.models.profile import Profile
from app.services.audit import StoreLedgerRecorder
from app.services.clients import HttpCreditScoreProvider, HttpDocumentVerifier, HttpRiskScorer
from app.services.context import Actor, EngineContext
from app.services.notifications import StoreNotifier
from app.services.store.service import get_entity_store


@lru_cache(maxsize=1)
def _build_engine_context() -> EngineContext:
    store = get_entity_store()
    return EngineContext(
        store=store,
        ledger=StoreLedgerRecorder(store),
        notifier=StoreNotifier(store),
        document_verifier=HttpDocumentVerifier(),
        risk_scorer=HttpRiskScorer(),
        credit_scores=HttpCreditScoreProvider(),
    )


def get_engine_context() -> EngineContext:
    """One context per process so per-application locks are shared across requests."""
    return _build_engine_context()


async def get_current_profile(
    actor_id: str | None = Header(default=None, alias="X-Actor-ID"),
    ctx: EngineContext = Depends(get_engine_context),
) -> Profile:
    if not actor_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "actor_required", "message": "X-Actor-ID header is required"},
        )
    try:
        profile_id = UUID(actor_id)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "invalid_actor", "message": "X-Actor-ID must be a UUID"},
        ) from exc
    profile = await ctx.store.get(Profile, profile_id)
    if profile is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "unknown_actor", "message": "Acting profile not found"},
        )
    set_actor_id(str(profile.id))
    return profile


async def get_current_actor(profile: Profile = Depends(get_current_profile)) -> Actor:
    return Actor.from_profile(profile)
