from slowapi import Limiter
from slowapi.util import get_remote_address

from app.core.settings import settings


def actor_or_remote_address(request) -> str:
    """Rate-limit per acting profile when known, else per client address."""
    actor_id = request.headers.get("x-actor-id")
    if actor_id:
        return f"actor:{actor_id}"
    return get_remote_address(request)


limiter = Limiter(
    key_func=actor_or_remote_address,
    default_limits=[f"{settings.rate_limit_per_minute}/minute"],
    storage_uri=settings.rate_limit_storage_uri,
)

__all__ = ["limiter"]
