from functools import lru_cache

from app.db.session import AsyncSessionLocal
from app.services.store.adapter import EntityStore, SqlAlchemyEntityStore


@lru_cache(maxsize=1)
def get_entity_store() -> EntityStore:
    return SqlAlchemyEntityStore(AsyncSessionLocal)
