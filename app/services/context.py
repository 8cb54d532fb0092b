from __future__ import annotations

import asyncio
import weakref
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Hashable
from uuid import UUID

from app.db.base import utcnow
from app.models.profile import Profile
from app.schemas.profile import ProfileRole
from app.services.audit import LedgerRecorder
from app.services.clients import CreditScoreProvider, DocumentVerifier, RiskScorer
from app.services.notifications import Notifier
from app.services.store.adapter import EntityStore


@dataclass(frozen=True)
class Actor:
    """Who performs an operation. Always passed explicitly."""

    id: UUID | None
    role: ProfileRole

    @classmethod
    def from_profile(cls, profile: Profile) -> "Actor":
        return cls(id=profile.id, role=ProfileRole(profile.role))

    @property
    def is_system(self) -> bool:
        return self.role == ProfileRole.SYSTEM


SYSTEM_ACTOR = Actor(id=None, role=ProfileRole.SYSTEM)


class EntityLocks:
    """In-process lock per entity id.

    Locks are held weakly so idle entities do not accumulate entries.
    """

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[Hashable, asyncio.Lock] = weakref.WeakValueDictionary()

    def for_entity(self, entity_id: Hashable) -> asyncio.Lock:
        lock = self._locks.get(entity_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[entity_id] = lock
        return lock


@dataclass
class EngineContext:
    store: EntityStore
    ledger: LedgerRecorder
    notifier: Notifier
    document_verifier: DocumentVerifier | None = None
    risk_scorer: RiskScorer | None = None
    credit_scores: CreditScoreProvider | None = None
    locks: EntityLocks = field(default_factory=EntityLocks)
    clock: Callable[[], datetime] = utcnow

    def now(self) -> datetime:
        return self.clock()
