from __future__ import annotations

import asyncio
import copy
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Any, Iterable, TypeVar

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.exceptions import ConflictingUpdate, EntityNotFound
from app.db.base import utcnow
from app.models.profile import Profile

EntityT = TypeVar("EntityT")

# Columns the store maintains itself on update.
_MANAGED_ON_UPDATE = {"id", "created_at", "updated_at", "version"}


def _column_keys(model: type) -> list[str]:
    return [column.key for column in model.__table__.columns]


def entity_values(entity: Any) -> dict[str, Any]:
    return {key: getattr(entity, key) for key in _column_keys(type(entity))}


def _apply_column_defaults(entity: Any) -> None:
    for column in type(entity).__table__.columns:
        if getattr(entity, column.key) is not None or column.default is None:
            continue
        default = column.default
        value = default.arg(None) if default.is_callable else default.arg
        setattr(entity, column.key, value)


def _conflict(entity: Any, expected_version: int, actual_version: int | None) -> ConflictingUpdate:
    return ConflictingUpdate(
        message=(
            f"{type(entity).__name__} was updated by another request. "
            "Refresh and retry."
        ),
        details={
            "entity": type(entity).__name__,
            "id": str(entity.id),
            "expected_version": expected_version,
            "actual_version": actual_version,
        },
    )


class EntityStore(ABC):
    """CRUD contract the loan engine needs from persistence.

    Only per-entity atomic writes are assumed. ``update`` with an
    ``expected_version`` is a compare-and-swap on the ``version`` column and
    raises ``ConflictingUpdate`` when another writer got there first.
    ``create_batch`` is all-or-nothing.
    """

    @abstractmethod
    async def get(self, model: type[EntityT], entity_id: Any) -> EntityT | None:
        pass

    @abstractmethod
    async def create(self, entity: EntityT) -> EntityT:
        pass

    @abstractmethod
    async def update(self, entity: EntityT, *, expected_version: int | None = None) -> EntityT:
        pass

    @abstractmethod
    async def list(self, model: type[EntityT], **filters: Any) -> list[EntityT]:
        pass

    @abstractmethod
    async def create_batch(self, entities: Iterable[Any]) -> list[Any]:
        pass

    @abstractmethod
    async def delete_batch(self, entities: Iterable[Any]) -> None:
        pass

    async def get_or_raise(self, model: type[EntityT], entity_id: Any) -> EntityT:
        entity = await self.get(model, entity_id)
        if entity is None:
            raise EntityNotFound(
                message=f"{model.__name__} not found",
                details={"entity": model.__name__, "id": str(entity_id)},
            )
        return entity


def _refuse_profile_delete(entities: list[Any]) -> None:
    if any(isinstance(entity, Profile) for entity in entities):
        raise ValueError("Profiles are never hard-deleted")


class InMemoryEntityStore(EntityStore):
    """Process-local store keeping column snapshots per model.

    Every read returns a fresh detached instance, so two callers holding the
    same application never share state; that keeps the version check honest.
    """

    def __init__(self) -> None:
        self._rows: dict[type, dict[Any, dict[str, Any]]] = defaultdict(dict)
        self._lock = asyncio.Lock()

    def _materialize(self, model: type[EntityT], row: dict[str, Any]) -> EntityT:
        return model(**copy.deepcopy(row))

    async def get(self, model: type[EntityT], entity_id: Any) -> EntityT | None:
        row = self._rows[model].get(entity_id)
        if row is None:
            return None
        return self._materialize(model, row)

    async def create(self, entity: EntityT) -> EntityT:
        async with self._lock:
            _apply_column_defaults(entity)
            table = self._rows[type(entity)]
            if entity.id in table:
                raise ValueError(f"{type(entity).__name__} {entity.id} already exists")
            table[entity.id] = copy.deepcopy(entity_values(entity))
        return entity

    async def update(self, entity: EntityT, *, expected_version: int | None = None) -> EntityT:
        model = type(entity)
        async with self._lock:
            current = self._rows[model].get(entity.id)
            if current is None:
                raise EntityNotFound(
                    message=f"{model.__name__} not found",
                    details={"entity": model.__name__, "id": str(entity.id)},
                )
            if expected_version is not None:
                if current.get("version") != expected_version:
                    raise _conflict(entity, expected_version, current.get("version"))
                entity.version = expected_version + 1
            if "updated_at" in current:
                entity.updated_at = utcnow()
            self._rows[model][entity.id] = copy.deepcopy(entity_values(entity))
        return entity

    async def list(self, model: type[EntityT], **filters: Any) -> list[EntityT]:
        rows = [
            row
            for row in self._rows[model].values()
            if all(row.get(key) == value for key, value in filters.items())
        ]
        return [self._materialize(model, row) for row in rows]

    async def create_batch(self, entities: Iterable[Any]) -> list[Any]:
        batch = list(entities)
        async with self._lock:
            staged: list[tuple[type, Any, dict[str, Any]]] = []
            seen: set[tuple[type, Any]] = set()
            for entity in batch:
                _apply_column_defaults(entity)
                key = (type(entity), entity.id)
                if entity.id in self._rows[type(entity)] or key in seen:
                    raise ValueError(f"{type(entity).__name__} {entity.id} already exists")
                seen.add(key)
                staged.append((type(entity), entity.id, copy.deepcopy(entity_values(entity))))
            for model, entity_id, row in staged:
                self._rows[model][entity_id] = row
        return batch

    async def delete_batch(self, entities: Iterable[Any]) -> None:
        batch = list(entities)
        _refuse_profile_delete(batch)
        async with self._lock:
            for entity in batch:
                self._rows[type(entity)].pop(entity.id, None)


class SqlAlchemyEntityStore(EntityStore):
    """Store backed by the async SQLAlchemy engine, one session per call."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, model: type[EntityT], entity_id: Any) -> EntityT | None:
        async with self._session_factory() as session:
            return await session.get(model, entity_id)

    async def create(self, entity: EntityT) -> EntityT:
        _apply_column_defaults(entity)
        async with self._session_factory() as session:
            session.add(entity)
            await session.commit()
        return entity

    async def update(self, entity: EntityT, *, expected_version: int | None = None) -> EntityT:
        model = type(entity)
        values = {
            key: value
            for key, value in entity_values(entity).items()
            if key not in _MANAGED_ON_UPDATE
        }
        stmt = update(model).where(model.id == entity.id)
        if expected_version is not None:
            stmt = stmt.where(model.version == expected_version)
            values["version"] = expected_version + 1
        async with self._session_factory() as session:
            result = await session.execute(stmt.values(**values))
            if result.rowcount == 0:
                await session.rollback()
                current = await session.get(model, entity.id)
                if current is None:
                    raise EntityNotFound(
                        message=f"{model.__name__} not found",
                        details={"entity": model.__name__, "id": str(entity.id)},
                    )
                raise _conflict(entity, expected_version, getattr(current, "version", None))
            await session.commit()
        if expected_version is not None:
            entity.version = expected_version + 1
        return entity

    async def list(self, model: type[EntityT], **filters: Any) -> list[EntityT]:
        conditions = [getattr(model, key) == value for key, value in filters.items()]
        stmt = select(model).where(*conditions)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def create_batch(self, entities: Iterable[Any]) -> list[Any]:
        batch = list(entities)
        for entity in batch:
            _apply_column_defaults(entity)
        async with self._session_factory() as session:
            async with session.begin():
                session.add_all(batch)
        return batch

    async def delete_batch(self, entities: Iterable[Any]) -> None:
        batch = list(entities)
        _refuse_profile_delete(batch)
        by_model: dict[type, list[Any]] = defaultdict(list)
        for entity in batch:
            by_model[type(entity)].append(entity.id)
        async with self._session_factory() as session:
            async with session.begin():
                for model, ids in by_model.items():
                    await session.execute(delete(model).where(model.id.in_(ids)))
