"""Key-value persistence interface and its implementations.

The detector stores every piece of state as a UTF-8 JSON document under a
string key.  Two stores are provided:

* :class:`MemoryKeyValueStore` — a dict, used by tests and ephemeral runs.
* :class:`SqlKeyValueStore` — a single ``key_value`` table via SQLAlchemy.

Implementations raise :class:`~sleep_detector.exceptions.PersistenceError`
for backend failures; callers decide how to degrade.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterable

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sleep_detector.exceptions import PersistenceError
from sleep_detector.storage.database import KeyValueRow, get_session_factory


class KeyValueStore(ABC):
    """Contract for the async key-value store consumed by the detector."""

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the stored text, or ``None`` when the key is absent."""

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Insert or overwrite *key*."""

    @abstractmethod
    async def multi_remove(self, keys: Iterable[str]) -> None:
        """Delete every key in *keys*; missing keys are ignored."""

    @abstractmethod
    async def clear(self) -> None:
        """Delete everything."""


class MemoryKeyValueStore(KeyValueStore):
    """Dict-backed store."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def multi_remove(self, keys: Iterable[str]) -> None:
        for key in keys:
            self._data.pop(key, None)

    async def clear(self) -> None:
        self._data.clear()

    def keys(self) -> list[str]:
        return list(self._data)


class SqlKeyValueStore(KeyValueStore):
    """Store backed by the ``key_value`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        self._session_factory = session_factory

    def _factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory or get_session_factory()

    async def get(self, key: str) -> str | None:
        try:
            async with self._factory()() as session:
                row = await session.get(KeyValueRow, key)
                return row.value if row is not None else None
        except SQLAlchemyError as exc:
            raise PersistenceError("get", key, exc) from exc

    async def set(self, key: str, value: str) -> None:
        try:
            async with self._factory()() as session:
                row = await session.get(KeyValueRow, key)
                if row is None:
                    session.add(KeyValueRow(key=key, value=value))
                else:
                    row.value = value
                await session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError("set", key, exc) from exc

    async def multi_remove(self, keys: Iterable[str]) -> None:
        keys = list(keys)
        if not keys:
            return
        try:
            async with self._factory()() as session:
                await session.execute(delete(KeyValueRow).where(KeyValueRow.key.in_(keys)))
                await session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError("multi_remove", ",".join(keys), exc) from exc

    async def clear(self) -> None:
        try:
            async with self._factory()() as session:
                await session.execute(delete(KeyValueRow))
                await session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError("clear", None, exc) from exc

