"""TTL-bounded key-value stores for short-lived pipeline state.

The classification cache and the progress channel both live here rather than
in module-level dicts, so a deployment with several API and worker processes
can share them through the database while tests use the in-memory variant.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Tuple

from sqlalchemy import delete, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import settings
from app.core.database import async_session_maker
from app.database.models import EphemeralEntry
from app.utils.logging import get_logger

LOGGER = get_logger(__name__)


class TTLStore(ABC):
    """Async key-value store whose entries expire ``ttl_seconds`` after their last write."""

    @abstractmethod
    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        """Return the live value for ``key`` or None if missing or expired."""

    @abstractmethod
    async def set(self, key: str, value: Dict[str, Any], ttl_seconds: int) -> None:
        """Store ``value`` and restart its expiry clock."""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove ``key``. Returns False when nothing was stored; never raises for missing keys."""

    @abstractmethod
    async def purge_expired(self) -> int:
        """Drop expired entries and return how many were removed."""


class InMemoryTTLStore(TTLStore):
    """Single-process store, used in tests and local development."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, Tuple[float, Dict[str, Any]]] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at <= self._clock():
                del self._entries[key]
                return None
            return value

    async def set(self, key: str, value: Dict[str, Any], ttl_seconds: int) -> None:
        async with self._lock:
            self._entries[key] = (self._clock() + ttl_seconds, value)

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._entries.pop(key, None) is not None

    async def purge_expired(self) -> int:
        async with self._lock:
            now = self._clock()
            expired = [key for key, (expires_at, _) in self._entries.items() if expires_at <= now]
            for key in expired:
                del self._entries[key]
            return len(expired)


def upsert_entry(dialect_name: str, key: str, value: Dict[str, Any], expires_at: datetime):
    """Single-statement insert-or-replace, so concurrent first writes of a key cannot collide."""
    insert = sqlite.insert if dialect_name == "sqlite" else postgresql.insert
    stmt = insert(EphemeralEntry).values(key=key, value=value, expires_at=expires_at)
    return stmt.on_conflict_do_update(
        index_elements=[EphemeralEntry.key],
        set_={"value": stmt.excluded["value"], "expires_at": stmt.excluded["expires_at"]},
    )


class DatabaseTTLStore(TTLStore):
    """Store backed by the ``ephemeral_entries`` table, shared by every instance."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(EphemeralEntry.value).where(
                    EphemeralEntry.key == key,
                    EphemeralEntry.expires_at > self._now(),
                )
            )
            return result.scalar_one_or_none()

    async def set(self, key: str, value: Dict[str, Any], ttl_seconds: int) -> None:
        async with self.session_factory() as session:
            stmt = upsert_entry(
                session.get_bind().dialect.name,
                key,
                value,
                self._now() + timedelta(seconds=ttl_seconds),
            )
            await session.execute(stmt)
            await session.commit()

    async def delete(self, key: str) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(delete(EphemeralEntry).where(EphemeralEntry.key == key))
            await session.commit()
            return result.rowcount > 0

    async def purge_expired(self) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                delete(EphemeralEntry).where(EphemeralEntry.expires_at <= self._now())
            )
            await session.commit()
            removed = result.rowcount or 0
        if removed:
            LOGGER.info(f"Purged {removed} expired ephemeral entries")
        return removed


_default_store: Optional[TTLStore] = None


def get_ttl_store() -> TTLStore:
    """Process-wide store selected by ``CACHE_BACKEND``."""
    global _default_store
    if _default_store is None:
        if settings.cache.backend == "memory":
            LOGGER.warning("Using in-memory TTL store; state is not shared across instances")
            _default_store = InMemoryTTLStore()
        else:
            _default_store = DatabaseTTLStore(async_session_maker)
    return _default_store
