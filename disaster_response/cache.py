"""Key/value cache with per-entry expiry.

Both backends store plain JSON values; callers re-validate on read.
"""
import asyncio
import copy
import hashlib
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional

from fastapi.concurrency import run_in_threadpool
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from . import models
from .exceptions import CacheError

logger = logging.getLogger(__name__)

DEFAULT_TTL = 3600


def hashed_key(prefix: str, text: str) -> str:
    return f"{prefix}:{hashlib.sha256(text.encode('utf-8')).hexdigest()}"


def utc_clock() -> datetime:
    # The cache table stores naive UTC timestamps
    return datetime.now(timezone.utc).replace(tzinfo=None)


class MemoryCache:
    def __init__(self, clock: Callable[[], datetime] = utc_clock):
        self.clock = clock
        self._entries = {}

    async def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= self.clock():
            self._entries.pop(key, None)
            return None
        return copy.deepcopy(value)

    async def set(self, key: str, value: Any, ttl_seconds: float = DEFAULT_TTL) -> None:
        self._entries[key] = (copy.deepcopy(value), self.clock() + timedelta(seconds=ttl_seconds))

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def clear_expired(self) -> int:
        now = self.clock()
        expired = [key for key, (_, expires_at) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)

    async def stats(self) -> dict:
        now = self.clock()
        expired = sum(1 for _, expires_at in self._entries.values() if expires_at <= now)
        return {"total": len(self._entries), "expired": expired}

    async def remember(self, key: str, ttl_seconds: float, producer: Callable[[], Awaitable[Any]]) -> Any:
        return await _remember(self, key, ttl_seconds, producer)


class DatabaseCache:
    """Cache backed by the ``cache`` table. Blocking calls run in the threadpool."""

    def __init__(self, session_factory, clock: Callable[[], datetime] = utc_clock):
        self.session_factory = session_factory
        self.clock = clock

    def _get(self, key):
        db = self.session_factory()
        try:
            entry = db.get(models.CacheEntry, key)
            if entry is None:
                return None
            if entry.expires_at <= self.clock():
                db.delete(entry)
                db.commit()
                return None
            return entry.value
        finally:
            db.close()

    def _set(self, key, value, ttl_seconds):
        db = self.session_factory()
        try:
            db.merge(models.CacheEntry(
                key=key,
                value=value,
                expires_at=self.clock() + timedelta(seconds=ttl_seconds),
            ))
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            raise
        finally:
            db.close()

    def _delete(self, key):
        db = self.session_factory()
        try:
            db.query(models.CacheEntry).filter(models.CacheEntry.key == key).delete()
            db.commit()
        finally:
            db.close()

    def _clear_expired(self):
        db = self.session_factory()
        try:
            removed = (
                db.query(models.CacheEntry)
                .filter(models.CacheEntry.expires_at <= self.clock())
                .delete(synchronize_session=False)
            )
            db.commit()
            return removed
        finally:
            db.close()

    def _stats(self):
        db = self.session_factory()
        try:
            total = db.query(func.count(models.CacheEntry.key)).scalar() or 0
            expired = (
                db.query(func.count(models.CacheEntry.key))
                .filter(models.CacheEntry.expires_at <= self.clock())
                .scalar()
                or 0
            )
            return {"total": total, "expired": expired}
        finally:
            db.close()

    async def get(self, key: str) -> Optional[Any]:
        try:
            return await run_in_threadpool(self._get, key)
        except SQLAlchemyError as exc:
            logger.error("Cache get error for %s: %s", key, exc)
            return None

    async def set(self, key: str, value: Any, ttl_seconds: float = DEFAULT_TTL) -> None:
        try:
            await run_in_threadpool(self._set, key, value, ttl_seconds)
        except SQLAlchemyError as exc:
            logger.error("Cache set error for %s: %s", key, exc)
            raise CacheError(str(exc)) from exc

    async def delete(self, key: str) -> None:
        try:
            await run_in_threadpool(self._delete, key)
        except SQLAlchemyError as exc:
            logger.error("Cache delete error for %s: %s", key, exc)
            raise CacheError(str(exc)) from exc

    async def clear_expired(self) -> int:
        try:
            return await run_in_threadpool(self._clear_expired)
        except SQLAlchemyError as exc:
            logger.error("Cache cleanup error: %s", exc)
            return 0

    async def stats(self) -> dict:
        try:
            return await run_in_threadpool(self._stats)
        except SQLAlchemyError as exc:
            logger.error("Cache stats error: %s", exc)
            return {"total": 0, "expired": 0}

    async def remember(self, key: str, ttl_seconds: float, producer: Callable[[], Awaitable[Any]]) -> Any:
        return await _remember(self, key, ttl_seconds, producer)


async def _remember(cache, key, ttl_seconds, producer):
    cached = await cache.get(key)
    if cached is not None:
        return cached
    value = await producer()
    if value is not None:
        try:
            await cache.set(key, value, ttl_seconds)
        except CacheError:
            logger.warning("Could not store %s in cache", key)
    return value


async def run_cache_sweeper(cache, interval_seconds: float):
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            removed = await cache.clear_expired()
            if removed:
                logger.info("Cleared %d expired cache entries", removed)
        except Exception:
            logger.exception("Cache sweep failed")
