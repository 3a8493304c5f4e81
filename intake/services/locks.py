"""
Per-caller keyed mutex.

The caller + lead read-then-write sequence for one phone number must not
interleave with another delivery for the same number (webhook retries and
back-to-back calls both happen). Two providers share one interface:

- ``RedisKeyedLock``: redis-py asyncio ``Lock``, safe across processes.
- ``LocalKeyedLock``: one ``asyncio.Lock`` per key, single process only.

Usage:
    async with locks.hold(caller_lock_key(tenant_id, phone)):
        ...
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncContextManager, AsyncIterator, Optional, Protocol

import redis.asyncio as aioredis
from redis.exceptions import LockError, RedisError

from intake.config import get_settings
from intake.db import StoreError
from intake.logging_config import get_logger

logger = get_logger(__name__)

LOCK_KEY = "intake:lock:{}"


class LockTimeoutError(StoreError):
    """The caller lock could not be acquired in time."""


def caller_lock_key(tenant_id: str, phone: str) -> str:
    return f"{tenant_id}:{phone}"


class KeyedLock(Protocol):
    def hold(self, key: str) -> AsyncContextManager[None]: ...

    async def close(self) -> None: ...


class LocalKeyedLock:
    """In-process locks; use ``RedisKeyedLock`` when running more than one worker."""

    def __init__(self, wait_seconds: Optional[float] = None) -> None:
        self.wait_seconds = wait_seconds if wait_seconds is not None else get_settings().lock_wait_seconds
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=self.wait_seconds)
            except asyncio.TimeoutError as e:
                logger.warning("caller_lock_timeout", key=key, wait_seconds=self.wait_seconds)
                raise LockTimeoutError(f"timed out waiting for lock {key}") from e
            try:
                yield
            finally:
                lock.release()
        finally:
            self._holders[key] -= 1
            if not self._holders[key]:
                # Nobody waiting on this key any more.
                del self._holders[key]
                del self._locks[key]

    async def close(self) -> None:
        self._locks.clear()
        self._holders.clear()


class RedisKeyedLock:
    """Distributed locks backed by Redis ``SET NX PX``."""

    def __init__(
        self,
        redis: aioredis.Redis,
        timeout_seconds: Optional[float] = None,
        wait_seconds: Optional[float] = None,
    ) -> None:
        settings = get_settings()
        self.redis = redis
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.lock_timeout_seconds
        self.wait_seconds = wait_seconds if wait_seconds is not None else settings.lock_wait_seconds

    @classmethod
    def from_url(cls, url: str) -> "RedisKeyedLock":
        return cls(aioredis.from_url(url, decode_responses=True))

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self.redis.lock(
            LOCK_KEY.format(key),
            timeout=self.timeout_seconds,
            blocking_timeout=self.wait_seconds,
        )
        try:
            acquired = await lock.acquire()
        except RedisError as e:
            logger.error("caller_lock_error", key=key, error=str(e))
            raise StoreError(f"could not reach Redis for lock {key}: {e}") from e
        if not acquired:
            logger.warning("caller_lock_timeout", key=key, wait_seconds=self.wait_seconds)
            raise LockTimeoutError(f"timed out waiting for lock {key}")

        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError as e:
                # The lock expired while held; the work is already done.
                logger.warning("caller_lock_expired", key=key, error=str(e))

    async def close(self) -> None:
        await self.redis.close()


def create_keyed_lock() -> LocalKeyedLock | RedisKeyedLock:
    """Pick the lock provider from settings."""
    settings = get_settings()
    if settings.uses_redis_locks:
        logger.info("caller_locks_redis")
        return RedisKeyedLock.from_url(settings.redis_url)
    logger.info("caller_locks_local")
    return LocalKeyedLock()
