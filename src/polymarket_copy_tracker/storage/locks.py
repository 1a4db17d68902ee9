"""Per-run locks guarding a cycle's read-modify-write.

At most one cycle may be in flight for a given run id. Within one
process an ``asyncio.Lock`` per run is enough; when several processes
share a database the lock lives in Redis instead.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Protocol

from redis.asyncio import Redis

logger = logging.getLogger(__name__)

DEFAULT_REDIS_KEY_PREFIX = "polymarket:copytrade:run-lock:"
DEFAULT_LOCK_TIMEOUT_SECONDS = 300.0
DEFAULT_BLOCKING_TIMEOUT_SECONDS = 60.0
DEFAULT_POLL_INTERVAL_SECONDS = 0.1

# Delete the key only if it still holds our token.
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class RunLockTimeoutError(Exception):
    """Raised when a run lock could not be acquired in time."""


class RunLocker(Protocol):
    """Provides an exclusive section per run id."""

    def lock(self, run_id: str) -> AbstractAsyncContextManager[None]: ...


class RunLockManager:
    """In-process per-run locks."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def _get(self, run_id: str) -> asyncio.Lock:
        lock = self._locks.get(run_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[run_id] = lock
        return lock

    def locked(self, run_id: str) -> bool:
        """Check whether a run's lock is currently held."""
        return self._get(run_id).locked()

    @asynccontextmanager
    async def lock(self, run_id: str) -> AsyncIterator[None]:
        async with self._get(run_id):
            yield


class RedisRunLockManager:
    """Per-run locks held in Redis.

    Uses ``SET key token NX PX`` to acquire and a compare-and-delete
    script to release, so an expired lock re-acquired by another process
    is never released by the previous holder.

    Example:
        ```python
        redis = Redis.from_url("redis://localhost:6379")
        locks = RedisRunLockManager(redis)
        async with locks.lock("run-1"):
            ...
        ```
    """

    def __init__(
        self,
        redis: Redis,
        *,
        timeout_seconds: float = DEFAULT_LOCK_TIMEOUT_SECONDS,
        blocking_timeout_seconds: float = DEFAULT_BLOCKING_TIMEOUT_SECONDS,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        key_prefix: str = DEFAULT_REDIS_KEY_PREFIX,
    ) -> None:
        """Initialize the lock manager.

        Args:
            redis: Redis async client.
            timeout_seconds: Expiry of a held lock.
            blocking_timeout_seconds: How long to wait for a held lock.
            poll_interval_seconds: Delay between acquisition attempts.
            key_prefix: Redis key prefix for lock keys.
        """
        self._redis = redis
        self._timeout_ms = int(timeout_seconds * 1000)
        self._blocking_timeout = blocking_timeout_seconds
        self._poll_interval = poll_interval_seconds
        self._key_prefix = key_prefix

    def _key(self, run_id: str) -> str:
        return f"{self._key_prefix}{run_id}"

    async def _acquire(self, key: str, token: str) -> None:
        deadline = time.monotonic() + self._blocking_timeout
        while True:
            was_set = await self._redis.set(key, token, nx=True, px=self._timeout_ms)
            if was_set:
                return
            if time.monotonic() >= deadline:
                raise RunLockTimeoutError(f"Timed out waiting for lock {key}")
            await asyncio.sleep(self._poll_interval)

    async def _release(self, key: str, token: str) -> None:
        released = await self._redis.eval(_RELEASE_SCRIPT, 1, key, token)
        if not released:
            logger.warning("Lock %s expired before release", key)

    @asynccontextmanager
    async def lock(self, run_id: str) -> AsyncIterator[None]:
        key = self._key(run_id)
        token = uuid.uuid4().hex
        await self._acquire(key, token)
        try:
            yield
        finally:
            await self._release(key, token)
