"""
Row-lock registries.

Every read-check-write on a ride or account row first takes the row's lock
here, then re-reads the row with ``SELECT ... FOR UPDATE`` inside the same
transaction.  Two backends share one interface:

* ``LocalRowLocks`` -- one ``asyncio.Lock`` per row key, for a single API
  process (and for SQLite, which ignores ``FOR UPDATE``).
* ``RedisRowLocks`` -- the Redis ``DistributedLock`` per row key, for
  several API processes sharing one database.

Waits are bounded: when the lock is not obtained within the timeout the
caller gets ``LockTimeout`` (retryable) instead of hanging.

The Redis lock uses SET NX EX for acquire and a Lua script for atomic
check-and-delete on release.
A Redis outage while locking surfaces as ``Unavailable``; a failed release
is logged and the key is left to expire with its TTL.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import AsyncIterator, Optional, Protocol

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from ridehail.domain.errors import LockTimeout, Unavailable

logger = logging.getLogger(__name__)


def row_key(table: str, row_id: int) -> str:
    return f"{table}:{row_id}"


class RowLocks(Protocol):
    def hold(self, key: str, timeout: float) -> AbstractAsyncContextManager[None]: ...


class DistributedLock:
    _RELEASE_LUA = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

    def __init__(
        self, client: aioredis.Redis, key: str, ttl_seconds: int = 30
    ):
        self.redis = client
        self.key = f"lock:{key}"
        self.ttl = ttl_seconds
        self.token = str(uuid.uuid4())

    async def acquire(
        self, blocking_timeout: Optional[float] = None, poll_interval: float = 0.05
    ) -> bool:
        """
        Try to acquire.  Returns True on success.

        With *blocking_timeout* the call polls until the lock is free or the
        timeout elapses; without it a single attempt is made.
        """
        loop = asyncio.get_running_loop()
        deadline = None if blocking_timeout is None else loop.time() + blocking_timeout
        while True:
            if await self.redis.set(self.key, self.token, nx=True, ex=self.ttl):
                return True
            if deadline is None or loop.time() >= deadline:
                return False
            await asyncio.sleep(poll_interval)

    async def release(self) -> None:
        """Release only if we still own the lock (atomic via Lua)."""
        await self.redis.eval(self._RELEASE_LUA, 1, self.key, self.token)

    # context-manager support
    async def __aenter__(self):
        acquired = await self.acquire()
        if not acquired:
            raise LockTimeout(f"Could not acquire lock: {self.key}")
        return self

    async def __aexit__(self, *args):
        await self.release()


class LocalRowLocks:
    """In-process keyed locks; entries are dropped once nobody holds or waits."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str, timeout: float) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning("Timed out after %.1fs waiting for %s", timeout, key)
                raise LockTimeout(f"{key} is busy, retry shortly") from None
            try:
                yield
            finally:
                lock.release()
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                self._locks.pop(key, None)

    def is_held(self, key: str) -> bool:
        lock = self._locks.get(key)
        return bool(lock and lock.locked())


class RedisRowLocks:
    def __init__(self, client: aioredis.Redis, ttl_seconds: int = 30):
        self.client = client
        self.ttl = ttl_seconds

    @asynccontextmanager
    async def hold(self, key: str, timeout: float) -> AsyncIterator[None]:
        lock = DistributedLock(self.client, key, ttl_seconds=self.ttl)
        try:
            acquired = await lock.acquire(blocking_timeout=timeout)
        except RedisError as err:
            logger.exception("Redis unavailable while locking %s", lock.key)
            raise Unavailable("Lock service is temporarily unavailable, retry") from err
        if not acquired:
            logger.warning("Timed out after %.1fs waiting for %s", timeout, lock.key)
            raise LockTimeout(f"{key} is busy, retry shortly")
        try:
            yield
        finally:
            try:
                await lock.release()
            except RedisError:
                # the key still expires after its TTL
                logger.exception("Could not release %s", lock.key)
