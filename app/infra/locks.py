"""
Per-conversation processing locks.

At most one pipeline run per conversation key at a time. Uses a Redis lock
when Redis is reachable, so several workers share the guarantee, and an
in-process asyncio.Lock per key otherwise.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Optional

from redis.asyncio import Redis
from redis.exceptions import LockError, RedisError

from app.core.errors import ConversationBusyError
from app.infra.redis import APP_PREFIX

logger = logging.getLogger(__name__)

LOCK_PREFIX = f"{APP_PREFIX}lock:conversation:"

RedisProvider = Callable[[], Awaitable[Optional[Redis]]]


class ConversationLocks:
    """
    Registry of per-conversation locks.

    Usage:
        locks = ConversationLocks(redis_provider=get_redis, timeout=30.0)

        async with locks.hold(instance.id, sender.id):
            ...
    """

    def __init__(
        self,
        redis_provider: Optional[RedisProvider] = None,
        timeout: float = 30.0,
        ttl_seconds: float = 60,
    ):
        """
        Args:
            redis_provider: Coroutine returning a Redis client or None
            timeout: Seconds to wait for a busy conversation
            ttl_seconds: Expiry of the Redis lock, renewed every third of it
                while held
        """
        self._redis_provider = redis_provider
        self.timeout = timeout
        self.ttl_seconds = ttl_seconds
        self._local: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @staticmethod
    def key(instance_id: str, contact_id: str) -> str:
        return f"{instance_id}:{contact_id}"

    @asynccontextmanager
    async def hold(self, instance_id: str, contact_id: str) -> AsyncIterator[None]:
        """
        Hold the lock of one conversation.

        Raises:
            ConversationBusyError: If the lock is not acquired within `timeout`
        """
        key = self.key(instance_id, contact_id)
        redis_lock = await self._acquire_redis(key)

        if redis_lock is not None:
            renewal = asyncio.create_task(self._keep_alive(redis_lock, key))
            try:
                yield
            finally:
                renewal.cancel()
                try:
                    await redis_lock.release()
                except LockError as e:
                    # Expired while held after a failed renewal
                    logger.warning(f"Conversation lock {key} lost before release: {e}")
            return

        async with self._hold_local(key):
            yield

    async def _acquire_redis(self, key: str):
        """Acquire the Redis lock, or return None to use a local lock."""
        if self._redis_provider is None:
            return None

        client = await self._redis_provider()
        if client is None:
            return None

        lock = client.lock(
            f"{LOCK_PREFIX}{key}",
            timeout=self.ttl_seconds,
            blocking_timeout=self.timeout,
        )
        try:
            acquired = await lock.acquire()
        except RedisError as e:
            logger.warning(f"Redis lock unavailable for {key}, using local lock: {e}")
            return None

        if not acquired:
            raise ConversationBusyError(key, self.timeout)
        return lock

    async def _keep_alive(self, lock, key: str) -> None:
        """Push the Redis lock's expiry forward until cancelled."""
        while True:
            await asyncio.sleep(self.ttl_seconds / 3)
            try:
                await lock.extend(self.ttl_seconds, replace_ttl=True)
            except (LockError, RedisError) as e:
                logger.warning(f"Could not extend conversation lock {key}: {e}")
                return

    @asynccontextmanager
    async def _hold_local(self, key: str) -> AsyncIterator[None]:
        lock = self._local.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=self.timeout)
            except asyncio.TimeoutError:
                raise ConversationBusyError(key, self.timeout) from None
            try:
                yield
            finally:
                lock.release()
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._local[key]

    @property
    def active_keys(self) -> int:
        """Number of conversations currently held or awaited locally."""
        return len(self._local)
