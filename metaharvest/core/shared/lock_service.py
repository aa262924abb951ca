"""
Redis-based distributed locking for scheduling passes.

Scheduling passes over the same resource type must run one at a time: two
overlapping passes would both read and then both write the same scan
cursors. Each pass holds a lock named after its resource type for its
whole duration. Locks use Redis SET NX PX, so a crashed worker cannot hold
a lock past its expiry.

Usage:
    from metaharvest.core.shared.lock_service import lock_service

    async with lock_service.pass_lock("file") as acquired:
        if acquired:
            summary = await extraction_scheduler.run_pass("file")
"""

import asyncio
import logging
import os
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Optional

import redis.asyncio as redis

from metaharvest.config import settings

logger = logging.getLogger("metaharvest.services.lock")


class LockService:
    """
    Distributed locking service using Redis.

    Lock Key Format:
        metaharvest:lock:{resource_name}

    Lock Value Format:
        {lock_id}:{acquired_at}
    """

    def __init__(self):
        self._redis: Optional[redis.Redis] = None
        self._redis_loop: Optional[asyncio.AbstractEventLoop] = None
        self._lock_prefix = "metaharvest:lock:"

    async def _get_redis(self) -> redis.Redis:
        """
        Get or create the Redis connection for the running event loop.

        Celery tasks call asyncio.run() per invocation, so a client bound to
        a previous (closed) loop is abandoned rather than reused.
        """
        loop = asyncio.get_running_loop()
        if self._redis is None or self._redis_loop is not loop:
            self._redis_loop = loop
            broker_url = os.getenv("CELERY_BROKER_URL", "redis://redis:6379/0")
            self._redis = redis.from_url(broker_url, decode_responses=True)
        return self._redis

    def _key(self, resource_name: str) -> str:
        return f"{self._lock_prefix}{resource_name}"

    async def acquire_lock(self, resource_name: str, timeout: int = 300) -> Optional[str]:
        """
        Attempt to acquire a distributed lock, once.

        Args:
            resource_name: Name of the resource to lock
            timeout: Lock expiration in seconds

        Returns:
            Lock ID string if acquired, None if the lock is held elsewhere
        """
        r = await self._get_redis()
        lock_id = str(uuid.uuid4())
        lock_value = f"{lock_id}:{datetime.utcnow().isoformat()}"

        acquired = await r.set(self._key(resource_name), lock_value, nx=True, px=timeout * 1000)
        if not acquired:
            logger.debug(f"Lock not available: {resource_name}")
            return None

        logger.debug(f"Lock acquired: {resource_name} (id={lock_id[:8]}..., timeout={timeout}s)")
        return lock_id

    async def release_lock(self, resource_name: str, lock_id: str) -> bool:
        """
        Release a lock, only if it is still held under lock_id.

        Returns:
            True if released, False if the lock expired or belongs to someone else
        """
        r = await self._get_redis()

        # Atomic check-and-delete
        release_script = """
        local current = redis.call('GET', KEYS[1])
        if current and string.find(current, ARGV[1], 1, true) == 1 then
            return redis.call('DEL', KEYS[1])
        end
        return 0
        """

        result = await r.eval(release_script, 1, self._key(resource_name), lock_id)
        released = result == 1

        if released:
            logger.debug(f"Lock released: {resource_name} (id={lock_id[:8]}...)")
        else:
            logger.warning(f"Lock not released (expired or not held): {resource_name}")

        return released

    @asynccontextmanager
    async def lock(self, resource_name: str, timeout: int = 300) -> AsyncIterator[bool]:
        """
        Context manager for acquiring and releasing locks.

        Yields True if the lock was acquired, False otherwise. The lock is
        released on exit when it was acquired.
        """
        lock_id = await self.acquire_lock(resource_name, timeout)
        try:
            yield lock_id is not None
        finally:
            if lock_id:
                await self.release_lock(resource_name, lock_id)

    def pass_lock(self, resource_type: str):
        """Lock guarding the scan cursors of one resource type."""
        return self.lock(f"extraction_pass:{resource_type}", timeout=settings.pass_lock_timeout)

    async def close(self):
        """Close the Redis connection; the next call opens a new one."""
        if self._redis:
            await self._redis.close()
            self._redis = None
            self._redis_loop = None


# Global singleton instance
lock_service = LockService()
