"""
Lease stores for cross-worker coordination.

A lease is a key held for a bounded time. Sync workers take a lease per
account so two workers never sync the same account at once, and the manual
sync command uses the same mechanism as a cooldown.
"""

import asyncio
import time
import uuid
from functools import wraps
from typing import Callable, Dict, Optional, Tuple
import logging

from redis.exceptions import RedisError

from tracker.config import Config
from tracker.utils.exceptions import StorageUnavailableError
from tracker.utils.redis_utils import RedisUtils

logger = logging.getLogger(__name__)

# Deletes the lease only while it still holds the caller's token
RELEASE_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""

class InMemoryLeaseStore:
    """In-process lease store with TTL eviction.

    Only coordinates tasks inside one process; multi-instance deployments
    must configure REDIS_URL.
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self._clock = clock or time.monotonic
        self._leases: Dict[str, Tuple[str, float]] = {}
        self._lock = asyncio.Lock()

    def _evict_expired(self, now: float):
        expired = [key for key, (_, expires_at) in self._leases.items() if expires_at <= now]
        for key in expired:
            del self._leases[key]

    async def acquire(self, key: str, ttl: float) -> Optional[str]:
        """
        Take the lease on key for ttl seconds.

        Returns:
            The owner token to pass to release(), or None if the lease is held
        """
        if ttl <= 0:
            return None

        async with self._lock:
            now = self._clock()
            self._evict_expired(now)
            if key in self._leases:
                return None
            token = uuid.uuid4().hex
            self._leases[key] = (token, now + ttl)
            return token

    async def release(self, key: str, token: str):
        """Release a lease, unless it expired and was taken by another owner."""
        async with self._lock:
            held = self._leases.get(key)
            if held is not None and held[0] == token:
                del self._leases[key]

    async def ttl(self, key: str) -> float:
        """Seconds left on a lease, 0 when it is not held."""
        async with self._lock:
            now = self._clock()
            self._evict_expired(now)
            if key not in self._leases:
                return 0
            return self._leases[key][1] - now

    async def close(self):
        async with self._lock:
            self._leases.clear()

class RedisLeaseStore:
    """Lease store backed by Redis SET NX EX, shared by all workers."""

    def __init__(self, client, prefix: str = 'tracker:lease:'):
        self.client = client
        self.prefix = prefix

    async def acquire(self, key: str, ttl: float) -> Optional[str]:
        if ttl <= 0:
            return None
        token = uuid.uuid4().hex
        try:
            acquired = await self.client.set(
                self.prefix + key, token, nx=True, ex=max(1, int(ttl))
            )
        except RedisError as e:
            raise StorageUnavailableError("lease acquire", str(e)) from e
        return token if acquired else None

    async def release(self, key: str, token: str):
        try:
            await self.client.eval(RELEASE_SCRIPT, 1, self.prefix + key, token)
        except RedisError as e:
            # The lease expires on its own; log and move on
            logger.warning(f"Failed to release lease {key}: {e}")

    async def ttl(self, key: str) -> float:
        try:
            remaining = await self.client.ttl(self.prefix + key)
        except RedisError as e:
            raise StorageUnavailableError("lease ttl", str(e)) from e
        return max(0, remaining)

    async def close(self):
        await self.client.aclose()

async def create_lease_store():
    """Redis lease store when REDIS_URL is configured and reachable, else in-memory."""
    client = await RedisUtils.create_redis_client()
    if client is None:
        logger.info("Using in-memory lease store (single instance)")
        return InMemoryLeaseStore()
    logger.info("Using Redis lease store")
    return RedisLeaseStore(client)

def cooldown(command: str, seconds: Optional[int] = None):
    """Decorator limiting a Discord command to one use per user per cooldown."""
    def decorator(func):
        @wraps(func)
        async def wrapper(self, interaction, *args, **kwargs):
            # Bot owner bypasses cooldowns
            if interaction.user.id == Config.OWNER_DISCORD_ID:
                return await func(self, interaction, *args, **kwargs)

            lease_store = self.bot.lease_store
            window = seconds if seconds is not None else Config.MANUAL_SYNC_COOLDOWN_SECONDS
            key = f"cooldown:{command}:{interaction.user.id}"

            if not await lease_store.acquire(key, window):
                remaining = int(await lease_store.ttl(key))
                await interaction.response.send_message(
                    f"⏰ Please wait {remaining}s before using `/{command}` again.",
                    ephemeral=True
                )
                return

            return await func(self, interaction, *args, **kwargs)
        return wrapper
    return decorator
