"""
Redis lease used to elect the single notification drainer.

``acquire`` is ``SET key token NX PX``; ``renew`` and ``release`` are Lua
scripts that act only while the stored token is still ours, so a process
whose lease lapsed can never extend or delete a successor's lease.
"""

from __future__ import annotations

import logging
import uuid

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

_RENEW = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("pexpire", KEYS[1], ARGV[2])
end
return 0
"""

_RELEASE = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class DistributedLock:
    def __init__(self, client: aioredis.Redis, name: str, ttl_seconds: float = 30):
        self.redis = client
        self.key = f"loadboard:lock:{name}"
        self.ttl_ms = int(ttl_seconds * 1000)
        self.token = uuid.uuid4().hex
        self.held = False

    async def acquire(self) -> bool:
        self.held = bool(
            await self.redis.set(self.key, self.token, nx=True, px=self.ttl_ms)
        )
        return self.held

    async def renew(self) -> bool:
        """Push the expiry out by another TTL; False if the lease was lost."""
        renewed = bool(
            await self.redis.eval(_RENEW, 1, self.key, self.token, self.ttl_ms)
        )
        if not renewed and self.held:
            logger.warning("Lease %s lost before renewal", self.key)
        self.held = renewed
        return renewed

    async def release(self) -> None:
        if not self.held:
            return
        await self.redis.eval(_RELEASE, 1, self.key, self.token)
        self.held = False

    async def __aenter__(self) -> "DistributedLock":
        await self.acquire()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.release()
