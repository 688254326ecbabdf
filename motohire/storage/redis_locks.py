"""Per-bike booking locks in Redis.

The lock covers the overlap check and reservation insert for one bike
across processes. Each holder writes a random token and only deletes the
key while it still holds that token, so a lock that outlived its TTL and
was re-acquired elsewhere is left alone.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional
from uuid import UUID, uuid4

import redis.asyncio as redis

from motohire.config.settings import Settings
from motohire.logging import get_logger

logger = get_logger(__name__)

# Delete the key only if it still carries our token
RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class RedisLockHelper:
    """SET NX EX locks keyed by bike."""

    def __init__(self, redis_url: str, ttl_seconds: int = 10):
        self.redis_url = redis_url
        self.ttl_seconds = ttl_seconds
        self._client: Optional[redis.Redis] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "RedisLockHelper":
        return cls(settings.redis_url, ttl_seconds=settings.redis_lock_ttl_seconds)

    async def connect(self) -> None:
        self._client = redis.from_url(self.redis_url, decode_responses=True)

    async def disconnect(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @staticmethod
    def asset_lock_key(asset_id: UUID) -> str:
        return f"moto:lock:asset:{asset_id}"

    def _require_client(self) -> redis.Redis:
        if self._client is None:
            raise RuntimeError("Redis client not connected")
        return self._client

    @asynccontextmanager
    async def acquire_asset_lock(self, asset_id: UUID) -> AsyncIterator[bool]:
        """
        Try to take the booking lock for a bike.

        Yields:
            True if this flow holds the lock, False if another flow does
        """
        client = self._require_client()
        key = self.asset_lock_key(asset_id)
        token = uuid4().hex

        acquired = bool(await client.set(key, token, ex=self.ttl_seconds, nx=True))
        if not acquired:
            logger.info("asset_lock_busy", asset_id=str(asset_id))

        try:
            yield acquired
        finally:
            if acquired:
                released = await client.eval(RELEASE_SCRIPT, 1, key, token)
                if not released:
                    logger.warning(
                        "asset_lock_expired_before_release",
                        asset_id=str(asset_id),
                        ttl_seconds=self.ttl_seconds,
                    )

    async def is_locked(self, asset_id: UUID) -> bool:
        client = self._require_client()
        return bool(await client.exists(self.asset_lock_key(asset_id)))
