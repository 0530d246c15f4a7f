from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from kbrag.core.config import settings
from kbrag.utils.logger import get_logger

logger = get_logger("services.cache_manager")


class CacheManager:
    """
    Thin wrapper over Redis string keys with expiry.

    Reads and writes degrade gracefully: a Redis failure on `get` is a miss and on
    `put`/`delete` is logged and skipped. `set_if_absent` is the exception: callers
    rely on its answer for mutual exclusion, so its errors propagate.
    """

    def __init__(self, client: aioredis.Redis, default_ttl: int = None):
        self.client = client
        self.default_ttl = default_ttl or settings.CACHE_TTL_SECONDS

    @staticmethod
    def generate_key(module: str, identifier: str, *params: str) -> str:
        return ":".join([module, identifier, *params])

    async def get(self, key: str) -> Optional[str]:
        try:
            value = await self.client.get(key)
        except RedisError as e:
            logger.error(f"Cache read failed, key: {key}: {e}")
            return None
        logger.debug(f"Cache {'hit' if value is not None else 'miss'}, key: {key}")
        return value

    async def put(self, key: str, value: str, ttl: int = None) -> None:
        try:
            await self.client.set(key, value, ex=ttl or self.default_ttl)
            logger.debug(f"Cache set, key: {key}")
        except RedisError as e:
            logger.error(f"Cache write failed, key: {key}: {e}")

    async def delete(self, key: str) -> bool:
        try:
            return bool(await self.client.delete(key))
        except RedisError as e:
            logger.error(f"Cache delete failed, key: {key}: {e}")
            return False

    async def set_if_absent(self, key: str, value: str, ttl: int) -> bool:
        """Atomically set `key` only if it does not exist (SET NX EX)."""
        return bool(await self.client.set(key, value, nx=True, ex=ttl))


class IdempotencyGuard:
    """Per-document processing marker shared by every ingestion worker."""

    KEY_PREFIX = "rag:process"
    IN_PROGRESS = "PROCESSING"

    def __init__(self, cache: CacheManager, ttl: int = None):
        self.cache = cache
        self.ttl = ttl or settings.IDEMPOTENCY_TTL_SECONDS

    def key_for(self, document_id: int) -> str:
        return f"{self.KEY_PREFIX}:{document_id}"

    async def acquire(self, document_id: int) -> bool:
        """True when this caller now holds the marker; False when another attempt does."""
        return await self.cache.set_if_absent(self.key_for(document_id), self.IN_PROGRESS, self.ttl)

    async def release(self, document_id: int) -> None:
        if not await self.cache.delete(self.key_for(document_id)):
            logger.warning(f"Idempotency marker for document {document_id} was already gone")
