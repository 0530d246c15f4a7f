import redis.asyncio as aioredis
from kbrag.core.config import settings


def create_redis_client() -> aioredis.Redis:
    """Redis client shared by the answer cache and the ingestion idempotency guard."""
    return aioredis.Redis(
        host=settings.REDIS_HOST,
        port=settings.REDIS_PORT,
        db=settings.REDIS_DB,
        decode_responses=True
    )
