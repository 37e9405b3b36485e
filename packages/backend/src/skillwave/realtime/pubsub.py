"""Redis pub/sub — gateway fan-out across processes.

Redis pub/sub is fire-and-forget. If no one is listening, the message is
lost. That's fine for real-time UI updates (the client can always query
the API to catch up); chat messages are persisted before they are fanned
out.

Channel: skillwave:gateway — every gateway process subscribes and
delivers each envelope against its own presence registry.
"""

import json
from typing import Any, Optional

import redis.asyncio as aioredis

from skillwave.config import settings

GATEWAY_CHANNEL = "skillwave:gateway"

# Global Redis connection pool (initialized in lifespan)
_redis: Optional[aioredis.Redis] = None


async def init_redis() -> aioredis.Redis:
    """Initialize the Redis connection pool."""
    global _redis
    client = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
    )
    # Verify connection before publishing the pool
    await client.ping()
    _redis = client
    return _redis


async def close_redis() -> None:
    """Close the Redis connection pool."""
    global _redis
    if _redis:
        await _redis.aclose()
        _redis = None


def get_redis() -> aioredis.Redis:
    """Get the Redis connection (must be initialized first)."""
    if _redis is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis


def redis_available() -> bool:
    return _redis is not None


async def publish_envelope(envelope: dict[str, Any]) -> None:
    """Publish a relay envelope to every gateway process."""
    r = get_redis()
    await r.publish(GATEWAY_CHANNEL, json.dumps(envelope, default=str))
