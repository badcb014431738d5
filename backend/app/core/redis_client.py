"""
Redis connection of the reservations backend.

Redis only holds the per-vehicle allocation locks. Nothing else depends
on it: when it is down the engine keeps working on database row locks
and /health reports it as down.
"""

import redis.asyncio as redis
from backend.app.core.config import settings


# Shared by every worker coroutine; vehicle_locking reads it through this module
redis_client = redis.from_url(
    settings.redis_url,
    decode_responses=settings.redis_decode_responses,
)


async def get_redis():
    """FastAPI dependency returning the shared lock client."""
    return redis_client


async def ping_redis() -> bool:
    """
    Health check for the lock store.

    Returns:
        True if Redis answered, False otherwise
    """
    try:
        return await redis_client.ping()
    except Exception:
        return False
