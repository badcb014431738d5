"""
Per-vehicle advisory locking.

Serializes the check-then-act window of vehicle binding (overlap count
followed by the write) across workers. The lock lives in Redis; the
database row lock taken on the vehicle inside the transaction remains the
last line of defence when Redis is unreachable.
"""

import asyncio
import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator

from redis.exceptions import RedisError

from backend.app.core import redis_client as redis_module
from backend.app.core.config import settings
from backend.app.core.exceptions import ScheduleConflictError

logger = logging.getLogger("reservations.locking")

# Redis key prefix for vehicle allocation locks
VEHICLE_LOCK_PREFIX = "lock:vehicle:"


def vehicle_lock_key(tenant_id: str, vehicle_id: str) -> str:
    return f"{VEHICLE_LOCK_PREFIX}{tenant_id}:{vehicle_id}"


async def acquire_vehicle_lock(key: str, token: str) -> bool:
    """
    Try to take the lock until the configured wait budget runs out.

    Returns:
        True if acquired, False if another holder kept it the whole time

    Raises:
        RedisError: If Redis cannot be reached
    """
    deadline = time.monotonic() + settings.vehicle_lock_wait_seconds

    while True:
        acquired = await redis_module.redis_client.set(
            key, token, nx=True, px=settings.vehicle_lock_ttl_ms
        )
        if acquired:
            return True
        if time.monotonic() >= deadline:
            return False
        await asyncio.sleep(settings.vehicle_lock_poll_interval)


async def release_vehicle_lock(key: str, token: str) -> bool:
    """
    Release the lock if this holder still owns it.

    An expired lock that someone else re-acquired is left alone.

    Returns:
        True if the lock was deleted
    """
    try:
        current = await redis_module.redis_client.get(key)
        if current != token:
            return False
        return await redis_module.redis_client.delete(key) > 0
    except RedisError as e:
        logger.warning("Could not release vehicle lock %s: %s", key, e)
        return False


@asynccontextmanager
async def vehicle_slot_lock(tenant_id: str, vehicle_id: str) -> AsyncIterator[bool]:
    """
    Hold the allocation lock of one vehicle for the duration of the block.

    Yields:
        True when the Redis lock is held, False when Redis was unreachable
        and only the database row lock protects the block

    Raises:
        ScheduleConflictError: If another request keeps the vehicle locked
            past the wait budget

    Example:
        async with vehicle_slot_lock(tenant_id, vehicle_id):
            async with atomic(db, "approve"):
                ...
    """
    key = vehicle_lock_key(tenant_id, vehicle_id)
    token = str(uuid.uuid4())

    try:
        acquired = await acquire_vehicle_lock(key, token)
    except RedisError as e:
        logger.warning("Redis unavailable, relying on row locks for vehicle %s: %s", vehicle_id, e)
        acquired = None

    if acquired is None:
        yield False
        return

    if not acquired:
        raise ScheduleConflictError(
            vehicle_id,
            conflicts=0,
            message=f"Vehicle {vehicle_id} is being allocated by another request, retry later"
        )

    try:
        yield True
    finally:
        await release_vehicle_lock(key, token)
