"""
Transaction helper for state-mutating operations.

Every reservation transition runs inside ``atomic``: the work either
commits as one unit or is rolled back with no partial effect.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger("reservations.db")


@asynccontextmanager
async def atomic(db: AsyncSession, name: str = "transaction") -> AsyncIterator[AsyncSession]:
    """
    Run a block as one transaction on the given session.

    Commits when the block exits normally, rolls back and re-raises on
    any exception.

    Example:
        async with atomic(db, "approve"):
            reservation.status = ReservationStatus.APPROVED
    """
    try:
        yield db
        await db.commit()
    except Exception:
        await db.rollback()
        logger.debug("Rolled back %s", name)
        raise
