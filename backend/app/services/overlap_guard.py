"""
Overlap guard for vehicle bookings.

Two windows overlap when ``a.start < b.end and a.end > b.start``. The
inequalities are strict, so back-to-back bookings sharing a boundary
instant never conflict.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import ScheduleConflictError
from backend.app.models.reservation import Reservation
from backend.app.models.reservation_enums import ACTIVE_HOLD_STATUSES

logger = logging.getLogger("reservations.overlap")


def windows_overlap(
    a_start: datetime,
    a_end: datetime,
    b_start: datetime,
    b_end: datetime
) -> bool:
    """Half-open interval overlap test."""
    return a_start < b_end and a_end > b_start


async def count_overlapping_holds(
    db: AsyncSession,
    tenant_id: str,
    vehicle_id: str,
    start_at: datetime,
    end_at: datetime,
    exclude_reservation_id: Optional[str] = None
) -> int:
    """
    Count active holds on a vehicle that overlap a candidate window.

    Args:
        db: Database session (must be the caller's transaction)
        tenant_id: Tenant scope
        vehicle_id: Vehicle being bound
        start_at: Candidate window start
        end_at: Candidate window end
        exclude_reservation_id: Candidate's own id when re-checking on approval

    Returns:
        Number of PENDING/APPROVED reservations overlapping the window
    """
    query = select(func.count(Reservation.id)).where(
        Reservation.tenant_id == tenant_id,
        Reservation.vehicle_id == vehicle_id,
        Reservation.status.in_(ACTIVE_HOLD_STATUSES),
        Reservation.start_at < end_at,
        Reservation.end_at > start_at
    )

    if exclude_reservation_id is not None:
        query = query.where(Reservation.id != exclude_reservation_id)

    result = await db.execute(query)
    return result.scalar() or 0


async def assert_no_overlap(
    db: AsyncSession,
    tenant_id: str,
    vehicle_id: str,
    start_at: datetime,
    end_at: datetime,
    exclude_reservation_id: Optional[str] = None
) -> None:
    """
    Raise ScheduleConflictError if any active hold overlaps the window.
    """
    conflicts = await count_overlapping_holds(
        db, tenant_id, vehicle_id, start_at, end_at, exclude_reservation_id
    )
    if conflicts > 0:
        logger.warning(
            "Schedule conflict on vehicle %s for [%s, %s): %d overlapping hold(s)",
            vehicle_id, start_at.isoformat(), end_at.isoformat(), conflicts
        )
        raise ScheduleConflictError(vehicle_id, conflicts=conflicts)
