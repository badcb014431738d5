"""
Overlap guard tests.

Half-open windows: bookings touching at a boundary never conflict.
"""

import pytest
from datetime import datetime, timezone

from backend.app.core.exceptions import ScheduleConflictError
from backend.app.domain.reservations.state_machine import ReservationService
from backend.app.services.overlap_guard import (
    windows_overlap,
    count_overlapping_holds,
    assert_no_overlap,
)
from conftest import TENANT_ID, OTHER_TENANT_ID


def at(hour: int, minute: int = 0) -> datetime:
    return datetime(2025, 1, 10, hour, minute, tzinfo=timezone.utc)


def test_windows_overlap_is_half_open():
    assert windows_overlap(at(9), at(11), at(10), at(12))
    assert windows_overlap(at(10), at(12), at(9), at(11))
    assert windows_overlap(at(9), at(12), at(10), at(11))
    assert not windows_overlap(at(9), at(11), at(11), at(13))
    assert not windows_overlap(at(11), at(13), at(9), at(11))
    assert not windows_overlap(at(9), at(10), at(12), at(13))


@pytest.mark.asyncio
async def test_count_ignores_back_to_back_and_inactive(db_session, requester, admin, vehicle):
    held = await ReservationService.create(
        db_session, requester, "HQ", "Airport", at(9), at(11), vehicle_id=vehicle.id
    )

    assert await count_overlapping_holds(db_session, TENANT_ID, vehicle.id, at(10), at(12)) == 1
    assert await count_overlapping_holds(db_session, TENANT_ID, vehicle.id, at(11), at(13)) == 0
    assert await count_overlapping_holds(db_session, TENANT_ID, vehicle.id, at(7), at(9)) == 0
    assert await count_overlapping_holds(
        db_session, TENANT_ID, vehicle.id, at(10), at(12), exclude_reservation_id=held.id
    ) == 0
    assert await count_overlapping_holds(db_session, OTHER_TENANT_ID, vehicle.id, at(10), at(12)) == 0

    await ReservationService.cancel(db_session, admin, held.id)

    assert await count_overlapping_holds(db_session, TENANT_ID, vehicle.id, at(10), at(12)) == 0


@pytest.mark.asyncio
async def test_assert_no_overlap_raises_with_conflict_count(db_session, requester, vehicle):
    await ReservationService.create(
        db_session, requester, "HQ", "Airport", at(9), at(11), vehicle_id=vehicle.id
    )

    with pytest.raises(ScheduleConflictError) as exc_info:
        await assert_no_overlap(db_session, TENANT_ID, vehicle.id, at(10, 30), at(10, 45))

    assert exc_info.value.error_code == "ERR_RES_SCHEDULE_CONFLICT"
    assert exc_info.value.details["conflicts"] == 1
