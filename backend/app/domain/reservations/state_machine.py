"""
Reservation State Machine (Domain Logic).

Owns the reservation lifecycle:

    create            -> PENDING
    approve           PENDING -> APPROVED       (binds vehicle, vehicle IN_USE)
    cancel            PENDING|APPROVED -> CANCELED (releases vehicle)
    complete_manually APPROVED -> COMPLETED     (approver/admin, releases vehicle)
    remove            any but COMPLETED -> deleted (admin)

Every mutation runs as one transaction in a fixed order: re-fetch the
reservation under a row lock, validate the current status, touch the
vehicle, write the reservation, append the audit record.
"""

import logging
from contextlib import nullcontext
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union, Dict, Any

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import settings
from backend.app.core.exceptions import (
    AlreadyFinalizedError,
    InsufficientPermissionsError,
    InvalidTransitionError,
    InvalidWindowError,
    ResourceNotFoundError,
    ResourceUnavailableError,
)
from backend.app.core.timeutils import ensure_utc, utcnow
from backend.app.db.transaction import atomic
from backend.app.domain.reservations.actor import Actor, TenantScope
from backend.app.models.reservation import Reservation
from backend.app.models.reservation_enums import (
    ACTIVE_HOLD_STATUSES,
    ReservationStatus,
    VehicleStatus,
)
from backend.app.services.audit import log_event, AuditAction, AuditEntity
from backend.app.services.overlap_guard import assert_no_overlap
from backend.app.services.resource_registry import find_vehicle, set_vehicle_status
from backend.app.services.vehicle_locking import vehicle_slot_lock

logger = logging.getLogger("reservations.engine")

Instant = Union[datetime, str]


def parse_instant(value: Instant, field: str) -> datetime:
    """Parse an ISO-8601 string or datetime into an aware UTC datetime."""
    if isinstance(value, datetime):
        return ensure_utc(value)
    try:
        return ensure_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))
    except ValueError:
        raise InvalidWindowError(f"{field} is not a valid instant", details={field: value})


def validate_window(start_at: Instant, end_at: Instant) -> tuple[datetime, datetime]:
    """
    Validate a reservation window.

    Raises:
        InvalidWindowError: If either bound is unparseable or end <= start
    """
    start = parse_instant(start_at, "start_at")
    end = parse_instant(end_at, "end_at")
    if end <= start:
        raise InvalidWindowError(
            "Invalid period: end_at must be after start_at",
            details={"start_at": start.isoformat(), "end_at": end.isoformat()}
        )
    return start, end


@dataclass
class ReservationFilters:
    """Listing filters; from_/to select reservations touching the range."""
    status: Optional[ReservationStatus] = None
    vehicle_id: Optional[str] = None
    user_id: Optional[str] = None
    branch_id: Optional[str] = None
    from_: Optional[datetime] = None
    to: Optional[datetime] = None
    only_own: bool = False
    page: int = 1
    page_size: Optional[int] = None


def _vehicle_guard(tenant_id: str, vehicle_id: Optional[str]):
    if vehicle_id is None:
        return nullcontext()
    return vehicle_slot_lock(tenant_id, vehicle_id)


class ReservationService:

    @staticmethod
    async def _fetch_for_update(
        db: AsyncSession,
        scope: TenantScope,
        reservation_id: str
    ) -> Reservation:
        """Re-read a reservation under a row lock; other tenants get NotFound."""
        result = await db.execute(
            select(Reservation)
            .where(Reservation.id == reservation_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        reservation = result.scalar_one_or_none()

        if reservation is None or reservation.tenant_id != scope.tenant_id:
            raise ResourceNotFoundError("Reservation", reservation_id)

        return reservation

    @staticmethod
    async def _bound_vehicle_id(
        db: AsyncSession,
        scope: TenantScope,
        reservation_id: str
    ) -> Optional[str]:
        result = await db.execute(
            select(Reservation.vehicle_id).where(
                Reservation.id == reservation_id,
                Reservation.tenant_id == scope.tenant_id
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def release_bound_vehicle(db: AsyncSession, reservation: Reservation) -> bool:
        """
        Put the reservation's vehicle back to AVAILABLE.

        Idempotent whatever the vehicle's current status. The vehicle is
        left alone while another APPROVED reservation still holds it.

        Returns:
            True if the vehicle status was written
        """
        if not reservation.vehicle_id:
            return False

        other_holders = await db.execute(
            select(func.count(Reservation.id)).where(
                Reservation.tenant_id == reservation.tenant_id,
                Reservation.vehicle_id == reservation.vehicle_id,
                Reservation.status == ReservationStatus.APPROVED,
                Reservation.id != reservation.id
            )
        )
        if other_holders.scalar():
            logger.info(
                "Vehicle %s still held by another approved reservation, not released by %s",
                reservation.vehicle_id, reservation.id
            )
            return False

        return await set_vehicle_status(
            db, reservation.tenant_id, reservation.vehicle_id, VehicleStatus.AVAILABLE
        )

    @staticmethod
    async def complete(
        db: AsyncSession,
        reservation: Reservation,
        actor_id: Optional[str],
        action: str,
        metadata: Dict[str, Any]
    ) -> Reservation:
        """
        Move an APPROVED reservation to COMPLETED inside the caller's transaction.

        Shared by manual completion and the completion aggregator. The
        caller has already locked the row and checked the status.
        """
        vehicle_released = await ReservationService.release_bound_vehicle(db, reservation)

        reservation.status = ReservationStatus.COMPLETED
        reservation.completed_at = utcnow()
        await db.flush()

        await log_event(
            db=db,
            tenant_id=reservation.tenant_id,
            action=action,
            entity=AuditEntity.RESERVATION,
            entity_id=reservation.id,
            actor_id=actor_id,
            metadata={
                **metadata,
                "vehicle_id": reservation.vehicle_id,
                "vehicle_released": vehicle_released
            }
        )
        return reservation

    @staticmethod
    async def create(
        db: AsyncSession,
        actor: Actor,
        origin: str,
        destination: str,
        start_at: Instant,
        end_at: Instant,
        vehicle_id: Optional[str] = None,
        branch_id: Optional[str] = None,
        purpose: Optional[str] = None,
        notes: Optional[str] = None,
        passengers: Optional[int] = None
    ) -> Reservation:
        """
        Create a PENDING reservation.

        A vehicle supplied here is advisory: it must be AVAILABLE and free
        of overlapping holds, but it is not marked IN_USE until approval.

        Raises:
            InvalidWindowError: Unparseable window or end <= start
            ResourceUnavailableError: Vehicle absent, cross-tenant or not AVAILABLE
            ScheduleConflictError: Vehicle already held in the window
        """
        start, end = validate_window(start_at, end_at)

        async with _vehicle_guard(actor.tenant_id, vehicle_id):
            async with atomic(db, "create reservation"):
                if vehicle_id is not None:
                    vehicle = await find_vehicle(db, actor.tenant_id, vehicle_id, for_update=True)
                    if vehicle is None:
                        raise ResourceUnavailableError(
                            vehicle_id, message=f"Vehicle {vehicle_id} not found"
                        )
                    if vehicle.status != VehicleStatus.AVAILABLE:
                        raise ResourceUnavailableError(vehicle_id, vehicle.status.value)

                    await assert_no_overlap(db, actor.tenant_id, vehicle_id, start, end)

                reservation = Reservation(
                    tenant_id=actor.tenant_id,
                    branch_id=branch_id or actor.branch_id,
                    requester_user_id=actor.id,
                    vehicle_id=vehicle_id,
                    origin=origin,
                    destination=destination,
                    purpose=purpose,
                    notes=notes,
                    passengers=passengers,
                    start_at=start,
                    end_at=end,
                    status=ReservationStatus.PENDING
                )
                db.add(reservation)
                await db.flush()

                await log_event(
                    db=db,
                    tenant_id=actor.tenant_id,
                    action=AuditAction.RESERVATION_CREATED,
                    entity=AuditEntity.RESERVATION,
                    entity_id=reservation.id,
                    actor_id=actor.id,
                    metadata={
                        "vehicle_id": vehicle_id,
                        "start_at": start.isoformat(),
                        "end_at": end.isoformat()
                    }
                )

        await db.refresh(reservation)
        logger.info("Reservation %s created by %s", reservation.id, actor.id)
        return reservation

    @staticmethod
    async def approve(
        db: AsyncSession,
        actor: Actor,
        reservation_id: str,
        vehicle_id: Optional[str] = None,
        notes: Optional[str] = None
    ) -> Reservation:
        """
        Approve a PENDING reservation and bind a vehicle to it.

        The vehicle is the one supplied, else the one chosen at creation.
        The overlap count runs after the vehicle row is locked, so two
        approvals racing for the same vehicle cannot both pass.

        Raises:
            InsufficientPermissionsError: Actor is not approver/admin
            ResourceNotFoundError: Reservation or vehicle absent in tenant
            InvalidTransitionError: Reservation is not PENDING
            ScheduleConflictError: Another active hold overlaps the window
            ResourceUnavailableError: Vehicle missing or not AVAILABLE
        """
        if not actor.is_elevated:
            raise InsufficientPermissionsError("Only approvers or admins can approve reservations")

        target_vehicle_id = vehicle_id or await ReservationService._bound_vehicle_id(
            db, actor.scope, reservation_id
        )

        async with _vehicle_guard(actor.tenant_id, target_vehicle_id):
            async with atomic(db, "approve reservation"):
                reservation = await ReservationService._fetch_for_update(db, actor.scope, reservation_id)

                if reservation.status != ReservationStatus.PENDING:
                    raise InvalidTransitionError(reservation.id, reservation.status.value, "approve")

                if target_vehicle_id is None:
                    raise ResourceUnavailableError(
                        None, message="A vehicle must be bound to approve a reservation"
                    )

                vehicle = await find_vehicle(db, actor.tenant_id, target_vehicle_id, for_update=True)
                if vehicle is None:
                    raise ResourceNotFoundError("Vehicle", target_vehicle_id)

                await assert_no_overlap(
                    db,
                    actor.tenant_id,
                    target_vehicle_id,
                    reservation.start_at,
                    reservation.end_at,
                    exclude_reservation_id=reservation.id
                )

                if vehicle.status != VehicleStatus.AVAILABLE:
                    raise ResourceUnavailableError(target_vehicle_id, vehicle.status.value)

                vehicle.status = VehicleStatus.IN_USE

                reservation.status = ReservationStatus.APPROVED
                reservation.approver_user_id = actor.id
                reservation.approved_at = utcnow()
                reservation.vehicle_id = target_vehicle_id
                if notes:
                    reservation.approval_notes = notes
                await db.flush()

                await log_event(
                    db=db,
                    tenant_id=actor.tenant_id,
                    action=AuditAction.RESERVATION_APPROVED,
                    entity=AuditEntity.RESERVATION,
                    entity_id=reservation.id,
                    actor_id=actor.id,
                    metadata={"vehicle_id": target_vehicle_id, "notes": notes}
                )

        await db.refresh(reservation)
        logger.info("Reservation %s approved by %s with vehicle %s", reservation.id, actor.id, target_vehicle_id)
        return reservation

    @staticmethod
    async def cancel(
        db: AsyncSession,
        actor: Actor,
        reservation_id: str
    ) -> Reservation:
        """
        Cancel a PENDING or APPROVED reservation.

        Raises:
            ResourceNotFoundError: Reservation absent in tenant
            InsufficientPermissionsError: Actor neither owner nor approver/admin
            AlreadyFinalizedError: Reservation already in a terminal status
        """
        async with atomic(db, "cancel reservation"):
            reservation = await ReservationService._fetch_for_update(db, actor.scope, reservation_id)

            if not (actor.owns(reservation) or actor.is_elevated):
                raise InsufficientPermissionsError("No permission to cancel this reservation")

            if reservation.status not in ACTIVE_HOLD_STATUSES:
                raise AlreadyFinalizedError(reservation.id, reservation.status.value, "cancel")

            previous_status = reservation.status
            vehicle_released = await ReservationService.release_bound_vehicle(db, reservation)

            reservation.status = ReservationStatus.CANCELED
            reservation.canceled_at = utcnow()
            await db.flush()

            await log_event(
                db=db,
                tenant_id=actor.tenant_id,
                action=AuditAction.RESERVATION_CANCELED,
                entity=AuditEntity.RESERVATION,
                entity_id=reservation.id,
                actor_id=actor.id,
                metadata={
                    "previous_status": previous_status.value,
                    "vehicle_id": reservation.vehicle_id,
                    "vehicle_released": vehicle_released
                }
            )

        await db.refresh(reservation)
        logger.info("Reservation %s canceled by %s", reservation.id, actor.id)
        return reservation

    @staticmethod
    async def complete_manually(
        db: AsyncSession,
        actor: Actor,
        reservation_id: str
    ) -> Reservation:
        """
        Manual completion.

        - Approver/admin: APPROVED -> COMPLETED and the vehicle is released.
        - Owning requester: the reservation stays APPROVED; the call only
          records that the return was sent for validation.

        Raises:
            ResourceNotFoundError: Reservation absent in tenant
            InsufficientPermissionsError: Requester who does not own it
            InvalidTransitionError: Reservation is not APPROVED
        """
        async with atomic(db, "complete reservation"):
            reservation = await ReservationService._fetch_for_update(db, actor.scope, reservation_id)

            if not (actor.is_elevated or actor.owns(reservation)):
                raise InsufficientPermissionsError("No permission to complete this reservation")

            if reservation.status != ReservationStatus.APPROVED:
                raise InvalidTransitionError(reservation.id, reservation.status.value, "complete")

            if actor.is_elevated:
                await ReservationService.complete(
                    db,
                    reservation,
                    actor_id=actor.id,
                    action=AuditAction.RESERVATION_COMPLETED_MANUAL,
                    metadata={"via": "manual"}
                )
            else:
                await log_event(
                    db=db,
                    tenant_id=actor.tenant_id,
                    action=AuditAction.RESERVATION_SENT_FOR_VALIDATION,
                    entity=AuditEntity.RESERVATION,
                    entity_id=reservation.id,
                    actor_id=actor.id,
                    metadata={"vehicle_id": reservation.vehicle_id}
                )

        await db.refresh(reservation)
        logger.info(
            "Reservation %s %s by %s",
            reservation.id,
            "completed" if reservation.status == ReservationStatus.COMPLETED else "sent for validation",
            actor.id
        )
        return reservation

    @staticmethod
    async def remove(
        db: AsyncSession,
        actor: Actor,
        reservation_id: str
    ) -> dict:
        """
        Hard-delete a reservation (admin only).

        The bound vehicle is released whatever the reservation status.
        Documents and checklist submissions are deleted with it.

        Raises:
            InsufficientPermissionsError: Actor is not admin
            ResourceNotFoundError: Reservation absent in tenant
            InvalidTransitionError: Reservation is COMPLETED
        """
        if not actor.is_admin:
            raise InsufficientPermissionsError("Only ADMIN can delete reservations")

        async with atomic(db, "delete reservation"):
            reservation = await ReservationService._fetch_for_update(db, actor.scope, reservation_id)

            if reservation.status == ReservationStatus.COMPLETED:
                raise InvalidTransitionError(reservation.id, reservation.status.value, "delete")

            vehicle_released = await ReservationService.release_bound_vehicle(db, reservation)
            snapshot = {
                "status": reservation.status.value,
                "vehicle_id": reservation.vehicle_id,
                "requester_user_id": reservation.requester_user_id,
                "vehicle_released": vehicle_released
            }

            await db.delete(reservation)
            await db.flush()

            await log_event(
                db=db,
                tenant_id=actor.tenant_id,
                action=AuditAction.RESERVATION_DELETED,
                entity=AuditEntity.RESERVATION,
                entity_id=reservation_id,
                actor_id=actor.id,
                metadata=snapshot
            )

        logger.info("Reservation %s deleted by %s", reservation_id, actor.id)
        return {"id": reservation_id, "deleted": True}

    @staticmethod
    async def get(
        db: AsyncSession,
        actor: Actor,
        reservation_id: str
    ) -> Reservation:
        """Read a reservation; requesters may only read their own."""
        result = await db.execute(
            select(Reservation).where(
                Reservation.id == reservation_id,
                Reservation.tenant_id == actor.tenant_id
            )
        )
        reservation = result.scalar_one_or_none()

        if reservation is None:
            raise ResourceNotFoundError("Reservation", reservation_id)

        if not actor.is_elevated and not actor.owns(reservation):
            raise InsufficientPermissionsError("No permission to view this reservation")

        return reservation

    @staticmethod
    async def list(
        db: AsyncSession,
        actor: Actor,
        filters: ReservationFilters
    ) -> tuple[list[Reservation], int, int, int]:
        """
        List a tenant's reservations, newest window first.

        Requesters only see their own. ``from_``/``to`` keep reservations
        whose window touches the range (start_at < to and end_at > from_).

        Returns:
            (items, total, page, page_size)
        """
        from_ = ensure_utc(filters.from_) if filters.from_ else None
        to = ensure_utc(filters.to) if filters.to else None
        if from_ and to and from_ > to:
            raise InvalidWindowError("from must be before or equal to to")

        page = max(filters.page, 1)
        page_size = min(filters.page_size or settings.default_page_size, settings.max_page_size)

        conditions = [Reservation.tenant_id == actor.tenant_id]

        if filters.only_own or not actor.is_elevated:
            conditions.append(Reservation.requester_user_id == actor.id)
        elif filters.user_id:
            conditions.append(Reservation.requester_user_id == filters.user_id)

        if filters.status:
            conditions.append(Reservation.status == filters.status)
        if filters.vehicle_id:
            conditions.append(Reservation.vehicle_id == filters.vehicle_id)
        if filters.branch_id:
            conditions.append(Reservation.branch_id == filters.branch_id)
        if to:
            conditions.append(Reservation.start_at < to)
        if from_:
            conditions.append(Reservation.end_at > from_)

        total_result = await db.execute(select(func.count(Reservation.id)).where(*conditions))
        total = total_result.scalar() or 0

        result = await db.execute(
            select(Reservation)
            .where(*conditions)
            .order_by(Reservation.start_at.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )

        return list(result.scalars().all()), total, page, page_size
