"""
Resource registry for vehicles.

Lookups are always scoped to a tenant. Admins manage the fleet here
(register, edit, retire); the move between AVAILABLE and IN_USE belongs
to the reservation engine, so registry writes never set IN_USE and never
touch the status of a vehicle that is in use.
"""

import logging
from typing import Optional, Dict, Any

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import (
    InsufficientPermissionsError,
    ResourceConflictError,
    ResourceNotFoundError,
)
from backend.app.db.transaction import atomic
from backend.app.domain.reservations.actor import Actor, TenantScope
from backend.app.models.checklist_template import ChecklistTemplate
from backend.app.models.reservation import Reservation
from backend.app.models.vehicle import Vehicle
from backend.app.models.reservation_enums import VehicleStatus
from backend.app.services.audit import log_event, AuditAction, AuditEntity
from backend.app.services.vehicle_locking import vehicle_slot_lock

logger = logging.getLogger("reservations.registry")

# Fields an admin may edit; only the nullable ones can be cleared
EDITABLE_FIELDS = ("plate", "model", "color", "mileage", "status", "branch_id")
CLEARABLE_FIELDS = ("model", "color", "branch_id")


async def find_vehicle(
    db: AsyncSession,
    tenant_id: str,
    vehicle_id: str,
    for_update: bool = False
) -> Optional[Vehicle]:
    """
    Look up a vehicle inside a tenant.

    Args:
        db: Database session
        tenant_id: Tenant the vehicle must belong to
        vehicle_id: Vehicle to load
        for_update: Lock the vehicle row until the transaction ends

    Returns:
        The vehicle, or None when absent or owned by another tenant
    """
    query = select(Vehicle).where(
        Vehicle.id == vehicle_id,
        Vehicle.tenant_id == tenant_id
    ).execution_options(populate_existing=True)

    if for_update:
        query = query.with_for_update()

    result = await db.execute(query)
    return result.scalar_one_or_none()


async def set_vehicle_status(
    db: AsyncSession,
    tenant_id: str,
    vehicle_id: str,
    status: VehicleStatus
) -> bool:
    """
    Set a vehicle's status.

    Setting the status a vehicle already has is a no-op success.

    Returns:
        True if the vehicle exists in the tenant, False otherwise
    """
    vehicle = await find_vehicle(db, tenant_id, vehicle_id, for_update=True)
    if vehicle is None:
        return False

    vehicle.status = status
    await db.flush()
    return True


async def get_vehicle(db: AsyncSession, scope: TenantScope, vehicle_id: str) -> Vehicle:
    vehicle = await find_vehicle(db, scope.tenant_id, vehicle_id)
    if vehicle is None:
        raise ResourceNotFoundError("Vehicle", vehicle_id)
    return vehicle


async def list_vehicles(
    db: AsyncSession,
    scope: TenantScope,
    status: Optional[VehicleStatus] = None,
    branch_id: Optional[str] = None
) -> list[Vehicle]:
    """List a tenant's vehicles, optionally filtered by status and branch."""
    query = select(Vehicle).where(Vehicle.tenant_id == scope.tenant_id)

    if status:
        query = query.where(Vehicle.status == status)
    if branch_id:
        query = query.where(Vehicle.branch_id == branch_id)

    query = query.order_by(Vehicle.status, Vehicle.model, Vehicle.plate)

    result = await db.execute(query)
    return list(result.scalars().all())


def _normalize_plate(plate: str) -> str:
    return plate.strip().upper()


def _require_admin(actor: Actor) -> None:
    if not actor.is_admin:
        raise InsufficientPermissionsError("Only admins can manage vehicles")


def _reject_in_use(status: Optional[VehicleStatus]) -> None:
    if status == VehicleStatus.IN_USE:
        raise ResourceConflictError(
            "Vehicle",
            "IN_USE is only set by approving a reservation",
            details={"status": status.value}
        )


async def _plate_taken(
    db: AsyncSession,
    tenant_id: str,
    plate: str,
    exclude_vehicle_id: Optional[str] = None
) -> bool:
    query = select(Vehicle.id).where(Vehicle.tenant_id == tenant_id, Vehicle.plate == plate)
    if exclude_vehicle_id:
        query = query.where(Vehicle.id != exclude_vehicle_id)
    return (await db.execute(query)).first() is not None


def _duplicate_plate(plate: str) -> ResourceConflictError:
    return ResourceConflictError(
        "Vehicle",
        f"Plate {plate} is already registered for this tenant",
        details={"plate": plate}
    )


async def create_vehicle(
    db: AsyncSession,
    actor: Actor,
    plate: str,
    model: Optional[str] = None,
    color: Optional[str] = None,
    mileage: int = 0,
    status: VehicleStatus = VehicleStatus.AVAILABLE,
    branch_id: Optional[str] = None
) -> Vehicle:
    """
    Register a vehicle in the actor's tenant (Admin).

    Raises:
        InsufficientPermissionsError: Actor is not an admin
        ResourceConflictError: Plate already registered, or status IN_USE
    """
    _require_admin(actor)
    _reject_in_use(status)
    plate = _normalize_plate(plate)

    async with atomic(db, "create vehicle"):
        if await _plate_taken(db, actor.tenant_id, plate):
            raise _duplicate_plate(plate)

        vehicle = Vehicle(
            tenant_id=actor.tenant_id,
            branch_id=branch_id,
            plate=plate,
            model=model,
            color=color,
            mileage=mileage,
            status=status
        )
        db.add(vehicle)
        try:
            await db.flush()
        except IntegrityError:
            # Concurrent registration of the same plate
            raise _duplicate_plate(plate)

        await log_event(
            db=db,
            tenant_id=actor.tenant_id,
            action=AuditAction.VEHICLE_CREATED,
            entity=AuditEntity.VEHICLE,
            entity_id=vehicle.id,
            actor_id=actor.id,
            metadata={"plate": plate, "status": status.value}
        )

    await db.refresh(vehicle)
    logger.info("Vehicle %s (%s) registered by %s", vehicle.id, plate, actor.id)
    return vehicle


async def update_vehicle(
    db: AsyncSession,
    actor: Actor,
    vehicle_id: str,
    changes: Dict[str, Any]
) -> Vehicle:
    """
    Edit a vehicle (Admin).

    Runs under the vehicle's allocation lock so a status change cannot
    interleave with an approval binding the same vehicle.

    Args:
        changes: Subset of EDITABLE_FIELDS; other keys are ignored

    Raises:
        InsufficientPermissionsError: Actor is not an admin
        ResourceNotFoundError: Vehicle absent in tenant
        ResourceConflictError: Duplicate plate, status IN_USE requested,
            or status change of a vehicle that is in use
    """
    _require_admin(actor)
    changes = {
        field: value for field, value in changes.items()
        if field in EDITABLE_FIELDS and (value is not None or field in CLEARABLE_FIELDS)
    }
    new_status = changes.get("status")
    _reject_in_use(new_status)

    async with vehicle_slot_lock(actor.tenant_id, vehicle_id):
        async with atomic(db, "update vehicle"):
            vehicle = await find_vehicle(db, actor.tenant_id, vehicle_id, for_update=True)
            if vehicle is None:
                raise ResourceNotFoundError("Vehicle", vehicle_id)

            if new_status is not None and new_status != vehicle.status and vehicle.status == VehicleStatus.IN_USE:
                raise ResourceConflictError(
                    "Vehicle",
                    f"Vehicle {vehicle_id} is in use by an approved reservation",
                    details={"vehicle_id": vehicle_id, "status": vehicle.status.value}
                )

            if changes.get("plate") is not None:
                changes["plate"] = _normalize_plate(changes["plate"])
                if await _plate_taken(db, actor.tenant_id, changes["plate"], exclude_vehicle_id=vehicle.id):
                    raise _duplicate_plate(changes["plate"])

            for field, value in changes.items():
                setattr(vehicle, field, value)
            await db.flush()

            await log_event(
                db=db,
                tenant_id=actor.tenant_id,
                action=AuditAction.VEHICLE_UPDATED,
                entity=AuditEntity.VEHICLE,
                entity_id=vehicle.id,
                actor_id=actor.id,
                metadata={"updated_fields": sorted(changes.keys())}
            )

    await db.refresh(vehicle)
    logger.info("Vehicle %s updated by %s", vehicle_id, actor.id)
    return vehicle


async def remove_vehicle(db: AsyncSession, actor: Actor, vehicle_id: str) -> dict:
    """
    Retire a vehicle for good (Admin).

    Only vehicles no reservation or checklist template refers to can be
    removed; anything else should be set INACTIVE instead.

    Raises:
        InsufficientPermissionsError: Actor is not an admin
        ResourceNotFoundError: Vehicle absent in tenant
        ResourceConflictError: Vehicle still referenced
    """
    _require_admin(actor)

    async with atomic(db, "remove vehicle"):
        vehicle = await find_vehicle(db, actor.tenant_id, vehicle_id, for_update=True)
        if vehicle is None:
            raise ResourceNotFoundError("Vehicle", vehicle_id)

        reservations = (await db.execute(
            select(func.count(Reservation.id)).where(Reservation.vehicle_id == vehicle.id)
        )).scalar()
        templates = (await db.execute(
            select(func.count(ChecklistTemplate.id)).where(ChecklistTemplate.vehicle_id == vehicle.id)
        )).scalar()
        if reservations or templates:
            raise ResourceConflictError(
                "Vehicle",
                f"Vehicle {vehicle_id} is referenced by reservations or checklist templates",
                details={"reservations": reservations, "checklist_templates": templates}
            )

        await db.delete(vehicle)
        await db.flush()

        await log_event(
            db=db,
            tenant_id=actor.tenant_id,
            action=AuditAction.VEHICLE_DELETED,
            entity=AuditEntity.VEHICLE,
            entity_id=vehicle_id,
            actor_id=actor.id,
            metadata={"plate": vehicle.plate}
        )

    logger.info("Vehicle %s removed by %s", vehicle_id, actor.id)
    return {"id": vehicle_id, "deleted": True}
