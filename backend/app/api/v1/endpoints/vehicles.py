"""
Vehicle API Endpoints.

Fleet registry of a tenant. Every authenticated user can browse it;
only admins register, edit or retire vehicles.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db.session import get_db
from backend.app.core.dependencies import get_current_actor
from backend.app.core.guards import require_admin
from backend.app.domain.reservations.actor import Actor
from backend.app.models.reservation_enums import VehicleStatus
from backend.app.schemas.vehicle import (
    VehicleCreate,
    VehicleDeleteResponse,
    VehicleResponse,
    VehicleUpdate,
)
from backend.app.services import resource_registry

router = APIRouter(prefix="/vehicles", tags=["Vehicles"])


@router.post("", response_model=VehicleResponse, status_code=status.HTTP_201_CREATED)
async def create_vehicle(
    data: VehicleCreate,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Register a vehicle (Admin only). Plates are unique per tenant."""
    vehicle = await resource_registry.create_vehicle(db, actor, **data.model_dump())
    return VehicleResponse.model_validate(vehicle)


@router.get("", response_model=list[VehicleResponse])
async def list_vehicles(
    status_filter: Optional[VehicleStatus] = Query(None, alias="status"),
    branch_id: Optional[str] = Query(None),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db)
):
    vehicles = await resource_registry.list_vehicles(db, actor.scope, status=status_filter, branch_id=branch_id)
    return [VehicleResponse.model_validate(v) for v in vehicles]


@router.get("/{vehicle_id}", response_model=VehicleResponse)
async def get_vehicle(
    vehicle_id: str = Path(..., description="Vehicle ID"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db)
):
    vehicle = await resource_registry.get_vehicle(db, actor.scope, vehicle_id)
    return VehicleResponse.model_validate(vehicle)


@router.patch("/{vehicle_id}", response_model=VehicleResponse)
async def update_vehicle(
    data: VehicleUpdate,
    vehicle_id: str = Path(..., description="Vehicle ID"),
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """
    Edit a vehicle (Admin only).

    IN_USE cannot be set here, and a vehicle in use keeps its status
    until its reservation releases it.
    """
    vehicle = await resource_registry.update_vehicle(
        db, actor, vehicle_id, data.model_dump(exclude_unset=True)
    )
    return VehicleResponse.model_validate(vehicle)


@router.delete("/{vehicle_id}", response_model=VehicleDeleteResponse)
async def remove_vehicle(
    vehicle_id: str = Path(..., description="Vehicle ID"),
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Remove a vehicle nothing refers to (Admin only)."""
    return await resource_registry.remove_vehicle(db, actor, vehicle_id)
