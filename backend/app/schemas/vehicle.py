"""
Vehicle schemas.
"""

from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime

from backend.app.models.reservation_enums import VehicleStatus


class VehicleCreate(BaseModel):
    """Schema for registering a vehicle."""
    plate: str = Field(..., min_length=1, max_length=20)
    model: Optional[str] = Field(None, max_length=100)
    color: Optional[str] = Field(None, max_length=50)
    mileage: int = Field(0, ge=0)
    status: VehicleStatus = VehicleStatus.AVAILABLE
    branch_id: Optional[str] = None


class VehicleUpdate(BaseModel):
    """Schema for editing a vehicle; only the fields sent are changed."""
    plate: Optional[str] = Field(None, min_length=1, max_length=20)
    model: Optional[str] = Field(None, max_length=100)
    color: Optional[str] = Field(None, max_length=50)
    mileage: Optional[int] = Field(None, ge=0)
    status: Optional[VehicleStatus] = None
    branch_id: Optional[str] = None


class VehicleResponse(BaseModel):
    """Schema for vehicle response."""
    id: str
    tenant_id: str
    branch_id: Optional[str]
    plate: str
    model: Optional[str]
    color: Optional[str]
    mileage: int
    status: VehicleStatus
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class VehicleDeleteResponse(BaseModel):
    id: str
    deleted: bool
