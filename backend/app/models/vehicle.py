"""
Vehicle database model.

Vehicles belong to a tenant and are referenced, not owned, by reservations.
"""

import uuid

from sqlalchemy import Column, Integer, String, DateTime, Enum, Index
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.reservation_enums import VehicleStatus


class Vehicle(Base):
    """
    Vehicle model.

    Only the reservation engine moves a vehicle between AVAILABLE and IN_USE.
    """
    __tablename__ = "vehicles"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # Ownership
    tenant_id = Column(String(36), nullable=False, index=True)
    branch_id = Column(String(36), nullable=True, index=True)

    # Identification
    plate = Column(String(20), nullable=False)
    model = Column(String(100), nullable=True)
    color = Column(String(50), nullable=True)
    mileage = Column(Integer, default=0, nullable=False)

    # Status
    status = Column(Enum(VehicleStatus), default=VehicleStatus.AVAILABLE, nullable=False, index=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        Index("ix_vehicles_tenant_plate", "tenant_id", "plate", unique=True),
    )

    def __repr__(self):
        return f"<Vehicle(id={self.id}, plate='{self.plate}', status='{self.status.value}')>"
