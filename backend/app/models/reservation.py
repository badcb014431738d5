"""
Reservation database model.

A reservation is a tenant employee's request for a vehicle over a
half-open time window [start_at, end_at).
"""

import uuid

from sqlalchemy import Column, Integer, String, Text, DateTime, Enum, ForeignKey, Index
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.reservation_enums import ReservationStatus


class Reservation(Base):
    """
    Reservation model.

    vehicle_id is advisory while PENDING and binding once APPROVED.
    """
    __tablename__ = "reservations"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # Ownership
    tenant_id = Column(String(36), nullable=False, index=True)
    branch_id = Column(String(36), nullable=True, index=True)
    requester_user_id = Column(String(36), nullable=False, index=True)
    approver_user_id = Column(String(36), nullable=True, index=True)

    # Vehicle binding
    vehicle_id = Column(String(36), ForeignKey("vehicles.id"), nullable=True, index=True)

    # Trip details
    origin = Column(String(255), nullable=False)
    destination = Column(String(255), nullable=False)
    purpose = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)
    passengers = Column(Integer, nullable=True)
    approval_notes = Column(Text, nullable=True)

    # Window
    start_at = Column(DateTime(timezone=True), nullable=False)
    end_at = Column(DateTime(timezone=True), nullable=False)

    # Status
    status = Column(Enum(ReservationStatus), default=ReservationStatus.PENDING, nullable=False, index=True)

    # Transition timestamps
    approved_at = Column(DateTime(timezone=True), nullable=True)
    canceled_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    # Overlap lookups filter on tenant + vehicle + status, then the window
    __table_args__ = (
        Index("ix_reservations_vehicle_hold", "tenant_id", "vehicle_id", "status"),
        Index("ix_reservations_window", "start_at", "end_at"),
    )

    def __repr__(self):
        return f"<Reservation(id={self.id}, vehicle_id={self.vehicle_id}, status='{self.status.value}')>"
