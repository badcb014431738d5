"""
Reservation document model.

Metadata of return paperwork attached to a reservation. File contents live
in external storage and are not modelled here.
"""

import uuid

from sqlalchemy import Column, String, DateTime, ForeignKey
from backend.app.core.timeutils import utcnow
from backend.app.db.session import Base


class Document(Base):
    """Document attached to a reservation, validated by an approver."""
    __tablename__ = "documents"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    tenant_id = Column(String(36), nullable=False, index=True)
    reservation_id = Column(
        String(36), ForeignKey("reservations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    uploaded_by_id = Column(String(36), nullable=True)

    # e.g. "FUEL_RECEIPT", "ODOMETER_PHOTO"
    type = Column(String(100), nullable=True)
    file_name = Column(String(255), nullable=True)
    storage_key = Column(String(500), nullable=True)

    # Raw validation status, normalized by the completion rules
    status = Column(String(50), nullable=False, default="PENDING")
    validated_by_id = Column(String(36), nullable=True)
    validated_at = Column(DateTime(timezone=True), nullable=True)

    # Python-side defaults keep sub-second ordering for "latest per type"
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=True)

    def __repr__(self):
        return f"<Document(id={self.id}, type='{self.type}', status='{self.status}')>"
