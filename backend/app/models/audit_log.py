"""
Audit Log Database Model.

One row per reservation state transition and collaborator validation event.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from backend.app.db.session import Base


class AuditLog(Base):
    """
    Audit log model.

    Events logged:
    - reservation.created / approved / canceled / deleted
    - reservation.sent_for_validation
    - reservation.completed / reservation.completed.manual
    - document.registered / document.validated / checklist.submitted
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    tenant_id = Column(String(36), index=True, nullable=False)

    # Who performed the action (None for system actions)
    actor_id = Column(String(36), index=True, nullable=True)

    # What action was performed, on which entity
    action = Column(String(100), nullable=False, index=True)
    entity = Column(String(100), nullable=False)
    entity_id = Column(String(36), index=True, nullable=True)

    # Additional context (JSON for flexibility)
    meta_data = Column(JSON, nullable=True)

    # Timestamp
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', entity={self.entity}:{self.entity_id})>"
