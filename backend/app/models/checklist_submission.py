"""
Checklist submission model.

A requester's return checklist or an approver's validation of it.
"""

import uuid

from sqlalchemy import Column, String, DateTime, ForeignKey, Enum, JSON
from backend.app.core.timeutils import utcnow
from backend.app.db.session import Base
from backend.app.models.reservation_enums import ChecklistSubmissionKind


class ChecklistSubmission(Base):
    """Checklist submission for a reservation."""
    __tablename__ = "checklist_submissions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    tenant_id = Column(String(36), nullable=False, index=True)
    reservation_id = Column(
        String(36), ForeignKey("reservations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    template_id = Column(String(36), ForeignKey("checklist_templates.id"), nullable=False, index=True)
    submitted_by_id = Column(String(36), nullable=False)

    kind = Column(Enum(ChecklistSubmissionKind), nullable=False, index=True)

    # Free-form answers; APPROVER_VALIDATION carries decision/result/status
    payload = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)

    def __repr__(self):
        return f"<ChecklistSubmission(id={self.id}, kind='{self.kind.value}')>"
