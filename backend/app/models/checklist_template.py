"""
Checklist template models.

Each vehicle of a tenant has at most one template describing what the
return checklist asks for. Submissions reference the template they were
filled from.
"""

import uuid

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Enum, JSON, Index
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.reservation_enums import ChecklistItemType


class ChecklistTemplate(Base):
    """Checklist template bound to one vehicle."""
    __tablename__ = "checklist_templates"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    tenant_id = Column(String(36), nullable=False, index=True)
    vehicle_id = Column(String(36), ForeignKey("vehicles.id"), nullable=False, index=True)

    name = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False, index=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        Index("ix_checklist_templates_tenant_vehicle", "tenant_id", "vehicle_id", unique=True),
    )

    def __repr__(self):
        return f"<ChecklistTemplate(id={self.id}, name='{self.name}', vehicle_id={self.vehicle_id})>"


class ChecklistTemplateItem(Base):
    """One question of a checklist template."""
    __tablename__ = "checklist_template_items"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    template_id = Column(
        String(36), ForeignKey("checklist_templates.id", ondelete="CASCADE"), nullable=False, index=True
    )

    label = Column(String(255), nullable=False)
    type = Column(Enum(ChecklistItemType), nullable=False)
    required = Column(Boolean, default=True, nullable=False)
    options = Column(JSON, nullable=True)  # e.g. allowed values of a TEXT item
    position = Column(Integer, default=0, nullable=False)

    def __repr__(self):
        return f"<ChecklistTemplateItem(id={self.id}, label='{self.label}')>"
