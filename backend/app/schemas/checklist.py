"""
Checklist schemas.
"""

from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
from datetime import datetime

from backend.app.models.reservation_enums import ChecklistItemType, ChecklistSubmissionKind
from backend.app.schemas.reservation import ReservationResponse


class ChecklistSubmit(BaseModel):
    """Schema for submitting a checklist.

    ``decision`` is only meaningful for APPROVER_VALIDATION and is merged
    into the stored payload.
    """
    kind: ChecklistSubmissionKind
    template_id: str
    payload: Optional[Any] = None
    decision: Optional[str] = None


class ChecklistSubmissionResponse(BaseModel):
    """Schema for checklist submission response."""
    id: str
    reservation_id: str
    template_id: str
    submitted_by_id: str
    kind: ChecklistSubmissionKind
    payload: Optional[Dict[str, Any]]
    created_at: datetime

    class Config:
        from_attributes = True


class ChecklistSubmitResponse(BaseModel):
    submission: ChecklistSubmissionResponse
    reservation_completed: bool


class PendingChecklistItem(BaseModel):
    """Approver inbox entry."""
    reservation: ReservationResponse
    user_return: ChecklistSubmissionResponse
    validation_status: str


class PendingChecklistListResponse(BaseModel):
    items: List[PendingChecklistItem]
    total: int


class ChecklistTemplateItemIn(BaseModel):
    label: str = Field(..., min_length=1, max_length=255)
    type: ChecklistItemType
    required: bool = True
    options: Optional[Any] = None
    position: Optional[int] = Field(None, ge=0)


class ChecklistTemplateCreate(BaseModel):
    """Schema for creating the checklist template of a vehicle."""
    name: str = Field(..., min_length=1, max_length=255)
    vehicle_id: str
    is_active: bool = True
    items: List[ChecklistTemplateItemIn]


class ChecklistTemplateUpdate(BaseModel):
    """Schema for editing a template; items, when sent, replace all items."""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    vehicle_id: Optional[str] = None
    is_active: Optional[bool] = None
    items: Optional[List[ChecklistTemplateItemIn]] = None


class ChecklistTemplateItemResponse(BaseModel):
    id: str
    label: str
    type: ChecklistItemType
    required: bool
    options: Optional[Any]
    position: int

    class Config:
        from_attributes = True


class ChecklistTemplateResponse(BaseModel):
    """Schema for checklist template response."""
    id: str
    tenant_id: str
    vehicle_id: str
    name: str
    is_active: bool
    items: List[ChecklistTemplateItemResponse]
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_template(cls, template, items) -> "ChecklistTemplateResponse":
        return cls(
            id=template.id,
            tenant_id=template.tenant_id,
            vehicle_id=template.vehicle_id,
            name=template.name,
            is_active=template.is_active,
            items=[ChecklistTemplateItemResponse.model_validate(item) for item in items],
            created_at=template.created_at,
            updated_at=template.updated_at
        )


class ChecklistTemplateDeleteResponse(BaseModel):
    id: str
    deleted: bool
