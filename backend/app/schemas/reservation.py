"""
Reservation schemas.

Request and response models of the reservation endpoints.
"""

from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
from datetime import datetime

from backend.app.models.reservation_enums import ReservationStatus


class ReservationCreate(BaseModel):
    """Schema for creating a reservation.

    ``start_at``/``end_at`` are ISO-8601 instants; the engine parses them so
    that a malformed window is reported as an invalid window.
    """
    origin: str = Field(..., min_length=1, max_length=255)
    destination: str = Field(..., min_length=1, max_length=255)
    start_at: str
    end_at: str
    vehicle_id: Optional[str] = None
    branch_id: Optional[str] = None
    purpose: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = None
    passengers: Optional[int] = Field(None, ge=1)


class ReservationApprove(BaseModel):
    """Schema for approving a reservation."""
    vehicle_id: Optional[str] = None
    notes: Optional[str] = None


class ReservationResponse(BaseModel):
    """Schema for reservation response."""
    id: str
    tenant_id: str
    branch_id: Optional[str]
    requester_user_id: str
    approver_user_id: Optional[str]
    vehicle_id: Optional[str]
    origin: str
    destination: str
    purpose: Optional[str]
    notes: Optional[str]
    passengers: Optional[int]
    approval_notes: Optional[str]
    start_at: datetime
    end_at: datetime
    status: ReservationStatus
    approved_at: Optional[datetime]
    canceled_at: Optional[datetime]
    completed_at: Optional[datetime]
    created_at: datetime
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True


class ReservationListResponse(BaseModel):
    """Schema for paginated reservation list."""
    reservations: List[ReservationResponse]
    total: int
    page: int
    page_size: int


class ReservationDeleteResponse(BaseModel):
    id: str
    deleted: bool


class ChecklistSummaryResponse(BaseModel):
    has_user_return: bool
    has_approver_validation: bool
    decision: Optional[str]


class CompletionStatusResponse(BaseModel):
    """Result of evaluating the completion rules of a reservation."""
    reservation_id: str
    reservation_status: Optional[ReservationStatus]
    document_status: str
    checklist: ChecklistSummaryResponse
    eligible: bool
    reason: Optional[str]


class AuditLogResponse(BaseModel):
    """Schema for audit trail entries."""
    id: int
    actor_id: Optional[str]
    action: str
    entity: str
    entity_id: Optional[str]
    meta_data: Optional[Dict[str, Any]]
    timestamp: datetime

    class Config:
        from_attributes = True
