"""
Document schemas.
"""

from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime

from backend.app.models.reservation_enums import ValidationOutcome


class DocumentCreate(BaseModel):
    """Schema for registering a document (metadata only)."""
    type: Optional[str] = Field(None, max_length=100)
    file_name: Optional[str] = Field(None, max_length=255)
    storage_key: Optional[str] = Field(None, max_length=500)


class DocumentValidate(BaseModel):
    """Schema for recording a validation result."""
    result: ValidationOutcome


class DocumentResponse(BaseModel):
    """Schema for document response."""
    id: str
    reservation_id: str
    uploaded_by_id: Optional[str]
    type: Optional[str]
    file_name: Optional[str]
    storage_key: Optional[str]
    status: str
    validated_by_id: Optional[str]
    validated_at: Optional[datetime]
    created_at: datetime
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True


class DocumentValidateResponse(BaseModel):
    """Validated document and whether the reservation was completed."""
    document: DocumentResponse
    reservation_completed: bool
