"""
Document API Endpoints.

Return paperwork of a reservation: registration of document metadata and
approver validation. Validation results feed the completion aggregator.
"""

from fastapi import APIRouter, Depends, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db.session import get_db
from backend.app.core.dependencies import get_current_actor
from backend.app.core.guards import require_elevated
from backend.app.domain.reservations.actor import Actor
from backend.app.schemas.document import (
    DocumentCreate,
    DocumentResponse,
    DocumentValidate,
    DocumentValidateResponse,
)
from backend.app.services import documents as document_service

reservation_router = APIRouter(prefix="/reservations", tags=["Documents"])
router = APIRouter(prefix="/documents", tags=["Documents"])


@reservation_router.post(
    "/{reservation_id}/documents",
    response_model=DocumentResponse,
    status_code=status.HTTP_201_CREATED
)
async def register_document(
    data: DocumentCreate,
    reservation_id: str = Path(..., description="Reservation ID"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db)
):
    document = await document_service.register_document(
        db,
        actor,
        reservation_id,
        type=data.type,
        file_name=data.file_name,
        storage_key=data.storage_key
    )
    return DocumentResponse.model_validate(document)


@reservation_router.get("/{reservation_id}/documents", response_model=list[DocumentResponse])
async def list_documents(
    reservation_id: str = Path(..., description="Reservation ID"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db)
):
    documents = await document_service.list_documents(db, actor, reservation_id)
    return [DocumentResponse.model_validate(d) for d in documents]


@router.patch("/{document_id}/validate", response_model=DocumentValidateResponse)
async def validate_document(
    data: DocumentValidate,
    document_id: str = Path(..., description="Document ID"),
    actor: Actor = Depends(require_elevated),
    db: AsyncSession = Depends(get_db)
):
    """
    Record a validation result (Approver/Admin).

    The reservation is completed automatically once its documents and
    return checklist are both settled.
    """
    document, completion = await document_service.validate_document(db, actor, document_id, data.result)
    return DocumentValidateResponse(
        document=DocumentResponse.model_validate(document),
        reservation_completed=completion.completed
    )
