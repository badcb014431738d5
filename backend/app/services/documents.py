"""
Documents collaborator.

Stores return-document metadata for a reservation and records approver
validation results. Every recorded result triggers the completion
aggregator for the reservation.
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import InsufficientPermissionsError, ResourceNotFoundError
from backend.app.core.timeutils import utcnow
from backend.app.db.transaction import atomic
from backend.app.domain.reservations.actor import Actor, TenantScope
from backend.app.domain.reservations.completion import CompletionResult, notify_document_validated
from backend.app.models.document import Document
from backend.app.models.reservation import Reservation
from backend.app.models.reservation_enums import ValidationOutcome
from backend.app.services.audit import log_event, AuditAction, AuditEntity

logger = logging.getLogger("reservations.documents")


async def _get_reservation(db: AsyncSession, scope: TenantScope, reservation_id: str) -> Reservation:
    result = await db.execute(
        select(Reservation).where(
            Reservation.id == reservation_id,
            Reservation.tenant_id == scope.tenant_id
        )
    )
    reservation = result.scalar_one_or_none()
    if reservation is None:
        raise ResourceNotFoundError("Reservation", reservation_id)
    return reservation


async def register_document(
    db: AsyncSession,
    actor: Actor,
    reservation_id: str,
    type: Optional[str] = None,
    file_name: Optional[str] = None,
    storage_key: Optional[str] = None
) -> Document:
    """
    Attach a PENDING document record to a reservation.

    Args:
        db: Database session
        actor: Reservation owner, approver or admin
        reservation_id: Reservation the document belongs to
        type: Document type used for grouping (e.g. "FUEL_RECEIPT")
        file_name: Original file name
        storage_key: Key of the file in external storage

    Returns:
        Created Document
    """
    async with atomic(db, "register document"):
        reservation = await _get_reservation(db, actor.scope, reservation_id)

        if not (actor.owns(reservation) or actor.is_elevated):
            raise InsufficientPermissionsError("No permission to add documents to this reservation")

        document = Document(
            tenant_id=actor.tenant_id,
            reservation_id=reservation.id,
            uploaded_by_id=actor.id,
            type=type,
            file_name=file_name,
            storage_key=storage_key,
            status=ValidationOutcome.PENDING.value
        )
        db.add(document)
        await db.flush()

        await log_event(
            db=db,
            tenant_id=actor.tenant_id,
            action=AuditAction.DOCUMENT_REGISTERED,
            entity=AuditEntity.DOCUMENT,
            entity_id=document.id,
            actor_id=actor.id,
            metadata={"reservation_id": reservation.id, "type": type}
        )

    await db.refresh(document)
    return document


async def list_documents(db: AsyncSession, actor: Actor, reservation_id: str) -> list[Document]:
    reservation = await _get_reservation(db, actor.scope, reservation_id)

    if not (actor.owns(reservation) or actor.is_elevated):
        raise InsufficientPermissionsError("No permission to view documents of this reservation")

    result = await db.execute(
        select(Document)
        .where(Document.reservation_id == reservation.id)
        .order_by(Document.created_at, Document.id)
    )
    return list(result.scalars().all())


async def validate_document(
    db: AsyncSession,
    actor: Actor,
    document_id: str,
    result: ValidationOutcome
) -> tuple[Document, CompletionResult]:
    """
    Record an approver's validation result on a document.

    The reservation is then handed to the completion aggregator, which
    completes it when documents and checklist are both settled.

    Returns:
        (document, completion result)

    Raises:
        InsufficientPermissionsError: Actor is not approver/admin
        ResourceNotFoundError: Document absent in tenant
    """
    if not actor.is_elevated:
        raise InsufficientPermissionsError("Only approvers or admins can validate documents")

    async with atomic(db, "validate document"):
        query_result = await db.execute(
            select(Document)
            .where(
                Document.id == document_id,
                Document.tenant_id == actor.tenant_id
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        document = query_result.scalar_one_or_none()
        if document is None:
            raise ResourceNotFoundError("Document", document_id)

        previous_status = document.status
        document.status = ValidationOutcome(result).value
        document.validated_by_id = actor.id
        document.validated_at = utcnow()
        await db.flush()

        await log_event(
            db=db,
            tenant_id=actor.tenant_id,
            action=AuditAction.DOCUMENT_VALIDATED,
            entity=AuditEntity.DOCUMENT,
            entity_id=document.id,
            actor_id=actor.id,
            metadata={
                "reservation_id": document.reservation_id,
                "previous_status": previous_status,
                "status": document.status
            }
        )

    logger.info("Document %s validated as %s by %s", document.id, document.status, actor.id)

    completion = await notify_document_validated(db, actor.scope, document.reservation_id, actor.id)
    await db.refresh(document)
    return document, completion
