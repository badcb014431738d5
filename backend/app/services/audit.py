"""
Audit logging service for reservation lifecycle events.

Audit is best-effort: a failure to record an event is logged and never
rolls back or fails the transition that emitted it.
"""

import logging
from typing import Optional, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from backend.app.models.audit_log import AuditLog

logger = logging.getLogger("reservations.audit")


# Audit event constants
class AuditAction:
    """Standardized audit action constants."""
    RESERVATION_CREATED = "reservation.created"
    RESERVATION_APPROVED = "reservation.approved"
    RESERVATION_CANCELED = "reservation.canceled"
    RESERVATION_SENT_FOR_VALIDATION = "reservation.sent_for_validation"
    RESERVATION_COMPLETED = "reservation.completed"
    RESERVATION_COMPLETED_MANUAL = "reservation.completed.manual"
    RESERVATION_DELETED = "reservation.deleted"

    # Collaborator events
    DOCUMENT_REGISTERED = "document.registered"
    DOCUMENT_VALIDATED = "document.validated"
    CHECKLIST_SUBMITTED = "checklist.submitted"
    CHECKLIST_TEMPLATE_CREATED = "checklist_template.created"
    CHECKLIST_TEMPLATE_UPDATED = "checklist_template.updated"
    CHECKLIST_TEMPLATE_ACTIVATED = "checklist_template.activated"
    CHECKLIST_TEMPLATE_DEACTIVATED = "checklist_template.deactivated"
    CHECKLIST_TEMPLATE_DELETED = "checklist_template.deleted"

    # Vehicle registry
    VEHICLE_CREATED = "vehicle.created"
    VEHICLE_UPDATED = "vehicle.updated"
    VEHICLE_DELETED = "vehicle.deleted"


class AuditEntity:
    RESERVATION = "Reservation"
    DOCUMENT = "Document"
    CHECKLIST_SUBMISSION = "ChecklistSubmission"
    CHECKLIST_TEMPLATE = "ChecklistTemplate"
    VEHICLE = "Vehicle"


async def _write_audit_row(db: AsyncSession, audit_log: AuditLog) -> None:
    db.add(audit_log)
    await db.flush()


async def log_event(
    db: AsyncSession,
    tenant_id: str,
    action: str,
    entity: str,
    entity_id: Optional[str],
    actor_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None
) -> Optional[AuditLog]:
    """
    Record an audit event inside the caller's transaction.

    The row is written under a SAVEPOINT so that a failed insert only
    discards the audit row, not the surrounding transition. Commit is
    left to the caller.

    Args:
        db: Database session of the running transition
        tenant_id: Tenant the event belongs to
        action: Action being performed (use AuditAction constants)
        entity: Entity type (use AuditEntity constants)
        entity_id: Id of the entity acted upon
        actor_id: User performing the action, None for system actions
        metadata: Additional context as JSON

    Returns:
        The AuditLog row, or None if recording failed
    """
    audit_log = AuditLog(
        tenant_id=tenant_id,
        actor_id=actor_id,
        action=action,
        entity=entity,
        entity_id=entity_id,
        meta_data=metadata
    )

    try:
        async with db.begin_nested():
            await _write_audit_row(db, audit_log)
    except Exception:
        logger.exception("Failed to record audit event %s for %s %s", action, entity, entity_id)
        return None

    return audit_log


async def get_audit_trail(
    db: AsyncSession,
    tenant_id: str,
    entity_id: Optional[str] = None,
    action: Optional[str] = None,
    limit: int = 100
) -> list[AuditLog]:
    """
    Retrieve a tenant's audit trail with optional filtering.

    Args:
        db: Database session
        tenant_id: Tenant scope
        entity_id: Filter by entity id
        action: Filter by action type
        limit: Maximum number of records to return

    Returns:
        List of AuditLog instances, most recent first
    """
    query = select(AuditLog).where(
        AuditLog.tenant_id == tenant_id
    ).order_by(desc(AuditLog.timestamp), desc(AuditLog.id))

    if entity_id:
        query = query.where(AuditLog.entity_id == entity_id)

    if action:
        query = query.where(AuditLog.action == action)

    query = query.limit(limit)

    result = await db.execute(query)
    return list(result.scalars().all())
