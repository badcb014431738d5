"""
Checklists collaborator.

Records the requester's return checklist and the approver's validation
of it, both filled from the active template of the reserved vehicle.
At most one submission of each kind exists per reservation; an
APPROVER_VALIDATION triggers the completion aggregator.
"""

import logging
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import (
    AlreadyFinalizedError,
    InsufficientPermissionsError,
    InvalidChecklistTemplateError,
    InvalidTransitionError,
    ResourceNotFoundError,
)
from backend.app.db.transaction import atomic
from backend.app.domain.reservations.actor import Actor
from backend.app.domain.reservations.completion import (
    CompletionResult,
    extract_decision,
    notify_checklist_validated,
)
from backend.app.models.checklist_submission import ChecklistSubmission
from backend.app.models.enums import UserRole
from backend.app.models.reservation import Reservation
from backend.app.models.reservation_enums import ChecklistSubmissionKind, ValidationOutcome
from backend.app.services.audit import log_event, AuditAction, AuditEntity
from backend.app.services.checklist_templates import find_active_template

logger = logging.getLogger("reservations.checklists")


def _check_submitter(actor: Actor, reservation: Reservation, kind: ChecklistSubmissionKind) -> None:
    if kind == ChecklistSubmissionKind.USER_RETURN:
        if actor.role != UserRole.REQUESTER or not actor.owns(reservation):
            raise InsufficientPermissionsError("Only the requester can submit the return checklist")
        return

    if not actor.is_elevated:
        raise InsufficientPermissionsError("Only approvers or admins can validate a checklist")
    if not actor.is_admin and reservation.approver_user_id != actor.id:
        raise InsufficientPermissionsError("Only the reservation's approver can validate its checklist")


async def submit_checklist(
    db: AsyncSession,
    actor: Actor,
    reservation_id: str,
    kind: ChecklistSubmissionKind,
    template_id: str,
    payload: Any = None,
    decision: Optional[str] = None
) -> tuple[ChecklistSubmission, Optional[CompletionResult]]:
    """
    Record a checklist submission.

    Rules:
        - the reservation must have a vehicle bound
        - the template must be active in the tenant and belong to that vehicle
        - USER_RETURN is sent by the owning requester
        - APPROVER_VALIDATION is sent by the reservation's approver, or an admin
        - one submission per kind per reservation

    Args:
        db: Database session
        actor: Submitting user
        reservation_id: Reservation the checklist is about
        kind: USER_RETURN or APPROVER_VALIDATION
        template_id: Checklist template the answers were filled from
        payload: Checklist answers; non-object values are kept under "value"
        decision: Approver decision, merged into the payload when given

    Returns:
        (submission, completion result or None for USER_RETURN)
    """
    async with atomic(db, "submit checklist"):
        result = await db.execute(
            select(Reservation).where(
                Reservation.id == reservation_id,
                Reservation.tenant_id == actor.tenant_id
            )
        )
        reservation = result.scalar_one_or_none()
        if reservation is None:
            raise ResourceNotFoundError("Reservation", reservation_id)

        if not reservation.vehicle_id:
            raise InvalidTransitionError(
                reservation.id,
                reservation.status.value,
                "submit checklist",
                message="Reservation has no vehicle bound"
            )

        template = await find_active_template(db, actor.tenant_id, template_id)
        if template is None:
            raise InvalidChecklistTemplateError(template_id)
        if template.vehicle_id != reservation.vehicle_id:
            raise InvalidChecklistTemplateError(
                template_id,
                message="Checklist template does not belong to the vehicle bound to this reservation"
            )

        _check_submitter(actor, reservation, kind)

        existing = await db.execute(
            select(ChecklistSubmission.id).where(
                ChecklistSubmission.reservation_id == reservation.id,
                ChecklistSubmission.kind == kind
            )
        )
        if existing.first() is not None:
            raise AlreadyFinalizedError(
                reservation.id,
                reservation.status.value,
                "submit checklist",
                message=f"A {kind.value} checklist was already submitted for this reservation"
            )

        body = dict(payload) if isinstance(payload, dict) else ({"value": payload} if payload is not None else {})
        if decision is not None:
            body["decision"] = decision

        submission = ChecklistSubmission(
            tenant_id=actor.tenant_id,
            reservation_id=reservation.id,
            template_id=template.id,
            submitted_by_id=actor.id,
            kind=kind,
            payload=body
        )
        db.add(submission)
        await db.flush()

        await log_event(
            db=db,
            tenant_id=actor.tenant_id,
            action=AuditAction.CHECKLIST_SUBMITTED,
            entity=AuditEntity.CHECKLIST_SUBMISSION,
            entity_id=submission.id,
            actor_id=actor.id,
            metadata={"reservation_id": reservation.id, "kind": kind.value, "template_id": template.id}
        )

    logger.info("Checklist %s submitted for reservation %s by %s", kind.value, reservation_id, actor.id)

    completion = None
    if kind == ChecklistSubmissionKind.APPROVER_VALIDATION:
        completion = await notify_checklist_validated(db, actor.scope, reservation_id, actor.id)

    await db.refresh(submission)
    return submission, completion


async def list_submissions(db: AsyncSession, actor: Actor, reservation_id: str) -> list[ChecklistSubmission]:
    result = await db.execute(
        select(Reservation).where(
            Reservation.id == reservation_id,
            Reservation.tenant_id == actor.tenant_id
        )
    )
    reservation = result.scalar_one_or_none()
    if reservation is None:
        raise ResourceNotFoundError("Reservation", reservation_id)

    if not (actor.owns(reservation) or actor.is_elevated):
        raise InsufficientPermissionsError("No permission to view checklists of this reservation")

    submissions = await db.execute(
        select(ChecklistSubmission)
        .where(ChecklistSubmission.reservation_id == reservation.id)
        .order_by(ChecklistSubmission.created_at, ChecklistSubmission.id)
    )
    return list(submissions.scalars().all())


def _validation_label(validation: Optional[ChecklistSubmission]) -> str:
    if validation is None:
        return "Pending"
    outcome = extract_decision(validation.payload)
    if outcome == ValidationOutcome.APPROVED:
        return "Validated"
    if outcome == ValidationOutcome.REJECTED:
        return "Rejected"
    return "Pending"


async def list_pending_for_approver(db: AsyncSession, actor: Actor) -> list[dict]:
    """
    Approver inbox: reservations whose requester sent a return checklist.

    Approvers see the reservations they approved; admins see the whole
    tenant.

    Returns:
        One dict per reservation with its return checklist and the
        validation status (Pending, Validated or Rejected)
    """
    if not actor.is_elevated:
        raise InsufficientPermissionsError("Only approvers or admins can list pending checklists")

    query = (
        select(Reservation, ChecklistSubmission)
        .join(ChecklistSubmission, ChecklistSubmission.reservation_id == Reservation.id)
        .where(
            Reservation.tenant_id == actor.tenant_id,
            ChecklistSubmission.kind == ChecklistSubmissionKind.USER_RETURN
        )
        .order_by(ChecklistSubmission.created_at.desc())
    )
    if not actor.is_admin:
        query = query.where(Reservation.approver_user_id == actor.id)

    rows = (await db.execute(query)).all()
    if not rows:
        return []

    reservation_ids = [reservation.id for reservation, _ in rows]
    validations_result = await db.execute(
        select(ChecklistSubmission).where(
            ChecklistSubmission.reservation_id.in_(reservation_ids),
            ChecklistSubmission.kind == ChecklistSubmissionKind.APPROVER_VALIDATION
        )
    )
    validations = {item.reservation_id: item for item in validations_result.scalars().all()}

    return [
        {
            "reservation": reservation,
            "user_return": user_return,
            "validation_status": _validation_label(validations.get(reservation.id))
        }
        for reservation, user_return in rows
    ]
