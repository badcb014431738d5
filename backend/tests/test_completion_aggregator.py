"""
Completion aggregator tests.

Documents and checklists recorded through their collaborators; the
aggregator completes the reservation once both streams are settled.
"""

import pytest
from sqlalchemy import select

from backend.app.core.exceptions import (
    AlreadyFinalizedError,
    InsufficientPermissionsError,
    InvalidTransitionError,
    ResourceNotFoundError,
)
from backend.app.domain.reservations.actor import Actor
from backend.app.domain.reservations.completion import CompletionAggregator
from backend.app.domain.reservations.state_machine import ReservationService
from backend.app.models.audit_log import AuditLog
from backend.app.models.enums import UserRole
from backend.app.models.reservation import Reservation
from backend.app.models.reservation_enums import (
    ChecklistSubmissionKind,
    DocumentAggregateStatus,
    ReservationStatus,
    ValidationOutcome,
    VehicleStatus,
)
from backend.app.services import checklists as checklist_service
from backend.app.services import documents as document_service
from conftest import TENANT_ID, vehicle_status

USER_RETURN = ChecklistSubmissionKind.USER_RETURN
APPROVER_VALIDATION = ChecklistSubmissionKind.APPROVER_VALIDATION


@pytest.fixture
async def approved_reservation(db_session, requester, approver, vehicle):
    reservation = await ReservationService.create(
        db_session, requester, "HQ", "Airport",
        "2025-01-10T09:00:00Z", "2025-01-10T11:00:00Z",
        vehicle_id=vehicle.id
    )
    return await ReservationService.approve(db_session, approver, reservation.id)


async def reservation_status(session_factory, reservation_id):
    async with session_factory() as session:
        return (await session.get(Reservation, reservation_id)).status


async def completion_audits(session_factory, reservation_id):
    async with session_factory() as session:
        result = await session.execute(
            select(AuditLog).where(
                AuditLog.entity_id == reservation_id,
                AuditLog.action == "reservation.completed"
            )
        )
        return list(result.scalars().all())


@pytest.mark.asyncio
async def test_documents_and_checklist_complete_reservation(
    db_session, session_factory, requester, approver, vehicle, template_id, approved_reservation
):
    """Approved document plus decided checklist completes and frees the vehicle."""
    reservation_id = approved_reservation.id

    document = await document_service.register_document(
        db_session, requester, reservation_id, type="FUEL_RECEIPT", file_name="receipt.pdf"
    )
    assert document.status == "PENDING"

    _, completion = await document_service.validate_document(
        db_session, approver, document.id, ValidationOutcome.APPROVED
    )
    assert not completion.completed
    assert completion.assessment.reason == "user_return_missing"

    _, completion = await checklist_service.submit_checklist(
        db_session, requester, reservation_id, USER_RETURN, template_id,
        payload={"fuel": "full", "damage": False}
    )
    assert completion is None

    submission, completion = await checklist_service.submit_checklist(
        db_session, approver, reservation_id, APPROVER_VALIDATION, template_id,
        payload={"notes": "clean"}, decision="APPROVED"
    )

    assert submission.payload == {"notes": "clean", "decision": "APPROVED"}
    assert completion.completed
    assert await reservation_status(session_factory, reservation_id) == ReservationStatus.COMPLETED
    assert await vehicle_status(session_factory, vehicle.id) == VehicleStatus.AVAILABLE

    audits = await completion_audits(session_factory, reservation_id)
    assert len(audits) == 1
    assert audits[0].meta_data["via"] == "docs+checklist"


@pytest.mark.asyncio
async def test_pending_document_blocks_completion(
    db_session, session_factory, requester, approver, vehicle, template_id, approved_reservation
):
    """A document still pending keeps the reservation APPROVED."""
    reservation_id = approved_reservation.id

    await document_service.register_document(db_session, requester, reservation_id, type="FUEL_RECEIPT")
    await checklist_service.submit_checklist(db_session, requester, reservation_id, USER_RETURN, template_id, payload={})
    _, completion = await checklist_service.submit_checklist(
        db_session, approver, reservation_id, APPROVER_VALIDATION, template_id, decision="APPROVED"
    )

    assert not completion.completed
    assert completion.assessment.documents == DocumentAggregateStatus.IN_VALIDATION
    assert await reservation_status(session_factory, reservation_id) == ReservationStatus.APPROVED
    assert await vehicle_status(session_factory, vehicle.id) == VehicleStatus.IN_USE


@pytest.mark.asyncio
async def test_rejected_return_still_completes(
    db_session, session_factory, requester, approver, template_id, approved_reservation
):
    reservation_id = approved_reservation.id

    document = await document_service.register_document(db_session, requester, reservation_id)
    await document_service.validate_document(db_session, approver, document.id, ValidationOutcome.APPROVED)
    await checklist_service.submit_checklist(db_session, requester, reservation_id, USER_RETURN, template_id)
    _, completion = await checklist_service.submit_checklist(
        db_session, approver, reservation_id, APPROVER_VALIDATION, template_id, payload={"result": "rejected"}
    )

    assert completion.completed
    assert await reservation_status(session_factory, reservation_id) == ReservationStatus.COMPLETED


@pytest.mark.asyncio
async def test_aggregator_is_idempotent(
    db_session, session_factory, requester, approver, vehicle, template_id, approved_reservation
):
    reservation_id = approved_reservation.id
    scope = approver.scope

    document = await document_service.register_document(db_session, requester, reservation_id)
    await checklist_service.submit_checklist(db_session, requester, reservation_id, USER_RETURN, template_id)
    await checklist_service.submit_checklist(
        db_session, approver, reservation_id, APPROVER_VALIDATION, template_id, decision="approve"
    )
    _, completion = await document_service.validate_document(
        db_session, approver, document.id, ValidationOutcome.APPROVED
    )
    assert completion.completed

    again = await CompletionAggregator.try_complete(db_session, scope, reservation_id)
    once_more = await CompletionAggregator.try_complete(db_session, scope, reservation_id)

    assert not again.completed
    assert not once_more.completed
    assert await reservation_status(session_factory, reservation_id) == ReservationStatus.COMPLETED
    assert await vehicle_status(session_factory, vehicle.id) == VehicleStatus.AVAILABLE
    assert len(await completion_audits(session_factory, reservation_id)) == 1


@pytest.mark.asyncio
async def test_aggregator_ignores_missing_and_pending_reservations(db_session, requester, approver):
    missing = await CompletionAggregator.try_complete(db_session, approver.scope, "no-such-reservation")
    assert not missing.completed

    pending = await ReservationService.create(
        db_session, requester, "HQ", "Airport", "2025-01-10T09:00:00Z", "2025-01-10T11:00:00Z"
    )
    result = await CompletionAggregator.try_complete(db_session, approver.scope, pending.id)
    assert not result.completed
    assert result.assessment.reason == "reservation_not_approved"


@pytest.mark.asyncio
async def test_evaluate_has_no_side_effects(db_session, session_factory, requester, approver, approved_reservation):
    reservation_id = approved_reservation.id

    assessment = await CompletionAggregator.evaluate(db_session, approver.scope, reservation_id)

    assert not assessment.eligible
    assert assessment.documents == DocumentAggregateStatus.PENDING
    assert assessment.checklist.decision is None
    assert await reservation_status(session_factory, reservation_id) == ReservationStatus.APPROVED


@pytest.mark.asyncio
async def test_checklist_submission_rules(db_session, requester, approver, admin, template_id, approved_reservation):
    reservation_id = approved_reservation.id
    other_approver = Actor(id="user-approver-2", role=UserRole.APPROVER, tenant_id=TENANT_ID)

    with pytest.raises(InsufficientPermissionsError):
        await checklist_service.submit_checklist(db_session, approver, reservation_id, USER_RETURN, template_id)

    await checklist_service.submit_checklist(db_session, requester, reservation_id, USER_RETURN, template_id, payload="ok")

    with pytest.raises(AlreadyFinalizedError):
        await checklist_service.submit_checklist(db_session, requester, reservation_id, USER_RETURN, template_id)

    with pytest.raises(InsufficientPermissionsError):
        await checklist_service.submit_checklist(db_session, requester, reservation_id, APPROVER_VALIDATION, template_id)

    with pytest.raises(InsufficientPermissionsError):
        await checklist_service.submit_checklist(
            db_session, other_approver, reservation_id, APPROVER_VALIDATION, template_id, decision="APPROVED"
        )

    submission, _ = await checklist_service.submit_checklist(
        db_session, admin, reservation_id, APPROVER_VALIDATION, template_id, decision="APPROVED"
    )
    assert submission.submitted_by_id == admin.id

    submissions = await checklist_service.list_submissions(db_session, requester, reservation_id)
    assert [s.kind for s in submissions] == [USER_RETURN, APPROVER_VALIDATION]
    assert submissions[0].payload == {"value": "ok"}


@pytest.mark.asyncio
async def test_checklist_requires_bound_vehicle(db_session, requester, template_id):
    reservation = await ReservationService.create(
        db_session, requester, "HQ", "Airport", "2025-01-10T09:00:00Z", "2025-01-10T11:00:00Z"
    )

    with pytest.raises(InvalidTransitionError):
        await checklist_service.submit_checklist(db_session, requester, reservation.id, USER_RETURN, template_id)


@pytest.mark.asyncio
async def test_pending_inbox_tracks_validation(db_session, requester, approver, template_id, approved_reservation):
    reservation_id = approved_reservation.id

    assert await checklist_service.list_pending_for_approver(db_session, approver) == []

    await checklist_service.submit_checklist(db_session, requester, reservation_id, USER_RETURN, template_id)
    inbox = await checklist_service.list_pending_for_approver(db_session, approver)
    assert [(row["reservation"].id, row["validation_status"]) for row in inbox] == [(reservation_id, "Pending")]

    await checklist_service.submit_checklist(
        db_session, approver, reservation_id, APPROVER_VALIDATION, template_id, decision="REJECTED"
    )
    inbox = await checklist_service.list_pending_for_approver(db_session, approver)
    assert inbox[0]["validation_status"] == "Rejected"

    with pytest.raises(InsufficientPermissionsError):
        await checklist_service.list_pending_for_approver(db_session, requester)


@pytest.mark.asyncio
async def test_document_validation_guards(db_session, requester, approver, foreign_admin, approved_reservation):
    document = await document_service.register_document(db_session, requester, approved_reservation.id)

    with pytest.raises(InsufficientPermissionsError):
        await document_service.validate_document(db_session, requester, document.id, ValidationOutcome.APPROVED)

    with pytest.raises(ResourceNotFoundError):
        await document_service.validate_document(db_session, foreign_admin, document.id, ValidationOutcome.APPROVED)

    with pytest.raises(ResourceNotFoundError):
        await document_service.register_document(db_session, foreign_admin, approved_reservation.id)
