"""
Reservation API Endpoints.

Thin HTTP layer over the reservation engine: requests are translated into
engine calls with an explicit Actor, engine errors are rendered by the
global exception handlers.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db.session import get_db
from backend.app.core.dependencies import get_current_actor
from backend.app.core.guards import require_elevated
from backend.app.domain.reservations.actor import Actor
from backend.app.domain.reservations.completion import CompletionAggregator
from backend.app.domain.reservations.state_machine import ReservationService, ReservationFilters
from backend.app.models.reservation_enums import ReservationStatus
from backend.app.schemas.reservation import (
    AuditLogResponse,
    ChecklistSummaryResponse,
    CompletionStatusResponse,
    ReservationApprove,
    ReservationCreate,
    ReservationDeleteResponse,
    ReservationListResponse,
    ReservationResponse,
)
from backend.app.services.audit import get_audit_trail

router = APIRouter(prefix="/reservations", tags=["Reservations"])


def _list_response(items, total: int, page: int, page_size: int) -> ReservationListResponse:
    return ReservationListResponse(
        reservations=[ReservationResponse.model_validate(r) for r in items],
        total=total,
        page=page,
        page_size=page_size
    )


@router.post("", response_model=ReservationResponse, status_code=status.HTTP_201_CREATED)
async def create_reservation(
    data: ReservationCreate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db)
):
    """
    Request a vehicle for a time window.

    The reservation starts PENDING. A vehicle given here is checked for
    availability and overlapping holds but only bound on approval.
    """
    reservation = await ReservationService.create(
        db,
        actor,
        origin=data.origin,
        destination=data.destination,
        start_at=data.start_at,
        end_at=data.end_at,
        vehicle_id=data.vehicle_id,
        branch_id=data.branch_id,
        purpose=data.purpose,
        notes=data.notes,
        passengers=data.passengers
    )
    return ReservationResponse.model_validate(reservation)


@router.get("", response_model=ReservationListResponse)
async def list_reservations(
    status_filter: Optional[ReservationStatus] = Query(None, alias="status"),
    vehicle_id: Optional[str] = Query(None),
    user_id: Optional[str] = Query(None),
    branch_id: Optional[str] = Query(None),
    from_: Optional[datetime] = Query(None, alias="from"),
    to: Optional[datetime] = Query(None),
    page: int = Query(1, ge=1),
    page_size: Optional[int] = Query(None, ge=1),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db)
):
    """
    List reservations of the tenant.

    Requesters only see their own. ``from``/``to`` keep reservations whose
    window touches the range.
    """
    filters = ReservationFilters(
        status=status_filter,
        vehicle_id=vehicle_id,
        user_id=user_id,
        branch_id=branch_id,
        from_=from_,
        to=to,
        page=page,
        page_size=page_size
    )
    return _list_response(*await ReservationService.list(db, actor, filters))


@router.get("/me", response_model=ReservationListResponse)
async def list_my_reservations(
    status_filter: Optional[ReservationStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: Optional[int] = Query(None, ge=1),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db)
):
    """List the reservations requested by the caller."""
    filters = ReservationFilters(status=status_filter, only_own=True, page=page, page_size=page_size)
    return _list_response(*await ReservationService.list(db, actor, filters))


@router.get("/{reservation_id}", response_model=ReservationResponse)
async def get_reservation(
    reservation_id: str = Path(..., description="Reservation ID"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db)
):
    reservation = await ReservationService.get(db, actor, reservation_id)
    return ReservationResponse.model_validate(reservation)


@router.patch("/{reservation_id}/approve", response_model=ReservationResponse)
async def approve_reservation(
    data: ReservationApprove,
    reservation_id: str = Path(..., description="Reservation ID"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db)
):
    """
    Approve a PENDING reservation (Approver/Admin).

    Binds the vehicle given in the body, or the one chosen at creation,
    and marks it IN_USE.
    """
    reservation = await ReservationService.approve(
        db, actor, reservation_id, vehicle_id=data.vehicle_id, notes=data.notes
    )
    return ReservationResponse.model_validate(reservation)


@router.patch("/{reservation_id}/cancel", response_model=ReservationResponse)
async def cancel_reservation(
    reservation_id: str = Path(..., description="Reservation ID"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db)
):
    reservation = await ReservationService.cancel(db, actor, reservation_id)
    return ReservationResponse.model_validate(reservation)


@router.patch("/{reservation_id}/complete", response_model=ReservationResponse)
async def complete_reservation(
    reservation_id: str = Path(..., description="Reservation ID"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db)
):
    """
    Manual completion.

    Approvers and admins close the reservation. The requester's call only
    sends the return for validation; the reservation stays APPROVED.
    """
    reservation = await ReservationService.complete_manually(db, actor, reservation_id)
    return ReservationResponse.model_validate(reservation)


@router.delete("/{reservation_id}", response_model=ReservationDeleteResponse)
async def delete_reservation(
    reservation_id: str = Path(..., description="Reservation ID"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db)
):
    """Hard-delete a reservation that is not COMPLETED (Admin only)."""
    return await ReservationService.remove(db, actor, reservation_id)


@router.get("/{reservation_id}/completion", response_model=CompletionStatusResponse)
async def get_completion_status(
    reservation_id: str = Path(..., description="Reservation ID"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db)
):
    """Evaluate the completion rules without changing anything."""
    await ReservationService.get(db, actor, reservation_id)
    assessment = await CompletionAggregator.evaluate(db, actor.scope, reservation_id)

    decision = assessment.checklist.decision
    return CompletionStatusResponse(
        reservation_id=reservation_id,
        reservation_status=assessment.reservation_status,
        document_status=assessment.documents.value,
        checklist=ChecklistSummaryResponse(
            has_user_return=assessment.checklist.has_user_return,
            has_approver_validation=assessment.checklist.has_approver_validation,
            decision=decision.value if decision else None
        ),
        eligible=assessment.eligible,
        reason=assessment.reason
    )


@router.get("/{reservation_id}/audit", response_model=list[AuditLogResponse])
async def get_reservation_audit(
    reservation_id: str = Path(..., description="Reservation ID"),
    limit: int = Query(100, ge=1, le=500),
    actor: Actor = Depends(require_elevated),
    db: AsyncSession = Depends(get_db)
):
    """Audit trail of a reservation, most recent first (Approver/Admin)."""
    entries = await get_audit_trail(db, actor.tenant_id, entity_id=reservation_id, limit=limit)
    return [AuditLogResponse.model_validate(entry) for entry in entries]
