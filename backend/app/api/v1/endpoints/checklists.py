"""
Checklist API Endpoints.

Per-vehicle checklist templates (managed by admins), requester return
checklists and approver validations. An approver validation feeds the
completion aggregator.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db.session import get_db
from backend.app.core.dependencies import get_current_actor
from backend.app.core.guards import require_admin, require_elevated
from backend.app.domain.reservations.actor import Actor
from backend.app.schemas.checklist import (
    ChecklistSubmissionResponse,
    ChecklistSubmit,
    ChecklistSubmitResponse,
    ChecklistTemplateCreate,
    ChecklistTemplateDeleteResponse,
    ChecklistTemplateResponse,
    ChecklistTemplateUpdate,
    PendingChecklistItem,
    PendingChecklistListResponse,
)
from backend.app.schemas.reservation import ReservationResponse
from backend.app.services import checklists as checklist_service
from backend.app.services import checklist_templates as template_service

reservation_router = APIRouter(prefix="/reservations", tags=["Checklists"])
router = APIRouter(prefix="/checklists", tags=["Checklists"])


@reservation_router.post(
    "/{reservation_id}/checklists",
    response_model=ChecklistSubmitResponse,
    status_code=status.HTTP_201_CREATED
)
async def submit_checklist(
    data: ChecklistSubmit,
    reservation_id: str = Path(..., description="Reservation ID"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db)
):
    """
    Submit a checklist.

    USER_RETURN comes from the requester, APPROVER_VALIDATION from the
    reservation's approver (or an admin). One submission per kind.
    """
    submission, completion = await checklist_service.submit_checklist(
        db,
        actor,
        reservation_id,
        kind=data.kind,
        template_id=data.template_id,
        payload=data.payload,
        decision=data.decision
    )
    return ChecklistSubmitResponse(
        submission=ChecklistSubmissionResponse.model_validate(submission),
        reservation_completed=bool(completion and completion.completed)
    )


@reservation_router.get("/{reservation_id}/checklists", response_model=list[ChecklistSubmissionResponse])
async def list_checklists(
    reservation_id: str = Path(..., description="Reservation ID"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db)
):
    submissions = await checklist_service.list_submissions(db, actor, reservation_id)
    return [ChecklistSubmissionResponse.model_validate(s) for s in submissions]


@router.get("/pending", response_model=PendingChecklistListResponse)
async def list_pending_checklists(
    actor: Actor = Depends(require_elevated),
    db: AsyncSession = Depends(get_db)
):
    """Approver inbox of returned reservations and their validation status."""
    rows = await checklist_service.list_pending_for_approver(db, actor)
    items = [
        PendingChecklistItem(
            reservation=ReservationResponse.model_validate(row["reservation"]),
            user_return=ChecklistSubmissionResponse.model_validate(row["user_return"]),
            validation_status=row["validation_status"]
        )
        for row in rows
    ]
    return PendingChecklistListResponse(items=items, total=len(items))


@reservation_router.get("/{reservation_id}/checklist-template", response_model=ChecklistTemplateResponse)
async def get_reservation_template(
    reservation_id: str = Path(..., description="Reservation ID"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db)
):
    """Active checklist template of the vehicle bound to the reservation."""
    template, items = await template_service.get_template_for_reservation(db, actor, reservation_id)
    return ChecklistTemplateResponse.from_template(template, items)


# Templates

@router.post("/templates", response_model=ChecklistTemplateResponse, status_code=status.HTTP_201_CREATED)
async def create_template(
    data: ChecklistTemplateCreate,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Create the checklist template of a vehicle (Admin only). One per vehicle."""
    template, items = await template_service.create_template(
        db,
        actor,
        name=data.name,
        vehicle_id=data.vehicle_id,
        items=[item.model_dump() for item in data.items],
        is_active=data.is_active
    )
    return ChecklistTemplateResponse.from_template(template, items)


@router.get("/templates", response_model=list[ChecklistTemplateResponse])
async def list_templates(
    only_active: bool = Query(True),
    vehicle_id: Optional[str] = Query(None),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db)
):
    rows = await template_service.list_templates(db, actor, only_active=only_active, vehicle_id=vehicle_id)
    return [ChecklistTemplateResponse.from_template(template, items) for template, items in rows]


@router.put("/templates/{template_id}", response_model=ChecklistTemplateResponse)
async def update_template(
    data: ChecklistTemplateUpdate,
    template_id: str = Path(..., description="Checklist template ID"),
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    template, items = await template_service.update_template(
        db,
        actor,
        template_id,
        name=data.name,
        vehicle_id=data.vehicle_id,
        is_active=data.is_active,
        items=[item.model_dump() for item in data.items] if data.items is not None else None
    )
    return ChecklistTemplateResponse.from_template(template, items)


@router.patch("/templates/{template_id}/status", response_model=ChecklistTemplateResponse)
async def set_template_status(
    template_id: str = Path(..., description="Checklist template ID"),
    active: bool = Query(True),
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    template, items = await template_service.set_template_active(db, actor, template_id, active)
    return ChecklistTemplateResponse.from_template(template, items)


@router.delete("/templates/{template_id}", response_model=ChecklistTemplateDeleteResponse)
async def delete_template(
    template_id: str = Path(..., description="Checklist template ID"),
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Delete an unused template (Admin only). Used templates can only be deactivated."""
    return await template_service.delete_template(db, actor, template_id)
