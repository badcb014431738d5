"""
Checklist templates.

Admins describe, per vehicle, what the return checklist asks for. A
template is tied to exactly one vehicle of the tenant; requesters and
approvers fill it in through the checklists collaborator.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import select, delete, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import (
    InsufficientPermissionsError,
    InvalidTransitionError,
    ResourceConflictError,
    ResourceNotFoundError,
)
from backend.app.db.transaction import atomic
from backend.app.domain.reservations.actor import Actor
from backend.app.models.checklist_submission import ChecklistSubmission
from backend.app.models.checklist_template import ChecklistTemplate, ChecklistTemplateItem
from backend.app.models.reservation import Reservation
from backend.app.services.audit import log_event, AuditAction, AuditEntity
from backend.app.services.resource_registry import find_vehicle

logger = logging.getLogger("reservations.checklist_templates")

TemplateWithItems = tuple[ChecklistTemplate, list[ChecklistTemplateItem]]


def _require_admin(actor: Actor) -> None:
    if not actor.is_admin:
        raise InsufficientPermissionsError("Only admins can manage checklist templates")


def _build_items(template_id: str, items: Sequence[Dict[str, Any]]) -> list[ChecklistTemplateItem]:
    # Items without an explicit position keep their order in the request
    return [
        ChecklistTemplateItem(
            template_id=template_id,
            label=item["label"],
            type=item["type"],
            required=item.get("required", True),
            options=item.get("options"),
            position=item["position"] if item.get("position") is not None else index
        )
        for index, item in enumerate(items)
    ]


async def _load_items(db: AsyncSession, template_ids: Sequence[str]) -> dict[str, list[ChecklistTemplateItem]]:
    grouped: dict[str, list[ChecklistTemplateItem]] = {template_id: [] for template_id in template_ids}
    if not template_ids:
        return grouped

    result = await db.execute(
        select(ChecklistTemplateItem)
        .where(ChecklistTemplateItem.template_id.in_(template_ids))
        .order_by(ChecklistTemplateItem.position, ChecklistTemplateItem.id)
        .execution_options(populate_existing=True)
    )
    for item in result.scalars().all():
        grouped[item.template_id].append(item)
    return grouped


async def _find_template(
    db: AsyncSession,
    tenant_id: str,
    template_id: str,
    for_update: bool = False
) -> Optional[ChecklistTemplate]:
    query = select(ChecklistTemplate).where(
        ChecklistTemplate.id == template_id,
        ChecklistTemplate.tenant_id == tenant_id
    ).execution_options(populate_existing=True)
    if for_update:
        query = query.with_for_update()
    return (await db.execute(query)).scalar_one_or_none()


async def _with_items(db: AsyncSession, template: ChecklistTemplate) -> TemplateWithItems:
    await db.refresh(template)
    items = await _load_items(db, [template.id])
    return template, items[template.id]


async def _ensure_vehicle_free(
    db: AsyncSession,
    tenant_id: str,
    vehicle_id: str,
    exclude_template_id: Optional[str] = None
) -> None:
    vehicle = await find_vehicle(db, tenant_id, vehicle_id)
    if vehicle is None:
        raise ResourceNotFoundError("Vehicle", vehicle_id)

    query = select(ChecklistTemplate.id).where(
        ChecklistTemplate.tenant_id == tenant_id,
        ChecklistTemplate.vehicle_id == vehicle_id
    )
    if exclude_template_id:
        query = query.where(ChecklistTemplate.id != exclude_template_id)
    if (await db.execute(query)).first() is not None:
        raise ResourceConflictError(
            "ChecklistTemplate",
            "A checklist template already exists for this vehicle",
            details={"vehicle_id": vehicle_id}
        )


async def create_template(
    db: AsyncSession,
    actor: Actor,
    name: str,
    vehicle_id: str,
    items: Sequence[Dict[str, Any]],
    is_active: bool = True
) -> TemplateWithItems:
    """
    Create the checklist template of a vehicle (Admin).

    Raises:
        InsufficientPermissionsError: Actor is not an admin
        ResourceNotFoundError: Vehicle absent in tenant
        ResourceConflictError: The vehicle already has a template
    """
    _require_admin(actor)

    async with atomic(db, "create checklist template"):
        await _ensure_vehicle_free(db, actor.tenant_id, vehicle_id)

        template = ChecklistTemplate(
            tenant_id=actor.tenant_id,
            vehicle_id=vehicle_id,
            name=name,
            is_active=is_active
        )
        db.add(template)
        try:
            await db.flush()
        except IntegrityError:
            raise ResourceConflictError(
                "ChecklistTemplate",
                "A checklist template already exists for this vehicle",
                details={"vehicle_id": vehicle_id}
            )

        db.add_all(_build_items(template.id, items))
        await db.flush()

        await log_event(
            db=db,
            tenant_id=actor.tenant_id,
            action=AuditAction.CHECKLIST_TEMPLATE_CREATED,
            entity=AuditEntity.CHECKLIST_TEMPLATE,
            entity_id=template.id,
            actor_id=actor.id,
            metadata={"name": name, "vehicle_id": vehicle_id, "items": len(items)}
        )

    logger.info("Checklist template %s created for vehicle %s by %s", template.id, vehicle_id, actor.id)
    return await _with_items(db, template)


async def list_templates(
    db: AsyncSession,
    actor: Actor,
    only_active: bool = True,
    vehicle_id: Optional[str] = None
) -> List[TemplateWithItems]:
    query = select(ChecklistTemplate).where(ChecklistTemplate.tenant_id == actor.tenant_id)
    if only_active:
        query = query.where(ChecklistTemplate.is_active.is_(True))
    if vehicle_id:
        query = query.where(ChecklistTemplate.vehicle_id == vehicle_id)
    query = query.order_by(ChecklistTemplate.name, ChecklistTemplate.id)

    templates = list((await db.execute(query)).scalars().all())
    items = await _load_items(db, [template.id for template in templates])
    return [(template, items[template.id]) for template in templates]


async def update_template(
    db: AsyncSession,
    actor: Actor,
    template_id: str,
    name: Optional[str] = None,
    vehicle_id: Optional[str] = None,
    is_active: Optional[bool] = None,
    items: Optional[Sequence[Dict[str, Any]]] = None
) -> TemplateWithItems:
    """
    Edit a template (Admin).

    Fields left as None are kept. When items are given they replace the
    template's items as a whole.

    Raises:
        InsufficientPermissionsError: Actor is not an admin
        ResourceNotFoundError: Template or new vehicle absent in tenant
        ResourceConflictError: The new vehicle already has a template
    """
    _require_admin(actor)

    async with atomic(db, "update checklist template"):
        template = await _find_template(db, actor.tenant_id, template_id, for_update=True)
        if template is None:
            raise ResourceNotFoundError("ChecklistTemplate", template_id)

        before = {"name": template.name, "vehicle_id": template.vehicle_id}

        if vehicle_id and vehicle_id != template.vehicle_id:
            await _ensure_vehicle_free(db, actor.tenant_id, vehicle_id, exclude_template_id=template.id)
            template.vehicle_id = vehicle_id

        if name is not None:
            template.name = name
        if is_active is not None:
            template.is_active = is_active

        if items is not None:
            await db.execute(
                delete(ChecklistTemplateItem).where(ChecklistTemplateItem.template_id == template.id)
            )
            db.add_all(_build_items(template.id, items))

        await db.flush()

        await log_event(
            db=db,
            tenant_id=actor.tenant_id,
            action=AuditAction.CHECKLIST_TEMPLATE_UPDATED,
            entity=AuditEntity.CHECKLIST_TEMPLATE,
            entity_id=template.id,
            actor_id=actor.id,
            metadata={
                "before": before,
                "after": {"name": template.name, "vehicle_id": template.vehicle_id},
                "items_replaced": items is not None
            }
        )

    logger.info("Checklist template %s updated by %s", template_id, actor.id)
    return await _with_items(db, template)


async def set_template_active(
    db: AsyncSession,
    actor: Actor,
    template_id: str,
    is_active: bool
) -> TemplateWithItems:
    """Activate or deactivate a template (Admin). Inactive templates cannot be submitted."""
    _require_admin(actor)

    async with atomic(db, "toggle checklist template"):
        template = await _find_template(db, actor.tenant_id, template_id, for_update=True)
        if template is None:
            raise ResourceNotFoundError("ChecklistTemplate", template_id)

        template.is_active = is_active
        await db.flush()

        await log_event(
            db=db,
            tenant_id=actor.tenant_id,
            action=(
                AuditAction.CHECKLIST_TEMPLATE_ACTIVATED if is_active
                else AuditAction.CHECKLIST_TEMPLATE_DEACTIVATED
            ),
            entity=AuditEntity.CHECKLIST_TEMPLATE,
            entity_id=template.id,
            actor_id=actor.id,
            metadata={"name": template.name, "vehicle_id": template.vehicle_id}
        )

    return await _with_items(db, template)


async def delete_template(db: AsyncSession, actor: Actor, template_id: str) -> dict:
    """
    Delete a template and its items (Admin).

    A template that has been filled in at least once can only be
    deactivated.

    Raises:
        InsufficientPermissionsError: Actor is not an admin
        ResourceNotFoundError: Template absent in tenant
        ResourceConflictError: Submissions reference the template
    """
    _require_admin(actor)

    async with atomic(db, "delete checklist template"):
        template = await _find_template(db, actor.tenant_id, template_id, for_update=True)
        if template is None:
            raise ResourceNotFoundError("ChecklistTemplate", template_id)

        used = (await db.execute(
            select(func.count(ChecklistSubmission.id)).where(ChecklistSubmission.template_id == template.id)
        )).scalar()
        if used:
            raise ResourceConflictError(
                "ChecklistTemplate",
                "This checklist template was already used by reservations; deactivate it instead",
                details={"template_id": template.id, "submissions": used}
            )

        await db.execute(
            delete(ChecklistTemplateItem).where(ChecklistTemplateItem.template_id == template.id)
        )
        await db.delete(template)
        await db.flush()

        await log_event(
            db=db,
            tenant_id=actor.tenant_id,
            action=AuditAction.CHECKLIST_TEMPLATE_DELETED,
            entity=AuditEntity.CHECKLIST_TEMPLATE,
            entity_id=template_id,
            actor_id=actor.id,
            metadata={"name": template.name, "vehicle_id": template.vehicle_id}
        )

    logger.info("Checklist template %s deleted by %s", template_id, actor.id)
    return {"id": template_id, "deleted": True}


async def find_active_template(
    db: AsyncSession,
    tenant_id: str,
    template_id: str
) -> Optional[ChecklistTemplate]:
    template = await _find_template(db, tenant_id, template_id)
    if template is None or not template.is_active:
        return None
    return template


async def get_template_for_reservation(
    db: AsyncSession,
    actor: Actor,
    reservation_id: str
) -> TemplateWithItems:
    """
    The active template of the vehicle bound to a reservation.

    Raises:
        ResourceNotFoundError: Reservation absent in tenant, or no active
            template for its vehicle
        InsufficientPermissionsError: Requester asking about someone else's reservation
        InvalidTransitionError: No vehicle bound to the reservation
    """
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
        raise InsufficientPermissionsError("No permission to view this reservation's checklist")

    if not reservation.vehicle_id:
        raise InvalidTransitionError(
            reservation.id,
            reservation.status.value,
            "get checklist template",
            message="Reservation has no vehicle bound"
        )

    template = (await db.execute(
        select(ChecklistTemplate).where(
            ChecklistTemplate.tenant_id == actor.tenant_id,
            ChecklistTemplate.vehicle_id == reservation.vehicle_id,
            ChecklistTemplate.is_active.is_(True)
        )
    )).scalar_one_or_none()
    if template is None:
        raise ResourceNotFoundError("ChecklistTemplate")

    items = await _load_items(db, [template.id])
    return template, items[template.id]
