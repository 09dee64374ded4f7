"""Loading and access checks shared by the intervention-scoped services."""

from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.exceptions import ForbiddenException, NotFoundException
from src.models.enums import AssignmentRole, UserRole
from src.models.intervention import Intervention
from src.models.intervention_assignment import InterventionAssignment
from src.modules.auth.actor import Actor

# Assignment role an actor must hold to act on an intervention it does not manage
ACTOR_ASSIGNMENT_ROLE: dict[UserRole, AssignmentRole] = {
    UserRole.PROVIDER: AssignmentRole.PROVIDER,
    UserRole.TENANT: AssignmentRole.TENANT,
}


async def get_intervention(
    db: AsyncSession, intervention_id: uuid.UUID, for_update: bool = False
) -> Intervention:
    """Load an intervention. Raises NotFoundException if not found.

    ``for_update`` takes a row lock so concurrent transitions serialize.
    """
    query = select(Intervention).where(Intervention.id == intervention_id)
    if for_update:
        query = query.with_for_update()
    result = await db.execute(query)
    intervention = result.scalar_one_or_none()
    if intervention is None:
        raise NotFoundException(f"Intervention {intervention_id} not found")
    return intervention


async def has_assignment(
    db: AsyncSession,
    intervention_id: uuid.UUID,
    user_id: uuid.UUID,
    role: AssignmentRole | None = None,
) -> bool:
    query = select(InterventionAssignment.id).where(
        InterventionAssignment.intervention_id == intervention_id,
        InterventionAssignment.user_id == user_id,
    )
    if role is not None:
        query = query.where(InterventionAssignment.role == role)
    result = await db.execute(query.limit(1))
    return result.scalar_one_or_none() is not None


async def ensure_acting_scope(db: AsyncSession, intervention: Intervention, actor: Actor) -> None:
    """Managers act within their team; providers and tenants through their assignment."""
    if actor.is_manager:
        if actor.team_id != intervention.team_id:
            raise ForbiddenException("Intervention belongs to another team")
        return
    role = ACTOR_ASSIGNMENT_ROLE.get(actor.role)
    if role is None or not await has_assignment(db, intervention.id, actor.id, role):
        raise ForbiddenException(
            f"User is not assigned to intervention {intervention.reference} as {actor.role.value}"
        )


async def ensure_visible(db: AsyncSession, intervention: Intervention, actor: Actor) -> None:
    if actor.is_manager:
        if actor.team_id != intervention.team_id:
            raise ForbiddenException("Intervention belongs to another team")
        return
    if not await has_assignment(db, intervention.id, actor.id):
        raise ForbiddenException("User is not assigned to this intervention")


def ensure_manager(actor: Actor, team_id: uuid.UUID | None = None) -> None:
    if not actor.is_manager:
        raise ForbiddenException("Only managers can perform this operation")
    if team_id is not None and actor.team_id != team_id:
        raise ForbiddenException("Resource belongs to another team")
