"""Recipient selection for notification fan-out.

The selection rules are plain functions over already-loaded rows so they can
be checked without a database. ``RecipientLoader`` fetches those rows.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.conversation import ConversationParticipant, ConversationThread
from src.models.enums import AssignmentRole, UserRole
from src.models.intervention_assignment import InterventionAssignment
from src.models.user import User


@dataclass(frozen=True)
class Assignee:
    user_id: uuid.UUID
    role: AssignmentRole
    is_primary: bool = False
    name: str = ""
    email: str | None = None


@dataclass(frozen=True)
class Recipient:
    user_id: uuid.UUID
    role: str
    is_personal: bool = True
    name: str = ""
    email: str | None = None


def _dedupe(recipients: Iterable[Recipient], actor_id: uuid.UUID | None) -> list[Recipient]:
    """Drop the actor and merge duplicates, keeping first-seen order.

    A user reached both personally and team-wide stays personal.
    """
    merged: dict[uuid.UUID, Recipient] = {}
    for recipient in recipients:
        if recipient.user_id == actor_id:
            continue
        existing = merged.get(recipient.user_id)
        if existing is None:
            merged[recipient.user_id] = recipient
        elif recipient.is_personal and not existing.is_personal:
            merged[recipient.user_id] = Recipient(
                user_id=existing.user_id,
                role=existing.role,
                is_personal=True,
                name=existing.name,
                email=existing.email,
            )
    return list(merged.values())


def intervention_recipients(
    assignees: Iterable[Assignee],
    audience: Iterable[AssignmentRole],
    actor_id: uuid.UUID | None,
) -> list[Recipient]:
    """Assignees whose role is in ``audience``, without the actor.

    Managers are personal recipients only through their primary assignment;
    tenants and providers are always personal.
    """
    roles = set(audience)
    return _dedupe(
        (
            Recipient(
                user_id=a.user_id,
                role=a.role.value,
                is_personal=a.is_primary if a.role == AssignmentRole.MANAGER else True,
                name=a.name,
                email=a.email,
            )
            for a in assignees
            if a.role in roles
        ),
        actor_id,
    )


def conversation_recipients(
    participants: Iterable[Recipient],
    team_managers: Iterable[Recipient],
    actor_id: uuid.UUID | None,
) -> list[Recipient]:
    """Thread participants plus the team's managers, without the actor.

    Managers who only follow the thread for transparency get team-wide
    (non-personal) notifications.
    """
    personal = [
        Recipient(p.user_id, p.role, True, p.name, p.email) for p in participants
    ]
    transparency = [
        Recipient(m.user_id, m.role, False, m.name, m.email) for m in team_managers
    ]
    return _dedupe([*personal, *transparency], actor_id)


class RecipientLoader:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def assignees(self, intervention_id: uuid.UUID) -> list[Assignee]:
        result = await self.db.execute(
            select(InterventionAssignment, User)
            .join(User, User.id == InterventionAssignment.user_id)
            .where(InterventionAssignment.intervention_id == intervention_id)
            .order_by(InterventionAssignment.created_at.asc())
        )
        return [
            Assignee(
                user_id=user.id,
                role=assignment.role,
                is_primary=assignment.is_primary,
                name=user.name,
                email=user.email,
            )
            for assignment, user in result.all()
        ]

    async def participants(self, thread_id: uuid.UUID) -> list[Recipient]:
        result = await self.db.execute(
            select(User)
            .join(ConversationParticipant, ConversationParticipant.user_id == User.id)
            .where(ConversationParticipant.thread_id == thread_id)
            .order_by(ConversationParticipant.joined_at.asc())
        )
        return [
            Recipient(u.id, u.role.value, True, u.name, u.email)
            for u in result.scalars().all()
        ]

    async def team_managers(self, team_id: uuid.UUID) -> list[Recipient]:
        """Active managers and admins of a team that have a login."""
        result = await self.db.execute(
            select(User).where(
                User.team_id == team_id,
                User.role.in_([UserRole.MANAGER, UserRole.ADMIN]),
                User.is_active.is_(True),
                User.auth_user_id.is_not(None),
            )
        )
        return [
            Recipient(u.id, u.role.value, False, u.name, u.email)
            for u in result.scalars().all()
        ]

    async def thread_recipients(
        self, thread: ConversationThread, actor_id: uuid.UUID | None
    ) -> list[Recipient]:
        participants = await self.participants(thread.id)
        managers = await self.team_managers(thread.team_id)
        return conversation_recipients(participants, managers, actor_id)
