"""Planning negotiation: proposed time slots, answers and slot selection.

Participants propose slots while an intervention is in ``planification``
and answer each other's proposals. Selecting a slot runs the ``schedule``
transition; rejecting the selected slot of a planned intervention sends it
back to planning through ``replan``.
"""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.exceptions import BusinessRuleException, NotFoundException, ValidationException
from src.models.enums import (
    AssignmentRole,
    InterventionAction,
    InterventionStatus,
    NotificationType,
    SlotResponseType,
    TimeSlotStatus,
)
from src.models.intervention import Intervention
from src.models.time_slot import InterventionTimeSlot, TimeSlotResponse
from src.modules.auth.actor import Actor
from src.modules.interventions import access
from src.modules.interventions.constants import (
    EVENT_SLOT_RESPONSE,
    EVENT_SLOTS_PROPOSED,
    MAX_SLOTS_PER_PROPOSAL,
    NEGOTIABLE_STATUSES,
)
from src.modules.interventions.workflow_service import InterventionWorkflowService, TransitionResult
from src.modules.notifications.dispatcher import NotificationDispatcher, NotificationEvent
from src.modules.notifications.effects import Effect, EffectRunner
from src.modules.notifications.recipients import RecipientLoader, intervention_recipients
from src.modules.notifications.templates import intervention_url
from src.modules.notifications.throttle import as_utc

logger = logging.getLogger(__name__)

_ALL_ROLES = set(AssignmentRole)

_ANSWER_TITLES: dict[SlotResponseType, str] = {
    SlotResponseType.ACCEPTED: "Créneau accepté",
    SlotResponseType.REJECTED: "Créneau refusé",
    SlotResponseType.COUNTER_PROPOSED: "Contre-proposition",
}


def _slot_error(field: str, message: str) -> ValidationException:
    return ValidationException(message, details=[{"field": field, "message": message}])


def _check_window(start_at: datetime, end_at: datetime, field: str) -> tuple[datetime, datetime]:
    start_at, end_at = as_utc(start_at), as_utc(end_at)
    if end_at <= start_at:
        raise _slot_error(field, "A slot must end after it starts")
    if start_at <= datetime.now(UTC):
        raise _slot_error(field, "A slot must start in the future")
    return start_at, end_at


class InterventionPlanningService:
    def __init__(self, db: AsyncSession, dispatcher: NotificationDispatcher | None = None):
        self.db = db
        self._dispatcher = dispatcher

    @property
    def dispatcher(self) -> NotificationDispatcher:
        if self._dispatcher is None:
            self._dispatcher = NotificationDispatcher(self.db)
        return self._dispatcher

    async def propose_slots(
        self, intervention_id: uuid.UUID, actor: Actor, slots: list[dict]
    ) -> list[InterventionTimeSlot]:
        """Propose one or more time slots for an intervention being planned."""
        intervention = await access.get_intervention(self.db, intervention_id)
        await access.ensure_acting_scope(self.db, intervention, actor)
        if intervention.status != InterventionStatus.PLANIFICATION:
            raise BusinessRuleException(
                f"Cannot propose slots for intervention in status '{intervention.status.value}'"
            )
        if not slots:
            raise _slot_error("slots", "At least one slot is required")
        if len(slots) > MAX_SLOTS_PER_PROPOSAL:
            raise _slot_error("slots", f"At most {MAX_SLOTS_PER_PROPOSAL} slots per proposal")

        windows = [_check_window(data["start_at"], data["end_at"], "slots") for data in slots]
        created: list[InterventionTimeSlot] = []
        for data, (start_at, end_at) in zip(slots, windows):
            slot = InterventionTimeSlot(
                intervention_id=intervention.id,
                proposed_by=actor.id,
                start_at=start_at,
                end_at=end_at,
                status=TimeSlotStatus.PROPOSED,
                notes=(data.get("notes") or "").strip() or None,
            )
            self.db.add(slot)
            created.append(slot)
        await self.db.flush()
        logger.info(
            "%d slots proposed on intervention %s by %s", len(created), intervention.id, actor.id
        )

        lines = [f"{s.start_at:%d/%m/%Y %H:%M} - {s.end_at:%H:%M}" for s in created]
        await self._notify(
            intervention,
            actor,
            EVENT_SLOTS_PROPOSED,
            "Créneaux proposés",
            f"Nouveaux créneaux pour {intervention.reference} :\n" + "\n".join(lines),
            {"slot_ids": [str(s.id) for s in created]},
        )
        return created

    async def list_slots(
        self, intervention_id: uuid.UUID, actor: Actor
    ) -> list[InterventionTimeSlot]:
        intervention = await access.get_intervention(self.db, intervention_id)
        await access.ensure_visible(self.db, intervention, actor)
        result = await self.db.execute(
            select(InterventionTimeSlot)
            .where(InterventionTimeSlot.intervention_id == intervention_id)
            .order_by(InterventionTimeSlot.start_at.asc())
        )
        return list(result.scalars().all())

    async def list_responses(self, slot_id: uuid.UUID, actor: Actor) -> list[TimeSlotResponse]:
        slot, _ = await self._load_slot(slot_id, actor, visible_only=True)
        result = await self.db.execute(
            select(TimeSlotResponse)
            .where(TimeSlotResponse.slot_id == slot.id)
            .order_by(TimeSlotResponse.created_at.asc())
        )
        return list(result.scalars().all())

    async def respond_to_slot(
        self,
        slot_id: uuid.UUID,
        actor: Actor,
        response: SlotResponseType,
        comment: str | None = None,
        counter_start: datetime | None = None,
        counter_end: datetime | None = None,
    ) -> TimeSlotResponse:
        """Accept, reject or counter a slot proposed by someone else.

        Answering again replaces the previous answer. A counter-proposal
        creates a new proposed slot. Rejecting or countering the selected
        slot of a planned intervention sends it back to planning.
        """
        slot, intervention = await self._load_slot(slot_id, actor)
        if intervention.status not in NEGOTIABLE_STATUSES:
            raise BusinessRuleException(
                f"Cannot answer slots for intervention in status '{intervention.status.value}'"
            )
        if slot.status not in (TimeSlotStatus.PROPOSED, TimeSlotStatus.SELECTED):
            raise BusinessRuleException(f"Time slot is {slot.status.value}")
        if slot.proposed_by == actor.id:
            raise BusinessRuleException("Cannot answer your own slot proposal")
        comment = (comment or "").strip() or None

        counter_window = None
        if response == SlotResponseType.COUNTER_PROPOSED:
            if counter_start is None or counter_end is None:
                raise _slot_error("counter_start", "A counter-proposal needs a start and an end")
            counter_window = _check_window(counter_start, counter_end, "counter_start")

        if (
            slot.status == TimeSlotStatus.SELECTED
            and intervention.status == InterventionStatus.PLANIFIEE
            and response != SlotResponseType.ACCEPTED
        ):
            workflow = InterventionWorkflowService(self.db, dispatcher=self.dispatcher)
            await workflow.execute(
                intervention.id,
                InterventionAction.REPLAN,
                actor,
                {"reason": comment or f"Créneau du {slot.start_at:%d/%m/%Y %H:%M} refusé"},
            )

        counter_slot: InterventionTimeSlot | None = None
        if counter_window is not None:
            counter_slot = InterventionTimeSlot(
                intervention_id=intervention.id,
                proposed_by=actor.id,
                start_at=counter_window[0],
                end_at=counter_window[1],
                status=TimeSlotStatus.PROPOSED,
                notes=comment,
            )
            self.db.add(counter_slot)
            await self.db.flush()

        result = await self.db.execute(
            select(TimeSlotResponse).where(
                TimeSlotResponse.slot_id == slot.id,
                TimeSlotResponse.user_id == actor.id,
            )
        )
        answer = result.scalar_one_or_none()
        if answer is None:
            answer = TimeSlotResponse(slot_id=slot.id, user_id=actor.id, response=response)
            self.db.add(answer)
        answer.response = response
        answer.comment = comment
        answer.counter_slot_id = counter_slot.id if counter_slot else None
        await self.db.flush()
        logger.info("User %s answered slot %s: %s", actor.id, slot.id, response.value)

        message = f"Créneau du {slot.start_at:%d/%m/%Y %H:%M} pour {intervention.reference}"
        if counter_slot is not None:
            message += f" : nouvelle proposition le {counter_slot.start_at:%d/%m/%Y %H:%M}"
        if comment:
            message += f"\n{comment}"
        await self._notify(
            intervention,
            actor,
            EVENT_SLOT_RESPONSE,
            _ANSWER_TITLES[response],
            message,
            {
                "slot_id": str(slot.id),
                "response": response.value,
                "counter_slot_id": str(counter_slot.id) if counter_slot else None,
            },
        )
        return answer

    async def select_slot(
        self, slot_id: uuid.UUID, actor: Actor, comment: str | None = None
    ) -> TransitionResult:
        """Schedule the intervention on a proposed slot."""
        slot = await self.db.get(InterventionTimeSlot, slot_id)
        if slot is None:
            raise NotFoundException(f"Time slot {slot_id} not found")
        workflow = InterventionWorkflowService(self.db, dispatcher=self.dispatcher)
        payload: dict = {"slot_id": slot.id}
        if comment:
            payload["comment"] = comment
        return await workflow.execute(slot.intervention_id, InterventionAction.SCHEDULE, actor, payload)

    async def _load_slot(
        self, slot_id: uuid.UUID, actor: Actor, visible_only: bool = False
    ) -> tuple[InterventionTimeSlot, Intervention]:
        slot = await self.db.get(InterventionTimeSlot, slot_id)
        if slot is None:
            raise NotFoundException(f"Time slot {slot_id} not found")
        intervention = await access.get_intervention(self.db, slot.intervention_id)
        if visible_only:
            await access.ensure_visible(self.db, intervention, actor)
        else:
            await access.ensure_acting_scope(self.db, intervention, actor)
        return slot, intervention

    async def _notify(
        self,
        intervention: Intervention,
        actor: Actor,
        event_type: str,
        title: str,
        message: str,
        metadata: dict,
    ) -> None:
        async def _dispatch() -> str:
            assignees = await RecipientLoader(self.db).assignees(intervention.id)
            recipients = intervention_recipients(assignees, _ALL_ROLES, actor.id)
            report = await self.dispatcher.dispatch(NotificationEvent(
                event_type=event_type,
                notification_type=NotificationType.INTERVENTION,
                title=title,
                message=message,
                recipients=recipients,
                team_id=intervention.team_id,
                actor_id=actor.id,
                related_entity_type="intervention",
                related_entity_id=intervention.id,
                url=intervention_url(intervention.id),
                metadata={"intervention_id": str(intervention.id), **metadata},
            ))
            return f"{report.recipient_count} recipients"

        await EffectRunner().run([Effect("notify", _dispatch)])
