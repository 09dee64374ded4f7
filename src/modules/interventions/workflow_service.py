"""Intervention lifecycle service: creation, assignments and the status workflow."""

from __future__ import annotations

import logging
import secrets
import string
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.exceptions import (
    AppException,
    BusinessRuleException,
    ConflictException,
    ForbiddenException,
    IllegalTransitionException,
    NotFoundException,
    ValidationException,
)
from src.models.conversation import ConversationParticipant, ConversationThread
from src.models.enums import (
    AssignmentRole,
    InterventionAction,
    InterventionStatus,
    InterventionUrgency,
    NotificationPriority,
    NotificationType,
    ReportType,
    ThreadType,
    TimeSlotStatus,
    TriggerSource,
    UserRole,
)
from src.models.intervention import Intervention
from src.models.intervention_assignment import InterventionAssignment
from src.models.intervention_report import InterventionReport
from src.models.intervention_transition import InterventionTransition
from src.models.time_slot import InterventionTimeSlot
from src.models.user import User
from src.modules.auth.actor import Actor
from src.modules.interventions import access, registry
from src.modules.interventions.constants import (
    AUDIENCE,
    EVENT_INTERVENTION_ASSIGNED,
    EVENT_INTERVENTION_CREATED,
    EVENT_INTERVENTION_TRANSITIONED,
    EVENT_INTERVENTION_UNASSIGNED,
    EVENT_QUOTE_REQUESTED,
    REASON_MIN_LENGTH,
    SATISFACTION_MAX,
    SATISFACTION_MIN,
)
from src.modules.notifications.dispatcher import (
    DispatchReport,
    NotificationDispatcher,
    NotificationEvent,
)
from src.modules.notifications.effects import Effect, EffectOutcome, EffectRunner
from src.modules.notifications.recipients import Recipient, RecipientLoader, intervention_recipients
from src.modules.notifications.templates import (
    intervention_url,
    status_change_message,
    status_change_title,
)
from src.modules.notifications.throttle import as_utc
from src.modules.quotes.quote_service import QuoteCompetitionResolver, QuoteResolution
from src.schemas.results import ActionResult

logger = logging.getLogger(__name__)

# Users of these roles may hold an assignment of the given role
_ASSIGNABLE_USER_ROLES: dict[AssignmentRole, set[UserRole]] = {
    AssignmentRole.MANAGER: {UserRole.MANAGER, UserRole.ADMIN},
    AssignmentRole.PROVIDER: {UserRole.PROVIDER},
    AssignmentRole.TENANT: {UserRole.TENANT},
}

# Report written as a side effect of the action
_REPORT_TYPES: dict[InterventionAction, ReportType] = {
    InterventionAction.COMPLETE: ReportType.PROVIDER_REPORT,
    InterventionAction.VALIDATE: ReportType.TENANT_REPORT,
    InterventionAction.CONTEST: ReportType.TENANT_REPORT,
    InterventionAction.FINALIZE: ReportType.MANAGER_REPORT,
}


@dataclass
class TransitionResult:
    intervention: Intervention
    action: InterventionAction
    from_status: InterventionStatus
    to_status: InterventionStatus
    transition: InterventionTransition
    quote_resolution: QuoteResolution | None = None
    # Providers asked for a quote by a request_quotes action
    requested_providers: list[User] = field(default_factory=list)
    effects: list[EffectOutcome] = field(default_factory=list)
    dispatches: list[DispatchReport] = field(default_factory=list)


def _text(payload: dict, key: str) -> str | None:
    value = payload.get(key)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _field_error(name: str, message: str) -> ValidationException:
    return ValidationException(message, details=[{"field": name, "message": message}])


def _parse_uuid(value, name: str) -> uuid.UUID:
    try:
        return uuid.UUID(str(value))
    except ValueError as exc:
        raise _field_error(name, f"Invalid id in '{name}': {value}") from exc


def _parse_datetime(value, name: str) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value))
        except ValueError as exc:
            raise _field_error(name, f"'{name}' must be an ISO 8601 datetime") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


REFERENCE_ATTEMPTS = 5


def _generate_reference(now: datetime) -> str:
    """INT-YYMMDD-XXXX with four random uppercase alphanumerics."""
    alphabet = string.ascii_uppercase + string.digits
    suffix = "".join(secrets.choice(alphabet) for _ in range(4))
    return f"INT-{now:%y%m%d}-{suffix}"


class InterventionWorkflowService:
    def __init__(
        self,
        db: AsyncSession,
        dispatcher: NotificationDispatcher | None = None,
        runner: EffectRunner | None = None,
    ):
        self.db = db
        self._dispatcher = dispatcher
        self.runner = runner or EffectRunner()
        self.resolver = QuoteCompetitionResolver(db)

    @property
    def dispatcher(self) -> NotificationDispatcher:
        if self._dispatcher is None:
            self._dispatcher = NotificationDispatcher(self.db)
        return self._dispatcher

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    async def _unique_reference(self, now: datetime) -> str:
        for _ in range(REFERENCE_ATTEMPTS):
            reference = _generate_reference(now)
            taken = await self.db.execute(
                select(Intervention.id).where(Intervention.reference == reference)
            )
            if taken.scalar_one_or_none() is None:
                return reference
        raise ConflictException("Could not allocate a unique intervention reference")

    async def create_intervention(self, actor: Actor, data: dict) -> Intervention:
        """Create an intervention in ``demande``.

        The creator and the tenant are assigned, a group conversation thread
        is opened, and the team's managers are notified.
        """
        if actor.role not in (UserRole.MANAGER, UserRole.ADMIN, UserRole.TENANT):
            raise ForbiddenException("Providers cannot create interventions")
        if actor.team_id is None:
            raise ForbiddenException("User does not belong to a team")
        title = _text(data, "title")
        description = _text(data, "description")
        if not title:
            raise _field_error("title", "A title is required")
        if not description:
            raise _field_error("description", "A description is required")

        tenant_id = actor.id if actor.role == UserRole.TENANT else data.get("tenant_id")
        tenant: User | None = None
        if tenant_id is not None:
            tenant = await self.db.get(User, uuid.UUID(str(tenant_id)))
            if tenant is None or tenant.role != UserRole.TENANT or tenant.team_id != actor.team_id:
                raise _field_error("tenant_id", "Tenant not found in this team")

        now = datetime.now(UTC)
        intervention = Intervention(
            reference=await self._unique_reference(now),
            title=title,
            description=description,
            intervention_type=_text(data, "intervention_type") or "autre",
            urgency=InterventionUrgency(data.get("urgency") or InterventionUrgency.NORMAL),
            status=InterventionStatus.DEMANDE,
            team_id=actor.team_id,
            lot_id=uuid.UUID(str(data["lot_id"])) if data.get("lot_id") else None,
            tenant_id=tenant.id if tenant else None,
            created_by=actor.id,
        )
        self.db.add(intervention)
        await self.db.flush()

        if actor.is_manager:
            self.db.add(InterventionAssignment(
                intervention_id=intervention.id,
                user_id=actor.id,
                role=AssignmentRole.MANAGER,
                is_primary=True,
                assigned_by=actor.id,
            ))
        if tenant is not None:
            self.db.add(InterventionAssignment(
                intervention_id=intervention.id,
                user_id=tenant.id,
                role=AssignmentRole.TENANT,
                is_primary=True,
                assigned_by=actor.id,
            ))

        thread = ConversationThread(
            intervention_id=intervention.id,
            team_id=intervention.team_id,
            thread_type=ThreadType.GROUP,
            title=f"{intervention.reference} - {intervention.title}",
        )
        self.db.add(thread)
        await self.db.flush()
        for user_id in {actor.id, *([tenant.id] if tenant else [])}:
            self.db.add(ConversationParticipant(thread_id=thread.id, user_id=user_id))
        await self.db.flush()

        logger.info("Created intervention %s (%s)", intervention.id, intervention.reference)

        async def _notify() -> str:
            loader = RecipientLoader(self.db)
            managers = await loader.team_managers(intervention.team_id)
            recipients = [
                Recipient(m.user_id, m.role, False, m.name, m.email)
                for m in managers
                if m.user_id != actor.id
            ]
            if tenant is not None and tenant.id != actor.id:
                recipients.append(Recipient(tenant.id, tenant.role.value, True, tenant.name, tenant.email))
            report = await self.dispatcher.dispatch(NotificationEvent(
                event_type=EVENT_INTERVENTION_CREATED,
                notification_type=NotificationType.INTERVENTION,
                title="Nouvelle intervention",
                message=intervention.title,
                recipients=recipients,
                team_id=intervention.team_id,
                actor_id=actor.id,
                priority=_priority_for(intervention),
                related_entity_type="intervention",
                related_entity_id=intervention.id,
                url=intervention_url(intervention.id),
                metadata={"intervention_id": str(intervention.id), "reference": intervention.reference},
            ))
            return f"{report.recipient_count} recipients"

        await self.runner.run([Effect("notify", _notify)])
        return intervention

    async def get_intervention(self, intervention_id: uuid.UUID, actor: Actor) -> Intervention:
        intervention = await access.get_intervention(self.db, intervention_id)
        await access.ensure_visible(self.db, intervention, actor)
        return intervention

    async def list_interventions(
        self,
        actor: Actor,
        status: InterventionStatus | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[Intervention], int]:
        """Managers see their team's interventions; others see their assignments."""
        query = select(Intervention)
        count_query = select(func.count()).select_from(Intervention)

        if actor.is_manager:
            query = query.where(Intervention.team_id == actor.team_id)
            count_query = count_query.where(Intervention.team_id == actor.team_id)
        else:
            assigned_ids = (
                select(InterventionAssignment.intervention_id)
                .where(InterventionAssignment.user_id == actor.id)
                .scalar_subquery()
            )
            query = query.where(Intervention.id.in_(assigned_ids))
            count_query = count_query.where(Intervention.id.in_(assigned_ids))

        if status is not None:
            query = query.where(Intervention.status == status)
            count_query = count_query.where(Intervention.status == status)

        total_result = await self.db.execute(count_query)
        total = total_result.scalar() or 0

        query = query.order_by(Intervention.created_at.desc()).offset(offset).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    async def list_transitions(
        self, intervention_id: uuid.UUID, actor: Actor
    ) -> list[InterventionTransition]:
        """Full status history of an intervention, oldest first."""
        await self.get_intervention(intervention_id, actor)
        result = await self.db.execute(
            select(InterventionTransition)
            .where(InterventionTransition.intervention_id == intervention_id)
            .order_by(InterventionTransition.created_at.asc())
        )
        return list(result.scalars().all())

    async def allowed_actions(
        self, intervention_id: uuid.UUID, actor: Actor
    ) -> list[InterventionAction]:
        intervention = await self.get_intervention(intervention_id, actor)
        actions = registry.allowed_actions(intervention.status, actor.role)
        if InterventionAction.REOPEN in actions and not intervention.is_contested:
            actions.remove(InterventionAction.REOPEN)
        return actions

    # ------------------------------------------------------------------
    # Assignments
    # ------------------------------------------------------------------

    async def list_assignments(
        self, intervention_id: uuid.UUID, actor: Actor
    ) -> list[InterventionAssignment]:
        await self.get_intervention(intervention_id, actor)
        result = await self.db.execute(
            select(InterventionAssignment)
            .where(InterventionAssignment.intervention_id == intervention_id)
            .order_by(InterventionAssignment.created_at.asc())
        )
        return list(result.scalars().all())

    async def assign_user(
        self,
        intervention_id: uuid.UUID,
        user_id: uuid.UUID,
        role: AssignmentRole,
        actor: Actor,
        is_primary: bool = False,
    ) -> InterventionAssignment:
        intervention = await access.get_intervention(self.db, intervention_id)
        access.ensure_manager(actor, intervention.team_id)

        user = await self.db.get(User, user_id)
        if user is None:
            raise NotFoundException(f"User {user_id} not found")
        if user.team_id != intervention.team_id:
            raise ForbiddenException("User belongs to another team")
        if user.role not in _ASSIGNABLE_USER_ROLES[role]:
            raise _field_error("role", f"A {user.role.value} cannot be assigned as {role.value}")
        if await access.has_assignment(self.db, intervention_id, user_id, role):
            raise ConflictException(f"User already assigned as {role.value}")

        if is_primary:
            await self.db.execute(
                update(InterventionAssignment)
                .where(
                    InterventionAssignment.intervention_id == intervention_id,
                    InterventionAssignment.role == role,
                )
                .values(is_primary=False)
                .execution_options(synchronize_session=False)
            )

        assignment = InterventionAssignment(
            intervention_id=intervention_id,
            user_id=user_id,
            role=role,
            is_primary=is_primary,
            assigned_by=actor.id,
        )
        self.db.add(assignment)
        await self._join_group_thread(intervention_id, user_id)
        await self.db.flush()
        logger.info(
            "Assigned user %s as %s on intervention %s", user_id, role.value, intervention_id
        )

        if user.id != actor.id:
            async def _notify() -> str:
                report = await self.dispatcher.dispatch(NotificationEvent(
                    event_type=EVENT_INTERVENTION_ASSIGNED,
                    notification_type=NotificationType.ASSIGNMENT,
                    title="Nouvelle assignation",
                    message=f"Vous avez été assigné à l'intervention {intervention.reference} : {intervention.title}",
                    recipients=[Recipient(user.id, role.value, True, user.name, user.email)],
                    team_id=intervention.team_id,
                    actor_id=actor.id,
                    priority=_priority_for(intervention),
                    related_entity_type="intervention",
                    related_entity_id=intervention.id,
                    url=intervention_url(intervention.id),
                    metadata={"intervention_id": str(intervention.id), "role": role.value},
                ))
                return f"{report.recipient_count} recipients"

            await self.runner.run([Effect("notify", _notify)])
        return assignment

    async def unassign_user(
        self,
        intervention_id: uuid.UUID,
        user_id: uuid.UUID,
        role: AssignmentRole,
        actor: Actor,
    ) -> None:
        intervention = await access.get_intervention(self.db, intervention_id)
        access.ensure_manager(actor, intervention.team_id)
        result = await self.db.execute(
            select(InterventionAssignment).where(
                InterventionAssignment.intervention_id == intervention_id,
                InterventionAssignment.user_id == user_id,
                InterventionAssignment.role == role,
            )
        )
        assignment = result.scalar_one_or_none()
        if assignment is None:
            raise NotFoundException("Assignment not found")
        await self.db.delete(assignment)
        await self.db.flush()
        logger.info(
            "Unassigned user %s (%s) from intervention %s", user_id, role.value, intervention_id
        )

        user = await self.db.get(User, user_id)
        if user is not None and user.id != actor.id:
            async def _notify() -> str:
                report = await self.dispatcher.dispatch(NotificationEvent(
                    event_type=EVENT_INTERVENTION_UNASSIGNED,
                    notification_type=NotificationType.ASSIGNMENT,
                    title="Fin d'assignation",
                    message=f"Vous n'êtes plus assigné à l'intervention {intervention.reference}",
                    recipients=[Recipient(user.id, role.value, True, user.name, user.email)],
                    team_id=intervention.team_id,
                    actor_id=actor.id,
                    related_entity_type="intervention",
                    related_entity_id=intervention.id,
                    url=intervention_url(intervention.id),
                    metadata={"intervention_id": str(intervention.id), "role": role.value},
                ))
                return f"{report.recipient_count} recipients"

            await self.runner.run([Effect("notify", _notify)])

    async def _join_group_thread(self, intervention_id: uuid.UUID, user_id: uuid.UUID) -> None:
        result = await self.db.execute(
            select(ConversationThread.id).where(
                ConversationThread.intervention_id == intervention_id,
                ConversationThread.thread_type == ThreadType.GROUP,
            )
        )
        for thread_id in result.scalars().all():
            exists = await self.db.execute(
                select(ConversationParticipant.id).where(
                    ConversationParticipant.thread_id == thread_id,
                    ConversationParticipant.user_id == user_id,
                )
            )
            if exists.scalar_one_or_none() is None:
                self.db.add(ConversationParticipant(thread_id=thread_id, user_id=user_id))

    # ------------------------------------------------------------------
    # State Machine
    # ------------------------------------------------------------------

    async def run(
        self,
        intervention_id: uuid.UUID,
        action: InterventionAction,
        actor: Actor,
        payload: dict | None = None,
    ) -> ActionResult[TransitionResult]:
        """``execute`` with failures reported in the result instead of raised."""
        try:
            return ActionResult.ok(await self.execute(intervention_id, action, actor, payload))
        except AppException as exc:
            logger.info(
                "Action %s on intervention %s refused: %s (%s)",
                action.value, intervention_id, exc.message, exc.code,
            )
            return ActionResult.from_exception(exc)
        except Exception:
            logger.exception("Action %s on intervention %s failed", action.value, intervention_id)
            return ActionResult.unexpected()

    async def execute(
        self,
        intervention_id: uuid.UUID,
        action: InterventionAction,
        actor: Actor,
        payload: dict | None = None,
        trigger_source: TriggerSource = TriggerSource.USER,
    ) -> TransitionResult:
        """Execute a workflow action on an intervention.

        Checks, in order: the intervention exists, the actor's role may
        perform the action, the actor is in scope (team or assignment), the
        transition is legal from the current status, and the payload is
        valid. Any failure raises before a write. The status change, its
        audit row and any quote resolution share one savepoint; reports and
        notifications then run as isolated effects.
        """
        payload = payload or {}

        async with self.db.begin_nested():
            intervention = await access.get_intervention(self.db, intervention_id, for_update=True)

            if not registry.role_allowed(action, actor.role):
                raise ForbiddenException(
                    f"Role '{actor.role.value}' cannot perform '{action.value}'"
                )
            await access.ensure_acting_scope(self.db, intervention, actor)

            from_status = intervention.status
            to_status = registry.next_status(from_status, action)
            if to_status is None:
                raise IllegalTransitionException(
                    f"Cannot perform '{action.value}' from status '{from_status.value}'. "
                    f"Allowed actions: {[a.value for a in registry.allowed_actions(from_status, actor.role)]}"
                )

            values = self._validate_payload(intervention, action, payload)
            resolution = await self._run_guards(intervention, action, actor, values)
            requested: list[User] = []
            if action == InterventionAction.REQUEST_QUOTES:
                requested = await self._invite_providers(intervention, actor, values)
            await self._sync_time_slots(intervention, action, actor, values)

            self._apply(intervention, action, values, resolution)
            intervention.status = to_status

            reason = values.get("reason") or values.get("comments")
            transition = InterventionTransition(
                intervention_id=intervention.id,
                from_status=from_status,
                to_status=to_status,
                action=action,
                triggered_by=actor.id,
                trigger_source=trigger_source.value,
                reason=reason,
                metadata_extra=_serializable(values),
            )
            self.db.add(transition)
            await self.db.flush()

        logger.info(
            "Intervention %s transitioned %s -> %s via %s by %s",
            intervention.id, from_status.value, to_status.value, action.value, actor.id,
        )

        result = TransitionResult(
            intervention=intervention,
            action=action,
            from_status=from_status,
            to_status=to_status,
            transition=transition,
            quote_resolution=resolution,
            requested_providers=requested,
        )
        result.effects = await self.runner.run(self._side_effects(result, actor, values))
        return result

    # ------------------------------------------------------------------
    # Validation, guards and field updates
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_payload(
        intervention: Intervention, action: InterventionAction, payload: dict
    ) -> dict:
        """Check the action's payload and return the normalised values."""
        values: dict = {}
        comment = _text(payload, "comment")
        if comment:
            values["comment"] = comment

        if action in (InterventionAction.REJECT, InterventionAction.CANCEL, InterventionAction.REPLAN):
            reason = _text(payload, "reason")
            if not reason or len(reason) < REASON_MIN_LENGTH:
                raise _field_error(
                    "reason", f"A reason of at least {REASON_MIN_LENGTH} characters is required"
                )
            values["reason"] = reason

        elif action == InterventionAction.CONTEST:
            comments = _text(payload, "comments")
            if not comments or len(comments) < REASON_MIN_LENGTH:
                raise _field_error(
                    "comments", f"Comments of at least {REASON_MIN_LENGTH} characters are required"
                )
            values["comments"] = comments

        elif action == InterventionAction.SCHEDULE:
            # A selected slot supplies the date
            if payload.get("slot_id") is not None:
                values["slot_id"] = _parse_uuid(payload["slot_id"], "slot_id")
            elif payload.get("scheduled_date") is None:
                raise _field_error("scheduled_date", "A scheduled date or a slot is required")
            else:
                values["scheduled_date"] = _parse_datetime(payload["scheduled_date"], "scheduled_date")

        elif action == InterventionAction.REQUEST_QUOTES:
            provider_ids = payload.get("provider_ids") or []
            if not isinstance(provider_ids, (list, tuple, set)):
                raise _field_error("provider_ids", "'provider_ids' must be a list")
            values["provider_ids"] = list(dict.fromkeys(
                _parse_uuid(value, "provider_ids") for value in provider_ids
            ))
            if payload.get("deadline") is not None:
                deadline = _parse_datetime(payload["deadline"], "deadline")
                if deadline <= datetime.now(UTC):
                    raise _field_error("deadline", "The quote deadline must be in the future")
                values["deadline"] = deadline
            notes = _text(payload, "notes")
            if notes:
                values["notes"] = notes
            messages = payload.get("messages") or {}
            if not isinstance(messages, dict):
                raise _field_error("messages", "'messages' must map provider ids to a message")
            values["messages"] = {
                _parse_uuid(key, "messages"): str(message).strip()
                for key, message in messages.items()
                if message and str(message).strip()
            }

        elif action == InterventionAction.ACCEPT_QUOTE:
            if payload.get("quote_id") is None:
                raise _field_error("quote_id", "A quote id is required")
            try:
                values["quote_id"] = uuid.UUID(str(payload["quote_id"]))
            except ValueError as exc:
                raise _field_error("quote_id", "Invalid quote id") from exc

        elif action == InterventionAction.VALIDATE:
            comments = _text(payload, "comments")
            if comments:
                values["comments"] = comments
            if payload.get("satisfaction") is not None:
                try:
                    satisfaction = int(payload["satisfaction"])
                except (TypeError, ValueError) as exc:
                    raise _field_error("satisfaction", "Satisfaction must be an integer") from exc
                if not SATISFACTION_MIN <= satisfaction <= SATISFACTION_MAX:
                    raise _field_error(
                        "satisfaction",
                        f"Satisfaction must be between {SATISFACTION_MIN} and {SATISFACTION_MAX}",
                    )
                values["satisfaction"] = satisfaction

        elif action == InterventionAction.FINALIZE:
            if payload.get("final_cost") is not None:
                try:
                    final_cost = Decimal(str(payload["final_cost"]))
                except InvalidOperation as exc:
                    raise _field_error("final_cost", "Final cost must be a number") from exc
                if final_cost < 0:
                    raise _field_error("final_cost", "Final cost must be >= 0")
                values["final_cost"] = final_cost

        elif action == InterventionAction.REOPEN:
            if not intervention.is_contested:
                raise _field_error(
                    "is_contested", "Only a contested intervention can be sent back to planning"
                )
            if payload.get("scheduled_date") is not None:
                values["scheduled_date"] = _parse_datetime(payload["scheduled_date"], "scheduled_date")

        elif action == InterventionAction.COMPLETE:
            report = _text(payload, "report")
            if report:
                values["report"] = report

        return values

    async def _run_guards(
        self,
        intervention: Intervention,
        action: InterventionAction,
        actor: Actor,
        values: dict,
    ) -> QuoteResolution | None:
        if action == InterventionAction.ACCEPT_QUOTE:
            return await self.resolver.resolve(intervention, values["quote_id"], actor)
        return None

    async def _invite_providers(
        self, intervention: Intervention, actor: Actor, values: dict
    ) -> list[User]:
        """Resolve the providers asked for a quote, assigning the new ones.

        Without explicit ids the providers already assigned are asked.
        """
        provider_ids: list[uuid.UUID] = values["provider_ids"]
        if not provider_ids:
            result = await self.db.execute(
                select(InterventionAssignment.user_id).where(
                    InterventionAssignment.intervention_id == intervention.id,
                    InterventionAssignment.role == AssignmentRole.PROVIDER,
                )
            )
            provider_ids = list(result.scalars().all())
        if not provider_ids:
            raise _field_error("provider_ids", "At least one provider must be asked for a quote")

        stray = set(values["messages"]) - set(provider_ids)
        if stray:
            raise _field_error("messages", "Messages can only target the requested providers")

        providers: list[User] = []
        for provider_id in provider_ids:
            user = await self.db.get(User, provider_id)
            if user is None or user.role != UserRole.PROVIDER:
                raise _field_error("provider_ids", f"Provider {provider_id} not found")
            if user.team_id != intervention.team_id:
                raise ForbiddenException("Provider belongs to another team")
            providers.append(user)

        for user in providers:
            if await access.has_assignment(self.db, intervention.id, user.id, AssignmentRole.PROVIDER):
                continue
            self.db.add(InterventionAssignment(
                intervention_id=intervention.id,
                user_id=user.id,
                role=AssignmentRole.PROVIDER,
                is_primary=False,
                assigned_by=actor.id,
            ))
            await self._join_group_thread(intervention.id, user.id)
            logger.info("Provider %s invited to quote on intervention %s", user.id, intervention.id)

        values["provider_ids"] = [user.id for user in providers]
        return providers

    async def _sync_time_slots(
        self,
        intervention: Intervention,
        action: InterventionAction,
        actor: Actor,
        values: dict,
    ) -> None:
        now = datetime.now(UTC)
        if action == InterventionAction.SCHEDULE and "slot_id" in values:
            slot = await self.db.get(InterventionTimeSlot, values["slot_id"])
            if slot is None or slot.intervention_id != intervention.id:
                raise NotFoundException(f"Time slot {values['slot_id']} not found")
            if slot.status != TimeSlotStatus.PROPOSED:
                raise BusinessRuleException(f"Time slot is {slot.status.value}, not proposed")
            if as_utc(slot.start_at) <= now:
                raise BusinessRuleException("Cannot select a time slot in the past")
            await self.db.execute(
                update(InterventionTimeSlot)
                .where(
                    InterventionTimeSlot.intervention_id == intervention.id,
                    InterventionTimeSlot.status == TimeSlotStatus.PROPOSED,
                    InterventionTimeSlot.id != slot.id,
                )
                .values(status=TimeSlotStatus.CANCELLED)
            )
            slot.status = TimeSlotStatus.SELECTED
            slot.selected_at = now
            slot.selected_by = actor.id
            values["scheduled_date"] = as_utc(slot.start_at)

        elif action in (InterventionAction.SCHEDULE, InterventionAction.CANCEL):
            # A direct date or a cancellation closes the open proposals
            await self._close_slots(intervention.id, TimeSlotStatus.PROPOSED, TimeSlotStatus.CANCELLED)

        elif action == InterventionAction.REPLAN:
            await self._close_slots(intervention.id, TimeSlotStatus.SELECTED, TimeSlotStatus.REJECTED)

    async def _close_slots(
        self, intervention_id: uuid.UUID, current: TimeSlotStatus, new: TimeSlotStatus
    ) -> None:
        await self.db.execute(
            update(InterventionTimeSlot)
            .where(
                InterventionTimeSlot.intervention_id == intervention_id,
                InterventionTimeSlot.status == current,
            )
            .values(status=new)
        )

    @staticmethod
    def _apply(
        intervention: Intervention,
        action: InterventionAction,
        values: dict,
        resolution: QuoteResolution | None,
    ) -> None:
        now = datetime.now(UTC)
        comment = values.get("comment")

        if action == InterventionAction.APPROVE:
            intervention.manager_comment = comment or intervention.manager_comment
        elif action == InterventionAction.REJECT:
            intervention.rejection_reason = values["reason"]
            intervention.manager_comment = comment or intervention.manager_comment
        elif action == InterventionAction.REQUEST_QUOTES:
            intervention.quote_deadline = values.get("deadline")
            intervention.quote_notes = values.get("notes")
        elif action == InterventionAction.SCHEDULE:
            intervention.scheduled_date = values["scheduled_date"]
        elif action == InterventionAction.REPLAN:
            intervention.scheduled_date = None
        elif action == InterventionAction.ACCEPT_QUOTE and resolution is not None:
            intervention.selected_quote_id = resolution.accepted.id
            intervention.final_cost = resolution.accepted.amount
        elif action == InterventionAction.START:
            intervention.started_at = now
        elif action == InterventionAction.COMPLETE:
            intervention.completed_date = now
            intervention.provider_comment = values.get("report") or comment or intervention.provider_comment
        elif action == InterventionAction.VALIDATE:
            intervention.tenant_validated_date = now
            intervention.tenant_comment = values.get("comments") or comment
            intervention.tenant_satisfaction = values.get("satisfaction")
            intervention.is_contested = False
        elif action == InterventionAction.CONTEST:
            intervention.tenant_validated_date = now
            intervention.tenant_comment = values["comments"]
            intervention.is_contested = True
        elif action == InterventionAction.FINALIZE:
            intervention.finalized_at = now
            if "final_cost" in values:
                intervention.final_cost = values["final_cost"]
            intervention.manager_comment = comment or intervention.manager_comment
        elif action == InterventionAction.REOPEN:
            intervention.is_contested = False
            intervention.started_at = None
            intervention.completed_date = None
            intervention.tenant_validated_date = None
            if "scheduled_date" in values:
                intervention.scheduled_date = values["scheduled_date"]
        elif action == InterventionAction.CANCEL:
            intervention.cancellation_reason = values["reason"]

    # ------------------------------------------------------------------
    # Side effects
    # ------------------------------------------------------------------

    def _side_effects(self, result: TransitionResult, actor: Actor, values: dict) -> list[Effect]:
        effects: list[Effect] = []
        report_type = _REPORT_TYPES.get(result.action)
        if report_type is not None:
            effects.append(Effect("report", lambda: self._write_report(result, actor, report_type, values)))
        effects.append(Effect("notify", lambda: self._notify_transition(result, actor, values)))
        return effects

    async def _write_report(
        self,
        result: TransitionResult,
        actor: Actor,
        report_type: ReportType,
        values: dict,
    ) -> str:
        content = values.get("report") or values.get("comments") or values.get("comment") or ""
        async with self.db.begin_nested():
            report = InterventionReport(
                intervention_id=result.intervention.id,
                author_id=actor.id,
                report_type=report_type,
                content=content,
                is_contest=result.action == InterventionAction.CONTEST,
            )
            self.db.add(report)
        return f"{report_type.value} {report.id}"

    async def _notify_transition(
        self, result: TransitionResult, actor: Actor, values: dict
    ) -> str:
        intervention = result.intervention
        assignees = await RecipientLoader(self.db).assignees(intervention.id)
        recipients = intervention_recipients(assignees, AUDIENCE[result.action], actor.id)

        events = [NotificationEvent(
            event_type=EVENT_INTERVENTION_TRANSITIONED,
            notification_type=NotificationType.STATUS_CHANGE,
            title=status_change_title(result.action, result.to_status),
            message=status_change_message(
                intervention.reference,
                result.from_status,
                result.to_status,
                values.get("reason") or values.get("comments"),
            ),
            recipients=recipients,
            team_id=intervention.team_id,
            actor_id=actor.id,
            priority=_priority_for(intervention),
            related_entity_type="intervention",
            related_entity_id=intervention.id,
            url=intervention_url(intervention.id),
            metadata={
                "intervention_id": str(intervention.id),
                "reference": intervention.reference,
                "action": result.action.value,
                "from_status": result.from_status.value,
                "to_status": result.to_status.value,
            },
        )]
        if result.quote_resolution is not None:
            events.extend(
                await self.resolver.build_events(result.quote_resolution, intervention, actor)
            )
        events.extend(self._quote_request_events(result, actor, values))

        result.dispatches = await self.dispatcher.dispatch_many(events)
        return f"{len(events)} events, {len(recipients)} status recipients"

    @staticmethod
    def _quote_request_events(
        result: TransitionResult, actor: Actor, values: dict
    ) -> list[NotificationEvent]:
        """One personal event per invited provider, carrying their own message."""
        intervention = result.intervention
        deadline = values.get("deadline")
        events: list[NotificationEvent] = []
        for provider in result.requested_providers:
            if provider.id == actor.id:
                continue
            note = values["messages"].get(provider.id) or values.get("notes")
            lines = [f"Un devis est demandé pour l'intervention {intervention.reference} : {intervention.title}"]
            if deadline is not None:
                lines.append(f"Date limite : {deadline:%d/%m/%Y %H:%M}")
            if note:
                lines.append(note)
            events.append(NotificationEvent(
                event_type=EVENT_QUOTE_REQUESTED,
                notification_type=NotificationType.INTERVENTION,
                title="Demande de devis",
                message="\n".join(lines),
                recipients=[Recipient(provider.id, AssignmentRole.PROVIDER.value, True, provider.name, provider.email)],
                team_id=intervention.team_id,
                actor_id=actor.id,
                priority=_priority_for(intervention),
                related_entity_type="intervention",
                related_entity_id=intervention.id,
                url=intervention_url(intervention.id),
                metadata={
                    "intervention_id": str(intervention.id),
                    "reference": intervention.reference,
                    "quote_deadline": deadline.isoformat() if deadline else None,
                    "message": note,
                },
            ))
        return events


def _priority_for(intervention: Intervention) -> NotificationPriority:
    if intervention.urgency == InterventionUrgency.URGENT:
        return NotificationPriority.URGENT
    if intervention.urgency == InterventionUrgency.HIGH:
        return NotificationPriority.HIGH
    return NotificationPriority.NORMAL


def _serializable(value):
    """JSON-safe copy of the validated payload for the audit row."""
    if isinstance(value, dict):
        return {str(key): _serializable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_serializable(item) for item in value]
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (uuid.UUID, Decimal)):
        return str(value)
    return value
