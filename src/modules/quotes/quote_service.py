"""Quote lifecycle: submission, manual rejection and competition resolution."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.exceptions import (
    AlreadyProcessedException,
    BusinessRuleException,
    ConflictException,
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from src.models.enums import (
    AssignmentRole,
    InterventionAction,
    NotificationPriority,
    NotificationType,
    QuoteStatus,
    UserRole,
)
from src.models.intervention import Intervention
from src.models.quote import Quote
from src.models.user import User
from src.modules.auth.actor import Actor
from src.modules.interventions import access
from src.modules.interventions.constants import (
    EVENT_QUOTE_ACCEPTED,
    EVENT_QUOTE_REJECTED,
    EVENT_QUOTE_SUBMITTED,
    QUOTABLE_STATUSES,
    REJECTED_QUOTE_REASON,
)
from src.modules.notifications.dispatcher import NotificationDispatcher, NotificationEvent
from src.modules.notifications.effects import Effect, EffectRunner
from src.modules.notifications.recipients import Recipient, RecipientLoader, intervention_recipients
from src.modules.notifications.templates import intervention_url
from src.modules.notifications.throttle import as_utc

logger = logging.getLogger(__name__)


@dataclass
class QuoteResolution:
    accepted: Quote
    rejected: list[Quote] = field(default_factory=list)


class QuoteCompetitionResolver:
    """Accepts one pending quote and rejects its pending siblings.

    Runs inside the caller's transaction (the ``accept_quote`` transition
    savepoint), so the quote updates and the status change commit or roll
    back together.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def resolve(
        self, intervention: Intervention, quote_id: uuid.UUID, actor: Actor
    ) -> QuoteResolution:
        result = await self.db.execute(
            select(Quote)
            .where(Quote.id == quote_id, Quote.intervention_id == intervention.id)
            .with_for_update()
        )
        quote = result.scalar_one_or_none()
        if quote is None:
            raise NotFoundException(
                f"Quote {quote_id} not found on intervention {intervention.reference}"
            )
        if quote.status != QuoteStatus.PENDING:
            raise AlreadyProcessedException(
                f"Quote {quote_id} is already {quote.status.value}"
            )

        now = datetime.now(UTC)
        quote.status = QuoteStatus.ACCEPTED
        quote.validated_at = now
        quote.validated_by = actor.id

        siblings_result = await self.db.execute(
            select(Quote)
            .where(
                Quote.intervention_id == intervention.id,
                Quote.id != quote.id,
                Quote.status == QuoteStatus.PENDING,
            )
            .order_by(Quote.amount.asc())
        )
        rejected = list(siblings_result.scalars().all())
        for sibling in rejected:
            sibling.status = QuoteStatus.REJECTED
            sibling.validated_at = now
            sibling.validated_by = actor.id
            sibling.rejection_reason = REJECTED_QUOTE_REASON

        await self.db.flush()
        logger.info(
            "Quote %s accepted on intervention %s, %d competing quotes rejected",
            quote.id, intervention.id, len(rejected),
        )
        return QuoteResolution(accepted=quote, rejected=rejected)

    async def build_events(
        self, resolution: QuoteResolution, intervention: Intervention, actor: Actor
    ) -> list[NotificationEvent]:
        """One high-priority event for the winner, one event per rejected provider."""
        provider_ids = [resolution.accepted.provider_id] + [q.provider_id for q in resolution.rejected]
        users = await _load_users(self.db, provider_ids)
        url = intervention_url(intervention.id)

        def _event(quote: Quote, accepted: bool) -> NotificationEvent:
            provider = users.get(quote.provider_id)
            recipients = [] if provider is None or provider.id == actor.id else [
                Recipient(provider.id, provider.role.value, True, provider.name, provider.email)
            ]
            return NotificationEvent(
                event_type=EVENT_QUOTE_ACCEPTED if accepted else EVENT_QUOTE_REJECTED,
                notification_type=NotificationType.INTERVENTION,
                title="Devis accepté" if accepted else "Devis non retenu",
                message=(
                    f"Votre devis de {quote.amount} {quote.currency} pour {intervention.reference} a été accepté"
                    if accepted
                    else f"Votre devis pour {intervention.reference} n'a pas été retenu"
                ),
                recipients=recipients,
                team_id=intervention.team_id,
                actor_id=actor.id,
                priority=NotificationPriority.HIGH if accepted else NotificationPriority.NORMAL,
                related_entity_type="quote",
                related_entity_id=quote.id,
                url=url,
                metadata={"intervention_id": str(intervention.id), "quote_id": str(quote.id)},
            )

        return [_event(resolution.accepted, True)] + [_event(q, False) for q in resolution.rejected]


async def _load_users(db: AsyncSession, user_ids: list[uuid.UUID]) -> dict[uuid.UUID, User]:
    if not user_ids:
        return {}
    result = await db.execute(select(User).where(User.id.in_(user_ids)))
    return {u.id: u for u in result.scalars().all()}


class QuoteService:
    def __init__(self, db: AsyncSession, dispatcher: NotificationDispatcher | None = None):
        self.db = db
        self._dispatcher = dispatcher

    @property
    def dispatcher(self) -> NotificationDispatcher:
        if self._dispatcher is None:
            self._dispatcher = NotificationDispatcher(self.db)
        return self._dispatcher

    async def get_quote(self, quote_id: uuid.UUID) -> Quote:
        quote = await self.db.get(Quote, quote_id)
        if quote is None:
            raise NotFoundException(f"Quote {quote_id} not found")
        return quote

    # ------------------------------------------------------------------
    # Submit
    # ------------------------------------------------------------------

    async def submit_quote(
        self,
        intervention_id: uuid.UUID,
        actor: Actor,
        amount: Decimal,
        description: str | None = None,
        currency: str = "EUR",
    ) -> Quote:
        """Submit a quote as an assigned provider.

        Validates:
        - the actor is a provider assigned to the intervention
        - the intervention is collecting quotes
        - the quote deadline, when one was set, has not passed
        - the provider has no other pending quote on it
        """
        if actor.role != UserRole.PROVIDER:
            raise ForbiddenException("Only providers can submit quotes")
        amount = Decimal(str(amount))
        if amount < 0:
            raise ValidationException(
                "Quote amount must be positive",
                details=[{"field": "amount", "message": "must be >= 0"}],
            )

        intervention = await access.get_intervention(self.db, intervention_id)
        await access.ensure_acting_scope(self.db, intervention, actor)
        if intervention.status not in QUOTABLE_STATUSES:
            raise BusinessRuleException(
                f"Cannot submit a quote for intervention in status '{intervention.status.value}'"
            )
        if intervention.quote_deadline is not None and as_utc(intervention.quote_deadline) < datetime.now(UTC):
            raise BusinessRuleException("The quote deadline has passed")

        existing = await self.db.execute(
            select(Quote.id).where(
                Quote.intervention_id == intervention_id,
                Quote.provider_id == actor.id,
                Quote.status == QuoteStatus.PENDING,
            )
        )
        if existing.scalar_one_or_none() is not None:
            raise ConflictException("Provider already has a pending quote for this intervention")

        quote = Quote(
            intervention_id=intervention_id,
            provider_id=actor.id,
            amount=amount,
            currency=currency,
            description=description,
            status=QuoteStatus.PENDING,
            submitted_at=datetime.now(UTC),
        )
        self.db.add(quote)
        await self.db.flush()
        logger.info("Provider %s submitted quote %s on %s", actor.id, quote.id, intervention.reference)

        async def _notify() -> str:
            assignees = await RecipientLoader(self.db).assignees(intervention.id)
            recipients = intervention_recipients(
                assignees, {AssignmentRole.MANAGER}, actor.id
            )
            report = await self.dispatcher.dispatch(
                NotificationEvent(
                    event_type=EVENT_QUOTE_SUBMITTED,
                    notification_type=NotificationType.INTERVENTION,
                    title="Nouveau devis reçu",
                    message=f"{actor.name or 'Un prestataire'} a envoyé un devis de {amount} {currency} pour {intervention.reference}",
                    recipients=recipients,
                    team_id=intervention.team_id,
                    actor_id=actor.id,
                    related_entity_type="quote",
                    related_entity_id=quote.id,
                    url=intervention_url(intervention.id),
                    metadata={"intervention_id": str(intervention.id), "quote_id": str(quote.id)},
                )
            )
            return f"{report.recipient_count} recipients"

        await EffectRunner().run([Effect("notify", _notify)])
        return quote

    # ------------------------------------------------------------------
    # Decide
    # ------------------------------------------------------------------

    async def approve_quote(self, quote_id: uuid.UUID, actor: Actor):
        """Accept a quote through the intervention's ``accept_quote`` transition."""
        from src.modules.interventions.workflow_service import InterventionWorkflowService

        quote = await self.get_quote(quote_id)
        workflow = InterventionWorkflowService(self.db, dispatcher=self._dispatcher)
        return await workflow.execute(
            quote.intervention_id,
            InterventionAction.ACCEPT_QUOTE,
            actor,
            {"quote_id": str(quote_id)},
        )

    async def reject_quote(self, quote_id: uuid.UUID, actor: Actor, reason: str) -> Quote:
        """Reject a single pending quote without deciding the competition."""
        if not reason or not reason.strip():
            raise ValidationException(
                "A rejection reason is required",
                details=[{"field": "reason", "message": "required"}],
            )
        quote = await self.get_quote(quote_id)
        intervention = await access.get_intervention(self.db, quote.intervention_id)
        access.ensure_manager(actor, intervention.team_id)
        if quote.status != QuoteStatus.PENDING:
            raise AlreadyProcessedException(f"Quote {quote_id} is already {quote.status.value}")

        quote.status = QuoteStatus.REJECTED
        quote.validated_at = datetime.now(UTC)
        quote.validated_by = actor.id
        quote.rejection_reason = reason.strip()
        await self.db.flush()
        logger.info("Quote %s rejected by %s", quote.id, actor.id)

        async def _notify() -> str:
            users = await _load_users(self.db, [quote.provider_id])
            provider = users.get(quote.provider_id)
            if provider is None:
                return "provider not found"
            await self.dispatcher.dispatch(
                NotificationEvent(
                    event_type=EVENT_QUOTE_REJECTED,
                    notification_type=NotificationType.INTERVENTION,
                    title="Devis refusé",
                    message=f"Votre devis pour {intervention.reference} a été refusé : {quote.rejection_reason}",
                    recipients=[Recipient(provider.id, provider.role.value, True, provider.name, provider.email)],
                    team_id=intervention.team_id,
                    actor_id=actor.id,
                    related_entity_type="quote",
                    related_entity_id=quote.id,
                    url=intervention_url(intervention.id),
                    metadata={"intervention_id": str(intervention.id), "quote_id": str(quote.id)},
                )
            )
            return "provider notified"

        await EffectRunner().run([Effect("notify", _notify)])
        return quote

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    async def list_quotes(self, intervention_id: uuid.UUID, actor: Actor) -> list[Quote]:
        """Managers see every quote; providers see only their own."""
        intervention = await access.get_intervention(self.db, intervention_id)
        query = select(Quote).where(Quote.intervention_id == intervention_id)
        if actor.is_manager:
            access.ensure_manager(actor, intervention.team_id)
        elif actor.role == UserRole.PROVIDER:
            await access.ensure_acting_scope(self.db, intervention, actor)
            query = query.where(Quote.provider_id == actor.id)
        else:
            raise ForbiddenException("Tenants cannot view quotes")
        result = await self.db.execute(query.order_by(Quote.created_at.asc()))
        return list(result.scalars().all())
