"""Conversation threads: messages, participants and read markers."""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.exceptions import ConflictException, ForbiddenException, NotFoundException, ValidationException
from src.models.conversation import ConversationMessage, ConversationParticipant, ConversationThread
from src.models.enums import NotificationType
from src.models.user import User
from src.modules.auth.actor import Actor
from src.modules.interventions import access
from src.modules.interventions.constants import EVENT_MESSAGE_POSTED
from src.modules.notifications.dispatcher import (
    DispatchReport,
    NotificationDispatcher,
    NotificationEvent,
)
from src.modules.notifications.effects import Effect, EffectRunner
from src.modules.notifications.recipients import RecipientLoader
from src.modules.notifications.templates import thread_url

logger = logging.getLogger(__name__)

MESSAGE_MAX_LENGTH = 5000
PREVIEW_LENGTH = 100


class ConversationService:
    def __init__(self, db: AsyncSession, dispatcher: NotificationDispatcher | None = None):
        self.db = db
        self._dispatcher = dispatcher
        self.last_dispatch: DispatchReport | None = None

    @property
    def dispatcher(self) -> NotificationDispatcher:
        if self._dispatcher is None:
            self._dispatcher = NotificationDispatcher(self.db)
        return self._dispatcher

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    async def get_thread(self, thread_id: uuid.UUID) -> ConversationThread:
        thread = await self.db.get(ConversationThread, thread_id)
        if thread is None:
            raise NotFoundException(f"Conversation thread {thread_id} not found")
        return thread

    async def _is_participant(self, thread_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        result = await self.db.execute(
            select(ConversationParticipant.id).where(
                ConversationParticipant.thread_id == thread_id,
                ConversationParticipant.user_id == user_id,
            )
        )
        return result.scalar_one_or_none() is not None

    async def _ensure_access(self, thread: ConversationThread, actor: Actor) -> None:
        """Participants and the team's managers may read and write a thread."""
        if actor.is_manager and actor.team_id == thread.team_id:
            return
        if not await self._is_participant(thread.id, actor.id):
            raise ForbiddenException("User is not a participant of this conversation")

    # ------------------------------------------------------------------
    # Threads
    # ------------------------------------------------------------------

    async def list_threads(
        self, intervention_id: uuid.UUID, actor: Actor
    ) -> list[ConversationThread]:
        intervention = await access.get_intervention(self.db, intervention_id)
        await access.ensure_visible(self.db, intervention, actor)
        query = select(ConversationThread).where(
            ConversationThread.intervention_id == intervention_id
        )
        if not actor.is_manager:
            query = query.where(
                ConversationThread.id.in_(
                    select(ConversationParticipant.thread_id)
                    .where(ConversationParticipant.user_id == actor.id)
                    .scalar_subquery()
                )
            )
        result = await self.db.execute(query.order_by(ConversationThread.created_at.asc()))
        return list(result.scalars().all())

    async def add_participant(
        self, thread_id: uuid.UUID, user_id: uuid.UUID, actor: Actor
    ) -> ConversationParticipant:
        thread = await self.get_thread(thread_id)
        access.ensure_manager(actor, thread.team_id)
        user = await self.db.get(User, user_id)
        if user is None:
            raise NotFoundException(f"User {user_id} not found")
        if await self._is_participant(thread_id, user_id):
            raise ConflictException("User is already a participant")
        participant = ConversationParticipant(thread_id=thread_id, user_id=user_id)
        self.db.add(participant)
        await self.db.flush()
        logger.info("User %s added to thread %s", user_id, thread_id)
        return participant

    async def mark_thread_read(self, thread_id: uuid.UUID, actor: Actor) -> ConversationParticipant:
        result = await self.db.execute(
            select(ConversationParticipant).where(
                ConversationParticipant.thread_id == thread_id,
                ConversationParticipant.user_id == actor.id,
            )
        )
        participant = result.scalar_one_or_none()
        if participant is None:
            raise NotFoundException("User is not a participant of this conversation")
        participant.last_read_at = datetime.now(UTC)
        await self.db.flush()
        return participant

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def list_messages(
        self,
        thread_id: uuid.UUID,
        actor: Actor,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ConversationMessage]:
        thread = await self.get_thread(thread_id)
        await self._ensure_access(thread, actor)
        result = await self.db.execute(
            select(ConversationMessage)
            .where(ConversationMessage.thread_id == thread_id)
            .order_by(ConversationMessage.created_at.asc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def post_message(
        self, thread_id: uuid.UUID, actor: Actor, content: str
    ) -> ConversationMessage:
        """Store a message and fan it out (in-app, push, throttled email)."""
        content = (content or "").strip()
        if not content or len(content) > MESSAGE_MAX_LENGTH:
            raise ValidationException(
                f"Message must be between 1 and {MESSAGE_MAX_LENGTH} characters",
                details=[{"field": "content", "message": "invalid length"}],
            )

        thread = await self.get_thread(thread_id)
        await self._ensure_access(thread, actor)

        now = datetime.now(UTC)
        message = ConversationMessage(thread_id=thread_id, user_id=actor.id, content=content)
        self.db.add(message)
        thread.last_message_at = now
        thread.message_count = (thread.message_count or 0) + 1
        await self.db.flush()
        logger.info("Message %s posted in thread %s by %s", message.id, thread_id, actor.id)

        intervention = await access.get_intervention(self.db, thread.intervention_id)

        async def _notify() -> str:
            recipients = await RecipientLoader(self.db).thread_recipients(thread, actor.id)
            preview = content if len(content) <= PREVIEW_LENGTH else content[:PREVIEW_LENGTH] + "…"
            self.last_dispatch = await self.dispatcher.dispatch(NotificationEvent(
                event_type=EVENT_MESSAGE_POSTED,
                notification_type=NotificationType.CHAT,
                title=f"Nouveau message - {intervention.reference}",
                message=f"{actor.name or 'Un utilisateur'} : {preview}",
                recipients=recipients,
                team_id=thread.team_id,
                actor_id=actor.id,
                related_entity_type="conversation_thread",
                related_entity_id=thread.id,
                url=thread_url(intervention.id, thread.id),
                metadata={
                    "intervention_id": str(intervention.id),
                    "thread_id": str(thread.id),
                    "message_id": str(message.id),
                },
                thread_id=thread.id,
            ))
            return f"{self.last_dispatch.recipient_count} recipients"

        await EffectRunner().run([Effect("notify", _notify)])
        return message
