"""Intervention documents: metadata for files held by the storage service."""

from __future__ import annotations

import logging
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.exceptions import ValidationException
from src.models.enums import AssignmentRole, NotificationType
from src.models.intervention_document import InterventionDocument
from src.modules.auth.actor import Actor
from src.modules.interventions import access
from src.modules.interventions.constants import EVENT_DOCUMENT_UPLOADED
from src.modules.notifications.dispatcher import NotificationDispatcher, NotificationEvent
from src.modules.notifications.effects import Effect, EffectRunner
from src.modules.notifications.recipients import RecipientLoader, intervention_recipients
from src.modules.notifications.templates import intervention_url

logger = logging.getLogger(__name__)

_ALL_ROLES = set(AssignmentRole)


class InterventionDocumentService:
    def __init__(self, db: AsyncSession, dispatcher: NotificationDispatcher | None = None):
        self.db = db
        self._dispatcher = dispatcher

    @property
    def dispatcher(self) -> NotificationDispatcher:
        if self._dispatcher is None:
            self._dispatcher = NotificationDispatcher(self.db)
        return self._dispatcher

    async def register_document(
        self,
        intervention_id: uuid.UUID,
        actor: Actor,
        filename: str,
        storage_path: str,
        document_type: str = "other",
        size_bytes: int | None = None,
    ) -> InterventionDocument:
        """Record an uploaded file and tell every other assignee about it."""
        if not filename or not filename.strip():
            raise ValidationException(
                "A filename is required", details=[{"field": "filename", "message": "required"}]
            )
        if not storage_path:
            raise ValidationException(
                "A storage path is required",
                details=[{"field": "storage_path", "message": "required"}],
            )

        intervention = await access.get_intervention(self.db, intervention_id)
        await access.ensure_visible(self.db, intervention, actor)

        document = InterventionDocument(
            intervention_id=intervention_id,
            uploaded_by=actor.id,
            filename=filename.strip(),
            storage_path=storage_path,
            document_type=document_type,
            size_bytes=size_bytes,
        )
        self.db.add(document)
        await self.db.flush()
        logger.info("Document %s registered on intervention %s", document.id, intervention_id)

        async def _notify() -> str:
            assignees = await RecipientLoader(self.db).assignees(intervention_id)
            recipients = intervention_recipients(assignees, _ALL_ROLES, actor.id)
            report = await self.dispatcher.dispatch(NotificationEvent(
                event_type=EVENT_DOCUMENT_UPLOADED,
                notification_type=NotificationType.DOCUMENT,
                title="Nouveau document",
                message=f'Le document "{document.filename}" a été ajouté à {intervention.reference}',
                recipients=recipients,
                team_id=intervention.team_id,
                actor_id=actor.id,
                related_entity_type="intervention",
                related_entity_id=intervention.id,
                url=intervention_url(intervention.id),
                metadata={
                    "intervention_id": str(intervention.id),
                    "document_id": str(document.id),
                    "document_type": document_type,
                },
            ))
            return f"{report.recipient_count} recipients"

        await EffectRunner().run([Effect("notify", _notify)])
        return document

    async def list_documents(
        self, intervention_id: uuid.UUID, actor: Actor
    ) -> list[InterventionDocument]:
        intervention = await access.get_intervention(self.db, intervention_id)
        await access.ensure_visible(self.db, intervention, actor)
        result = await self.db.execute(
            select(InterventionDocument)
            .where(InterventionDocument.intervention_id == intervention_id)
            .order_by(InterventionDocument.created_at.desc())
        )
        return list(result.scalars().all())
