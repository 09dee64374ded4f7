"""Notification inbox: creation, listing, read state and push subscriptions."""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.exceptions import ForbiddenException, NotFoundException
from src.models.enums import NotificationType
from src.models.notification import Notification
from src.models.push_subscription import PushSubscription
from src.modules.auth.actor import Actor

logger = logging.getLogger(__name__)


class NotificationService:
    def __init__(self, db: AsyncSession):
        self.db = db

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_many(self, rows: list[dict]) -> list[Notification]:
        """Insert notification rows built by the dispatcher."""
        notifications = [Notification(**row) for row in rows]
        self.db.add_all(notifications)
        await self.db.flush()
        return notifications

    # ------------------------------------------------------------------
    # Inbox
    # ------------------------------------------------------------------

    async def list_for_user(
        self,
        actor: Actor,
        unread_only: bool = False,
        personal_only: bool = False,
        archived: bool = False,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[Notification], int]:
        filters = [Notification.user_id == actor.id, Notification.archived.is_(archived)]
        if unread_only:
            filters.append(Notification.read.is_(False))
        if personal_only:
            filters.append(Notification.is_personal.is_(True))

        total_result = await self.db.execute(
            select(func.count()).select_from(Notification).where(*filters)
        )
        total = total_result.scalar() or 0

        result = await self.db.execute(
            select(Notification)
            .where(*filters)
            .order_by(Notification.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    async def unread_counts(self, actor: Actor) -> dict[str, int]:
        """Unread badge counts split between personal and team-wide notifications."""
        result = await self.db.execute(
            select(Notification.is_personal, func.count())
            .where(
                Notification.user_id == actor.id,
                Notification.read.is_(False),
                Notification.archived.is_(False),
            )
            .group_by(Notification.is_personal)
        )
        counts = {bool(is_personal): count for is_personal, count in result.all()}
        personal = counts.get(True, 0)
        team = counts.get(False, 0)
        return {"personal": personal, "team": team, "total": personal + team}

    async def _get_owned(self, notification_id: uuid.UUID, actor: Actor) -> Notification:
        notification = await self.db.get(Notification, notification_id)
        if notification is None:
            raise NotFoundException(f"Notification {notification_id} not found")
        if notification.user_id != actor.id:
            raise ForbiddenException("Only the recipient can change a notification")
        return notification

    async def mark_read(
        self, notification_id: uuid.UUID, actor: Actor, read: bool = True
    ) -> Notification:
        notification = await self._get_owned(notification_id, actor)
        notification.read = read
        notification.read_at = datetime.now(UTC) if read else None
        await self.db.flush()
        return notification

    async def mark_all_read(self, actor: Actor) -> int:
        result = await self.db.execute(
            update(Notification)
            .where(Notification.user_id == actor.id, Notification.read.is_(False))
            .values(read=True, read_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )
        logger.info("Marked %d notifications read for user %s", result.rowcount, actor.id)
        return result.rowcount

    async def archive(self, notification_id: uuid.UUID, actor: Actor) -> Notification:
        notification = await self._get_owned(notification_id, actor)
        notification.archived = True
        await self.db.flush()
        return notification

    async def has_reminder(self, intervention_id: uuid.UUID, reminder_type: str) -> bool:
        """True if a reminder of this type was already sent for the intervention."""
        result = await self.db.execute(
            select(Notification.metadata_extra).where(
                Notification.type == NotificationType.REMINDER,
                Notification.related_entity_type == "intervention",
                Notification.related_entity_id == intervention_id,
            )
        )
        return any(
            (meta or {}).get("reminder_type") == reminder_type
            for meta in result.scalars().all()
        )

    # ------------------------------------------------------------------
    # Push subscriptions
    # ------------------------------------------------------------------

    async def register_push_subscription(
        self, actor: Actor, endpoint: str, p256dh: str, auth: str
    ) -> PushSubscription:
        """Create or re-bind a browser subscription; endpoints are unique."""
        result = await self.db.execute(
            select(PushSubscription).where(PushSubscription.endpoint == endpoint)
        )
        subscription = result.scalar_one_or_none()
        if subscription is None:
            subscription = PushSubscription(
                user_id=actor.id, endpoint=endpoint, p256dh=p256dh, auth=auth
            )
            self.db.add(subscription)
        else:
            subscription.user_id = actor.id
            subscription.p256dh = p256dh
            subscription.auth = auth
        await self.db.flush()
        return subscription

    async def remove_push_subscription(self, actor: Actor, endpoint: str) -> None:
        result = await self.db.execute(
            select(PushSubscription).where(
                PushSubscription.endpoint == endpoint,
                PushSubscription.user_id == actor.id,
            )
        )
        subscription = result.scalar_one_or_none()
        if subscription is None:
            raise NotFoundException("Push subscription not found")
        await self.db.delete(subscription)
        await self.db.flush()
