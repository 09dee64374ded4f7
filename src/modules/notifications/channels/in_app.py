"""In-app channel: notification rows written inside their own savepoint."""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from src.models.notification import Notification
from src.modules.notifications.service import NotificationService

logger = logging.getLogger(__name__)


class InAppChannel:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def deliver(self, rows: list[dict]) -> list[Notification]:
        """Insert one notification per row.

        A failure rolls back only this savepoint; the caller's state change
        stays in the session.
        """
        if not rows:
            return []
        async with self.db.begin_nested():
            created = await NotificationService(self.db).create_many(rows)
        logger.info("Created %d in-app notifications", len(created))
        return created
