"""Per-thread email throttling.

A thread may trigger at most one email batch per window. The window is
claimed with a single conditional UPDATE; the affected row count tells the
caller whether it may send. Two concurrent claims cannot both succeed, and a
refused claim leaves ``last_email_notification_at`` untouched.
"""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime, timedelta

from sqlalchemy import or_, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import settings
from src.models.conversation import ConversationThread

logger = logging.getLogger(__name__)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops the offset)."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


class EmailThrottle:
    def __init__(self, db: AsyncSession, window_seconds: int | None = None):
        self.db = db
        self.window_seconds = (
            window_seconds
            if window_seconds is not None
            else settings.email_throttle_window_seconds
        )

    async def try_claim(self, thread_id: uuid.UUID, now: datetime | None = None) -> bool:
        """Claim the thread's email window. Returns True if the batch may be sent."""
        now = now or datetime.now(UTC)
        cutoff = now - timedelta(seconds=self.window_seconds)
        result = await self.db.execute(
            update(ConversationThread)
            .where(
                ConversationThread.id == thread_id,
                or_(
                    ConversationThread.last_email_notification_at.is_(None),
                    ConversationThread.last_email_notification_at <= cutoff,
                ),
            )
            .values(last_email_notification_at=now)
            .execution_options(synchronize_session=False)
        )
        claimed = result.rowcount == 1
        if claimed:
            logger.debug("Email window claimed for thread %s", thread_id)
        else:
            logger.info(
                "Email batch throttled for thread %s (window %ss)",
                thread_id, self.window_seconds,
            )
        return claimed
