"""Celery tasks for intervention automation."""

from __future__ import annotations

import asyncio
import logging

from celery_app import celery
from src.database.engine import async_session
from src.modules.interventions.reminders import send_due_reminders
from src.modules.notifications.channels.factory import close_all_channels

logger = logging.getLogger(__name__)


async def _send_intervention_reminders_async() -> dict:
    try:
        async with async_session() as session:
            stats = await send_due_reminders(session)
            await session.commit()
    finally:
        await close_all_channels()
    return stats


@celery.task(name="src.modules.interventions.tasks.send_intervention_reminders")
def send_intervention_reminders():
    """Send 24h and 1h reminders for scheduled interventions."""
    stats = asyncio.run(_send_intervention_reminders_async())
    logger.info("send_intervention_reminders complete: %s", stats)
    return stats
