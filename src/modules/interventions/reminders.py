"""Reminders for scheduled interventions (24 hours and 1 hour before)."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.enums import AssignmentRole, InterventionStatus, NotificationPriority, NotificationType
from src.models.intervention import Intervention
from src.modules.interventions.constants import EVENT_INTERVENTION_REMINDER, REMINDER_WINDOWS
from src.modules.notifications.dispatcher import NotificationDispatcher, NotificationEvent
from src.modules.notifications.recipients import RecipientLoader, intervention_recipients
from src.modules.notifications.service import NotificationService
from src.modules.notifications.templates import intervention_url
from src.modules.notifications.throttle import as_utc

logger = logging.getLogger(__name__)

_REMINDER_TEXT = {
    "24h": "Rappel : intervention prévue demain",
    "1h": "Rappel : intervention dans une heure",
}


async def send_due_reminders(
    db: AsyncSession,
    now: datetime | None = None,
    dispatcher: NotificationDispatcher | None = None,
) -> dict:
    """Notify assignees of ``planifiee`` interventions entering a reminder window.

    Each (intervention, window) pair is reminded once; an existing reminder
    notification carrying the window name marks it as done.
    """
    now = now or datetime.now(UTC)
    dispatcher = dispatcher or NotificationDispatcher(db)
    loader = RecipientLoader(db)
    notifications = NotificationService(db)
    stats = {"checked": 0, "sent": 0, "skipped": 0, "errors": 0}

    for reminder_type, lower, upper in REMINDER_WINDOWS:
        result = await db.execute(
            select(Intervention).where(
                Intervention.status == InterventionStatus.PLANIFIEE,
                Intervention.scheduled_date.is_not(None),
                Intervention.scheduled_date >= now + timedelta(minutes=lower),
                Intervention.scheduled_date <= now + timedelta(minutes=upper),
            )
        )
        for intervention in result.scalars().all():
            stats["checked"] += 1
            try:
                if await notifications.has_reminder(intervention.id, reminder_type):
                    stats["skipped"] += 1
                    continue
                assignees = await loader.assignees(intervention.id)
                recipients = intervention_recipients(assignees, set(AssignmentRole), None)
                scheduled = as_utc(intervention.scheduled_date)
                report = await dispatcher.dispatch(NotificationEvent(
                    event_type=EVENT_INTERVENTION_REMINDER,
                    notification_type=NotificationType.REMINDER,
                    title=_REMINDER_TEXT[reminder_type],
                    message=f"{intervention.reference} - {intervention.title} le {scheduled:%d/%m/%Y à %H:%M} (UTC)",
                    recipients=recipients,
                    team_id=intervention.team_id,
                    priority=NotificationPriority.HIGH if reminder_type == "1h" else NotificationPriority.NORMAL,
                    related_entity_type="intervention",
                    related_entity_id=intervention.id,
                    url=intervention_url(intervention.id),
                    metadata={
                        "intervention_id": str(intervention.id),
                        "reminder_type": reminder_type,
                        "scheduled_date": scheduled.isoformat(),
                    },
                ))
                if report.failed_effects:
                    logger.warning(
                        "%s reminder for intervention %s failed on %s",
                        reminder_type, intervention.id, ", ".join(report.failed_effects),
                    )
                    stats["errors"] += 1
                else:
                    stats["sent"] += 1
            except Exception:
                logger.exception(
                    "Error sending %s reminder for intervention %s", reminder_type, intervention.id
                )
                stats["errors"] += 1

    return stats
