"""Multi-channel notification fan-out.

One event becomes three ordered effects: in-app rows, push, then throttled
email. Each effect is isolated by the ``EffectRunner``; a failing channel is
recorded in the ``DispatchReport`` and the remaining channels still run.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession

from src.models.enums import EffectStatus, NotificationPriority, NotificationType
from src.modules.notifications.channels.base import EmailSenderBase, PushGatewayBase, PushMessage
from src.modules.notifications.channels.email import EmailChannel
from src.modules.notifications.channels.factory import get_email_sender, get_push_gateway
from src.modules.notifications.channels.in_app import InAppChannel
from src.modules.notifications.channels.push import PushChannel
from src.modules.notifications.effects import Effect, EffectOutcome, EffectRunner, EffectSkipped
from src.modules.notifications.recipients import Recipient
from src.modules.notifications.templates import render_email
from src.modules.notifications.throttle import EmailThrottle

logger = logging.getLogger(__name__)


@dataclass
class NotificationEvent:
    event_type: str
    notification_type: NotificationType
    title: str
    message: str
    recipients: list[Recipient]
    team_id: uuid.UUID | None = None
    actor_id: uuid.UUID | None = None
    priority: NotificationPriority = NotificationPriority.NORMAL
    related_entity_type: str | None = None
    related_entity_id: uuid.UUID | None = None
    url: str | None = None
    metadata: dict = field(default_factory=dict)
    # Set for conversation events; email batches are throttled per thread
    thread_id: uuid.UUID | None = None


@dataclass
class DispatchReport:
    event_type: str
    recipient_count: int
    outcomes: list[EffectOutcome] = field(default_factory=list)

    @property
    def failed_effects(self) -> list[str]:
        return [o.name for o in self.outcomes if o.status == EffectStatus.FAILED]

    def outcome(self, name: str) -> EffectOutcome | None:
        return next((o for o in self.outcomes if o.name == name), None)

    def to_dict(self) -> dict:
        return {
            "event_type": self.event_type,
            "recipient_count": self.recipient_count,
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


class NotificationDispatcher:
    def __init__(
        self,
        db: AsyncSession,
        email_sender: EmailSenderBase | None = None,
        push_gateway: PushGatewayBase | None = None,
        email_delay_seconds: float | None = None,
        throttle: EmailThrottle | None = None,
        runner: EffectRunner | None = None,
    ):
        self.db = db
        self.in_app = InAppChannel(db)
        self.push = PushChannel(db, push_gateway or get_push_gateway())
        self.email = EmailChannel(email_sender or get_email_sender(), email_delay_seconds)
        self.throttle = throttle or EmailThrottle(db)
        self.runner = runner or EffectRunner()

    # ------------------------------------------------------------------
    # Effects
    # ------------------------------------------------------------------

    def build_effects(self, event: NotificationEvent) -> list[Effect]:
        return [
            Effect("in_app", lambda: self._deliver_in_app(event)),
            Effect("push", lambda: self._deliver_push(event)),
            Effect("email", lambda: self._deliver_email(event)),
        ]

    def _notification_rows(self, event: NotificationEvent) -> list[dict]:
        metadata = {**event.metadata, "event_type": event.event_type}
        if event.url:
            metadata["url"] = event.url
        return [
            {
                "user_id": r.user_id,
                "team_id": event.team_id,
                "created_by": event.actor_id,
                "type": event.notification_type,
                "priority": event.priority,
                "title": event.title,
                "message": event.message,
                "is_personal": r.is_personal,
                "metadata_extra": metadata,
                "related_entity_type": event.related_entity_type,
                "related_entity_id": event.related_entity_id,
            }
            for r in event.recipients
        ]

    async def _deliver_in_app(self, event: NotificationEvent) -> str:
        created = await self.in_app.deliver(self._notification_rows(event))
        return f"{len(created)} notifications"

    async def _deliver_push(self, event: NotificationEvent) -> str:
        if not self.push.is_configured():
            raise EffectSkipped("push gateway not configured")
        result = await self.push.send_to_users(
            [r.user_id for r in event.recipients],
            PushMessage(
                title=event.title,
                message=event.message,
                url=event.url,
                type=event.notification_type.value,
            ),
        )
        return f"{result.success} sent, {result.failed} failed"

    async def _deliver_email(self, event: NotificationEvent) -> str:
        targets = [r for r in event.recipients if r.email]
        if not targets:
            raise EffectSkipped("no email recipients")
        if not self.email.is_configured():
            raise EffectSkipped("email sender not configured")
        if event.thread_id is not None and not await self.throttle.try_claim(event.thread_id):
            raise EffectSkipped("thread email window already used")

        tags = {"event": event.event_type.replace(".", "_")}
        emails = [
            render_email(
                to=r.email,
                recipient_name=r.name,
                recipient_role=r.role,
                title=event.title,
                message=event.message,
                url=event.url or "",
                tags=tags,
            )
            for r in targets
        ]
        sent = await self.email.send_batch(emails)
        if sent == 0:
            raise RuntimeError(f"none of {len(emails)} emails could be sent")
        return f"{sent}/{len(emails)} sent"

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def dispatch(self, event: NotificationEvent) -> DispatchReport:
        report = DispatchReport(event.event_type, len(event.recipients))
        if not event.recipients:
            logger.debug("No recipients for %s", event.event_type)
            return report

        report.outcomes = await self.runner.run(self.build_effects(event))
        logger.info(
            "Dispatched %s to %d recipients (failed: %s)",
            event.event_type, len(event.recipients), report.failed_effects or "none",
        )
        return report

    async def dispatch_many(self, events: list[NotificationEvent]) -> list[DispatchReport]:
        return [await self.dispatch(event) for event in events]
