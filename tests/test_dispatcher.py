"""Tests for the multi-channel notification dispatcher."""

import uuid
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select

from src.models.enums import EffectStatus, NotificationPriority, NotificationType
from src.models.notification import Notification
from src.modules.notifications.dispatcher import NotificationDispatcher, NotificationEvent
from src.modules.notifications.recipients import Recipient
from src.modules.notifications.throttle import as_utc
from tests.fakes import FakeEmailSender, FakePushGateway


def _recipient(user, personal=True):
    return Recipient(user.id, user.role.value, personal, user.name, user.email)


def _event(recipients, thread_id=None, **overrides) -> NotificationEvent:
    values = dict(
        event_type="conversation.message_posted",
        notification_type=NotificationType.CHAT,
        title="Nouveau message",
        message="Bonjour",
        recipients=recipients,
        priority=NotificationPriority.NORMAL,
        url="http://localhost:3000/interventions/x",
        metadata={"source": "test"},
        thread_id=thread_id,
    )
    values.update(overrides)
    return NotificationEvent(**values)


async def _notifications(session):
    result = await session.execute(select(Notification))
    return list(result.scalars().all())


class TestDispatch:
    @pytest.mark.asyncio
    async def test_all_channels_run_in_order(
        self, async_session, world, dispatcher, email_sender, push_gateway, subscribe
    ):
        await subscribe(world.tenant)
        event = _event([_recipient(world.tenant), _recipient(world.co_manager, personal=False)])

        report = await dispatcher.dispatch(event)

        assert [o.name for o in report.outcomes] == ["in_app", "push", "email"]
        assert all(o.status == EffectStatus.OK for o in report.outcomes)
        rows = await _notifications(async_session)
        assert {(r.user_id, r.is_personal) for r in rows} == {
            (world.tenant.id, True),
            (world.co_manager.id, False),
        }
        assert rows[0].metadata_extra["event_type"] == "conversation.message_posted"
        assert len(push_gateway.delivered) == 1
        # Team-wide recipients are emailed as well
        assert sorted(e.to for e in email_sender.sent) == sorted([world.tenant.email, world.co_manager.email])

    @pytest.mark.asyncio
    async def test_no_recipients_runs_nothing(self, async_session, dispatcher, email_sender):
        report = await dispatcher.dispatch(_event([]))
        assert report.outcomes == []
        assert await _notifications(async_session) == []
        assert email_sender.sent == []

    @pytest.mark.asyncio
    async def test_unconfigured_channels_are_skipped(self, async_session, world):
        dispatcher = NotificationDispatcher(
            async_session,
            email_sender=FakeEmailSender(configured=False),
            push_gateway=FakePushGateway(configured=False),
            email_delay_seconds=0,
        )

        report = await dispatcher.dispatch(_event([_recipient(world.tenant)]))

        assert report.outcome("in_app").status == EffectStatus.OK
        assert report.outcome("push").status == EffectStatus.SKIPPED
        assert report.outcome("email").status == EffectStatus.SKIPPED
        assert len(await _notifications(async_session)) == 1

    @pytest.mark.asyncio
    async def test_recipient_without_email_gets_no_email(self, async_session, world, dispatcher, email_sender):
        world.tenant.email = None
        await async_session.flush()

        report = await dispatcher.dispatch(_event([_recipient(world.tenant)]))

        assert report.outcome("email").status == EffectStatus.SKIPPED
        assert email_sender.sent == []

    @pytest.mark.asyncio
    async def test_failing_channels_do_not_stop_each_other(self, async_session, world):
        dispatcher = NotificationDispatcher(
            async_session,
            email_sender=FakeEmailSender(raises=True),
            push_gateway=FakePushGateway(),
            email_delay_seconds=0,
        )
        dispatcher.push.send_to_users = AsyncMock(side_effect=RuntimeError("gateway down"))

        report = await dispatcher.dispatch(_event([_recipient(world.tenant)]))

        assert report.outcome("in_app").status == EffectStatus.OK
        assert report.outcome("push").status == EffectStatus.FAILED
        assert report.outcome("email").status == EffectStatus.FAILED
        assert report.failed_effects == ["push", "email"]
        assert len(await _notifications(async_session)) == 1

    @pytest.mark.asyncio
    async def test_in_app_failure_keeps_other_channels(self, async_session, world, dispatcher, email_sender):
        dispatcher.in_app.deliver = AsyncMock(side_effect=RuntimeError("insert failed"))

        report = await dispatcher.dispatch(_event([_recipient(world.tenant)]))

        assert report.outcome("in_app").status == EffectStatus.FAILED
        assert report.outcome("email").status == EffectStatus.OK
        assert len(email_sender.sent) == 1

    @pytest.mark.asyncio
    async def test_report_to_dict(self, world, dispatcher):
        report = await dispatcher.dispatch(_event([_recipient(world.tenant)]))
        data = report.to_dict()
        assert data["recipient_count"] == 1
        assert [o["effect"] for o in data["outcomes"]] == ["in_app", "push", "email"]


class TestThreadThrottling:
    @pytest.mark.asyncio
    async def test_recent_email_skips_batch_but_keeps_in_app_and_push(
        self, async_session, world, make_intervention, get_thread, dispatcher, email_sender, push_gateway, subscribe
    ):
        thread = await get_thread(await make_intervention())
        two_minutes_ago = datetime.now(UTC) - timedelta(minutes=2)
        thread.last_email_notification_at = two_minutes_ago
        await async_session.flush()
        await subscribe(world.tenant)
        await subscribe(world.provider)

        report = await dispatcher.dispatch(
            _event([_recipient(world.tenant), _recipient(world.provider)], thread_id=thread.id)
        )

        assert report.outcome("in_app").status == EffectStatus.OK
        assert report.outcome("push").status == EffectStatus.OK
        assert report.outcome("email").status == EffectStatus.SKIPPED
        assert len(await _notifications(async_session)) == 2
        assert len(push_gateway.delivered) == 2
        assert email_sender.sent == []
        await async_session.refresh(thread)
        assert as_utc(thread.last_email_notification_at) == two_minutes_ago

    @pytest.mark.asyncio
    async def test_two_events_in_window_send_one_batch(
        self, async_session, world, make_intervention, get_thread, dispatcher, email_sender
    ):
        thread = await get_thread(await make_intervention())
        recipients = [_recipient(world.tenant), _recipient(world.provider)]

        first = await dispatcher.dispatch(_event(recipients, thread_id=thread.id))
        second = await dispatcher.dispatch(_event(recipients, thread_id=thread.id))

        assert first.outcome("email").status == EffectStatus.OK
        assert second.outcome("email").status == EffectStatus.SKIPPED
        assert len(email_sender.sent) == 2
        assert len(await _notifications(async_session)) == 4

    @pytest.mark.asyncio
    async def test_event_after_window_sends_new_batch(
        self, async_session, world, make_intervention, get_thread, dispatcher, email_sender
    ):
        thread = await get_thread(await make_intervention())
        thread.last_email_notification_at = datetime.now(UTC) - timedelta(minutes=6)
        await async_session.flush()

        report = await dispatcher.dispatch(_event([_recipient(world.tenant)], thread_id=thread.id))

        assert report.outcome("email").status == EffectStatus.OK
        assert len(email_sender.sent) == 1

    @pytest.mark.asyncio
    async def test_events_without_thread_are_not_throttled(self, world, dispatcher, email_sender):
        recipients = [_recipient(world.tenant)]
        await dispatcher.dispatch(_event(recipients, event_type="intervention.transitioned"))
        await dispatcher.dispatch(_event(recipients, event_type="intervention.transitioned"))
        assert len(email_sender.sent) == 2

    @pytest.mark.asyncio
    async def test_unknown_thread_is_never_claimed(self, world, dispatcher, email_sender):
        report = await dispatcher.dispatch(_event([_recipient(world.tenant)], thread_id=uuid.uuid4()))
        assert report.outcome("email").status == EffectStatus.SKIPPED
        assert email_sender.sent == []
