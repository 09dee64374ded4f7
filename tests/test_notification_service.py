"""Tests for the notification inbox and push subscription registry."""

import uuid

import pytest
from sqlalchemy import select

from src.exceptions import ForbiddenException, NotFoundException
from src.models.enums import NotificationPriority, NotificationType
from src.models.notification import Notification
from src.models.push_subscription import PushSubscription
from src.modules.notifications.service import NotificationService


@pytest.fixture
def service(async_session):
    return NotificationService(async_session)


def _row(user, personal=True, **overrides) -> dict:
    row = dict(
        user_id=user.id,
        team_id=user.team_id,
        type=NotificationType.STATUS_CHANGE,
        priority=NotificationPriority.NORMAL,
        title="Intervention approuvée",
        message="INT-261019-AAAA est approuvée",
        is_personal=personal,
        metadata_extra={},
    )
    row.update(overrides)
    return row


class TestInbox:
    @pytest.mark.asyncio
    async def test_unread_counts_split_personal_and_team(self, world, service):
        await service.create_many([
            _row(world.manager),
            _row(world.manager),
            _row(world.manager, personal=False),
            _row(world.manager, personal=False, read=True),
            _row(world.manager, archived=True),
            _row(world.tenant),
        ])

        counts = await service.unread_counts(world.actor("manager"))

        assert counts == {"personal": 2, "team": 1, "total": 3}

    @pytest.mark.asyncio
    async def test_empty_counts(self, world, service):
        assert await service.unread_counts(world.actor("tenant")) == {"personal": 0, "team": 0, "total": 0}

    @pytest.mark.asyncio
    async def test_list_filters(self, world, service):
        await service.create_many([
            _row(world.manager, title="a"),
            _row(world.manager, personal=False, title="b"),
            _row(world.manager, read=True, title="c"),
            _row(world.manager, archived=True, title="d"),
            _row(world.co_manager, title="e"),
        ])
        actor = world.actor("manager")

        items, total = await service.list_for_user(actor)
        assert total == 3
        assert {n.title for n in items} == {"a", "b", "c"}

        items, total = await service.list_for_user(actor, unread_only=True)
        assert {n.title for n in items} == {"a", "b"}

        items, total = await service.list_for_user(actor, personal_only=True)
        assert {n.title for n in items} == {"a", "c"}

        items, total = await service.list_for_user(actor, archived=True)
        assert [n.title for n in items] == ["d"]

    @pytest.mark.asyncio
    async def test_pagination_total(self, world, service):
        await service.create_many([_row(world.tenant, title=str(i)) for i in range(5)])
        items, total = await service.list_for_user(world.actor("tenant"), limit=2, offset=0)
        assert len(items) == 2
        assert total == 5


class TestReadState:
    @pytest.mark.asyncio
    async def test_mark_read_and_unread(self, world, service):
        (notification,) = await service.create_many([_row(world.tenant)])

        read = await service.mark_read(notification.id, world.actor("tenant"))
        assert read.read is True
        assert read.read_at is not None

        unread = await service.mark_read(notification.id, world.actor("tenant"), read=False)
        assert unread.read is False
        assert unread.read_at is None

    @pytest.mark.asyncio
    async def test_only_owner_can_mark(self, world, service):
        (notification,) = await service.create_many([_row(world.tenant)])
        with pytest.raises(ForbiddenException):
            await service.mark_read(notification.id, world.actor("manager"))
        with pytest.raises(ForbiddenException):
            await service.archive(notification.id, world.actor("manager"))

    @pytest.mark.asyncio
    async def test_unknown_notification(self, world, service):
        with pytest.raises(NotFoundException):
            await service.mark_read(uuid.uuid4(), world.actor("tenant"))

    @pytest.mark.asyncio
    async def test_mark_all_read_only_touches_own_rows(self, async_session, world, service):
        await service.create_many([_row(world.tenant), _row(world.tenant), _row(world.manager)])

        updated = await service.mark_all_read(world.actor("tenant"))

        assert updated == 2
        rows = (await async_session.execute(
            select(Notification.user_id, Notification.read)
        )).all()
        assert sorted((uid == world.tenant.id, read) for uid, read in rows) == [
            (False, False), (True, True), (True, True)
        ]

    @pytest.mark.asyncio
    async def test_archive(self, world, service):
        (notification,) = await service.create_many([_row(world.tenant)])
        archived = await service.archive(notification.id, world.actor("tenant"))
        assert archived.archived is True
        assert (await service.unread_counts(world.actor("tenant")))["total"] == 0


class TestReminderLookup:
    @pytest.mark.asyncio
    async def test_has_reminder_matches_type(self, world, service):
        intervention_id = uuid.uuid4()
        await service.create_many([
            _row(
                world.provider,
                type=NotificationType.REMINDER,
                related_entity_type="intervention",
                related_entity_id=intervention_id,
                metadata_extra={"reminder_type": "24h"},
            )
        ])

        assert await service.has_reminder(intervention_id, "24h")
        assert not await service.has_reminder(intervention_id, "1h")
        assert not await service.has_reminder(uuid.uuid4(), "24h")


class TestPushSubscriptions:
    @pytest.mark.asyncio
    async def test_register_is_idempotent_per_endpoint(self, async_session, world, service):
        endpoint = "https://push.example.com/device-1"

        first = await service.register_push_subscription(world.actor("tenant"), endpoint, "k1", "a1")
        second = await service.register_push_subscription(world.actor("manager"), endpoint, "k2", "a2")

        assert first.id == second.id
        assert second.user_id == world.manager.id
        assert second.p256dh == "k2"
        rows = (await async_session.execute(select(PushSubscription.id))).all()
        assert len(rows) == 1

    @pytest.mark.asyncio
    async def test_remove(self, async_session, world, service, subscribe):
        subscription = await subscribe(world.tenant)

        await service.remove_push_subscription(world.actor("tenant"), subscription.endpoint)

        assert (await async_session.execute(select(PushSubscription.id))).all() == []

    @pytest.mark.asyncio
    async def test_remove_someone_elses_subscription(self, world, service, subscribe):
        subscription = await subscribe(world.tenant)
        with pytest.raises(NotFoundException):
            await service.remove_push_subscription(world.actor("manager"), subscription.endpoint)
