"""Tests for ConversationService: messages, access and chat fan-out."""

import uuid
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import select

from src.exceptions import ConflictException, ForbiddenException, NotFoundException, ValidationException
from src.models.conversation import ConversationParticipant, ConversationThread
from src.models.enums import EffectStatus, NotificationType
from src.models.notification import Notification
from src.modules.conversations.service import ConversationService


@pytest.fixture
def service(async_session, dispatcher):
    return ConversationService(async_session, dispatcher=dispatcher)


async def _chat_notifications(session) -> dict[uuid.UUID, Notification]:
    result = await session.execute(
        select(Notification).where(Notification.type == NotificationType.CHAT)
    )
    return {n.user_id: n for n in result.scalars().all()}


class TestPostMessage:
    @pytest.mark.asyncio
    async def test_participants_are_notified_personally(
        self, async_session, world, make_intervention, get_thread, service, email_sender
    ):
        thread = await get_thread(await make_intervention())

        message = await service.post_message(thread.id, world.actor("tenant"), "  La fuite a repris ce matin  ")

        assert message.content == "La fuite a repris ce matin"
        count = await async_session.scalar(
            select(ConversationThread.message_count).where(ConversationThread.id == thread.id)
        )
        assert count == 1

        notified = await _chat_notifications(async_session)
        assert set(notified) == {world.manager.id, world.co_manager.id, world.provider.id}
        assert all(n.is_personal for n in notified.values())
        assert notified[world.provider.id].title.startswith("Nouveau message - INT-")
        assert notified[world.provider.id].message == "Lucie Locataire : La fuite a repris ce matin"
        assert notified[world.provider.id].metadata_extra["thread_id"] == str(thread.id)
        assert sorted(e.to for e in email_sender.sent) == sorted(
            [world.manager.email, world.co_manager.email, world.provider.email]
        )

    @pytest.mark.asyncio
    async def test_non_participant_manager_follows_team_wide(
        self, async_session, world, make_intervention, get_thread, service, email_sender
    ):
        thread = await get_thread(await make_intervention(with_co_manager=False))

        await service.post_message(thread.id, world.actor("provider"), "Je passe demain à 9h")

        notified = await _chat_notifications(async_session)
        assert notified[world.co_manager.id].is_personal is False
        assert notified[world.tenant.id].is_personal is True
        assert world.co_manager.email in {e.to for e in email_sender.sent}
        assert world.outsider_manager.id not in notified

    @pytest.mark.asyncio
    async def test_burst_of_messages_sends_one_email_batch(
        self, async_session, world, make_intervention, get_thread, service, email_sender
    ):
        thread = await get_thread(await make_intervention())

        await service.post_message(thread.id, world.actor("tenant"), "Premier message")
        first = service.last_dispatch
        await service.post_message(thread.id, world.actor("provider"), "Réponse rapide")
        second = service.last_dispatch

        assert first.outcome("email").status == EffectStatus.OK
        assert second.outcome("email").status == EffectStatus.SKIPPED
        assert second.outcome("in_app").status == EffectStatus.OK
        assert len(email_sender.sent) == 3
        rows = (await async_session.execute(
            select(Notification.id).where(Notification.type == NotificationType.CHAT)
        )).all()
        assert len(rows) == 6

    @pytest.mark.asyncio
    async def test_long_message_preview_is_truncated(
        self, async_session, world, make_intervention, get_thread, service
    ):
        thread = await get_thread(await make_intervention())
        await service.post_message(thread.id, world.actor("tenant"), "x" * 150)

        notified = await _chat_notifications(async_session)
        assert notified[world.provider.id].message == "Lucie Locataire : " + "x" * 100 + "…"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content", ["", "   ", "y" * 5001])
    async def test_content_length(self, world, make_intervention, get_thread, service, content):
        thread = await get_thread(await make_intervention())
        with pytest.raises(ValidationException):
            await service.post_message(thread.id, world.actor("tenant"), content)

    @pytest.mark.asyncio
    async def test_outsider_cannot_post(self, world, make_intervention, get_thread, service):
        thread = await get_thread(await make_intervention())
        with pytest.raises(ForbiddenException):
            await service.post_message(thread.id, world.actor("other_provider"), "Bonjour")
        with pytest.raises(ForbiddenException):
            await service.post_message(thread.id, world.actor("outsider_manager"), "Bonjour")

    @pytest.mark.asyncio
    async def test_team_manager_can_post_without_joining(
        self, world, make_intervention, get_thread, service
    ):
        thread = await get_thread(await make_intervention(with_co_manager=False))
        message = await service.post_message(thread.id, world.actor("co_manager"), "Je suis le dossier")
        assert message.user_id == world.co_manager.id

    @pytest.mark.asyncio
    async def test_unknown_thread(self, world, service):
        with pytest.raises(NotFoundException):
            await service.post_message(uuid.uuid4(), world.actor("tenant"), "Bonjour")

    @pytest.mark.asyncio
    async def test_dispatch_failure_keeps_message(
        self, async_session, world, make_intervention, get_thread, service
    ):
        thread = await get_thread(await make_intervention())

        async def boom(event):
            raise RuntimeError("dispatcher down")

        service.dispatcher.dispatch = boom
        message = await service.post_message(thread.id, world.actor("tenant"), "Toujours là")

        assert message.id is not None
        assert service.last_dispatch is None


class TestThreads:
    @pytest.mark.asyncio
    async def test_list_messages_in_order(self, world, make_intervention, get_thread, service):
        thread = await get_thread(await make_intervention())
        await service.post_message(thread.id, world.actor("tenant"), "un")
        await service.post_message(thread.id, world.actor("provider"), "deux")

        messages = await service.list_messages(thread.id, world.actor("manager"))

        assert [m.content for m in messages] == ["un", "deux"]

    @pytest.mark.asyncio
    async def test_list_threads_for_participant(self, world, make_intervention, service):
        intervention = await make_intervention()
        threads = await service.list_threads(intervention.id, world.actor("tenant"))
        assert len(threads) == 1
        with pytest.raises(ForbiddenException):
            await service.list_threads(intervention.id, world.actor("other_provider"))

    @pytest.mark.asyncio
    async def test_add_participant(self, async_session, world, make_intervention, get_thread, service):
        thread = await get_thread(await make_intervention())

        await service.add_participant(thread.id, world.other_provider.id, world.actor("manager"))

        participants = (await async_session.execute(
            select(ConversationParticipant.user_id).where(ConversationParticipant.thread_id == thread.id)
        )).scalars().all()
        assert world.other_provider.id in participants
        with pytest.raises(ConflictException):
            await service.add_participant(thread.id, world.other_provider.id, world.actor("manager"))

    @pytest.mark.asyncio
    async def test_only_managers_add_participants(self, world, make_intervention, get_thread, service):
        thread = await get_thread(await make_intervention())
        with pytest.raises(ForbiddenException):
            await service.add_participant(thread.id, world.other_provider.id, world.actor("tenant"))

    @pytest.mark.asyncio
    async def test_mark_thread_read(self, world, make_intervention, get_thread, service):
        thread = await get_thread(await make_intervention())
        before = datetime.now(UTC) - timedelta(seconds=1)

        participant = await service.mark_thread_read(thread.id, world.actor("tenant"))

        assert participant.last_read_at >= before
        with pytest.raises(NotFoundException):
            await service.mark_thread_read(thread.id, world.actor("other_provider"))
