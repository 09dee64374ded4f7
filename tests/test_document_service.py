"""Tests for intervention document registration."""

import pytest
from sqlalchemy import select

from src.exceptions import ForbiddenException, ValidationException
from src.models.enums import NotificationType
from src.models.notification import Notification
from src.modules.interventions.document_service import InterventionDocumentService


@pytest.fixture
def service(async_session, dispatcher):
    return InterventionDocumentService(async_session, dispatcher=dispatcher)


class TestRegisterDocument:
    @pytest.mark.asyncio
    async def test_every_other_assignee_is_notified(self, async_session, world, make_intervention, service):
        intervention = await make_intervention()

        document = await service.register_document(
            intervention.id,
            world.actor("provider"),
            " facture.pdf ",
            "interventions/abc/facture.pdf",
            document_type="invoice",
            size_bytes=2048,
        )

        assert document.filename == "facture.pdf"
        assert document.uploaded_by == world.provider.id
        rows = (await async_session.execute(
            select(Notification).where(Notification.type == NotificationType.DOCUMENT)
        )).scalars().all()
        assert {n.user_id for n in rows} == {world.manager.id, world.co_manager.id, world.tenant.id}
        assert rows[0].metadata_extra["document_id"] == str(document.id)
        assert "facture.pdf" in rows[0].message

    @pytest.mark.asyncio
    async def test_filename_and_path_required(self, world, make_intervention, service):
        intervention = await make_intervention()
        with pytest.raises(ValidationException):
            await service.register_document(intervention.id, world.actor("tenant"), "  ", "path")
        with pytest.raises(ValidationException):
            await service.register_document(intervention.id, world.actor("tenant"), "photo.jpg", "")

    @pytest.mark.asyncio
    async def test_unassigned_user_cannot_upload(self, world, make_intervention, service):
        intervention = await make_intervention()
        with pytest.raises(ForbiddenException):
            await service.register_document(
                intervention.id, world.actor("other_provider"), "photo.jpg", "interventions/x/photo.jpg"
            )

    @pytest.mark.asyncio
    async def test_list_documents(self, world, make_intervention, service):
        intervention = await make_intervention()
        await service.register_document(intervention.id, world.actor("tenant"), "photo.jpg", "p/1.jpg")

        documents = await service.list_documents(intervention.id, world.actor("manager"))

        assert [d.filename for d in documents] == ["photo.jpg"]
        with pytest.raises(ForbiddenException):
            await service.list_documents(intervention.id, world.actor("outsider_manager"))
