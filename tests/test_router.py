"""HTTP tests for the v1 API: wiring, auth and the error envelope."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta

import httpx
import pytest
import pytest_asyncio
from jose import jwt
from sqlalchemy import select

from src.app import app
from src.config import settings
from src.database.session import get_db
from src.models.enums import InterventionStatus, QuoteStatus
from src.models.intervention import Intervention
from src.modules.auth.dependencies import get_current_actor
from src.modules.conversations.router import limiter as conversation_limiter
from src.modules.notifications.channels import factory
from tests.fakes import FakeEmailSender, FakePushGateway


@pytest.fixture
def channels(monkeypatch):
    email = FakeEmailSender()
    push = FakePushGateway()
    monkeypatch.setitem(factory._instances, "email", email)
    monkeypatch.setitem(factory._instances, "push", push)
    monkeypatch.setattr(settings, "email_send_delay_seconds", 0)
    return email, push


@pytest_asyncio.fixture
async def client(async_session, world, channels):
    """Client whose caller is switched with ``client.act_as("tenant")``."""
    current = {"actor": world.actor("manager")}

    async def override_get_db():
        yield async_session

    async def override_get_current_actor():
        return current["actor"]

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_actor] = override_get_current_actor

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        http.act_as = lambda key: current.update(actor=world.actor(key))
        yield http

    app.dependency_overrides.clear()


class TestInterventionEndpoints:
    @pytest.mark.asyncio
    async def test_tenant_creates_intervention(self, client, world):
        client.act_as("tenant")

        response = await client.post(
            "/api/v1/interventions/",
            json={"title": "Radiateur froid", "description": "Le radiateur du salon ne chauffe plus"},
        )

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "demande"
        assert body["reference"].startswith("INT-")
        assert body["tenant_id"] == str(world.tenant.id)

    @pytest.mark.asyncio
    async def test_body_validation_uses_envelope(self, client):
        response = await client.post("/api/v1/interventions/", json={"title": ""})

        assert response.status_code == 422
        error = response.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert error["details"]
        assert error["requestId"] == response.headers["X-Request-ID"]

    @pytest.mark.asyncio
    async def test_approve_action(self, client, async_session, make_intervention):
        intervention = await make_intervention()

        response = await client.post(
            f"/api/v1/interventions/{intervention.id}/actions/approve",
            json={"comment": "OK pour moi"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["from_status"] == "demande"
        assert body["to_status"] == "approuvee"
        assert [e["name"] for e in body["effects"]] == ["notify"]
        status = await async_session.scalar(
            select(Intervention.status).where(Intervention.id == intervention.id)
        )
        assert status == InterventionStatus.APPROUVEE

    @pytest.mark.asyncio
    async def test_forbidden_action_returns_403_envelope(self, client, make_intervention):
        intervention = await make_intervention()
        client.act_as("tenant")

        response = await client.post(
            f"/api/v1/interventions/{intervention.id}/actions/approve",
            headers={"X-Request-ID": "req-42"},
        )

        assert response.status_code == 403
        error = response.json()["error"]
        assert error["code"] == "FORBIDDEN"
        assert error["requestId"] == "req-42"

    @pytest.mark.asyncio
    async def test_illegal_transition_returns_409(self, client, make_intervention):
        intervention = await make_intervention(InterventionStatus.PLANIFIEE)

        response = await client.post(f"/api/v1/interventions/{intervention.id}/actions/approve")

        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_contest_without_comments_lists_field(self, client, make_intervention):
        intervention = await make_intervention(InterventionStatus.CLOTUREE_PAR_PRESTATAIRE)
        client.act_as("tenant")

        response = await client.post(
            f"/api/v1/interventions/{intervention.id}/actions/contest", json={"comments": "non"}
        )

        assert response.status_code == 422
        (detail,) = response.json()["error"]["details"]
        assert detail["field"] == "comments"

    @pytest.mark.asyncio
    async def test_unknown_action_is_rejected(self, client, make_intervention):
        intervention = await make_intervention()
        response = await client.post(f"/api/v1/interventions/{intervention.id}/actions/teleport")
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_unknown_intervention(self, client):
        response = await client.get(f"/api/v1/interventions/{uuid.uuid4()}")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_allowed_actions_and_history(self, client, make_intervention):
        intervention = await make_intervention()

        allowed = await client.get(f"/api/v1/interventions/{intervention.id}/allowed-actions")
        assert allowed.status_code == 200
        assert allowed.json() == {"status": "demande", "actions": ["approve", "reject", "cancel"]}

        await client.post(f"/api/v1/interventions/{intervention.id}/actions/approve")
        history = await client.get(f"/api/v1/interventions/{intervention.id}/transitions")
        assert [(t["from_status"], t["to_status"]) for t in history.json()] == [("demande", "approuvee")]

    @pytest.mark.asyncio
    async def test_schedule_with_datetime_body(self, client, make_intervention):
        intervention = await make_intervention(InterventionStatus.APPROUVEE)
        when = (datetime.now(UTC) + timedelta(days=2)).replace(microsecond=0)

        response = await client.post(
            f"/api/v1/interventions/{intervention.id}/actions/schedule",
            json={"scheduled_date": when.isoformat()},
        )

        assert response.status_code == 200
        assert response.json()["to_status"] == "planifiee"

    @pytest.mark.asyncio
    async def test_slot_negotiation(self, client, make_intervention):
        intervention = await make_intervention(InterventionStatus.PLANIFICATION)
        start = (datetime.now(UTC) + timedelta(days=2)).replace(microsecond=0)

        proposed = await client.post(
            f"/api/v1/interventions/{intervention.id}/slots",
            json={"slots": [{"start_at": start.isoformat(), "end_at": (start + timedelta(hours=2)).isoformat()}]},
        )
        assert proposed.status_code == 201
        slot_id = proposed.json()[0]["id"]

        client.act_as("tenant")
        answered = await client.post(
            f"/api/v1/interventions/slots/{slot_id}/responses", json={"response": "accepted"}
        )
        assert answered.status_code == 200
        assert answered.json()["response"] == "accepted"

        client.act_as("provider")
        selected = await client.post(f"/api/v1/interventions/slots/{slot_id}/select")
        assert selected.status_code == 200
        assert selected.json()["to_status"] == "planifiee"

        listed = await client.get(f"/api/v1/interventions/{intervention.id}/slots")
        assert [s["status"] for s in listed.json()] == ["selected"]

    @pytest.mark.asyncio
    async def test_request_quotes_with_deadline(self, client, world, make_intervention):
        intervention = await make_intervention(InterventionStatus.APPROUVEE)
        deadline = (datetime.now(UTC) + timedelta(days=5)).replace(microsecond=0)

        response = await client.post(
            f"/api/v1/interventions/{intervention.id}/actions/request_quotes",
            json={
                "provider_ids": [str(world.other_provider.id)],
                "deadline": deadline.isoformat(),
                "messages": {str(world.other_provider.id): "Merci de passer avant vendredi"},
            },
        )

        assert response.status_code == 200
        body = response.json()["intervention"]
        assert body["status"] == "demande_de_devis"
        assert body["quote_deadline"] is not None


class TestQuoteEndpoints:
    @pytest.mark.asyncio
    async def test_submit_then_approve(self, client, async_session, world, make_intervention, make_quote):
        intervention = await make_intervention(InterventionStatus.DEMANDE_DE_DEVIS)
        rival = await make_quote(intervention, world.other_provider, "300")
        client.act_as("provider")

        submitted = await client.post(
            f"/api/v1/interventions/{intervention.id}/quotes", json={"amount": "250.00"}
        )
        assert submitted.status_code == 201
        quote_id = submitted.json()["id"]

        client.act_as("manager")
        approved = await client.post(f"/api/v1/quotes/{quote_id}/approve")

        assert approved.status_code == 200
        body = approved.json()
        assert body["accepted_quote_id"] == quote_id
        assert body["rejected_quote_ids"] == [str(rival.id)]
        assert body["intervention"]["status"] == "planifiee"
        rival_status = await async_session.scalar(
            select(type(rival).status).where(type(rival).id == rival.id)
        )
        assert rival_status == QuoteStatus.REJECTED

    @pytest.mark.asyncio
    async def test_tenant_cannot_list_quotes(self, client, make_intervention):
        intervention = await make_intervention(InterventionStatus.DEMANDE_DE_DEVIS)
        client.act_as("tenant")
        response = await client.get(f"/api/v1/interventions/{intervention.id}/quotes")
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_reject_requires_reason(self, client, world, make_intervention, make_quote):
        intervention = await make_intervention(InterventionStatus.DEMANDE_DE_DEVIS)
        quote = await make_quote(intervention, world.provider, "100")
        response = await client.post(f"/api/v1/quotes/{quote.id}/reject", json={})
        assert response.status_code == 422


class TestConversationAndInbox:
    @pytest.mark.asyncio
    async def test_message_reaches_inbox_counts(self, client, world, make_intervention, get_thread):
        thread = await get_thread(await make_intervention())
        client.act_as("tenant")

        posted = await client.post(f"/api/v1/threads/{thread.id}/messages", json={"content": "Bonjour"})
        assert posted.status_code == 201

        client.act_as("provider")
        counts = await client.get("/api/v1/notifications/counts")
        assert counts.json() == {"personal": 1, "team": 0, "total": 1}

        inbox = await client.get("/api/v1/notifications/")
        (item,) = inbox.json()["items"]
        read = await client.post(f"/api/v1/notifications/{item['id']}/read")
        assert read.status_code == 200
        assert (await client.get("/api/v1/notifications/counts")).json()["total"] == 0

    @pytest.mark.asyncio
    async def test_message_flood_is_rate_limited(self, client, make_intervention, get_thread):
        thread = await get_thread(await make_intervention())
        client.act_as("tenant")
        conversation_limiter.reset()
        try:
            for i in range(30):
                posted = await client.post(
                    f"/api/v1/threads/{thread.id}/messages", json={"content": f"Message {i}"}
                )
                assert posted.status_code == 201

            refused = await client.post(
                f"/api/v1/threads/{thread.id}/messages", json={"content": "Encore un"}
            )
        finally:
            conversation_limiter.reset()

        assert refused.status_code == 429
        error = refused.json()["error"]
        assert error["code"] == "RATE_LIMITED"
        assert error["message"].startswith("Rate limit exceeded")

    @pytest.mark.asyncio
    async def test_outsider_cannot_read_thread(self, client, make_intervention, get_thread):
        thread = await get_thread(await make_intervention())
        client.act_as("other_provider")
        response = await client.get(f"/api/v1/threads/{thread.id}/messages")
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_push_subscription_roundtrip(self, client):
        endpoint = "https://push.example.com/device-9"
        created = await client.post(
            "/api/v1/notifications/push-subscriptions",
            json={"endpoint": endpoint, "p256dh": "k", "auth": "a"},
        )
        assert created.status_code == 201

        removed = await client.post("/api/v1/notifications/push-subscriptions/remove", json={"endpoint": endpoint})
        assert removed.status_code == 204


class TestAuthentication:
    @pytest_asyncio.fixture
    async def bare_client(self, async_session):
        async def override_get_db():
            yield async_session

        app.dependency_overrides[get_db] = override_get_db
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
            yield http
        app.dependency_overrides.clear()

    @pytest.mark.asyncio
    async def test_missing_token(self, bare_client):
        response = await bare_client.get("/api/v1/notifications/counts")
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "UNAUTHORIZED"

    @pytest.mark.asyncio
    async def test_token_resolves_user(self, bare_client, world):
        token = jwt.encode(
            {"sub": str(world.tenant.auth_user_id)}, settings.jwt_secret_key, algorithm=settings.jwt_algorithm
        )
        response = await bare_client.get(
            "/api/v1/notifications/counts", headers={"Authorization": f"Bearer {token}"}
        )
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_token_for_unknown_user(self, bare_client, world):
        token = jwt.encode({"sub": str(uuid.uuid4())}, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)
        response = await bare_client.get(
            "/api/v1/notifications/counts", headers={"Authorization": f"Bearer {token}"}
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_garbage_token(self, bare_client):
        response = await bare_client.get(
            "/api/v1/notifications/counts", headers={"Authorization": "Bearer not-a-jwt"}
        )
        assert response.status_code == 401
