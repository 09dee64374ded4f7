"""Pytest fixtures for Lotwise service and router tests.

Service tests run against an in-memory SQLite database (aiosqlite) built from
the real models. SAVEPOINT support needs pysqlite's implicit transaction
handling switched off, so the engine emits BEGIN itself.
"""

import uuid
from collections.abc import AsyncGenerator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import event, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import src.models  # noqa: F401  (registers every table on Base.metadata)
from src.database.base import Base
from src.models.conversation import ConversationParticipant, ConversationThread
from src.models.enums import (
    AssignmentRole,
    InterventionStatus,
    InterventionUrgency,
    QuoteStatus,
    ThreadType,
    UserRole,
)
from src.models.intervention import Intervention
from src.models.intervention_assignment import InterventionAssignment
from src.models.push_subscription import PushSubscription
from src.models.quote import Quote
from src.models.team import Team
from src.models.user import User
from src.modules.auth.actor import Actor
from src.modules.notifications.dispatcher import NotificationDispatcher
from tests.fakes import FakeEmailSender, FakePushGateway

# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def async_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield a session on a fresh in-memory database."""
    test_engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(test_engine.sync_engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(test_engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session

    await test_engine.dispose()


# ---------------------------------------------------------------------------
# Channel fakes
# ---------------------------------------------------------------------------


@pytest.fixture
def email_sender() -> FakeEmailSender:
    return FakeEmailSender()


@pytest.fixture
def push_gateway() -> FakePushGateway:
    return FakePushGateway()


@pytest.fixture
def dispatcher(async_session, email_sender, push_gateway) -> NotificationDispatcher:
    return NotificationDispatcher(
        async_session,
        email_sender=email_sender,
        push_gateway=push_gateway,
        email_delay_seconds=0,
    )


# ---------------------------------------------------------------------------
# Domain data
# ---------------------------------------------------------------------------


@dataclass
class World:
    """One team with two managers, two providers and a tenant, plus an outsider team."""

    team: Team
    other_team: Team
    manager: User
    co_manager: User
    provider: User
    other_provider: User
    tenant: User
    outsider_manager: User
    actors: dict[str, Actor] = field(default_factory=dict)

    def actor(self, key: str) -> Actor:
        return self.actors[key]


async def _user(session: AsyncSession, team: Team, name: str, role: UserRole) -> User:
    user = User(
        team_id=team.id,
        auth_user_id=uuid.uuid4(),
        name=name,
        email=f"{name.lower().replace(' ', '.')}@example.com",
        role=role,
        is_active=True,
    )
    session.add(user)
    await session.flush()
    return user


@pytest_asyncio.fixture
async def world(async_session) -> World:
    team = Team(name="Gestion Dupont")
    other_team = Team(name="Autre Agence")
    async_session.add_all([team, other_team])
    await async_session.flush()

    w = World(
        team=team,
        other_team=other_team,
        manager=await _user(async_session, team, "Marie Manager", UserRole.MANAGER),
        co_manager=await _user(async_session, team, "Paul Manager", UserRole.MANAGER),
        provider=await _user(async_session, team, "Pierre Plombier", UserRole.PROVIDER),
        other_provider=await _user(async_session, team, "Eric Electricien", UserRole.PROVIDER),
        tenant=await _user(async_session, team, "Lucie Locataire", UserRole.TENANT),
        outsider_manager=await _user(async_session, other_team, "Olga Outsider", UserRole.MANAGER),
    )
    for key in ("manager", "co_manager", "provider", "other_provider", "tenant", "outsider_manager"):
        w.actors[key] = Actor.from_user(getattr(w, key))
    return w


@pytest_asyncio.fixture
async def make_intervention(async_session, world):
    """Factory creating an intervention with assignments and a group thread.

    By default: primary manager, secondary manager, the first provider and the
    tenant are assigned, and all of them take part in the group thread.
    """

    async def _make(
        status: InterventionStatus = InterventionStatus.DEMANDE,
        providers: tuple[User, ...] | None = None,
        with_co_manager: bool = True,
        **fields,
    ) -> Intervention:
        providers = (world.provider,) if providers is None else providers
        intervention = Intervention(
            reference=f"INT-261019-{uuid.uuid4().hex[:4].upper()}",
            title="Fuite sous évier",
            description="L'évier de la cuisine fuit depuis hier soir.",
            intervention_type="plomberie",
            urgency=fields.pop("urgency", InterventionUrgency.NORMAL),
            status=status,
            team_id=world.team.id,
            tenant_id=world.tenant.id,
            created_by=world.manager.id,
            **fields,
        )
        async_session.add(intervention)
        await async_session.flush()

        assignments = [
            (world.manager, AssignmentRole.MANAGER, True),
            (world.tenant, AssignmentRole.TENANT, True),
        ]
        if with_co_manager:
            assignments.append((world.co_manager, AssignmentRole.MANAGER, False))
        for index, provider in enumerate(providers):
            assignments.append((provider, AssignmentRole.PROVIDER, index == 0))

        for user, role, primary in assignments:
            async_session.add(InterventionAssignment(
                intervention_id=intervention.id,
                user_id=user.id,
                role=role,
                is_primary=primary,
                assigned_by=world.manager.id,
            ))

        thread = ConversationThread(
            intervention_id=intervention.id,
            team_id=world.team.id,
            thread_type=ThreadType.GROUP,
            title=intervention.reference,
        )
        async_session.add(thread)
        await async_session.flush()
        for user in {u for u, _, _ in assignments}:
            async_session.add(ConversationParticipant(thread_id=thread.id, user_id=user.id))
        await async_session.flush()
        return intervention

    return _make


@pytest_asyncio.fixture
async def make_quote(async_session):
    async def _make(
        intervention: Intervention,
        provider: User,
        amount: str,
        status: QuoteStatus = QuoteStatus.PENDING,
    ) -> Quote:
        quote = Quote(
            intervention_id=intervention.id,
            provider_id=provider.id,
            amount=Decimal(amount),
            status=status,
            submitted_at=datetime.now(UTC),
        )
        async_session.add(quote)
        await async_session.flush()
        return quote

    return _make


@pytest_asyncio.fixture
async def subscribe(async_session):
    """Register a push subscription for a user and return it."""

    async def _subscribe(user: User, endpoint: str | None = None) -> PushSubscription:
        subscription = PushSubscription(
            user_id=user.id,
            endpoint=endpoint or f"https://push.example.com/{uuid.uuid4().hex}",
            p256dh="p256dh-key",
            auth="auth-secret",
        )
        async_session.add(subscription)
        await async_session.flush()
        return subscription

    return _subscribe


@pytest.fixture
def get_thread(async_session):
    async def _get(intervention: Intervention) -> ConversationThread:
        result = await async_session.execute(
            select(ConversationThread).where(ConversationThread.intervention_id == intervention.id)
        )
        return result.scalar_one()

    return _get
