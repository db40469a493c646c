"""Pytest configuration and fixtures for MaturaMente tests.

This module provides reusable fixtures for:
- Async test clients (anonymous and signed-in)
- Test database (in-memory SQLite, tables created per test)
- A frozen, movable clock
- Mocked external services (Stripe gateway)
- Content seeding helpers
"""

import secrets
import uuid
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from maturamente.config import Settings
from maturamente.core.database import build_engine, create_tables
from maturamente.dependencies import get_clock, get_db_session, get_stripe_gateway
from maturamente.main import create_app
from maturamente.models import (
    AuthSession,
    Exercise,
    ExerciseCard,
    Note,
    Simulation,
    Subject,
    Subtopic,
    Topic,
    User,
)
from maturamente.services.billing import InvoiceCharge, StripeGateway
from maturamente.services.cache import (
    InMemorySignedUrlCache,
    get_signed_url_cache,
    set_signed_url_cache,
)

SESSION_COOKIE = "authjs.session-token"


# =============================================================================
# Settings Fixtures
# =============================================================================


@pytest.fixture
def test_settings() -> Settings:
    """Create test-specific settings.

    Overrides production settings with test-appropriate values.
    """
    return Settings(
        app_env="development",  # type: ignore[arg-type]
        debug=True,
        log_level="DEBUG",  # type: ignore[arg-type]
        log_format="console",  # type: ignore[arg-type]
        base_url="https://maturamente.test",
        database_url="sqlite+aiosqlite:///:memory:",
        database_auto_create=True,
        signed_url_cache_backend="memory",  # type: ignore[arg-type]
        supabase_url="https://storage.maturamente.test",
        supabase_service_role_key="service-role-key",  # type: ignore[arg-type]
        unsubscribe_secret="test-unsubscribe-secret",  # type: ignore[arg-type]
        stripe_secret_key="sk_test_key",  # type: ignore[arg-type]
        stripe_webhook_secret="whsec_test",  # type: ignore[arg-type]
        stripe_first_subject_price_id="price_first",
        stripe_additional_subject_price_id="price_additional",
    )


# =============================================================================
# Clock Fixtures
# =============================================================================


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2025, 3, 10, 9, 0, tzinfo=UTC))


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture
async def engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    """In-memory database shared by every session of one test."""
    engine = build_engine(test_settings)
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Session for repository and service tests.

    Usage:
        async def test_mark(db_session: AsyncSession):
            repo = UserRelationRepository(db_session, ContentKind.COMPLETED_TOPIC)
    """
    async with session_factory() as session:
        yield session


@pytest.fixture
def count_rows(session_factory: async_sessionmaker[AsyncSession]) -> Any:
    """Count rows of a model in a fresh session, optionally filtered.

    Usage:
        assert await count_rows(FlaggedExercise, user_id=user.id) == 1
    """

    async def _count(model: type, **filters: Any) -> int:
        async with session_factory() as session:
            stmt = select(func.count()).select_from(model).filter_by(**filters)
            return (await session.execute(stmt)).scalar_one()

    return _count


# =============================================================================
# Seeding Fixtures
# =============================================================================


class Seeder:
    """Creates committed rows for tests."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def add(self, *entities: Any) -> None:
        async with self._session_factory() as session:
            session.add_all(entities)
            await session.commit()

    async def user(
        self, email: str | None = None, expires: datetime | None = None
    ) -> tuple[User, str]:
        """Create a user with a login session and return it with the token."""
        user = User(
            id=uuid.uuid4(),
            email=email or f"{uuid.uuid4().hex[:8]}@example.com",
            name="Giulia Rossi",
        )
        token = secrets.token_urlsafe(16)
        auth_session = AuthSession(
            session_token=token,
            user_id=user.id,
            expires=expires or datetime(2099, 1, 1, tzinfo=UTC),
        )
        await self.add(user, auth_session)
        return user, token

    async def subject(self, name: str = "Matematica") -> Subject:
        subject = Subject(
            id=uuid.uuid4(), name=name, slug=f"{name.lower()}-{uuid.uuid4().hex[:6]}"
        )
        await self.add(subject)
        return subject

    async def topic(self, subject: Subject, name: str = "Analisi") -> Topic:
        topic = Topic(id=uuid.uuid4(), subject_id=subject.id, name=name)
        await self.add(topic)
        return topic

    async def subtopic(self, topic: Topic, name: str = "Limiti", order: int = 0) -> Subtopic:
        subtopic = Subtopic(
            id=uuid.uuid4(), topic_id=topic.id, name=name, order_index=order
        )
        await self.add(subtopic)
        return subtopic

    async def note(self, subject: Subject, title: str = "Limiti notevoli") -> Note:
        note = Note(
            id=uuid.uuid4(),
            subject_id=subject.id,
            title=title,
            storage_path=f"{subject.slug}/{uuid.uuid4().hex}.pdf",
        )
        await self.add(note)
        return note

    async def card(self, subtopic: Subtopic) -> ExerciseCard:
        card = ExerciseCard(
            id=uuid.uuid4(), subtopic_id=subtopic.id, description="Calcola i limiti"
        )
        await self.add(card)
        return card

    async def exercise(self, card: ExerciseCard, order: int = 0) -> Exercise:
        exercise = Exercise(
            id=uuid.uuid4(),
            exercise_card_id=card.id,
            question=f"Esercizio {order + 1}",
            order_index=order,
        )
        await self.add(exercise)
        return exercise

    async def simulation(self, subject: Subject, slug: str = "maturita-2023") -> Simulation:
        simulation = Simulation(
            id=uuid.uuid4(),
            subject_id=subject.id,
            title="Simulazione 2023",
            slug=slug,
            year=2023,
        )
        await self.add(simulation)
        return simulation


@pytest.fixture
def seed(session_factory: async_sessionmaker[AsyncSession]) -> Seeder:
    return Seeder(session_factory)


@pytest.fixture
async def user(seed: Seeder) -> tuple[User, str]:
    """The signed-in user and their session token."""
    return await seed.user(email="giulia@example.com")


# =============================================================================
# Mock Service Fixtures
# =============================================================================


@pytest.fixture
def mock_gateway() -> MagicMock:
    """Create a mock Stripe gateway.

    Use this to avoid making real Stripe API calls in tests.
    """
    gateway = MagicMock(spec=StripeGateway)
    gateway.create_customer = AsyncMock(return_value="cus_test")
    gateway.create_checkout_session = AsyncMock(
        return_value=("cs_test", "https://checkout.stripe.com/c/pay/cs_test")
    )
    gateway.retrieve_checkout_session = AsyncMock()
    gateway.retrieve_subscription = AsyncMock()
    gateway.set_cancel_at_period_end = AsyncMock()
    gateway.replace_subscription_items = AsyncMock()
    gateway.settle_latest_invoice = AsyncMock(
        return_value=InvoiceCharge(invoice_id=None, amount=Decimal("0.00"))
    )
    gateway.create_billing_portal_session = AsyncMock(
        return_value="https://billing.stripe.com/p/session/test"
    )
    gateway.parse_event = MagicMock()
    return gateway


@pytest.fixture
def signed_url_cache(clock: FrozenClock) -> InMemorySignedUrlCache:
    return InMemorySignedUrlCache(max_entries=16, clock=lambda: clock().timestamp())


# =============================================================================
# Application Fixtures
# =============================================================================


@pytest.fixture
def app(
    test_settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    clock: FrozenClock,
    mock_gateway: MagicMock,
    signed_url_cache: InMemorySignedUrlCache,
) -> FastAPI:
    """Create a test FastAPI application bound to the test database."""
    app = create_app(settings=test_settings)

    async def _db_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db_session] = _db_session
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_stripe_gateway] = lambda: mock_gateway
    app.dependency_overrides[get_signed_url_cache] = lambda: signed_url_cache
    return app


@pytest.fixture
async def async_client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create an anonymous async HTTP client for testing.

    This client makes requests to the test app without starting a server.

    Usage:
        async def test_endpoint(async_client: AsyncClient):
            response = await async_client.get("/health/live")
            assert response.status_code == 200
    """
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client


@pytest.fixture
async def authenticated_client(
    app: FastAPI, user: tuple[User, str]
) -> AsyncGenerator[AsyncClient, None]:
    """Create an async client carrying the test user's session cookie.

    Usage:
        async def test_protected_endpoint(authenticated_client: AsyncClient):
            response = await authenticated_client.get("/api/exercises/flagged")
            assert response.status_code == 200
    """
    _, token = user
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        cookies={SESSION_COOKIE: token},
    ) as client:
        yield client


@pytest.fixture
def client_for(app: FastAPI) -> Any:
    """Build a client for another seeded user's token.

    Usage:
        async with client_for(other_token) as other:
            response = await other.get(...)
    """

    def _client(token: str) -> AsyncClient:
        return AsyncClient(
            transport=ASGITransport(app=app),
            base_url="http://test",
            headers={"Authorization": f"Bearer {token}"},
        )

    return _client


@pytest.fixture(autouse=True)
def reset_signed_url_cache() -> Any:
    """Keep the process-wide cache slot empty between tests."""
    yield
    set_signed_url_cache(None)
