"""FastAPI dependency injection container.

This module provides dependency injection functions for use with FastAPI's
Depends() pattern. Dependencies are organized by functionality and can be
overridden through ``app.dependency_overrides`` in tests.
"""

from collections.abc import AsyncGenerator
from dataclasses import dataclass
from typing import Annotated
from uuid import UUID

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from maturamente.config import Settings
from maturamente.core.clock import Clock, utcnow
from maturamente.core.exceptions import AuthenticationError
from maturamente.core.logging import get_logger
from maturamente.repositories import (
    ExerciseAttemptRepository,
    ExerciseRepository,
    NoteRepository,
    PendingChangeRepository,
    SimulationAttemptRepository,
    SimulationRepository,
    StudySessionRepository,
    SubjectAccessRepository,
    SubjectRepository,
    SubscriptionRepository,
    SubtopicRepository,
    TopicRepository,
    UserRepository,
    WaitlistRepository,
)
from maturamente.services import (
    AccountService,
    BillingService,
    CompletionService,
    MailingService,
    NoteService,
    PlanChangeService,
    RelationService,
    SignedUrlCache,
    SimulationService,
    StorageService,
    StripeGateway,
    StudySessionService,
    SubjectService,
    get_signed_url_cache,
)

logger = get_logger(__name__)


# ========================================
# Settings Dependencies
# ========================================
def get_settings_from_request(request: Request) -> Settings:
    """Get the settings the application was created with."""
    return request.app.state.settings


SettingsDep = Annotated[Settings, Depends(get_settings_from_request)]


# ========================================
# Database Dependencies
# ========================================
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get an async database session.

    Yields a database session that automatically handles
    commit on success and rollback on exception.

    Yields:
        AsyncSession: Database session
    """

    from maturamente.core.database import get_async_session

    async for session in get_async_session():
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


DbSession = Annotated[AsyncSession, Depends(get_db_session)]


# ========================================
# Clock Dependencies
# ========================================
def get_clock() -> Clock:
    """Wall clock used for session timestamps and expiry checks."""
    return utcnow


ClockDep = Annotated[Clock, Depends(get_clock)]


# ========================================
# Auth Dependencies
# ========================================
@dataclass(frozen=True)
class CurrentUser:
    """Identity of the signed-in caller, resolved once per request."""

    id: UUID
    email: str
    name: str | None = None


def _session_token(request: Request, settings: Settings) -> str | None:
    for cookie_name in settings.session_cookie_names:
        token = request.cookies.get(cookie_name)
        if token:
            return token

    scheme, _, credentials = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials.strip()
    return None


async def get_current_user(
    request: Request,
    db: DbSession,
    settings: SettingsDep,
    clock: ClockDep,
) -> CurrentUser:
    """Get the current authenticated user.

    Reads the session token from the session cookie (or a Bearer
    header) and resolves it against the sessions table.

    Raises:
        AuthenticationError: 401 if the token is missing, unknown or expired

    Returns:
        CurrentUser: Current authenticated user
    """
    token = _session_token(request, settings)
    if token is None:
        raise AuthenticationError()

    user = await UserRepository(db).get_by_session_token(token, clock())
    if user is None:
        logger.debug("session_token_rejected")
        raise AuthenticationError()

    return CurrentUser(id=user.id, email=user.email, name=user.name)


AuthUser = Annotated[CurrentUser, Depends(get_current_user)]


# ========================================
# Cache and Storage Dependencies
# ========================================
async def get_storage_service(
    cache: Annotated[SignedUrlCache, Depends(get_signed_url_cache)],
    settings: SettingsDep,
) -> AsyncGenerator[StorageService, None]:
    """Get a storage client that is closed after the request."""
    storage = StorageService(cache, settings)
    try:
        yield storage
    finally:
        await storage.close()


# ========================================
# Service Dependencies
# ========================================
def get_relation_service(db: DbSession) -> RelationService:
    return RelationService(db)


def get_completion_service(
    db: DbSession,
    relations: Annotated[RelationService, Depends(get_relation_service)],
) -> CompletionService:
    return CompletionService(
        relations,
        TopicRepository(db),
        SubtopicRepository(db),
        ExerciseRepository(db),
        ExerciseAttemptRepository(db),
    )


def get_study_session_service(db: DbSession, clock: ClockDep) -> StudySessionService:
    return StudySessionService(
        StudySessionRepository(db), NoteRepository(db), clock=clock
    )


def get_simulation_service(
    db: DbSession,
    relations: Annotated[RelationService, Depends(get_relation_service)],
    clock: ClockDep,
) -> SimulationService:
    return SimulationService(
        relations,
        SimulationRepository(db),
        SimulationAttemptRepository(db),
        clock=clock,
    )


def get_note_service(
    db: DbSession,
    relations: Annotated[RelationService, Depends(get_relation_service)],
    storage: Annotated[StorageService, Depends(get_storage_service)],
) -> NoteService:
    return NoteService(
        relations, NoteRepository(db), SubjectAccessRepository(db), storage
    )


def get_mailing_service(db: DbSession, settings: SettingsDep) -> MailingService:
    return MailingService(
        WaitlistRepository(db), settings.unsubscribe_secret.get_secret_value()
    )


def get_stripe_gateway(settings: SettingsDep) -> StripeGateway:
    """Get the Stripe SDK wrapper."""
    return StripeGateway(settings)


def get_billing_service(
    db: DbSession,
    gateway: Annotated[StripeGateway, Depends(get_stripe_gateway)],
    settings: SettingsDep,
    clock: ClockDep,
) -> BillingService:
    return BillingService(
        SubscriptionRepository(db),
        SubjectAccessRepository(db),
        SubjectRepository(db),
        PendingChangeRepository(db),
        gateway,
        settings,
        clock=clock,
    )


def get_plan_change_service(
    billing: Annotated[BillingService, Depends(get_billing_service)],
    clock: ClockDep,
) -> PlanChangeService:
    return PlanChangeService(billing, billing.pending_repo, clock=clock)


def get_subject_service(db: DbSession) -> SubjectService:
    return SubjectService(SubjectRepository(db))


def get_account_service(db: DbSession) -> AccountService:
    return AccountService(UserRepository(db), SubscriptionRepository(db))
