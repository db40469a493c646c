"""User lookups and account removal."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import delete, select

from maturamente.models.billing import (
    PendingSubscriptionChange,
    SubjectAccess,
    Subscription,
)
from maturamente.models.progress import ExerciseAttempt, SimulationAttempt, StudySession
from maturamente.models.relations import RELATION_MODELS
from maturamente.models.user import AuthSession, User
from maturamente.repositories.base import BaseRepository

# Child tables first; SQLite does not enforce the ON DELETE CASCADE clauses.
USER_OWNED_MODELS: tuple[type, ...] = (
    *RELATION_MODELS.values(),
    ExerciseAttempt,
    SimulationAttempt,
    StudySession,
    SubjectAccess,
    PendingSubscriptionChange,
    Subscription,
    AuthSession,
)


class UserRepository(BaseRepository[User]):
    """Repository for users."""

    async def get_by_session_token(self, token: str, now: datetime) -> User | None:
        """Resolve a session token to its user if the session has not expired."""
        result = await self.session.execute(
            select(User)
            .join(AuthSession, AuthSession.user_id == User.id)
            .where(
                AuthSession.session_token == token,
                AuthSession.expires > now,
            )
        )
        return result.scalar_one_or_none()

    async def get_by_username(self, username: str) -> User | None:
        result = await self.session.execute(
            select(User).where(User.username == username)
        )
        return result.scalar_one_or_none()

    async def delete_account(self, user_id: UUID) -> dict[str, int]:
        """Delete a user and every row they own.

        Returns:
            Number of deleted rows per table, for logging
        """
        deleted: dict[str, int] = {}
        for model in USER_OWNED_MODELS:
            result = await self.session.execute(
                delete(model).where(model.user_id == user_id)
            )
            deleted[model.__tablename__] = result.rowcount
        await self.session.execute(delete(User).where(User.id == user_id))
        return deleted
