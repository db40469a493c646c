"""Profile updates and account deletion for the signed-in user."""

from __future__ import annotations

from uuid import UUID

import structlog

from maturamente.core.exceptions import (
    AccountHasActiveSubscriptionError,
    AuthenticationError,
    UsernameTakenError,
    ValidationError,
)
from maturamente.models.billing import SubscriptionStatus
from maturamente.models.user import User
from maturamente.repositories.billing import SubscriptionRepository
from maturamente.repositories.user import UserRepository

logger = structlog.get_logger(__name__)

# Statuses in which Stripe keeps charging the customer
BILLED_STATUSES = frozenset(
    {
        SubscriptionStatus.ACTIVE.value,
        SubscriptionStatus.TRIALING.value,
        SubscriptionStatus.PAST_DUE.value,
    }
)


class AccountService:
    """Reads and edits the caller's own account."""

    def __init__(
        self, user_repo: UserRepository, subscription_repo: SubscriptionRepository
    ) -> None:
        self.user_repo = user_repo
        self.subscription_repo = subscription_repo

    async def _get_user(self, user_id: UUID) -> User:
        user = await self.user_repo.get_by_id(user_id)
        if user is None:
            raise AuthenticationError()
        return user

    async def has_username(self, user_id: UUID) -> bool:
        user = await self._get_user(user_id)
        return bool(user.username)

    async def update_profile(
        self, user_id: UUID, username: str | None, full_name: str | None
    ) -> User:
        """Set the username and, when given, the display name.

        Raises:
            ValidationError: If no username is given
            UsernameTakenError: If another user holds the username
        """
        if not username:
            raise ValidationError("Username is required", field="username")

        user = await self._get_user(user_id)
        holder = await self.user_repo.get_by_username(username)
        if holder is not None and holder.id != user.id:
            raise UsernameTakenError()

        user.username = username
        if full_name is not None:
            user.name = full_name
        user = await self.user_repo.update(user)
        logger.info("profile_updated", user_id=str(user_id))
        return user

    async def delete_account(self, user_id: UUID) -> None:
        """Delete the user with their progress, sessions and plan records.

        Raises:
            AccountHasActiveSubscriptionError: While Stripe still bills the user
        """
        subscription = await self.subscription_repo.get_by_user(user_id)
        if (
            subscription is not None
            and subscription.stripe_subscription_id
            and subscription.status in BILLED_STATUSES
        ):
            raise AccountHasActiveSubscriptionError()

        deleted = await self.user_repo.delete_account(user_id)
        logger.info("account_deleted", user_id=str(user_id), rows=deleted)
