"""Repositories for subscriptions, plan changes, subject access and the waiting list."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import delete, select

from maturamente.models.billing import (
    PendingChangeStatus,
    PendingSubscriptionChange,
    SubjectAccess,
    Subscription,
    WaitlistEntry,
)
from maturamente.repositories.base import BaseRepository


class SubscriptionRepository(BaseRepository[Subscription]):
    """Repository for the one-per-user subscription row."""

    async def get_by_user(self, user_id: UUID) -> Subscription | None:
        result = await self.session.execute(
            select(Subscription).where(Subscription.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def get_by_stripe_subscription_id(
        self, stripe_subscription_id: str
    ) -> Subscription | None:
        result = await self.session.execute(
            select(Subscription).where(
                Subscription.stripe_subscription_id == stripe_subscription_id
            )
        )
        return result.scalar_one_or_none()

    async def get_by_customer(self, stripe_customer_id: str) -> Subscription | None:
        result = await self.session.execute(
            select(Subscription).where(
                Subscription.stripe_customer_id == stripe_customer_id
            )
        )
        return result.scalars().first()

    async def get_or_create(self, user_id: UUID) -> Subscription:
        subscription = await self.get_by_user(user_id)
        if subscription is None:
            subscription = await self.create(Subscription(user_id=user_id))
        return subscription


class PendingChangeRepository(BaseRepository[PendingSubscriptionChange]):
    """Plan changes waiting for the next billing period."""

    async def pending_for(
        self,
        subscription_id: UUID,
        change_type: str | None = None,
        timing: str | None = None,
    ) -> list[PendingSubscriptionChange]:
        stmt = select(PendingSubscriptionChange).where(
            PendingSubscriptionChange.subscription_id == subscription_id,
            PendingSubscriptionChange.status == PendingChangeStatus.PENDING.value,
        )
        if change_type is not None:
            stmt = stmt.where(PendingSubscriptionChange.change_type == change_type)
        if timing is not None:
            stmt = stmt.where(PendingSubscriptionChange.timing == timing)
        result = await self.session.execute(
            stmt.order_by(PendingSubscriptionChange.created_at)
        )
        return list(result.scalars().all())

    async def get_pending(self, change_id: UUID) -> PendingSubscriptionChange | None:
        result = await self.session.execute(
            select(PendingSubscriptionChange).where(
                PendingSubscriptionChange.id == change_id,
                PendingSubscriptionChange.status == PendingChangeStatus.PENDING.value,
            )
        )
        return result.scalar_one_or_none()


class SubjectAccessRepository(BaseRepository[SubjectAccess]):
    """Which subjects a user may open."""

    async def subject_ids(self, user_id: UUID) -> list[UUID]:
        result = await self.session.execute(
            select(SubjectAccess.subject_id)
            .where(SubjectAccess.user_id == user_id)
            .order_by(SubjectAccess.created_at)
        )
        return list(result.scalars().all())

    async def has_access(self, user_id: UUID, subject_id: UUID) -> bool:
        result = await self.session.execute(
            select(SubjectAccess.id)
            .where(
                SubjectAccess.user_id == user_id,
                SubjectAccess.subject_id == subject_id,
            )
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def revoke_all(self, user_id: UUID) -> int:
        result = await self.session.execute(
            delete(SubjectAccess).where(SubjectAccess.user_id == user_id)
        )
        return result.rowcount

    async def replace(self, user_id: UUID, subject_ids: list[UUID]) -> None:
        """Set the user's subjects to exactly ``subject_ids``."""
        await self.revoke_all(user_id)
        self.session.add_all(
            SubjectAccess(user_id=user_id, subject_id=subject_id)
            for subject_id in dict.fromkeys(subject_ids)
        )
        await self.session.flush()


class WaitlistRepository(BaseRepository[WaitlistEntry]):
    """Repository for waiting list entries."""

    async def get_by_email(self, email: str) -> WaitlistEntry | None:
        result = await self.session.execute(
            select(WaitlistEntry).where(WaitlistEntry.email == email)
        )
        return result.scalar_one_or_none()
