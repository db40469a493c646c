"""Subscriptions, pending plan changes, subject access and the waiting list."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    JSON,
    Boolean,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from maturamente.models.base import (
    Base,
    CreatedAtMixin,
    TimestampMixin,
    UUIDPrimaryKeyMixin,
)


class SubscriptionStatus(str, Enum):
    """Subscription states mirrored from Stripe."""

    INCOMPLETE = "incomplete"
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    UNPAID = "unpaid"


class Subscription(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A user's custom plan, one row per user.

    Attributes:
        status: Last status reported by Stripe
        subject_count: Number of subjects paid for
        custom_price: Monthly price in euros
        cancel_at_period_end: Whether Stripe will cancel at period end
    """

    __tablename__ = "subscriptions"

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    stripe_customer_id: Mapped[str | None] = mapped_column(
        String(255), nullable=True, index=True
    )
    stripe_subscription_id: Mapped[str | None] = mapped_column(
        String(255), unique=True, nullable=True
    )
    stripe_price_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=SubscriptionStatus.INCOMPLETE.value,
    )
    subject_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    custom_price: Mapped[Decimal | None] = mapped_column(
        Numeric(10, 2), nullable=True
    )
    current_period_start: Mapped[datetime | None] = mapped_column(nullable=True)
    current_period_end: Mapped[datetime | None] = mapped_column(nullable=True)
    cancel_at_period_end: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )

    @property
    def is_active(self) -> bool:
        return self.status == SubscriptionStatus.ACTIVE.value


class PlanChangeType(str, Enum):
    UPGRADE = "upgrade"
    DOWNGRADE = "downgrade"
    NO_CHANGE = "no_change"


class ChangeTiming(str, Enum):
    IMMEDIATE = "immediate"
    NEXT_PERIOD = "next_period"


class PendingChangeStatus(str, Enum):
    PENDING = "pending"
    APPLIED = "applied"
    CANCELLED = "cancelled"
    FAILED = "failed"


class PendingSubscriptionChange(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A downgrade that takes effect when the next billing period starts.

    The subscription is already billed at the new price; the user keeps
    every current subject until the renewal invoice is paid, at which point
    access is narrowed to ``new_subject_ids``.

    Attributes:
        timing: ``next_period`` for changes applied on renewal
        new_subject_ids: Subject ids (as strings) kept after the change
        scheduled_date: End of the period the change waits for
    """

    __tablename__ = "pending_subscription_changes"

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    subscription_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("subscriptions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    change_type: Mapped[str] = mapped_column(String(20), nullable=False)
    timing: Mapped[str] = mapped_column(String(20), nullable=False)
    new_subject_ids: Mapped[list[str]] = mapped_column(
        JSON, nullable=False, default=list
    )
    new_subject_count: Mapped[int] = mapped_column(Integer, nullable=False)
    new_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    scheduled_date: Mapped[datetime | None] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=PendingChangeStatus.PENDING.value,
        index=True,
    )

    @property
    def subject_uuids(self) -> list[uuid.UUID]:
        return [uuid.UUID(subject_id) for subject_id in self.new_subject_ids]


class SubjectAccess(UUIDPrimaryKeyMixin, CreatedAtMixin, Base):
    """Grants a user access to one subject's content."""

    __tablename__ = "relation_subjects_user"
    __table_args__ = (UniqueConstraint("user_id", "subject_id"),)

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    subject_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("subjects.id", ondelete="CASCADE"), nullable=False
    )


class WaitlistEntry(UUIDPrimaryKeyMixin, CreatedAtMixin, Base):
    """An email on the product waiting list."""

    __tablename__ = "waiting_list"

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    unsubscribed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
