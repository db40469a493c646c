"""Changing the subject selection of a running plan.

Upgrades are billed at once: Stripe prorates the remaining period and the
new subjects unlock immediately. Downgrades are billed from the next period
and recorded as a ``PendingSubscriptionChange``; the user keeps every
current subject until the renewal invoice is paid (see
``BillingService._apply_pending_downgrades``).

While a downgrade is pending, the user can restore some of the subjects it
would remove (``modify_pending``) or cancel it outright (``undo_pending``).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

import structlog

from maturamente.core.clock import Clock, utcnow
from maturamente.core.exceptions import (
    BillingServiceError,
    PendingChangeNotFoundError,
    SubscriptionNotFoundError,
    ValidationError,
)
from maturamente.models.billing import (
    ChangeTiming,
    PendingChangeStatus,
    PendingSubscriptionChange,
    PlanChangeType,
    Subscription,
)
from maturamente.repositories.billing import (
    PendingChangeRepository,
    SubjectAccessRepository,
    SubscriptionRepository,
)
from maturamente.services.billing import (
    BillingService,
    StripeGateway,
    calculate_custom_price,
)

logger = structlog.get_logger(__name__)

ZERO = Decimal("0.00")


def _unique(ids: list[UUID]) -> list[UUID]:
    return list(dict.fromkeys(ids))


@dataclass(frozen=True)
class PlanChangePreview:
    current_price: Decimal
    new_price: Decimal
    proration_amount: Decimal
    change_type: PlanChangeType
    effective_date: datetime


@dataclass(frozen=True)
class PlanChangeResult:
    success: bool
    message: str
    change_type: PlanChangeType
    new_subject_count: int
    new_price: Decimal
    immediate_charge_amount: Decimal = ZERO
    invoice_id: str | None = None
    subscription_id: str | None = None


@dataclass(frozen=True)
class PendingChangeUpdate:
    message: str
    resolved: bool
    new_subject_count: int
    new_price: Decimal


class PlanChangeService:
    """Upgrades, downgrades and pending downgrade management."""

    def __init__(
        self,
        billing: BillingService,
        pending_repo: PendingChangeRepository,
        clock: Clock = utcnow,
    ) -> None:
        self.billing = billing
        self.pending_repo = pending_repo
        self.clock = clock

    @property
    def subscription_repo(self) -> SubscriptionRepository:
        return self.billing.subscription_repo

    @property
    def access_repo(self) -> SubjectAccessRepository:
        return self.billing.access_repo

    @property
    def gateway(self) -> StripeGateway:
        return self.billing.gateway

    @staticmethod
    def _check_selection(subject_ids: list[UUID]) -> None:
        if not subject_ids:
            raise ValidationError(
                "newSubjectIds is required and must be a non-empty array",
                field="newSubjectIds",
            )
        if len(set(subject_ids)) != len(subject_ids):
            raise ValidationError(
                "Each subject can be selected only once", field="newSubjectIds"
            )

    async def _require_billed_subscription(self, user_id: UUID) -> Subscription:
        subscription = await self.subscription_repo.get_by_user(user_id)
        if subscription is None or not subscription.stripe_subscription_id:
            raise SubscriptionNotFoundError("No active subscription found")
        return subscription

    async def _pending_downgrade(
        self, subscription: Subscription
    ) -> PendingSubscriptionChange | None:
        changes = await self.pending_repo.pending_for(
            subscription.id, change_type=PlanChangeType.DOWNGRADE.value
        )
        return changes[0] if changes else None

    def _period_progress(self, subscription: Subscription) -> Decimal:
        """Share of the current billing period already elapsed, from 0 to 1."""
        start = subscription.current_period_start
        end = subscription.current_period_end
        if start is None or end is None or end <= start:
            return Decimal(0)
        elapsed = Decimal(str((self.clock() - start).total_seconds()))
        total = Decimal(str((end - start).total_seconds()))
        return min(Decimal(1), max(Decimal(0), elapsed / total))

    # -------------------------------------------------------------------------
    # Preview and change
    # -------------------------------------------------------------------------

    async def preview(self, user_id: UUID, new_subject_ids: list[UUID]) -> PlanChangePreview:
        """Price a selection change without touching Stripe.

        A pending downgrade's target counts as the current selection, so
        previewing after a downgrade compares against what will be billed.
        """
        self._check_selection(new_subject_ids)
        subscription = await self._require_billed_subscription(user_id)
        downgrade = await self._pending_downgrade(subscription)
        if downgrade is not None:
            base = downgrade.subject_uuids
        else:
            base = await self.access_repo.subject_ids(user_id)

        added = [i for i in new_subject_ids if i not in base]
        removed = [i for i in base if i not in new_subject_ids]
        if added:
            change_type = PlanChangeType.UPGRADE
            target = _unique([*base, *added])
        elif removed:
            change_type = PlanChangeType.DOWNGRADE
            target = new_subject_ids
        else:
            change_type = PlanChangeType.NO_CHANGE
            target = base

        current_price = calculate_custom_price(len(base))
        new_price = calculate_custom_price(len(target))
        proration = ZERO
        if change_type is PlanChangeType.UPGRADE:
            remaining = 1 - self._period_progress(subscription)
            proration = ((new_price - current_price) * remaining).quantize(ZERO)

        return PlanChangePreview(
            current_price=current_price,
            new_price=new_price,
            proration_amount=proration,
            change_type=change_type,
            effective_date=self.clock(),
        )

    async def change_plan(
        self, user_id: UUID, new_subject_ids: list[UUID]
    ) -> PlanChangeResult:
        """Apply a new subject selection.

        Subjects that are not unlocked yet make the change an upgrade, and the
        currently unlocked subjects are kept alongside them. A smaller
        selection of current subjects is a downgrade scheduled for renewal.

        Raises:
            ValidationError: If the selection is empty, repeated or unknown
            SubscriptionNotFoundError: Without a Stripe subscription
            BillingServiceError: If Stripe rejects the item update
        """
        self._check_selection(new_subject_ids)
        subscription = await self._require_billed_subscription(user_id)
        current = await self.access_repo.subject_ids(user_id)
        downgrade = await self._pending_downgrade(subscription)
        base = downgrade.subject_uuids if downgrade is not None else current

        added = [i for i in new_subject_ids if i not in current]
        await self.billing.require_subjects(added, field="newSubjectIds")
        if added:
            change_type = PlanChangeType.UPGRADE
            target = _unique([*current, *added])
            # A pending downgrade still applies at renewal, so only its target is billed
            new_count = len(_unique([*base, *added]))
        elif set(new_subject_ids) != set(base) and len(new_subject_ids) < len(current):
            change_type = PlanChangeType.DOWNGRADE
            target = new_subject_ids
            new_count = len(target)
        else:
            return PlanChangeResult(
                success=False,
                message="No changes detected in subject selection",
                change_type=PlanChangeType.NO_CHANGE,
                new_subject_count=subscription.subject_count,
                new_price=calculate_custom_price(subscription.subject_count),
            )
        new_price = calculate_custom_price(new_count)

        upgrade = change_type is PlanChangeType.UPGRADE
        remote = await self.gateway.replace_subscription_items(
            subscription.stripe_subscription_id,
            self.billing.line_items(new_count),
            "always_invoice" if upgrade else "none",
        )

        charge = ZERO
        invoice_id = None
        if upgrade:
            invoice_id, charge = await self._settle_proration(subscription)
            await self.access_repo.replace(user_id, target)
            await self._keep_in_pending_downgrade(downgrade, added)
            if charge > 0:
                message = (
                    "Subscription upgraded successfully! You have been charged "
                    f"€{charge:.2f} for the remaining billing period."
                )
            else:
                message = (
                    "Subscription upgraded successfully! The prorated amount "
                    "will be added to your next invoice."
                )
        else:
            await self._store_pending_downgrade(subscription, target, new_price)
            message = (
                "Subscription downgraded successfully! You'll keep access to all "
                "subjects until the end of your current billing period. Your next "
                "invoice will reflect the new lower price."
            )

        subscription.subject_count = new_count
        subscription.custom_price = new_price
        await self.subscription_repo.update(subscription)
        logger.info(
            "plan_changed",
            user_id=str(user_id),
            change_type=change_type.value,
            subject_count=new_count,
            charged=str(charge),
        )
        return PlanChangeResult(
            success=True,
            message=message,
            change_type=change_type,
            new_subject_count=new_count,
            new_price=new_price,
            immediate_charge_amount=charge,
            invoice_id=invoice_id,
            subscription_id=remote.id,
        )

    async def _settle_proration(
        self, subscription: Subscription
    ) -> tuple[str | None, Decimal]:
        """Pay the proration invoice now; a failed payment is left to Stripe's retries."""
        try:
            charge = await self.gateway.settle_latest_invoice(
                subscription.stripe_subscription_id
            )
        except BillingServiceError:
            logger.warning(
                "proration_charge_deferred", user_id=str(subscription.user_id)
            )
            return None, ZERO
        return charge.invoice_id, charge.amount

    async def _keep_in_pending_downgrade(
        self, downgrade: PendingSubscriptionChange | None, added: list[UUID]
    ) -> None:
        """Subjects bought during a pending downgrade survive it."""
        if downgrade is None or not added:
            return
        target = _unique([*downgrade.subject_uuids, *added])
        self._retarget(downgrade, target)
        await self.pending_repo.update(downgrade)

    async def _store_pending_downgrade(
        self, subscription: Subscription, target: list[UUID], new_price: Decimal
    ) -> PendingSubscriptionChange:
        existing = await self.pending_repo.pending_for(subscription.id)
        if existing:
            change = existing[0]
            change.change_type = PlanChangeType.DOWNGRADE.value
            change.timing = ChangeTiming.NEXT_PERIOD.value
            change.scheduled_date = subscription.current_period_end
            self._retarget(change, target)
            return await self.pending_repo.update(change)

        return await self.pending_repo.create(
            PendingSubscriptionChange(
                user_id=subscription.user_id,
                subscription_id=subscription.id,
                change_type=PlanChangeType.DOWNGRADE.value,
                timing=ChangeTiming.NEXT_PERIOD.value,
                new_subject_ids=[str(i) for i in target],
                new_subject_count=len(target),
                new_price=new_price,
                scheduled_date=subscription.current_period_end,
                status=PendingChangeStatus.PENDING.value,
            )
        )

    @staticmethod
    def _retarget(change: PendingSubscriptionChange, target: list[UUID]) -> None:
        change.new_subject_ids = [str(i) for i in target]
        change.new_subject_count = len(target)
        change.new_price = calculate_custom_price(len(target))

    # -------------------------------------------------------------------------
    # Pending downgrades
    # -------------------------------------------------------------------------

    async def list_pending(self, user_id: UUID) -> list[PendingSubscriptionChange]:
        subscription = await self.subscription_repo.get_by_user(user_id)
        if subscription is None:
            return []
        return await self.pending_repo.pending_for(subscription.id)

    async def modify_pending(
        self, user_id: UUID, restore_subject_ids: list[UUID]
    ) -> PendingChangeUpdate:
        """Keep some subjects a pending downgrade would remove.

        Restored subjects are billed again at once. When every current
        subject is restored the pending downgrade is cancelled.
        """
        if not restore_subject_ids:
            raise ValidationError(
                "Provide subjectId or restoreSubjectIds", field="restoreSubjectIds"
            )
        subscription = await self._require_billed_subscription(user_id)
        downgrade = await self._pending_downgrade(subscription)
        if downgrade is None:
            raise PendingChangeNotFoundError("No pending downgrade found to modify")

        current = await self.access_repo.subject_ids(user_id)
        if any(i not in current for i in restore_subject_ids):
            raise ValidationError(
                "One or more subject IDs are invalid for this user",
                field="restoreSubjectIds",
            )

        keep = set(downgrade.subject_uuids) | set(restore_subject_ids)
        target = [i for i in current if i in keep]
        new_count = len(target)
        new_price = calculate_custom_price(new_count)

        await self.gateway.replace_subscription_items(
            subscription.stripe_subscription_id,
            self.billing.line_items(new_count),
            "always_invoice",
        )
        subscription.subject_count = new_count
        subscription.custom_price = new_price
        await self.subscription_repo.update(subscription)

        resolved = new_count == len(current)
        if resolved:
            downgrade.status = PendingChangeStatus.CANCELLED.value
        else:
            self._retarget(downgrade, target)
        await self.pending_repo.update(downgrade)
        logger.info(
            "pending_downgrade_modified",
            user_id=str(user_id),
            restored=len(restore_subject_ids),
            resolved=resolved,
        )

        if len(restore_subject_ids) == 1:
            message = "Rimozione annullata per la materia selezionata"
        else:
            message = "Rimozione annullata per le materie selezionate"
        return PendingChangeUpdate(
            message=message,
            resolved=resolved,
            new_subject_count=new_count,
            new_price=new_price,
        )

    async def undo_pending(self, user_id: UUID, change_id: UUID) -> None:
        """Cancel a pending change and bill the current selection again.

        Raises:
            PendingChangeNotFoundError: If the change is unknown, already
                processed, or owned by another user
        """
        change = await self.pending_repo.get_pending(change_id)
        if change is None or change.user_id != user_id:
            raise PendingChangeNotFoundError()
        subscription = await self._require_billed_subscription(user_id)

        if change.change_type == PlanChangeType.DOWNGRADE.value:
            # Access was never narrowed, so the current selection is the original plan
            current = await self.access_repo.subject_ids(user_id)
            await self.gateway.replace_subscription_items(
                subscription.stripe_subscription_id,
                self.billing.line_items(len(current)),
                "none",
            )
            subscription.subject_count = len(current)
            subscription.custom_price = calculate_custom_price(len(current))
            await self.subscription_repo.update(subscription)

        change.status = PendingChangeStatus.CANCELLED.value
        await self.pending_repo.update(change)
        logger.info("pending_change_cancelled", user_id=str(user_id), change_id=str(change_id))
