"""Schemas for checkout, subscription management and the waiting list."""

from datetime import datetime
from uuid import UUID

from pydantic import Field

from maturamente.schemas.common import BaseSchema


class CheckoutRequest(BaseSchema):
    """Start a checkout for a custom plan.

    Plan type and subject selection are checked by the billing service so
    that their error messages match what the pricing page displays.
    """

    plan_type: str
    selected_subjects: list[UUID] = Field(default_factory=list)


class CheckoutResponse(BaseSchema):
    session_id: str
    url: str


class ProcessCheckoutRequest(BaseSchema):
    session_id: str = Field(min_length=1)


class ActivatedPlan(BaseSchema):
    plan: str
    subjects: int
    price: float


class ProcessCheckoutResponse(BaseSchema):
    success: bool = True
    message: str
    subscription: ActivatedPlan


class BillingPortalResponse(BaseSchema):
    url: str


class CancelAtPeriodEndResponse(BaseSchema):
    success: bool = True
    cancel_at_period_end: bool


# =============================================================================
# Plan changes
# =============================================================================


class PlanChangeRequest(BaseSchema):
    """A new subject selection for the running plan.

    Upgrades always apply at once and downgrades at renewal, so ``timing``
    is accepted for compatibility and otherwise ignored.
    """

    new_subject_ids: list[UUID] = Field(default_factory=list)
    timing: str | None = None


class PlanChangePreviewResponse(BaseSchema):
    current_price: float
    new_price: float
    proration_amount: float
    change_type: str
    effective_date: datetime


class PlanChangeResponse(BaseSchema):
    success: bool
    message: str
    change_type: str
    new_subject_count: int
    new_price: float
    immediate_charge_amount: float = 0
    invoice_id: str | None = None
    subscription_id: str | None = None


class ModifyPendingChangeRequest(BaseSchema):
    subject_id: UUID | None = None
    restore_subject_ids: list[UUID] | None = None

    def restore_ids(self) -> list[UUID]:
        """Requested subjects, with the single-subject form folded in."""
        ids = list(self.restore_subject_ids or [])
        if self.subject_id is not None and self.subject_id not in ids:
            ids.append(self.subject_id)
        return ids


class ModifyPendingChangeResponse(BaseSchema):
    success: bool = True
    message: str
    pending_change_resolved: bool
    new_subject_count: int
    new_price: float


class UndoPendingChangeRequest(BaseSchema):
    change_id: UUID


class PendingChangeSchema(BaseSchema):
    id: UUID
    change_type: str
    timing: str
    new_subject_ids: list[UUID]
    new_subject_count: int
    new_price: float
    scheduled_date: datetime | None
    status: str
    created_at: datetime


class PendingChangesResponse(BaseSchema):
    pending_changes: list[PendingChangeSchema]


# =============================================================================
# Mailing
# =============================================================================


class WaitlistRequest(BaseSchema):
    email: str = Field(
        min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
    )
    name: str | None = Field(default=None, max_length=255)


class WebhookReceivedResponse(BaseSchema):
    received: bool = True
