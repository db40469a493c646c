"""Stripe checkout, subscription management and webhook endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends, Header, Request

from maturamente.dependencies import (
    AuthUser,
    get_billing_service,
    get_plan_change_service,
    get_stripe_gateway,
)
from maturamente.schemas.billing import (
    ActivatedPlan,
    BillingPortalResponse,
    CancelAtPeriodEndResponse,
    CheckoutRequest,
    CheckoutResponse,
    ModifyPendingChangeRequest,
    ModifyPendingChangeResponse,
    PlanChangePreviewResponse,
    PlanChangeRequest,
    PlanChangeResponse,
    ProcessCheckoutRequest,
    ProcessCheckoutResponse,
    UndoPendingChangeRequest,
    WebhookReceivedResponse,
)
from maturamente.schemas.common import ErrorResponse, MessageResponse
from maturamente.services.billing import PLAN_NAME, BillingService, StripeGateway
from maturamente.services.plan_changes import PlanChangeService

router = APIRouter()

Billing = Annotated[BillingService, Depends(get_billing_service)]
PlanChanges = Annotated[PlanChangeService, Depends(get_plan_change_service)]

AUTH_ERRORS = {401: {"model": ErrorResponse, "description": "Not signed in"}}
SUBSCRIPTION_ERRORS = {
    **AUTH_ERRORS,
    404: {"model": ErrorResponse, "description": "No subscription"},
    502: {"model": ErrorResponse, "description": "Payment provider error"},
}


@router.post(
    "/checkout",
    response_model=CheckoutResponse,
    summary="Start a checkout for a custom plan",
    responses={
        **AUTH_ERRORS,
        400: {"model": ErrorResponse, "description": "Invalid plan or selection"},
        502: {"model": ErrorResponse, "description": "Payment provider error"},
    },
)
async def checkout(
    body: CheckoutRequest, user: AuthUser, billing: Billing
) -> CheckoutResponse:
    session = await billing.checkout(
        user.id,
        user.email,
        user.name,
        body.plan_type,
        body.selected_subjects,
    )
    return CheckoutResponse(session_id=session.session_id, url=session.url)


@router.post(
    "/process-checkout",
    response_model=ProcessCheckoutResponse,
    summary="Activate the plan of a paid checkout session",
    responses={
        **AUTH_ERRORS,
        400: {"model": ErrorResponse, "description": "Payment not completed"},
        403: {"model": ErrorResponse, "description": "Session of another user"},
        502: {"model": ErrorResponse, "description": "Payment provider error"},
    },
)
async def process_checkout(
    body: ProcessCheckoutRequest, user: AuthUser, billing: Billing
) -> ProcessCheckoutResponse:
    """Called from the checkout success page, ahead of the webhook."""
    subscription = await billing.process_checkout(user.id, body.session_id)
    return ProcessCheckoutResponse(
        message="Abbonamento attivato con successo",
        subscription=ActivatedPlan(
            plan=PLAN_NAME,
            subjects=subscription.subject_count,
            price=float(subscription.custom_price or 0),
        ),
    )


@router.post(
    "/cancel-subscription",
    response_model=CancelAtPeriodEndResponse,
    summary="Cancel the subscription at the end of the billing period",
    responses=SUBSCRIPTION_ERRORS,
)
async def cancel_subscription(
    user: AuthUser, billing: Billing
) -> CancelAtPeriodEndResponse:
    subscription = await billing.set_cancel_at_period_end(user.id, True)
    return CancelAtPeriodEndResponse(
        cancel_at_period_end=subscription.cancel_at_period_end
    )


@router.post(
    "/reactivate-subscription",
    response_model=CancelAtPeriodEndResponse,
    summary="Undo a scheduled cancellation",
    responses=SUBSCRIPTION_ERRORS,
)
async def reactivate_subscription(
    user: AuthUser, billing: Billing
) -> CancelAtPeriodEndResponse:
    subscription = await billing.set_cancel_at_period_end(user.id, False)
    return CancelAtPeriodEndResponse(
        cancel_at_period_end=subscription.cancel_at_period_end
    )


@router.post(
    "/billing-portal",
    response_model=BillingPortalResponse,
    summary="Open the Stripe billing portal",
    responses=SUBSCRIPTION_ERRORS,
)
async def billing_portal(user: AuthUser, billing: Billing) -> BillingPortalResponse:
    url = await billing.billing_portal(user.id)
    return BillingPortalResponse(url=url)


@router.post(
    "/webhook",
    response_model=WebhookReceivedResponse,
    summary="Receive Stripe events",
    responses={400: {"model": ErrorResponse, "description": "Invalid signature"}},
)
async def webhook(
    request: Request,
    billing: Billing,
    gateway: Annotated[StripeGateway, Depends(get_stripe_gateway)],
    stripe_signature: Annotated[str | None, Header(alias="Stripe-Signature")] = None,
) -> WebhookReceivedResponse:
    """The raw body is verified against the signature before parsing."""
    payload = await request.body()
    event = gateway.parse_event(payload, stripe_signature)
    await billing.handle_event(event)
    return WebhookReceivedResponse()


# =============================================================================
# Plan changes
# =============================================================================

PLAN_CHANGE_ERRORS = {
    **SUBSCRIPTION_ERRORS,
    400: {"model": ErrorResponse, "description": "Invalid subject selection"},
}


@router.post(
    "/plan-change-preview",
    response_model=PlanChangePreviewResponse,
    summary="Price a new subject selection",
    responses=PLAN_CHANGE_ERRORS,
)
async def plan_change_preview(
    body: PlanChangeRequest, user: AuthUser, plan_changes: PlanChanges
) -> PlanChangePreviewResponse:
    preview = await plan_changes.preview(user.id, body.new_subject_ids)
    return PlanChangePreviewResponse(
        current_price=float(preview.current_price),
        new_price=float(preview.new_price),
        proration_amount=float(preview.proration_amount),
        change_type=preview.change_type.value,
        effective_date=preview.effective_date,
    )


@router.post(
    "/plan-change",
    response_model=PlanChangeResponse,
    summary="Upgrade now or downgrade at renewal",
    responses=PLAN_CHANGE_ERRORS,
)
async def plan_change(
    body: PlanChangeRequest, user: AuthUser, plan_changes: PlanChanges
) -> PlanChangeResponse:
    result = await plan_changes.change_plan(user.id, body.new_subject_ids)
    return PlanChangeResponse(
        success=result.success,
        message=result.message,
        change_type=result.change_type.value,
        new_subject_count=result.new_subject_count,
        new_price=float(result.new_price),
        immediate_charge_amount=float(result.immediate_charge_amount),
        invoice_id=result.invoice_id,
        subscription_id=result.subscription_id,
    )


@router.post(
    "/modify-pending-change",
    response_model=ModifyPendingChangeResponse,
    summary="Keep subjects a pending downgrade would remove",
    responses=PLAN_CHANGE_ERRORS,
)
async def modify_pending_change(
    body: ModifyPendingChangeRequest, user: AuthUser, plan_changes: PlanChanges
) -> ModifyPendingChangeResponse:
    update = await plan_changes.modify_pending(user.id, body.restore_ids())
    return ModifyPendingChangeResponse(
        message=update.message,
        pending_change_resolved=update.resolved,
        new_subject_count=update.new_subject_count,
        new_price=float(update.new_price),
    )


@router.post(
    "/undo-pending-change",
    response_model=MessageResponse,
    summary="Cancel a pending plan change",
    responses=SUBSCRIPTION_ERRORS,
)
async def undo_pending_change(
    body: UndoPendingChangeRequest, user: AuthUser, plan_changes: PlanChanges
) -> MessageResponse:
    await plan_changes.undo_pending(user.id, body.change_id)
    return MessageResponse(message="Pending change cancelled and reverted successfully")
