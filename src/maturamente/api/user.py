"""Endpoints describing the signed-in user's progress and plan."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from maturamente.dependencies import (
    AuthUser,
    get_account_service,
    get_billing_service,
    get_completion_service,
    get_plan_change_service,
)
from maturamente.schemas.billing import PendingChangeSchema, PendingChangesResponse
from maturamente.schemas.common import ErrorResponse, MessageResponse
from maturamente.schemas.user import (
    CheckUsernameResponse,
    CompletionBulkResponse,
    CompletionStatusResponse,
    DeleteAccountResponse,
    SubjectAccessResponse,
    SubscriptionStatusResponse,
    UpdateProfileRequest,
)
from maturamente.services.account import AccountService
from maturamente.services.billing import BillingService
from maturamente.services.completion import CompletionService
from maturamente.services.plan_changes import PlanChangeService

router = APIRouter()

Completion = Annotated[CompletionService, Depends(get_completion_service)]
Billing = Annotated[BillingService, Depends(get_billing_service)]
PlanChanges = Annotated[PlanChangeService, Depends(get_plan_change_service)]
Account = Annotated[AccountService, Depends(get_account_service)]

AUTH_ERRORS = {401: {"model": ErrorResponse, "description": "Not signed in"}}


@router.get(
    "/completion",
    response_model=CompletionStatusResponse,
    summary="Completion state of a single item",
    responses={
        **AUTH_ERRORS,
        400: {"model": ErrorResponse, "description": "Invalid item type"},
    },
)
async def completion_status(
    user: AuthUser,
    completion: Completion,
    item_type: Annotated[str, Query(alias="itemType")],
    item_id: Annotated[UUID, Query(alias="itemId")],
) -> CompletionStatusResponse:
    completed = await completion.is_completed(user.id, item_type, item_id)
    return CompletionStatusResponse(is_completed=completed)


@router.get(
    "/completion-bulk",
    response_model=CompletionBulkResponse,
    summary="All completed topics and subtopics",
    responses=AUTH_ERRORS,
)
async def completion_bulk(
    user: AuthUser, completion: Completion
) -> CompletionBulkResponse:
    topics, subtopics = await completion.completed_theory(user.id)
    return CompletionBulkResponse(
        completed_topics=topics, completed_subtopics=subtopics
    )


@router.get(
    "/subscription-status",
    response_model=SubscriptionStatusResponse | None,
    summary="Current subscription, or null without one",
    responses=AUTH_ERRORS,
)
async def subscription_status(
    user: AuthUser, billing: Billing
) -> SubscriptionStatusResponse | None:
    data = await billing.subscription_status(user.id)
    if data is None:
        return None
    return SubscriptionStatusResponse.model_validate(data)


@router.get(
    "/subject-access",
    response_model=SubjectAccessResponse,
    summary="Subjects unlocked by the user's plan",
    responses=AUTH_ERRORS,
)
async def subject_access(user: AuthUser, billing: Billing) -> SubjectAccessResponse:
    data = await billing.subject_access(user.id)
    return SubjectAccessResponse.model_validate(data)


@router.get(
    "/pending-subscription-changes",
    response_model=PendingChangesResponse,
    summary="Plan changes waiting for the next renewal",
    responses=AUTH_ERRORS,
)
async def pending_subscription_changes(
    user: AuthUser, plan_changes: PlanChanges
) -> PendingChangesResponse:
    changes = await plan_changes.list_pending(user.id)
    return PendingChangesResponse(
        pending_changes=[PendingChangeSchema.model_validate(c) for c in changes]
    )


@router.post(
    "/update",
    response_model=MessageResponse,
    summary="Set the username and display name",
    responses={
        **AUTH_ERRORS,
        400: {"model": ErrorResponse, "description": "Missing username"},
        409: {"model": ErrorResponse, "description": "Username already taken"},
    },
)
async def update_profile(
    body: UpdateProfileRequest, user: AuthUser, account: Account
) -> MessageResponse:
    await account.update_profile(user.id, body.username, body.full_name)
    return MessageResponse(message="Profile updated successfully")


@router.get(
    "/check-username",
    response_model=CheckUsernameResponse,
    summary="Whether the user has picked a username",
    responses=AUTH_ERRORS,
)
async def check_username(user: AuthUser, account: Account) -> CheckUsernameResponse:
    return CheckUsernameResponse(has_username=await account.has_username(user.id))


@router.delete(
    "/delete",
    response_model=DeleteAccountResponse,
    summary="Delete the account and all of its data",
    responses={
        **AUTH_ERRORS,
        400: {"model": ErrorResponse, "description": "Subscription still active"},
    },
)
async def delete_account(user: AuthUser, account: Account) -> DeleteAccountResponse:
    await account.delete_account(user.id)
    return DeleteAccountResponse(message="Account deleted successfully")
