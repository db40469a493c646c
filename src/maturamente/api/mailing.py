"""Waiting list and unsubscribe endpoints.

Neither endpoint requires a session: unsubscribe links are opened from
emails and authenticated by their token.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from maturamente.dependencies import get_mailing_service
from maturamente.schemas.billing import WaitlistRequest
from maturamente.schemas.common import ErrorResponse, SuccessResponse
from maturamente.services.mailing import MailingService

Mailing = Annotated[MailingService, Depends(get_mailing_service)]

unsubscribe_router = APIRouter()
waitlist_router = APIRouter()


@unsubscribe_router.get(
    "",
    response_model=SuccessResponse,
    summary="Unsubscribe an email from the mailing list",
    responses={400: {"model": ErrorResponse, "description": "Invalid token"}},
)
async def unsubscribe(
    mailing: Mailing,
    email: Annotated[str | None, Query()] = None,
    token: Annotated[str | None, Query()] = None,
) -> SuccessResponse:
    await mailing.unsubscribe(email, token)
    return SuccessResponse()


@waitlist_router.post(
    "",
    response_model=SuccessResponse,
    summary="Join the waiting list",
    responses={409: {"model": ErrorResponse, "description": "Already on the list"}},
)
async def join_waitlist(body: WaitlistRequest, mailing: Mailing) -> SuccessResponse:
    await mailing.join(body.email, body.name)
    return SuccessResponse()
