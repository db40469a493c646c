"""Topic and subtopic completion endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from maturamente.dependencies import AuthUser, get_completion_service
from maturamente.schemas.common import ErrorResponse, SuccessMessageResponse
from maturamente.schemas.exercises import (
    CompleteSubtopicRequest,
    CompleteTopicRequest,
    CompleteTopicResponse,
)
from maturamente.services.completion import CompletionService

Completion = Annotated[CompletionService, Depends(get_completion_service)]

subtopics_router = APIRouter()
topics_router = APIRouter()


@subtopics_router.post(
    "/complete",
    response_model=SuccessMessageResponse,
    summary="Mark a subtopic as completed",
    responses={401: {"model": ErrorResponse, "description": "Not signed in"}},
)
async def complete_subtopic(
    body: CompleteSubtopicRequest, user: AuthUser, completion: Completion
) -> SuccessMessageResponse:
    """Idempotent: completing the same subtopic again still succeeds."""
    await completion.complete_subtopic(user.id, body.subtopic_id)
    return SuccessMessageResponse(message="Subtopic marked as completed")


@topics_router.post(
    "/complete",
    response_model=CompleteTopicResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
    summary="Mark a topic and all its subtopics as completed",
    responses={
        200: {"model": CompleteTopicResponse, "description": "Already completed"},
        401: {"model": ErrorResponse, "description": "Not signed in"},
        404: {"model": ErrorResponse, "description": "Topic not found"},
    },
)
async def complete_topic(
    body: CompleteTopicRequest, user: AuthUser, completion: Completion
) -> CompleteTopicResponse | JSONResponse:
    result = await completion.complete_topic(user.id, body.topic_id)
    if result.already_completed:
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content={"message": "Topic already marked as completed"},
        )
    return CompleteTopicResponse(
        message="Topic and all subtopics marked as completed",
        completed_subtopic_ids=result.completed_subtopic_ids,
    )
