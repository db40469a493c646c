"""Exercise and exercise card endpoints.

Flag toggles, flagged-state lookups (single and bulk) and exercise/card
completion.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from maturamente.core.exceptions import ValidationError
from maturamente.dependencies import (
    AuthUser,
    get_completion_service,
    get_relation_service,
)
from maturamente.models.relations import ContentKind
from maturamente.schemas.common import ErrorResponse
from maturamente.schemas.exercises import (
    CompleteCardRequest,
    CompleteCardResponse,
    CompleteExerciseRequest,
    CompleteExerciseResponse,
    FlagCardRequest,
    FlaggedBulkResponse,
    FlaggedCardsResponse,
    FlaggedExercisesResponse,
    FlagExerciseRequest,
    FlagStatusResponse,
    FlagToggleResponse,
)
from maturamente.services.completion import CompletionService
from maturamente.services.relations import RelationService

router = APIRouter()

Relations = Annotated[RelationService, Depends(get_relation_service)]
Completion = Annotated[CompletionService, Depends(get_completion_service)]

AUTH_ERRORS = {
    400: {"model": ErrorResponse, "description": "Invalid request"},
    401: {"model": ErrorResponse, "description": "Not signed in"},
}


def parse_id_list(raw: str, field: str) -> list[UUID]:
    """Parse a comma-separated list of UUIDs, ignoring empty items.

    Raises:
        ValidationError: If any item is not a UUID
    """
    try:
        return [UUID(item.strip()) for item in raw.split(",") if item.strip()]
    except ValueError:
        raise ValidationError(f"Invalid id in {field}", field=field) from None


# =============================================================================
# Flags
# =============================================================================


@router.post(
    "/flag-exercise",
    response_model=FlagToggleResponse,
    summary="Toggle the flag on an exercise",
    responses=AUTH_ERRORS,
)
async def flag_exercise(
    body: FlagExerciseRequest, user: AuthUser, relations: Relations
) -> FlagToggleResponse:
    flagged = await relations.toggle(
        ContentKind.FLAGGED_EXERCISE, user.id, body.exercise_id
    )
    message = (
        "Exercise added to favorites" if flagged else "Exercise removed from favorites"
    )
    return FlagToggleResponse(message=message, flagged=flagged)


@router.get(
    "/flag-exercise",
    response_model=FlagStatusResponse,
    summary="Check whether an exercise is flagged",
    responses=AUTH_ERRORS,
)
async def exercise_flag_status(
    user: AuthUser,
    relations: Relations,
    exercise_id: Annotated[UUID, Query(alias="exerciseId")],
) -> FlagStatusResponse:
    flagged = await relations.exists(ContentKind.FLAGGED_EXERCISE, user.id, exercise_id)
    return FlagStatusResponse(flagged=flagged)


@router.post(
    "/flag-card",
    response_model=FlagToggleResponse,
    summary="Toggle the flag on an exercise card",
    responses=AUTH_ERRORS,
)
async def flag_card(
    body: FlagCardRequest, user: AuthUser, relations: Relations
) -> FlagToggleResponse:
    flagged = await relations.toggle(ContentKind.FLAGGED_CARD, user.id, body.card_id)
    message = "Card added to favorites" if flagged else "Card removed from favorites"
    return FlagToggleResponse(message=message, flagged=flagged)


@router.get(
    "/flag-card",
    response_model=FlagStatusResponse,
    summary="Check whether an exercise card is flagged",
    responses=AUTH_ERRORS,
)
async def card_flag_status(
    user: AuthUser,
    relations: Relations,
    card_id: Annotated[UUID, Query(alias="cardId")],
) -> FlagStatusResponse:
    flagged = await relations.exists(ContentKind.FLAGGED_CARD, user.id, card_id)
    return FlagStatusResponse(flagged=flagged)


@router.get(
    "/flagged-bulk",
    response_model=FlaggedBulkResponse,
    response_model_exclude_none=True,
    summary="Flagged subset of many exercises and cards",
    responses=AUTH_ERRORS,
)
async def flagged_bulk(
    user: AuthUser,
    relations: Relations,
    exercise_ids: Annotated[str | None, Query(alias="exerciseIds")] = None,
    card_ids: Annotated[str | None, Query(alias="cardIds")] = None,
) -> FlaggedBulkResponse:
    """Answer flagged state for a whole page of items in one query per kind."""
    response = FlaggedBulkResponse()
    if exercise_ids is not None:
        flagged = await relations.existing(
            ContentKind.FLAGGED_EXERCISE,
            user.id,
            parse_id_list(exercise_ids, "exerciseIds"),
        )
        response.flagged_exercises = sorted(flagged, key=str)
    if card_ids is not None:
        flagged = await relations.existing(
            ContentKind.FLAGGED_CARD,
            user.id,
            parse_id_list(card_ids, "cardIds"),
        )
        response.flagged_cards = sorted(flagged, key=str)
    return response


@router.get(
    "/flagged",
    response_model=FlaggedCardsResponse,
    summary="All flagged cards of the user",
    responses=AUTH_ERRORS,
)
async def flagged_cards(user: AuthUser, relations: Relations) -> FlaggedCardsResponse:
    ids = await relations.list_ids(ContentKind.FLAGGED_CARD, user.id)
    return FlaggedCardsResponse(flagged_card_ids=ids)


@router.get(
    "/flagged-exercises",
    response_model=FlaggedExercisesResponse,
    summary="All flagged exercises of the user",
    responses=AUTH_ERRORS,
)
async def flagged_exercises(
    user: AuthUser, relations: Relations
) -> FlaggedExercisesResponse:
    ids = await relations.list_ids(ContentKind.FLAGGED_EXERCISE, user.id)
    return FlaggedExercisesResponse(flagged_exercise_ids=ids)


# =============================================================================
# Completion
# =============================================================================


@router.post(
    "/complete",
    response_model=CompleteExerciseResponse,
    summary="Record an answer to an exercise",
    responses={
        **AUTH_ERRORS,
        404: {"model": ErrorResponse, "description": "Exercise not found"},
    },
)
async def complete_exercise(
    body: CompleteExerciseRequest, user: AuthUser, completion: Completion
) -> CompleteExerciseResponse:
    progress = await completion.record_exercise_attempt(
        user.id, body.exercise_id, body.is_correct
    )
    return CompleteExerciseResponse(
        exercise_completed=progress.exercise_completed,
        all_completed=progress.all_completed,
        all_correct=progress.all_correct,
        correct_count=progress.correct_count,
        total_exercises=progress.total_exercises,
    )


@router.post(
    "/complete-card",
    response_model=CompleteCardResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_200_OK,
    summary="Mark an exercise card as completed",
    responses={
        **AUTH_ERRORS,
        404: {"model": ErrorResponse, "description": "Card has no exercises"},
    },
)
async def complete_card(
    body: CompleteCardRequest, user: AuthUser, completion: Completion
) -> CompleteCardResponse:
    """Completes the card only when every exercise was last answered correctly."""
    already = await completion.complete_card(user.id, body.card_id)
    return CompleteCardResponse(already_completed=True if already else None)
