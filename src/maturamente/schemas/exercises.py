"""Schemas for exercise, card and theory progress endpoints."""

from __future__ import annotations

from uuid import UUID

from pydantic import Field

from maturamente.schemas.common import BaseSchema

# =============================================================================
# Flags
# =============================================================================


class FlagExerciseRequest(BaseSchema):
    exercise_id: UUID


class FlagCardRequest(BaseSchema):
    card_id: UUID


class FlagToggleResponse(BaseSchema):
    """Result of a flag toggle with a human-readable message."""

    message: str
    flagged: bool


class FlagStatusResponse(BaseSchema):
    flagged: bool


class FlaggedBulkResponse(BaseSchema):
    """Flagged subsets of the requested ids.

    A key is omitted when its query parameter was not given.
    """

    flagged_exercises: list[UUID] | None = None
    flagged_cards: list[UUID] | None = None


class FlaggedCardsResponse(BaseSchema):
    flagged_card_ids: list[UUID]


class FlaggedExercisesResponse(BaseSchema):
    flagged_exercise_ids: list[UUID]


# =============================================================================
# Completion
# =============================================================================


class CompleteExerciseRequest(BaseSchema):
    exercise_id: UUID
    is_correct: bool


class CompleteExerciseResponse(BaseSchema):
    """Progress on the exercise's card after recording an answer."""

    success: bool = True
    exercise_completed: bool
    all_completed: bool
    all_correct: bool
    correct_count: int
    total_exercises: int


class CompleteCardRequest(BaseSchema):
    card_id: UUID


class CompleteCardResponse(BaseSchema):
    success: bool = True
    card_completed: bool = True
    already_completed: bool | None = None


class CompleteSubtopicRequest(BaseSchema):
    subtopic_id: UUID = Field(alias="subtopic_id")


class CompleteTopicRequest(BaseSchema):
    topic_id: UUID


class CompleteTopicResponse(BaseSchema):
    message: str
    completed_subtopic_ids: list[UUID] | None = None
