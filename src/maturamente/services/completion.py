"""Completion tracking for theory and exercises.

Completion only moves forward: topics, subtopics and exercise cards are
recorded through ``RelationService.mark`` and never un-marked here.
Exercises keep a full attempt log instead; an exercise counts as done
when its latest attempt was correct.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from uuid import UUID

import structlog

from maturamente.core.exceptions import (
    ExerciseCardNotFoundError,
    ExerciseNotFoundError,
    IncompleteCardError,
    TopicNotFoundError,
    ValidationError,
)
from maturamente.models.progress import ExerciseAttempt
from maturamente.models.relations import ContentKind
from maturamente.repositories.content import (
    ExerciseRepository,
    SubtopicRepository,
    TopicRepository,
)
from maturamente.repositories.progress import ExerciseAttemptRepository
from maturamente.services.relations import RelationService

logger = structlog.get_logger(__name__)


class ItemType(str, Enum):
    """Item types accepted by the completion lookup."""

    TOPIC = "topic"
    SUBTOPIC = "subtopic"
    EXERCISE = "exercise"
    EXERCISE_CARD = "exerciseCard"


@dataclass(frozen=True)
class CardProgress:
    """State of a card after an exercise attempt."""

    exercise_completed: bool
    all_completed: bool
    all_correct: bool
    correct_count: int
    total_exercises: int


@dataclass(frozen=True)
class TopicCompletion:
    already_completed: bool
    completed_subtopic_ids: list[UUID]


class CompletionService:
    """Mark-complete operations and completion lookups."""

    def __init__(
        self,
        relations: RelationService,
        topic_repo: TopicRepository,
        subtopic_repo: SubtopicRepository,
        exercise_repo: ExerciseRepository,
        attempt_repo: ExerciseAttemptRepository,
    ) -> None:
        self.relations = relations
        self.topic_repo = topic_repo
        self.subtopic_repo = subtopic_repo
        self.exercise_repo = exercise_repo
        self.attempt_repo = attempt_repo

    async def complete_subtopic(self, user_id: UUID, subtopic_id: UUID) -> None:
        """Record the subtopic as completed; repeated calls change nothing."""
        inserted = await self.relations.mark(
            ContentKind.COMPLETED_SUBTOPIC, user_id, subtopic_id
        )
        logger.info(
            "subtopic_completed",
            subtopic_id=str(subtopic_id),
            user_id=str(user_id),
            newly_completed=inserted,
        )

    async def complete_topic(self, user_id: UUID, topic_id: UUID) -> TopicCompletion:
        """Mark a topic and every one of its subtopics as completed.

        Raises:
            TopicNotFoundError: If the topic does not exist
        """
        if not await self.topic_repo.exists(topic_id):
            raise TopicNotFoundError(details={"topic_id": str(topic_id)})

        if await self.relations.exists(ContentKind.COMPLETED_TOPIC, user_id, topic_id):
            return TopicCompletion(already_completed=True, completed_subtopic_ids=[])

        await self.relations.mark(ContentKind.COMPLETED_TOPIC, user_id, topic_id)
        subtopic_ids = await self.subtopic_repo.ids_for_topic(topic_id)
        for subtopic_id in subtopic_ids:
            await self.relations.mark(
                ContentKind.COMPLETED_SUBTOPIC, user_id, subtopic_id
            )

        logger.info(
            "topic_completed",
            topic_id=str(topic_id),
            user_id=str(user_id),
            subtopics=len(subtopic_ids),
        )
        return TopicCompletion(
            already_completed=False, completed_subtopic_ids=subtopic_ids
        )

    async def record_exercise_attempt(
        self, user_id: UUID, exercise_id: UUID, is_correct: bool
    ) -> CardProgress:
        """Log an answer and report progress on the exercise's card.

        Raises:
            ExerciseNotFoundError: If the exercise does not exist
        """
        exercise = await self.exercise_repo.get_by_id(exercise_id)
        if exercise is None:
            raise ExerciseNotFoundError(details={"exercise_id": str(exercise_id)})

        attempt = await self.attempt_repo.last_attempt_number(user_id, exercise_id) + 1
        await self.attempt_repo.create(
            ExerciseAttempt(
                user_id=user_id,
                exercise_id=exercise_id,
                is_correct=is_correct,
                attempt=attempt,
            )
        )

        card_exercises = await self.exercise_repo.ids_for_card(exercise.exercise_card_id)
        latest = await self.attempt_repo.latest_results(user_id, card_exercises)
        correct_count = sum(1 for ok in latest.values() if ok)

        return CardProgress(
            exercise_completed=is_correct,
            all_completed=len(latest) == len(card_exercises),
            all_correct=correct_count == len(card_exercises),
            correct_count=correct_count,
            total_exercises=len(card_exercises),
        )

    async def complete_card(self, user_id: UUID, card_id: UUID) -> bool:
        """Mark a card completed once every exercise's latest attempt is correct.

        Returns:
            True if the card was already completed before this call

        Raises:
            ExerciseCardNotFoundError: If the card has no exercises
            IncompleteCardError: If some exercise is not yet answered correctly
        """
        if await self.relations.exists(ContentKind.COMPLETED_CARD, user_id, card_id):
            return True

        exercise_ids = await self.exercise_repo.ids_for_card(card_id)
        if not exercise_ids:
            raise ExerciseCardNotFoundError(details={"card_id": str(card_id)})

        latest = await self.attempt_repo.latest_results(user_id, exercise_ids)
        if not all(latest.get(exercise_id, False) for exercise_id in exercise_ids):
            raise IncompleteCardError()

        await self.relations.mark(ContentKind.COMPLETED_CARD, user_id, card_id)
        logger.info("card_completed", card_id=str(card_id), user_id=str(user_id))
        return False

    async def is_completed(self, user_id: UUID, item_type: str, item_id: UUID) -> bool:
        """Completion lookup for a single item.

        Raises:
            ValidationError: If ``item_type`` is not a known item type
        """
        try:
            kind = ItemType(item_type)
        except ValueError:
            raise ValidationError("Invalid item type", field="itemType") from None

        if kind is ItemType.EXERCISE:
            return await self.attempt_repo.has_correct(user_id, item_id)

        relation = {
            ItemType.TOPIC: ContentKind.COMPLETED_TOPIC,
            ItemType.SUBTOPIC: ContentKind.COMPLETED_SUBTOPIC,
            ItemType.EXERCISE_CARD: ContentKind.COMPLETED_CARD,
        }[kind]
        return await self.relations.exists(relation, user_id, item_id)

    async def completed_theory(self, user_id: UUID) -> tuple[list[UUID], list[UUID]]:
        """All completed topic and subtopic ids of the user."""
        topics = await self.relations.list_ids(ContentKind.COMPLETED_TOPIC, user_id)
        subtopics = await self.relations.list_ids(
            ContentKind.COMPLETED_SUBTOPIC, user_id
        )
        return topics, subtopics
