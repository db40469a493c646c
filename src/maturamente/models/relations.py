"""User-to-content relation tables.

Every table here has the same shape: ``(id, user_id, <content>_id,
created_at)`` with a unique constraint on the pair. The content column is
exposed on the model as ``content_id`` so a single repository can serve
all of them; see ``maturamente.repositories.relation``.

Flags (toggled on and off):
    flagged_exercises, flagged_exercises_cards, flagged_notes,
    flagged_simulations

Completion (one-directional):
    completed_topics, completed_subtopics, completed_exercises_cards
"""

from __future__ import annotations

import uuid
from enum import Enum

from sqlalchemy import ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from maturamente.models.base import Base, UserRelationMixin


class ContentKind(str, Enum):
    """Relations a user can hold with a piece of content."""

    FLAGGED_EXERCISE = "flagged_exercise"
    FLAGGED_CARD = "flagged_card"
    FAVORITE_NOTE = "favorite_note"
    FLAGGED_SIMULATION = "flagged_simulation"
    COMPLETED_TOPIC = "completed_topic"
    COMPLETED_SUBTOPIC = "completed_subtopic"
    COMPLETED_CARD = "completed_card"


def _content_fk(column: str, target: str) -> Mapped[uuid.UUID]:
    return mapped_column(
        column,
        ForeignKey(target, ondelete="CASCADE"),
        nullable=False,
        index=True,
    )


class FlaggedExercise(UserRelationMixin, Base):
    __tablename__ = "flagged_exercises"
    __table_args__ = (UniqueConstraint("user_id", "exercise_id"),)

    content_id: Mapped[uuid.UUID] = _content_fk("exercise_id", "exercises.id")


class FlaggedExerciseCard(UserRelationMixin, Base):
    __tablename__ = "flagged_exercises_cards"
    __table_args__ = (UniqueConstraint("user_id", "exercise_card_id"),)

    content_id: Mapped[uuid.UUID] = _content_fk(
        "exercise_card_id", "exercises_cards.id"
    )


class FlaggedNote(UserRelationMixin, Base):
    __tablename__ = "flagged_notes"
    __table_args__ = (UniqueConstraint("user_id", "note_id"),)

    content_id: Mapped[uuid.UUID] = _content_fk("note_id", "notes.id")


class FlaggedSimulation(UserRelationMixin, Base):
    __tablename__ = "flagged_simulations"
    __table_args__ = (UniqueConstraint("user_id", "simulation_id"),)

    content_id: Mapped[uuid.UUID] = _content_fk("simulation_id", "simulations.id")


class CompletedTopic(UserRelationMixin, Base):
    __tablename__ = "completed_topics"
    __table_args__ = (UniqueConstraint("user_id", "topic_id"),)

    content_id: Mapped[uuid.UUID] = _content_fk("topic_id", "topics.id")


class CompletedSubtopic(UserRelationMixin, Base):
    __tablename__ = "completed_subtopics"
    __table_args__ = (UniqueConstraint("user_id", "subtopic_id"),)

    content_id: Mapped[uuid.UUID] = _content_fk("subtopic_id", "subtopics.id")


class CompletedExerciseCard(UserRelationMixin, Base):
    __tablename__ = "completed_exercises_cards"
    __table_args__ = (UniqueConstraint("user_id", "exercise_card_id"),)

    content_id: Mapped[uuid.UUID] = _content_fk(
        "exercise_card_id", "exercises_cards.id"
    )


RELATION_MODELS: dict[ContentKind, type[UserRelationMixin]] = {
    ContentKind.FLAGGED_EXERCISE: FlaggedExercise,
    ContentKind.FLAGGED_CARD: FlaggedExerciseCard,
    ContentKind.FAVORITE_NOTE: FlaggedNote,
    ContentKind.FLAGGED_SIMULATION: FlaggedSimulation,
    ContentKind.COMPLETED_TOPIC: CompletedTopic,
    ContentKind.COMPLETED_SUBTOPIC: CompletedSubtopic,
    ContentKind.COMPLETED_CARD: CompletedExerciseCard,
}
