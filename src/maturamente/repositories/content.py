"""Read-side repositories for study content."""

from __future__ import annotations

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import Row, func, select

from maturamente.models.billing import SubjectAccess
from maturamente.models.content import (
    Exercise,
    ExerciseCard,
    Note,
    Simulation,
    Subject,
    Subtopic,
    Topic,
)
from maturamente.repositories.base import BaseRepository


class SubjectRepository(BaseRepository[Subject]):
    """Repository for subjects."""

    async def list_ordered(self) -> list[Subject]:
        result = await self.session.execute(
            select(Subject).order_by(Subject.order_index, Subject.name)
        )
        return list(result.scalars().all())

    async def existing_ids(self, ids: Iterable[UUID]) -> set[UUID]:
        """Return the subset of ``ids`` that name a subject."""
        ids = set(ids)
        if not ids:
            return set()
        result = await self.session.execute(
            select(Subject.id).where(Subject.id.in_(ids))
        )
        return set(result.scalars().all())

    async def get_for_user_by_slug(self, user_id: UUID, slug: str) -> Row | None:
        """A subject the user has access to, with its note count.

        The row holds the ``Subject`` entity, ``user_relation_created_at``
        and ``notes_count``.
        """
        notes_count = (
            select(func.count(Note.id))
            .where(Note.subject_id == Subject.id)
            .correlate(Subject)
            .scalar_subquery()
        )
        result = await self.session.execute(
            select(
                Subject,
                SubjectAccess.created_at.label("user_relation_created_at"),
                notes_count.label("notes_count"),
            )
            .join(SubjectAccess, SubjectAccess.subject_id == Subject.id)
            .where(SubjectAccess.user_id == user_id, Subject.slug == slug)
            .limit(1)
        )
        return result.first()


class TopicRepository(BaseRepository[Topic]):
    """Repository for topics."""


class SubtopicRepository(BaseRepository[Subtopic]):
    """Repository for subtopics."""

    async def ids_for_topic(self, topic_id: UUID) -> list[UUID]:
        result = await self.session.execute(
            select(Subtopic.id)
            .where(Subtopic.topic_id == topic_id)
            .order_by(Subtopic.order_index)
        )
        return list(result.scalars().all())


class NoteRepository(BaseRepository[Note]):
    """Repository for notes."""

    async def get_by_storage_path(self, storage_path: str) -> Note | None:
        result = await self.session.execute(
            select(Note).where(Note.storage_path == storage_path)
        )
        return result.scalar_one_or_none()

    async def titles(self, ids: set[UUID]) -> dict[UUID, str]:
        """Map note ids to titles in one query."""
        if not ids:
            return {}
        result = await self.session.execute(
            select(Note.id, Note.title).where(Note.id.in_(ids))
        )
        return {row.id: row.title for row in result}


class ExerciseCardRepository(BaseRepository[ExerciseCard]):
    """Repository for exercise cards."""


class ExerciseRepository(BaseRepository[Exercise]):
    """Repository for exercises."""

    async def ids_for_card(self, card_id: UUID) -> list[UUID]:
        result = await self.session.execute(
            select(Exercise.id)
            .where(Exercise.exercise_card_id == card_id)
            .order_by(Exercise.order_index)
        )
        return list(result.scalars().all())


class SimulationRepository(BaseRepository[Simulation]):
    """Repository for simulations."""

    async def get_by_slug(self, slug: str) -> Simulation | None:
        result = await self.session.execute(
            select(Simulation).where(Simulation.slug == slug)
        )
        return result.scalar_one_or_none()
