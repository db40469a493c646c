"""The subject catalogue and the subjects a user has unlocked."""

from __future__ import annotations

from typing import Any
from uuid import UUID

from maturamente.core.exceptions import SubjectNotFoundError
from maturamente.models.content import Subject
from maturamente.repositories.content import SubjectRepository


class SubjectService:
    def __init__(self, subject_repo: SubjectRepository) -> None:
        self.subject_repo = subject_repo

    async def list_subjects(self) -> list[Subject]:
        return await self.subject_repo.list_ordered()

    async def get_user_subject(self, user_id: UUID, slug: str) -> dict[str, Any]:
        """A subject the user has access to, with when it was unlocked.

        Raises:
            SubjectNotFoundError: If the slug is unknown or not unlocked
        """
        row = await self.subject_repo.get_for_user_by_slug(user_id, slug)
        if row is None:
            raise SubjectNotFoundError(slug=slug)

        subject = row.Subject
        return {
            "id": subject.id,
            "name": subject.name,
            "description": subject.description,
            "slug": subject.slug,
            "color": subject.color,
            "maturita": subject.maturita,
            "orderIndex": subject.order_index,
            "createdAt": subject.created_at,
            "userRelationCreatedAt": row.user_relation_created_at,
            "notesCount": row.notes_count,
        }
