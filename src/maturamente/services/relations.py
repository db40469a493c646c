"""Flag, favorite and completion relations between users and content.

``RelationService`` is the single entry point for every toggle or
mark-complete endpoint; the content type is a ``ContentKind`` argument
rather than a separate code path per entity.

Two write semantics are offered:

- toggle: cycles the relation on and off (flags, favorites)
- mark: one-directional insert-if-absent (completion); repeating it is
  a no-op that still reports success
"""

from __future__ import annotations

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from maturamente.models.relations import ContentKind
from maturamente.repositories.relation import UserRelationRepository


class RelationService:
    """Relation operations parameterized by content kind."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self._repos: dict[ContentKind, UserRelationRepository] = {}

    def repository(self, kind: ContentKind) -> UserRelationRepository:
        if kind not in self._repos:
            self._repos[kind] = UserRelationRepository.for_kind(self.session, kind)
        return self._repos[kind]

    async def toggle(self, kind: ContentKind, user_id: UUID, content_id: UUID) -> bool:
        """Flip the relation; returns True when it now exists."""
        return await self.repository(kind).toggle(user_id, content_id)

    async def mark(self, kind: ContentKind, user_id: UUID, content_id: UUID) -> bool:
        """Record the relation if absent; returns True when newly recorded."""
        return await self.repository(kind).mark(user_id, content_id)

    async def set_state(
        self, kind: ContentKind, user_id: UUID, content_id: UUID, present: bool
    ) -> None:
        """Force the relation on or off regardless of its current state."""
        repo = self.repository(kind)
        if present:
            await repo.mark(user_id, content_id)
        else:
            await repo.unmark(user_id, content_id)

    async def exists(self, kind: ContentKind, user_id: UUID, content_id: UUID) -> bool:
        return await self.repository(kind).exists(user_id, content_id)

    async def existing(
        self, kind: ContentKind, user_id: UUID, content_ids: Iterable[UUID]
    ) -> set[UUID]:
        """Subset of ``content_ids`` the user holds the relation with."""
        return await self.repository(kind).existing(user_id, content_ids)

    async def list_ids(self, kind: ContentKind, user_id: UUID) -> list[UUID]:
        return await self.repository(kind).all_for_user(user_id)
