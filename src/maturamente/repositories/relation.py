"""Repository for user-to-content relations (flags, favorites, completion).

One class serves every relation table in ``maturamente.models.relations``;
the table is picked by ``ContentKind``. All writes are single statements
that lean on the ``(user_id, content)`` unique constraint, so concurrent
requests for the same pair never produce duplicate rows:

- ``mark`` is ``INSERT .. ON CONFLICT DO NOTHING``
- ``unmark`` is a conditional ``DELETE``
- ``toggle`` deletes first and inserts only when nothing was deleted
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from typing import Any

from sqlalchemy import Column, delete, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from maturamente.core.clock import utcnow
from maturamente.core.logging import get_logger
from maturamente.models.relations import RELATION_MODELS, ContentKind
from maturamente.repositories.base import BaseRepository

logger = get_logger(__name__)

_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class UserRelationRepository(BaseRepository[Any]):
    """Relation operations for one content kind.

    Usage:
        ```python
        flags = UserRelationRepository.for_kind(session, ContentKind.FLAGGED_EXERCISE)
        flagged = await flags.toggle(user_id, exercise_id)
        ```
    """

    def __init__(self, session: AsyncSession, kind: ContentKind) -> None:
        super().__init__(session)
        self.kind = kind
        self.model_class = RELATION_MODELS[kind]
        self.table = self.model_class.__table__
        self.content_column: Column = self.model_class.content_id.property.columns[0]

    @classmethod
    def for_kind(cls, session: AsyncSession, kind: ContentKind) -> UserRelationRepository:
        return cls(session, kind)

    def _pair(self, user_id: uuid.UUID, content_id: uuid.UUID) -> list[Any]:
        return [
            self.table.c.user_id == user_id,
            self.content_column == content_id,
        ]

    async def exists(self, user_id: uuid.UUID, content_id: uuid.UUID) -> bool:  # type: ignore[override]
        """Check whether the user holds this relation with the content."""
        result = await self.session.execute(
            select(self.table.c.id).where(*self._pair(user_id, content_id)).limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def existing(
        self, user_id: uuid.UUID, content_ids: Iterable[uuid.UUID]
    ) -> set[uuid.UUID]:
        """Return the subset of ``content_ids`` the user holds this relation with.

        Runs a single query regardless of how many ids are passed.
        """
        ids = set(content_ids)
        if not ids:
            return set()
        result = await self.session.execute(
            select(self.content_column).where(
                self.table.c.user_id == user_id,
                self.content_column.in_(ids),
            )
        )
        return set(result.scalars().all())

    async def all_for_user(self, user_id: uuid.UUID) -> list[uuid.UUID]:
        """All content ids related to the user, newest first."""
        result = await self.session.execute(
            select(self.content_column)
            .where(self.table.c.user_id == user_id)
            .order_by(self.table.c.created_at.desc())
        )
        return list(result.scalars().all())

    async def mark(self, user_id: uuid.UUID, content_id: uuid.UUID) -> bool:
        """Insert the relation unless it already exists.

        Returns:
            True if a row was inserted, False if it was already there
        """
        values = {
            self.table.c.id: uuid.uuid4(),
            self.table.c.user_id: user_id,
            self.content_column: content_id,
            self.table.c.created_at: utcnow(),
        }

        dialect_insert = _UPSERT_DIALECTS.get(self.dialect_name)
        if dialect_insert is not None:
            stmt = (
                dialect_insert(self.table)
                .values(values)
                .on_conflict_do_nothing()
                .returning(self.table.c.id)
            )
            result = await self.session.execute(stmt)
            inserted = result.scalar_one_or_none() is not None
        else:
            inserted = await self._insert_in_savepoint(values)

        logger.debug(
            "relation_marked",
            kind=self.kind.value,
            user_id=str(user_id),
            content_id=str(content_id),
            inserted=inserted,
        )
        return inserted

    async def _insert_in_savepoint(self, values: dict[Any, Any]) -> bool:
        try:
            async with self.session.begin_nested():
                await self.session.execute(self.table.insert().values(values))
        except IntegrityError:
            return False
        return True

    async def unmark(self, user_id: uuid.UUID, content_id: uuid.UUID) -> bool:
        """Delete the relation if present.

        Returns:
            True if a row was deleted
        """
        result = await self.session.execute(
            delete(self.table).where(*self._pair(user_id, content_id))
        )
        return result.rowcount > 0

    async def toggle(self, user_id: uuid.UUID, content_id: uuid.UUID) -> bool:
        """Flip the relation and return the new state.

        Returns:
            True if the relation now exists, False if it was removed
        """
        if await self.unmark(user_id, content_id):
            state = False
        else:
            # A concurrent toggle may have inserted first; either way the
            # relation exists afterwards.
            await self.mark(user_id, content_id)
            state = True

        logger.info(
            "relation_toggled",
            kind=self.kind.value,
            user_id=str(user_id),
            content_id=str(content_id),
            state=state,
        )
        return state
