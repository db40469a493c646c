"""Generic base repository with async CRUD operations.

This module provides a generic repository pattern for SQLAlchemy models:
- BaseRepository[T]: Generic class for standard CRUD operations
- All methods are async and use SQLAlchemy 2.0 style

Usage:
    from maturamente.repositories.base import BaseRepository
    from maturamente.models import Note

    class NoteRepository(BaseRepository[Note]):
        pass

    repo = NoteRepository(session)
    note = await repo.get_by_id(note_id)
"""

from typing import Any, Generic, TypeVar
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from maturamente.models.base import Base

# Type variable for model classes
T = TypeVar("T", bound=Base)


class BaseRepository(Generic[T]):
    """Generic repository providing async CRUD operations.

    Type Parameters:
        T: The SQLAlchemy model class

    Attributes:
        session: The async database session
        model_class: The model class for this repository
    """

    model_class: type[T]

    def __init__(self, session: AsyncSession) -> None:
        """Initialize the repository with a database session.

        Args:
            session: Async database session
        """
        self.session = session

    def __init_subclass__(cls, **kwargs: Any) -> None:
        """Extract model class from Generic type parameter."""
        super().__init_subclass__(**kwargs)
        for base in cls.__orig_bases__:  # type: ignore[attr-defined]
            if hasattr(base, "__args__"):
                arg = base.__args__[0]
                if not isinstance(arg, TypeVar):
                    cls.model_class = arg
                break

    @property
    def dialect_name(self) -> str:
        """Name of the SQL dialect the session is bound to."""
        return self.session.get_bind().dialect.name

    async def get_by_id(self, id: UUID) -> T | None:
        """Get a single entity by its UUID.

        Args:
            id: The entity's UUID

        Returns:
            The entity if found, None otherwise
        """
        result = await self.session.execute(
            select(self.model_class).where(self.model_class.id == id)
        )
        return result.scalar_one_or_none()

    async def create(self, entity: T) -> T:
        """Create a new entity.

        Args:
            entity: The entity to create

        Returns:
            The created entity with generated fields (id, timestamps)
        """
        self.session.add(entity)
        await self.session.flush()
        await self.session.refresh(entity)
        return entity

    async def update(self, entity: T) -> T:
        """Flush pending changes on an entity and reload it."""
        await self.session.flush()
        await self.session.refresh(entity)
        return entity

    async def delete(self, entity: T) -> None:
        """Permanently delete an entity from the database."""
        await self.session.delete(entity)
        await self.session.flush()

    async def exists(self, id: UUID) -> bool:
        """Check if an entity exists.

        Args:
            id: The entity's UUID

        Returns:
            True if exists, False otherwise
        """
        result = await self.session.execute(
            select(func.count())
            .select_from(self.model_class)
            .where(self.model_class.id == id)
        )
        return result.scalar_one() > 0
