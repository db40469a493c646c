"""SQLAlchemy Base model and common mixins.

This module provides:
- Base: Declarative base for all models
- UTCDateTime: timezone-aware timestamp column type
- UUIDPrimaryKeyMixin: UUID primary key for all entities
- CreatedAtMixin / TimestampMixin: audit timestamp columns
- UserRelationMixin: owner column shared by user-to-content relations

Usage:
    from maturamente.models.base import Base, UUIDPrimaryKeyMixin, TimestampMixin

    class MyModel(UUIDPrimaryKeyMixin, TimestampMixin, Base):
        __tablename__ = "my_table"
        name: Mapped[str]
"""

import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import DateTime, ForeignKey, func
from sqlalchemy.engine import Dialect
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column
from sqlalchemy.types import TypeDecorator

from maturamente.core.clock import utcnow


class UTCDateTime(TypeDecorator):
    """DateTime that always round-trips as an aware UTC value.

    SQLite drops the offset on storage; values read back without tzinfo
    are reinterpreted as UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Dialect) -> Any:
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(UTC)
        return value

    def process_result_value(self, value: Any, dialect: Dialect) -> Any:
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    type_annotation_map = {datetime: UTCDateTime}


class UUIDPrimaryKeyMixin:
    """Mixin that adds a UUID primary key column."""

    @declared_attr
    def id(cls) -> Mapped[uuid.UUID]:
        return mapped_column(
            primary_key=True,
            default=uuid.uuid4,
            nullable=False,
        )


class CreatedAtMixin:
    """Mixin that adds a created_at column set on insert."""

    @declared_attr
    def created_at(cls) -> Mapped[datetime]:
        return mapped_column(
            UTCDateTime(),
            default=utcnow,
            server_default=func.now(),
            nullable=False,
        )


class TimestampMixin(CreatedAtMixin):
    """Mixin that adds created_at and updated_at columns.

    - created_at: Set automatically on insert
    - updated_at: Set automatically on insert and update
    """

    @declared_attr
    def updated_at(cls) -> Mapped[datetime]:
        return mapped_column(
            UTCDateTime(),
            default=utcnow,
            server_default=func.now(),
            onupdate=utcnow,
            nullable=False,
        )


class UserRelationMixin(UUIDPrimaryKeyMixin, CreatedAtMixin):
    """Columns shared by every user-to-content relation table.

    Concrete relation models add a ``content_id`` attribute mapped onto
    their own foreign key column (``exercise_id``, ``note_id``, ...) and a
    unique constraint on ``(user_id, <content column>)``.
    """

    @declared_attr
    def user_id(cls) -> Mapped[uuid.UUID]:
        return mapped_column(
            ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        )
