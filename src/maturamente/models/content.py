"""Study content: subjects, theory, notes, exercises and simulations.

Content is authored elsewhere and is read-only from the API's point of
view. Users relate to it through the tables in ``relations`` and
``progress``.
"""

from __future__ import annotations

import uuid

from sqlalchemy import Boolean, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from maturamente.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class Subject(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A school subject sold as one unit of a custom plan."""

    __tablename__ = "subjects"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    order_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    color: Mapped[str] = mapped_column(String(20), nullable=False, default="#000000")
    maturita: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class Topic(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A theory topic within a subject."""

    __tablename__ = "topics"

    subject_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("subjects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    order_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class Subtopic(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A section of a topic."""

    __tablename__ = "subtopics"

    topic_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("topics.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    order_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class Note(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A PDF note stored in object storage.

    Attributes:
        storage_path: Object path inside the notes bucket
    """

    __tablename__ = "notes"

    subject_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("subjects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    storage_path: Mapped[str] = mapped_column(
        String(1024), unique=True, nullable=False
    )


class ExerciseCard(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A group of exercises attached to a subtopic."""

    __tablename__ = "exercises_cards"

    subtopic_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("subtopics.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    difficulty: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    order_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class Exercise(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A single exercise belonging to a card."""

    __tablename__ = "exercises"

    exercise_card_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("exercises_cards.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    question: Mapped[str] = mapped_column(Text, nullable=False, default="")
    solution: Mapped[str] = mapped_column(Text, nullable=False, default="")
    order_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class Simulation(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A past exam paper, addressed publicly by slug."""

    __tablename__ = "simulations"

    subject_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("subjects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(
        String(255), unique=True, nullable=False, index=True
    )
    year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    pdf_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
