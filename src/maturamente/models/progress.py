"""Progress records: exercise attempts, simulation attempts, study sessions.

Unlike the relation tables these keep history; a user may have many rows
per content item.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, Index, Integer
from sqlalchemy.orm import Mapped, mapped_column

from maturamente.models.base import Base, CreatedAtMixin, UUIDPrimaryKeyMixin


class ExerciseAttempt(UUIDPrimaryKeyMixin, CreatedAtMixin, Base):
    """One answer submitted for an exercise.

    Attributes:
        is_correct: Whether the answer was right
        attempt: 1-based attempt number per (user, exercise)
    """

    __tablename__ = "completed_exercises"
    __table_args__ = (
        Index("ix_completed_exercises_user_exercise", "user_id", "exercise_id"),
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    exercise_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("exercises.id", ondelete="CASCADE"), nullable=False
    )
    is_correct: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    attempt: Mapped[int] = mapped_column(Integer, nullable=False, default=1)


class SimulationAttempt(UUIDPrimaryKeyMixin, CreatedAtMixin, Base):
    """One sitting of a simulation.

    ``completed_at`` stays NULL while the attempt is in progress.
    """

    __tablename__ = "completed_simulations"
    __table_args__ = (
        Index("ix_completed_simulations_user_simulation", "user_id", "simulation_id"),
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    simulation_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("simulations.id", ondelete="CASCADE"), nullable=False
    )
    attempt: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    started_at: Mapped[datetime] = mapped_column(nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)


class StudySession(UUIDPrimaryKeyMixin, Base):
    """A continuous stretch of reading one note.

    A session is extended by pings that move ``last_active_at`` forward.
    There is no closed marker: whether a session is still running is read
    from how recent ``last_active_at`` is.
    """

    __tablename__ = "note_study_sessions"
    __table_args__ = (
        Index("ix_note_study_sessions_user_note", "user_id", "note_id", "started_at"),
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    note_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("notes.id", ondelete="CASCADE"), nullable=False
    )
    started_at: Mapped[datetime] = mapped_column(nullable=False)
    last_active_at: Mapped[datetime] = mapped_column(nullable=False)

    @property
    def duration_minutes(self) -> int:
        """Length of the session in whole minutes, never less than one."""
        seconds = (self.last_active_at - self.started_at).total_seconds()
        return max(1, round(seconds / 60))
