"""Repositories for exercise attempts, simulation attempts and study sessions."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select, update

from maturamente.models.progress import ExerciseAttempt, SimulationAttempt, StudySession
from maturamente.repositories.base import BaseRepository


class ExerciseAttemptRepository(BaseRepository[ExerciseAttempt]):
    """Attempt log for exercises."""

    async def last_attempt_number(self, user_id: UUID, exercise_id: UUID) -> int:
        """Highest attempt number so far, 0 if never attempted."""
        result = await self.session.execute(
            select(func.max(ExerciseAttempt.attempt)).where(
                ExerciseAttempt.user_id == user_id,
                ExerciseAttempt.exercise_id == exercise_id,
            )
        )
        return result.scalar_one_or_none() or 0

    async def latest_results(
        self, user_id: UUID, exercise_ids: list[UUID]
    ) -> dict[UUID, bool]:
        """Correctness of the most recent attempt for each attempted exercise."""
        if not exercise_ids:
            return {}
        latest = (
            select(
                ExerciseAttempt.exercise_id,
                func.max(ExerciseAttempt.attempt).label("attempt"),
            )
            .where(
                ExerciseAttempt.user_id == user_id,
                ExerciseAttempt.exercise_id.in_(exercise_ids),
            )
            .group_by(ExerciseAttempt.exercise_id)
            .subquery()
        )
        result = await self.session.execute(
            select(ExerciseAttempt.exercise_id, ExerciseAttempt.is_correct).join(
                latest,
                (ExerciseAttempt.exercise_id == latest.c.exercise_id)
                & (ExerciseAttempt.attempt == latest.c.attempt),
            ).where(ExerciseAttempt.user_id == user_id)
        )
        return {row.exercise_id: row.is_correct for row in result}

    async def has_correct(self, user_id: UUID, exercise_id: UUID) -> bool:
        result = await self.session.execute(
            select(ExerciseAttempt.id)
            .where(
                ExerciseAttempt.user_id == user_id,
                ExerciseAttempt.exercise_id == exercise_id,
                ExerciseAttempt.is_correct.is_(True),
            )
            .limit(1)
        )
        return result.scalar_one_or_none() is not None


class SimulationAttemptRepository(BaseRepository[SimulationAttempt]):
    """Attempt log for simulations."""

    async def count_for(self, user_id: UUID, simulation_id: UUID) -> int:
        result = await self.session.execute(
            select(func.count()).where(
                SimulationAttempt.user_id == user_id,
                SimulationAttempt.simulation_id == simulation_id,
            )
        )
        return result.scalar_one()

    async def latest_open(
        self, user_id: UUID, simulation_id: UUID
    ) -> SimulationAttempt | None:
        """Most recent attempt that has not been completed yet."""
        result = await self.session.execute(
            select(SimulationAttempt)
            .where(
                SimulationAttempt.user_id == user_id,
                SimulationAttempt.simulation_id == simulation_id,
                SimulationAttempt.completed_at.is_(None),
            )
            .order_by(SimulationAttempt.attempt.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()


class StudySessionRepository(BaseRepository[StudySession]):
    """Study session storage with ownership-scoped updates."""

    async def latest_for_note(
        self, user_id: UUID, note_id: UUID
    ) -> StudySession | None:
        """Most recently started session of the user on the note."""
        result = await self.session.execute(
            select(StudySession)
            .where(
                StudySession.user_id == user_id,
                StudySession.note_id == note_id,
            )
            .order_by(StudySession.started_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def touch(
        self, session_id: UUID, user_id: UUID, when: datetime
    ) -> StudySession | None:
        """Move ``last_active_at`` forward on a session the user owns.

        The ownership check and the write are one statement; a session id
        belonging to another user matches no row.

        Returns:
            The updated session, or None if no owned session matched
        """
        result = await self.session.execute(
            update(StudySession)
            .where(
                StudySession.id == session_id,
                StudySession.user_id == user_id,
            )
            .values(last_active_at=when)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            return None
        study_session = await self.get_by_id(session_id)
        if study_session is not None:
            await self.session.refresh(study_session)
        return study_session

    async def list_for_user(
        self,
        user_id: UUID,
        *,
        started_after: datetime | None = None,
        limit: int | None = None,
    ) -> list[StudySession]:
        """Sessions of a user, most recently started first."""
        query = select(StudySession).where(StudySession.user_id == user_id)
        if started_after is not None:
            query = query.where(StudySession.started_at >= started_after)
        query = query.order_by(StudySession.started_at.desc())
        if limit is not None:
            query = query.limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars().all())
