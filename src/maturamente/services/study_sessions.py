"""Study session tracking and study-time statistics.

A client reading a note calls ``start`` when the note opens and pings the
returned session while the user keeps reading. Re-opening the same note
within ``CONTINUATION_WINDOW`` of the last ping resumes the previous
session instead of starting a new one, so a reload does not split one
reading stretch into many short records.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any
from uuid import UUID

import structlog

from maturamente.core.clock import Clock, utcnow
from maturamente.core.exceptions import StudySessionNotFoundError, ValidationError
from maturamente.models.progress import StudySession
from maturamente.repositories.content import NoteRepository
from maturamente.repositories.progress import StudySessionRepository

logger = structlog.get_logger(__name__)

CONTINUATION_WINDOW = timedelta(minutes=5)


class SessionAction(str, Enum):
    """Liveness actions a client may send for a running session."""

    PING = "ping"
    END = "end"


class StatsType(str, Enum):
    OVERALL = "overall"
    BY_NOTE = "by-note"
    RECENT = "recent"
    DAILY = "daily"


@dataclass(frozen=True)
class SessionStats:
    """Aggregate over a group of sessions."""

    total_sessions: int
    total_time_minutes: int
    average_time_minutes: int
    last_studied_at: datetime | None

    @classmethod
    def from_sessions(cls, sessions: list[StudySession]) -> SessionStats:
        if not sessions:
            return cls(0, 0, 0, None)
        total = sum(s.duration_minutes for s in sessions)
        return cls(
            total_sessions=len(sessions),
            total_time_minutes=total,
            average_time_minutes=round(total / len(sessions)),
            last_studied_at=max(s.started_at for s in sessions),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalSessions": self.total_sessions,
            "totalTimeMinutes": self.total_time_minutes,
            "averageTimeMinutes": self.average_time_minutes,
            "lastStudiedAt": self.last_studied_at,
        }


class StudySessionService:
    """Start, extend and summarize study sessions.

    Usage:
        ```python
        service = StudySessionService(session_repo, note_repo, clock=utcnow)
        study_session = await service.start(user_id, note_id)
        await service.touch(user_id, study_session.id, SessionAction.PING)
        ```
    """

    def __init__(
        self,
        session_repo: StudySessionRepository,
        note_repo: NoteRepository,
        clock: Clock = utcnow,
    ) -> None:
        self.session_repo = session_repo
        self.note_repo = note_repo
        self.clock = clock

    async def start(self, user_id: UUID, note_id: UUID) -> StudySession:
        """Resume the user's recent session on the note or open a new one.

        A session whose last activity is less than ``CONTINUATION_WINDOW``
        ago is returned unchanged, without any write.
        """
        now = self.clock()
        latest = await self.session_repo.latest_for_note(user_id, note_id)
        if latest is not None and now - latest.last_active_at < CONTINUATION_WINDOW:
            logger.debug(
                "study_session_resumed",
                session_id=str(latest.id),
                note_id=str(note_id),
            )
            return latest

        study_session = await self.session_repo.create(
            StudySession(
                user_id=user_id,
                note_id=note_id,
                started_at=now,
                last_active_at=now,
            )
        )
        logger.info(
            "study_session_created",
            session_id=str(study_session.id),
            note_id=str(note_id),
            user_id=str(user_id),
        )
        return study_session

    async def touch(
        self, user_id: UUID, session_id: UUID, action: SessionAction
    ) -> StudySession:
        """Stamp activity on a session owned by the user.

        ``end`` records the final activity time exactly like ``ping``;
        sessions carry no separate closed marker.

        Raises:
            StudySessionNotFoundError: If the session does not exist or
                belongs to another user
        """
        study_session = await self.session_repo.touch(
            session_id, user_id, self.clock()
        )
        if study_session is None:
            raise StudySessionNotFoundError(session_id=str(session_id))

        logger.debug(
            "study_session_touched",
            session_id=str(session_id),
            action=action.value,
        )
        return study_session

    # -------------------------------------------------------------------------
    # Statistics
    # -------------------------------------------------------------------------

    async def stats(
        self,
        user_id: UUID,
        stats_type: str,
        *,
        limit: int = 10,
        days: int = 30,
    ) -> Any:
        """Dispatch a stats request by type name.

        Raises:
            ValidationError: If ``stats_type`` is not a known type
        """
        try:
            kind = StatsType(stats_type)
        except ValueError:
            raise ValidationError("Invalid stats type", field="type") from None

        if kind is StatsType.OVERALL:
            return await self.overall(user_id)
        if kind is StatsType.BY_NOTE:
            return await self.by_note(user_id)
        if kind is StatsType.RECENT:
            return await self.recent(user_id, limit=limit)
        return await self.daily(user_id, days=days)

    async def overall(self, user_id: UUID) -> dict[str, Any]:
        sessions = await self.session_repo.list_for_user(user_id)
        return SessionStats.from_sessions(sessions).to_dict()

    async def by_note(self, user_id: UUID) -> list[dict[str, Any]]:
        """Per-note totals, the most recently studied note first."""
        sessions = await self.session_repo.list_for_user(user_id)
        grouped: dict[UUID, list[StudySession]] = defaultdict(list)
        for s in sessions:
            grouped[s.note_id].append(s)
        titles = await self.note_repo.titles(set(grouped))

        return [
            {
                "noteId": note_id,
                "noteTitle": titles.get(note_id),
                **SessionStats.from_sessions(note_sessions).to_dict(),
            }
            for note_id, note_sessions in grouped.items()
        ]

    async def recent(self, user_id: UUID, *, limit: int = 10) -> list[dict[str, Any]]:
        sessions = await self.session_repo.list_for_user(user_id, limit=limit)
        titles = await self.note_repo.titles({s.note_id for s in sessions})
        return [
            {
                "sessionId": s.id,
                "noteId": s.note_id,
                "noteTitle": titles.get(s.note_id),
                "startedAt": s.started_at,
                "lastActiveAt": s.last_active_at,
                "durationMinutes": s.duration_minutes,
            }
            for s in sessions
        ]

    async def daily(self, user_id: UUID, *, days: int = 30) -> list[dict[str, Any]]:
        """Study time per calendar day (UTC) over the last ``days`` days."""
        since = self.clock() - timedelta(days=days)
        sessions = await self.session_repo.list_for_user(user_id, started_after=since)

        by_day: dict[date, list[StudySession]] = defaultdict(list)
        for s in sessions:
            by_day[s.started_at.date()].append(s)

        result = []
        for day in sorted(by_day):
            stats = SessionStats.from_sessions(by_day[day])
            result.append(
                {
                    "date": day.isoformat(),
                    "totalTimeMinutes": stats.total_time_minutes,
                    "sessionCount": stats.total_sessions,
                }
            )
        return result
