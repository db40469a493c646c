"""Tests for the study session endpoints under /api/notes/study-session."""

import uuid
from datetime import datetime

import pytest
from httpx import AsyncClient

from maturamente.models import StudySession


def parse_time(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


async def start_session(client: AsyncClient, note_id: uuid.UUID) -> dict:
    response = await client.post(
        "/api/notes/study-session", json={"noteId": str(note_id)}
    )
    assert response.status_code == 200
    return response.json()


@pytest.fixture
async def note(seed):
    return await seed.note(await seed.subject())


# =============================================================================
# Start / Resume Tests
# =============================================================================


class TestStartStudySession:
    """Tests for POST /api/notes/study-session."""

    async def test_creates_session(
        self, authenticated_client: AsyncClient, note, clock, count_rows
    ) -> None:
        data = await start_session(authenticated_client, note.id)

        assert uuid.UUID(data["sessionId"])
        assert parse_time(data["startedAt"]) == clock()
        assert await count_rows(StudySession) == 1

    async def test_resumes_within_window(
        self, authenticated_client: AsyncClient, note, clock, count_rows
    ) -> None:
        first = await start_session(authenticated_client, note.id)
        clock.advance(minutes=4, seconds=59)

        second = await start_session(authenticated_client, note.id)

        assert second == first
        assert await count_rows(StudySession) == 1

    async def test_new_session_after_window(
        self, authenticated_client: AsyncClient, note, clock, count_rows
    ) -> None:
        first = await start_session(authenticated_client, note.id)
        clock.advance(minutes=5)

        second = await start_session(authenticated_client, note.id)

        assert second["sessionId"] != first["sessionId"]
        assert parse_time(second["startedAt"]) == clock()
        assert await count_rows(StudySession) == 2

    async def test_window_counts_from_last_ping(
        self, authenticated_client: AsyncClient, note, clock
    ) -> None:
        first = await start_session(authenticated_client, note.id)
        clock.advance(minutes=4)
        await authenticated_client.patch(
            f"/api/notes/study-session/{first['sessionId']}", json={"action": "ping"}
        )
        clock.advance(minutes=4)

        second = await start_session(authenticated_client, note.id)

        assert second["sessionId"] == first["sessionId"]

    async def test_other_note_gets_own_session(
        self, authenticated_client: AsyncClient, seed, note, count_rows
    ) -> None:
        other_note = await seed.note(await seed.subject("Fisica"))

        first = await start_session(authenticated_client, note.id)
        second = await start_session(authenticated_client, other_note.id)

        assert first["sessionId"] != second["sessionId"]
        assert await count_rows(StudySession) == 2


# =============================================================================
# Ping / End Tests
# =============================================================================


class TestUpdateStudySession:
    """Tests for PATCH /api/notes/study-session/{session_id}."""

    async def test_ping_with_json(
        self, authenticated_client: AsyncClient, note, clock
    ) -> None:
        session_id = (await start_session(authenticated_client, note.id))["sessionId"]
        clock.advance(minutes=2)

        response = await authenticated_client.patch(
            f"/api/notes/study-session/{session_id}", json={"action": "ping"}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["sessionId"] == session_id
        assert data["action"] == "ping"
        assert parse_time(data["lastActiveAt"]) == clock()

    async def test_end_with_form_body(
        self, authenticated_client: AsyncClient, note, clock
    ) -> None:
        session_id = (await start_session(authenticated_client, note.id))["sessionId"]
        clock.advance(minutes=10)

        response = await authenticated_client.patch(
            f"/api/notes/study-session/{session_id}", data={"action": "end"}
        )

        assert response.status_code == 200
        assert response.json()["action"] == "end"
        assert parse_time(response.json()["lastActiveAt"]) == clock()

    @pytest.mark.parametrize("body", [{"action": "pause"}, {}, {"action": 3}])
    async def test_invalid_action(
        self, authenticated_client: AsyncClient, note, body: dict
    ) -> None:
        session_id = (await start_session(authenticated_client, note.id))["sessionId"]

        response = await authenticated_client.patch(
            f"/api/notes/study-session/{session_id}", json=body
        )

        assert response.status_code == 400
        assert (
            response.json()["error"]["message"]
            == "Invalid action. Must be 'ping' or 'end'"
        )

    async def test_malformed_json(
        self, authenticated_client: AsyncClient, note
    ) -> None:
        session_id = (await start_session(authenticated_client, note.id))["sessionId"]

        response = await authenticated_client.patch(
            f"/api/notes/study-session/{session_id}",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["error"]["message"] == "Invalid request body"

    async def test_unknown_session(self, authenticated_client: AsyncClient) -> None:
        response = await authenticated_client.patch(
            f"/api/notes/study-session/{uuid.uuid4()}", json={"action": "ping"}
        )

        assert response.status_code == 404
        assert (
            response.json()["error"]["message"]
            == "Study session not found or access denied"
        )

    async def test_session_of_another_user_is_untouched(
        self,
        authenticated_client: AsyncClient,
        seed,
        note,
        clock,
        client_for,
        session_factory,
    ) -> None:
        data = await start_session(authenticated_client, note.id)
        _, intruder_token = await seed.user()
        clock.advance(minutes=3)

        async with client_for(intruder_token) as intruder:
            response = await intruder.patch(
                f"/api/notes/study-session/{data['sessionId']}", json={"action": "end"}
            )

        assert response.status_code == 404
        async with session_factory() as session:
            stored = await session.get(StudySession, uuid.UUID(data["sessionId"]))
        assert stored is not None
        assert stored.last_active_at == parse_time(data["startedAt"])


# =============================================================================
# Stats Tests
# =============================================================================


class TestStudySessionStats:
    """Tests for GET /api/notes/study-session/stats."""

    async def _study(
        self, client: AsyncClient, clock, note_id: uuid.UUID, minutes: int
    ) -> None:
        session_id = (await start_session(client, note_id))["sessionId"]
        clock.advance(minutes=minutes)
        await client.patch(
            f"/api/notes/study-session/{session_id}", json={"action": "end"}
        )
        # Leave the continuation window so the next start opens a new session
        clock.advance(hours=1)

    async def test_overall_is_default(
        self, authenticated_client: AsyncClient, note, clock
    ) -> None:
        await self._study(authenticated_client, clock, note.id, 10)
        await self._study(authenticated_client, clock, note.id, 20)

        response = await authenticated_client.get("/api/notes/study-session/stats")

        assert response.status_code == 200
        data = response.json()
        assert data["totalSessions"] == 2
        assert data["totalTimeMinutes"] == 30
        assert data["averageTimeMinutes"] == 15
        assert data["lastStudiedAt"] is not None

    async def test_overall_without_sessions(
        self, authenticated_client: AsyncClient
    ) -> None:
        response = await authenticated_client.get(
            "/api/notes/study-session/stats", params={"type": "overall"}
        )

        assert response.json() == {
            "totalSessions": 0,
            "totalTimeMinutes": 0,
            "averageTimeMinutes": 0,
            "lastStudiedAt": None,
        }

    async def test_by_note(
        self, authenticated_client: AsyncClient, seed, note, clock
    ) -> None:
        other = await seed.note(await seed.subject("Fisica"), title="Cinematica")
        await self._study(authenticated_client, clock, note.id, 10)
        await self._study(authenticated_client, clock, other.id, 4)

        response = await authenticated_client.get(
            "/api/notes/study-session/stats", params={"type": "by-note"}
        )

        rows = {row["noteTitle"]: row for row in response.json()}
        assert rows["Limiti notevoli"]["totalTimeMinutes"] == 10
        assert rows["Cinematica"]["totalSessions"] == 1

    async def test_recent_respects_limit(
        self, authenticated_client: AsyncClient, note, clock
    ) -> None:
        for minutes in (5, 6, 7):
            await self._study(authenticated_client, clock, note.id, minutes)

        response = await authenticated_client.get(
            "/api/notes/study-session/stats", params={"type": "recent", "limit": 2}
        )

        rows = response.json()
        assert [row["durationMinutes"] for row in rows] == [7, 6]

    async def test_daily(self, authenticated_client: AsyncClient, note, clock) -> None:
        await self._study(authenticated_client, clock, note.id, 10)
        clock.advance(days=1)
        await self._study(authenticated_client, clock, note.id, 20)

        response = await authenticated_client.get(
            "/api/notes/study-session/stats", params={"type": "daily", "days": 7}
        )

        assert response.json() == [
            {"date": "2025-03-10", "totalTimeMinutes": 10, "sessionCount": 1},
            {"date": "2025-03-11", "totalTimeMinutes": 20, "sessionCount": 1},
        ]

    async def test_invalid_type(self, authenticated_client: AsyncClient) -> None:
        response = await authenticated_client.get(
            "/api/notes/study-session/stats", params={"type": "weekly"}
        )

        assert response.status_code == 400
        assert response.json()["error"]["message"] == "Invalid stats type"

    async def test_limit_out_of_range(self, authenticated_client: AsyncClient) -> None:
        response = await authenticated_client.get(
            "/api/notes/study-session/stats", params={"type": "recent", "limit": 0}
        )

        assert response.status_code == 400
