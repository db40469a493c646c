"""Tests for profile updates and account deletion."""

import uuid

from httpx import AsyncClient
from sqlalchemy import select

from maturamente.models import AuthSession, SubjectAccess, Subscription, User


class TestCheckUsername:
    """Tests for GET /api/user/check-username."""

    async def test_new_user_has_none(self, authenticated_client: AsyncClient) -> None:
        response = await authenticated_client.get("/api/user/check-username")

        assert response.status_code == 200
        assert response.json() == {"hasUsername": False}

    async def test_after_update(self, authenticated_client: AsyncClient) -> None:
        await authenticated_client.post("/api/user/update", json={"username": "giulia"})

        response = await authenticated_client.get("/api/user/check-username")

        assert response.json() == {"hasUsername": True}


class TestUpdateProfile:
    """Tests for POST /api/user/update."""

    async def test_sets_username_and_name(
        self, authenticated_client: AsyncClient, user, session_factory
    ) -> None:
        response = await authenticated_client.post(
            "/api/user/update", json={"username": "giulia_r", "fullName": "Giulia R."}
        )

        assert response.status_code == 200
        assert response.json() == {"message": "Profile updated successfully"}
        async with session_factory() as session:
            stored = await session.get(User, user[0].id)
        assert stored.username == "giulia_r"
        assert stored.name == "Giulia R."

    async def test_name_kept_when_omitted(
        self, authenticated_client: AsyncClient, user, session_factory
    ) -> None:
        await authenticated_client.post("/api/user/update", json={"username": "giulia"})

        async with session_factory() as session:
            stored = await session.get(User, user[0].id)
        assert stored.name == "Giulia Rossi"

    async def test_username_required(self, authenticated_client: AsyncClient) -> None:
        response = await authenticated_client.post("/api/user/update", json={})

        assert response.status_code == 400
        assert response.json()["error"]["message"] == "Username is required"

    async def test_username_taken(
        self, authenticated_client: AsyncClient, seed
    ) -> None:
        await seed.add(
            User(id=uuid.uuid4(), email="marco@example.com", username="marco")
        )

        response = await authenticated_client.post(
            "/api/user/update", json={"username": "marco"}
        )

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "USERNAME_TAKEN"

    async def test_own_username_can_be_kept(
        self, authenticated_client: AsyncClient
    ) -> None:
        await authenticated_client.post("/api/user/update", json={"username": "giulia"})

        response = await authenticated_client.post(
            "/api/user/update", json={"username": "giulia", "fullName": "Giulia"}
        )

        assert response.status_code == 200


class TestDeleteAccount:
    """Tests for DELETE /api/user/delete."""

    async def test_deletes_user_and_owned_rows(
        self, authenticated_client: AsyncClient, seed, user, count_rows
    ) -> None:
        subject = await seed.subject()
        await seed.add(
            Subscription(
                user_id=user[0].id, stripe_customer_id="cus_1", status="canceled"
            ),
            SubjectAccess(user_id=user[0].id, subject_id=subject.id),
        )
        other, _ = await seed.user()

        response = await authenticated_client.delete("/api/user/delete")

        assert response.status_code == 200
        assert response.json() == {
            "message": "Account deleted successfully",
            "shouldLogout": True,
        }
        assert await count_rows(User, id=user[0].id) == 0
        assert await count_rows(AuthSession, user_id=user[0].id) == 0
        assert await count_rows(Subscription) == 0
        assert await count_rows(SubjectAccess) == 0
        assert await count_rows(User, id=other.id) == 1

        after = await authenticated_client.get("/api/user/check-username")
        assert after.status_code == 401

    async def test_blocked_while_billed(
        self, authenticated_client: AsyncClient, seed, user, session_factory
    ) -> None:
        await seed.add(
            Subscription(
                user_id=user[0].id,
                stripe_customer_id="cus_1",
                stripe_subscription_id="sub_1",
                status="active",
                subject_count=1,
            )
        )

        response = await authenticated_client.delete("/api/user/delete")

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "ACTIVE_SUBSCRIPTION"
        async with session_factory() as session:
            remaining = (await session.execute(select(User.id))).scalars().all()
        assert remaining == [user[0].id]
