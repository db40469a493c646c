"""Tests for plan upgrades, downgrades and pending downgrade management."""

import json
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from maturamente.models import (
    PendingSubscriptionChange,
    Subject,
    SubjectAccess,
    Subscription,
)
from maturamente.services.billing import (
    InvoiceCharge,
    StripeSubscription,
    calculate_custom_price,
)

PERIOD_START = datetime(2025, 3, 1, 9, 0, tzinfo=UTC)
PERIOD_END = datetime(2025, 3, 31, 9, 0, tzinfo=UTC)


def remote_subscription(subscription_id: str = "sub_123") -> StripeSubscription:
    return StripeSubscription(
        id=subscription_id,
        customer="cus_existing",
        status="active",
        price_id="price_first",
        current_period_start=PERIOD_START,
        current_period_end=PERIOD_END,
        cancel_at_period_end=False,
    )


@dataclass
class Plan:
    subscription: Subscription
    owned: list[Subject]
    other: Subject


@pytest.fixture
async def plan(seed, user, mock_gateway: MagicMock) -> Plan:
    """Two unlocked subjects billed mid-period, plus one still locked."""
    owned = [await seed.subject("Matematica"), await seed.subject("Fisica")]
    other = await seed.subject("Latino")
    subscription = Subscription(
        user_id=user[0].id,
        stripe_customer_id="cus_existing",
        stripe_subscription_id="sub_123",
        status="active",
        subject_count=2,
        custom_price=Decimal("7.48"),
        current_period_start=PERIOD_START,
        current_period_end=PERIOD_END,
    )
    await seed.add(
        subscription,
        *(SubjectAccess(user_id=user[0].id, subject_id=s.id) for s in owned),
    )
    mock_gateway.replace_subscription_items.return_value = remote_subscription()
    return Plan(subscription=subscription, owned=owned, other=other)


def ids(*subjects: Subject) -> list[str]:
    return [str(s.id) for s in subjects]


async def unlocked(session_factory, user_id: uuid.UUID) -> set[uuid.UUID]:
    async with session_factory() as session:
        result = await session.execute(
            select(SubjectAccess.subject_id).where(SubjectAccess.user_id == user_id)
        )
        return set(result.scalars().all())


async def stored_subscription(session_factory) -> Subscription:
    async with session_factory() as session:
        return (await session.execute(select(Subscription))).scalar_one()


async def downgrade_to(client: AsyncClient, *subjects: Subject) -> dict:
    response = await client.post(
        "/api/stripe/plan-change", json={"newSubjectIds": ids(*subjects)}
    )
    assert response.status_code == 200
    return response.json()


# =============================================================================
# Preview Tests
# =============================================================================


class TestPlanChangePreview:
    """Tests for POST /api/stripe/plan-change-preview."""

    async def test_upgrade_is_prorated(
        self, authenticated_client: AsyncClient, mock_gateway: MagicMock, plan: Plan
    ) -> None:
        response = await authenticated_client.post(
            "/api/stripe/plan-change-preview",
            json={"newSubjectIds": ids(*plan.owned, plan.other)},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["changeType"] == "upgrade"
        assert data["currentPrice"] == pytest.approx(7.48)
        assert data["newPrice"] == pytest.approx(9.97)
        # 21 of 30 days left
        assert data["prorationAmount"] == pytest.approx(1.74)
        mock_gateway.replace_subscription_items.assert_not_awaited()

    async def test_downgrade_has_no_proration(
        self, authenticated_client: AsyncClient, plan: Plan
    ) -> None:
        response = await authenticated_client.post(
            "/api/stripe/plan-change-preview",
            json={"newSubjectIds": ids(plan.owned[0])},
        )

        data = response.json()
        assert data["changeType"] == "downgrade"
        assert data["newPrice"] == pytest.approx(4.99)
        assert data["prorationAmount"] == 0

    async def test_same_selection(
        self, authenticated_client: AsyncClient, plan: Plan
    ) -> None:
        response = await authenticated_client.post(
            "/api/stripe/plan-change-preview",
            json={"newSubjectIds": ids(*reversed(plan.owned))},
        )

        assert response.json()["changeType"] == "no_change"

    async def test_without_subscription(
        self, authenticated_client: AsyncClient, seed
    ) -> None:
        subject = await seed.subject()

        response = await authenticated_client.post(
            "/api/stripe/plan-change-preview", json={"newSubjectIds": ids(subject)}
        )

        assert response.status_code == 404
        assert response.json()["error"]["message"] == "No active subscription found"


# =============================================================================
# Plan Change Tests
# =============================================================================


class TestPlanChange:
    """Tests for POST /api/stripe/plan-change."""

    async def test_upgrade_unlocks_at_once(
        self,
        authenticated_client: AsyncClient,
        mock_gateway: MagicMock,
        plan: Plan,
        user,
        session_factory,
    ) -> None:
        mock_gateway.settle_latest_invoice.return_value = InvoiceCharge(
            invoice_id="in_1", amount=Decimal("1.74")
        )

        response = await authenticated_client.post(
            "/api/stripe/plan-change",
            json={"newSubjectIds": ids(*plan.owned, plan.other)},
        )

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "message": (
                "Subscription upgraded successfully! You have been charged "
                "€1.74 for the remaining billing period."
            ),
            "changeType": "upgrade",
            "newSubjectCount": 3,
            "newPrice": pytest.approx(9.97),
            "immediateChargeAmount": pytest.approx(1.74),
            "invoiceId": "in_1",
            "subscriptionId": "sub_123",
        }
        mock_gateway.replace_subscription_items.assert_awaited_once_with(
            "sub_123",
            [
                {"price": "price_first", "quantity": 1},
                {"price": "price_additional", "quantity": 2},
            ],
            "always_invoice",
        )
        assert await unlocked(session_factory, user[0].id) == {
            s.id for s in (*plan.owned, plan.other)
        }
        stored = await stored_subscription(session_factory)
        assert stored.subject_count == 3
        assert stored.custom_price == Decimal("9.97")

    async def test_upgrade_keeps_current_subjects(
        self, authenticated_client: AsyncClient, plan: Plan, user, session_factory
    ) -> None:
        response = await authenticated_client.post(
            "/api/stripe/plan-change", json={"newSubjectIds": ids(plan.other)}
        )

        assert response.json()["newSubjectCount"] == 3
        assert len(await unlocked(session_factory, user[0].id)) == 3

    async def test_downgrade_waits_for_renewal(
        self,
        authenticated_client: AsyncClient,
        mock_gateway: MagicMock,
        plan: Plan,
        user,
        session_factory,
    ) -> None:
        data = await downgrade_to(authenticated_client, plan.owned[0])

        assert data["success"] is True
        assert data["changeType"] == "downgrade"
        assert data["newSubjectCount"] == 1
        assert data["newPrice"] == pytest.approx(4.99)
        mock_gateway.replace_subscription_items.assert_awaited_once_with(
            "sub_123", [{"price": "price_first", "quantity": 1}], "none"
        )
        mock_gateway.settle_latest_invoice.assert_not_awaited()
        assert len(await unlocked(session_factory, user[0].id)) == 2

        pending = (
            await authenticated_client.get("/api/user/pending-subscription-changes")
        ).json()["pendingChanges"]
        assert len(pending) == 1
        assert pending[0]["changeType"] == "downgrade"
        assert pending[0]["timing"] == "next_period"
        assert pending[0]["status"] == "pending"
        assert pending[0]["newSubjectIds"] == ids(plan.owned[0])
        scheduled = pending[0]["scheduledDate"].replace("Z", "+00:00")
        assert datetime.fromisoformat(scheduled) == PERIOD_END

    async def test_second_downgrade_replaces_the_first(
        self, authenticated_client: AsyncClient, plan: Plan, count_rows
    ) -> None:
        await downgrade_to(authenticated_client, plan.owned[0])
        await downgrade_to(authenticated_client, plan.owned[1])

        assert await count_rows(PendingSubscriptionChange) == 1
        pending = (
            await authenticated_client.get("/api/user/pending-subscription-changes")
        ).json()["pendingChanges"]
        assert pending[0]["newSubjectIds"] == ids(plan.owned[1])

    async def test_upgrade_during_pending_downgrade(
        self,
        authenticated_client: AsyncClient,
        mock_gateway: MagicMock,
        plan: Plan,
        user,
        session_factory,
    ) -> None:
        await downgrade_to(authenticated_client, plan.owned[0])
        mock_gateway.replace_subscription_items.reset_mock()

        response = await authenticated_client.post(
            "/api/stripe/plan-change", json={"newSubjectIds": ids(plan.other)}
        )

        data = response.json()
        assert data["changeType"] == "upgrade"
        assert data["newSubjectCount"] == 2
        mock_gateway.replace_subscription_items.assert_awaited_once_with(
            "sub_123",
            [
                {"price": "price_first", "quantity": 1},
                {"price": "price_additional", "quantity": 1},
            ],
            "always_invoice",
        )
        assert len(await unlocked(session_factory, user[0].id)) == 3
        pending = (
            await authenticated_client.get("/api/user/pending-subscription-changes")
        ).json()["pendingChanges"]
        assert sorted(pending[0]["newSubjectIds"]) == sorted(
            ids(plan.owned[0], plan.other)
        )

    async def test_no_change(
        self, authenticated_client: AsyncClient, mock_gateway: MagicMock, plan: Plan
    ) -> None:
        response = await authenticated_client.post(
            "/api/stripe/plan-change", json={"newSubjectIds": ids(*plan.owned)}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is False
        assert data["message"] == "No changes detected in subject selection"
        assert data["changeType"] == "no_change"
        mock_gateway.replace_subscription_items.assert_not_awaited()

    @pytest.mark.parametrize(
        ("body", "message"),
        [
            ({}, "newSubjectIds is required and must be a non-empty array"),
            (
                {"newSubjectIds": []},
                "newSubjectIds is required and must be a non-empty array",
            ),
        ],
    )
    async def test_empty_selection(
        self,
        authenticated_client: AsyncClient,
        mock_gateway: MagicMock,
        plan: Plan,
        body: dict,
        message: str,
    ) -> None:
        response = await authenticated_client.post("/api/stripe/plan-change", json=body)

        assert response.status_code == 400
        assert response.json()["error"]["message"] == message
        mock_gateway.replace_subscription_items.assert_not_awaited()

    async def test_duplicate_subjects(
        self, authenticated_client: AsyncClient, mock_gateway: MagicMock, plan: Plan
    ) -> None:
        response = await authenticated_client.post(
            "/api/stripe/plan-change",
            json={"newSubjectIds": ids(plan.other, plan.other)},
        )

        assert response.status_code == 400
        assert (
            response.json()["error"]["message"]
            == "Each subject can be selected only once"
        )
        mock_gateway.replace_subscription_items.assert_not_awaited()

    async def test_unknown_subject(
        self,
        authenticated_client: AsyncClient,
        mock_gateway: MagicMock,
        plan: Plan,
        user,
        session_factory,
    ) -> None:
        response = await authenticated_client.post(
            "/api/stripe/plan-change",
            json={"newSubjectIds": [*ids(*plan.owned), str(uuid.uuid4())]},
        )

        assert response.status_code == 400
        assert (
            response.json()["error"]["message"]
            == "One or more selected subjects do not exist"
        )
        mock_gateway.replace_subscription_items.assert_not_awaited()
        assert len(await unlocked(session_factory, user[0].id)) == 2

    async def test_malformed_subject_id(
        self, authenticated_client: AsyncClient, mock_gateway: MagicMock, plan: Plan
    ) -> None:
        response = await authenticated_client.post(
            "/api/stripe/plan-change", json={"newSubjectIds": ["fisica"]}
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"
        mock_gateway.replace_subscription_items.assert_not_awaited()


# =============================================================================
# Pending Downgrade Tests
# =============================================================================


class TestModifyPendingChange:
    """Tests for POST /api/stripe/modify-pending-change."""

    async def test_restoring_every_subject_resolves_downgrade(
        self,
        authenticated_client: AsyncClient,
        mock_gateway: MagicMock,
        plan: Plan,
        session_factory,
    ) -> None:
        await downgrade_to(authenticated_client, plan.owned[0])
        mock_gateway.replace_subscription_items.reset_mock()

        response = await authenticated_client.post(
            "/api/stripe/modify-pending-change",
            json={"subjectId": str(plan.owned[1].id)},
        )

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "message": "Rimozione annullata per la materia selezionata",
            "pendingChangeResolved": True,
            "newSubjectCount": 2,
            "newPrice": pytest.approx(7.48),
        }
        mock_gateway.replace_subscription_items.assert_awaited_once_with(
            "sub_123",
            [
                {"price": "price_first", "quantity": 1},
                {"price": "price_additional", "quantity": 1},
            ],
            "always_invoice",
        )
        pending = (
            await authenticated_client.get("/api/user/pending-subscription-changes")
        ).json()["pendingChanges"]
        assert pending == []
        assert (await stored_subscription(session_factory)).subject_count == 2

    async def test_subject_outside_plan(
        self, authenticated_client: AsyncClient, plan: Plan
    ) -> None:
        await downgrade_to(authenticated_client, plan.owned[0])

        response = await authenticated_client.post(
            "/api/stripe/modify-pending-change",
            json={"restoreSubjectIds": ids(plan.other)},
        )

        assert response.status_code == 400
        assert (
            response.json()["error"]["message"]
            == "One or more subject IDs are invalid for this user"
        )

    async def test_without_pending_downgrade(
        self, authenticated_client: AsyncClient, plan: Plan
    ) -> None:
        response = await authenticated_client.post(
            "/api/stripe/modify-pending-change",
            json={"subjectId": str(plan.owned[0].id)},
        )

        assert response.status_code == 404
        assert (
            response.json()["error"]["message"]
            == "No pending downgrade found to modify"
        )

    async def test_nothing_to_restore(
        self, authenticated_client: AsyncClient, plan: Plan
    ) -> None:
        response = await authenticated_client.post(
            "/api/stripe/modify-pending-change", json={}
        )

        assert response.status_code == 400
        assert (
            response.json()["error"]["message"]
            == "Provide subjectId or restoreSubjectIds"
        )


class TestUndoPendingChange:
    """Tests for POST /api/stripe/undo-pending-change."""

    async def test_undo_restores_billing(
        self,
        authenticated_client: AsyncClient,
        mock_gateway: MagicMock,
        plan: Plan,
        session_factory,
        count_rows,
    ) -> None:
        await downgrade_to(authenticated_client, plan.owned[0])
        pending = (
            await authenticated_client.get("/api/user/pending-subscription-changes")
        ).json()["pendingChanges"]
        mock_gateway.replace_subscription_items.reset_mock()

        response = await authenticated_client.post(
            "/api/stripe/undo-pending-change", json={"changeId": pending[0]["id"]}
        )

        assert response.status_code == 200
        assert response.json() == {
            "message": "Pending change cancelled and reverted successfully"
        }
        mock_gateway.replace_subscription_items.assert_awaited_once_with(
            "sub_123",
            [
                {"price": "price_first", "quantity": 1},
                {"price": "price_additional", "quantity": 1},
            ],
            "none",
        )
        stored = await stored_subscription(session_factory)
        assert stored.subject_count == 2
        assert stored.custom_price == Decimal("7.48")
        assert await count_rows(PendingSubscriptionChange, status="cancelled") == 1

    async def test_already_cancelled(
        self, authenticated_client: AsyncClient, plan: Plan
    ) -> None:
        await downgrade_to(authenticated_client, plan.owned[0])
        change_id = (
            await authenticated_client.get("/api/user/pending-subscription-changes")
        ).json()["pendingChanges"][0]["id"]
        await authenticated_client.post(
            "/api/stripe/undo-pending-change", json={"changeId": change_id}
        )

        response = await authenticated_client.post(
            "/api/stripe/undo-pending-change", json={"changeId": change_id}
        )

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "PENDING_CHANGE_NOT_FOUND"

    async def test_change_of_another_user(
        self,
        authenticated_client: AsyncClient,
        client_for,
        seed,
        plan: Plan,
        count_rows,
    ) -> None:
        await downgrade_to(authenticated_client, plan.owned[0])
        change_id = (
            await authenticated_client.get("/api/user/pending-subscription-changes")
        ).json()["pendingChanges"][0]["id"]
        _, other_token = await seed.user()

        async with client_for(other_token) as other:
            response = await other.post(
                "/api/stripe/undo-pending-change", json={"changeId": change_id}
            )

        assert response.status_code == 404
        assert await count_rows(PendingSubscriptionChange, status="pending") == 1


# =============================================================================
# Renewal Tests
# =============================================================================


async def deliver_invoice(
    client: AsyncClient, gateway: MagicMock, billing_reason: str
) -> None:
    event = {
        "id": f"evt_{billing_reason}",
        "type": "invoice.payment_succeeded",
        "data": {
            "object": {
                "id": "in_renewal",
                "subscription": "sub_123",
                "billing_reason": billing_reason,
            }
        },
    }
    gateway.parse_event.return_value = event
    response = await client.post(
        "/api/stripe/webhook",
        content=json.dumps(event),
        headers={"Stripe-Signature": "t=1,v1=mocked"},
    )
    assert response.status_code == 200


class TestPendingDowngradeRenewal:
    """A pending downgrade narrows access once the next period is paid."""

    async def test_applied_on_renewal(
        self,
        authenticated_client: AsyncClient,
        async_client: AsyncClient,
        mock_gateway: MagicMock,
        plan: Plan,
        user,
        session_factory,
        count_rows,
    ) -> None:
        await downgrade_to(authenticated_client, plan.owned[0])

        await deliver_invoice(async_client, mock_gateway, "subscription_cycle")

        assert await unlocked(session_factory, user[0].id) == {plan.owned[0].id}
        assert await count_rows(PendingSubscriptionChange, status="applied") == 1

    async def test_kept_on_mid_period_invoice(
        self,
        authenticated_client: AsyncClient,
        async_client: AsyncClient,
        mock_gateway: MagicMock,
        plan: Plan,
        user,
        session_factory,
        count_rows,
    ) -> None:
        await downgrade_to(authenticated_client, plan.owned[0])

        await deliver_invoice(async_client, mock_gateway, "subscription_update")

        assert len(await unlocked(session_factory, user[0].id)) == 2
        assert await count_rows(PendingSubscriptionChange, status="pending") == 1

    async def test_applied_once_scheduled_date_passed(
        self,
        authenticated_client: AsyncClient,
        async_client: AsyncClient,
        mock_gateway: MagicMock,
        plan: Plan,
        user,
        session_factory,
        clock,
    ) -> None:
        await downgrade_to(authenticated_client, plan.owned[0])
        clock.advance(days=30)

        await deliver_invoice(async_client, mock_gateway, "manual")

        assert await unlocked(session_factory, user[0].id) == {plan.owned[0].id}


# =============================================================================
# Checkout Completion Tests
# =============================================================================


class TestProcessCheckout:
    """Tests for POST /api/stripe/process-checkout."""

    def paid_session(self, user_id: uuid.UUID, subjects: list[Subject], **overrides):
        session = {
            "id": "cs_test",
            "payment_status": "paid",
            "customer": "cus_test",
            "subscription": "sub_999",
            "metadata": {
                "userId": str(user_id),
                "planType": "CUSTOM",
                "selectedSubjects": json.dumps(ids(*subjects)),
                "customPrice": str(calculate_custom_price(len(subjects))),
                "subjectCount": str(len(subjects)),
            },
        }
        session.update(overrides)
        return session

    async def test_activates_plan(
        self,
        authenticated_client: AsyncClient,
        mock_gateway: MagicMock,
        seed,
        user,
        session_factory,
    ) -> None:
        subjects = [await seed.subject("Matematica"), await seed.subject("Fisica")]
        mock_gateway.retrieve_checkout_session.return_value = self.paid_session(
            user[0].id, subjects
        )
        mock_gateway.retrieve_subscription.return_value = remote_subscription("sub_999")

        response = await authenticated_client.post(
            "/api/stripe/process-checkout", json={"sessionId": "cs_test"}
        )

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "message": "Abbonamento attivato con successo",
            "subscription": {
                "plan": "MaturaMente Pro",
                "subjects": 2,
                "price": pytest.approx(7.48),
            },
        }
        mock_gateway.retrieve_checkout_session.assert_awaited_once_with("cs_test")
        assert await unlocked(session_factory, user[0].id) == {s.id for s in subjects}
        stored = await stored_subscription(session_factory)
        assert stored.stripe_subscription_id == "sub_999"
        assert stored.stripe_customer_id == "cus_test"

    async def test_unpaid_session(
        self,
        authenticated_client: AsyncClient,
        mock_gateway: MagicMock,
        seed,
        user,
        count_rows,
    ) -> None:
        subject = await seed.subject()
        mock_gateway.retrieve_checkout_session.return_value = self.paid_session(
            user[0].id, [subject], payment_status="unpaid"
        )

        response = await authenticated_client.post(
            "/api/stripe/process-checkout", json={"sessionId": "cs_test"}
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "PAYMENT_NOT_COMPLETED"
        mock_gateway.retrieve_subscription.assert_not_awaited()
        assert await count_rows(SubjectAccess) == 0

    async def test_session_of_another_user(
        self,
        authenticated_client: AsyncClient,
        mock_gateway: MagicMock,
        seed,
        count_rows,
    ) -> None:
        subject = await seed.subject()
        mock_gateway.retrieve_checkout_session.return_value = self.paid_session(
            uuid.uuid4(), [subject]
        )

        response = await authenticated_client.post(
            "/api/stripe/process-checkout", json={"sessionId": "cs_test"}
        )

        assert response.status_code == 403
        assert await count_rows(Subscription) == 0
        assert await count_rows(SubjectAccess) == 0

    async def test_missing_session_id(self, authenticated_client: AsyncClient) -> None:
        response = await authenticated_client.post(
            "/api/stripe/process-checkout", json={"sessionId": ""}
        )

        assert response.status_code == 400
