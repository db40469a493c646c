"""Custom-plan billing through Stripe.

A plan is priced per subject: the first subject costs ``FIRST_SUBJECT_PRICE``
and each further subject ``ADDITIONAL_SUBJECT_PRICE`` per month. Stripe owns
the payment state; our ``subscriptions`` row mirrors it from webhook events
and ``relation_subjects_user`` holds the subjects the plan unlocks.

All Stripe SDK calls go through ``StripeGateway``, which runs the blocking
SDK in the thread pool and turns SDK failures into ``BillingServiceError``.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any
from uuid import UUID

import stripe
import structlog
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool

from maturamente.config import Settings
from maturamente.core.clock import Clock, utcnow
from maturamente.core.exceptions import (
    ActiveSubscriptionExistsError,
    AuthorizationError,
    BillingServiceError,
    InvalidSignatureError,
    PaymentNotCompletedError,
    SubscriptionNotFoundError,
    ValidationError,
)
from maturamente.core.logging import log_context
from maturamente.models.billing import (
    ChangeTiming,
    PendingChangeStatus,
    PlanChangeType,
    Subscription,
    SubscriptionStatus,
)
from maturamente.repositories.billing import (
    PendingChangeRepository,
    SubjectAccessRepository,
    SubscriptionRepository,
)
from maturamente.repositories.content import SubjectRepository

logger = structlog.get_logger(__name__)

FIRST_SUBJECT_PRICE = Decimal("4.99")
ADDITIONAL_SUBJECT_PRICE = Decimal("2.49")
CUSTOM_PLAN = "CUSTOM"
PLAN_NAME = "MaturaMente Pro"


def calculate_custom_price(subject_count: int) -> Decimal:
    """Monthly price in euros for a plan with ``subject_count`` subjects."""
    if subject_count <= 0:
        return Decimal("0.00")
    return FIRST_SUBJECT_PRICE + ADDITIONAL_SUBJECT_PRICE * (subject_count - 1)


def _field(obj: Any, key: str, default: Any = None) -> Any:
    # StripeObject supports item access but not always .get()
    if obj is None:
        return default
    try:
        value = obj[key]
    except (KeyError, TypeError):
        return default
    return default if value is None else value


def _timestamp(value: int | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


def _object_id(value: Any) -> str | None:
    """Stripe references are ids or, when expanded, objects carrying one."""
    if value is None or isinstance(value, str):
        return value
    return _field(value, "id")


def _cents(value: Any) -> Decimal:
    return (Decimal(int(value or 0)) / 100).quantize(Decimal("0.01"))


def _metadata_subjects(metadata: dict[str, Any]) -> list[UUID] | None:
    """Subject ids stored at checkout, or None when they cannot be read."""
    try:
        raw = json.loads(metadata.get("selectedSubjects") or "[]")
        if not isinstance(raw, list):
            return None
        return [UUID(str(subject_id)) for subject_id in raw]
    except (TypeError, ValueError):
        return None


def _metadata_int(metadata: dict[str, Any], key: str) -> int | None:
    try:
        return int(metadata[key])
    except (KeyError, TypeError, ValueError):
        return None


def _metadata_decimal(metadata: dict[str, Any], key: str) -> Decimal | None:
    try:
        return Decimal(str(metadata[key]))
    except (KeyError, InvalidOperation):
        return None


@dataclass(frozen=True)
class StripeSubscription:
    """The fields of a Stripe subscription we mirror locally."""

    id: str
    customer: str | None
    status: str
    price_id: str | None
    current_period_start: datetime | None
    current_period_end: datetime | None
    cancel_at_period_end: bool

    @classmethod
    def from_stripe(cls, obj: Any) -> StripeSubscription:
        items = _field(_field(obj, "items"), "data", [])
        first_item = items[0] if items else None

        # Newer API versions report the billing period per item.
        period_start = _field(obj, "current_period_start") or _field(
            first_item, "current_period_start"
        )
        period_end = _field(obj, "current_period_end") or _field(
            first_item, "current_period_end"
        )
        return cls(
            id=_field(obj, "id"),
            customer=_object_id(_field(obj, "customer")),
            status=_field(obj, "status", SubscriptionStatus.INCOMPLETE.value),
            price_id=_field(_field(first_item, "price"), "id"),
            current_period_start=_timestamp(period_start),
            current_period_end=_timestamp(period_end),
            cancel_at_period_end=bool(_field(obj, "cancel_at_period_end", False)),
        )


@dataclass(frozen=True)
class InvoiceCharge:
    """What an invoice actually charged."""

    invoice_id: str | None
    amount: Decimal


# =============================================================================
# Stripe Gateway
# =============================================================================


class StripeGateway:
    """Thin async wrapper around the Stripe SDK.

    Usage:
        ```python
        gateway = StripeGateway(settings)
        customer_id = await gateway.create_customer(email, name, {"userId": uid})
        ```
    """

    def __init__(self, settings: Settings) -> None:
        self._api_key = settings.stripe_secret_key.get_secret_value()
        self._webhook_secret = settings.stripe_webhook_secret.get_secret_value()

    async def _call(
        self, operation: str, fn: Callable[..., Any], *args: Any, **params: Any
    ) -> Any:
        try:
            return await run_in_threadpool(fn, *args, api_key=self._api_key, **params)
        except stripe.StripeError as e:
            logger.error("stripe_call_failed", operation=operation, error=str(e))
            raise BillingServiceError(
                details={"operation": operation, "error": str(e)}
            ) from e

    async def create_customer(
        self, email: str, name: str | None, metadata: dict[str, str]
    ) -> str:
        customer = await self._call(
            "create_customer",
            stripe.Customer.create,
            email=email,
            name=name,
            metadata=metadata,
        )
        return customer["id"]

    async def create_checkout_session(self, **params: Any) -> tuple[str, str]:
        """Create a checkout session and return its ``(id, url)``."""
        session = await self._call(
            "create_checkout_session", stripe.checkout.Session.create, **params
        )
        return session["id"], session["url"]

    async def retrieve_checkout_session(self, session_id: str) -> Any:
        return await self._call(
            "retrieve_checkout_session", stripe.checkout.Session.retrieve, id=session_id
        )

    async def retrieve_subscription(self, subscription_id: str) -> StripeSubscription:
        obj = await self._call(
            "retrieve_subscription", stripe.Subscription.retrieve, id=subscription_id
        )
        return StripeSubscription.from_stripe(obj)

    async def set_cancel_at_period_end(
        self, subscription_id: str, cancel: bool
    ) -> StripeSubscription:
        obj = await self._call(
            "modify_subscription",
            stripe.Subscription.modify,
            id=subscription_id,
            cancel_at_period_end=cancel,
        )
        return StripeSubscription.from_stripe(obj)

    async def replace_subscription_items(
        self,
        subscription_id: str,
        line_items: list[dict[str, Any]],
        proration_behavior: str,
    ) -> StripeSubscription:
        """Swap every item of a subscription for ``line_items``.

        Args:
            proration_behavior: ``always_invoice`` to charge the difference
                now, ``none`` to bill the new price from the next period
        """
        current = await self._call(
            "retrieve_subscription", stripe.Subscription.retrieve, id=subscription_id
        )
        items = [
            {"id": item["id"], "deleted": True}
            for item in _field(_field(current, "items"), "data", [])
        ]
        items.extend(
            {"price": item["price"], "quantity": item["quantity"]} for item in line_items
        )
        obj = await self._call(
            "modify_subscription_items",
            stripe.Subscription.modify,
            id=subscription_id,
            items=items,
            proration_behavior=proration_behavior,
        )
        return StripeSubscription.from_stripe(obj)

    async def settle_latest_invoice(self, subscription_id: str) -> InvoiceCharge:
        """Pay the newest invoice of a subscription if it is still open."""
        invoices = await self._call(
            "list_invoices", stripe.Invoice.list, subscription=subscription_id, limit=1
        )
        data = _field(invoices, "data", [])
        if not data:
            return InvoiceCharge(invoice_id=None, amount=Decimal("0.00"))

        invoice = data[0]
        if _field(invoice, "status") == "open" and _field(invoice, "amount_due", 0) > 0:
            invoice = await self._call("pay_invoice", stripe.Invoice.pay, invoice["id"])
        if _field(invoice, "status") != "paid":
            return InvoiceCharge(invoice_id=invoice["id"], amount=Decimal("0.00"))
        return InvoiceCharge(
            invoice_id=invoice["id"], amount=_cents(_field(invoice, "amount_paid"))
        )

    async def create_billing_portal_session(self, customer_id: str, return_url: str) -> str:
        session = await self._call(
            "create_billing_portal_session",
            stripe.billing_portal.Session.create,
            customer=customer_id,
            return_url=return_url,
        )
        return session["url"]

    def parse_event(self, payload: bytes, signature: str | None) -> dict[str, Any]:
        """Verify a webhook payload's signature and decode the event.

        Raises:
            InvalidSignatureError: If the signature is missing or invalid
        """
        if not signature or not self._webhook_secret:
            raise InvalidSignatureError()
        try:
            stripe.WebhookSignature.verify_header(
                payload.decode("utf-8"), signature, self._webhook_secret
            )
        except (stripe.SignatureVerificationError, UnicodeDecodeError) as e:
            logger.warning("stripe_webhook_signature_invalid", error=str(e))
            raise InvalidSignatureError() from e

        try:
            return json.loads(payload)
        except ValueError as e:
            raise InvalidSignatureError("Invalid webhook payload") from e


# =============================================================================
# Billing Service
# =============================================================================


@dataclass(frozen=True)
class CheckoutSession:
    session_id: str
    url: str


class BillingService:
    """Checkout, subscription management and webhook processing."""

    def __init__(
        self,
        subscription_repo: SubscriptionRepository,
        access_repo: SubjectAccessRepository,
        subject_repo: SubjectRepository,
        pending_repo: PendingChangeRepository,
        gateway: StripeGateway,
        settings: Settings,
        clock: Clock = utcnow,
    ) -> None:
        self.subscription_repo = subscription_repo
        self.access_repo = access_repo
        self.subject_repo = subject_repo
        self.pending_repo = pending_repo
        self.gateway = gateway
        self.settings = settings
        self.clock = clock

    @property
    def base_url(self) -> str:
        return self.settings.base_url.rstrip("/")

    def line_items(self, subject_count: int) -> list[dict[str, Any]]:
        items = [
            {"price": self.settings.stripe_first_subject_price_id, "quantity": 1}
        ]
        if subject_count > 1:
            items.append(
                {
                    "price": self.settings.stripe_additional_subject_price_id,
                    "quantity": subject_count - 1,
                }
            )
        return items

    async def require_subjects(self, subject_ids: Iterable[UUID], field: str) -> None:
        """Raise unless every id names an existing subject."""
        subject_ids = set(subject_ids)
        missing = subject_ids - await self.subject_repo.existing_ids(subject_ids)
        if missing:
            raise ValidationError(
                "One or more selected subjects do not exist", field=field
            )

    async def checkout(
        self,
        user_id: UUID,
        email: str,
        name: str | None,
        plan_type: str,
        selected_subjects: list[UUID],
    ) -> CheckoutSession:
        """Start a subscription checkout for the selected subjects.

        Raises:
            ValidationError: If the plan type or subject selection is invalid
            ActiveSubscriptionExistsError: If the user already pays for a plan
            BillingServiceError: If Stripe rejects a call
        """
        if plan_type != CUSTOM_PLAN:
            raise ValidationError("Invalid plan type", field="planType")
        if not selected_subjects:
            raise ValidationError(
                "Please select at least one subject", field="selectedSubjects"
            )
        if len(set(selected_subjects)) != len(selected_subjects):
            raise ValidationError(
                "Each subject can be selected only once", field="selectedSubjects"
            )

        subscription = await self.subscription_repo.get_by_user(user_id)
        if subscription is not None and subscription.is_active:
            raise ActiveSubscriptionExistsError()
        await self.require_subjects(selected_subjects, field="selectedSubjects")

        customer_id = subscription.stripe_customer_id if subscription else None
        if not customer_id:
            customer_id = await self.gateway.create_customer(
                email, name, {"userId": str(user_id)}
            )
            subscription = subscription or await self.subscription_repo.get_or_create(
                user_id
            )
            subscription.stripe_customer_id = customer_id
            await self.subscription_repo.update(subscription)

        subject_count = len(selected_subjects)
        price = calculate_custom_price(subject_count)
        metadata = {
            "userId": str(user_id),
            "planType": plan_type,
            "selectedSubjects": json.dumps([str(s) for s in selected_subjects]),
            "customPrice": str(price),
            "subjectCount": str(subject_count),
        }

        session_id, url = await self.gateway.create_checkout_session(
            customer=customer_id,
            mode="subscription",
            payment_method_types=["card"],
            line_items=self.line_items(subject_count),
            success_url=(
                f"{self.base_url}/dashboard"
                "?session_id={CHECKOUT_SESSION_ID}&success=true"
            ),
            cancel_url=f"{self.base_url}/pricing?canceled=true",
            metadata=metadata,
            subscription_data={"metadata": metadata},
        )
        logger.info(
            "checkout_session_created",
            user_id=str(user_id),
            subject_count=subject_count,
            checkout_session_id=session_id,
        )
        return CheckoutSession(session_id=session_id, url=url)

    async def process_checkout(self, user_id: UUID, session_id: str) -> Subscription:
        """Activate the plan of a paid checkout session without waiting for the webhook.

        Raises:
            PaymentNotCompletedError: If the session has not been paid
            ValidationError: If the session created no subscription
            AuthorizationError: If the session was opened by another user
        """
        session = await self.gateway.retrieve_checkout_session(session_id)
        if _field(session, "payment_status") != "paid":
            raise PaymentNotCompletedError()

        subscription_id = _object_id(_field(session, "subscription"))
        if subscription_id is None:
            raise ValidationError("No subscription found for this checkout session")

        metadata = dict(_field(session, "metadata", {}))
        owner = metadata.get("userId")
        if owner and owner != str(user_id):
            logger.warning(
                "checkout_session_owner_mismatch",
                user_id=str(user_id),
                checkout_session_id=session_id,
            )
            raise AuthorizationError("Checkout session belongs to another user")

        remote = await self.gateway.retrieve_subscription(subscription_id)
        subscription = await self.subscription_repo.get_or_create(user_id)
        return await self._activate(
            subscription, remote, _object_id(_field(session, "customer")), metadata
        )

    async def _require_subscription(self, user_id: UUID) -> Subscription:
        subscription = await self.subscription_repo.get_by_user(user_id)
        if subscription is None or not subscription.stripe_subscription_id:
            raise SubscriptionNotFoundError()
        return subscription

    async def set_cancel_at_period_end(self, user_id: UUID, cancel: bool) -> Subscription:
        """Schedule (or undo) cancellation at the end of the billing period."""
        subscription = await self._require_subscription(user_id)
        remote = await self.gateway.set_cancel_at_period_end(
            subscription.stripe_subscription_id, cancel
        )
        subscription.cancel_at_period_end = remote.cancel_at_period_end
        subscription.status = remote.status
        subscription = await self.subscription_repo.update(subscription)
        logger.info(
            "subscription_cancel_at_period_end_set",
            user_id=str(user_id),
            cancel=cancel,
        )
        return subscription

    async def billing_portal(self, user_id: UUID) -> str:
        subscription = await self.subscription_repo.get_by_user(user_id)
        if subscription is None or not subscription.stripe_customer_id:
            raise SubscriptionNotFoundError()
        return await self.gateway.create_billing_portal_session(
            subscription.stripe_customer_id,
            f"{self.base_url}/dashboard/settings",
        )

    # -------------------------------------------------------------------------
    # Read side
    # -------------------------------------------------------------------------

    async def subscription_status(self, user_id: UUID) -> dict[str, Any] | None:
        subscription = await self.subscription_repo.get_by_user(user_id)
        if subscription is None:
            return None

        price = subscription.custom_price
        if price is None:
            price = calculate_custom_price(subscription.subject_count)
        return {
            "isActive": subscription.is_active,
            "isPastDue": subscription.status == SubscriptionStatus.PAST_DUE.value,
            "isCanceled": subscription.status == SubscriptionStatus.CANCELED.value,
            "willCancelAtPeriodEnd": subscription.cancel_at_period_end,
            "currentPeriodEnd": subscription.current_period_end,
            "subjectCount": subscription.subject_count,
            "price": float(price),
        }

    async def subject_access(self, user_id: UUID) -> dict[str, Any]:
        subscription = await self.subscription_repo.get_by_user(user_id)
        if subscription is None or not subscription.is_active:
            return {
                "hasAccess": False,
                "subjectsCount": 0,
                "maxSubjects": 0,
                "availableSlots": 0,
                "selectedSubjects": [],
            }

        subject_ids = await self.access_repo.subject_ids(user_id)
        return {
            "hasAccess": bool(subject_ids),
            "subjectsCount": len(subject_ids),
            "maxSubjects": subscription.subject_count,
            "availableSlots": max(0, subscription.subject_count - len(subject_ids)),
            "selectedSubjects": [str(subject_id) for subject_id in subject_ids],
        }

    # -------------------------------------------------------------------------
    # Webhooks
    # -------------------------------------------------------------------------

    async def handle_event(self, event: dict[str, Any]) -> None:
        """Apply a verified Stripe event. Unknown event types are ignored."""
        event_type = event.get("type")
        obj = event.get("data", {}).get("object", {})
        handlers = {
            "checkout.session.completed": self._on_checkout_completed,
            "customer.subscription.updated": self._on_subscription_updated,
            "customer.subscription.deleted": self._on_subscription_deleted,
            "invoice.payment_succeeded": self._on_payment_succeeded,
            "invoice.payment_failed": self._on_payment_failed,
        }
        handler = handlers.get(event_type)
        if handler is None:
            logger.debug("stripe_event_ignored", event_type=event_type)
            return

        with log_context(stripe_event_id=event.get("id"), event_type=event_type):
            logger.info("stripe_event_received")
            await handler(obj)

    async def _on_checkout_completed(self, session: dict[str, Any]) -> None:
        subscription_id = _object_id(session.get("subscription"))
        if subscription_id is None:
            logger.warning("checkout_without_subscription", session_id=session.get("id"))
            return

        metadata = session.get("metadata") or {}
        customer_id = _object_id(session.get("customer"))
        subscription = await self._checkout_owner(metadata, customer_id)
        if subscription is None:
            logger.error(
                "checkout_owner_unknown",
                session_id=session.get("id"),
                stripe_customer_id=customer_id,
            )
            return

        remote = await self.gateway.retrieve_subscription(subscription_id)
        await self._activate(subscription, remote, customer_id, metadata)

    async def _checkout_owner(
        self, metadata: dict[str, Any], customer_id: str | None
    ) -> Subscription | None:
        """Find the subscription row a completed checkout belongs to.

        The customer is created before checkout, so its id identifies the
        user even when the session metadata is unreadable.
        """
        try:
            user_id = UUID(str(metadata["userId"]))
        except (KeyError, ValueError):
            logger.warning("checkout_metadata_user_invalid", stripe_customer_id=customer_id)
        else:
            return await self.subscription_repo.get_or_create(user_id)
        if customer_id is None:
            return None
        return await self.subscription_repo.get_by_customer(customer_id)

    async def _activate(
        self,
        subscription: Subscription,
        remote: StripeSubscription,
        customer_id: str | None,
        metadata: dict[str, Any],
    ) -> Subscription:
        """Mirror a paid subscription, then grant the subjects it was bought for.

        The Stripe state is stored first so that unreadable subject metadata
        never leaves a paid subscription unlinked.
        """
        subject_ids = _metadata_subjects(metadata)
        self._apply(subscription, remote)
        subscription.stripe_customer_id = (
            customer_id or remote.customer or subscription.stripe_customer_id
        )
        subject_count = _metadata_int(metadata, "subjectCount")
        if subject_count is None and subject_ids is not None:
            subject_count = len(set(subject_ids))
        if subject_count is not None:
            subscription.subject_count = subject_count
        subscription.custom_price = _metadata_decimal(
            metadata, "customPrice"
        ) or calculate_custom_price(subscription.subject_count)
        subscription = await self.subscription_repo.update(subscription)

        if subject_ids is None:
            logger.error(
                "checkout_subjects_invalid",
                user_id=str(subscription.user_id),
                stripe_subscription_id=remote.id,
            )
            return subscription

        await self.access_repo.replace(subscription.user_id, subject_ids)
        logger.info(
            "subscription_activated",
            user_id=str(subscription.user_id),
            subject_count=subscription.subject_count,
        )
        return subscription

    async def _on_subscription_updated(self, obj: dict[str, Any]) -> None:
        remote = StripeSubscription.from_stripe(obj)
        subscription = await self.subscription_repo.get_by_stripe_subscription_id(remote.id)
        if subscription is None:
            logger.warning("subscription_unknown", stripe_subscription_id=remote.id)
            return
        self._apply(subscription, remote)
        await self.subscription_repo.update(subscription)

    async def _on_subscription_deleted(self, obj: dict[str, Any]) -> None:
        subscription = await self.subscription_repo.get_by_stripe_subscription_id(obj.get("id"))
        if subscription is None:
            logger.warning("subscription_unknown", stripe_subscription_id=obj.get("id"))
            return
        subscription.status = SubscriptionStatus.CANCELED.value
        subscription.cancel_at_period_end = False
        await self.subscription_repo.update(subscription)
        revoked = await self.access_repo.revoke_all(subscription.user_id)
        logger.info(
            "subscription_canceled",
            user_id=str(subscription.user_id),
            revoked_subjects=revoked,
        )

    async def _invoice_subscription(self, invoice: dict[str, Any]) -> Subscription | None:
        subscription_id = _object_id(invoice.get("subscription")) or _field(
            _field(_field(invoice, "parent"), "subscription_details"), "subscription"
        )
        if subscription_id is None:
            return None
        subscription = await self.subscription_repo.get_by_stripe_subscription_id(
            subscription_id
        )
        if subscription is None:
            logger.warning("subscription_unknown", stripe_subscription_id=subscription_id)
        return subscription

    async def _on_payment_succeeded(self, invoice: dict[str, Any]) -> None:
        subscription = await self._invoice_subscription(invoice)
        if subscription is None:
            return
        subscription.status = SubscriptionStatus.ACTIVE.value
        await self.subscription_repo.update(subscription)
        await self._apply_pending_downgrades(
            subscription, renewal=invoice.get("billing_reason") == "subscription_cycle"
        )

    async def _on_payment_failed(self, invoice: dict[str, Any]) -> None:
        subscription = await self._invoice_subscription(invoice)
        if subscription is None:
            return
        subscription.status = SubscriptionStatus.PAST_DUE.value
        await self.subscription_repo.update(subscription)
        logger.warning("subscription_payment_failed", user_id=str(subscription.user_id))

    async def _apply_pending_downgrades(
        self, subscription: Subscription, renewal: bool
    ) -> None:
        """Narrow access to the downgraded selection once the new period is paid.

        Invoices raised mid-period (prorated upgrades) leave pending changes
        alone unless their scheduled date has already passed.
        """
        changes = await self.pending_repo.pending_for(
            subscription.id,
            change_type=PlanChangeType.DOWNGRADE.value,
            timing=ChangeTiming.NEXT_PERIOD.value,
        )
        now = self.clock()
        for change in changes:
            due = change.scheduled_date is not None and change.scheduled_date <= now
            if not (renewal or due):
                continue
            try:
                async with self.access_repo.session.begin_nested():
                    await self.access_repo.replace(
                        subscription.user_id, change.subject_uuids
                    )
            except (SQLAlchemyError, ValueError) as e:
                change.status = PendingChangeStatus.FAILED.value
                logger.error(
                    "pending_downgrade_failed", change_id=str(change.id), error=str(e)
                )
            else:
                change.status = PendingChangeStatus.APPLIED.value
                logger.info(
                    "pending_downgrade_applied",
                    change_id=str(change.id),
                    user_id=str(subscription.user_id),
                    subject_count=change.new_subject_count,
                )
            await self.pending_repo.update(change)

    @staticmethod
    def _apply(subscription: Subscription, remote: StripeSubscription) -> None:
        subscription.stripe_subscription_id = remote.id
        subscription.status = remote.status
        subscription.cancel_at_period_end = remote.cancel_at_period_end
        if remote.price_id:
            subscription.stripe_price_id = remote.price_id
        if remote.current_period_start:
            subscription.current_period_start = remote.current_period_start
        if remote.current_period_end:
            subscription.current_period_end = remote.current_period_end
