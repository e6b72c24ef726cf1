"""Unit tests for EventDispatcher with owners and reconciler mocked."""

import uuid
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.models.subscription import SubscriptionPlan, SubscriptionStatus
from app.services.billing.dispatcher import EventDispatcher
from app.services.billing.events import parse_event
from app.services.billing.types import (
    AccountTarget,
    OrganizationTarget,
    ResolvedOwner,
    StepOutcome,
)

from tests.helpers.mock_factories import (
    billing_metadata,
    make_stripe_service,
    stripe_checkout_session,
    stripe_event,
    stripe_invoice,
    stripe_subscription,
)

USER_ID = uuid.uuid4()
ORG_ID = uuid.uuid4()


@pytest.fixture
def owners():
    resolver = MagicMock()
    owner = ResolvedOwner(
        user_id=USER_ID, org_id=None, source="customer", email="owner@example.com", first_name="Olive"
    )
    resolver.for_checkout = AsyncMock(return_value=owner)
    resolver.for_subscription = AsyncMock(return_value=owner)
    resolver.by_stripe_ids = AsyncMock(return_value=owner)
    return resolver


@pytest.fixture
def reconciler():
    mock = MagicMock()
    mock.reconcile = AsyncMock(return_value=[StepOutcome(step="account_state", ok=True)])
    return mock


@pytest.fixture
def promo_codes():
    ops = MagicMock()
    ops.increment_usage = AsyncMock(return_value=True)
    return ops


@pytest.fixture
def stripe_service():
    return make_stripe_service()


@pytest.fixture
def dispatcher(stripe_service, catalog, owners, reconciler, notifier, promo_codes):
    return EventDispatcher(
        stripe_service, catalog, owners, reconciler, notifier, promo_codes=promo_codes
    )


def _reconciled(reconciler):
    """(target, desired) of the single reconcile call."""
    reconciler.reconcile.assert_awaited_once()
    _db, target, desired = reconciler.reconcile.await_args.args
    return target, desired


class TestCheckoutCompleted:
    async def test_reconciles_with_fetched_subscription(
        self, dispatcher, stripe_service, reconciler, db_session
    ):
        stripe_service.get_subscription.return_value = stripe_subscription(price="price_pro")
        event = parse_event(stripe_event("checkout.session.completed", stripe_checkout_session()))

        outcome = await dispatcher.dispatch(db_session, event)

        stripe_service.get_subscription.assert_called_once_with("sub_test")
        target, desired = _reconciled(reconciler)
        assert target == AccountTarget(user_id=USER_ID)
        assert desired.status == SubscriptionStatus.ACTIVE
        assert desired.plan == SubscriptionPlan.PROFESSIONAL
        assert outcome.resolved is True
        assert outcome.step("fetch_subscription").ok is True

    async def test_org_checkout_is_one_reconcile_pass(self, dispatcher, owners, reconciler, db_session):
        owners.for_checkout = AsyncMock(
            return_value=ResolvedOwner(user_id=USER_ID, org_id=ORG_ID, source="metadata")
        )
        event = parse_event(
            stripe_event(
                "checkout.session.completed",
                stripe_checkout_session(subscription=stripe_subscription()),
            )
        )

        await dispatcher.dispatch(db_session, event)

        target, _ = _reconciled(reconciler)
        assert target == OrganizationTarget(org_id=ORG_ID, user_id=USER_ID)

    async def test_unresolved_owner_skips(self, dispatcher, owners, reconciler, db_session):
        owners.for_checkout = AsyncMock(return_value=None)
        event = parse_event(stripe_event("checkout.session.completed", stripe_checkout_session()))

        outcome = await dispatcher.dispatch(db_session, event)

        assert outcome.resolved is False
        reconciler.reconcile.assert_not_called()

    async def test_fetch_failure_still_reconciles_from_metadata(
        self, dispatcher, reconciler, db_session
    ):
        event = parse_event(
            stripe_event(
                "checkout.session.completed",
                stripe_checkout_session(metadata=billing_metadata(USER_ID, plan="ENTERPRISE")),
            )
        )

        outcome = await dispatcher.dispatch(db_session, event)

        _, desired = _reconciled(reconciler)
        assert desired.plan == SubscriptionPlan.ENTERPRISE
        assert outcome.step("fetch_subscription").ok is False

    async def test_internal_promo_counts_usage(self, dispatcher, promo_codes, db_session):
        metadata = billing_metadata(USER_ID, promo_code="SAVE20", promo_source="internal")
        event = parse_event(
            stripe_event(
                "checkout.session.completed",
                stripe_checkout_session(subscription=stripe_subscription(), metadata=metadata),
            )
        )

        outcome = await dispatcher.dispatch(db_session, event)

        promo_codes.increment_usage.assert_awaited_once_with(db_session, "SAVE20")
        assert outcome.step("promo_usage").ok is True

    async def test_stripe_promo_does_not_count_usage(self, dispatcher, promo_codes, db_session):
        metadata = billing_metadata(USER_ID, promo_code="SAVE20", promo_source="promotion_code")
        event = parse_event(
            stripe_event(
                "checkout.session.completed",
                stripe_checkout_session(subscription=stripe_subscription(), metadata=metadata),
            )
        )

        await dispatcher.dispatch(db_session, event)

        promo_codes.increment_usage.assert_not_called()


class TestSubscriptionEvents:
    async def test_updated_prefers_fresh_subscription(
        self, dispatcher, stripe_service, reconciler, db_session
    ):
        stripe_service.get_subscription.return_value = stripe_subscription(status="active")
        event = parse_event(
            stripe_event("customer.subscription.updated", stripe_subscription(status="past_due"))
        )

        await dispatcher.dispatch(db_session, event)

        _, desired = _reconciled(reconciler)
        assert desired.status == SubscriptionStatus.ACTIVE

    async def test_updated_falls_back_to_payload(self, dispatcher, reconciler, db_session):
        event = parse_event(
            stripe_event("customer.subscription.updated", stripe_subscription(status="past_due"))
        )

        outcome = await dispatcher.dispatch(db_session, event)

        _, desired = _reconciled(reconciler)
        assert desired.status == SubscriptionStatus.SUSPENDED
        assert outcome.step("fetch_subscription").ok is False

    async def test_updated_unresolved_makes_no_writes(self, dispatcher, owners, reconciler, db_session):
        owners.for_subscription = AsyncMock(return_value=None)
        event = parse_event(stripe_event("customer.subscription.updated", stripe_subscription()))

        outcome = await dispatcher.dispatch(db_session, event)

        assert outcome.resolved is False
        reconciler.reconcile.assert_not_called()

    async def test_deleted_cancels(self, dispatcher, reconciler, db_session):
        event = parse_event(
            stripe_event(
                "customer.subscription.deleted",
                stripe_subscription(status="canceled", canceled_at=1_700_000_000),
            )
        )

        await dispatcher.dispatch(db_session, event)

        _, desired = _reconciled(reconciler)
        assert desired.status == SubscriptionStatus.CANCELLED
        assert desired.plan == SubscriptionPlan.FREE_TRIAL
        assert desired.cancelled_at == datetime.fromtimestamp(1_700_000_000, tz=UTC)


class TestInvoiceEvents:
    async def test_payment_failed_notifies_and_suspends(
        self, dispatcher, owners, reconciler, notifier, db_session
    ):
        event = parse_event(
            stripe_event("invoice.payment_failed", stripe_invoice(customer_email="billing@example.com"))
        )

        outcome = await dispatcher.dispatch(db_session, event)

        owners.by_stripe_ids.assert_awaited_once_with(
            db_session, customer_id="cus_test", subscription_id="sub_test"
        )
        notifier.notify_payment_failed.assert_awaited_once_with(
            "billing@example.com", "Olive", "https://invoice.stripe.com/i/test"
        )
        _, desired = _reconciled(reconciler)
        assert desired.status == SubscriptionStatus.SUSPENDED
        assert desired.plan is None
        assert outcome.step("notify").ok is True

    async def test_payment_failed_email_from_stripe_customer(
        self, dispatcher, stripe_service, notifier, db_session
    ):
        stripe_service.get_customer.return_value = {"id": "cus_test", "email": "cust@example.com"}
        event = parse_event(stripe_event("invoice.payment_failed", stripe_invoice()))

        await dispatcher.dispatch(db_session, event)

        assert notifier.notify_payment_failed.await_args.args[0] == "cust@example.com"

    async def test_payment_failed_email_from_owner(self, dispatcher, notifier, db_session):
        event = parse_event(stripe_event("invoice.payment_failed", stripe_invoice()))

        await dispatcher.dispatch(db_session, event)

        assert notifier.notify_payment_failed.await_args.args[0] == "owner@example.com"

    async def test_notification_failure_does_not_block_suspension(
        self, dispatcher, notifier, reconciler, db_session
    ):
        notifier.notify_payment_failed = AsyncMock(return_value=False)
        event = parse_event(stripe_event("invoice.payment_failed", stripe_invoice()))

        outcome = await dispatcher.dispatch(db_session, event)

        assert outcome.step("notify").ok is False
        reconciler.reconcile.assert_awaited_once()

    async def test_payment_succeeded_reconciles_fetched_subscription(
        self, dispatcher, stripe_service, reconciler, db_session
    ):
        stripe_service.get_subscription.return_value = stripe_subscription(price="price_ent")
        event = parse_event(stripe_event("invoice.payment_succeeded", stripe_invoice()))

        await dispatcher.dispatch(db_session, event)

        _, desired = _reconciled(reconciler)
        assert desired.status == SubscriptionStatus.ACTIVE
        assert desired.plan == SubscriptionPlan.ENTERPRISE

    async def test_payment_succeeded_without_subscription(
        self, dispatcher, stripe_service, reconciler, db_session
    ):
        event = parse_event(stripe_event("invoice.payment_succeeded", stripe_invoice(subscription=None)))

        await dispatcher.dispatch(db_session, event)

        stripe_service.get_subscription.assert_not_called()
        reconciler.reconcile.assert_not_called()

    async def test_payment_succeeded_fetch_failure(self, dispatcher, reconciler, db_session):
        event = parse_event(stripe_event("invoice.payment_succeeded", stripe_invoice()))

        outcome = await dispatcher.dispatch(db_session, event)

        reconciler.reconcile.assert_not_called()
        assert outcome.step("fetch_subscription").ok is False


class TestOtherEvents:
    async def test_schedule_created_writes_nothing(self, dispatcher, owners, reconciler, db_session):
        start = int((datetime.now(UTC) + timedelta(days=10)).timestamp())
        schedule = {
            "id": "sub_sched_1",
            "customer": "cus_test",
            "subscription": "sub_test",
            "phases": [{"start_date": start, "items": [{"price": "price_pro"}]}],
        }

        outcome = await dispatcher.dispatch(
            db_session, parse_event(stripe_event("subscription_schedule.created", schedule))
        )

        owners.by_stripe_ids.assert_awaited_once_with(
            db_session, customer_id="cus_test", subscription_id="sub_test", subscription_first=True
        )
        reconciler.reconcile.assert_not_called()
        assert outcome.resolved is True

    async def test_unhandled_event_is_noop(self, dispatcher, owners, reconciler, db_session):
        outcome = await dispatcher.dispatch(
            db_session, parse_event(stripe_event("customer.created", {"id": "cus_1"}))
        )

        assert outcome.steps == []
        owners.by_stripe_ids.assert_not_called()
        reconciler.reconcile.assert_not_called()
