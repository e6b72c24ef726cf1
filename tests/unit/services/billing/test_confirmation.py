"""Unit tests for BillingActions.confirm and BillingActions.cancel."""

import uuid
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from stripe import InvalidRequestError, StripeError

from app.core.exceptions import (
    AlreadyInStateError,
    ErrorCode,
    ForbiddenError,
    NotFoundError,
    PaymentsNotConfiguredError,
    UpstreamError,
    ValidationError,
)
from app.models.subscription import SubscriptionPlan, SubscriptionStatus
from app.services.billing.confirmation import BillingActions
from app.services.billing.types import (
    AccountTarget,
    OrganizationTarget,
    ResolvedOwner,
    StepOutcome,
)

from tests.helpers.mock_factories import (
    PERIOD_END,
    make_mock_subscription,
    make_mock_user,
    make_stripe_service,
    stripe_checkout_session,
    stripe_subscription,
)


@pytest.fixture
def stripe_service():
    service = make_stripe_service()
    service.retrieve_checkout_session.return_value = stripe_checkout_session(
        subscription=stripe_subscription(price="price_pro")
    )
    return service


@pytest.fixture
def user():
    return make_mock_user()


@pytest.fixture
def owners(user):
    resolver = MagicMock()
    resolver.for_checkout = AsyncMock(
        return_value=ResolvedOwner(user_id=user.id, org_id=None, source="metadata")
    )
    return resolver


@pytest.fixture
def reconciler():
    mock = MagicMock()
    mock.reconcile = AsyncMock(return_value=[StepOutcome(step="account_state", ok=True)])
    return mock


@pytest.fixture
def subscriptions():
    ops = MagicMock()
    ops.get_latest_for_user = AsyncMock(return_value=make_mock_subscription())
    ops.update = AsyncMock()
    return ops


@pytest.fixture
def actions(stripe_service, catalog, owners, reconciler, subscriptions):
    return BillingActions(stripe_service, catalog, owners, reconciler, subscriptions=subscriptions)


class TestConfirm:
    async def test_applies_checkout(self, actions, user, reconciler, db_session):
        result = await actions.confirm(db_session, user, "cs_test")

        assert result.plan == SubscriptionPlan.PROFESSIONAL
        assert result.status == SubscriptionStatus.ACTIVE
        _db, target, desired = reconciler.reconcile.await_args.args
        assert target == AccountTarget(user_id=user.id)
        assert desired.stripe_subscription_id == "sub_test"
        assert desired.clear_trial_end is True

    async def test_fetches_unexpanded_subscription(self, actions, stripe_service, user, db_session):
        stripe_service.retrieve_checkout_session.return_value = stripe_checkout_session()
        stripe_service.get_subscription.return_value = stripe_subscription(status="trialing")

        result = await actions.confirm(db_session, user, "cs_test")

        stripe_service.get_subscription.assert_called_once_with("sub_test")
        assert result.status == SubscriptionStatus.TRIAL
        assert result.plan == SubscriptionPlan.BASIC

    async def test_org_member_confirms_org_checkout(self, actions, owners, reconciler, db_session):
        org_id = uuid.uuid4()
        user = make_mock_user(org_id=org_id)
        owners.for_checkout = AsyncMock(
            return_value=ResolvedOwner(user_id=user.id, org_id=org_id, source="metadata")
        )

        await actions.confirm(db_session, user, "cs_test")

        _db, target, _desired = reconciler.reconcile.await_args.args
        assert target == OrganizationTarget(org_id=org_id, user_id=user.id)

    async def test_other_users_session_is_forbidden(self, actions, owners, reconciler, user, db_session):
        owners.for_checkout = AsyncMock(
            return_value=ResolvedOwner(user_id=uuid.uuid4(), org_id=None, source="metadata")
        )

        with pytest.raises(ForbiddenError) as exc_info:
            await actions.confirm(db_session, user, "cs_test")

        assert exc_info.value.status_code == 403
        reconciler.reconcile.assert_not_called()

    async def test_other_orgs_session_is_forbidden(self, actions, owners, reconciler, user, db_session):
        owners.for_checkout = AsyncMock(
            return_value=ResolvedOwner(user_id=None, org_id=uuid.uuid4(), source="metadata")
        )

        with pytest.raises(ForbiddenError):
            await actions.confirm(db_session, user, "cs_test")
        reconciler.reconcile.assert_not_called()

    async def test_missing_session_id(self, actions, user, stripe_service, db_session):
        with pytest.raises(ValidationError) as exc_info:
            await actions.confirm(db_session, user, "")

        assert exc_info.value.code == ErrorCode.MISSING_FIELD
        stripe_service.retrieve_checkout_session.assert_not_called()

    async def test_not_configured(self, catalog, owners, reconciler, user, db_session):
        actions = BillingActions(make_stripe_service(enabled=False), catalog, owners, reconciler)

        with pytest.raises(PaymentsNotConfiguredError):
            await actions.confirm(db_session, user, "cs_test")

    async def test_unknown_session(self, actions, stripe_service, user, db_session):
        stripe_service.retrieve_checkout_session.side_effect = InvalidRequestError(
            "No such checkout.session", "id"
        )

        with pytest.raises(NotFoundError):
            await actions.confirm(db_session, user, "cs_missing")

    async def test_stripe_unavailable(self, actions, stripe_service, user, db_session):
        stripe_service.retrieve_checkout_session.side_effect = StripeError("timeout")

        with pytest.raises(UpstreamError):
            await actions.confirm(db_session, user, "cs_test")

    async def test_payment_mode_session_rejected(self, actions, stripe_service, user, reconciler, db_session):
        stripe_service.retrieve_checkout_session.return_value = stripe_checkout_session(mode="payment")

        with pytest.raises(ValidationError):
            await actions.confirm(db_session, user, "cs_test")
        reconciler.reconcile.assert_not_called()

    async def test_incomplete_session_rejected(self, actions, stripe_service, user, db_session):
        stripe_service.retrieve_checkout_session.return_value = stripe_checkout_session(
            status="open", payment_status="unpaid"
        )

        with pytest.raises(ValidationError):
            await actions.confirm(db_session, user, "cs_test")

    async def test_unresolvable_owner(self, actions, owners, user, reconciler, db_session):
        owners.for_checkout = AsyncMock(return_value=None)

        with pytest.raises(ValidationError):
            await actions.confirm(db_session, user, "cs_test")
        reconciler.reconcile.assert_not_called()


class TestCancel:
    async def test_period_end_flags_record(self, actions, stripe_service, subscriptions, user, db_session):
        record = make_mock_subscription(stripe_subscription_id="sub_live")
        subscriptions.get_latest_for_user = AsyncMock(return_value=record)
        stripe_service.cancel_subscription.return_value = stripe_subscription(
            sub_id="sub_live", cancel_at_period_end=True, cancel_at=PERIOD_END
        )

        result = await actions.cancel(db_session, user)

        stripe_service.cancel_subscription.assert_called_once_with("sub_live", immediate=False)
        subscriptions.update.assert_awaited_once_with(db_session, record, {"cancel_at_period_end": True})
        assert result.cancel_at_period_end is True
        assert result.cancel_at == datetime.fromtimestamp(PERIOD_END, tz=UTC)
        assert result.current_period_end == datetime.fromtimestamp(PERIOD_END, tz=UTC)
        assert result.steps[0].step == "subscription_record"
        assert result.steps[0].ok is True

    async def test_immediate_reconciles_cancelled(
        self, actions, stripe_service, reconciler, subscriptions, user, db_session
    ):
        stripe_service.cancel_subscription.return_value = stripe_subscription(
            status="canceled", canceled_at=1_700_000_000
        )

        result = await actions.cancel(db_session, user, immediate=True)

        _db, target, desired = reconciler.reconcile.await_args.args
        assert target == AccountTarget(user_id=user.id)
        assert desired.status == SubscriptionStatus.CANCELLED
        assert desired.plan == SubscriptionPlan.FREE_TRIAL
        assert result.cancel_at_period_end is False
        assert result.cancel_at == datetime.fromtimestamp(1_700_000_000, tz=UTC)
        subscriptions.update.assert_not_called()

    async def test_no_active_subscription(self, actions, subscriptions, stripe_service, user, db_session):
        subscriptions.get_latest_for_user = AsyncMock(return_value=None)

        with pytest.raises(NotFoundError):
            await actions.cancel(db_session, user)
        stripe_service.cancel_subscription.assert_not_called()

    async def test_already_scheduled(self, actions, subscriptions, stripe_service, user, db_session):
        subscriptions.get_latest_for_user = AsyncMock(
            return_value=make_mock_subscription(cancel_at_period_end=True)
        )

        with pytest.raises(AlreadyInStateError) as exc_info:
            await actions.cancel(db_session, user)

        assert exc_info.value.status_code == 409
        stripe_service.cancel_subscription.assert_not_called()

    async def test_immediate_allowed_when_already_scheduled(
        self, actions, subscriptions, stripe_service, user, db_session
    ):
        subscriptions.get_latest_for_user = AsyncMock(
            return_value=make_mock_subscription(cancel_at_period_end=True)
        )
        stripe_service.cancel_subscription.return_value = stripe_subscription(status="canceled")

        result = await actions.cancel(db_session, user, immediate=True)

        assert result.cancel_at_period_end is False

    async def test_stripe_failure(self, actions, stripe_service, reconciler, user, db_session):
        stripe_service.cancel_subscription.side_effect = StripeError("nope")

        with pytest.raises(UpstreamError):
            await actions.cancel(db_session, user)
        reconciler.reconcile.assert_not_called()
