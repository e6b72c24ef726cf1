"""Integration tests for SubscriptionReconciler against a real database."""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

from sqlalchemy.exc import SQLAlchemyError

from app.domain.subscription_operations import subscription_ops
from app.models.subscription import SubscriptionPlan, SubscriptionStatus
from app.services.billing.reconciler import SubscriptionReconciler, run_isolated_step
from app.services.billing.types import AccountTarget, DesiredState, OrganizationTarget

PERIOD_END = datetime(2030, 1, 31, tzinfo=UTC)


def _active(**overrides) -> DesiredState:
    values = {
        "status": SubscriptionStatus.ACTIVE,
        "plan": SubscriptionPlan.BASIC,
        "clear_trial_end": True,
        "stripe_customer_id": "cus_1",
        "stripe_subscription_id": "sub_1",
        "current_period_end": PERIOD_END,
    }
    values.update(overrides)
    return DesiredState(**values)


class TestReconcile:
    async def test_creates_record_and_updates_account(self, db_session, test_user):
        test_user.trial_end_date = datetime.now(UTC) + timedelta(days=7)
        db_session.add(test_user)
        await db_session.flush()

        steps = await SubscriptionReconciler().reconcile(
            db_session, AccountTarget(user_id=test_user.id), _active()
        )

        assert [s.ok for s in steps] == [True, True]
        await db_session.refresh(test_user)
        assert test_user.subscription_status == "ACTIVE"
        assert test_user.subscription_plan == "BASIC"
        assert test_user.trial_end_date is None

        records = await subscription_ops.list_for_user(db_session, test_user.id)
        assert len(records) == 1
        assert records[0].status == "ACTIVE"
        assert records[0].stripe_subscription_id == "sub_1"
        assert records[0].stripe_customer_id == "cus_1"

    async def test_is_idempotent(self, db_session, test_user):
        reconciler = SubscriptionReconciler()
        target = AccountTarget(user_id=test_user.id)

        await reconciler.reconcile(db_session, target, _active())
        first = await subscription_ops.list_for_user(db_session, test_user.id)
        await reconciler.reconcile(db_session, target, _active())
        second = await subscription_ops.list_for_user(db_session, test_user.id)

        assert len(second) == 1
        assert second[0].id == first[0].id
        assert second[0].status == "ACTIVE"
        assert second[0].plan_id == "BASIC"

    async def test_later_state_updates_same_record(self, db_session, test_user):
        reconciler = SubscriptionReconciler()
        target = AccountTarget(user_id=test_user.id)

        await reconciler.reconcile(db_session, target, _active())
        await reconciler.reconcile(
            db_session,
            target,
            DesiredState(
                status=SubscriptionStatus.SUSPENDED,
                stripe_customer_id="cus_1",
                stripe_subscription_id="sub_1",
            ),
        )

        records = await subscription_ops.list_for_user(db_session, test_user.id)
        assert len(records) == 1
        assert records[0].status == "SUSPENDED"
        assert records[0].plan_id == "BASIC"
        await db_session.refresh(test_user)
        assert test_user.subscription_plan == "BASIC"

    async def test_cancel_without_timestamp_stamps_now(self, db_session, test_user):
        reconciler = SubscriptionReconciler()
        target = AccountTarget(user_id=test_user.id)
        await reconciler.reconcile(db_session, target, _active())

        await reconciler.reconcile(
            db_session,
            target,
            DesiredState(
                status=SubscriptionStatus.CANCELLED,
                plan=SubscriptionPlan.FREE_TRIAL,
                stripe_subscription_id="sub_1",
            ),
        )

        record = (await subscription_ops.list_for_user(db_session, test_user.id))[0]
        assert record.status == "CANCELLED"
        assert record.cancelled_at is not None

    async def test_reactivation_clears_cancellation_time(self, db_session, test_user):
        reconciler = SubscriptionReconciler()
        target = AccountTarget(user_id=test_user.id)
        await reconciler.reconcile(
            db_session,
            target,
            _active(cancel_at_period_end=True, cancelled_at=datetime(2023, 11, 14, tzinfo=UTC)),
        )

        await reconciler.reconcile(
            db_session, target, _active(cancel_at_period_end=False, clear_cancelled_at=True)
        )

        records = await subscription_ops.list_for_user(db_session, test_user.id)
        assert len(records) == 1
        assert records[0].status == "ACTIVE"
        assert records[0].cancel_at_period_end is False
        assert records[0].cancelled_at is None

    async def test_customer_only_reactivation_clears_cancellation_time(self, db_session, test_user):
        reconciler = SubscriptionReconciler()
        target = AccountTarget(user_id=test_user.id)
        await reconciler.reconcile(
            db_session,
            target,
            _active(stripe_subscription_id=None, cancelled_at=datetime(2023, 11, 14, tzinfo=UTC)),
        )

        await reconciler.reconcile(
            db_session, target, _active(stripe_subscription_id=None, clear_cancelled_at=True)
        )

        record = (await subscription_ops.list_for_user(db_session, test_user.id))[0]
        assert record.cancelled_at is None

    async def test_customer_only_state_creates_then_reuses(self, db_session, test_user):
        reconciler = SubscriptionReconciler()
        target = AccountTarget(user_id=test_user.id)
        desired = _active(stripe_subscription_id=None)

        await reconciler.reconcile(db_session, target, desired)
        await reconciler.reconcile(db_session, target, desired)

        records = await subscription_ops.list_for_user(db_session, test_user.id)
        assert len(records) == 1
        assert records[0].stripe_customer_id == "cus_1"
        assert records[0].stripe_subscription_id is None

    async def test_no_stripe_ids_writes_account_only(self, db_session, test_user):
        steps = await SubscriptionReconciler().reconcile(
            db_session,
            AccountTarget(user_id=test_user.id),
            _active(stripe_customer_id=None, stripe_subscription_id=None),
        )

        assert all(s.ok for s in steps)
        assert await subscription_ops.list_for_user(db_session, test_user.id) == []
        await db_session.refresh(test_user)
        assert test_user.subscription_status == "ACTIVE"


class TestOrganizationFanOut:
    async def test_every_member_gets_status(self, db_session, org_id, org_manager, org_technician, add_user):
        third = await add_user(first_name="Third", org_id=org_id)
        outsider = await add_user(first_name="Outsider")

        await SubscriptionReconciler().reconcile(
            db_session,
            OrganizationTarget(org_id=org_id, user_id=org_manager.id),
            _active(plan=SubscriptionPlan.PROFESSIONAL),
        )

        for member in (org_manager, org_technician, third):
            await db_session.refresh(member)
            assert member.subscription_status == "ACTIVE"
            assert member.subscription_plan == "PROFESSIONAL"
        await db_session.refresh(outsider)
        assert outsider.subscription_status == "TRIAL"

        assert len(await subscription_ops.list_for_user(db_session, org_manager.id)) == 1
        assert await subscription_ops.list_for_user(db_session, org_technician.id) == []

    async def test_org_without_initiator_records_every_member(
        self, db_session, org_id, org_manager, org_technician
    ):
        await SubscriptionReconciler().reconcile(db_session, OrganizationTarget(org_id=org_id), _active())

        assert len(await subscription_ops.list_for_user(db_session, org_manager.id)) == 1
        assert len(await subscription_ops.list_for_user(db_session, org_technician.id)) == 1


class TestStepIsolation:
    async def test_failed_step_does_not_block_the_other(self, db_session, test_user):
        reconciler = SubscriptionReconciler()
        reconciler.apply_subscription_record = AsyncMock(side_effect=SQLAlchemyError("disk full"))

        steps = await reconciler.reconcile(db_session, AccountTarget(user_id=test_user.id), _active())

        outcomes = {s.step: s for s in steps}
        assert outcomes["account_state"].ok is True
        assert outcomes["subscription_record"].ok is False
        assert "disk full" in outcomes["subscription_record"].detail
        await db_session.refresh(test_user)
        assert test_user.subscription_status == "ACTIVE"

    async def test_run_isolated_step_rolls_back_only_its_writes(self, db_session, test_user):
        async def write_then_fail() -> str:
            test_user.first_name = "Changed"
            db_session.add(test_user)
            await db_session.flush()
            raise SQLAlchemyError("boom")

        outcome = await run_isolated_step(db_session, "rename", write_then_fail)

        assert outcome.ok is False
        await db_session.refresh(test_user)
        assert test_user.first_name == "Test"
