"""Apply a desired billing state to accounts and subscription records."""

import logging
import uuid as uuid_pkg
from collections.abc import Awaitable, Callable
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.subscription_operations import SubscriptionOperations, subscription_ops
from app.domain.user_operations import UserOperations, user_ops
from app.models.base import utcnow
from app.models.subscription import SubscriptionStatus
from app.services.billing.types import (
    AccountTarget,
    DesiredState,
    OrganizationTarget,
    ReconcileTarget,
    StepOutcome,
)

logger = logging.getLogger(__name__)


async def run_isolated_step(
    db: AsyncSession,
    name: str,
    step: Callable[[], Awaitable[str | None]],
) -> StepOutcome:
    """
    Run one side effect inside a SAVEPOINT.

    A database error rolls back only this step and is reported as a failed
    outcome; the surrounding transaction stays usable for the next step.
    """
    try:
        async with db.begin_nested():
            detail = await step()
        return StepOutcome(step=name, ok=True, detail=detail)
    except SQLAlchemyError as e:
        logger.error(f"Billing step '{name}' failed: {e}")
        return StepOutcome(step=name, ok=False, detail=str(e))


class SubscriptionReconciler:
    """
    Writes desired state to the store. Idempotent by construction.

    Account fields are last-write-wins. Subscription records are located by
    Stripe subscription id, then customer id, and updated in place; a new
    record is only inserted when Stripe ids are known and nothing matches.
    """

    def __init__(
        self,
        users: UserOperations = user_ops,
        subscriptions: SubscriptionOperations = subscription_ops,
    ) -> None:
        self.users = users
        self.subscriptions = subscriptions

    async def reconcile(
        self,
        db: AsyncSession,
        target: ReconcileTarget,
        desired: DesiredState,
    ) -> list[StepOutcome]:
        """
        Apply `desired` to `target`. Never raises for persistence errors.

        The account update and the record upsert are isolated from each
        other: a failure in one is reported and the other is still attempted.
        """
        logger.info(
            f"Reconciling {target}: status={desired.status.value}, "
            f"plan={desired.plan.value if desired.plan else None}"
        )
        return [
            await run_isolated_step(
                db, "account_state", lambda: self._describe_accounts(db, target, desired)
            ),
            await run_isolated_step(
                db, "subscription_record", lambda: self._describe_records(db, target, desired)
            ),
        ]

    async def _describe_accounts(
        self, db: AsyncSession, target: ReconcileTarget, desired: DesiredState
    ) -> str:
        count = await self.apply_account_state(db, target, desired)
        return f"{count} account(s) updated"

    async def _describe_records(
        self, db: AsyncSession, target: ReconcileTarget, desired: DesiredState
    ) -> str:
        ids = await self.apply_subscription_record(db, target, desired)
        return f"{len(ids)} record(s) written"

    # ─────────────────────────────────────────────────────────────────────────────
    # Account state
    # ─────────────────────────────────────────────────────────────────────────────

    async def apply_account_state(
        self,
        db: AsyncSession,
        target: ReconcileTarget,
        desired: DesiredState,
    ) -> int:
        """Write status/plan/trial fields. Raises on persistence errors."""
        values: dict[str, Any] = {"subscription_status": desired.status.value}
        if desired.plan is not None:
            values["subscription_plan"] = desired.plan.value
        if desired.clear_trial_end:
            values["trial_end_date"] = None

        if isinstance(target, OrganizationTarget):
            return await self.users.update_billing_state(
                db, values, user_id=target.user_id, org_id=target.org_id
            )
        return await self.users.update_billing_state(db, values, user_id=target.user_id)

    # ─────────────────────────────────────────────────────────────────────────────
    # Subscription records
    # ─────────────────────────────────────────────────────────────────────────────

    async def _record_owner_ids(
        self,
        db: AsyncSession,
        target: ReconcileTarget,
    ) -> list[uuid_pkg.UUID]:
        if isinstance(target, AccountTarget):
            return [target.user_id]
        if target.user_id is not None:
            return [target.user_id]
        return await self.users.list_org_member_ids(db, target.org_id)

    async def apply_subscription_record(
        self,
        db: AsyncSession,
        target: ReconcileTarget,
        desired: DesiredState,
    ) -> list[uuid_pkg.UUID]:
        """
        Update or create the current record for each owning account.

        Returns the ids of records written. Raises on persistence errors.
        """
        values: dict[str, Any] = {
            "status": desired.status.value,
            "plan_id": desired.plan.value if desired.plan else None,
            "plan_name": desired.plan.value if desired.plan else None,
            "stripe_customer_id": desired.stripe_customer_id,
            "stripe_subscription_id": desired.stripe_subscription_id,
            "stripe_current_period_end": desired.current_period_end,
            "cancel_at_period_end": desired.cancel_at_period_end,
            "cancelled_at": desired.cancelled_at,
        }
        clear = ("cancelled_at",) if desired.clear_cancelled_at else ()
        written: list[uuid_pkg.UUID] = []

        for user_id in await self._record_owner_ids(db, target):
            record = await self.subscriptions.find_current(
                db,
                user_id,
                stripe_subscription_id=desired.stripe_subscription_id,
                stripe_customer_id=desired.stripe_customer_id,
            )
            if record:
                updates = dict(values)
                if desired.status == SubscriptionStatus.CANCELLED and desired.cancelled_at is None:
                    updates["cancelled_at"] = record.cancelled_at or utcnow()
                record = await self.subscriptions.update(db, record, updates, clear=clear)
                written.append(record.id)
                continue

            creates = dict(values)
            if desired.status == SubscriptionStatus.CANCELLED and desired.cancelled_at is None:
                creates["cancelled_at"] = utcnow()

            if desired.stripe_subscription_id:
                record = await self.subscriptions.upsert_by_stripe_subscription(
                    db, user_id, desired.stripe_subscription_id, creates, clear=clear
                )
                written.append(record.id)
            elif desired.stripe_customer_id:
                # No unique key to upsert on with only a customer id; re-check
                # right before inserting. Narrows the race, does not close it.
                record = await self.subscriptions.find_current(
                    db, user_id, stripe_customer_id=desired.stripe_customer_id
                )
                if record:
                    record = await self.subscriptions.update(db, record, creates, clear=clear)
                else:
                    record = await self.subscriptions.create(db, user_id, creates)
                written.append(record.id)
            else:
                logger.info(f"No subscription record for user {user_id} and no Stripe ids; skipping")

        return written
