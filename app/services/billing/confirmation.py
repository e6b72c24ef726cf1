"""Synchronous confirm and cancel handlers.

Confirmation lets the success page apply a completed checkout without
waiting for the webhook. Both paths share `desired_state` and the
reconciler, so whichever runs second is a no-op.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession
from stripe import InvalidRequestError, StripeError

from app.config.plans import PlanCatalog
from app.core.exceptions import (
    AlreadyInStateError,
    ErrorCode,
    ForbiddenError,
    NotFoundError,
    PaymentsNotConfiguredError,
    UpstreamError,
    ValidationError,
)
from app.domain.subscription_operations import SubscriptionOperations, subscription_ops
from app.models.base import utcnow
from app.models.subscription import SubscriptionPlan, SubscriptionStatus
from app.models.user import User
from app.services.billing import desired_state
from app.services.billing.events import CheckoutSessionSnapshot, SubscriptionSnapshot
from app.services.billing.owners import OwnerResolver
from app.services.billing.reconciler import SubscriptionReconciler, run_isolated_step
from app.services.billing.types import CancelResult, ConfirmResult, ResolvedOwner
from app.services.stripe_service import StripeService

logger = logging.getLogger(__name__)

CANCELLABLE_STATUSES = (SubscriptionStatus.ACTIVE.value, SubscriptionStatus.TRIAL.value)


class BillingActions:
    """Caller-initiated billing transitions (confirm checkout, cancel)."""

    def __init__(
        self,
        stripe_service: StripeService,
        catalog: PlanCatalog,
        owners: OwnerResolver,
        reconciler: SubscriptionReconciler,
        subscriptions: SubscriptionOperations = subscription_ops,
    ) -> None:
        self.stripe = stripe_service
        self.catalog = catalog
        self.owners = owners
        self.reconciler = reconciler
        self.subscriptions = subscriptions

    # ─────────────────────────────────────────────────────────────────────────────
    # Confirm
    # ─────────────────────────────────────────────────────────────────────────────

    def _retrieve_session(self, session_id: str) -> CheckoutSessionSnapshot:
        try:
            raw = self.stripe.retrieve_checkout_session(session_id)
        except InvalidRequestError as e:
            raise NotFoundError("Checkout session") from e
        except StripeError as e:
            raise UpstreamError("Failed to retrieve checkout session") from e
        return CheckoutSessionSnapshot.from_stripe(raw)

    @staticmethod
    def _check_ownership(owner: ResolvedOwner, user: User) -> None:
        if owner.user_id is not None and owner.user_id != user.id:
            logger.warning(f"Checkout owner {owner.user_id} does not match caller {user.id}")
            raise ForbiddenError("Session does not belong to authenticated user")
        if owner.org_id is not None and owner.org_id != user.org_id:
            logger.warning(f"Checkout org {owner.org_id} does not match caller org {user.org_id}")
            raise ForbiddenError("Session does not belong to authenticated user")

    async def confirm(self, db: AsyncSession, user: User, session_id: str | None) -> ConfirmResult:
        """
        Apply a completed checkout session for the calling user.

        Validation failures raise before anything is written. Once the
        session is verified as the caller's, reconciliation is best-effort
        and its step outcomes are returned alongside the applied state.
        """
        if not self.stripe.enabled:
            raise PaymentsNotConfiguredError()
        if not session_id:
            raise ValidationError("sessionId is required", code=ErrorCode.MISSING_FIELD)

        session = self._retrieve_session(session_id)
        if session.mode != "subscription":
            raise ValidationError("Checkout session is not a subscription")
        if not session.is_complete:
            raise ValidationError("Checkout session is not complete")

        owner = await self.owners.for_checkout(db, session)
        if owner is None:
            logger.error(f"Could not resolve owner of checkout session {session.id}")
            raise ValidationError("Could not determine the owner of this checkout session")
        self._check_ownership(owner, user)

        subscription = session.subscription
        if subscription is None and session.subscription_id:
            fetched = self.stripe.get_subscription(session.subscription_id)
            subscription = SubscriptionSnapshot.from_stripe(fetched) if fetched else None

        desired = desired_state.from_checkout(session, subscription, self.catalog)
        steps = await self.reconciler.reconcile(db, owner.target, desired)

        plan = desired.plan or SubscriptionPlan.BASIC
        logger.info(
            f"Checkout {session.id} confirmed for user {user.id}: "
            f"plan={plan.value}, status={desired.status.value}"
        )
        return ConfirmResult(plan=plan, status=desired.status, steps=steps)

    # ─────────────────────────────────────────────────────────────────────────────
    # Cancel
    # ─────────────────────────────────────────────────────────────────────────────

    async def cancel(self, db: AsyncSession, user: User, immediate: bool = False) -> CancelResult:
        """
        Cancel the caller's current subscription at Stripe.

        Immediate cancellation drops the account back to the free plan now;
        otherwise the record is flagged and the deletion webhook does the
        rest when the period ends.
        """
        if not self.stripe.enabled:
            raise PaymentsNotConfiguredError()

        record = await self.subscriptions.get_latest_for_user(
            db,
            user.id,
            statuses=CANCELLABLE_STATUSES,
            require_subscription_id=True,
        )
        if record is None or not record.stripe_subscription_id:
            raise NotFoundError("Active subscription")
        if not immediate and record.cancel_at_period_end:
            raise AlreadyInStateError("Subscription is already scheduled to cancel at period end")

        try:
            cancelled = self.stripe.cancel_subscription(record.stripe_subscription_id, immediate=immediate)
        except StripeError as e:
            raise UpstreamError("Failed to cancel subscription") from e

        snapshot = SubscriptionSnapshot.from_stripe(cancelled)
        subscription_id = record.stripe_subscription_id

        if immediate:
            owner = ResolvedOwner(user_id=user.id, org_id=user.org_id, source="caller")
            steps = await self.reconciler.reconcile(
                db,
                owner.target,
                desired_state.cancelled(
                    stripe_customer_id=record.stripe_customer_id,
                    stripe_subscription_id=subscription_id,
                    cancelled_at=snapshot.canceled_at or utcnow(),
                ),
            )
        else:

            async def flag_record() -> str:
                await self.subscriptions.update(db, record, {"cancel_at_period_end": True})
                return f"record {record.id} flagged"

            steps = [await run_isolated_step(db, "subscription_record", flag_record)]

        logger.info(
            f"Subscription {subscription_id} for user {user.id} cancelled "
            f"{'immediately' if immediate else 'at period end'}"
        )
        return CancelResult(
            cancel_at_period_end=not immediate,
            cancel_at=snapshot.cancel_at or (snapshot.canceled_at if immediate else None),
            current_period_end=snapshot.current_period_end or record.stripe_current_period_end,
            steps=steps,
        )
