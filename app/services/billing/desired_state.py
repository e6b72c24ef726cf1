"""Compute the internal state a Stripe fact implies.

Pure functions shared by the webhook dispatcher and the synchronous
confirm/cancel handlers, so both paths arrive at identical values.
"""

from datetime import UTC, datetime

from app.config.plans import PlanCatalog
from app.models.subscription import SubscriptionPlan, SubscriptionStatus
from app.services.billing.events import CheckoutSessionSnapshot, SubscriptionSnapshot
from app.services.billing.status import map_stripe_status
from app.services.billing.types import DesiredState


def from_checkout(
    session: CheckoutSessionSnapshot,
    subscription: SubscriptionSnapshot | None,
    catalog: PlanCatalog,
) -> DesiredState:
    """
    State after a completed checkout.

    With subscription detail, status and plan come from Stripe (status
    defaults to active). Without it, the metadata plan is trusted and the
    account is assumed ACTIVE.
    """
    if subscription is not None:
        status = map_stripe_status(subscription.status or "active", SubscriptionStatus.ACTIVE)
        plan = catalog.plan_for_price(
            subscription.price_id,
            subscription.metadata.plan or session.metadata.plan,
        )
        period_end = subscription.current_period_end
        clear_cancelled_at = subscription.canceled_at is None and status != SubscriptionStatus.CANCELLED
    else:
        status = SubscriptionStatus.ACTIVE
        plan = catalog.normalise_plan(session.metadata.plan)
        period_end = None
        clear_cancelled_at = False

    return DesiredState(
        status=status,
        plan=plan or SubscriptionPlan.BASIC,
        clear_trial_end=status == SubscriptionStatus.ACTIVE,
        stripe_customer_id=session.customer_id or (subscription.customer_id if subscription else None),
        stripe_subscription_id=session.subscription_id,
        current_period_end=period_end,
        clear_cancelled_at=clear_cancelled_at,
    )


def from_subscription(
    subscription: SubscriptionSnapshot,
    catalog: PlanCatalog,
) -> DesiredState:
    """State mirrored from a subscription object. Unknown plans leave the plan untouched."""
    status = map_stripe_status(subscription.status, SubscriptionStatus.PENDING)
    return DesiredState(
        status=status,
        plan=catalog.plan_for_price(subscription.price_id, subscription.metadata.plan),
        clear_trial_end=status == SubscriptionStatus.ACTIVE,
        stripe_customer_id=subscription.customer_id,
        stripe_subscription_id=subscription.id or None,
        current_period_end=subscription.current_period_end,
        cancelled_at=subscription.canceled_at,
        cancel_at_period_end=subscription.cancel_at_period_end,
        clear_cancelled_at=subscription.canceled_at is None and status != SubscriptionStatus.CANCELLED,
    )


def cancelled(
    *,
    stripe_customer_id: str | None,
    stripe_subscription_id: str | None,
    cancelled_at: datetime | None = None,
) -> DesiredState:
    """State once a subscription has ended: back to the free plan."""
    return DesiredState(
        status=SubscriptionStatus.CANCELLED,
        plan=SubscriptionPlan.FREE_TRIAL,
        clear_trial_end=True,
        stripe_customer_id=stripe_customer_id,
        stripe_subscription_id=stripe_subscription_id,
        cancelled_at=cancelled_at or datetime.now(UTC),
        cancel_at_period_end=False,
    )


def suspended(
    *,
    stripe_customer_id: str | None,
    stripe_subscription_id: str | None,
) -> DesiredState:
    """State after a failed invoice payment."""
    return DesiredState(
        status=SubscriptionStatus.SUSPENDED,
        stripe_customer_id=stripe_customer_id,
        stripe_subscription_id=stripe_subscription_id,
    )
