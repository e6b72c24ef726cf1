"""Map Stripe subscription statuses onto internal statuses."""

from app.models.subscription import SubscriptionStatus

STRIPE_STATUS_MAP: dict[str, SubscriptionStatus] = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.TRIAL,
    "past_due": SubscriptionStatus.SUSPENDED,
    "unpaid": SubscriptionStatus.SUSPENDED,
    "paused": SubscriptionStatus.SUSPENDED,
    "canceled": SubscriptionStatus.CANCELLED,
    "cancelled": SubscriptionStatus.CANCELLED,
    "incomplete_expired": SubscriptionStatus.CANCELLED,
    "incomplete": SubscriptionStatus.PENDING,
}


def map_stripe_status(
    stripe_status: str | None,
    fallback: SubscriptionStatus = SubscriptionStatus.PENDING,
) -> SubscriptionStatus:
    """Case-insensitive; anything unlisted or missing returns `fallback`."""
    if not stripe_status:
        return fallback
    return STRIPE_STATUS_MAP.get(str(stripe_status).strip().lower(), fallback)
